"""
Phase transition evaluator — pure lifecycle rules.

``evaluate_transition(phase_state, now, readiness)`` answers "may this
project move to its next phase, and if not, why not / when".  It never
touches the database, never reads the clock and never mutates its inputs;
the executor in phase_transition_service re-runs it at write time.

Blockers come in two kinds:
    hard       missing setup or configuration; reported by code
               (``missing_role_templates``, ``missing_show_end_date``)
    scheduled  the transition is configured but not yet due; reported as
               "Scheduled to ... at <iso>" and sets ``scheduled_at``

Edge rules:
    prep      → staffing   roles and locations finalized
    staffing  → pre_show   ≥1 team assignment and ≥1 talent entry (or area finalized)
    pre_show  → active     no readiness blocking issues; local midnight of
                           rehearsal_start_date has passed
    active    → post_show  post_show_transition_hour on the day after show_end_date
    post_show → complete   the post-show time + post_show_grace_days
    complete  → archived   next archive_month/archive_day after the show ended
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

from showops.models.phase import TERMINAL_PHASE, next_phase
from showops.services.readiness_engine import (
    AREA_REQUIREMENT_BY_AREA,
    AREA_REQUIREMENTS,
    FinalizationFlags,
    SetupCounts,
    area_blocking_code,
)
from showops.services.timezone_service import (
    format_in_timezone,
    local_date,
    local_midnight,
    local_time_on,
    next_anniversary,
    resolve_timezone,
)
from showops.utils.helpers import ensure_aware

HARD = "hard"
SCHEDULED = "scheduled"


@dataclass(frozen=True)
class Blocker:
    code: str
    message: str
    kind: str = HARD

    @property
    def label(self) -> str:
        """Text shown in ``TransitionResult.blockers``."""
        return self.message if self.kind == SCHEDULED else self.code

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "kind": self.kind}


@dataclass(frozen=True)
class TransitionResult:
    can_transition: bool
    current_phase: str
    target_phase: str | None
    blocker_details: tuple[Blocker, ...] = ()
    reason: str = ""
    scheduled_at: datetime | None = None

    @property
    def blockers(self) -> list[str]:
        return [b.label for b in self.blocker_details]

    @property
    def has_hard_blockers(self) -> bool:
        return any(b.kind == HARD for b in self.blocker_details)

    def to_dict(self) -> dict:
        return {
            "can_transition": self.can_transition,
            "current_phase": self.current_phase,
            "target_phase": self.target_phase,
            "blockers": self.blockers,
            "blocker_details": [b.to_dict() for b in self.blocker_details],
            "reason": self.reason,
            "scheduled_at": self.scheduled_at.isoformat() if self.scheduled_at else None,
        }


# ── Edge rules ───────────────────────────────────────────────────────────────
# Each rule returns (hard_blockers, scheduled_blocker_or_None, scheduled_at).


def _inputs(readiness):
    if readiness is None:
        return SetupCounts(), FinalizationFlags(), ()
    return readiness.counts, readiness.finalization, tuple(readiness.blocking_issues)


def _area_blocker(area, counts, flags):
    req = AREA_REQUIREMENT_BY_AREA[area]
    code = area_blocking_code(req, counts, flags)
    if code:
        return Blocker(code, f"Add {req.label} or finalize {area}")
    return None


def _prep_to_staffing(state, now, readiness, tz):
    counts, flags, _ = _inputs(readiness)
    hard = []
    for area in ("roles", "locations"):
        missing = _area_blocker(area, counts, flags)
        if missing:
            hard.append(missing)
        elif not flags.is_finalized(area):
            hard.append(Blocker(f"{area}_not_finalized", f"Finalize {area} setup"))
    return hard, None, None


def _staffing_to_pre_show(state, now, readiness, tz):
    counts, flags, _ = _inputs(readiness)
    hard = [b for b in (_area_blocker(a, counts, flags) for a in ("team", "talent")) if b]
    return hard, None, None


def _pre_show_to_active(state, now, readiness, tz):
    _, _, issues = _inputs(readiness)
    by_code = {req.missing_code: req for req in AREA_REQUIREMENTS}
    hard = [
        Blocker(code, f"Add {by_code[code].label} or finalize {by_code[code].area}")
        for code in issues if code in by_code
    ]
    if state.rehearsal_start_date is None:
        hard.append(Blocker("missing_rehearsal_start_date", "Set the rehearsal start date"))
        return hard, None, None
    activation_at = local_midnight(state.rehearsal_start_date, tz)
    if now < activation_at:
        msg = f"Scheduled to activate at {format_in_timezone(activation_at, tz)}"
        return hard, Blocker("scheduled_activation", msg, SCHEDULED), activation_at
    return hard, None, None


def post_show_due_at(state, tz: ZoneInfo) -> datetime | None:
    """Local ``post_show_transition_hour`` on the day after the show ends."""
    if state.show_end_date is None:
        return None
    return local_time_on(
        state.show_end_date + timedelta(days=1), state.post_show_transition_hour, tz,
    )


def completion_due_at(state, tz: ZoneInfo) -> datetime | None:
    due = post_show_due_at(state, tz)
    if due is None:
        return None
    return due + timedelta(days=state.post_show_grace_days or 0)


def archive_due_at(state, tz: ZoneInfo, now: datetime) -> datetime:
    """Local midnight of the first archive anniversary after the show ended."""
    if state.show_end_date is not None:
        reference = state.show_end_date
    elif state.phase_updated_at is not None:
        reference = local_date(ensure_aware(state.phase_updated_at), tz)
    else:
        reference = local_date(now, tz)
    return local_midnight(next_anniversary(state.archive_month, state.archive_day, reference), tz)


def _active_to_post_show(state, now, readiness, tz):
    due = post_show_due_at(state, tz)
    if due is None:
        return [Blocker("missing_show_end_date", "Set the show end date")], None, None
    if now < due:
        msg = f"Scheduled to move to post-show at {format_in_timezone(due, tz)}"
        return [], Blocker("scheduled_post_show", msg, SCHEDULED), due
    return [], None, None


def _post_show_to_complete(state, now, readiness, tz):
    due = completion_due_at(state, tz)
    if due is None:
        return [Blocker("missing_show_end_date", "Set the show end date")], None, None
    if now < due:
        msg = f"Scheduled to complete at {format_in_timezone(due, tz)}"
        return [], Blocker("scheduled_completion", msg, SCHEDULED), due
    return [], None, None


def _complete_to_archived(state, now, readiness, tz):
    due = archive_due_at(state, tz, now)
    if now < due:
        msg = f"Scheduled to archive at {format_in_timezone(due, tz)}"
        return [], Blocker("scheduled_archive", msg, SCHEDULED), due
    return [], None, None


EDGE_RULES = {
    ("prep", "staffing"): _prep_to_staffing,
    ("staffing", "pre_show"): _staffing_to_pre_show,
    ("pre_show", "active"): _pre_show_to_active,
    ("active", "post_show"): _active_to_post_show,
    ("post_show", "complete"): _post_show_to_complete,
    ("complete", "archived"): _complete_to_archived,
}


def evaluate_transition(phase_state, now: datetime, readiness,
                        tz: ZoneInfo | None = None) -> TransitionResult:
    """Evaluate the next transition for *phase_state* at instant *now*."""
    current = phase_state.current_phase
    target = next_phase(current)
    if target is None:
        reason = "Project is archived" if current == TERMINAL_PHASE else f"Unknown phase {current!r}"
        return TransitionResult(False, current, None, (), reason)

    tz = tz or resolve_timezone(phase_state)
    now = ensure_aware(now)
    hard, scheduled, scheduled_at = EDGE_RULES[(current, target)](phase_state, now, readiness, tz)

    details = tuple(hard) + ((scheduled,) if scheduled else ())
    if not details:
        reason = f"Ready to move to {target}"
    elif hard:
        reason = f"{len(hard)} requirement(s) outstanding before {target}"
    else:
        reason = f"Waiting for scheduled move to {target}"
    return TransitionResult(
        can_transition=not details,
        current_phase=current,
        target_phase=target,
        blocker_details=details,
        reason=reason,
        scheduled_at=scheduled_at,
    )


# ── Phase action items ───────────────────────────────────────────────────────


def _item(item_id, title, description, category, priority, required):
    return {
        "id": item_id,
        "title": title,
        "description": description,
        "category": category,
        "priority": priority,
        "completed": False,
        "required_for_transition": required,
    }


def _prep_items(state, counts, flags, area_statuses):
    items = []
    for area, label in (("roles", "Project Roles"), ("locations", "Talent Locations")):
        if area_statuses.get(area) == "default_only" and not flags.is_finalized(area):
            items.append(_item(f"prep-{area}", f"Add {label}",
                               f"Define the {area} needed for this project",
                               "setup", "high", True))
        elif not flags.is_finalized(area):
            items.append(_item(f"prep-finalize-{area}", f"Finalize {label}",
                               f"Mark {area} configuration as complete when ready",
                               "setup", "medium", True))
    if state.rehearsal_start_date is None:
        items.append(_item("prep-rehearsal-date", "Set Rehearsal Start Date",
                           "Needed for the automatic move to active",
                           "setup", "medium", False))
    if state.show_end_date is None:
        items.append(_item("prep-show-end-date", "Set Show End Date",
                           "Needed for the automatic move to post-show",
                           "setup", "medium", False))
    return items


def _staffing_items(state, counts, flags, area_statuses):
    items = []
    for area, count, label in (("team", counts.team_assignment_count, "Team"),
                               ("talent", counts.talent_count, "Talent Roster")):
        if count == 0 and not flags.is_finalized(area):
            items.append(_item(f"staffing-{'assign-team' if area == 'team' else 'add-talent'}",
                               f"Populate {label}", f"No {area} on this project yet",
                               "staffing", "high", True))
        elif not flags.is_finalized(area):
            items.append(_item(f"staffing-finalize-{area}", f"Finalize {label}",
                               f"{count} {area} entries. Mark as complete when ready",
                               "staffing", "medium", False))
    if counts.talent_count > 0 and counts.escort_count == 0:
        items.append(_item("staffing-assign-escorts", "Assign Talent Escorts",
                           "Talent needs escorts before assignments are available",
                           "staffing", "high", False))
    if counts.team_assignment_count > 0 and counts.supervisor_count == 0:
        items.append(_item("staffing-assign-supervisor", "Assign a Supervisor",
                           "No supervisor for oversight and checkout controls",
                           "staffing", "medium", False))
    if counts.coordinator_count == 0 and counts.team_assignment_count > 2:
        items.append(_item("staffing-consider-coordinator", "Consider Adding a Coordinator",
                           "Larger teams benefit from a coordinator",
                           "staffing", "low", False))
    return items


def _pre_show_items(state, counts, flags, area_statuses):
    items = []
    if state.rehearsal_start_date is None:
        items.append(_item("preshow-rehearsal-date", "Set Rehearsal Start Date",
                           "The project activates at local midnight on this date",
                           "schedule", "high", True))
    if counts.escort_count == 0 and counts.talent_count > 0:
        items.append(_item("preshow-urgent-assignments", "Assign Escorts Before Showtime",
                           "Talent without escorts cannot be assigned once active",
                           "staffing", "high", False))
    items.append(_item("preshow-location-check", "Verify Locations",
                       "Confirm every tracked location is ready for rehearsal",
                       "operations", "low", False))
    return items


def _active_items(state, counts, flags, area_statuses):
    items = []
    if state.show_end_date is None:
        items.append(_item("active-show-end-date", "Set Show End Date",
                           "The project moves to post-show the morning after the show ends",
                           "schedule", "high", True))
    if counts.supervisor_count == 0:
        items.append(_item("active-supervisor-oversight", "Assign Supervisor Oversight",
                           "Supervisor checkout is unavailable without a supervisor",
                           "operations", "medium", False))
    return items


def _post_show_items(state, counts, flags, area_statuses):
    return [
        _item("postshow-project-summary", "Review Project Summary",
              "Confirm final hours and assignments before the project completes",
              "wrap_up", "medium", False),
    ]


def _complete_items(state, counts, flags, area_statuses):
    return [
        _item("complete-archive-settings", "Review Archive Settings",
              f"Archives on {state.archive_month:02d}-{state.archive_day:02d} after the show year",
              "wrap_up", "low", False),
    ]


_ACTION_ITEM_BUILDERS = {
    "prep": _prep_items,
    "staffing": _staffing_items,
    "pre_show": _pre_show_items,
    "active": _active_items,
    "post_show": _post_show_items,
    "complete": _complete_items,
}


def get_phase_action_items(phase_state, readiness) -> list[dict]:
    """Open to-do items for the project's current phase (empty when archived)."""
    builder = _ACTION_ITEM_BUILDERS.get(phase_state.current_phase)
    if builder is None:
        return []
    counts, flags, _ = _inputs(readiness)
    area_statuses = readiness.area_statuses if readiness is not None else {}
    return builder(phase_state, counts, flags, area_statuses)
