"""
Phase transition executor — the only writer of PhaseState.current_phase.

Business logic for:
    - Status:       current phase + freshly evaluated TransitionResult;
                    fires due automatic transitions on read
    - Execution:    manual (admin) and automatic (time-driven) transitions,
                    audited admin override and admin revert
    - Persistence:  optimistic compare-and-swap on PhaseState.version plus the
                    history append, in one transaction
    - History:      ordered, append-only transition log
    - Sweep:        periodic pass over every non-archived project with
                    automatic transitions enabled
    - Lookahead:    transitions scheduled within the next N hours

Idempotency: requesting the phase a project is already in is a no-op, and an
automatic request for a phase the project has already passed is a no-op too.
A concurrent writer that wins the CAS makes the loser raise ConflictError;
request_transition re-reads and retries once, which normally resolves to
that no-op.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from flask import current_app
from sqlalchemy import select, update

from showops.auth import SYSTEM_ACTOR, SYSTEM_ACTOR_ID, Actor
from showops.core.exceptions import (
    ConflictError,
    InvalidTransitionError,
    PermissionDeniedError,
    TransitionBlockedError,
    ValidationError,
)
from showops.models import db
from showops.models.phase import (
    PHASE_ORDER,
    PROJECT_PHASES,
    TERMINAL_PHASE,
    TRANSITION_TRIGGERS,
    PhaseState,
    PhaseTransitionHistory,
    is_timed_transition,
    phase_index,
    validate_phase_transition,
)
from showops.services.phase_engine import evaluate_transition, get_phase_action_items
from showops.services.project_service import get_phase_state
from showops.services.readiness_cache import get_readiness_cache
from showops.services.readiness_service import get_readiness
from showops.services.timezone_service import resolve_timezone_name
from showops.utils.helpers import ensure_aware

logger = logging.getLogger(__name__)


@dataclass
class TransitionOutcome:
    success: bool
    project_id: int
    previous_phase: str
    new_phase: str
    no_op: bool = False
    message: str = ""
    history_entry: PhaseTransitionHistory | None = None

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "project_id": self.project_id,
            "previous_phase": self.previous_phase,
            "new_phase": self.new_phase,
            "no_op": self.no_op,
            "message": self.message,
            "history_entry": self.history_entry.to_dict() if self.history_entry else None,
        }


def _now(now):
    return ensure_aware(now) if now is not None else datetime.now(UTC)


# ── Persistence ──────────────────────────────────────────────────────────────


def persist_phase_state(
    project_id: int,
    expected_version: int,
    new_phase: str,
    now: datetime,
    history_entry: PhaseTransitionHistory,
) -> PhaseTransitionHistory:
    """Write the new phase and its history row atomically.

    The UPDATE only matches when ``version`` still equals *expected_version*;
    otherwise another writer got there first and ConflictError is raised with
    nothing written.
    """
    result = db.session.execute(
        update(PhaseState)
        .where(
            PhaseState.project_id == project_id,
            PhaseState.version == expected_version,
        )
        .values(
            current_phase=new_phase,
            phase_updated_at=now,
            version=expected_version + 1,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.session.rollback()
        raise ConflictError("PhaseState", "version", expected_version)

    db.session.add(history_entry)
    db.session.commit()
    return history_entry


# ── Execution ────────────────────────────────────────────────────────────────


def _apply(project_id, previous, target, trigger, actor, reason, metadata, now, expected_version):
    entry = PhaseTransitionHistory(
        project_id=project_id,
        transitioned_at=now,
        transitioned_by=actor.user_id if trigger == "manual" else SYSTEM_ACTOR_ID,
        from_phase=previous,
        to_phase=target,
        trigger=trigger,
        reason=reason,
        meta=metadata,
    )
    persist_phase_state(project_id, expected_version, target, now, entry)
    get_readiness_cache().invalidate(project_id, "phase_change")
    logger.info(
        "Phase transition project_id=%s %s → %s trigger=%s by=%s",
        project_id, previous, target, trigger, entry.transitioned_by,
        extra={
            "project_id": project_id,
            "phase": target,
            "trigger": trigger,
            "event_type": "phase_transition",
        },
    )
    return TransitionOutcome(
        success=True,
        project_id=project_id,
        previous_phase=previous,
        new_phase=target,
        message=f"Phase transitioned: {previous} → {target}",
        history_entry=entry,
    )


def execute_transition(
    project_id: int,
    target_phase: str,
    *,
    trigger: str = "manual",
    reason: str = "",
    actor: Actor = SYSTEM_ACTOR,
    override_blockers: bool = False,
    revert: bool = False,
    now: datetime | None = None,
) -> TransitionOutcome:
    """Apply one transition after re-evaluating it against fresh state.

    Raises:
        ValidationError:         unknown phase or trigger
        NotFoundError:           unknown project
        InvalidTransitionError:  skip, backward move without revert, or an
                                 automatic trigger on a manual-only edge
        PermissionDeniedError:   manual request without admin access;
                                 override / revert without the admin role
        TransitionBlockedError:  open blockers and no authorized override
        ConflictError:           lost the compare-and-swap to another writer
    """
    if trigger not in TRANSITION_TRIGGERS:
        raise ValidationError(f"Unknown trigger: {trigger}", details={"trigger": "manual | automatic"})
    if target_phase not in PROJECT_PHASES:
        raise ValidationError(
            f"Unknown phase: {target_phase}",
            details={"target_phase": f"must be one of {PHASE_ORDER}"},
        )
    now = _now(now)

    state = get_phase_state(project_id)
    current = state.current_phase
    expected_version = state.version

    if target_phase == current:
        return TransitionOutcome(
            success=True, project_id=project_id, previous_phase=current,
            new_phase=current, no_op=True, message=f"Already in {current}",
        )

    if phase_index(target_phase) < phase_index(current):
        if trigger == "automatic":
            return TransitionOutcome(
                success=True, project_id=project_id, previous_phase=current,
                new_phase=current, no_op=True, message=f"Already past {target_phase}",
            )
        if not revert:
            raise InvalidTransitionError(
                current, target_phase,
                f"Moving backward from {current} to {target_phase} requires revert",
            )
        if not actor.is_admin:
            raise PermissionDeniedError("revert phase", "admin", actor.role)
        metadata = {"revert": True}
        return _apply(project_id, current, target_phase, trigger, actor,
                      reason or f"Reverted to {target_phase}", metadata, now, expected_version)

    if not validate_phase_transition(current, target_phase):
        raise InvalidTransitionError(
            current, target_phase, f"Cannot skip from {current} to {target_phase}",
        )
    if trigger == "automatic" and not is_timed_transition(current, target_phase):
        raise InvalidTransitionError(
            current, target_phase,
            f"{current} → {target_phase} requires a manual transition",
        )
    if trigger == "manual" and not actor.has_admin_access:
        raise PermissionDeniedError("phase transition", "in_house", actor.role)

    readiness = get_readiness(project_id, refresh=True)
    result = evaluate_transition(state, now, readiness)

    metadata = {"readiness_status": readiness.status}
    if not result.can_transition:
        if trigger == "manual" and override_blockers:
            if not actor.is_admin:
                raise PermissionDeniedError("override transition blockers", "admin", actor.role)
            metadata.update({"override": True, "bypassed_blockers": result.blockers})
            logger.warning(
                "Blockers overridden project_id=%s target=%s blockers=%s by=%s",
                project_id, target_phase, result.blockers, actor.user_id,
                extra={"project_id": project_id, "phase": target_phase,
                       "event_type": "phase_override"},
            )
        else:
            raise TransitionBlockedError(target_phase, result.blockers, result.scheduled_at)

    return _apply(project_id, current, target_phase, trigger, actor,
                  reason or result.reason, metadata, now, expected_version)


def request_transition(
    project_id: int,
    target_phase: str,
    *,
    trigger: str = "manual",
    reason: str = "",
    actor: Actor = SYSTEM_ACTOR,
    override_blockers: bool = False,
    revert: bool = False,
    now: datetime | None = None,
) -> TransitionOutcome:
    """execute_transition with one re-read-and-retry on ConflictError."""
    kwargs = dict(
        trigger=trigger, reason=reason, actor=actor,
        override_blockers=override_blockers, revert=revert, now=now,
    )
    try:
        return execute_transition(project_id, target_phase, **kwargs)
    except ConflictError:
        logger.info("Phase write conflict project_id=%s, retrying once", project_id,
                    extra={"project_id": project_id, "event_type": "phase_conflict"})
        db.session.expire_all()
        return execute_transition(project_id, target_phase, **kwargs)


def _advance_automatically(project_id: int, now: datetime) -> list[TransitionOutcome]:
    """Fire every due timed transition for one project, in order."""
    outcomes = []
    for _ in range(len(PHASE_ORDER)):
        state = get_phase_state(project_id)
        if not state.auto_transitions_enabled or state.current_phase == TERMINAL_PHASE:
            break
        result = evaluate_transition(state, now, get_readiness(project_id))
        if not result.can_transition or not is_timed_transition(state.current_phase, result.target_phase):
            break
        outcome = execute_transition(project_id, result.target_phase, trigger="automatic", now=now)
        if outcome.no_op:
            break
        outcomes.append(outcome)
    return outcomes


# ── Status / history ─────────────────────────────────────────────────────────


def get_transition_status(project_id: int, now: datetime | None = None,
                          *, apply_automatic: bool | None = None) -> dict:
    """Current phase and its TransitionResult, after firing any due automatic move."""
    now = _now(now)
    if apply_automatic is None:
        apply_automatic = current_app.config.get("AUTO_TRANSITION_ON_READ", True)

    applied = []
    if apply_automatic:
        try:
            applied = _advance_automatically(project_id, now)
        except (ConflictError, TransitionBlockedError) as exc:
            db.session.rollback()
            logger.info("Automatic transition on read skipped project_id=%s: %s", project_id, exc)

    state = get_phase_state(project_id)
    result = evaluate_transition(state, now, get_readiness(project_id))

    return {
        "project_id": project_id,
        "current_phase": state.current_phase,
        "phase_updated_at": ensure_aware(state.phase_updated_at).isoformat(),
        "auto_transitions_enabled": state.auto_transitions_enabled,
        "timezone": resolve_timezone_name(state.timezone, state.location),
        "transition_result": result.to_dict(),
        "applied_transitions": [o.to_dict() for o in applied],
    }


def get_action_items(project_id: int) -> dict:
    """To-do items for the current phase, driven by the readiness snapshot."""
    state = get_phase_state(project_id)
    readiness = get_readiness(project_id)
    items = get_phase_action_items(state, readiness)
    return {
        "project_id": project_id,
        "current_phase": state.current_phase,
        "items": items,
        "required_open": sum(1 for i in items if i["required_for_transition"]),
    }


def transition_history_query(project_id: int):
    get_phase_state(project_id)
    return (
        PhaseTransitionHistory.query
        .filter(PhaseTransitionHistory.project_id == project_id)
        .order_by(PhaseTransitionHistory.transitioned_at, PhaseTransitionHistory.id)
    )


def get_transition_history(project_id: int) -> list[PhaseTransitionHistory]:
    return transition_history_query(project_id).all()


# ── Sweep / lookahead ────────────────────────────────────────────────────────


def _auto_candidates() -> list[int]:
    return list(db.session.execute(
        select(PhaseState.project_id)
        .where(
            PhaseState.auto_transitions_enabled.is_(True),
            PhaseState.current_phase != TERMINAL_PHASE,
        )
        .order_by(PhaseState.project_id)
    ).scalars())


def sweep_automatic_transitions(now: datetime | None = None) -> dict:
    """Evaluate every auto-enabled, non-archived project and fire due moves.

    One project's failure is logged and counted; it never stops the sweep.
    """
    now = _now(now)
    results = {
        "evaluated": 0, "transitioned": 0, "scheduled": 0, "blocked": 0,
        "conflicts": 0, "failed": 0, "transitions": [], "errors": [],
    }

    for project_id in _auto_candidates():
        results["evaluated"] += 1
        try:
            outcomes = _advance_automatically(project_id, now)
            for outcome in outcomes:
                results["transitions"].append({
                    "project_id": project_id,
                    "from_phase": outcome.previous_phase,
                    "to_phase": outcome.new_phase,
                })
            if outcomes:
                results["transitioned"] += 1
                continue
            state = get_phase_state(project_id)
            result = evaluate_transition(state, now, get_readiness(project_id))
            if result.scheduled_at is not None and not result.has_hard_blockers:
                results["scheduled"] += 1
            else:
                results["blocked"] += 1
        except ConflictError:
            db.session.rollback()
            results["conflicts"] += 1
        except Exception as exc:
            db.session.rollback()
            results["failed"] += 1
            results["errors"].append({"project_id": project_id, "error": str(exc)})
            logger.exception("Transition sweep failed project_id=%s", project_id)

    logger.info(
        "Transition sweep: evaluated=%d transitioned=%d scheduled=%d blocked=%d conflicts=%d failed=%d",
        results["evaluated"], results["transitioned"], results["scheduled"],
        results["blocked"], results["conflicts"], results["failed"],
        extra={"event_type": "phase_sweep"},
    )
    return results


def list_scheduled_transitions(hours_ahead: int = 24, now: datetime | None = None) -> list[dict]:
    """Automatic transitions due within the next *hours_ahead* hours, soonest first."""
    if hours_ahead < 0:
        raise ValidationError("hours_ahead must be ≥ 0", details={"hours": "must be ≥ 0"})
    now = _now(now)
    horizon = now + timedelta(hours=hours_ahead)

    upcoming = []
    for project_id in _auto_candidates():
        state = get_phase_state(project_id)
        result = evaluate_transition(state, now, get_readiness(project_id))
        if result.scheduled_at is None or not now <= result.scheduled_at <= horizon:
            continue
        upcoming.append({
            "project_id": project_id,
            "project_name": state.project.name if state.project else None,
            "current_phase": state.current_phase,
            "target_phase": result.target_phase,
            "scheduled_at": result.scheduled_at.isoformat(),
            "has_hard_blockers": result.has_hard_blockers,
            "blockers": result.blockers,
        })
    upcoming.sort(key=lambda item: datetime.fromisoformat(item["scheduled_at"]))
    return upcoming
