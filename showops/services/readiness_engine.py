"""
Readiness / feature-availability engine.

Pure computation: ``compute_readiness(counts, flags, phase)`` maps setup
counters, finalization flags and the current phase to a ReadinessSnapshot.
No database access, no clock reads unless ``calculated_at`` is omitted.
Identical inputs give equal snapshots (``calculated_at`` is excluded from
equality), so snapshots are safe to cache and to use as test fixtures.

Structure:
    FEATURE_RULES       one predicate per field of ``Features``; checked at
                        import so a new feature cannot ship without a rule
    STATUS_PRECEDENCE   ordered (status, predicate) table; first match wins
    AREA_REQUIREMENTS   roles → locations → team → talent; drives the order
                        of blocking issue codes
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import UTC, datetime
from typing import Callable, NamedTuple

from showops.models.phase import PRE_ACTIVATION_PHASES, SETUP_AREAS

# ── Inputs ───────────────────────────────────────────────────────────────────


def _count(value) -> int:
    try:
        return max(int(value or 0), 0)
    except (TypeError, ValueError):
        return 0


@dataclass(frozen=True)
class SetupCounts:
    role_template_count: int = 0
    location_count: int = 0
    team_assignment_count: int = 0
    talent_count: int = 0
    supervisor_count: int = 0
    escort_count: int = 0
    coordinator_count: int = 0

    def normalized(self) -> SetupCounts:
        """Copy with None / negative / junk values coerced to 0."""
        return SetupCounts(**{f.name: _count(getattr(self, f.name)) for f in fields(self)})

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class FinalizationFlags:
    roles: bool = False
    locations: bool = False
    team: bool = False
    talent: bool = False

    def is_finalized(self, area: str) -> bool:
        return bool(getattr(self, area, False))

    @property
    def all_finalized(self) -> bool:
        return all(self.is_finalized(area) for area in SETUP_AREAS)

    def to_dict(self) -> dict:
        return {area: self.is_finalized(area) for area in SETUP_AREAS}


# ── Features ─────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Features:
    team_management: bool = False
    talent_tracking: bool = False
    scheduling: bool = False
    time_tracking: bool = False
    assignments: bool = False
    supervisor_checkout: bool = False
    notifications: bool = False

    @property
    def all_available(self) -> bool:
        return all(getattr(self, f.name) for f in fields(self))

    def available(self) -> list[str]:
        return [f.name for f in fields(self) if getattr(self, f.name)]

    def to_dict(self) -> dict:
        return asdict(self)


FEATURE_RULES: dict[str, Callable[[SetupCounts], bool]] = {
    "team_management": lambda c: c.role_template_count >= 1,
    "talent_tracking": lambda c: c.talent_count >= 1,
    "scheduling": lambda c: c.team_assignment_count >= 1 and c.talent_count >= 1,
    "time_tracking": lambda c: c.team_assignment_count >= 1,
    "assignments": lambda c: c.talent_count >= 1 and c.escort_count >= 1,
    "supervisor_checkout": lambda c: c.supervisor_count >= 1 and c.escort_count >= 1,
    "notifications": lambda c: c.team_assignment_count >= 1 or c.talent_count >= 1,
}


def _check_feature_rules() -> None:
    declared = {f.name for f in fields(Features)}
    if declared != set(FEATURE_RULES):
        missing = sorted(declared - set(FEATURE_RULES))
        extra = sorted(set(FEATURE_RULES) - declared)
        raise RuntimeError(f"FEATURE_RULES out of sync: missing={missing} extra={extra}")


_check_feature_rules()


def evaluate_features(counts: SetupCounts) -> Features:
    return Features(**{name: bool(rule(counts)) for name, rule in FEATURE_RULES.items()})


# ── Blocking issues ──────────────────────────────────────────────────────────


class AreaRequirement(NamedTuple):
    area: str
    count_field: str
    missing_code: str
    label: str


AREA_REQUIREMENTS = (
    AreaRequirement("roles", "role_template_count", "missing_role_templates", "role templates"),
    AreaRequirement("locations", "location_count", "missing_locations", "locations"),
    AreaRequirement("team", "team_assignment_count", "missing_team_assignments", "team assignments"),
    AreaRequirement("talent", "talent_count", "missing_talent", "talent roster entries"),
)
AREA_REQUIREMENT_BY_AREA = {req.area: req for req in AREA_REQUIREMENTS}


def area_blocking_code(requirement: AreaRequirement, counts: SetupCounts,
                       flags: FinalizationFlags) -> str | None:
    """Missing-items code for one area, or None when satisfied.

    A finalized area is satisfied even with zero items: an empty but
    deliberately finalized area is a valid end state.
    """
    if flags.is_finalized(requirement.area):
        return None
    if getattr(counts, requirement.count_field) > 0:
        return None
    return requirement.missing_code


def blocking_issues_for(counts: SetupCounts, flags: FinalizationFlags) -> tuple[str, ...]:
    codes = (area_blocking_code(req, counts, flags) for req in AREA_REQUIREMENTS)
    return tuple(code for code in codes if code)


# ── Status precedence ────────────────────────────────────────────────────────

STATUS_SETUP_REQUIRED = "setup_required"
STATUS_READY_FOR_ACTIVATION = "ready_for_activation"
STATUS_PRODUCTION_READY = "production_ready"
STATUS_OPERATIONAL = "operational"
STATUS_ACTIVE = "active"

READINESS_STATUSES = {
    STATUS_SETUP_REQUIRED,
    STATUS_READY_FOR_ACTIVATION,
    STATUS_PRODUCTION_READY,
    STATUS_OPERATIONAL,
    STATUS_ACTIVE,
}


class StatusInputs(NamedTuple):
    phase: str
    flags: FinalizationFlags
    features: Features
    blocking_issues: tuple[str, ...]


STATUS_PRECEDENCE: tuple[tuple[str, Callable[[StatusInputs], bool]], ...] = (
    (STATUS_SETUP_REQUIRED, lambda s: bool(s.blocking_issues)),
    (STATUS_READY_FOR_ACTIVATION,
     lambda s: s.flags.all_finalized and s.phase in PRE_ACTIVATION_PHASES),
    (STATUS_PRODUCTION_READY, lambda s: s.phase == "active" and s.features.all_available),
    (STATUS_OPERATIONAL, lambda s: s.phase == "active"),
    (STATUS_ACTIVE, lambda s: True),
)

if {status for status, _ in STATUS_PRECEDENCE} != READINESS_STATUSES:
    raise RuntimeError("STATUS_PRECEDENCE must list every readiness status exactly once")


def derive_status(inputs: StatusInputs) -> str:
    for status, predicate in STATUS_PRECEDENCE:
        if predicate(inputs):
            return status
    return STATUS_ACTIVE


# ── Guidance ─────────────────────────────────────────────────────────────────

ROLES_LOCATIONS_STATES = ("default_only", "configured", "finalized")
TEAM_TALENT_STATES = ("none", "partial", "finalized")


def area_statuses_for(counts: SetupCounts, flags: FinalizationFlags) -> dict[str, str]:
    statuses = {}
    for req in AREA_REQUIREMENTS:
        empty, started, finalized = (
            ROLES_LOCATIONS_STATES if req.area in ("roles", "locations") else TEAM_TALENT_STATES
        )
        if flags.is_finalized(req.area):
            statuses[req.area] = finalized
        else:
            statuses[req.area] = started if getattr(counts, req.count_field) > 0 else empty
    return statuses


def _todo(todo_id, area, priority, title, description) -> dict:
    return {
        "id": todo_id,
        "area": area,
        "priority": priority,
        "title": title,
        "description": description,
    }


def next_steps_for(counts: SetupCounts, flags: FinalizationFlags,
                   blocking_issues: tuple[str, ...]) -> tuple[dict, ...]:
    """Ordered to-do list: critical (blocking) first, then finalization, then nice-to-haves."""
    steps = []
    for req in AREA_REQUIREMENTS:
        if req.missing_code in blocking_issues:
            steps.append(_todo(
                f"{req.area}-missing", req.area, "critical",
                f"Add {req.label}",
                f"No {req.label} configured yet. Add at least one, or finalize "
                f"the {req.area} area if none are needed.",
            ))
    for req in AREA_REQUIREMENTS:
        if req.missing_code not in blocking_issues and not flags.is_finalized(req.area):
            steps.append(_todo(
                f"{req.area}-finalize", req.area, "important",
                f"Finalize {req.area}",
                f"Mark {req.label} as complete once setup is done.",
            ))
    if counts.talent_count > 0 and counts.escort_count == 0:
        steps.append(_todo(
            "team-escorts", "team", "important",
            "Assign talent escorts",
            "Talent assignments stay unavailable until at least one escort is on the team.",
        ))
    if counts.team_assignment_count > 0 and counts.supervisor_count == 0:
        steps.append(_todo(
            "team-supervisor", "team", "optional",
            "Assign a supervisor",
            "Supervisor checkout needs a supervisor and an escort.",
        ))
    return tuple(steps)


# ── Snapshot ─────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ReadinessSnapshot:
    project_id: int
    phase: str
    status: str
    features: Features
    blocking_issues: tuple[str, ...]
    counts: SetupCounts
    finalization: FinalizationFlags
    area_statuses: dict = field(default_factory=dict)
    next_steps: tuple[dict, ...] = ()
    calculated_at: datetime | None = field(default=None, compare=False)

    @property
    def available_features(self) -> list[str]:
        return self.features.available()

    def to_dict(self) -> dict:
        return {
            "project_id": self.project_id,
            "phase": self.phase,
            "status": self.status,
            "features": self.features.to_dict(),
            "available_features": self.available_features,
            "blocking_issues": list(self.blocking_issues),
            "counts": self.counts.to_dict(),
            "finalization": self.finalization.to_dict(),
            "area_statuses": dict(self.area_statuses),
            "next_steps": [dict(step) for step in self.next_steps],
            "calculated_at": self.calculated_at.isoformat() if self.calculated_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> ReadinessSnapshot:
        calculated_at = data.get("calculated_at")
        return cls(
            project_id=data["project_id"],
            phase=data["phase"],
            status=data["status"],
            features=Features(**data.get("features", {})),
            blocking_issues=tuple(data.get("blocking_issues", ())),
            counts=SetupCounts(**data.get("counts", {})),
            finalization=FinalizationFlags(**data.get("finalization", {})),
            area_statuses=dict(data.get("area_statuses", {})),
            next_steps=tuple(data.get("next_steps", ())),
            calculated_at=datetime.fromisoformat(calculated_at) if calculated_at else None,
        )


def compute_readiness(
    project_id: int,
    counts: SetupCounts,
    flags: FinalizationFlags,
    phase: str,
    calculated_at: datetime | None = None,
) -> ReadinessSnapshot:
    """Build the readiness snapshot for one project.  Never raises on data shape."""
    counts = (counts or SetupCounts()).normalized()
    flags = flags or FinalizationFlags()

    features = evaluate_features(counts)
    blocking = blocking_issues_for(counts, flags)
    status = derive_status(StatusInputs(phase, flags, features, blocking))

    return ReadinessSnapshot(
        project_id=project_id,
        phase=phase,
        status=status,
        features=features,
        blocking_issues=blocking,
        counts=counts,
        finalization=flags,
        area_statuses=area_statuses_for(counts, flags),
        next_steps=next_steps_for(counts, flags, blocking),
        calculated_at=calculated_at or datetime.now(UTC),
    )
