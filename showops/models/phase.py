"""
ShowOps Lifecycle Platform
Project lifecycle phase models.

Models:
    - PhaseState:              one row per project; current phase + schedule config
    - PhaseTransitionHistory:  append-only log of every phase change
    - SetupAreaFinalization:   per {project, area} "intentionally complete" flag

Lifecycle:
    prep → staffing → pre_show → active → post_show → complete → archived
    (linear; archived is terminal; backwards moves only via audited admin revert)
"""

from datetime import UTC, datetime

from sqlalchemy import event

from showops.models import db


def _utcnow():
    return datetime.now(UTC)


# ── Constants ────────────────────────────────────────────────────────────────

PHASE_ORDER = [
    "prep", "staffing", "pre_show", "active",
    "post_show", "complete", "archived",
]
PROJECT_PHASES = set(PHASE_ORDER)
INITIAL_PHASE = "prep"
TERMINAL_PHASE = "archived"

# Phases before the show goes live; readiness may report ready_for_activation.
PRE_ACTIVATION_PHASES = {"prep", "staffing", "pre_show"}

TRANSITION_TRIGGERS = {"manual", "automatic"}

SETUP_AREAS = ["roles", "locations", "team", "talent"]

DEFAULT_ARCHIVE_MONTH = 4
DEFAULT_ARCHIVE_DAY = 1
DEFAULT_POST_SHOW_TRANSITION_HOUR = 6
DEFAULT_POST_SHOW_GRACE_DAYS = 7


# ── Lifecycle Transition Guards ──────────────────────────────────────────────

PHASE_TRANSITIONS = {
    "prep":      ["staffing"],
    "staffing":  ["pre_show"],
    "pre_show":  ["active"],
    "active":    ["post_show"],
    "post_show": ["complete"],
    "complete":  ["archived"],
    "archived":  [],
}

# Edges an automatic (time-driven) trigger may fire.  The first two edges
# depend on setup work and are always requested by an administrator.
TIMED_TRANSITIONS = {
    ("pre_show", "active"),
    ("active", "post_show"),
    ("post_show", "complete"),
    ("complete", "archived"),
}


def validate_phase_transition(old_phase, new_phase):
    """Return True if the forward phase transition is on the graph."""
    return new_phase in PHASE_TRANSITIONS.get(old_phase, [])


def next_phase(phase):
    """Return the phase after *phase*, or None when terminal."""
    targets = PHASE_TRANSITIONS.get(phase, [])
    return targets[0] if targets else None


def phase_index(phase):
    return PHASE_ORDER.index(phase)


def is_timed_transition(old_phase, new_phase):
    return (old_phase, new_phase) in TIMED_TRANSITIONS


# ── Models ───────────────────────────────────────────────────────────────────


class PhaseState(db.Model):
    """
    Authoritative lifecycle state of one project.

    ``version`` is the compare-and-swap token: every phase write is
    ``UPDATE ... WHERE version = :expected`` and bumps it by one.
    """

    __tablename__ = "project_phase_states"
    __table_args__ = (
        db.CheckConstraint(
            "current_phase IN ('prep','staffing','pre_show','active',"
            "'post_show','complete','archived')",
            name="ck_phase_state_phase",
        ),
        db.CheckConstraint("archive_month BETWEEN 1 AND 12", name="ck_phase_state_archive_month"),
        db.CheckConstraint("archive_day BETWEEN 1 AND 31", name="ck_phase_state_archive_day"),
        db.CheckConstraint(
            "post_show_transition_hour BETWEEN 0 AND 23",
            name="ck_phase_state_post_show_hour",
        ),
        db.Index("idx_phase_state_phase", "current_phase"),
    )

    project_id = db.Column(
        db.Integer,
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        primary_key=True,
    )
    current_phase = db.Column(
        db.String(20), nullable=False, default=INITIAL_PHASE,
        comment="prep | staffing | pre_show | active | post_show | complete | archived",
    )
    phase_updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    auto_transitions_enabled = db.Column(db.Boolean, nullable=False, default=True)

    location = db.Column(db.String(255), nullable=True, comment="Free-text venue / city")
    timezone = db.Column(db.String(64), nullable=True, comment="IANA zone, e.g. America/New_York")
    rehearsal_start_date = db.Column(db.Date, nullable=True)
    show_end_date = db.Column(db.Date, nullable=True)

    archive_month = db.Column(db.Integer, nullable=False, default=DEFAULT_ARCHIVE_MONTH)
    archive_day = db.Column(db.Integer, nullable=False, default=DEFAULT_ARCHIVE_DAY)
    post_show_transition_hour = db.Column(
        db.Integer, nullable=False, default=DEFAULT_POST_SHOW_TRANSITION_HOUR,
    )
    post_show_grace_days = db.Column(
        db.Integer, nullable=False, default=DEFAULT_POST_SHOW_GRACE_DAYS,
        comment="Days after the post-show move before the project completes",
    )

    version = db.Column(db.Integer, nullable=False, default=1)

    project = db.relationship("Project", back_populates="phase_state")

    def to_dict(self):
        return {
            "project_id": self.project_id,
            "current_phase": self.current_phase,
            "phase_updated_at": self.phase_updated_at.isoformat() if self.phase_updated_at else None,
            "auto_transitions_enabled": self.auto_transitions_enabled,
            "location": self.location,
            "timezone": self.timezone,
            "rehearsal_start_date": (
                self.rehearsal_start_date.isoformat() if self.rehearsal_start_date else None
            ),
            "show_end_date": self.show_end_date.isoformat() if self.show_end_date else None,
            "archive_month": self.archive_month,
            "archive_day": self.archive_day,
            "post_show_transition_hour": self.post_show_transition_hour,
            "post_show_grace_days": self.post_show_grace_days,
            "version": self.version,
        }

    def __repr__(self):
        return f"<PhaseState project={self.project_id} phase={self.current_phase} v{self.version}>"


class PhaseTransitionHistory(db.Model):
    """
    Immutable record of one phase change.

    ``from_phase`` always equals the project's phase before the write;
    rows are never updated or deleted (see the mapper guards below).
    """

    __tablename__ = "phase_transition_history"
    __table_args__ = (
        db.CheckConstraint("\"trigger\" IN ('manual','automatic')", name="ck_phase_history_trigger"),
        db.Index("idx_phase_history_project_ts", "project_id", "transitioned_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer,
        db.ForeignKey("project_phase_states.project_id", ondelete="CASCADE"),
        nullable=False,
    )
    transitioned_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    transitioned_by = db.Column(
        db.String(150), nullable=False, default="system",
        comment="User identity, or 'system' for automatic transitions",
    )
    from_phase = db.Column(db.String(20), nullable=False)
    to_phase = db.Column(db.String(20), nullable=False)
    trigger = db.Column(db.String(20), nullable=False, comment="manual | automatic")
    reason = db.Column(db.Text, default="")
    # ``metadata`` is reserved on declarative classes; the column keeps the name.
    meta = db.Column("metadata", db.JSON, nullable=False, default=dict)

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "transitioned_at": self.transitioned_at.isoformat() if self.transitioned_at else None,
            "transitioned_by": self.transitioned_by,
            "from_phase": self.from_phase,
            "to_phase": self.to_phase,
            "trigger": self.trigger,
            "reason": self.reason,
            "metadata": self.meta or {},
        }

    def __repr__(self):
        return (
            f"<PhaseTransitionHistory {self.id}: project={self.project_id} "
            f"{self.from_phase} → {self.to_phase} ({self.trigger})>"
        )


@event.listens_for(PhaseTransitionHistory, "before_update")
def _refuse_history_update(mapper, connection, target):
    raise RuntimeError("phase_transition_history is append-only")


@event.listens_for(PhaseTransitionHistory, "before_delete")
def _refuse_history_delete(mapper, connection, target):
    raise RuntimeError("phase_transition_history is append-only")


class SetupAreaFinalization(db.Model):
    """Per-area finalization flag.  Created lazily, never deleted."""

    __tablename__ = "setup_area_finalizations"
    __table_args__ = (
        db.UniqueConstraint("project_id", "area", name="uq_setup_area_project_area"),
        db.CheckConstraint(
            "area IN ('roles','locations','team','talent')",
            name="ck_setup_area_area",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer,
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    area = db.Column(db.String(20), nullable=False, comment="roles | locations | team | talent")
    finalized = db.Column(db.Boolean, nullable=False, default=False)
    finalized_at = db.Column(db.DateTime(timezone=True), nullable=True)
    finalized_by = db.Column(db.String(150), nullable=True)

    def to_dict(self):
        return {
            "project_id": self.project_id,
            "area": self.area,
            "finalized": self.finalized,
            "finalized_at": self.finalized_at.isoformat() if self.finalized_at else None,
            "finalized_by": self.finalized_by,
        }

    def __repr__(self):
        return f"<SetupAreaFinalization project={self.project_id} {self.area}={self.finalized}>"
