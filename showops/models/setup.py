"""
ShowOps Lifecycle Platform
Setup-area source models.

Models:
    - RoleTemplate:        staff role definitions for the show
    - ProjectLocation:     venues / rooms used during the show
    - TeamAssignment:      a staff member assigned to the project in a team role
    - TalentRosterEntry:   a performer on the project roster

These rows are written by the surrounding application; the lifecycle core only
counts them.  Inserting or deleting any of them drops the project's cached
readiness snapshot once the transaction commits.
"""

import logging
from datetime import UTC, datetime

from flask import has_app_context
from sqlalchemy import event
from sqlalchemy.orm import Session

from showops.models import db

logger = logging.getLogger(__name__)


def _utcnow():
    return datetime.now(UTC)


# ── Constants ────────────────────────────────────────────────────────────────

TEAM_ROLES = {"supervisor", "talent_escort", "coordinator", "crew"}


# ── Models ───────────────────────────────────────────────────────────────────


class RoleTemplate(db.Model):
    __tablename__ = "role_templates"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(100), nullable=False)
    is_default = db.Column(
        db.Boolean, nullable=False, default=False,
        comment="Seeded defaults do not count as configured roles",
    )
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)


class ProjectLocation(db.Model):
    __tablename__ = "project_locations"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(150), nullable=False)
    is_default = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)


class TeamAssignment(db.Model):
    __tablename__ = "team_assignments"
    __table_args__ = (
        db.CheckConstraint(
            "role IN (" + ",".join(f"'{r}'" for r in sorted(TEAM_ROLES)) + ")",
            name="ck_team_assignment_role",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    user_ref = db.Column(db.String(150), nullable=False)
    role = db.Column(db.String(30), nullable=False, default="crew",
                     comment="supervisor | talent_escort | coordinator | crew")
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)


class TalentRosterEntry(db.Model):
    __tablename__ = "talent_roster_entries"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    talent_ref = db.Column(db.String(150), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)


# ── Readiness invalidation on commit ─────────────────────────────────────────

_INVALIDATION_REASON_BY_MODEL = {
    RoleTemplate: "role_change",
    ProjectLocation: "location_change",
    TeamAssignment: "team_change",
    TalentRosterEntry: "talent_change",
}

_PENDING_KEY = "readiness_invalidations"


@event.listens_for(Session, "after_flush")
def _collect_setup_changes(session, flush_context):
    """Remember which projects had setup rows added or removed in this flush."""
    pending = session.info.setdefault(_PENDING_KEY, set())
    for obj in list(session.new) + list(session.deleted):
        reason = _INVALIDATION_REASON_BY_MODEL.get(type(obj))
        if reason and obj.project_id is not None:
            pending.add((obj.project_id, reason))


@event.listens_for(Session, "after_commit")
def _flush_readiness_invalidations(session):
    pending = session.info.pop(_PENDING_KEY, None)
    if not pending or not has_app_context():
        return
    from showops.services.readiness_cache import get_readiness_cache

    cache = get_readiness_cache()
    for project_id, reason in sorted(pending):
        cache.invalidate(project_id, reason)


@event.listens_for(Session, "after_rollback")
def _discard_readiness_invalidations(session):
    session.info.pop(_PENDING_KEY, None)
