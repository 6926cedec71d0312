"""
Setup counters: the readiness engine's view of the setup tables.

    get_setup_counts(project_id)        → SetupCounts
    get_finalization_flags(project_id)  → FinalizationFlags

Read-only.  Storage errors (SQLAlchemyError) propagate to readiness_service,
which turns them into READINESS_FETCH_ERROR.
"""

from sqlalchemy import func, select

from showops.models import db
from showops.models.phase import SetupAreaFinalization
from showops.models.setup import (
    ProjectLocation,
    RoleTemplate,
    TEAM_ROLES,
    TalentRosterEntry,
    TeamAssignment,
)
from showops.services.readiness_engine import FinalizationFlags, SetupCounts


def _count(stmt) -> int:
    return db.session.execute(stmt).scalar() or 0


def get_setup_counts(project_id: int) -> SetupCounts:
    role_templates = _count(
        select(func.count(RoleTemplate.id)).where(
            RoleTemplate.project_id == project_id,
            RoleTemplate.is_default.is_(False),
        )
    )
    locations = _count(
        select(func.count(ProjectLocation.id)).where(
            ProjectLocation.project_id == project_id,
            ProjectLocation.is_default.is_(False),
        )
    )
    talent = _count(
        select(func.count(TalentRosterEntry.id)).where(
            TalentRosterEntry.project_id == project_id,
        )
    )
    team_rows = db.session.execute(
        select(TeamAssignment.role, func.count(TeamAssignment.id))
        .where(TeamAssignment.project_id == project_id, TeamAssignment.role.in_(TEAM_ROLES))
        .group_by(TeamAssignment.role)
    ).all()
    by_role = {role: n for role, n in team_rows}

    return SetupCounts(
        role_template_count=role_templates,
        location_count=locations,
        team_assignment_count=sum(by_role.values()),
        talent_count=talent,
        supervisor_count=by_role.get("supervisor", 0),
        escort_count=by_role.get("talent_escort", 0),
        coordinator_count=by_role.get("coordinator", 0),
    )


def get_finalization_flags(project_id: int) -> FinalizationFlags:
    rows = db.session.execute(
        select(SetupAreaFinalization.area, SetupAreaFinalization.finalized)
        .where(SetupAreaFinalization.project_id == project_id)
    ).all()
    return FinalizationFlags(**{area: bool(finalized) for area, finalized in rows})
