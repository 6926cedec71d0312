"""Project service — creates a project together with its PhaseState.

Every project owns exactly one PhaseState; both rows are written in the
same transaction here and nowhere else.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from types import SimpleNamespace

from flask import current_app
from sqlalchemy import select

from showops.core.exceptions import NotFoundError, ValidationError
from showops.models import db
from showops.models.audit import write_audit
from showops.models.phase import (
    DEFAULT_ARCHIVE_DAY,
    DEFAULT_ARCHIVE_MONTH,
    DEFAULT_POST_SHOW_GRACE_DAYS,
    DEFAULT_POST_SHOW_TRANSITION_HOUR,
    INITIAL_PHASE,
    PhaseState,
)
from showops.models.project import Project

logger = logging.getLogger(__name__)


def get_project(project_id: int) -> Project:
    project = db.session.get(Project, project_id)
    if project is None:
        raise NotFoundError(resource="Project", resource_id=project_id)
    return project


def get_phase_state(project_id: int) -> PhaseState:
    """Load the project's PhaseState or raise NotFoundError."""
    state = db.session.get(PhaseState, project_id)
    if state is None:
        raise NotFoundError(resource="Project", resource_id=project_id)
    return state


def list_projects(phase: str | None = None) -> list[Project]:
    stmt = select(Project).order_by(Project.id)
    if phase:
        stmt = stmt.join(PhaseState).where(PhaseState.current_phase == phase)
    return list(db.session.execute(stmt).scalars())


def _phase_defaults() -> dict:
    cfg = current_app.config
    return {
        "archive_month": cfg.get("DEFAULT_ARCHIVE_MONTH", DEFAULT_ARCHIVE_MONTH),
        "archive_day": cfg.get("DEFAULT_ARCHIVE_DAY", DEFAULT_ARCHIVE_DAY),
        "post_show_transition_hour": cfg.get(
            "DEFAULT_POST_SHOW_TRANSITION_HOUR", DEFAULT_POST_SHOW_TRANSITION_HOUR,
        ),
        "post_show_grace_days": cfg.get("DEFAULT_POST_SHOW_GRACE_DAYS", DEFAULT_POST_SHOW_GRACE_DAYS),
    }


def create_project(data: dict, actor=None, now: datetime | None = None) -> Project:
    """Create a project in the initial phase.

    Optional phase configuration keys in *data* (location, timezone, dates,
    archive settings) are validated with the same rules as a configuration
    update.
    """
    from showops.services.phase_configuration_service import (
        CONFIGURABLE_FIELDS,
        validate_configuration,
    )

    name = str(data.get("name", "") or "").strip()
    if not name:
        raise ValidationError("name is required", details={"name": "required"})
    if len(name) > 200:
        raise ValidationError("name too long", details={"name": "must be ≤ 200 characters"})

    settings = _phase_defaults()
    # Fields absent from the body are checked against the defaults they get.
    settings.update(validate_configuration(
        {k: v for k, v in data.items() if k in CONFIGURABLE_FIELDS},
        current=SimpleNamespace(**settings),
    ))

    now = now or datetime.now(UTC)
    project = Project(name=name, description=str(data.get("description", "") or ""), created_at=now)
    project.phase_state = PhaseState(
        current_phase=INITIAL_PHASE,
        phase_updated_at=now,
        version=1,
        **settings,
    )
    db.session.add(project)
    db.session.flush()
    write_audit(
        entity_type="project",
        entity_id=str(project.id),
        action="project.create",
        actor=actor.user_id if actor else "system",
        project_id=project.id,
        diff={"name": {"old": None, "new": name}},
    )
    db.session.commit()
    logger.info("Project created id=%s name=%s", project.id, name,
                extra={"project_id": project.id, "event_type": "project_created"})
    return project
