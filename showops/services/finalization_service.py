"""
Finalization workflow: per-area "intentionally complete" flags.

Business rules:
    - areas: roles, locations, team, talent
    - records are created lazily on first finalize and never deleted
    - finalizing an area with zero items is allowed: an empty, deliberately
      finalized area is a valid end state and satisfies readiness
    - finalize needs admin access (admin / in_house); unfinalize needs admin
    - re-finalizing an already finalized area is a no-op (keeps the original
      finalized_at / finalized_by)
    - every change is audited and drops the cached readiness snapshot
"""

import logging
from datetime import UTC, datetime

from sqlalchemy import select

from showops.core.exceptions import PermissionDeniedError, ValidationError
from showops.models import db
from showops.models.audit import write_audit
from showops.models.phase import SETUP_AREAS, SetupAreaFinalization
from showops.services.project_service import get_phase_state
from showops.services.readiness_cache import get_readiness_cache

logger = logging.getLogger(__name__)


def _validate_area(area):
    if area not in SETUP_AREAS:
        raise ValidationError(
            f"Unknown setup area: {area}",
            details={"area": f"must be one of {SETUP_AREAS}"},
        )


def _get_record(project_id, area):
    return db.session.execute(
        select(SetupAreaFinalization).where(
            SetupAreaFinalization.project_id == project_id,
            SetupAreaFinalization.area == area,
        )
    ).scalar_one_or_none()


def get_finalization_status(project_id: int) -> dict[str, dict]:
    """All four areas, including ones never touched (reported as not finalized)."""
    get_phase_state(project_id)
    rows = db.session.execute(
        select(SetupAreaFinalization).where(SetupAreaFinalization.project_id == project_id)
    ).scalars()
    by_area = {r.area: r.to_dict() for r in rows}
    return {
        area: by_area.get(area, {
            "project_id": project_id, "area": area, "finalized": False,
            "finalized_at": None, "finalized_by": None,
        })
        for area in SETUP_AREAS
    }


def finalize(project_id: int, area: str, actor, now: datetime | None = None) -> SetupAreaFinalization:
    _validate_area(area)
    if not actor.has_admin_access:
        raise PermissionDeniedError("finalize", "in_house", actor.role)
    get_phase_state(project_id)

    record = _get_record(project_id, area)
    if record is not None and record.finalized:
        return record
    if record is None:
        record = SetupAreaFinalization(project_id=project_id, area=area)
        db.session.add(record)

    record.finalized = True
    record.finalized_at = now or datetime.now(UTC)
    record.finalized_by = actor.user_id
    db.session.flush()
    write_audit(
        entity_type="setup_area",
        entity_id=f"{project_id}:{area}",
        action="setup_area.finalize",
        actor=actor.user_id,
        project_id=project_id,
        diff={"finalized": {"old": False, "new": True}},
    )
    db.session.commit()

    get_readiness_cache().invalidate(project_id, "finalization_change")
    logger.info("Setup area finalized project_id=%s area=%s by=%s", project_id, area, actor.user_id,
                extra={"project_id": project_id, "event_type": "setup_area_finalized"})
    return record


def unfinalize(project_id: int, area: str, actor) -> SetupAreaFinalization:
    _validate_area(area)
    if not actor.is_admin:
        raise PermissionDeniedError("unfinalize", "admin", actor.role)
    get_phase_state(project_id)

    record = _get_record(project_id, area)
    if record is None:
        record = SetupAreaFinalization(project_id=project_id, area=area, finalized=False)
        db.session.add(record)
        db.session.commit()
        return record
    if not record.finalized:
        return record

    record.finalized = False
    record.finalized_at = None
    record.finalized_by = None
    write_audit(
        entity_type="setup_area",
        entity_id=f"{project_id}:{area}",
        action="setup_area.unfinalize",
        actor=actor.user_id,
        project_id=project_id,
        diff={"finalized": {"old": True, "new": False}},
    )
    db.session.commit()

    get_readiness_cache().invalidate(project_id, "finalization_change")
    logger.info("Setup area unfinalized project_id=%s area=%s by=%s", project_id, area, actor.user_id,
                extra={"project_id": project_id, "event_type": "setup_area_unfinalized"})
    return record
