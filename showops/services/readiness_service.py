"""
Readiness service: cache-aside wrapper around the readiness engine.

    get_readiness(project_id, refresh=False)   cache hit, else compute + store
    peek_readiness(project_id)                 cache only; never computes
    invalidate_readiness(project_id, reason)   drop the cached snapshot

Error contract:
    NotFoundError                 unknown project
    ReadinessNotCalculatedError   peek with no snapshot and no failed attempt
    ReadinessFetchError           the setup counters could not be read, now
                                  (get) or on the last attempt (peek)
"""

import logging

from sqlalchemy.exc import SQLAlchemyError

from showops.core.exceptions import ReadinessFetchError, ReadinessNotCalculatedError
from showops.models import db
from showops.models.audit import write_audit
from showops.services.project_service import get_phase_state
from showops.services.readiness_cache import get_readiness_cache
from showops.services.readiness_engine import ReadinessSnapshot, compute_readiness
from showops.services.setup_counters import get_finalization_flags, get_setup_counts

logger = logging.getLogger(__name__)


def calculate_readiness(project_id: int, phase: str) -> ReadinessSnapshot:
    """Read the counters and compute a fresh snapshot (no cache access)."""
    counts = get_setup_counts(project_id)
    flags = get_finalization_flags(project_id)
    return compute_readiness(project_id, counts, flags, phase)


def get_readiness(project_id: int, *, refresh: bool = False) -> ReadinessSnapshot:
    state = get_phase_state(project_id)
    cache = get_readiness_cache()

    if not refresh:
        cached = cache.get(project_id)
        if cached is not None and cached.phase == state.current_phase:
            return cached

    try:
        snapshot = calculate_readiness(project_id, state.current_phase)
    except SQLAlchemyError as exc:
        db.session.rollback()
        cache.record_failure(project_id, str(exc))
        logger.error(
            "Readiness calculation failed project_id=%s: %s", project_id, exc,
            extra={"project_id": project_id, "event_type": "readiness_fetch_error"},
        )
        raise ReadinessFetchError(project_id, detail=str(exc)) from exc

    cache.set(snapshot)
    cache.clear_failure(project_id)
    logger.debug("Readiness computed project_id=%s status=%s", project_id, snapshot.status)
    return snapshot


def peek_readiness(project_id: int) -> ReadinessSnapshot:
    """Return the cached snapshot without computing one."""
    get_phase_state(project_id)
    cache = get_readiness_cache()
    cached = cache.get(project_id)
    if cached is not None:
        return cached
    failure = cache.get_failure(project_id)
    if failure is not None:
        raise ReadinessFetchError(project_id, detail=failure.get("detail"))
    raise ReadinessNotCalculatedError(project_id)


def invalidate_readiness(project_id: int, reason: str, actor=None) -> None:
    """Drop the cached snapshot.  Manual invalidations (with an actor) are audited."""
    get_phase_state(project_id)
    get_readiness_cache().invalidate(project_id, reason)
    if actor is not None:
        write_audit(
            entity_type="readiness",
            entity_id=str(project_id),
            action="readiness.invalidate",
            actor=actor.user_id,
            project_id=project_id,
            diff={"reason": {"old": None, "new": reason}},
        )
        db.session.commit()
