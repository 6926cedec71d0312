"""
ShowOps Lifecycle Platform
Blueprint registry.

Shared helpers:
    paginate_query          limit/offset pagination from query params
    register_error_handlers maps service exceptions to standard error bodies
"""

import logging

from flask import request
from werkzeug.exceptions import HTTPException

from showops.core.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ReadinessFetchError,
    ReadinessNotCalculatedError,
    TransitionBlockedError,
    ValidationError,
)
from showops.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def paginate_query(query, default_limit=200, max_limit=1000):
    """Apply limit/offset pagination to a SQLAlchemy query.

    Query params:
        limit  — max items (default 200, capped at max_limit)
        offset — starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = query.count()
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    items = query.limit(limit).offset(offset).all()
    return items, total


def register_error_handlers(bp):
    """Attach the standard exception → api_error handlers to *bp*."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_INVALID, str(error), details=error.details)

    @bp.errorhandler(TransitionBlockedError)
    def _handle_blocked(error: TransitionBlockedError):
        return api_error(E.TRANSITION_BLOCKED, str(error), details={
            "target_phase": error.target_phase,
            "blockers": error.blockers,
            "scheduled_at": error.scheduled_at.isoformat() if error.scheduled_at else None,
        })

    @bp.errorhandler(InvalidTransitionError)
    def _handle_invalid_transition(error: InvalidTransitionError):
        return api_error(E.INVALID_TRANSITION, str(error), details={
            "from_phase": error.from_phase,
            "to_phase": error.to_phase,
        })

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(E.CONFLICT_STATE, str(error))

    @bp.errorhandler(PermissionDeniedError)
    def _handle_forbidden(error: PermissionDeniedError):
        return api_error(E.FORBIDDEN, str(error), details={
            "required_role": error.required_role,
            "role": error.actual_role,
        })

    @bp.errorhandler(ReadinessNotCalculatedError)
    def _handle_not_calculated(error: ReadinessNotCalculatedError):
        return api_error(E.READINESS_NOT_CALCULATED, str(error))

    @bp.errorhandler(ReadinessFetchError)
    def _handle_fetch_error(error: ReadinessFetchError):
        return api_error(E.READINESS_FETCH_ERROR, str(error))

    @bp.errorhandler(HTTPException)
    def _handle_http(error: HTTPException):
        return error

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")

    return bp
