"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and map each to a stable error code via ``showops.utils.errors.api_error``.

Usage:
    from showops.core.exceptions import NotFoundError, TransitionBlockedError

    raise NotFoundError(resource="Project", resource_id=42)
    raise TransitionBlockedError("staffing", ["missing_role_templates"])
"""

from datetime import datetime


class NotFoundError(Exception):
    """Raised when a project (or its phase state) does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Project", "PhaseState").
        resource_id: The key that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is well-formed but violates a business rule.

    Configuration errors (e.g. an archive day that does not exist in the
    archive month) are rejected before any write.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown; keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when a concurrent writer changed the row first.

    Maps to HTTP 409.  Callers re-read and retry once.
    """

    def __init__(self, resource: str, field: str, value: str | int | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} was modified concurrently ({field}={value!r} is stale)"
        super().__init__(msg)


class PermissionDeniedError(Exception):
    """Raised when the acting user's role does not allow the operation."""

    def __init__(self, action: str, required_role: str, actual_role: str | None = None) -> None:
        self.action = action
        self.required_role = required_role
        self.actual_role = actual_role
        super().__init__(f"{action} requires role '{required_role}'")


class TransitionBlockedError(Exception):
    """Raised when a requested phase change still has open blockers.

    Soft failure: the caller may retry once blockers clear, or an admin may
    override.  ``blockers`` is the full ordered list, never just the first.
    """

    def __init__(
        self,
        target_phase: str,
        blockers: list[str],
        scheduled_at: datetime | None = None,
    ) -> None:
        self.target_phase = target_phase
        self.blockers = list(blockers)
        self.scheduled_at = scheduled_at
        super().__init__(
            f"Transition to {target_phase} blocked: {len(self.blockers)} blocker(s)"
        )


class InvalidTransitionError(Exception):
    """Raised for moves off the phase graph (skips, un-audited reverts, terminal)."""

    def __init__(self, from_phase: str, to_phase: str, message: str | None = None) -> None:
        self.from_phase = from_phase
        self.to_phase = to_phase
        super().__init__(message or f"Invalid transition: {from_phase} → {to_phase}")


class ReadinessNotCalculatedError(Exception):
    """No readiness computation has happened yet for the project."""

    def __init__(self, project_id: int) -> None:
        self.project_id = project_id
        super().__init__(f"Readiness not yet calculated for project {project_id}")


class ReadinessFetchError(Exception):
    """Readiness computation was attempted and the setup counters could not be read."""

    def __init__(self, project_id: int, detail: str | None = None) -> None:
        self.project_id = project_id
        self.detail = detail
        super().__init__(f"Readiness calculation failed for project {project_id}")
