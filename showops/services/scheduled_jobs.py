"""
ShowOps Lifecycle Platform
Scheduled Jobs.

Jobs:
    - phase_transition_sweep: fires due automatic phase transitions
    - readiness_cache_health: pings the readiness cache backend
"""

from __future__ import annotations

import logging
from typing import Any

from showops.services.scheduler_service import register_job

logger = logging.getLogger(__name__)


@register_job("phase_transition_sweep")
def sweep_phase_transitions(app) -> dict[str, Any]:
    """Evaluate every auto-enabled project and apply due automatic transitions."""
    from showops.services.phase_transition_service import sweep_automatic_transitions

    return sweep_automatic_transitions()


@register_job("readiness_cache_health")
def check_readiness_cache(app) -> dict[str, Any]:
    """Report whether the readiness cache backend is reachable."""
    from showops.services.readiness_cache import get_readiness_cache

    health = get_readiness_cache(app).health()
    if health.get("status") != "ok":
        logger.warning("Readiness cache unhealthy: %s", health)
    return health
