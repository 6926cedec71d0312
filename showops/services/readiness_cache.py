"""
Readiness Cache — one memoized ReadinessSnapshot per project.

Provides:
  - get / set / invalidate(reason) on the last snapshot for a project
  - a failure marker per project, so callers can tell "never calculated"
    from "the last calculation failed"
  - last-write-wins on ``calculated_at``: an older snapshot never replaces
    a newer one

Uses Redis when READINESS_CACHE_URL (or REDIS_URL) points at one, falls back
to an in-process dict for development/testing.  The app factory builds one
instance and stores it in ``app.extensions["readiness_cache"]``; tests swap it.
"""

import json
import logging
import time
from datetime import UTC, datetime

import redis

from flask import current_app

from showops.core.exceptions import ValidationError
from showops.services.readiness_engine import ReadinessSnapshot

logger = logging.getLogger(__name__)

INVALIDATION_REASONS = {
    "role_change",
    "location_change",
    "team_change",
    "talent_change",
    "finalization_change",
    "phase_change",
    "configuration_change",
    "manual",
}

DEFAULT_TTL = 3600
FAILURE_TTL = 3600
KEY_PREFIX = "readiness:"


# ── In-memory backend ────────────────────────────────────────────────────────


class _MemoryBackend:
    """Simple dict cache for dev/testing (same method names as redis-py)."""

    def __init__(self):
        self._store: dict = {}  # key → (value_json, expire_ts)

    def get(self, key):
        entry = self._store.get(key)
        if entry is None:
            return None
        val, expires = entry
        if expires and time.time() > expires:
            self._store.pop(key, None)
            return None
        return val

    def setex(self, key, ttl_seconds, value):
        self._store[key] = (value, time.time() + ttl_seconds)

    def delete(self, *keys):
        for k in keys:
            self._store.pop(k, None)

    def scan_iter(self, match="*"):
        """Glob matching for 'prefix*' patterns only."""
        if match.endswith("*"):
            prefix = match[:-1]
            return [k for k in list(self._store) if k.startswith(prefix)]
        return [k for k in list(self._store) if k == match]

    def ping(self):
        return True


# ── Cache ────────────────────────────────────────────────────────────────────


class ReadinessCache:
    """Key-value store of ReadinessSnapshots keyed by project id."""

    def __init__(self, backend=None, ttl=DEFAULT_TTL, backend_name="memory"):
        self._backend = backend if backend is not None else _MemoryBackend()
        self.ttl = ttl
        self.backend_name = backend_name

    @staticmethod
    def _key(project_id):
        return f"{KEY_PREFIX}snapshot:{project_id}"

    @staticmethod
    def _failure_key(project_id):
        return f"{KEY_PREFIX}failed:{project_id}"

    def _load(self, key):
        raw = self._backend.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            logger.warning("Dropping unreadable cache entry %s", key)
            self._backend.delete(key)
            return None

    # ── Snapshots ────────────────────────────────────────────────────────

    def get(self, project_id) -> ReadinessSnapshot | None:
        """Return the cached snapshot, or None on miss."""
        data = self._load(self._key(project_id))
        if data is None:
            return None
        try:
            return ReadinessSnapshot.from_dict(data)
        except (KeyError, TypeError, ValueError):
            logger.warning("Dropping malformed readiness snapshot project_id=%s", project_id)
            self._backend.delete(self._key(project_id))
            return None

    def set(self, snapshot: ReadinessSnapshot) -> bool:
        """Store *snapshot* unless a newer one is already cached.

        Returns True when the snapshot was written.
        """
        existing = self._load(self._key(snapshot.project_id))
        if existing and existing.get("calculated_at") and snapshot.calculated_at:
            cached_at = datetime.fromisoformat(existing["calculated_at"])
            if cached_at > snapshot.calculated_at:
                logger.debug(
                    "Skipping stale readiness write project_id=%s (cached %s > new %s)",
                    snapshot.project_id, cached_at.isoformat(), snapshot.calculated_at.isoformat(),
                )
                return False
        self._backend.setex(
            self._key(snapshot.project_id), self.ttl, json.dumps(snapshot.to_dict()),
        )
        return True

    def invalidate(self, project_id, reason: str) -> None:
        """Drop the project's snapshot; the next read recomputes."""
        if reason not in INVALIDATION_REASONS:
            raise ValidationError(
                f"Unknown invalidation reason: {reason}",
                details={"reason": f"must be one of {sorted(INVALIDATION_REASONS)}"},
            )
        self._backend.delete(self._key(project_id))
        logger.info(
            "Readiness invalidated project_id=%s reason=%s", project_id, reason,
            extra={"project_id": project_id, "reason": reason, "event_type": "readiness_invalidated"},
        )

    # ── Failure markers ──────────────────────────────────────────────────

    def record_failure(self, project_id, detail: str) -> None:
        payload = {"detail": detail, "failed_at": datetime.now(UTC).isoformat()}
        self._backend.setex(self._failure_key(project_id), FAILURE_TTL, json.dumps(payload))

    def get_failure(self, project_id) -> dict | None:
        return self._load(self._failure_key(project_id))

    def clear_failure(self, project_id) -> None:
        self._backend.delete(self._failure_key(project_id))

    # ── Maintenance ──────────────────────────────────────────────────────

    def clear(self) -> None:
        """Remove every readiness key (mainly for tests)."""
        keys = list(self._backend.scan_iter(match=f"{KEY_PREFIX}*"))
        if keys:
            self._backend.delete(*keys)

    def health(self) -> dict:
        try:
            self._backend.ping()
            return {"status": "ok", "backend": self.backend_name}
        except redis.exceptions.RedisError as exc:
            return {"status": "error", "backend": self.backend_name, "detail": str(exc)}


# ── Factory / accessors ──────────────────────────────────────────────────────


def build_readiness_cache(url: str | None, ttl: int = DEFAULT_TTL) -> ReadinessCache:
    """Redis-backed cache for redis:// URLs, memory otherwise (or when Redis is down)."""
    if url and url.startswith(("redis://", "rediss://", "unix://")):
        try:
            client = redis.from_url(url, decode_responses=True, socket_timeout=2)
            client.ping()
            logger.info("Readiness cache: using Redis at %s", url.split("@")[-1])
            return ReadinessCache(client, ttl=ttl, backend_name="redis")
        except redis.exceptions.RedisError as exc:
            logger.warning("Redis unavailable (%s) — falling back to memory cache", exc)
    return ReadinessCache(_MemoryBackend(), ttl=ttl, backend_name="memory")


def init_readiness_cache(app) -> ReadinessCache:
    url = app.config.get("READINESS_CACHE_URL") or app.config.get("REDIS_URL")
    cache = build_readiness_cache(url, ttl=app.config.get("READINESS_CACHE_TTL", DEFAULT_TTL))
    app.extensions["readiness_cache"] = cache
    return cache


def get_readiness_cache(app=None) -> ReadinessCache:
    return (app or current_app).extensions["readiness_cache"]
