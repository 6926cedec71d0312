"""
ShowOps Lifecycle Platform
Authentication & Authorization Middleware.

Provides:
    - API key authentication via X-API-Key header
    - Role hierarchy and the ``require_role`` decorator
    - ``current_actor()``: the (user_id, role) pair services record in
      history and audit rows
    - Content-Type enforcement for state-changing requests

Security model:
    - All /api/v1/* endpoints require a valid API key (except /api/v1/health/*)
    - Manual phase transitions and finalization need admin access
      (``admin`` or ``in_house``); overrides, reverts and unfinalize need ``admin``

Configuration (env vars):
    API_KEYS          — comma-separated "<key>:<role>" pairs,
                        e.g. "key1:admin,key2:in_house,key3:viewer"
    API_AUTH_ENABLED  — set to "false" to disable auth (development/testing).
                        With auth disabled the role is taken from the
                        X-Actor-Role header and defaults to 'admin'.

Identity recorded in history and audit rows:
    - auth disabled: the X-Actor-Id header, verbatim (default "dev-user")
    - auth enabled:  "api-key:<prefix>", or "<X-Actor-Id> via api-key:<prefix>"
"""

import functools
import logging
import os
from dataclasses import dataclass
from typing import Optional

from flask import current_app, g, jsonify, request

logger = logging.getLogger(__name__)

# ── Roles ────────────────────────────────────────────────────────────────────

ROLES = {"admin", "in_house", "viewer"}

# Role hierarchy: admin > in_house > viewer
ROLE_HIERARCHY = {
    "admin": {"admin", "in_house", "viewer"},
    "in_house": {"in_house", "viewer"},
    "viewer": {"viewer"},
}

SYSTEM_ACTOR_ID = "system"


@dataclass(frozen=True)
class Actor:
    user_id: str
    role: str

    def has_role(self, minimum_role: str) -> bool:
        return minimum_role in ROLE_HIERARCHY.get(self.role, set())

    @property
    def has_admin_access(self) -> bool:
        """admin or in_house: may request transitions and finalize areas."""
        return self.has_role("in_house")

    @property
    def is_admin(self) -> bool:
        return self.has_role("admin")


SYSTEM_ACTOR = Actor(user_id=SYSTEM_ACTOR_ID, role="admin")


def current_actor() -> Actor:
    """Actor for the current request (set by the auth hook)."""
    return Actor(
        user_id=getattr(g, "current_user_id", None) or "anonymous",
        role=getattr(g, "current_user_role", None) or "viewer",
    )


def _parse_api_keys() -> dict[str, str]:
    """
    Parse API_KEYS env var into {key: role} mapping.

    Format: "key1:admin,key2:viewer,key3:in_house"
    Keys without a role default to 'viewer'.
    """
    raw = os.getenv("API_KEYS", "")
    if not raw.strip():
        return {}

    keys = {}
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry:
            continue
        if ":" in entry:
            key, role = entry.rsplit(":", 1)
            role = role.strip().lower()
            if role not in ROLES:
                logger.warning("Unknown role '%s' for API key, defaulting to 'viewer'", role)
                role = "viewer"
            keys[key.strip()] = role
        else:
            keys[entry] = "viewer"
    return keys


def _is_auth_enabled() -> bool:
    """Check whether authentication is enabled (env var or app config)."""
    env_val = os.getenv("API_AUTH_ENABLED", "")
    if env_val:
        return env_val.lower() not in ("false", "0", "no", "off")
    try:
        return str(current_app.config.get("API_AUTH_ENABLED", "true")).lower() not in (
            "false", "0", "no", "off",
        )
    except RuntimeError:
        # Outside app context
        return True


def _get_api_key_from_request() -> Optional[str]:
    return request.headers.get("X-API-Key", "").strip() or None


def _actor_id_from_request(default: str) -> str:
    return request.headers.get("X-Actor-Id", "").strip()[:150] or default


def _keyed_actor_id(api_key: str) -> str:
    """Identity recorded for an authenticated request.

    The key prefix is always present; X-Actor-Id is only a label next to it.
    """
    key_label = f"api-key:{api_key[:6]}"
    asserted = request.headers.get("X-Actor-Id", "").strip()
    if not asserted:
        return key_label
    return f"{asserted[:150 - len(key_label) - 5]} via {key_label}"


# ── Authorization decorator ──────────────────────────────────────────────────


def require_role(minimum_role: str):
    """
    Decorator: require a minimum role level.

    Usage:
        @require_role("admin")
        def run_sweep(): ...

    Role hierarchy: admin > in_house > viewer
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            user_role = getattr(g, "current_user_role", None)
            if not user_role:
                return jsonify({"error": "Authentication required"}), 401

            allowed = ROLE_HIERARCHY.get(user_role, set())
            if minimum_role not in allowed:
                logger.warning(
                    "Access denied: role '%s' tried to access '%s'-level endpoint %s",
                    user_role, minimum_role, request.path,
                )
                return jsonify({"error": "Insufficient permissions"}), 403

            return f(*args, **kwargs)
        return decorated
    return decorator


# ── CSRF protection for API ──────────────────────────────────────────────────

def _check_content_type():
    """
    For state-changing requests with a body, require
    Content-Type: application/json (HTML forms cannot send it).
    """
    if request.method in ("POST", "PUT", "PATCH", "DELETE"):
        ct = request.content_type or ""
        if "application/json" not in ct and request.content_length and request.content_length > 0:
            return jsonify({
                "error": "Content-Type must be application/json for state-changing requests"
            }), 415
    return None


# ── App-level before_request hook installer ──────────────────────────────────

def init_auth(app):
    """
    Install authentication middleware on the Flask app.

    - Attaches a before_request hook for /api/v1/* routes
    - Skips health checks and CORS pre-flight
    """
    @app.before_request
    def _before_request_auth():
        if not request.path.startswith("/api/v1/"):
            return None
        if request.path.startswith("/api/v1/health"):
            return None
        if request.method == "OPTIONS":
            return None

        csrf_error = _check_content_type()
        if csrf_error:
            return csrf_error

        if not _is_auth_enabled():
            role = request.headers.get("X-Actor-Role", "admin").strip().lower()
            g.current_user_role = role if role in ROLES else "viewer"
            g.current_user_id = _actor_id_from_request("dev-user")
            g.api_key = "dev-mode"
            return None

        api_key = _get_api_key_from_request()
        if not api_key:
            return jsonify({"error": "Authentication required. Provide X-API-Key header."}), 401

        api_keys = _parse_api_keys()
        if not api_keys:
            logger.error("API_KEYS env var is not configured but API_AUTH_ENABLED=true")
            return jsonify({"error": "Server authentication not configured"}), 500

        role = api_keys.get(api_key)
        if role is None:
            logger.warning("Invalid API key attempt: %s...", api_key[:8])
            return jsonify({"error": "Invalid API key"}), 401

        g.current_user_role = role
        g.current_user_id = _keyed_actor_id(api_key)
        g.api_key = api_key
        return None

    logger.info("Auth middleware installed (enabled=%s)", _is_auth_enabled())
