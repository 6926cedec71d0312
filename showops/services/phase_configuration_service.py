"""
Phase configuration — schedule and archive settings on PhaseState.

Business rules:
    - archive_month 1–12; archive_day 1–31 and must exist in that month
      (checked against a leap year, so 02-29 is accepted and falls back
      to 02-28 in non-leap years at evaluation time)
    - post_show_transition_hour 0–23; post_show_grace_days 0–90
    - timezone must be a loadable IANA zone
    - dates are YYYY-MM-DD; show_end_date may not precede rehearsal_start_date
    - a new location with no explicit timezone stores the zone inferred
      from the location, when one is found
    - every error is collected before anything is written

db.session.commit() happens only in update_configuration.
"""

import calendar
import logging

from showops.core.exceptions import ValidationError
from showops.models import db
from showops.models.audit import write_audit
from showops.services.project_service import get_phase_state
from showops.services.readiness_cache import get_readiness_cache
from showops.services.timezone_service import (
    is_valid_timezone,
    resolve_timezone_name,
    timezone_from_location,
)
from showops.utils.helpers import parse_date_input

logger = logging.getLogger(__name__)

CONFIGURABLE_FIELDS = (
    "auto_transitions_enabled",
    "location",
    "timezone",
    "rehearsal_start_date",
    "show_end_date",
    "archive_month",
    "archive_day",
    "post_show_transition_hour",
    "post_show_grace_days",
)

_LEAP_YEAR = 2024
MAX_GRACE_DAYS = 90


def _int_in_range(value, low, high):
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        number = value
    elif isinstance(value, str) and value.strip().isdigit():
        number = int(value)
    else:
        return None
    return number if low <= number <= high else None


def validate_configuration(updates: dict, current=None) -> dict:
    """Return the cleaned subset of *updates*, or raise ValidationError.

    *current* is the PhaseState being updated (None on project creation);
    cross-field checks use its values for fields absent from *updates*.
    """
    if not isinstance(updates, dict):
        raise ValidationError("Configuration must be an object")

    errors: dict[str, str] = {}
    cleaned: dict = {}

    unknown = sorted(set(updates) - set(CONFIGURABLE_FIELDS))
    for key in unknown:
        errors[key] = "unknown configuration field"

    if "auto_transitions_enabled" in updates:
        value = updates["auto_transitions_enabled"]
        if isinstance(value, bool):
            cleaned["auto_transitions_enabled"] = value
        else:
            errors["auto_transitions_enabled"] = "must be true or false"

    if "location" in updates:
        value = updates["location"]
        if value is not None and not isinstance(value, str):
            errors["location"] = "must be a string"
        elif value is not None and len(value) > 255:
            errors["location"] = "must be ≤ 255 characters"
        else:
            cleaned["location"] = (value or "").strip() or None

    if "timezone" in updates:
        value = updates["timezone"]
        if value in (None, ""):
            cleaned["timezone"] = None
        elif is_valid_timezone(value):
            cleaned["timezone"] = value
        else:
            errors["timezone"] = f"unknown IANA timezone: {value}"

    for key in ("rehearsal_start_date", "show_end_date"):
        if key in updates:
            try:
                cleaned[key] = parse_date_input(updates[key])
            except ValueError as exc:
                errors[key] = str(exc)

    if "archive_month" in updates:
        month = _int_in_range(updates["archive_month"], 1, 12)
        if month is None:
            errors["archive_month"] = "must be an integer between 1 and 12"
        else:
            cleaned["archive_month"] = month

    if "archive_day" in updates:
        day = _int_in_range(updates["archive_day"], 1, 31)
        if day is None:
            errors["archive_day"] = "must be an integer between 1 and 31"
        else:
            cleaned["archive_day"] = day

    if "post_show_transition_hour" in updates:
        hour = _int_in_range(updates["post_show_transition_hour"], 0, 23)
        if hour is None:
            errors["post_show_transition_hour"] = "must be an integer between 0 and 23"
        else:
            cleaned["post_show_transition_hour"] = hour

    if "post_show_grace_days" in updates:
        days = _int_in_range(updates["post_show_grace_days"], 0, MAX_GRACE_DAYS)
        if days is None:
            errors["post_show_grace_days"] = f"must be an integer between 0 and {MAX_GRACE_DAYS}"
        else:
            cleaned["post_show_grace_days"] = days

    # ── Cross-field rules ────────────────────────────────────────────────
    def _effective(key):
        if key in cleaned:
            return cleaned[key]
        return getattr(current, key, None) if current is not None else None

    month, day = _effective("archive_month"), _effective("archive_day")
    if month and day and "archive_month" not in errors and "archive_day" not in errors:
        if day > calendar.monthrange(_LEAP_YEAR, month)[1]:
            errors["archive_day"] = f"day {day} does not exist in month {month}"

    start, end = _effective("rehearsal_start_date"), _effective("show_end_date")
    if start and end and end < start:
        errors["show_end_date"] = "must be on or after rehearsal_start_date"

    if errors:
        raise ValidationError("Invalid phase configuration", details=errors)

    if cleaned.get("location") and "timezone" not in updates:
        inferred = timezone_from_location(cleaned["location"])
        if inferred:
            cleaned["timezone"] = inferred

    return cleaned


def get_configuration(project_id: int) -> dict:
    state = get_phase_state(project_id)
    config = {key: state.to_dict()[key] for key in CONFIGURABLE_FIELDS}
    config["project_id"] = project_id
    config["current_phase"] = state.current_phase
    config["resolved_timezone"] = resolve_timezone_name(state.timezone, state.location)
    return config


def update_configuration(project_id: int, updates: dict, actor) -> dict:
    """Validate and apply *updates*; returns the new configuration."""
    state = get_phase_state(project_id)
    cleaned = validate_configuration(updates, current=state)

    diff = {}
    for key, value in cleaned.items():
        old = getattr(state, key)
        if old != value:
            diff[key] = {"old": old, "new": value}
            setattr(state, key, value)

    if diff:
        write_audit(
            entity_type="phase_configuration",
            entity_id=str(project_id),
            action="phase_configuration.update",
            actor=actor.user_id,
            project_id=project_id,
            diff=diff,
        )
        db.session.commit()
        get_readiness_cache().invalidate(project_id, "configuration_change")
        logger.info(
            "Phase configuration updated project_id=%s fields=%s",
            project_id, ",".join(sorted(diff)),
            extra={"project_id": project_id, "event_type": "phase_configuration_updated"},
        )
    return get_configuration(project_id)
