"""Shared utility functions.

parse_date_input:  strict ISO date parsing (raises ValueError)
parse_bool:        truthy query-string / JSON flags
ensure_aware:      treat naive datetimes read back from SQLite as UTC
"""
from datetime import UTC, date, datetime

_TRUE_VALUES = {"1", "true", "yes", "on"}


def parse_date_input(value):
    """Parse a YYYY-MM-DD string, raising ValueError on bad input.

    ``None`` and empty strings map to ``None`` (clears the field);
    date objects pass through unchanged.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError as exc:
        raise ValueError("Invalid date format. Use YYYY-MM-DD.") from exc


def parse_bool(value, default=False):
    """Interpret ``?refresh=true`` style flags; JSON booleans pass through."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE_VALUES


def ensure_aware(value):
    """Return *value* as an aware datetime (naive values are UTC)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value
