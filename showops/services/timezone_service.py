"""
Timezone resolution and local-time arithmetic for phase scheduling.

Resolution order for a project:
    1. PhaseState.timezone, when it is a valid IANA name
    2. a zone inferred from the free-text location ("Chicago, IL")
    3. the configured DEFAULT_TIMEZONE (UTC)

All helpers take and return aware datetimes; callers pass ``now`` in,
nothing here reads the clock.
"""

import calendar
import logging
import re
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from flask import current_app, has_app_context

logger = logging.getLogger(__name__)

FALLBACK_TIMEZONE = "UTC"

# ── Location → zone tables ───────────────────────────────────────────────────

CITY_TIMEZONES = {
    # Eastern
    "new york": "America/New_York",
    "new york city": "America/New_York",
    "nyc": "America/New_York",
    "manhattan": "America/New_York",
    "brooklyn": "America/New_York",
    "boston": "America/New_York",
    "philadelphia": "America/New_York",
    "washington dc": "America/New_York",
    "atlanta": "America/New_York",
    "miami": "America/New_York",
    "orlando": "America/New_York",
    "charlotte": "America/New_York",
    "pittsburgh": "America/New_York",
    "cleveland": "America/New_York",
    "detroit": "America/Detroit",
    "indianapolis": "America/Indiana/Indianapolis",
    "louisville": "America/Kentucky/Louisville",
    # Central
    "chicago": "America/Chicago",
    "nashville": "America/Chicago",
    "memphis": "America/Chicago",
    "dallas": "America/Chicago",
    "houston": "America/Chicago",
    "austin": "America/Chicago",
    "san antonio": "America/Chicago",
    "new orleans": "America/Chicago",
    "minneapolis": "America/Chicago",
    "kansas city": "America/Chicago",
    "st louis": "America/Chicago",
    "milwaukee": "America/Chicago",
    # Mountain
    "denver": "America/Denver",
    "salt lake city": "America/Denver",
    "albuquerque": "America/Denver",
    "boise": "America/Boise",
    "phoenix": "America/Phoenix",
    "tucson": "America/Phoenix",
    # Pacific
    "las vegas": "America/Los_Angeles",
    "los angeles": "America/Los_Angeles",
    "hollywood": "America/Los_Angeles",
    "san diego": "America/Los_Angeles",
    "san francisco": "America/Los_Angeles",
    "san jose": "America/Los_Angeles",
    "sacramento": "America/Los_Angeles",
    "seattle": "America/Los_Angeles",
    "portland": "America/Los_Angeles",
    # Alaska / Hawaii
    "anchorage": "America/Anchorage",
    "honolulu": "Pacific/Honolulu",
    # Canada / Europe
    "toronto": "America/Toronto",
    "montreal": "America/Toronto",
    "vancouver bc": "America/Vancouver",
    "calgary": "America/Edmonton",
    "london": "Europe/London",
    "dublin": "Europe/Dublin",
    "paris": "Europe/Paris",
    "berlin": "Europe/Berlin",
}

STATE_TIMEZONES = {
    "ny": "America/New_York", "new york": "America/New_York",
    "ma": "America/New_York", "massachusetts": "America/New_York",
    "pa": "America/New_York", "pennsylvania": "America/New_York",
    "nj": "America/New_York", "new jersey": "America/New_York",
    "fl": "America/New_York", "florida": "America/New_York",
    "ga": "America/New_York", "georgia": "America/New_York",
    "nc": "America/New_York", "north carolina": "America/New_York",
    "va": "America/New_York", "virginia": "America/New_York",
    "oh": "America/New_York", "ohio": "America/New_York",
    "mi": "America/Detroit", "michigan": "America/Detroit",
    "il": "America/Chicago", "illinois": "America/Chicago",
    "tn": "America/Chicago", "tennessee": "America/Chicago",
    "tx": "America/Chicago", "texas": "America/Chicago",
    "la": "America/Chicago", "louisiana": "America/Chicago",
    "mn": "America/Chicago", "minnesota": "America/Chicago",
    "mo": "America/Chicago", "missouri": "America/Chicago",
    "wi": "America/Chicago", "wisconsin": "America/Chicago",
    "co": "America/Denver", "colorado": "America/Denver",
    "ut": "America/Denver", "utah": "America/Denver",
    "nm": "America/Denver", "new mexico": "America/Denver",
    "az": "America/Phoenix", "arizona": "America/Phoenix",
    "nv": "America/Los_Angeles", "nevada": "America/Los_Angeles",
    "ca": "America/Los_Angeles", "california": "America/Los_Angeles",
    "wa": "America/Los_Angeles", "washington": "America/Los_Angeles",
    "or": "America/Los_Angeles", "oregon": "America/Los_Angeles",
    "ak": "America/Anchorage", "alaska": "America/Anchorage",
    "hi": "Pacific/Honolulu", "hawaii": "Pacific/Honolulu",
}

# Longest names first so "new york city" wins over "new york".
_CITY_PATTERNS = [
    (re.compile(rf"\b{re.escape(city)}\b"), zone)
    for city, zone in sorted(CITY_TIMEZONES.items(), key=lambda kv: -len(kv[0]))
]


# ── Validation / lookup ──────────────────────────────────────────────────────


def is_valid_timezone(name) -> bool:
    """Return True if *name* is a loadable IANA zone."""
    if not name or not isinstance(name, str):
        return False
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError):
        return False
    return True


def timezone_from_location(location: str | None) -> str | None:
    """Infer an IANA zone from free-text such as "Chicago, IL" or "Austin".

    Matching order: exact city, city as a whole word, trailing state part
    of "City, State", exact state.  Returns None when nothing matches.
    """
    if not location:
        return None
    normalized = " ".join(location.lower().replace(".", "").split())

    if normalized in CITY_TIMEZONES:
        return CITY_TIMEZONES[normalized]
    for pattern, zone in _CITY_PATTERNS:
        if pattern.search(normalized):
            return zone

    parts = [p.strip() for p in normalized.split(",") if p.strip()]
    if len(parts) >= 2 and parts[-1] in STATE_TIMEZONES:
        return STATE_TIMEZONES[parts[-1]]
    return STATE_TIMEZONES.get(normalized)


def _default_timezone() -> str:
    if has_app_context():
        configured = current_app.config.get("DEFAULT_TIMEZONE", FALLBACK_TIMEZONE)
        if is_valid_timezone(configured):
            return configured
    return FALLBACK_TIMEZONE


def resolve_timezone_name(timezone_name, location=None) -> str:
    if is_valid_timezone(timezone_name):
        return timezone_name
    inferred = timezone_from_location(location)
    if inferred:
        return inferred
    if timezone_name:
        logger.warning("Ignoring invalid timezone %r, falling back", timezone_name)
    return _default_timezone()


def resolve_timezone(phase_state) -> ZoneInfo:
    """Return the ZoneInfo a project's schedule is interpreted in."""
    return ZoneInfo(resolve_timezone_name(phase_state.timezone, phase_state.location))


# ── Local-time arithmetic ────────────────────────────────────────────────────


def local_time_on(day: date, hour: int, tz: ZoneInfo) -> datetime:
    """Wall-clock ``hour:00`` on *day* in *tz*, as an aware datetime."""
    return datetime.combine(day, time(hour=hour), tzinfo=tz)


def local_midnight(day: date, tz: ZoneInfo) -> datetime:
    return local_time_on(day, 0, tz)


def local_date(moment: datetime, tz: ZoneInfo) -> date:
    return moment.astimezone(tz).date()


def next_anniversary(month: int, day: int, after: date) -> date:
    """First month/day strictly after *after*.  Feb 29 falls back to Feb 28."""
    for year in (after.year, after.year + 1, after.year + 2):
        candidate = _safe_date(year, month, day)
        if candidate > after:
            return candidate
    # Unreachable for valid month/day; keeps the return type total.
    return after + timedelta(days=366)


def _safe_date(year: int, month: int, day: int) -> date:
    """date(year, month, day), with Feb 29 falling back to Feb 28 in common years.

    Any other impossible month/day raises ValueError.
    """
    if (month, day) == (2, 29) and not calendar.isleap(year):
        return date(year, 2, 28)
    return date(year, month, day)


def format_in_timezone(moment: datetime, tz: ZoneInfo) -> str:
    """ISO-8601 rendering of *moment* in *tz* (offset included)."""
    return moment.astimezone(tz).isoformat()
