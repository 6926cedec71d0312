"""Timezone resolution and local-time helpers."""

from datetime import date, datetime
from types import SimpleNamespace
from zoneinfo import ZoneInfo

import pytest

from showops.services.timezone_service import (
    is_valid_timezone,
    local_midnight,
    next_anniversary,
    resolve_timezone,
    resolve_timezone_name,
    timezone_from_location,
)


@pytest.mark.parametrize("name, expected", [
    ("America/New_York", True),
    ("UTC", True),
    ("Mars/Olympus_Mons", False),
    ("America", False),
    ("", False),
    (None, False),
    (42, False),
])
def test_is_valid_timezone(name, expected):
    assert is_valid_timezone(name) is expected


@pytest.mark.parametrize("location, expected", [
    ("Chicago, IL", "America/Chicago"),
    ("New York City", "America/New_York"),
    ("Hollywood Bowl, Los Angeles", "America/Los_Angeles"),
    ("Springfield, Illinois", "America/Chicago"),
    ("Tempe, AZ", "America/Phoenix"),
    ("st. louis", "America/Chicago"),
    ("Somewhere Else", None),
    (None, None),
])
def test_timezone_from_location(location, expected):
    assert timezone_from_location(location) == expected


def test_resolution_order(app):
    assert resolve_timezone_name("Europe/Paris", "Chicago") == "Europe/Paris"
    assert resolve_timezone_name(None, "Chicago") == "America/Chicago"
    assert resolve_timezone_name("Not/AZone", "Chicago") == "America/Chicago"
    assert resolve_timezone_name(None, None) == "UTC"


def test_resolve_timezone_reads_phase_state(app):
    state = SimpleNamespace(timezone=None, location="Seattle, WA")
    assert resolve_timezone(state) == ZoneInfo("America/Los_Angeles")


def test_local_midnight_respects_dst():
    tz = ZoneInfo("America/New_York")
    # 2026-03-08 is the spring-forward day in the US
    before = local_midnight(date(2026, 3, 8), tz)
    after = local_midnight(date(2026, 3, 9), tz)
    assert before.utcoffset() != after.utcoffset()
    assert after.astimezone(ZoneInfo("UTC")) == datetime(2026, 3, 9, 4, 0, tzinfo=ZoneInfo("UTC"))


@pytest.mark.parametrize("after, expected", [
    (date(2026, 3, 1), date(2026, 4, 1)),
    (date(2026, 4, 1), date(2027, 4, 1)),
    (date(2026, 12, 31), date(2027, 4, 1)),
])
def test_next_anniversary_is_strictly_after(after, expected):
    assert next_anniversary(4, 1, after) == expected


def test_feb_29_anniversary_in_leap_and_common_years():
    assert next_anniversary(2, 29, date(2027, 6, 1)) == date(2028, 2, 29)
    assert next_anniversary(2, 29, date(2026, 6, 1)) == date(2027, 2, 28)


def test_impossible_anniversary_is_an_error():
    with pytest.raises(ValueError):
        next_anniversary(4, 31, date(2026, 6, 1))
