"""
Phase configuration tests — validation rules, timezone inference from the
location, audit rows and project creation defaults.
"""

from datetime import date

import pytest

from showops.core.exceptions import ValidationError
from showops.models.audit import AuditLog
from showops.services.phase_configuration_service import (
    get_configuration,
    update_configuration,
    validate_configuration,
)
from showops.services.project_service import create_project, list_projects


class TestValidateConfiguration:
    def test_every_error_is_reported_together(self):
        with pytest.raises(ValidationError) as exc:
            validate_configuration({
                "archive_month": 13,
                "post_show_transition_hour": 24,
                "timezone": "Mars/Olympus_Mons",
                "rehearsal_start_date": "03/01/2026",
                "colour": "red",
            })
        assert set(exc.value.details) == {
            "archive_month", "post_show_transition_hour", "timezone",
            "rehearsal_start_date", "colour",
        }

    @pytest.mark.parametrize("month, day", [(2, 30), (4, 31), (6, 31), (11, 31)])
    def test_day_must_exist_in_month(self, month, day):
        with pytest.raises(ValidationError) as exc:
            validate_configuration({"archive_month": month, "archive_day": day})
        assert "archive_day" in exc.value.details

    def test_feb_29_is_accepted(self):
        assert validate_configuration({"archive_month": 2, "archive_day": 29}) == {
            "archive_month": 2, "archive_day": 29,
        }

    def test_show_end_before_rehearsal_is_rejected(self):
        with pytest.raises(ValidationError) as exc:
            validate_configuration({
                "rehearsal_start_date": "2026-05-10", "show_end_date": "2026-05-01",
            })
        assert "show_end_date" in exc.value.details

    def test_booleans_are_not_hours(self):
        with pytest.raises(ValidationError):
            validate_configuration({"post_show_transition_hour": True})

    def test_numeric_strings_are_accepted(self):
        assert validate_configuration({"post_show_grace_days": "3"}) == {"post_show_grace_days": 3}

    def test_location_infers_timezone(self):
        cleaned = validate_configuration({"location": "Nashville, TN"})
        assert cleaned == {"location": "Nashville, TN", "timezone": "America/Chicago"}

    def test_explicit_timezone_wins_over_location(self):
        cleaned = validate_configuration({"location": "Nashville, TN", "timezone": "UTC"})
        assert cleaned["timezone"] == "UTC"

    def test_dates_are_parsed(self):
        cleaned = validate_configuration({"show_end_date": "2026-06-30"})
        assert cleaned["show_end_date"] == date(2026, 6, 30)


class TestUpdateConfiguration:
    def test_update_is_audited(self, make_project, admin):
        pid = make_project()
        config = update_configuration(pid, {"archive_month": 9, "archive_day": 15}, admin)

        assert config["archive_month"] == 9
        assert config["archive_day"] == 15
        row = AuditLog.query.filter_by(action="phase_configuration.update").one()
        assert row.actor == admin.user_id
        assert row.diff["archive_month"] == {"old": 4, "new": 9}

    def test_cross_field_check_uses_stored_values(self, make_project, admin):
        pid = make_project(rehearsal_start_date="2026-05-10")
        with pytest.raises(ValidationError):
            update_configuration(pid, {"show_end_date": "2026-05-01"}, admin)
        assert get_configuration(pid)["show_end_date"] is None

    def test_unchanged_values_write_no_audit(self, make_project, admin):
        pid = make_project()
        update_configuration(pid, {"archive_month": 4}, admin)
        assert AuditLog.query.filter_by(action="phase_configuration.update").count() == 0

    def test_resolved_timezone_falls_back_to_default(self, make_project):
        pid = make_project()
        assert get_configuration(pid)["resolved_timezone"] == "UTC"


class TestCreateProject:
    def test_new_project_starts_in_prep_with_defaults(self):
        project = create_project({"name": "Winter Revue"})
        state = project.phase_state
        assert state.current_phase == "prep"
        assert state.version == 1
        assert (state.archive_month, state.archive_day) == (4, 1)
        assert state.post_show_transition_hour == 6
        assert state.post_show_grace_days == 7

    def test_name_is_required(self):
        with pytest.raises(ValidationError) as exc:
            create_project({"name": "  "})
        assert exc.value.details == {"name": "required"}

    def test_invalid_configuration_creates_nothing(self):
        with pytest.raises(ValidationError):
            create_project({"name": "Bad Dates", "archive_month": 0})
        assert list_projects() == []

    def test_archive_day_is_checked_against_default_month(self):
        with pytest.raises(ValidationError) as exc:
            create_project({"name": "Late Archive", "archive_day": 31})
        assert exc.value.details == {"archive_day": "day 31 does not exist in month 4"}
        assert list_projects() == []

    def test_archive_month_is_checked_against_default_day(self, app, monkeypatch):
        monkeypatch.setitem(app.config, "DEFAULT_ARCHIVE_DAY", 30)
        with pytest.raises(ValidationError) as exc:
            create_project({"name": "Short Month", "archive_month": 2})
        assert "archive_day" in exc.value.details

    def test_archive_day_valid_for_default_month(self):
        state = create_project({"name": "Spring Close", "archive_day": 30}).phase_state
        assert (state.archive_month, state.archive_day) == (4, 30)

    def test_list_filters_by_phase(self, make_project):
        make_project("One")
        second = make_project("Two", phase="staffing")
        assert [p.id for p in list_projects(phase="staffing")] == [second]
