"""
Readiness service tests — cache-aside reads, peek semantics and the
NOT_CALCULATED / FETCH_ERROR distinction.
"""

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from showops.core.exceptions import (
    NotFoundError,
    ReadinessFetchError,
    ReadinessNotCalculatedError,
)
from showops.models import db
from showops.models.audit import AuditLog
from showops.models.phase import PhaseState
from showops.models.setup import TEAM_ROLES, TeamAssignment
from showops.services import readiness_service
from showops.services.readiness_cache import get_readiness_cache
from showops.services.readiness_service import (
    get_readiness,
    invalidate_readiness,
    peek_readiness,
)


def _broken_counts(project_id):
    raise OperationalError("SELECT count(*)", {}, Exception("connection reset"))


class TestGetReadiness:
    def test_counts_exclude_default_rows(self, make_project, add_setup):
        pid = make_project()
        add_setup(pid, roles=1, default_roles=3, default_locations=2,
                  team=("supervisor", "talent_escort", "crew"), talent=2)
        snap = get_readiness(pid)

        assert snap.counts.role_template_count == 1
        assert snap.counts.location_count == 0
        assert snap.counts.team_assignment_count == 3
        assert snap.counts.supervisor_count == 1
        assert snap.counts.escort_count == 1
        assert snap.blocking_issues == ("missing_locations",)
        assert snap.status == "setup_required"

    def test_second_read_is_served_from_cache(self, make_project, monkeypatch):
        pid = make_project()
        first = get_readiness(pid)
        monkeypatch.setattr(readiness_service, "get_setup_counts", _broken_counts)
        assert get_readiness(pid) is not None
        assert get_readiness(pid).calculated_at == first.calculated_at

    def test_phase_change_bypasses_stale_snapshot(self, make_project):
        pid = make_project()
        assert get_readiness(pid).phase == "prep"

        db.session.get(PhaseState, pid).current_phase = "staffing"
        db.session.commit()

        assert get_readiness(pid).phase == "staffing"

    def test_unknown_project(self):
        with pytest.raises(NotFoundError):
            get_readiness(404)

    def test_storage_failure_raises_fetch_error(self, make_project, monkeypatch):
        pid = make_project()
        monkeypatch.setattr(readiness_service, "get_setup_counts", _broken_counts)
        with pytest.raises(ReadinessFetchError):
            get_readiness(pid)
        assert get_readiness_cache().get_failure(pid) is not None


class TestPeekReadiness:
    def test_never_calculated(self, make_project):
        pid = make_project()
        with pytest.raises(ReadinessNotCalculatedError):
            peek_readiness(pid)

    def test_failed_calculation_is_a_fetch_error(self, make_project, monkeypatch):
        pid = make_project()
        monkeypatch.setattr(readiness_service, "get_setup_counts", _broken_counts)
        with pytest.raises(ReadinessFetchError):
            get_readiness(pid)

        with pytest.raises(ReadinessFetchError):
            peek_readiness(pid)

    def test_success_clears_failure_marker(self, make_project, monkeypatch):
        pid = make_project()
        with monkeypatch.context() as m:
            m.setattr(readiness_service, "get_setup_counts", _broken_counts)
            with pytest.raises(ReadinessFetchError):
                get_readiness(pid)

        snap = get_readiness(pid)
        assert peek_readiness(pid) == snap
        assert get_readiness_cache().get_failure(pid) is None


class TestInvalidate:
    def test_manual_invalidation_is_audited(self, make_project, admin):
        pid = make_project()
        get_readiness(pid)
        invalidate_readiness(pid, "manual", actor=admin)

        with pytest.raises(ReadinessNotCalculatedError):
            peek_readiness(pid)
        row = AuditLog.query.filter_by(action="readiness.invalidate").one()
        assert row.actor == admin.user_id
        assert row.diff["reason"]["new"] == "manual"


class TestTeamRoles:
    def test_every_team_role_is_counted(self, make_project, add_setup):
        pid = make_project()
        add_setup(pid, team=tuple(sorted(TEAM_ROLES)))
        counts = get_readiness(pid).counts
        assert counts.team_assignment_count == len(TEAM_ROLES)
        assert counts.supervisor_count == counts.escort_count == counts.coordinator_count == 1

    def test_unknown_team_role_is_rejected(self, make_project):
        pid = make_project()
        db.session.add(TeamAssignment(project_id=pid, user_ref="user-x", role="caterer"))
        with pytest.raises(IntegrityError):
            db.session.commit()
        db.session.rollback()
