"""
Automatic transition sweep, lookahead and the scheduled job runner.
"""

import pytest

from showops.core.exceptions import ValidationError
from showops.models import db
from showops.models.phase import PhaseState
from showops.services import phase_transition_service as svc
from showops.services.phase_transition_service import (
    list_scheduled_transitions,
    sweep_automatic_transitions,
)
from showops.services.finalization_service import finalize
from showops.services.scheduler_service import SchedulerService, get_registered_jobs
from tests.conftest import NOW

NY = {"timezone": "America/New_York"}


def _phase(pid):
    db.session.expire_all()
    return db.session.get(PhaseState, pid).current_phase


class TestSweep:
    def test_counts_by_outcome(self, make_project):
        due = make_project("Due", phase="active", show_end_date="2026-03-08", **NY)
        waiting = make_project("Waiting", phase="active", show_end_date="2026-03-12", **NY)
        missing = make_project("No End Date", phase="active", **NY)
        make_project("Old", phase="archived", **NY)
        disabled = make_project("Manual Only", phase="active", show_end_date="2026-03-08",
                                auto_transitions_enabled=False, **NY)

        result = sweep_automatic_transitions(now=NOW)

        assert result["evaluated"] == 3
        assert result["transitioned"] == 1
        assert result["scheduled"] == 1
        assert result["blocked"] == 1
        assert result["failed"] == 0
        assert result["transitions"] == [
            {"project_id": due, "from_phase": "active", "to_phase": "post_show"},
        ]
        assert _phase(due) == "post_show"
        assert _phase(waiting) == "active"
        assert _phase(missing) == "active"
        assert _phase(disabled) == "active"

    def test_manual_edges_are_never_fired(self, make_project, add_setup, admin):
        pid = make_project("Prep", **NY)
        add_setup(pid, roles=1, locations=1)
        finalize(pid, "roles", admin, now=NOW)
        finalize(pid, "locations", admin, now=NOW)

        result = sweep_automatic_transitions(now=NOW)

        assert result["transitioned"] == 0
        assert _phase(pid) == "prep"

    def test_second_sweep_is_idempotent(self, make_project):
        pid = make_project(phase="active", show_end_date="2026-03-08", **NY)
        sweep_automatic_transitions(now=NOW)
        again = sweep_automatic_transitions(now=NOW)

        assert again["transitioned"] == 0
        assert len(svc.get_transition_history(pid)) == 1

    def test_one_failure_does_not_stop_the_sweep(self, make_project, monkeypatch):
        broken = make_project("Broken", phase="active", show_end_date="2026-03-08", **NY)
        healthy = make_project("Healthy", phase="active", show_end_date="2026-03-08", **NY)
        real_get_readiness = svc.get_readiness

        def _flaky(project_id, **kwargs):
            if project_id == broken:
                raise RuntimeError("counter service exploded")
            return real_get_readiness(project_id, **kwargs)

        monkeypatch.setattr(svc, "get_readiness", _flaky)
        result = sweep_automatic_transitions(now=NOW)

        assert result["failed"] == 1
        assert result["errors"][0]["project_id"] == broken
        assert result["transitioned"] == 1
        assert _phase(healthy) == "post_show"


class TestScheduledLookahead:
    def test_lists_transitions_due_within_window(self, make_project):
        soon = make_project("Soon", phase="active", show_end_date="2026-03-10", **NY)
        rehearsal = make_project("Rehearsal", phase="pre_show", rehearsal_start_date="2026-03-11", **NY)
        make_project("Later", phase="active", show_end_date="2026-03-12", **NY)

        upcoming = list_scheduled_transitions(hours_ahead=24, now=NOW)

        assert [u["project_id"] for u in upcoming] == [rehearsal, soon]
        assert upcoming[0]["target_phase"] == "active"
        assert upcoming[0]["has_hard_blockers"] is True
        assert upcoming[1]["scheduled_at"] == "2026-03-11T06:00:00-04:00"
        assert upcoming[1]["project_name"] == "Soon"

    def test_wider_window_includes_later_moves(self, make_project):
        make_project("Later", phase="active", show_end_date="2026-03-12", **NY)
        assert list_scheduled_transitions(hours_ahead=24, now=NOW) == []
        assert len(list_scheduled_transitions(hours_ahead=72, now=NOW)) == 1

    def test_negative_window_is_rejected(self):
        with pytest.raises(ValidationError):
            list_scheduled_transitions(hours_ahead=-1, now=NOW)


class TestScheduledJobs:
    def test_jobs_are_registered(self):
        assert {"phase_transition_sweep", "readiness_cache_health"} <= set(get_registered_jobs())

    def test_run_sweep_job(self, make_project):
        pid = make_project(phase="active", show_end_date="2020-01-01", **NY)
        db.session.close()

        run = SchedulerService.run_job("phase_transition_sweep")

        assert run["status"] == "success"
        assert run["result"]["transitioned"] == 1
        assert _phase(pid) == "archived"

    def test_unknown_job(self):
        run = SchedulerService.run_job("does_not_exist")
        assert run["status"] == "error"

    def test_cli_runs_cache_health(self, app):
        output = app.test_cli_runner().invoke(args=["run-job", "readiness_cache_health"]).output
        assert output.startswith("success:")
        assert "memory" in output
