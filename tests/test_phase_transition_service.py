"""
Phase transition executor tests — manual/automatic requests, permissions,
override and revert, history integrity and compare-and-swap conflicts.
"""

from datetime import timedelta

import pytest

from showops.core.exceptions import (
    ConflictError,
    InvalidTransitionError,
    PermissionDeniedError,
    TransitionBlockedError,
    ValidationError,
)
from showops.models import db
from showops.models.phase import PhaseState, PhaseTransitionHistory
from showops.services import phase_transition_service as svc
from showops.services.finalization_service import finalize
from showops.services.phase_transition_service import (
    execute_transition,
    get_transition_history,
    get_transition_status,
    persist_phase_state,
    request_transition,
)
from tests.conftest import NOW


@pytest.fixture()
def staffing_ready(make_project, add_setup, admin):
    """A prep project whose roles and locations are configured and finalized."""
    pid = make_project()
    add_setup(pid, roles=1, locations=1)
    finalize(pid, "roles", admin, now=NOW)
    finalize(pid, "locations", admin, now=NOW)
    return pid


def _history(pid):
    return get_transition_history(pid)


# ═════════════════════════════════════════════════════════════════════════════
# Manual transitions
# ═════════════════════════════════════════════════════════════════════════════


class TestManualTransition:
    def test_blocked_transition_reports_every_blocker(self, make_project, admin):
        pid = make_project()
        with pytest.raises(TransitionBlockedError) as exc:
            execute_transition(pid, "staffing", actor=admin, now=NOW)
        assert exc.value.blockers == ["missing_role_templates", "missing_locations"]
        assert _history(pid) == []

    def test_successful_transition_writes_history(self, staffing_ready, admin):
        outcome = execute_transition(staffing_ready, "staffing", actor=admin, now=NOW)

        assert outcome.success is True
        assert outcome.previous_phase == "prep"
        assert outcome.new_phase == "staffing"

        state = db.session.get(PhaseState, staffing_ready)
        assert state.current_phase == "staffing"
        assert state.version == 2

        [entry] = _history(staffing_ready)
        assert entry.from_phase == "prep"
        assert entry.to_phase == "staffing"
        assert entry.trigger == "manual"
        assert entry.transitioned_by == admin.user_id
        assert entry.meta["readiness_status"] == "setup_required"

    def test_in_house_may_request_transition(self, staffing_ready, in_house):
        outcome = execute_transition(staffing_ready, "staffing", actor=in_house, now=NOW)
        assert outcome.new_phase == "staffing"

    def test_repeat_request_is_a_no_op(self, staffing_ready, admin):
        execute_transition(staffing_ready, "staffing", actor=admin, now=NOW)
        outcome = execute_transition(staffing_ready, "staffing", actor=admin, now=NOW)

        assert outcome.no_op is True
        assert outcome.success is True
        assert len(_history(staffing_ready)) == 1
        assert db.session.get(PhaseState, staffing_ready).version == 2

    def test_viewer_cannot_transition(self, staffing_ready, viewer):
        with pytest.raises(PermissionDeniedError):
            execute_transition(staffing_ready, "staffing", actor=viewer, now=NOW)
        assert db.session.get(PhaseState, staffing_ready).current_phase == "prep"

    def test_skipping_a_phase_is_invalid(self, staffing_ready, admin):
        with pytest.raises(InvalidTransitionError):
            execute_transition(staffing_ready, "pre_show", actor=admin, now=NOW)

    def test_unknown_phase_is_rejected(self, staffing_ready, admin):
        with pytest.raises(ValidationError):
            execute_transition(staffing_ready, "encore", actor=admin, now=NOW)

    def test_unknown_trigger_is_rejected(self, staffing_ready, admin):
        with pytest.raises(ValidationError):
            execute_transition(staffing_ready, "staffing", trigger="cron", actor=admin, now=NOW)

    def test_history_chain_stays_consistent(self, staffing_ready, add_setup, admin):
        execute_transition(staffing_ready, "staffing", actor=admin, now=NOW)
        add_setup(staffing_ready, talent=1, team=("crew",))
        execute_transition(staffing_ready, "pre_show", actor=admin, now=NOW + timedelta(minutes=1))

        history = _history(staffing_ready)
        assert [(h.from_phase, h.to_phase) for h in history] == [
            ("prep", "staffing"), ("staffing", "pre_show"),
        ]
        assert history[1].from_phase == history[0].to_phase


# ═════════════════════════════════════════════════════════════════════════════
# Override / revert
# ═════════════════════════════════════════════════════════════════════════════


class TestOverrideAndRevert:
    def test_admin_override_records_bypassed_blockers(self, make_project, admin):
        pid = make_project()
        outcome = execute_transition(pid, "staffing", actor=admin, override_blockers=True,
                                     reason="Venue confirmed offline", now=NOW)

        assert outcome.new_phase == "staffing"
        [entry] = _history(pid)
        assert entry.meta["override"] is True
        assert entry.meta["bypassed_blockers"] == ["missing_role_templates", "missing_locations"]
        assert entry.reason == "Venue confirmed offline"

    def test_in_house_cannot_override(self, make_project, in_house):
        pid = make_project()
        with pytest.raises(PermissionDeniedError) as exc:
            execute_transition(pid, "staffing", actor=in_house, override_blockers=True, now=NOW)
        assert exc.value.required_role == "admin"
        assert _history(pid) == []

    def test_backward_move_without_revert_is_invalid(self, make_project, admin):
        pid = make_project(phase="staffing")
        with pytest.raises(InvalidTransitionError):
            execute_transition(pid, "prep", actor=admin, now=NOW)

    def test_revert_needs_admin(self, make_project, in_house):
        pid = make_project(phase="staffing")
        with pytest.raises(PermissionDeniedError):
            execute_transition(pid, "prep", actor=in_house, revert=True, now=NOW)

    def test_admin_revert_is_audited(self, make_project, admin):
        pid = make_project(phase="pre_show")
        outcome = execute_transition(pid, "prep", actor=admin, revert=True, now=NOW)

        assert outcome.new_phase == "prep"
        [entry] = _history(pid)
        assert entry.from_phase == "pre_show"
        assert entry.to_phase == "prep"
        assert entry.meta == {"revert": True}
        assert entry.transitioned_by == admin.user_id


# ═════════════════════════════════════════════════════════════════════════════
# Automatic trigger
# ═════════════════════════════════════════════════════════════════════════════


class TestAutomaticTrigger:
    def test_automatic_on_manual_edge_is_invalid(self, staffing_ready):
        with pytest.raises(InvalidTransitionError):
            execute_transition(staffing_ready, "staffing", trigger="automatic", now=NOW)

    def test_automatic_to_a_past_phase_is_a_no_op(self, make_project):
        pid = make_project(phase="post_show", show_end_date="2026-03-01")
        outcome = execute_transition(pid, "active", trigger="automatic", now=NOW)
        assert outcome.no_op is True
        assert db.session.get(PhaseState, pid).current_phase == "post_show"

    def test_automatic_transition_is_recorded_as_system(self, make_project):
        pid = make_project(phase="active", show_end_date="2026-03-08", timezone="America/New_York")
        execute_transition(pid, "post_show", trigger="automatic", now=NOW)
        [entry] = _history(pid)
        assert entry.trigger == "automatic"
        assert entry.transitioned_by == "system"

    def test_automatic_before_due_time_is_blocked(self, make_project):
        pid = make_project(phase="active", show_end_date="2026-03-12", timezone="America/New_York")
        with pytest.raises(TransitionBlockedError) as exc:
            execute_transition(pid, "post_show", trigger="automatic", now=NOW)
        assert exc.value.scheduled_at is not None


# ═════════════════════════════════════════════════════════════════════════════
# Status read with automatic advance
# ═════════════════════════════════════════════════════════════════════════════


class TestTransitionStatus:
    def test_due_transition_fires_on_read(self, make_project):
        pid = make_project(phase="active", show_end_date="2026-03-08", timezone="America/New_York")
        status = get_transition_status(pid, now=NOW)

        assert status["current_phase"] == "post_show"
        assert len(status["applied_transitions"]) == 1
        assert status["transition_result"]["target_phase"] == "complete"
        assert status["timezone"] == "America/New_York"

    def test_chained_due_transitions_all_fire(self, make_project):
        pid = make_project(phase="active", show_end_date="2025-03-01", timezone="America/New_York")
        status = get_transition_status(pid, now=NOW)

        assert status["current_phase"] == "archived"
        assert [t["new_phase"] for t in status["applied_transitions"]] == [
            "post_show", "complete", "archived",
        ]
        assert [h.from_phase for h in _history(pid)] == ["active", "post_show", "complete"]

    def test_read_without_auto_apply_leaves_phase(self, make_project):
        pid = make_project(phase="active", show_end_date="2026-03-08")
        status = get_transition_status(pid, now=NOW, apply_automatic=False)
        assert status["current_phase"] == "active"
        assert status["transition_result"]["can_transition"] is True

    def test_disabled_auto_transitions_are_respected(self, make_project):
        pid = make_project(phase="active", show_end_date="2026-03-08",
                           auto_transitions_enabled=False)
        status = get_transition_status(pid, now=NOW)
        assert status["current_phase"] == "active"
        assert status["applied_transitions"] == []


# ═════════════════════════════════════════════════════════════════════════════
# Compare-and-swap
# ═════════════════════════════════════════════════════════════════════════════


def _concurrent_write(pid, expected_version, to_phase, from_phase):
    entry = PhaseTransitionHistory(
        project_id=pid, transitioned_at=NOW, transitioned_by="other.admin",
        from_phase=from_phase, to_phase=to_phase, trigger="manual",
        reason="concurrent request", meta={},
    )
    persist_phase_state(pid, expected_version, to_phase, NOW, entry)


@pytest.fixture()
def racing_writer(monkeypatch):
    """Let another writer move prep → staffing right after evaluation."""
    real_evaluate = svc.evaluate_transition
    raced = []

    def _evaluate(state, now, readiness):
        result = real_evaluate(state, now, readiness)
        if not raced:
            raced.append(state.project_id)
            _concurrent_write(state.project_id, state.version, "staffing", "prep")
        return result

    monkeypatch.setattr(svc, "evaluate_transition", _evaluate)
    return raced


class TestConcurrency:
    def test_stale_version_raises_conflict(self, make_project):
        pid = make_project()
        entry = PhaseTransitionHistory(
            project_id=pid, transitioned_at=NOW, transitioned_by="x",
            from_phase="prep", to_phase="staffing", trigger="manual", meta={},
        )
        with pytest.raises(ConflictError):
            persist_phase_state(pid, 5, "staffing", NOW, entry)

        assert db.session.get(PhaseState, pid).current_phase == "prep"
        assert _history(pid) == []

    def test_losing_writer_gets_conflict(self, staffing_ready, admin, racing_writer):
        with pytest.raises(ConflictError):
            execute_transition(staffing_ready, "staffing", actor=admin, now=NOW)

        db.session.expire_all()
        state = db.session.get(PhaseState, staffing_ready)
        assert state.current_phase == "staffing"
        assert state.version == 2
        assert len(_history(staffing_ready)) == 1

    def test_retry_resolves_to_no_op(self, staffing_ready, admin, racing_writer):
        outcome = request_transition(staffing_ready, "staffing", actor=admin, now=NOW)

        assert outcome.no_op is True
        [entry] = _history(staffing_ready)
        assert entry.transitioned_by == "other.admin"


# ═════════════════════════════════════════════════════════════════════════════
# Append-only history
# ═════════════════════════════════════════════════════════════════════════════


class TestHistoryIsAppendOnly:
    def test_update_is_refused(self, make_project, admin):
        pid = make_project()
        execute_transition(pid, "staffing", actor=admin, override_blockers=True, now=NOW)
        [entry] = _history(pid)

        entry.reason = "rewritten"
        with pytest.raises(RuntimeError):
            db.session.commit()
        db.session.rollback()

    def test_delete_is_refused(self, make_project, admin):
        pid = make_project()
        execute_transition(pid, "staffing", actor=admin, override_blockers=True, now=NOW)
        [entry] = _history(pid)

        db.session.delete(entry)
        with pytest.raises(RuntimeError):
            db.session.commit()
        db.session.rollback()
