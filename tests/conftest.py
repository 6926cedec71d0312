"""
Shared pytest fixtures for the ShowOps Lifecycle Platform test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate, readiness cache cleared (autouse)
    - client: Flask test client (function-scoped)
    - make_project / add_setup: ORM factories for lifecycle tests
    - admin / in_house / viewer: Actor instances
"""

from datetime import UTC, datetime

import pytest

from showops import create_app
from showops.auth import Actor
from showops.models import db as _db
from showops.models.setup import (
    ProjectLocation,
    RoleTemplate,
    TalentRosterEntry,
    TeamAssignment,
)
from showops.services.readiness_cache import get_readiness_cache

# Reference instant used by time-driven tests
NOW = datetime(2026, 3, 10, 15, 0, tzinfo=UTC)


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        get_readiness_cache().clear()
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()
        get_readiness_cache().clear()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Actors ───────────────────────────────────────────────────────────────


@pytest.fixture()
def admin():
    return Actor(user_id="alex.admin", role="admin")


@pytest.fixture()
def in_house():
    return Actor(user_id="ira.inhouse", role="in_house")


@pytest.fixture()
def viewer():
    return Actor(user_id="val.viewer", role="viewer")


# ── ORM factories ────────────────────────────────────────────────────────


@pytest.fixture()
def make_project():
    """Create a project through the service layer and return its id.

    Keyword arguments are phase configuration fields; ``phase`` forces the
    starting phase directly (bypasses the transition guards).
    """
    from showops.services.project_service import create_project

    def _make(name="Spring Gala", phase=None, phase_updated_at=None, **config):
        project = create_project({"name": name, **config}, now=phase_updated_at or NOW)
        if phase is not None:
            project.phase_state.current_phase = phase
            _db.session.commit()
        return project.id

    return _make


@pytest.fixture()
def add_setup():
    """Insert setup rows for a project and commit."""

    def _add(project_id, roles=0, locations=0, talent=0, team=(), default_roles=0,
             default_locations=0):
        for i in range(roles):
            _db.session.add(RoleTemplate(project_id=project_id, name=f"Role {i}"))
        for i in range(default_roles):
            _db.session.add(RoleTemplate(project_id=project_id, name=f"Default {i}", is_default=True))
        for i in range(locations):
            _db.session.add(ProjectLocation(project_id=project_id, name=f"Stage {i}"))
        for i in range(default_locations):
            _db.session.add(ProjectLocation(project_id=project_id, name=f"Lobby {i}", is_default=True))
        for i in range(talent):
            _db.session.add(TalentRosterEntry(project_id=project_id, talent_ref=f"talent-{i}"))
        for i, role in enumerate(team):
            _db.session.add(TeamAssignment(project_id=project_id, user_ref=f"user-{i}", role=role))
        _db.session.commit()

    return _add
