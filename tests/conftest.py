"""
Shared pytest fixtures for the Project Tracker test suite.

Provides:
    - app: Flask application (session-scoped, files under a tmp dir)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - users: one committed user per role, keyed by role name
    - actor: ``actor(role)`` → ``{"id", "username", "role"}`` for service calls
    - auth_headers: ``auth_headers(role)`` → Authorization header dict
"""


import pytest

from tracker import create_app
from tracker.config import TestingConfig
from tracker.models import db as _db
from tracker.models.user import Role
from tracker.services import user_service, workflow_service
from tracker.services.jwt_service import generate_access_token

TEST_PASSWORD = "secret-pass-1"



# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app(tmp_path_factory):
    """Create the Flask application once per test session."""
    TestingConfig.PROJECT_FILES_BASE_DIR = str(tmp_path_factory.mktemp("project_files"))
    TestingConfig.LEGACY_DATA_DIR = str(tmp_path_factory.mktemp("legacy_data"))
    return create_app("testing")


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
        workflow_service.ensure_default_workflow()
        _db.session.commit()
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def users():
    """One user per role; usernames are the role lower-cased without spaces."""
    created = {}
    for role in Role:
        created[role.value] = user_service.create_user(
            role.value.lower().replace(" ", "_"),
            TEST_PASSWORD,
            role.value,
            allow_admin_developer=True,
        )
    _db.session.commit()
    return created


@pytest.fixture()
def actor(users):
    """Return ``actor(role)`` — the ``g.current_user`` shape for that role's user."""
    def _actor(role):
        role = getattr(role, "value", role)
        user = users[role]
        return {"id": user.id, "username": user.username, "role": user.role}
    return _actor


@pytest.fixture()
def auth_headers(users):
    """Return ``auth_headers(role)`` — a bearer token header for that role's user."""
    def _headers(role):
        role = getattr(role, "value", role)
        user = users[role]
        token = generate_access_token(user.id, user.username, user.role)
        return {"Authorization": f"Bearer {token}"}
    return _headers
