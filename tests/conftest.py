"""
Shared pytest fixtures for the contractflow test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - project / programme: pre-created context rows
    - event_log: records every event published on the app bus
    - load_fixture: reads an XML file from tests/fixtures
"""

import os

import pytest

from contractflow import create_app
from contractflow.models import db as _db
from contractflow.models.programme import Programme
from contractflow.models.project import Project
from contractflow.services.event_bus import APPROVAL_COMPLETED, NOTIFICATION_SEND

FIXTURES = os.path.join(os.path.dirname(__file__), "fixtures")


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
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
def project():
    """A Project row (owned by the outer CRUD layer in production)."""
    p = Project(name="A14 Junction Upgrade")
    _db.session.add(p)
    _db.session.commit()
    return p


@pytest.fixture()
def programme(project):
    """An empty Programme ready for import."""
    prog = Programme(project_id=project.id, name="Target Programme Rev A")
    _db.session.add(prog)
    _db.session.commit()
    return prog


@pytest.fixture()
def event_log(app):
    """Capture events published on the app's bus during one test."""
    bus = app.extensions["event_bus"]
    events = []

    def _record(event_type):
        def handler(payload):
            events.append((event_type, payload))
        return handler

    handlers = {t: _record(t) for t in (APPROVAL_COMPLETED, NOTIFICATION_SEND)}
    for event_type, handler in handlers.items():
        bus.subscribe(event_type, handler)
    yield events
    for event_type, handler in handlers.items():
        bus.unsubscribe(event_type, handler)


@pytest.fixture()
def load_fixture():
    def _load(name):
        with open(os.path.join(FIXTURES, name), "rb") as fh:
            return fh.read()
    return _load
