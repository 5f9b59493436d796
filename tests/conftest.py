"""
Shared pytest fixtures for the Retail Audit Platform test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - checklist: the seeded default checklist
    - people / store: a small network (ADMIN, AMONT, DOT, Aderente, one store)
"""

import pytest

from retail_audit import create_app
from retail_audit.models import db as _db
from retail_audit.models.user import Store, User
from retail_audit.services.checklist_service import seed_default_checklist


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


# ── Domain fixtures ──────────────────────────────────────────────────────


@pytest.fixture()
def checklist():
    cl = seed_default_checklist()
    _db.session.commit()
    return cl


@pytest.fixture()
def people():
    """One user per active role; the DOT reports to the AMONT."""
    admin = User(email="admin@example.com", fullname="Admin", roles=["ADMIN"])
    amont = User(email="amont@example.com", fullname="Amont", roles=["AMONT"])
    _db.session.add_all([admin, amont])
    _db.session.flush()
    dot = User(email="dot@example.com", fullname="Dot", roles=["DOT"], amont_id=amont.id)
    aderente = User(email="aderente@example.com", fullname="Aderente", roles=["ADERENTE"])
    _db.session.add_all([dot, aderente])
    _db.session.commit()
    return {"admin": admin, "amont": amont, "dot": dot, "aderente": aderente}


@pytest.fixture()
def store(people):
    s = Store(
        codehex="A1F0",
        brand="Intermarché",
        city="Porto",
        dot_user_id=people["dot"].id,
        aderente_id=people["aderente"].id,
    )
    _db.session.add(s)
    _db.session.commit()
    return s

