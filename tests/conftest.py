"""
Shared pytest fixtures for the administrator management test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - company / other_company: tenants
    - school / branch / second_branch: organisation rows inside ``company``
    - make_admin: factory that inserts and commits an Administrator
    - auth_headers: factory returning a Bearer header for an administrator id
"""

import pytest

from orgadmin import create_app
from orgadmin.models import db as _db
from orgadmin.models.admin import Administrator
from orgadmin.models.organisation import Branch, Company, School


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
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Organisation fixtures ────────────────────────────────────────────────


@pytest.fixture()
def company():
    c = Company(name="Northwind Academies", code="NWA")
    _db.session.add(c)
    _db.session.commit()
    return c


@pytest.fixture()
def other_company():
    c = Company(name="Southgate Schools", code="SGS")
    _db.session.add(c)
    _db.session.commit()
    return c


@pytest.fixture()
def school(company):
    s = School(company_id=company.id, name="Riverside School", code="SCH-1")
    _db.session.add(s)
    _db.session.commit()
    return s


@pytest.fixture()
def branch(school):
    b = Branch(school_id=school.id, name="Riverside North", code="BR-1")
    _db.session.add(b)
    _db.session.commit()
    return b


@pytest.fixture()
def second_branch(school):
    b = Branch(school_id=school.id, name="Riverside South", code="BR-2")
    _db.session.add(b)
    _db.session.commit()
    return b


# ── Administrator factory ────────────────────────────────────────────────


@pytest.fixture()
def make_admin(company):
    """Insert an administrator directly (no authorization) and commit."""

    def _make(admin_id, level, parent=None, company_id=None, **kw):
        admin = Administrator(
            id=admin_id,
            company_id=company_id or company.id,
            name=kw.pop("name", f"Admin {admin_id}"),
            email=kw.pop("email", f"{admin_id.lower()}@example.com"),
            admin_level=level,
            parent_admin_id=parent,
            **kw,
        )
        _db.session.add(admin)
        _db.session.commit()
        return admin

    return _make


@pytest.fixture()
def auth_headers(app):
    """Return ``{"Authorization": "Bearer ..."}`` for an administrator."""
    from orgadmin.services.jwt_service import generate_access_token

    def _headers(admin):
        token = generate_access_token(admin.id, admin.company_id)
        return {"Authorization": f"Bearer {token}"}

    return _headers
