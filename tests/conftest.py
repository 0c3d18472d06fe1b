"""
Shared pytest fixtures for the form workflow test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - users: a distributor, an admin and lab members with/without approval authority
    - auth: callable returning Authorization headers for a user
    - template / shared: a distributed form and the first recipient's root assignment
"""

import pytest

from formflow import create_app
from formflow.models import db as _db
from formflow.models.auth import User
from formflow.services.jwt_service import generate_access_token
from formflow.services.system_config_service import invalidate_snapshot

# Fields are optional so transition tests are not blocked by finalize checks.
BASIC_FIELDS = [
    {"id": "name", "type": "text", "label": "Name"},
    {"id": "age", "type": "number", "label": "Age",
     "validation": {"rules": [{"type": "min", "value": 18}]}},
    {"id": "email", "type": "email", "label": "Email"},
]

REQUIRED_FIELDS = [
    {"id": "name", "type": "text", "label": "Name", "required": True},
    {"id": "notes", "type": "textarea", "label": "Notes"},
]


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Start from empty tables (create_app seeds config rows), drop at end."""
    with app.app_context():
        _db.drop_all()
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        invalidate_snapshot()
        yield
        _db.session.rollback()
        invalidate_snapshot()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Identity fixtures ────────────────────────────────────────────────────


def make_user(username, designation="Scientist", lab_name="Lab-1", role="user", **kw):
    user = User(
        username=username,
        full_name=kw.pop("full_name", username.title()),
        designation=designation,
        lab_name=lab_name,
        role=role,
        **kw,
    )
    _db.session.add(user)
    _db.session.commit()
    return user


@pytest.fixture()
def users():
    """
    dist     distributes forms (HQ)
    admin    administrator
    alice    Lab-1, no approval authority
    bob      Lab-1, Director (approval authority)
    carol    Lab-1, no approval authority
    outsider Lab-2
    """
    return {
        "dist": make_user("dist", designation="Joint Secretary(Admin)", lab_name="HQ"),
        "admin": make_user("admin", designation="Administrator", lab_name="HQ", role="admin"),
        "alice": make_user("alice"),
        "bob": make_user("bob", designation="Director"),
        "carol": make_user("carol"),
        "outsider": make_user("outsider", lab_name="Lab-2"),
    }


@pytest.fixture()
def auth():
    """Return a callable: auth(user) → Authorization headers."""
    def _headers(user):
        token = generate_access_token(user.id, role=user.role)
        return {"Authorization": f"Bearer {token}"}
    return _headers


# ── Workflow fixtures ────────────────────────────────────────────────────


def create_template(client, auth, owner, **overrides):
    body = {"title": "Annual Return", "description": "Yearly data call", "fields": BASIC_FIELDS}
    body.update(overrides)
    res = client.post("/api/v1/templates", json=body, headers=auth(owner))
    assert res.status_code == 201, res.get_json()
    return res.get_json()["data"]


def share(client, auth, owner, template_id, *recipients):
    res = client.post(
        f"/api/v1/templates/{template_id}/share",
        json={"userIds": [u.id for u in recipients]},
        headers=auth(owner),
    )
    assert res.status_code in (200, 201), res.get_json()
    return res.get_json()["data"]["assignments"]


@pytest.fixture()
def template(client, auth, users):
    """A form created by the distributor, not yet shared."""
    return create_template(client, auth, users["dist"])


@pytest.fixture()
def shared(client, auth, users, template):
    """The template shared with alice; returns alice's root assignment."""
    return share(client, auth, users["dist"], template["id"], users["alice"])[0]


@pytest.fixture()
def delegated(client, auth, users, shared):
    """alice → bob; returns bob's child assignment."""
    res = client.post(
        "/api/v1/workflow/delegate",
        json={"parentAssignmentId": shared["id"], "assignedToId": users["bob"].id},
        headers=auth(users["alice"]),
    )
    assert res.status_code == 201, res.get_json()
    return res.get_json()["data"]
