"""
Shared pytest fixtures for the Compliance Hub test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - organization / admin_user / member_user: committed identity rows
    - make_template / make_deliverable: factories for gated deliverables

Fixture rows are committed, not just flushed: the lifecycle services roll
the session back on failure and must not take the fixtures with them.
"""

import pytest

from compliance_hub import create_app
from compliance_hub.models import db as _db
from compliance_hub.models.deliverable import Deliverable
from compliance_hub.models.organization import ROLE_ADMIN, ROLE_MEMBER, Organization, User
from compliance_hub.services import compliance_template_service


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


# ── Identity ─────────────────────────────────────────────────────────────


def make_organization(slug: str = "acme") -> Organization:
    org = Organization(name=slug.title(), slug=slug)
    _db.session.add(org)
    _db.session.commit()
    return org


def make_user(org_id: int, email: str, role: str = ROLE_MEMBER) -> User:
    user = User(organization_id=org_id, email=email, full_name=email.split("@")[0], role=role)
    _db.session.add(user)
    _db.session.commit()
    return user


@pytest.fixture()
def organization():
    return make_organization()


@pytest.fixture()
def admin_user(organization):
    return make_user(organization.id, "admin@acme.test", ROLE_ADMIN)


@pytest.fixture()
def member_user(organization):
    return make_user(organization.id, "member@acme.test", ROLE_MEMBER)


# ── Templates & deliverables ─────────────────────────────────────────────


def _step_spec(number: int, **overrides) -> dict:
    """A minimal valid step specification."""
    spec = {"step_number": number, "step_type": "form", "title": f"Step {number}"}
    spec.update(overrides)
    return spec


@pytest.fixture()
def make_template(organization):
    """Factory: create a template for ``organization`` from step specs."""

    def _make(steps=None, *, name="Standard gate", category=None, is_default=False, org_id=None):
        return compliance_template_service.create_template(
            org_id or organization.id,
            {
                "name": name,
                "deliverable_category": category,
                "is_default": is_default,
                "steps": steps if steps is not None else [_step_spec(1), _step_spec(2), _step_spec(3)],
            },
        )

    return _make


@pytest.fixture()
def make_deliverable(organization):
    """Factory: create an ungated deliverable row."""

    def _make(name="Quarterly report", category=None, org_id=None):
        deliverable = Deliverable(
            organization_id=org_id or organization.id,
            name=name,
            category=category,
        )
        _db.session.add(deliverable)
        _db.session.commit()
        return deliverable

    return _make


@pytest.fixture()
def gated(make_template, make_deliverable):
    """Factory: deliverable with an instantiated chain.  Returns (deliverable, steps)."""

    def _make(steps=None):
        template = make_template(steps)
        deliverable = make_deliverable()
        chain = compliance_template_service.instantiate_steps(deliverable.id, template.id)
        return deliverable, chain

    return _make


@pytest.fixture()
def other_org_admin():
    """An administrator of a second, unrelated organization."""
    other = make_organization("globex")
    return make_user(other.id, "admin@globex.test", ROLE_ADMIN)
