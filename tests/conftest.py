"""
Shared pytest fixtures for the Project Tracker Core test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - org / project: Pre-created Organisation and Project
    - users: one actor per project role, plus an org admin and an outsider
    - billing: a Partner with two linked Resources
    - auth_headers: bearer-token headers for an actor
    - make_timesheet / make_expense: DB-level factories (bypass the engine
      to start records in an arbitrary status)
"""

from datetime import date
from decimal import Decimal

import pytest

from tracker import create_app
from tracker.models import db as _db
from tracker.models.auth import Organisation, Project, User
from tracker.models.billing import Partner, Resource
from tracker.models.workflow import Expense, Timesheet
from tracker.services.jwt_service import generate_access_token
from tracker.services.scope_resolver import assign_organisation_role, assign_project_role

PROJECT_ROLES = (
    "admin",
    "supplier_pm",
    "supplier_finance",
    "customer_pm",
    "customer_finance",
    "contributor",
    "viewer",
)


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


def _make_user(email, full_name=None):
    user = User(email=email, full_name=full_name or email.split("@")[0], status="active")
    _db.session.add(user)
    _db.session.commit()
    return user


@pytest.fixture()
def make_user():
    """Return a function creating an active User with no memberships."""
    return _make_user


@pytest.fixture()
def org():
    o = Organisation(name="Acme Delivery", slug="acme")
    _db.session.add(o)
    _db.session.commit()
    return o


@pytest.fixture()
def project(org):
    p = Project(organisation_id=org.id, code="ROLLOUT", name="Rollout")
    _db.session.add(p)
    _db.session.commit()
    return p


@pytest.fixture()
def other_project(org):
    p = Project(organisation_id=org.id, code="OTHER", name="Other Project")
    _db.session.add(p)
    _db.session.commit()
    return p


@pytest.fixture()
def users(project):
    """One user per project role, keyed by role name.

    Extra keys:
        org_admin:    org_admin of the owning organisation, no project row
        outsider:     no membership anywhere
        contributor2: a second contributor (ownership checks)
    """
    result = {}
    for role in PROJECT_ROLES:
        user = _make_user(f"{role}@test.local")
        assign_project_role(project.id, user.id, role)
        result[role] = user

    second = _make_user("contributor2@test.local")
    assign_project_role(project.id, second.id, "contributor")
    result["contributor2"] = second

    org_admin = _make_user("org-admin@test.local")
    assign_organisation_role(project.organisation_id, org_admin.id, "org_admin")
    result["org_admin"] = org_admin

    result["outsider"] = _make_user("outsider@test.local")
    return result


@pytest.fixture()
def billing(project, users):
    """Partner with two resources.

    alice: cost_rate 100.00, linked to the contributor actor
    bob:   cost_rate 80.50, no actor link
    """
    partner = Partner(project_id=project.id, name="Northwind Consulting", contact_email="ap@northwind.test")
    _db.session.add(partner)
    _db.session.flush()
    alice = Resource(
        project_id=project.id, name="Alice", cost_rate=Decimal("100.00"),
        partner_id=partner.id, user_id=users["contributor"].id,
    )
    bob = Resource(project_id=project.id, name="Bob", cost_rate=Decimal("80.50"), partner_id=partner.id)
    _db.session.add_all([alice, bob])
    _db.session.commit()
    return {"partner": partner, "alice": alice, "bob": bob}


@pytest.fixture()
def auth_headers():
    """Return a function building Authorization headers for a user."""
    def _headers(user):
        return {"Authorization": f"Bearer {generate_access_token(user.id)}"}
    return _headers


@pytest.fixture()
def make_timesheet(project):
    """Factory: Timesheet row at any status (bypasses the engine)."""
    def _make(resource, work_date, hours, *, status="approved", chargeable=True, created_by=None):
        ts = Timesheet(
            project_id=project.id,
            resource_id=resource.id,
            work_date=work_date if isinstance(work_date, date) else date.fromisoformat(work_date),
            hours=Decimal(str(hours)),
            chargeable_to_customer=chargeable,
            status=status,
            version=1,
            created_by=created_by,
        )
        _db.session.add(ts)
        _db.session.commit()
        return ts
    return _make


@pytest.fixture()
def make_expense(project):
    """Factory: Expense row at any status (bypasses the engine)."""
    def _make(resource, expense_date, amount, *, status="approved", chargeable=True,
              procurement_method=None, category="Travel", reason="Client visit", created_by=None):
        exp = Expense(
            project_id=project.id,
            resource_id=resource.id,
            expense_date=expense_date if isinstance(expense_date, date) else date.fromisoformat(expense_date),
            amount=Decimal(str(amount)),
            chargeable_to_customer=chargeable,
            procurement_method=procurement_method,
            category=category,
            reason=reason,
            status=status,
            version=1,
            created_by=created_by,
        )
        _db.session.add(exp)
        _db.session.commit()
        return exp
    return _make
