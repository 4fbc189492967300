"""
Shared pytest fixtures for the OpEx Hub test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_user: factory for extra users
    - users: one active user per workflow role at site NDS
    - make_initiative: registers an initiative (lands at stage 2)
    - advance: drives an initiative through the workflow to a given stage
"""

import pytest

from opexhub import create_app
from opexhub.auth import AuthenticatedActor
from opexhub.models import db as _db
from opexhub.models.auth import User
from opexhub.services import (
    initiative_service,
    monitoring_service,
    timeline_service,
    transaction_store,
    workflow_engine,
)

SITE = "NDS"


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


# ── Helpers ──────────────────────────────────────────────────────────────


def _make_user(email, role, site=SITE, full_name=None, is_active=True):
    user = User(
        email=email,
        full_name=full_name or email.split("@")[0].title(),
        site=site,
        role=role,
        is_active=is_active,
    )
    _db.session.add(user)
    _db.session.commit()
    return user


def _actor(user):
    return AuthenticatedActor.from_user(user)


def _pending(initiative):
    return transaction_store.get_pending(initiative.id)


def _approve(initiative, user, payload=None, comment="Looks good"):
    txn = _pending(initiative)
    return workflow_engine.process_stage_action(txn.id, _actor(user), "approve", comment, payload)


def _add_completed_timeline_entry(initiative, user, name="Install VFD"):
    return timeline_service.create_entry(initiative.id, _actor(user), {
        "stage_name": name,
        "planned_start_date": "2026-01-01",
        "planned_end_date": "2026-02-01",
        "actual_start_date": "2026-01-05",
        "actual_end_date": "2026-01-25",
        "status": "COMPLETED",
    })


def _add_finalized_monitoring_entry(initiative, user, month="2026-03", target=1000, achieved=1200):
    entry = monitoring_service.create_entry(initiative.id, _actor(user), {
        "monitoring_month": month,
        "kpi_description": "Power saving (kWh)",
        "target_value": target,
        "achieved_value": achieved,
    })
    return monitoring_service.set_finalized(entry.id, _actor(user), True)


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def make_user():
    """Factory: add a user to the directory."""
    return _make_user


@pytest.fixture()
def users():
    """One active user per workflow role at NDS, keyed by role code."""
    return {
        "IL": _make_user("lead@nds.example.com", "IL", full_name="Ivy Lead"),
        "STLD": _make_user("tsd@nds.example.com", "STLD"),
        "HOD": _make_user("hod@nds.example.com", "HOD"),
        "SH": _make_user("sitehead@nds.example.com", "SH"),
        "CTSD": _make_user("ctsd@corp.example.com", "CTSD"),
        "F&A": _make_user("finance@nds.example.com", "F&A"),
        "ADMIN": _make_user("admin@nds.example.com", "ADMIN"),
    }


@pytest.fixture()
def make_initiative(users):
    """Factory: register an initiative at NDS as the Initiative Lead."""
    def _make(**overrides):
        data = {
            "title": "Reduce compressed air leakage",
            "description": "Leak survey and repair across utilities",
            "site": SITE,
            "discipline": "Operation",
            "expected_savings": 250000,
            "budget_type": "BUDGETED",
            "confidence_level": 80,
        }
        data.update(overrides)
        lead = users["IL"]
        if data["site"] != SITE:
            lead = _make_user(f"lead@{data['site'].lower()}.example.com", "IL", site=data["site"])
        return initiative_service.create_initiative(_actor(lead), data)

    return _make


@pytest.fixture()
def advance(users):
    """Drive ``initiative`` forward by approving each stage until ``stage`` is pending."""
    def _advance(initiative, stage):
        while initiative.current_stage < stage:
            current = initiative.current_stage
            if current == 2:
                _approve(initiative, users["HOD"])
            elif current == 3:
                _approve(initiative, users["STLD"])
            elif current == 4:
                _approve(initiative, users["SH"], {"assigned_user_id": users["IL"].id})
            elif current == 5:
                _approve(initiative, users["IL"], {"requires_moc": "N", "requires_capex": "N"})
            elif current == 6:
                _add_completed_timeline_entry(initiative, users["IL"])
                _approve(initiative, users["IL"])
            elif current == 7:
                _approve(initiative, users["STLD"])
            elif current == 8:
                _approve(initiative, users["CTSD"])
            elif current == 9:
                _add_finalized_monitoring_entry(initiative, users["IL"])
                _approve(initiative, users["IL"])
            elif current == 10:
                ids = [e.id for e in monitoring_service.finalized_pending_fa(initiative.id)]
                _approve(initiative, users["F&A"], {"approved_entry_ids": ids})
            else:
                raise AssertionError(f"cannot advance from stage {current}")
        return initiative

    return _advance
