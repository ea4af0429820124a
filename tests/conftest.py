"""
Shared fixtures: an app on in-memory SQLite, user / leave-type factories and
a logged-in JSON client.

    pytest tests/ -v
"""
import itertools
import sys
from datetime import date, datetime
from pathlib import Path

import pytest
from flask import g

sys.path.insert(0, str(Path(__file__).parent.parent))

from app import create_app  # noqa: E402
from extensions import db  # noqa: E402
from models import (  # noqa: E402
    ApprovalDelegate,
    LeaveBalance,
    LeaveRequest,
    LeaveType,
    RequestKind,
    RequestStatus,
    User,
)

PASSWORD = "secret-pass"

# Monday; Mon..Wed is three working days
MONDAY = date(2027, 3, 1)


# ============================================================
# Application
# ============================================================
@pytest.fixture
def app(tmp_path):
    app = create_app("config.TestConfig")

    with app.app_context():
        db.create_all()

        components = app.extensions["workflow"]
        components.documents.documents_dir = str(tmp_path / "documents")
        components.documents.renderer = lambda fields: b"%PDF-1.4 test"

        yield app

        db.session.remove()
        db.drop_all()


@pytest.fixture
def components(app):
    return app.extensions["workflow"]


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def login_as(client):
    """Logs ``user`` in on the shared test client."""

    def _login(user, password=PASSWORD):
        # The test's app context is shared with requests; drop any cached user
        g.pop("_login_user", None)
        resp = client.post("/auth/login", json={"email": user.email, "password": password})
        assert resp.status_code == 200, resp.get_json()
        return resp

    return _login


# ============================================================
# Factories
# ============================================================
@pytest.fixture
def make_user(app):
    counter = itertools.count(1)

    def _make(role="EMPLOYEE", manager=None, director=None, name=None,
              department="Engineering", is_active=True):
        n = next(counter)
        user = User(
            email=f"{role.lower()}{n}@example.com",
            name=name or f"{role.title()} {n}",
            role=role,
            department=department,
            position=role.title(),
            manager_id=manager.id if manager else None,
            department_director_id=director.id if director else None,
            is_active=is_active,
        )
        user.set_password(PASSWORD)
        db.session.add(user)
        db.session.commit()
        return user

    return _make


@pytest.fixture
def annual_leave(app):
    lt = LeaveType(code="ANNUAL", name="Annual Leave", is_special_leave=False, requires_balance=True)
    db.session.add(lt)
    db.session.commit()
    return lt


@pytest.fixture
def special_leave(app):
    lt = LeaveType(code="MARRIAGE", name="Marriage Leave", is_special_leave=True, requires_balance=False)
    db.session.add(lt)
    db.session.commit()
    return lt


@pytest.fixture
def give_balance(annual_leave):
    def _give(user, available=20, leave_type=None, year=MONDAY.year):
        lt = leave_type or annual_leave
        bal = LeaveBalance(
            user_id=user.id, leave_type_id=lt.id, year=year,
            entitled=available, used=0, pending=0, available=available,
        )
        db.session.add(bal)
        db.session.commit()
        return bal

    return _give


@pytest.fixture
def approved_leave(annual_leave):
    """An already approved leave (used to make someone absent)."""

    def _make(user, start=MONDAY, end=MONDAY):
        req = LeaveRequest(
            kind=RequestKind.LEAVE,
            user_id=user.id,
            leave_type_id=annual_leave.id,
            start_date=start,
            end_date=end,
            total_days=1,
            status=RequestStatus.APPROVED,
            approval_chain=[],
        )
        db.session.add(req)
        db.session.commit()
        return req

    return _make


@pytest.fixture
def delegate(app):
    def _make(delegator, delegate_user, start=None, end=None, is_active=True):
        today = datetime.utcnow().date()
        d = ApprovalDelegate(
            delegator_id=delegator.id,
            delegate_id=delegate_user.id,
            start_date=start or date.fromordinal(today.toordinal() - 1),
            end_date=end or date.fromordinal(today.toordinal() + 60),
            is_active=is_active,
        )
        db.session.add(d)
        db.session.commit()
        return d

    return _make


@pytest.fixture
def org(make_user):
    """Executive X <- director D <- manager M <- employee E (plus HR)."""
    x = make_user("EXECUTIVE", name="Xavier Exec")
    d = make_user("DEPARTMENT_DIRECTOR", manager=x, name="Dana Director")
    m = make_user("MANAGER", manager=d, director=d, name="Mona Manager")
    e = make_user("EMPLOYEE", manager=m, director=d, name="Eli Employee")
    return {"X": x, "D": d, "M": m, "E": e}
