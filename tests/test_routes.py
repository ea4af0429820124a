"""JSON endpoints: auth, request lifecycle, documents, admin and delegation."""
from datetime import date, timedelta

import pytest

from extensions import db
from models import Approval, ApprovalStatus, RequestStatus, WorkflowRule

from .conftest import MONDAY


def _leave_body(leave_type, start=MONDAY, days=3, **extra):
    body = {
        "kind": "LEAVE",
        "leave_type_id": leave_type.id,
        "start_date": start.isoformat(),
        "end_date": (start + timedelta(days=days - 1)).isoformat(),
        "reason": "Family trip",
    }
    body.update(extra)
    return body


@pytest.fixture
def submitted(org, give_balance, annual_leave, client, login_as):
    give_balance(org["E"])
    login_as(org["E"])
    resp = client.post("/workflow/requests", json=_leave_body(annual_leave))
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()


class TestAuth:

    def test_login_required(self, client):
        resp = client.get("/workflow/requests")
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "unauthorized"

    def test_bad_credentials(self, org, client):
        resp = client.post("/auth/login", json={"email": org["E"].email, "password": "wrong"})
        assert resp.status_code == 401

    def test_inactive_user_cannot_log_in(self, make_user, client):
        ghost = make_user(is_active=False)
        resp = client.post("/auth/login", json={"email": ghost.email, "password": "secret-pass"})
        assert resp.status_code == 401

    def test_missing_fields(self, client):
        resp = client.post("/auth/login", json={"email": ""})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "VALIDATION_ERROR"

    def test_me(self, org, client, login_as):
        login_as(org["M"])
        data = client.get("/auth/me").get_json()
        assert (data["id"], data["role"]) == (org["M"].id, "MANAGER")


class TestRequestLifecycle:

    def test_submit_and_approve(self, org, submitted, client, login_as):
        assert submitted["status"] == RequestStatus.PENDING
        assert submitted["total_days"] == 3
        assert [a["approver_id"] for a in submitted["approvals"]] == [org["M"].id]
        assert submitted["document"]["status"] == "PENDING_SIGNATURES"

        login_as(org["M"])
        pending = client.get("/workflow/approvals/pending").get_json()
        assert [p["request_id"] for p in pending] == [submitted["id"]]

        resp = client.post(f"/workflow/requests/{submitted['id']}/approve", json={"comments": "Have fun"})
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["approval"]["status"] == "APPROVED"
        assert data["request"]["status"] == RequestStatus.APPROVED

        again = client.post(f"/workflow/requests/{submitted['id']}/approve", json={})
        assert again.status_code == 409
        assert again.get_json()["error"] == "INVALID_STATE"

    def test_reject(self, org, submitted, client, login_as):
        login_as(org["M"])
        resp = client.post(f"/workflow/requests/{submitted['id']}/reject", json={"comments": "Busy week"})
        assert resp.get_json()["request"]["status"] == RequestStatus.REJECTED

    def test_self_approval_is_forbidden(self, submitted, client):
        resp = client.post(f"/workflow/requests/{submitted['id']}/approve", json={})
        assert resp.status_code == 403
        assert resp.get_json()["error"] == "SELF_APPROVAL"

    def test_outsider_cannot_approve(self, org, submitted, client, login_as):
        login_as(org["X"])
        resp = client.post(f"/workflow/requests/{submitted['id']}/approve", json={})
        assert resp.status_code == 404
        assert resp.get_json()["error"] == "NOT_FOUND"

    def test_cancel(self, submitted, client):
        resp = client.post(f"/workflow/requests/{submitted['id']}/cancel", json={"reason": "Trip off"})
        assert resp.status_code == 200
        assert resp.get_json()["status"] == RequestStatus.CANCELLED

    def test_unknown_request(self, org, client, login_as):
        login_as(org["E"])
        resp = client.get("/workflow/requests/999")
        assert resp.status_code == 404
        assert resp.get_json()["error"] == "NOT_FOUND"

    def test_strangers_cannot_read_a_request(self, submitted, make_user, client, login_as):
        login_as(make_user())
        assert client.get(f"/workflow/requests/{submitted['id']}").status_code == 403

    def test_approver_can_read_a_request(self, org, submitted, client, login_as):
        login_as(org["M"])
        resp = client.get(f"/workflow/requests/{submitted['id']}")
        assert resp.status_code == 200
        live = client.get(f"/workflow/requests/{submitted['id']}/live-approvals").get_json()
        assert [a["approver_id"] for a in live] == [org["M"].id]

    def test_bad_date(self, org, annual_leave, client, login_as):
        login_as(org["E"])
        resp = client.post("/workflow/requests", json={**_leave_body(annual_leave), "start_date": "01/03/2027"})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "VALIDATION_ERROR"

    def test_leave_type_id_may_be_a_string(self, org, give_balance, annual_leave, client, login_as):
        give_balance(org["E"])
        login_as(org["E"])
        resp = client.post("/workflow/requests", json=_leave_body(annual_leave, leave_type_id=str(annual_leave.id)))
        assert resp.status_code == 201, resp.get_json()
        assert resp.get_json()["leave_type"] == annual_leave.code

    @pytest.mark.parametrize("leave_type_id", ["abc", "999"])
    def test_bad_leave_type_id(self, org, annual_leave, client, login_as, leave_type_id):
        login_as(org["E"])
        resp = client.post("/workflow/requests", json=_leave_body(annual_leave, leave_type_id=leave_type_id))
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "VALIDATION_ERROR"

    def test_my_requests(self, submitted, client):
        rows = client.get("/workflow/requests?status=pending").get_json()
        assert [r["id"] for r in rows] == [submitted["id"]]


class TestDocumentsApi:

    def test_download(self, submitted, client):
        resp = client.get(f"/workflow/requests/{submitted['id']}/document")
        assert resp.status_code == 200
        assert resp.mimetype == "application/pdf"
        assert resp.data.startswith(b"%PDF")

    def test_employee_slot_cannot_be_signed_twice(self, submitted, client):
        doc_id = submitted["document"]["id"]
        resp = client.post(f"/workflow/documents/{doc_id}/sign", json={"role": "EMPLOYEE", "signature": "again"})
        assert resp.status_code == 409
        assert resp.get_json()["error"] == "DUPLICATE_SIGNATURE"

    def test_approver_signs_only_after_deciding(self, org, submitted, client, login_as):
        doc_id = submitted["document"]["id"]
        login_as(org["M"])

        resp = client.post(f"/workflow/documents/{doc_id}/sign",
                           json={"role": "DIRECT_MANAGER", "signature": "data:image/png;base64,TQ=="})
        assert resp.status_code == 403
        assert resp.get_json()["error"] == "AUTHORIZATION_FAILED"

    def test_string_false_rejects_on_the_document(self, org, submitted, client, login_as):
        # Decision recorded without mirroring it onto the document: the manager slot stays open
        Approval.query.filter_by(request_id=submitted["id"]).update(
            {Approval.status: ApprovalStatus.APPROVED}, synchronize_session=False
        )
        db.session.commit()
        login_as(org["M"])

        resp = client.post(f"/workflow/documents/{submitted['document']['id']}/sign",
                           json={"role": "DIRECT_MANAGER", "signature": "sig", "approved": "false"})

        assert resp.status_code == 200, resp.get_json()
        assert resp.get_json()["request_status"] == RequestStatus.REJECTED

    def test_signature_required(self, submitted, client):
        doc_id = submitted["document"]["id"]
        # Employee slot is taken, but the signature check runs first
        resp = client.post(f"/workflow/documents/{doc_id}/sign", json={"role": "EMPLOYEE"})
        assert resp.status_code == 400


class TestPlanningApi:

    def test_working_days(self, org, client, login_as):
        login_as(org["E"])
        resp = client.get("/workflow/working-days?start=2027-03-01&end=2027-03-07")
        assert resp.get_json()["working_days"] == 5

    def test_conflicts(self, org, client, login_as):
        login_as(org["E"])
        resp = client.post("/workflow/conflicts", json={"start_date": "2027-03-01", "end_date": "2027-03-07"})
        data = resp.get_json()
        assert resp.status_code == 200
        assert len(data["original_dates"]) == 5
        assert data["conflicts"] == []


class TestAdminApi:

    @pytest.fixture
    def admin(self, make_user, login_as):
        user = make_user("ADMIN")
        login_as(user)
        return user

    def test_non_admin_forbidden(self, org, client, login_as):
        login_as(org["E"])
        resp = client.get("/admin/rules")
        assert resp.status_code == 403
        assert resp.get_json()["error"] == "forbidden"

    def test_escalation_settings(self, admin, client):
        assert client.get("/admin/escalation/settings").get_json()["escalation_enabled"] is True

        resp = client.put("/admin/escalation/settings", json={"escalationDaysBeforeAutoApproval": 5})
        assert resp.status_code == 200
        assert resp.get_json()["escalation_days_before_auto_approval"] == 5

    def test_invalid_setting(self, admin, client):
        resp = client.put("/admin/escalation/settings", json={"maxEscalationLevels": 0})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "VALIDATION_ERROR"

    def test_manual_sweep(self, admin, client):
        data = client.post("/admin/escalation/run").get_json()
        assert data["enabled"] is True
        assert data["considered"] == 0

    def test_rule_crud(self, admin, client):
        body = {
            "name": "Engineering long leave",
            "conditions": {"department": ["Engineering"], "daysGreaterThan": 10},
            "approval_levels": [{"role": "DIRECT_MANAGER"}, {"role": "HR"}],
            "priority": 40,
        }
        created = client.post("/admin/rules", json=body)
        assert created.status_code == 201
        rule_id = created.get_json()["id"]

        resp = client.patch(f"/admin/rules/{rule_id}/priority", json={"priority": 95})
        assert resp.get_json()["priority"] == 95

        resp = client.delete(f"/admin/rules/{rule_id}")
        assert resp.get_json()["is_active"] is False
        assert client.get("/admin/rules?active=1").get_json() == []
        assert WorkflowRule.query.count() == 1

    @pytest.mark.parametrize("body", [
        {"name": "", "approval_levels": [{"role": "HR"}]},
        {"name": "r", "approval_levels": []},
        {"name": "r", "approval_levels": [{"role": "JANITOR"}]},
        {"name": "r", "conditions": {"color": "blue"}, "approval_levels": [{"role": "HR"}]},
        {"name": "r", "conditions": {"daysGreaterThan": "ten"}, "approval_levels": [{"role": "HR"}]},
    ])
    def test_invalid_rules(self, admin, client, body):
        resp = client.post("/admin/rules", json=body)
        assert resp.status_code == 400


class TestDelegationApi:

    def _body(self, delegate_user, start_offset=-1, days=7):
        start = date.today() + timedelta(days=start_offset)
        return {
            "delegate_id": delegate_user.id,
            "start_date": start.isoformat(),
            "end_date": (start + timedelta(days=days)).isoformat(),
        }

    def test_create_and_toggle(self, org, client, login_as):
        login_as(org["M"])
        resp = client.post("/delegation/", json=self._body(org["D"]))
        assert resp.status_code == 201
        d = resp.get_json()
        assert d["effective_today"] is True

        overlapping = client.post("/delegation/", json=self._body(org["X"], start_offset=3))
        assert overlapping.status_code == 400

        toggled = client.post(f"/delegation/{d['id']}/toggle").get_json()
        assert toggled["is_active"] is False
        assert [row["id"] for row in client.get("/delegation/").get_json()] == [d["id"]]

    def test_self_delegation_rejected(self, org, client, login_as):
        login_as(org["M"])
        resp = client.post("/delegation/", json=self._body(org["M"]))
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "VALIDATION_ERROR"

    def test_past_delegation_rejected(self, org, client, login_as):
        login_as(org["M"])
        resp = client.post("/delegation/", json=self._body(org["D"], start_offset=-10, days=2))
        assert resp.status_code == 400

    def test_only_owner_toggles(self, org, client, login_as):
        login_as(org["M"])
        d = client.post("/delegation/", json=self._body(org["D"])).get_json()

        login_as(org["E"])
        assert client.post(f"/delegation/{d['id']}/toggle").status_code == 403

    def test_delegate_sees_delegators_approvals(self, org, give_balance, annual_leave, client, login_as):
        login_as(org["M"])
        client.post("/delegation/", json=self._body(org["D"]))

        give_balance(org["E"])
        login_as(org["E"])
        req = client.post("/workflow/requests", json=_leave_body(annual_leave)).get_json()

        login_as(org["D"])
        pending = client.get("/workflow/approvals/pending").get_json()
        assert [p["request_id"] for p in pending] == [req["id"]]
        resp = client.post(f"/workflow/requests/{req['id']}/approve", json={})
        assert resp.get_json()["approval"]["acted_by_id"] == org["D"].id
