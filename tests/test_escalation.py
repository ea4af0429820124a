"""Escalation sweeps: targets, absence skipping, termination and throttling."""
from datetime import datetime, timedelta

import pytest

from extensions import db
from models import Approval, ApprovalStatus, AuditLog, LeaveBalance, LeaveRequest, Notification, RequestStatus
from services.escalation_service import (
    AUTO_APPROVE_COMMENT,
    EscalationConfig,
    EscalationEngine,
    run_escalation_if_needed,
)
from utils.outbox import SideEffectOutbox

from .conftest import MONDAY


@pytest.fixture
def pending_request(org, give_balance, annual_leave, components):
    give_balance(org["E"])
    return components.state_machine.submit_request(
        org["E"], "LEAVE", MONDAY, MONDAY + timedelta(days=2), leave_type=annual_leave
    )


def _later(days):
    return datetime.utcnow() + timedelta(days=days)


def _approvals(req):
    db.session.expire_all()
    return Approval.query.filter_by(request_id=req.id).order_by(Approval.level).all()


class TestSweep:

    def test_stale_approval_moves_to_next_in_hierarchy(self, org, pending_request, components):
        result = components.escalation.sweep(now=_later(4))

        assert (result.considered, result.escalated) == (1, 1)
        first, second = _approvals(pending_request)
        assert first.status == ApprovalStatus.PENDING
        assert first.escalated_to_id == second.id
        assert first.escalation_reason.endswith("Skipped absent approvers: 0")
        assert (second.approver_id, second.level) == (org["D"].id, 2)
        assert second.is_live and not first.is_live
        assert AuditLog.query.filter_by(request_id=pending_request.id, action="ESCALATED").count() == 1

    def test_fresh_approvals_are_left_alone(self, pending_request, components):
        result = components.escalation.sweep(now=_later(2))
        assert result.considered == 0
        assert len(_approvals(pending_request)) == 1

    def test_threshold_is_inclusive(self, pending_request, components):
        created = _approvals(pending_request)[0].created_at
        result = components.escalation.sweep(now=created + timedelta(days=3))
        assert result.escalated == 1

    def test_business_day_threshold(self, pending_request, components):
        friday, monday = datetime(2027, 3, 5, 9, 0), datetime(2027, 3, 8, 9, 0)
        Approval.query.filter_by(request_id=pending_request.id).update(
            {Approval.created_at: friday}, synchronize_session=False
        )
        db.session.commit()
        engine = EscalationEngine(
            components.chain_builder,
            working_days=components.working_days,
            config_loader=lambda: EscalationConfig(use_business_days=True),
        )

        # Three calendar days over the weekend are only one working day
        assert components.escalation.threshold(monday, EscalationConfig()) == friday
        assert engine.sweep(now=monday).considered == 0
        assert engine.sweep(now=monday + timedelta(days=2)).escalated == 1

    def test_second_sweep_at_same_moment_is_a_no_op(self, pending_request, components):
        now = _later(4)
        components.escalation.sweep(now=now)
        again = components.escalation.sweep(now=now)

        assert again.considered == 0
        assert len(_approvals(pending_request)) == 2

    def test_escalated_approver_can_finish_the_request(self, org, pending_request, components):
        components.escalation.sweep(now=_later(4))

        components.state_machine.record_decision(pending_request.id, org["D"].id, "APPROVED")

        db.session.expire_all()
        assert db.session.get(LeaveRequest, pending_request.id).status == RequestStatus.APPROVED
        bal = LeaveBalance.query.filter_by(user_id=org["E"].id).one()
        assert (bal.pending, bal.used) == (0, 3)

    def test_original_approver_loses_the_row_once_escalated(self, org, pending_request, components):
        from workflow.errors import NotFoundError

        components.escalation.sweep(now=_later(4))
        with pytest.raises(NotFoundError):
            components.state_machine.record_decision(pending_request.id, org["M"].id, "APPROVED")

    def test_disabled_sweep_does_nothing(self, pending_request, components):
        EscalationConfig.update({"escalationEnabled": False})

        result = components.escalation.sweep(now=_later(30))

        assert result.enabled is False
        assert result.considered == 0
        assert len(_approvals(pending_request)) == 1


class TestTermination:

    def _run_out_the_chain(self, components):
        return [components.escalation.sweep(now=_later(days)) for days in (4, 8, 12)]

    def test_chain_ends_unresolved_without_auto_approval(self, org, pending_request, components):
        results = self._run_out_the_chain(components)

        assert [r.escalated for r in results] == [1, 1, 0]
        assert results[-1].unresolved == 1
        rows = _approvals(pending_request)
        assert [r.approver_id for r in rows] == [org["M"].id, org["D"].id, org["X"].id]
        assert db.session.get(LeaveRequest, pending_request.id).status == RequestStatus.PENDING

        # Later sweeps keep finding the same dead end without adding rows
        assert components.escalation.sweep(now=_later(16)).unresolved == 1
        assert len(_approvals(pending_request)) == 3

    def test_auto_approves_at_max_level(self, org, pending_request, components):
        EscalationConfig.update({"autoApproveAfterMaxEscalations": True})

        results = self._run_out_the_chain(components)

        assert results[-1].auto_approved == 1
        rows = _approvals(pending_request)
        assert rows[-1].status == ApprovalStatus.APPROVED
        assert rows[-1].comments == AUTO_APPROVE_COMMENT
        assert db.session.get(LeaveRequest, pending_request.id).status == RequestStatus.APPROVED
        assert LeaveBalance.query.filter_by(user_id=org["E"].id).one().used == 3
        assert AuditLog.query.filter_by(request_id=pending_request.id, action="AUTO_APPROVED").count() == 1

    def test_auto_approval_waits_for_max_level(self, make_user, components):
        # Only a manager above the employee: the chain runs dry at level 1
        m = make_user("MANAGER")
        e = make_user(manager=m)
        req = components.state_machine.submit_request(e, "WFH", MONDAY, MONDAY)
        engine = EscalationEngine(
            components.chain_builder,
            config_loader=lambda: EscalationConfig(auto_approve_after_max_escalations=True, max_escalation_levels=3),
        )

        result = engine.sweep(now=_later(4))

        assert result.unresolved == 1
        assert db.session.get(LeaveRequest, req.id).status == RequestStatus.PENDING


class TestAbsence:

    def test_absent_candidate_is_skipped(self, org, approved_leave, pending_request, components):
        approved_leave(org["D"], MONDAY, MONDAY)

        result = components.escalation.sweep(now=_later(4))

        assert result.skipped_absent == 1
        first, second = _approvals(pending_request)
        assert second.approver_id == org["X"].id
        assert first.escalation_reason.endswith("Skipped absent approvers: 1")

    def test_inactive_candidate_is_skipped(self, org, pending_request, components):
        org["D"].is_active = False
        db.session.commit()

        components.escalation.sweep(now=_later(4))

        assert _approvals(pending_request)[-1].approver_id == org["X"].id

    def test_absent_candidate_replaced_by_delegate(self, org, make_user, approved_leave, delegate,
                                                   pending_request, components):
        stand_in = make_user("DEPARTMENT_DIRECTOR")
        delegate(org["D"], stand_in)
        approved_leave(org["D"], MONDAY, MONDAY)

        result = components.escalation.sweep(now=_later(4))

        assert result.skipped_absent == 0
        assert _approvals(pending_request)[-1].approver_id == stand_in.id

    def test_absence_skipping_can_be_switched_off(self, org, approved_leave, pending_request, components):
        EscalationConfig.update({"autoSkipAbsentApprovers": False})
        approved_leave(org["D"], MONDAY, MONDAY)

        components.escalation.sweep(now=_later(4))

        assert _approvals(pending_request)[-1].approver_id == org["D"].id

    def test_overload(self, org, make_user, components):
        for _ in range(2):
            e = make_user(manager=org["D"])
            components.state_machine.submit_request(e, "WFH", MONDAY, MONDAY)

        engine = components.escalation
        now = datetime.utcnow()
        assert engine.is_overloaded(org["D"].id, EscalationConfig(overload_threshold=1), now)
        assert not engine.is_overloaded(org["D"].id, EscalationConfig(overload_threshold=2), now)

    def test_absent_delegate_is_passed_over(self, org, make_user, approved_leave, delegate,
                                            pending_request, components):
        stand_in = make_user("DEPARTMENT_DIRECTOR")
        delegate(org["D"], stand_in)
        approved_leave(org["D"], MONDAY, MONDAY)
        approved_leave(stand_in, MONDAY, MONDAY)

        result = components.escalation.sweep(now=_later(4))

        assert result.skipped_absent == 1
        assert _approvals(pending_request)[-1].approver_id == org["X"].id


class TestRaces:

    def test_decided_approval_is_not_escalated(self, org, pending_request, components):
        approval = _approvals(pending_request)[0]
        Approval.query.filter_by(id=approval.id).update(
            {Approval.status: ApprovalStatus.APPROVED}, synchronize_session=False
        )

        outcome, _ = components.escalation.escalate_approval(
            approval, EscalationConfig(), _later(4), SideEffectOutbox()
        )

        assert outcome == "lost_race"
        assert len(_approvals(pending_request)) == 1

    def _stale(self, components):
        return components.escalation.stale_approvals(_later(4) - timedelta(days=3))

    def test_cancelled_request_is_not_escalated(self, org, pending_request, components):
        stale = self._stale(components)
        components.state_machine.cancel_request(pending_request.id, org["E"].id)

        outcome, _ = components.escalation.escalate_approval(
            stale[0], EscalationConfig(), _later(4), SideEffectOutbox()
        )

        assert outcome == "lost_race"
        assert len(_approvals(pending_request)) == 1
        assert db.session.get(LeaveRequest, pending_request.id).status == RequestStatus.CANCELLED
        assert Notification.query.filter_by(user_id=org["D"].id).count() == 0

    def test_request_rejected_on_document_is_not_escalated(self, org, pending_request, components):
        stale = self._stale(components)
        doc_id = db.session.get(LeaveRequest, pending_request.id).generated_document.id
        components.documents.add_signature(doc_id, org["M"].id, "DIRECT_MANAGER", "sig", approved=False)

        outbox = SideEffectOutbox()
        outcome, _ = components.escalation.escalate_approval(stale[0], EscalationConfig(), _later(4), outbox)

        assert outcome == "lost_race"
        assert outbox.dispatch() == 0
        assert len(_approvals(pending_request)) == 1
        assert db.session.get(LeaveRequest, pending_request.id).status == RequestStatus.REJECTED
        assert AuditLog.query.filter_by(request_id=pending_request.id, action="ESCALATED").count() == 0


class TestSettings:

    def test_load_prefers_stored_settings(self, app):
        assert EscalationConfig.load().escalation_days_before_auto_approval == 3
        EscalationConfig.update({"escalationDaysBeforeAutoApproval": "5"})
        assert EscalationConfig.load().escalation_days_before_auto_approval == 5

    @pytest.mark.parametrize("values", [
        {"escalationDaysBeforeAutoApproval": 0},
        {"maxEscalationLevels": "many"},
        {"noSuchSetting": 1},
    ])
    def test_invalid_updates(self, app, values):
        from workflow.errors import ValidationError

        with pytest.raises(ValidationError):
            EscalationConfig.update(values)


class TestThrottle:

    def test_runs_once_per_window(self, pending_request, components):
        first = run_escalation_if_needed(components.escalation, throttle_minutes=10)
        second = run_escalation_if_needed(components.escalation, throttle_minutes=10)

        assert first is not None
        assert second is None

    def test_zero_window_always_runs(self, pending_request, components):
        run_escalation_if_needed(components.escalation, throttle_minutes=0)
        assert run_escalation_if_needed(components.escalation, throttle_minutes=0) is not None
