# workflow/engine.py

import logging
import re
from datetime import datetime

from sqlalchemy import func

from extensions import db
from models import (
    Approval,
    ApprovalDelegate,
    ApprovalStatus,
    LeaveRequest,
    LeaveType,
    RequestKind,
    RequestStatus,
    User,
)
from services import leave_balance
from utils.audit_helpers import delegation_audit_fields, write_audit
from utils.events import notify, notify_role
from utils.outbox import SideEffectOutbox
from workflow.chain import ChainEntry
from workflow.errors import (
    AuthorizationError,
    ConcurrentModificationError,
    InvalidStateError,
    NotFoundError,
    SelfApprovalError,
    ValidationError,
    WorkflowError,
)
from workflow.rules import RequestContext
from workflow.transitions import cancel_request as _cancel, complete_request, reject_request

logger = logging.getLogger(__name__)

_SIGNATURE_RE = re.compile(r"\[SIGNATURE:(.*?)\]", re.S)

_DECISIONS = {
    "APPROVE": ApprovalStatus.APPROVED,
    "APPROVED": ApprovalStatus.APPROVED,
    "REJECT": ApprovalStatus.REJECTED,
    "REJECTED": ApprovalStatus.REJECTED,
    "DENY": ApprovalStatus.REJECTED,
}


def request_link(request_id):
    return f"/workflow/requests/{request_id}"


def extract_signature(comments):
    """Splits an inline ``[SIGNATURE:...]`` block out of the comment text."""
    if not comments:
        return comments, None
    m = _SIGNATURE_RE.search(comments)
    if not m:
        return comments, None
    cleaned = (comments[:m.start()] + comments[m.end():]).strip()
    return cleaned or None, m.group(1).strip() or None


def normalize_decision(decision):
    if decision is True:
        return ApprovalStatus.APPROVED
    if decision is False:
        return ApprovalStatus.REJECTED
    value = _DECISIONS.get(str(decision or "").strip().upper())
    if value is None:
        raise ValidationError("Invalid decision (must be APPROVED or REJECTED).")
    return value


def live_approvals(leave_request):
    """PENDING approvals not superseded by an escalation."""
    return [a for a in leave_request.approvals if a.is_live]


def pending_approvals_for(user_id):
    return (
        Approval.query
        .join(LeaveRequest, LeaveRequest.id == Approval.request_id)
        .filter(
            Approval.approver_id == user_id,
            Approval.status == ApprovalStatus.PENDING,
            Approval.escalated_to_id.is_(None),
            LeaveRequest.status == RequestStatus.PENDING,
        )
        .order_by(Approval.created_at.asc())
        .all()
    )


def next_level(request_id):
    current = (
        db.session.query(func.coalesce(func.max(Approval.level), 0))
        .filter(Approval.request_id == request_id)
        .scalar()
    )
    return int(current) + 1


class ApprovalStateMachine:
    """Lifecycle of Approval rows and of the owning request's aggregate status."""

    def __init__(self, rule_resolver, chain_builder, working_days, documents=None, email=None,
                 escalation=None, clock=datetime.utcnow):
        self.rule_resolver = rule_resolver
        self.chain_builder = chain_builder
        self.working_days = working_days
        self.documents = documents
        self.email = email
        self.escalation = escalation
        self.clock = clock

    # =========================
    # Submission
    # =========================
    def _count_days(self, start_date, end_date, selected_dates=None, half_day=False):
        if selected_dates:
            days = set(selected_dates)
            if any(d < start_date or d > end_date for d in days):
                raise ValidationError("Selected dates must fall inside the requested period")
            return float(sum(1 for d in days if self.working_days.is_working_day(d)))
        return self.working_days.calculate_leave_days(start_date, end_date, half_day=half_day)

    @staticmethod
    def _check_overlap(requester, kind, start_date, end_date):
        clash = (
            LeaveRequest.query
            .filter(
                LeaveRequest.user_id == requester.id,
                LeaveRequest.kind == kind,
                LeaveRequest.status.in_([RequestStatus.PENDING, RequestStatus.APPROVED]),
                LeaveRequest.start_date <= end_date,
                LeaveRequest.end_date >= start_date,
            )
            .first()
        )
        if clash:
            raise ValidationError(f"Overlaps existing request #{clash.id} ({clash.status})")

    @staticmethod
    def _leave_type(value):
        try:
            leave_type_id = int(value)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid leave type id: {value!r}")
        leave_type = db.session.get(LeaveType, leave_type_id)
        if leave_type is None:
            raise ValidationError(f"Unknown leave type: {leave_type_id}")
        return leave_type

    def submit_request(self, requester, kind, start_date, end_date, leave_type=None, reason=None,
                       selected_dates=None, half_day=False, employee_signature=None):
        kind = (kind or RequestKind.LEAVE).strip().upper()
        if kind not in (RequestKind.LEAVE, RequestKind.WFH):
            raise ValidationError(f"Unknown request kind: {kind}")
        if start_date > end_date:
            raise ValidationError("Start date must be on or before end date")
        if leave_type is not None and not isinstance(leave_type, LeaveType):
            leave_type = self._leave_type(leave_type)
        if kind == RequestKind.LEAVE and (leave_type is None or not leave_type.is_active):
            raise ValidationError("An active leave type is required")

        total_days = self._count_days(start_date, end_date, selected_dates, half_day)
        if total_days <= 0:
            raise ValidationError("The requested period contains no working days")

        self._check_overlap(requester, kind, start_date, end_date)

        outbox = SideEffectOutbox()
        try:
            req = LeaveRequest(
                kind=kind,
                user=requester,
                leave_type=leave_type if kind == RequestKind.LEAVE else None,
                start_date=start_date,
                end_date=end_date,
                total_days=total_days,
                reason=reason,
                status=RequestStatus.PENDING,
                approval_chain=[],
            )
            db.session.add(req)
            db.session.flush()

            leave_balance.reserve(req)

            workflow = self.rule_resolver.resolve(RequestContext.for_request(req))
            plan = self.chain_builder.plan(requester, workflow.approval_levels, workflow.skip_duplicate_signatures)

            req.approval_chain = [e.to_dict() for e in plan.entries]
            req.workflow_rule_name = workflow.name

            write_audit(
                "REQUEST_SUBMITTED",
                request_id=req.id,
                user_id=requester.id,
                new_status=RequestStatus.PENDING,
                note=f"Rule: {workflow.name} | approvers: {plan.approver_ids()}",
                target_type="LEAVE_REQUEST",
                target_id=req.id,
            )

            problems = [f"No approver for role {r.value}" for r in plan.unresolved]
            problems.extend(workflow.configuration_errors)
            for problem in problems:
                write_audit("CONFIGURATION_ERROR", request_id=req.id, note=problem,
                            target_type="LEAVE_REQUEST", target_id=req.id)

            if plan.entries:
                first = plan.entries[0]
                approver_id = first.approver_id
                if self.escalation is not None:
                    approver_id, skipped = self.escalation.initial_approver(req, first.approver_id, now=self.clock())
                    if approver_id != first.approver_id:
                        write_audit(
                            "APPROVER_SUBSTITUTED",
                            request_id=req.id,
                            note=f"Level 1 approver {first.approver_id} is absent; routed to user {approver_id} "
                                 f"(skipped: {skipped})",
                            target_type="LEAVE_REQUEST",
                            target_id=req.id,
                        )
                        logger.info(f"Request #{req.id}: absent approver {first.approver_id} replaced by {approver_id}")
                approval = Approval(
                    request_id=req.id,
                    approver_id=approver_id,
                    level=1,
                    chain_position=0,
                    role=first.role.value,
                    status=ApprovalStatus.PENDING,
                    created_at=self.clock(),
                )
                db.session.add(approval)
                self._queue_approval_required(outbox, req, approver_id)
            elif problems:
                logger.warning(f"Request #{req.id} has no approvers: {problems}")
                outbox.add(
                    "notify_admins",
                    notify_role,
                    "ADMIN",
                    "CONFIGURATION_ERROR",
                    "Leave request without approvers",
                    f"Request #{req.id} from {requester.full_name} could not be routed: {'; '.join(problems)}",
                    link=request_link(req.id),
                )
            else:
                # Every level collapsed onto the requester (top of the hierarchy)
                complete_request(req, actor_id=requester.id, note=f"Self-approved under {workflow.name}",
                                 action="SELF_APPROVED")
                outbox.add(
                    "notify_requester",
                    notify,
                    requester.id,
                    "LEAVE_APPROVED",
                    "Request approved",
                    f"Your request #{req.id} was approved automatically.",
                    link=request_link(req.id),
                )

            db.session.commit()
        except WorkflowError:
            db.session.rollback()
            raise

        logger.info(
            f"Request #{req.id} submitted | user={requester.id} | kind={kind} | days={total_days:g} "
            f"| rule={workflow.name!r} | chain={plan.approver_ids()}"
        )

        if self.documents is not None:
            outbox.add("generate_document", self.documents.generate_document, req, workflow,
                       employee_signature=employee_signature)
        outbox.dispatch()
        return req

    def _queue_approval_required(self, outbox, req, approver_id, note=None):
        requester = req.user
        message = f"{requester.full_name} requested {req.total_days:g} day(s) ({req.start_date} - {req.end_date})."
        if note:
            message += f" {note}"
        outbox.add(
            "notify_approver",
            notify,
            approver_id,
            "APPROVAL_REQUIRED",
            f"Approval required: request #{req.id}",
            message,
            link=request_link(req.id),
            actor_id=requester.id,
        )
        if self.email is not None:
            approver = db.session.get(User, approver_id)
            if approver is not None:
                outbox.add("email_approver", self.email.send_leave_request_notification, approver, req)

    # =========================
    # Decisions
    # =========================
    @staticmethod
    def _find_actionable(req, actor_id, today):
        """(approval, acted_by_id) the actor may decide, or (None, None)."""
        live = live_approvals(req)
        for a in live:
            if a.approver_id == actor_id:
                return a, None

        for a in live:
            delegated = (
                ApprovalDelegate.query
                .filter(
                    ApprovalDelegate.delegator_id == a.approver_id,
                    ApprovalDelegate.delegate_id == actor_id,
                    ApprovalDelegate.is_active.is_(True),
                    ApprovalDelegate.start_date <= today,
                    ApprovalDelegate.end_date >= today,
                )
                .first()
            )
            if delegated:
                return a, actor_id

        return None, None

    def record_decision(self, request_id, approver_id, decision, comments=None, signature=None):
        status = normalize_decision(decision)

        req = db.session.get(LeaveRequest, request_id)
        if req is None:
            raise NotFoundError(f"Request #{request_id} not found")

        if approver_id == req.user_id:
            raise SelfApprovalError("You cannot decide on your own request")

        if req.status != RequestStatus.PENDING:
            raise InvalidStateError(f"Request #{req.id} is already {req.status}")

        now = self.clock()
        approval, acted_by_id = self._find_actionable(req, approver_id, now.date())
        if approval is None:
            raise NotFoundError(f"No pending approval for user {approver_id} on request #{req.id}")

        if signature is None:
            comments, signature = extract_signature(comments)

        outbox = SideEffectOutbox()
        try:
            rows = (
                Approval.query
                .filter(
                    Approval.id == approval.id,
                    Approval.status == ApprovalStatus.PENDING,
                    Approval.escalated_to_id.is_(None),
                )
                .update(
                    {
                        Approval.status: status,
                        Approval.decided_at: now,
                        Approval.comments: comments,
                        Approval.signature: signature,
                        Approval.signed_at: now if signature else None,
                        Approval.acted_by_id: acted_by_id,
                    },
                    synchronize_session=False,
                )
            )
            if rows != 1:
                raise ConcurrentModificationError(f"Approval #{approval.id} was decided or escalated concurrently")
            db.session.expire(approval)

            write_audit(
                f"APPROVAL_{status}",
                request_id=req.id,
                note=f"Level {approval.level} ({approval.role}): {comments or ''}".strip(),
                target_type="APPROVAL",
                target_id=approval.id,
                **delegation_audit_fields(approval.approver_id, acted_by_id),
            )

            signer_id = acted_by_id or approval.approver_id
            actor = db.session.get(User, signer_id)
            actor_label = actor.full_name if actor else f"User #{signer_id}"

            if status == ApprovalStatus.REJECTED:
                if not reject_request(req, actor_id=signer_id, note=comments):
                    raise ConcurrentModificationError(f"Request #{req.id} changed state concurrently")
                self._queue_outcome(outbox, req, False, actor_label, comments)
                self._queue_signature(outbox, req, approval.role, signer_id, False, signature, comments)
            else:
                self._advance(outbox, req, approval, signer_id, actor_label, signature, comments)

            db.session.commit()
        except WorkflowError:
            db.session.rollback()
            raise

        logger.info(
            f"Decision recorded | request={req.id} | approval={approval.id} | level={approval.level} "
            f"| by={signer_id} | status={status}"
        )
        outbox.dispatch()
        return approval

    def _advance(self, outbox, req, approval, signer_id, actor_label, signature, comments):
        chain = [ChainEntry.from_dict(d) for d in (req.approval_chain or [])]
        approved_ids = {
            a.approver_id
            for a in Approval.query.filter_by(request_id=req.id, status=ApprovalStatus.APPROVED).all()
        }

        self._queue_signature(outbox, req, approval.role, signer_id, True, signature, comments)

        # Entries whose approver already approved this request are satisfied as-is
        pos = approval.chain_position + 1
        while pos < len(chain) and chain[pos].approver_id in approved_ids:
            self._queue_signature(outbox, req, chain[pos].role.value, chain[pos].approver_id, True, None, None)
            pos += 1

        if pos < len(chain):
            entry = chain[pos]
            db.session.add(Approval(
                request_id=req.id,
                approver_id=entry.approver_id,
                level=next_level(req.id),
                chain_position=pos,
                role=entry.role.value,
                status=ApprovalStatus.PENDING,
                created_at=self.clock(),
            ))
            self._queue_approval_required(outbox, req, entry.approver_id,
                                          note=f"Previously approved by {actor_label}.")
            outbox.add(
                "notify_requester",
                notify,
                req.user_id,
                "APPROVAL_PROGRESS",
                f"Request #{req.id} progressed",
                f"Approved by {actor_label}; now awaiting the next approver.",
                link=request_link(req.id),
                actor_id=signer_id,
            )
            return

        others = [a for a in live_approvals(req) if a.id != approval.id]
        if others:
            return

        if not complete_request(req, actor_id=signer_id, note=comments):
            raise ConcurrentModificationError(f"Request #{req.id} changed state concurrently")
        self._queue_outcome(outbox, req, True, actor_label, comments)

    def _queue_outcome(self, outbox, req, approved, actor_label, comments):
        word = "approved" if approved else "rejected"
        message = f"Your request #{req.id} was {word} by {actor_label}."
        if comments:
            message += f" Comments: {comments}"
        outbox.add(
            "notify_requester",
            notify,
            req.user_id,
            "LEAVE_APPROVED" if approved else "LEAVE_REJECTED",
            f"Request {word}",
            message,
            link=request_link(req.id),
        )
        if self.email is not None:
            outbox.add("email_requester", self.email.send_approval_notification, req, approved,
                       approver_name=actor_label, comments=comments)

    def _queue_signature(self, outbox, req, role, signer_id, approved, signature, comments):
        if self.documents is None or not role:
            return
        outbox.add("document_signature", self.documents.record_approval_signature, req.id, role, signer_id,
                   approved=approved, signature=signature, comments=comments)

    # =========================
    # Cancellation
    # =========================
    def cancel_request(self, request_id, actor_id, reason=None):
        req = db.session.get(LeaveRequest, request_id)
        if req is None:
            raise NotFoundError(f"Request #{request_id} not found")
        if req.user_id != actor_id:
            raise AuthorizationError("Only the requester can cancel a request")
        if req.status != RequestStatus.PENDING:
            raise InvalidStateError(f"Request #{req.id} is already {req.status}")

        outbox = SideEffectOutbox()
        try:
            pending = live_approvals(req)
            if not _cancel(req, actor_id=actor_id, note=reason):
                raise ConcurrentModificationError(f"Request #{req.id} changed state concurrently")
            for a in pending:
                outbox.add(
                    "notify_approver",
                    notify,
                    a.approver_id,
                    "LEAVE_CANCELLED",
                    f"Request #{req.id} cancelled",
                    f"{req.user.full_name} cancelled request #{req.id}; no action is needed.",
                    link=request_link(req.id),
                    actor_id=actor_id,
                )
            db.session.commit()
        except WorkflowError:
            db.session.rollback()
            raise

        outbox.dispatch()
        return req
