import logging

from flask import current_app
from flask_mail import Message

from extensions import db, mail
from models import AuditLog
from utils.audit_helpers import write_audit

logger = logging.getLogger(__name__)


def _period(leave_request):
    return f"{leave_request.start_date.isoformat()} to {leave_request.end_date.isoformat()}"


def _kind_label(leave_request):
    if leave_request.kind == "WFH":
        return "work-from-home"
    lt = leave_request.leave_type
    return (lt.name if lt else "leave").lower()


class EmailService:
    """Email collaborator. Every send returns True/False and never raises."""

    def __init__(self, mailer=None):
        self.mailer = mailer or mail

    def _send(self, subject, recipients, body) -> bool:
        recipients = [r for r in recipients if r]
        if not recipients:
            return False
        try:
            msg = Message(subject=subject, recipients=recipients, body=body)
            self.mailer.send(msg)
            return True
        except Exception:
            logger.exception(f"Email send failed | subject={subject!r} | to={recipients}")
            return False

    def send_leave_request_notification(self, approver, leave_request) -> bool:
        requester = leave_request.user
        body = (
            f"{requester.full_name} has requested {leave_request.total_days:g} day(s) of "
            f"{_kind_label(leave_request)} ({_period(leave_request)}).\n\n"
            f"Reason: {leave_request.reason or '-'}\n\n"
            f"Please review request #{leave_request.id}."
        )
        return self._send(
            f"[{current_app.config.get('COMPANY_NAME')}] Approval required: request #{leave_request.id}",
            [approver.email],
            body,
        )

    def send_approval_notification(self, leave_request, approved, approver_name=None, comments=None) -> bool:
        requester = leave_request.user
        outcome = "approved" if approved else "rejected"
        body = (
            f"Your {_kind_label(leave_request)} request #{leave_request.id} "
            f"({_period(leave_request)}) has been {outcome}"
            f"{f' by {approver_name}' if approver_name else ''}."
        )
        if comments:
            body += f"\n\nComments: {comments}"
        return self._send(
            f"[{current_app.config.get('COMPANY_NAME')}] Request #{leave_request.id} {outcome}",
            [requester.email],
            body,
        )

    def send_escalation_notification(self, new_approver, leave_request, escalated_from=None, reason=None, approval_id=None) -> bool:
        # One escalation email per escalated approval
        if approval_id is not None:
            already = AuditLog.query.filter_by(
                request_id=leave_request.id,
                action="ESCALATION_EMAIL_SENT",
                target_id=approval_id,
            ).first()
            if already:
                return False

        body = (
            f"Request #{leave_request.id} from {leave_request.user.full_name} "
            f"({_period(leave_request)}) has been escalated to you"
            f"{f' from {escalated_from}' if escalated_from else ''}.\n\n"
            f"{reason or ''}\n\nPlease review it as soon as possible."
        )
        sent = self._send(
            f"Request #{leave_request.id} escalated",
            [new_approver.email],
            body,
        )

        if sent and approval_id is not None:
            write_audit(
                "ESCALATION_EMAIL_SENT",
                request_id=leave_request.id,
                note=f"Escalation email sent to {new_approver.email}",
                target_type="APPROVAL",
                target_id=approval_id,
            )
            db.session.commit()
        return sent
