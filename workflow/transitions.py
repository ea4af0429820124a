# workflow/transitions.py
"""Guarded PENDING -> final transitions of a LeaveRequest.

Every path that ends a request (last approval, rejection, document
completion, auto-approval, cancellation) goes through here: the status flip
is a conditional UPDATE, and the balance moves only for the caller that won it.
"""
import logging
from datetime import datetime

from sqlalchemy.orm.attributes import set_committed_value

from models import LeaveRequest, RequestStatus
from services import leave_balance
from utils.audit_helpers import write_audit

logger = logging.getLogger(__name__)


def _flip(leave_request, new_status) -> bool:
    now = datetime.utcnow()
    rows = (
        LeaveRequest.query
        .filter(
            LeaveRequest.id == leave_request.id,
            LeaveRequest.status == RequestStatus.PENDING,
        )
        .update(
            {LeaveRequest.status: new_status, LeaveRequest.updated_at: now},
            synchronize_session=False,
        )
    )
    if rows != 1:
        return False

    set_committed_value(leave_request, "status", new_status)
    set_committed_value(leave_request, "updated_at", now)
    return True


def complete_request(leave_request, actor_id=None, note=None, action="REQUEST_APPROVED") -> bool:
    if not _flip(leave_request, RequestStatus.APPROVED):
        return False

    leave_balance.consume(leave_request)
    write_audit(
        action,
        request_id=leave_request.id,
        user_id=actor_id,
        old_status=RequestStatus.PENDING,
        new_status=RequestStatus.APPROVED,
        note=note,
        target_type="LEAVE_REQUEST",
        target_id=leave_request.id,
    )
    logger.info(f"Request #{leave_request.id} approved | action={action}")
    return True


def reject_request(leave_request, actor_id=None, note=None, action="REQUEST_REJECTED") -> bool:
    if not _flip(leave_request, RequestStatus.REJECTED):
        return False

    leave_balance.release(leave_request)
    write_audit(
        action,
        request_id=leave_request.id,
        user_id=actor_id,
        old_status=RequestStatus.PENDING,
        new_status=RequestStatus.REJECTED,
        note=note,
        target_type="LEAVE_REQUEST",
        target_id=leave_request.id,
    )
    logger.info(f"Request #{leave_request.id} rejected | action={action}")
    return True


def cancel_request(leave_request, actor_id=None, note=None) -> bool:
    if not _flip(leave_request, RequestStatus.CANCELLED):
        return False

    leave_balance.release(leave_request)
    write_audit(
        "REQUEST_CANCELLED",
        request_id=leave_request.id,
        user_id=actor_id,
        old_status=RequestStatus.PENDING,
        new_status=RequestStatus.CANCELLED,
        note=note,
        target_type="LEAVE_REQUEST",
        target_id=leave_request.id,
    )
    logger.info(f"Request #{leave_request.id} cancelled by user {actor_id}")
    return True
