import logging
from datetime import datetime

from models import LeaveBalance, RequestKind
from workflow.errors import ValidationError

logger = logging.getLogger(__name__)


def tracks_balance(leave_request) -> bool:
    if leave_request.kind != RequestKind.LEAVE:
        return False
    lt = leave_request.leave_type
    return bool(lt and lt.requires_balance)


def get_balance(user_id, leave_type_id, year):
    return LeaveBalance.query.filter_by(
        user_id=user_id,
        leave_type_id=leave_type_id,
        year=year,
    ).first()


def _balance_query(leave_request):
    return LeaveBalance.query.filter(
        LeaveBalance.user_id == leave_request.user_id,
        LeaveBalance.leave_type_id == leave_request.leave_type_id,
        LeaveBalance.year == leave_request.start_date.year,
    )


def reserve(leave_request):
    """available -> pending at submission. Raises ValidationError when short."""
    if not tracks_balance(leave_request):
        return

    days = float(leave_request.total_days or 0)

    # Single conditional UPDATE, so two submissions cannot both pass the check
    rows = (
        _balance_query(leave_request)
        .filter(LeaveBalance.available >= days)
        .update(
            {
                LeaveBalance.pending: LeaveBalance.pending + days,
                LeaveBalance.available: LeaveBalance.available - days,
                LeaveBalance.updated_at: datetime.utcnow(),
            },
            synchronize_session=False,
        )
    )
    if rows != 1:
        bal = _balance_query(leave_request).first()
        if bal is None:
            raise ValidationError("No leave balance found for this leave type and year")
        raise ValidationError(
            f"Insufficient leave balance: requested {days:g} day(s), available {bal.available:g}"
        )


def consume(leave_request):
    """pending -> used once the request is fully approved."""
    if not tracks_balance(leave_request):
        return
    days = float(leave_request.total_days or 0)
    rows = _balance_query(leave_request).update(
        {
            LeaveBalance.pending: LeaveBalance.pending - days,
            LeaveBalance.used: LeaveBalance.used + days,
            LeaveBalance.updated_at: datetime.utcnow(),
        },
        synchronize_session=False,
    )
    if rows != 1:
        logger.warning(f"No balance row to consume for request #{leave_request.id}")


def release(leave_request):
    """pending -> available on rejection or cancellation."""
    if not tracks_balance(leave_request):
        return
    days = float(leave_request.total_days or 0)
    rows = _balance_query(leave_request).update(
        {
            LeaveBalance.pending: LeaveBalance.pending - days,
            LeaveBalance.available: LeaveBalance.available + days,
            LeaveBalance.updated_at: datetime.utcnow(),
        },
        synchronize_session=False,
    )
    if rows != 1:
        logger.warning(f"No balance row to release for request #{leave_request.id}")
