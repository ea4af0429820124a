from datetime import date

from extensions import db
from models import ApprovalDelegate, User
from workflow.errors import ValidationError


def validate_delegation(delegator_id, delegate_id, start_date, end_date, today=None, exclude_id=None):
    today = today or date.today()

    # 1) no self delegation
    if delegator_id == delegate_id:
        raise ValidationError("A user cannot delegate to themselves")

    delegate = db.session.get(User, delegate_id) if delegate_id else None
    if delegate is None or not delegate.is_active:
        raise ValidationError("Delegate must be an active user")

    # 2) dates
    if end_date < today:
        raise ValidationError("Delegation end date is in the past")

    if start_date > end_date:
        raise ValidationError("Start date is after end date")

    # 3) no overlapping active delegation for the same delegator
    q = ApprovalDelegate.query.filter(
        ApprovalDelegate.delegator_id == delegator_id,
        ApprovalDelegate.is_active.is_(True),
        ApprovalDelegate.start_date <= end_date,
        ApprovalDelegate.end_date >= start_date,
    )
    if exclude_id is not None:
        q = q.filter(ApprovalDelegate.id != exclude_id)

    if q.first():
        raise ValidationError("An active delegation already overlaps these dates")
