from functools import wraps
from datetime import datetime

from flask import abort
from flask_login import current_user


def is_admin_like(user) -> bool:
    role = (getattr(user, "role", "") or "").strip().upper()
    return role == "ADMIN"


def is_hr(user) -> bool:
    return (getattr(user, "role", "") or "").strip().upper() == "HR"


# =========================
# Delegation: who I act for
# =========================
def get_delegators(user, day=None):
    """User ids that delegated their approval authority to ``user`` for ``day``."""
    if not getattr(user, "is_authenticated", False):
        return []

    from models import ApprovalDelegate

    day = day or datetime.utcnow().date()
    rows = (
        ApprovalDelegate.query
        .filter(
            ApprovalDelegate.delegate_id == user.id,
            ApprovalDelegate.is_active.is_(True),
            ApprovalDelegate.start_date <= day,
            ApprovalDelegate.end_date >= day,
        )
        .order_by(ApprovalDelegate.end_date.desc(), ApprovalDelegate.id.desc())
        .all()
    )
    return [d.delegator_id for d in rows]


# =========================
# Admin only
# =========================
def admin_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_user.is_authenticated:
            abort(401)

        if not is_admin_like(current_user):
            abort(403)

        return f(*args, **kwargs)

    return decorated_function


# =========================
# Request access
# =========================
def can_access_request(request_obj, user):
    if request_obj.user_id == user.id:
        return True

    if is_admin_like(user) or is_hr(user):
        return True

    acting_for = set(get_delegators(user))
    for a in request_obj.approvals:
        if a.approver_id == user.id or a.acted_by_id == user.id:
            return True
        if a.approver_id in acting_for:
            return True

    return False
