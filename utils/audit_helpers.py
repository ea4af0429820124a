from datetime import datetime

from extensions import db
from models import AuditLog


def write_audit(
    action,
    request_id=None,
    user_id=None,
    note=None,
    old_status=None,
    new_status=None,
    target_type=None,
    target_id=None,
    on_behalf_of_id=None,
):
    """Adds an AuditLog row to the current session (the caller commits)."""
    row = AuditLog(
        request_id=request_id,
        user_id=user_id,
        on_behalf_of_id=on_behalf_of_id,
        action=action,
        note=note,
        old_status=old_status,
        new_status=new_status,
        target_type=target_type,
        target_id=target_id,
        created_at=datetime.utcnow(),
    )
    db.session.add(row)
    return row


def delegation_audit_fields(approver_id, acted_by_id) -> dict:
    """Extra AuditLog fields when a delegate acts on behalf of the approver."""
    if acted_by_id and approver_id and acted_by_id != approver_id:
        return {"user_id": acted_by_id, "on_behalf_of_id": approver_id}
    return {"user_id": approver_id}
