import logging
from datetime import datetime

from flask import abort, jsonify, request
from flask_login import current_user, login_required

from . import delegation_bp
from extensions import db
from models import ApprovalDelegate
from utils.audit_helpers import write_audit
from utils.delegation_rules import validate_delegation
from utils.permissions import is_admin_like
from workflow.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


def _parse_date(s, field):
    try:
        return datetime.strptime(str(s), "%Y-%m-%d").date()
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be YYYY-MM-DD")


def _serialize(d):
    return {
        "id": d.id,
        "delegator_id": d.delegator_id,
        "delegator": d.delegator.full_name if d.delegator else None,
        "delegate_id": d.delegate_id,
        "delegate": d.delegate.full_name if d.delegate else None,
        "start_date": d.start_date.isoformat(),
        "end_date": d.end_date.isoformat(),
        "is_active": d.is_active,
        "effective_today": d.is_effective_on(datetime.utcnow().date()),
        "note": d.note,
    }


@delegation_bp.route("/", methods=["GET"])
@login_required
def index():
    q = ApprovalDelegate.query
    if not is_admin_like(current_user):
        q = q.filter(
            (ApprovalDelegate.delegator_id == current_user.id)
            | (ApprovalDelegate.delegate_id == current_user.id)
        )
    rows = q.order_by(ApprovalDelegate.id.desc()).all()
    return jsonify([_serialize(d) for d in rows])


@delegation_bp.route("/", methods=["POST"])
@login_required
def create():
    body = request.get_json(silent=True) or {}

    # Admins may delegate for anyone; others only for themselves
    delegator_id = current_user.id
    if body.get("delegator_id") and is_admin_like(current_user):
        delegator_id = int(body["delegator_id"])

    try:
        delegate_id = int(body.get("delegate_id"))
    except (TypeError, ValueError):
        raise ValidationError("delegate_id is required")

    start_date = _parse_date(body.get("start_date"), "start_date")
    end_date = _parse_date(body.get("end_date"), "end_date")

    validate_delegation(delegator_id, delegate_id, start_date, end_date)

    d = ApprovalDelegate(
        delegator_id=delegator_id,
        delegate_id=delegate_id,
        start_date=start_date,
        end_date=end_date,
        is_active=True,
        note=(body.get("note") or "").strip() or None,
    )
    db.session.add(d)
    db.session.flush()

    write_audit(
        "DELEGATION_CREATED",
        user_id=current_user.id,
        on_behalf_of_id=delegator_id if delegator_id != current_user.id else None,
        note=f"Delegation {delegator_id} -> {delegate_id} ({start_date} .. {end_date})",
        target_type="ApprovalDelegate",
        target_id=d.id,
    )
    db.session.commit()

    logger.info(f"Delegation #{d.id} created | {delegator_id} -> {delegate_id}")
    return jsonify(_serialize(d)), 201


@delegation_bp.route("/<int:delegation_id>/toggle", methods=["POST"])
@login_required
def toggle(delegation_id):
    d = db.session.get(ApprovalDelegate, delegation_id)
    if d is None:
        raise NotFoundError(f"Delegation #{delegation_id} not found")

    if d.delegator_id != current_user.id and not is_admin_like(current_user):
        abort(403)

    if not d.is_active:
        # Re-activating must not create an overlap
        validate_delegation(d.delegator_id, d.delegate_id, d.start_date, d.end_date, exclude_id=d.id)

    old = d.is_active
    d.is_active = not d.is_active

    write_audit(
        "DELEGATION_TOGGLED",
        user_id=current_user.id,
        old_status="ACTIVE" if old else "INACTIVE",
        new_status="ACTIVE" if d.is_active else "INACTIVE",
        target_type="ApprovalDelegate",
        target_id=d.id,
    )
    db.session.commit()

    logger.info(f"Delegation #{d.id} toggled | active={d.is_active}")
    return jsonify(_serialize(d))
