# workflow/routes.py

import logging
from datetime import datetime, timedelta
from io import BytesIO

from flask import abort, jsonify, request, send_file
from flask_login import current_user, login_required

from . import workflow_bp
from extensions import db
from models import GeneratedDocument, LeaveRequest, RequestStatus
from utils.permissions import can_access_request, get_delegators
from utils.settings import as_bool
from workflow.engine import live_approvals, pending_approvals_for
from workflow.errors import AuthorizationError, NotFoundError, ValidationError
from workflow.roles import ApprovalRole, normalize_role

logger = logging.getLogger(__name__)


def _components():
    from workflow.components import get_components
    return get_components()


# =========================
# Parsing / serialization helpers
# =========================
def _json_body():
    return request.get_json(silent=True) or {}


def _parse_date(value, field):
    if not value:
        raise ValidationError(f"{field} is required")
    try:
        return datetime.strptime(str(value), "%Y-%m-%d").date()
    except ValueError:
        raise ValidationError(f"{field} must be YYYY-MM-DD")


def _dt(value):
    return value.isoformat() if value else None


def serialize_approval(a):
    return {
        "id": a.id,
        "request_id": a.request_id,
        "approver_id": a.approver_id,
        "approver": a.approver.full_name if a.approver else None,
        "level": a.level,
        "role": a.role,
        "status": a.status,
        "live": a.is_live,
        "comments": a.comments,
        "acted_by_id": a.acted_by_id,
        "decided_at": _dt(a.decided_at),
        "escalated_to_id": a.escalated_to_id,
        "escalated_at": _dt(a.escalated_at),
        "escalation_reason": a.escalation_reason,
        "created_at": _dt(a.created_at),
    }


def serialize_request(req, with_approvals=True):
    data = {
        "id": req.id,
        "kind": req.kind,
        "user_id": req.user_id,
        "requester": req.user.full_name if req.user else None,
        "leave_type": req.leave_type.code if req.leave_type else None,
        "start_date": req.start_date.isoformat(),
        "end_date": req.end_date.isoformat(),
        "total_days": req.total_days,
        "reason": req.reason,
        "status": req.status,
        "workflow_rule": req.workflow_rule_name,
        "approval_chain": req.approval_chain or [],
        "created_at": _dt(req.created_at),
    }
    if with_approvals:
        data["approvals"] = [serialize_approval(a) for a in req.approvals]
    doc = req.generated_document
    data["document"] = (
        {"id": doc.id, "status": doc.status, "completed_at": _dt(doc.completed_at)} if doc else None
    )
    return data


def _get_request_or_404(request_id):
    req = db.session.get(LeaveRequest, request_id)
    if req is None:
        raise NotFoundError(f"Request #{request_id} not found")
    if not can_access_request(req, current_user):
        abort(403)
    return req


# =========================
# Requests
# =========================
@workflow_bp.route("/requests", methods=["POST"])
@login_required
def create_request():
    body = _json_body()
    start_date = _parse_date(body.get("start_date"), "start_date")
    end_date = _parse_date(body.get("end_date"), "end_date")
    selected = [_parse_date(d, "selected_dates") for d in body.get("selected_dates") or []]

    req = _components().state_machine.submit_request(
        current_user,
        body.get("kind") or "LEAVE",
        start_date,
        end_date,
        leave_type=body.get("leave_type_id"),
        reason=body.get("reason"),
        selected_dates=selected or None,
        half_day=bool(body.get("half_day")),
        employee_signature=body.get("signature"),
    )
    return jsonify(serialize_request(req)), 201


@workflow_bp.route("/requests", methods=["GET"])
@login_required
def my_requests():
    q = LeaveRequest.query.filter(LeaveRequest.user_id == current_user.id)
    status = (request.args.get("status") or "").strip().upper()
    if status:
        q = q.filter(LeaveRequest.status == status)
    rows = q.order_by(LeaveRequest.created_at.desc()).all()
    return jsonify([serialize_request(r, with_approvals=False) for r in rows])


@workflow_bp.route("/requests/<int:request_id>", methods=["GET"])
@login_required
def get_request(request_id):
    req = _get_request_or_404(request_id)
    return jsonify(serialize_request(req))


@workflow_bp.route("/requests/<int:request_id>/approve", methods=["POST"])
@login_required
def approve_request(request_id):
    body = _json_body()
    approval = _components().state_machine.record_decision(
        request_id,
        current_user.id,
        "APPROVED",
        comments=body.get("comments"),
        signature=body.get("signature"),
    )
    req = db.session.get(LeaveRequest, request_id)
    return jsonify({"approval": serialize_approval(approval), "request": serialize_request(req)})


@workflow_bp.route("/requests/<int:request_id>/reject", methods=["POST"])
@login_required
def reject_request(request_id):
    body = _json_body()
    approval = _components().state_machine.record_decision(
        request_id,
        current_user.id,
        "REJECTED",
        comments=body.get("comments"),
        signature=body.get("signature"),
    )
    req = db.session.get(LeaveRequest, request_id)
    return jsonify({"approval": serialize_approval(approval), "request": serialize_request(req)})


@workflow_bp.route("/requests/<int:request_id>/cancel", methods=["POST"])
@login_required
def cancel_request(request_id):
    body = _json_body()
    req = _components().state_machine.cancel_request(request_id, current_user.id, reason=body.get("reason"))
    return jsonify(serialize_request(req))


@workflow_bp.route("/approvals/pending", methods=["GET"])
@login_required
def my_pending_approvals():
    rows = list(pending_approvals_for(current_user.id))
    for delegator_id in get_delegators(current_user):
        rows.extend(pending_approvals_for(delegator_id))

    return jsonify([
        {**serialize_approval(a), "request": serialize_request(a.request, with_approvals=False)}
        for a in rows
    ])


# =========================
# Documents
# =========================
def _may_sign(doc, role, user):
    """Requester signs their own slots; others sign a slot they approved (or act for)."""
    req = doc.request
    if role == ApprovalRole.EMPLOYEE:
        return user.id == req.user_id

    expected = _components().documents.required_signers(doc).get(role)
    if expected is not None and expected == req.user_id:
        return user.id == req.user_id

    acting_for = {user.id, *get_delegators(user)}
    for a in req.approvals:
        if a.role == role.value and a.status != "PENDING" and (
            a.approver_id in acting_for or a.acted_by_id == user.id
        ):
            return True
    return False


@workflow_bp.route("/documents/<int:document_id>/sign", methods=["POST"])
@login_required
def sign_document(document_id):
    body = _json_body()
    doc = db.session.get(GeneratedDocument, document_id)
    if doc is None:
        raise NotFoundError(f"Document #{document_id} not found")

    role = normalize_role(body.get("role") or "EMPLOYEE")
    if not _may_sign(doc, role, current_user):
        raise AuthorizationError(f"You cannot sign this document as {role.value}")

    signature = body.get("signature")
    if not signature:
        raise ValidationError("signature is required")

    doc = _components().documents.add_signature(
        doc.id,
        current_user.id,
        role,
        signature,
        approved=as_bool(body.get("approved"), True),
        comments=body.get("comments"),
    )
    return jsonify({
        "id": doc.id,
        "status": doc.status,
        "request_status": doc.request.status,
        "signed_roles": [s.signer_role for s in doc.signatures],
    })


@workflow_bp.route("/requests/<int:request_id>/document", methods=["GET"])
@login_required
def download_document(request_id):
    req = _get_request_or_404(request_id)
    doc = req.generated_document
    if doc is None:
        raise NotFoundError(f"Request #{request_id} has no document")

    pdf = _components().documents.render(doc)
    return send_file(
        BytesIO(pdf),
        mimetype="application/pdf",
        as_attachment=True,
        download_name=f"leave_request_{req.id}.pdf",
    )


# =========================
# Planning helpers
# =========================
@workflow_bp.route("/conflicts", methods=["POST"])
@login_required
def conflict_analysis():
    body = _json_body()
    if body.get("dates"):
        dates = [_parse_date(d, "dates") for d in body["dates"]]
    else:
        start_date = _parse_date(body.get("start_date"), "start_date")
        end_date = _parse_date(body.get("end_date"), "end_date")
        if start_date > end_date:
            raise ValidationError("Start date must be on or before end date")
        wd = _components().working_days
        dates = []
        day = start_date
        while day <= end_date:
            if wd.is_working_day(day):
                dates.append(day)
            day += timedelta(days=1)

    analysis = _components().conflicts.analyze(
        current_user, dates, exclude_request_id=body.get("exclude_request_id")
    )
    return jsonify(analysis.to_dict())


@workflow_bp.route("/working-days", methods=["GET"])
@login_required
def working_days():
    start_date = _parse_date(request.args.get("start"), "start")
    end_date = _parse_date(request.args.get("end"), "end")
    wd = _components().working_days
    return jsonify({
        "start": start_date.isoformat(),
        "end": end_date.isoformat(),
        "working_days": wd.calculate_working_days(start_date, end_date),
    })


@workflow_bp.route("/requests/<int:request_id>/live-approvals", methods=["GET"])
@login_required
def request_live_approvals(request_id):
    req = _get_request_or_404(request_id)
    if req.status != RequestStatus.PENDING:
        return jsonify([])
    return jsonify([serialize_approval(a) for a in live_approvals(req)])
