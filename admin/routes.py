import logging

from flask import jsonify, request
from flask_login import current_user, login_required

from . import admin_bp
from extensions import db
from models import WorkflowRule
from utils.audit_helpers import write_audit
from utils.permissions import admin_required
from workflow.errors import NotFoundError, ValidationError
from workflow.rules import parse_levels

logger = logging.getLogger(__name__)

CONDITION_KEYS = {
    "userRole", "leaveType", "department", "position",
    "isSpecialLeave", "daysGreaterThan", "daysLessThan",
}


def _components():
    from workflow.components import get_components
    return get_components()


def _body():
    return request.get_json(silent=True) or {}


# =========================
# Escalation settings
# =========================
@admin_bp.route("/escalation/settings", methods=["GET"])
@login_required
@admin_required
def escalation_settings():
    from services.escalation_service import EscalationConfig

    return jsonify(EscalationConfig.load().to_dict())


@admin_bp.route("/escalation/settings", methods=["PUT", "POST"])
@login_required
@admin_required
def update_escalation_settings():
    from services.escalation_service import EscalationConfig

    cfg = EscalationConfig.update(_body())
    write_audit(
        "ESCALATION_SETTINGS_UPDATED",
        user_id=current_user.id,
        note=", ".join(sorted(_body().keys())),
        target_type="CompanySetting",
    )
    db.session.commit()
    return jsonify(cfg.to_dict())


@admin_bp.route("/escalation/run", methods=["POST"])
@login_required
@admin_required
def run_escalation():
    result = _components().escalation.sweep()
    logger.info(f"Manual escalation sweep | by={current_user.id}")
    return jsonify(result.to_dict())


# =========================
# Workflow rules
# =========================
def _serialize_rule(rule):
    return {
        "id": rule.id,
        "name": rule.name,
        "description": rule.description,
        "conditions": rule.conditions or {},
        "approval_levels": rule.approval_levels or [],
        "priority": rule.priority,
        "skip_duplicate_signatures": rule.skip_duplicate_signatures,
        "is_active": rule.is_active,
    }


def _clean_conditions(raw):
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValidationError("conditions must be an object")
    unknown = set(raw) - CONDITION_KEYS
    if unknown:
        raise ValidationError(f"Unknown condition keys: {', '.join(sorted(unknown))}")
    for key in ("daysGreaterThan", "daysLessThan"):
        if raw.get(key) is not None:
            try:
                float(raw[key])
            except (TypeError, ValueError):
                raise ValidationError(f"{key} must be a number")
    return dict(raw)


def _clean_levels(raw, name):
    if not isinstance(raw, list) or not raw:
        raise ValidationError("approval_levels must be a non-empty list")
    levels, errors = parse_levels(raw, name)
    if errors:
        raise ValidationError("; ".join(errors))
    return [lvl.to_dict() for lvl in levels]


def _int(value, field):
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an integer")


def _get_rule(rule_id):
    rule = db.session.get(WorkflowRule, rule_id)
    if rule is None:
        raise NotFoundError(f"Workflow rule #{rule_id} not found")
    return rule


@admin_bp.route("/rules", methods=["GET"])
@login_required
@admin_required
def list_rules():
    q = WorkflowRule.query
    if request.args.get("active") == "1":
        q = q.filter(WorkflowRule.is_active.is_(True))
    rules = q.order_by(WorkflowRule.priority.desc(), WorkflowRule.id.asc()).all()
    return jsonify([_serialize_rule(r) for r in rules])


@admin_bp.route("/rules", methods=["POST"])
@login_required
@admin_required
def create_rule():
    body = _body()
    name = (body.get("name") or "").strip()
    if not name:
        raise ValidationError("name is required")

    rule = WorkflowRule(
        name=name,
        description=(body.get("description") or "").strip() or None,
        conditions=_clean_conditions(body.get("conditions")),
        approval_levels=_clean_levels(body.get("approval_levels"), name),
        priority=_int(body.get("priority", 0), "priority"),
        skip_duplicate_signatures=bool(body.get("skip_duplicate_signatures", True)),
        is_active=bool(body.get("is_active", True)),
    )
    db.session.add(rule)
    db.session.flush()

    write_audit("WORKFLOW_RULE_CREATED", user_id=current_user.id, note=name,
                target_type="WorkflowRule", target_id=rule.id)
    db.session.commit()

    logger.info(f"Workflow rule #{rule.id} created | {name!r} | priority={rule.priority}")
    return jsonify(_serialize_rule(rule)), 201


@admin_bp.route("/rules/<int:rule_id>", methods=["PUT"])
@login_required
@admin_required
def update_rule(rule_id):
    rule = _get_rule(rule_id)
    body = _body()

    if "name" in body:
        name = (body.get("name") or "").strip()
        if not name:
            raise ValidationError("name cannot be empty")
        rule.name = name
    if "description" in body:
        rule.description = (body.get("description") or "").strip() or None
    if "conditions" in body:
        rule.conditions = _clean_conditions(body.get("conditions"))
    if "approval_levels" in body:
        rule.approval_levels = _clean_levels(body.get("approval_levels"), rule.name)
    if "priority" in body:
        rule.priority = _int(body.get("priority"), "priority")
    if "skip_duplicate_signatures" in body:
        rule.skip_duplicate_signatures = bool(body.get("skip_duplicate_signatures"))
    if "is_active" in body:
        rule.is_active = bool(body.get("is_active"))

    write_audit("WORKFLOW_RULE_UPDATED", user_id=current_user.id, note=rule.name,
                target_type="WorkflowRule", target_id=rule.id)
    db.session.commit()
    return jsonify(_serialize_rule(rule))


@admin_bp.route("/rules/<int:rule_id>/priority", methods=["PATCH"])
@login_required
@admin_required
def update_rule_priority(rule_id):
    rule = _get_rule(rule_id)
    old = rule.priority
    rule.priority = _int(_body().get("priority"), "priority")

    write_audit("WORKFLOW_RULE_PRIORITY", user_id=current_user.id,
                old_status=str(old), new_status=str(rule.priority),
                target_type="WorkflowRule", target_id=rule.id)
    db.session.commit()
    return jsonify(_serialize_rule(rule))


@admin_bp.route("/rules/<int:rule_id>", methods=["DELETE"])
@login_required
@admin_required
def deactivate_rule(rule_id):
    # Soft delete: in-flight requests keep their snapshot anyway
    rule = _get_rule(rule_id)
    rule.is_active = False

    write_audit("WORKFLOW_RULE_DEACTIVATED", user_id=current_user.id, note=rule.name,
                target_type="WorkflowRule", target_id=rule.id)
    db.session.commit()
    return jsonify(_serialize_rule(rule))
