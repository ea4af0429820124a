# workflow/rules.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from extensions import db
from models import WorkflowRule
from workflow.errors import ConfigurationError
from workflow.roles import ApprovalRole, UserRole, normalize_role, normalize_user_role

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ApprovalLevel:
    role: ApprovalRole
    required: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {"role": self.role.value, "required": self.required}


@dataclass(frozen=True)
class RequestContext:
    requester: Any
    leave_type_code: Optional[str] = None
    is_special_leave: bool = False
    department: Optional[str] = None
    position: Optional[str] = None
    total_days: float = 0

    @classmethod
    def for_request(cls, leave_request) -> "RequestContext":
        lt = leave_request.leave_type
        user = leave_request.user
        return cls(
            requester=user,
            leave_type_code=lt.code if lt else leave_request.kind,
            is_special_leave=bool(lt and lt.is_special_leave),
            department=user.department,
            position=user.position,
            total_days=float(leave_request.total_days or 0),
        )

    @property
    def user_role(self) -> str:
        return normalize_user_role(getattr(self.requester, "role", None)).value


@dataclass(frozen=True)
class ResolvedWorkflow:
    name: str
    approval_levels: Tuple[ApprovalLevel, ...]
    skip_duplicate_signatures: bool = True
    rule_id: Optional[int] = None
    # Role tags that could not be normalized (dropped from approval_levels)
    configuration_errors: Tuple[str, ...] = field(default=(), compare=False)

    def to_snapshot(self) -> Dict[str, Any]:
        return {
            "id": self.rule_id,
            "name": self.name,
            "approvalLevels": [lvl.to_dict() for lvl in self.approval_levels],
            "skipDuplicateSignatures": self.skip_duplicate_signatures,
        }

    @classmethod
    def from_snapshot(cls, data: Optional[Dict[str, Any]]) -> "ResolvedWorkflow":
        data = data or {}
        levels, errors = parse_levels(data.get("approvalLevels") or [], data.get("name"))
        return cls(
            name=data.get("name") or "Snapshot",
            approval_levels=tuple(levels),
            skip_duplicate_signatures=bool(data.get("skipDuplicateSignatures", True)),
            rule_id=data.get("id"),
            configuration_errors=tuple(errors),
        )


def parse_levels(raw_levels, rule_name=None):
    """Normalize stored ``[{role, required}]`` entries; unknown tags are dropped."""
    levels: List[ApprovalLevel] = []
    errors: List[str] = []

    for raw in raw_levels or []:
        if isinstance(raw, str):
            raw = {"role": raw, "required": True}
        try:
            role = normalize_role(raw.get("role"))
        except ConfigurationError as e:
            logger.warning(f"Workflow rule {rule_name!r}: {e}")
            errors.append(str(e))
            continue
        levels.append(ApprovalLevel(role=role, required=bool(raw.get("required", True))))

    return levels, errors


# =========================
# Condition matching
# =========================
def _in_list(allowed, value) -> bool:
    if allowed is None:
        return True
    if not isinstance(allowed, (list, tuple, set)):
        allowed = [allowed]
    norm = {str(a).strip().upper() for a in allowed}
    return str(value or "").strip().upper() in norm


def matches_conditions(conditions: Optional[Dict[str, Any]], context: RequestContext) -> bool:
    conditions = conditions or {}

    if not _in_list(conditions.get("userRole"), context.user_role):
        return False

    if not _in_list(conditions.get("leaveType"), context.leave_type_code):
        return False

    special = conditions.get("isSpecialLeave")
    if special is not None and bool(special) != bool(context.is_special_leave):
        return False

    if not _in_list(conditions.get("department"), context.department):
        return False

    if not _in_list(conditions.get("position"), context.position):
        return False

    # Both day thresholds are exclusive
    gt = conditions.get("daysGreaterThan")
    if gt is not None and not context.total_days > float(gt):
        return False

    lt = conditions.get("daysLessThan")
    if lt is not None and not context.total_days < float(lt):
        return False

    return True


# =========================
# Resolver
# =========================
class WorkflowRuleResolver:
    """Picks the approval levels for a request: first active rule by priority, else a per-role default."""

    def resolve(self, context: RequestContext) -> ResolvedWorkflow:
        rules = (
            WorkflowRule.query
            .filter(WorkflowRule.is_active.is_(True))
            .order_by(WorkflowRule.priority.desc(), WorkflowRule.id.asc())
            .all()
        )

        for rule in rules:
            if not matches_conditions(rule.conditions, context):
                continue

            levels, errors = parse_levels(rule.approval_levels, rule.name)
            logger.info(
                f"Workflow rule matched | rule={rule.name!r} | requester={getattr(context.requester, 'id', None)}"
            )
            return ResolvedWorkflow(
                name=rule.name,
                approval_levels=tuple(levels),
                skip_duplicate_signatures=bool(rule.skip_duplicate_signatures),
                rule_id=rule.id,
                configuration_errors=tuple(errors),
            )

        return self.default_workflow(context.requester)

    def default_workflow(self, requester) -> ResolvedWorkflow:
        role = normalize_user_role(getattr(requester, "role", None))
        levels = [ApprovalLevel(ApprovalRole.EMPLOYEE)]

        if role == UserRole.MANAGER:
            levels.extend(self._manager_default_levels(requester))
        elif role == UserRole.DEPARTMENT_DIRECTOR:
            levels.append(ApprovalLevel(ApprovalRole.EXECUTIVE))
        elif role == UserRole.EXECUTIVE:
            levels.append(ApprovalLevel(ApprovalRole.ANOTHER_EXECUTIVE))
        else:
            levels.append(ApprovalLevel(ApprovalRole.DIRECT_MANAGER))

        return ResolvedWorkflow(
            name="Default Rule",
            approval_levels=tuple(levels),
            skip_duplicate_signatures=True,
        )

    @staticmethod
    def _manager_default_levels(requester) -> List[ApprovalLevel]:
        manager = requester.manager
        director_id = requester.department_director_id
        has_director = bool(director_id) and director_id != requester.id

        if manager is not None and manager.id != requester.id:
            # An executive manager already is the top of the chain
            if normalize_user_role(manager.role) == UserRole.EXECUTIVE:
                return [ApprovalLevel(ApprovalRole.DIRECT_MANAGER)]
            levels = [ApprovalLevel(ApprovalRole.DIRECT_MANAGER)]
            if has_director and director_id != manager.id:
                levels.append(ApprovalLevel(ApprovalRole.DEPARTMENT_HEAD))
            return levels

        if has_director:
            return [ApprovalLevel(ApprovalRole.DEPARTMENT_HEAD)]

        return [ApprovalLevel(ApprovalRole.EXECUTIVE)]


# =========================
# Seed
# =========================
DEFAULT_RULES = [
    {
        "name": "Special Leave - HR Verification Required",
        "description": "Special leaves requiring HR document verification",
        "conditions": {"isSpecialLeave": True},
        "approval_levels": [
            {"role": "EMPLOYEE", "required": True},
            {"role": "HR", "required": True},
            {"role": "DIRECT_MANAGER", "required": True},
            {"role": "DEPARTMENT_HEAD", "required": False},
        ],
        "priority": 100,
    },
    {
        "name": "Executive Leave Request",
        "description": "Executives are approved by another executive",
        "conditions": {"userRole": ["EXECUTIVE"]},
        "approval_levels": [
            {"role": "EMPLOYEE", "required": True},
            {"role": "ANOTHER_EXECUTIVE", "required": True},
        ],
        "priority": 90,
    },
    {
        "name": "Department Director Leave",
        "description": "Department directors report to executives",
        "conditions": {"userRole": ["DEPARTMENT_DIRECTOR"]},
        "approval_levels": [
            {"role": "EMPLOYEE", "required": True},
            {"role": "EXECUTIVE", "required": True},
        ],
        "priority": 80,
    },
    {
        "name": "Manager Leave",
        "description": "Managers report to department directors",
        "conditions": {"userRole": ["MANAGER"]},
        "approval_levels": [
            {"role": "EMPLOYEE", "required": True},
            {"role": "DEPARTMENT_HEAD", "required": True},
        ],
        "priority": 70,
    },
    {
        "name": "HR Employee Leave",
        "description": "HR employees follow the HR hierarchy",
        "conditions": {"userRole": ["HR"]},
        "approval_levels": [
            {"role": "EMPLOYEE", "required": True},
            {"role": "HR", "required": True},
        ],
        "priority": 60,
    },
    {
        "name": "Standard Employee Leave",
        "description": "Default workflow for regular employee leave requests",
        "conditions": {"userRole": ["EMPLOYEE"]},
        "approval_levels": [
            {"role": "EMPLOYEE", "required": True},
            {"role": "DIRECT_MANAGER", "required": True},
        ],
        "priority": 10,
    },
]


def seed_default_rules(auto_commit: bool = True) -> int:
    """Installs the predefined rule set when the table is empty. Returns rows created."""
    if WorkflowRule.query.count():
        return 0

    for data in DEFAULT_RULES:
        db.session.add(WorkflowRule(
            name=data["name"],
            description=data["description"],
            conditions=dict(data["conditions"]),
            approval_levels=[dict(lvl) for lvl in data["approval_levels"]],
            priority=data["priority"],
            skip_duplicate_signatures=True,
            is_active=True,
        ))

    if auto_commit:
        db.session.commit()
    else:
        db.session.flush()

    logger.info(f"Seeded {len(DEFAULT_RULES)} default workflow rules")
    return len(DEFAULT_RULES)
