from enum import Enum

from workflow.errors import ConfigurationError


class UserRole(str, Enum):
    EMPLOYEE = "EMPLOYEE"
    MANAGER = "MANAGER"
    DEPARTMENT_DIRECTOR = "DEPARTMENT_DIRECTOR"
    HR = "HR"
    EXECUTIVE = "EXECUTIVE"
    ADMIN = "ADMIN"


class ApprovalRole(str, Enum):
    # The requester's own document signature; never resolved to an approver
    EMPLOYEE = "EMPLOYEE"
    DIRECT_MANAGER = "DIRECT_MANAGER"
    DEPARTMENT_HEAD = "DEPARTMENT_HEAD"
    HR = "HR"
    EXECUTIVE = "EXECUTIVE"
    ANOTHER_EXECUTIVE = "ANOTHER_EXECUTIVE"


class SelfApprovalPolicy(str, Enum):
    COLLAPSE = "COLLAPSE"
    SELF_SIGN = "SELF_SIGN"
    SUBSTITUTE = "SUBSTITUTE"


# Every spelling found in stored rules and document templates
_ROLE_ALIASES = {
    "EMPLOYEE": ApprovalRole.EMPLOYEE,
    "REQUESTER": ApprovalRole.EMPLOYEE,

    "DIRECT_MANAGER": ApprovalRole.DIRECT_MANAGER,
    "MANAGER": ApprovalRole.DIRECT_MANAGER,
    "LINE_MANAGER": ApprovalRole.DIRECT_MANAGER,

    "DEPARTMENT_HEAD": ApprovalRole.DEPARTMENT_HEAD,
    "DEPARTMENT_DIRECTOR": ApprovalRole.DEPARTMENT_HEAD,
    "DEPARTMENT_MANAGER": ApprovalRole.DEPARTMENT_HEAD,
    "DIRECTOR": ApprovalRole.DEPARTMENT_HEAD,
    "DEPT_HEAD": ApprovalRole.DEPARTMENT_HEAD,

    "HR": ApprovalRole.HR,
    "HR_MANAGER": ApprovalRole.HR,
    "HR_VERIFICATION": ApprovalRole.HR,

    "EXECUTIVE": ApprovalRole.EXECUTIVE,
    "CEO": ApprovalRole.EXECUTIVE,

    "ANOTHER_EXECUTIVE": ApprovalRole.ANOTHER_EXECUTIVE,
}


def normalize_role(raw) -> ApprovalRole:
    """Canonicalize a stored role tag ("manager", "DEPARTMENT_DIRECTOR", ...)."""
    if isinstance(raw, ApprovalRole):
        return raw

    key = (str(raw or "")).strip().upper().replace("-", "_").replace(" ", "_")
    role = _ROLE_ALIASES.get(key)
    if role is None:
        raise ConfigurationError(f"Unknown approval role: {raw!r}")
    return role


def normalize_user_role(raw) -> UserRole:
    key = (str(raw or "")).strip().upper()
    try:
        return UserRole(key)
    except ValueError:
        return UserRole.EMPLOYEE


def normalize_policy(raw) -> SelfApprovalPolicy:
    if isinstance(raw, SelfApprovalPolicy):
        return raw
    key = (str(raw or "")).strip().upper()
    try:
        return SelfApprovalPolicy(key)
    except ValueError:
        raise ConfigurationError(f"Unknown self-approval policy: {raw!r}")
