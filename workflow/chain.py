# workflow/chain.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from models import User
from workflow.roles import (
    ApprovalRole,
    SelfApprovalPolicy,
    UserRole,
    normalize_policy,
    normalize_user_role,
)
from workflow.rules import ApprovalLevel, ResolvedWorkflow

logger = logging.getLogger(__name__)

# Requesters who may sit at the top of their own hierarchy
_SELF_COLLAPSE_ROLES = {UserRole.EXECUTIVE, UserRole.DEPARTMENT_DIRECTOR}


@dataclass(frozen=True)
class RoleResolution:
    user_id: Optional[int]
    # True when the naive answer is the requester themself (executive / director)
    self_collapse: bool = False

    @property
    def resolved(self) -> bool:
        return self.user_id is not None and not self.self_collapse


@dataclass(frozen=True)
class ChainEntry:
    role: ApprovalRole
    approver_id: int
    level: int

    def to_dict(self):
        return {"role": self.role.value, "approver_id": self.approver_id, "level": self.level}

    @classmethod
    def from_dict(cls, data) -> "ChainEntry":
        return cls(
            role=ApprovalRole(data["role"]),
            approver_id=int(data["approver_id"]),
            level=int(data["level"]),
        )


@dataclass(frozen=True)
class ChainPlan:
    entries: Tuple[ChainEntry, ...]
    # Roles the requester signs on the document in place of an approver
    self_signed: Tuple[ApprovalRole, ...] = ()
    unresolved: Tuple[ApprovalRole, ...] = field(default=(), compare=False)

    def approver_ids(self) -> List[int]:
        return [e.approver_id for e in self.entries]


class ApprovalChainBuilder:
    """Turns abstract approval roles into concrete approvers for one requester.

    The same resolution feeds the initial chain, the escalation next-hop chain
    and the document signature requirements, so the three can never disagree.
    """

    def __init__(self, policy=SelfApprovalPolicy.SELF_SIGN):
        self.policy = normalize_policy(policy)

    # =========================
    # Lookups
    # =========================
    @staticmethod
    def _first_active(roles: Iterable[UserRole], exclude: Iterable[int] = ()) -> Optional[int]:
        exclude = {i for i in exclude if i is not None}
        q = (
            User.query
            .filter(User.role.in_([r.value for r in roles]))
            .filter(User.is_active.is_(True))
        )
        if exclude:
            q = q.filter(User.id.notin_(exclude))
        user = q.order_by(User.id.asc()).first()
        return user.id if user else None

    def _another_executive(self, requester, exclude=()) -> Optional[int]:
        return self._first_active([UserRole.EXECUTIVE], exclude=[requester.id, *exclude])

    # =========================
    # Role resolution
    # =========================
    def resolve_role(self, requester, role: ApprovalRole) -> RoleResolution:
        requester_role = normalize_user_role(requester.role)
        can_self_collapse = requester_role in _SELF_COLLAPSE_ROLES

        if role == ApprovalRole.EMPLOYEE:
            return RoleResolution(requester.id)

        if role == ApprovalRole.DIRECT_MANAGER:
            manager_id = requester.manager_id
            if manager_id and manager_id != requester.id:
                return RoleResolution(manager_id)
            if can_self_collapse:
                return RoleResolution(requester.id, self_collapse=True)
            return RoleResolution(None)

        if role == ApprovalRole.DEPARTMENT_HEAD:
            director_id = requester.department_director_id
            if director_id and director_id != requester.id:
                return RoleResolution(director_id)
            if can_self_collapse:
                return RoleResolution(requester.id, self_collapse=True)
            return RoleResolution(None)

        if role == ApprovalRole.HR:
            return RoleResolution(self._first_active([UserRole.HR], exclude=[requester.id]))

        if role in (ApprovalRole.EXECUTIVE, ApprovalRole.ANOTHER_EXECUTIVE):
            exec_id = self._another_executive(requester)
            if exec_id is None and requester_role == UserRole.EXECUTIVE:
                return RoleResolution(requester.id, self_collapse=True)
            return RoleResolution(exec_id)

        return RoleResolution(None)

    def _substitute(self, requester, role: ApprovalRole, taken: List[int]) -> Optional[int]:
        """Next distinct authority above a self-collapsed role."""
        candidates: List[Optional[int]] = []
        if role == ApprovalRole.DIRECT_MANAGER:
            candidates.append(requester.department_director_id)
        candidates.append(self._another_executive(requester, exclude=taken))

        for cid in candidates:
            if cid and cid != requester.id and cid not in taken:
                return cid
        return None

    # =========================
    # Chain
    # =========================
    def plan(self, requester, approval_levels: Iterable[ApprovalLevel], skip_duplicate_signatures=True) -> ChainPlan:
        entries: List[ChainEntry] = []
        self_signed: List[ApprovalRole] = []
        unresolved: List[ApprovalRole] = []
        seen_roles = set()

        for lvl in approval_levels:
            if not lvl.required or lvl.role == ApprovalRole.EMPLOYEE:
                continue
            if lvl.role in seen_roles:
                continue
            seen_roles.add(lvl.role)

            res = self.resolve_role(requester, lvl.role)
            approver_id = res.user_id if res.resolved else None

            if res.self_collapse:
                if self.policy == SelfApprovalPolicy.SUBSTITUTE:
                    approver_id = self._substitute(requester, lvl.role, [e.approver_id for e in entries])
                    if approver_id is None:
                        unresolved.append(lvl.role)
                        logger.warning(
                            f"No substitute authority for {lvl.role.value} | requester={requester.id}"
                        )
                        continue
                else:
                    if self.policy == SelfApprovalPolicy.SELF_SIGN:
                        if not (skip_duplicate_signatures and self_signed):
                            self_signed.append(lvl.role)
                    continue

            if approver_id is None:
                unresolved.append(lvl.role)
                logger.warning(
                    f"No approver resolved for role {lvl.role.value} | requester={requester.id}"
                )
                continue

            if approver_id == requester.id:
                continue

            if skip_duplicate_signatures and approver_id in {e.approver_id for e in entries}:
                continue

            entries.append(ChainEntry(role=lvl.role, approver_id=approver_id, level=len(entries) + 1))

        return ChainPlan(entries=tuple(entries), self_signed=tuple(self_signed), unresolved=tuple(unresolved))

    def build(self, requester, approval_levels, skip_duplicate_signatures=True) -> List[ChainEntry]:
        return list(self.plan(requester, approval_levels, skip_duplicate_signatures).entries)

    def required_signers(self, requester, workflow: ResolvedWorkflow) -> Dict[ApprovalRole, Optional[int]]:
        """Document signature slots: role -> expected signer id.

        Roles nobody could be resolved for stay in the map with ``None`` so the
        document cannot complete around a configuration gap.
        """
        plan = self.plan(requester, workflow.approval_levels, workflow.skip_duplicate_signatures)
        signers: Dict[ApprovalRole, Optional[int]] = {}

        if any(l.role == ApprovalRole.EMPLOYEE and l.required for l in workflow.approval_levels):
            signers[ApprovalRole.EMPLOYEE] = requester.id

        for entry in plan.entries:
            signers[entry.role] = entry.approver_id

        for role in plan.self_signed:
            signers.setdefault(role, requester.id)

        for role in plan.unresolved:
            signers.setdefault(role, None)

        return signers

    # =========================
    # Escalation next-hop
    # =========================
    def escalation_chain(self, requester) -> List[int]:
        """[manager, director, first active HR/executive], deduplicated, never the requester."""
        chain: List[int] = []

        for uid in (requester.manager_id, requester.department_director_id):
            if uid and uid != requester.id and uid not in chain:
                chain.append(uid)

        top = self._first_active([UserRole.HR, UserRole.EXECUTIVE], exclude=[requester.id, *chain])
        if top is not None:
            chain.append(top)

        return chain
