import logging
from dataclasses import asdict, dataclass, fields
from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import select

from extensions import db
from models import (
    Approval,
    ApprovalDelegate,
    ApprovalStatus,
    LeaveRequest,
    RequestKind,
    RequestStatus,
    User,
)
from utils.audit_helpers import write_audit
from utils.events import notify
from utils.outbox import SideEffectOutbox
from utils.settings import as_bool, as_int, get_setting, set_setting
from workflow.engine import next_level, request_link
from workflow.errors import ValidationError
from workflow.transitions import complete_request

logger = logging.getLogger(__name__)

AUTO_APPROVE_COMMENT = "Auto-approved by system after maximum escalations"
LAST_RUN_KEY = "ESCALATION_LAST_RUN"


# =========================
# Config
# =========================
# field -> (settings key, config key, parser)
_SETTINGS = {
    "escalation_days_before_auto_approval": ("escalationDaysBeforeAutoApproval", "ESCALATION_DAYS_BEFORE_AUTO_APPROVAL", as_int),
    "escalation_enabled": ("escalationEnabled", "ESCALATION_ENABLED", as_bool),
    "max_escalation_levels": ("maxEscalationLevels", "MAX_ESCALATION_LEVELS", as_int),
    "auto_approve_after_max_escalations": ("autoApproveAfterMaxEscalations", "AUTO_APPROVE_AFTER_MAX_ESCALATIONS", as_bool),
    "auto_skip_absent_approvers": ("autoSkipAbsentApprovers", "AUTO_SKIP_ABSENT_APPROVERS", as_bool),
    "overload_threshold": ("escalationOverloadThreshold", "ESCALATION_OVERLOAD_THRESHOLD", as_int),
    "overload_window_days": ("escalationOverloadWindowDays", "ESCALATION_OVERLOAD_WINDOW_DAYS", as_int),
    "use_business_days": ("escalationUseBusinessDays", "ESCALATION_USE_BUSINESS_DAYS", as_bool),
}


@dataclass
class EscalationConfig:
    escalation_days_before_auto_approval: int = 3
    escalation_enabled: bool = True
    max_escalation_levels: int = 3
    auto_approve_after_max_escalations: bool = False
    auto_skip_absent_approvers: bool = True
    overload_threshold: int = 10
    overload_window_days: int = 7
    use_business_days: bool = False

    @classmethod
    def defaults(cls):
        cfg = cls()
        for name, (_, config_key, parse) in _SETTINGS.items():
            if config_key in current_app.config:
                setattr(cfg, name, parse(current_app.config[config_key], getattr(cfg, name)))
        return cfg

    @classmethod
    def load(cls):
        """Config defaults overridden by CompanySetting rows; read fresh every call."""
        cfg = cls.defaults()
        for name, (key, _, parse) in _SETTINGS.items():
            raw = get_setting(key)
            if raw is not None:
                setattr(cfg, name, parse(raw, getattr(cfg, name)))
        return cfg

    @classmethod
    def initialize_default_settings(cls):
        cfg = cls.defaults()
        for name, (key, _, _) in _SETTINGS.items():
            if get_setting(key) is None:
                set_setting(key, _to_setting(getattr(cfg, name)), category="escalation", auto_commit=False)
        db.session.commit()
        return cls.load()

    @classmethod
    def update(cls, values):
        """Validates and stores admin changes; accepts camelCase keys or field names."""
        by_key = {key: name for name, (key, _, _) in _SETTINGS.items()}
        names = {f.name for f in fields(cls)}
        changes = {}

        for raw_key, raw_value in (values or {}).items():
            name = raw_key if raw_key in names else by_key.get(raw_key)
            if name is None:
                raise ValidationError(f"Unknown escalation setting: {raw_key}")
            parse = _SETTINGS[name][2]
            if parse is as_int:
                try:
                    value = int(raw_value)
                except (TypeError, ValueError):
                    raise ValidationError(f"{raw_key} must be an integer")
                if value < 1:
                    raise ValidationError(f"{raw_key} must be at least 1")
            else:
                value = as_bool(raw_value)
            changes[name] = value

        for name, value in changes.items():
            set_setting(_SETTINGS[name][0], _to_setting(value), category="escalation", auto_commit=False)
        db.session.commit()
        logger.info(f"Escalation settings updated: {changes}")
        return cls.load()

    def to_dict(self):
        return asdict(self)


def _to_setting(value):
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@dataclass
class SweepResult:
    enabled: bool = True
    considered: int = 0
    escalated: int = 0
    auto_approved: int = 0
    unresolved: int = 0
    skipped_absent: int = 0
    lost_races: int = 0

    def to_dict(self):
        return asdict(self)


class _LostRace(Exception):
    """Another actor decided or escalated the approval first."""


# =========================
# Engine
# =========================
class EscalationEngine:
    """Moves stale approvals up the requester's hierarchy.

    ``sweep()`` is the entry point for stale approvals; scheduling belongs to
    the caller (cron job or the throttled request hook). ``initial_approver()``
    applies the same absence rules when a request is submitted.
    """

    def __init__(self, chain_builder, email=None, clock=datetime.utcnow, config_loader=None, working_days=None):
        self.chain_builder = chain_builder
        self.email = email
        self.clock = clock
        self.config_loader = config_loader or EscalationConfig.load
        self.working_days = working_days

    # =========================
    # Absence / delegation
    # =========================
    @staticmethod
    def is_on_leave(user_id, leave_request) -> bool:
        return (
            LeaveRequest.query
            .filter(
                LeaveRequest.user_id == user_id,
                LeaveRequest.kind == RequestKind.LEAVE,
                LeaveRequest.status == RequestStatus.APPROVED,
                LeaveRequest.start_date <= leave_request.end_date,
                LeaveRequest.end_date >= leave_request.start_date,
            )
            .first()
            is not None
        )

    @staticmethod
    def is_overloaded(user_id, config, now) -> bool:
        since = now - timedelta(days=config.overload_window_days)
        count = (
            Approval.query
            .filter(
                Approval.approver_id == user_id,
                Approval.status == ApprovalStatus.PENDING,
                Approval.escalated_to_id.is_(None),
                Approval.created_at >= since,
            )
            .count()
        )
        return count > config.overload_threshold

    def is_absent(self, user_id, leave_request, config, now) -> bool:
        user = db.session.get(User, user_id)
        if user is None or not user.is_active:
            return True
        return self.is_on_leave(user_id, leave_request) or self.is_overloaded(user_id, config, now)

    def find_delegate(self, user_id, leave_request, config, now, exclude=()):
        """Newest active delegate of ``user_id`` who is not absent themselves."""
        day = now.date()
        rows = (
            ApprovalDelegate.query
            .join(User, User.id == ApprovalDelegate.delegate_id)
            .filter(
                ApprovalDelegate.delegator_id == user_id,
                ApprovalDelegate.is_active.is_(True),
                ApprovalDelegate.start_date <= day,
                ApprovalDelegate.end_date >= day,
                User.is_active.is_(True),
            )
            .order_by(ApprovalDelegate.id.desc())
            .all()
        )
        for d in rows:
            if d.delegate_id in exclude:
                continue
            if self.is_absent(d.delegate_id, leave_request, config, now):
                logger.info(f"Delegate {d.delegate_id} of user {user_id} is absent too")
                continue
            return d.delegate_id
        return None

    # =========================
    # Next hop
    # =========================
    def _first_available(self, candidates, req, exclude, config, now):
        skipped = []
        for candidate in candidates:
            if candidate in exclude:
                continue
            if config.auto_skip_absent_approvers and self.is_absent(candidate, req, config, now):
                delegate = self.find_delegate(candidate, req, config, now, exclude=exclude)
                if delegate is not None:
                    return delegate, skipped
                skipped.append(candidate)
                continue
            return candidate, skipped
        return None, skipped

    def next_approver(self, approval, config, now):
        """(target_id, skipped_ids) for a stale approval; target is None when the chain is exhausted."""
        req = approval.request
        requester = req.user
        chain = self.chain_builder.escalation_chain(requester)

        already_approved = {
            a.approver_id for a in req.approvals if a.status == ApprovalStatus.APPROVED
        }
        exclude = {requester.id, approval.approver_id} | already_approved

        try:
            start = chain.index(approval.approver_id) + 1
        except ValueError:
            start = 0

        return self._first_available(chain[start:], req, exclude, config, now)

    def initial_approver(self, req, approver_id, now=None):
        """Level-1 approver for a new request: ``approver_id`` unless absent.

        An absent approver is replaced by their delegate, or else by the next
        available person above them in the requester's hierarchy. Falls back
        to ``approver_id`` when nobody is available.
        """
        config = self.config_loader()
        if not config.auto_skip_absent_approvers:
            return approver_id, []
        now = now or self.clock()

        chain = self.chain_builder.escalation_chain(req.user)
        try:
            above = chain[chain.index(approver_id) + 1:]
        except ValueError:
            above = chain

        target_id, skipped = self._first_available([approver_id] + above, req, {req.user_id}, config, now)
        if target_id is None:
            return approver_id, skipped
        return target_id, skipped

    # =========================
    # Escalation
    # =========================
    def _claim(self, approval, values):
        still_open = select(LeaveRequest.id).where(
            LeaveRequest.id == approval.request_id,
            LeaveRequest.status == RequestStatus.PENDING,
        )
        rows = (
            Approval.query
            .filter(
                Approval.id == approval.id,
                Approval.status == ApprovalStatus.PENDING,
                Approval.escalated_to_id.is_(None),
                Approval.request_id.in_(still_open),
            )
            .update(values, synchronize_session=False)
        )
        if rows != 1:
            raise _LostRace()

    def _escalate_to(self, approval, target_id, skipped, config, now, outbox):
        req = approval.request
        source = approval.approver
        days = config.escalation_days_before_auto_approval
        unit = "business days" if config.use_business_days and self.working_days is not None else "days"
        reason = f"Auto-escalated after {days} {unit} of inactivity. Skipped absent approvers: {len(skipped)}"

        with db.session.begin_nested():
            new = Approval(
                request_id=req.id,
                approver_id=target_id,
                level=next_level(req.id),
                chain_position=approval.chain_position,
                role=approval.role,
                status=ApprovalStatus.PENDING,
                comments=f"Escalated from {source.full_name}",
                created_at=now,
            )
            db.session.add(new)
            db.session.flush()

            self._claim(approval, {
                Approval.escalated_to_id: new.id,
                Approval.escalated_at: now,
                Approval.escalation_reason: reason,
            })

            write_audit(
                "ESCALATED",
                request_id=req.id,
                note=f"Approval #{approval.id} (level {approval.level}) -> user {target_id} level {new.level}. {reason}",
                target_type="APPROVAL",
                target_id=new.id,
            )

        target = db.session.get(User, target_id)
        outbox.add(
            "notify_escalation_target",
            notify,
            target_id,
            "APPROVAL_REQUIRED",
            f"Escalated approval: request #{req.id}",
            f"Request #{req.id} from {req.user.full_name} was escalated to you from {source.full_name}.",
            link=request_link(req.id),
        )
        outbox.add(
            "notify_requester",
            notify,
            req.user_id,
            "REQUEST_ESCALATED",
            f"Request #{req.id} escalated",
            f"Your request was escalated to {target.full_name if target else 'the next approver'}.",
            link=request_link(req.id),
        )
        if self.email is not None and target is not None:
            outbox.add("email_escalation", self.email.send_escalation_notification, target, req,
                       escalated_from=source.full_name, reason=reason, approval_id=new.id)
        logger.info(f"Approval #{approval.id} escalated to user {target_id} | request={req.id} | skipped={skipped}")

    def _auto_approve(self, approval, now, outbox):
        req = approval.request
        with db.session.begin_nested():
            self._claim(approval, {
                Approval.status: ApprovalStatus.APPROVED,
                Approval.decided_at: now,
                Approval.comments: AUTO_APPROVE_COMMENT,
            })
            if not complete_request(req, note=AUTO_APPROVE_COMMENT, action="AUTO_APPROVED"):
                raise _LostRace()

        outbox.add(
            "notify_requester",
            notify,
            req.user_id,
            "LEAVE_APPROVED",
            "Request approved",
            f"Your request #{req.id} was approved automatically after maximum escalations.",
            link=request_link(req.id),
        )
        if self.email is not None:
            outbox.add("email_requester", self.email.send_approval_notification, req, True,
                       approver_name="the system", comments=AUTO_APPROVE_COMMENT)
        logger.warning(f"Request #{req.id} auto-approved at level {approval.level}")

    def escalate_approval(self, approval, config, now, outbox):
        """Returns 'escalated', 'auto_approved', 'unresolved' or 'lost_race'."""
        target_id, skipped = self.next_approver(approval, config, now)
        try:
            if target_id is not None:
                self._escalate_to(approval, target_id, skipped, config, now, outbox)
                outcome = "escalated"
            elif config.auto_approve_after_max_escalations and approval.level >= config.max_escalation_levels:
                self._auto_approve(approval, now, outbox)
                outcome = "auto_approved"
            else:
                logger.info(
                    f"No escalation target for approval #{approval.id} | request={approval.request_id} "
                    f"| level={approval.level} | skipped={skipped}"
                )
                outcome = "unresolved"
            db.session.commit()
        except _LostRace:
            db.session.rollback()
            logger.info(f"Approval #{approval.id} changed concurrently; left to the other actor")
            return "lost_race", skipped
        return outcome, skipped

    def stale_approvals(self, threshold):
        return (
            Approval.query
            .join(LeaveRequest, LeaveRequest.id == Approval.request_id)
            .filter(
                Approval.status == ApprovalStatus.PENDING,
                Approval.escalated_to_id.is_(None),
                Approval.created_at <= threshold,
                LeaveRequest.status == RequestStatus.PENDING,
            )
            .order_by(Approval.created_at.asc(), Approval.id.asc())
            .all()
        )

    def threshold(self, now, config):
        """Approvals created at or before this moment are stale."""
        days = config.escalation_days_before_auto_approval
        if config.use_business_days and self.working_days is not None:
            return self.working_days.business_days_before(now, days)
        return now - timedelta(days=days)

    def sweep(self, now=None) -> SweepResult:
        config = self.config_loader()
        if not config.escalation_enabled:
            logger.info("Escalation disabled; sweep skipped")
            return SweepResult(enabled=False)

        now = now or self.clock()
        threshold = self.threshold(now, config)
        result = SweepResult()

        for approval in self.stale_approvals(threshold):
            result.considered += 1
            outbox = SideEffectOutbox()
            outcome, skipped = self.escalate_approval(approval, config, now, outbox)

            if outcome == "escalated":
                result.escalated += 1
                result.skipped_absent += len(skipped)
            elif outcome == "auto_approved":
                result.auto_approved += 1
            elif outcome == "unresolved":
                result.unresolved += 1
            else:
                result.lost_races += 1

            outbox.dispatch()

        logger.info(f"Escalation sweep finished | {result.to_dict()}")
        return result


# =========================
# Throttled trigger
# =========================
def run_escalation_if_needed(engine, throttle_minutes=None):
    """Runs a sweep at most once per throttle window (last run kept in CompanySetting)."""
    now = datetime.utcnow()
    if throttle_minutes is None:
        throttle_minutes = current_app.config.get("ESCALATION_THROTTLE_MINUTES", 10)

    last_run_raw = get_setting(LAST_RUN_KEY)
    if last_run_raw:
        try:
            last_run = datetime.fromisoformat(last_run_raw)
        except ValueError:
            last_run = None
        if last_run and now - last_run < timedelta(minutes=throttle_minutes):
            return None  # throttle

    set_setting(LAST_RUN_KEY, now.isoformat(), category="system")
    return engine.sweep(now=now)
