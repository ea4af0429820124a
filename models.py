from datetime import datetime

from flask_login import UserMixin
from werkzeug.security import generate_password_hash, check_password_hash

from extensions import db


# ======================
# Status vocabularies
# ======================
class RequestStatus:
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"

    FINAL = (APPROVED, REJECTED, CANCELLED)


class ApprovalStatus:
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class DocumentStatus:
    PENDING_SIGNATURES = "PENDING_SIGNATURES"
    COMPLETED = "COMPLETED"


class RequestKind:
    LEAVE = "LEAVE"
    WFH = "WFH"


# ======================
# Users
# ======================
class User(db.Model, UserMixin):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, index=True, nullable=False)
    name = db.Column(db.String(200), nullable=True)
    password_hash = db.Column(db.String(255), nullable=False, default="")

    # EMPLOYEE / MANAGER / DEPARTMENT_DIRECTOR / HR / EXECUTIVE / ADMIN
    role = db.Column(db.String(50), index=True, nullable=False, default="EMPLOYEE")
    department = db.Column(db.String(120), nullable=True, index=True)
    position = db.Column(db.String(120), nullable=True)

    # Weak references: may be NULL or point back at the user itself
    manager_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    department_director_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)

    # Flask-Login reads is_active as a property; the column shadows it.
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    manager = db.relationship("User", foreign_keys=[manager_id], remote_side=[id], lazy="joined", join_depth=1)
    department_director = db.relationship(
        "User", foreign_keys=[department_director_id], remote_side=[id], lazy="joined", join_depth=1
    )

    @property
    def full_name(self):
        return (self.name or "").strip() or self.email or f"User #{self.id}"

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    def __repr__(self) -> str:
        return f"<User id={self.id} role={self.role}>"


# ======================
# Leave master data
# ======================
class LeaveType(db.Model):
    __tablename__ = "leave_types"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), unique=True, index=True, nullable=False)
    name = db.Column(db.String(200), nullable=False)
    is_special_leave = db.Column(db.Boolean, default=False, nullable=False)
    # Special leave types (marriage, bereavement...) are not drawn from a balance
    requires_balance = db.Column(db.Boolean, default=True, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<LeaveType {self.code}>"


class LeaveBalance(db.Model):
    __tablename__ = "leave_balances"
    __table_args__ = (
        db.UniqueConstraint("user_id", "leave_type_id", "year", name="uq_leave_balance_user_type_year"),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    leave_type_id = db.Column(db.Integer, db.ForeignKey("leave_types.id"), nullable=False)
    year = db.Column(db.Integer, nullable=False)

    entitled = db.Column(db.Float, default=0, nullable=False)
    used = db.Column(db.Float, default=0, nullable=False)
    pending = db.Column(db.Float, default=0, nullable=False)
    available = db.Column(db.Float, default=0, nullable=False)

    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Holiday(db.Model):
    __tablename__ = "holidays"

    id = db.Column(db.Integer, primary_key=True)
    date = db.Column(db.Date, nullable=False, index=True)
    name = db.Column(db.String(200), nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)


# ======================
# Requests & approvals
# ======================
class LeaveRequest(db.Model):
    __tablename__ = "leave_requests"

    id = db.Column(db.Integer, primary_key=True)

    # LEAVE / WFH
    kind = db.Column(db.String(10), nullable=False, default=RequestKind.LEAVE, index=True)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    leave_type_id = db.Column(db.Integer, db.ForeignKey("leave_types.id"), nullable=True)

    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)
    total_days = db.Column(db.Float, nullable=False, default=0)
    reason = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(20), nullable=False, default=RequestStatus.PENDING, index=True)

    # Snapshot of the chain built at submission: [{"role", "approver_id", "level"}, ...]
    approval_chain = db.Column(db.JSON, nullable=False, default=list)
    workflow_rule_name = db.Column(db.String(200), nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = db.relationship("User", foreign_keys=[user_id], lazy="joined")
    leave_type = db.relationship("LeaveType", lazy="joined")

    approvals = db.relationship(
        "Approval",
        back_populates="request",
        order_by="Approval.level",
        lazy="selectin",
    )

    generated_document = db.relationship(
        "GeneratedDocument",
        back_populates="request",
        uselist=False,
    )

    def __repr__(self) -> str:
        return f"<LeaveRequest id={self.id} kind={self.kind} status={self.status}>"


class Approval(db.Model):
    __tablename__ = "approvals"
    __table_args__ = (
        db.Index("ix_approvals_stale_scan", "status", "escalated_to_id", "created_at"),
        db.Index("ix_approvals_request_approver", "request_id", "approver_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(db.Integer, db.ForeignKey("leave_requests.id"), nullable=False)
    approver_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # 1-based, ascending up the chain; escalation creates level + 1
    level = db.Column(db.Integer, nullable=False, default=1)
    # Index into LeaveRequest.approval_chain this row is answering for
    chain_position = db.Column(db.Integer, nullable=False, default=0)
    role = db.Column(db.String(50), nullable=True)

    status = db.Column(db.String(20), nullable=False, default=ApprovalStatus.PENDING)
    comments = db.Column(db.Text, nullable=True)
    signature = db.Column(db.Text, nullable=True)
    decided_at = db.Column(db.DateTime, nullable=True)
    signed_at = db.Column(db.DateTime, nullable=True)

    # Delegate that acted in place of approver_id (if any)
    acted_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    escalated_to_id = db.Column(db.Integer, db.ForeignKey("approvals.id"), nullable=True)
    escalated_at = db.Column(db.DateTime, nullable=True)
    escalation_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    request = db.relationship("LeaveRequest", back_populates="approvals")
    approver = db.relationship("User", foreign_keys=[approver_id], lazy="joined")
    acted_by = db.relationship("User", foreign_keys=[acted_by_id])
    escalated_to = db.relationship("Approval", remote_side=[id], foreign_keys=[escalated_to_id])

    @property
    def is_live(self) -> bool:
        """Pending and not superseded by an escalation."""
        return self.status == ApprovalStatus.PENDING and self.escalated_to_id is None

    def __repr__(self) -> str:
        return (
            f"<Approval id={self.id} req={self.request_id} approver={self.approver_id} "
            f"level={self.level} status={self.status} escalated_to={self.escalated_to_id}>"
        )


class WorkflowRule(db.Model):
    __tablename__ = "workflow_rules"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)

    # {"userRole": [...], "leaveType": [...], "department": [...], "position": [...],
    #  "isSpecialLeave": bool, "daysGreaterThan": n, "daysLessThan": n}
    conditions = db.Column(db.JSON, nullable=False, default=dict)
    # [{"role": "DIRECT_MANAGER", "required": true}, ...]
    approval_levels = db.Column(db.JSON, nullable=False, default=list)

    priority = db.Column(db.Integer, default=0, nullable=False, index=True)
    skip_duplicate_signatures = db.Column(db.Boolean, default=True, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self) -> str:
        return f"<WorkflowRule id={self.id} name={self.name!r} pr={self.priority} active={self.is_active}>"


class ApprovalDelegate(db.Model):
    __tablename__ = "approval_delegates"

    __table_args__ = (
        db.Index("ix_approval_delegates_window", "delegator_id", "is_active", "start_date", "end_date"),
    )

    id = db.Column(db.Integer, primary_key=True)

    delegator_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    delegate_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)

    # "is_active" means not revoked, even when the window has passed
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    note = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    delegator = db.relationship("User", foreign_keys=[delegator_id], lazy="joined")
    delegate = db.relationship("User", foreign_keys=[delegate_id], lazy="joined")

    def is_effective_on(self, day) -> bool:
        if not self.is_active:
            return False
        return self.start_date <= day <= self.end_date

    def __repr__(self) -> str:
        return f"<ApprovalDelegate id={self.id} from={self.delegator_id} to={self.delegate_id} active={self.is_active}>"


# ======================
# Documents
# ======================
class DocumentTemplate(db.Model):
    __tablename__ = "document_templates"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    # NULL leave type => default template
    leave_type_id = db.Column(db.Integer, db.ForeignKey("leave_types.id"), nullable=True)
    version = db.Column(db.Integer, default=1, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    signature_placements = db.relationship(
        "SignaturePlacement",
        backref="template",
        cascade="all, delete-orphan",
        order_by="SignaturePlacement.order_index",
        lazy="selectin",
    )


class SignaturePlacement(db.Model):
    __tablename__ = "signature_placements"

    id = db.Column(db.Integer, primary_key=True)
    template_id = db.Column(db.Integer, db.ForeignKey("document_templates.id"), nullable=False)
    signer_role = db.Column(db.String(50), nullable=False)
    label = db.Column(db.String(200), nullable=True)
    is_required = db.Column(db.Boolean, default=True, nullable=False)
    order_index = db.Column(db.Integer, default=0, nullable=False)


class GeneratedDocument(db.Model):
    __tablename__ = "generated_documents"

    id = db.Column(db.Integer, primary_key=True)
    request_id = db.Column(db.Integer, db.ForeignKey("leave_requests.id"), nullable=False, unique=True)
    template_id = db.Column(db.Integer, db.ForeignKey("document_templates.id"), nullable=True)

    # Frozen copy of template + placements + workflow rule at generation time
    template_snapshot = db.Column(db.JSON, nullable=False, default=dict)

    file_path = db.Column(db.String(500), nullable=True)
    status = db.Column(db.String(30), nullable=False, default=DocumentStatus.PENDING_SIGNATURES)
    completed_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    request = db.relationship("LeaveRequest", back_populates="generated_document")

    decisions = db.relationship(
        "DocumentDecision",
        backref="document",
        order_by="DocumentDecision.sequence",
        lazy="selectin",
    )
    signatures = db.relationship(
        "DocumentSignature",
        backref="document",
        order_by="DocumentSignature.id",
        lazy="selectin",
    )


class DocumentDecision(db.Model):
    """Append-only decision log entry of a generated document."""

    __tablename__ = "document_decisions"
    __table_args__ = (
        db.UniqueConstraint("document_id", "sequence", name="uq_document_decision_sequence"),
    )

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(db.Integer, db.ForeignKey("generated_documents.id"), nullable=False, index=True)
    sequence = db.Column(db.Integer, nullable=False)

    role = db.Column(db.String(50), nullable=False)
    approved = db.Column(db.Boolean, nullable=False)
    decided_by_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    decided_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    comments = db.Column(db.Text, nullable=True)

    decided_by = db.relationship("User", lazy="joined")


class DocumentSignature(db.Model):
    __tablename__ = "document_signatures"
    __table_args__ = (
        db.UniqueConstraint("document_id", "signer_role", name="uq_document_signature_role"),
    )

    id = db.Column(db.Integer, primary_key=True)
    document_id = db.Column(db.Integer, db.ForeignKey("generated_documents.id"), nullable=False)
    signer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    signer_role = db.Column(db.String(50), nullable=False)
    # data:image/... URI or a textual marker such as APPROVED_BY_MANAGER
    signature_data = db.Column(db.Text, nullable=False)
    signed_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    signer = db.relationship("User", lazy="joined")


# ======================
# Settings / notifications / audit
# ======================
class CompanySetting(db.Model):
    __tablename__ = "company_settings"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    key = db.Column(db.String(100), unique=True, nullable=False)
    value = db.Column(db.String(255), nullable=True)
    category = db.Column(db.String(50), nullable=True)
    description = db.Column(db.Text, nullable=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Notification(db.Model):
    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # APPROVAL_REQUIRED / LEAVE_APPROVED / LEAVE_REJECTED / LEAVE_REQUESTED / ...
    type = db.Column(db.String(50), nullable=False, default="INFO")
    title = db.Column(db.String(200), nullable=True)
    message = db.Column(db.Text, nullable=False)
    link = db.Column(db.String(500), nullable=True)

    is_read = db.Column(db.Boolean, default=False, nullable=False)
    actor_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    # Groups notifications emitted by the same event
    event_key = db.Column(db.String(64), nullable=True, index=True)

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)


class AuditLog(db.Model):
    __tablename__ = "audit_log"

    id = db.Column(db.Integer, primary_key=True)

    request_id = db.Column(db.Integer, db.ForeignKey("leave_requests.id"), nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    # Delegation context (action performed by a delegate on behalf of another user)
    on_behalf_of_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    action = db.Column(db.String(100), nullable=False)
    note = db.Column(db.Text, nullable=True)

    old_status = db.Column(db.String(50))
    new_status = db.Column(db.String(50))

    target_type = db.Column(db.String(50))
    target_id = db.Column(db.Integer)

    created_at = db.Column(
        db.DateTime,
        default=datetime.utcnow,
        nullable=False,
        index=True
    )

    user = db.relationship("User", foreign_keys=[user_id])
    request = db.relationship("LeaveRequest")
