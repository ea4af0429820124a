import logging
import os
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from extensions import db
from models import (
    DocumentDecision,
    DocumentSignature,
    DocumentStatus,
    DocumentTemplate,
    GeneratedDocument,
    LeaveRequest,
)
from services import leave_balance
from services.pdf_renderer import render_document
from workflow.errors import DuplicateSignatureError, NotFoundError
from workflow.roles import ApprovalRole, normalize_role
from workflow.rules import ResolvedWorkflow
from workflow.transitions import complete_request, reject_request

logger = logging.getLogger(__name__)


def approval_marker(role) -> str:
    return f"APPROVED_BY_{normalize_role(role).value}"


class DocumentSignatureCoordinator:
    """Ties a request's approval state to its generated, signed document.

    What "complete" means is read from the workflow rule frozen into the
    document at generation time, never from the live rule table.
    """

    def __init__(self, chain_builder, documents_dir="generated_documents", company_name="Company",
                 renderer=render_document, clock=datetime.utcnow):
        self.chain_builder = chain_builder
        self.documents_dir = documents_dir
        self.company_name = company_name
        self.renderer = renderer
        self.clock = clock

    # =========================
    # Generation
    # =========================
    @staticmethod
    def select_template(leave_request):
        q = DocumentTemplate.query.filter(DocumentTemplate.is_active.is_(True))
        if leave_request.leave_type_id:
            tpl = (
                q.filter(DocumentTemplate.leave_type_id == leave_request.leave_type_id)
                .order_by(DocumentTemplate.version.desc())
                .first()
            )
            if tpl:
                return tpl
        return (
            q.filter(DocumentTemplate.leave_type_id.is_(None))
            .order_by(DocumentTemplate.version.desc())
            .first()
        )

    def build_snapshot(self, template, workflow: ResolvedWorkflow):
        tpl = None
        placements = []
        if template is not None:
            tpl = {"id": template.id, "name": template.name, "version": template.version}
            placements = [
                {
                    "signer_role": p.signer_role,
                    "label": p.label,
                    "is_required": p.is_required,
                    "order_index": p.order_index,
                }
                for p in template.signature_placements
            ]
        return {
            "template": tpl,
            "signature_placements": placements,
            "workflow_rule": workflow.to_snapshot(),
            "generated_at": self.clock().isoformat(),
        }

    def generate_document(self, leave_request, workflow: ResolvedWorkflow, employee_signature=None, render=True):
        """Creates the request's document and signs the requester's own slots."""
        if leave_request.generated_document is not None:
            return leave_request.generated_document

        template = self.select_template(leave_request)
        doc = GeneratedDocument(
            request_id=leave_request.id,
            template_id=template.id if template else None,
            template_snapshot=self.build_snapshot(template, workflow),
            status=DocumentStatus.PENDING_SIGNATURES,
        )
        db.session.add(doc)
        db.session.flush()

        requester = leave_request.user
        for role, signer_id in self.required_signers(doc).items():
            if signer_id == requester.id:
                self._store(doc, role, requester.id, employee_signature or "SIGNED_BY_EMPLOYEE", True, None)

        self._check_completion(doc)
        db.session.commit()
        logger.info(f"Document #{doc.id} generated for request #{leave_request.id}")

        if render:
            self._regenerate_quietly(doc)
        return doc

    # =========================
    # Signatures
    # =========================
    def required_signers(self, document):
        workflow = ResolvedWorkflow.from_snapshot((document.template_snapshot or {}).get("workflow_rule"))
        return self.chain_builder.required_signers(document.request.user, workflow)

    def _store(self, doc, role: ApprovalRole, signer_id, signature_data, approved, comments):
        next_seq = (
            db.session.query(func.coalesce(func.max(DocumentDecision.sequence), 0))
            .filter(DocumentDecision.document_id == doc.id)
            .scalar()
        ) + 1

        try:
            with db.session.begin_nested():
                sig = DocumentSignature(
                    document_id=doc.id,
                    signer_id=signer_id,
                    signer_role=role.value,
                    signature_data=signature_data,
                    signed_at=self.clock(),
                )
                decision = DocumentDecision(
                    document_id=doc.id,
                    sequence=next_seq,
                    role=role.value,
                    approved=bool(approved),
                    decided_by_id=signer_id,
                    decided_at=self.clock(),
                    comments=comments,
                )
                db.session.add_all([sig, decision])
                db.session.flush()
        except IntegrityError:
            raise DuplicateSignatureError(f"Role {role.value} has already signed document #{doc.id}")

        # Collections may lazy-load after the flush and already hold the rows
        if sig not in doc.signatures:
            doc.signatures.append(sig)
        if decision not in doc.decisions:
            doc.decisions.append(decision)
        return sig

    def add_signature(self, document_id, signer_id, signer_role, signature_data, approved=True, comments=None):
        doc = db.session.get(GeneratedDocument, document_id)
        if doc is None:
            raise NotFoundError(f"Document #{document_id} not found")

        role = normalize_role(signer_role)
        existing = DocumentSignature.query.filter_by(document_id=doc.id, signer_role=role.value).first()
        if existing is not None:
            raise DuplicateSignatureError(f"Role {role.value} has already signed document #{doc.id}")

        self._store(doc, role, signer_id, signature_data, approved, comments)

        if not approved:
            reject_request(
                doc.request,
                actor_id=signer_id,
                note=comments or f"Rejected on document by {role.value}",
                action="DOCUMENT_REJECTED",
            )
        else:
            self._check_completion(doc)

        db.session.commit()
        logger.info(f"Document #{doc.id} signed | role={role.value} | signer={signer_id} | approved={approved}")

        self._regenerate_quietly(doc)
        return doc

    def record_approval_signature(self, request_id, role, signer_id, approved=True, signature=None, comments=None):
        """Mirrors an approval decision onto the document. Missing document => no-op."""
        doc = GeneratedDocument.query.filter_by(request_id=request_id).first()
        if doc is None:
            logger.info(f"No document to sign for request #{request_id}")
            return None

        role = normalize_role(role)
        if DocumentSignature.query.filter_by(document_id=doc.id, signer_role=role.value).first():
            logger.info(f"Document #{doc.id} already signed for {role.value}")
            return doc

        data = signature or (approval_marker(role) if approved else f"REJECTED_BY_{role.value}")
        return self.add_signature(doc.id, signer_id, role, data, approved=approved, comments=comments)

    def _check_completion(self, doc) -> bool:
        if doc.status == DocumentStatus.COMPLETED:
            return True

        required = self.required_signers(doc)
        approved_roles = {d.role for d in doc.decisions if d.approved}
        if not required or not all(r.value in approved_roles for r in required):
            return False

        doc.status = DocumentStatus.COMPLETED
        doc.completed_at = self.clock()
        complete_request(
            doc.request,
            note="All required document signatures collected",
            action="DOCUMENT_COMPLETED",
        )
        logger.info(f"Document #{doc.id} completed")
        return True

    # =========================
    # Rendering
    # =========================
    def field_data(self, document):
        req: LeaveRequest = document.request
        user = req.user
        lt = req.leave_type
        snapshot = document.template_snapshot or {}

        balance = None
        if leave_balance.tracks_balance(req):
            bal = leave_balance.get_balance(req.user_id, req.leave_type_id, req.start_date.year)
            if bal is not None:
                balance = {
                    "entitled": bal.entitled,
                    "used": bal.used,
                    "pending": bal.pending,
                    "available": bal.available,
                }

        labels = {
            normalize_role(p["signer_role"]).value: p.get("label")
            for p in snapshot.get("signature_placements") or []
        }
        signed = {s.signer_role: s for s in document.signatures}
        signatures = {}
        for role in self.required_signers(document):
            sig = signed.get(role.value)
            signatures[role.value] = {
                "label": labels.get(role.value) or role.value.replace("_", " ").title(),
                "required": True,
                "signer_name": sig.signer.full_name if sig else None,
                "data": sig.signature_data if sig else None,
                "signed_at": sig.signed_at.strftime("%Y-%m-%d %H:%M") if sig else None,
            }

        return {
            "title": (snapshot.get("template") or {}).get("name") or "Leave Request",
            "company": self.company_name,
            "generated_at": snapshot.get("generated_at"),
            "employee": {
                "name": user.full_name,
                "email": user.email,
                "department": user.department,
                "position": user.position,
                "role": user.role,
            },
            "leave": {
                "request_id": req.id,
                "kind": req.kind,
                "type": lt.name if lt else req.kind,
                "start_date": req.start_date.isoformat(),
                "end_date": req.end_date.isoformat(),
                "total_days": req.total_days,
                "reason": req.reason,
            },
            "balance": balance,
            "decision": {
                "status": req.status,
                "document_status": document.status,
                "decisions": [
                    {
                        "role": d.role,
                        "approved": d.approved,
                        "decided_by": d.decided_by.full_name if d.decided_by else d.decided_by_id,
                        "decided_at": d.decided_at.strftime("%Y-%m-%d %H:%M"),
                        "comments": d.comments,
                    }
                    for d in document.decisions
                ],
            },
            "signature": signatures,
        }

    def render(self, document) -> bytes:
        return self.renderer(self.field_data(document))

    def regenerate(self, document):
        pdf = self.render(document)
        os.makedirs(self.documents_dir, exist_ok=True)
        path = os.path.join(self.documents_dir, f"leave_request_{document.request_id}.pdf")
        with open(path, "wb") as f:
            f.write(pdf)

        document.file_path = path
        db.session.commit()
        return path

    def _regenerate_quietly(self, document):
        try:
            self.regenerate(document)
        except Exception:
            logger.exception(f"Document #{document.id} render failed")
            db.session.rollback()
