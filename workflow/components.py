from dataclasses import dataclass

from flask import current_app

from services.conflict_advisor import ConflictAdvisor
from services.document_service import DocumentSignatureCoordinator
from services.escalation_service import EscalationEngine
from services.notification_service import EmailService
from services.working_days import WorkingDaysService
from workflow.chain import ApprovalChainBuilder
from workflow.engine import ApprovalStateMachine
from workflow.rules import WorkflowRuleResolver


@dataclass
class WorkflowComponents:
    working_days: WorkingDaysService
    rule_resolver: WorkflowRuleResolver
    chain_builder: ApprovalChainBuilder
    documents: DocumentSignatureCoordinator
    email: EmailService
    state_machine: ApprovalStateMachine
    escalation: EscalationEngine
    conflicts: ConflictAdvisor


def build_components(config) -> WorkflowComponents:
    working_days = WorkingDaysService(ttl_seconds=config.get("WORKING_DAYS_CACHE_TTL", 3600))
    rule_resolver = WorkflowRuleResolver()
    chain_builder = ApprovalChainBuilder(policy=config.get("SELF_APPROVAL_POLICY", "SELF_SIGN"))
    documents = DocumentSignatureCoordinator(
        chain_builder,
        documents_dir=config.get("DOCUMENTS_DIR", "generated_documents"),
        company_name=config.get("COMPANY_NAME", "Company"),
    )
    email = EmailService()
    escalation = EscalationEngine(chain_builder, email=email, working_days=working_days)

    return WorkflowComponents(
        working_days=working_days,
        rule_resolver=rule_resolver,
        chain_builder=chain_builder,
        documents=documents,
        email=email,
        state_machine=ApprovalStateMachine(
            rule_resolver,
            chain_builder,
            working_days,
            documents=documents,
            email=email,
            escalation=escalation,
        ),
        escalation=escalation,
        conflicts=ConflictAdvisor(),
    )


def get_components() -> WorkflowComponents:
    return current_app.extensions["workflow"]
