"""initial leave workflow schema

Revision ID: a1c0e5d7b9f2
Revises:
Create Date: 2026-10-18 09:12:31

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'a1c0e5d7b9f2'
down_revision = None
branch_labels = None
depends_on = None


def _created_at():
    return sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP'))


def upgrade():
    # users
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=True),
        sa.Column('password_hash', sa.String(length=255), nullable=False, server_default=''),
        sa.Column('role', sa.String(length=50), nullable=False, server_default='EMPLOYEE'),
        sa.Column('department', sa.String(length=120), nullable=True),
        sa.Column('position', sa.String(length=120), nullable=True),
        sa.Column('manager_id', sa.Integer(), nullable=True),
        sa.Column('department_director_id', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        _created_at(),
        sa.ForeignKeyConstraint(['manager_id'], ['users.id']),
        sa.ForeignKeyConstraint(['department_director_id'], ['users.id']),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_role', 'users', ['role'], unique=False)
    op.create_index('ix_users_department', 'users', ['department'], unique=False)
    op.create_index('ix_users_manager_id', 'users', ['manager_id'], unique=False)
    op.create_index('ix_users_department_director_id', 'users', ['department_director_id'], unique=False)

    # leave_types / balances / holidays
    op.create_table(
        'leave_types',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(length=50), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('is_special_leave', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('requires_balance', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        _created_at(),
    )
    op.create_index('ix_leave_types_code', 'leave_types', ['code'], unique=True)

    op.create_table(
        'leave_balances',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('leave_type_id', sa.Integer(), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('entitled', sa.Float(), nullable=False, server_default='0'),
        sa.Column('used', sa.Float(), nullable=False, server_default='0'),
        sa.Column('pending', sa.Float(), nullable=False, server_default='0'),
        sa.Column('available', sa.Float(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['leave_type_id'], ['leave_types.id']),
        sa.UniqueConstraint('user_id', 'leave_type_id', 'year', name='uq_leave_balance_user_type_year'),
    )
    op.create_index('ix_leave_balances_user_id', 'leave_balances', ['user_id'], unique=False)

    op.create_table(
        'holidays',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
    )
    op.create_index('ix_holidays_date', 'holidays', ['date'], unique=False)

    # leave_requests / approvals
    op.create_table(
        'leave_requests',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('kind', sa.String(length=10), nullable=False, server_default='LEAVE'),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('leave_type_id', sa.Integer(), nullable=True),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('total_days', sa.Float(), nullable=False, server_default='0'),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='PENDING'),
        sa.Column('approval_chain', sa.JSON(), nullable=False),
        sa.Column('workflow_rule_name', sa.String(length=200), nullable=True),
        _created_at(),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['leave_type_id'], ['leave_types.id']),
    )
    op.create_index('ix_leave_requests_kind', 'leave_requests', ['kind'], unique=False)
    op.create_index('ix_leave_requests_user_id', 'leave_requests', ['user_id'], unique=False)
    op.create_index('ix_leave_requests_status', 'leave_requests', ['status'], unique=False)

    op.create_table(
        'approvals',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('request_id', sa.Integer(), nullable=False),
        sa.Column('approver_id', sa.Integer(), nullable=False),
        sa.Column('level', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('chain_position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('role', sa.String(length=50), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='PENDING'),
        sa.Column('comments', sa.Text(), nullable=True),
        sa.Column('signature', sa.Text(), nullable=True),
        sa.Column('decided_at', sa.DateTime(), nullable=True),
        sa.Column('signed_at', sa.DateTime(), nullable=True),
        sa.Column('acted_by_id', sa.Integer(), nullable=True),
        sa.Column('escalated_to_id', sa.Integer(), nullable=True),
        sa.Column('escalated_at', sa.DateTime(), nullable=True),
        sa.Column('escalation_reason', sa.Text(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['request_id'], ['leave_requests.id']),
        sa.ForeignKeyConstraint(['approver_id'], ['users.id']),
        sa.ForeignKeyConstraint(['acted_by_id'], ['users.id']),
        sa.ForeignKeyConstraint(['escalated_to_id'], ['approvals.id']),
    )
    op.create_index('ix_approvals_approver_id', 'approvals', ['approver_id'], unique=False)
    op.create_index('ix_approvals_stale_scan', 'approvals', ['status', 'escalated_to_id', 'created_at'], unique=False)
    op.create_index('ix_approvals_request_approver', 'approvals', ['request_id', 'approver_id'], unique=False)

    # rules / delegation
    op.create_table(
        'workflow_rules',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('conditions', sa.JSON(), nullable=False),
        sa.Column('approval_levels', sa.JSON(), nullable=False),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('skip_duplicate_signatures', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        _created_at(),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_workflow_rules_priority', 'workflow_rules', ['priority'], unique=False)

    op.create_table(
        'approval_delegates',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('delegator_id', sa.Integer(), nullable=False),
        sa.Column('delegate_id', sa.Integer(), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        sa.Column('note', sa.Text(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['delegator_id'], ['users.id']),
        sa.ForeignKeyConstraint(['delegate_id'], ['users.id']),
    )
    op.create_index(
        'ix_approval_delegates_window',
        'approval_delegates',
        ['delegator_id', 'is_active', 'start_date', 'end_date'],
        unique=False
    )

    # documents
    op.create_table(
        'document_templates',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('leave_type_id', sa.Integer(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        _created_at(),
        sa.ForeignKeyConstraint(['leave_type_id'], ['leave_types.id']),
    )

    op.create_table(
        'signature_placements',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('template_id', sa.Integer(), nullable=False),
        sa.Column('signer_role', sa.String(length=50), nullable=False),
        sa.Column('label', sa.String(length=200), nullable=True),
        sa.Column('is_required', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        sa.Column('order_index', sa.Integer(), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['template_id'], ['document_templates.id']),
    )

    op.create_table(
        'generated_documents',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('request_id', sa.Integer(), nullable=False),
        sa.Column('template_id', sa.Integer(), nullable=True),
        sa.Column('template_snapshot', sa.JSON(), nullable=False),
        sa.Column('file_path', sa.String(length=500), nullable=True),
        sa.Column('status', sa.String(length=30), nullable=False, server_default='PENDING_SIGNATURES'),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['request_id'], ['leave_requests.id']),
        sa.ForeignKeyConstraint(['template_id'], ['document_templates.id']),
        sa.UniqueConstraint('request_id', name='uq_generated_documents_request'),
    )

    op.create_table(
        'document_decisions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('document_id', sa.Integer(), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('role', sa.String(length=50), nullable=False),
        sa.Column('approved', sa.Boolean(), nullable=False),
        sa.Column('decided_by_id', sa.Integer(), nullable=False),
        sa.Column('decided_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('comments', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['document_id'], ['generated_documents.id']),
        sa.ForeignKeyConstraint(['decided_by_id'], ['users.id']),
        sa.UniqueConstraint('document_id', 'sequence', name='uq_document_decision_sequence'),
    )
    op.create_index('ix_document_decisions_document_id', 'document_decisions', ['document_id'], unique=False)

    op.create_table(
        'document_signatures',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('document_id', sa.Integer(), nullable=False),
        sa.Column('signer_id', sa.Integer(), nullable=False),
        sa.Column('signer_role', sa.String(length=50), nullable=False),
        sa.Column('signature_data', sa.Text(), nullable=False),
        sa.Column('signed_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['document_id'], ['generated_documents.id']),
        sa.ForeignKeyConstraint(['signer_id'], ['users.id']),
        sa.UniqueConstraint('document_id', 'signer_role', name='uq_document_signature_role'),
    )

    # settings / notifications / audit
    op.create_table(
        'company_settings',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('key', sa.String(length=100), nullable=False),
        sa.Column('value', sa.String(length=255), nullable=True),
        sa.Column('category', sa.String(length=50), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('key', name='uq_company_settings_key'),
    )

    op.create_table(
        'notifications',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=50), nullable=False, server_default='INFO'),
        sa.Column('title', sa.String(length=200), nullable=True),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('link', sa.String(length=500), nullable=True),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default=sa.text('0')),
        sa.Column('actor_id', sa.Integer(), nullable=True),
        sa.Column('event_key', sa.String(length=64), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['actor_id'], ['users.id']),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'], unique=False)
    op.create_index('ix_notifications_event_key', 'notifications', ['event_key'], unique=False)

    op.create_table(
        'audit_log',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('request_id', sa.Integer(), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('on_behalf_of_id', sa.Integer(), nullable=True),
        sa.Column('action', sa.String(length=100), nullable=False),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('old_status', sa.String(length=50), nullable=True),
        sa.Column('new_status', sa.String(length=50), nullable=True),
        sa.Column('target_type', sa.String(length=50), nullable=True),
        sa.Column('target_id', sa.Integer(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(['request_id'], ['leave_requests.id']),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.ForeignKeyConstraint(['on_behalf_of_id'], ['users.id']),
    )
    op.create_index('ix_audit_log_created_at', 'audit_log', ['created_at'], unique=False)
    op.create_index('ix_audit_target_created', 'audit_log', ['target_type', 'target_id', 'created_at'], unique=False)


def downgrade():
    op.drop_index('ix_audit_target_created', table_name='audit_log')
    op.drop_index('ix_audit_log_created_at', table_name='audit_log')
    op.drop_table('audit_log')
    op.drop_index('ix_notifications_event_key', table_name='notifications')
    op.drop_index('ix_notifications_user_id', table_name='notifications')
    op.drop_table('notifications')
    op.drop_table('company_settings')
    op.drop_table('document_signatures')
    op.drop_index('ix_document_decisions_document_id', table_name='document_decisions')
    op.drop_table('document_decisions')
    op.drop_table('generated_documents')
    op.drop_table('signature_placements')
    op.drop_table('document_templates')
    op.drop_index('ix_approval_delegates_window', table_name='approval_delegates')
    op.drop_table('approval_delegates')
    op.drop_index('ix_workflow_rules_priority', table_name='workflow_rules')
    op.drop_table('workflow_rules')
    op.drop_index('ix_approvals_request_approver', table_name='approvals')
    op.drop_index('ix_approvals_stale_scan', table_name='approvals')
    op.drop_index('ix_approvals_approver_id', table_name='approvals')
    op.drop_table('approvals')
    op.drop_index('ix_leave_requests_status', table_name='leave_requests')
    op.drop_index('ix_leave_requests_user_id', table_name='leave_requests')
    op.drop_index('ix_leave_requests_kind', table_name='leave_requests')
    op.drop_table('leave_requests')
    op.drop_index('ix_holidays_date', table_name='holidays')
    op.drop_table('holidays')
    op.drop_index('ix_leave_balances_user_id', table_name='leave_balances')
    op.drop_table('leave_balances')
    op.drop_index('ix_leave_types_code', table_name='leave_types')
    op.drop_table('leave_types')
    op.drop_index('ix_users_department_director_id', table_name='users')
    op.drop_index('ix_users_manager_id', table_name='users')
    op.drop_index('ix_users_department', table_name='users')
    op.drop_index('ix_users_role', table_name='users')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
