"""initial_schema

Revision ID: 3f1a9c2e7b40
Revises:
Create Date: 2026-10-16 09:12:44.518203+00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3f1a9c2e7b40'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # 1. users (no FKs)
    op.create_table('users',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('email', sa.String(length=255), nullable=False),
    sa.Column('name', sa.String(length=200), nullable=True),
    sa.Column('employee_id', sa.String(length=50), nullable=True),
    sa.Column('role', sa.String(length=50), nullable=False),
    sa.Column('department', sa.String(length=100), nullable=True),
    sa.Column('is_active', sa.Boolean(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('email')
    )
    op.create_index('idx_users_email', 'users', ['email'], unique=False)
    op.create_index('idx_users_role', 'users', ['role'], unique=False)

    # 2. finance_requests
    op.create_table('finance_requests',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('reference_number', sa.String(length=50), nullable=False),
    sa.Column('requestor_id', sa.Uuid(), nullable=False),
    sa.Column('department', sa.String(length=100), nullable=False),
    sa.Column('entity', sa.String(length=100), nullable=True),
    sa.Column('cost_center', sa.String(length=100), nullable=True),
    sa.Column('payment_type', sa.String(length=30), nullable=False),
    sa.Column('payment_mode', sa.String(length=30), nullable=True),
    sa.Column('purpose', sa.Text(), nullable=False),
    sa.Column('vendor_name', sa.String(length=255), nullable=True),
    sa.Column('vendor_code', sa.String(length=50), nullable=True),
    sa.Column('vendor_bank_name', sa.String(length=255), nullable=True),
    sa.Column('vendor_bank_account', sa.String(length=50), nullable=True),
    sa.Column('vendor_bank_ifsc', sa.String(length=11), nullable=True),
    sa.Column('vendor_upi_id', sa.String(length=100), nullable=True),
    sa.Column('invoice_number', sa.String(length=100), nullable=True),
    sa.Column('invoice_date', sa.Date(), nullable=True),
    sa.Column('base_amount', sa.Numeric(precision=15, scale=2), nullable=False),
    sa.Column('gst_applicable', sa.Boolean(), nullable=True),
    sa.Column('gst_percentage', sa.Numeric(precision=5, scale=2), nullable=True),
    sa.Column('gst_amount', sa.Numeric(precision=15, scale=2), nullable=True),
    sa.Column('tds_applicable', sa.Boolean(), nullable=True),
    sa.Column('tds_percentage', sa.Numeric(precision=5, scale=2), nullable=True),
    sa.Column('tds_amount', sa.Numeric(precision=15, scale=2), nullable=True),
    sa.Column('total_amount', sa.Numeric(precision=15, scale=2), nullable=False),
    sa.Column('currency', sa.String(length=3), nullable=True),
    sa.Column('status', sa.String(length=50), nullable=True),
    sa.Column('current_approval_level', sa.String(length=50), nullable=True),
    sa.Column('resubmission_count', sa.Integer(), nullable=True),
    sa.Column('ledger_generation', sa.Integer(), nullable=True),
    sa.Column('payment_reference_number', sa.String(length=100), nullable=True),
    sa.Column('actual_payment_date', sa.Date(), nullable=True),
    sa.Column('disbursement_remarks', sa.Text(), nullable=True),
    sa.Column('is_deleted', sa.Boolean(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('updated_at', sa.DateTime(), nullable=True),
    sa.Column('submitted_at', sa.DateTime(), nullable=True),
    sa.Column('approved_at', sa.DateTime(), nullable=True),
    sa.Column('completed_at', sa.DateTime(), nullable=True),
    sa.CheckConstraint('base_amount > 0', name='chk_fr_base_amount_positive'),
    sa.CheckConstraint('resubmission_count >= 0', name='chk_fr_resubmission_count'),
    sa.ForeignKeyConstraint(['requestor_id'], ['users.id'], ),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('reference_number')
    )
    op.create_index('idx_fr_status', 'finance_requests', ['status'], unique=False)
    op.create_index('idx_fr_requestor', 'finance_requests', ['requestor_id'], unique=False)
    op.create_index('idx_fr_department', 'finance_requests', ['department'], unique=False)

    # 3. approval_steps (one ledger generation per (re)submission)
    op.create_table('approval_steps',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('finance_request_id', sa.Uuid(), nullable=False),
    sa.Column('generation', sa.Integer(), nullable=False),
    sa.Column('level', sa.String(length=50), nullable=False),
    sa.Column('sequence', sa.Integer(), nullable=False),
    sa.Column('assigned_to_role', sa.String(length=50), nullable=False),
    sa.Column('status', sa.String(length=20), nullable=True),
    sa.Column('is_active', sa.Boolean(), nullable=True),
    sa.Column('is_archived', sa.Boolean(), nullable=True),
    sa.Column('sla_hours', sa.Integer(), nullable=False),
    sa.Column('sla_due_at', sa.DateTime(), nullable=True),
    sa.Column('sla_breached', sa.Boolean(), nullable=True),
    sa.Column('started_at', sa.DateTime(), nullable=True),
    sa.Column('completed_at', sa.DateTime(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.CheckConstraint("status IN ('PENDING','COMPLETED','SKIPPED')", name='chk_approval_step_status'),
    sa.CheckConstraint('sla_hours > 0', name='chk_approval_step_sla_hours'),
    sa.ForeignKeyConstraint(['finance_request_id'], ['finance_requests.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('finance_request_id', 'generation', 'sequence', name='uq_approval_step_sequence')
    )
    op.create_index(
        'uq_approval_steps_one_active', 'approval_steps', ['finance_request_id'],
        unique=True,
        postgresql_where=sa.text('is_active'),
        sqlite_where=sa.text('is_active = 1'),
    )
    op.create_index('idx_approval_steps_request', 'approval_steps', ['finance_request_id', 'generation'], unique=False)
    op.create_index('idx_approval_steps_active_due', 'approval_steps', ['is_active', 'sla_due_at'], unique=False)

    # 4. approval_action_records (append-only)
    op.create_table('approval_action_records',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('approval_step_id', sa.Uuid(), nullable=False),
    sa.Column('finance_request_id', sa.Uuid(), nullable=False),
    sa.Column('actor_id', sa.Uuid(), nullable=False),
    sa.Column('action', sa.String(length=20), nullable=False),
    sa.Column('comments', sa.Text(), nullable=True),
    sa.Column('sla_compliant', sa.Boolean(), nullable=True),
    sa.Column('response_time_hours', sa.Numeric(precision=10, scale=2), nullable=True),
    sa.Column('is_override', sa.Boolean(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.CheckConstraint("action IN ('APPROVED','REJECTED','SENT_BACK')", name='chk_approval_action'),
    sa.ForeignKeyConstraint(['actor_id'], ['users.id'], ),
    sa.ForeignKeyConstraint(['approval_step_id'], ['approval_steps.id'], ),
    sa.ForeignKeyConstraint(['finance_request_id'], ['finance_requests.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_approval_actions_step', 'approval_action_records', ['approval_step_id'], unique=False)
    op.create_index('idx_approval_actions_request', 'approval_action_records', ['finance_request_id'], unique=False)

    # 5. sla_logs
    op.create_table('sla_logs',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('finance_request_id', sa.Uuid(), nullable=False),
    sa.Column('approval_step_id', sa.Uuid(), nullable=True),
    sa.Column('generation', sa.Integer(), nullable=False),
    sa.Column('level', sa.String(length=50), nullable=False),
    sa.Column('sla_hours', sa.Integer(), nullable=False),
    sa.Column('sla_due_at', sa.DateTime(), nullable=False),
    sa.Column('is_breached', sa.Boolean(), nullable=True),
    sa.Column('breached_at', sa.DateTime(), nullable=True),
    sa.Column('is_archived', sa.Boolean(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['approval_step_id'], ['approval_steps.id'], ),
    sa.ForeignKeyConstraint(['finance_request_id'], ['finance_requests.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_sla_logs_request', 'sla_logs', ['finance_request_id'], unique=False)
    op.create_index('idx_sla_logs_step', 'sla_logs', ['approval_step_id'], unique=False)
    op.create_index('idx_sla_logs_breached', 'sla_logs', ['is_breached'], unique=False)

    # 6. app_notifications
    op.create_table('app_notifications',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('user_id', sa.Uuid(), nullable=False),
    sa.Column('finance_request_id', sa.Uuid(), nullable=True),
    sa.Column('title', sa.String(length=255), nullable=False),
    sa.Column('message', sa.Text(), nullable=False),
    sa.Column('type', sa.String(length=50), nullable=False),
    sa.Column('is_read', sa.Boolean(), nullable=True),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.ForeignKeyConstraint(['finance_request_id'], ['finance_requests.id'], ),
    sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_notifications_user', 'app_notifications', ['user_id'], unique=False)
    op.create_index('idx_notifications_request_type', 'app_notifications', ['finance_request_id', 'type'], unique=False)


def downgrade() -> None:
    op.drop_table('app_notifications')
    op.drop_table('sla_logs')
    op.drop_table('approval_action_records')
    op.drop_table('approval_steps')
    op.drop_table('finance_requests')
    op.drop_table('users')
