"""Initial lease engine schema

Revision ID: 001_lease_engine
Revises: 
Create Date: 2026-10-19

Leases, rent schedule, payment ledger, audit log and jobs outbox.
Money as INTEGER CENTS (BIGINT). Enum columns store member names.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_lease_engine'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


LEASE_STATUS = ('PENDING', 'AWAITING_PAYMENT', 'ACTIVE', 'REJECTED', 'TERMINATED', 'EXPIRED')
SCHEDULE_ITEM_STATUS = ('UPCOMING', 'DUE', 'PARTIAL', 'OVERDUE', 'PAID', 'WAIVED')
PAYMENT_TYPE = ('ACCEPTANCE', 'RENT', 'LATE_FEE', 'MAINTENANCE_FEE', 'OTHER')
PAYMENT_STATUS = ('COMPLETED', 'FAILED', 'REFUNDED')
ACTOR_ROLE = ('TENANT', 'LANDLORD', 'MANAGER', 'SYSTEM')
AUDIT_ACTION = (
    'LEASE_CREATED', 'CONTRACT_ATTACHED', 'LEASE_ACCEPTED', 'LEASE_REJECTED', 'LEASE_ACTIVATED',
    'LEASE_TERMINATED', 'LEASE_EXPIRED', 'PAYMENT_RECORDED', 'SCHEDULE_ITEM_WAIVED',
)
JOB_STATUS = ('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED', 'DEAD_LETTER')


def upgrade() -> None:
    # === LEASES ===
    op.create_table(
        'leases',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('application_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('property_id', postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column('tenant_id', postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column('landlord_id', postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column('status', sa.Enum(*LEASE_STATUS, name='lease_status'), nullable=False, index=True),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('rent_amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('security_deposit_cents', sa.BigInteger(), nullable=False),
        sa.Column('contract_document_id', sa.String(255), nullable=True),
        sa.Column('accepted_at', sa.DateTime(), nullable=True),
        sa.Column('acceptance_deadline', sa.DateTime(), nullable=True, index=True),
        sa.Column('rejected_at', sa.DateTime(), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('activated_at', sa.DateTime(), nullable=True),
        sa.Column('terminated_at', sa.DateTime(), nullable=True),
        sa.Column('termination_reason', sa.Text(), nullable=True),
        sa.Column('expired_at', sa.DateTime(), nullable=True),
        sa.Column('deposit_paid', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('first_rent_paid', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('total_due_on_acceptance_cents', sa.BigInteger(), nullable=False),
        sa.Column('total_paid_on_acceptance_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('application_id', name='uq_leases_application_id'),
        sa.CheckConstraint('start_date < end_date', name='ck_leases_term_order'),
        sa.CheckConstraint('rent_amount_cents > 0', name='ck_leases_rent_positive'),
        sa.CheckConstraint('security_deposit_cents > 0', name='ck_leases_deposit_positive'),
        sa.CheckConstraint(
            'total_paid_on_acceptance_cents <= total_due_on_acceptance_cents',
            name='ck_leases_acceptance_no_overpay',
        ),
    )
    # At most one open lease per property
    op.create_index(
        'uq_leases_open_per_property',
        'leases',
        ['property_id'],
        unique=True,
        postgresql_where=sa.text("status IN ('PENDING', 'AWAITING_PAYMENT', 'ACTIVE')"),
    )

    # === RENT SCHEDULE ===
    op.create_table(
        'rent_schedule_items',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('lease_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('leases.id', ondelete='RESTRICT'), nullable=False, index=True),
        sa.Column('period_index', sa.Integer(), nullable=False),
        sa.Column('period_start', sa.Date(), nullable=False),
        sa.Column('period_end', sa.Date(), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=False, index=True),
        sa.Column('grace_period_ends', sa.Date(), nullable=False),
        sa.Column('amount_due_cents', sa.BigInteger(), nullable=False),
        sa.Column('amount_paid_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('status', sa.Enum(*SCHEDULE_ITEM_STATUS, name='schedule_item_status'), nullable=False, index=True),
        sa.Column('late_fee_amount_cents', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('late_fee_applied', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('due_notified', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('paid_at', sa.DateTime(), nullable=True),
        sa.Column('payment_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('waived_at', sa.DateTime(), nullable=True),
        sa.Column('waive_reason', sa.Text(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('lease_id', 'period_index', name='uq_schedule_lease_period'),
        sa.CheckConstraint('amount_paid_cents >= 0', name='ck_rent_schedule_items_paid_non_negative'),
        sa.CheckConstraint('amount_paid_cents <= amount_due_cents', name='ck_rent_schedule_items_no_overpay'),
    )

    # === PAYMENTS (append-only ledger) ===
    op.create_table(
        'payments',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('lease_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('leases.id', ondelete='RESTRICT'), nullable=False, index=True),
        sa.Column('schedule_item_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('rent_schedule_items.id', ondelete='RESTRICT'), nullable=True, index=True),
        sa.Column('amount_cents', sa.BigInteger(), nullable=False),
        sa.Column('type', sa.Enum(*PAYMENT_TYPE, name='payment_type'), nullable=False),
        sa.Column('status', sa.Enum(*PAYMENT_STATUS, name='payment_status'), nullable=False),
        sa.Column('payment_date', sa.DateTime(), nullable=False),
        sa.Column('method', sa.String(50), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('idempotency_key', sa.String(255), nullable=True),
        sa.Column('recorded_by', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('idempotency_key', name='uq_payments_idempotency_key'),
        sa.CheckConstraint('amount_cents > 0', name='ck_payments_amount_positive'),
    )

    # === AUDIT LOG ===
    op.create_table(
        'lease_audit_log',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('lease_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('leases.id', ondelete='RESTRICT'), nullable=False, index=True),
        sa.Column('action', sa.Enum(*AUDIT_ACTION, name='audit_action'), nullable=False, index=True),
        sa.Column('actor_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('actor_role', sa.Enum(*ACTOR_ROLE, name='actor_role'), nullable=False),
        sa.Column('details', postgresql.JSONB(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )

    # === JOBS OUTBOX ===
    op.create_table(
        'jobs_outbox',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('type', sa.String(100), nullable=False, index=True),
        sa.Column('payload', postgresql.JSONB(), nullable=False),
        sa.Column('status', sa.Enum(*JOB_STATUS, name='job_status'), nullable=False, index=True),
        sa.Column('unique_scope', sa.String(500), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_attempts', sa.Integer(), nullable=False, server_default='3'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('run_after', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('unique_scope', name='uq_jobs_outbox_unique_scope'),
    )
    op.create_index('ix_jobs_outbox_status_run_after', 'jobs_outbox', ['status', 'run_after'])


def downgrade() -> None:
    op.drop_table('jobs_outbox')
    op.drop_table('lease_audit_log')
    op.drop_table('payments')
    op.drop_table('rent_schedule_items')
    op.drop_index('uq_leases_open_per_property', table_name='leases')
    op.drop_table('leases')

    for enum_name in (
        'job_status', 'audit_action', 'actor_role', 'payment_status',
        'payment_type', 'schedule_item_status', 'lease_status',
    ):
        op.execute(f"DROP TYPE IF EXISTS {enum_name}")
