"""Create ledger tables.

Revision ID: 001_create_ledger_tables
Revises: None
Create Date: 2024-01-15 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001_create_ledger_tables'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list:
    return [
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    """Create community directory, charge, payment and surcharge tables."""
    # Community directory
    op.create_table(
        'users',
        *_timestamps(),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('telegram_id', sa.String(50), nullable=True),
        sa.Column('is_administrator', sa.Boolean(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_users_telegram_id', 'users', ['telegram_id'])
    op.create_index('idx_users_admin_active', 'users', ['is_administrator', 'is_active'])

    op.create_table(
        'streets',
        *_timestamps(),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('is_tower', sa.Boolean(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
    )

    op.create_table(
        'units',
        *_timestamps(),
        sa.Column('street_id', sa.Integer(), nullable=False),
        sa.Column('number', sa.String(20), nullable=False),
        sa.Column('letter', sa.String(5), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(['street_id'], ['streets.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_units_street_active', 'units', ['street_id', 'is_active'])
    op.create_index('idx_units_address', 'units', ['street_id', 'number', 'letter'], unique=True)

    op.create_table(
        'residents',
        *_timestamps(),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('unit_id', sa.Integer(), nullable=False),
        sa.Column('is_primary', sa.Boolean(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['unit_id'], ['units.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_residents_unit_active', 'residents', ['unit_id', 'is_active'])
    op.create_index('idx_residents_user', 'residents', ['user_id'])

    op.create_table(
        'audit_logs',
        *_timestamps(),
        sa.Column('entity_type', sa.String(50), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('actor_id', sa.Integer(), nullable=True),
        sa.Column('changes', sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(['actor_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )

    # Charges
    op.create_table(
        'charge_templates',
        *_timestamps(),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('category', sa.Enum('MAINTENANCE', 'EXTRAORDINARY', 'FINE', name='chargecategory'), nullable=False),
        sa.Column('base_amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('issue_date', sa.Date(), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=False),
        sa.Column('recurrence', sa.Enum('WEEKLY', 'BIWEEKLY', 'MONTHLY', 'BIMONTHLY', 'QUARTERLY', 'SEMIANNUAL', 'ANNUAL', name='recurrenceperiod'), nullable=True),
        sa.Column('next_generation_date', sa.Date(), nullable=True),
        sa.Column('anchor_due_date', sa.Date(), nullable=True),
        sa.Column('cycles_generated', sa.Integer(), nullable=False),
        sa.Column('parent_template_id', sa.Integer(), nullable=True),
        sa.Column('scope', sa.Enum('ALL', 'UNITS', 'STREETS', name='chargescope'), nullable=False),
        sa.Column('scope_ids', sa.JSON(), nullable=True),
        sa.Column('status', sa.Enum('ACTIVE', 'PENDING', 'CANCELLED', name='templatestatus'), nullable=False),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['parent_template_id'], ['charge_templates.id'], ),
        sa.ForeignKeyConstraint(['created_by'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_charge_templates_status', 'charge_templates', ['status'])
    op.create_index('idx_templates_regeneration', 'charge_templates', ['status', 'next_generation_date'])
    op.create_index('idx_templates_parent', 'charge_templates', ['parent_template_id'])

    op.create_table(
        'charge_instances',
        *_timestamps(),
        sa.Column('template_id', sa.Integer(), nullable=False),
        sa.Column('unit_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('discount_amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('discount_percentage', sa.Numeric(precision=5, scale=2), nullable=False),
        sa.Column('final_amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('surcharge_amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('paid_amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('balance', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=False),
        sa.Column('status', sa.Enum('PENDING', 'OVERDUE', 'PAID', 'CANCELLED', name='instancestatus'), nullable=False),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['template_id'], ['charge_templates.id'], ),
        sa.ForeignKeyConstraint(['unit_id'], ['units.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('template_id', 'unit_id', name='uq_charge_instances_template_unit'),
    )
    op.create_index('idx_instances_unit_status_due', 'charge_instances', ['unit_id', 'status', 'due_date'])
    op.create_index('idx_instances_status_due', 'charge_instances', ['status', 'due_date'])

    op.create_table(
        'discounts',
        *_timestamps(),
        sa.Column('instance_id', sa.Integer(), nullable=False),
        sa.Column('discount_type', sa.Enum('FIXED', 'PERCENTAGE', name='discounttype'), nullable=False),
        sa.Column('name', sa.String(200), nullable=True),
        sa.Column('value', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('reason', sa.String(500), nullable=True),
        sa.Column('applied_by', sa.Integer(), nullable=True),
        sa.Column('applied_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['instance_id'], ['charge_instances.id'], ),
        sa.ForeignKeyConstraint(['applied_by'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_discounts_instance_id', 'discounts', ['instance_id'])

    # Payments
    op.create_table(
        'payment_receipts',
        *_timestamps(),
        sa.Column('folio', sa.String(32), nullable=False),
        sa.Column('resident_id', sa.Integer(), nullable=True),
        sa.Column('unit_id', sa.Integer(), nullable=False),
        sa.Column('charge_instance_id', sa.Integer(), nullable=True),
        sa.Column('total_amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('credited_amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('payment_date', sa.Date(), nullable=False),
        sa.Column('method', sa.Enum('TRANSFER', 'DEPOSIT', 'CASH', 'CARD', 'CHECK', name='paymentmethod'), nullable=False),
        sa.Column('bank_name', sa.String(100), nullable=True),
        sa.Column('reference_number', sa.String(100), nullable=True),
        sa.Column('destination_account', sa.String(100), nullable=True),
        sa.Column('evidence_url', sa.String(500), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('source', sa.Enum('RESIDENT', 'ADMIN', name='receiptsource'), nullable=False),
        sa.Column('status', sa.Enum('PENDING', 'APPROVED', 'REJECTED', name='receiptstatus'), nullable=False),
        sa.Column('reviewed_by', sa.Integer(), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('review_comments', sa.Text(), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('document_url', sa.String(500), nullable=True),
        sa.Column('document_filename', sa.String(255), nullable=True),
        sa.ForeignKeyConstraint(['resident_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['unit_id'], ['units.id'], ),
        sa.ForeignKeyConstraint(['charge_instance_id'], ['charge_instances.id'], ),
        sa.ForeignKeyConstraint(['reviewed_by'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('folio'),
    )
    op.create_index('ix_payment_receipts_status', 'payment_receipts', ['status'])
    op.create_index('idx_receipts_unit_status', 'payment_receipts', ['unit_id', 'status'])

    op.create_table(
        'payment_allocations',
        *_timestamps(),
        sa.Column('receipt_id', sa.Integer(), nullable=True),
        sa.Column('instance_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('kind', sa.Enum('AUTOMATIC', 'MANUAL', 'CREDIT', name='allocationkind'), nullable=False),
        sa.Column('allocated_by', sa.Integer(), nullable=True),
        sa.Column('applied_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['receipt_id'], ['payment_receipts.id'], ),
        sa.ForeignKeyConstraint(['instance_id'], ['charge_instances.id'], ),
        sa.ForeignKeyConstraint(['allocated_by'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_allocations_receipt', 'payment_allocations', ['receipt_id'])
    op.create_index('idx_allocations_instance', 'payment_allocations', ['instance_id'])

    op.create_table(
        'unit_credit_balances',
        *_timestamps(),
        sa.Column('unit_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['unit_id'], ['units.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('unit_id'),
    )

    # Surcharges
    op.create_table(
        'surcharge_policies',
        *_timestamps(),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('kind', sa.Enum('FIXED', 'PCT_ORIGINAL', 'PCT_BALANCE', 'PCT_RUNNING_TOTAL', name='surchargekind'), nullable=False),
        sa.Column('value', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('min_debt', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('categories', sa.JSON(), nullable=True),
        sa.Column('is_recurring', sa.Boolean(), nullable=False),
        sa.Column('frequency_days', sa.Integer(), nullable=True),
        sa.Column('valid_from', sa.Date(), nullable=False),
        sa.Column('valid_until', sa.Date(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['created_by'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_surcharge_policies_is_active', 'surcharge_policies', ['is_active'])

    op.create_table(
        'surcharge_filters',
        *_timestamps(),
        sa.Column('policy_id', sa.Integer(), nullable=False),
        sa.Column('kind', sa.Enum('NAME_CONTAINS', 'CATEGORY_EQUALS', 'DAYS_OVERDUE_GT', name='filterkind'), nullable=False),
        sa.Column('value', sa.String(200), nullable=False),
        sa.ForeignKeyConstraint(['policy_id'], ['surcharge_policies.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_surcharge_filters_policy_id', 'surcharge_filters', ['policy_id'])

    op.create_table(
        'surcharge_applications',
        *_timestamps(),
        sa.Column('policy_id', sa.Integer(), nullable=False),
        sa.Column('instance_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('applied_on', sa.Date(), nullable=False),
        sa.Column('reason', sa.String(500), nullable=True),
        sa.Column('applied_by', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['policy_id'], ['surcharge_policies.id'], ),
        sa.ForeignKeyConstraint(['instance_id'], ['charge_instances.id'], ),
        sa.ForeignKeyConstraint(['applied_by'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_surcharge_apps_policy_instance', 'surcharge_applications', ['policy_id', 'instance_id', 'applied_on'])


def downgrade() -> None:
    """Drop ledger tables."""
    op.drop_table('surcharge_applications')
    op.drop_table('surcharge_filters')
    op.drop_table('surcharge_policies')
    op.drop_table('unit_credit_balances')
    op.drop_table('payment_allocations')
    op.drop_table('payment_receipts')
    op.drop_table('discounts')
    op.drop_table('charge_instances')
    op.drop_table('charge_templates')
    op.drop_table('audit_logs')
    op.drop_table('residents')
    op.drop_table('units')
    op.drop_table('streets')
    op.drop_table('users')
