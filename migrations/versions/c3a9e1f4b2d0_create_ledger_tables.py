"""create ledger tables

Revision ID: c3a9e1f4b2d0
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = 'c3a9e1f4b2d0'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps(with_updated: bool = True) -> list:
    cols = [sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False)]
    if with_updated:
        cols.append(
            sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.func.now(), nullable=False)
        )
    return cols


def upgrade() -> None:
    op.create_table(
        'audit_log',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('family_id', sa.Integer(), nullable=False, index=True),
        sa.Column('actor_user_id', sa.Integer(), nullable=True),
        sa.Column('event_type', sa.String(128), nullable=False, index=True),
        sa.Column('entity_type', sa.String(64), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=True),
        sa.Column('payload_json', postgresql.JSONB(), nullable=False),
        sa.Column('occurred_at', sa.TIMESTAMP(timezone=True), nullable=False, index=True),
        *_timestamps(with_updated=False),
    )

    op.create_table(
        'income_events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('family_id', sa.Integer(), nullable=False, index=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('amount', sa.Numeric(precision=20, scale=2), nullable=False),
        sa.Column('scheduled_date', sa.Date(), nullable=False),
        sa.Column('frequency', sa.String(16), nullable=False, server_default='once'),
        sa.Column('next_occurrence', sa.Date(), nullable=True),
        sa.Column('status', sa.String(16), nullable=False, server_default='scheduled'),
        sa.Column('actual_date', sa.Date(), nullable=True),
        sa.Column('actual_amount', sa.Numeric(precision=20, scale=2), nullable=True),
        sa.Column('allocated_amount', sa.Numeric(precision=20, scale=2), nullable=False, server_default='0'),
        sa.Column('remaining_amount', sa.Numeric(precision=20, scale=2), nullable=False, server_default='0'),
        sa.Column('source', sa.String(255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('remaining_amount >= 0', name='ck_income_remaining_non_negative'),
        sa.CheckConstraint('allocated_amount >= 0', name='ck_income_allocated_non_negative'),
    )
    op.create_index('ix_income_events_family_date', 'income_events', ['family_id', 'scheduled_date'])

    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('family_id', sa.Integer(), nullable=False, index=True),
        sa.Column('payee', sa.String(255), nullable=False),
        sa.Column('amount', sa.Numeric(precision=20, scale=2), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=False),
        sa.Column('payment_type', sa.String(16), nullable=False, server_default='once'),
        sa.Column('frequency', sa.String(16), nullable=True),
        sa.Column('next_due_date', sa.Date(), nullable=True),
        sa.Column('series_id', sa.Integer(), nullable=True, index=True),
        sa.Column('status', sa.String(16), nullable=False, server_default='scheduled'),
        sa.Column('spending_category_id', sa.Integer(), nullable=True, index=True),
        sa.Column('autopay_enabled', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('attributed_amount', sa.Numeric(precision=20, scale=2), nullable=False, server_default='0'),
        sa.Column('paid_amount', sa.Numeric(precision=20, scale=2), nullable=True),
        sa.Column('paid_date', sa.Date(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('attributed_amount <= amount', name='ck_payment_attributed_within_amount'),
    )
    op.create_index('ix_payments_family_due', 'payments', ['family_id', 'due_date'])

    op.create_table(
        'payment_attributions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('family_id', sa.Integer(), nullable=False, index=True),
        sa.Column('payment_id', sa.Integer(), nullable=False, index=True),
        sa.Column('income_event_id', sa.Integer(), nullable=False, index=True),
        sa.Column('amount', sa.Numeric(precision=20, scale=2), nullable=False),
        sa.Column('attribution_type', sa.String(16), nullable=False, server_default='manual'),
        *_timestamps(),
        sa.CheckConstraint('amount > 0', name='ck_attribution_amount_positive'),
        sqlite_autoincrement=True,
    )

    op.create_table(
        'budget_categories',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('family_id', sa.Integer(), nullable=False, index=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('target_percentage', sa.Numeric(precision=5, scale=2), nullable=False),
        sa.Column('color', sa.String(16), nullable=True),
        sa.Column('sort_order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        *_timestamps(),
    )

    op.create_table(
        'budget_allocations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('family_id', sa.Integer(), nullable=False, index=True),
        sa.Column('budget_category_id', sa.Integer(), nullable=False, index=True),
        sa.Column('income_event_id', sa.Integer(), nullable=False, index=True),
        sa.Column('amount', sa.Numeric(precision=20, scale=2), nullable=False),
        sa.Column('percentage', sa.Numeric(precision=5, scale=2), nullable=False),
        *_timestamps(with_updated=False),
        sa.UniqueConstraint('income_event_id', 'budget_category_id', name='uq_allocation_income_category'),
    )

    op.create_table(
        'spending_categories',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('family_id', sa.Integer(), nullable=False, index=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('budget_category_id', sa.Integer(), nullable=True, index=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        *_timestamps(with_updated=False),
    )

    op.create_table(
        'transactions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('family_id', sa.Integer(), nullable=False, index=True),
        sa.Column('bank_account_id', sa.Integer(), nullable=True, index=True),
        sa.Column('amount', sa.Numeric(precision=20, scale=2), nullable=False),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('merchant_name', sa.String(255), nullable=True),
        sa.Column('spending_category_id', sa.Integer(), nullable=True, index=True),
        *_timestamps(with_updated=False),
    )
    op.create_index('ix_transactions_family_date', 'transactions', ['family_id', 'date'])

    op.create_table(
        'bank_accounts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('family_id', sa.Integer(), nullable=False, index=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('account_type', sa.String(32), nullable=False),
        sa.Column('current_balance', sa.Numeric(precision=20, scale=2), nullable=False, server_default='0'),
        sa.Column('deleted_at', sa.TIMESTAMP(timezone=True), nullable=True),
        *_timestamps(with_updated=False),
    )


def downgrade() -> None:
    op.drop_table('bank_accounts')
    op.drop_index('ix_transactions_family_date', table_name='transactions')
    op.drop_table('transactions')
    op.drop_table('spending_categories')
    op.drop_table('budget_allocations')
    op.drop_table('budget_categories')
    op.drop_table('payment_attributions')
    op.drop_index('ix_payments_family_due', table_name='payments')
    op.drop_table('payments')
    op.drop_index('ix_income_events_family_date', table_name='income_events')
    op.drop_table('income_events')
    op.drop_table('audit_log')
