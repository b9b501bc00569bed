"""
SQLAlchemy ORM models (ledger tables + external collaborator tables)
"""
from decimal import Decimal
from datetime import date as date_type, datetime
from sqlalchemy import String, Integer, Text, TIMESTAMP, Date, func, Boolean, Numeric, UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.dialects.postgresql import JSONB

from app.infrastructure.db.session import Base


class AuditLog(Base):
    """
    Append-only audit trail of ledger mutations.

    One row per committed mutation, written inside the same unit of work.
    """
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(primary_key=True)
    family_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    actor_user_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    event_type: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    entity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payload_json: Mapped[dict] = mapped_column(JSONB, nullable=False)  # PostgreSQL JSONB

    occurred_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False
    )


# ============================================================================
# Ledger core
# ============================================================================


class IncomeEventModel(Base):
    """
    Scheduled or received income.

    allocated_amount / remaining_amount are denormalized aggregates of
    payment_attributions; only the attribution use cases move them.
    """
    __tablename__ = "income_events"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    family_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(precision=20, scale=2), nullable=False)
    scheduled_date: Mapped[date_type] = mapped_column(Date, nullable=False)
    frequency: Mapped[str] = mapped_column(String(16), nullable=False, server_default="once")
    next_occurrence: Mapped[date_type | None] = mapped_column(Date, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, server_default="scheduled")

    actual_date: Mapped[date_type | None] = mapped_column(Date, nullable=True)
    actual_amount: Mapped[Decimal | None] = mapped_column(Numeric(precision=20, scale=2), nullable=True)

    allocated_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=20, scale=2), nullable=False, server_default="0"
    )
    remaining_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=20, scale=2), nullable=False, server_default="0"
    )

    source: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )

    __table_args__ = (
        Index("ix_income_events_family_date", "family_id", "scheduled_date"),
    )


class PaymentModel(Base):
    """
    Scheduled bill. Recurring occurrences share series_id (id of the first occurrence).
    """
    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    family_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    payee: Mapped[str] = mapped_column(String(255), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(precision=20, scale=2), nullable=False)
    due_date: Mapped[date_type] = mapped_column(Date, nullable=False)
    payment_type: Mapped[str] = mapped_column(String(16), nullable=False, server_default="once")
    frequency: Mapped[str | None] = mapped_column(String(16), nullable=True)
    next_due_date: Mapped[date_type | None] = mapped_column(Date, nullable=True)
    series_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)

    # overdue is derived at read time, never stored
    status: Mapped[str] = mapped_column(String(16), nullable=False, server_default="scheduled")
    spending_category_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    autopay_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="false")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    attributed_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=20, scale=2), nullable=False, server_default="0"
    )
    paid_amount: Mapped[Decimal | None] = mapped_column(Numeric(precision=20, scale=2), nullable=True)
    paid_date: Mapped[date_type | None] = mapped_column(Date, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )

    __table_args__ = (
        Index("ix_payments_family_due", "family_id", "due_date"),
    )


class PaymentAttributionModel(Base):
    """Link: part of an income event's money earmarked for a payment."""
    __tablename__ = "payment_attributions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    family_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    payment_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    income_event_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(precision=20, scale=2), nullable=False)
    attribution_type: Mapped[str] = mapped_column(String(16), nullable=False, server_default="manual")

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )

    # replaced links get a fresh id, never a reused one
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )


class BudgetCategoryModel(Base):
    """Percentage-of-income budget bucket."""
    __tablename__ = "budget_categories"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    family_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    target_percentage: Mapped[Decimal] = mapped_column(Numeric(precision=5, scale=2), nullable=False)
    color: Mapped[str | None] = mapped_column(String(16), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, server_default="0")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="true")

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )


class BudgetAllocationModel(Base):
    """Share of a received income event assigned to a budget category. Never mutated."""
    __tablename__ = "budget_allocations"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    family_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    budget_category_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    income_event_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(precision=20, scale=2), nullable=False)
    percentage: Mapped[Decimal] = mapped_column(Numeric(precision=5, scale=2), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("income_event_id", "budget_category_id", name="uq_allocation_income_category"),
    )


# ============================================================================
# External collaborators (owned by the import / bank-sync subsystems)
# ============================================================================


class SpendingCategoryModel(Base):
    """Transaction category; optionally rolled up into a budget category."""
    __tablename__ = "spending_categories"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    family_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    budget_category_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default="true")

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )


class TransactionModel(Base):
    """Categorized bank transaction. Positive amount = money out (expense)."""
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    family_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    bank_account_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(precision=20, scale=2), nullable=False)
    date: Mapped[date_type] = mapped_column(Date, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, server_default="")
    merchant_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    spending_category_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_transactions_family_date", "family_id", "date"),
    )


class BankAccountModel(Base):
    """Materialized bank account balance (checking, savings, credit, loan, ...)."""
    __tablename__ = "bank_accounts"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    family_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    account_type: Mapped[str] = mapped_column(String(32), nullable=False)
    current_balance: Mapped[Decimal] = mapped_column(
        Numeric(precision=20, scale=2), nullable=False, server_default="0"
    )
    deleted_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default=func.now(), nullable=False
    )
