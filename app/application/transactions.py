"""
Boundary for the transaction-import subsystem.

Transactions are owned by the importer; the ledger only offers it a write
path for already-categorized rows and two read-only accessors.
Amount convention: positive = money out (expense), negative = money in.
"""
import logging
from decimal import Decimal
from typing import Dict, Any

from sqlalchemy.orm import Session

from app.application.common import get_owned, require_date
from app.application.errors import LedgerValidationError
from app.domain.income_event import STATUS_CANCELLED
from app.infrastructure.auditlog.repository import AuditLogRepository
from app.infrastructure.db.models import (
    TransactionModel, SpendingCategoryModel, BudgetCategoryModel, BankAccountModel, IncomeEventModel,
)
from app.infrastructure.db.session import unit_of_work
from app.utils.money import ZERO, to_money, money_str
from app.utils.validation import parse_amount

logger = logging.getLogger(__name__)


class RecordTransactionUseCase:
    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditLogRepository(db)

    def execute(
        self,
        family_id: int,
        amount,
        date,
        description: str = "",
        merchant_name: str | None = None,
        spending_category_id: int | None = None,
        bank_account_id: int | None = None,
    ) -> TransactionModel:
        try:
            value = parse_amount(amount)
        except ValueError as e:
            raise LedgerValidationError(f"amount: {e}") from e
        if value == 0:
            raise LedgerValidationError("amount must not be zero")
        on = require_date(date, "date")

        with unit_of_work(self.db):
            if spending_category_id is not None:
                get_owned(self.db, SpendingCategoryModel, family_id, spending_category_id, "Spending category")
            if bank_account_id is not None:
                get_owned(self.db, BankAccountModel, family_id, bank_account_id, "Bank account")

            tx = TransactionModel(
                family_id=family_id,
                bank_account_id=bank_account_id,
                amount=value,
                date=on,
                description=(description or "").strip(),
                merchant_name=(merchant_name or "").strip() or None,
                spending_category_id=spending_category_id,
            )
            self.db.add(tx)
            self.db.flush()
            self.audit.append_event(
                family_id=family_id,
                event_type="transaction_recorded",
                entity_type="Transaction",
                entity_id=tx.id,
                payload={
                    "transaction_id": tx.id,
                    "amount": money_str(value),
                    "date": on.isoformat(),
                    "spending_category_id": spending_category_id,
                },
            )

        logger.info("Recorded transaction %d: %s on %s", tx.id, value, on)
        return tx


def get_remaining_amount(db: Session, family_id: int, income_event_id: int) -> Decimal:
    """Unattributed money of an income event (zero once cancelled)."""
    income = get_owned(db, IncomeEventModel, family_id, income_event_id, "Income event")
    if income.status == STATUS_CANCELLED:
        return ZERO
    return to_money(income.remaining_amount)


def get_budget_category_mapping(db: Session, family_id: int) -> Dict[int, Dict[str, Any]]:
    """spending_category_id -> linked budget category (None when unlinked)."""
    rows = (
        db.query(SpendingCategoryModel, BudgetCategoryModel)
        .outerjoin(BudgetCategoryModel, BudgetCategoryModel.id == SpendingCategoryModel.budget_category_id)
        .filter(SpendingCategoryModel.family_id == family_id, SpendingCategoryModel.is_active.is_(True))
        .order_by(SpendingCategoryModel.id.asc())
        .all()
    )
    return {
        spending.id: {
            "spending_category_name": spending.name,
            "budget_category_id": budget.id if budget else None,
            "budget_category_name": budget.name if budget else None,
        }
        for spending, budget in rows
    }
