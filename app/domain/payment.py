"""
Payment domain rules and audit payloads
"""
from datetime import date
from decimal import Decimal
from typing import Dict, Any

from app.domain.income_event import jsonable
from app.domain.recurrence import RECURRING_FREQUENCIES
from app.utils.money import money_str

TYPE_ONCE = "once"
TYPE_RECURRING = "recurring"
TYPE_VARIABLE = "variable"
PAYMENT_TYPES = (TYPE_ONCE, TYPE_RECURRING, TYPE_VARIABLE)

STATUS_SCHEDULED = "scheduled"
STATUS_PAID = "paid"
STATUS_OVERDUE = "overdue"
STATUS_PARTIAL = "partial"
STATUS_CANCELLED = "cancelled"
PAYMENT_STATUSES = (STATUS_SCHEDULED, STATUS_PAID, STATUS_OVERDUE, STATUS_PARTIAL, STATUS_CANCELLED)


def check_type_frequency(payment_type: str, frequency: str | None) -> None:
    """Frequency is required for recurring payments and forbidden otherwise.

    Raises:
        ValueError: invalid type, invalid frequency or mismatched pair
    """
    if payment_type not in PAYMENT_TYPES:
        raise ValueError(f"invalid payment_type: {payment_type}")
    if payment_type == TYPE_RECURRING:
        if frequency not in RECURRING_FREQUENCIES:
            raise ValueError("recurring payments require frequency weekly|biweekly|monthly|quarterly|annual")
    elif frequency is not None:
        raise ValueError("frequency is only allowed for recurring payments")


def display_status(status: str, due_date: date, today: date) -> str:
    """Stored status as shown to callers: a scheduled payment past due reads as overdue."""
    if status == STATUS_SCHEDULED and due_date < today:
        return STATUS_OVERDUE
    return status


def paid_status(paid_amount: Decimal, amount: Decimal) -> str:
    return STATUS_PAID if paid_amount >= amount else STATUS_PARTIAL


class Payment:
    """Audit payload builders for payment mutations."""

    @staticmethod
    def create(payment_id: int, payee: str, amount: Decimal, due_date: date, payment_type: str,
               frequency: str | None, series_id: int | None = None) -> Dict[str, Any]:
        return {
            "payment_id": payment_id,
            "payee": payee,
            "amount": money_str(amount),
            "due_date": due_date.isoformat(),
            "payment_type": payment_type,
            "frequency": frequency,
            "series_id": series_id,
        }

    @staticmethod
    def paid(payment_id: int, status: str, paid_amount: Decimal, paid_date: date,
             next_payment_id: int | None) -> Dict[str, Any]:
        return {
            "payment_id": payment_id,
            "status": status,
            "paid_amount": money_str(paid_amount),
            "paid_date": paid_date.isoformat(),
            "next_payment_id": next_payment_id,
        }

    @staticmethod
    def reverted(payment_id: int, previous_status: str) -> Dict[str, Any]:
        return {"payment_id": payment_id, "previous_status": previous_status}

    @staticmethod
    def deleted(payment_ids: list[int], removed_attributions: int) -> Dict[str, Any]:
        return {"payment_ids": payment_ids, "removed_attributions": removed_attributions}

    @staticmethod
    def updated(payment_id: int, old_values: Dict[str, Any], new_values: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "payment_id": payment_id,
            "old": {k: jsonable(v) for k, v in old_values.items()},
            "new": {k: jsonable(v) for k, v in new_values.items()},
        }
