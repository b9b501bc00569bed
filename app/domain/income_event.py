"""
IncomeEvent domain rules and audit payloads
"""
from datetime import date
from decimal import Decimal
from typing import Dict, Any

from app.utils.money import to_money, money_str

STATUS_SCHEDULED = "scheduled"
STATUS_RECEIVED = "received"
STATUS_CANCELLED = "cancelled"

INCOME_STATUSES = (STATUS_SCHEDULED, STATUS_RECEIVED, STATUS_CANCELLED)


def effective_amount(status: str, amount: Decimal, actual_amount: Decimal | None) -> Decimal:
    """Actual amount once received, otherwise the scheduled amount."""
    if status == STATUS_RECEIVED and actual_amount is not None:
        return to_money(actual_amount)
    return to_money(amount)


def remaining_amount(effective: Decimal, allocated: Decimal) -> Decimal:
    """Unattributed part of the effective amount."""
    return to_money(effective) - to_money(allocated)


class IncomeEvent:
    """
    Audit payload builders for income event mutations.

    Payloads carry amounts as strings and dates as ISO strings so they can
    be stored as JSON unchanged.
    """

    @staticmethod
    def create(
        income_event_id: int,
        name: str,
        amount: Decimal,
        scheduled_date: date,
        frequency: str,
        spawned_from_id: int | None = None,
    ) -> Dict[str, Any]:
        payload = {
            "income_event_id": income_event_id,
            "name": name,
            "amount": money_str(amount),
            "scheduled_date": scheduled_date.isoformat(),
            "frequency": frequency,
        }
        if spawned_from_id is not None:
            payload["spawned_from_id"] = spawned_from_id
        return payload

    @staticmethod
    def received(
        income_event_id: int,
        actual_date: date,
        actual_amount: Decimal,
        next_income_event_id: int | None,
    ) -> Dict[str, Any]:
        return {
            "income_event_id": income_event_id,
            "actual_date": actual_date.isoformat(),
            "actual_amount": money_str(actual_amount),
            "next_income_event_id": next_income_event_id,
        }

    @staticmethod
    def reverted(income_event_id: int, actual_date: date | None, actual_amount: Decimal | None) -> Dict[str, Any]:
        return {
            "income_event_id": income_event_id,
            "previous_actual_date": actual_date.isoformat() if actual_date else None,
            "previous_actual_amount": money_str(actual_amount),
        }

    @staticmethod
    def updated(income_event_id: int, old_values: Dict[str, Any], new_values: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "income_event_id": income_event_id,
            "old": {k: jsonable(v) for k, v in old_values.items()},
            "new": {k: jsonable(v) for k, v in new_values.items()},
        }

    @staticmethod
    def deleted(income_event_id: int, name: str, amount: Decimal, removed_allocations: int) -> Dict[str, Any]:
        return {
            "income_event_id": income_event_id,
            "name": name,
            "amount": money_str(amount),
            "removed_allocations": removed_allocations,
        }


def jsonable(value):
    """Decimal -> "0.00" string, date -> ISO string, everything else as is."""
    if isinstance(value, Decimal):
        return money_str(value)
    if isinstance(value, date):
        return value.isoformat()
    return value
