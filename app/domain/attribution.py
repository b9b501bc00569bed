"""
Attribution domain: commands, split planning and audit payloads.

Pure functions only; the application layer loads rows, calls these and
applies the result inside one unit of work.
"""
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Dict, Any, Iterable

from app.utils.money import ZERO, to_money, money_str

TYPE_MANUAL = "manual"
TYPE_AUTOMATIC = "automatic"
ATTRIBUTION_TYPES = (TYPE_MANUAL, TYPE_AUTOMATIC)

CONFIDENCE_HIGH = "high"
CONFIDENCE_MEDIUM = "medium"
CONFIDENCE_LOW = "low"
_CONFIDENCE_RANK = {CONFIDENCE_HIGH: 3, CONFIDENCE_MEDIUM: 2, CONFIDENCE_LOW: 1}


@dataclass(frozen=True)
class ReplaceAttribution:
    """Swap an attribution's amount: remove the old link and create a new one, atomically."""
    payment_id: int
    attribution_id: int
    new_amount: Decimal
    attribution_type: str = TYPE_MANUAL


@dataclass(frozen=True)
class SplitLeg:
    income_event_id: int
    amount: Decimal


@dataclass(frozen=True)
class IncomeCandidate:
    income_event_id: int
    available: Decimal
    event_date: date  # actual date when received, else scheduled date


def plan_split(needed: Decimal, candidates: Iterable[IncomeCandidate]) -> list[SplitLeg]:
    """Cover `needed` from candidates, soonest first (ties by id).

    Each leg takes min(still needed, candidate available). Stops once the
    amount is covered; may return less than needed when income runs out.
    """
    remaining = to_money(needed)
    legs: list[SplitLeg] = []
    ordered = sorted(candidates, key=lambda c: (c.event_date, c.income_event_id))
    for c in ordered:
        if remaining <= ZERO:
            break
        available = to_money(c.available)
        if available <= ZERO:
            continue
        take = min(remaining, available)
        legs.append(SplitLeg(income_event_id=c.income_event_id, amount=take))
        remaining -= take
    return legs


def suggestion_confidence(available: Decimal, needed: Decimal, event_date: date, due_date: date) -> str:
    """high: income lands by the due date and covers it; medium: covers at least half."""
    if event_date <= due_date and available >= needed:
        return CONFIDENCE_HIGH
    if available * 2 >= needed:
        return CONFIDENCE_MEDIUM
    return CONFIDENCE_LOW


def confidence_rank(confidence: str) -> int:
    return _CONFIDENCE_RANK.get(confidence, 0)


class Attribution:
    """Audit payload builders for attribution mutations."""

    @staticmethod
    def created(attribution_id: int, payment_id: int, income_event_id: int, amount: Decimal,
                attribution_type: str) -> Dict[str, Any]:
        return {
            "attribution_id": attribution_id,
            "payment_id": payment_id,
            "income_event_id": income_event_id,
            "amount": money_str(amount),
            "attribution_type": attribution_type,
        }

    @staticmethod
    def removed(attribution_id: int, payment_id: int, income_event_id: int, amount: Decimal) -> Dict[str, Any]:
        return {
            "attribution_id": attribution_id,
            "payment_id": payment_id,
            "income_event_id": income_event_id,
            "amount": money_str(amount),
        }

    @staticmethod
    def replaced(old_attribution_id: int, new_attribution_id: int, old_amount: Decimal,
                 new_amount: Decimal) -> Dict[str, Any]:
        return {
            "old_attribution_id": old_attribution_id,
            "new_attribution_id": new_attribution_id,
            "old_amount": money_str(old_amount),
            "new_amount": money_str(new_amount),
        }
