"""
Budget allocation math and budget status policy.

Income is split across categories by target percentage in fixed point:
every category but the last gets round-half-up(amount * pct / 100), the
last one gets whatever is left, so the split always sums to the income.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Any, Iterable

from app.utils.money import HUNDRED, to_money, percent_of, money_str

STATUS_UNDER_BUDGET = "under_budget"
STATUS_OVER_BUDGET = "over_budget"
STATUS_WAY_OVER_BUDGET = "way_over_budget"

# performance percentage thresholds (spent / budgeted * 100)
OVER_BUDGET_AT = 100.0
WAY_OVER_BUDGET_ABOVE = 125.0

# projections: received income averaged over this many months, spending
# expected at this share of each category budget
PROJECTION_LOOKBACK_MONTHS = 6
PROJECTED_UTILIZATION = Decimal("0.90")

DEFAULT_COLORS = (
    "#3B82F6", "#10B981", "#F59E0B", "#EF4444",
    "#8B5CF6", "#F97316", "#06B6D4", "#84CC16",
)


def allocate_by_percentages(
    total: Decimal,
    shares: Iterable[tuple[int, Decimal]],
) -> list[tuple[int, Decimal]]:
    """Split total across (category_id, percentage) pairs in the given order.

    Every pair but the last gets round-half-up(total * pct / 100); the last
    gets total minus what was assigned, so the rows always sum to total,
    whatever the percentages add up to. Over-allocated percentages are
    capped at the total in order, so no row goes negative. Empty input ->
    empty list.
    """
    shares = list(shares)
    if not shares:
        return []
    total = to_money(total)
    out: list[tuple[int, Decimal]] = []
    assigned = Decimal("0.00")
    for category_id, pct in shares[:-1]:
        amount = min(percent_of(total, pct), total - assigned)
        out.append((category_id, amount))
        assigned += amount
    out.append((shares[-1][0], total - assigned))
    return out


def budget_status(performance_pct: float) -> str:
    if performance_pct > WAY_OVER_BUDGET_ABOVE:
        return STATUS_WAY_OVER_BUDGET
    if performance_pct >= OVER_BUDGET_AT:
        return STATUS_OVER_BUDGET
    return STATUS_UNDER_BUDGET


def performance_score(total_budgeted: Decimal, total_spent: Decimal) -> float:
    """100 minus the overspend percentage, clamped to [0, 100].

    With nothing budgeted: 100 when nothing was spent, otherwise 0.
    """
    if not total_budgeted:
        return 100.0 if not total_spent else 0.0
    overspend = max(0.0, float((Decimal(total_spent) - Decimal(total_budgeted)) / Decimal(total_budgeted) * HUNDRED))
    return min(100.0, max(0.0, 100.0 - overspend))


def percentage_warnings(total_percentage: Decimal) -> list[str]:
    """Soft rule: active percentages should not exceed 100."""
    if Decimal(total_percentage) > HUNDRED:
        return [f"Active budget categories total {total_percentage}% (over 100%)"]
    return []


class BudgetAllocation:
    """Audit payload builders for budget mutations."""

    @staticmethod
    def generated(income_event_id: int, total: Decimal, rows: list[tuple[int, Decimal]]) -> Dict[str, Any]:
        return {
            "income_event_id": income_event_id,
            "total": money_str(total),
            "allocations": [
                {"budget_category_id": cid, "amount": money_str(amount)} for cid, amount in rows
            ],
        }

    @staticmethod
    def category_changed(category_id: int, name: str, target_percentage: Decimal, is_active: bool) -> Dict[str, Any]:
        return {
            "budget_category_id": category_id,
            "name": name,
            "target_percentage": str(target_percentage),
            "is_active": is_active,
        }

    @staticmethod
    def template_applied(entries: list["TemplateCategory"], deactivated: list[int]) -> Dict[str, Any]:
        return {
            "categories": [
                {"name": e.name, "target_percentage": str(e.target_percentage)} for e in entries
            ],
            "deactivated_category_ids": deactivated,
        }


@dataclass(frozen=True)
class TemplateCategory:
    """One line of a budget template: categories are matched by name."""
    name: str
    target_percentage: Decimal


def template_color(position: int) -> str:
    return DEFAULT_COLORS[position % len(DEFAULT_COLORS)]


def project_category(average_income: Decimal, percentage: Decimal) -> tuple[Decimal, Decimal]:
    """(budget, projected spending) for one category in one month."""
    budget = percent_of(average_income, percentage)
    return budget, to_money(budget * PROJECTED_UTILIZATION)
