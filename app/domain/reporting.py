"""
Report policies: savings trend classification, income consistency and
the debt health rules.
"""
import math
import statistics
from decimal import Decimal

TREND_INCREASING = "increasing"
TREND_DECREASING = "decreasing"
TREND_STABLE = "stable"
TREND_VOLATILE = "volatile"

# percentage points between first and last month below which the trend is flat
STABLE_DELTA = 5.0
# population variance of monthly rates (points^2) above which the trend is volatile
VOLATILE_VARIANCE = 400.0

TOP_N = 10


def savings_trend(rates: list[float]) -> str:
    """Classify monthly savings rates (oldest first)."""
    if len(rates) < 2:
        return TREND_STABLE
    delta = rates[-1] - rates[0]
    if abs(delta) < STABLE_DELTA:
        return TREND_STABLE
    if statistics.pvariance(rates) > VOLATILE_VARIANCE:
        return TREND_VOLATILE
    return TREND_INCREASING if delta > 0 else TREND_DECREASING


def income_consistency(monthly_totals: list[float]) -> float:
    """
    0..100, 100 = identical income every month.

    100 - coefficient of variation * 100, floored at 0. No income at all -> 0.
    """
    if not monthly_totals:
        return 0.0
    mean = statistics.fmean(monthly_totals)
    if mean <= 0:
        return 0.0
    cv = statistics.pstdev(monthly_totals) / mean
    return max(0.0, 100.0 - cv * 100.0)


# --- debt ---

# assumed monthly interest on outstanding debt
MONTHLY_INTEREST_RATE = Decimal("0.015")

# spending categories whose payments count as debt service (lower-cased)
DEBT_CATEGORY_NAMES = frozenset({"debt payment", "loan payment", "credit card"})

DTI_CRITICAL = 40.0
DTI_HIGH = 30.0
DTI_ELEVATED = 20.0
MANY_ACCOUNTS = 5

PRIORITY_CRITICAL = "critical"
PRIORITY_WARNING = "warning"
PRIORITY_INFO = "info"


def is_debt_category(name: str | None) -> bool:
    return (name or "").strip().lower() in DEBT_CATEGORY_NAMES


def months_to_payoff(total_debt: Decimal, monthly_payments: Decimal, monthly_interest: Decimal) -> int:
    """
    Months until the debt is gone at the current pace.

    0 without debt, -1 when payments do not cover the interest.
    """
    if total_debt <= 0:
        return 0
    principal = monthly_payments - monthly_interest
    if principal <= 0:
        return -1
    return math.ceil(total_debt / principal)


def debt_health_score(dti: float, overdue_count: int, payment_rate: float, covers_interest: bool) -> int:
    """100 minus penalties for DTI, overdue payments, missed payments and uncovered interest; floored at 0."""
    score = 100
    if dti > DTI_CRITICAL:
        score -= 30
    elif dti > DTI_HIGH:
        score -= 20
    elif dti > DTI_ELEVATED:
        score -= 10
    score -= min(30, overdue_count * 10)
    if payment_rate < 90:
        score -= 20
    elif payment_rate < 95:
        score -= 10
    if not covers_interest:
        score -= 30
    return max(0, score)


def debt_recommendations(
    dti: float, covers_interest: bool, overdue_count: int, account_count: int,
) -> list[dict]:
    out = []
    if dti > DTI_CRITICAL:
        out.append({
            "priority": PRIORITY_CRITICAL,
            "title": "High debt-to-income ratio",
            "description": f"Debt payments take {dti:.1f}% of monthly income; aim for under {DTI_HIGH:.0f}%.",
        })
    if not covers_interest:
        out.append({
            "priority": PRIORITY_CRITICAL,
            "title": "Payments do not cover interest",
            "description": "Monthly debt payments are below the estimated interest, so balances keep growing.",
        })
    if overdue_count:
        out.append({
            "priority": PRIORITY_WARNING,
            "title": "Overdue debt payments",
            "description": f"{overdue_count} debt payment(s) are past due.",
        })
    if account_count > MANY_ACCOUNTS:
        out.append({
            "priority": PRIORITY_INFO,
            "title": "Consider consolidation",
            "description": f"{account_count} open debt accounts; consolidating may lower interest and effort.",
        })
    return out
