"""
Reporting aggregator: read-only views derived from the ledger.

Every report:
- treats periods/categories without rows as zero, never missing
- guards every percentage and average against division by zero
- never writes

Income is counted when received (by actual date). Expenses are
transactions with a positive amount.
"""
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Dict, Any, List, Tuple

from sqlalchemy.orm import Session

from app.application.budget import budgeted_by_category, spent_by_budget_category
from app.application.common import require_date
from app.application.errors import LedgerValidationError
from app.config import get_settings
from app.domain.budget import budget_status, performance_score
from app.domain import payment as payment_rules
from app.domain.income_event import STATUS_RECEIVED
from app.domain.periods import GROUP_MONTH, Period, generate_periods, month_bounds, months_spanned
from app.domain.recurrence import RECURRING_FREQUENCIES, FREQ_ONCE, FREQ_MONTHLY, add_months
from app.domain.reporting import (
    TOP_N, MONTHLY_INTEREST_RATE, savings_trend, income_consistency,
    is_debt_category, months_to_payoff, debt_health_score, debt_recommendations,
)
from app.infrastructure.db.models import (
    IncomeEventModel, TransactionModel, SpendingCategoryModel, BudgetCategoryModel, BankAccountModel,
    PaymentModel,
)
from app.utils.dates import local_today
from app.utils.money import ZERO, to_money, share_pct, money_sum

UNCATEGORIZED = "Uncategorized"
UNKNOWN_MERCHANT = "Unknown"

ASSET_ACCOUNT_TYPES = ("checking", "savings")
LIABILITY_ACCOUNT_TYPES = ("credit", "loan")

MIN_REPORT_YEAR = 2000
MAX_REPORT_YEAR = 2100


def _pct(part: Decimal, whole: Decimal) -> float:
    return round(share_pct(part, whole), 2)


def _source_label(income: IncomeEventModel) -> str:
    return (income.source or "").strip() or (income.name or "").strip() or "Other"


def _merchant_label(tx: TransactionModel) -> str:
    return (tx.merchant_name or "").strip() or (tx.description or "").strip() or UNKNOWN_MERCHANT


def _breakdown(totals: Dict[str, Decimal], whole: Decimal, key: str) -> List[Dict[str, Any]]:
    """[{key, amount, percentage}] by amount desc, then name."""
    items = sorted(totals.items(), key=lambda kv: (-kv[1], kv[0]))
    return [{key: name, "amount": amount, "percentage": _pct(amount, whole)} for name, amount in items]


class ReportsService:
    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Loaders
    # ------------------------------------------------------------------

    def _range(self, start_date, end_date) -> Tuple[date, date]:
        start = require_date(start_date, "start_date")
        end = require_date(end_date, "end_date")
        if start > end:
            raise LedgerValidationError("start_date must be on or before end_date")
        return start, end

    def _received_income(self, family_id: int, start: date, end: date) -> List[IncomeEventModel]:
        return (
            self.db.query(IncomeEventModel)
            .filter(
                IncomeEventModel.family_id == family_id,
                IncomeEventModel.status == STATUS_RECEIVED,
                IncomeEventModel.actual_date >= start,
                IncomeEventModel.actual_date <= end,
            )
            .order_by(IncomeEventModel.actual_date.asc(), IncomeEventModel.id.asc())
            .all()
        )

    def _expenses(
        self, family_id: int, start: date, end: date,
    ) -> List[Tuple[TransactionModel, SpendingCategoryModel | None]]:
        return (
            self.db.query(TransactionModel, SpendingCategoryModel)
            .outerjoin(SpendingCategoryModel, SpendingCategoryModel.id == TransactionModel.spending_category_id)
            .filter(
                TransactionModel.family_id == family_id,
                TransactionModel.amount > 0,
                TransactionModel.date >= start,
                TransactionModel.date <= end,
            )
            .order_by(TransactionModel.date.asc(), TransactionModel.id.asc())
            .all()
        )

    @staticmethod
    def _income_amount(income: IncomeEventModel) -> Decimal:
        return to_money(income.actual_amount if income.actual_amount is not None else income.amount)

    def _income_by_source(self, incomes: List[IncomeEventModel]) -> Dict[str, Decimal]:
        out: Dict[str, Decimal] = defaultdict(lambda: ZERO)
        for income in incomes:
            out[_source_label(income)] += self._income_amount(income)
        return dict(out)

    @staticmethod
    def _expenses_by_category(expenses) -> Dict[str, Decimal]:
        out: Dict[str, Decimal] = defaultdict(lambda: ZERO)
        for tx, category in expenses:
            out[category.name if category else UNCATEGORIZED] += to_money(tx.amount)
        return dict(out)

    def _monthly_totals(
        self, family_id: int, start: date, end: date,
    ) -> List[Tuple[Period, Decimal, Decimal]]:
        """(month, income, expenses) for every month touched by the range, zero-filled."""
        incomes = self._received_income(family_id, start, end)
        expenses = self._expenses(family_id, start, end)
        out = []
        for period in generate_periods(start, end, GROUP_MONTH):
            income = sum((self._income_amount(i) for i in incomes if period.contains(i.actual_date)), ZERO)
            spent = sum((to_money(tx.amount) for tx, _ in expenses if period.contains(tx.date)), ZERO)
            out.append((period, income, spent))
        return out

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def cash_flow(self, family_id: int, start_date, end_date, group_by: str = GROUP_MONTH) -> Dict[str, Any]:
        start, end = self._range(start_date, end_date)
        try:
            periods = generate_periods(start, end, group_by)
        except ValueError as e:
            raise LedgerValidationError(str(e)) from e

        incomes = self._received_income(family_id, start, end)
        expenses = self._expenses(family_id, start, end)

        rows = []
        for period in periods:
            period_income = [i for i in incomes if period.contains(i.actual_date)]
            period_expenses = [(tx, c) for tx, c in expenses if period.contains(tx.date)]
            total_income = sum((self._income_amount(i) for i in period_income), ZERO)
            total_expenses = sum((to_money(tx.amount) for tx, _ in period_expenses), ZERO)
            rows.append({
                "period": period.label,
                "start_date": period.start,
                "end_date": period.end,
                "total_income": total_income,
                "total_expenses": total_expenses,
                "net_cash_flow": total_income - total_expenses,
                "income_sources": _breakdown(self._income_by_source(period_income), total_income, "source"),
                "expense_categories": _breakdown(
                    self._expenses_by_category(period_expenses), total_expenses, "category"),
            })

        total_income = sum((r["total_income"] for r in rows), ZERO)
        total_expenses = sum((r["total_expenses"] for r in rows), ZERO)
        return {
            "start_date": start,
            "end_date": end,
            "group_by": group_by,
            "periods": rows,
            "summary": {
                "total_income": total_income,
                "total_expenses": total_expenses,
                "net_cash_flow": total_income - total_expenses,
                "average_period_income": to_money(total_income / len(rows)),
                "average_period_expenses": to_money(total_expenses / len(rows)),
            },
        }

    def spending_analysis(self, family_id: int, start_date, end_date) -> Dict[str, Any]:
        start, end = self._range(start_date, end_date)
        expenses = self._expenses(family_id, start, end)
        total = sum((to_money(tx.amount) for tx, _ in expenses), ZERO)

        by_category: Dict[Tuple[int | None, str], List[Decimal]] = defaultdict(list)
        by_merchant: Dict[str, List[Decimal]] = defaultdict(list)
        for tx, category in expenses:
            key = (category.id, category.name) if category else (None, UNCATEGORIZED)
            by_category[key].append(to_money(tx.amount))
            by_merchant[_merchant_label(tx)].append(to_money(tx.amount))

        categories = []
        for (category_id, name), amounts in by_category.items():
            amount = sum(amounts, ZERO)
            categories.append({
                "category_id": category_id,
                "category": name,
                "amount": amount,
                "percentage": _pct(amount, total),
                "transaction_count": len(amounts),
                "average_transaction": to_money(amount / len(amounts)),
            })
        categories.sort(key=lambda c: (-c["amount"], c["category"]))

        merchants = sorted(
            ((name, sum(amounts, ZERO), len(amounts)) for name, amounts in by_merchant.items()),
            key=lambda m: (-m[1], m[0]),
        )
        return {
            "start_date": start,
            "end_date": end,
            "total_spending": total,
            "transaction_count": len(expenses),
            "average_transaction": to_money(total / len(expenses)) if expenses else ZERO,
            "categories": categories,
            "top_merchants": [
                {"merchant": name, "amount": amount, "transaction_count": count, "percentage": _pct(amount, total)}
                for name, amount, count in merchants[:TOP_N]
            ],
        }

    def budget_performance(self, family_id: int, start_date, end_date) -> Dict[str, Any]:
        start, end = self._range(start_date, end_date)
        categories = (
            self.db.query(BudgetCategoryModel)
            .filter(BudgetCategoryModel.family_id == family_id, BudgetCategoryModel.is_active.is_(True))
            .order_by(BudgetCategoryModel.sort_order.asc(), BudgetCategoryModel.id.asc())
            .all()
        )
        budgeted = budgeted_by_category(self.db, family_id, start, end)
        spent = spent_by_budget_category(self.db, family_id, start, end)

        rows = []
        for category in categories:
            cat_budgeted = budgeted.get(category.id, ZERO)
            cat_spent = spent.get(category.id, ZERO)
            pct = _pct(cat_spent, cat_budgeted)
            rows.append({
                "category_id": category.id,
                "category": category.name,
                "target_percentage": to_money(category.target_percentage),
                "budgeted": cat_budgeted,
                "spent": cat_spent,
                "remaining": cat_budgeted - cat_spent,
                "performance_percentage": pct,
                "status": budget_status(pct),
            })

        total_budgeted = sum((r["budgeted"] for r in rows), ZERO)
        total_spent = sum((r["spent"] for r in rows), ZERO)
        return {
            "start_date": start,
            "end_date": end,
            "categories": rows,
            "total_budgeted": total_budgeted,
            "total_spent": total_spent,
            "total_remaining": total_budgeted - total_spent,
            "performance_score": round(performance_score(total_budgeted, total_spent), 2),
        }

    def income_analysis(self, family_id: int, start_date, end_date) -> Dict[str, Any]:
        start, end = self._range(start_date, end_date)
        incomes = self._received_income(family_id, start, end)

        total = sum((self._income_amount(i) for i in incomes), ZERO)
        regular = sum((self._income_amount(i) for i in incomes if i.frequency in RECURRING_FREQUENCIES), ZERO)
        irregular = sum((self._income_amount(i) for i in incomes if i.frequency == FREQ_ONCE), ZERO)

        sources: Dict[str, List[Decimal]] = defaultdict(list)
        for income in incomes:
            sources[_source_label(income)].append(self._income_amount(income))
        source_rows = sorted(
            (
                {
                    "source": name,
                    "amount": sum(amounts, ZERO),
                    "count": len(amounts),
                    "percentage": _pct(sum(amounts, ZERO), total),
                }
                for name, amounts in sources.items()
            ),
            key=lambda s: (-s["amount"], s["source"]),
        )

        monthly = []
        for period in generate_periods(start, end, GROUP_MONTH):
            amount = sum((self._income_amount(i) for i in incomes if period.contains(i.actual_date)), ZERO)
            monthly.append({"month": period.label, "amount": amount})

        return {
            "start_date": start,
            "end_date": end,
            "total_income": total,
            "regular_income": regular,
            "irregular_income": irregular,
            "average_monthly_income": to_money(total / months_spanned(start, end)),
            "income_sources": source_rows,
            "income_consistency": round(income_consistency([float(m["amount"]) for m in monthly]), 2),
            "monthly_trend": monthly,
        }

    def net_worth(self, family_id: int) -> Dict[str, Any]:
        accounts = (
            self.db.query(BankAccountModel)
            .filter(BankAccountModel.family_id == family_id, BankAccountModel.deleted_at.is_(None))
            .order_by(BankAccountModel.id.asc())
            .all()
        )

        assets_by_type: Dict[str, Decimal] = {t: ZERO for t in ASSET_ACCOUNT_TYPES}
        liabilities_by_type: Dict[str, Decimal] = {t: ZERO for t in LIABILITY_ACCOUNT_TYPES}
        for account in accounts:
            balance = to_money(account.current_balance)
            if account.account_type in assets_by_type:
                assets_by_type[account.account_type] += balance
            elif account.account_type in liabilities_by_type:
                liabilities_by_type[account.account_type] += abs(balance)

        assets = sum(assets_by_type.values(), ZERO)
        liabilities = sum(liabilities_by_type.values(), ZERO)
        return {
            "total_assets": assets,
            "total_liabilities": liabilities,
            "current_net_worth": assets - liabilities,
            "assets_by_type": assets_by_type,
            "liabilities_by_type": liabilities_by_type,
            "debt_to_asset_ratio": _pct(liabilities, assets),
            "account_count": len(accounts),
        }

    def savings_rate(self, family_id: int, start_date, end_date, target_rate: float | None = None) -> Dict[str, Any]:
        start, end = self._range(start_date, end_date)
        if target_rate is None:
            target_rate = get_settings().SAVINGS_TARGET_RATE

        months = []
        for period, income, spent in self._monthly_totals(family_id, start, end):
            savings = income - spent
            months.append({
                "month": period.label,
                "income": income,
                "expenses": spent,
                "savings": savings,
                "savings_rate": _pct(savings, income),
            })

        rates = [m["savings_rate"] for m in months]
        total_income = sum((m["income"] for m in months), ZERO)
        total_savings = sum((m["savings"] for m in months), ZERO)
        best = max(months, key=lambda m: m["savings_rate"])
        worst = min(months, key=lambda m: m["savings_rate"])
        return {
            "start_date": start,
            "end_date": end,
            "months": months,
            "total_income": total_income,
            "total_savings": total_savings,
            "overall_savings_rate": _pct(total_savings, total_income),
            "average_savings_rate": round(sum(rates) / len(rates), 2),
            "target_savings_rate": float(target_rate),
            "months_above_target": sum(1 for r in rates if r >= target_rate),
            "best_month": {"month": best["month"], "savings_rate": best["savings_rate"]},
            "worst_month": {"month": worst["month"], "savings_rate": worst["savings_rate"]},
            "trend": savings_trend(rates),
        }

    def monthly_summary(self, family_id: int, year: int, month: int) -> Dict[str, Any]:
        try:
            start, end = month_bounds(year, month)
        except ValueError as e:
            raise LedgerValidationError(f"invalid month: {e}") from e

        incomes = self._received_income(family_id, start, end)
        expenses = self._expenses(family_id, start, end)
        total_income = sum((self._income_amount(i) for i in incomes), ZERO)
        total_expenses = sum((to_money(tx.amount) for tx, _ in expenses), ZERO)
        net = total_income - total_expenses

        top = sorted(
            expenses,
            key=lambda row: (-to_money(row[0].amount), _merchant_label(row[0]), row[0].date, row[0].id),
        )[:TOP_N]
        return {
            "month": f"{year:04d}-{month:02d}",
            "start_date": start,
            "end_date": end,
            "total_income": total_income,
            "total_expenses": total_expenses,
            "net_cash_flow": net,
            "savings_rate": _pct(net, total_income),
            "income_sources": _breakdown(self._income_by_source(incomes), total_income, "source"),
            "expense_categories": _breakdown(self._expenses_by_category(expenses), total_expenses, "category"),
            "top_expenses": [
                {
                    "transaction_id": tx.id,
                    "date": tx.date,
                    "description": _merchant_label(tx),
                    "category": category.name if category else UNCATEGORIZED,
                    "amount": to_money(tx.amount),
                }
                for tx, category in top
            ],
        }

    def annual_summary(self, family_id: int, year: int, as_of: date | None = None) -> Dict[str, Any]:
        """
        Year view assembled from monthly summaries.

        Only months up to as_of (default: today) are counted, so the current
        year is a year-to-date view and a future year is empty. Year-over-year
        compares against the same months of the previous year.
        """
        if not MIN_REPORT_YEAR <= year <= MAX_REPORT_YEAR:
            raise LedgerValidationError(f"year must be between {MIN_REPORT_YEAR} and {MAX_REPORT_YEAR}")
        if as_of is None:
            as_of = local_today()
        if year < as_of.year:
            last_month = 12
        elif year == as_of.year:
            last_month = as_of.month
        else:
            last_month = 0

        months = [self.monthly_summary(family_id, year, m) for m in range(1, last_month + 1)]
        total_income = money_sum(m["total_income"] for m in months)
        total_expenses = money_sum(m["total_expenses"] for m in months)
        net = total_income - total_expenses

        by_source: Dict[str, Decimal] = defaultdict(lambda: ZERO)
        by_category: Dict[str, Decimal] = defaultdict(lambda: ZERO)
        for m in months:
            for row in m["income_sources"]:
                by_source[row["source"]] += row["amount"]
            for row in m["expense_categories"]:
                by_category[row["category"]] += row["amount"]

        quarters = []
        for q in range(4):
            chunk = months[q * 3:q * 3 + 3]
            q_income = money_sum(m["total_income"] for m in chunk)
            q_expenses = money_sum(m["total_expenses"] for m in chunk)
            quarters.append({
                "quarter": f"Q{q + 1}",
                "income": q_income,
                "expenses": q_expenses,
                "net_cash_flow": q_income - q_expenses,
                "savings_rate": _pct(q_income - q_expenses, q_income),
            })

        trends = [
            {
                "month": m["month"],
                "income": m["total_income"],
                "expenses": m["total_expenses"],
                "net_cash_flow": m["net_cash_flow"],
                "savings_rate": m["savings_rate"],
            }
            for m in months
        ]
        best = max(trends, key=lambda t: t["net_cash_flow"]) if trends else None
        worst = min(trends, key=lambda t: t["net_cash_flow"]) if trends else None

        if last_month:
            prev_start = date(year - 1, 1, 1)
            prev_end = month_bounds(year - 1, last_month)[1]
            previous = self._monthly_totals(family_id, prev_start, prev_end)
        else:
            previous = []
        prev_income = money_sum(income for _, income, _ in previous)
        prev_expenses = money_sum(spent for _, _, spent in previous)

        return {
            "year": year,
            "months_covered": last_month,
            "total_income": total_income,
            "total_expenses": total_expenses,
            "net_cash_flow": net,
            "savings_rate": _pct(net, total_income),
            "income_sources": _breakdown(dict(by_source), total_income, "source"),
            "expense_categories": _breakdown(dict(by_category), total_expenses, "category"),
            "quarters": quarters,
            "monthly_trends": trends,
            "best_month": {"month": best["month"], "net_cash_flow": best["net_cash_flow"]} if best else None,
            "worst_month": {"month": worst["month"], "net_cash_flow": worst["net_cash_flow"]} if worst else None,
            "profitable_months": sum(1 for t in trends if t["net_cash_flow"] > 0),
            "unprofitable_months": sum(1 for t in trends if t["net_cash_flow"] < 0),
            "year_over_year": {
                "previous_year": year - 1,
                "previous_income": prev_income,
                "previous_expenses": prev_expenses,
                "income_change": total_income - prev_income,
                "income_change_percentage": _pct(total_income - prev_income, prev_income),
                "expense_change": total_expenses - prev_expenses,
                "expense_change_percentage": _pct(total_expenses - prev_expenses, prev_expenses),
            },
        }

    def debt_analysis(self, family_id: int, as_of: date | None = None) -> Dict[str, Any]:
        if as_of is None:
            as_of = local_today()

        accounts = (
            self.db.query(BankAccountModel)
            .filter(
                BankAccountModel.family_id == family_id,
                BankAccountModel.account_type.in_(LIABILITY_ACCOUNT_TYPES),
                BankAccountModel.deleted_at.is_(None),
            )
            .order_by(BankAccountModel.id.asc())
            .all()
        )
        balances = [(account, abs(to_money(account.current_balance))) for account in accounts]
        total_debt = money_sum(balance for _, balance in balances)

        by_type = []
        for account_type in LIABILITY_ACCOUNT_TYPES:
            amounts = [balance for account, balance in balances if account.account_type == account_type]
            amount = money_sum(amounts)
            by_type.append({
                "account_type": account_type,
                "amount": amount,
                "count": len(amounts),
                "average_balance": to_money(amount / len(amounts)) if amounts else ZERO,
                "percentage": _pct(amount, total_debt),
            })

        window = (
            self.db.query(PaymentModel, SpendingCategoryModel)
            .join(SpendingCategoryModel, SpendingCategoryModel.id == PaymentModel.spending_category_id)
            .filter(
                PaymentModel.family_id == family_id,
                PaymentModel.status != payment_rules.STATUS_CANCELLED,
                PaymentModel.due_date >= add_months(as_of, -12),
                PaymentModel.due_date <= add_months(as_of, 1),
            )
            .order_by(PaymentModel.due_date.asc(), PaymentModel.id.asc())
            .all()
        )
        debt_payments = [payment for payment, category in window if is_debt_category(category.name)]

        # latest occurrence of each monthly series
        latest: Dict[int, PaymentModel] = {}
        for payment in debt_payments:
            if payment.frequency == FREQ_MONTHLY:
                latest[payment.series_id or payment.id] = payment
        monthly_payments = money_sum(p.amount for p in latest.values())

        income_start = add_months(as_of, -3)
        recent_income = [
            i for i in self._received_income(family_id, income_start, as_of) if i.actual_date > income_start
        ]
        average_income = to_money(money_sum(self._income_amount(i) for i in recent_income) / 3)
        dti = _pct(monthly_payments, average_income)

        monthly_interest = to_money(total_debt * MONTHLY_INTEREST_RATE)
        covers_interest = total_debt <= 0 or monthly_payments > monthly_interest

        due = [p for p in debt_payments if p.due_date <= as_of]
        paid = sum(1 for p in due if p.status == payment_rules.STATUS_PAID)
        payment_rate = _pct(paid, len(due)) if due else 100.0
        overdue = [
            p for p in debt_payments
            if payment_rules.display_status(p.status, p.due_date, as_of) == payment_rules.STATUS_OVERDUE
        ]

        open_balances = sorted(
            ((account, balance) for account, balance in balances if balance > 0),
            key=lambda ab: (-ab[1], ab[0].id),
        )

        def _target(pair):
            if pair is None:
                return None
            account, balance = pair
            return {"account_id": account.id, "account": account.name, "balance": balance}

        return {
            "as_of": as_of,
            "total_debt": total_debt,
            "account_count": len(accounts),
            "debt_by_type": by_type,
            "monthly_debt_payments": monthly_payments,
            "average_monthly_income": average_income,
            "debt_to_income_ratio": dti,
            "estimated_monthly_interest": monthly_interest,
            "months_to_payoff": months_to_payoff(total_debt, monthly_payments, monthly_interest),
            "payment_rate": payment_rate,
            "overdue_payments": len(overdue),
            "overdue_amount": money_sum(p.amount for p in overdue),
            "health_score": debt_health_score(dti, len(overdue), payment_rate, covers_interest),
            "recommendations": debt_recommendations(dti, covers_interest, len(overdue), len(accounts)),
            "strategies": {
                "avalanche": _target(open_balances[0] if open_balances else None),
                "snowball": _target(
                    min(open_balances, key=lambda ab: (ab[1], ab[0].id)) if open_balances else None
                ),
            },
        }
