"""
Tests for the reporting aggregator
"""
import pytest
from datetime import date, datetime, timezone
from decimal import Decimal

from app.application.budget import CreateBudgetCategoryUseCase
from app.application.errors import LedgerValidationError
from app.application.income_events import CreateIncomeEventUseCase, MarkIncomeReceivedUseCase
from app.application.payments import CreatePaymentUseCase, MarkPaymentPaidUseCase
from app.application.reports import ReportsService
from app.application.transactions import RecordTransactionUseCase
from app.infrastructure.db.models import SpendingCategoryModel, BankAccountModel


@pytest.fixture
def ledger(db_session, family_id):
    """
    Jan: salary 4000 received; spent 1000 groceries, 500 fun, 300 uncategorized
    Feb: salary 4000 + one-off bonus 1000 received; spent 2500 groceries, one refund
    Mar: nothing
    Budget: Needs 50 / Wants 30 / Savings 20
    """
    categories = {}
    for order, (name, pct) in enumerate([("Needs", "50"), ("Wants", "30"), ("Savings", "20")], start=1):
        categories[name], _ = CreateBudgetCategoryUseCase(db_session).execute(family_id, name, pct, sort_order=order)

    groceries = SpendingCategoryModel(
        family_id=family_id, name="Groceries", budget_category_id=categories["Needs"].id, is_active=True,
    )
    fun = SpendingCategoryModel(
        family_id=family_id, name="Fun", budget_category_id=categories["Wants"].id, is_active=True,
    )
    db_session.add_all([groceries, fun])
    db_session.commit()

    salary = CreateIncomeEventUseCase(db_session).execute(
        family_id, "Salary", "4000", date(2024, 1, 5), "monthly", source="Employer",
    )
    _, february = MarkIncomeReceivedUseCase(db_session).execute(family_id, salary.id, date(2024, 1, 5))
    MarkIncomeReceivedUseCase(db_session).execute(family_id, february.id, date(2024, 2, 6))
    bonus = CreateIncomeEventUseCase(db_session).execute(family_id, "Bonus", "1000", date(2024, 2, 20))
    MarkIncomeReceivedUseCase(db_session).execute(family_id, bonus.id, date(2024, 2, 20))

    record = RecordTransactionUseCase(db_session)
    record.execute(family_id, "1000", date(2024, 1, 10), merchant_name="Market", spending_category_id=groceries.id)
    record.execute(family_id, "500", date(2024, 1, 15), merchant_name="Cinema", spending_category_id=fun.id)
    record.execute(family_id, "300", date(2024, 1, 20), description="Cash")
    record.execute(family_id, "2500", date(2024, 2, 12), merchant_name="Market", spending_category_id=groceries.id)
    record.execute(family_id, "-100", date(2024, 2, 13), merchant_name="Market", spending_category_id=groceries.id)

    return {"categories": categories, "groceries": groceries, "fun": fun}


class TestCashFlow:
    def test_monthly_buckets_are_zero_filled(self, db_session, family_id, ledger):
        report = ReportsService(db_session).cash_flow(family_id, "2024-01-01", "2024-03-31")

        assert [(p["period"], p["total_income"], p["total_expenses"], p["net_cash_flow"]) for p in report["periods"]] == [
            ("2024-01", Decimal("4000"), Decimal("1800"), Decimal("2200")),
            ("2024-02", Decimal("5000"), Decimal("2500"), Decimal("2500")),
            ("2024-03", Decimal("0"), Decimal("0"), Decimal("0")),
        ]
        assert report["summary"]["total_income"] == Decimal("9000")
        assert report["summary"]["average_period_income"] == Decimal("3000.00")
        assert report["summary"]["average_period_expenses"] == Decimal("1433.33")

    def test_breakdowns_include_uncategorized(self, db_session, family_id, ledger):
        january = ReportsService(db_session).cash_flow(family_id, "2024-01-01", "2024-01-31")["periods"][0]

        assert [(c["category"], c["amount"], c["percentage"]) for c in january["expense_categories"]] == [
            ("Groceries", Decimal("1000"), 55.56),
            ("Fun", Decimal("500"), 27.78),
            ("Uncategorized", Decimal("300"), 16.67),
        ]
        assert [(s["source"], s["percentage"]) for s in january["income_sources"]] == [("Employer", 100.0)]

    def test_week_grouping(self, db_session, family_id, ledger):
        report = ReportsService(db_session).cash_flow(family_id, "2024-01-01", "2024-01-14", group_by="week")

        assert [p["period"] for p in report["periods"]] == ["Week of 2024-01-01", "Week of 2024-01-08"]
        assert [p["total_income"] for p in report["periods"]] == [Decimal("4000"), Decimal("0")]
        assert [p["total_expenses"] for p in report["periods"]] == [Decimal("0"), Decimal("1000")]

    def test_invalid_arguments(self, db_session, family_id):
        service = ReportsService(db_session)
        with pytest.raises(LedgerValidationError):
            service.cash_flow(family_id, "2024-01-01", "2024-01-31", group_by="fortnight")
        with pytest.raises(LedgerValidationError):
            service.cash_flow(family_id, "2024-02-01", "2024-01-01")

    def test_other_family_sees_nothing(self, db_session, other_family_id, ledger):
        report = ReportsService(db_session).cash_flow(other_family_id, "2024-01-01", "2024-03-31")
        assert report["summary"]["total_income"] == Decimal("0")
        assert all(p["expense_categories"] == [] for p in report["periods"])


class TestSpendingAnalysis:
    def test_categories_and_merchants(self, db_session, family_id, ledger):
        report = ReportsService(db_session).spending_analysis(family_id, "2024-01-01", "2024-02-29")

        assert report["total_spending"] == Decimal("4300")
        assert report["transaction_count"] == 4
        groceries = report["categories"][0]
        assert (groceries["category"], groceries["amount"], groceries["transaction_count"]) == (
            "Groceries", Decimal("3500"), 2,
        )
        assert groceries["average_transaction"] == Decimal("1750.00")
        assert report["categories"][-1]["category_id"] is None
        assert [m["merchant"] for m in report["top_merchants"]] == ["Market", "Cinema", "Cash"]

    def test_ties_sort_by_name_and_merchants_stop_at_ten(self, db_session, family_id):
        groceries = SpendingCategoryModel(family_id=family_id, name="Groceries", is_active=True)
        fun = SpendingCategoryModel(family_id=family_id, name="Fun", is_active=True)
        db_session.add_all([groceries, fun])
        db_session.commit()

        record = RecordTransactionUseCase(db_session)
        record.execute(family_id, "50", date(2024, 1, 2), merchant_name="Zed", spending_category_id=groceries.id)
        for n in range(12, 0, -1):
            category = groceries if n % 2 else fun
            record.execute(family_id, "10", date(2024, 1, 3), merchant_name=f"Shop {n:02d}",
                           spending_category_id=category.id)
        record.execute(family_id, "20", date(2024, 1, 4), merchant_name="Shop 07", spending_category_id=fun.id)
        record.execute(family_id, "10", date(2024, 1, 5), merchant_name="Shop 08", spending_category_id=groceries.id)

        report = ReportsService(db_session).spending_analysis(family_id, "2024-01-01", "2024-01-31")

        # Fun: 6 * 10 + 20 = 80, Groceries: 50 + 6 * 10 + 10 = 120
        assert [(c["category"], c["amount"]) for c in report["categories"]] == [
            ("Groceries", Decimal("120")), ("Fun", Decimal("80")),
        ]
        assert [(m["merchant"], m["amount"]) for m in report["top_merchants"]] == [
            ("Zed", Decimal("50")),
            ("Shop 07", Decimal("30")),
            ("Shop 08", Decimal("20")),
            ("Shop 01", Decimal("10")),
            ("Shop 02", Decimal("10")),
            ("Shop 03", Decimal("10")),
            ("Shop 04", Decimal("10")),
            ("Shop 05", Decimal("10")),
            ("Shop 06", Decimal("10")),
            ("Shop 09", Decimal("10")),
        ]

    def test_equal_category_totals_sort_by_name(self, db_session, family_id):
        rent = SpendingCategoryModel(family_id=family_id, name="Rent", is_active=True)
        car = SpendingCategoryModel(family_id=family_id, name="Car", is_active=True)
        db_session.add_all([rent, car])
        db_session.commit()

        record = RecordTransactionUseCase(db_session)
        record.execute(family_id, "100", date(2024, 1, 2), merchant_name="Landlord", spending_category_id=rent.id)
        record.execute(family_id, "100", date(2024, 1, 3), merchant_name="Garage", spending_category_id=car.id)

        report = ReportsService(db_session).spending_analysis(family_id, "2024-01-01", "2024-01-31")

        assert [c["category"] for c in report["categories"]] == ["Car", "Rent"]
        assert [m["merchant"] for m in report["top_merchants"]] == ["Garage", "Landlord"]

    def test_no_spending(self, db_session, family_id):
        report = ReportsService(db_session).spending_analysis(family_id, "2024-01-01", "2024-01-31")
        assert report["total_spending"] == Decimal("0")
        assert report["average_transaction"] == Decimal("0")
        assert report["categories"] == []


class TestBudgetPerformance:
    def test_january(self, db_session, family_id, ledger):
        report = ReportsService(db_session).budget_performance(family_id, "2024-01-01", "2024-01-31")

        assert [(r["category"], r["budgeted"], r["spent"], r["performance_percentage"], r["status"])
                for r in report["categories"]] == [
            ("Needs", Decimal("2000"), Decimal("1000"), 50.0, "under_budget"),
            ("Wants", Decimal("1200"), Decimal("500"), 41.67, "under_budget"),
            ("Savings", Decimal("800"), Decimal("0"), 0.0, "under_budget"),
        ]
        assert report["total_remaining"] == Decimal("2500")
        assert report["performance_score"] == 100.0

    def test_overspend_lowers_score(self, db_session, family_id):
        everything, _ = CreateBudgetCategoryUseCase(db_session).execute(family_id, "Everything", "100")
        spending = SpendingCategoryModel(
            family_id=family_id, name="Stuff", budget_category_id=everything.id, is_active=True,
        )
        db_session.add(spending)
        db_session.commit()

        income = CreateIncomeEventUseCase(db_session).execute(family_id, "Salary", "1000", date(2024, 1, 1))
        MarkIncomeReceivedUseCase(db_session).execute(family_id, income.id, date(2024, 1, 1))
        RecordTransactionUseCase(db_session).execute(family_id, "1100", date(2024, 1, 2),
                                                     spending_category_id=spending.id)

        report = ReportsService(db_session).budget_performance(family_id, "2024-01-01", "2024-01-31")

        assert report["categories"][0]["status"] == "over_budget"
        assert report["performance_score"] == 90.0

    def test_nothing_budgeted(self, db_session, family_id):
        report = ReportsService(db_session).budget_performance(family_id, "2024-01-01", "2024-01-31")
        assert report["categories"] == []
        assert report["performance_score"] == 100.0


class TestIncomeAnalysis:
    def test_sources_and_regularity(self, db_session, family_id, ledger):
        report = ReportsService(db_session).income_analysis(family_id, "2024-01-01", "2024-03-31")

        assert report["total_income"] == Decimal("9000")
        assert report["regular_income"] == Decimal("8000")
        assert report["irregular_income"] == Decimal("1000")
        assert report["average_monthly_income"] == Decimal("3000.00")
        assert [(s["source"], s["count"], s["percentage"]) for s in report["income_sources"]] == [
            ("Employer", 2, 88.89), ("Bonus", 1, 11.11),
        ]
        assert [m["amount"] for m in report["monthly_trend"]] == [Decimal("4000"), Decimal("5000"), Decimal("0")]
        assert 0.0 < report["income_consistency"] < 100.0

    def test_no_income(self, db_session, family_id):
        report = ReportsService(db_session).income_analysis(family_id, "2024-01-01", "2024-01-31")
        assert report["total_income"] == Decimal("0")
        assert report["income_consistency"] == 0.0


class TestNetWorth:
    def test_assets_and_liabilities(self, db_session, family_id, other_family_id):
        db_session.add_all([
            BankAccountModel(family_id=family_id, name="Main", account_type="checking",
                             current_balance=Decimal("5000")),
            BankAccountModel(family_id=family_id, name="Rainy day", account_type="savings",
                             current_balance=Decimal("10000")),
            BankAccountModel(family_id=family_id, name="Card", account_type="credit",
                             current_balance=Decimal("-1500")),
            BankAccountModel(family_id=family_id, name="Mortgage", account_type="loan",
                             current_balance=Decimal("20000")),
            BankAccountModel(family_id=family_id, name="Closed", account_type="checking",
                             current_balance=Decimal("999"), deleted_at=datetime(2024, 1, 1, tzinfo=timezone.utc)),
            BankAccountModel(family_id=other_family_id, name="Theirs", account_type="checking",
                             current_balance=Decimal("1")),
        ])
        db_session.commit()

        report = ReportsService(db_session).net_worth(family_id)

        assert report["total_assets"] == Decimal("15000")
        assert report["total_liabilities"] == Decimal("21500")
        assert report["current_net_worth"] == Decimal("-6500")
        assert report["liabilities_by_type"] == {"credit": Decimal("1500"), "loan": Decimal("20000")}
        assert report["debt_to_asset_ratio"] == 143.33
        assert report["account_count"] == 4

    def test_no_accounts(self, db_session, family_id):
        report = ReportsService(db_session).net_worth(family_id)
        assert report["current_net_worth"] == Decimal("0")
        assert report["debt_to_asset_ratio"] == 0.0


class TestSavingsRate:
    def test_monthly_rates_and_trend(self, db_session, family_id, ledger):
        report = ReportsService(db_session).savings_rate(family_id, "2024-01-01", "2024-03-31", target_rate=20)

        assert [(m["month"], m["savings_rate"]) for m in report["months"]] == [
            ("2024-01", 55.0), ("2024-02", 50.0), ("2024-03", 0.0),
        ]
        assert report["overall_savings_rate"] == 52.22
        assert report["average_savings_rate"] == 35.0
        assert report["months_above_target"] == 2
        assert report["best_month"]["month"] == "2024-01"
        assert report["worst_month"]["month"] == "2024-03"
        assert report["trend"] == "volatile"

    def test_single_month_is_stable(self, db_session, family_id, ledger):
        report = ReportsService(db_session).savings_rate(family_id, "2024-01-01", "2024-01-31")
        assert report["trend"] == "stable"
        assert report["target_savings_rate"] == 20.0


class TestMonthlySummary:
    def test_january(self, db_session, family_id, ledger):
        report = ReportsService(db_session).monthly_summary(family_id, 2024, 1)

        assert report["month"] == "2024-01"
        assert report["net_cash_flow"] == Decimal("2200")
        assert report["savings_rate"] == 55.0
        assert [(e["description"], e["category"]) for e in report["top_expenses"]] == [
            ("Market", "Groceries"), ("Cinema", "Fun"), ("Cash", "Uncategorized"),
        ]

    def test_equal_expenses_order_by_name_then_date(self, db_session, family_id):
        record = RecordTransactionUseCase(db_session)
        record.execute(family_id, "75", date(2024, 1, 20), merchant_name="Bakery")
        record.execute(family_id, "75", date(2024, 1, 25), merchant_name="Apothecary")
        record.execute(family_id, "75", date(2024, 1, 3), merchant_name="Bakery")
        record.execute(family_id, "90", date(2024, 1, 28), merchant_name="Zoo")

        report = ReportsService(db_session).monthly_summary(family_id, 2024, 1)

        assert [(e["description"], e["date"]) for e in report["top_expenses"]] == [
            ("Zoo", date(2024, 1, 28)),
            ("Apothecary", date(2024, 1, 25)),
            ("Bakery", date(2024, 1, 3)),
            ("Bakery", date(2024, 1, 20)),
        ]

    def test_invalid_month(self, db_session, family_id):
        with pytest.raises(LedgerValidationError):
            ReportsService(db_session).monthly_summary(family_id, 2024, 13)


class TestAnnualSummary:
    def test_year_to_date_from_monthly_summaries(self, db_session, family_id, ledger):
        report = ReportsService(db_session).annual_summary(family_id, 2024, as_of=date(2024, 3, 31))

        assert report["months_covered"] == 3
        assert (report["total_income"], report["total_expenses"], report["net_cash_flow"]) == (
            Decimal("9000"), Decimal("4300"), Decimal("4700"),
        )
        assert report["savings_rate"] == 52.22
        assert [(s["source"], s["amount"]) for s in report["income_sources"]] == [
            ("Employer", Decimal("8000")), ("Bonus", Decimal("1000")),
        ]
        assert [c["category"] for c in report["expense_categories"]] == ["Groceries", "Fun", "Uncategorized"]
        assert [(q["quarter"], q["net_cash_flow"]) for q in report["quarters"]] == [
            ("Q1", Decimal("4700")), ("Q2", Decimal("0")), ("Q3", Decimal("0")), ("Q4", Decimal("0")),
        ]
        assert report["quarters"][1]["savings_rate"] == 0.0
        assert [t["month"] for t in report["monthly_trends"]] == ["2024-01", "2024-02", "2024-03"]
        assert report["best_month"] == {"month": "2024-02", "net_cash_flow": Decimal("2500")}
        assert report["worst_month"] == {"month": "2024-03", "net_cash_flow": Decimal("0")}
        assert (report["profitable_months"], report["unprofitable_months"]) == (2, 0)
        assert report["year_over_year"]["income_change"] == Decimal("9000")
        assert report["year_over_year"]["income_change_percentage"] == 0.0

    def test_year_over_year_uses_same_months(self, db_session, family_id, ledger):
        report = ReportsService(db_session).annual_summary(family_id, 2025, as_of=date(2025, 1, 31))

        yoy = report["year_over_year"]
        assert (yoy["previous_income"], yoy["previous_expenses"]) == (Decimal("4000"), Decimal("1800"))
        assert yoy["income_change"] == Decimal("-4000")
        assert yoy["income_change_percentage"] == -100.0

    def test_future_year_is_empty(self, db_session, family_id, ledger):
        report = ReportsService(db_session).annual_summary(family_id, 2030, as_of=date(2024, 3, 31))
        assert report["months_covered"] == 0
        assert report["total_income"] == Decimal("0")
        assert report["best_month"] is None
        assert report["monthly_trends"] == []

    @pytest.mark.parametrize("year", [1999, 2101])
    def test_year_bounds(self, db_session, family_id, year):
        with pytest.raises(LedgerValidationError):
            ReportsService(db_session).annual_summary(family_id, year, as_of=date(2024, 3, 31))


@pytest.fixture
def debts(db_session, family_id):
    """
    Card -1500 (credit), Car loan 8500 (loan); monthly loan payment 400
    paid in Jan and Feb, March occurrence unpaid; 3000 received in each
    of the last three months.
    """
    db_session.add_all([
        BankAccountModel(family_id=family_id, name="Card", account_type="credit",
                         current_balance=Decimal("-1500")),
        BankAccountModel(family_id=family_id, name="Car loan", account_type="loan",
                         current_balance=Decimal("8500")),
        BankAccountModel(family_id=family_id, name="Old loan", account_type="loan",
                         current_balance=Decimal("700"), deleted_at=datetime(2024, 1, 1, tzinfo=timezone.utc)),
        BankAccountModel(family_id=family_id, name="Main", account_type="checking",
                         current_balance=Decimal("5000")),
    ])
    loans = SpendingCategoryModel(family_id=family_id, name="Loan payment", is_active=True)
    groceries = SpendingCategoryModel(family_id=family_id, name="Groceries", is_active=True)
    db_session.add_all([loans, groceries])
    db_session.commit()

    car = CreatePaymentUseCase(db_session).execute(
        family_id, "Car loan", "400", date(2024, 1, 10), "recurring", "monthly", spending_category_id=loans.id,
    )
    _, february = MarkPaymentPaidUseCase(db_session).execute(family_id, car.id, paid_date=date(2024, 1, 10))
    MarkPaymentPaidUseCase(db_session).execute(family_id, february.id, paid_date=date(2024, 2, 10))
    CreatePaymentUseCase(db_session).execute(
        family_id, "Shop", "300", date(2024, 3, 1), spending_category_id=groceries.id,
    )

    for received_on in (date(2024, 1, 20), date(2024, 2, 20), date(2024, 3, 5)):
        income = CreateIncomeEventUseCase(db_session).execute(family_id, "Pay", "3000", received_on)
        MarkIncomeReceivedUseCase(db_session).execute(family_id, income.id, received_on)


class TestDebtAnalysis:
    def test_totals_ratios_and_score(self, db_session, family_id, debts):
        report = ReportsService(db_session).debt_analysis(family_id, as_of=date(2024, 3, 15))

        assert report["total_debt"] == Decimal("10000")
        assert report["account_count"] == 2
        assert [(t["account_type"], t["amount"], t["percentage"]) for t in report["debt_by_type"]] == [
            ("credit", Decimal("1500"), 15.0), ("loan", Decimal("8500"), 85.0),
        ]
        assert report["monthly_debt_payments"] == Decimal("400")
        assert report["average_monthly_income"] == Decimal("3000.00")
        assert report["debt_to_income_ratio"] == 13.33
        assert report["estimated_monthly_interest"] == Decimal("150.00")
        assert report["months_to_payoff"] == 40
        assert report["payment_rate"] == 66.67
        assert (report["overdue_payments"], report["overdue_amount"]) == (1, Decimal("400"))
        # -20 payment rate, -10 one overdue
        assert report["health_score"] == 70
        assert [r["priority"] for r in report["recommendations"]] == ["warning"]
        assert report["strategies"]["avalanche"]["account"] == "Car loan"
        assert report["strategies"]["snowball"]["account"] == "Card"

    def test_no_debt(self, db_session, family_id):
        report = ReportsService(db_session).debt_analysis(family_id, as_of=date(2024, 3, 15))

        assert report["total_debt"] == Decimal("0")
        assert report["months_to_payoff"] == 0
        assert report["payment_rate"] == 100.0
        assert report["health_score"] == 100
        assert report["recommendations"] == []
        assert report["strategies"] == {"avalanche": None, "snowball": None}

    def test_other_family_sees_nothing(self, db_session, other_family_id, debts):
        report = ReportsService(db_session).debt_analysis(other_family_id, as_of=date(2024, 3, 15))
        assert report["total_debt"] == Decimal("0")
        assert report["monthly_debt_payments"] == Decimal("0")
