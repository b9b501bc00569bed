"""
Tests for budget categories and income allocation
"""
import pytest
from datetime import date
from decimal import Decimal

from app.application.budget import (
    CreateBudgetCategoryUseCase, UpdateBudgetCategoryUseCase, DeactivateBudgetCategoryUseCase,
    DeleteBudgetCategoryUseCase, AllocateIncomeUseCase, ApplyBudgetTemplateUseCase,
    list_budget_categories, get_budget_overview, list_allocations, get_category_consumption,
    get_budget_projections, create_budget_template,
)
from app.application.errors import InvalidStateError, LedgerValidationError, NotFoundError
from app.application.income_events import CreateIncomeEventUseCase, MarkIncomeReceivedUseCase
from app.application.transactions import RecordTransactionUseCase
from app.infrastructure.auditlog.repository import AuditLogRepository
from app.infrastructure.db.models import BudgetAllocationModel, SpendingCategoryModel


def _category(db, family_id, name, pct, sort_order=0):
    category, _ = CreateBudgetCategoryUseCase(db).execute(family_id, name, pct, sort_order=sort_order)
    return category


def _received(db, family_id, amount, received_on=date(2024, 1, 15)):
    income = CreateIncomeEventUseCase(db).execute(family_id, "Salary", amount, received_on)
    income, _ = MarkIncomeReceivedUseCase(db).execute(family_id, income.id, received_on)
    return income


def _amounts(db, family_id, income_id):
    return [(a.budget_category_id, a.amount) for a in list_allocations(db, family_id, income_id)]


class TestAllocation:
    def test_fifty_thirty_twenty_remainder_goes_last(self, db_session, family_id):
        needs = _category(db_session, family_id, "Needs", "50", 1)
        wants = _category(db_session, family_id, "Wants", "30", 2)
        savings = _category(db_session, family_id, "Savings", "20", 3)

        income = _received(db_session, family_id, "100.01")

        assert _amounts(db_session, family_id, income.id) == [
            (needs.id, Decimal("50.01")),
            (wants.id, Decimal("30.00")),
            (savings.id, Decimal("20.00")),
        ]

    def test_thirds_sum_exactly(self, db_session, family_id):
        a = _category(db_session, family_id, "A", "33", 1)
        b = _category(db_session, family_id, "B", "33", 2)
        c = _category(db_session, family_id, "C", "34", 3)

        income = _received(db_session, family_id, "100.01")

        rows = _amounts(db_session, family_id, income.id)
        assert rows == [(a.id, Decimal("33.00")), (b.id, Decimal("33.00")), (c.id, Decimal("34.01"))]
        assert sum(amount for _, amount in rows) == Decimal("100.01")

    def test_under_hundred_percent_still_sums_to_received_amount(self, db_session, family_id):
        needs = _category(db_session, family_id, "Needs", "50", 1)
        wants = _category(db_session, family_id, "Wants", "30", 2)

        income = _received(db_session, family_id, "100.01")

        rows = _amounts(db_session, family_id, income.id)
        assert rows == [(needs.id, Decimal("50.01")), (wants.id, Decimal("50.00"))]
        assert sum(amount for _, amount in rows) == Decimal("100.01")

    def test_inactive_categories_are_skipped(self, db_session, family_id):
        keep = _category(db_session, family_id, "Keep", "60", 1)
        dropped = _category(db_session, family_id, "Dropped", "40", 2)
        DeactivateBudgetCategoryUseCase(db_session).execute(family_id, dropped.id)

        income = _received(db_session, family_id, "1000")

        assert _amounts(db_session, family_id, income.id) == [(keep.id, Decimal("1000.00"))]

    def test_no_categories_means_no_rows(self, db_session, family_id):
        income = _received(db_session, family_id, "1000")
        assert list_allocations(db_session, family_id, income.id) == []

    def test_allocations_are_generated_once(self, db_session, family_id):
        _category(db_session, family_id, "All", "100")
        income = _received(db_session, family_id, "1000")

        with pytest.raises(InvalidStateError):
            AllocateIncomeUseCase(db_session).execute(family_id, income.id)
        assert db_session.query(BudgetAllocationModel).count() == 1

    def test_scheduled_income_cannot_be_allocated(self, db_session, family_id):
        _category(db_session, family_id, "All", "100")
        income = CreateIncomeEventUseCase(db_session).execute(family_id, "Salary", "1000", date(2024, 1, 15))

        with pytest.raises(InvalidStateError):
            AllocateIncomeUseCase(db_session).execute(family_id, income.id)

    def test_other_family_income(self, db_session, family_id, other_family_id):
        income = _received(db_session, family_id, "1000")
        with pytest.raises(NotFoundError):
            list_allocations(db_session, other_family_id, income.id)

    def test_generation_is_audited(self, db_session, family_id):
        _category(db_session, family_id, "All", "100")
        income = _received(db_session, family_id, "250")

        events = AuditLogRepository(db_session).list_events(family_id, entity_type="IncomeEvent", entity_id=income.id)
        generated = [e for e in events if e.event_type == "budget_allocations_generated"]
        assert len(generated) == 1
        assert generated[0].payload_json["total"] == "250.00"


class TestBudgetCategories:
    def test_over_hundred_percent_is_a_warning(self, db_session, family_id):
        _category(db_session, family_id, "Needs", "70")

        category, warnings = CreateBudgetCategoryUseCase(db_session).execute(family_id, "Wants", "40")

        assert category.id is not None
        assert len(warnings) == 1
        assert "110" in warnings[0]

    @pytest.mark.parametrize("pct", ["-1", "100.01", "abc"])
    def test_percentage_bounds(self, db_session, family_id, pct):
        with pytest.raises(LedgerValidationError):
            CreateBudgetCategoryUseCase(db_session).execute(family_id, "Bad", pct)

    def test_update_and_list(self, db_session, family_id):
        first = _category(db_session, family_id, "First", "10", 2)
        second = _category(db_session, family_id, "Second", "20", 1)

        updated, warnings = UpdateBudgetCategoryUseCase(db_session).execute(
            family_id, first.id, name="Renamed", target_percentage="15",
        )

        assert updated.name == "Renamed"
        assert updated.target_percentage == Decimal("15")
        assert warnings == []
        assert [c.id for c in list_budget_categories(db_session, family_id)] == [second.id, first.id]

    def test_update_rejects_unknown_field(self, db_session, family_id):
        category = _category(db_session, family_id, "First", "10")
        with pytest.raises(LedgerValidationError):
            UpdateBudgetCategoryUseCase(db_session).execute(family_id, category.id, budget_id=2)

    def test_deactivated_listed_only_on_request(self, db_session, family_id):
        category = _category(db_session, family_id, "Old", "10")
        DeactivateBudgetCategoryUseCase(db_session).execute(family_id, category.id)

        assert list_budget_categories(db_session, family_id) == []
        assert [c.id for c in list_budget_categories(db_session, family_id, include_inactive=True)] == [category.id]

    def test_delete_refused_while_spending_category_links_it(self, db_session, family_id):
        category = _category(db_session, family_id, "Food", "30")
        db_session.add(SpendingCategoryModel(
            family_id=family_id, name="Groceries", budget_category_id=category.id, is_active=True,
        ))
        db_session.commit()

        with pytest.raises(InvalidStateError):
            DeleteBudgetCategoryUseCase(db_session).execute(family_id, category.id)

    def test_delete_removes_allocations(self, db_session, family_id):
        category = _category(db_session, family_id, "All", "100")
        _received(db_session, family_id, "1000")
        category_id = category.id

        DeleteBudgetCategoryUseCase(db_session).execute(family_id, category_id)

        assert db_session.query(BudgetAllocationModel).count() == 0
        assert list_budget_categories(db_session, family_id, include_inactive=True) == []

    def test_overview(self, db_session, family_id):
        _category(db_session, family_id, "Needs", "50", 1)
        _category(db_session, family_id, "Wants", "30", 2)

        overview = get_budget_overview(db_session, family_id)

        assert [c["name"] for c in overview["categories"]] == ["Needs", "Wants"]
        assert overview["total_percentage"] == Decimal("80")
        assert overview["unallocated_percentage"] == Decimal("20")
        assert overview["is_complete"] is False
        assert overview["is_over_allocated"] is False
        assert overview["warnings"] == []


class TestCategoryConsumption:
    def test_budgeted_versus_spent(self, db_session, family_id):
        food = _category(db_session, family_id, "Food", "40", 1)
        _category(db_session, family_id, "Rest", "60", 2)
        groceries = SpendingCategoryModel(
            family_id=family_id, name="Groceries", budget_category_id=food.id, is_active=True,
        )
        db_session.add(groceries)
        db_session.commit()
        _received(db_session, family_id, "1000", date(2024, 1, 5))

        record = RecordTransactionUseCase(db_session)
        record.execute(family_id, "120", date(2024, 1, 10), spending_category_id=groceries.id)
        record.execute(family_id, "80", date(2024, 1, 20), spending_category_id=groceries.id)
        # refund and out-of-range rows do not count
        record.execute(family_id, "-30", date(2024, 1, 21), spending_category_id=groceries.id)
        record.execute(family_id, "500", date(2024, 2, 1), spending_category_id=groceries.id)

        result = get_category_consumption(db_session, family_id, food.id, "2024-01-01", "2024-01-31")

        assert result["budgeted"] == Decimal("400")
        assert result["spent"] == Decimal("200")
        assert result["remaining"] == Decimal("200")
        assert result["performance_percentage"] == 50.0


class TestProjections:
    def test_six_month_average_drives_every_month(self, db_session, family_id):
        needs = _category(db_session, family_id, "Needs", "50", 1)
        _category(db_session, family_id, "Wants", "30", 2)
        _received(db_session, family_id, "3000", date(2023, 9, 10))  # outside the lookback
        _received(db_session, family_id, "3000", date(2024, 1, 15))
        _received(db_session, family_id, "3000", date(2024, 3, 1))

        result = get_budget_projections(db_session, family_id, months=3, as_of=date(2024, 3, 15))

        assert result["average_monthly_income"] == Decimal("1000.00")
        assert [m["month"] for m in result["months"]] == ["2024-03", "2024-04", "2024-05"]
        first = result["months"][0]
        assert first["total_budget"] == Decimal("800.00")
        assert first["projected_spending"] == Decimal("720.00")
        assert (first["categories"][0]["budget_category_id"], first["categories"][0]["budget_amount"],
                first["categories"][0]["projected_spending"]) == (needs.id, Decimal("500.00"), Decimal("450.00"))

    def test_no_income_projects_zero(self, db_session, family_id):
        _category(db_session, family_id, "Needs", "100")
        result = get_budget_projections(db_session, family_id, months=1, as_of=date(2024, 3, 15))
        assert result["months"][0]["total_budget"] == Decimal("0.00")

    @pytest.mark.parametrize("months", [0, 25])
    def test_month_count_bounds(self, db_session, family_id, months):
        with pytest.raises(LedgerValidationError):
            get_budget_projections(db_session, family_id, months=months, as_of=date(2024, 3, 15))


class TestBudgetTemplates:
    def test_snapshot_in_sort_order(self, db_session, family_id):
        _category(db_session, family_id, "Wants", "30", 2)
        _category(db_session, family_id, "Needs", "50", 1)
        hidden = _category(db_session, family_id, "Old", "5", 3)
        DeactivateBudgetCategoryUseCase(db_session).execute(family_id, hidden.id)

        template = create_budget_template(db_session, family_id, "  Fifty thirty  ")

        assert template["name"] == "Fifty thirty"
        assert template["categories"] == [
            {"name": "Needs", "target_percentage": Decimal("50.00")},
            {"name": "Wants", "target_percentage": Decimal("30.00")},
        ]

    def test_apply_matches_by_name_and_deactivates_the_rest(self, db_session, family_id):
        needs = _category(db_session, family_id, "Needs", "50", 1)
        wants = _category(db_session, family_id, "Wants", "30", 2)
        fun = _category(db_session, family_id, "Fun", "20", 3)

        applied, warnings = ApplyBudgetTemplateUseCase(db_session).execute(family_id, [
            {"name": "Wants", "target_percentage": "20"},
            {"name": "Needs", "target_percentage": "60"},
            {"name": "Savings", "target_percentage": "20"},
        ])

        assert warnings == []
        assert [c.id for c in applied[:2]] == [wants.id, needs.id]
        active = list_budget_categories(db_session, family_id)
        assert [(c.name, c.target_percentage, c.sort_order) for c in active] == [
            ("Wants", Decimal("20"), 1), ("Needs", Decimal("60"), 2), ("Savings", Decimal("20"), 3),
        ]
        assert active[2].color == "#F59E0B"
        assert fun.id not in {c.id for c in active}

        event = AuditLogRepository(db_session).list_events(family_id, entity_type="BudgetCategory")[-1]
        assert event.event_type == "budget_template_applied"
        assert event.payload_json["deactivated_category_ids"] == [fun.id]

    def test_apply_over_hundred_warns(self, db_session, family_id):
        _, warnings = ApplyBudgetTemplateUseCase(db_session).execute(family_id, [
            {"name": "Needs", "target_percentage": "70"},
            {"name": "Wants", "target_percentage": "40"},
        ])
        assert len(warnings) == 1

    @pytest.mark.parametrize("lines", [
        [],
        [{"name": "Needs", "target_percentage": "50"}, {"name": "Needs", "target_percentage": "10"}],
        [{"name": " ", "target_percentage": "50"}],
        [{"name": "Needs", "target_percentage": "101"}],
    ])
    def test_bad_template_changes_nothing(self, db_session, family_id, lines):
        keep = _category(db_session, family_id, "Keep", "100")
        with pytest.raises(LedgerValidationError):
            ApplyBudgetTemplateUseCase(db_session).execute(family_id, lines)
        assert [c.id for c in list_budget_categories(db_session, family_id)] == [keep.id]
