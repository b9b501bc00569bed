"""
Budget allocation engine: percentage-of-income categories and the
allocations generated when income is received.

Category percentages are a soft limit: exceeding 100% across active
categories returns warnings, never an error.
"""
import logging
from datetime import date as date_type
from decimal import Decimal
from typing import Dict, Any, List, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.application.common import get_owned, require_date, require_text
from app.application.errors import InvalidStateError, LedgerValidationError
from app.domain import income_event as income_rules
from app.domain.budget import (
    PROJECTION_LOOKBACK_MONTHS, BudgetAllocation, TemplateCategory,
    allocate_by_percentages, percentage_warnings, project_category, template_color,
)
from app.domain.periods import month_starts
from app.domain.recurrence import add_months
from app.infrastructure.auditlog.repository import AuditLogRepository
from app.infrastructure.db.models import (
    BudgetCategoryModel, BudgetAllocationModel, IncomeEventModel,
    SpendingCategoryModel, TransactionModel,
)
from app.infrastructure.db.session import unit_of_work
from app.utils.dates import local_today
from app.utils.money import ZERO, HUNDRED, to_money, share_pct, money_sum
from app.utils.validation import parse_amount

logger = logging.getLogger(__name__)


def _parse_percentage(value) -> Decimal:
    try:
        pct = parse_amount(value)
    except ValueError as e:
        raise LedgerValidationError(f"target_percentage: {e}") from e
    if pct < 0 or pct > HUNDRED:
        raise LedgerValidationError("target_percentage must be between 0 and 100")
    return pct


def _active_categories(db: Session, family_id: int) -> List[BudgetCategoryModel]:
    return (
        db.query(BudgetCategoryModel)
        .filter(BudgetCategoryModel.family_id == family_id, BudgetCategoryModel.is_active.is_(True))
        .order_by(BudgetCategoryModel.sort_order.asc(), BudgetCategoryModel.id.asc())
        .all()
    )


def active_percentage_total(db: Session, family_id: int) -> Decimal:
    total = (
        db.query(func.coalesce(func.sum(BudgetCategoryModel.target_percentage), 0))
        .filter(BudgetCategoryModel.family_id == family_id, BudgetCategoryModel.is_active.is_(True))
        .scalar()
    )
    return to_money(total)


def _warnings_after_change(db: Session, family_id: int) -> List[str]:
    db.flush()
    total = active_percentage_total(db, family_id)
    warnings = percentage_warnings(total)
    if warnings:
        logger.warning("Family %d active budget categories total %s%%", family_id, total)
    return warnings


def delete_allocations(db: Session, income_event_id: int) -> int:
    """Remove every allocation of an income event. Caller owns the transaction."""
    return (
        db.query(BudgetAllocationModel)
        .filter(BudgetAllocationModel.income_event_id == income_event_id)
        .delete(synchronize_session=False)
    )


# ---------------------------------------------------------------------------
# Budget categories
# ---------------------------------------------------------------------------


class CreateBudgetCategoryUseCase:
    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditLogRepository(db)

    def execute(
        self,
        family_id: int,
        name: str,
        target_percentage,
        color: str | None = None,
        sort_order: int = 0,
        actor_user_id: int | None = None,
    ) -> Tuple[BudgetCategoryModel, List[str]]:
        """Returns (category, warnings)."""
        name = require_text(name, "name")
        pct = _parse_percentage(target_percentage)

        with unit_of_work(self.db):
            category = BudgetCategoryModel(
                family_id=family_id,
                name=name,
                target_percentage=pct,
                color=color,
                sort_order=sort_order,
                is_active=True,
            )
            self.db.add(category)
            self.db.flush()
            warnings = _warnings_after_change(self.db, family_id)
            self.audit.append_event(
                family_id=family_id,
                event_type="budget_category_created",
                entity_type="BudgetCategory",
                entity_id=category.id,
                payload=BudgetAllocation.category_changed(category.id, name, pct, True),
                actor_user_id=actor_user_id,
            )

        logger.info("Created budget category %d '%s' (%s%%)", category.id, name, pct)
        return category, warnings


class UpdateBudgetCategoryUseCase:
    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditLogRepository(db)

    def execute(
        self,
        family_id: int,
        category_id: int,
        actor_user_id: int | None = None,
        **changes,
    ) -> Tuple[BudgetCategoryModel, List[str]]:
        """Apply name/target_percentage/color/sort_order/is_active changes."""
        allowed = {"name", "target_percentage", "color", "sort_order", "is_active"}
        unknown = set(changes) - allowed
        if unknown:
            raise LedgerValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")
        if "name" in changes:
            changes["name"] = require_text(changes["name"], "name")
        if "target_percentage" in changes:
            changes["target_percentage"] = _parse_percentage(changes["target_percentage"])

        with unit_of_work(self.db):
            category = get_owned(self.db, BudgetCategoryModel, family_id, category_id, "Budget category")
            for field, value in changes.items():
                setattr(category, field, value)
            warnings = _warnings_after_change(self.db, family_id)
            self.audit.append_event(
                family_id=family_id,
                event_type="budget_category_updated",
                entity_type="BudgetCategory",
                entity_id=category.id,
                payload=BudgetAllocation.category_changed(
                    category.id, category.name, category.target_percentage, category.is_active,
                ),
                actor_user_id=actor_user_id,
            )

        return category, warnings


class DeactivateBudgetCategoryUseCase:
    """Inactive categories stop receiving allocations; history is kept."""

    def __init__(self, db: Session):
        self.db = db

    def execute(self, family_id: int, category_id: int, actor_user_id: int | None = None) -> BudgetCategoryModel:
        category, _ = UpdateBudgetCategoryUseCase(self.db).execute(
            family_id, category_id, actor_user_id=actor_user_id, is_active=False,
        )
        logger.info("Deactivated budget category %d", category_id)
        return category


class DeleteBudgetCategoryUseCase:
    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditLogRepository(db)

    def execute(self, family_id: int, category_id: int, actor_user_id: int | None = None) -> None:
        with unit_of_work(self.db):
            category = get_owned(self.db, BudgetCategoryModel, family_id, category_id, "Budget category")
            linked = (
                self.db.query(func.count(SpendingCategoryModel.id))
                .filter(SpendingCategoryModel.budget_category_id == category.id)
                .scalar()
            )
            if linked:
                raise InvalidStateError(
                    f"Budget category is referenced by {linked} spending categor{'y' if linked == 1 else 'ies'}"
                )
            removed = (
                self.db.query(BudgetAllocationModel)
                .filter(BudgetAllocationModel.budget_category_id == category.id)
                .delete(synchronize_session=False)
            )
            self.audit.append_event(
                family_id=family_id,
                event_type="budget_category_deleted",
                entity_type="BudgetCategory",
                entity_id=category.id,
                payload={"budget_category_id": category.id, "name": category.name, "removed_allocations": removed},
                actor_user_id=actor_user_id,
            )
            self.db.delete(category)

        logger.info("Deleted budget category %d (%d allocations removed)", category_id, removed)


def list_budget_categories(db: Session, family_id: int, include_inactive: bool = False) -> List[BudgetCategoryModel]:
    query = db.query(BudgetCategoryModel).filter(BudgetCategoryModel.family_id == family_id)
    if not include_inactive:
        query = query.filter(BudgetCategoryModel.is_active.is_(True))
    return query.order_by(BudgetCategoryModel.sort_order.asc(), BudgetCategoryModel.id.asc()).all()


def get_budget_overview(db: Session, family_id: int) -> Dict[str, Any]:
    categories = _active_categories(db, family_id)
    total = sum((to_money(c.target_percentage) for c in categories), ZERO)
    return {
        "categories": [
            {
                "id": c.id,
                "name": c.name,
                "target_percentage": to_money(c.target_percentage),
                "color": c.color,
                "sort_order": c.sort_order,
            }
            for c in categories
        ],
        "total_percentage": total,
        "unallocated_percentage": max(ZERO, HUNDRED - total),
        "is_complete": total == HUNDRED,
        "is_over_allocated": total > HUNDRED,
        "warnings": percentage_warnings(total),
    }


# ---------------------------------------------------------------------------
# Allocations
# ---------------------------------------------------------------------------


class AllocateIncomeUseCase:
    """
    Split a received income event's effective amount across active categories.

    The rows always sum to the effective amount exactly; the last category
    (by sort order, then id) takes the rounding remainder. No active
    categories -> no rows, the whole amount stays unbudgeted.
    """

    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditLogRepository(db)

    def execute(
        self, family_id: int, income_event_id: int, actor_user_id: int | None = None,
    ) -> List[BudgetAllocationModel]:
        with unit_of_work(self.db):
            allocations = self.apply(family_id, income_event_id, actor_user_id)
        return allocations

    def apply(
        self, family_id: int, income_event_id: int, actor_user_id: int | None = None,
    ) -> List[BudgetAllocationModel]:
        income = get_owned(self.db, IncomeEventModel, family_id, income_event_id, "Income event", for_update=True)
        if income.status != income_rules.STATUS_RECEIVED:
            raise InvalidStateError("Only received income can be allocated")
        existing = (
            self.db.query(func.count(BudgetAllocationModel.id))
            .filter(BudgetAllocationModel.income_event_id == income.id)
            .scalar()
        )
        if existing:
            raise InvalidStateError("Income event is already allocated")

        categories = _active_categories(self.db, family_id)
        if not categories:
            logger.info("No active budget categories; income_event=%d left unbudgeted", income.id)
            return []

        effective = income_rules.effective_amount(income.status, income.amount, income.actual_amount)
        pct_by_id = {c.id: to_money(c.target_percentage) for c in categories}
        rows = allocate_by_percentages(effective, [(c.id, pct_by_id[c.id]) for c in categories])

        allocations = []
        for category_id, amount in rows:
            allocation = BudgetAllocationModel(
                family_id=family_id,
                budget_category_id=category_id,
                income_event_id=income.id,
                amount=amount,
                percentage=pct_by_id[category_id],
            )
            self.db.add(allocation)
            allocations.append(allocation)
        self.db.flush()

        self.audit.append_event(
            family_id=family_id,
            event_type="budget_allocations_generated",
            entity_type="IncomeEvent",
            entity_id=income.id,
            payload=BudgetAllocation.generated(income.id, effective, rows),
            actor_user_id=actor_user_id,
        )
        logger.info("Allocated %s of income_event=%d across %d categories", effective, income.id, len(rows))
        return allocations


def list_allocations(db: Session, family_id: int, income_event_id: int) -> List[BudgetAllocationModel]:
    income = get_owned(db, IncomeEventModel, family_id, income_event_id, "Income event")
    return (
        db.query(BudgetAllocationModel)
        .filter(BudgetAllocationModel.income_event_id == income.id)
        .order_by(BudgetAllocationModel.id.asc())
        .all()
    )


def budgeted_by_category(db: Session, family_id: int, start: date_type, end: date_type) -> Dict[int, Decimal]:
    """Σ allocations per category for income received in [start, end]."""
    rows = (
        db.query(BudgetAllocationModel.budget_category_id, func.sum(BudgetAllocationModel.amount))
        .join(IncomeEventModel, IncomeEventModel.id == BudgetAllocationModel.income_event_id)
        .filter(
            BudgetAllocationModel.family_id == family_id,
            IncomeEventModel.actual_date >= start,
            IncomeEventModel.actual_date <= end,
        )
        .group_by(BudgetAllocationModel.budget_category_id)
        .all()
    )
    return {category_id: to_money(total) for category_id, total in rows}


def spent_by_budget_category(db: Session, family_id: int, start: date_type, end: date_type) -> Dict[int, Decimal]:
    """Σ expense transactions per budget category, through the spending-category link."""
    rows = (
        db.query(SpendingCategoryModel.budget_category_id, func.sum(TransactionModel.amount))
        .join(SpendingCategoryModel, SpendingCategoryModel.id == TransactionModel.spending_category_id)
        .filter(
            TransactionModel.family_id == family_id,
            TransactionModel.amount > 0,
            TransactionModel.date >= start,
            TransactionModel.date <= end,
            SpendingCategoryModel.budget_category_id.isnot(None),
        )
        .group_by(SpendingCategoryModel.budget_category_id)
        .all()
    )
    return {category_id: to_money(total) for category_id, total in rows}


def get_category_consumption(
    db: Session, family_id: int, category_id: int, start_date, end_date,
) -> Dict[str, Any]:
    start = require_date(start_date, "start_date")
    end = require_date(end_date, "end_date")
    category = get_owned(db, BudgetCategoryModel, family_id, category_id, "Budget category")

    budgeted = budgeted_by_category(db, family_id, start, end).get(category.id, ZERO)
    spent = spent_by_budget_category(db, family_id, start, end).get(category.id, ZERO)
    return {
        "budget_category_id": category.id,
        "name": category.name,
        "budgeted": budgeted,
        "spent": spent,
        "remaining": budgeted - spent,
        "performance_percentage": share_pct(spent, budgeted),
    }


# ---------------------------------------------------------------------------
# Projections and templates
# ---------------------------------------------------------------------------


def get_budget_projections(
    db: Session, family_id: int, months: int = PROJECTION_LOOKBACK_MONTHS, as_of: date_type | None = None,
) -> Dict[str, Any]:
    """
    Expected budget per active category for `months` calendar months,
    starting with the month of as_of (default: today).

    The monthly base is the income received in the PROJECTION_LOOKBACK_MONTHS
    months up to as_of, divided by that many months; each category expects
    PROJECTED_UTILIZATION of its budget to be spent.
    """
    if not 1 <= months <= 24:
        raise LedgerValidationError("months must be between 1 and 24")
    if as_of is None:
        as_of = local_today()

    received = (
        db.query(IncomeEventModel)
        .filter(
            IncomeEventModel.family_id == family_id,
            IncomeEventModel.status == income_rules.STATUS_RECEIVED,
            IncomeEventModel.actual_date > add_months(as_of, -PROJECTION_LOOKBACK_MONTHS),
            IncomeEventModel.actual_date <= as_of,
        )
        .all()
    )
    total_received = money_sum(
        income_rules.effective_amount(i.status, i.amount, i.actual_amount) for i in received
    )
    average = to_money(total_received / PROJECTION_LOOKBACK_MONTHS)

    categories = _active_categories(db, family_id)
    first = as_of.replace(day=1)
    rows = []
    for month_start in month_starts(first, add_months(first, months - 1)):
        lines = []
        for category in categories:
            budget, projected = project_category(average, category.target_percentage)
            lines.append({
                "budget_category_id": category.id,
                "name": category.name,
                "target_percentage": to_money(category.target_percentage),
                "budget_amount": budget,
                "projected_spending": projected,
            })
        rows.append({
            "month": f"{month_start.year:04d}-{month_start.month:02d}",
            "total_budget": money_sum(line["budget_amount"] for line in lines),
            "projected_spending": money_sum(line["projected_spending"] for line in lines),
            "categories": lines,
        })

    return {
        "as_of": as_of,
        "lookback_months": PROJECTION_LOOKBACK_MONTHS,
        "average_monthly_income": average,
        "months": rows,
    }


def create_budget_template(db: Session, family_id: int, name: str) -> Dict[str, Any]:
    """Snapshot of the active categories, in sort order, as a named template."""
    name = require_text(name, "name")
    return {
        "name": name,
        "categories": [
            {"name": c.name, "target_percentage": to_money(c.target_percentage)}
            for c in _active_categories(db, family_id)
        ],
    }


class ApplyBudgetTemplateUseCase:
    """
    Replace the active category set with a template.

    Every category of the family is deactivated first; each template line
    then reactivates the category with the same name (taking the template's
    percentage and position) or creates it with a palette color. Categories
    absent from the template stay inactive, so their allocation history is
    kept. Returns (active categories, warnings).
    """

    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditLogRepository(db)

    def execute(
        self, family_id: int, categories, actor_user_id: int | None = None,
    ) -> Tuple[List[BudgetCategoryModel], List[str]]:
        entries = [
            TemplateCategory(
                name=require_text(line.get("name"), "name"),
                target_percentage=_parse_percentage(line.get("target_percentage")),
            )
            for line in categories
        ]
        if not entries:
            raise LedgerValidationError("Template needs at least one category")
        names = [e.name for e in entries]
        if len(set(names)) != len(names):
            raise LedgerValidationError("Template category names must be unique")

        with unit_of_work(self.db):
            existing = (
                self.db.query(BudgetCategoryModel)
                .filter(BudgetCategoryModel.family_id == family_id)
                .order_by(BudgetCategoryModel.id.asc())
                .with_for_update()
                .all()
            )
            by_name: Dict[str, BudgetCategoryModel] = {}
            for category in existing:
                by_name.setdefault(category.name, category)
                category.is_active = False

            applied = []
            for position, entry in enumerate(entries):
                category = by_name.get(entry.name)
                if category is None:
                    category = BudgetCategoryModel(
                        family_id=family_id,
                        name=entry.name,
                        color=template_color(position),
                    )
                    self.db.add(category)
                category.target_percentage = entry.target_percentage
                category.sort_order = position + 1
                category.is_active = True
                applied.append(category)

            warnings = _warnings_after_change(self.db, family_id)
            kept = {c.id for c in applied}
            self.audit.append_event(
                family_id=family_id,
                event_type="budget_template_applied",
                entity_type="BudgetCategory",
                entity_id=None,
                payload=BudgetAllocation.template_applied(entries, [c.id for c in existing if c.id not in kept]),
                actor_user_id=actor_user_id,
            )

        logger.info("Applied budget template with %d categories to family %d", len(applied), family_id)
        return applied, warnings
