"""
Income event use cases and query helpers.

Lifecycle: scheduled -> received (-> scheduled again on revert), or
scheduled -> cancelled. allocated_amount / remaining_amount are only
moved by the attribution engine; here they are recomputed when the
effective amount changes.
"""
import logging
from datetime import date as date_type, timedelta
from typing import Dict, Any, List, Tuple, Iterable

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from app.application.budget import AllocateIncomeUseCase, delete_allocations
from app.application.common import (
    get_owned, require_positive_amount, require_date, require_choice, require_text,
)
from app.application.errors import (
    InvalidStateError, AlreadyReceivedError, NotReceivedError, ReceivedImmutableError,
    HasAttributionsError, BelowAllocatedError, LedgerValidationError,
)
from app.config import get_settings
from app.domain.income_event import (
    IncomeEvent, STATUS_SCHEDULED, STATUS_RECEIVED, STATUS_CANCELLED, INCOME_STATUSES,
    remaining_amount,
)
from app.domain.recurrence import INCOME_FREQUENCIES, FREQ_ONCE, next_occurrence
from app.infrastructure.auditlog.repository import AuditLogRepository
from app.infrastructure.db.models import IncomeEventModel, PaymentAttributionModel
from app.infrastructure.db.session import unit_of_work
from app.utils.dates import local_today
from app.utils.money import ZERO, to_money

logger = logging.getLogger(__name__)


def _attribution_count(db: Session, income_event_id: int) -> int:
    return (
        db.query(func.count(PaymentAttributionModel.id))
        .filter(PaymentAttributionModel.income_event_id == income_event_id)
        .scalar()
    )


class CreateIncomeEventUseCase:
    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditLogRepository(db)

    def execute(
        self,
        family_id: int,
        name: str,
        amount,
        scheduled_date,
        frequency: str = FREQ_ONCE,
        source: str | None = None,
        notes: str | None = None,
        actor_user_id: int | None = None,
    ) -> IncomeEventModel:
        with unit_of_work(self.db):
            income = self.apply(
                family_id, name, amount, scheduled_date, frequency, source, notes, actor_user_id,
            )

        logger.info("Created income event %d '%s' %s on %s", income.id, income.name, income.amount,
                    income.scheduled_date)
        return income

    def apply(
        self,
        family_id: int,
        name: str,
        amount,
        scheduled_date,
        frequency: str = FREQ_ONCE,
        source: str | None = None,
        notes: str | None = None,
        actor_user_id: int | None = None,
        spawned_from_id: int | None = None,
    ) -> IncomeEventModel:
        name = require_text(name, "name")
        amount = require_positive_amount(amount)
        scheduled = require_date(scheduled_date, "scheduled_date")
        require_choice(frequency, INCOME_FREQUENCIES, "frequency")

        income = IncomeEventModel(
            family_id=family_id,
            name=name,
            amount=amount,
            scheduled_date=scheduled,
            frequency=frequency,
            next_occurrence=next_occurrence(scheduled, frequency),
            status=STATUS_SCHEDULED,
            allocated_amount=ZERO,
            remaining_amount=amount,
            source=source,
            notes=notes,
        )
        self.db.add(income)
        self.db.flush()

        self.audit.append_event(
            family_id=family_id,
            event_type="income_event_created",
            entity_type="IncomeEvent",
            entity_id=income.id,
            payload=IncomeEvent.create(income.id, name, amount, scheduled, frequency, spawned_from_id),
            actor_user_id=actor_user_id,
        )
        return income


class BulkCreateIncomeEventsUseCase:
    """All-or-nothing: one bad item rolls back the whole batch."""

    def __init__(self, db: Session):
        self.db = db

    def execute(
        self, family_id: int, items: Iterable[Dict[str, Any]], actor_user_id: int | None = None,
    ) -> List[IncomeEventModel]:
        create = CreateIncomeEventUseCase(self.db)
        with unit_of_work(self.db):
            created = [
                create.apply(
                    family_id,
                    item.get("name"),
                    item.get("amount"),
                    item.get("scheduled_date"),
                    item.get("frequency", FREQ_ONCE),
                    item.get("source"),
                    item.get("notes"),
                    actor_user_id,
                )
                for item in items
            ]

        logger.info("Bulk created %d income events for family=%d", len(created), family_id)
        return created


class MarkIncomeReceivedUseCase:
    """
    Record receipt of an income event.

    In one unit of work:
    - status -> received, actual date/amount set, remaining recomputed from
      the actual amount (existing attributions are carried over)
    - next occurrence spawned for recurring income
    - budget allocations generated for active categories
    """

    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditLogRepository(db)

    def execute(
        self,
        family_id: int,
        income_event_id: int,
        actual_date,
        actual_amount=None,
        actor_user_id: int | None = None,
    ) -> Tuple[IncomeEventModel, IncomeEventModel | None]:
        """
        Returns:
            (received income event, spawned next occurrence or None)

        Raises:
            NotFoundError, AlreadyReceivedError, InvalidStateError (cancelled),
            BelowAllocatedError (actual amount below attributed money)
        """
        received_on = require_date(actual_date, "actual_date")

        with unit_of_work(self.db):
            income = get_owned(self.db, IncomeEventModel, family_id, income_event_id, "Income event",
                               for_update=True)
            if income.status == STATUS_RECEIVED:
                raise AlreadyReceivedError("Income event is already received")
            if income.status == STATUS_CANCELLED:
                raise InvalidStateError("Cannot receive a cancelled income event")

            actual = to_money(income.amount) if actual_amount is None else require_positive_amount(
                actual_amount, "actual_amount")
            allocated = to_money(income.allocated_amount)
            if actual < allocated:
                raise BelowAllocatedError(
                    f"Actual amount {actual} is below the {allocated} already attributed to payments"
                )

            income.status = STATUS_RECEIVED
            income.actual_date = received_on
            income.actual_amount = actual
            income.remaining_amount = remaining_amount(actual, allocated)

            spawned = None
            next_date = next_occurrence(income.scheduled_date, income.frequency)
            if next_date is not None:
                spawned = CreateIncomeEventUseCase(self.db).apply(
                    family_id,
                    income.name,
                    income.amount,
                    next_date,
                    income.frequency,
                    income.source,
                    income.notes,
                    actor_user_id,
                    spawned_from_id=income.id,
                )

            self.audit.append_event(
                family_id=family_id,
                event_type="income_event_received",
                entity_type="IncomeEvent",
                entity_id=income.id,
                payload=IncomeEvent.received(income.id, received_on, actual, spawned.id if spawned else None),
                actor_user_id=actor_user_id,
            )
            AllocateIncomeUseCase(self.db).apply(family_id, income.id, actor_user_id)

        logger.info(
            "Income event %d received %s on %s (next occurrence: %s)",
            income.id, actual, received_on, spawned.id if spawned else None,
        )
        return income, spawned


class RevertIncomeReceivedUseCase:
    """
    received -> scheduled. Attributions stay; budget allocations are removed.

    An already-spawned next occurrence is left in place.
    """

    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditLogRepository(db)

    def execute(self, family_id: int, income_event_id: int, actor_user_id: int | None = None) -> IncomeEventModel:
        with unit_of_work(self.db):
            income = get_owned(self.db, IncomeEventModel, family_id, income_event_id, "Income event",
                               for_update=True)
            if income.status != STATUS_RECEIVED:
                raise NotReceivedError("Income event is not received")

            allocated = to_money(income.allocated_amount)
            if to_money(income.amount) < allocated:
                raise BelowAllocatedError(
                    f"Scheduled amount {income.amount} is below the {allocated} already attributed to payments"
                )

            previous_date, previous_amount = income.actual_date, income.actual_amount
            income.status = STATUS_SCHEDULED
            income.actual_date = None
            income.actual_amount = None
            income.remaining_amount = remaining_amount(income.amount, allocated)
            removed = delete_allocations(self.db, income.id)

            self.audit.append_event(
                family_id=family_id,
                event_type="income_event_reverted",
                entity_type="IncomeEvent",
                entity_id=income.id,
                payload=IncomeEvent.reverted(income.id, previous_date, previous_amount),
                actor_user_id=actor_user_id,
            )

        logger.info("Income event %d reverted to scheduled (%d allocations removed)", income.id, removed)
        return income


class UpdateIncomeEventUseCase:
    """Patch a scheduled income event. Received events are immutable."""

    FIELDS = ("name", "amount", "scheduled_date", "frequency", "source", "notes")

    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditLogRepository(db)

    def execute(
        self,
        family_id: int,
        income_event_id: int,
        patch: Dict[str, Any],
        actor_user_id: int | None = None,
    ) -> IncomeEventModel:
        unknown = set(patch) - set(self.FIELDS)
        if unknown:
            raise LedgerValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")

        changes: Dict[str, Any] = {}
        if "name" in patch:
            changes["name"] = require_text(patch["name"], "name")
        if "amount" in patch:
            changes["amount"] = require_positive_amount(patch["amount"])
        if "scheduled_date" in patch:
            changes["scheduled_date"] = require_date(patch["scheduled_date"], "scheduled_date")
        if "frequency" in patch:
            changes["frequency"] = require_choice(patch["frequency"], INCOME_FREQUENCIES, "frequency")
        for field in ("source", "notes"):
            if field in patch:
                changes[field] = patch[field]

        with unit_of_work(self.db):
            income = get_owned(self.db, IncomeEventModel, family_id, income_event_id, "Income event",
                               for_update=True)
            if income.status == STATUS_RECEIVED:
                raise ReceivedImmutableError("Received income events cannot be edited")
            if income.status == STATUS_CANCELLED:
                raise InvalidStateError("Cancelled income events cannot be edited")

            allocated = to_money(income.allocated_amount)
            if "amount" in changes and changes["amount"] < allocated:
                raise BelowAllocatedError(
                    f"Amount {changes['amount']} is below the {allocated} already attributed to payments"
                )

            old_values = {field: getattr(income, field) for field in changes}
            for field, value in changes.items():
                setattr(income, field, value)
            income.remaining_amount = remaining_amount(income.amount, allocated)
            income.next_occurrence = next_occurrence(income.scheduled_date, income.frequency)

            self.audit.append_event(
                family_id=family_id,
                event_type="income_event_updated",
                entity_type="IncomeEvent",
                entity_id=income.id,
                payload=IncomeEvent.updated(income.id, old_values, changes),
                actor_user_id=actor_user_id,
            )

        logger.info("Updated income event %d: %s", income.id, ", ".join(sorted(changes)) or "no changes")
        return income


class CancelIncomeEventUseCase:
    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditLogRepository(db)

    def execute(self, family_id: int, income_event_id: int, actor_user_id: int | None = None) -> IncomeEventModel:
        with unit_of_work(self.db):
            income = get_owned(self.db, IncomeEventModel, family_id, income_event_id, "Income event",
                               for_update=True)
            if income.status == STATUS_RECEIVED:
                raise AlreadyReceivedError("Received income events cannot be cancelled")
            if income.status == STATUS_CANCELLED:
                raise InvalidStateError("Income event is already cancelled")
            if _attribution_count(self.db, income.id):
                raise HasAttributionsError("Remove the payment attributions before cancelling")

            income.status = STATUS_CANCELLED
            self.audit.append_event(
                family_id=family_id,
                event_type="income_event_cancelled",
                entity_type="IncomeEvent",
                entity_id=income.id,
                payload={"income_event_id": income.id},
                actor_user_id=actor_user_id,
            )

        logger.info("Cancelled income event %d", income.id)
        return income


class DeleteIncomeEventUseCase:
    """Delete an income event with no attributions; its allocations go with it."""

    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditLogRepository(db)

    def execute(self, family_id: int, income_event_id: int, actor_user_id: int | None = None) -> None:
        with unit_of_work(self.db):
            income = get_owned(self.db, IncomeEventModel, family_id, income_event_id, "Income event",
                               for_update=True)
            if _attribution_count(self.db, income.id):
                raise HasAttributionsError("Income event has payment attributions")

            removed = delete_allocations(self.db, income.id)
            self.audit.append_event(
                family_id=family_id,
                event_type="income_event_deleted",
                entity_type="IncomeEvent",
                entity_id=income.id,
                payload=IncomeEvent.deleted(income.id, income.name, income.amount, removed),
                actor_user_id=actor_user_id,
            )
            self.db.delete(income)

        logger.info("Deleted income event %d (%d allocations removed)", income_event_id, removed)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def list_income_events(
    db: Session,
    family_id: int,
    status: str | None = None,
    start_date=None,
    end_date=None,
    search: str | None = None,
    limit: int | None = None,
    offset: int = 0,
) -> List[IncomeEventModel]:
    """Filtered page of income events, scheduled date ascending."""
    query = db.query(IncomeEventModel).filter(IncomeEventModel.family_id == family_id)

    if status:
        require_choice(status, INCOME_STATUSES, "status")
        query = query.filter(IncomeEventModel.status == status)
    if start_date:
        query = query.filter(IncomeEventModel.scheduled_date >= require_date(start_date, "start_date"))
    if end_date:
        query = query.filter(IncomeEventModel.scheduled_date <= require_date(end_date, "end_date"))
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(
            IncomeEventModel.name.ilike(pattern),
            IncomeEventModel.source.ilike(pattern),
            IncomeEventModel.notes.ilike(pattern),
        ))

    if limit is None:
        limit = get_settings().DEFAULT_PAGE_LIMIT
    return (
        query.order_by(IncomeEventModel.scheduled_date.asc(), IncomeEventModel.id.asc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def get_income_event(db: Session, family_id: int, income_event_id: int) -> IncomeEventModel:
    return get_owned(db, IncomeEventModel, family_id, income_event_id, "Income event")


def get_upcoming_income_events(
    db: Session, family_id: int, days: int = 30, today: date_type | None = None,
) -> List[IncomeEventModel]:
    """Scheduled income in [today, today + days]."""
    today = today or local_today()
    return (
        db.query(IncomeEventModel)
        .filter(
            IncomeEventModel.family_id == family_id,
            IncomeEventModel.status == STATUS_SCHEDULED,
            IncomeEventModel.scheduled_date >= today,
            IncomeEventModel.scheduled_date <= today + timedelta(days=days),
        )
        .order_by(IncomeEventModel.scheduled_date.asc(), IncomeEventModel.id.asc())
        .all()
    )


def get_income_summary(db: Session, family_id: int, start_date, end_date) -> Dict[str, Any]:
    start = require_date(start_date, "start_date")
    end = require_date(end_date, "end_date")
    rows = (
        db.query(IncomeEventModel)
        .filter(
            IncomeEventModel.family_id == family_id,
            IncomeEventModel.scheduled_date >= start,
            IncomeEventModel.scheduled_date <= end,
        )
        .all()
    )

    scheduled = [r for r in rows if r.status == STATUS_SCHEDULED]
    received = [r for r in rows if r.status == STATUS_RECEIVED]
    total_received = sum((to_money(r.actual_amount) for r in received), ZERO)
    return {
        "total_scheduled": sum((to_money(r.amount) for r in scheduled), ZERO),
        "total_received": total_received,
        "total_allocated": sum((to_money(r.allocated_amount) for r in rows if r.status != STATUS_CANCELLED), ZERO),
        "total_remaining": sum((to_money(r.remaining_amount) for r in rows if r.status != STATUS_CANCELLED), ZERO),
        "scheduled_count": len(scheduled),
        "received_count": len(received),
        "cancelled_count": sum(1 for r in rows if r.status == STATUS_CANCELLED),
    }
