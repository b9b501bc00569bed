"""
Payment use cases and query helpers.

Overdue is never stored: a scheduled payment whose due date has passed
reads as overdue (display_status), so it corrects itself when the due
date or status changes.
"""
import logging
from datetime import date as date_type, timedelta
from typing import Dict, Any, List, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.application.attributions import RemoveAttributionUseCase
from app.application.common import (
    get_owned, require_positive_amount, require_date, require_choice, require_text,
)
from app.application.errors import InvalidStateError, BelowAllocatedError, LedgerValidationError
from app.config import get_settings
from app.domain.payment import (
    Payment, PAYMENT_STATUSES, TYPE_ONCE, TYPE_RECURRING,
    STATUS_SCHEDULED, STATUS_PAID, STATUS_PARTIAL, STATUS_OVERDUE, STATUS_CANCELLED,
    check_type_frequency, display_status, paid_status,
)
from app.domain.recurrence import next_occurrence
from app.infrastructure.auditlog.repository import AuditLogRepository
from app.infrastructure.db.models import PaymentModel, PaymentAttributionModel, SpendingCategoryModel
from app.infrastructure.db.session import unit_of_work
from app.utils.dates import local_today
from app.utils.money import ZERO, to_money

logger = logging.getLogger(__name__)


def _check_type_frequency(payment_type: str, frequency: str | None) -> None:
    try:
        check_type_frequency(payment_type, frequency)
    except ValueError as e:
        raise LedgerValidationError(str(e)) from e


def _check_spending_category(db: Session, family_id: int, spending_category_id: int | None) -> None:
    if spending_category_id is not None:
        get_owned(db, SpendingCategoryModel, family_id, spending_category_id, "Spending category")


def _remove_all_attributions(db: Session, family_id: int, payment_id: int, actor_user_id: int | None) -> int:
    """Give every attributed amount back to its income event. Caller owns the transaction."""
    ids = [
        row.id for row in
        db.query(PaymentAttributionModel.id)
        .filter(PaymentAttributionModel.payment_id == payment_id)
        .order_by(PaymentAttributionModel.id.asc())
        .all()
    ]
    remove = RemoveAttributionUseCase(db)
    for attribution_id in ids:
        remove.apply(family_id, payment_id, attribution_id, actor_user_id)
    return len(ids)


class CreatePaymentUseCase:
    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditLogRepository(db)

    def execute(
        self,
        family_id: int,
        payee: str,
        amount,
        due_date,
        payment_type: str = TYPE_ONCE,
        frequency: str | None = None,
        spending_category_id: int | None = None,
        autopay_enabled: bool = False,
        notes: str | None = None,
        actor_user_id: int | None = None,
    ) -> PaymentModel:
        with unit_of_work(self.db):
            payment = self.apply(
                family_id, payee, amount, due_date, payment_type, frequency,
                spending_category_id, autopay_enabled, notes, actor_user_id,
            )

        logger.info("Created payment %d to '%s' %s due %s", payment.id, payment.payee, payment.amount,
                    payment.due_date)
        return payment

    def apply(
        self,
        family_id: int,
        payee: str,
        amount,
        due_date,
        payment_type: str = TYPE_ONCE,
        frequency: str | None = None,
        spending_category_id: int | None = None,
        autopay_enabled: bool = False,
        notes: str | None = None,
        actor_user_id: int | None = None,
        series_id: int | None = None,
    ) -> PaymentModel:
        payee = require_text(payee, "payee")
        amount = require_positive_amount(amount)
        due = require_date(due_date, "due_date")
        _check_type_frequency(payment_type, frequency)
        _check_spending_category(self.db, family_id, spending_category_id)

        payment = PaymentModel(
            family_id=family_id,
            payee=payee,
            amount=amount,
            due_date=due,
            payment_type=payment_type,
            frequency=frequency,
            next_due_date=next_occurrence(due, frequency) if frequency else None,
            status=STATUS_SCHEDULED,
            spending_category_id=spending_category_id,
            autopay_enabled=bool(autopay_enabled),
            notes=notes,
            attributed_amount=ZERO,
        )
        self.db.add(payment)
        self.db.flush()
        if payment_type == TYPE_RECURRING:
            # first occurrence names the series
            payment.series_id = series_id or payment.id

        self.audit.append_event(
            family_id=family_id,
            event_type="payment_created",
            entity_type="Payment",
            entity_id=payment.id,
            payload=Payment.create(payment.id, payee, amount, due, payment_type, frequency, payment.series_id),
            actor_user_id=actor_user_id,
        )
        return payment


class UpdatePaymentUseCase:
    FIELDS = (
        "payee", "amount", "due_date", "payment_type", "frequency",
        "spending_category_id", "autopay_enabled", "notes",
    )

    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditLogRepository(db)

    def execute(
        self,
        family_id: int,
        payment_id: int,
        patch: Dict[str, Any],
        actor_user_id: int | None = None,
    ) -> PaymentModel:
        unknown = set(patch) - set(self.FIELDS)
        if unknown:
            raise LedgerValidationError(f"Unknown fields: {', '.join(sorted(unknown))}")

        changes: Dict[str, Any] = dict(patch)
        if "payee" in changes:
            changes["payee"] = require_text(changes["payee"], "payee")
        if "amount" in changes:
            changes["amount"] = require_positive_amount(changes["amount"])
        if "due_date" in changes:
            changes["due_date"] = require_date(changes["due_date"], "due_date")
        if "autopay_enabled" in changes:
            changes["autopay_enabled"] = bool(changes["autopay_enabled"])

        with unit_of_work(self.db):
            payment = get_owned(self.db, PaymentModel, family_id, payment_id, "Payment", for_update=True)
            if payment.status in (STATUS_PAID, STATUS_PARTIAL):
                raise InvalidStateError("Paid payments cannot be edited")
            if payment.status == STATUS_CANCELLED:
                raise InvalidStateError("Cancelled payments cannot be edited")

            attributed = to_money(payment.attributed_amount)
            if "amount" in changes and changes["amount"] < attributed:
                raise BelowAllocatedError(
                    f"Amount {changes['amount']} is below the {attributed} already attributed"
                )

            payment_type = changes.get("payment_type", payment.payment_type)
            frequency = changes.get("frequency", payment.frequency)
            if payment_type != TYPE_RECURRING and "payment_type" in changes and "frequency" not in changes:
                frequency = None
                changes["frequency"] = None
            _check_type_frequency(payment_type, frequency)
            if "spending_category_id" in changes:
                _check_spending_category(self.db, family_id, changes["spending_category_id"])

            old_values = {field: getattr(payment, field) for field in changes}
            for field, value in changes.items():
                setattr(payment, field, value)
            payment.next_due_date = next_occurrence(payment.due_date, frequency) if frequency else None
            if payment.payment_type == TYPE_RECURRING and payment.series_id is None:
                payment.series_id = payment.id

            self.audit.append_event(
                family_id=family_id,
                event_type="payment_updated",
                entity_type="Payment",
                entity_id=payment.id,
                payload=Payment.updated(payment.id, old_values, changes),
                actor_user_id=actor_user_id,
            )

        logger.info("Updated payment %d: %s", payment.id, ", ".join(sorted(changes)) or "no changes")
        return payment


class MarkPaymentPaidUseCase:
    """
    Record a payment. Status becomes paid when the paid amount covers the
    bill, partial otherwise. Paying a scheduled recurring payment spawns the
    next occurrence of its series (once per due date).
    """

    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditLogRepository(db)

    def execute(
        self,
        family_id: int,
        payment_id: int,
        paid_amount=None,
        paid_date=None,
        actor_user_id: int | None = None,
    ) -> Tuple[PaymentModel, PaymentModel | None]:
        paid_on = require_date(paid_date, "paid_date") if paid_date is not None else local_today()

        with unit_of_work(self.db):
            payment = get_owned(self.db, PaymentModel, family_id, payment_id, "Payment", for_update=True)
            if payment.status == STATUS_PAID:
                raise InvalidStateError("Payment is already paid")
            if payment.status == STATUS_CANCELLED:
                raise InvalidStateError("Cannot pay a cancelled payment")

            amount = to_money(payment.amount)
            paid = amount if paid_amount is None else require_positive_amount(paid_amount, "paid_amount")
            was_scheduled = payment.status == STATUS_SCHEDULED

            payment.paid_amount = paid
            payment.paid_date = paid_on
            payment.status = paid_status(paid, amount)

            spawned = None
            if was_scheduled and payment.payment_type == TYPE_RECURRING:
                spawned = self._spawn_next(payment, actor_user_id)

            self.audit.append_event(
                family_id=family_id,
                event_type="payment_paid",
                entity_type="Payment",
                entity_id=payment.id,
                payload=Payment.paid(payment.id, payment.status, paid, paid_on, spawned.id if spawned else None),
                actor_user_id=actor_user_id,
            )

        logger.info("Payment %d marked %s (%s on %s)", payment.id, payment.status, paid, paid_on)
        return payment, spawned

    def _spawn_next(self, payment: PaymentModel, actor_user_id: int | None) -> PaymentModel | None:
        next_due = next_occurrence(payment.due_date, payment.frequency)
        if next_due is None:
            return None
        series_id = payment.series_id or payment.id
        exists = (
            self.db.query(PaymentModel.id)
            .filter(PaymentModel.series_id == series_id, PaymentModel.due_date == next_due)
            .first()
        )
        if exists:
            return None
        return CreatePaymentUseCase(self.db).apply(
            payment.family_id,
            payment.payee,
            payment.amount,
            next_due,
            payment.payment_type,
            payment.frequency,
            payment.spending_category_id,
            payment.autopay_enabled,
            payment.notes,
            actor_user_id,
            series_id=series_id,
        )


class RevertPaymentPaidUseCase:
    """paid / partial -> scheduled. A spawned next occurrence stays."""

    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditLogRepository(db)

    def execute(self, family_id: int, payment_id: int, actor_user_id: int | None = None) -> PaymentModel:
        with unit_of_work(self.db):
            payment = get_owned(self.db, PaymentModel, family_id, payment_id, "Payment", for_update=True)
            if payment.status not in (STATUS_PAID, STATUS_PARTIAL):
                raise InvalidStateError("Payment is not paid")

            previous = payment.status
            payment.status = STATUS_SCHEDULED
            payment.paid_amount = None
            payment.paid_date = None
            self.audit.append_event(
                family_id=family_id,
                event_type="payment_reverted",
                entity_type="Payment",
                entity_id=payment.id,
                payload=Payment.reverted(payment.id, previous),
                actor_user_id=actor_user_id,
            )

        logger.info("Payment %d reverted from %s to scheduled", payment.id, previous)
        return payment


class CancelPaymentUseCase:
    """scheduled -> cancelled; attributed money goes back to its income events."""

    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditLogRepository(db)

    def execute(self, family_id: int, payment_id: int, actor_user_id: int | None = None) -> PaymentModel:
        with unit_of_work(self.db):
            payment = get_owned(self.db, PaymentModel, family_id, payment_id, "Payment", for_update=True)
            if payment.status != STATUS_SCHEDULED:
                raise InvalidStateError(f"Cannot cancel a {payment.status} payment")

            removed = _remove_all_attributions(self.db, family_id, payment.id, actor_user_id)
            payment.status = STATUS_CANCELLED
            self.audit.append_event(
                family_id=family_id,
                event_type="payment_cancelled",
                entity_type="Payment",
                entity_id=payment.id,
                payload={"payment_id": payment.id, "removed_attributions": removed},
                actor_user_id=actor_user_id,
            )

        logger.info("Cancelled payment %d (%d attributions removed)", payment_id, removed)
        return payment


class DeletePaymentUseCase:
    """
    Delete one occurrence, or with delete_all this and every later
    occurrence of its recurring series. Attributions are removed through the
    attribution engine in the same unit of work, so income balances are restored.
    """

    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditLogRepository(db)

    def execute(
        self,
        family_id: int,
        payment_id: int,
        delete_all: bool = False,
        actor_user_id: int | None = None,
    ) -> List[int]:
        with unit_of_work(self.db):
            payment = get_owned(self.db, PaymentModel, family_id, payment_id, "Payment", for_update=True)
            targets = [payment]
            if delete_all and payment.series_id is not None:
                targets = (
                    self.db.query(PaymentModel)
                    .filter(
                        PaymentModel.family_id == family_id,
                        PaymentModel.series_id == payment.series_id,
                        PaymentModel.due_date >= payment.due_date,
                    )
                    .order_by(PaymentModel.due_date.asc(), PaymentModel.id.asc())
                    .with_for_update()
                    .all()
                )

            removed = 0
            deleted_ids = []
            for target in targets:
                removed += _remove_all_attributions(self.db, family_id, target.id, actor_user_id)
                deleted_ids.append(target.id)
                self.db.delete(target)
            self.db.flush()

            self.audit.append_event(
                family_id=family_id,
                event_type="payment_deleted",
                entity_type="Payment",
                entity_id=payment_id,
                payload=Payment.deleted(deleted_ids, removed),
                actor_user_id=actor_user_id,
            )

        logger.info("Deleted payments %s (%d attributions removed)", deleted_ids, removed)
        return deleted_ids


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def payment_view(payment: PaymentModel, today: date_type | None = None) -> Dict[str, Any]:
    """Payment as shown to callers, with the derived status."""
    today = today or local_today()
    amount = to_money(payment.amount)
    attributed = to_money(payment.attributed_amount)
    return {
        "id": payment.id,
        "payee": payment.payee,
        "amount": amount,
        "due_date": payment.due_date,
        "payment_type": payment.payment_type,
        "frequency": payment.frequency,
        "next_due_date": payment.next_due_date,
        "series_id": payment.series_id,
        "status": display_status(payment.status, payment.due_date, today),
        "spending_category_id": payment.spending_category_id,
        "autopay_enabled": payment.autopay_enabled,
        "notes": payment.notes,
        "attributed_amount": attributed,
        "unattributed_amount": amount - attributed,
        "paid_amount": to_money(payment.paid_amount) if payment.paid_amount is not None else None,
        "paid_date": payment.paid_date,
    }


def list_payments(
    db: Session,
    family_id: int,
    status: str | None = None,
    start_date=None,
    end_date=None,
    search: str | None = None,
    spending_category_id: int | None = None,
    limit: int | None = None,
    offset: int = 0,
    today: date_type | None = None,
) -> List[PaymentModel]:
    """
    Filtered page of payments, due date ascending.

    status="overdue" selects scheduled payments past due; status="scheduled"
    selects only those not yet due, matching what display_status shows.
    """
    today = today or local_today()
    query = db.query(PaymentModel).filter(PaymentModel.family_id == family_id)

    if status:
        require_choice(status, PAYMENT_STATUSES, "status")
        if status == STATUS_OVERDUE:
            query = query.filter(PaymentModel.status == STATUS_SCHEDULED, PaymentModel.due_date < today)
        elif status == STATUS_SCHEDULED:
            query = query.filter(PaymentModel.status == STATUS_SCHEDULED, PaymentModel.due_date >= today)
        else:
            query = query.filter(PaymentModel.status == status)
    if start_date:
        query = query.filter(PaymentModel.due_date >= require_date(start_date, "start_date"))
    if end_date:
        query = query.filter(PaymentModel.due_date <= require_date(end_date, "end_date"))
    if spending_category_id is not None:
        query = query.filter(PaymentModel.spending_category_id == spending_category_id)
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(PaymentModel.payee.ilike(pattern), PaymentModel.notes.ilike(pattern)))

    if limit is None:
        limit = get_settings().DEFAULT_PAGE_LIMIT
    return (
        query.order_by(PaymentModel.due_date.asc(), PaymentModel.id.asc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def get_payment(db: Session, family_id: int, payment_id: int) -> PaymentModel:
    return get_owned(db, PaymentModel, family_id, payment_id, "Payment")


def get_overdue_payments(db: Session, family_id: int, today: date_type | None = None) -> List[PaymentModel]:
    today = today or local_today()
    return (
        db.query(PaymentModel)
        .filter(
            PaymentModel.family_id == family_id,
            PaymentModel.status == STATUS_SCHEDULED,
            PaymentModel.due_date < today,
        )
        .order_by(PaymentModel.due_date.asc(), PaymentModel.id.asc())
        .all()
    )


def get_upcoming_payments(
    db: Session, family_id: int, days: int = 30, today: date_type | None = None,
) -> List[PaymentModel]:
    today = today or local_today()
    return (
        db.query(PaymentModel)
        .filter(
            PaymentModel.family_id == family_id,
            PaymentModel.status == STATUS_SCHEDULED,
            PaymentModel.due_date >= today,
            PaymentModel.due_date <= today + timedelta(days=days),
        )
        .order_by(PaymentModel.due_date.asc(), PaymentModel.id.asc())
        .all()
    )


def get_payment_summary(
    db: Session, family_id: int, start_date, end_date, today: date_type | None = None,
) -> Dict[str, Any]:
    start = require_date(start_date, "start_date")
    end = require_date(end_date, "end_date")
    today = today or local_today()
    rows = (
        db.query(PaymentModel)
        .filter(
            PaymentModel.family_id == family_id,
            PaymentModel.due_date >= start,
            PaymentModel.due_date <= end,
            PaymentModel.status != STATUS_CANCELLED,
        )
        .all()
    )

    by_status: Dict[str, int] = {}
    for row in rows:
        shown = display_status(row.status, row.due_date, today)
        by_status[shown] = by_status.get(shown, 0) + 1

    total = sum((to_money(r.amount) for r in rows), ZERO)
    attributed = sum((to_money(r.attributed_amount) for r in rows), ZERO)
    return {
        "total_amount": total,
        "total_paid": sum((to_money(r.paid_amount) for r in rows if r.paid_amount is not None), ZERO),
        "total_attributed": attributed,
        "total_unattributed": total - attributed,
        "count": len(rows),
        "status_counts": by_status,
        "overdue_count": by_status.get(STATUS_OVERDUE, 0),
    }
