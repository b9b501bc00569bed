"""
Attribution engine: links payments to the income events that fund them.

Conservation laws, checked on every create/remove/replace:
- sum of a payment's attributions <= payment.amount
- sum of attributions drawing on an income event <= its effective amount

Rows are loaded FOR UPDATE and balances move through guarded UPDATE
statements (WHERE remaining_amount >= :amount ...), so two concurrent
requests can never both spend the same remaining amount: the loser's
guarded update matches no row and its unit of work rolls back.
"""
import logging
from decimal import Decimal
from typing import Dict, Any, List, Iterable

from sqlalchemy.orm import Session

from app.application.common import get_owned, require_positive_amount, require_choice
from app.config import get_settings
from app.application.errors import (
    NotFoundError, InvalidStateError, ExceedsPaymentAmountError, ExceedsAvailableIncomeError,
    LedgerValidationError,
)
from app.domain import income_event as income_rules
from app.domain import payment as payment_rules
from app.domain.attribution import (
    ATTRIBUTION_TYPES, TYPE_MANUAL, TYPE_AUTOMATIC,
    Attribution, ReplaceAttribution, SplitLeg, IncomeCandidate,
    plan_split, suggestion_confidence, confidence_rank,
)
from app.infrastructure.auditlog.repository import AuditLogRepository
from app.infrastructure.db.models import IncomeEventModel, PaymentModel, PaymentAttributionModel
from app.infrastructure.db.session import unit_of_work
from app.utils.money import ZERO, to_money, share_pct, format_money

logger = logging.getLogger(__name__)


def _event_date(income: IncomeEventModel):
    if income.status == income_rules.STATUS_RECEIVED and income.actual_date is not None:
        return income.actual_date
    return income.scheduled_date


class AttributeToIncomeUseCase:
    """Earmark part of an income event's remaining money for a payment."""

    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditLogRepository(db)

    def execute(
        self,
        family_id: int,
        payment_id: int,
        income_event_id: int,
        amount,
        attribution_type: str = TYPE_MANUAL,
        actor_user_id: int | None = None,
    ) -> PaymentAttributionModel:
        amount = require_positive_amount(amount)
        require_choice(attribution_type, ATTRIBUTION_TYPES, "attribution_type")

        with unit_of_work(self.db):
            attribution = self.apply(
                family_id, payment_id, income_event_id, amount, attribution_type, actor_user_id,
            )

        logger.info(
            "Attributed %s of income_event=%d to payment=%d (family=%d)",
            amount, income_event_id, payment_id, family_id,
        )
        return attribution

    def apply(
        self,
        family_id: int,
        payment_id: int,
        income_event_id: int,
        amount: Decimal,
        attribution_type: str = TYPE_MANUAL,
        actor_user_id: int | None = None,
    ) -> PaymentAttributionModel:
        """Create the link and move both balances. Caller owns the transaction."""
        amount = to_money(amount)
        payment = get_owned(self.db, PaymentModel, family_id, payment_id, "Payment", for_update=True)
        income = get_owned(self.db, IncomeEventModel, family_id, income_event_id, "Income event", for_update=True)

        if payment.status == payment_rules.STATUS_CANCELLED:
            raise InvalidStateError("Cannot attribute to a cancelled payment")
        if income.status == income_rules.STATUS_CANCELLED:
            raise InvalidStateError("Cannot attribute from a cancelled income event")

        currency = get_settings().CURRENCY
        unattributed = to_money(payment.amount) - to_money(payment.attributed_amount)
        if amount > unattributed:
            raise ExceedsPaymentAmountError(
                f"Attribution amount exceeds payment amount ({format_money(unattributed, currency)} unattributed)"
            )
        if amount > to_money(income.remaining_amount):
            raise ExceedsAvailableIncomeError(
                f"Attribution amount exceeds available income ({format_money(income.remaining_amount, currency)} left)"
            )

        # Re-check both laws against committed state while writing
        moved = (
            self.db.query(IncomeEventModel)
            .filter(
                IncomeEventModel.id == income.id,
                IncomeEventModel.remaining_amount >= amount,
            )
            .update(
                {
                    IncomeEventModel.remaining_amount: IncomeEventModel.remaining_amount - amount,
                    IncomeEventModel.allocated_amount: IncomeEventModel.allocated_amount + amount,
                },
                synchronize_session=False,
            )
        )
        if moved != 1:
            logger.warning("Lost race on income_event=%d remaining amount", income.id)
            raise ExceedsAvailableIncomeError("Attribution amount exceeds available income")

        moved = (
            self.db.query(PaymentModel)
            .filter(
                PaymentModel.id == payment.id,
                PaymentModel.attributed_amount + amount <= PaymentModel.amount,
            )
            .update(
                {PaymentModel.attributed_amount: PaymentModel.attributed_amount + amount},
                synchronize_session=False,
            )
        )
        if moved != 1:
            logger.warning("Lost race on payment=%d attributed amount", payment.id)
            raise ExceedsPaymentAmountError("Attribution amount exceeds payment amount")

        attribution = PaymentAttributionModel(
            family_id=family_id,
            payment_id=payment.id,
            income_event_id=income.id,
            amount=amount,
            attribution_type=attribution_type,
        )
        self.db.add(attribution)
        self.db.flush()
        self.db.expire(payment)
        self.db.expire(income)

        self.audit.append_event(
            family_id=family_id,
            event_type="attribution_created",
            entity_type="PaymentAttribution",
            entity_id=attribution.id,
            payload=Attribution.created(attribution.id, payment.id, income.id, amount, attribution_type),
            actor_user_id=actor_user_id,
        )
        return attribution


class RemoveAttributionUseCase:
    """Delete a link and give the money back to both sides."""

    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditLogRepository(db)

    def execute(
        self,
        family_id: int,
        payment_id: int,
        attribution_id: int,
        actor_user_id: int | None = None,
    ) -> None:
        with unit_of_work(self.db):
            removed = self.apply(family_id, payment_id, attribution_id, actor_user_id)

        logger.info(
            "Removed attribution=%d (%s) from payment=%d (family=%d)",
            attribution_id, removed["amount"], payment_id, family_id,
        )

    def apply(
        self,
        family_id: int,
        payment_id: int,
        attribution_id: int,
        actor_user_id: int | None = None,
    ) -> Dict[str, Any]:
        """Reverse one attribution exactly. Returns a snapshot of the deleted row."""
        attribution = (
            self.db.query(PaymentAttributionModel)
            .filter(
                PaymentAttributionModel.id == attribution_id,
                PaymentAttributionModel.payment_id == payment_id,
                PaymentAttributionModel.family_id == family_id,
            )
            .with_for_update()
            .first()
        )
        if attribution is None:
            raise NotFoundError("Attribution not found")

        payment = get_owned(self.db, PaymentModel, family_id, payment_id, "Payment", for_update=True)
        income = get_owned(
            self.db, IncomeEventModel, family_id, attribution.income_event_id, "Income event", for_update=True,
        )
        amount = to_money(attribution.amount)

        self.db.query(IncomeEventModel).filter(IncomeEventModel.id == income.id).update(
            {
                IncomeEventModel.remaining_amount: IncomeEventModel.remaining_amount + amount,
                IncomeEventModel.allocated_amount: IncomeEventModel.allocated_amount - amount,
            },
            synchronize_session=False,
        )
        self.db.query(PaymentModel).filter(PaymentModel.id == payment.id).update(
            {PaymentModel.attributed_amount: PaymentModel.attributed_amount - amount},
            synchronize_session=False,
        )

        snapshot = {
            "id": attribution.id,
            "payment_id": payment.id,
            "income_event_id": income.id,
            "amount": amount,
            "attribution_type": attribution.attribution_type,
        }
        self.db.delete(attribution)
        self.db.flush()
        self.db.expire(payment)
        self.db.expire(income)

        self.audit.append_event(
            family_id=family_id,
            event_type="attribution_removed",
            entity_type="PaymentAttribution",
            entity_id=snapshot["id"],
            payload=Attribution.removed(snapshot["id"], payment.id, income.id, amount),
            actor_user_id=actor_user_id,
        )
        return snapshot


class ReplaceAttributionUseCase:
    """
    Change an attribution's amount as one atomic remove + recreate.

    The replacement draws on the same income event. If the new amount
    breaks a conservation law the whole replace rolls back and the old
    attribution stays in place.
    """

    def __init__(self, db: Session):
        self.db = db
        self.audit = AuditLogRepository(db)

    def execute(
        self,
        family_id: int,
        command: ReplaceAttribution,
        actor_user_id: int | None = None,
    ) -> PaymentAttributionModel:
        new_amount = require_positive_amount(command.new_amount)
        require_choice(command.attribution_type, ATTRIBUTION_TYPES, "attribution_type")

        with unit_of_work(self.db):
            old = RemoveAttributionUseCase(self.db).apply(
                family_id, command.payment_id, command.attribution_id, actor_user_id,
            )
            new = AttributeToIncomeUseCase(self.db).apply(
                family_id, command.payment_id, old["income_event_id"], new_amount,
                command.attribution_type, actor_user_id,
            )
            self.audit.append_event(
                family_id=family_id,
                event_type="attribution_replaced",
                entity_type="PaymentAttribution",
                entity_id=new.id,
                payload=Attribution.replaced(old["id"], new.id, old["amount"], new_amount),
                actor_user_id=actor_user_id,
            )

        logger.info(
            "Replaced attribution=%d with attribution=%d (%s -> %s)",
            old["id"], new.id, old["amount"], new_amount,
        )
        return new


class SplitPaymentUseCase:
    """Attribute one payment across several income events in a single transaction."""

    def __init__(self, db: Session):
        self.db = db

    def execute(
        self,
        family_id: int,
        payment_id: int,
        legs: Iterable[SplitLeg],
        attribution_type: str = TYPE_MANUAL,
        actor_user_id: int | None = None,
    ) -> List[PaymentAttributionModel]:
        require_choice(attribution_type, ATTRIBUTION_TYPES, "attribution_type")
        checked = [
            SplitLeg(income_event_id=leg.income_event_id, amount=require_positive_amount(leg.amount))
            for leg in legs
        ]
        if not checked:
            raise InvalidStateError("Split needs at least one leg")

        attribute = AttributeToIncomeUseCase(self.db)
        with unit_of_work(self.db):
            created = [
                attribute.apply(family_id, payment_id, leg.income_event_id, leg.amount,
                                attribution_type, actor_user_id)
                for leg in checked
            ]

        logger.info("Split payment=%d across %d income events", payment_id, len(created))
        return created


class AutoAttributePaymentsUseCase:
    """
    Fund every unattributed scheduled payment (earliest due first) from the
    earliest income event that can cover it in full. Returns the count.
    """

    def __init__(self, db: Session):
        self.db = db

    def execute(self, family_id: int, actor_user_id: int | None = None) -> int:
        payments = (
            self.db.query(PaymentModel)
            .filter(
                PaymentModel.family_id == family_id,
                PaymentModel.status == payment_rules.STATUS_SCHEDULED,
                PaymentModel.attributed_amount == 0,
            )
            .order_by(PaymentModel.due_date.asc(), PaymentModel.id.asc())
            .all()
        )
        # ids and amounts are read up front; rows may change or vanish between units of work
        pending = [(p.id, to_money(p.amount)) for p in payments]
        attribute = AttributeToIncomeUseCase(self.db)
        count = 0
        for payment_id, needed in pending:
            candidates = [(i.id, to_money(i.remaining_amount)) for i in _available_income(self.db, family_id)]
            for income_id, available in candidates:
                if available < needed:
                    continue
                try:
                    with unit_of_work(self.db):
                        attribute.apply(family_id, payment_id, income_id, needed, TYPE_AUTOMATIC, actor_user_id)
                except ExceedsAvailableIncomeError:
                    logger.warning("Income event %d drained concurrently, trying next", income_id)
                    continue
                except (ExceedsPaymentAmountError, InvalidStateError, NotFoundError) as e:
                    if self._still_open(family_id, payment_id):
                        logger.warning("Income event %d unusable for payment %d (%s), trying next",
                                       income_id, payment_id, e.code)
                        continue
                    logger.warning("Payment %d changed concurrently (%s), skipping", payment_id, e.code)
                    break
                count += 1
                break

        logger.info("Auto-attributed %d payment(s) for family=%d", count, family_id)
        return count

    def _still_open(self, family_id: int, payment_id: int) -> bool:
        """Payment still exists, scheduled and unattributed (re-read after a rollback)."""
        return (
            self.db.query(PaymentModel.id)
            .filter(
                PaymentModel.id == payment_id,
                PaymentModel.family_id == family_id,
                PaymentModel.status == payment_rules.STATUS_SCHEDULED,
                PaymentModel.attributed_amount == 0,
            )
            .first()
        ) is not None


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def _available_income(db: Session, family_id: int) -> List[IncomeEventModel]:
    """Non-cancelled income events with money left, soonest first."""
    rows = (
        db.query(IncomeEventModel)
        .filter(
            IncomeEventModel.family_id == family_id,
            IncomeEventModel.status != income_rules.STATUS_CANCELLED,
            IncomeEventModel.remaining_amount > 0,
        )
        .all()
    )
    return sorted(rows, key=lambda r: (_event_date(r), r.id))


def suggest_split(db: Session, family_id: int, payment_id: int) -> Dict[str, Any]:
    """
    Advisory split of a payment's unattributed amount across income events,
    soonest income first. Nothing is written; each proposed leg still has to
    go through AttributeToIncomeUseCase (or SplitPaymentUseCase).
    """
    payment = get_owned(db, PaymentModel, family_id, payment_id, "Payment")
    needed = to_money(payment.amount) - to_money(payment.attributed_amount)
    incomes = {i.id: i for i in _available_income(db, family_id)}
    candidates = [
        IncomeCandidate(income_event_id=i.id, available=to_money(i.remaining_amount), event_date=_event_date(i))
        for i in incomes.values()
    ]
    legs = plan_split(needed, candidates) if needed > 0 else []
    covered = sum((leg.amount for leg in legs), ZERO)

    return {
        "payment_id": payment.id,
        "needed": needed,
        "covered": covered,
        "shortfall": needed - covered,
        "legs": [
            {
                "income_event_id": leg.income_event_id,
                "income_event_name": incomes[leg.income_event_id].name,
                "event_date": _event_date(incomes[leg.income_event_id]),
                "available": to_money(incomes[leg.income_event_id].remaining_amount),
                "amount": leg.amount,
            }
            for leg in legs
        ],
    }


def suggest_attributions(
    db: Session, family_id: int, payment_id: int, limit: int | None = None,
) -> List[Dict[str, Any]]:
    """Candidate income events for a payment, best confidence first."""
    if limit is None:
        limit = get_settings().SUGGESTION_LIMIT
    payment = get_owned(db, PaymentModel, family_id, payment_id, "Payment")
    needed = to_money(payment.amount) - to_money(payment.attributed_amount)

    suggestions = []
    for income in _available_income(db, family_id)[:limit]:
        available = to_money(income.remaining_amount)
        event_date = _event_date(income)
        suggestions.append({
            "income_event_id": income.id,
            "income_event_name": income.name,
            "event_date": event_date,
            "available_amount": available,
            "suggested_amount": min(needed, available),
            "confidence": suggestion_confidence(available, needed, event_date, payment.due_date),
        })

    # stable sort keeps soonest-first order inside each confidence level
    suggestions.sort(key=lambda s: confidence_rank(s["confidence"]), reverse=True)
    return suggestions


def check_attribution_capacity(
    db: Session, family_id: int, payment_id: int, legs: Iterable[SplitLeg],
) -> Dict[str, Any]:
    """
    Dry run of a set of proposed attributions for one payment.

    Runs the checks AttributeToIncomeUseCase.apply would run, without writing
    anything, and collects every failure instead of stopping at the first.
    Legs drawing on the same income event are checked against its remaining
    amount together. Only a missing payment raises.
    """
    payment = get_owned(db, PaymentModel, family_id, payment_id, "Payment")
    currency = get_settings().CURRENCY
    errors: List[str] = []

    if payment.status == payment_rules.STATUS_CANCELLED:
        errors.append("Cannot attribute to a cancelled payment")

    total = ZERO
    per_income: Dict[int, Decimal] = {}
    legs = list(legs)
    if not legs:
        errors.append("At least one attribution is required")
    for leg in legs:
        try:
            amount = require_positive_amount(leg.amount)
        except LedgerValidationError as e:
            errors.append(f"Income event {leg.income_event_id}: {e}")
            continue
        total += amount
        per_income[leg.income_event_id] = per_income.get(leg.income_event_id, ZERO) + amount

    payment_amount = to_money(payment.amount)
    existing = to_money(payment.attributed_amount)
    unattributed = payment_amount - existing
    if total > unattributed:
        errors.append(
            f"Total proposed {format_money(total, currency)} exceeds payment amount "
            f"({format_money(unattributed, currency)} unattributed)"
        )

    for income_event_id, amount in per_income.items():
        income = (
            db.query(IncomeEventModel)
            .filter(IncomeEventModel.id == income_event_id, IncomeEventModel.family_id == family_id)
            .first()
        )
        if income is None:
            errors.append(f"Income event {income_event_id} not found")
        elif income.status == income_rules.STATUS_CANCELLED:
            errors.append(f"Cannot attribute from cancelled income event '{income.name}'")
        elif amount > to_money(income.remaining_amount):
            errors.append(
                f"{format_money(amount, currency)} exceeds available income of '{income.name}' "
                f"({format_money(income.remaining_amount, currency)} left)"
            )

    return {
        "payment_id": payment.id,
        "is_valid": not errors,
        "errors": errors,
        "total_proposed": total,
        "payment_amount": payment_amount,
        "existing_attributed": existing,
        "unattributed_amount": unattributed,
    }


def get_payment_attributions(db: Session, family_id: int, payment_id: int) -> Dict[str, Any]:
    payment = get_owned(db, PaymentModel, family_id, payment_id, "Payment")
    rows = (
        db.query(PaymentAttributionModel, IncomeEventModel)
        .join(IncomeEventModel, IncomeEventModel.id == PaymentAttributionModel.income_event_id)
        .filter(PaymentAttributionModel.payment_id == payment.id)
        .order_by(PaymentAttributionModel.id.asc())
        .all()
    )
    total = to_money(payment.amount)
    attributed = sum((to_money(a.amount) for a, _ in rows), ZERO)
    return {
        "payment_id": payment.id,
        "total_attributed": attributed,
        "remaining_amount": total - attributed,
        "attributions": [
            {
                "id": a.id,
                "income_event_id": i.id,
                "income_event_name": i.name,
                "income_event_date": i.scheduled_date,
                "amount": to_money(a.amount),
                "attribution_type": a.attribution_type,
                "percentage": share_pct(a.amount, total),
            }
            for a, i in rows
        ],
    }


def get_income_attributions(db: Session, family_id: int, income_event_id: int) -> Dict[str, Any]:
    income = get_owned(db, IncomeEventModel, family_id, income_event_id, "Income event")
    rows = (
        db.query(PaymentAttributionModel, PaymentModel)
        .join(PaymentModel, PaymentModel.id == PaymentAttributionModel.payment_id)
        .filter(PaymentAttributionModel.income_event_id == income.id)
        .order_by(PaymentAttributionModel.id.asc())
        .all()
    )
    effective = income_rules.effective_amount(income.status, income.amount, income.actual_amount)
    return {
        "income_event_id": income.id,
        "effective_amount": effective,
        "total_attributed": to_money(income.allocated_amount),
        "remaining_amount": to_money(income.remaining_amount),
        "attributions": [
            {
                "id": a.id,
                "payment_id": p.id,
                "payee": p.payee,
                "due_date": p.due_date,
                "amount": to_money(a.amount),
                "percentage": share_pct(a.amount, effective),
            }
            for a, p in rows
        ],
    }
