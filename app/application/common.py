"""
Input checks and family-scoped lookups shared by the ledger use cases
"""
from datetime import date
from decimal import Decimal

from sqlalchemy.orm import Session

from app.application.errors import NotFoundError, LedgerValidationError
from app.utils.validation import parse_amount, parse_date


def require_positive_amount(value, field: str = "amount") -> Decimal:
    try:
        amount = parse_amount(value)
    except ValueError as e:
        raise LedgerValidationError(f"{field}: {e}") from e
    if amount <= 0:
        raise LedgerValidationError(f"{field} must be > 0")
    return amount


def require_date(value, field: str = "date") -> date:
    try:
        return parse_date(value)
    except ValueError as e:
        raise LedgerValidationError(f"{field}: {e}") from e


def require_choice(value, choices, field: str):
    if value not in choices:
        raise LedgerValidationError(f"{field} must be one of {', '.join(choices)}")
    return value


def require_text(value, field: str) -> str:
    text = (value or "").strip()
    if not text:
        raise LedgerValidationError(f"{field} is required")
    return text


def get_owned(db: Session, model, family_id: int, entity_id: int, label: str, for_update: bool = False):
    """Load a row by id within the family, or raise NotFoundError.

    A row belonging to another family reads exactly like a missing one.
    """
    query = db.query(model).filter(model.id == entity_id, model.family_id == family_id)
    if for_update:
        query = query.with_for_update()
    row = query.first()
    if row is None:
        raise NotFoundError(f"{label} not found")
    return row
