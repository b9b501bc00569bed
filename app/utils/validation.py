"""
Validation utilities
"""
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation


def normalize_decimal_input(value: str) -> str:
    """
    Normalize an amount string: strip spaces, turn a decimal comma into a point

    Example:
        >>> normalize_decimal_input(" 100,50 ")
        "100.50"
    """
    return value.strip().replace(",", ".")


def validate_decimal_amount(value: str, max_decimal_places: int = 2) -> tuple[bool, str | None]:
    """
    Validate a money amount string

    Returns:
        (is_valid, error_message)

    Example:
        >>> validate_decimal_amount("100.50")
        (True, None)
        >>> validate_decimal_amount("100.505")
        (False, "At most 2 decimal places allowed")
    """
    normalized = normalize_decimal_input(value)

    try:
        Decimal(normalized)
    except (InvalidOperation, ValueError):
        return False, "Invalid amount"

    pattern = rf"^-?\d+(\.\d{{1,{max_decimal_places}}})?$"
    if not re.match(pattern, normalized):
        return False, f"At most {max_decimal_places} decimal places allowed"

    return True, None


def parse_amount(value, max_decimal_places: int = 2) -> Decimal:
    """
    Parse an amount from str / int / Decimal into Decimal

    Raises:
        ValueError: not a number, NaN/inf, or too many decimal places
    """
    if isinstance(value, bool) or value is None:
        raise ValueError("Invalid amount")
    if isinstance(value, float):
        value = repr(value)
    if isinstance(value, (int, Decimal)):
        value = str(value)
    if not isinstance(value, str):
        raise ValueError("Invalid amount")

    is_valid, error = validate_decimal_amount(value, max_decimal_places)
    if not is_valid:
        raise ValueError(error)

    return Decimal(normalize_decimal_input(value))


def parse_date(value) -> date:
    """
    Parse a calendar date from date / datetime / "YYYY-MM-DD" string

    Raises:
        ValueError: unparseable value
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return date.fromisoformat(value.strip()[:10])
        except ValueError as e:
            raise ValueError(f"Invalid date: {value!r}") from e
    raise ValueError(f"Invalid date: {value!r}")
