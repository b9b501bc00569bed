"""
Tests for payment status derivation and type/frequency pairing
"""
from datetime import date
from decimal import Decimal

import pytest

from app.domain.payment import check_type_frequency, display_status, paid_status, Payment


def test_recurring_requires_frequency():
    check_type_frequency("recurring", "monthly")
    with pytest.raises(ValueError):
        check_type_frequency("recurring", None)
    with pytest.raises(ValueError):
        check_type_frequency("recurring", "once")


def test_frequency_forbidden_for_non_recurring():
    check_type_frequency("once", None)
    check_type_frequency("variable", None)
    with pytest.raises(ValueError):
        check_type_frequency("once", "monthly")


def test_unknown_payment_type():
    with pytest.raises(ValueError):
        check_type_frequency("subscription", None)


def test_overdue_is_derived_from_due_date():
    today = date(2024, 3, 10)
    assert display_status("scheduled", date(2024, 3, 9), today) == "overdue"
    assert display_status("scheduled", date(2024, 3, 10), today) == "scheduled"
    assert display_status("paid", date(2024, 1, 1), today) == "paid"
    assert display_status("partial", date(2024, 1, 1), today) == "partial"


def test_paid_status():
    assert paid_status(Decimal("100"), Decimal("100")) == "paid"
    assert paid_status(Decimal("120"), Decimal("100")) == "paid"
    assert paid_status(Decimal("40"), Decimal("100")) == "partial"


def test_updated_payload_serializes_values():
    payload = Payment.updated(1, {"amount": Decimal("10"), "due_date": date(2024, 1, 1)},
                              {"amount": Decimal("12.5"), "due_date": date(2024, 2, 1)})
    assert payload["old"] == {"amount": "10.00", "due_date": "2024-01-01"}
    assert payload["new"] == {"amount": "12.50", "due_date": "2024-02-01"}
