"""
Ledger error taxonomy.

All errors are recoverable application errors; the HTTP layer maps them
to status codes through HTTP_STATUS.
"""


class LedgerError(ValueError):
    """Base class for every error surfaced by the ledger use cases"""
    code = "ledger_error"


class NotFoundError(LedgerError):
    """Entity absent or owned by another family (never distinguished)"""
    code = "not_found"


class InvalidStateError(LedgerError):
    """Operation not allowed in the entity's current lifecycle state"""
    code = "invalid_state"


class AlreadyReceivedError(InvalidStateError):
    code = "already_received"


class NotReceivedError(InvalidStateError):
    code = "not_received"


class ReceivedImmutableError(InvalidStateError):
    code = "received_immutable"


class HasAttributionsError(InvalidStateError):
    code = "has_attributions"


class ExceedsPaymentAmountError(LedgerError):
    code = "exceeds_payment_amount"


class ExceedsAvailableIncomeError(LedgerError):
    code = "exceeds_available_income"


class BelowAllocatedError(LedgerError):
    """Amount would drop below money already promised to payments"""
    code = "below_allocated"


class LedgerValidationError(LedgerError):
    """Malformed input: non-positive amount, unparseable date, unknown enum value"""
    code = "validation_error"


HTTP_STATUS = {
    NotFoundError: 404,
    InvalidStateError: 409,
    ExceedsPaymentAmountError: 409,
    ExceedsAvailableIncomeError: 409,
    BelowAllocatedError: 409,
    LedgerValidationError: 422,
}


def http_status_for(exc: LedgerError) -> int:
    for cls in type(exc).__mro__:
        if cls in HTTP_STATUS:
            return HTTP_STATUS[cls]
    return 400
