"""
Ledger error taxonomy

Every error is raised before the first write of an operation, so callers can
rely on "exception means nothing changed". ``status_code`` is what the HTTP
adapter answers with.
"""
from typing import Optional, Sequence


class LedgerError(Exception):
    """Base ledger operation error"""
    status_code = 400
    default_code = "LEDGER_ERROR"

    def __init__(self, message: str, error_code: Optional[str] = None):
        self.message = message
        self.error_code = error_code or self.default_code
        super().__init__(message)


class ValidationError(LedgerError):
    """Malformed or out-of-range input"""
    default_code = "VALIDATION_ERROR"


class InvalidPromotionsError(ValidationError):
    """One or more requested promotions are unknown or outside their window"""
    default_code = "INVALID_PROMOTIONS"

    def __init__(self, promotion_ids: Sequence[str]):
        self.promotion_ids = list(promotion_ids)
        super().__init__(f"Invalid promotion IDs: {', '.join(self.promotion_ids)}")


class WrongTypeError(ValidationError):
    """Operation does not apply to this transaction type"""
    default_code = "WRONG_TRANSACTION_TYPE"


class NotGuestError(ValidationError):
    """Award target is not on the event guest list"""
    default_code = "NOT_GUEST"


class NotFoundError(LedgerError):
    """Referenced entity does not exist"""
    status_code = 404
    default_code = "NOT_FOUND"


class PermissionDeniedError(LedgerError):
    """Caller's role or ownership is insufficient"""
    status_code = 403
    default_code = "PERMISSION_DENIED"


class UnverifiedUserError(PermissionDeniedError):
    """Operation requires a verified student"""
    default_code = "UNVERIFIED_USER"


class InsufficientBalanceError(LedgerError):
    """User balance does not cover the debit"""
    default_code = "INSUFFICIENT_BALANCE"


class InsufficientEventBudgetError(LedgerError):
    """Event has too few points remaining"""
    default_code = "INSUFFICIENT_EVENT_BUDGET"


class AlreadyUsedError(LedgerError):
    """One-time promotion already used"""
    status_code = 409
    default_code = "ALREADY_USED"


class AlreadyProcessedError(AlreadyUsedError):
    """Redemption already processed"""
    default_code = "ALREADY_PROCESSED"


class ConflictError(LedgerError):
    """Current state forbids the transition"""
    status_code = 409
    default_code = "CONFLICT"


class LedgerInvariantError(LedgerError):
    """Balance and history disagree; a programming error, never user input"""
    status_code = 500
    default_code = "LEDGER_INVARIANT_VIOLATION"
