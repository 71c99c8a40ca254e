"""
Ledger error taxonomy.

Every error the engine raises derives from LedgerError and carries a stable
``code`` (the error kind reported to callers) and the ``http_status`` the
request layer answers with. Validation and not-found errors are raised before
any row is written; conflicts and state errors are raised inside the atomic
write and roll it back.
"""
from typing import Any, Dict, Optional


class LedgerError(Exception):
    """Base ledger exception."""

    code = "LedgerError"
    http_status = 400

    def __init__(self, message: str = "", details: Optional[Dict[str, Any]] = None):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details or {}

    def as_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message, "details": self.details}


# Validation (400)

class LedgerValidationError(LedgerError):
    """Bad input shape: type, amount, required fields, same-envelope transfer."""

    code = "Validation"
    http_status = 400


class UnknownType(LedgerValidationError):
    code = "UnknownType"


class MissingRequiredField(LedgerValidationError):
    code = "MissingRequiredField"


class UnexpectedRelation(LedgerValidationError):
    code = "UnexpectedRelation"


class InvalidAmount(LedgerValidationError):
    code = "InvalidAmount"


class SameEnvelopeTransfer(LedgerValidationError):
    code = "SameEnvelopeTransfer"


class WrongEnvelopeTypeForDebtPayment(LedgerValidationError):
    code = "WrongEnvelopeTypeForDebtPayment"


class InactiveEntity(LedgerValidationError):
    code = "InactiveEntity"


class DescriptionTooLong(LedgerValidationError):
    code = "DescriptionTooLong"


class FutureTransactionDate(LedgerValidationError):
    code = "FutureTransactionDate"


class ImmutableField(LedgerValidationError):
    code = "ImmutableField"


class OverdraftNotAllowed(LedgerValidationError):
    code = "OverdraftNotAllowed"


class CrossBudgetReference(LedgerError):
    """A referenced entity belongs to a different budget."""

    code = "CrossBudgetReference"
    http_status = 400


# Not found (404)

class LedgerNotFoundError(LedgerError):
    code = "NotFound"
    http_status = 404


class EntityNotFound(LedgerNotFoundError):
    code = "EntityNotFound"

    def __init__(self, message: str = "", missing=None):
        missing = list(missing or [])
        super().__init__(message, details={"missing": missing})
        self.missing = missing


class TransactionNotFound(LedgerNotFoundError):
    code = "TransactionNotFound"


# Conflicts (409)

class ConflictError(LedgerError):
    """Concurrent modification detected at write time; safe to retry."""

    code = "Conflict"
    http_status = 409


class StaleReference(ConflictError):
    code = "StaleReference"


class LockTimeout(ConflictError):
    code = "LockTimeout"


class StateTransitionError(LedgerError):
    code = "InvalidStateTransition"
    http_status = 409


class AlreadyDeleted(StateTransitionError):
    code = "AlreadyDeleted"


class NotDeleted(StateTransitionError):
    code = "NotDeleted"
