"""
Transaction requests as a tagged union.

Each transaction type has its own frozen dataclass carrying only the relations
valid for that type, so a request that made it through
``parse_transaction_request`` cannot be missing a relation its type needs.
"""
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, ClassVar, Dict, Mapping, Optional, Tuple, Union

from django.utils import timezone

from .conf import ledger_settings
from .exceptions import (
    DescriptionTooLong,
    FutureTransactionDate,
    InvalidAmount,
    LedgerValidationError,
    MissingRequiredField,
    SameEnvelopeTransfer,
    UnexpectedRelation,
    UnknownType,
)
from .models import MONEY_DECIMAL_PLACES, MONEY_MAX_DIGITS, Transaction

RELATION_FIELDS = ("from_envelope_id", "to_envelope_id", "payee_id", "income_source_id")

_CENT = Decimal(1).scaleb(-MONEY_DECIMAL_PLACES)
_MAX_AMOUNT = Decimal(10) ** (MONEY_MAX_DIGITS - MONEY_DECIMAL_PLACES)


@dataclass(frozen=True, kw_only=True)
class _TransactionRequest:
    transaction_type: ClassVar[str]
    required_relations: ClassVar[Tuple[str, ...]]

    budget_id: int
    amount: Decimal
    description: str = ""
    transaction_date: Optional[date] = None
    is_cleared: bool = False

    def relations(self) -> Dict[str, int]:
        return {name: getattr(self, name) for name in self.required_relations}

    def envelope_ids(self) -> Tuple[int, ...]:
        return tuple(
            getattr(self, name) for name in ("from_envelope_id", "to_envelope_id") if name in self.required_relations
        )

    def row_values(self) -> Dict[str, Any]:
        values = {
            "budget_id": self.budget_id,
            "transaction_type": self.transaction_type,
            "amount": self.amount,
            "description": self.description,
            "transaction_date": self.transaction_date or timezone.localdate(),
            "is_cleared": self.is_cleared,
        }
        values.update(self.relations())
        return values


@dataclass(frozen=True, kw_only=True)
class IncomeRequest(_TransactionRequest):
    transaction_type: ClassVar[str] = Transaction.INCOME
    required_relations: ClassVar[Tuple[str, ...]] = ("income_source_id",)

    income_source_id: int


@dataclass(frozen=True, kw_only=True)
class AllocationRequest(_TransactionRequest):
    transaction_type: ClassVar[str] = Transaction.ALLOCATION
    required_relations: ClassVar[Tuple[str, ...]] = ("to_envelope_id",)

    to_envelope_id: int


@dataclass(frozen=True, kw_only=True)
class ExpenseRequest(_TransactionRequest):
    transaction_type: ClassVar[str] = Transaction.EXPENSE
    required_relations: ClassVar[Tuple[str, ...]] = ("from_envelope_id", "payee_id")

    from_envelope_id: int
    payee_id: int


@dataclass(frozen=True, kw_only=True)
class TransferRequest(_TransactionRequest):
    transaction_type: ClassVar[str] = Transaction.TRANSFER
    required_relations: ClassVar[Tuple[str, ...]] = ("from_envelope_id", "to_envelope_id")

    from_envelope_id: int
    to_envelope_id: int


@dataclass(frozen=True, kw_only=True)
class DebtPaymentRequest(_TransactionRequest):
    transaction_type: ClassVar[str] = Transaction.DEBT_PAYMENT
    required_relations: ClassVar[Tuple[str, ...]] = ("from_envelope_id", "payee_id")

    from_envelope_id: int
    payee_id: int


TransactionRequest = Union[IncomeRequest, AllocationRequest, ExpenseRequest, TransferRequest, DebtPaymentRequest]

REQUEST_TYPES = {
    cls.transaction_type: cls
    for cls in (IncomeRequest, AllocationRequest, ExpenseRequest, TransferRequest, DebtPaymentRequest)
}


def _is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def parse_amount(raw) -> Decimal:
    """Return ``raw`` as a Decimal at ledger precision, rejecting instead of rounding."""
    if _is_blank(raw):
        raise MissingRequiredField("amount is required", details={"fields": ["amount"]})
    if isinstance(raw, bool):
        raise InvalidAmount(f"Invalid amount value: {raw!r}")
    try:
        amount = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError, TypeError) as e:
        raise InvalidAmount(f"Invalid amount value: {raw!r}") from e

    if not amount.is_finite():
        raise InvalidAmount(f"Invalid amount value: {raw!r}")
    if amount <= 0:
        raise InvalidAmount("Transaction amount must be positive", details={"amount": str(amount)})
    if amount >= _MAX_AMOUNT:
        raise InvalidAmount(
            f"Transaction amount must be below {_MAX_AMOUNT}", details={"amount": str(amount)}
        )
    quantized = amount.quantize(_CENT)
    if quantized != amount:
        raise InvalidAmount(
            f"Transaction amount can have at most {MONEY_DECIMAL_PLACES} decimal places",
            details={"amount": str(amount)},
        )
    return quantized


def _parse_id(name: str, raw) -> int:
    # ints and digit strings only; 1.9 or "1.0" are rejected, not truncated
    if isinstance(raw, int) and not isinstance(raw, bool):
        return raw
    if isinstance(raw, str) and raw.strip().isascii() and raw.strip().isdigit():
        return int(raw.strip())
    raise LedgerValidationError(f"{name} must be an integer id", details={"field": name, "value": repr(raw)})


_TRUE = {"1", "true", "yes"}
_FALSE = {"0", "false", "no"}


def parse_bool(name: str, raw) -> bool:
    """Strict boolean for JSON, form and query values: "false" is False."""
    if isinstance(raw, bool):
        return raw
    if isinstance(raw, int) and raw in (0, 1):
        return bool(raw)
    if isinstance(raw, str):
        value = raw.strip().lower()
        if value in _TRUE:
            return True
        if value in _FALSE:
            return False
    raise LedgerValidationError(f"{name} must be true or false", details={"field": name})


def parse_date(raw) -> Optional[date]:
    if _is_blank(raw):
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    try:
        return date.fromisoformat(str(raw).strip())
    except ValueError as e:
        raise LedgerValidationError(
            f"Invalid transaction_date: {raw!r}", details={"field": "transaction_date"}
        ) from e


def check_description(description: str, options=None) -> str:
    options = options or ledger_settings()
    description = "" if description is None else str(description)
    limit = options["MAX_DESCRIPTION_LENGTH"]
    if len(description) > limit:
        raise DescriptionTooLong(f"Transaction description must be {limit} characters or less")
    return description


def check_transaction_date(value: Optional[date], options=None) -> Optional[date]:
    options = options or ledger_settings()
    if value is not None and not options["ALLOW_FUTURE_DATES"] and value > timezone.localdate():
        raise FutureTransactionDate("Transaction date cannot be in the future")
    return value


def parse_transaction_request(budget_id, data: Mapping[str, Any]) -> TransactionRequest:
    """
    Build the request variant for ``data["transaction_type"]``.

    Raises UnknownType, MissingRequiredField, UnexpectedRelation, InvalidAmount,
    SameEnvelopeTransfer, DescriptionTooLong or FutureTransactionDate. Reads no rows.
    """
    options = ledger_settings()
    transaction_type = data.get("transaction_type")
    if _is_blank(transaction_type):
        raise MissingRequiredField("transaction_type is required", details={"fields": ["transaction_type"]})
    request_cls = REQUEST_TYPES.get(transaction_type) if isinstance(transaction_type, str) else None
    if request_cls is None:
        raise UnknownType(
            f"Invalid transaction type: {transaction_type!r}",
            details={"allowed": sorted(REQUEST_TYPES)},
        )

    missing = [name for name in request_cls.required_relations if _is_blank(data.get(name))]
    if missing:
        raise MissingRequiredField(
            f"{transaction_type} transactions require {', '.join(request_cls.required_relations)}",
            details={"fields": missing},
        )
    unexpected = [
        name for name in RELATION_FIELDS
        if name not in request_cls.required_relations and not _is_blank(data.get(name))
    ]
    if unexpected:
        raise UnexpectedRelation(
            f"{transaction_type} transactions do not accept {', '.join(unexpected)}",
            details={"fields": unexpected},
        )

    relations = {name: _parse_id(name, data[name]) for name in request_cls.required_relations}
    if request_cls is TransferRequest and relations["from_envelope_id"] == relations["to_envelope_id"]:
        raise SameEnvelopeTransfer(
            "Cannot transfer to the same envelope",
            details={"envelope_id": relations["from_envelope_id"]},
        )
    amount = parse_amount(data.get("amount"))

    return request_cls(
        budget_id=_parse_id("budget_id", budget_id),
        amount=amount,
        description=check_description(data.get("description") or "", options),
        transaction_date=check_transaction_date(parse_date(data.get("transaction_date")), options),
        is_cleared=False if _is_blank(data.get("is_cleared")) else parse_bool("is_cleared", data["is_cleared"]),
        **relations,
    )
