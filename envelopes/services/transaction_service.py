import logging
from dataclasses import dataclass, fields
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from django.db import transaction as db_transaction
from django.db.models import Q

from envelopes.ledger.conf import ledger_settings
from envelopes.ledger.exceptions import (
    EntityNotFound,
    ImmutableField,
    LedgerValidationError,
    TransactionNotFound,
)
from envelopes.ledger.models import Budget, Transaction, TransactionEvent
from envelopes.ledger.repos import DjangoEntityResolver, EntityResolverInterface
from envelopes.ledger.requests import check_description, check_transaction_date, parse_bool, parse_date

from .audit_service import record_event, transaction_values
from .balance_service import BalanceUpdateEngine, LedgerResult
from .locking import retry_on_lock_contention
from .reversal_service import SoftDeleteReversalManager
from .validation_service import TransactionValidator

logger = logging.getLogger(__name__)

# names a caller might use for a financial column, with or without the _id suffix
_FINANCIAL_NAMES = set(Transaction.FINANCIAL_FIELDS) | {
    name[: -len("_id")] for name in Transaction.FINANCIAL_FIELDS if name.endswith("_id")
}


@dataclass
class TransactionFilters:
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    transaction_type: Optional[str] = None
    envelope_id: Optional[int] = None
    payee_id: Optional[int] = None
    income_source_id: Optional[int] = None
    is_cleared: Optional[bool] = None
    is_reconciled: Optional[bool] = None
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    include_deleted: bool = False

    def apply(self, qs):
        if not self.include_deleted:
            qs = qs.filter(is_deleted=False)
        if self.start_date:
            qs = qs.filter(transaction_date__gte=self.start_date)
        if self.end_date:
            qs = qs.filter(transaction_date__lte=self.end_date)
        if self.transaction_type:
            qs = qs.filter(transaction_type=self.transaction_type)
        if self.envelope_id is not None:
            qs = qs.filter(Q(from_envelope_id=self.envelope_id) | Q(to_envelope_id=self.envelope_id))
        if self.payee_id is not None:
            qs = qs.filter(payee_id=self.payee_id)
        if self.income_source_id is not None:
            qs = qs.filter(income_source_id=self.income_source_id)
        if self.is_cleared is not None:
            qs = qs.filter(is_cleared=self.is_cleared)
        if self.is_reconciled is not None:
            qs = qs.filter(is_reconciled=self.is_reconciled)
        if self.min_amount is not None:
            qs = qs.filter(amount__gte=self.min_amount)
        if self.max_amount is not None:
            qs = qs.filter(amount__lte=self.max_amount)
        return qs

    @classmethod
    def field_names(cls) -> List[str]:
        return [f.name for f in fields(cls)]


class TransactionService():
    """
    Entry point for ledger writes.

    create / soft delete / restore run validation, row locking and balance
    updates; update only touches non-financial columns and never balances.
    """

    def __init__(
        self,
        resolver: Optional[EntityResolverInterface] = None,
        validator: Optional[TransactionValidator] = None,
        engine: Optional[BalanceUpdateEngine] = None,
        reversal: Optional[SoftDeleteReversalManager] = None,
    ):
        self.resolver = resolver or DjangoEntityResolver()
        self.validator = validator or TransactionValidator(self.resolver)
        self.engine = engine or BalanceUpdateEngine()
        self.reversal = reversal or SoftDeleteReversalManager(self.engine)

    def create_transaction(
        self, budget_id: int, transaction_type: str, amount, actor: Optional[str] = None, **extra
    ) -> LedgerResult:
        data = {"transaction_type": transaction_type, "amount": amount, **extra}
        return self.create_from_payload(budget_id, data, actor=actor)

    @retry_on_lock_contention
    def create_from_payload(self, budget_id, data: Dict[str, Any], actor: Optional[str] = None) -> LedgerResult:
        request, resolved = self.validator.validate(budget_id, data)
        return self.engine.post(request, resolved, actor=actor)

    @retry_on_lock_contention
    def soft_delete_transaction(self, transaction_id: int, actor: str) -> LedgerResult:
        return self.reversal.soft_delete(transaction_id, actor)

    @retry_on_lock_contention
    def restore_transaction(self, transaction_id: int, actor: str) -> LedgerResult:
        return self.reversal.restore(transaction_id, actor)

    def update_transaction(self, transaction_id: int, actor: Optional[str] = None, **changes) -> Transaction:
        """Update description, transaction_date, is_cleared or is_reconciled."""
        return self.update_from_payload(transaction_id, changes, actor=actor)

    def update_from_payload(
        self, transaction_id: int, data: Dict[str, Any], actor: Optional[str] = None
    ) -> Transaction:
        changes = dict(data)
        immutable = sorted(name for name in changes if name in _FINANCIAL_NAMES)
        if immutable:
            raise ImmutableField(
                f"Financial fields cannot be changed: {', '.join(immutable)}. "
                "Delete the transaction and create a new one instead.",
                details={"fields": immutable},
            )
        unknown = sorted(name for name in changes if name not in Transaction.EDITABLE_FIELDS)
        if unknown:
            raise LedgerValidationError(
                f"Unknown transaction field(s): {', '.join(unknown)}", details={"fields": unknown}
            )

        options = ledger_settings()
        if "description" in changes:
            changes["description"] = check_description(changes["description"], options)
        if "transaction_date" in changes:
            parsed = check_transaction_date(parse_date(changes["transaction_date"]), options)
            if parsed is None:
                raise LedgerValidationError(
                    "transaction_date cannot be empty", details={"field": "transaction_date"}
                )
            changes["transaction_date"] = parsed
        for flag in ("is_cleared", "is_reconciled"):
            if flag in changes:
                changes[flag] = parse_bool(flag, changes[flag])

        with db_transaction.atomic():
            txn = Transaction.objects.select_for_update().filter(pk=transaction_id).first()
            if txn is None:
                raise TransactionNotFound(f"Transaction {transaction_id} not found")
            old_values = transaction_values(txn, changes)
            for name, value in changes.items():
                setattr(txn, name, value)
            if changes:
                txn.save(update_fields=list(changes) + ["updated_at"])
                record_event(
                    txn,
                    TransactionEvent.UPDATED,
                    actor,
                    old_values=old_values,
                    new_values=transaction_values(txn, changes),
                )

        logger.info("Updated transaction %s: %s", txn.pk, ", ".join(sorted(changes)) or "no changes")
        return txn

    def get_transaction(self, transaction_id: int) -> Transaction:
        txn = (
            Transaction.objects.select_related("from_envelope", "to_envelope", "payee", "income_source")
            .filter(pk=transaction_id)
            .first()
        )
        if txn is None:
            raise TransactionNotFound(f"Transaction {transaction_id} not found")
        return txn

    def list_transactions(
        self,
        budget_id: int,
        filters: Optional[TransactionFilters] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ):
        if not Budget.objects.filter(pk=budget_id).exists():
            raise EntityNotFound(f"Budget {budget_id} not found", missing=[{"budget_id": budget_id}])
        qs = Transaction.objects.filter(budget_id=budget_id)
        qs = (filters or TransactionFilters()).apply(qs).order_by("-transaction_date", "-id")
        if limit is not None:
            return qs[offset:offset + limit]
        if offset:
            return qs[offset:]
        return qs

    def list_transaction_events(self, transaction_id: int):
        """Audit trail of a transaction, oldest first."""
        if not Transaction.objects.filter(pk=transaction_id).exists():
            raise TransactionNotFound(f"Transaction {transaction_id} not found")
        return TransactionEvent.objects.filter(transaction_id=transaction_id).order_by("event_timestamp", "id")
