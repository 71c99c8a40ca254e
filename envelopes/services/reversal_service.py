"""
Soft-delete / restore state machine.

A transaction is either active or deleted. Deleting applies the inverse of
the deltas the transaction applied at creation; restoring applies them again.
Both are recomputed from the transaction's own type, amount and relations, so
no undo log is kept and delete-then-restore leaves every balance unchanged.
"""
import logging
from typing import Optional

from django.db import transaction as db_transaction
from django.utils import timezone

from envelopes.ledger.conf import ledger_settings
from envelopes.ledger.exceptions import (
    AlreadyDeleted,
    MissingRequiredField,
    NotDeleted,
    StaleReference,
    TransactionNotFound,
)
from envelopes.ledger.models import Transaction, TransactionEvent
from envelopes.ledger.signals import DELETED, RESTORED, send_after_commit

from .audit_service import DELETION_FIELDS, record_event, transaction_values
from .balance_service import BalanceUpdateEngine, LedgerResult, compute_deltas
from .locking import lock_rows

logger = logging.getLogger(__name__)


class SoftDeleteReversalManager:
    def __init__(self, engine: Optional[BalanceUpdateEngine] = None):
        self.engine = engine or BalanceUpdateEngine()

    def soft_delete(self, transaction_id: int, actor: str) -> LedgerResult:
        """active -> deleted. Raises AlreadyDeleted without touching balances."""
        return self._transition(transaction_id, actor, delete=True)

    def restore(self, transaction_id: int, actor: str) -> LedgerResult:
        """deleted -> active. Raises NotDeleted without touching balances."""
        return self._transition(transaction_id, actor, delete=False)

    def _check_transition(self, txn: Transaction, actor: str, delete: bool):
        if delete and txn.is_deleted:
            raise AlreadyDeleted(
                f"Transaction {txn.pk} is already deleted",
                details={"deleted_at": txn.deleted_at.isoformat() if txn.deleted_at else None},
            )
        if not delete and not txn.is_deleted:
            raise NotDeleted(f"Transaction {txn.pk} is not deleted")
        if (
            not delete
            and ledger_settings()["RESTORE_REQUIRES_DELETING_ACTOR"]
            and txn.deleted_by != actor
        ):
            raise TransactionNotFound("Deleted transaction not found or you cannot restore it")

    def _transition(self, transaction_id: int, actor: str, delete: bool) -> LedgerResult:
        if actor is None or not str(actor).strip():
            raise MissingRequiredField("actor is required", details={"fields": ["actor"]})
        actor = str(actor).strip()

        snapshot = Transaction.objects.filter(pk=transaction_id).first()
        if snapshot is None:
            raise TransactionNotFound(f"Transaction {transaction_id} not found")
        # cheap rejection from committed state; re-checked under lock below
        self._check_transition(snapshot, actor, delete)

        with db_transaction.atomic():
            locked = lock_rows(
                snapshot.budget_id,
                (snapshot.from_envelope_id, snapshot.to_envelope_id),
                payee_id=snapshot.payee_id,
                transaction_id=snapshot.pk,
            )
            txn = locked.transaction
            if any(getattr(txn, name) != getattr(snapshot, name) for name in Transaction.FINANCIAL_FIELDS):
                raise StaleReference(f"Transaction {txn.pk} changed after it was read")
            self._check_transition(txn, actor, delete)
            if txn.transaction_type == Transaction.DEBT_PAYMENT and not locked.envelopes[txn.from_envelope_id].is_debt:
                raise StaleReference(
                    f"Envelope {txn.from_envelope_id} is no longer a debt envelope",
                    details={"field": "from_envelope_id", "id": txn.from_envelope_id},
                )

            old_values = transaction_values(txn, DELETION_FIELDS)
            warnings = self.engine.apply_deltas(locked, compute_deltas(txn, sign=-1 if delete else 1))
            if delete:
                txn.is_deleted = True
                txn.deleted_at = timezone.now()
                txn.deleted_by = actor
            else:
                txn.is_deleted = False
                txn.deleted_at = None
                txn.deleted_by = None
            txn.save(update_fields=["is_deleted", "deleted_at", "deleted_by", "updated_at"])
            record_event(
                txn,
                TransactionEvent.DELETED if delete else TransactionEvent.RESTORED,
                actor,
                old_values=old_values,
                new_values=transaction_values(txn, DELETION_FIELDS),
            )

            result = LedgerResult.from_locked(txn, locked, warnings)
            send_after_commit(self.__class__, result, DELETED if delete else RESTORED)

        logger.info(
            "%s %s transaction %s (%s) by %s",
            "Deleted" if delete else "Restored", txn.transaction_type, txn.pk, txn.amount, actor,
        )
        return result
