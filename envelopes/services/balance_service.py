"""
Balance Update Engine.

Balance effects are a pure function of (transaction type, amount, entity ids),
looked up in DELTA_RULES. Creating a transaction applies compute_deltas(entry);
deleting it applies compute_deltas(entry, sign=-1); restoring applies the
same set again. Nothing else in the codebase writes balance columns.
"""
import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from django.db import transaction as db_transaction
from django.db.models import F
from django.utils import timezone

from envelopes.ledger.conf import OVERDRAFT_REJECT, OVERDRAFT_WARN, ledger_settings
from envelopes.ledger.exceptions import (
    OverdraftNotAllowed,
    StaleReference,
    UnknownType,
)
from envelopes.ledger.models import Budget, Envelope, IncomeSource, Payee, Transaction, TransactionEvent
from envelopes.ledger.signals import CREATED, send_after_commit

from .audit_service import record_event, transaction_values
from .locking import LockedRows, lock_rows

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BalanceDelta:
    model: type
    pk: int
    field: str
    amount: Decimal


# columns the overdraft policy watches
OVERDRAFT_FIELDS = {
    (Budget, "available_amount"),
    (Envelope, "current_balance"),
}


def _income(entry, amount):
    return [BalanceDelta(Budget, entry.budget_id, "available_amount", amount)]


def _allocation(entry, amount):
    return [
        BalanceDelta(Budget, entry.budget_id, "available_amount", -amount),
        BalanceDelta(Envelope, entry.to_envelope_id, "current_balance", amount),
    ]


def _expense(entry, amount):
    # money leaves the ledger; the budget pool is untouched
    return [
        BalanceDelta(Envelope, entry.from_envelope_id, "current_balance", -amount),
        BalanceDelta(Payee, entry.payee_id, "total_paid", amount),
    ]


def _transfer(entry, amount):
    return [
        BalanceDelta(Envelope, entry.from_envelope_id, "current_balance", -amount),
        BalanceDelta(Envelope, entry.to_envelope_id, "current_balance", amount),
    ]


def _debt_payment(entry, amount):
    return [
        BalanceDelta(Envelope, entry.from_envelope_id, "current_balance", -amount),
        BalanceDelta(Envelope, entry.from_envelope_id, "debt_balance", -amount),
        BalanceDelta(Payee, entry.payee_id, "total_paid", amount),
    ]


DELTA_RULES = {
    Transaction.INCOME: _income,
    Transaction.ALLOCATION: _allocation,
    Transaction.EXPENSE: _expense,
    Transaction.TRANSFER: _transfer,
    Transaction.DEBT_PAYMENT: _debt_payment,
}


def compute_deltas(entry, sign: int = 1) -> List[BalanceDelta]:
    """
    Deltas for ``entry`` (a Transaction row or a request variant).

    sign=-1 gives the exact inverse, used to reverse a soft-deleted transaction.
    """
    if sign not in (1, -1):
        raise ValueError(f"sign must be 1 or -1, got {sign!r}")
    rule = DELTA_RULES.get(entry.transaction_type)
    if rule is None:
        raise UnknownType(f"Invalid transaction type: {entry.transaction_type!r}")
    return rule(entry, entry.amount * sign)


def group_deltas(deltas: List[BalanceDelta]) -> "OrderedDict[tuple, Dict[str, Decimal]]":
    """Sum deltas per row: {(model, pk): {field: amount}}, in first-seen order."""
    grouped: "OrderedDict[tuple, Dict[str, Decimal]]" = OrderedDict()
    for delta in deltas:
        fields = grouped.setdefault((delta.model, delta.pk), {})
        fields[delta.field] = fields.get(delta.field, Decimal("0")) + delta.amount
    return grouped


@dataclass
class LedgerResult:
    """A transaction plus the post-write state of every row it touched."""

    transaction: Transaction
    budget: Budget
    envelopes: List[Envelope] = field(default_factory=list)
    payee: Optional[Payee] = None
    warnings: List[str] = field(default_factory=list)

    @classmethod
    def from_locked(cls, txn: Transaction, locked: LockedRows, warnings=None):
        return cls(
            transaction=txn,
            budget=locked.budget,
            envelopes=[locked.envelopes[pk] for pk in sorted(locked.envelopes)],
            payee=locked.payee,
            warnings=list(warnings or []),
        )

    def balances(self) -> Dict[str, Any]:
        return {
            "budget": {"id": self.budget.id, "available_amount": self.budget.available_amount},
            "envelopes": [
                {
                    "id": e.id,
                    "current_balance": e.current_balance,
                    "debt_balance": e.debt_balance,
                }
                for e in self.envelopes
            ],
            "payee": (
                {"id": self.payee.id, "total_paid": self.payee.total_paid} if self.payee is not None else None
            ),
        }


class BalanceUpdateEngine:
    def apply_deltas(self, locked: LockedRows, deltas: List[BalanceDelta]) -> List[str]:
        """
        Write ``deltas`` to rows already locked by lock_rows().

        Must run inside the same atomic block as the lock. Returns overdraft
        warnings; raises OverdraftNotAllowed under the reject policy, which
        rolls back the whole write.
        """
        policy = ledger_settings()["OVERDRAFT_POLICY"]
        now = timezone.now()
        warnings = []

        for (model, pk), fields in group_deltas(deltas).items():
            updates = {name: F(name) + amount for name, amount in fields.items()}
            model.objects.filter(pk=pk).update(updated_at=now, **updates)

            row = locked.row_for(model, pk)
            row.refresh_from_db(fields=list(fields) + ["updated_at"])

            for name, amount in fields.items():
                value = getattr(row, name)
                if (model, name) not in OVERDRAFT_FIELDS or amount >= 0 or value >= 0:
                    continue
                message = f"{model.__name__} {pk} {name} is overdrawn: {value}"
                if policy == OVERDRAFT_REJECT:
                    raise OverdraftNotAllowed(message, details={"entity": model.__name__, "id": pk, name: str(value)})
                if policy == OVERDRAFT_WARN:
                    logger.warning(message)
                    warnings.append(message)
        return warnings

    def _check_fresh(self, request, resolved, locked: LockedRows):
        """Compare rows validated from committed state with the locked rows."""
        budget = locked.budget
        if not budget.is_active:
            raise StaleReference(f"Budget {budget.id} was deactivated", details={"field": "budget_id"})

        for relation, validated in resolved.referenced().items():
            if relation == "income_source_id":
                # not a balance row, so it is re-read rather than locked
                current = IncomeSource.objects.filter(pk=validated.id).first()
            elif relation == "payee_id":
                current = locked.payee
            else:
                current = locked.envelopes.get(validated.id)

            if current is None:
                raise StaleReference(
                    f"{relation} {validated.id} was removed by a concurrent request",
                    details={"field": relation, "id": validated.id},
                )
            if current.budget_id != budget.id or not current.is_active:
                raise StaleReference(
                    f"{relation} {validated.id} changed after validation",
                    details={"field": relation, "id": validated.id},
                )
            if isinstance(current, Envelope) and current.envelope_type != validated.envelope_type:
                raise StaleReference(
                    f"{relation} {validated.id} changed type after validation",
                    details={"field": relation, "id": validated.id},
                )

    def post(self, request, resolved, actor: Optional[str] = None) -> LedgerResult:
        """
        Insert the transaction row and apply its deltas as one atomic unit.

        ``request`` is a validated request variant and ``resolved`` the entities
        the validator loaded for it. Rows that changed in between raise
        StaleReference and nothing is written.
        """
        with db_transaction.atomic():
            locked = lock_rows(
                request.budget_id,
                request.envelope_ids(),
                payee_id=getattr(request, "payee_id", None),
            )
            self._check_fresh(request, resolved, locked)

            txn = Transaction.objects.create(**request.row_values())
            warnings = self.apply_deltas(locked, compute_deltas(txn))
            record_event(txn, TransactionEvent.CREATED, actor, new_values=transaction_values(txn))
            result = LedgerResult.from_locked(txn, locked, warnings)
            send_after_commit(self.__class__, result, CREATED)

        logger.info(
            "Posted %s transaction %s for %s in budget %s",
            txn.transaction_type, txn.pk, txn.amount, txn.budget_id,
        )
        return result

