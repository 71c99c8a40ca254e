"""
Row locking for balance writes.

Every write that touches balances locks its rows in one canonical order:
the budget row, then envelopes by ascending id, then the payee, then the
transaction row itself (delete/restore). Every mutation of a budget's ledger
therefore queues on the budget row first, and two writers can never hold
locks the other is waiting for.
"""
import logging
import time
from dataclasses import dataclass, field
from functools import wraps
from typing import Dict, Iterable, List, Optional, Tuple

from django.db import OperationalError
from django.db import transaction as db_transaction
from django.db.transaction import TransactionManagementError

from envelopes.ledger.conf import ledger_settings
from envelopes.ledger.exceptions import LockTimeout, StaleReference
from envelopes.ledger.models import Budget, Envelope, Payee, Transaction

logger = logging.getLogger(__name__)


@dataclass
class LockedRows:
    budget: Budget
    envelopes: Dict[int, Envelope] = field(default_factory=dict)
    payee: Optional[Payee] = None
    transaction: Optional[Transaction] = None

    def row_for(self, model, pk):
        if model is Budget:
            return self.budget
        if model is Envelope:
            return self.envelopes[pk]
        if model is Payee:
            return self.payee
        if model is Transaction:
            return self.transaction
        raise KeyError(f"{model.__name__} {pk} is not locked")


def lock_order(
    budget_id: int,
    envelope_ids: Iterable[Optional[int]] = (),
    payee_id: Optional[int] = None,
    transaction_id: Optional[int] = None,
) -> List[Tuple[type, int]]:
    """Return the (model, pk) pairs to lock, in the one order every code path uses."""
    order = [(Budget, budget_id)]
    order.extend((Envelope, pk) for pk in sorted({pk for pk in envelope_ids if pk is not None}))
    if payee_id is not None:
        order.append((Payee, payee_id))
    if transaction_id is not None:
        order.append((Transaction, transaction_id))
    return order


def lock_rows(
    budget_id: int,
    envelope_ids: Iterable[Optional[int]] = (),
    payee_id: Optional[int] = None,
    transaction_id: Optional[int] = None,
    using: Optional[str] = None,
) -> LockedRows:
    """
    SELECT ... FOR UPDATE each row in lock_order() and return them.

    Must run inside transaction.atomic(); locks are released at commit or
    rollback. A row that no longer exists raises StaleReference.
    """
    if not db_transaction.get_connection(using).in_atomic_block:
        raise TransactionManagementError("Ledger rows can only be locked inside transaction.atomic().")

    locked = None
    for model, pk in lock_order(budget_id, envelope_ids, payee_id, transaction_id):
        try:
            row = model.objects.using(using).select_for_update().get(pk=pk)
        except model.DoesNotExist:
            raise StaleReference(
                f"{model.__name__} {pk} was removed by a concurrent request",
                details={"entity": model.__name__, "id": pk},
            )
        logger.debug("Locked %s %s", model.__name__, pk)
        if model is Budget:
            locked = LockedRows(budget=row)
        elif model is Envelope:
            locked.envelopes[pk] = row
        elif model is Payee:
            locked.payee = row
        else:
            locked.transaction = row
    return locked


def retry_on_lock_contention(func):
    """
    Retry a top-level ledger write on transient database lock errors.

    Inside a caller's atomic block the transaction is already broken, so the
    error is surfaced as LockTimeout straight away.
    """

    @wraps(func)
    def wrapper(*args, **kwargs):
        options = ledger_settings()
        max_attempts = max(1, int(options["LOCK_RETRY_ATTEMPTS"]))
        attempt = 0
        while True:
            try:
                return func(*args, **kwargs)
            except OperationalError as oe:
                attempt += 1
                if db_transaction.get_connection().in_atomic_block or attempt >= max_attempts:
                    logger.error("%s failed after %s attempt(s): %s", func.__name__, attempt, oe)
                    raise LockTimeout(
                        f"Could not acquire ledger locks: {oe}", details={"attempts": attempt}
                    ) from oe
                sleep_time = options["LOCK_RETRY_BACKOFF"] * attempt
                logger.warning(
                    "Database lock error in %s: %s. Retrying in %ss (attempt %s/%s)",
                    func.__name__, oe, sleep_time, attempt, max_attempts,
                )
                time.sleep(sleep_time)

    return wrapper
