import threading
from decimal import Decimal
from unittest import mock

import pytest
from django.db import OperationalError, connection, transaction as db_transaction
from django.db.transaction import TransactionManagementError
from django.test import override_settings

from envelopes.ledger.exceptions import LockTimeout, StaleReference
from envelopes.ledger.models import Budget, Envelope, Payee, Transaction
from envelopes.services.locking import lock_order, lock_rows, retry_on_lock_contention
from envelopes.services.transaction_service import TransactionService

from .factories import make_budget, make_envelope, make_payee


def test_lock_order_is_budget_envelopes_payee_transaction():
    order = lock_order(1, envelope_ids=(9, None, 4), payee_id=7, transaction_id=3)
    assert order == [(Budget, 1), (Envelope, 4), (Envelope, 9), (Payee, 7), (Transaction, 3)]


def test_lock_order_deduplicates_envelopes():
    assert lock_order(1, envelope_ids=(5, 5)) == [(Budget, 1), (Envelope, 5)]


@pytest.mark.django_db(transaction=True)
def test_lock_rows_requires_atomic_block():
    budget = make_budget()
    with pytest.raises(TransactionManagementError):
        lock_rows(budget.pk)


@pytest.mark.django_db
def test_lock_rows_returns_locked_rows():
    budget = make_budget()
    low = make_envelope(budget, name="A")
    high = make_envelope(budget, name="B")
    payee = make_payee(budget)
    with db_transaction.atomic():
        locked = lock_rows(budget.pk, (high.pk, low.pk), payee_id=payee.pk)
    assert locked.budget == budget
    assert list(locked.envelopes) == [low.pk, high.pk]
    assert locked.row_for(Payee, payee.pk) == payee


@pytest.mark.django_db
def test_lock_rows_missing_row_is_stale():
    budget = make_budget()
    with pytest.raises(StaleReference):
        with db_transaction.atomic():
            lock_rows(budget.pk, (424242,))


@override_settings(ENVELOPE_LEDGER={"LOCK_RETRY_ATTEMPTS": 3, "LOCK_RETRY_BACKOFF": 0.01})
@pytest.mark.django_db(transaction=True)
def test_retry_recovers_from_transient_lock_error():
    calls = []

    @retry_on_lock_contention
    def write():
        calls.append(1)
        if len(calls) < 3:
            raise OperationalError("database is locked")
        return "ok"

    with mock.patch("envelopes.services.locking.time.sleep") as sleep:
        assert write() == "ok"
    assert len(calls) == 3
    assert [c.args[0] for c in sleep.call_args_list] == [0.01, 0.02]


@override_settings(ENVELOPE_LEDGER={"LOCK_RETRY_ATTEMPTS": 2, "LOCK_RETRY_BACKOFF": 0})
@pytest.mark.django_db(transaction=True)
def test_retry_gives_up_with_lock_timeout():
    @retry_on_lock_contention
    def write():
        raise OperationalError("database is locked")

    with mock.patch("envelopes.services.locking.time.sleep"):
        with pytest.raises(LockTimeout) as excinfo:
            write()
    assert excinfo.value.details == {"attempts": 2}


@pytest.mark.django_db
def test_no_retry_inside_outer_atomic_block():
    calls = []

    @retry_on_lock_contention
    def write():
        calls.append(1)
        raise OperationalError("database is locked")

    with pytest.raises(LockTimeout):
        write()
    assert calls == [1]


@pytest.mark.skipif(
    not connection.features.has_select_for_update,
    reason="needs a database with row locks (PostgreSQL or MySQL); SQLite serializes whole-database writes",
)
@pytest.mark.django_db(transaction=True)
def test_parallel_expenses_on_one_envelope_all_apply():
    budget = make_budget()
    envelope = make_envelope(budget, balance="100.00")
    payee = make_payee(budget)
    workers, per_worker = 4, 5
    errors = []
    start = threading.Barrier(workers)

    def spend():
        service = TransactionService()
        try:
            start.wait()
            for _ in range(per_worker):
                service.create_transaction(
                    budget.pk, "expense", "1.00", from_envelope_id=envelope.pk, payee_id=payee.pk
                )
        except Exception as e:  # collected and asserted on below
            errors.append(e)
        finally:
            connection.close()

    threads = [threading.Thread(target=spend) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    envelope.refresh_from_db()
    payee.refresh_from_db()
    spent = Decimal(workers * per_worker)
    assert envelope.current_balance == Decimal("100.00") - spent
    assert payee.total_paid == spent
