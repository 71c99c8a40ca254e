from decimal import Decimal

from django.db import IntegrityError, transaction as db_transaction
from django.test import TestCase

from envelopes.ledger.models import Envelope, Transaction

from .factories import make_budget, make_debt_envelope, make_envelope


class EnvelopeModelTest(TestCase):
    def setUp(self):
        self.budget = make_budget()

    def test_regular_envelope_has_no_debt_balance(self):
        env = make_envelope(self.budget, debt_balance=Decimal("50.00"))
        self.assertFalse(env.is_debt)
        self.assertIsNone(env.debt_balance)

    def test_debt_envelope_defaults_debt_balance_to_zero(self):
        env = Envelope.objects.create(budget=self.budget, name="Card", envelope_type=Envelope.DEBT)
        self.assertTrue(env.is_debt)
        self.assertEqual(env.debt_balance, Decimal("0.00"))

    def test_debt_envelope_keeps_given_debt_balance(self):
        env = make_debt_envelope(self.budget, debt="2500.00")
        env.refresh_from_db()
        self.assertEqual(env.debt_balance, Decimal("2500.00"))


class TransactionModelTest(TestCase):
    def setUp(self):
        self.budget = make_budget()
        self.envelope = make_envelope(self.budget)

    def test_amount_must_be_positive_in_database(self):
        with self.assertRaises(IntegrityError):
            with db_transaction.atomic():
                Transaction.objects.create(
                    budget=self.budget,
                    transaction_type=Transaction.ALLOCATION,
                    amount=Decimal("0.00"),
                    transaction_date="2024-01-01",
                    to_envelope=self.envelope,
                )

    def test_state_reflects_soft_delete_flag(self):
        txn = Transaction.objects.create(
            budget=self.budget,
            transaction_type=Transaction.ALLOCATION,
            amount=Decimal("10.00"),
            transaction_date="2024-01-01",
            to_envelope=self.envelope,
        )
        self.assertEqual(txn.state, "active")
        txn.is_deleted = True
        self.assertEqual(txn.state, "deleted")

    def test_financial_and_editable_fields_do_not_overlap(self):
        self.assertFalse(set(Transaction.FINANCIAL_FIELDS) & set(Transaction.EDITABLE_FIELDS))
