from decimal import Decimal
from io import BytesIO, StringIO

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError

from envelopes.ledger.models import Budget, Envelope, Payee, Transaction
from envelopes.services.fixture_service import FixtureError, FixtureService

FIXTURE = b"""
budget:
  name: Household
  available_amount: 1000.00
envelopes:
  - name: Groceries
  - name: Car loan
    envelope_type: debt
    current_balance: 300.00
    debt_balance: 2500.00
payees:
  - name: Supermarket
  - name: Bank
    payee_type: debt
income_sources:
  - name: Salary
    expected_amount: 3000
transactions:
  - transaction_type: income
    amount: 1000.00
    income_source: Salary
    transaction_date: 2024-01-01
  - transaction_type: allocation
    amount: "400.00"
    to_envelope: Groceries
  - transaction_type: expense
    amount: "125.50"
    from_envelope: Groceries
    payee: Supermarket
  - transaction_type: debt_payment
    amount: 200
    from_envelope: Car loan
    payee: Bank
"""


@pytest.mark.django_db
def test_fixture_posts_opening_transactions():
    result = FixtureService().load(BytesIO(FIXTURE))

    budget = Budget.objects.get(pk=result.budget.pk)
    assert budget.available_amount == Decimal("1600.00")
    assert Envelope.objects.get(pk=result.envelopes["Groceries"].pk).current_balance == Decimal("274.50")
    loan = Envelope.objects.get(pk=result.envelopes["Car loan"].pk)
    assert (loan.current_balance, loan.debt_balance) == (Decimal("100.00"), Decimal("2300.00"))
    assert Payee.objects.get(name="Supermarket").total_paid == Decimal("125.50")
    assert Transaction.objects.filter(budget=budget).count() == 4


@pytest.mark.django_db
def test_unknown_name_rolls_back_everything():
    broken = FIXTURE.replace(b"to_envelope: Groceries", b"to_envelope: Holidays")
    with pytest.raises(FixtureError):
        FixtureService().load(BytesIO(broken))
    assert not Budget.objects.exists()


@pytest.mark.django_db
def test_invalid_documents():
    for document in (b"", b"- just a list", b"budget: [unclosed", b"budget:\n  description: no name\n"):
        with pytest.raises(FixtureError):
            FixtureService().load(BytesIO(document))


@pytest.mark.django_db
def test_load_budget_fixture_command(tmp_path):
    path = tmp_path / "budget.yaml"
    path.write_bytes(FIXTURE)
    out = StringIO()
    call_command("load_budget_fixture", str(path), stdout=out)
    assert "Household" in out.getvalue()
    assert "available: 1600.00" in out.getvalue()


@pytest.mark.django_db
def test_load_budget_fixture_command_reports_ledger_errors(tmp_path):
    path = tmp_path / "budget.yaml"
    path.write_bytes(FIXTURE.replace(b'amount: "125.50"', b'amount: "-1"'))
    with pytest.raises(CommandError, match="InvalidAmount"):
        call_command("load_budget_fixture", str(path))
    assert not Budget.objects.exists()


def test_load_budget_fixture_command_missing_file(tmp_path):
    with pytest.raises(CommandError):
        call_command("load_budget_fixture", str(tmp_path / "nope.yaml"))
