import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import yaml
from django.db import transaction as db_transaction

from envelopes.ledger.models import ZERO, Budget, Envelope, IncomeSource, Payee, Transaction

from .transaction_service import TransactionService

logger = logging.getLogger(__name__)

# fixture key on a transaction -> (relation field, entity map key)
_NAMED_RELATIONS = {
    "from_envelope": ("from_envelope_id", "envelopes"),
    "to_envelope": ("to_envelope_id", "envelopes"),
    "payee": ("payee_id", "payees"),
    "income_source": ("income_source_id", "income_sources"),
}


class FixtureError(Exception):
    """The fixture document is malformed or references unknown names."""


@dataclass
class FixtureResult:
    budget: Budget
    envelopes: Dict[str, Envelope] = field(default_factory=dict)
    payees: Dict[str, Payee] = field(default_factory=dict)
    income_sources: Dict[str, IncomeSource] = field(default_factory=dict)
    transactions: List[Transaction] = field(default_factory=list)


def load_fixture_document(b: bytes) -> Dict[str, Any]:
    if not b:
        raise FixtureError("Fixture file is empty")
    try:
        parsed = yaml.safe_load(b.decode("utf-8"))
    except yaml.YAMLError as e:
        raise FixtureError(f"Invalid YAML: {e}") from e
    if not isinstance(parsed, dict) or not isinstance(parsed.get("budget"), dict):
        raise FixtureError("Fixture must be a mapping with a 'budget' section")
    return parsed


def _opening(value, name: str) -> Optional[Decimal]:
    # opening balances may be zero or negative, unlike transaction amounts
    if value is None:
        return None
    try:
        parsed = Decimal(str(value))
    except InvalidOperation as e:
        raise FixtureError(f"{name} is not a valid amount: {value!r}") from e
    if not parsed.is_finite():
        raise FixtureError(f"{name} is not a valid amount: {value!r}")
    return parsed.quantize(Decimal("0.01"))


class FixtureService:
    """
    Seeds a budget with envelopes, payees, income sources and opening
    transactions from a YAML document.

    Opening transactions go through TransactionService, so the seeded balances
    obey the same rules as anything posted later.
    """

    def __init__(self, transaction_service: Optional[TransactionService] = None):
        self.transaction_service = transaction_service or TransactionService()

    def load(self, fileobj) -> FixtureResult:
        document = load_fixture_document(fileobj.read())
        with db_transaction.atomic():
            result = self._create_entities(document)
            for idx, entry in enumerate(document.get("transactions") or [], start=1):
                result.transactions.append(self._post(result, entry, idx))

        logger.info(
            "Loaded fixture budget %s: %s envelopes, %s payees, %s income sources, %s transactions",
            result.budget.pk, len(result.envelopes), len(result.payees),
            len(result.income_sources), len(result.transactions),
        )
        return result

    def _create_entities(self, document) -> FixtureResult:
        budget_doc = document["budget"]
        if not budget_doc.get("name"):
            raise FixtureError("budget.name is required")
        budget = Budget.objects.create(
            name=budget_doc["name"],
            description=budget_doc.get("description") or "",
            available_amount=_opening(budget_doc.get("available_amount"), "budget.available_amount") or ZERO,
        )
        result = FixtureResult(budget=budget)

        for item in document.get("envelopes") or []:
            name = self._name(item, "envelopes")
            result.envelopes[name] = Envelope.objects.create(
                budget=budget,
                name=name,
                description=item.get("description") or "",
                envelope_type=item.get("envelope_type", Envelope.REGULAR),
                current_balance=_opening(item.get("current_balance"), f"{name}.current_balance") or ZERO,
                debt_balance=_opening(item.get("debt_balance"), f"{name}.debt_balance"),
            )
        for item in document.get("payees") or []:
            name = self._name(item, "payees")
            result.payees[name] = Payee.objects.create(
                budget=budget, name=name, payee_type=item.get("payee_type", Payee.REGULAR)
            )
        for item in document.get("income_sources") or []:
            name = self._name(item, "income_sources")
            result.income_sources[name] = IncomeSource.objects.create(
                budget=budget, name=name, expected_amount=_opening(item.get("expected_amount"), f"{name}.expected_amount")
            )
        return result

    @staticmethod
    def _name(item, section: str) -> str:
        if not isinstance(item, dict) or not item.get("name"):
            raise FixtureError(f"Every entry in '{section}' needs a name")
        return str(item["name"])

    def _post(self, result: FixtureResult, entry: Dict[str, Any], idx: int) -> Transaction:
        if not isinstance(entry, dict):
            raise FixtureError(f"transactions[{idx}] must be a mapping")
        data = {k: v for k, v in entry.items() if k not in _NAMED_RELATIONS}
        for key, (relation, section) in _NAMED_RELATIONS.items():
            if key not in entry:
                continue
            row = getattr(result, section).get(entry[key])
            if row is None:
                raise FixtureError(f"transactions[{idx}]: unknown {key} '{entry[key]}'")
            data[relation] = row.pk
        return self.transaction_service.create_from_payload(result.budget.pk, data).transaction
