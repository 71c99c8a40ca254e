import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from .exceptions import CrossBudgetReference, EntityNotFound
from .models import Budget, Envelope, IncomeSource, Payee

logger = logging.getLogger(__name__)

# relation name on a transaction -> entity kind it references
RELATION_KINDS = {
    "from_envelope_id": "envelope",
    "to_envelope_id": "envelope",
    "payee_id": "payee",
    "income_source_id": "income_source",
}


@dataclass
class ResolvedEntities:
    """Rows a transaction references, loaded once per request."""

    budget: Any
    from_envelope: Optional[Any] = None
    to_envelope: Optional[Any] = None
    payee: Optional[Any] = None
    income_source: Optional[Any] = None

    def get(self, relation: str) -> Optional[Any]:
        return getattr(self, relation[: -len("_id")])

    def referenced(self) -> Dict[str, Any]:
        """Return {relation name: row} for every relation that was resolved."""
        return {
            relation: self.get(relation)
            for relation in RELATION_KINDS
            if self.get(relation) is not None
        }

    def envelopes(self) -> List[Any]:
        return [e for e in (self.from_envelope, self.to_envelope) if e is not None]


# Entity resolver interface

class EntityResolverInterface(ABC):
    @abstractmethod
    def get_budget(self, pk: int) -> Optional[Any]:
        """Return budget by primary key or None."""
        raise NotImplementedError

    @abstractmethod
    def get_envelope(self, pk: int) -> Optional[Any]:
        """Return envelope by primary key or None."""
        raise NotImplementedError

    @abstractmethod
    def get_payee(self, pk: int) -> Optional[Any]:
        """Return payee by primary key or None."""
        raise NotImplementedError

    @abstractmethod
    def get_income_source(self, pk: int) -> Optional[Any]:
        """Return income source by primary key or None."""
        raise NotImplementedError

    def _lookup(self, kind: str, pk: int) -> Optional[Any]:
        return getattr(self, f"get_{kind}")(pk)

    def resolve(self, budget_id: int, **refs: Optional[int]) -> ResolvedEntities:
        """
        Load the budget and every non-null reference in ``refs``.

        refs keys are relation names (from_envelope_id, to_envelope_id, payee_id,
        income_source_id). Raises EntityNotFound listing every missing reference,
        then CrossBudgetReference for the first entity owned by another budget.
        """
        unknown = set(refs) - set(RELATION_KINDS)
        if unknown:
            raise TypeError(f"Unknown relation(s): {', '.join(sorted(unknown))}")

        budget = self.get_budget(budget_id)
        if budget is None:
            raise EntityNotFound(f"Budget {budget_id} not found", missing=[{"budget_id": budget_id}])

        resolved = ResolvedEntities(budget=budget)
        missing = []
        for relation, pk in refs.items():
            if pk is None:
                continue
            row = self._lookup(RELATION_KINDS[relation], pk)
            if row is None:
                missing.append({relation: pk})
                continue
            setattr(resolved, relation[: -len("_id")], row)

        if missing:
            names = ", ".join(f"{k}={v}" for item in missing for k, v in item.items())
            raise EntityNotFound(f"Referenced entities not found: {names}", missing=missing)

        for relation, row in resolved.referenced().items():
            if row.budget_id != budget.id:
                logger.debug(
                    "Cross-budget reference %s=%s (budget %s) from budget %s",
                    relation, row.id, row.budget_id, budget.id,
                )
                raise CrossBudgetReference(
                    f"{relation} {row.id} does not belong to budget {budget.id}",
                    details={"field": relation, "id": row.id},
                )
        return resolved


# Django implementation

class DjangoEntityResolver(EntityResolverInterface):
    def get_budget(self, pk: int) -> Optional[Budget]:
        return Budget.objects.filter(pk=pk).first()

    def get_envelope(self, pk: int) -> Optional[Envelope]:
        return Envelope.objects.filter(pk=pk).first()

    def get_payee(self, pk: int) -> Optional[Payee]:
        return Payee.objects.filter(pk=pk).first()

    def get_income_source(self, pk: int) -> Optional[IncomeSource]:
        return IncomeSource.objects.filter(pk=pk).first()


# In-memory stubs (for tests)

@dataclass
class _BudgetStub:
    id: int
    name: str
    available_amount: Decimal = Decimal("0.00")
    is_active: bool = True
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class _EnvelopeStub:
    id: int
    budget_id: int
    name: str
    envelope_type: str = Envelope.REGULAR
    current_balance: Decimal = Decimal("0.00")
    debt_balance: Optional[Decimal] = None
    is_active: bool = True

    @property
    def is_debt(self):
        return self.envelope_type == Envelope.DEBT


@dataclass
class _PayeeStub:
    id: int
    budget_id: int
    name: str
    payee_type: str = Payee.REGULAR
    total_paid: Decimal = Decimal("0.00")
    is_active: bool = True


@dataclass
class _IncomeSourceStub:
    id: int
    budget_id: int
    name: str
    is_active: bool = True


class InMemoryEntityResolver(EntityResolverInterface):
    def __init__(self):
        self._store: Dict[str, Dict[int, Any]] = {
            "budget": {},
            "envelope": {},
            "payee": {},
            "income_source": {},
        }
        self._next = 1

    def _add(self, kind: str, obj):
        self._store[kind][obj.id] = obj
        self._next += 1
        return obj

    def add_budget(self, name: str, **kwargs) -> _BudgetStub:
        return self._add("budget", _BudgetStub(id=self._next, name=name, **kwargs))

    def add_envelope(self, budget_id: int, name: str, **kwargs) -> _EnvelopeStub:
        obj = _EnvelopeStub(id=self._next, budget_id=budget_id, name=name, **kwargs)
        if obj.is_debt and obj.debt_balance is None:
            obj.debt_balance = Decimal("0.00")
        return self._add("envelope", obj)

    def add_payee(self, budget_id: int, name: str, **kwargs) -> _PayeeStub:
        return self._add("payee", _PayeeStub(id=self._next, budget_id=budget_id, name=name, **kwargs))

    def add_income_source(self, budget_id: int, name: str, **kwargs) -> _IncomeSourceStub:
        return self._add(
            "income_source", _IncomeSourceStub(id=self._next, budget_id=budget_id, name=name, **kwargs)
        )

    def get_budget(self, pk: int) -> Optional[_BudgetStub]:
        return self._store["budget"].get(pk)

    def get_envelope(self, pk: int) -> Optional[_EnvelopeStub]:
        return self._store["envelope"].get(pk)

    def get_payee(self, pk: int) -> Optional[_PayeeStub]:
        return self._store["payee"].get(pk)

    def get_income_source(self, pk: int) -> Optional[_IncomeSourceStub]:
        return self._store["income_source"].get(pk)
