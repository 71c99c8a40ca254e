import logging
from typing import Any, Mapping, Optional, Tuple

from envelopes.ledger.exceptions import InactiveEntity, LedgerError, WrongEnvelopeTypeForDebtPayment
from envelopes.ledger.models import Payee, Transaction
from envelopes.ledger.repos import DjangoEntityResolver, EntityResolverInterface, ResolvedEntities
from envelopes.ledger.requests import TransactionRequest, parse_transaction_request

logger = logging.getLogger(__name__)


class TransactionValidator:
    """
    Decides whether a transaction request is well-formed for its type.

    Reads committed state only and never writes, so it is safe to retry.
    """

    def __init__(self, resolver: Optional[EntityResolverInterface] = None):
        self.resolver = resolver or DjangoEntityResolver()

    def validate(self, budget_id, data: Mapping[str, Any]) -> Tuple[TransactionRequest, ResolvedEntities]:
        try:
            request = parse_transaction_request(budget_id, data)
            resolved = self.resolver.resolve(request.budget_id, **request.relations())
            self.check_entities(request, resolved)
        except LedgerError as e:
            logger.debug("Rejected %s request for budget %s: %s", data.get("transaction_type"), budget_id, e)
            raise
        return request, resolved

    def check_entities(self, request: TransactionRequest, resolved: ResolvedEntities):
        if not resolved.budget.is_active:
            raise InactiveEntity(
                f"Budget {resolved.budget.id} is inactive", details={"field": "budget_id", "id": resolved.budget.id}
            )
        for relation, row in resolved.referenced().items():
            if not row.is_active:
                raise InactiveEntity(
                    f"{relation} {row.id} is inactive", details={"field": relation, "id": row.id}
                )

        if request.transaction_type == Transaction.DEBT_PAYMENT:
            envelope = resolved.from_envelope
            if not envelope.is_debt:
                raise WrongEnvelopeTypeForDebtPayment(
                    "Debt payments must be made from debt envelopes",
                    details={"from_envelope_id": envelope.id, "envelope_type": envelope.envelope_type},
                )
            if resolved.payee.payee_type != Payee.DEBT:
                logger.warning(
                    "Debt payment from envelope %s to non-debt payee %s", envelope.id, resolved.payee.id
                )
