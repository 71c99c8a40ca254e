"""
Transaction audit trail.

Each create, update, soft delete and restore writes one TransactionEvent in
the same atomic block as the change, so a rolled-back write leaves no event.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional

from envelopes.ledger.models import Transaction, TransactionEvent

DELETION_FIELDS = ("is_deleted", "deleted_at", "deleted_by")
AUDITED_FIELDS = Transaction.FINANCIAL_FIELDS + Transaction.EDITABLE_FIELDS + DELETION_FIELDS


def _json_value(value):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def transaction_values(txn: Transaction, fields: Iterable[str] = AUDITED_FIELDS) -> Dict[str, Any]:
    return {name: _json_value(getattr(txn, name)) for name in fields}


def record_event(
    txn: Transaction,
    event_type: str,
    actor: Optional[str] = None,
    old_values: Optional[Dict[str, Any]] = None,
    new_values: Optional[Dict[str, Any]] = None,
) -> TransactionEvent:
    changed = []
    if old_values is not None and new_values is not None:
        changed = sorted(
            name for name in set(old_values) | set(new_values) if old_values.get(name) != new_values.get(name)
        )
    return TransactionEvent.objects.create(
        transaction=txn,
        event_type=event_type,
        actor=actor,
        old_values=old_values,
        new_values=new_values,
        changed_fields=changed,
    )
