from django.db import transaction as db_transaction
from django.dispatch import Signal

CREATED = "created"
DELETED = "deleted"
RESTORED = "restored"

# Sent after commit with: transaction, action (created/deleted/restored), result
ledger_transaction_posted = Signal()


def send_after_commit(sender, result, action):
    def _send():
        ledger_transaction_posted.send(
            sender=sender,
            transaction=result.transaction,
            action=action,
            result=result,
        )

    db_transaction.on_commit(_send)
