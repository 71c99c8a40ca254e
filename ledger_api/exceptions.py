import logging

from rest_framework.response import Response
from rest_framework.views import exception_handler

from envelopes.ledger.exceptions import LedgerError

logger = logging.getLogger(__name__)


def ledger_exception_handler(exc, context):
    """
    Render ledger errors as {"error", "message", "details"} with the status the
    error class declares; anything else goes to DRF's default handler.
    """
    if isinstance(exc, LedgerError):
        view = context.get('view')
        logger.info(
            "%s rejected with %s: %s",
            view.__class__.__name__ if view is not None else 'request',
            exc.code,
            exc.message,
        )
        return Response(exc.as_dict(), status=exc.http_status)
    return exception_handler(exc, context)
