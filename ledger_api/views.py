from collections.abc import Mapping
from decimal import Decimal, InvalidOperation

from rest_framework import permissions, status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response

from envelopes.ledger.exceptions import LedgerValidationError
from envelopes.ledger.requests import parse_bool, parse_date
from envelopes.services.transaction_service import TransactionFilters, TransactionService

from .pagination import TransactionPagination
from .serializers import LedgerResultSerializer, TransactionEventSerializer, TransactionSerializer


def _payload(data):
    # QueryDict -> plain dict of single values
    if not isinstance(data, Mapping):
        raise LedgerValidationError("Request body must be an object", details={'type': type(data).__name__})
    return {key: data.get(key) for key in data}


def _query_int(name, raw):
    try:
        return int(raw)
    except ValueError:
        raise LedgerValidationError(f"{name} must be an integer", details={'field': name})


def _query_decimal(name, raw):
    try:
        value = Decimal(raw)
    except InvalidOperation:
        raise LedgerValidationError(f"{name} must be a number", details={'field': name})
    if not value.is_finite():
        raise LedgerValidationError(f"{name} must be a finite number", details={'field': name})
    return value


def filters_from_query(params):
    """Build TransactionFilters from list query parameters, ignoring unknown ones."""
    parsers = {
        'start_date': lambda name, raw: parse_date(raw),
        'end_date': lambda name, raw: parse_date(raw),
        'transaction_type': lambda name, raw: raw,
        'envelope_id': _query_int,
        'payee_id': _query_int,
        'income_source_id': _query_int,
        'is_cleared': parse_bool,
        'is_reconciled': parse_bool,
        'min_amount': _query_decimal,
        'max_amount': _query_decimal,
        'include_deleted': parse_bool,
    }
    values = {}
    for name, parse in parsers.items():
        raw = params.get(name)
        if raw not in (None, ''):
            values[name] = parse(name, raw)
    return TransactionFilters(**values)


@api_view(['GET', 'POST'])
@permission_classes([permissions.AllowAny])
def budget_transactions(request, budget_id):
    """
    GET /api/budgets/{budget_id}/transactions/ - Paginated, newest first
    POST /api/budgets/{budget_id}/transactions/ - Create and apply balances
    """
    service = TransactionService()
    if request.method == 'POST':
        payload = _payload(request.data)
        actor = payload.pop('actor', None)
        result = service.create_from_payload(budget_id, payload, actor=actor)
        return Response(LedgerResultSerializer(result).data, status=status.HTTP_201_CREATED)

    transactions = service.list_transactions(budget_id, filters_from_query(request.query_params))
    paginator = TransactionPagination()
    page = paginator.paginate_queryset(transactions, request)
    return paginator.get_paginated_response(TransactionSerializer(page, many=True).data)


@api_view(['GET', 'PATCH'])
@permission_classes([permissions.AllowAny])
def transaction_detail(request, transaction_id):
    """
    GET /api/transactions/{id}/
    PATCH /api/transactions/{id}/ - description, transaction_date, is_cleared, is_reconciled
    """
    service = TransactionService()
    if request.method == 'PATCH':
        payload = _payload(request.data)
        actor = payload.pop('actor', None)
        txn = service.update_from_payload(transaction_id, payload, actor=actor)
    else:
        txn = service.get_transaction(transaction_id)
    return Response(TransactionSerializer(txn).data)


@api_view(['GET'])
@permission_classes([permissions.AllowAny])
def transaction_events(request, transaction_id):
    """
    GET /api/transactions/{id}/events/ - Audit trail, oldest first
    """
    events = TransactionService().list_transaction_events(transaction_id)
    return Response(TransactionEventSerializer(events, many=True).data)


@api_view(['POST'])
@permission_classes([permissions.AllowAny])
def delete_transaction(request, transaction_id):
    """
    POST /api/transactions/{id}/delete/ - Soft delete and reverse balances
    """
    actor = _payload(request.data).get('actor')
    result = TransactionService().soft_delete_transaction(transaction_id, actor)
    return Response(LedgerResultSerializer(result).data)


@api_view(['POST'])
@permission_classes([permissions.AllowAny])
def restore_transaction(request, transaction_id):
    """
    POST /api/transactions/{id}/restore/ - Restore and re-apply balances
    """
    actor = _payload(request.data).get('actor')
    result = TransactionService().restore_transaction(transaction_id, actor)
    return Response(LedgerResultSerializer(result).data)
