from rest_framework import serializers

from envelopes.ledger.models import Budget, Envelope, Payee, Transaction, TransactionEvent


class BudgetBalanceSerializer(serializers.ModelSerializer):
    class Meta:
        model = Budget
        fields = ['id', 'name', 'available_amount']


class EnvelopeBalanceSerializer(serializers.ModelSerializer):
    class Meta:
        model = Envelope
        fields = ['id', 'name', 'envelope_type', 'current_balance', 'debt_balance']


class PayeeBalanceSerializer(serializers.ModelSerializer):
    class Meta:
        model = Payee
        fields = ['id', 'name', 'payee_type', 'total_paid']


class TransactionSerializer(serializers.ModelSerializer):
    state = serializers.CharField(read_only=True)

    class Meta:
        model = Transaction
        fields = [
            'id', 'budget_id', 'transaction_type', 'amount', 'description', 'transaction_date',
            'from_envelope_id', 'to_envelope_id', 'payee_id', 'income_source_id',
            'is_cleared', 'is_reconciled', 'state', 'deleted_at', 'deleted_by',
            'created_at', 'updated_at',
        ]


class LedgerResultSerializer(serializers.Serializer):
    """A posted, deleted or restored transaction with the balances it left behind."""
    transaction = TransactionSerializer()
    budget = BudgetBalanceSerializer()
    envelopes = EnvelopeBalanceSerializer(many=True)
    payee = PayeeBalanceSerializer(allow_null=True)
    warnings = serializers.ListField(child=serializers.CharField())


class TransactionEventSerializer(serializers.ModelSerializer):
    class Meta:
        model = TransactionEvent
        fields = [
            'id', 'transaction_id', 'event_type', 'event_timestamp', 'actor',
            'old_values', 'new_values', 'changed_fields',
        ]
