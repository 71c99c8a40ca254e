from decimal import Decimal

from django.db import models

MONEY_MAX_DIGITS = 12
MONEY_DECIMAL_PLACES = 2
ZERO = Decimal("0.00")


def money_field(**kwargs):
    kwargs.setdefault("max_digits", MONEY_MAX_DIGITS)
    kwargs.setdefault("decimal_places", MONEY_DECIMAL_PLACES)
    return models.DecimalField(**kwargs)


class Budget(models.Model):
    name = models.CharField(max_length=200)
    description = models.TextField(blank=True, default="")
    # money not yet allocated to any envelope; may go negative at this layer
    available_amount = money_field(default=ZERO)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name", "id"]

    def __str__(self):
        return f"{self.name} ({self.available_amount})"


class Envelope(models.Model):
    REGULAR = "regular"
    SAVINGS = "savings"
    DEBT = "debt"
    ENVELOPE_TYPE_CHOICES = [
        (REGULAR, "Regular"),
        (SAVINGS, "Savings"),
        (DEBT, "Debt"),
    ]

    budget = models.ForeignKey(Budget, on_delete=models.CASCADE, related_name="envelopes")
    name = models.CharField(max_length=200)
    description = models.TextField(blank=True, default="")
    envelope_type = models.CharField(max_length=20, choices=ENVELOPE_TYPE_CHOICES, default=REGULAR)
    current_balance = money_field(default=ZERO)
    # outstanding principal, debt envelopes only
    debt_balance = money_field(null=True, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name", "id"]

    def __str__(self):
        return f"{self.name}: {self.current_balance}"

    @property
    def is_debt(self):
        return self.envelope_type == self.DEBT

    def save(self, *args, **kwargs):
        if self.is_debt and self.debt_balance is None:
            self.debt_balance = ZERO
        elif not self.is_debt:
            self.debt_balance = None
        super().save(*args, **kwargs)


class Payee(models.Model):
    REGULAR = "regular"
    DEBT = "debt"
    PAYEE_TYPE_CHOICES = [
        (REGULAR, "Regular"),
        (DEBT, "Debt"),
    ]

    budget = models.ForeignKey(Budget, on_delete=models.CASCADE, related_name="payees")
    name = models.CharField(max_length=200)
    payee_type = models.CharField(max_length=20, choices=PAYEE_TYPE_CHOICES, default=REGULAR)
    total_paid = money_field(default=ZERO)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name", "id"]

    def __str__(self):
        return self.name


class IncomeSource(models.Model):
    budget = models.ForeignKey(Budget, on_delete=models.CASCADE, related_name="income_sources")
    name = models.CharField(max_length=200)
    expected_amount = money_field(null=True, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name", "id"]

    def __str__(self):
        return self.name


class Transaction(models.Model):
    INCOME = "income"
    ALLOCATION = "allocation"
    EXPENSE = "expense"
    TRANSFER = "transfer"
    DEBT_PAYMENT = "debt_payment"
    TRANSACTION_TYPE_CHOICES = [
        (INCOME, "Income"),
        (ALLOCATION, "Allocation"),
        (EXPENSE, "Expense"),
        (TRANSFER, "Transfer"),
        (DEBT_PAYMENT, "Debt payment"),
    ]

    # type, amount and relations are immutable once the row exists
    FINANCIAL_FIELDS = (
        "budget_id",
        "transaction_type",
        "amount",
        "from_envelope_id",
        "to_envelope_id",
        "payee_id",
        "income_source_id",
    )
    EDITABLE_FIELDS = ("description", "transaction_date", "is_cleared", "is_reconciled")

    budget = models.ForeignKey(Budget, on_delete=models.CASCADE, related_name="transactions")
    transaction_type = models.CharField(max_length=20, choices=TRANSACTION_TYPE_CHOICES)
    amount = money_field()
    description = models.TextField(blank=True, default="")
    transaction_date = models.DateField()
    from_envelope = models.ForeignKey(
        Envelope, null=True, blank=True, on_delete=models.PROTECT, related_name="outgoing_transactions"
    )
    to_envelope = models.ForeignKey(
        Envelope, null=True, blank=True, on_delete=models.PROTECT, related_name="incoming_transactions"
    )
    payee = models.ForeignKey(Payee, null=True, blank=True, on_delete=models.PROTECT, related_name="transactions")
    income_source = models.ForeignKey(
        IncomeSource, null=True, blank=True, on_delete=models.PROTECT, related_name="transactions"
    )
    is_cleared = models.BooleanField(default=False)
    is_reconciled = models.BooleanField(default=False)
    is_deleted = models.BooleanField(default=False)
    deleted_at = models.DateTimeField(null=True, blank=True)
    deleted_by = models.CharField(max_length=150, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-transaction_date", "-id"]
        indexes = [
            models.Index(fields=["budget", "is_deleted", "transaction_date"], name="ledger_tx_budget_date_idx"),
        ]
        constraints = [
            models.CheckConstraint(condition=models.Q(amount__gt=0), name="ledger_tx_amount_positive"),
        ]

    def __str__(self):
        return f"{self.transaction_date} - {self.transaction_type} {self.amount}"

    @property
    def state(self):
        return "deleted" if self.is_deleted else "active"


class TransactionEvent(models.Model):
    """Audit row written in the same database transaction as the change it records."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    RESTORED = "restored"
    EVENT_TYPE_CHOICES = [
        (CREATED, "Created"),
        (UPDATED, "Updated"),
        (DELETED, "Deleted"),
        (RESTORED, "Restored"),
    ]

    transaction = models.ForeignKey(Transaction, on_delete=models.CASCADE, related_name="events")
    event_type = models.CharField(max_length=20, choices=EVENT_TYPE_CHOICES)
    event_timestamp = models.DateTimeField(auto_now_add=True)
    actor = models.CharField(max_length=150, null=True, blank=True)
    old_values = models.JSONField(null=True, blank=True)
    new_values = models.JSONField(null=True, blank=True)
    changed_fields = models.JSONField(default=list, blank=True)

    class Meta:
        ordering = ["event_timestamp", "id"]
        indexes = [
            models.Index(fields=["transaction", "event_timestamp"], name="ledger_txevent_tx_ts_idx"),
            models.Index(fields=["actor"], name="ledger_txevent_actor_idx"),
        ]

    def __str__(self):
        return f"{self.event_type} transaction {self.transaction_id}"
