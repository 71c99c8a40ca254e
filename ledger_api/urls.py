from django.urls import path

from .views import (
    budget_transactions,
    delete_transaction,
    restore_transaction,
    transaction_detail,
    transaction_events,
)

urlpatterns = [
    path('budgets/<int:budget_id>/transactions/', budget_transactions, name='budget-transactions'),
    path('transactions/<int:transaction_id>/', transaction_detail, name='transaction-detail'),
    path('transactions/<int:transaction_id>/events/', transaction_events, name='transaction-events'),
    path('transactions/<int:transaction_id>/delete/', delete_transaction, name='transaction-delete'),
    path('transactions/<int:transaction_id>/restore/', restore_transaction, name='transaction-restore'),
]
