from decimal import Decimal

from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from envelopes.ledger.models import Envelope, Transaction

from .factories import make_budget, make_envelope, make_income_source, make_payee


class TransactionApiTest(APITestCase):
    def setUp(self):
        self.budget = make_budget(available="1000.00")
        self.salary = make_income_source(self.budget)
        self.groceries = make_envelope(self.budget)
        self.shop = make_payee(self.budget)
        self.list_url = reverse('budget-transactions', args=[self.budget.pk])

    def post_allocation(self, amount="400.00"):
        return self.client.post(
            self.list_url,
            {'transaction_type': 'allocation', 'amount': amount, 'to_envelope_id': self.groceries.pk},
            format='json',
        )

    def test_create_returns_transaction_and_balances(self):
        response = self.post_allocation()
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['transaction']['amount'], '400.00')
        self.assertEqual(response.data['transaction']['state'], 'active')
        self.assertEqual(response.data['budget']['available_amount'], '600.00')
        self.assertEqual(response.data['envelopes'][0]['current_balance'], '400.00')
        self.assertIsNone(response.data['payee'])
        self.assertEqual(response.data['warnings'], [])

    def test_validation_error_is_400(self):
        response = self.client.post(
            self.list_url, {'transaction_type': 'allocation', 'amount': '10.00'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'MissingRequiredField')
        self.assertEqual(response.data['details'], {'fields': ['to_envelope_id']})

    def test_unknown_type_is_400(self):
        response = self.client.post(self.list_url, {'transaction_type': 'gift', 'amount': '1'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'UnknownType')

    def test_cross_budget_is_400(self):
        foreign = make_envelope(make_budget(name='Other'))
        response = self.client.post(
            self.list_url,
            {'transaction_type': 'allocation', 'amount': '5.00', 'to_envelope_id': foreign.pk},
            format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'CrossBudgetReference')

    def test_missing_entity_is_404(self):
        response = self.client.post(
            self.list_url,
            {'transaction_type': 'allocation', 'amount': '5.00', 'to_envelope_id': 987654},
            format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['details']['missing'], [{'to_envelope_id': 987654}])

    def test_delete_and_restore(self):
        txn_id = self.post_allocation().data['transaction']['id']

        response = self.client.post(
            reverse('transaction-delete', args=[txn_id]), {'actor': 'alice'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['transaction']['state'], 'deleted')
        self.assertEqual(response.data['budget']['available_amount'], '1000.00')

        again = self.client.post(reverse('transaction-delete', args=[txn_id]), {'actor': 'alice'}, format='json')
        self.assertEqual(again.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(again.data['error'], 'AlreadyDeleted')

        response = self.client.post(
            reverse('transaction-restore', args=[txn_id]), {'actor': 'alice'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['envelopes'][0]['current_balance'], '400.00')

    def test_restore_active_is_409(self):
        txn_id = self.post_allocation().data['transaction']['id']
        response = self.client.post(reverse('transaction-restore', args=[txn_id]), {'actor': 'alice'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'NotDeleted')

    def test_delete_without_actor_is_400(self):
        txn_id = self.post_allocation().data['transaction']['id']
        response = self.client.post(reverse('transaction-delete', args=[txn_id]), {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_get_and_patch(self):
        txn_id = self.post_allocation().data['transaction']['id']
        url = reverse('transaction-detail', args=[txn_id])

        response = self.client.get(url)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['transaction_type'], 'allocation')

        response = self.client.patch(url, {'description': 'Monthly groceries', 'is_cleared': True}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['description'], 'Monthly groceries')
        self.assertTrue(response.data['is_cleared'])
        self.groceries.refresh_from_db()
        self.assertEqual(self.groceries.current_balance, Decimal('400.00'))

    def test_patch_financial_field_is_400(self):
        txn_id = self.post_allocation().data['transaction']['id']
        response = self.client.patch(
            reverse('transaction-detail', args=[txn_id]), {'amount': '1.00'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'ImmutableField')
        self.assertEqual(Transaction.objects.get(pk=txn_id).amount, Decimal('400.00'))

    def test_unknown_transaction_is_404(self):
        response = self.client.get(reverse('transaction-detail', args=[424242]))
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error'], 'TransactionNotFound')

    def test_list_is_paginated_and_filtered(self):
        self.post_allocation('100.00')
        self.post_allocation('200.00')
        self.client.post(
            self.list_url,
            {'transaction_type': 'income', 'amount': '50.00', 'income_source_id': self.salary.pk},
            format='json',
        )

        response = self.client.get(self.list_url, {'page_size': 2})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 3)
        self.assertEqual(len(response.data['transactions']), 2)
        self.assertTrue(response.data['page_info']['has_next'])

        response = self.client.get(self.list_url, {'transaction_type': 'allocation', 'min_amount': '150'})
        self.assertEqual([t['amount'] for t in response.data['transactions']], ['200.00'])

    def test_list_bad_filter_is_400(self):
        for params in (
            {'envelope_id': 'abc'},
            {'min_amount': 'NaN'},
            {'max_amount': 'Infinity'},
            {'min_amount': 'lots'},
            {'is_cleared': 'maybe'},
        ):
            response = self.client.get(self.list_url, params)
            self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST, params)
            self.assertEqual(response.data['error'], 'Validation')

    def test_non_object_json_body_is_400(self):
        txn_id = self.post_allocation().data['transaction']['id']
        requests = [
            (self.client.post, self.list_url),
            (self.client.patch, reverse('transaction-detail', args=[txn_id])),
            (self.client.post, reverse('transaction-delete', args=[txn_id])),
            (self.client.post, reverse('transaction-restore', args=[txn_id])),
        ]
        for send, url in requests:
            for body in ([1, 2], 'allocation', 42):
                response = send(url, body, format='json')
                self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST, (url, body))
                self.assertEqual(response.data['message'], 'Request body must be an object')
        self.assertEqual(Transaction.objects.count(), 1)

    def test_form_encoded_false_flag_stays_false(self):
        response = self.client.post(
            self.list_url,
            {
                'transaction_type': 'allocation',
                'amount': '25.00',
                'to_envelope_id': str(self.groceries.pk),
                'is_cleared': 'false',
            },
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertFalse(response.data['transaction']['is_cleared'])

        url = reverse('transaction-detail', args=[response.data['transaction']['id']])
        response = self.client.patch(url, {'is_cleared': 'true', 'is_reconciled': 'false'}, format='multipart')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['is_cleared'])
        self.assertFalse(response.data['is_reconciled'])

    def test_fractional_envelope_id_is_400(self):
        response = self.client.post(
            self.list_url,
            {'transaction_type': 'allocation', 'amount': '5.00', 'to_envelope_id': self.groceries.pk + 0.5},
            format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(Transaction.objects.exists())

    def test_events_endpoint(self):
        response = self.client.post(
            self.list_url,
            {
                'transaction_type': 'allocation',
                'amount': '10.00',
                'to_envelope_id': self.groceries.pk,
                'actor': 'alice',
            },
            format='json',
        )
        txn_id = response.data['transaction']['id']
        self.client.patch(
            reverse('transaction-detail', args=[txn_id]), {'description': 'Food', 'actor': 'alice'}, format='json'
        )
        self.client.post(reverse('transaction-delete', args=[txn_id]), {'actor': 'bob'}, format='json')

        response = self.client.get(reverse('transaction-events', args=[txn_id]))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([e['event_type'] for e in response.data], ['created', 'updated', 'deleted'])
        self.assertEqual([e['actor'] for e in response.data], ['alice', 'alice', 'bob'])
        self.assertEqual(response.data[1]['changed_fields'], ['description'])

        missing = self.client.get(reverse('transaction-events', args=[424242]))
        self.assertEqual(missing.status_code, status.HTTP_404_NOT_FOUND)

    def test_list_unknown_budget_is_404(self):
        response = self.client.get(reverse('budget-transactions', args=[999999]))
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_debt_payment_from_regular_envelope(self):
        debt_payee = make_payee(self.budget, name='Bank', payee_type='debt')
        response = self.client.post(
            self.list_url,
            {
                'transaction_type': 'debt_payment',
                'amount': '5.00',
                'from_envelope_id': self.groceries.pk,
                'payee_id': debt_payee.pk,
            },
            format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'WrongEnvelopeTypeForDebtPayment')
        self.assertEqual(Envelope.objects.get(pk=self.groceries.pk).current_balance, Decimal('0.00'))
