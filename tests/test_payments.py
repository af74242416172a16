"""
Tests for paying accepted offers, syncing with Stripe and refunds.

Stripe is never contacted: the gateway functions in market.payments are
patched with unittest.mock.
"""

from decimal import Decimal
from unittest import mock

from django.test import TestCase
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APIClient

from market.exceptions import PaymentProviderError
from market.models import Order, Payment
from tests.helpers import (
    authenticate,
    create_listing,
    create_offer,
    create_order,
    create_payment,
    create_user,
)


def fake_intent(intent_id='pi_new_123', intent_status='requires_payment_method'):
    return mock.Mock(id=intent_id, client_secret=f'{intent_id}_secret_abc', status=intent_status)


class PaymentCreateTests(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.url = reverse('payment_list_create')
        self.seller = create_user('seller@example.com')
        self.buyer = create_user('buyer@example.com')
        self.listing = create_listing(self.seller)
        self.offer = create_offer(self.listing, self.buyer, amount='35.50')
        self.offer.accept()
        authenticate(self.client, self.buyer)

    @mock.patch('market.payments.create_payment_intent')
    def test_buyer_pays_accepted_offer(self, create_intent):
        create_intent.return_value = fake_intent()

        response = self.client.post(self.url, {'offer_id': self.offer.id}, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['client_secret'], 'pi_new_123_secret_abc')
        self.assertEqual(response.data['status'], 'pending')
        self.assertEqual(response.data['currency'], 'USD')
        self.assertIsNone(response.data['order_id'])

        payment = Payment.objects.get(pk=response.data['id'])
        self.assertEqual(payment.amount, Decimal('35.50'))
        self.assertEqual(payment.payment_intent_id, 'pi_new_123')
        self.assertEqual(payment.seller, self.seller)

        amount, = create_intent.call_args.args
        self.assertEqual(amount, Decimal('35.50'))
        self.assertEqual(create_intent.call_args.kwargs['metadata']['offer_id'], self.offer.id)

    @mock.patch('market.payments.create_payment_intent')
    def test_seller_cannot_pay(self, create_intent):
        authenticate(self.client, self.seller)

        response = self.client.post(self.url, {'offer_id': self.offer.id}, format='json')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        create_intent.assert_not_called()

    @mock.patch('market.payments.create_payment_intent')
    def test_pending_offer_cannot_be_paid(self, create_intent):
        other_listing = create_listing(self.seller, title='Bike')
        pending = create_offer(other_listing, self.buyer)

        response = self.client.post(self.url, {'offer_id': pending.id}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        create_intent.assert_not_called()

    @mock.patch('market.payments.create_payment_intent')
    def test_second_payment_conflicts(self, create_intent):
        create_payment(self.offer)

        response = self.client.post(self.url, {'offer_id': self.offer.id}, format='json')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        create_intent.assert_not_called()

    @mock.patch('market.payments.create_payment_intent')
    def test_retry_allowed_after_failed_payment(self, create_intent):
        create_payment(self.offer, intent_id='pi_failed').mark_failed('card_declined')
        create_intent.return_value = fake_intent('pi_retry')

        response = self.client.post(self.url, {'offer_id': self.offer.id}, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(Payment.objects.filter(offer=self.offer).count(), 2)

    @mock.patch('market.payments.create_payment_intent')
    def test_stripe_error_returns_502(self, create_intent):
        create_intent.side_effect = PaymentProviderError('Payment provider error while creating the payment.')

        response = self.client.post(self.url, {'offer_id': self.offer.id}, format='json')

        self.assertEqual(response.status_code, status.HTTP_502_BAD_GATEWAY)
        self.assertFalse(Payment.objects.exists())

    def test_unknown_offer(self):
        response = self.client.post(self.url, {'offer_id': 99999}, format='json')

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_requires_authentication(self):
        self.client.credentials()

        response = self.client.post(self.url, {'offer_id': self.offer.id}, format='json')

        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)


class PaymentCompletionTests(TestCase):
    """Completing a payment sells the listing and opens exactly one order."""

    def setUp(self):
        self.seller = create_user('seller@example.com')
        self.buyer = create_user('buyer@example.com')
        self.listing = create_listing(self.seller)
        self.offer = create_offer(self.listing, self.buyer)
        self.offer.accept()
        self.payment = create_payment(self.offer)

    def test_completion_marks_listing_sold_and_creates_order(self):
        self.payment.mark_completed()

        self.listing.refresh_from_db()
        self.assertEqual(self.listing.status, 'sold')
        order = Order.objects.get(payment=self.payment)
        self.assertEqual(order.status, 'pending')
        self.assertEqual(order.buyer, self.buyer)
        self.assertEqual(order.seller, self.seller)
        self.assertEqual(order.offer, self.offer)

    def test_resyncing_does_not_duplicate_order(self):
        self.payment.mark_completed()

        changed = self.payment.sync_from_intent('succeeded')

        self.assertFalse(changed)
        self.assertEqual(Order.objects.filter(payment=self.payment).count(), 1)

    def test_failed_payment_creates_no_order(self):
        self.payment.mark_failed('card_declined')

        self.assertFalse(Order.objects.exists())
        self.listing.refresh_from_db()
        self.assertEqual(self.listing.status, 'pending')


class PaymentDetailTests(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.seller = create_user('seller@example.com')
        self.buyer = create_user('buyer@example.com')
        listing = create_listing(self.seller)
        offer = create_offer(listing, self.buyer)
        offer.accept()
        self.payment = create_payment(offer, intent_id='pi_detail')
        self.url = reverse('payment_detail', args=[self.payment.id])

    @mock.patch('market.payments.retrieve_payment_intent')
    def test_detail_syncs_succeeded_intent(self, retrieve):
        retrieve.return_value = fake_intent('pi_detail', 'succeeded')
        authenticate(self.client, self.buyer)

        response = self.client.get(self.url)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['stripe_status'], 'succeeded')
        self.assertEqual(response.data['status'], 'completed')
        self.assertIsNotNone(response.data['order_id'])
        retrieve.assert_called_once_with('pi_detail')

    @mock.patch('market.payments.retrieve_payment_intent')
    def test_detail_survives_stripe_outage(self, retrieve):
        retrieve.side_effect = PaymentProviderError('down')
        authenticate(self.client, self.seller)

        response = self.client.get(self.url)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIsNone(response.data['stripe_status'])
        self.assertEqual(response.data['status'], 'pending')

    @mock.patch('market.payments.retrieve_payment_intent')
    def test_detail_forbidden_to_outsiders(self, retrieve):
        authenticate(self.client, create_user('outsider@example.com'))

        response = self.client.get(self.url)

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        retrieve.assert_not_called()

    def test_list_filters_by_role(self):
        authenticate(self.client, self.seller)

        seller_view = self.client.get(reverse('payment_list_create'), {'role': 'seller'})
        buyer_view = self.client.get(reverse('payment_list_create'), {'role': 'buyer'})

        self.assertEqual([item['id'] for item in seller_view.data['results']], [self.payment.id])
        self.assertEqual(buyer_view.data['results'], [])


class RefundTests(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.seller = create_user('seller@example.com')
        self.buyer = create_user('buyer@example.com')
        _listing, _offer, self.payment, _order = create_order(self.seller, self.buyer, price='80.00')
        self.url = reverse('payment_refund', args=[self.payment.id])

    @mock.patch('market.payments.create_refund')
    def test_seller_full_refund(self, create_refund):
        create_refund.return_value = mock.Mock(id='re_123')
        authenticate(self.client, self.seller)

        response = self.client.post(self.url, {'reason': 'Item was damaged'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'refunded')
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.refund_amount, Decimal('80.00'))
        self.assertEqual(self.payment.refund_reason, 'Item was damaged')
        self.assertEqual(self.payment.metadata['refund_id'], 're_123')
        create_refund.assert_called_once_with(self.payment.payment_intent_id, Decimal('80.00'))

    @mock.patch('market.payments.create_refund')
    def test_partial_refund(self, create_refund):
        create_refund.return_value = mock.Mock(id='re_456')
        authenticate(self.client, self.seller)

        response = self.client.post(self.url, {'amount': '20.00', 'reason': 'Missing part'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, 'refunded')
        self.assertEqual(self.payment.refund_amount, Decimal('20.00'))

    @mock.patch('market.payments.create_refund')
    def test_refund_above_amount_rejected(self, create_refund):
        authenticate(self.client, self.seller)

        response = self.client.post(self.url, {'amount': '80.01', 'reason': 'Oops'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('amount', response.data)
        create_refund.assert_not_called()

    @mock.patch('market.payments.create_refund')
    def test_reason_required(self, create_refund):
        authenticate(self.client, self.seller)

        response = self.client.post(self.url, {'amount': '10.00'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('reason', response.data)

    @mock.patch('market.payments.create_refund')
    def test_buyer_cannot_refund(self, create_refund):
        authenticate(self.client, self.buyer)

        response = self.client.post(self.url, {'reason': 'I want my money'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        create_refund.assert_not_called()

    @mock.patch('market.payments.create_refund')
    def test_refund_twice_rejected(self, create_refund):
        create_refund.return_value = mock.Mock(id='re_789')
        authenticate(self.client, self.seller)
        self.client.post(self.url, {'reason': 'First'}, format='json')

        response = self.client.post(self.url, {'reason': 'Second'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(create_refund.call_count, 1)

    @mock.patch('market.payments.create_refund')
    def test_stripe_refusal_keeps_payment_completed(self, create_refund):
        create_refund.side_effect = PaymentProviderError('Payment provider error while processing the refund.')
        authenticate(self.client, self.seller)

        response = self.client.post(self.url, {'reason': 'Damaged'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_502_BAD_GATEWAY)
        self.payment.refresh_from_db()
        self.assertEqual(self.payment.status, 'completed')
