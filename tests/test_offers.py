"""
Tests for making offers and acting on them.

Test Coverage:
- Offer creation rules (own listing, inactive listing, duplicate pending offer)
- Role checks for accept, reject, counter and withdraw
- Accepting reserves the listing and rejects competing offers
- Counter offers chain to a new pending offer
- Lazy expiry on action and on new offers; lapsed rivals expire rather than reject
"""

from datetime import timedelta
from decimal import Decimal
from unittest import mock

from django.db.models import QuerySet
from django.test import TestCase
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APIClient

from market.models import AnalyticsEvent, Listing, Notification, Offer
from tests.helpers import authenticate, create_listing, create_offer, create_user


class OfferCreateTests(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.url = reverse('offer_list_create')
        self.seller = create_user('seller@example.com')
        self.buyer = create_user('buyer@example.com')
        self.listing = create_listing(self.seller)
        authenticate(self.client, self.buyer)

    def test_create_offer(self):
        response = self.client.post(self.url, {
            'listing': self.listing.id, 'amount': '35.00', 'message': 'Can pick up today.'
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['status'], 'pending')
        self.assertEqual(Decimal(response.data['amount']), Decimal('35.00'))
        self.assertEqual(response.data['seller']['id'], self.seller.id)

        offer = Offer.objects.get(pk=response.data['id'])
        self.assertEqual(offer.seller, self.seller)
        self.assertGreater(offer.expires_at, timezone.now() + timedelta(days=6))

    def test_create_records_conversion_event(self):
        self.client.post(self.url, {'listing': self.listing.id, 'amount': '35.00'}, format='json')

        self.assertTrue(AnalyticsEvent.objects.filter(
            category='conversion', action='offer_created', user=self.buyer
        ).exists())

    def test_zero_amount_rejected(self):
        response = self.client.post(self.url, {'listing': self.listing.id, 'amount': '0'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('amount', response.data)

    def test_offer_on_own_listing_rejected(self):
        authenticate(self.client, self.seller)

        response = self.client.post(self.url, {'listing': self.listing.id, 'amount': '35.00'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('listing', response.data)

    def test_offer_on_inactive_listing_rejected(self):
        self.listing.status = 'sold'
        self.listing.save()

        response = self.client.post(self.url, {'listing': self.listing.id, 'amount': '35.00'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_second_pending_offer_conflicts(self):
        create_offer(self.listing, self.buyer)

        response = self.client.post(self.url, {'listing': self.listing.id, 'amount': '36.00'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(Offer.objects.filter(listing=self.listing, buyer=self.buyer).count(), 1)

    def test_lapsed_offer_does_not_block_new_one(self):
        lapsed = create_offer(self.listing, self.buyer)
        Offer.objects.filter(pk=lapsed.pk).update(expires_at=timezone.now() - timedelta(days=1))

        response = self.client.post(self.url, {'listing': self.listing.id, 'amount': '36.00'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        lapsed.refresh_from_db()
        self.assertEqual(lapsed.status, 'expired')
        self.assertEqual(Offer.objects.pending().filter(listing=self.listing, buyer=self.buyer).count(), 1)

    def test_new_offer_allowed_after_rejection(self):
        create_offer(self.listing, self.buyer).reject()

        response = self.client.post(self.url, {'listing': self.listing.id, 'amount': '38.00'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)

    def test_requires_authentication(self):
        self.client.credentials()

        response = self.client.post(self.url, {'listing': self.listing.id, 'amount': '35.00'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)


class OfferListTests(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.seller = create_user('seller@example.com')
        self.buyer = create_user('buyer@example.com')
        self.listing = create_listing(self.seller)
        self.own_listing = create_listing(self.buyer, title='Buyer Bike')
        self.made = create_offer(self.listing, self.buyer)
        self.received = create_offer(self.own_listing, self.seller)
        authenticate(self.client, self.buyer)

    def test_lists_both_roles_by_default(self):
        response = self.client.get(reverse('offer_list_create'))

        ids = {item['id'] for item in response.data['results']}
        self.assertEqual(ids, {self.made.id, self.received.id})

    def test_role_filter(self):
        response = self.client.get(reverse('offer_list_create'), {'role': 'buyer'})

        self.assertEqual([item['id'] for item in response.data['results']], [self.made.id])

    def test_status_filter(self):
        self.made.withdraw()

        response = self.client.get(reverse('offer_list_create'), {'status': 'pending'})

        self.assertEqual([item['id'] for item in response.data['results']], [self.received.id])

    def test_detail_forbidden_to_outsiders(self):
        authenticate(self.client, create_user('outsider@example.com'))

        response = self.client.get(reverse('offer_detail', args=[self.made.id]))

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)


class OfferActionTests(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.seller = create_user('seller@example.com')
        self.buyer = create_user('buyer@example.com')
        self.rival = create_user('rival@example.com')
        self.listing = create_listing(self.seller)
        self.offer = create_offer(self.listing, self.buyer, amount='30.00')
        self.url = reverse('offer_detail', args=[self.offer.id])

    def act(self, user, **data):
        authenticate(self.client, user)
        return self.client.patch(self.url, data, format='json')

    def test_seller_accepts(self):
        rival_offer = create_offer(self.listing, self.rival, amount='25.00')

        response = self.act(self.seller, action='accept')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'accepted')
        self.listing.refresh_from_db()
        self.assertEqual(self.listing.status, 'pending')
        rival_offer.refresh_from_db()
        self.assertEqual(rival_offer.status, 'rejected')

    def test_lapsed_rival_is_expired_not_rejected(self):
        rival_offer = create_offer(self.listing, self.rival, amount='25.00')
        Offer.objects.filter(pk=rival_offer.pk).update(expires_at=timezone.now() - timedelta(hours=1))

        response = self.act(self.seller, action='accept')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        rival_offer.refresh_from_db()
        self.assertEqual(rival_offer.status, 'expired')
        self.assertFalse(Notification.objects.filter(user=self.rival, title='Offer rejected').exists())

    def test_accept_locks_listing_before_offer(self):
        locked = []
        original = QuerySet.select_for_update

        def record(queryset, *args, **kwargs):
            locked.append(queryset.model)
            return original(queryset, *args, **kwargs)

        with mock.patch.object(QuerySet, 'select_for_update', autospec=True, side_effect=record):
            response = self.act(self.seller, action='accept')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(locked[:2], [Listing, Offer])

    def test_accept_rechecks_listing_availability(self):
        Listing.objects.filter(pk=self.listing.pk).update(status='sold')

        response = self.act(self.seller, action='accept')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['detail'], 'This listing is no longer available.')
        self.offer.refresh_from_db()
        self.assertEqual(self.offer.status, 'pending')

    def test_buyer_cannot_accept(self):
        response = self.act(self.buyer, action='accept')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.offer.refresh_from_db()
        self.assertEqual(self.offer.status, 'pending')

    def test_outsider_cannot_act(self):
        response = self.act(self.rival, action='reject')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_seller_rejects(self):
        response = self.act(self.seller, action='reject')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'rejected')

    def test_buyer_withdraws(self):
        response = self.act(self.buyer, action='withdraw')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'withdrawn')

    def test_seller_cannot_withdraw(self):
        response = self.act(self.seller, action='withdraw')

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_counter_creates_linked_offer(self):
        response = self.act(self.seller, action='counter', counter_amount='38.00', message='Meet me halfway')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['status'], 'pending')
        self.assertEqual(Decimal(response.data['amount']), Decimal('38.00'))
        self.assertEqual(response.data['countered_from'], self.offer.id)

        self.offer.refresh_from_db()
        self.assertEqual(self.offer.status, 'countered')
        self.assertEqual(self.offer.counter_offer_id, response.data['id'])

    def test_counter_requires_amount(self):
        response = self.act(self.seller, action='counter')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('counter_amount', response.data)

    def test_unknown_action(self):
        response = self.act(self.seller, action='haggle')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('action', response.data)

    def test_terminal_offer_cannot_change(self):
        self.offer.reject()

        response = self.act(self.seller, action='accept')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['detail'], 'Offer is already rejected.')

    def test_expired_offer_is_marked_on_action(self):
        Offer.objects.filter(pk=self.offer.pk).update(expires_at=timezone.now() - timedelta(minutes=1))

        response = self.act(self.seller, action='accept')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['detail'], 'This offer has expired.')
        self.offer.refresh_from_db()
        self.assertEqual(self.offer.status, 'expired')
        self.listing.refresh_from_db()
        self.assertEqual(self.listing.status, 'active')

    def test_unknown_offer(self):
        authenticate(self.client, self.seller)

        response = self.client.patch(reverse('offer_detail', args=[99999]), {'action': 'accept'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
