"""
Tests for the staff analytics dashboard and client event ingestion.
"""

from datetime import timedelta
from decimal import Decimal

from django.test import TestCase
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APIClient

from market import analytics
from market.models import AnalyticsEvent, Payment
from tests.helpers import authenticate, create_listing, create_order, create_user


class AdminDashboardTests(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.url = reverse('admin_dashboard')
        self.staff = create_user('admin@example.com', is_staff=True)
        self.seller = create_user('seller@example.com', name='Top Seller')
        self.buyer = create_user('buyer@example.com')

        create_listing(self.seller, title='Lamp', category='Furniture')
        create_listing(self.seller, title='Phone', category='Electronics')
        create_listing(self.buyer, title='Chair', category='Furniture')
        create_order(self.seller, self.buyer, intent_id='pi_sale', price='120.00')

        AnalyticsEvent.objects.create(user=self.buyer, category='photo_to_post', action='analyze')
        AnalyticsEvent.objects.create(user=self.seller, category='page_view', action='home')
        AnalyticsEvent.objects.create(
            user=self.seller, category='page_view', action='old',
            timestamp=timezone.now() - timedelta(days=40)
        )

    def test_requires_authentication(self):
        response = self.client.get(self.url)

        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_non_staff_forbidden(self):
        authenticate(self.client, self.seller)

        response = self.client.get(self.url)

        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_invalid_time_range(self):
        authenticate(self.client, self.staff)

        response = self.client.get(self.url, {'time_range': 'decade'})

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('time_range', response.data)

    def test_weekly_dashboard(self):
        authenticate(self.client, self.staff)

        response = self.client.get(self.url)

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['time_range'], 'week')

        summary = response.data['summary']
        self.assertEqual(summary['total_users'], 3)
        self.assertEqual(summary['new_users'], 3)
        self.assertEqual(summary['active_listings'], 3)
        self.assertEqual(summary['new_listings'], 4)
        self.assertEqual(summary['completed_payments'], 1)
        self.assertEqual(summary['total_sales'], '120.00')
        self.assertEqual(summary['photo_to_post_usage'], 1)
        self.assertEqual(summary['active_users'], 2)

        self.assertEqual(len(response.data['daily']), 8)
        self.assertEqual(sum(day['transactions'] for day in response.data['daily']), 1)

        self.assertEqual(response.data['top_sellers'][0]['seller_id'], self.seller.id)
        self.assertEqual(response.data['top_sellers'][0]['name'], 'Top Seller')
        self.assertEqual(response.data['top_sellers'][0]['revenue'], '120.00')

        self.assertEqual(response.data['categories'][0], {'category': 'Furniture', 'count': 2})
        self.assertEqual(response.data['conversion_rates']['listing_to_transaction'], 25.0)

    def test_monthly_range_covers_more_days(self):
        data = analytics.build_dashboard('month')

        self.assertEqual(len(data['daily']), 31)
        self.assertEqual(data['summary']['photo_to_post_usage'], 1)

    def test_dashboard_is_cached(self):
        authenticate(self.client, self.staff)
        first = self.client.get(self.url)

        create_listing(self.buyer, title='Late Listing')
        second = self.client.get(self.url)

        self.assertEqual(first.data['summary']['new_listings'], second.data['summary']['new_listings'])

    def test_rates_rounded_to_one_decimal(self):
        create_listing(self.buyer, title='Mirror')
        create_listing(self.buyer, title='Rug')

        data = analytics.build_dashboard('week')

        # 1 completed payment over 6 new listings
        self.assertEqual(data['conversion_rates']['listing_to_transaction'], 16.7)
        self.assertEqual(data['conversion_rates']['photo_to_post_usage_rate'], 16.7)

    def test_refunds_are_summed(self):
        payment = Payment.objects.get(payment_intent_id='pi_sale')
        payment.mark_refunded(Decimal('30.00'), 'Damaged')

        data = analytics.build_dashboard('week')

        self.assertEqual(data['summary']['refunded_amount'], '30.00')
        self.assertEqual(data['summary']['total_sales'], '0.00')


class AnalyticsEventTests(TestCase):

    def setUp(self):
        self.client = APIClient()
        self.url = reverse('analytics_events')
        self.user = create_user('user@example.com')

    def test_anonymous_batch(self):
        response = self.client.post(self.url, {'events': [
            {'category': 'page_view', 'action': 'home', 'session_id': 'abc'},
            {'category': 'interaction', 'action': 'search_click', 'data': {'q': 'desk'}},
        ]}, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data, {'created': 2})
        self.assertEqual(AnalyticsEvent.objects.filter(user__isnull=True).count(), 2)
        self.assertEqual(AnalyticsEvent.objects.get(action='search_click').data, {'q': 'desk'})

    def test_authenticated_events_are_attributed(self):
        authenticate(self.client, self.user)

        self.client.post(self.url, {'events': [{'category': 'conversion', 'action': 'signup'}]}, format='json')

        self.assertEqual(AnalyticsEvent.objects.get(action='signup').user, self.user)

    def test_client_timestamp_is_kept(self):
        when = timezone.now() - timedelta(hours=3)

        self.client.post(self.url, {'events': [
            {'category': 'page_view', 'action': 'listing_detail', 'timestamp': when.isoformat()}
        ]}, format='json')

        stored = AnalyticsEvent.objects.get(action='listing_detail').timestamp
        self.assertLess(abs((stored - when).total_seconds()), 1)

    def test_unknown_category_rejected(self):
        response = self.client.post(self.url, {'events': [{'category': 'spam', 'action': 'x'}]}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(AnalyticsEvent.objects.exists())

    def test_empty_batch_rejected(self):
        response = self.client.post(self.url, {'events': []}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_batch_size_limit(self):
        events = [{'category': 'page_view', 'action': f'p{i}'} for i in range(101)]

        response = self.client.post(self.url, {'events': events}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(AnalyticsEvent.objects.exists())
