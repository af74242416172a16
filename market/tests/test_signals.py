"""
Tests for the notification and order-creation signal receivers.
"""

from decimal import Decimal

from django.test import TestCase

from market.models import Message, Notification, Order
from tests.helpers import create_listing, create_offer, create_order, create_payment, create_user


def titles_for(user):
    return list(
        Notification.objects.filter(user=user).order_by('created_at', 'id').values_list('title', flat=True)
    )


class OfferSignalTests(TestCase):

    def setUp(self):
        self.seller = create_user('seller@example.com', name='Sam')
        self.buyer = create_user('buyer@example.com', name='Bea')
        self.listing = create_listing(self.seller, title='Bike')

    def test_new_offer_notifies_seller(self):
        offer = create_offer(self.listing, self.buyer, amount='80.00')

        notification = Notification.objects.get(user=self.seller)
        self.assertEqual(notification.title, 'New offer received')
        self.assertEqual(notification.message, 'Bea offered $80.00 for Bike.')
        self.assertEqual(notification.offer, offer)
        self.assertEqual(notification.sender, self.buyer)

    def test_accept_notifies_winner_and_rejected_rivals(self):
        rival = create_user('rival@example.com')
        offer = create_offer(self.listing, self.buyer)
        create_offer(self.listing, rival, amount='31.00')

        offer.accept()

        self.assertEqual(titles_for(self.buyer), ['Offer accepted'])
        self.assertEqual(titles_for(rival), ['Offer rejected'])

    def test_counter_notifies_buyer(self):
        offer = create_offer(self.listing, self.buyer, amount='20.00')

        offer.counter(Decimal('30.00'))

        self.assertEqual(titles_for(self.buyer), ['Counter offer received'])
        # The counter is not reported to the seller as a new offer
        self.assertEqual(titles_for(self.seller), ['New offer received'])

    def test_withdraw_notifies_seller(self):
        offer = create_offer(self.listing, self.buyer)

        offer.withdraw()

        self.assertEqual(titles_for(self.seller), ['New offer received', 'Offer withdrawn'])

    def test_resaving_without_status_change_is_silent(self):
        offer = create_offer(self.listing, self.buyer)
        offer.message = 'Updated note'
        offer.save()

        self.assertEqual(Notification.objects.count(), 1)


class MessageSignalTests(TestCase):

    def test_message_notifies_receiver(self):
        sender = create_user('a@example.com', name='Ann')
        receiver = create_user('b@example.com')

        Message.objects.create(sender=sender, receiver=receiver, content='x' * 150)

        notification = Notification.objects.get(user=receiver)
        self.assertEqual(notification.title, 'New message from Ann')
        self.assertEqual(len(notification.message), 100)
        self.assertEqual(notification.notification_type, 'message')


class PaymentSignalTests(TestCase):

    def setUp(self):
        self.seller = create_user('seller@example.com')
        self.buyer = create_user('buyer@example.com')
        self.listing = create_listing(self.seller, title='Sofa')
        offer = create_offer(self.listing, self.buyer, amount='90.00')
        offer.accept()
        self.payment = create_payment(offer)

    def test_completion_sells_listing_and_opens_one_order(self):
        self.payment.mark_completed()

        self.listing.refresh_from_db()
        self.assertEqual(self.listing.status, 'sold')
        order = Order.objects.get(payment=self.payment)
        self.assertEqual(order.status, 'pending')
        self.assertEqual(order.buyer, self.buyer)
        self.assertIn('Payment received', titles_for(self.seller))
        self.assertIn('Payment confirmed', titles_for(self.buyer))

    def test_saving_completed_payment_again_creates_no_second_order(self):
        self.payment.mark_completed()
        self.payment.metadata = {'note': 'resaved'}
        self.payment.save()

        self.assertEqual(Order.objects.count(), 1)
        self.assertEqual(titles_for(self.seller).count('Payment received'), 1)

    def test_failed_payment_opens_no_order(self):
        self.payment.mark_failed('card_declined')

        self.assertFalse(Order.objects.exists())
        self.listing.refresh_from_db()
        self.assertEqual(self.listing.status, 'pending')

    def test_refund_notifies_buyer(self):
        self.payment.mark_completed()

        self.payment.mark_refunded(Decimal('15.00'), 'Stain on cushion')

        notification = Notification.objects.filter(user=self.buyer, title='Payment refunded').get()
        self.assertEqual(notification.message, '$15.00 was refunded for Sofa.')


class OrderSignalTests(TestCase):

    def setUp(self):
        self.seller = create_user('seller@example.com')
        self.buyer = create_user('buyer@example.com')
        _listing, _offer, _payment, self.order = create_order(self.seller, self.buyer)
        Notification.objects.all().delete()

    def test_fulfilment_notifies_counterparty(self):
        self.order.process()
        self.order.ship('TRK1', 'USPS')
        self.order.deliver()
        self.order.complete()
        self.order.return_order('Broken on arrival')

        self.assertEqual(titles_for(self.buyer), ['Order processing', 'Order shipped'])
        self.assertEqual(
            titles_for(self.seller), ['Order delivered', 'Order completed', 'Order returned']
        )

    def test_cancellation_notifies_both_parties(self):
        self.order.cancel('Found a cheaper one')

        for user in (self.buyer, self.seller):
            notification = Notification.objects.get(user=user)
            self.assertEqual(notification.title, 'Order cancelled')
            self.assertIn('Found a cheaper one', notification.message)

    def test_address_change_is_silent(self):
        self.order.update_shipping_address(shipping_city='Denver')

        self.assertFalse(Notification.objects.exists())
