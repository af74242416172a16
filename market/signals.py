"""
Django signals for notifications and payment completion.

Receivers here:
1. Create in-app notifications when messages arrive and when offers, payments
   and orders change status
2. Mark the listing sold and open an Order when a payment completes

Receivers run inside the transaction of the save that triggered them, so a
failure rolls back the status change as well.
"""

import logging

from django.db.models.signals import post_save, pre_save
from django.dispatch import receiver

from .models import Message, Notification, Offer, Order, Payment

logger = logging.getLogger(__name__)


def notify(user, notification_type, title, message, **links):
    """Create a notification for ``user`` with optional related objects."""
    return Notification.objects.create(
        user=user,
        notification_type=notification_type,
        title=title,
        message=message[:500],
        **links
    )


@receiver(pre_save, sender=Offer)
@receiver(pre_save, sender=Payment)
@receiver(pre_save, sender=Order)
def remember_previous_status(sender, instance, **kwargs):
    """Stash the stored status so post_save receivers can detect transitions."""
    if instance.pk is None:
        instance._previous_status = None
        return
    instance._previous_status = sender.objects.filter(pk=instance.pk).values_list(
        'status', flat=True
    ).first()


def _status_changed(instance, created):
    previous = getattr(instance, '_previous_status', None)
    return not created and previous is not None and previous != instance.status


@receiver(post_save, sender=Message)
def notify_message_received(sender, instance, created, **kwargs):
    if not created:
        return
    notify(
        instance.receiver,
        'message',
        f"New message from {instance.sender.display_name}",
        instance.content[:100],
        sender=instance.sender,
        listing=instance.listing,
    )


@receiver(post_save, sender=Offer)
def notify_offer_activity(sender, instance, created, **kwargs):
    """
    Notify the other party about offer activity.

    - New offer -> seller
    - Counter offer (new offer flagged ``_is_counter``) -> buyer
    - Accepted / rejected -> buyer
    - Withdrawn -> seller
    """
    listing = instance.listing

    if created:
        if getattr(instance, '_is_counter', False):
            notify(
                instance.buyer, 'offer', 'Counter offer received',
                f"The seller countered with ${instance.amount} for {listing.title}.",
                offer=instance, listing=listing, sender=instance.seller,
            )
        else:
            notify(
                instance.seller, 'offer', 'New offer received',
                f"{instance.buyer.display_name} offered ${instance.amount} for {listing.title}.",
                offer=instance, listing=listing, sender=instance.buyer,
            )
        return

    if not _status_changed(instance, created):
        return

    if instance.status == 'accepted':
        notify(
            instance.buyer, 'offer', 'Offer accepted',
            f"Your offer of ${instance.amount} for {listing.title} was accepted.",
            offer=instance, listing=listing, sender=instance.seller,
        )
    elif instance.status == 'rejected':
        notify(
            instance.buyer, 'offer', 'Offer rejected',
            f"Your offer of ${instance.amount} for {listing.title} was rejected.",
            offer=instance, listing=listing, sender=instance.seller,
        )
    elif instance.status == 'withdrawn':
        notify(
            instance.seller, 'offer', 'Offer withdrawn',
            f"{instance.buyer.display_name} withdrew their offer for {listing.title}.",
            offer=instance, listing=listing, sender=instance.buyer,
        )


@receiver(post_save, sender=Payment)
def handle_payment_status_change(sender, instance, created, **kwargs):
    """
    React to payment transitions.

    On completion the listing is marked sold and exactly one Order is created
    for the payment. Refunds notify the buyer.
    """
    if not _status_changed(instance, created):
        return

    listing = instance.listing

    if instance.status == 'completed':
        if listing.status != 'deleted':
            listing.mark_as_sold()

        order, order_created = Order.objects.get_or_create(
            payment=instance,
            defaults={
                'offer': instance.offer,
                'listing': listing,
                'buyer': instance.buyer,
                'seller': instance.seller,
            }
        )
        if order_created:
            logger.info(
                f"Order created for completed payment. "
                f"Order ID: {order.id}, Payment ID: {instance.id}, Listing ID: {listing.id}"
            )

        notify(
            instance.seller, 'payment', 'Payment received',
            f"You received ${instance.amount} for {listing.title}.",
            payment=instance, listing=listing, order=order, sender=instance.buyer,
        )
        notify(
            instance.buyer, 'payment', 'Payment confirmed',
            f"Your payment of ${instance.amount} for {listing.title} is complete.",
            payment=instance, listing=listing, order=order, sender=instance.seller,
        )
    elif instance.status == 'refunded':
        notify(
            instance.buyer, 'payment', 'Payment refunded',
            f"${instance.refund_amount} was refunded for {listing.title}.",
            payment=instance, listing=listing, sender=instance.seller,
        )


ORDER_STATUS_RECIPIENTS = {
    'processing': ('buyer', 'Order processing', 'The seller is preparing {title}.'),
    'shipped': ('buyer', 'Order shipped', '{title} has shipped.'),
    'delivered': ('seller', 'Order delivered', 'The buyer confirmed delivery of {title}.'),
    'completed': ('seller', 'Order completed', 'The order for {title} is complete.'),
    'returned': ('seller', 'Order returned', 'The buyer returned {title}.'),
}


@receiver(post_save, sender=Order)
def notify_order_status_change(sender, instance, created, **kwargs):
    """Notify the counterparty of an order status change; cancellations go to both."""
    if not _status_changed(instance, created):
        return

    title = instance.listing.title

    if instance.status == 'cancelled':
        for user in (instance.buyer, instance.seller):
            notify(
                user, 'order', 'Order cancelled',
                f"The order for {title} was cancelled: {instance.cancel_reason}",
                order=instance, listing=instance.listing,
            )
        return

    recipient = ORDER_STATUS_RECIPIENTS.get(instance.status)
    if recipient is None:
        return

    role, notification_title, template = recipient
    user = instance.buyer if role == 'buyer' else instance.seller
    other = instance.seller if role == 'buyer' else instance.buyer
    notify(
        user, 'order', notification_title, template.format(title=title),
        order=instance, listing=instance.listing, sender=other,
    )
