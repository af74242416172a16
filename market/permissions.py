"""
Custom permission classes for the marketplace API.

Views instantiate the object-level permissions directly so they can return the
permission's ``message`` with a 403.
"""

from rest_framework import permissions


class IsStaffUser(permissions.BasePermission):
    """
    Allow only staff users (the marketplace administrators).

    Usage:
        class MyView(APIView):
            permission_classes = [IsAuthenticated, IsStaffUser]
    """

    message = 'You do not have permission to perform this action. Staff privileges required.'

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False
        return request.user.is_staff


class IsListingOwner(permissions.BasePermission):
    """Only the seller may edit, delete or add images to a listing."""

    message = 'You do not have permission to modify this listing.'

    def has_object_permission(self, request, view, obj):
        return obj.seller_id == request.user.id


class IsTransactionParticipant(permissions.BasePermission):
    """
    Allow the buyer or seller of an offer, payment or order.

    Works with any object exposing ``buyer_id`` and ``seller_id``.
    """

    message = 'You do not have permission to view this record.'

    def has_object_permission(self, request, view, obj):
        return request.user.id in (obj.buyer_id, obj.seller_id)


class CanActOnOffer(permissions.BasePermission):
    """
    Role-based authorization for offer actions.

    Authorization rules:
    - Seller can: accept, reject, counter
    - Buyer can: withdraw
    - Nobody else can act on the offer

    Unknown actions pass so the view can answer with a 400.
    """

    message = 'You do not have permission to modify this offer.'

    SELLER_ACTIONS = ('accept', 'reject', 'counter')
    BUYER_ACTIONS = ('withdraw',)

    def has_object_permission(self, request, view, obj):
        action = request.data.get('action')
        is_buyer = obj.buyer_id == request.user.id
        is_seller = obj.seller_id == request.user.id

        if not is_buyer and not is_seller:
            self.message = 'You do not have permission to modify this offer.'
            return False

        if action in self.SELLER_ACTIONS and not is_seller:
            self.message = f'Only the seller can {action} an offer.'
            return False

        if action in self.BUYER_ACTIONS and not is_buyer:
            self.message = 'Only the buyer can withdraw an offer.'
            return False

        return True


class CanActOnOrder(permissions.BasePermission):
    """
    Role-based authorization for order actions.

    Authorization rules:
    - Seller can: process, ship
    - Buyer can: deliver, complete, return, update_shipping
    - Either party can: cancel
    """

    message = 'You do not have permission to modify this order.'

    SELLER_ACTIONS = ('process', 'ship')
    BUYER_ACTIONS = ('deliver', 'complete', 'return', 'update_shipping')

    def has_object_permission(self, request, view, obj):
        action = request.data.get('action')
        is_buyer = obj.buyer_id == request.user.id
        is_seller = obj.seller_id == request.user.id

        if not is_buyer and not is_seller:
            self.message = 'You do not have permission to modify this order.'
            return False

        if action in self.SELLER_ACTIONS and not is_seller:
            self.message = f'Only the seller can {action} an order.'
            return False

        if action in self.BUYER_ACTIONS and not is_buyer:
            self.message = f'Only the buyer can {action.replace("_", " ")} an order.'
            return False

        return True
