"""
Django admin configuration for the marketplace models.
"""

from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin
from django.utils.translation import gettext_lazy as _

from .models import (
    AnalyticsEvent,
    Listing,
    ListingImage,
    Message,
    Notification,
    Offer,
    Order,
    Payment,
    User,
)


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    """
    Admin interface for the custom User model.

    Extends Django's UserAdmin with profile, trust and verification fields.
    Tokens are shown read-only.
    """

    list_display = [
        'email',
        'name',
        'location',
        'trust_score',
        'is_verified',
        'is_staff',
        'is_active',
        'created_at',
    ]

    list_filter = [
        'is_verified',
        'is_staff',
        'is_superuser',
        'is_active',
        'created_at',
    ]

    search_fields = [
        'email',
        'username',
        'name',
        'location',
    ]

    ordering = ['-created_at']

    fieldsets = (
        (None, {
            'fields': ('username', 'password')
        }),
        (_('Profile'), {
            'fields': (
                'email',
                'name',
                'phone_number',
                'location',
                'bio',
                'profile_image',
            )
        }),
        (_('Trust & Verification'), {
            'fields': (
                'trust_score',
                'is_verified',
                'verification_token',
                'verification_token_expiry',
                'reset_password_token',
                'reset_password_token_expiry',
            )
        }),
        (_('Permissions'), {
            'fields': (
                'is_active',
                'is_staff',
                'is_superuser',
                'groups',
                'user_permissions',
            ),
            'classes': ('collapse',),
        }),
        (_('Important Dates'), {
            'fields': ('last_login', 'date_joined', 'created_at', 'updated_at'),
            'classes': ('collapse',),
        }),
    )

    add_fieldsets = (
        (None, {
            'classes': ('wide',),
            'fields': (
                'username',
                'email',
                'name',
                'password1',
                'password2',
            ),
        }),
    )

    readonly_fields = [
        'created_at', 'updated_at', 'last_login', 'date_joined',
        'verification_token', 'verification_token_expiry',
        'reset_password_token', 'reset_password_token_expiry',
    ]

    date_hierarchy = 'created_at'

    list_per_page = 25

    def get_readonly_fields(self, request, obj=None):
        if obj:
            return self.readonly_fields
        return []


class ListingImageInline(admin.TabularInline):
    model = ListingImage
    extra = 1
    fields = ['image', 'is_primary', 'order', 'uploaded_at']
    readonly_fields = ['uploaded_at']
    ordering = ['order']


@admin.register(Listing)
class ListingAdmin(admin.ModelAdmin):
    list_display = ['title', 'seller', 'price', 'category', 'condition', 'status', 'created_at']
    list_filter = ['status', 'condition', 'category', 'created_at']
    search_fields = ['title', 'description', 'seller__email', 'seller__name']
    readonly_fields = ['created_at', 'updated_at']
    ordering = ['-created_at']
    date_hierarchy = 'created_at'
    list_per_page = 25
    inlines = [ListingImageInline]

    fieldsets = (
        (None, {
            'fields': ('seller', 'title', 'description')
        }),
        (_('Pricing & Details'), {
            'fields': ('price', 'category', 'subcategory', 'condition', 'location', 'status')
        }),
        (_('Timestamps'), {
            'fields': ('created_at', 'updated_at'),
            'classes': ('collapse',),
        }),
    )


@admin.register(Offer)
class OfferAdmin(admin.ModelAdmin):
    list_display = ['id', 'listing', 'buyer', 'seller', 'amount', 'status', 'expires_at', 'created_at']
    list_filter = ['status', 'created_at']
    search_fields = ['listing__title', 'buyer__email', 'seller__email']
    readonly_fields = ['created_at', 'updated_at']
    raw_id_fields = ['listing', 'buyer', 'seller', 'counter_offer']
    ordering = ['-created_at']
    list_per_page = 25


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    """Payments are changed through Stripe; the admin view is for inspection."""

    list_display = [
        'id', 'payment_intent_id', 'buyer', 'seller', 'amount', 'currency',
        'status', 'payment_date', 'refund_amount',
    ]
    list_filter = ['status', 'payment_method', 'created_at']
    search_fields = ['payment_intent_id', 'buyer__email', 'seller__email', 'listing__title']
    readonly_fields = [
        'payment_intent_id', 'payment_date', 'refund_date', 'metadata', 'created_at', 'updated_at',
    ]
    raw_id_fields = ['offer', 'listing', 'buyer', 'seller']
    ordering = ['-created_at']
    date_hierarchy = 'created_at'
    list_per_page = 25


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ['id', 'listing', 'buyer', 'seller', 'status', 'carrier', 'tracking_number', 'created_at']
    list_filter = ['status', 'carrier', 'created_at']
    search_fields = ['listing__title', 'buyer__email', 'seller__email', 'tracking_number']
    readonly_fields = ['created_at', 'updated_at', 'shipped_date', 'actual_delivery_date', 'cancelled_date']
    raw_id_fields = ['payment', 'offer', 'listing', 'buyer', 'seller']
    ordering = ['-created_at']
    list_per_page = 25

    fieldsets = (
        (None, {
            'fields': ('payment', 'offer', 'listing', 'buyer', 'seller', 'status')
        }),
        (_('Shipping Address'), {
            'fields': (
                'shipping_name', 'shipping_street', 'shipping_city', 'shipping_state',
                'shipping_zip_code', 'shipping_country', 'shipping_phone',
            )
        }),
        (_('Tracking'), {
            'fields': (
                'carrier', 'tracking_number', 'tracking_url',
                'estimated_delivery_date', 'shipped_date', 'actual_delivery_date',
            )
        }),
        (_('Cancellation & Returns'), {
            'fields': ('cancel_reason', 'cancelled_date', 'return_reason', 'return_date', 'notes'),
            'classes': ('collapse',),
        }),
        (_('Timestamps'), {
            'fields': ('created_at', 'updated_at'),
            'classes': ('collapse',),
        }),
    )


@admin.register(Message)
class MessageAdmin(admin.ModelAdmin):
    list_display = ['id', 'sender', 'receiver', 'listing', 'is_read', 'created_at']
    list_filter = ['is_read', 'created_at']
    search_fields = ['sender__email', 'receiver__email', 'content']
    readonly_fields = ['created_at']
    ordering = ['-created_at']
    list_per_page = 50


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ['id', 'user', 'notification_type', 'title', 'is_read', 'created_at']
    list_filter = ['notification_type', 'is_read', 'created_at']
    search_fields = ['user__email', 'title', 'message']
    readonly_fields = ['created_at']
    ordering = ['-created_at']
    list_per_page = 50


@admin.register(AnalyticsEvent)
class AnalyticsEventAdmin(admin.ModelAdmin):
    list_display = ['id', 'category', 'action', 'user', 'session_id', 'timestamp']
    list_filter = ['category', 'timestamp']
    search_fields = ['action', 'user__email', 'session_id']
    ordering = ['-timestamp']
    date_hierarchy = 'timestamp'
    list_per_page = 50
