"""
URL configuration for the marketplace project.
"""
from django.conf import settings
from django.conf.urls.static import static
from django.contrib import admin
from django.urls import path
from rest_framework_simplejwt.views import TokenVerifyView

from market.views import (
    AdminDashboardView,
    AnalyticsEventView,
    ConversationListView,
    ListingDetailView,
    ListingImageDeleteView,
    ListingImageUploadView,
    ListingListCreateView,
    ListingSearchView,
    LoginView,
    LogoutView,
    MessageListCreateView,
    NotificationDetailView,
    NotificationListView,
    NotificationMarkAllReadView,
    NotificationMarkReadView,
    NotificationUnreadCountView,
    OfferDetailView,
    OfferListCreateView,
    OrderDetailView,
    OrderListView,
    PasswordResetConfirmView,
    PasswordResetRequestView,
    PaymentDetailView,
    PaymentListCreateView,
    PaymentRefundView,
    PhotoToPostView,
    PublicProfileView,
    StripeWebhookView,
    TokenRefreshView,
    UserProfileView,
    UserRegistrationView,
    VerifyEmailView,
)


urlpatterns = [
    path('admin/', admin.site.urls),

    # Authentication endpoints
    path('api/auth/register/', UserRegistrationView.as_view(), name='user_register'),
    path('api/auth/verify-email/', VerifyEmailView.as_view(), name='verify_email'),
    path('api/auth/login/', LoginView.as_view(), name='user_login'),
    path('api/auth/logout/', LogoutView.as_view(), name='user_logout'),
    path('api/auth/token/refresh/', TokenRefreshView.as_view(), name='token_refresh'),
    path('api/auth/token/verify/', TokenVerifyView.as_view(), name='token_verify'),
    path('api/auth/password-reset/', PasswordResetRequestView.as_view(), name='password_reset'),
    path('api/auth/password-reset/confirm/', PasswordResetConfirmView.as_view(), name='password_reset_confirm'),

    # Profile endpoints
    path('api/profile/', UserProfileView.as_view(), name='user_profile'),
    path('api/users/<int:pk>/', PublicProfileView.as_view(), name='public_profile'),

    # Listing endpoints
    path('api/listings/', ListingListCreateView.as_view(), name='listing_list_create'),
    path('api/listings/search/', ListingSearchView.as_view(), name='listing_search'),
    path('api/listings/photo-to-post/', PhotoToPostView.as_view(), name='photo_to_post'),
    path('api/listings/<int:pk>/', ListingDetailView.as_view(), name='listing_detail'),
    path('api/listings/<int:pk>/images/', ListingImageUploadView.as_view(), name='listing_image_upload'),
    path(
        'api/listings/<int:pk>/images/<int:image_id>/',
        ListingImageDeleteView.as_view(),
        name='listing_image_delete'
    ),

    # Offer endpoints
    path('api/offers/', OfferListCreateView.as_view(), name='offer_list_create'),
    path('api/offers/<int:pk>/', OfferDetailView.as_view(), name='offer_detail'),

    # Payment endpoints
    path('api/payments/', PaymentListCreateView.as_view(), name='payment_list_create'),
    path('api/payments/webhook/', StripeWebhookView.as_view(), name='stripe_webhook'),
    path('api/payments/<int:pk>/', PaymentDetailView.as_view(), name='payment_detail'),
    path('api/payments/<int:pk>/refund/', PaymentRefundView.as_view(), name='payment_refund'),

    # Order endpoints
    path('api/orders/', OrderListView.as_view(), name='order_list'),
    path('api/orders/<int:pk>/', OrderDetailView.as_view(), name='order_detail'),

    # Messaging endpoints
    path('api/messages/', MessageListCreateView.as_view(), name='message_list_create'),
    path('api/messages/conversations/', ConversationListView.as_view(), name='conversation_list'),

    # Notification endpoints
    path('api/notifications/', NotificationListView.as_view(), name='notification_list'),
    path(
        'api/notifications/unread-count/',
        NotificationUnreadCountView.as_view(),
        name='notification_unread_count'
    ),
    path('api/notifications/read-all/', NotificationMarkAllReadView.as_view(), name='notification_read_all'),
    path('api/notifications/<int:pk>/', NotificationDetailView.as_view(), name='notification_detail'),
    path('api/notifications/<int:pk>/read/', NotificationMarkReadView.as_view(), name='notification_read'),

    # Analytics endpoints
    path('api/admin/dashboard/', AdminDashboardView.as_view(), name='admin_dashboard'),
    path('api/analytics/events/', AnalyticsEventView.as_view(), name='analytics_events'),
]

if settings.DEBUG:
    urlpatterns += static(settings.MEDIA_URL, document_root=settings.MEDIA_ROOT)
