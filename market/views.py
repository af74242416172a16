"""
API views for the marketplace.
"""

import logging

from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction
from django.db.models import Case, Count, IntegerField, Q, Value, When
from django.utils import timezone
from rest_framework import generics, status
from rest_framework.pagination import PageNumberPagination
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.tokens import RefreshToken

from . import analytics, emails, payments
from .exceptions import InvalidTransition, PaymentProviderError, WebhookSignatureError
from .models import Listing, ListingImage, Message, Notification, Offer, Order, Payment
from .permissions import (
    CanActOnOffer,
    CanActOnOrder,
    IsListingOwner,
    IsStaffUser,
    IsTransactionParticipant,
)
from .photo_to_post import PhotoAnalysisError, analyze_photo
from .serializers import (
    AnalyticsBatchSerializer,
    DashboardQuerySerializer,
    ListingImageSerializer,
    ListingImageUploadSerializer,
    ListingSearchSerializer,
    ListingSerializer,
    ListingSummarySerializer,
    ListingWriteSerializer,
    LoginSerializer,
    LogoutSerializer,
    MessageCreateSerializer,
    MessageSerializer,
    NotificationSerializer,
    OfferActionSerializer,
    OfferCreateSerializer,
    OfferSerializer,
    OrderActionSerializer,
    OrderSerializer,
    PasswordResetConfirmSerializer,
    PasswordResetRequestSerializer,
    PaymentCreateSerializer,
    PaymentSerializer,
    PhotoToPostSerializer,
    PublicProfileSerializer,
    RefundSerializer,
    TokenRefreshSerializer,
    UserProfileSerializer,
    UserProfileUpdateSerializer,
    UserRegistrationSerializer,
    UserSummarySerializer,
    VerifyEmailSerializer,
)

User = get_user_model()
logger = logging.getLogger(__name__)

MAX_IMAGES_PER_LISTING = 10


def not_authenticated():
    return Response(
        {'detail': 'Authentication credentials were not provided.'},
        status=status.HTTP_401_UNAUTHORIZED
    )


def validation_error_response(error):
    """
    Turn a Django ValidationError raised by a model into a 400 response.

    Field errors keep their dict shape; single messages use ``detail``.
    """
    if hasattr(error, 'error_dict'):
        return Response(error.message_dict, status=status.HTTP_400_BAD_REQUEST)
    return Response({'detail': error.messages[0]}, status=status.HTTP_400_BAD_REQUEST)


class ClientIPMixin:
    def get_client_ip(self, request):
        """
        Get client IP address from request.
        Handles proxy headers for accurate IP detection.
        """
        x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
        if x_forwarded_for:
            ip = x_forwarded_for.split(',')[0].strip()
        else:
            ip = request.META.get('REMOTE_ADDR')
        return ip


class MessagePagination(PageNumberPagination):
    page_size = 50


# ============================================================================
# Authentication
# ============================================================================

class UserRegistrationView(ClientIPMixin, generics.CreateAPIView):
    """
    API endpoint for user registration.

    Creates an unverified user and sends the verification e-mail. Handles
    concurrent registration attempts with database-level uniqueness.

    POST /api/auth/register/
    Request body: {
        "name": "Jane Doe",
        "email": "jane@example.com",
        "password": "...",
        "confirm_password": "...",
        "phone_number": "+15551234567",  # optional
        "location": "Boston, MA"         # optional
    }

    Error responses:
    - 400: Validation errors (duplicate email, weak password, mismatch)
    """
    serializer_class = UserRegistrationSerializer
    permission_classes = [AllowAny]

    def create(self, request, *args, **kwargs):
        serializer = self.get_serializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            user = serializer.save()
        except IntegrityError as e:
            # Concurrent registration with the same email
            if 'email' in str(e).lower() or 'unique' in str(e).lower():
                return Response(
                    {'email': ['A user with that email already exists.']},
                    status=status.HTTP_400_BAD_REQUEST
                )
            raise

        email_sent = emails.send_verification_email(user)

        logger.info(
            f"User registered. Email: {user.email}, Verification email sent: {email_sent}, "
            f"IP: {self.get_client_ip(request)}"
        )

        data = dict(serializer.data)
        data['detail'] = 'Registration successful. Please check your email to verify your account.'
        return Response(data, status=status.HTTP_201_CREATED)


class VerifyEmailView(APIView):
    """
    Verify an e-mail address with the token from the verification e-mail.

    POST /api/auth/verify-email/
    Request body: {"token": "<64 hex characters>"}

    Error responses:
    - 400: Unknown or expired token
    """
    permission_classes = [AllowAny]

    def post(self, request, *args, **kwargs):
        serializer = VerifyEmailSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        token = serializer.validated_data['token']
        user = User.objects.filter(
            verification_token=token,
            verification_token_expiry__gt=timezone.now()
        ).first()

        if user is None:
            logger.warning("Email verification failed: invalid or expired token.")
            return Response(
                {'detail': 'Invalid or expired verification token.'},
                status=status.HTTP_400_BAD_REQUEST
            )

        user.is_verified = True
        user.verification_token = ''
        user.verification_token_expiry = None
        user.save(update_fields=[
            'is_verified', 'verification_token', 'verification_token_expiry', 'updated_at'
        ])

        logger.info(f"Email verified. User: {user.email}")
        return Response({'detail': 'Email verified successfully.'}, status=status.HTTP_200_OK)


class LoginView(ClientIPMixin, APIView):
    """
    API endpoint for user login with JWT token generation.

    Security features:
    - Rate limiting (throttle scope 'login')
    - Generic error messages to prevent user enumeration
    - Failed login attempt logging with the client IP
    - Case-insensitive email lookup

    POST /api/auth/login/
    Request body: {"email": "user@example.com", "password": "password123"}

    Success response (200):
    {
        "access": "<jwt_access_token>",
        "refresh": "<jwt_refresh_token>",
        "user": {"id": 1, "email": "...", "name": "...", "is_verified": false, "is_staff": false}
    }

    Error response (401): {"detail": "Invalid credentials"}
    """
    permission_classes = [AllowAny]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = 'login'

    def post(self, request, *args, **kwargs):
        serializer = LoginSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        email = serializer.validated_data['email'].lower().strip()
        password = serializer.validated_data['password']
        client_ip = self.get_client_ip(request)

        try:
            user = User.objects.get(email__iexact=email)
        except User.DoesNotExist:
            logger.warning(
                f"Failed login attempt for non-existent user. "
                f"Email: {email}, IP: {client_ip}"
            )
            return Response({'detail': 'Invalid credentials'}, status=status.HTTP_401_UNAUTHORIZED)

        if not user.check_password(password):
            logger.warning(
                f"Failed login attempt with incorrect password. "
                f"Email: {email}, IP: {client_ip}"
            )
            return Response({'detail': 'Invalid credentials'}, status=status.HTTP_401_UNAUTHORIZED)

        if not user.is_active:
            logger.warning(
                f"Failed login attempt for inactive account. "
                f"Email: {email}, IP: {client_ip}"
            )
            return Response({'detail': 'Invalid credentials'}, status=status.HTTP_401_UNAUTHORIZED)

        refresh = RefreshToken.for_user(user)
        user.last_login = timezone.now()
        user.save(update_fields=['last_login'])

        logger.info(f"Successful login. Email: {email}, IP: {client_ip}")

        return Response({
            'access': str(refresh.access_token),
            'refresh': str(refresh),
            'user': {
                'id': user.id,
                'email': user.email,
                'name': user.display_name,
                'is_verified': user.is_verified,
                'is_staff': user.is_staff,
            }
        }, status=status.HTTP_200_OK)

    def get(self, request, *args, **kwargs):
        """GET method not allowed."""
        return Response(
            {'detail': 'Method "GET" not allowed.'},
            status=status.HTTP_405_METHOD_NOT_ALLOWED
        )


class TokenRefreshView(ClientIPMixin, APIView):
    """
    API endpoint for refreshing JWT access tokens.

    The presented refresh token is blacklisted and a new one issued
    (ROTATE_REFRESH_TOKENS / BLACKLIST_AFTER_ROTATION).

    POST /api/auth/token/refresh/
    Request body: {"refresh": "<jwt_refresh_token>"}

    Error responses:
    - 400: Missing refresh field
    - 401: Invalid, expired, or blacklisted refresh token
    - 429: Rate limit exceeded
    """
    permission_classes = [AllowAny]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = 'refresh'

    def post(self, request, *args, **kwargs):
        serializer = TokenRefreshSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        client_ip = self.get_client_ip(request)

        try:
            # Validates signature, expiry, type and blacklist status
            refresh_token = RefreshToken(serializer.validated_data['refresh'])
        except TokenError as e:
            logger.warning(f"Failed token refresh attempt. Error: {e}, IP: {client_ip}")
            return Response({'detail': str(e)}, status=status.HTTP_401_UNAUTHORIZED)

        response_data = {'access': str(refresh_token.access_token)}

        if settings.SIMPLE_JWT.get('ROTATE_REFRESH_TOKENS', False):
            user = User.objects.filter(id=refresh_token.get('user_id'), is_active=True).first()
            if user is None:
                return Response({'detail': 'User not found.'}, status=status.HTTP_401_UNAUTHORIZED)

            if settings.SIMPLE_JWT.get('BLACKLIST_AFTER_ROTATION', False):
                refresh_token.blacklist()

            response_data['refresh'] = str(RefreshToken.for_user(user))

        logger.info(f"Successful token refresh. IP: {client_ip}")
        return Response(response_data, status=status.HTTP_200_OK)

    def get(self, request, *args, **kwargs):
        """GET method not allowed."""
        return Response(
            {'detail': 'Method "GET" not allowed.'},
            status=status.HTTP_405_METHOD_NOT_ALLOWED
        )


class LogoutView(ClientIPMixin, APIView):
    """
    Blacklist the caller's refresh token.

    POST /api/auth/logout/
    Request body: {"refresh": "<jwt_refresh_token>"}
    """
    permission_classes = [AllowAny]

    def post(self, request, *args, **kwargs):
        if not request.user or not request.user.is_authenticated:
            return not_authenticated()

        serializer = LogoutSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        try:
            token = RefreshToken(serializer.validated_data['refresh'])
            if str(token.get('user_id')) != str(request.user.id):
                return Response(
                    {'detail': 'Token does not belong to the authenticated user.'},
                    status=status.HTTP_400_BAD_REQUEST
                )
            token.blacklist()
        except TokenError as e:
            return Response({'detail': str(e)}, status=status.HTTP_400_BAD_REQUEST)

        logger.info(f"User logged out. User: {request.user.email}, IP: {self.get_client_ip(request)}")
        return Response({'detail': 'Successfully logged out.'}, status=status.HTTP_200_OK)


class PasswordResetRequestView(ClientIPMixin, APIView):
    """
    Start a password reset.

    Always answers 200 with the same message so the endpoint cannot be used
    to discover registered addresses.

    POST /api/auth/password-reset/
    Request body: {"email": "user@example.com"}
    """
    permission_classes = [AllowAny]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = 'password_reset'

    GENERIC_RESPONSE = 'If an account exists for that email, a password reset link has been sent.'

    def post(self, request, *args, **kwargs):
        serializer = PasswordResetRequestSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        email = serializer.validated_data['email'].lower().strip()
        user = User.objects.filter(email__iexact=email, is_active=True).first()

        if user is None:
            logger.warning(
                f"Password reset requested for unknown email. "
                f"Email: {email}, IP: {self.get_client_ip(request)}"
            )
        else:
            user.generate_password_reset_token()
            user.save(update_fields=['reset_password_token', 'reset_password_token_expiry', 'updated_at'])
            emails.send_password_reset_email(user)
            logger.info(f"Password reset requested. User: {user.email}")

        return Response({'detail': self.GENERIC_RESPONSE}, status=status.HTTP_200_OK)


class PasswordResetConfirmView(ClientIPMixin, APIView):
    """
    Set a new password with a reset token.

    POST /api/auth/password-reset/confirm/
    Request body: {"token": "...", "password": "...", "confirm_password": "..."}

    Error responses:
    - 400: Unknown or expired token, or password validation errors
    """
    permission_classes = [AllowAny]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = 'password_reset'

    def post(self, request, *args, **kwargs):
        serializer = PasswordResetConfirmSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        user = User.objects.filter(
            reset_password_token=serializer.validated_data['token'],
            reset_password_token_expiry__gt=timezone.now()
        ).first()

        if user is None:
            logger.warning(
                f"Password reset with invalid or expired token. IP: {self.get_client_ip(request)}"
            )
            return Response(
                {'detail': 'Invalid or expired password reset token.'},
                status=status.HTTP_400_BAD_REQUEST
            )

        user.set_password(serializer.validated_data['password'])
        user.reset_password_token = ''
        user.reset_password_token_expiry = None
        user.save(update_fields=[
            'password', 'reset_password_token', 'reset_password_token_expiry', 'updated_at'
        ])

        logger.info(f"Password reset completed. User: {user.email}")
        return Response({'detail': 'Password has been reset successfully.'}, status=status.HTTP_200_OK)


# ============================================================================
# Profiles
# ============================================================================

class UserProfileView(APIView):
    """
    API endpoint for retrieving and updating the authenticated user's profile.

    GET /api/profile/
    PUT /api/profile/
    PATCH /api/profile/
    Body (multipart or JSON): name, phone_number, location, bio, profile_image

    Error responses:
    - 401: Missing, invalid, or expired JWT token
    - 400: Invalid data
    - 405: Method not allowed (only GET, PUT, PATCH supported)
    """
    permission_classes = [AllowAny]

    def get(self, request, *args, **kwargs):
        if not request.user or not request.user.is_authenticated:
            return not_authenticated()

        serializer = UserProfileSerializer(request.user, context={'request': request})
        return Response(serializer.data, status=status.HTTP_200_OK)

    def put(self, request, *args, **kwargs):
        return self._update_profile(request, partial=False)

    def patch(self, request, *args, **kwargs):
        return self._update_profile(request, partial=True)

    def _update_profile(self, request, partial):
        if not request.user or not request.user.is_authenticated:
            return not_authenticated()

        # Fields outside UserProfileUpdateSerializer (email, is_verified,
        # trust_score, is_staff) are ignored rather than rejected
        serializer = UserProfileUpdateSerializer(
            request.user,
            data=request.data,
            partial=partial,
            context={'request': request}
        )
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        user = serializer.save()
        logger.info(
            f"Profile updated. User: {user.email}, Fields: {', '.join(serializer.validated_data.keys())}"
        )

        response_serializer = UserProfileSerializer(user, context={'request': request})
        return Response(response_serializer.data, status=status.HTTP_200_OK)

    def post(self, request, *args, **kwargs):
        """POST method not allowed."""
        return Response(
            {'detail': 'Method "POST" not allowed.'},
            status=status.HTTP_405_METHOD_NOT_ALLOWED
        )

    def delete(self, request, *args, **kwargs):
        """DELETE method not allowed."""
        return Response(
            {'detail': 'Method "DELETE" not allowed.'},
            status=status.HTTP_405_METHOD_NOT_ALLOWED
        )


class PublicProfileView(generics.RetrieveAPIView):
    """
    Public profile of any active user.

    GET /api/users/<id>/
    """
    permission_classes = [AllowAny]
    serializer_class = PublicProfileSerializer

    def get_queryset(self):
        return User.objects.filter(is_active=True).annotate(
            active_listing_count=Count('listings', filter=Q(listings__status='active')),
            sold_listing_count=Count('listings', filter=Q(listings__status='sold')),
        )


# ============================================================================
# Listings
# ============================================================================

class ListingListCreateView(APIView):
    """
    List active listings or create a new one.

    GET /api/listings/
    Query Parameters:
    - category (optional)
    - mine (optional, true): the caller's own listings in any status but deleted

    POST /api/listings/ (multipart)
    Body: title, description, price, category, subcategory, condition,
    location, images (up to 10 files; the first becomes primary)
    """
    permission_classes = [AllowAny]

    def get(self, request, *args, **kwargs):
        mine = request.query_params.get('mine', '').lower() == 'true'

        if mine:
            if not request.user or not request.user.is_authenticated:
                return not_authenticated()
            queryset = Listing.objects.filter(seller=request.user).exclude(status='deleted')
        else:
            queryset = Listing.objects.active()

        category = request.query_params.get('category')
        if category:
            queryset = queryset.filter(category__iexact=category)

        queryset = queryset.select_related('seller').prefetch_related('images').order_by('-created_at')

        paginator = PageNumberPagination()
        page = paginator.paginate_queryset(queryset, request, view=self)
        serializer = ListingSummarySerializer(page, many=True, context={'request': request})
        return paginator.get_paginated_response(serializer.data)

    def post(self, request, *args, **kwargs):
        if not request.user or not request.user.is_authenticated:
            return not_authenticated()

        serializer = ListingWriteSerializer(data=request.data, context={'request': request})
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        try:
            listing = serializer.save()
        except DjangoValidationError as e:
            return validation_error_response(e)

        logger.info(
            f"Listing created. Listing ID: {listing.id}, Title: {listing.title}, "
            f"Seller: {request.user.email} (ID: {request.user.id})"
        )

        response_serializer = ListingSerializer(listing, context={'request': request})
        return Response(response_serializer.data, status=status.HTTP_201_CREATED)


class ListingSearchView(generics.ListAPIView):
    """
    Search active listings.

    GET /api/listings/search/

    Query Parameters:
    - q: free text matched against title, description, category and subcategory
    - category, subcategory, condition, location
    - min_price, max_price: decimal bounds
    - seller: seller id
    - sort: relevance (default), price_asc, price_desc, newest, oldest
    - page: page number

    Error responses:
    - 400: Invalid numeric filter or sort order
    """
    permission_classes = [AllowAny]
    serializer_class = ListingSummarySerializer

    def get_queryset(self):
        params = ListingSearchSerializer(data=self.request.query_params)
        params.is_valid(raise_exception=True)
        filters = params.validated_data

        queryset = Listing.objects.active().select_related('seller').prefetch_related('images')

        query = filters.get('q', '').strip()
        if query:
            queryset = queryset.filter(
                Q(title__icontains=query)
                | Q(description__icontains=query)
                | Q(category__icontains=query)
                | Q(subcategory__icontains=query)
            )

        for field in ('category', 'subcategory'):
            if filters.get(field):
                queryset = queryset.filter(**{f'{field}__iexact': filters[field]})

        if filters.get('condition'):
            queryset = queryset.filter(condition=filters['condition'])
        if filters.get('location'):
            queryset = queryset.filter(location__icontains=filters['location'])
        if filters.get('min_price') is not None:
            queryset = queryset.filter(price__gte=filters['min_price'])
        if filters.get('max_price') is not None:
            queryset = queryset.filter(price__lte=filters['max_price'])
        if filters.get('seller'):
            queryset = queryset.filter(seller_id=filters['seller'])

        sort = filters.get('sort', 'relevance')
        if sort == 'price_asc':
            return queryset.order_by('price', '-created_at')
        if sort == 'price_desc':
            return queryset.order_by('-price', '-created_at')
        if sort == 'oldest':
            return queryset.order_by('created_at')
        if sort == 'newest' or not query:
            return queryset.order_by('-created_at')

        # Relevance: title matches first, then newest
        return queryset.annotate(
            title_match=Case(
                When(title__icontains=query, then=Value(1)),
                default=Value(0),
                output_field=IntegerField(),
            )
        ).order_by('-title_match', '-created_at')


class ListingDetailView(ClientIPMixin, APIView):
    """
    Retrieve, edit or delete one listing.

    GET /api/listings/<id>/       (public; deleted listings are 404)
    PUT/PATCH /api/listings/<id>/ (seller only; sold listings cannot be edited)
    DELETE /api/listings/<id>/    (seller only; soft delete)
    """
    permission_classes = [AllowAny]

    def _get_listing(self, pk):
        return Listing.objects.select_related('seller').prefetch_related('images').filter(
            pk=pk
        ).exclude(status='deleted').first()

    def get(self, request, pk, *args, **kwargs):
        listing = self._get_listing(pk)
        if listing is None:
            return Response({'detail': 'Listing not found.'}, status=status.HTTP_404_NOT_FOUND)

        serializer = ListingSerializer(listing, context={'request': request})
        return Response(serializer.data, status=status.HTTP_200_OK)

    def put(self, request, pk, *args, **kwargs):
        return self._update(request, pk, partial=False)

    def patch(self, request, pk, *args, **kwargs):
        return self._update(request, pk, partial=True)

    def _update(self, request, pk, partial):
        if not request.user or not request.user.is_authenticated:
            return not_authenticated()

        listing = self._get_listing(pk)
        if listing is None:
            return Response({'detail': 'Listing not found.'}, status=status.HTTP_404_NOT_FOUND)

        permission = IsListingOwner()
        if not permission.has_object_permission(request, self, listing):
            logger.warning(
                f"Unauthorized listing update attempt. Listing ID: {pk}, "
                f"User: {request.user.email}, IP: {self.get_client_ip(request)}"
            )
            return Response({'detail': permission.message}, status=status.HTTP_403_FORBIDDEN)

        if listing.status == 'sold':
            return Response(
                {'detail': 'A sold listing cannot be edited.'},
                status=status.HTTP_400_BAD_REQUEST
            )

        serializer = ListingWriteSerializer(
            listing, data=request.data, partial=partial, context={'request': request}
        )
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        try:
            listing = serializer.save()
        except DjangoValidationError as e:
            return validation_error_response(e)

        logger.info(f"Listing updated. Listing ID: {listing.id}, Seller: {request.user.email}")

        response_serializer = ListingSerializer(listing, context={'request': request})
        return Response(response_serializer.data, status=status.HTTP_200_OK)

    def delete(self, request, pk, *args, **kwargs):
        if not request.user or not request.user.is_authenticated:
            return not_authenticated()

        with transaction.atomic():
            listing = Listing.objects.select_for_update().filter(pk=pk).exclude(status='deleted').first()
            if listing is None:
                return Response({'detail': 'Listing not found.'}, status=status.HTTP_404_NOT_FOUND)

            permission = IsListingOwner()
            if not permission.has_object_permission(request, self, listing):
                logger.warning(
                    f"Unauthorized listing delete attempt. Listing ID: {pk}, "
                    f"User: {request.user.email}, IP: {self.get_client_ip(request)}"
                )
                return Response({'detail': permission.message}, status=status.HTTP_403_FORBIDDEN)

            try:
                listing.soft_delete()
            except DjangoValidationError as e:
                return validation_error_response(e)

        logger.info(f"Listing deleted. Listing ID: {pk}, Seller: {request.user.email}")
        return Response(status=status.HTTP_204_NO_CONTENT)


class ListingImageUploadView(APIView):
    """
    Add an image to a listing.

    POST /api/listings/<id>/images/ (multipart: image, is_primary)
    """
    permission_classes = [AllowAny]

    def post(self, request, pk, *args, **kwargs):
        if not request.user or not request.user.is_authenticated:
            return not_authenticated()

        listing = Listing.objects.filter(pk=pk).exclude(status='deleted').first()
        if listing is None:
            return Response({'detail': 'Listing not found.'}, status=status.HTTP_404_NOT_FOUND)

        permission = IsListingOwner()
        if not permission.has_object_permission(request, self, listing):
            return Response({'detail': permission.message}, status=status.HTTP_403_FORBIDDEN)

        serializer = ListingImageUploadSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        with transaction.atomic():
            existing = listing.images.count()
            if existing >= MAX_IMAGES_PER_LISTING:
                return Response(
                    {'detail': f'Maximum {MAX_IMAGES_PER_LISTING} images allowed per listing.'},
                    status=status.HTTP_400_BAD_REQUEST
                )

            image = ListingImage.objects.create(
                listing=listing,
                image=serializer.validated_data['image'],
                order=existing,
                is_primary=serializer.validated_data['is_primary'] or existing == 0,
            )

        logger.info(f"Listing image uploaded. Listing ID: {listing.id}, Image ID: {image.id}")

        response_serializer = ListingImageSerializer(image, context={'request': request})
        return Response(response_serializer.data, status=status.HTTP_201_CREATED)


class ListingImageDeleteView(APIView):
    """
    Remove an image from a listing.

    DELETE /api/listings/<id>/images/<image_id>/

    When the primary image is removed, the next image by order becomes primary.
    """
    permission_classes = [AllowAny]

    def delete(self, request, pk, image_id, *args, **kwargs):
        if not request.user or not request.user.is_authenticated:
            return not_authenticated()

        image = ListingImage.objects.select_related('listing').filter(
            pk=image_id, listing_id=pk
        ).first()
        if image is None:
            return Response({'detail': 'Image not found.'}, status=status.HTTP_404_NOT_FOUND)

        permission = IsListingOwner()
        if not permission.has_object_permission(request, self, image.listing):
            return Response({'detail': permission.message}, status=status.HTTP_403_FORBIDDEN)

        with transaction.atomic():
            was_primary = image.is_primary
            stored_file = image.image
            image.delete()
            transaction.on_commit(lambda: stored_file.delete(save=False))

            if was_primary:
                replacement = ListingImage.objects.filter(listing_id=pk).order_by('order', 'uploaded_at').first()
                if replacement is not None:
                    replacement.is_primary = True
                    replacement.save()

        return Response(status=status.HTTP_204_NO_CONTENT)


class PhotoToPostView(APIView):
    """
    Analyse a photo and return listing drafts.

    POST /api/listings/photo-to-post/ (multipart)
    Body:
    - image: photo of the item(s)
    - labels (optional): comma-separated names of the objects in the photo

    Success response (200):
    {
        "image_width": 640,
        "image_height": 480,
        "detected_objects": [
            {"label": "...", "condition": {...}, "brand": "...", "features": {...},
             "price": {...}, "title": "...", "description": "...", "listing_condition": "good", ...}
        ]
    }
    """
    permission_classes = [AllowAny]

    def post(self, request, *args, **kwargs):
        if not request.user or not request.user.is_authenticated:
            return not_authenticated()

        serializer = PhotoToPostSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        try:
            result = analyze_photo(
                serializer.validated_data['image'],
                labels=serializer.validated_data.get('labels'),
            )
        except PhotoAnalysisError as e:
            return Response({'detail': str(e)}, status=status.HTTP_400_BAD_REQUEST)

        analytics.record_event(
            'photo_to_post',
            'analyze',
            user=request.user,
            data={'objects': len(result['detected_objects'])},
        )

        return Response(result, status=status.HTTP_200_OK)


# ============================================================================
# Offers
# ============================================================================

class OfferListCreateView(ClientIPMixin, APIView):
    """
    List the caller's offers or make a new one.

    GET /api/offers/
    Query Parameters:
    - role: buyer, seller or all (default all)
    - status: filter by offer status
    - listing: filter by listing id

    POST /api/offers/
    Request body: {"listing": 1, "amount": "80.00", "message": "..."}

    Error responses:
    - 400: Invalid data, own listing, listing not active
    - 409: The buyer already has a pending offer on the listing
    """
    permission_classes = [AllowAny]

    def get(self, request, *args, **kwargs):
        if not request.user or not request.user.is_authenticated:
            return not_authenticated()

        role = request.query_params.get('role', 'all')
        if role == 'buyer':
            queryset = Offer.objects.filter(buyer=request.user)
        elif role == 'seller':
            queryset = Offer.objects.filter(seller=request.user)
        else:
            queryset = Offer.objects.filter(Q(buyer=request.user) | Q(seller=request.user))

        status_filter = request.query_params.get('status')
        if status_filter:
            queryset = queryset.filter(status=status_filter)

        listing_filter = request.query_params.get('listing')
        if listing_filter:
            if not listing_filter.isdigit():
                return Response({'listing': ['Must be a valid integer.']}, status=status.HTTP_400_BAD_REQUEST)
            queryset = queryset.filter(listing_id=int(listing_filter))

        queryset = queryset.select_related('listing', 'buyer', 'seller').prefetch_related(
            'listing__images', 'countered_from'
        ).order_by('-created_at')

        paginator = PageNumberPagination()
        page = paginator.paginate_queryset(queryset, request, view=self)
        serializer = OfferSerializer(page, many=True, context={'request': request})
        return paginator.get_paginated_response(serializer.data)

    def post(self, request, *args, **kwargs):
        """
        Steps:
        1. Verify user is authenticated
        2. Validate request data
        3. Lock the listing and check for an existing pending offer
        4. Create the offer
        """
        # Step 1: Check authentication
        if not request.user or not request.user.is_authenticated:
            return not_authenticated()

        # Step 2: Validate request data
        serializer = OfferCreateSerializer(data=request.data, context={'request': request})
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        listing = serializer.validated_data['listing']

        # Step 3 & 4: Serialize concurrent offers on the same listing
        try:
            with transaction.atomic():
                listing = Listing.objects.select_for_update().get(pk=listing.pk)

                # A lapsed offer no longer blocks a new one
                Offer.objects.filter(listing=listing, buyer=request.user).expire_stale()

                if Offer.objects.pending().filter(listing=listing, buyer=request.user).exists():
                    logger.warning(
                        f"Duplicate pending offer attempt. Listing ID: {listing.id}, "
                        f"Buyer: {request.user.email}, IP: {self.get_client_ip(request)}"
                    )
                    return Response(
                        {'detail': 'You already have a pending offer on this listing.'},
                        status=status.HTTP_409_CONFLICT
                    )

                offer = Offer(
                    listing=listing,
                    buyer=request.user,
                    seller=listing.seller,
                    amount=serializer.validated_data['amount'],
                    message=serializer.validated_data.get('message', ''),
                )
                offer.save()
        except IntegrityError:
            return Response(
                {'detail': 'You already have a pending offer on this listing.'},
                status=status.HTTP_409_CONFLICT
            )
        except DjangoValidationError as e:
            return validation_error_response(e)

        logger.info(
            f"Offer created. Offer ID: {offer.id}, Listing ID: {listing.id}, "
            f"Amount: {offer.amount}, Buyer: {request.user.email}"
        )
        analytics.record_event('conversion', 'offer_created', user=request.user, data={'offer_id': offer.id})

        response_serializer = OfferSerializer(offer, context={'request': request})
        return Response(response_serializer.data, status=status.HTTP_201_CREATED)


class OfferDetailView(ClientIPMixin, APIView):
    """
    Read an offer or act on it.

    GET /api/offers/<id>/   (buyer or seller)
    PATCH /api/offers/<id>/
    Request body: {"action": "accept" | "reject" | "counter" | "withdraw",
                   "counter_amount": "90.00", "message": "..."}

    A counter answers 201 with the new pending offer; every other action
    answers 200 with the updated offer.

    Error responses:
    - 400: Invalid action, expired offer, or illegal transition
    - 403: Wrong role for the action
    - 404: Offer not found
    """
    permission_classes = [AllowAny]

    def get(self, request, pk, *args, **kwargs):
        if not request.user or not request.user.is_authenticated:
            return not_authenticated()

        offer = Offer.objects.select_related('listing', 'buyer', 'seller').filter(pk=pk).first()
        if offer is None:
            return Response({'detail': 'Offer not found.'}, status=status.HTTP_404_NOT_FOUND)

        permission = IsTransactionParticipant()
        if not permission.has_object_permission(request, self, offer):
            return Response({'detail': permission.message}, status=status.HTTP_403_FORBIDDEN)

        serializer = OfferSerializer(offer, context={'request': request})
        return Response(serializer.data, status=status.HTTP_200_OK)

    def patch(self, request, pk, *args, **kwargs):
        if not request.user or not request.user.is_authenticated:
            return not_authenticated()

        listing_id = Offer.objects.filter(pk=pk).values_list('listing_id', flat=True).first()
        if listing_id is None:
            return Response({'detail': 'Offer not found.'}, status=status.HTTP_404_NOT_FOUND)

        with transaction.atomic():
            # Listing before offer, the same lock order as offer creation
            Listing.objects.select_for_update().get(pk=listing_id)
            offer = Offer.objects.select_for_update().select_related('listing').filter(pk=pk).first()
            if offer is None:
                return Response({'detail': 'Offer not found.'}, status=status.HTTP_404_NOT_FOUND)

            permission = CanActOnOffer()
            if not permission.has_object_permission(request, self, offer):
                logger.warning(
                    f"Unauthorized offer action attempt. Offer ID: {pk}, "
                    f"Action: {request.data.get('action')}, User: {request.user.email}, "
                    f"IP: {self.get_client_ip(request)}"
                )
                return Response({'detail': permission.message}, status=status.HTTP_403_FORBIDDEN)

            serializer = OfferActionSerializer(data=request.data)
            if not serializer.is_valid():
                return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

            action = serializer.validated_data['action']
            old_status = offer.status
            result = offer

            # Expiry is saved before InvalidTransition is raised, so the
            # error is handled inside the transaction to keep that write.
            try:
                if action == 'accept':
                    offer.accept()
                elif action == 'reject':
                    offer.reject()
                elif action == 'withdraw':
                    offer.withdraw()
                else:
                    result = offer.counter(
                        serializer.validated_data['counter_amount'],
                        serializer.validated_data.get('message', ''),
                    )
            except InvalidTransition as e:
                return Response({'detail': e.messages[0]}, status=status.HTTP_400_BAD_REQUEST)
            except DjangoValidationError as e:
                return validation_error_response(e)

        logger.info(
            f"Offer {action} applied. Offer ID: {offer.id}, Old Status: {old_status}, "
            f"New Status: {offer.status}, User: {request.user.email}"
        )

        response_serializer = OfferSerializer(result, context={'request': request})
        response_status = status.HTTP_201_CREATED if action == 'counter' else status.HTTP_200_OK
        return Response(response_serializer.data, status=response_status)


# ============================================================================
# Payments
# ============================================================================

class PaymentListCreateView(ClientIPMixin, APIView):
    """
    List the caller's payments or start paying an accepted offer.

    GET /api/payments/
    Query Parameters:
    - role: buyer, seller or all (default all)
    - status: filter by payment status

    POST /api/payments/
    Request body: {"offer_id": 1, "payment_method": "stripe"}

    Success response (201): the payment plus the Stripe ``client_secret``.

    Error responses:
    - 400: Offer not accepted
    - 403: Caller is not the offer's buyer
    - 404: Offer not found
    - 409: A payment for the offer is already pending, processing or completed
    - 502: Stripe error
    """
    permission_classes = [AllowAny]

    def get(self, request, *args, **kwargs):
        if not request.user or not request.user.is_authenticated:
            return not_authenticated()

        role = request.query_params.get('role', 'all')
        if role == 'buyer':
            queryset = Payment.objects.filter(buyer=request.user)
        elif role == 'seller':
            queryset = Payment.objects.filter(seller=request.user)
        else:
            queryset = Payment.objects.filter(Q(buyer=request.user) | Q(seller=request.user))

        status_filter = request.query_params.get('status')
        if status_filter:
            queryset = queryset.filter(status=status_filter)

        queryset = queryset.select_related('listing', 'buyer', 'seller', 'order').prefetch_related(
            'listing__images'
        ).order_by('-created_at')

        paginator = PageNumberPagination()
        page = paginator.paginate_queryset(queryset, request, view=self)
        serializer = PaymentSerializer(page, many=True, context={'request': request})
        return paginator.get_paginated_response(serializer.data)

    def post(self, request, *args, **kwargs):
        if not request.user or not request.user.is_authenticated:
            return not_authenticated()

        serializer = PaymentCreateSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        offer_id = serializer.validated_data['offer_id']

        with transaction.atomic():
            offer = Offer.objects.select_for_update().select_related('listing').filter(pk=offer_id).first()
            if offer is None:
                return Response({'detail': 'Offer not found.'}, status=status.HTTP_404_NOT_FOUND)

            if offer.buyer_id != request.user.id:
                logger.warning(
                    f"Unauthorized payment attempt. Offer ID: {offer_id}, "
                    f"User: {request.user.email}, IP: {self.get_client_ip(request)}"
                )
                return Response(
                    {'detail': 'Only the buyer can pay for this offer.'},
                    status=status.HTTP_403_FORBIDDEN
                )

            if offer.status != 'accepted':
                return Response(
                    {'detail': 'Only accepted offers can be paid.'},
                    status=status.HTTP_400_BAD_REQUEST
                )

            if Payment.objects.filter(offer=offer, status__in=Payment.ACTIVE_STATUSES).exists():
                return Response(
                    {'detail': 'A payment for this offer is already in progress or completed.'},
                    status=status.HTTP_409_CONFLICT
                )

            try:
                intent = payments.create_payment_intent(
                    offer.amount,
                    metadata={
                        'offer_id': offer.id,
                        'listing_id': offer.listing_id,
                        'buyer_id': offer.buyer_id,
                        'seller_id': offer.seller_id,
                    },
                )
            except PaymentProviderError as e:
                return Response({'detail': e.message}, status=status.HTTP_502_BAD_GATEWAY)

            payment = Payment.objects.create(
                offer=offer,
                listing=offer.listing,
                buyer=offer.buyer,
                seller=offer.seller,
                amount=offer.amount,
                currency=settings.STRIPE_CURRENCY.upper(),
                payment_method=serializer.validated_data['payment_method'],
                payment_intent_id=intent.id,
            )

        logger.info(
            f"Payment created. Payment ID: {payment.id}, Offer ID: {offer.id}, "
            f"Amount: {payment.amount}, Intent: {payment.payment_intent_id}"
        )

        data = dict(PaymentSerializer(payment, context={'request': request}).data)
        data['client_secret'] = intent.client_secret
        return Response(data, status=status.HTTP_201_CREATED)


class PaymentDetailView(APIView):
    """
    Read a payment, refreshing its status from Stripe.

    GET /api/payments/<id>/

    ``stripe_status`` is the PaymentIntent status, or null when Stripe could
    not be reached (the stored record is returned unchanged).
    """
    permission_classes = [AllowAny]

    def get(self, request, pk, *args, **kwargs):
        if not request.user or not request.user.is_authenticated:
            return not_authenticated()

        payment = Payment.objects.filter(pk=pk).first()
        if payment is None:
            return Response({'detail': 'Payment not found.'}, status=status.HTTP_404_NOT_FOUND)

        permission = IsTransactionParticipant()
        if not permission.has_object_permission(request, self, payment):
            return Response({'detail': permission.message}, status=status.HTTP_403_FORBIDDEN)

        stripe_status = None
        try:
            intent = payments.retrieve_payment_intent(payment.payment_intent_id)
        except PaymentProviderError:
            intent = None

        if intent is not None:
            stripe_status = intent.status
            with transaction.atomic():
                payment = Payment.objects.select_for_update().get(pk=pk)
                if payment.sync_from_intent(stripe_status):
                    logger.info(
                        f"Payment synced from Stripe. Payment ID: {payment.id}, "
                        f"Stripe Status: {stripe_status}, New Status: {payment.status}"
                    )

        data = dict(PaymentSerializer(payment, context={'request': request}).data)
        data['stripe_status'] = stripe_status
        return Response(data, status=status.HTTP_200_OK)


class PaymentRefundView(ClientIPMixin, APIView):
    """
    Refund a completed payment (seller only).

    POST /api/payments/<id>/refund/
    Request body: {"amount": "50.00", "reason": "Item damaged"}
    ``amount`` defaults to the full payment amount.

    Error responses:
    - 400: Payment not completed, missing reason, amount out of range
    - 403: Caller is not the seller
    - 502: Stripe refused the refund; the payment stays completed
    """
    permission_classes = [AllowAny]

    def post(self, request, pk, *args, **kwargs):
        if not request.user or not request.user.is_authenticated:
            return not_authenticated()

        serializer = RefundSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        with transaction.atomic():
            payment = Payment.objects.select_for_update().filter(pk=pk).first()
            if payment is None:
                return Response({'detail': 'Payment not found.'}, status=status.HTTP_404_NOT_FOUND)

            if payment.seller_id != request.user.id:
                logger.warning(
                    f"Unauthorized refund attempt. Payment ID: {pk}, "
                    f"User: {request.user.email}, IP: {self.get_client_ip(request)}"
                )
                return Response(
                    {'detail': 'Only the seller can refund this payment.'},
                    status=status.HTTP_403_FORBIDDEN
                )

            if payment.status != 'completed':
                return Response(
                    {'detail': 'Only completed payments can be refunded.'},
                    status=status.HTTP_400_BAD_REQUEST
                )

            amount = serializer.validated_data.get('amount') or payment.amount
            if amount > payment.amount:
                return Response(
                    {'amount': ['Refund amount cannot exceed the payment amount.']},
                    status=status.HTTP_400_BAD_REQUEST
                )

            reason = serializer.validated_data['reason']

            try:
                refund = payments.create_refund(payment.payment_intent_id, amount)
            except PaymentProviderError as e:
                return Response({'detail': e.message}, status=status.HTTP_502_BAD_GATEWAY)

            payment.mark_refunded(amount, reason, refund_id=refund.id)

        logger.info(
            f"Payment refunded. Payment ID: {payment.id}, Amount: {amount}, "
            f"Seller: {request.user.email}"
        )

        serializer = PaymentSerializer(payment, context={'request': request})
        return Response(serializer.data, status=status.HTTP_200_OK)


class StripeWebhookView(APIView):
    """
    Receive Stripe events.

    POST /api/payments/webhook/
    The raw body is verified against the Stripe-Signature header.
    """
    authentication_classes = []
    permission_classes = [AllowAny]

    def post(self, request, *args, **kwargs):
        signature = request.META.get('HTTP_STRIPE_SIGNATURE', '')

        try:
            event = payments.construct_webhook_event(request.body, signature)
        except WebhookSignatureError as e:
            logger.warning(f"Rejected Stripe webhook. Error: {e}")
            return Response({'detail': str(e)}, status=status.HTTP_400_BAD_REQUEST)

        result = payments.handle_webhook_event(event)
        return Response({'received': True, 'result': result}, status=status.HTTP_200_OK)


# ============================================================================
# Orders
# ============================================================================

class OrderListView(generics.ListAPIView):
    """
    The caller's orders as buyer or seller.

    GET /api/orders/?role=buyer|seller|all&status=<status>
    """
    permission_classes = [IsAuthenticated]
    serializer_class = OrderSerializer

    def get_queryset(self):
        user = self.request.user
        role = self.request.query_params.get('role', 'all')

        if role == 'buyer':
            queryset = Order.objects.filter(buyer=user)
        elif role == 'seller':
            queryset = Order.objects.filter(seller=user)
        else:
            queryset = Order.objects.filter(Q(buyer=user) | Q(seller=user))

        status_filter = self.request.query_params.get('status')
        if status_filter:
            queryset = queryset.filter(status=status_filter)

        return queryset.select_related('listing', 'buyer', 'seller').prefetch_related(
            'listing__images'
        ).order_by('-created_at')


class OrderDetailView(ClientIPMixin, APIView):
    """
    Read an order or move it through fulfilment.

    GET /api/orders/<id>/
    PATCH /api/orders/<id>/
    Request body: {"action": "process" | "ship" | "deliver" | "complete" |
                   "cancel" | "return" | "update_shipping", ...}

    Error responses:
    - 400: Missing arguments or illegal transition
    - 403: Wrong role for the action
    - 404: Order not found
    """
    permission_classes = [AllowAny]

    def get(self, request, pk, *args, **kwargs):
        if not request.user or not request.user.is_authenticated:
            return not_authenticated()

        order = Order.objects.select_related('listing', 'buyer', 'seller').filter(pk=pk).first()
        if order is None:
            return Response({'detail': 'Order not found.'}, status=status.HTTP_404_NOT_FOUND)

        permission = IsTransactionParticipant()
        if not permission.has_object_permission(request, self, order):
            return Response({'detail': permission.message}, status=status.HTTP_403_FORBIDDEN)

        serializer = OrderSerializer(order, context={'request': request})
        return Response(serializer.data, status=status.HTTP_200_OK)

    def patch(self, request, pk, *args, **kwargs):
        if not request.user or not request.user.is_authenticated:
            return not_authenticated()

        with transaction.atomic():
            order = Order.objects.select_for_update().select_related('listing').filter(pk=pk).first()
            if order is None:
                return Response({'detail': 'Order not found.'}, status=status.HTTP_404_NOT_FOUND)

            permission = CanActOnOrder()
            if not permission.has_object_permission(request, self, order):
                logger.warning(
                    f"Unauthorized order action attempt. Order ID: {pk}, "
                    f"Action: {request.data.get('action')}, User: {request.user.email}, "
                    f"IP: {self.get_client_ip(request)}"
                )
                return Response({'detail': permission.message}, status=status.HTTP_403_FORBIDDEN)

            serializer = OrderActionSerializer(data=request.data)
            if not serializer.is_valid():
                return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

            data = serializer.validated_data
            action = data['action']
            old_status = order.status

            try:
                if action == 'process':
                    order.process()
                elif action == 'ship':
                    order.ship(
                        data['tracking_number'],
                        data['carrier'],
                        tracking_url=data.get('tracking_url', ''),
                        estimated_delivery_date=data.get('estimated_delivery_date'),
                    )
                elif action == 'deliver':
                    order.deliver()
                elif action == 'complete':
                    order.complete()
                elif action == 'cancel':
                    order.cancel(data['reason'])
                elif action == 'return':
                    order.return_order(data['reason'])
                else:
                    order.update_shipping_address(
                        **{field: data[field] for field in Order.SHIPPING_FIELDS if field in data}
                    )
            except InvalidTransition as e:
                return Response({'detail': e.messages[0]}, status=status.HTTP_400_BAD_REQUEST)
            except DjangoValidationError as e:
                return validation_error_response(e)

        logger.info(
            f"Order {action} applied. Order ID: {order.id}, Old Status: {old_status}, "
            f"New Status: {order.status}, User: {request.user.email}"
        )

        response_serializer = OrderSerializer(order, context={'request': request})
        return Response(response_serializer.data, status=status.HTTP_200_OK)


# ============================================================================
# Messaging
# ============================================================================

class MessageListCreateView(APIView):
    """
    Read a conversation thread or send a message.

    GET /api/messages/?user_id=<id>&listing_id=<id>
    Messages between the caller and ``user_id`` (optionally about one
    listing), oldest first, 50 per page. The other user's messages to the
    caller are marked read.

    POST /api/messages/
    Request body: {"receiver_id": 2, "listing_id": 5, "content": "Is this still available?"}
    """
    permission_classes = [AllowAny]

    def get(self, request, *args, **kwargs):
        if not request.user or not request.user.is_authenticated:
            return not_authenticated()

        user_id = request.query_params.get('user_id', '')
        listing_id = request.query_params.get('listing_id', '')

        if not user_id.isdigit():
            return Response(
                {'user_id': ['A valid user_id is required.']},
                status=status.HTTP_400_BAD_REQUEST
            )
        if listing_id and not listing_id.isdigit():
            return Response(
                {'listing_id': ['Must be a valid integer.']},
                status=status.HTTP_400_BAD_REQUEST
            )

        other_id = int(user_id)
        thread = Message.objects.filter(
            Q(sender=request.user, receiver_id=other_id)
            | Q(sender_id=other_id, receiver=request.user)
        )
        if listing_id:
            thread = thread.filter(listing_id=int(listing_id))

        thread.filter(sender_id=other_id, receiver=request.user, is_read=False).update(is_read=True)

        queryset = thread.select_related('sender', 'receiver', 'listing').order_by('created_at', 'id')

        paginator = MessagePagination()
        page = paginator.paginate_queryset(queryset, request, view=self)
        serializer = MessageSerializer(page, many=True, context={'request': request})
        return paginator.get_paginated_response(serializer.data)

    def post(self, request, *args, **kwargs):
        if not request.user or not request.user.is_authenticated:
            return not_authenticated()

        serializer = MessageCreateSerializer(data=request.data, context={'request': request})
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        try:
            message = Message.objects.create(
                sender=request.user,
                receiver_id=serializer.validated_data['receiver_id'],
                listing_id=serializer.validated_data.get('listing_id'),
                content=serializer.validated_data['content'],
            )
        except DjangoValidationError as e:
            return validation_error_response(e)

        logger.info(
            f"Message sent. Message ID: {message.id}, Sender ID: {request.user.id}, "
            f"Receiver ID: {message.receiver_id}"
        )

        response_serializer = MessageSerializer(message, context={'request': request})
        return Response(response_serializer.data, status=status.HTTP_201_CREATED)


class ConversationListView(APIView):
    """
    One entry per (other user, listing) pair, newest first.

    GET /api/messages/conversations/

    Each entry carries the other user, the listing (or null), the latest
    message and the number of unread messages to the caller.
    """
    permission_classes = [AllowAny]

    def get(self, request, *args, **kwargs):
        if not request.user or not request.user.is_authenticated:
            return not_authenticated()

        user = request.user
        messages = Message.objects.filter(
            Q(sender=user) | Q(receiver=user)
        ).select_related('sender', 'receiver', 'listing').order_by('-created_at', '-id')

        conversations = {}
        for message in messages:
            other = message.receiver if message.sender_id == user.id else message.sender
            key = (other.id, message.listing_id)

            if key not in conversations:
                conversations[key] = {'other': other, 'last_message': message, 'unread_count': 0}

            if message.receiver_id == user.id and not message.is_read:
                conversations[key]['unread_count'] += 1

        paginator = PageNumberPagination()
        page = paginator.paginate_queryset(list(conversations.values()), request, view=self)

        context = {'request': request}
        results = [
            {
                'user': UserSummarySerializer(entry['other'], context=context).data,
                'listing': (
                    {'id': entry['last_message'].listing_id, 'title': entry['last_message'].listing.title}
                    if entry['last_message'].listing_id else None
                ),
                'last_message': MessageSerializer(entry['last_message'], context=context).data,
                'unread_count': entry['unread_count'],
            }
            for entry in page
        ]
        return paginator.get_paginated_response(results)


# ============================================================================
# Notifications
# ============================================================================

class NotificationListView(generics.ListAPIView):
    """
    The caller's notifications, newest first.

    GET /api/notifications/?unread=true
    """
    permission_classes = [IsAuthenticated]
    serializer_class = NotificationSerializer

    def get_queryset(self):
        queryset = Notification.objects.filter(user=self.request.user).select_related('sender')
        if self.request.query_params.get('unread', '').lower() == 'true':
            queryset = queryset.filter(is_read=False)
        return queryset.order_by('-created_at', '-id')


class NotificationUnreadCountView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request, *args, **kwargs):
        count = Notification.objects.filter(user=request.user, is_read=False).count()
        return Response({'unread_count': count}, status=status.HTTP_200_OK)


class NotificationMarkReadView(APIView):
    """POST /api/notifications/<id>/read/"""
    permission_classes = [IsAuthenticated]

    def post(self, request, pk, *args, **kwargs):
        notification = Notification.objects.filter(pk=pk, user=request.user).first()
        if notification is None:
            return Response({'detail': 'Notification not found.'}, status=status.HTTP_404_NOT_FOUND)

        if not notification.is_read:
            notification.is_read = True
            notification.save(update_fields=['is_read'])

        serializer = NotificationSerializer(notification, context={'request': request})
        return Response(serializer.data, status=status.HTTP_200_OK)


class NotificationMarkAllReadView(APIView):
    """POST /api/notifications/read-all/"""
    permission_classes = [IsAuthenticated]

    def post(self, request, *args, **kwargs):
        updated = Notification.objects.filter(user=request.user, is_read=False).update(is_read=True)
        return Response({'updated': updated}, status=status.HTTP_200_OK)


class NotificationDetailView(APIView):
    """DELETE /api/notifications/<id>/"""
    permission_classes = [IsAuthenticated]

    def delete(self, request, pk, *args, **kwargs):
        deleted, _details = Notification.objects.filter(pk=pk, user=request.user).delete()
        if not deleted:
            return Response({'detail': 'Notification not found.'}, status=status.HTTP_404_NOT_FOUND)
        return Response(status=status.HTTP_204_NO_CONTENT)


# ============================================================================
# Analytics
# ============================================================================

class AdminDashboardView(ClientIPMixin, APIView):
    """
    Staff-only analytics dashboard.

    GET /api/admin/dashboard/?time_range=week|month|year

    Error responses:
    - 400: Unknown time range
    - 401: Not authenticated
    - 403: Not a staff user
    """
    permission_classes = [AllowAny]

    def get(self, request, *args, **kwargs):
        if not request.user or not request.user.is_authenticated:
            return not_authenticated()

        permission = IsStaffUser()
        if not permission.has_permission(request, self):
            logger.warning(
                f"Non-staff user attempted dashboard access. User: {request.user.email}, "
                f"IP: {self.get_client_ip(request)}"
            )
            return Response({'detail': permission.message}, status=status.HTTP_403_FORBIDDEN)

        serializer = DashboardQuerySerializer(data=request.query_params)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        data = analytics.get_dashboard(serializer.validated_data['time_range'])
        return Response(data, status=status.HTTP_200_OK)


class AnalyticsEventView(APIView):
    """
    Record client analytics events.

    POST /api/analytics/events/
    Request body: {"events": [{"category": "page_view", "action": "listing_detail",
                               "data": {...}, "session_id": "...", "timestamp": "..."}]}
    Anonymous callers are accepted; events are attributed to the user when
    a valid token is sent. At most 100 events per request.
    """
    permission_classes = [AllowAny]

    def post(self, request, *args, **kwargs):
        serializer = AnalyticsBatchSerializer(data=request.data)
        if not serializer.is_valid():
            return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

        user = request.user if request.user and request.user.is_authenticated else None
        now = timezone.now()

        events = [
            analytics.build_event(
                event['category'],
                event['action'],
                user=user,
                session_id=event.get('session_id', ''),
                data=event.get('data'),
                timestamp=event.get('timestamp') or now,
            )
            for event in serializer.validated_data['events']
        ]
        created = analytics.store_events(events)

        return Response({'created': created}, status=status.HTTP_201_CREATED)
