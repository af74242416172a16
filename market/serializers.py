"""
Serializers for the marketplace API.

Read serializers shape responses; the *Create/*Update/*Action serializers
validate request bodies before views call into the models.
"""

from decimal import Decimal

from django.contrib.auth import get_user_model
from django.contrib.auth.password_validation import validate_password
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from rest_framework import serializers

from .models import (
    AnalyticsEvent,
    Listing,
    ListingImage,
    Message,
    Notification,
    Offer,
    Order,
    Payment,
)
from .validators import VALID_IMAGE_CONTENT_TYPES, VALID_IMAGE_EXTENSIONS, MAX_IMAGE_SIZE

User = get_user_model()


def absolute_media_url(serializer, file_field):
    """Full URL for a stored file, or None when the field is empty."""
    if not file_field:
        return None
    request = serializer.context.get('request')
    if request is not None:
        return request.build_absolute_uri(file_field.url)
    return file_field.url


def check_uploaded_image(image, position=None):
    """
    Validate size, extension and content type of one uploaded image.

    Raises:
        serializers.ValidationError: If the image is not acceptable
    """
    prefix = f"Image {position}" if position is not None else "Image"

    if image.size > MAX_IMAGE_SIZE:
        raise serializers.ValidationError(
            f"{prefix} exceeds maximum size of 5MB. "
            f"Current size: {image.size / (1024 * 1024):.2f}MB"
        )

    file_name = image.name.lower()
    if not any(file_name.endswith(f'.{ext}') for ext in VALID_IMAGE_EXTENSIONS):
        raise serializers.ValidationError(
            f"{prefix} has invalid format. Allowed formats: {', '.join(VALID_IMAGE_EXTENSIONS)}"
        )

    content_type = getattr(image, 'content_type', None)
    if content_type and content_type not in VALID_IMAGE_CONTENT_TYPES:
        raise serializers.ValidationError(
            f"{prefix} has invalid content type: {content_type}. "
            f"Allowed types: {', '.join(VALID_IMAGE_CONTENT_TYPES)}"
        )


# ============================================================================
# Authentication
# ============================================================================

class UserRegistrationSerializer(serializers.ModelSerializer):
    """
    Serializer for user registration.

    Fields:
    - name: Required display name
    - email: Required, unique (case-insensitive)
    - password / confirm_password: Required, must match and pass Django's validators
    - phone_number, location: Optional
    """

    password = serializers.CharField(
        write_only=True,
        required=True,
        style={'input_type': 'password'}
    )
    confirm_password = serializers.CharField(
        write_only=True,
        required=True,
        style={'input_type': 'password'}
    )

    class Meta:
        model = User
        fields = [
            'id', 'name', 'email', 'password', 'confirm_password',
            'phone_number', 'location', 'is_verified', 'created_at'
        ]
        read_only_fields = ['id', 'is_verified', 'created_at']
        extra_kwargs = {
            'name': {'required': True, 'allow_blank': False},
            'email': {'required': True},
        }

    def validate_email(self, value):
        value = value.strip().lower()
        if User.objects.filter(email__iexact=value).exists():
            raise serializers.ValidationError("A user with that email already exists.")
        return value

    def validate_name(self, value):
        if not value.strip():
            raise serializers.ValidationError("Name cannot be empty.")
        return value.strip()

    def validate_password(self, value):
        try:
            validate_password(value)
        except DjangoValidationError as e:
            raise serializers.ValidationError(list(e.messages))
        return value

    def validate(self, attrs):
        if attrs.get('password') != attrs.get('confirm_password'):
            raise serializers.ValidationError({
                'confirm_password': 'Password confirmation does not match.'
            })
        return attrs

    def create(self, validated_data):
        """
        Create an unverified user with a fresh verification token.

        The e-mail address doubles as the username, which AbstractUser requires.
        """
        validated_data.pop('confirm_password', None)
        password = validated_data.pop('password')

        user = User(
            username=validated_data['email'],
            is_verified=False,
            **validated_data
        )
        user.set_password(password)
        user.generate_verification_token()

        with transaction.atomic():
            user.save()

        return user


class LoginSerializer(serializers.Serializer):
    """
    Serializer for login with email and password.

    Authentication itself happens in the view.
    """
    email = serializers.EmailField(required=True)
    password = serializers.CharField(
        required=True,
        write_only=True,
        style={'input_type': 'password'}
    )


class TokenRefreshSerializer(serializers.Serializer):
    refresh = serializers.CharField(required=True)


class LogoutSerializer(serializers.Serializer):
    refresh = serializers.CharField(required=True)


class VerifyEmailSerializer(serializers.Serializer):
    token = serializers.CharField(required=True, max_length=64)


class PasswordResetRequestSerializer(serializers.Serializer):
    email = serializers.EmailField(required=True)


class PasswordResetConfirmSerializer(serializers.Serializer):
    """Token plus a new password that passes Django's password validators."""

    token = serializers.CharField(required=True, max_length=64)
    password = serializers.CharField(required=True, write_only=True, style={'input_type': 'password'})
    confirm_password = serializers.CharField(required=True, write_only=True, style={'input_type': 'password'})

    def validate_password(self, value):
        try:
            validate_password(value)
        except DjangoValidationError as e:
            raise serializers.ValidationError(list(e.messages))
        return value

    def validate(self, attrs):
        if attrs['password'] != attrs['confirm_password']:
            raise serializers.ValidationError({
                'confirm_password': 'Password confirmation does not match.'
            })
        return attrs


# ============================================================================
# Users and profiles
# ============================================================================

class UserSummarySerializer(serializers.ModelSerializer):
    """Public identity of a user embedded in other resources."""

    name = serializers.CharField(source='display_name', read_only=True)
    profile_image_url = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = ['id', 'name', 'profile_image_url', 'is_verified', 'trust_score']
        read_only_fields = fields

    def get_profile_image_url(self, obj):
        return absolute_media_url(self, obj.profile_image)


class UserProfileSerializer(serializers.ModelSerializer):
    """
    The authenticated user's own profile.

    Excludes sensitive fields (password, tokens, permissions).
    """

    profile_image_url = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = [
            'id', 'email', 'name', 'phone_number', 'location', 'bio',
            'profile_image_url', 'trust_score', 'is_verified', 'is_staff', 'created_at'
        ]
        read_only_fields = fields

    def get_profile_image_url(self, obj):
        return absolute_media_url(self, obj.profile_image)


class UserProfileUpdateSerializer(serializers.ModelSerializer):
    """
    Serializer for profile updates (PUT/PATCH).

    Updatable fields: name, phone_number, location, bio, profile_image.
    E-mail, verification and trust score are never writable here.
    """

    class Meta:
        model = User
        fields = ['name', 'phone_number', 'location', 'bio', 'profile_image']
        extra_kwargs = {
            'name': {'required': False},
            'phone_number': {'required': False},
            'location': {'required': False},
            'bio': {'required': False},
            'profile_image': {'required': False},
        }

    def validate_name(self, value):
        if not value or not value.strip():
            raise serializers.ValidationError("Name cannot be empty.")
        return value.strip()

    def validate_profile_image(self, value):
        if value:
            check_uploaded_image(value)
        return value

    def update(self, instance, validated_data):
        """
        Apply validated fields and save only those columns.

        A replaced profile image is removed from storage.
        """
        new_image = validated_data.get('profile_image')
        if new_image and instance.profile_image:
            instance.profile_image.delete(save=False)

        for attr, value in validated_data.items():
            setattr(instance, attr, value)

        if validated_data:
            instance.save(update_fields=list(validated_data.keys()) + ['updated_at'])

        return instance


class PublicProfileSerializer(serializers.ModelSerializer):
    """
    A user's public profile.

    Includes listing counts and the user's active listings. Expects the
    view to annotate ``active_listing_count`` and ``sold_listing_count``.
    """

    name = serializers.CharField(source='display_name', read_only=True)
    profile_image_url = serializers.SerializerMethodField()
    member_since = serializers.DateTimeField(source='date_joined', read_only=True)
    active_listing_count = serializers.IntegerField(read_only=True)
    sold_listing_count = serializers.IntegerField(read_only=True)
    listings = serializers.SerializerMethodField()

    class Meta:
        model = User
        fields = [
            'id', 'name', 'location', 'bio', 'profile_image_url', 'trust_score',
            'is_verified', 'member_since', 'active_listing_count',
            'sold_listing_count', 'listings'
        ]
        read_only_fields = fields

    def get_profile_image_url(self, obj):
        return absolute_media_url(self, obj.profile_image)

    def get_listings(self, obj):
        listings = obj.listings.active().prefetch_related('images').order_by('-created_at')
        return ListingSummarySerializer(listings, many=True, context=self.context).data


# ============================================================================
# Listings
# ============================================================================

class ListingImageSerializer(serializers.ModelSerializer):
    image = serializers.SerializerMethodField()

    class Meta:
        model = ListingImage
        fields = ['id', 'image', 'is_primary', 'order', 'uploaded_at']
        read_only_fields = fields

    def get_image(self, obj):
        return absolute_media_url(self, obj.image)


class ListingSummarySerializer(serializers.ModelSerializer):
    """Compact listing used in search results, profiles and embedded objects."""

    primary_image = serializers.SerializerMethodField()

    class Meta:
        model = Listing
        fields = [
            'id', 'title', 'price', 'category', 'subcategory', 'condition',
            'location', 'status', 'primary_image', 'created_at'
        ]
        read_only_fields = fields

    def get_primary_image(self, obj):
        image = obj.primary_image()
        return absolute_media_url(self, image.image) if image else None


class ListingSerializer(serializers.ModelSerializer):
    """Full listing with seller and images."""

    seller = UserSummarySerializer(read_only=True)
    images = ListingImageSerializer(many=True, read_only=True)
    primary_image = serializers.SerializerMethodField()

    class Meta:
        model = Listing
        fields = [
            'id', 'title', 'description', 'price', 'category', 'subcategory',
            'condition', 'location', 'status', 'seller', 'images',
            'primary_image', 'created_at', 'updated_at'
        ]
        read_only_fields = fields

    def get_primary_image(self, obj):
        image = obj.primary_image()
        return absolute_media_url(self, image.image) if image else None


class ListingWriteSerializer(serializers.ModelSerializer):
    """
    Serializer for creating and editing listings.

    Fields:
    - title: Required, max 100 characters
    - description: Required, max 2000 characters
    - price: Required, >= 0
    - category: Required
    - subcategory, condition, location: Optional
    - images: Optional list of up to 10 image files (create only)
    """

    images = serializers.ListField(
        child=serializers.ImageField(),
        write_only=True,
        required=False,
        help_text='Up to 10 image files (JPEG, PNG, WebP, max 5MB each)'
    )

    class Meta:
        model = Listing
        fields = [
            'title', 'description', 'price', 'category', 'subcategory',
            'condition', 'location', 'images'
        ]
        extra_kwargs = {
            'title': {'required': True},
            'description': {'required': True},
            'price': {'required': True},
            'category': {'required': True},
        }

    def validate_title(self, value):
        if not value or not value.strip():
            raise serializers.ValidationError("Title cannot be empty.")
        return value.strip()

    def validate_description(self, value):
        if not value or not value.strip():
            raise serializers.ValidationError("Description cannot be empty.")
        return value.strip()

    def validate_category(self, value):
        if not value or not value.strip():
            raise serializers.ValidationError("Category is required.")
        return value.strip()

    def validate_price(self, value):
        if value is None:
            raise serializers.ValidationError("Price is required.")
        if value < Decimal('0.00'):
            raise serializers.ValidationError("Price cannot be negative.")
        return value

    def validate_images(self, value):
        if len(value) > 10:
            raise serializers.ValidationError("Maximum 10 images allowed per listing.")
        for position, image in enumerate(value, start=1):
            check_uploaded_image(image, position)
        return value

    def create(self, validated_data):
        """Create the listing and its images in one transaction; the first image is primary."""
        images = validated_data.pop('images', [])
        request = self.context['request']

        with transaction.atomic():
            listing = Listing.objects.create(seller=request.user, **validated_data)
            for order, image in enumerate(images):
                ListingImage.objects.create(
                    listing=listing,
                    image=image,
                    order=order,
                    is_primary=(order == 0)
                )

        return listing

    def update(self, instance, validated_data):
        validated_data.pop('images', None)
        for attr, value in validated_data.items():
            setattr(instance, attr, value)
        instance.save()
        return instance


class ListingImageUploadSerializer(serializers.Serializer):
    image = serializers.ImageField(required=True)
    is_primary = serializers.BooleanField(required=False, default=False)

    def validate_image(self, value):
        check_uploaded_image(value)
        return value


class ListingSearchSerializer(serializers.Serializer):
    """
    Query parameters for listing search.

    Invalid numbers or unknown sort orders fail validation (HTTP 400).
    """

    SORT_CHOICES = ['relevance', 'price_asc', 'price_desc', 'newest', 'oldest']

    q = serializers.CharField(required=False, allow_blank=True, max_length=200)
    category = serializers.CharField(required=False, allow_blank=True, max_length=50)
    subcategory = serializers.CharField(required=False, allow_blank=True, max_length=50)
    condition = serializers.ChoiceField(
        choices=[choice for choice, _label in Listing.CONDITION_CHOICES],
        required=False
    )
    location = serializers.CharField(required=False, allow_blank=True, max_length=200)
    min_price = serializers.DecimalField(max_digits=10, decimal_places=2, required=False, min_value=Decimal('0'))
    max_price = serializers.DecimalField(max_digits=10, decimal_places=2, required=False, min_value=Decimal('0'))
    seller = serializers.IntegerField(required=False, min_value=1)
    sort = serializers.ChoiceField(choices=SORT_CHOICES, required=False, default='relevance')

    def validate(self, attrs):
        min_price = attrs.get('min_price')
        max_price = attrs.get('max_price')
        if min_price is not None and max_price is not None and min_price > max_price:
            raise serializers.ValidationError({
                'max_price': 'max_price must be greater than or equal to min_price.'
            })
        return attrs


# ============================================================================
# Offers
# ============================================================================

class OfferSerializer(serializers.ModelSerializer):
    listing = ListingSummarySerializer(read_only=True)
    buyer = UserSummarySerializer(read_only=True)
    seller = UserSummarySerializer(read_only=True)
    counter_offer = serializers.PrimaryKeyRelatedField(read_only=True)
    countered_from = serializers.SerializerMethodField()

    class Meta:
        model = Offer
        fields = [
            'id', 'listing', 'buyer', 'seller', 'amount', 'message', 'status',
            'counter_offer', 'countered_from', 'expires_at', 'created_at', 'updated_at'
        ]
        read_only_fields = fields

    def get_countered_from(self, obj):
        original = obj.countered_from.first()
        return original.id if original else None


class OfferCreateSerializer(serializers.Serializer):
    """
    Validate a new offer.

    The duplicate-pending-offer rule is checked by the view, which answers 409.
    """

    listing = serializers.PrimaryKeyRelatedField(queryset=Listing.objects.all())
    amount = serializers.DecimalField(max_digits=10, decimal_places=2)
    message = serializers.CharField(required=False, allow_blank=True, max_length=500, default='')

    def validate_amount(self, value):
        if value <= Decimal('0.00'):
            raise serializers.ValidationError("Offer amount must be greater than 0.")
        return value

    def validate_listing(self, value):
        if not value.is_available():
            raise serializers.ValidationError("This listing is not available for offers.")
        request = self.context.get('request')
        if request is not None and value.seller_id == request.user.id:
            raise serializers.ValidationError("You cannot make an offer on your own listing.")
        return value


class OfferActionSerializer(serializers.Serializer):
    ACTION_CHOICES = ['accept', 'reject', 'counter', 'withdraw']

    action = serializers.ChoiceField(choices=ACTION_CHOICES)
    counter_amount = serializers.DecimalField(max_digits=10, decimal_places=2, required=False)
    message = serializers.CharField(required=False, allow_blank=True, max_length=500, default='')

    def validate(self, attrs):
        if attrs['action'] == 'counter':
            amount = attrs.get('counter_amount')
            if amount is None or amount <= Decimal('0.00'):
                raise serializers.ValidationError({
                    'counter_amount': 'Valid counter amount is required.'
                })
        return attrs


# ============================================================================
# Payments
# ============================================================================

class PaymentSerializer(serializers.ModelSerializer):
    listing = ListingSummarySerializer(read_only=True)
    buyer = UserSummarySerializer(read_only=True)
    seller = UserSummarySerializer(read_only=True)
    order_id = serializers.SerializerMethodField()

    class Meta:
        model = Payment
        fields = [
            'id', 'offer', 'listing', 'buyer', 'seller', 'amount', 'currency',
            'status', 'payment_method', 'payment_intent_id', 'payment_date',
            'refund_amount', 'refund_reason', 'refund_date', 'order_id',
            'created_at', 'updated_at'
        ]
        read_only_fields = fields

    def get_order_id(self, obj):
        try:
            return obj.order.id
        except Order.DoesNotExist:
            return None


class PaymentCreateSerializer(serializers.Serializer):
    offer_id = serializers.IntegerField(min_value=1)
    payment_method = serializers.ChoiceField(
        choices=[choice for choice, _label in Payment.PAYMENT_METHOD_CHOICES],
        required=False,
        default='stripe'
    )


class RefundSerializer(serializers.Serializer):
    amount = serializers.DecimalField(max_digits=10, decimal_places=2, required=False)
    reason = serializers.CharField(max_length=500)

    def validate_reason(self, value):
        if not value.strip():
            raise serializers.ValidationError("Refund reason is required.")
        return value.strip()

    def validate_amount(self, value):
        if value is not None and value <= Decimal('0.00'):
            raise serializers.ValidationError("Refund amount must be greater than 0.")
        return value


# ============================================================================
# Orders
# ============================================================================

class OrderSerializer(serializers.ModelSerializer):
    listing = ListingSummarySerializer(read_only=True)
    buyer = UserSummarySerializer(read_only=True)
    seller = UserSummarySerializer(read_only=True)

    class Meta:
        model = Order
        fields = [
            'id', 'payment', 'offer', 'listing', 'buyer', 'seller', 'status',
            'shipping_name', 'shipping_street', 'shipping_city', 'shipping_state',
            'shipping_zip_code', 'shipping_country', 'shipping_phone',
            'tracking_number', 'tracking_url', 'carrier',
            'estimated_delivery_date', 'actual_delivery_date', 'shipped_date',
            'cancelled_date', 'cancel_reason', 'return_reason', 'return_date',
            'notes', 'created_at', 'updated_at'
        ]
        read_only_fields = fields


class OrderActionSerializer(serializers.Serializer):
    """
    Validate an order action and its arguments.

    - ship: tracking_number and carrier required
    - cancel / return: reason required
    - update_shipping: any shipping_* fields
    """

    ACTION_CHOICES = ['process', 'ship', 'deliver', 'complete', 'cancel', 'return', 'update_shipping']

    action = serializers.ChoiceField(choices=ACTION_CHOICES)
    tracking_number = serializers.CharField(required=False, allow_blank=True, max_length=100)
    carrier = serializers.CharField(required=False, allow_blank=True, max_length=100)
    tracking_url = serializers.URLField(required=False, allow_blank=True)
    estimated_delivery_date = serializers.DateTimeField(required=False, allow_null=True)
    reason = serializers.CharField(required=False, allow_blank=True, max_length=500)

    shipping_name = serializers.CharField(required=False, allow_blank=True, max_length=100)
    shipping_street = serializers.CharField(required=False, allow_blank=True, max_length=200)
    shipping_city = serializers.CharField(required=False, allow_blank=True, max_length=100)
    shipping_state = serializers.CharField(required=False, allow_blank=True, max_length=100)
    shipping_zip_code = serializers.CharField(required=False, allow_blank=True, max_length=20)
    shipping_country = serializers.CharField(required=False, allow_blank=True, max_length=100)
    shipping_phone = serializers.CharField(required=False, allow_blank=True, max_length=20)

    def validate(self, attrs):
        action = attrs['action']
        errors = {}

        if action == 'ship':
            if not attrs.get('tracking_number', '').strip():
                errors['tracking_number'] = 'Tracking number is required to ship an order.'
            if not attrs.get('carrier', '').strip():
                errors['carrier'] = 'Carrier is required to ship an order.'

        if action in ('cancel', 'return') and not attrs.get('reason', '').strip():
            errors['reason'] = f'A reason is required to {action} an order.'

        if action == 'update_shipping' and not any(field in attrs for field in Order.SHIPPING_FIELDS):
            errors['shipping'] = 'At least one shipping address field is required.'

        if errors:
            raise serializers.ValidationError(errors)
        return attrs


# ============================================================================
# Messaging and notifications
# ============================================================================

class MessageSerializer(serializers.ModelSerializer):
    sender = UserSummarySerializer(read_only=True)
    receiver = UserSummarySerializer(read_only=True)
    listing = serializers.SerializerMethodField()

    class Meta:
        model = Message
        fields = ['id', 'sender', 'receiver', 'listing', 'content', 'is_read', 'created_at']
        read_only_fields = fields

    def get_listing(self, obj):
        if obj.listing_id is None:
            return None
        return {'id': obj.listing_id, 'title': obj.listing.title}


class MessageCreateSerializer(serializers.Serializer):
    """Validate a new message; the sender comes from the request."""

    receiver_id = serializers.IntegerField(min_value=1)
    listing_id = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    content = serializers.CharField(max_length=2000, trim_whitespace=True)

    def validate_receiver_id(self, value):
        request = self.context.get('request')
        if request is not None and value == request.user.id:
            raise serializers.ValidationError("You cannot send a message to yourself.")
        if not User.objects.filter(pk=value, is_active=True).exists():
            raise serializers.ValidationError("Receiver not found.")
        return value

    def validate_listing_id(self, value):
        if value is not None and not Listing.objects.filter(pk=value).exists():
            raise serializers.ValidationError("Listing not found.")
        return value


class NotificationSerializer(serializers.ModelSerializer):
    sender = UserSummarySerializer(read_only=True)

    class Meta:
        model = Notification
        fields = [
            'id', 'notification_type', 'title', 'message', 'is_read',
            'listing', 'offer', 'payment', 'order', 'sender', 'created_at'
        ]
        read_only_fields = fields


# ============================================================================
# Analytics and Photo-to-Post
# ============================================================================

class AnalyticsEventSerializer(serializers.ModelSerializer):
    timestamp = serializers.DateTimeField(required=False)

    class Meta:
        model = AnalyticsEvent
        fields = ['category', 'action', 'data', 'session_id', 'timestamp']
        extra_kwargs = {
            'data': {'required': False},
            'session_id': {'required': False},
        }


class AnalyticsBatchSerializer(serializers.Serializer):
    MAX_EVENTS = 100

    events = AnalyticsEventSerializer(many=True, allow_empty=False)

    def validate_events(self, value):
        if len(value) > self.MAX_EVENTS:
            raise serializers.ValidationError(f"At most {self.MAX_EVENTS} events can be sent at once.")
        return value


class DashboardQuerySerializer(serializers.Serializer):
    time_range = serializers.ChoiceField(choices=['week', 'month', 'year'], required=False, default='week')


class PhotoToPostSerializer(serializers.Serializer):
    """
    Photo-to-Post upload.

    ``labels`` is a comma-separated list of object names found in the photo.
    """

    image = serializers.ImageField(required=True)
    labels = serializers.CharField(required=False, allow_blank=True, max_length=500)

    def validate_image(self, value):
        check_uploaded_image(value)
        return value

    def validate_labels(self, value):
        return [label.strip() for label in value.split(',') if label.strip()]
