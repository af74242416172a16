"""
Data model for the marketplace.

Users list items, buyers make offers on them, accepted offers are paid through
Stripe, and completed payments turn into orders that track shipping. Offer,
payment and order statuses each follow a small state machine declared in
``VALID_TRANSITIONS`` on the model.
"""

import secrets
from datetime import timedelta
from decimal import Decimal

from django.conf import settings
from django.contrib.auth.models import AbstractUser
from django.core.exceptions import ValidationError
from django.core.validators import MaxLengthValidator, MaxValueValidator, MinValueValidator
from django.db import models, transaction
from django.utils import timezone
from django.utils.translation import gettext_lazy as _

from .exceptions import InvalidTransition
from .validators import validate_image_file, validate_phone_number


def user_profile_image_upload_path(instance, filename):
    """
    Generate upload path for user profile images.

    Path format: profile_images/{user_id}/{filename}
    If user_id is not yet available (user not saved), uses 'temp' as placeholder.
    """
    user_id = instance.id if instance.id else 'temp'
    return f'profile_images/{user_id}/{filename}'


def listing_image_upload_path(instance, filename):
    """
    Generate upload path for listing images.

    Path format: listing_images/{listing_id}/{filename}
    """
    listing_id = instance.listing_id if instance.listing_id else 'temp'
    return f'listing_images/{listing_id}/{filename}'


def default_offer_expiry():
    """Offers stay open for OFFER_EXPIRY_DAYS (7 by default) after creation."""
    return timezone.now() + timedelta(days=getattr(settings, 'OFFER_EXPIRY_DAYS', 7))


class StatusTransitionMixin:
    """
    Shared state machine helpers for models with a ``status`` field.

    Subclasses declare ``VALID_TRANSITIONS`` mapping each status to the list of
    statuses it may move to. A status with no outgoing transitions is terminal.
    """

    VALID_TRANSITIONS = {}
    transition_label = 'record'

    def can_transition_to(self, new_status):
        """
        Check whether the current status may change to ``new_status``.

        Returns:
            tuple: (is_valid: bool, error_message: str or None)
        """
        current_status = self.status
        valid_next_statuses = self.VALID_TRANSITIONS.get(current_status, [])

        if not valid_next_statuses:
            return False, f'{self.transition_label.capitalize()} is already {current_status}.'

        if new_status not in valid_next_statuses:
            return False, (
                f'Invalid {self.transition_label} status transition '
                f'from {current_status} to {new_status}.'
            )

        return True, None

    def _require_transition(self, new_status):
        """Raise InvalidTransition unless the move to ``new_status`` is allowed."""
        is_valid, error_message = self.can_transition_to(new_status)
        if not is_valid:
            raise InvalidTransition(error_message, code='invalid_transition')

    def _validate_stored_transition(self):
        """
        Compare the status being saved against the stored one.

        Used from ``clean()`` so that direct assignments to ``status`` cannot
        bypass the state machine.
        """
        if self.pk is None:
            return

        try:
            old_status = type(self).objects.only('status').get(pk=self.pk).status
        except type(self).DoesNotExist:
            return

        if old_status == self.status:
            return

        if self.status not in self.VALID_TRANSITIONS.get(old_status, []):
            raise InvalidTransition({
                'status': _(
                    f'Invalid {self.transition_label} status transition '
                    f'from {old_status} to {self.status}.'
                )
            })


class User(AbstractUser):
    """
    Custom User model extending Django's AbstractUser.

    Users sign in with their e-mail address. Staff users (is_staff) are the
    marketplace administrators.

    Additional fields:
    - email: Required, unique, stored lower-case
    - name: Display name
    - phone_number: Optional phone number with validation
    - location: Free-text location shown on listings and profile
    - bio: Short public biography
    - profile_image: Optional profile picture
    - trust_score: Reputation score from 0 to 100
    - is_verified: Whether the e-mail address has been verified
    - verification_token / verification_token_expiry: e-mail verification (24h)
    - reset_password_token / reset_password_token_expiry: password reset (1h)
    """

    email = models.EmailField(
        _('email address'),
        unique=True,
        blank=False,
        null=False,
        error_messages={
            'unique': _('A user with that email already exists.'),
        },
        help_text=_('Required. Enter a valid email address.')
    )

    name = models.CharField(
        _('name'),
        max_length=100,
        blank=True,
        default='',
        help_text=_('Display name shown to other users.')
    )

    phone_number = models.CharField(
        _('phone number'),
        max_length=20,
        blank=True,
        default='',
        validators=[validate_phone_number],
        help_text=_('Optional. Enter phone number in international format.')
    )

    location = models.CharField(
        _('location'),
        max_length=200,
        blank=True,
        default='',
        help_text=_('City or area where the user trades.')
    )

    bio = models.TextField(
        _('bio'),
        blank=True,
        default='',
        validators=[MaxLengthValidator(500)],
        help_text=_('Short public biography (max 500 characters).')
    )

    profile_image = models.ImageField(
        _('profile image'),
        upload_to=user_profile_image_upload_path,
        blank=True,
        null=True,
        validators=[validate_image_file],
        help_text=_('Optional. Upload a profile picture (max 5MB, formats: jpg, png, webp).')
    )

    trust_score = models.DecimalField(
        _('trust score'),
        max_digits=5,
        decimal_places=2,
        default=Decimal('0.00'),
        validators=[
            MinValueValidator(Decimal('0.00'), message=_('Trust score cannot be negative.')),
            MaxValueValidator(Decimal('100.00'), message=_('Trust score cannot exceed 100.'))
        ],
        help_text=_('Reputation score from 0 to 100.')
    )

    is_verified = models.BooleanField(
        _('verified status'),
        default=False,
        help_text=_('Indicates whether the e-mail address has been verified.')
    )

    verification_token = models.CharField(
        _('verification token'),
        max_length=64,
        blank=True,
        default='',
    )

    verification_token_expiry = models.DateTimeField(
        _('verification token expiry'),
        null=True,
        blank=True,
    )

    reset_password_token = models.CharField(
        _('reset password token'),
        max_length=64,
        blank=True,
        default='',
    )

    reset_password_token_expiry = models.DateTimeField(
        _('reset password token expiry'),
        null=True,
        blank=True,
    )

    created_at = models.DateTimeField(
        _('created at'),
        auto_now_add=True,
        help_text=_('Timestamp when the account was created.')
    )

    updated_at = models.DateTimeField(
        _('updated at'),
        auto_now=True,
        help_text=_('Timestamp when the account was last updated.')
    )

    class Meta:
        verbose_name = _('user')
        verbose_name_plural = _('users')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['email'], name='market_user_email_idx'),
            models.Index(fields=['is_verified'], name='market_user_verified_idx'),
            models.Index(fields=['verification_token'], name='market_user_vtoken_idx'),
            models.Index(fields=['reset_password_token'], name='market_user_rtoken_idx'),
        ]

    def __str__(self):
        """Return email as string representation."""
        return self.email or self.username

    @property
    def display_name(self):
        """Name if set, otherwise the local part of the e-mail address."""
        return self.name or (self.email.split('@')[0] if self.email else self.username)

    def generate_verification_token(self):
        """
        Create a fresh e-mail verification token valid for 24 hours.

        The token is stored on the instance but not saved; callers persist it.

        Returns:
            str: 64 character hex token
        """
        hours = getattr(settings, 'VERIFICATION_TOKEN_HOURS', 24)
        self.verification_token = secrets.token_hex(32)
        self.verification_token_expiry = timezone.now() + timedelta(hours=hours)
        return self.verification_token

    def generate_password_reset_token(self):
        """
        Create a fresh password reset token valid for 1 hour.

        Returns:
            str: 64 character hex token
        """
        hours = getattr(settings, 'PASSWORD_RESET_TOKEN_HOURS', 1)
        self.reset_password_token = secrets.token_hex(32)
        self.reset_password_token_expiry = timezone.now() + timedelta(hours=hours)
        return self.reset_password_token

    def clean(self):
        """
        Validate model fields.

        Ensures:
        - Email is provided
        - Email is lowercase for case-insensitive uniqueness

        Raises:
            ValidationError: If validation fails
        """
        super().clean()

        if self.email:
            self.email = self.email.lower()

        if not self.email:
            raise ValidationError({
                'email': _('Email address is required.')
            })

    def save(self, *args, **kwargs):
        """
        Normalize the e-mail address and validate updates.

        New users skip full_clean so concurrent duplicate registrations surface
        as IntegrityError from the unique index. Partial saves with
        ``update_fields`` are trusted as-is.
        """
        if self.email:
            self.email = self.email.lower()

        if self.pk is not None and not kwargs.get('update_fields'):
            self.full_clean()

        super().save(*args, **kwargs)


class ListingQuerySet(models.QuerySet):
    def active(self):
        return self.filter(status='active')


class Listing(models.Model):
    """
    An item offered for sale.

    Deleting a listing is a soft delete (status 'deleted'); deleted listings
    no longer appear in search and cannot receive offers.

    Fields:
    - seller: Foreign key to User
    - title: Item title (max 100)
    - description: Detailed description (max 2000)
    - price: Asking price (>= 0)
    - category / subcategory: Free-text classification
    - condition: new, like_new, good, fair or poor
    - location: Where the item can be picked up
    - status: active, pending (offer accepted), sold or deleted
    """

    CONDITION_CHOICES = [
        ('new', 'New'),
        ('like_new', 'Like New'),
        ('good', 'Good'),
        ('fair', 'Fair'),
        ('poor', 'Poor'),
    ]

    STATUS_CHOICES = [
        ('active', 'Active'),
        ('pending', 'Pending'),
        ('sold', 'Sold'),
        ('deleted', 'Deleted'),
    ]

    IN_PROGRESS_ORDER_STATUSES = ['pending', 'processing', 'shipped', 'delivered']

    seller = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='listings',
        help_text=_('User selling this item')
    )

    title = models.CharField(
        _('title'),
        max_length=100,
        blank=False,
        null=False,
        help_text=_('Title of the listing (max 100 characters)')
    )

    description = models.TextField(
        _('description'),
        blank=False,
        null=False,
        validators=[MaxLengthValidator(2000)],
        help_text=_('Detailed description of the item (max 2000 characters)')
    )

    price = models.DecimalField(
        _('price'),
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.00'), message=_('Price cannot be negative.'))],
        help_text=_('Asking price in USD')
    )

    category = models.CharField(
        _('category'),
        max_length=50,
        blank=False,
        null=False,
        help_text=_('Category of the item')
    )

    subcategory = models.CharField(
        _('subcategory'),
        max_length=50,
        blank=True,
        default='',
        help_text=_('Optional subcategory of the item')
    )

    condition = models.CharField(
        _('condition'),
        max_length=20,
        choices=CONDITION_CHOICES,
        default='good',
        help_text=_('Condition of the item')
    )

    location = models.CharField(
        _('location'),
        max_length=200,
        blank=True,
        default='',
        help_text=_('Where the item can be picked up')
    )

    status = models.CharField(
        _('status'),
        max_length=20,
        choices=STATUS_CHOICES,
        default='active',
        help_text=_('Current availability of the listing')
    )

    created_at = models.DateTimeField(
        _('created at'),
        auto_now_add=True,
        help_text=_('Timestamp when the listing was created')
    )

    updated_at = models.DateTimeField(
        _('updated at'),
        auto_now=True,
        help_text=_('Timestamp when the listing was last updated')
    )

    objects = ListingQuerySet.as_manager()

    class Meta:
        verbose_name = _('listing')
        verbose_name_plural = _('listings')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['seller'], name='market_listing_seller_idx'),
            models.Index(fields=['status'], name='market_listing_status_idx'),
            models.Index(fields=['category'], name='market_listing_category_idx'),
            models.Index(fields=['price'], name='market_listing_price_idx'),
            models.Index(fields=['created_at'], name='market_listing_created_idx'),
        ]

    def __str__(self):
        """Return title as string representation."""
        return self.title

    def clean(self):
        """
        Validate model fields.

        Ensures:
        - Title and description are not blank
        - Category is provided
        - A deleted listing is never brought back

        Raises:
            ValidationError: If validation fails
        """
        super().clean()

        if not self.title or not self.title.strip():
            raise ValidationError({
                'title': _('Title cannot be empty.')
            })

        if not self.description or not self.description.strip():
            raise ValidationError({
                'description': _('Description cannot be empty.')
            })

        if not self.category or not self.category.strip():
            raise ValidationError({
                'category': _('Category is required.')
            })

        if self.pk is not None:
            old_status = Listing.objects.filter(pk=self.pk).values_list('status', flat=True).first()
            if old_status == 'deleted' and self.status != 'deleted':
                raise ValidationError({
                    'status': _('A deleted listing cannot be restored.')
                })

    def save(self, *args, **kwargs):
        """Run full_clean before every save."""
        self.full_clean()
        super().save(*args, **kwargs)

    def is_available(self):
        """
        Check if the listing can receive offers.

        Returns:
            bool: True if status is 'active'
        """
        return self.status == 'active'

    def mark_as_sold(self):
        """Mark listing as sold and save."""
        self.status = 'sold'
        self.save()

    def has_order_in_progress(self):
        """Whether an order for this listing has not yet finished."""
        return self.orders.filter(status__in=self.IN_PROGRESS_ORDER_STATUSES).exists()

    def soft_delete(self):
        """
        Mark the listing deleted.

        Raises:
            ValidationError: If an order for the listing is still in progress
        """
        if self.has_order_in_progress():
            raise ValidationError(
                _('Cannot delete a listing with an order in progress.'),
                code='order_in_progress'
            )
        self.status = 'deleted'
        self.save()

    def primary_image(self):
        """
        Return the image to show first.

        The image flagged primary wins; otherwise the first image by order.
        """
        images = list(self.images.all())
        for image in images:
            if image.is_primary:
                return image
        return images[0] if images else None


class ListingImage(models.Model):
    """
    Image attached to a listing (one-to-many relationship).

    At most one image per listing is primary; saving a primary image clears the
    flag on the others.
    """

    listing = models.ForeignKey(
        Listing,
        on_delete=models.CASCADE,
        related_name='images',
        help_text=_('Listing this image belongs to')
    )

    image = models.ImageField(
        _('image'),
        upload_to=listing_image_upload_path,
        validators=[validate_image_file],
        help_text=_('Image file (max 5MB, formats: jpg, png, webp)')
    )

    is_primary = models.BooleanField(
        _('is primary'),
        default=False,
        help_text=_('Whether this is the main image of the listing')
    )

    order = models.PositiveIntegerField(
        _('order'),
        default=0,
        help_text=_('Display order for images')
    )

    uploaded_at = models.DateTimeField(
        _('uploaded at'),
        auto_now_add=True,
        help_text=_('Timestamp when the image was uploaded')
    )

    class Meta:
        verbose_name = _('listing image')
        verbose_name_plural = _('listing images')
        ordering = ['order', 'uploaded_at']
        indexes = [
            models.Index(fields=['listing', 'order'], name='market_limage_order_idx'),
        ]

    def __str__(self):
        return f"Image for {self.listing.title}"

    def save(self, *args, **kwargs):
        self.full_clean()
        with transaction.atomic():
            if self.is_primary:
                ListingImage.objects.filter(
                    listing_id=self.listing_id, is_primary=True
                ).exclude(pk=self.pk).update(is_primary=False)
            super().save(*args, **kwargs)


class OfferQuerySet(models.QuerySet):
    def pending(self):
        return self.filter(status='pending')

    def stale(self, now=None):
        """Pending offers whose expiry time has passed."""
        now = now or timezone.now()
        return self.filter(status='pending', expires_at__lte=now)

    def expire_stale(self, now=None):
        """
        Bulk-mark stale pending offers as expired.

        Returns:
            int: Number of offers expired
        """
        now = now or timezone.now()
        return self.stale(now).update(status='expired', updated_at=now)


class Offer(StatusTransitionMixin, models.Model):
    """
    A buyer's offer on a listing.

    Lifecycle:
    - pending -> accepted (seller)
    - pending -> rejected (seller)
    - pending -> countered (seller; creates a new linked pending offer)
    - pending -> withdrawn (buyer)
    - pending -> expired (expires_at passed)
    All other statuses are terminal.

    A buyer may hold only one pending offer per listing. The rule is checked in
    ``clean()`` and backed by a conditional unique constraint.
    """

    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('accepted', 'Accepted'),
        ('rejected', 'Rejected'),
        ('countered', 'Countered'),
        ('withdrawn', 'Withdrawn'),
        ('expired', 'Expired'),
    ]

    VALID_TRANSITIONS = {
        'pending': ['accepted', 'rejected', 'countered', 'withdrawn', 'expired'],
        'accepted': [],
        'rejected': [],
        'countered': [],
        'withdrawn': [],
        'expired': [],
    }
    transition_label = 'offer'

    listing = models.ForeignKey(
        Listing,
        on_delete=models.CASCADE,
        related_name='offers',
        help_text=_('Listing the offer is made on')
    )

    buyer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='offers_made',
        help_text=_('User making the offer')
    )

    seller = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='offers_received',
        help_text=_('Seller of the listing')
    )

    amount = models.DecimalField(
        _('amount'),
        max_digits=10,
        decimal_places=2,
        help_text=_('Offered amount in USD (must be greater than 0)')
    )

    message = models.CharField(
        _('message'),
        max_length=500,
        blank=True,
        default='',
        help_text=_('Optional note to the seller (max 500 characters)')
    )

    status = models.CharField(
        _('status'),
        max_length=20,
        choices=STATUS_CHOICES,
        default='pending',
        help_text=_('Current status of the offer')
    )

    counter_offer = models.ForeignKey(
        'self',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='countered_from',
        help_text=_('New offer created when this one was countered')
    )

    expires_at = models.DateTimeField(
        _('expires at'),
        default=default_offer_expiry,
        help_text=_('When a pending offer lapses')
    )

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)

    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    objects = OfferQuerySet.as_manager()

    class Meta:
        verbose_name = _('offer')
        verbose_name_plural = _('offers')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['listing', 'status'], name='market_offer_listing_idx'),
            models.Index(fields=['buyer'], name='market_offer_buyer_idx'),
            models.Index(fields=['seller'], name='market_offer_seller_idx'),
            models.Index(fields=['status', 'expires_at'], name='market_offer_expiry_idx'),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['listing', 'buyer'],
                condition=models.Q(status='pending'),
                name='unique_pending_offer_per_buyer',
            )
        ]

    def __str__(self):
        return f"Offer {self.amount} on {self.listing.title} by {self.buyer.email} ({self.status})"

    def clean(self):
        """
        Validate model fields and status transitions.

        Ensures:
        - Amount is greater than 0
        - Buyer is not the seller
        - Seller matches the listing's seller
        - New offers target an active listing
        - A buyer holds at most one pending offer per listing
        - Status changes follow VALID_TRANSITIONS

        Raises:
            ValidationError: If validation fails
        """
        super().clean()

        if self.amount is not None and self.amount <= 0:
            raise ValidationError({
                'amount': _('Offer amount must be greater than 0.')
            })

        if self.buyer_id and self.seller_id and self.buyer_id == self.seller_id:
            raise ValidationError({
                'buyer': _('You cannot make an offer on your own listing.')
            })

        if self.listing_id and self.seller_id and self.listing.seller_id != self.seller_id:
            raise ValidationError({
                'seller': _('Offer seller must match the listing seller.')
            })

        if self.pk is None and self.listing_id and not self.listing.is_available():
            raise ValidationError({
                'listing': _('This listing is not available for offers.')
            })

        if self.status == 'pending' and self.listing_id and self.buyer_id:
            duplicates = Offer.objects.filter(
                listing_id=self.listing_id,
                buyer_id=self.buyer_id,
                status='pending'
            )
            if self.pk:
                duplicates = duplicates.exclude(pk=self.pk)
            if duplicates.exists():
                raise ValidationError({
                    'listing': _('You already have a pending offer on this listing.')
                }, code='duplicate_pending_offer')

        self._validate_stored_transition()

    def save(self, *args, **kwargs):
        """Fill the seller from the listing, then validate and save."""
        if self.listing_id and not self.seller_id:
            self.seller_id = self.listing.seller_id
        self.full_clean()
        super().save(*args, **kwargs)

    def is_expired(self, now=None):
        """Whether the offer's expiry time has passed."""
        now = now or timezone.now()
        return self.expires_at is not None and self.expires_at <= now

    def expire(self):
        """Mark a pending offer expired."""
        self._require_transition('expired')
        self.status = 'expired'
        self.save()

    def _ensure_actionable(self, new_status, now=None):
        """
        Guard every action on an offer.

        A pending offer past its expiry is marked expired first, so the caller
        sees the expiry rather than a generic failure.

        Raises:
            InvalidTransition: If the offer expired or the move is not allowed
        """
        if self.status == 'pending' and self.is_expired(now):
            self.expire()
            raise InvalidTransition(_('This offer has expired.'), code='offer_expired')
        self._require_transition(new_status)

    def accept(self, now=None):
        """
        Accept the offer.

        The listing moves to 'pending'. Other pending offers on it that have
        lapsed are expired; the rest are rejected.
        """
        now = now or timezone.now()
        self._ensure_actionable('accepted', now)

        if not self.listing.is_available():
            raise InvalidTransition(
                _('This listing is no longer available.'),
                code='listing_unavailable'
            )

        with transaction.atomic():
            self.status = 'accepted'
            self.save()

            Offer.objects.filter(listing_id=self.listing_id).exclude(pk=self.pk).expire_stale(now)

            others = Offer.objects.select_for_update().filter(
                listing_id=self.listing_id, status='pending'
            ).exclude(pk=self.pk)
            for other in others:
                other.status = 'rejected'
                other.save()

            listing = self.listing
            listing.status = 'pending'
            listing.save()

        return self

    def reject(self, now=None):
        """Reject the offer."""
        self._ensure_actionable('rejected', now)
        self.status = 'rejected'
        self.save()
        return self

    def withdraw(self, now=None):
        """Withdraw the offer (buyer)."""
        self._ensure_actionable('withdrawn', now)
        self.status = 'withdrawn'
        self.save()
        return self

    def counter(self, amount, message='', now=None):
        """
        Counter the offer with a new amount.

        The original is marked 'countered' before the new offer is created so
        the one-pending-offer rule holds throughout.

        Args:
            amount: Counter amount (Decimal, > 0)
            message: Optional note

        Returns:
            Offer: The new pending offer
        """
        self._ensure_actionable('countered', now)

        amount = Decimal(str(amount))
        if amount <= 0:
            raise ValidationError({
                'counter_amount': _('Counter amount must be greater than 0.')
            })

        with transaction.atomic():
            self.status = 'countered'
            self.save()

            new_offer = Offer(
                listing=self.listing,
                buyer=self.buyer,
                seller=self.seller,
                amount=amount,
                message=message or '',
            )
            new_offer._is_counter = True
            new_offer.save()

            self.counter_offer = new_offer
            self.save(update_fields=['counter_offer', 'updated_at'])

        return new_offer


class Payment(StatusTransitionMixin, models.Model):
    """
    Payment for an accepted offer, backed by a Stripe PaymentIntent.

    Lifecycle:
    - pending -> processing | completed | failed
    - processing -> completed | failed
    - completed -> refunded
    - failed and refunded are terminal
    """

    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('processing', 'Processing'),
        ('completed', 'Completed'),
        ('failed', 'Failed'),
        ('refunded', 'Refunded'),
    ]

    PAYMENT_METHOD_CHOICES = [
        ('credit_card', 'Credit Card'),
        ('debit_card', 'Debit Card'),
        ('paypal', 'PayPal'),
        ('stripe', 'Stripe'),
    ]

    VALID_TRANSITIONS = {
        'pending': ['processing', 'completed', 'failed'],
        'processing': ['completed', 'failed'],
        'completed': ['refunded'],
        'failed': [],
        'refunded': [],
    }
    transition_label = 'payment'

    ACTIVE_STATUSES = ['pending', 'processing', 'completed']

    offer = models.ForeignKey(
        Offer,
        on_delete=models.PROTECT,
        related_name='payments',
        help_text=_('Accepted offer being paid')
    )

    listing = models.ForeignKey(
        Listing,
        on_delete=models.PROTECT,
        related_name='payments',
    )

    buyer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='payments_made',
    )

    seller = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='payments_received',
    )

    amount = models.DecimalField(
        _('amount'),
        max_digits=10,
        decimal_places=2,
        help_text=_('Amount charged')
    )

    currency = models.CharField(
        _('currency'),
        max_length=3,
        default='USD',
    )

    status = models.CharField(
        _('status'),
        max_length=20,
        choices=STATUS_CHOICES,
        default='pending',
    )

    payment_method = models.CharField(
        _('payment method'),
        max_length=20,
        choices=PAYMENT_METHOD_CHOICES,
        default='stripe',
    )

    payment_intent_id = models.CharField(
        _('payment intent id'),
        max_length=255,
        unique=True,
        help_text=_('Stripe PaymentIntent identifier')
    )

    payment_date = models.DateTimeField(
        _('payment date'),
        null=True,
        blank=True,
        help_text=_('When the payment completed')
    )

    refund_amount = models.DecimalField(
        _('refund amount'),
        max_digits=10,
        decimal_places=2,
        default=Decimal('0.00'),
    )

    refund_reason = models.CharField(
        _('refund reason'),
        max_length=500,
        blank=True,
        default='',
    )

    refund_date = models.DateTimeField(
        _('refund date'),
        null=True,
        blank=True,
    )

    metadata = models.JSONField(
        _('metadata'),
        default=dict,
        blank=True,
    )

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)

    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('payment')
        verbose_name_plural = _('payments')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['offer', 'status'], name='market_payment_offer_idx'),
            models.Index(fields=['buyer'], name='market_payment_buyer_idx'),
            models.Index(fields=['seller'], name='market_payment_seller_idx'),
            models.Index(fields=['status', 'payment_date'], name='market_payment_status_idx'),
        ]

    def __str__(self):
        return f"Payment {self.payment_intent_id} ({self.status})"

    def clean(self):
        """
        Validate model fields and status transitions.

        Raises:
            ValidationError: If validation fails
        """
        super().clean()

        if self.amount is not None and self.amount <= 0:
            raise ValidationError({
                'amount': _('Payment amount must be greater than 0.')
            })

        if self.buyer_id and self.seller_id and self.buyer_id == self.seller_id:
            raise ValidationError({
                'buyer': _('Buyer and seller cannot be the same user.')
            })

        if self.refund_amount is not None and self.amount is not None:
            if self.refund_amount < 0 or self.refund_amount > self.amount:
                raise ValidationError({
                    'refund_amount': _('Refund amount must be between 0 and the payment amount.')
                })

        self._validate_stored_transition()

    def save(self, *args, **kwargs):
        self.full_clean()
        super().save(*args, **kwargs)

    def mark_processing(self):
        self._require_transition('processing')
        self.status = 'processing'
        self.save()

    def mark_completed(self, when=None):
        """Complete the payment and stamp payment_date."""
        self._require_transition('completed')
        self.status = 'completed'
        self.payment_date = when or timezone.now()
        self.save()

    def mark_failed(self, reason=''):
        self._require_transition('failed')
        self.status = 'failed'
        if reason:
            self.metadata = {**(self.metadata or {}), 'failure_reason': reason}
        self.save()

    def mark_refunded(self, amount, reason, refund_id=None, when=None):
        """
        Record a refund.

        Args:
            amount: Refunded amount (0 < amount <= payment amount)
            reason: Why the refund was issued
            refund_id: Stripe refund identifier, kept in metadata
        """
        self._require_transition('refunded')
        amount = Decimal(str(amount))
        if amount <= 0 or amount > self.amount:
            raise ValidationError({
                'amount': _('Refund amount must be greater than 0 and not exceed the payment amount.')
            })
        self.status = 'refunded'
        self.refund_amount = amount
        self.refund_reason = reason
        self.refund_date = when or timezone.now()
        if refund_id:
            self.metadata = {**(self.metadata or {}), 'refund_id': refund_id}
        self.save()

    def sync_from_intent(self, intent_status, failed_attempt=False):
        """
        Apply a Stripe PaymentIntent status to the local record.

        Mapping:
        - succeeded -> completed
        - processing -> processing
        - canceled -> failed
        - requires_payment_method -> failed, only after a failed attempt

        Statuses the state machine does not allow from the current one are
        ignored, so replayed webhook events are harmless.

        Returns:
            bool: True if the local status changed
        """
        target = {
            'succeeded': 'completed',
            'processing': 'processing',
            'canceled': 'failed',
        }.get(intent_status)

        if intent_status == 'requires_payment_method' and failed_attempt:
            target = 'failed'

        if target is None or target == self.status:
            return False

        is_valid, _message = self.can_transition_to(target)
        if not is_valid:
            return False

        if target == 'completed':
            self.mark_completed()
        elif target == 'processing':
            self.mark_processing()
        else:
            self.mark_failed(reason=f'Stripe status: {intent_status}')
        return True


class Order(StatusTransitionMixin, models.Model):
    """
    Fulfilment record created when a payment completes.

    Lifecycle (role):
    - pending -> processing (seller)
    - pending | processing -> shipped (seller, needs tracking number and carrier)
    - shipped -> delivered (buyer)
    - delivered -> completed (buyer)
    - pending | processing -> cancelled (buyer or seller, needs reason)
    - delivered | completed -> returned (buyer, needs reason)
    """

    STATUS_CHOICES = [
        ('pending', 'Pending'),
        ('processing', 'Processing'),
        ('shipped', 'Shipped'),
        ('delivered', 'Delivered'),
        ('completed', 'Completed'),
        ('cancelled', 'Cancelled'),
        ('returned', 'Returned'),
    ]

    VALID_TRANSITIONS = {
        'pending': ['processing', 'shipped', 'cancelled'],
        'processing': ['shipped', 'cancelled'],
        'shipped': ['delivered'],
        'delivered': ['completed', 'returned'],
        'completed': ['returned'],
        'cancelled': [],
        'returned': [],
    }
    transition_label = 'order'

    SHIPPING_FIELDS = [
        'shipping_name', 'shipping_street', 'shipping_city', 'shipping_state',
        'shipping_zip_code', 'shipping_country', 'shipping_phone',
    ]

    payment = models.OneToOneField(
        Payment,
        on_delete=models.PROTECT,
        related_name='order',
    )
    offer = models.ForeignKey(Offer, on_delete=models.PROTECT, related_name='orders')
    listing = models.ForeignKey(Listing, on_delete=models.PROTECT, related_name='orders')
    buyer = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='orders_placed'
    )
    seller = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='orders_received'
    )

    status = models.CharField(
        _('status'),
        max_length=20,
        choices=STATUS_CHOICES,
        default='pending',
    )

    shipping_name = models.CharField(_('shipping name'), max_length=100, blank=True, default='')
    shipping_street = models.CharField(_('shipping street'), max_length=200, blank=True, default='')
    shipping_city = models.CharField(_('shipping city'), max_length=100, blank=True, default='')
    shipping_state = models.CharField(_('shipping state'), max_length=100, blank=True, default='')
    shipping_zip_code = models.CharField(_('shipping zip code'), max_length=20, blank=True, default='')
    shipping_country = models.CharField(_('shipping country'), max_length=100, blank=True, default='')
    shipping_phone = models.CharField(
        _('shipping phone'), max_length=20, blank=True, default='',
        validators=[validate_phone_number]
    )

    tracking_number = models.CharField(_('tracking number'), max_length=100, blank=True, default='')
    tracking_url = models.URLField(_('tracking url'), blank=True, default='')
    carrier = models.CharField(_('carrier'), max_length=100, blank=True, default='')

    estimated_delivery_date = models.DateTimeField(_('estimated delivery date'), null=True, blank=True)
    actual_delivery_date = models.DateTimeField(_('actual delivery date'), null=True, blank=True)
    shipped_date = models.DateTimeField(_('shipped date'), null=True, blank=True)
    cancelled_date = models.DateTimeField(_('cancelled date'), null=True, blank=True)
    cancel_reason = models.CharField(_('cancel reason'), max_length=500, blank=True, default='')
    return_reason = models.CharField(_('return reason'), max_length=500, blank=True, default='')
    return_date = models.DateTimeField(_('return date'), null=True, blank=True)
    notes = models.TextField(_('notes'), blank=True, default='')

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)
    updated_at = models.DateTimeField(_('updated at'), auto_now=True)

    class Meta:
        verbose_name = _('order')
        verbose_name_plural = _('orders')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['buyer'], name='market_order_buyer_idx'),
            models.Index(fields=['seller'], name='market_order_seller_idx'),
            models.Index(fields=['listing', 'status'], name='market_order_listing_idx'),
        ]

    def __str__(self):
        return f"Order #{self.pk} for {self.listing.title} ({self.status})"

    def clean(self):
        super().clean()
        self._validate_stored_transition()

    def save(self, *args, **kwargs):
        self.full_clean()
        super().save(*args, **kwargs)

    def process(self):
        """Seller starts preparing the order."""
        self._require_transition('processing')
        self.status = 'processing'
        self.save()

    def ship(self, tracking_number, carrier, tracking_url='', estimated_delivery_date=None):
        """
        Seller hands the item to a carrier.

        Raises:
            ValidationError: If tracking number or carrier is missing
        """
        self._require_transition('shipped')
        errors = {}
        if not tracking_number or not str(tracking_number).strip():
            errors['tracking_number'] = _('Tracking number is required to ship an order.')
        if not carrier or not str(carrier).strip():
            errors['carrier'] = _('Carrier is required to ship an order.')
        if errors:
            raise ValidationError(errors)

        self.status = 'shipped'
        self.tracking_number = tracking_number.strip()
        self.carrier = carrier.strip()
        self.tracking_url = tracking_url or ''
        self.estimated_delivery_date = estimated_delivery_date
        self.shipped_date = timezone.now()
        self.save()

    def deliver(self):
        """Buyer confirms delivery."""
        self._require_transition('delivered')
        self.status = 'delivered'
        self.actual_delivery_date = timezone.now()
        self.save()

    def complete(self):
        """Buyer confirms the order is complete."""
        self._require_transition('completed')
        self.status = 'completed'
        self.save()

    def cancel(self, reason):
        """
        Cancel the order before it ships; the listing becomes active again.

        Raises:
            ValidationError: If no reason is given
        """
        self._require_transition('cancelled')
        if not reason or not reason.strip():
            raise ValidationError({'reason': _('A reason is required to cancel an order.')})

        with transaction.atomic():
            self.status = 'cancelled'
            self.cancel_reason = reason.strip()
            self.cancelled_date = timezone.now()
            self.save()

            listing = self.listing
            if listing.status != 'deleted':
                listing.status = 'active'
                listing.save()

    def return_order(self, reason):
        """
        Buyer returns a delivered or completed order.

        Raises:
            ValidationError: If no reason is given
        """
        self._require_transition('returned')
        if not reason or not reason.strip():
            raise ValidationError({'reason': _('A reason is required to return an order.')})
        self.status = 'returned'
        self.return_reason = reason.strip()
        self.return_date = timezone.now()
        self.save()

    def can_update_shipping(self):
        return self.status in ('pending', 'processing')

    def update_shipping_address(self, **address):
        """
        Set shipping address fields while the order has not shipped.

        Raises:
            InvalidTransition: If the order has already shipped
        """
        if not self.can_update_shipping():
            raise InvalidTransition(
                _('Shipping address can only be changed before the order ships.'),
                code='invalid_transition'
            )
        for field in self.SHIPPING_FIELDS:
            if field in address:
                setattr(self, field, address[field] or '')
        self.save()


class Message(models.Model):
    """
    Direct message between two users, optionally about a listing.
    """

    sender = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='sent_messages',
    )

    receiver = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='received_messages',
    )

    listing = models.ForeignKey(
        Listing,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='messages',
    )

    content = models.TextField(
        _('content'),
        validators=[MaxLengthValidator(2000)],
        help_text=_('Message text (1 to 2000 characters)')
    )

    is_read = models.BooleanField(_('is read'), default=False)

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)

    class Meta:
        verbose_name = _('message')
        verbose_name_plural = _('messages')
        ordering = ['created_at']
        indexes = [
            models.Index(fields=['sender', 'receiver'], name='market_msg_pair_idx'),
            models.Index(fields=['receiver', 'is_read'], name='market_msg_unread_idx'),
            models.Index(fields=['created_at'], name='market_msg_created_idx'),
        ]

    def __str__(self):
        return f"Message from {self.sender.email} to {self.receiver.email}"

    def clean(self):
        super().clean()

        if not self.content or not self.content.strip():
            raise ValidationError({
                'content': _('Message content cannot be empty.')
            })

        if self.sender_id and self.receiver_id and self.sender_id == self.receiver_id:
            raise ValidationError({
                'receiver': _('You cannot send a message to yourself.')
            })

    def save(self, *args, **kwargs):
        self.full_clean()
        super().save(*args, **kwargs)


class Notification(models.Model):
    """
    In-app alert for a user, created by signal receivers.
    """

    TYPE_CHOICES = [
        ('message', 'Message'),
        ('listing', 'Listing'),
        ('offer', 'Offer'),
        ('payment', 'Payment'),
        ('order', 'Order'),
    ]

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='notifications',
    )
    notification_type = models.CharField(_('type'), max_length=20, choices=TYPE_CHOICES)
    title = models.CharField(_('title'), max_length=200)
    message = models.CharField(_('message'), max_length=500)
    is_read = models.BooleanField(_('is read'), default=False)

    listing = models.ForeignKey(Listing, on_delete=models.CASCADE, null=True, blank=True, related_name='+')
    offer = models.ForeignKey(Offer, on_delete=models.CASCADE, null=True, blank=True, related_name='+')
    payment = models.ForeignKey(Payment, on_delete=models.CASCADE, null=True, blank=True, related_name='+')
    order = models.ForeignKey(Order, on_delete=models.CASCADE, null=True, blank=True, related_name='+')
    sender = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name='+'
    )

    created_at = models.DateTimeField(_('created at'), auto_now_add=True)

    class Meta:
        verbose_name = _('notification')
        verbose_name_plural = _('notifications')
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['user', 'is_read'], name='market_notif_unread_idx'),
            models.Index(fields=['user', 'created_at'], name='market_notif_created_idx'),
        ]

    def __str__(self):
        return f"{self.notification_type}: {self.title} -> {self.user.email}"


class AnalyticsEvent(models.Model):
    """
    Usage event recorded by the client or the server.

    Categories:
    - page_view: a screen was shown
    - interaction: a UI action
    - conversion: a business outcome (offer made, payment completed)
    - photo_to_post: a Photo-to-Post analysis
    """

    CATEGORY_CHOICES = [
        ('page_view', 'Page View'),
        ('interaction', 'Interaction'),
        ('conversion', 'Conversion'),
        ('photo_to_post', 'Photo to Post'),
    ]

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='analytics_events',
    )
    session_id = models.CharField(_('session id'), max_length=100, blank=True, default='')
    category = models.CharField(_('category'), max_length=20, choices=CATEGORY_CHOICES)
    action = models.CharField(_('action'), max_length=100)
    data = models.JSONField(_('data'), default=dict, blank=True)
    timestamp = models.DateTimeField(_('timestamp'), default=timezone.now)

    class Meta:
        verbose_name = _('analytics event')
        verbose_name_plural = _('analytics events')
        ordering = ['-timestamp']
        indexes = [
            models.Index(fields=['category', 'timestamp'], name='market_event_cat_idx'),
            models.Index(fields=['user', 'timestamp'], name='market_event_user_idx'),
        ]

    def __str__(self):
        return f"{self.category}:{self.action} at {self.timestamp:%Y-%m-%d %H:%M}"
