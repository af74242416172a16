"""
Shared builders for the API test suites.
"""

from decimal import Decimal
from io import BytesIO

from django.contrib.auth import get_user_model
from django.core.files.uploadedfile import SimpleUploadedFile
from PIL import Image
from rest_framework_simplejwt.tokens import RefreshToken

from market.models import Listing, Offer, Payment

User = get_user_model()


def create_user(email, password='testpass123', **extra):
    return User.objects.create_user(username=email, email=email, password=password, **extra)


def authenticate(client, user):
    """Attach a fresh access token for ``user`` to an APIClient."""
    token = str(RefreshToken.for_user(user).access_token)
    client.credentials(HTTP_AUTHORIZATION=f'Bearer {token}')
    return token


def create_listing(seller, **overrides):
    data = {
        'title': 'Desk Lamp',
        'description': 'Adjustable LED desk lamp in good shape.',
        'price': Decimal('40.00'),
        'category': 'Furniture',
        'condition': 'good',
        'location': 'Boston, MA',
    }
    data.update(overrides)
    return Listing.objects.create(seller=seller, **data)


def create_offer(listing, buyer, amount='30.00', **extra):
    return Offer.objects.create(listing=listing, buyer=buyer, amount=Decimal(amount), **extra)


def create_payment(offer, intent_id='pi_test_123', **extra):
    """A pending payment for an accepted offer."""
    return Payment.objects.create(
        offer=offer,
        listing=offer.listing,
        buyer=offer.buyer,
        seller=offer.seller,
        amount=offer.amount,
        payment_intent_id=intent_id,
        **extra
    )


def create_order(seller, buyer, intent_id='pi_test_order', price='40.00'):
    """
    Walk a listing through offer, acceptance and payment.

    Completing the payment opens the order through the post_save signal.

    Returns:
        tuple: (listing, offer, payment, order)
    """
    listing = create_listing(seller, price=Decimal(price))
    offer = create_offer(listing, buyer, amount=price)
    offer.accept()
    payment = create_payment(offer, intent_id=intent_id)
    payment.mark_completed()
    payment.refresh_from_db()
    listing.refresh_from_db()
    return listing, offer, payment, payment.order


def make_image_file(name='photo.png', size=(100, 100), color='red', image_format='PNG', content_type='image/png'):
    file = BytesIO()
    image = Image.new('RGB', size, color=color)
    image.save(file, image_format)
    file.seek(0)
    return SimpleUploadedFile(name, file.read(), content_type=content_type)


def make_oversized_image_file(name='large.png'):
    """A valid PNG padded past the 5MB upload limit."""
    file = BytesIO()
    Image.new('RGB', (10, 10), color='blue').save(file, 'PNG')
    padding = b'\0' * (5 * 1024 * 1024)
    return SimpleUploadedFile(name, file.getvalue() + padding, content_type='image/png')
