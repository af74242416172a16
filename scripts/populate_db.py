import os
import sys
import django
import random
from decimal import Decimal
from datetime import timedelta
from django.utils import timezone
from faker import Faker

# Add project root to Python path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Set up Django environment
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'marketplace.settings')
django.setup()

from market.models import (
    User, Listing, Offer, Payment, Message, AnalyticsEvent
)

fake = Faker()

CATEGORIES = {
    'Electronics': ['Phones', 'Laptops', 'Audio'],
    'Furniture': ['Chairs', 'Tables', 'Storage'],
    'Books': ['Textbooks', 'Fiction'],
    'Sports': ['Bikes', 'Fitness'],
    'Clothing': ['Shoes', 'Jackets'],
}

ITEM_NAMES = [
    "Laptop", "Office Chair", "Desk Lamp", "Bookshelf", "Mountain Bike",
    "Headphones", "Winter Jacket", "Textbook Bundle", "Coffee Table", "Smartphone"
]


def create_users(num_users=20):
    print(f"Creating {num_users} users and one staff user...")

    users = []
    for _ in range(num_users):
        email = fake.unique.email().lower()
        user = User.objects.create_user(
            username=email,
            email=email,
            password='password123',
            name=fake.name(),
            location=f"{fake.city()}, {fake.state_abbr()}",
            bio=fake.sentence(nb_words=12),
            trust_score=Decimal(random.uniform(40.0, 100.0)).quantize(Decimal('0.01')),
            is_verified=random.choice([True, True, False]),
        )
        users.append(user)

    User.objects.create_user(
        username='admin@example.com',
        email='admin@example.com',
        password='password123',
        name='Marketplace Admin',
        is_staff=True,
        is_verified=True,
    )

    print(f"Created {len(users)} users.")
    return users


def create_listings(users):
    print("Creating listings...")
    listings = []

    conditions = [choice for choice, _label in Listing.CONDITION_CHOICES]

    for user in users:
        # Each user sells 0-3 items
        for _ in range(random.randint(0, 3)):
            category = random.choice(list(CATEGORIES))
            listing = Listing.objects.create(
                seller=user,
                title=f"{random.choice(['Vintage', 'Modern', 'Used', 'Brand New'])} {random.choice(ITEM_NAMES)}",
                description=fake.text(max_nb_chars=400),
                price=Decimal(random.uniform(10.0, 600.0)).quantize(Decimal('0.01')),
                category=category,
                subcategory=random.choice(CATEGORIES[category]),
                condition=random.choice(conditions),
                location=user.location,
            )
            listings.append(listing)

    print(f"Created {len(listings)} listings.")
    return listings


def create_offers(users, listings):
    print("Creating offers...")
    offers = []

    for listing in listings:
        # 0-2 buyers per listing
        buyers = random.sample([u for u in users if u != listing.seller], k=random.randint(0, 2))
        for buyer in buyers:
            offer = Offer.objects.create(
                listing=listing,
                buyer=buyer,
                amount=(listing.price * Decimal(random.uniform(0.7, 1.0))).quantize(Decimal('0.01')),
                message=fake.sentence(),
            )
            offers.append(offer)

    print(f"Created {len(offers)} offers.")
    return offers


def settle_some_offers(offers):
    """Accept about a third of the offers and pay for most of those."""
    print("Accepting offers and recording payments...")
    payments = []

    for offer in offers:
        offer.refresh_from_db()
        if offer.status != 'pending' or random.random() > 0.33:
            continue
        if not offer.listing.is_available():
            continue

        offer.accept()

        if random.random() < 0.8:
            payment = Payment.objects.create(
                offer=offer,
                listing=offer.listing,
                buyer=offer.buyer,
                seller=offer.seller,
                amount=offer.amount,
                payment_intent_id=f"pi_seed_{fake.unique.hexify(text='^^^^^^^^^^^^^^^^')}",
            )
            # Completing the payment marks the listing sold and opens an order
            payment.mark_completed(when=timezone.now() - timedelta(days=random.randint(0, 20)))
            payments.append(payment)

    print(f"Recorded {len(payments)} completed payments.")
    return payments


def create_messages(users, listings):
    print("Creating messages...")
    count = 0

    for listing in random.sample(listings, k=min(len(listings), 15)):
        buyer = random.choice([u for u in users if u != listing.seller])
        for turn in range(random.randint(1, 4)):
            sender, receiver = (buyer, listing.seller) if turn % 2 == 0 else (listing.seller, buyer)
            Message.objects.create(
                sender=sender,
                receiver=receiver,
                listing=listing,
                content=fake.sentence(nb_words=15),
                is_read=random.choice([True, False]),
            )
            count += 1

    print(f"Created {count} messages.")


def create_analytics_events(users):
    print("Creating analytics events...")
    events = []
    categories = [choice for choice, _label in AnalyticsEvent.CATEGORY_CHOICES]

    for _ in range(200):
        events.append(AnalyticsEvent(
            user=random.choice(users + [None]),
            session_id=fake.uuid4(),
            category=random.choice(categories),
            action=random.choice(['listing_view', 'search', 'offer_click', 'analyze']),
            timestamp=timezone.now() - timedelta(days=random.randint(0, 60), hours=random.randint(0, 23)),
        ))

    AnalyticsEvent.objects.bulk_create(events)
    print(f"Created {len(events)} analytics events.")


def main():
    print("Starting database population...")

    users = create_users(num_users=20)
    listings = create_listings(users)
    offers = create_offers(users, listings)
    settle_some_offers(offers)
    if listings:
        create_messages(users, listings)
    create_analytics_events(users)

    print("Database population completed successfully!")


if __name__ == '__main__':
    main()
