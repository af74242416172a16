"""
Aggregates for the admin analytics dashboard.

Results are cached per time range for ADMIN_DASHBOARD_CACHE_SECONDS
(5 minutes by default).
"""

import logging
from datetime import timedelta
from decimal import Decimal

from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.cache import cache
from django.db.models import Count, Sum
from django.db.models.functions import TruncDate
from django.utils import timezone

from .models import AnalyticsEvent, Listing, Payment

User = get_user_model()
logger = logging.getLogger(__name__)

TIME_RANGES = {
    'week': 7,
    'month': 30,
    'year': 365,
}
DEFAULT_TIME_RANGE = 'week'
TOP_SELLERS_LIMIT = 5
CACHE_KEY_PREFIX = 'admin_dashboard'


def _money(value):
    return str((value or Decimal('0')).quantize(Decimal('0.01')))


def _percentage(part, whole):
    if not whole:
        return 0.0
    return round(part / whole * 100, 1)


def _daily_counts(queryset, date_field, value=None):
    """
    Map date -> count (or sum of ``value``) for ``queryset`` grouped by day.
    """
    aggregate = Sum(value) if value else Count('id')
    rows = queryset.annotate(day=TruncDate(date_field)).values('day').annotate(total=aggregate)
    return {row['day']: row['total'] for row in rows}


def build_dashboard(time_range=DEFAULT_TIME_RANGE, now=None):
    """
    Compute every dashboard section for ``time_range``.

    Returns:
        dict: summary, daily series, top sellers, categories, conversion rates
    """
    now = now or timezone.now()
    days = TIME_RANGES[time_range]
    start = now - timedelta(days=days)

    new_users = User.objects.filter(date_joined__gte=start)
    new_listings = Listing.objects.filter(created_at__gte=start)
    completed_payments = Payment.objects.filter(status='completed', payment_date__gte=start)
    refunded_payments = Payment.objects.filter(status='refunded', refund_date__gte=start)
    events = AnalyticsEvent.objects.filter(timestamp__gte=start)
    photo_to_post_events = events.filter(category='photo_to_post')

    new_listing_count = new_listings.count()
    completed_count = completed_payments.count()
    photo_to_post_count = photo_to_post_events.count()

    summary = {
        'total_users': User.objects.count(),
        'new_users': new_users.count(),
        'active_listings': Listing.objects.active().count(),
        'new_listings': new_listing_count,
        'completed_payments': completed_count,
        'total_sales': _money(completed_payments.aggregate(total=Sum('amount'))['total']),
        'refunded_amount': _money(refunded_payments.aggregate(total=Sum('refund_amount'))['total']),
        'photo_to_post_usage': photo_to_post_count,
        'active_users': events.exclude(user__isnull=True).values('user').distinct().count(),
    }

    users_by_day = _daily_counts(new_users, 'date_joined')
    listings_by_day = _daily_counts(new_listings, 'created_at')
    transactions_by_day = _daily_counts(completed_payments, 'payment_date')
    revenue_by_day = _daily_counts(completed_payments, 'payment_date', value='amount')

    daily = []
    first_day = timezone.localdate(start)
    for offset in range(days + 1):
        day = first_day + timedelta(days=offset)
        daily.append({
            'date': day.isoformat(),
            'users': users_by_day.get(day, 0),
            'listings': listings_by_day.get(day, 0),
            'transactions': transactions_by_day.get(day, 0),
            'revenue': _money(revenue_by_day.get(day)),
        })

    top_sellers = [
        {
            'seller_id': row['seller'],
            'name': row['seller__name'] or row['seller__email'],
            'sales': row['sales'],
            'revenue': _money(row['revenue']),
        }
        for row in completed_payments.values('seller', 'seller__name', 'seller__email')
        .annotate(sales=Count('id'), revenue=Sum('amount'))
        .order_by('-revenue', 'seller')[:TOP_SELLERS_LIMIT]
    ]

    categories = [
        {'category': row['category'], 'count': row['count']}
        for row in Listing.objects.active().values('category')
        .annotate(count=Count('id'))
        .order_by('-count', 'category')
    ]

    conversion_rates = {
        'listing_to_transaction': _percentage(completed_count, new_listing_count),
        'photo_to_post_usage_rate': _percentage(photo_to_post_count, new_listing_count),
    }

    return {
        'time_range': time_range,
        'start': start.isoformat(),
        'end': now.isoformat(),
        'summary': summary,
        'daily': daily,
        'top_sellers': top_sellers,
        'categories': categories,
        'conversion_rates': conversion_rates,
    }


def get_dashboard(time_range=DEFAULT_TIME_RANGE):
    """Return the cached dashboard for ``time_range``, computing it on a miss."""
    cache_key = f'{CACHE_KEY_PREFIX}:{time_range}'
    data = cache.get(cache_key)
    if data is None:
        data = build_dashboard(time_range)
        cache.set(cache_key, data, getattr(settings, 'ADMIN_DASHBOARD_CACHE_SECONDS', 300))
        logger.info(f"Admin dashboard computed. Time range: {time_range}")
    return data


def build_event(category, action, user=None, session_id='', data=None, timestamp=None):
    """Unsaved AnalyticsEvent; anonymous users are stored as NULL."""
    return AnalyticsEvent(
        user=user if user is not None and user.is_authenticated else None,
        session_id=session_id or '',
        category=category,
        action=action,
        data=data or {},
        timestamp=timestamp or timezone.now(),
    )


def store_events(events):
    """Bulk insert ``events`` and return how many were stored."""
    return len(AnalyticsEvent.objects.bulk_create(events))


def record_event(category, action, user=None, session_id='', data=None):
    """Store one analytics event."""
    event = build_event(category, action, user=user, session_id=session_id, data=data)
    event.save()
    return event
