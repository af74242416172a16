# Expire Offers Management Command
from django.core.management.base import BaseCommand
from django.utils import timezone

from market.models import Offer


class Command(BaseCommand):
    help = 'Marks pending offers whose expiry time has passed as expired.'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='List the stale offers without changing them.',
        )

    def handle(self, *args, **options):
        dry_run = options['dry_run']
        now = timezone.now()

        stale = Offer.objects.stale(now).select_related('listing', 'buyer')

        if dry_run:
            count = 0
            for offer in stale:
                self.stdout.write(
                    f'  [DRY-RUN] Offer {offer.id} on "{offer.listing.title}" '
                    f'by {offer.buyer.email} expired at {offer.expires_at:%Y-%m-%d %H:%M}'
                )
                count += 1
            self.stdout.write(self.style.SUCCESS(f'Dry run completed. {count} offers would be expired.'))
            return

        expired = Offer.objects.expire_stale(now)
        self.stdout.write(self.style.SUCCESS(f'Expired {expired} offers.'))
