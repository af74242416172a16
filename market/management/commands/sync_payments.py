# Sync Payments Management Command
from django.core.management.base import BaseCommand
from django.db import transaction

from market import payments
from market.exceptions import PaymentProviderError
from market.models import Payment


class Command(BaseCommand):
    help = 'Refreshes pending and processing payments from their Stripe PaymentIntents.'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Report Stripe statuses without saving changes.',
        )

    def handle(self, *args, **options):
        dry_run = options['dry_run']
        open_payments = Payment.objects.filter(status__in=['pending', 'processing']).order_by('id')

        checked = updated = failed = 0

        for payment in open_payments.iterator():
            checked += 1
            try:
                intent = payments.retrieve_payment_intent(payment.payment_intent_id)
            except PaymentProviderError as e:
                failed += 1
                self.stderr.write(f'  Payment {payment.id}: {e}')
                continue

            if dry_run:
                self.stdout.write(
                    f'  [DRY-RUN] Payment {payment.id}: local {payment.status}, Stripe {intent.status}'
                )
                continue

            with transaction.atomic():
                locked = Payment.objects.select_for_update().get(pk=payment.pk)
                if locked.sync_from_intent(intent.status):
                    updated += 1
                    self.stdout.write(f'  Payment {locked.id}: {payment.status} -> {locked.status}')

        summary = f'Checked {checked} payments, updated {updated}, errors {failed}.'
        if dry_run:
            self.stdout.write(self.style.SUCCESS(f'Dry run completed. {summary}'))
        else:
            self.stdout.write(self.style.SUCCESS(summary))
