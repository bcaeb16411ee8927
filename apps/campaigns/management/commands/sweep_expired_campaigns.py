"""
Management command to end overdue campaigns and release unpaid commitments.

Meant to run periodically from cron.

Usage:
    python manage.py sweep_expired_campaigns
    python manage.py sweep_expired_campaigns --dry-run
"""

from django.core.management.base import BaseCommand
from django.utils import timezone

from apps.campaigns.services import store
from apps.campaigns.services.expiry import sweep


class Command(BaseCommand):
    help = 'End campaigns past their end date and cancel commitments whose payment timed out'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Show what would be swept without making changes',
        )

    def handle(self, *args, **options):
        now = timezone.now()

        if options['dry_run']:
            expired = store.find_expired_open_campaigns(now)
            stale = store.find_stale_unpaid_commitments(now - store.payment_timeout())

            self.stdout.write(f'\nFound {len(expired)} overdue campaign(s):\n')
            for campaign in expired:
                self.stdout.write(
                    f'  - {campaign.id} | {campaign.get_status_display()} | ended {campaign.end_date:%Y-%m-%d %H:%M}'
                )
            self.stdout.write(f'\nFound {len(stale)} unpaid commitment(s) past the payment timeout.')
            self.stdout.write(self.style.WARNING('\n--dry-run mode: No changes made.'))
            return

        report = sweep(now)

        if not report.expired_campaigns and not report.released_commitments:
            self.stdout.write(self.style.SUCCESS('Nothing to sweep. All good!'))
            return

        self.stdout.write(self.style.SUCCESS(
            f'Ended {report.expired_campaigns} campaign(s), '
            f'released {report.released_commitments} unpaid commitment(s).'
        ))
