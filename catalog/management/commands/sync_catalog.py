"""
Management command to trigger an ERP catalog sync by hand.

Usage:
    python manage.py sync_catalog
    python manage.py sync_catalog --mode=full
    python manage.py sync_catalog --categories-only
    python manage.py sync_catalog --refresh-rates
"""

import json
import logging

from django.core.management.base import BaseCommand, CommandError

from catalog.exceptions import SyncAlreadyRunning, SyncError
from catalog.models import SyncCursor
from catalog.services import build_reconciler, ensure_manual_sync_allowed, get_exchange_rate_provider

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    """Run one catalog reconciliation in the foreground."""

    help = 'Synchronise products and categories from the ERP into the local catalog'

    def add_arguments(self, parser):
        parser.add_argument(
            '--mode',
            choices=[SyncCursor.MODE_DELTA, SyncCursor.MODE_FULL],
            default=SyncCursor.MODE_DELTA,
            help='Label recorded on the sync cursor (default: delta)',
        )
        parser.add_argument(
            '--categories-only',
            action='store_true',
            help='Only crawl and upsert the category tree',
        )
        parser.add_argument(
            '--refresh-rates',
            action='store_true',
            help='Refresh exchange rates before syncing',
        )

    def handle(self, *args, **options):
        try:
            ensure_manual_sync_allowed()
        except SyncError as exc:
            raise CommandError(exc.message)

        if options['refresh_rates']:
            if get_exchange_rate_provider().refresh():
                self.stdout.write('Exchange rates refreshed')
            else:
                self.stdout.write(self.style.WARNING('Exchange rate refresh failed – using cached/fallback rates'))

        reconciler = build_reconciler()
        try:
            if options['categories_only']:
                result = {'categories': reconciler.run_category_sync()}
            elif options['mode'] == SyncCursor.MODE_FULL:
                result = reconciler.full_sync()
            else:
                result = reconciler.delta_sync()
        except SyncAlreadyRunning as exc:
            self.stdout.write(self.style.WARNING(exc.message))
            return
        except SyncError as exc:
            logger.error("Manual sync failed: %s", exc)
            raise CommandError(f"Sync failed ({exc.status_code}): {exc.message}")

        self.stdout.write(json.dumps(result, indent=2))
        self.stdout.write(self.style.SUCCESS('Sync completed'))
