import logging

from celery import shared_task

from .exceptions import SyncAlreadyRunning, SyncError
from .models import SyncCursor
from .services import build_reconciler, get_exchange_rate_provider

logger = logging.getLogger(__name__)


def _failure(exc: SyncError) -> dict:
    error = exc.to_dict()
    return {
        'status': 'failed',
        'status_code': error['status_code'],
        'error': error['message'],
        'code': error['code'],
        'details': error['details'],
    }


@shared_task(bind=True, name='catalog.sync_products')
def sync_products_task(self, mode=SyncCursor.MODE_DELTA):
    """
    Reconcile the ERP catalog into the local store.

    Steps:
      1. Fetch all products (multi-price listing, legacy listing as fallback).
      2. Convert USD/EUR prices to local currency, compute content hashes.
      3. Upsert products in batches of 500.
      4. Crawl and upsert the category tree (failures are non-fatal).
      5. Record the sync cursor.

    Both modes re-fetch the whole catalog; ``mode`` only labels the cursor.
    """
    if mode not in (SyncCursor.MODE_FULL, SyncCursor.MODE_DELTA):
        raise ValueError(f"Unknown sync mode {mode!r}")
    logger.info("Starting ERP → catalog %s sync task.", mode)

    reconciler = build_reconciler()
    try:
        if mode == SyncCursor.MODE_FULL:
            summary = reconciler.full_sync()
        else:
            summary = reconciler.delta_sync()
    except SyncAlreadyRunning as exc:
        logger.info("Skipping %s sync: %s", mode, exc)
        return {'status': 'already_running', 'mode': mode}
    except SyncError as exc:
        logger.error("%s sync aborted in product phase: %s", mode.capitalize(), exc)
        return {**_failure(exc), 'mode': mode}

    return {'status': 'ok', **summary}


@shared_task(bind=True, name='catalog.sync_categories')
def sync_categories_task(self):
    logger.info("Starting category sync task.")
    try:
        categories = build_reconciler().run_category_sync()
    except SyncAlreadyRunning:
        return {'status': 'already_running'}
    except SyncError as exc:
        logger.error("Category sync aborted: %s", exc)
        return _failure(exc)
    return {'status': 'ok', 'categories': categories}


@shared_task(name='catalog.refresh_exchange_rates')
def refresh_exchange_rates_task():
    """Refresh the cached USD/EUR rates; a failed fetch keeps or falls back."""
    provider = get_exchange_rate_provider()
    refreshed = provider.refresh()
    snapshot = provider.snapshot()
    return {
        'refreshed': refreshed,
        'USD': snapshot['USD'],
        'EUR': snapshot['EUR'],
    }
