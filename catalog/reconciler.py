import logging
from collections import Counter
from contextlib import contextmanager
from typing import Optional

from django.conf import settings
from django.utils import timezone

from .exceptions import DeadlineExceeded, PartialCategoryFailure, StoreWriteFailure, SyncAlreadyRunning, SyncError
from .models import SyncCursor
from .retry import Deadline
from .stores import BulkWriteResult, CategoryStore, CursorStore, ProductStore, UpsertOp
from .transformer import CONVERTED_CURRENCIES, legacy_row_to_product_row, transform_products

logger = logging.getLogger(__name__)

BATCH_SIZE = 500
PRODUCT_STREAM = 'products'
CATEGORY_STREAM = 'categories'
RUN_TIMEOUT = 90 * 60      # seconds
LEASE_SECONDS = 2 * 60 * 60

NO_CATEGORY_CHANGES = {'inserted': 0, 'updated': 0, 'unchanged': 0, 'failed': 0, 'failed_branches': 0}

# Owned by the image enrichment job: set on first insert, never overwritten.
IMAGE_FIELDS_ON_INSERT = {'image_url': None, 'image_source': None, 'image_synced_at': None}


def _code(value) -> str:
    return str(value).strip() if value is not None else ''


class CatalogReconciler:
    """
    Runs one complete, idempotent ERP -> local catalog reconciliation.

    A run is strictly sequential:

      1. Fetch every product from the ERP (falling back to the legacy
         single-price listing when the multi-price listing is empty).
      2. Normalize currencies and price tiers, compute content hashes.
      3. Upsert products in batches; a batch-level store failure aborts.
      4. Crawl and upsert the 3-level category tree; failures here are
         logged and reported as zero effect.
      5. Record the sync cursor.

    Runs are guarded by a lease on the sync cursor, so overlapping triggers
    get SyncAlreadyRunning instead of processing the catalog twice. The
    category phase also holds the category lease, so it never overlaps a
    standalone category sync.
    """

    def __init__(self, erp_client, rate_provider,
                 product_store: Optional[ProductStore] = None,
                 category_store: Optional[CategoryStore] = None,
                 cursor_store: Optional[CursorStore] = None,
                 batch_size: Optional[int] = None,
                 local_currency: Optional[str] = None,
                 sync_account: Optional[str] = None,
                 run_timeout: Optional[float] = None,
                 lease_seconds: Optional[float] = None):
        self.erp_client = erp_client
        self.rate_provider = rate_provider
        self.product_store = product_store or ProductStore()
        self.category_store = category_store or CategoryStore()
        self.cursor_store = cursor_store or CursorStore()
        self.batch_size = batch_size or getattr(settings, 'ERP_SYNC_BATCH_SIZE', BATCH_SIZE)
        self.local_currency = local_currency or getattr(settings, 'LOCAL_CURRENCY', 'TRY')
        self.sync_account = sync_account if sync_account is not None else settings.ERP_SYNC_ACCOUNT
        self.run_timeout = run_timeout or getattr(settings, 'ERP_SYNC_RUN_TIMEOUT', RUN_TIMEOUT)
        self.lease_seconds = lease_seconds or getattr(settings, 'ERP_SYNC_LEASE_SECONDS', LEASE_SECONDS)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def full_sync(self) -> dict:
        return self._run(SyncCursor.MODE_FULL)

    def delta_sync(self) -> dict:
        # Same work as a full sync: the ERP has no change feed, so "delta"
        # re-fetches everything and relies on content hashes.
        return self._run(SyncCursor.MODE_DELTA)

    def run_category_sync(self) -> dict:
        """Standalone category sync; shares the category lease with the category phase of product runs."""
        with self.lease(CATEGORY_STREAM), self.erp_client.bounded_by(Deadline(self.run_timeout)):
            return self.sync_categories()

    @contextmanager
    def lease(self, stream: str):
        token = self.cursor_store.acquire_lease(stream, self.lease_seconds)
        if token is None:
            logger.warning("Sync for '%s' is already running – refusing to start another.", stream)
            raise SyncAlreadyRunning(stream)
        try:
            yield token
        finally:
            self.cursor_store.release_lease(stream, token)

    def _run(self, mode: str) -> dict:
        with self.lease(PRODUCT_STREAM), self.erp_client.bounded_by(Deadline(self.run_timeout)):
            logger.info("Starting %s sync.", mode.upper())

            raw_products = self.fetch_all_erp_products()
            products = self.upsert_products(raw_products)

            categories = dict(NO_CATEGORY_CHANGES)
            try:
                with self.lease(CATEGORY_STREAM):
                    categories = self.sync_categories()
            except SyncAlreadyRunning:
                logger.warning("Standalone category sync in progress, skipping category phase.")
                categories['status'] = 'already_running'
            except SyncError as exc:
                logger.warning("Category sync failed, continuing without categories: %s", exc)

            self.cursor_store.record_success(PRODUCT_STREAM, mode, self.sync_account)

        summary = {
            'mode': mode,
            'products': {
                'total': len(raw_products),
                'inserted': products.inserted,
                'updated': products.updated,
                'unchanged': products.unchanged,
                'failed': products.failed,
            },
            'categories': categories,
        }
        logger.info(
            "%s sync completed | products: %d (%d+%d) | categories: %d+%d",
            mode.upper(), len(raw_products), products.inserted, products.updated,
            categories['inserted'], categories['updated'],
        )
        return summary

    # ------------------------------------------------------------------
    # Product phase
    # ------------------------------------------------------------------

    def fetch_all_erp_products(self) -> list[dict]:
        products = self.erp_client.fetch_all_products_with_prices()
        if products:
            logger.info("Using ikoStoklist – got %d products.", len(products))
            return products

        logger.warning("ikoStoklist returned 0 products, falling back to slStoklist.")
        legacy = self.erp_client.fetch_legacy_products(self.sync_account)
        if not legacy:
            logger.error("slStoklist returned 0 products as well – the ERP catalog looks empty.")
        else:
            logger.info("Using slStoklist – got %d products (tier 1 price only).", len(legacy))
        return [legacy_row_to_product_row(row) for row in legacy]

    def current_rates(self) -> dict:
        """Look up each convertible currency once for the whole run."""
        rates = {code: self.rate_provider.get_rate(code) for code in CONVERTED_CURRENCIES}
        logger.info("Using rates: USD=%s, EUR=%s", rates['USD'], rates['EUR'])
        return rates

    def upsert_products(self, raw_products: list[dict]) -> BulkWriteResult:
        total = BulkWriteResult()
        if not raw_products:
            return total

        products = transform_products(raw_products, self.current_rates(), self.local_currency)
        logger.info("Currency statistics: %s", dict(Counter(p['currency'] for p in products)))

        synced_at = timezone.now()
        for start in range(0, len(products), self.batch_size):
            batch = products[start:start + self.batch_size]
            number = start // self.batch_size + 1
            ops = [
                UpsertOp(product['stock_number'], {**product, 'synced_at': synced_at},
                         IMAGE_FIELDS_ON_INSERT)
                for product in batch
            ]
            try:
                result = self.product_store.bulk_upsert(ops)
            except StoreWriteFailure as exc:
                logger.error("Batch %d failed: %s", number, exc)
                raise
            total.merge(result)
            logger.info(
                "Batch %d completed: %d products (inserted=%d, updated=%d, failed=%d).",
                number, len(batch), result.inserted, result.updated, result.failed,
            )
        return total

    # ------------------------------------------------------------------
    # Category phase
    # ------------------------------------------------------------------

    def sync_categories(self) -> dict:
        logger.info("Starting category sync.")
        ops, failures = self.crawl_categories()
        result = self.category_store.bulk_upsert(ops)
        logger.info(
            "Category sync completed: %d inserted, %d updated, %d branches skipped.",
            result.inserted, result.updated, len(failures),
        )
        return {
            'inserted': result.inserted,
            'updated': result.updated,
            'unchanged': result.unchanged,
            'failed': result.failed,
            'failed_branches': len(failures),
        }

    def crawl_categories(self) -> tuple[list[UpsertOp], list[PartialCategoryFailure]]:
        """
        Depth-first walk of the category tree.

        Parents are always queued before their children. A failure to fetch
        one parent's children skips that branch only; a failure to fetch the
        top level propagates.
        """
        synced_at = timezone.now()
        ops: list[UpsertOp] = []
        failures: list[PartialCategoryFailure] = []

        groups = self.erp_client.fetch_category_groups()
        if not groups:
            logger.warning("ERP returned no category groups.")

        for group in groups:
            code = _code(group.get('grpkod'))
            if not code:
                logger.warning("Skipping category group without code: %r", group)
                continue
            ops.append(self._category_op(code, group.get('grpadi'), 1, None, group, synced_at))

            for sub in self._children(self.erp_client.fetch_sub_groups, code, 2, failures):
                sub_code = _code(sub.get('altgrpkod') or sub.get('grpkod'))
                if not sub_code:
                    continue
                sub_name = sub.get('altgrpadi') or sub.get('grpadi')
                ops.append(self._category_op(sub_code, sub_name, 2, code, sub, synced_at))

                for sub2 in self._children(self.erp_client.fetch_sub_groups2, sub_code, 3, failures):
                    sub2_code = _code(sub2.get('altgrpkod2') or sub2.get('grpkod'))
                    if not sub2_code:
                        continue
                    sub2_name = sub2.get('altgrpadi2') or sub2.get('grpadi')
                    ops.append(self._category_op(sub2_code, sub2_name, 3, sub_code, sub2, synced_at))

        return ops, failures

    @staticmethod
    def _children(fetch, parent_code: str, level: int, failures: list) -> list[dict]:
        try:
            return fetch(parent_code)
        except DeadlineExceeded:
            raise
        except SyncError as exc:
            failure = PartialCategoryFailure(parent_code, level, str(exc))
            logger.warning("%s – skipping branch.", failure)
            failures.append(failure)
            return []

    @staticmethod
    def _category_op(code, name, level, parent_code, raw, synced_at) -> UpsertOp:
        return UpsertOp(code, {
            'name': (str(name).strip() if name is not None else ''),
            'level': level,
            'parent_code': parent_code,
            'active': True,
            'synced_at': synced_at,
            'raw_snapshot': raw,
        })
