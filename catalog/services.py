"""
Composition root for the sync engine.

The ERP client and the exchange rate provider are built once per process
and handed to every reconciler explicitly; nothing else in the app holds
module-level service instances.
"""

from functools import lru_cache

from django.conf import settings

from .erp_client import ErpClient
from .exceptions import SyncDisabled
from .exchange_rates import ExchangeRateProvider
from .reconciler import CatalogReconciler


@lru_cache(maxsize=None)
def get_erp_client() -> ErpClient:
    return ErpClient()


@lru_cache(maxsize=None)
def get_exchange_rate_provider() -> ExchangeRateProvider:
    return ExchangeRateProvider()


def build_reconciler() -> CatalogReconciler:
    return CatalogReconciler(
        erp_client=get_erp_client(),
        rate_provider=get_exchange_rate_provider(),
        batch_size=settings.ERP_SYNC_BATCH_SIZE,
        local_currency=settings.LOCAL_CURRENCY,
        sync_account=settings.ERP_SYNC_ACCOUNT,
        run_timeout=settings.ERP_SYNC_RUN_TIMEOUT,
        lease_seconds=settings.ERP_SYNC_LEASE_SECONDS,
    )


def ensure_manual_sync_allowed():
    if not settings.ALLOW_PRODUCT_SYNC:
        raise SyncDisabled('Sync is disabled (ALLOW_PRODUCT_SYNC is not set).')
