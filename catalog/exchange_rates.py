import logging
import re
import time
from threading import Lock
from typing import Optional

import requests
from django.conf import settings
from django.utils import timezone

from .exceptions import RateSourceFailure

logger = logging.getLogger(__name__)

CONVERTIBLE_CURRENCIES = ('USD', 'EUR')
CACHE_TTL = 24 * 60 * 60  # seconds
REQUEST_TIMEOUT = 10
DEFAULT_RATE_URL = 'https://www.tcmb.gov.tr/kurlar/today.xml'


def _currency_pattern(code: str) -> re.Pattern:
    return re.compile(
        r'<Currency[^>]*CurrencyCode="%s"[^>]*>(.*?)</Currency>' % re.escape(code),
        re.DOTALL,
    )


CURRENCY_BLOCKS = {code: _currency_pattern(code) for code in CONVERTIBLE_CURRENCIES}
FOREX_SELLING = re.compile(r'<ForexSelling>\s*([\d.]+)\s*</ForexSelling>')


def parse_forex_selling(xml: str) -> dict[str, float]:
    """
    Extract the ForexSelling rate of every convertible currency.

    Raises RateSourceFailure when any of them is missing or not a number.
    """
    rates = {}
    for code, pattern in CURRENCY_BLOCKS.items():
        block = pattern.search(xml)
        selling = FOREX_SELLING.search(block.group(1)) if block else None
        if selling is None:
            raise RateSourceFailure(f"No ForexSelling rate for {code} in response.")
        try:
            rates[code] = float(selling.group(1))
        except ValueError as exc:
            raise RateSourceFailure(f"Invalid {code} rate {selling.group(1)!r}.") from exc
    return rates


class ExchangeRateProvider:
    """
    USD/EUR to local currency rates with a 24-hour in-memory cache.

    A failed refresh never raises: stale rates stay in place and rates that
    were never fetched come from the configured fallback values. Refreshes
    are serialized so concurrent callers trigger at most one request.
    """

    def __init__(self, url: Optional[str] = None, fallback_rates: Optional[dict] = None,
                 session: Optional[requests.Session] = None, ttl: float = CACHE_TTL):
        self._url = url or getattr(settings, 'EXCHANGE_RATE_URL', DEFAULT_RATE_URL)
        self._fallback = fallback_rates or {
            'USD': float(settings.USD_TO_TRY_RATE),
            'EUR': float(settings.EUR_TO_TRY_RATE),
        }
        self._session = session or requests.Session()
        self._session.headers.update({'Accept': 'application/xml'})
        self._ttl = ttl
        self._rates: dict[str, Optional[float]] = {code: None for code in CONVERTIBLE_CURRENCIES}
        self._fetched_at: Optional[float] = None   # monotonic
        self._last_update = None                   # aware datetime, for reporting
        self._lock = Lock()

    def _is_stale(self, code: str) -> bool:
        if self._rates.get(code) is None or self._fetched_at is None:
            return True
        return (time.monotonic() - self._fetched_at) > self._ttl

    def get_rate(self, currency: str) -> float:
        code = (currency or '').strip().upper()
        if code not in CONVERTIBLE_CURRENCIES:
            return 1.0

        with self._lock:
            if self._is_stale(code):
                self._refresh_locked()
            return self._rates.get(code) or 1.0

    def refresh(self) -> bool:
        with self._lock:
            return self._refresh_locked()

    def _refresh_locked(self) -> bool:
        try:
            response = self._session.get(self._url, timeout=REQUEST_TIMEOUT)
            response.raise_for_status()
            rates = parse_forex_selling(response.text)
        except (requests.RequestException, RateSourceFailure) as exc:
            logger.error("Failed to fetch exchange rates from %s: %s", self._url, exc)
            self._apply_fallback()
            return False

        self._rates.update(rates)
        self._fetched_at = time.monotonic()
        self._last_update = timezone.now()
        logger.info("Exchange rates updated: USD=%s EUR=%s", rates['USD'], rates['EUR'])
        return True

    def _apply_fallback(self):
        missing = [code for code in CONVERTIBLE_CURRENCIES if self._rates.get(code) is None]
        if not missing:
            logger.warning("Keeping previously cached exchange rates.")
            return

        logger.warning("Using fallback exchange rates for %s.", ', '.join(missing))
        for code in missing:
            self._rates[code] = self._fallback[code]
        self._fetched_at = time.monotonic()
        self._last_update = timezone.now()

    def snapshot(self) -> dict:
        """Current rates for diagnostics; fetches once if never fetched."""
        with self._lock:
            if self._fetched_at is None:
                self._refresh_locked()
            return {
                'USD': self._rates['USD'],
                'EUR': self._rates['EUR'],
                'last_update': self._last_update,
            }
