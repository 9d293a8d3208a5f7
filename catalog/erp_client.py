import logging
from contextlib import contextmanager
from dataclasses import replace
from typing import Optional

import requests
from django.conf import settings
from django.utils import timezone
from zeep import Client, Settings as ZeepSettings
from zeep.helpers import serialize_object
from zeep.transports import Transport

from . import envelopes
from .exceptions import (
    AuthenticationFailure,
    DeadlineExceeded,
    RemoteServiceFailure,
    ServiceUnavailable,
)
from .retry import Deadline, RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)

CONNECT_TIMEOUT = 10     # seconds to load the WSDL / open the connection
OPERATION_TIMEOUT = 30   # seconds per remote operation
AUTH_ERROR_MARKERS = ('authentication', 'login')
ERP_DATE_FORMAT = '%d-%m-%Y'
DEFAULT_ORDER_CURRENCY = 'TRY'


def is_auth_error(exc: BaseException) -> bool:
    """True when retrying ``exc`` cannot help because credentials are bad."""
    if isinstance(exc, AuthenticationFailure):
        return True
    message = str(exc).lower()
    return any(marker in message for marker in AUTH_ERROR_MARKERS)


def default_retry_policy() -> RetryPolicy:
    return RetryPolicy(is_retryable=lambda exc: not is_auth_error(exc))


def default_binding_name(client: Client):
    """Binding of the first port of the first service, the one zeep binds by default."""
    service = next(iter(client.wsdl.services.values()))
    port = next(iter(service.ports.values()))
    return port.binding.name.text


class ZeepConnection:
    """A live SOAP connection: a zeep service proxy bound to the ERP endpoint."""

    def __init__(self, service):
        self._service = service

    @classmethod
    def connect(cls, wsdl: str, endpoint: str,
                connect_timeout: float = CONNECT_TIMEOUT,
                operation_timeout: float = OPERATION_TIMEOUT) -> 'ZeepConnection':
        transport = Transport(
            session=requests.Session(),
            timeout=connect_timeout,
            operation_timeout=operation_timeout,
        )
        client = Client(wsdl, transport=transport, settings=ZeepSettings(strict=False))
        if not endpoint:
            return cls(client.bind())
        return cls(client.create_service(default_binding_name(client), endpoint))

    def call(self, operation: str, params: dict):
        result = getattr(self._service, operation)(**params)
        return serialize_object(result, dict)


class ErpClient:
    """
    Resilient call surface over the ERP's stateful SOAP service.

    The connection is created lazily and thrown away after any failed call,
    so the next attempt always starts from a fresh connection.
    """

    def __init__(self, wsdl: Optional[str] = None, endpoint: Optional[str] = None,
                 connection_factory=None, retry_policy: Optional[RetryPolicy] = None):
        self._wsdl = wsdl or settings.ERP_WSDL_URL
        self._endpoint = endpoint or settings.ERP_ENDPOINT_URL
        self._connection_factory = connection_factory or self._zeep_factory
        self._retry_policy = retry_policy or default_retry_policy()
        self._connection = None
        self._deadline: Optional[Deadline] = None

    @staticmethod
    def _zeep_factory(wsdl, endpoint):
        return ZeepConnection.connect(
            wsdl, endpoint,
            connect_timeout=getattr(settings, 'ERP_CONNECT_TIMEOUT', CONNECT_TIMEOUT),
            operation_timeout=getattr(settings, 'ERP_OPERATION_TIMEOUT', OPERATION_TIMEOUT),
        )

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    @property
    def connected(self) -> bool:
        return self._connection is not None

    def ensure_connected(self):
        if self._connection is None:
            logger.info("Creating ERP connection (wsdl=%s).", self._wsdl)
            try:
                self._connection = self._connection_factory(self._wsdl, self._endpoint)
            except Exception as exc:
                self._connection = None
                logger.error("ERP connection failed: %s", exc)
                raise ServiceUnavailable(f"ERP service unavailable: {exc}") from exc
            logger.info("ERP connection established.")
        return self._connection

    def reset_connection(self):
        self._connection = None
        logger.debug("ERP connection reset.")

    @contextmanager
    def bounded_by(self, deadline: Deadline):
        """Apply ``deadline`` to every call made inside the block."""
        previous = self._deadline
        self._deadline = deadline
        try:
            yield self
        finally:
            self._deadline = previous

    # ------------------------------------------------------------------
    # Uniform call primitive
    # ------------------------------------------------------------------

    def invoke(self, operation: str, params: Optional[dict] = None,
               max_attempts: Optional[int] = None):
        params = params or {}
        policy = self._retry_policy
        if max_attempts is not None:
            policy = replace(policy, max_attempts=max_attempts)
        attempts = 0

        def attempt():
            nonlocal attempts
            attempts += 1
            connection = self.ensure_connected()
            logger.debug("Calling ERP %s (attempt %d).", operation, attempts)
            result = connection.call(operation, params)
            logger.info("ERP %s successful (attempt %d).", operation, attempts)
            return result

        def on_failure(exc, attempt_no):
            logger.error(
                "ERP %s failed (attempt %d/%d): %s",
                operation, attempt_no, policy.max_attempts, exc,
            )
            self.reset_connection()

        try:
            return call_with_retry(
                attempt, policy,
                on_failure=on_failure,
                deadline=self._deadline,
                describe=f"ERP {operation}",
            )
        except DeadlineExceeded:
            self.reset_connection()
            raise
        except Exception as exc:
            if is_auth_error(exc):
                raise AuthenticationFailure(
                    f"ERP {operation} rejected credentials: {exc}"
                ) from exc
            raise RemoteServiceFailure(
                f"ERP {operation} failed: {exc}",
                details={'operation': operation, 'attempts': attempts},
            ) from exc

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def authenticate(self, username: str, password: str) -> dict:
        """Validate customer credentials and return the ERP customer record."""
        result = self.invoke('uuselogin', {'uulogin': username, 'uucyrpt': password})
        response = envelopes.envelope_body(result)
        if not isinstance(response, dict) or not response.get('uucust'):
            raise AuthenticationFailure('Invalid credentials')

        vinfo = (response.get('vinfo') or '').split('|')

        def info(index, default=''):
            return vinfo[index] if index < len(vinfo) and vinfo[index] else default

        return {
            'company': response['uucust'],
            'price_list': response.get('uliste'),
            'username': username,
            'account': username,
            'email': info(0),
            'phone2': info(1),
            'phone': info(2),
            'country': info(3),
            'city': info(4),
            'district': info(5),
            'address': info(6),
            'tax_office': info(7),
            'tax_number': info(8),
            'product_scope': info(10),
            'balance': info(11, '0'),
        }

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def fetch_all_products_with_prices(self) -> list[dict]:
        """Products with all 15 price tiers. May be empty; callers decide."""
        products = envelopes.PRODUCTS_WITH_PRICES.decode(self.invoke('ikoStoklist'))
        logger.info("ikoStoklist returned %d products.", len(products))
        if products:
            sample = products[0]
            logger.debug(
                "Sample product: stkno=%s fiyat1=%s fiyat15=%s cinsi=%s",
                sample.get('stkno'), sample.get('fiyat1'),
                sample.get('fiyat15'), sample.get('cinsi'),
            )
        return products

    def fetch_legacy_products(self, account: str) -> list[dict]:
        """Single-price product listing for ``account``."""
        products = envelopes.LEGACY_PRODUCTS.decode(
            self.invoke('slStoklist', {'vhesap': account})
        )
        logger.info("slStoklist returned %d products for account %s.", len(products), account)
        return products

    def fetch_category_groups(self) -> list[dict]:
        return envelopes.CATEGORY_GROUPS.decode(self.invoke('urungruplari'))

    def fetch_sub_groups(self, parent_code: str) -> list[dict]:
        return envelopes.SUB_GROUPS.decode(self.invoke('altgrup', {'vgrup': parent_code}))

    def fetch_sub_groups2(self, parent_code: str) -> list[dict]:
        return envelopes.SUB_GROUPS2.decode(self.invoke('altgrup2', {'vgrup': parent_code}))

    # ------------------------------------------------------------------
    # Orders and account documents
    # ------------------------------------------------------------------

    def fetch_orders(self, account: str, start_date: str = '', end_date: str = '') -> list[dict]:
        orders = envelopes.ORDERS.decode(self.invoke('rsiparisler', {
            'vhesap': account,
            'vilktar': start_date,
            'vsontar': end_date,
        }))
        logger.info("Fetched %d orders for account %s.", len(orders), account)
        return orders

    def submit_order(self, account: str, lines: list[dict]) -> dict:
        """
        Create an order in the ERP.

        Each line needs ``stock_number``, ``quantity`` and ``price`` (in the
        product's original currency); ``currency`` defaults to TRY.
        """
        due_date = timezone.localdate().strftime(ERP_DATE_FORMAT)
        rows = [
            {
                'wcinsi': line.get('currency') or DEFAULT_ORDER_CURRENCY,
                'wstkno': line['stock_number'],
                'wsipmik': line['quantity'],
                'wsipfyt': line['price'],
                'wtermin': due_date,
                'wsiptut': line['price'] * line['quantity'],
                'wacik': 'WEB',
                'wsipisktut': 0,
                'wsipisk1': 0,
                'wsipisk2': 0,
                'wsipisk3': 0,
            }
            for line in lines
        ]
        result = self.invoke('sipcrea', {
            'vhesap': account,
            'TTcreasip': {'TTcreasipRow': rows},
        })
        response = envelopes.envelope_body(result)
        order_id = response.get('sipno') if isinstance(response, dict) else None
        logger.info(
            "Order created for account %s: %d lines, currencies=%s.",
            account, len(rows), sorted({row['wcinsi'] for row in rows}),
        )
        return {'success': True, 'order_id': order_id, 'message': 'Order created successfully'}

    def fetch_extract(self, account: str, start_date: Optional[str] = None,
                      end_date: Optional[str] = None) -> list[dict]:
        """Account statement; defaults to the current year up to today."""
        today = timezone.localdate()
        return envelopes.EXTRACT.decode(self.invoke('dgeks', {
            'vhesap': account,
            'vilktar': start_date or today.replace(month=1, day=1).strftime(ERP_DATE_FORMAT),
            'vsontar': end_date or today.strftime(ERP_DATE_FORMAT),
        }))

    def fetch_extract_detail(self, document_id) -> list[dict]:
        if document_id is None or document_id == '':
            raise ValueError('Extract document id is required')
        return envelopes.EXTRACT_DETAIL.decode(self.invoke('cardetstk', {'vfkn': document_id}))

    def fetch_customers(self) -> list[dict]:
        return envelopes.CUSTOMERS.decode(self.invoke('slCustlist'))

    def health_check(self) -> dict:
        timestamp = timezone.now().isoformat()
        try:
            self.ensure_connected()
        except ServiceUnavailable as exc:
            return {'status': 'ERROR', 'error': str(exc), 'timestamp': timestamp}
        return {'status': 'OK', 'timestamp': timestamp}
