import pytest

from catalog.erp_client import ErpClient
from catalog.reconciler import CatalogReconciler
from catalog.retry import RetryPolicy

WSDL = 'http://erp.test/service?wsdl'
ENDPOINT = 'http://erp.test/service'
SYNC_ACCOUNT = '07748'


class FakeConnection:
    """
    Stands in for a live SOAP connection.

    ``handlers`` maps an operation name to its result, to an exception to
    raise, or to a callable receiving the call parameters.
    """

    def __init__(self, handlers):
        self.handlers = handlers
        self.calls = []

    def call(self, operation, params):
        self.calls.append((operation, params))
        handler = self.handlers.get(operation)
        if isinstance(handler, Exception):
            raise handler
        if callable(handler):
            return handler(params)
        return handler

    def operations(self):
        return [operation for operation, _ in self.calls]


class FixedRates:
    def __init__(self, usd=33.50, eur=36.20):
        self.rates = {'USD': usd, 'EUR': eur}
        self.calls = []

    def get_rate(self, currency):
        self.calls.append(currency)
        return self.rates.get(currency.upper(), 1.0)


def envelope(wrapper, row, rows):
    return [{wrapper: {row: rows}}]


def products_envelope(rows):
    return envelope('TTStoklar', 'TTStoklarRow', rows)


def erp_product(stkno, name='Vida M8', currency='TRY', price=10.0, balance=5, group='Bağlantı'):
    row = {
        'stkno': stkno,
        'stokadi': name,
        'grupadi': group,
        'cinsi': currency,
        'bakiye': balance,
        'birim': 'ADET',
        'kdv': 20,
        'uruntipi': 'STD',
        'fgrp': '01',
        'fagrp': '0101',
        'fatgrp': '010101',
    }
    for tier in range(1, 16):
        row[f'fiyat{tier}'] = round(price + tier - 1, 2)
    return row


def category_handlers(tree, failing=()):
    """
    Build ERP handlers for a category tree.

    ``tree`` is ``{level1_code: {level2_code: [level3_code, ...]}}``; parents
    listed in ``failing`` raise when their children are requested.
    """
    def children(wrapper, row, code_field, name_field, lookup):
        def handler(params):
            parent = params['vgrup']
            if parent in failing:
                raise ConnectionError(f'connection reset while reading {parent}')
            codes = lookup(parent)
            return envelope(wrapper, row, [
                {code_field: code, name_field: f'Group {code}'} for code in codes
            ])
        return handler

    def level2(parent):
        return list(tree.get(parent, {}))

    def level3(parent):
        for subs in tree.values():
            if parent in subs:
                return subs[parent]
        return []

    return {
        'urungruplari': envelope('urungruplari', 'urungruplariRow', [
            {'grpkod': code, 'grpadi': f'Group {code}'} for code in tree
        ]),
        'altgrup': children('altgrup', 'altgrupRow', 'altgrpkod', 'altgrpadi', level2),
        'altgrup2': children('altgrup2', 'altgrup2Row', 'altgrpkod2', 'altgrpadi2', level3),
    }


def make_client(connection, max_attempts=1):
    return ErpClient(
        wsdl=WSDL,
        endpoint=ENDPOINT,
        connection_factory=lambda wsdl, endpoint: connection,
        retry_policy=RetryPolicy(max_attempts=max_attempts),
    )


@pytest.fixture()
def make_reconciler():
    """Build a reconciler wired to a FakeConnection; returns (reconciler, connection)."""
    def _make(handlers, rates=None, **kwargs):
        connection = FakeConnection(handlers)
        kwargs.setdefault('sync_account', SYNC_ACCOUNT)
        reconciler = CatalogReconciler(make_client(connection), rates or FixedRates(), **kwargs)
        return reconciler, connection
    return _make
