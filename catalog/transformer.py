import hashlib
import json
import logging
import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional

logger = logging.getLogger(__name__)

PRICE_TIERS = range(1, 16)
CONVERTED_CURRENCIES = ('USD', 'EUR')
CURRENCY_ALIASES = {'TL': 'TRY', 'YTL': 'TRY'}
CURRENCY_CODE = re.compile(r'^[A-Z]{3}$')
DEFAULT_UNIT = 'ADET'
DEFAULT_VAT_RATE = 18
CENT = Decimal('0.01')


def tier_key(tier: int) -> str:
    return f'tier{tier}'


def _parse_number(value, field: str, stock_number) -> float:
    """Convert an ERP numeric field to float; blanks and garbage count as 0."""
    if value is None or value == '':
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        logger.warning("Non-numeric %s %r for %s – treating as 0.", field, value, stock_number)
        return 0.0


def _text(value, default: str = '') -> str:
    if value is None:
        return default
    return str(value).strip() or default


def normalize_currency(raw_code, local_currency: str = 'TRY') -> str:
    """Uppercase a currency code; blank, NULL or unrecognized codes become local."""
    code = _text(raw_code).upper()
    code = CURRENCY_ALIASES.get(code, code)
    if not code or code == 'NULL' or not CURRENCY_CODE.match(code):
        return local_currency
    return code


def convert_price(amount: float, currency: str, rates: dict) -> float:
    """
    Convert ``amount`` to local currency.

    USD and EUR amounts are multiplied by their rate and rounded half-up to
    the cent; any other currency is returned unchanged.
    """
    if currency not in CONVERTED_CURRENCIES:
        return amount
    try:
        converted = Decimal(str(amount)) * Decimal(str(rates[currency]))
    except (KeyError, InvalidOperation):
        logger.warning("No usable %s rate – keeping original amount %s.", currency, amount)
        return amount
    return float(converted.quantize(CENT, rounding=ROUND_HALF_UP))


def build_price_lists(raw: dict, currency: str, rates: dict) -> tuple[dict, dict]:
    """Return ``(price_list, original_price_list)``, always with all 15 tiers."""
    stock_number = raw.get('stkno')
    original = {}
    converted = {}
    for tier in PRICE_TIERS:
        amount = _parse_number(raw.get(f'fiyat{tier}'), f'fiyat{tier}', stock_number)
        original[tier_key(tier)] = amount
        converted[tier_key(tier)] = convert_price(amount, currency, rates)
    return converted, original


def _stock_balance(raw: dict) -> float:
    for field in ('bakiye', 'bky', 'stok'):
        if raw.get(field) not in (None, ''):
            return _parse_number(raw[field], field, raw.get('stkno'))
    return 0.0


def compute_hash(product: dict) -> str:
    """
    Stable SHA-256 over the fields that define a meaningful change.

    ``product`` is a normalized product document (see ``transform_product``).
    """
    canonical = [
        product['stock_number'],
        product['name'],
        [product['original_price_list'][tier_key(tier)] for tier in PRICE_TIERS],
        product['stock_balance'],
        product['category_name'],
        product['currency'],
    ]
    serialized = json.dumps(canonical, ensure_ascii=False, separators=(',', ':'))
    return hashlib.sha256(serialized.encode('utf-8')).hexdigest()


def transform_product(raw: dict, rates: dict, local_currency: str = 'TRY') -> Optional[dict]:
    """
    Transform a raw ERP product row into a Product document.

    Returns None (and logs a warning) if the row has no stock number.
    """
    stock_number = _text(raw.get('stkno'))
    if not stock_number:
        logger.warning("Skipping ERP row without stock number: %r", raw)
        return None

    currency = normalize_currency(raw.get('cinsi'), local_currency)
    price_list, original_price_list = build_price_lists(raw, currency, rates)

    vat_rate = raw.get('kdv')
    product = {
        'stock_number': stock_number,
        'name': _text(raw.get('stokadi')),
        'category_name': _text(raw.get('grupadi')),
        'price_list': price_list,
        'original_price_list': original_price_list,
        'currency': currency,
        'stock_balance': _stock_balance(raw),
        'unit': _text(raw.get('birim'), DEFAULT_UNIT),
        'vat_rate': _parse_number(vat_rate, 'kdv', stock_number) if vat_rate else DEFAULT_VAT_RATE,
        'product_type': _text(raw.get('uruntipi')),
        'main_group': _text(raw.get('fgrp')),
        'sub_group': _text(raw.get('fagrp')),
        'sub_group2': _text(raw.get('fatgrp')),
        'raw_snapshot': raw,
    }
    product['content_hash'] = compute_hash(product)
    return product


def deduplicate_products(raw_products: list[dict]) -> list[dict]:
    """Deduplicate raw ERP rows by stock number (first occurrence wins)."""
    seen = set()
    result = []
    for item in raw_products:
        stock_number = _text(item.get('stkno'))
        if stock_number and stock_number in seen:
            logger.warning(
                "Duplicate stock number %s – keeping first occurrence, skipping duplicate.",
                stock_number,
            )
            continue
        seen.add(stock_number)
        result.append(item)
    return result


def legacy_row_to_product_row(row: dict) -> dict:
    """
    Adapt a single-price legacy listing row to the multi-tier row shape.

    The single price becomes tier 1, every other tier is 0 and the currency
    is left blank so it normalizes to local currency.
    """
    adapted = dict(row)
    adapted.setdefault('stkno', row.get('stokno') or row.get('stkkod'))
    adapted.setdefault('fiyat1', row.get('fiyat', 0))
    adapted['cinsi'] = ''
    return adapted


def transform_products(raw_products: list[dict], rates: dict,
                       local_currency: str = 'TRY') -> list[dict]:
    """Convenience: deduplicate raw rows and return only valid product documents."""
    result = []
    for raw in deduplicate_products(raw_products):
        product = transform_product(raw, rates, local_currency)
        if product is not None:
            result.append(product)
    return result
