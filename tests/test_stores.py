from datetime import timedelta
from unittest.mock import patch

import pytest
from django.db import OperationalError
from django.utils import timezone

from catalog.exceptions import StoreWriteFailure
from catalog.models import Category, Product, SyncCursor
from catalog.stores import BulkWriteResult, CategoryStore, CursorStore, ProductStore, UpsertOp


def product_doc(name='Vida M8', content_hash='a' * 64, **extra):
    doc = {
        'name': name,
        'category_name': 'Bağlantı',
        'price_list': {'tier1': 10.0},
        'original_price_list': {'tier1': 10.0},
        'currency': 'TRY',
        'content_hash': content_hash,
    }
    doc.update(extra)
    return doc


# ---------------------------------------------------------------------------
# BulkWriteResult
# ---------------------------------------------------------------------------

class TestBulkWriteResult:
    def test_merge_adds_counts_and_errors(self):
        total = BulkWriteResult(inserted=1, updated=2, unchanged=3, errors=[{'key': 'A'}])
        total.merge(BulkWriteResult(inserted=4, errors=[{'key': 'B'}]))
        assert (total.inserted, total.updated, total.unchanged) == (5, 2, 3)
        assert total.failed == 2


# ---------------------------------------------------------------------------
# ProductStore.bulk_upsert
# ---------------------------------------------------------------------------

@pytest.mark.django_db
class TestProductUpsert:
    def test_new_products_are_inserted(self):
        result = ProductStore().bulk_upsert([
            UpsertOp('A', product_doc()),
            UpsertOp('B', product_doc(name='Somun')),
        ])
        assert result.inserted == 2
        assert result.updated == 0
        assert Product.objects.get(stock_number='B').name == 'Somun'

    def test_empty_batch_is_a_no_op(self):
        result = ProductStore().bulk_upsert([])
        assert result == BulkWriteResult()

    def test_same_hash_counts_as_unchanged(self):
        store = ProductStore()
        store.bulk_upsert([UpsertOp('A', product_doc())])

        result = store.bulk_upsert([UpsertOp('A', product_doc(stock_balance=9))])

        assert (result.inserted, result.updated, result.unchanged) == (0, 0, 1)
        assert Product.objects.get(stock_number='A').stock_balance == 9
        assert Product.objects.count() == 1

    def test_new_hash_counts_as_updated(self):
        store = ProductStore()
        store.bulk_upsert([UpsertOp('A', product_doc())])

        result = store.bulk_upsert([UpsertOp('A', product_doc(name='Vida M10', content_hash='b' * 64))])

        assert result.updated == 1
        product = Product.objects.get(stock_number='A')
        assert product.name == 'Vida M10'
        assert product.content_hash == 'b' * 64

    def test_on_insert_fields_only_applied_on_create(self):
        store = ProductStore()
        store.bulk_upsert([UpsertOp('A', product_doc(), {'image_url': 'https://cdn.test/a.jpg'})])
        Product.objects.filter(stock_number='A').update(image_url='https://cdn.test/manual.jpg')

        store.bulk_upsert([UpsertOp('A', product_doc(), {'image_url': None})])

        assert Product.objects.get(stock_number='A').image_url == 'https://cdn.test/manual.jpg'

    def test_rejected_document_does_not_abort_siblings(self):
        result = ProductStore().bulk_upsert([
            UpsertOp('A', product_doc()),
            UpsertOp('BAD', product_doc(raw_snapshot={'unserializable': object()})),
            UpsertOp('C', product_doc()),
        ])

        assert result.inserted == 2
        assert result.failed == 1
        assert result.errors[0]['key'] == 'BAD'
        assert set(Product.objects.values_list('stock_number', flat=True)) == {'A', 'C'}

    def test_batch_level_failure_raises_store_write_failure(self):
        with patch.object(Product.objects, 'in_bulk', side_effect=OperationalError('database is locked')):
            with pytest.raises(StoreWriteFailure, match='database is locked') as exc_info:
                ProductStore().bulk_upsert([UpsertOp('A', product_doc())])

        assert exc_info.value.details == {'batch_size': 1}
        assert Product.objects.count() == 0

    def test_get(self):
        store = ProductStore()
        store.bulk_upsert([UpsertOp('A', product_doc())])
        assert store.get('A').name == 'Vida M8'
        assert store.get('missing') is None


# ---------------------------------------------------------------------------
# CategoryStore
# ---------------------------------------------------------------------------

@pytest.mark.django_db
class TestCategoryStore:
    def category(self, code, level, parent=None, name=None):
        return UpsertOp(code, {'name': name or f'Group {code}', 'level': level, 'parent_code': parent})

    def test_tree_upsert_and_queries(self):
        store = CategoryStore()
        result = store.bulk_upsert([
            self.category('01', 1),
            self.category('0101', 2, '01'),
            self.category('0102', 2, '01'),
            self.category('010101', 3, '0101'),
        ])

        assert result.inserted == 4
        assert store.count() == 4
        assert store.count(level=2) == 2
        assert store.count(level=2, parent_code='01') == 2
        assert list(store.children_of('0101').values_list('group_code', flat=True)) == ['010101']
        assert list(store.at_level(1).values_list('group_code', flat=True)) == ['01']
        assert store.count(level=1) == 1

    def test_rename_counts_as_updated(self):
        store = CategoryStore()
        store.bulk_upsert([self.category('01', 1)])

        unchanged = store.bulk_upsert([self.category('01', 1)])
        renamed = store.bulk_upsert([self.category('01', 1, name='Hırdavat')])

        assert unchanged.unchanged == 1
        assert renamed.updated == 1
        assert Category.objects.get(group_code='01').name == 'Hırdavat'


# ---------------------------------------------------------------------------
# CursorStore
# ---------------------------------------------------------------------------

@pytest.mark.django_db
class TestCursorStore:
    def test_record_success_creates_and_updates(self):
        store = CursorStore()
        first = store.record_success('products', SyncCursor.MODE_FULL, '07748')
        second = store.record_success('products', SyncCursor.MODE_DELTA, '07748')

        assert first.pk == second.pk
        cursor = store.get('products')
        assert cursor.last_sync_mode == SyncCursor.MODE_DELTA
        assert cursor.sync_account == '07748'
        assert cursor.last_successful_sync_at is not None

    def test_get_missing_cursor(self):
        assert CursorStore().get('products') is None

    def test_lease_is_exclusive(self):
        store = CursorStore()
        token = store.acquire_lease('products', 60)

        assert token
        assert store.acquire_lease('products', 60) is None

    def test_leases_are_per_stream(self):
        store = CursorStore()
        assert store.acquire_lease('products', 60)
        assert store.acquire_lease('categories', 60)

    def test_released_lease_can_be_reacquired(self):
        store = CursorStore()
        token = store.acquire_lease('products', 60)

        assert store.release_lease('products', token) is True
        assert store.acquire_lease('products', 60) is not None

    def test_expired_lease_is_taken_over(self):
        store = CursorStore()
        stale = store.acquire_lease('products', 60)
        SyncCursor.objects.filter(key='products').update(
            lease_expires_at=timezone.now() - timedelta(seconds=1),
        )

        fresh = store.acquire_lease('products', 60)

        assert fresh is not None
        assert fresh != stale
        assert store.release_lease('products', stale) is False
        assert SyncCursor.objects.get(key='products').lease_token == fresh

    def test_lease_does_not_touch_sync_timestamp(self):
        store = CursorStore()
        store.acquire_lease('products', 60)
        assert store.get('products').last_successful_sync_at is None
