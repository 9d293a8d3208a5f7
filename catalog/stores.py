"""
Persistence boundary of the sync engine.

``ProductStore`` and ``CategoryStore`` expose one write primitive,
``bulk_upsert``, with unordered semantics: every operation runs in its own
savepoint, so a document the database rejects is recorded and skipped while
its siblings still land. Anything that breaks the batch as a whole (lost
connection, missing table, ...) is raised as ``StoreWriteFailure``.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import NamedTuple, Optional

from django.core.exceptions import ValidationError
from django.db import DatabaseError, DataError, IntegrityError, transaction
from django.db.models import Q
from django.utils import timezone

from .exceptions import StoreWriteFailure
from .models import Category, Product, SyncCursor

logger = logging.getLogger(__name__)

DOCUMENT_ERRORS = (IntegrityError, DataError, ValidationError, ValueError, TypeError)


class UpsertOp(NamedTuple):
    key: str
    document: dict
    on_insert: Optional[dict] = None   # extra fields written only when the row is created


@dataclass
class BulkWriteResult:
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    errors: list = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.errors)

    def merge(self, other: 'BulkWriteResult') -> 'BulkWriteResult':
        self.inserted += other.inserted
        self.updated += other.updated
        self.unchanged += other.unchanged
        self.errors.extend(other.errors)
        return self


class UpsertStore:
    """
    Insert-or-replace by a unique key.

    ``updated`` only counts existing rows where one of ``change_fields``
    differs; rows that match are still rewritten and counted as
    ``unchanged``.
    """

    model = None
    key_field = None
    change_fields = ()

    def bulk_upsert(self, ops: list[UpsertOp]) -> BulkWriteResult:
        result = BulkWriteResult()
        if not ops:
            return result

        try:
            existing = self.model.objects.in_bulk(
                [op.key for op in ops], field_name=self.key_field,
            )
            for op in ops:
                self._apply(op, existing, result)
        except DatabaseError as exc:
            raise StoreWriteFailure(
                f"{self.model.__name__} batch write failed: {exc}",
                details={'batch_size': len(ops)},
            ) from exc
        return result

    def _apply(self, op: UpsertOp, existing: dict, result: BulkWriteResult):
        current = existing.get(op.key)
        try:
            with transaction.atomic():
                if current is None:
                    fields = {**(op.on_insert or {}), **op.document, self.key_field: op.key}
                    obj = self.model(**fields)
                    obj.save(force_insert=True)
                    existing[op.key] = obj
                    result.inserted += 1
                    return

                changed = any(
                    getattr(current, name) != op.document[name]
                    for name in self.change_fields if name in op.document
                )
                for name, value in op.document.items():
                    setattr(current, name, value)
                current.save(update_fields=[*op.document, 'updated_at'])
                if changed:
                    result.updated += 1
                else:
                    result.unchanged += 1
        except DOCUMENT_ERRORS as exc:
            logger.warning("%s %s rejected: %s", self.model.__name__, op.key, exc)
            result.errors.append({'key': op.key, 'error': str(exc)})


class ProductStore(UpsertStore):
    model = Product
    key_field = 'stock_number'
    change_fields = ('content_hash',)

    def get(self, stock_number: str) -> Optional[Product]:
        return Product.objects.filter(stock_number=stock_number).first()


class CategoryStore(UpsertStore):
    model = Category
    key_field = 'group_code'
    change_fields = ('name', 'level', 'parent_code')

    def at_level(self, level: int):
        return Category.objects.filter(level=level)

    def children_of(self, group_code: str):
        return Category.objects.filter(parent_code=group_code)

    def count(self, level: Optional[int] = None, parent_code: Optional[str] = None) -> int:
        qs = Category.objects.all()
        if level is not None:
            qs = qs.filter(level=level)
        if parent_code is not None:
            qs = qs.filter(parent_code=parent_code)
        return qs.count()


class CursorStore:
    """Sync cursors and the run lease that guards each sync stream."""

    def get(self, key: str) -> Optional[SyncCursor]:
        return SyncCursor.objects.filter(key=key).first()

    def record_success(self, key: str, mode: str, account: str = '', at=None) -> SyncCursor:
        cursor, _ = SyncCursor.objects.update_or_create(
            key=key,
            defaults={
                'last_successful_sync_at': at or timezone.now(),
                'last_sync_mode': mode,
                'sync_account': account,
            },
        )
        return cursor

    def acquire_lease(self, key: str, ttl_seconds: float) -> Optional[str]:
        """
        Claim the run lease for ``key``.

        Returns the lease token, or None while another unexpired lease is held.
        An expired lease (crashed worker) is taken over.
        """
        SyncCursor.objects.get_or_create(key=key)
        now = timezone.now()
        token = uuid.uuid4().hex
        claimed = (
            SyncCursor.objects
            .filter(key=key)
            .filter(Q(lease_token__isnull=True) | Q(lease_expires_at__lte=now))
            .update(lease_token=token, lease_expires_at=now + timedelta(seconds=ttl_seconds))
        )
        if not claimed:
            return None
        return token

    def release_lease(self, key: str, token: str) -> bool:
        released = (
            SyncCursor.objects
            .filter(key=key, lease_token=token)
            .update(lease_token=None, lease_expires_at=None)
        )
        if not released:
            logger.warning("Lease %s on %s was no longer held at release.", token[:8], key)
        return bool(released)
