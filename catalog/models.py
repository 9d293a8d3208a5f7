from django.core.serializers.json import DjangoJSONEncoder
from django.db import models


class Product(models.Model):
    stock_number = models.CharField(max_length=64, unique=True)
    name = models.CharField(max_length=255, blank=True, default='')
    category_name = models.CharField(max_length=255, blank=True, default='', db_index=True)

    # tier1..tier15 -> amount; price_list in local currency, original in `currency`
    price_list = models.JSONField(default=dict)
    original_price_list = models.JSONField(default=dict)
    currency = models.CharField(max_length=8, default='TRY')

    stock_balance = models.FloatField(default=0)
    unit = models.CharField(max_length=32, default='ADET')
    vat_rate = models.FloatField(default=18)
    product_type = models.CharField(max_length=64, blank=True, default='')
    main_group = models.CharField(max_length=64, blank=True, default='')
    sub_group = models.CharField(max_length=64, blank=True, default='')
    sub_group2 = models.CharField(max_length=64, blank=True, default='')
    active = models.BooleanField(default=True)

    content_hash = models.CharField(max_length=64, blank=True, default='')
    synced_at = models.DateTimeField(null=True, blank=True)
    raw_snapshot = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)

    # Owned by the image enrichment job; only initialised on first insert.
    image_url = models.CharField(max_length=500, null=True, blank=True)
    image_source = models.CharField(
        max_length=16, null=True, blank=True,
        choices=[('woocommerce', 'WooCommerce'), ('manual', 'Manual')],
    )
    image_synced_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.stock_number} {self.name} (hash={self.content_hash[:8]}...)"


class Category(models.Model):
    LEVEL_CHOICES = [(1, 'Main group'), (2, 'Sub group'), (3, 'Sub group 2')]

    group_code = models.CharField(max_length=64, unique=True)
    name = models.CharField(max_length=255, db_index=True)
    level = models.PositiveSmallIntegerField(choices=LEVEL_CHOICES, default=1)
    parent_code = models.CharField(max_length=64, null=True, blank=True, db_index=True)
    active = models.BooleanField(default=True)
    synced_at = models.DateTimeField(null=True, blank=True)
    raw_snapshot = models.JSONField(default=dict, blank=True, encoder=DjangoJSONEncoder)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name_plural = 'categories'

    def __str__(self):
        return f"{self.group_code} {self.name} (level {self.level})"


class SyncCursor(models.Model):
    MODE_FULL = 'full'
    MODE_DELTA = 'delta'
    MODE_CHOICES = [(MODE_FULL, 'Full'), (MODE_DELTA, 'Delta')]

    key = models.CharField(max_length=64, unique=True)
    last_successful_sync_at = models.DateTimeField(null=True, blank=True)
    last_sync_mode = models.CharField(max_length=8, choices=MODE_CHOICES, blank=True, default='')
    sync_account = models.CharField(max_length=32, blank=True, default='')

    # Run lease: at most one holder while lease_expires_at is in the future.
    lease_token = models.CharField(max_length=64, null=True, blank=True)
    lease_expires_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.key} (last={self.last_successful_sync_at}, mode={self.last_sync_mode})"
