import django.core.serializers.json
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='Product',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('stock_number', models.CharField(max_length=64, unique=True)),
                ('name', models.CharField(blank=True, default='', max_length=255)),
                ('category_name', models.CharField(blank=True, db_index=True, default='', max_length=255)),
                ('price_list', models.JSONField(default=dict)),
                ('original_price_list', models.JSONField(default=dict)),
                ('currency', models.CharField(default='TRY', max_length=8)),
                ('stock_balance', models.FloatField(default=0)),
                ('unit', models.CharField(default='ADET', max_length=32)),
                ('vat_rate', models.FloatField(default=18)),
                ('product_type', models.CharField(blank=True, default='', max_length=64)),
                ('main_group', models.CharField(blank=True, default='', max_length=64)),
                ('sub_group', models.CharField(blank=True, default='', max_length=64)),
                ('sub_group2', models.CharField(blank=True, default='', max_length=64)),
                ('active', models.BooleanField(default=True)),
                ('content_hash', models.CharField(blank=True, default='', max_length=64)),
                ('synced_at', models.DateTimeField(blank=True, null=True)),
                ('raw_snapshot', models.JSONField(blank=True, default=dict, encoder=django.core.serializers.json.DjangoJSONEncoder)),
                ('image_url', models.CharField(blank=True, max_length=500, null=True)),
                ('image_source', models.CharField(blank=True, choices=[('woocommerce', 'WooCommerce'), ('manual', 'Manual')], max_length=16, null=True)),
                ('image_synced_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
        ),
        migrations.CreateModel(
            name='Category',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('group_code', models.CharField(max_length=64, unique=True)),
                ('name', models.CharField(db_index=True, max_length=255)),
                ('level', models.PositiveSmallIntegerField(choices=[(1, 'Main group'), (2, 'Sub group'), (3, 'Sub group 2')], default=1)),
                ('parent_code', models.CharField(blank=True, db_index=True, max_length=64, null=True)),
                ('active', models.BooleanField(default=True)),
                ('synced_at', models.DateTimeField(blank=True, null=True)),
                ('raw_snapshot', models.JSONField(blank=True, default=dict, encoder=django.core.serializers.json.DjangoJSONEncoder)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name_plural': 'categories',
            },
        ),
        migrations.CreateModel(
            name='SyncCursor',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('key', models.CharField(max_length=64, unique=True)),
                ('last_successful_sync_at', models.DateTimeField(blank=True, null=True)),
                ('last_sync_mode', models.CharField(blank=True, choices=[('full', 'Full'), ('delta', 'Delta')], default='', max_length=8)),
                ('sync_account', models.CharField(blank=True, default='', max_length=32)),
                ('lease_token', models.CharField(blank=True, max_length=64, null=True)),
                ('lease_expires_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
        ),
    ]
