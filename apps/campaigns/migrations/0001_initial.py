# Generated manually for campaigns app

import uuid
from decimal import Decimal
from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import migrations, models
import django.db.models.deletion


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('products', '0001_initial'),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='Campaign',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('anchor_longitude', models.FloatField()),
                ('anchor_latitude', models.FloatField()),
                ('target_quantity', models.PositiveIntegerField(validators=[MinValueValidator(1)])),
                ('start_date', models.DateTimeField()),
                ('end_date', models.DateTimeField()),
                ('status', models.CharField(choices=[('waiting_payment', 'Waiting Payment'), ('started', 'Started'), ('completed', 'Completed'), ('cancelled', 'Cancelled'), ('ended_without_purchase', 'Ended without purchase')], default='waiting_payment', max_length=30)),
                ('completed_at', models.DateTimeField(blank=True, null=True)),
                ('cancelled_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('product', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='campaigns', to='products.product')),
            ],
            options={
                'db_table': 'campaigns',
                'ordering': ['-start_date'],
                'indexes': [
                    models.Index(fields=['product', 'status'], name='campaigns_product_5d2e7c_idx'),
                    models.Index(fields=['status', 'end_date'], name='campaigns_status_9a41b0_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='Commitment',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('quantity', models.PositiveIntegerField(validators=[MinValueValidator(1)])),
                ('amount', models.DecimalField(decimal_places=2, max_digits=12, validators=[MinValueValidator(Decimal('0.01'))])),
                ('status', models.CharField(choices=[('waiting_payment', 'Waiting payment'), ('pending', 'Pending'), ('completed', 'Completed'), ('cancelled', 'Cancelled'), ('ended_without_purchase', 'Ended without purchase')], default='waiting_payment', max_length=30)),
                ('payment_method', models.CharField(choices=[('credit_card', 'Credit Card'), ('cash', 'Cash'), ('paypal', 'Paypal')], default='credit_card', max_length=20)),
                ('is_initiator', models.BooleanField(default=False)),
                ('payment_session_id', models.CharField(blank=True, max_length=255)),
                ('payment_reference', models.CharField(blank=True, max_length=255)),
                ('paid_at', models.DateTimeField(blank=True, null=True)),
                ('refund_id', models.CharField(blank=True, max_length=255)),
                ('refund_status', models.CharField(blank=True, max_length=30)),
                ('cancellation_reason', models.TextField(blank=True)),
                ('cancelled_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('campaign', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='commitments', to='campaigns.campaign')),
                ('customer', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='commitments', to=settings.AUTH_USER_MODEL)),
                ('product', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='commitments', to='products.product')),
            ],
            options={
                'db_table': 'commitments',
                'ordering': ['created_at'],
                'indexes': [
                    models.Index(fields=['campaign', 'status'], name='commitments_campaig_1c8f3e_idx'),
                    models.Index(fields=['customer', 'status'], name='commitments_custome_7b2a90_idx'),
                    models.Index(fields=['status', 'created_at'], name='commitments_status_4e6d15_idx'),
                ],
            },
        ),
    ]
