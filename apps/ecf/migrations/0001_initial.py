# Generated migration for e-CF compliance models

import uuid
from decimal import Decimal

import django.db.models.deletion
import django.utils.timezone
from django.db import migrations, models

DOCUMENT_TYPE_CHOICES = [
    ("credit-fiscal", "E31 Credit Fiscal"),
    ("consumption", "E32 Consumption"),
    ("debit-note", "E33 Debit Note"),
    ("credit-note", "E34 Credit Note"),
    ("purchases", "E41 Purchases"),
    ("minor-expense", "E43 Minor Expense"),
    ("special-regime", "E44 Special Regime"),
    ("government", "E45 Government"),
    ("export", "E46 Export"),
    ("foreign-payment", "E47 Foreign Payment"),
]

STATUS_CHOICES = [
    ("draft", "Draft"),
    ("processing", "Processing"),
    ("sent", "Sent"),
    ("contingency", "Contingency"),
    ("accepted", "Accepted"),
    ("conditional", "Conditional"),
    ("rejected", "Rejected"),
    ("error", "Error"),
    ("voided", "Voided"),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Company",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(max_length=255)),
                ("rnc", models.CharField(max_length=11, unique=True)),
                ("dgii_environment", models.CharField(choices=[("testecf", "Test"), ("certecf", "Certification"), ("ecf", "Production")], default="testecf", max_length=10)),
                ("is_active", models.BooleanField(default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "db_table": "ecf_company",
                "verbose_name_plural": "Companies",
            },
        ),
        migrations.CreateModel(
            name="SequenceRange",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("document_type", models.CharField(choices=DOCUMENT_TYPE_CHOICES, max_length=20)),
                ("start", models.PositiveBigIntegerField()),
                ("end", models.PositiveBigIntegerField()),
                ("current_number", models.PositiveBigIntegerField()),
                ("expires_at", models.DateTimeField()),
                ("is_active", models.BooleanField(default=True)),
                ("version", models.PositiveIntegerField(default=0)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("deactivated_at", models.DateTimeField(blank=True, null=True)),
                ("company", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="sequence_ranges", to="ecf.company")),
            ],
            options={
                "db_table": "ecf_sequence_range",
                "ordering": ["company_id", "document_type", "start"],
                "indexes": [
                    models.Index(fields=["company", "document_type", "is_active"], name="ecf_range_key_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(start__gte=1), name="ecf_range_start_positive"),
                    models.CheckConstraint(condition=models.Q(start__lte=models.F("end")), name="ecf_range_bounds"),
                    models.CheckConstraint(
                        condition=models.Q(current_number__gte=models.F("start")) & models.Q(current_number__lte=models.F("end") + 1),
                        name="ecf_range_current_within_bounds",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="SequenceLock",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("document_type", models.CharField(choices=DOCUMENT_TYPE_CHOICES, max_length=20)),
                ("company", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="sequence_locks", to="ecf.company")),
            ],
            options={
                "db_table": "ecf_sequence_lock",
                "constraints": [
                    models.UniqueConstraint(fields=["company", "document_type"], name="ecf_unique_sequence_lock"),
                ],
            },
        ),
        migrations.CreateModel(
            name="Invoice",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("document_type", models.CharField(choices=DOCUMENT_TYPE_CHOICES, max_length=20)),
                ("document_number", models.CharField(blank=True, max_length=13, null=True)),
                ("idempotency_key", models.CharField(blank=True, max_length=100, null=True)),
                ("buyer_name", models.CharField(blank=True, max_length=255)),
                ("buyer_rnc", models.CharField(blank=True, max_length=11)),
                ("currency", models.CharField(default="DOP", max_length=3)),
                ("exchange_rate", models.DecimalField(blank=True, decimal_places=4, max_digits=18, null=True)),
                ("subtotal", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=18)),
                ("discount_total", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=18)),
                ("tax_total", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=18)),
                ("total", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=18)),
                ("declared_total", models.DecimalField(blank=True, decimal_places=2, max_digits=18, null=True)),
                ("requires_conditional", models.BooleanField(default=False)),
                ("reference_document_number", models.CharField(blank=True, max_length=19)),
                ("reference_issue_date", models.DateField(blank=True, null=True)),
                ("modification_code", models.PositiveSmallIntegerField(blank=True, null=True)),
                ("tax_refundable", models.BooleanField(default=False)),
                ("status", models.CharField(choices=STATUS_CHOICES, db_index=True, default="draft", max_length=20)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("status_changed_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("signed_document", models.TextField(blank=True)),
                ("track_id", models.CharField(blank=True, db_index=True, max_length=100)),
                ("dgii_message", models.TextField(blank=True)),
                ("security_code", models.CharField(blank=True, max_length=6)),
                ("sent_at", models.DateTimeField(blank=True, null=True)),
                ("dgii_response_at", models.DateTimeField(blank=True, null=True)),
                ("poll_attempts", models.PositiveIntegerField(default=0)),
                ("next_poll_at", models.DateTimeField(blank=True, null=True)),
                ("voided_at", models.DateTimeField(blank=True, null=True)),
                ("void_reason", models.TextField(blank=True)),
                ("company", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="invoices", to="ecf.company")),
                ("sequence_range", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name="invoices", to="ecf.sequencerange")),
            ],
            options={
                "db_table": "ecf_invoice",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(condition=models.Q(status="sent"), fields=["status", "next_poll_at"], name="ecf_invoice_poll_idx"),
                    models.Index(fields=["company", "status"], name="ecf_invoice_company_status_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(fields=["company", "document_number"], name="ecf_unique_document_number"),
                    models.UniqueConstraint(condition=models.Q(idempotency_key__isnull=False), fields=["company", "idempotency_key"], name="ecf_unique_idempotency_key"),
                ],
            },
        ),
        migrations.CreateModel(
            name="InvoiceLine",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("line_number", models.PositiveIntegerField()),
                ("description", models.CharField(max_length=1000)),
                ("quantity", models.DecimalField(decimal_places=4, max_digits=18)),
                ("unit_price", models.DecimalField(decimal_places=4, max_digits=18)),
                ("tax_rate", models.DecimalField(decimal_places=2, max_digits=5)),
                ("discount", models.DecimalField(decimal_places=2, default=Decimal("0.00"), max_digits=18)),
                ("net_amount", models.DecimalField(decimal_places=2, max_digits=18)),
                ("tax_amount", models.DecimalField(decimal_places=2, max_digits=18)),
                ("line_total", models.DecimalField(decimal_places=2, max_digits=18)),
                ("declared_total", models.DecimalField(blank=True, decimal_places=2, max_digits=18, null=True)),
                ("invoice", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="lines", to="ecf.invoice")),
            ],
            options={
                "db_table": "ecf_invoice_line",
                "ordering": ["invoice", "line_number"],
                "constraints": [
                    models.UniqueConstraint(fields=["invoice", "line_number"], name="ecf_unique_line_number"),
                ],
            },
        ),
        migrations.CreateModel(
            name="InvoiceTransition",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("from_status", models.CharField(choices=STATUS_CHOICES, max_length=20)),
                ("to_status", models.CharField(choices=STATUS_CHOICES, max_length=20)),
                ("reason", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("invoice", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="transitions", to="ecf.invoice")),
            ],
            options={
                "db_table": "ecf_invoice_transition",
                "ordering": ["created_at", "id"],
            },
        ),
        migrations.CreateModel(
            name="ContingencyRecord",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("entered_at", models.DateTimeField()),
                ("deadline", models.DateTimeField(db_index=True)),
                ("attempts", models.PositiveIntegerField(default=0)),
                ("last_attempt_at", models.DateTimeField(blank=True, null=True)),
                ("last_error", models.TextField(blank=True)),
                ("escalated_at", models.DateTimeField(blank=True, null=True)),
                ("invoice", models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name="contingency", to="ecf.invoice")),
            ],
            options={
                "db_table": "ecf_contingency_record",
                "ordering": ["deadline"],
            },
        ),
    ]
