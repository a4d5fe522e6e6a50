# Generated migration for sequence range annulments

import django.db.models.deletion
from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ("ecf", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="SequenceAnnulment",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "document_type",
                    models.CharField(
                        choices=[
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
                        ],
                        max_length=20,
                    ),
                ),
                ("number_from", models.PositiveBigIntegerField()),
                ("number_to", models.PositiveBigIntegerField()),
                ("encf_from", models.CharField(max_length=13)),
                ("encf_to", models.CharField(max_length=13)),
                ("reason", models.TextField(blank=True)),
                (
                    "status",
                    models.CharField(
                        choices=[("pending", "Pending"), ("sent", "Sent"), ("error", "Error")],
                        db_index=True,
                        default="pending",
                        max_length=10,
                    ),
                ),
                ("dgii_message", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("sent_at", models.DateTimeField(blank=True, null=True)),
                ("company", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="sequence_annulments", to="ecf.company")),
                ("sequence_range", models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name="annulments", to="ecf.sequencerange")),
            ],
            options={
                "db_table": "ecf_sequence_annulment",
                "ordering": ["created_at"],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(number_from__lte=models.F("number_to")), name="ecf_annulment_bounds"),
                ],
            },
        ),
    ]
