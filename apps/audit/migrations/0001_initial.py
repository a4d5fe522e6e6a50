# Generated migration for audit compliance models

import uuid

from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="ComplianceLog",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("compliance_type", models.CharField(choices=[("sequence_registration", "Sequence Range Registration"), ("sequence_allocation", "e-NCF Allocation"), ("sequence_low", "Sequence Range Running Low"), ("ecf_submission", "e-CF Submission"), ("ecf_status", "e-CF Status Change"), ("ecf_void", "e-CF Void"), ("contingency_entry", "Contingency Entry"), ("contingency_expired", "Contingency Deadline Expired")], max_length=30)),
                ("reference_id", models.CharField(db_index=True, max_length=100)),
                ("timestamp", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("description", models.TextField()),
                ("status", models.CharField(max_length=20)),
                ("evidence", models.JSONField(blank=True, default=dict)),
                ("metadata", models.JSONField(blank=True, default=dict)),
            ],
            options={
                "db_table": "audit_compliance_log",
                "ordering": ("-timestamp",),
                "indexes": [
                    models.Index(fields=["compliance_type", "-timestamp"], name="audit_cl_type_ts_idx"),
                    models.Index(fields=["status", "-timestamp"], name="audit_cl_status_ts_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="AuditAlert",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("alert_type", models.CharField(choices=[("compliance_violation", "Compliance Violation"), ("data_integrity", "Data Integrity Issue")], db_index=True, max_length=30)),
                ("severity", models.CharField(choices=[("info", "Informational"), ("warning", "Warning"), ("high", "High Priority"), ("critical", "Critical")], db_index=True, max_length=10)),
                ("title", models.CharField(max_length=200)),
                ("description", models.TextField()),
                ("reference_id", models.CharField(blank=True, db_index=True, max_length=100)),
                ("status", models.CharField(choices=[("active", "Active"), ("acknowledged", "Acknowledged"), ("resolved", "Resolved")], db_index=True, default="active", max_length=20)),
                ("created_at", models.DateTimeField(auto_now_add=True, db_index=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("resolved_at", models.DateTimeField(blank=True, null=True)),
                ("evidence", models.JSONField(blank=True, default=dict)),
            ],
            options={
                "db_table": "audit_alert",
                "ordering": ("-created_at",),
                "indexes": [
                    models.Index(fields=["alert_type", "-created_at"], name="audit_alert_type_idx"),
                    models.Index(fields=["severity", "status", "-created_at"], name="audit_alert_sev_status_idx"),
                ],
            },
        ),
    ]
