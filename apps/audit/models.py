"""
Audit models for the e-CF compliance core.
Compliance logs for DGII-relevant actions and alerts for regulatory breaches.
"""

import uuid
from typing import ClassVar

from django.db import models


class ComplianceLog(models.Model):
    """Log compliance-related activities for DGII regulations."""

    COMPLIANCE_TYPE_CHOICES: ClassVar[tuple[tuple[str, str], ...]] = (
        ("sequence_registration", "Sequence Range Registration"),
        ("sequence_allocation", "e-NCF Allocation"),
        ("sequence_low", "Sequence Range Running Low"),
        ("sequence_annulment", "e-NCF Range Annulment"),
        ("ecf_submission", "e-CF Submission"),
        ("ecf_status", "e-CF Status Change"),
        ("ecf_void", "e-CF Void"),
        ("contingency_entry", "Contingency Entry"),
        ("contingency_expired", "Contingency Deadline Expired"),
    )

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # Compliance details
    compliance_type = models.CharField(max_length=30, choices=COMPLIANCE_TYPE_CHOICES)
    reference_id = models.CharField(max_length=100, db_index=True)  # e-NCF, range or invoice id

    timestamp = models.DateTimeField(auto_now_add=True, db_index=True)

    # What happened
    description = models.TextField()
    status = models.CharField(max_length=20)  # success, failed, pending, warning

    # Evidence and metadata
    evidence = models.JSONField(default=dict, blank=True)
    metadata = models.JSONField(default=dict, blank=True)

    class Meta:
        db_table = "audit_compliance_log"
        ordering: ClassVar[tuple[str, ...]] = ("-timestamp",)
        indexes: ClassVar[tuple[models.Index, ...]] = (
            models.Index(fields=["compliance_type", "-timestamp"], name="audit_cl_type_ts_idx"),
            models.Index(fields=["status", "-timestamp"], name="audit_cl_status_ts_idx"),
        )

    def __str__(self) -> str:
        return f"{self.compliance_type}: {self.reference_id}"


class AuditAlert(models.Model):
    """Track compliance alerts that need manual reconciliation."""

    ALERT_TYPE_CHOICES: ClassVar[tuple[tuple[str, str], ...]] = (
        ("compliance_violation", "Compliance Violation"),
        ("data_integrity", "Data Integrity Issue"),
    )

    SEVERITY_CHOICES: ClassVar[tuple[tuple[str, str], ...]] = (
        ("info", "Informational"),
        ("warning", "Warning"),
        ("high", "High Priority"),
        ("critical", "Critical"),
    )

    STATUS_CHOICES: ClassVar[tuple[tuple[str, str], ...]] = (
        ("active", "Active"),
        ("acknowledged", "Acknowledged"),
        ("resolved", "Resolved"),
    )

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)

    # Alert details
    alert_type = models.CharField(max_length=30, choices=ALERT_TYPE_CHOICES, db_index=True)
    severity = models.CharField(max_length=10, choices=SEVERITY_CHOICES, db_index=True)
    title = models.CharField(max_length=200)
    description = models.TextField()
    reference_id = models.CharField(max_length=100, blank=True, db_index=True)

    # Status tracking
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default="active", db_index=True)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    updated_at = models.DateTimeField(auto_now=True)
    resolved_at = models.DateTimeField(null=True, blank=True)

    evidence = models.JSONField(default=dict, blank=True)

    class Meta:
        db_table = "audit_alert"
        ordering: ClassVar[tuple[str, ...]] = ("-created_at",)
        indexes: ClassVar[tuple[models.Index, ...]] = (
            models.Index(fields=["alert_type", "-created_at"], name="audit_alert_type_idx"),
            models.Index(fields=["severity", "status", "-created_at"], name="audit_alert_sev_status_idx"),
        )

    def __str__(self) -> str:
        return f"[{self.severity}] {self.title}"
