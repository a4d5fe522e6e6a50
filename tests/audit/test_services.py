# ===============================================================================
# AUDIT SERVICE TESTS
# ===============================================================================
import uuid
from datetime import datetime
from datetime import timezone as dt_timezone
from decimal import Decimal
from unittest.mock import patch

from django.db import DatabaseError
from django.test import TestCase

from apps.audit.models import AuditAlert, ComplianceLog
from apps.audit.services import AuditService, ComplianceEventRequest, serialize_metadata


class SerializeMetadataTestCase(TestCase):
    """Test evidence serialization"""

    def test_serializes_domain_types(self):
        """Test UUID, datetime and Decimal become JSON-safe strings"""
        value = uuid.uuid4()
        when = datetime(2026, 5, 4, 10, 0, tzinfo=dt_timezone.utc)

        data = serialize_metadata({"id": value, "at": when, "total": Decimal("118.00")})

        self.assertEqual(data, {"id": str(value), "at": "2026-05-04T10:00:00+00:00", "total": "118.00"})

    def test_empty(self):
        self.assertEqual(serialize_metadata({}), {})


class ComplianceLogTestCase(TestCase):
    """Test compliance event logging"""

    def test_log_compliance_event(self):
        """Test an event is stored with its evidence"""
        log = AuditService.log_compliance_event(
            ComplianceEventRequest(
                compliance_type="ecf_submission",
                reference_id="E310000000001",
                description="e-CF sent",
                evidence={"total": Decimal("118.00")},
            )
        )

        stored = ComplianceLog.objects.get(pk=log.pk)
        self.assertEqual(stored.status, "success")
        self.assertEqual(stored.evidence, {"total": "118.00"})

    def test_failure_propagates(self):
        """Test storage errors are raised, not swallowed"""
        with patch.object(ComplianceLog.objects, "create", side_effect=DatabaseError("down")):
            with self.assertRaises(DatabaseError):
                AuditService.log_compliance_event(
                    ComplianceEventRequest(compliance_type="ecf_void", reference_id="x", description="x")
                )


class AuditAlertTestCase(TestCase):
    """Test alert raising"""

    def test_raise_alert_reuses_active_alert(self):
        """Test the same active alert is not duplicated"""
        first = AuditService.raise_alert(title="Deadline missed", description="x", reference_id="E310000000001")
        second = AuditService.raise_alert(title="Deadline missed", description="x", reference_id="E310000000001")

        self.assertEqual(first.pk, second.pk)
        self.assertEqual(AuditAlert.objects.count(), 1)
        self.assertEqual(first.severity, "critical")

    def test_resolved_alert_allows_new_one(self):
        """Test a new alert opens after the previous one was resolved"""
        first = AuditService.raise_alert(title="Deadline missed", description="x", reference_id="E310000000001")
        first.status = "resolved"
        first.save()

        second = AuditService.raise_alert(title="Deadline missed", description="x", reference_id="E310000000001")

        self.assertNotEqual(first.pk, second.pk)
