"""
Tests for the e-CF health endpoint.
"""

from datetime import timedelta

from django.test import TestCase
from django.utils import timezone
from rest_framework.test import APIClient

from apps.ecf.models import InvoiceStatus
from tests.factories.ecf_factories import create_company, create_contingency, create_invoice


class HealthCheckTestCase(TestCase):
    """Test GET /api/ecf/health/"""

    def setUp(self):
        self.api = APIClient()
        self.company = create_company()

    def test_healthy(self):
        """Test 200 with no breaches"""
        invoice = create_invoice(self.company, status=InvoiceStatus.CONTINGENCY)
        create_contingency(invoice, timezone.now() - timedelta(hours=1))

        response = self.api.get("/api/ecf/health/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "healthy")
        self.assertEqual(response.json()["contingency"]["pending"], 1)
        self.assertIn("X-Request-ID", response)

    def test_degraded_when_deadline_missed(self):
        """Test 503 once a contingency invoice is past 72h"""
        invoice = create_invoice(self.company, status=InvoiceStatus.CONTINGENCY)
        create_contingency(invoice, timezone.now() - timedelta(hours=72, minutes=1))

        response = self.api.get("/api/ecf/health/")

        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json()["status"], "degraded")
        self.assertEqual(response.json()["contingency"]["expired"], 1)
