# ===============================================================================
# e-CF MANAGEMENT COMMAND TESTS
# ===============================================================================
from datetime import timedelta
from io import StringIO

from django.core.management import call_command
from django.test import TestCase
from django.utils import timezone

from apps.ecf.models import ContingencyRecord, InvoiceStatus
from tests.factories.ecf_factories import create_company, create_contingency, create_invoice


class ScanContingencyCommandTestCase(TestCase):
    """Test the scan_contingency command"""

    def setUp(self):
        self.company = create_company()

    def test_escalates_expired_records(self):
        """Test overdue contingency invoices are escalated and reported"""
        invoice = create_invoice(self.company, status=InvoiceStatus.CONTINGENCY)
        create_contingency(invoice, timezone.now() - timedelta(hours=73))
        out = StringIO()

        call_command("scan_contingency", stdout=out)

        invoice.refresh_from_db()
        self.assertEqual(invoice.status, InvoiceStatus.ERROR)
        self.assertIn("E310000000001", out.getvalue())
        self.assertIn("Contingency breaches", out.getvalue())

    def test_summary_only_does_not_escalate(self):
        """Test --summary-only leaves records untouched"""
        invoice = create_invoice(self.company, status=InvoiceStatus.CONTINGENCY)
        create_contingency(invoice, timezone.now() - timedelta(hours=73))
        out = StringIO()

        call_command("scan_contingency", "--summary-only", stdout=out)

        invoice.refresh_from_db()
        self.assertEqual(invoice.status, InvoiceStatus.CONTINGENCY)
        self.assertIsNone(ContingencyRecord.objects.get(invoice=invoice).escalated_at)
        self.assertIn("expired=1", out.getvalue())

    def test_healthy(self):
        """Test a clean run reports OK"""
        invoice = create_invoice(self.company, status=InvoiceStatus.CONTINGENCY)
        create_contingency(invoice, timezone.now() - timedelta(hours=1))
        out = StringIO()

        call_command("scan_contingency", stdout=out)

        self.assertIn("Contingency OK: pending=1", out.getvalue())
