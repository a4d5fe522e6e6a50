# ===============================================================================
# e-CF INVOICE SERVICE TESTS
# ===============================================================================
from datetime import timedelta
from unittest.mock import Mock, patch

from django.db import DatabaseError
from django.test import TestCase
from django.utils import timezone

from apps.audit.models import AuditAlert, ComplianceLog
from apps.ecf.constants import DGIIStatusCode, DocumentType
from apps.ecf.exceptions import (
    InvalidTransition,
    InvoiceNotFound,
    LifecycleError,
    NoActiveRange,
    TransportRejected,
    TransportUnreachable,
)
from apps.ecf.gateways import StatusReport, SubmissionReceipt
from apps.ecf.models import AnnulmentStatus, ContingencyRecord, Invoice, InvoiceStatus, SequenceAnnulment, SequenceRange
from apps.ecf.service import MAX_POLL_ATTEMPTS, InvoiceService
from apps.ecf.validator import LineItemInput
from tests.factories.ecf_factories import (
    create_company,
    create_contingency,
    create_invoice,
    create_range,
    credit_fiscal_proposal,
)


class InvoiceServiceTestMixin:
    def setUp(self):
        self.company = create_company()
        self.sequence_range = create_range(self.company, DocumentType.CREDIT_FISCAL, start=1, end=100)
        self.transport = Mock()
        self.transport.submit.return_value = SubmissionReceipt(track_id="TRK-1")
        self.poller = Mock()
        self.service = InvoiceService(transport=self.transport, poller=self.poller)


class CreateInvoiceTestCase(InvoiceServiceTestMixin, TestCase):
    """Test create, number and submit"""

    def test_create_and_submit(self):
        """Test a valid proposal is numbered, signed and sent"""
        result = self.service.create_invoice(credit_fiscal_proposal(self.company))

        self.assertTrue(result.is_ok())
        invoice = result.unwrap()
        self.assertEqual(invoice.status, InvoiceStatus.SENT.value)
        self.assertEqual(invoice.document_number, "E310000000001")
        self.assertEqual(invoice.track_id, "TRK-1")
        self.assertEqual(len(invoice.security_code), 6)
        self.assertIsNotNone(invoice.next_poll_at)
        self.assertEqual(invoice.lines.count(), 1)
        self.assertEqual(str(invoice.total), "118.00")
        self.assertEqual(
            list(invoice.transitions.values_list("to_status", flat=True)),
            [InvoiceStatus.PROCESSING.value, InvoiceStatus.SENT.value],
        )
        self.transport.submit.assert_called_once()

    def test_create_without_submit(self):
        """Test submission can be deferred"""
        invoice = self.service.create_invoice(credit_fiscal_proposal(self.company), submit=False).unwrap()

        self.assertEqual(invoice.status, InvoiceStatus.PROCESSING.value)
        self.transport.submit.assert_not_called()

    def test_idempotency_key_returns_existing_invoice(self):
        """Test a retried request gets the same invoice and number"""
        first = self.service.create_invoice(credit_fiscal_proposal(self.company), idempotency_key="order-1").unwrap()
        second = self.service.create_invoice(credit_fiscal_proposal(self.company), idempotency_key="order-1").unwrap()

        self.assertEqual(first.pk, second.pk)
        self.assertEqual(Invoice.objects.count(), 1)
        self.sequence_range.refresh_from_db()
        self.assertEqual(self.sequence_range.current_number, 2)
        self.transport.submit.assert_called_once()

    def test_validation_failure_consumes_no_number(self):
        """Test an invalid proposal never touches the range"""
        proposal = credit_fiscal_proposal(self.company, lines=[LineItemInput("Hosting", 1, "10.00", 15)])

        result = self.service.create_invoice(proposal)

        self.assertEqual(result.unwrap_err().code, "invalid_tax_rate")
        self.sequence_range.refresh_from_db()
        self.assertEqual(self.sequence_range.current_number, 1)
        self.assertFalse(Invoice.objects.exists())

    def test_no_range_returns_error(self):
        """Test a missing range is reported, not raised"""
        proposal = credit_fiscal_proposal(
            self.company, document_type=DocumentType.CONSUMPTION, buyer_rnc=None, buyer_name=""
        )

        result = self.service.create_invoice(proposal)

        self.assertIsInstance(result.unwrap_err(), NoActiveRange)
        self.assertFalse(Invoice.objects.exists())

    def test_failed_creation_rolls_back_number(self):
        """Test a database failure after allocation leaves no gap"""
        with (
            patch.object(InvoiceService, "_create_invoice_record", side_effect=DatabaseError("insert failed")),
            self.assertRaises(DatabaseError),
        ):
            self.service.create_invoice(credit_fiscal_proposal(self.company))

        self.sequence_range.refresh_from_db()
        self.assertEqual(self.sequence_range.current_number, 1)
        invoice = self.service.create_invoice(credit_fiscal_proposal(self.company)).unwrap()
        self.assertEqual(invoice.document_number, "E310000000001")

    def test_unreachable_dgii_enters_contingency(self):
        """Test a transport outage keeps the number and starts the 72h window"""
        self.transport.submit.side_effect = TransportUnreachable("timeout")

        invoice = self.service.create_invoice(credit_fiscal_proposal(self.company)).unwrap()

        self.assertEqual(invoice.status, InvoiceStatus.CONTINGENCY.value)
        self.assertEqual(invoice.document_number, "E310000000001")
        self.assertTrue(invoice.signed_document)
        record = ContingencyRecord.objects.get(invoice=invoice)
        self.assertEqual(record.deadline - record.entered_at, timedelta(hours=72))

    def test_rejected_submission(self):
        """Test a DGII refusal ends REJECTED with the message"""
        self.transport.submit.side_effect = TransportRejected("RNC del comprador no existe", 400)

        invoice = self.service.create_invoice(credit_fiscal_proposal(self.company)).unwrap()

        self.assertEqual(invoice.status, InvoiceStatus.REJECTED.value)
        self.assertEqual(invoice.dgii_message, "RNC del comprador no existe")

    def test_immediate_acceptance(self):
        """Test a receipt carrying a status is applied right away"""
        self.transport.submit.return_value = SubmissionReceipt(
            track_id="TRK-2", status_code=DGIIStatusCode.ACCEPTED, message="Aceptado"
        )

        invoice = self.service.create_invoice(credit_fiscal_proposal(self.company)).unwrap()

        self.assertEqual(invoice.status, InvoiceStatus.ACCEPTED.value)
        self.assertIsNone(invoice.next_poll_at)

    def test_unexpected_failure_goes_to_error(self):
        """Test an unclassified failure ends ERROR"""
        self.transport.submit.side_effect = RuntimeError("socket closed mid-flight")

        invoice = self.service.create_invoice(credit_fiscal_proposal(self.company)).unwrap()

        self.assertEqual(invoice.status, InvoiceStatus.ERROR.value)
        self.assertTrue(ComplianceLog.objects.filter(compliance_type="ecf_submission", status="failed").exists())


class PollStatusTestCase(InvoiceServiceTestMixin, TestCase):
    """Test DGII status polling"""

    def sent_invoice(self, **kwargs) -> Invoice:
        defaults = {"status": InvoiceStatus.SENT, "track_id": "TRK-1", "sent_at": timezone.now()}
        defaults.update(kwargs)
        return create_invoice(self.company, **defaults)

    def test_poll_accepted(self):
        """Test an accepted result is stored"""
        invoice = self.sent_invoice()
        self.poller.query_status.return_value = StatusReport("TRK-1", DGIIStatusCode.ACCEPTED, "Aceptado")

        updated = self.service.poll_status(invoice.pk).unwrap()

        self.assertEqual(updated.status, InvoiceStatus.ACCEPTED.value)
        self.assertEqual(updated.dgii_message, "Aceptado")

    def test_repeated_poll_does_not_rewrite(self):
        """Test polling an accepted invoice again changes nothing"""
        invoice = self.sent_invoice()
        self.poller.query_status.return_value = StatusReport("TRK-1", DGIIStatusCode.ACCEPTED)
        first = self.service.poll_status(invoice.pk).unwrap()

        second = self.service.poll_status(invoice.pk).unwrap()

        self.assertEqual(second.status_changed_at, first.status_changed_at)
        self.assertEqual(second.transitions.count(), 1)

    def test_in_process_backs_off(self):
        """Test an in-process answer schedules the next poll later"""
        invoice = self.sent_invoice()
        self.poller.query_status.return_value = StatusReport("TRK-1", DGIIStatusCode.IN_PROCESS)
        before = timezone.now()

        self.service.poll_status(invoice.pk).unwrap()

        invoice.refresh_from_db()
        self.assertEqual(invoice.status, InvoiceStatus.SENT.value)
        self.assertEqual(invoice.poll_attempts, 1)
        self.assertGreaterEqual(invoice.next_poll_at, before + timedelta(seconds=60))

    def test_conflicting_outcome_raises_alert(self):
        """Test a second, different outcome is refused and flagged"""
        invoice = self.sent_invoice(status=InvoiceStatus.ACCEPTED)
        self.poller.query_status.return_value = StatusReport("TRK-1", DGIIStatusCode.REJECTED)

        result = self.service.poll_status(invoice.pk)

        self.assertIsInstance(result.unwrap_err(), InvalidTransition)
        invoice.refresh_from_db()
        self.assertEqual(invoice.status, InvoiceStatus.ACCEPTED.value)
        self.assertTrue(AuditAlert.objects.filter(alert_type="data_integrity").exists())

    def test_poll_without_track_id(self):
        """Test an undelivered invoice cannot be polled"""
        invoice = create_invoice(self.company, status=InvoiceStatus.PROCESSING)
        self.assertIsInstance(self.service.poll_status(invoice.pk).unwrap_err(), LifecycleError)
        self.poller.query_status.assert_not_called()

    def test_poll_transport_failure(self):
        """Test a failed poll is reported and rescheduled"""
        invoice = self.sent_invoice()
        self.poller.query_status.side_effect = TransportUnreachable("down")

        result = self.service.poll_status(invoice.pk)

        self.assertIsInstance(result.unwrap_err(), TransportUnreachable)
        invoice.refresh_from_db()
        self.assertEqual(invoice.poll_attempts, 1)

    def test_poll_unknown_invoice(self):
        """Test a missing invoice"""
        result = self.service.poll_status("00000000-0000-0000-0000-000000000000")
        self.assertIsInstance(result.unwrap_err(), InvoiceNotFound)

    def test_poll_pending_skips_stalled(self):
        """Test invoices past the poll limit are left for review"""
        self.sent_invoice(document_number="E310000000001")
        self.sent_invoice(document_number="E310000000002", poll_attempts=MAX_POLL_ATTEMPTS)
        self.poller.query_status.return_value = StatusReport("TRK-1", DGIIStatusCode.ACCEPTED)

        results = self.service.poll_pending(limit=10)

        self.assertEqual(results["polled"], 1)
        self.assertEqual(results["accepted"], 1)
        self.assertEqual(results["stalled"], 1)
        self.poller.query_status.assert_called_once()


class ContingencyResubmissionTestCase(InvoiceServiceTestMixin, TestCase):
    """Test resending contingency invoices"""

    def contingency_invoice(self, entered_at, number: str = "E310000000001") -> Invoice:
        invoice = create_invoice(
            self.company,
            status=InvoiceStatus.CONTINGENCY,
            document_number=number,
            signed_document='{"document_number": "%s"}' % number,
            security_code="ABC123",
        )
        create_contingency(invoice, entered_at)
        return invoice

    def test_resubmit_success_resolves_record(self):
        """Test a delivered invoice leaves contingency"""
        invoice = self.contingency_invoice(timezone.now() - timedelta(hours=1))

        results = self.service.resubmit_contingency()

        self.assertEqual(results["resubmitted"], 1)
        invoice.refresh_from_db()
        self.assertEqual(invoice.status, InvoiceStatus.SENT.value)
        self.assertFalse(ContingencyRecord.objects.filter(invoice=invoice).exists())

    def test_resubmit_still_unreachable(self):
        """Test another outage counts an attempt and keeps the deadline"""
        entered_at = timezone.now() - timedelta(hours=1)
        invoice = self.contingency_invoice(entered_at)
        self.transport.submit.side_effect = TransportUnreachable("timeout")

        results = self.service.resubmit_contingency()

        self.assertEqual(results["still_contingency"], 1)
        record = ContingencyRecord.objects.get(invoice=invoice)
        self.assertEqual(record.attempts, 1)
        self.assertEqual(record.entered_at, entered_at)

    def test_expired_records_are_not_resubmitted(self):
        """Test invoices past the deadline are left to the scan"""
        self.contingency_invoice(timezone.now() - timedelta(hours=73))

        results = self.service.resubmit_contingency()

        self.assertEqual(sum(results.values()), 0)
        self.transport.submit.assert_not_called()

    def test_retry_errored_invoice(self):
        """Test an ERROR invoice inside its window is resent"""
        invoice = self.contingency_invoice(timezone.now() - timedelta(hours=5))
        Invoice.objects.filter(pk=invoice.pk).update(status=InvoiceStatus.ERROR.value)

        result = self.service.retry_invoice(invoice.pk)

        self.assertEqual(result.unwrap().status, InvoiceStatus.SENT.value)


class VoidAndHealthTestCase(InvoiceServiceTestMixin, TestCase):
    """Test voiding and the health snapshot"""

    def test_void_invoice(self):
        """Test void returns Ok for a draft and Err for an accepted invoice"""
        draft = create_invoice(self.company, document_number="E310000000001")
        accepted = create_invoice(self.company, status=InvoiceStatus.ACCEPTED, document_number="E310000000002")

        self.assertEqual(self.service.void_invoice(draft.pk, "duplicate").unwrap().status, InvoiceStatus.VOIDED.value)
        self.assertIsInstance(self.service.void_invoice(accepted.pk, "mistake").unwrap_err(), InvalidTransition)
        self.assertIsInstance(
            self.service.void_invoice("00000000-0000-0000-0000-000000000000", "x").unwrap_err(), InvoiceNotFound
        )

    def test_register_sequence_range(self):
        """Test ranges are registered through the service"""
        result = self.service.register_sequence_range(
            self.company.pk, "E32", 1, 1000, timezone.now() + timedelta(days=30)
        )
        self.assertEqual(result.unwrap().document_type, DocumentType.CONSUMPTION.value)
        self.assertEqual(SequenceRange.objects.count(), 2)

    def test_health_snapshot(self):
        """Test counts of invoices needing attention"""
        create_invoice(self.company, status=InvoiceStatus.ERROR)

        snapshot = self.service.health_snapshot()

        self.assertTrue(snapshot["healthy"])
        self.assertEqual(snapshot["invoices"]["error"], 1)
        self.assertEqual(snapshot["contingency"]["pending"], 0)


class SequenceAnnulmentTestCase(InvoiceServiceTestMixin, TestCase):
    """Test ANECF submission of deactivated range tails"""

    def setUp(self):
        super().setUp()
        self.transport.submit_annulment.return_value = "Secuencias anuladas"

    def test_deactivation_sends_annulment(self):
        """Test the unissued tail is signed and reported right away"""
        SequenceRange.objects.filter(pk=self.sequence_range.pk).update(current_number=11)

        self.service.deactivate_sequence_range(self.sequence_range.pk, "Printer fleet retired").unwrap()

        annulment = SequenceAnnulment.objects.get()
        self.assertEqual(annulment.status, AnnulmentStatus.SENT.value)
        self.assertEqual(annulment.dgii_message, "Secuencias anuladas")
        self.assertIsNotNone(annulment.sent_at)
        signed, company = self.transport.submit_annulment.call_args.args
        self.assertEqual(company, self.company)
        self.assertIn("E310000000011", signed.content)
        self.assertIn("E310000000100", signed.content)

    def test_deactivation_without_submit(self):
        """Test submission can be left to the scheduled sweep"""
        self.service.deactivate_sequence_range(self.sequence_range.pk, submit=False).unwrap()

        self.assertEqual(SequenceAnnulment.objects.get().status, AnnulmentStatus.PENDING.value)
        self.transport.submit_annulment.assert_not_called()

    def test_unreachable_dgii_keeps_annulment_pending(self):
        """Test an outage defers the annulment to the next sweep"""
        self.transport.submit_annulment.side_effect = TransportUnreachable("timeout")

        self.service.deactivate_sequence_range(self.sequence_range.pk).unwrap()

        self.assertEqual(SequenceAnnulment.objects.get().status, AnnulmentStatus.PENDING.value)

    def test_refused_annulment_raises_alert(self):
        """Test a DGII refusal marks the annulment ERROR and alerts"""
        self.transport.submit_annulment.side_effect = TransportRejected("Rango no autorizado", 400)

        self.service.deactivate_sequence_range(self.sequence_range.pk).unwrap()

        annulment = SequenceAnnulment.objects.get()
        self.assertEqual(annulment.status, AnnulmentStatus.ERROR.value)
        self.assertIn("Rango no autorizado", annulment.dgii_message)
        self.assertTrue(AuditAlert.objects.filter(reference_id=str(self.sequence_range.pk)).exists())

    def test_submit_pending_annulments(self):
        """Test the sweep retries pending annulments and counts outcomes"""
        self.transport.submit_annulment.side_effect = TransportUnreachable("timeout")
        self.service.deactivate_sequence_range(self.sequence_range.pk).unwrap()
        self.transport.submit_annulment.side_effect = None

        results = self.service.submit_pending_annulments()

        self.assertEqual(results, {"sent": 1, "pending": 0, "error": 0})
        self.assertEqual(SequenceAnnulment.objects.get().status, AnnulmentStatus.SENT.value)
