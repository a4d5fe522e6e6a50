"""
Invoice service: the operations exposed to the dashboard/API layer.

This service orchestrates:
- Compliance validation
- e-NCF allocation and invoice creation in one transaction
- Signing and DGII submission
- Status polling with backoff
- Contingency resubmission
- Voiding
- Sequence range annulment (ANECF)

Usage:
    from apps.ecf.service import InvoiceService

    service = InvoiceService()
    result = service.create_invoice(proposal, idempotency_key="order-1042")
    if result.is_ok():
        invoice = result.unwrap()
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from apps.audit.services import AuditService, ComplianceEventRequest
from apps.common.types import Err, Ok, Result

from .client import DGIIClient
from .constants import DocumentType
from .contingency import ContingencyMonitor
from .exceptions import (
    EcfError,
    InvalidTransition,
    InvoiceNotFound,
    LifecycleError,
    SequenceError,
    TransportError,
    TransportRejected,
    TransportUnreachable,
    ValidationError,
)
from .gateways import DocumentSigner, DocumentTransport, SignedDocument, StatusPoller, get_default_signer
from .lifecycle import InvoiceLifecycle
from .models import (
    AnnulmentStatus,
    Company,
    ContingencyRecord,
    Invoice,
    InvoiceLine,
    InvoiceStatus,
    SequenceAnnulment,
    SequenceRange,
)
from .sequences import Allocation, SequenceRegistry
from .validator import ComplianceValidator, InvoiceProposal, NormalizedInvoice

logger = logging.getLogger(__name__)

# Delay before the n-th status poll of a sent invoice
POLL_BACKOFF_SECONDS = (30, 60, 120, 300, 600, 1800, 3600)
MAX_POLL_ATTEMPTS = 20


class InvoiceService:
    """High-level service for e-CF operations."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        registry: SequenceRegistry | None = None,
        validator: ComplianceValidator | None = None,
        lifecycle: InvoiceLifecycle | None = None,
        monitor: ContingencyMonitor | None = None,
        signer: DocumentSigner | None = None,
        transport: DocumentTransport | None = None,
        poller: StatusPoller | None = None,
    ) -> None:
        client = DGIIClient() if transport is None or poller is None else None
        self.registry = registry or SequenceRegistry()
        self.validator = validator or ComplianceValidator()
        self.lifecycle = lifecycle or InvoiceLifecycle()
        self.monitor = monitor or ContingencyMonitor(lifecycle=self.lifecycle)
        self.signer = signer or get_default_signer()
        self.transport: DocumentTransport = transport or client  # type: ignore[assignment]
        self.poller: StatusPoller = poller or client  # type: ignore[assignment]

    # ===============================================================================
    # CREATE
    # ===============================================================================

    def create_invoice(
        self,
        proposal: InvoiceProposal,
        *,
        idempotency_key: str | None = None,
        submit: bool = True,
    ) -> Result[Invoice, EcfError]:
        """
        Validate, number and (optionally) submit a new invoice.

        The number is reserved in the same transaction that creates the
        invoice; if creation fails the reservation rolls back. Submission
        happens after commit and never changes the committed number.
        """
        if idempotency_key:
            existing = Invoice.objects.filter(company_id=proposal.company_id, idempotency_key=idempotency_key).first()
            if existing is not None:
                logger.info(f"🔁 [e-CF] Idempotent replay of {idempotency_key}: {existing.document_number}")
                return Ok(existing)

        validation = self.validator.validate(proposal)
        if validation.is_err():
            return Err(validation.unwrap_err())
        normalized = validation.unwrap()

        company = Company.objects.filter(pk=proposal.company_id, is_active=True).first()
        if company is None:
            return Err(ValidationError("unknown_company", f"Company {proposal.company_id} is not an active issuer"))

        try:
            with transaction.atomic():
                allocated = self.registry.allocate(company.pk, normalized.document_type)
                if allocated.is_err():
                    return Err(allocated.unwrap_err())
                invoice = self._create_invoice_record(company, normalized, allocated.unwrap(), idempotency_key)
                invoice = self.lifecycle.transition(invoice, InvoiceStatus.PROCESSING, "Validated and numbered")
        except IntegrityError:
            if not idempotency_key:
                raise
            existing = Invoice.objects.filter(company_id=company.pk, idempotency_key=idempotency_key).first()
            if existing is None:
                raise
            logger.info(f"🔁 [e-CF] Concurrent replay of {idempotency_key}: {existing.document_number}")
            return Ok(existing)

        logger.info(f"🧾 [e-CF] Created {invoice.document_number} for company {company.pk}")
        if submit:
            invoice = self.submit(invoice, normalized)
        return Ok(invoice)

    def _create_invoice_record(
        self,
        company: Company,
        normalized: NormalizedInvoice,
        allocation: Allocation,
        idempotency_key: str | None,
    ) -> Invoice:
        reference = normalized.reference
        invoice = Invoice.objects.create(
            company=company,
            document_type=normalized.document_type.value,
            document_number=allocation.document_number,
            sequence_range_id=allocation.sequence_range_id,
            idempotency_key=idempotency_key or None,
            buyer_name=normalized.buyer_name,
            buyer_rnc=normalized.buyer_rnc,
            currency=normalized.currency,
            exchange_rate=normalized.exchange_rate,
            subtotal=normalized.subtotal,
            discount_total=normalized.discount_total,
            tax_total=normalized.tax_total,
            total=normalized.total,
            declared_total=normalized.declared_total,
            requires_conditional=normalized.requires_conditional,
            reference_document_number=reference.document_number if reference else "",
            reference_issue_date=reference.issue_date if reference else None,
            modification_code=int(reference.modification_code) if reference else None,
            tax_refundable=normalized.tax_refundable,
        )
        InvoiceLine.objects.bulk_create(
            [
                InvoiceLine(
                    invoice=invoice,
                    line_number=line.line_number,
                    description=line.description,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    tax_rate=line.tax_rate,
                    discount=line.discount,
                    net_amount=line.net_amount,
                    tax_amount=line.tax_amount,
                    line_total=line.line_total,
                    declared_total=line.declared_total,
                )
                for line in normalized.lines
            ]
        )
        return invoice

    # ===============================================================================
    # SUBMIT
    # ===============================================================================

    def submit(self, invoice: Invoice, normalized: NormalizedInvoice | None = None) -> Invoice:
        """
        Sign and send a PROCESSING or CONTINGENCY invoice to DGII.

        Unreachable DGII puts the invoice in contingency, a rejection makes it
        REJECTED, any other failure makes it ERROR.
        """
        company = invoice.company
        try:
            signed = self._signed_document(invoice, normalized)
        except Exception as e:
            logger.exception(f"🔥 [e-CF] Signing failed for {invoice.document_number}")
            return self.lifecycle.transition(invoice, InvoiceStatus.ERROR, f"Signing failed: {e}")

        try:
            receipt = self.transport.submit(signed, company)
        except TransportUnreachable as e:
            self.monitor.enter(invoice, str(e))
            self._log_audit_event(invoice, "contingency", "pending", {"error": str(e)})
            return Invoice.objects.get(pk=invoice.pk)
        except TransportRejected as e:
            return self._record_rejection(invoice, e)
        except Exception as e:
            logger.exception(f"🔥 [e-CF] Submission of {invoice.document_number} failed")
            errored = self.lifecycle.transition(invoice, InvoiceStatus.ERROR, f"Submission failed: {e}")
            self._log_audit_event(errored, "error", "failed", {"error": str(e)})
            return errored

        now = timezone.now()
        sent = self.lifecycle.transition(
            invoice,
            InvoiceStatus.SENT,
            "Delivered to DGII",
            now=now,
            track_id=receipt.track_id,
            dgii_message=receipt.message,
            sent_at=now,
            poll_attempts=0,
            next_poll_at=now + timedelta(seconds=POLL_BACKOFF_SECONDS[0]),
        )
        self._log_audit_event(sent, "sent", "success", {"track_id": receipt.track_id})
        if receipt.is_immediate and receipt.status_code is not None:
            sent = self.lifecycle.apply_dgii_status(sent, receipt.status_code, receipt.message)
        return sent

    def _signed_document(self, invoice: Invoice, normalized: NormalizedInvoice | None) -> SignedDocument:
        if normalized is None and invoice.signed_document:
            return SignedDocument(
                document_number=invoice.document_number or "",
                content=invoice.signed_document,
                security_code=invoice.security_code,
            )
        if normalized is None:
            raise LifecycleError(f"Invoice {invoice.pk} has no signed document to resend")

        signed = self.signer.sign(normalized, invoice.document_number or "", invoice.company)
        invoice.signed_document = signed.content
        invoice.security_code = signed.security_code
        invoice.save(update_fields=["signed_document", "security_code", "updated_at"])
        return signed

    def _record_rejection(self, invoice: Invoice, error: TransportRejected) -> Invoice:
        now = timezone.now()
        with transaction.atomic():
            sent = self.lifecycle.transition(invoice, InvoiceStatus.SENT, "Delivered to DGII", now=now, sent_at=now)
            rejected = self.lifecycle.transition(
                sent,
                InvoiceStatus.REJECTED,
                error.message,
                now=now,
                dgii_message=error.message,
                dgii_response_at=now,
                next_poll_at=None,
            )
        logger.warning(f"🚫 [e-CF] DGII rejected {invoice.document_number}: {error.message}")
        self._log_audit_event(rejected, "rejected", "failed", {"message": error.message})
        return rejected

    # ===============================================================================
    # VOID
    # ===============================================================================

    def void_invoice(self, invoice_id: Any, reason: str) -> Result[Invoice, EcfError]:
        invoice = Invoice.objects.filter(pk=invoice_id).first()
        if invoice is None:
            return Err(InvoiceNotFound(f"Invoice {invoice_id} not found"))
        try:
            voided = self.lifecycle.void(invoice, reason)
        except InvalidTransition as e:
            logger.warning(f"⚠️ [e-CF] Cannot void {invoice.document_number}: {e}")
            return Err(e)
        logger.info(f"🗑️ [e-CF] Voided {voided.document_number}; the number stays retired")
        return Ok(voided)

    # ===============================================================================
    # STATUS POLLING
    # ===============================================================================

    def poll_status(self, invoice_id: Any) -> Result[Invoice, EcfError]:
        """
        Ask DGII for the outcome of a submitted invoice.

        Polling an invoice that already has the same outcome changes nothing.
        """
        invoice = Invoice.objects.select_related("company").filter(pk=invoice_id).first()
        if invoice is None:
            return Err(InvoiceNotFound(f"Invoice {invoice_id} not found"))
        if not invoice.track_id:
            return Err(LifecycleError(f"{invoice.document_number} has not been delivered to DGII"))

        try:
            report = self.poller.query_status(invoice.track_id, invoice.company)
        except TransportError as e:
            logger.warning(f"⚠️ [e-CF] Status poll for {invoice.document_number} failed: {e}")
            if invoice.status == InvoiceStatus.SENT.value:
                self._schedule_next_poll(invoice)
            return Err(e)

        try:
            updated = self.lifecycle.apply_dgii_status(invoice, report.status_code, report.message)
        except InvalidTransition as e:
            logger.error(f"🔥 [e-CF] Conflicting DGII outcome for {invoice.document_number}: {e}")
            AuditService.raise_alert(
                title=f"Conflicting DGII outcome for {invoice.document_number}",
                description=str(e),
                reference_id=invoice.document_number or str(invoice.pk),
                severity="high",
                alert_type="data_integrity",
                evidence={"track_id": invoice.track_id, "dgii_code": int(report.status_code)},
            )
            return Err(e)

        if updated.status == InvoiceStatus.SENT.value:
            self._schedule_next_poll(updated)
        return Ok(updated)

    def _schedule_next_poll(self, invoice: Invoice, now: datetime | None = None) -> None:
        now = now or timezone.now()
        attempts = invoice.poll_attempts + 1
        delay = POLL_BACKOFF_SECONDS[min(attempts, len(POLL_BACKOFF_SECONDS) - 1)]
        Invoice.objects.filter(pk=invoice.pk).update(poll_attempts=attempts, next_poll_at=now + timedelta(seconds=delay))

    def poll_pending(self, limit: int | None = None) -> dict[str, int]:
        """Poll every sent invoice whose next poll is due."""
        limit = limit or getattr(settings, "ECF_POLL_BATCH_SIZE", 100)
        results = {"polled": 0, "accepted": 0, "conditional": 0, "rejected": 0, "sent": 0, "failed": 0, "stalled": 0}

        for invoice in Invoice.get_awaiting_status(limit):
            if invoice.poll_attempts >= MAX_POLL_ATTEMPTS:
                results["stalled"] += 1
                logger.warning(f"⚠️ [e-CF] {invoice.document_number} still in process after {MAX_POLL_ATTEMPTS} polls")
                continue
            results["polled"] += 1
            outcome = self.poll_status(invoice.pk)
            if outcome.is_err():
                results["failed"] += 1
                continue
            status = outcome.unwrap().status
            if status in results:
                results[status] += 1

        return results

    # ===============================================================================
    # CONTINGENCY
    # ===============================================================================

    def resubmit_contingency(self, limit: int | None = None, now: datetime | None = None) -> dict[str, int]:
        """Resend contingency invoices whose deadline has not passed, oldest deadline first."""
        limit = limit or getattr(settings, "ECF_RESUBMIT_BATCH_SIZE", 50)
        now = now or self.monitor.clock.now()
        records = (
            ContingencyRecord.objects.select_related("invoice", "invoice__company")
            .filter(escalated_at__isnull=True, deadline__gt=now, invoice__status=InvoiceStatus.CONTINGENCY.value)
            .order_by("deadline")[:limit]
        )
        results = {"resubmitted": 0, "still_contingency": 0, "rejected": 0, "error": 0}

        for record in records:
            invoice = self.submit(record.invoice)
            if invoice.status == InvoiceStatus.CONTINGENCY.value:
                results["still_contingency"] += 1
            elif invoice.status == InvoiceStatus.REJECTED.value:
                results["rejected"] += 1
            elif invoice.status == InvoiceStatus.ERROR.value:
                results["error"] += 1
            else:
                results["resubmitted"] += 1

        return results

    def retry_invoice(self, invoice_id: Any) -> Result[Invoice, EcfError]:
        """Send an ERROR invoice back through contingency and resubmit it."""
        try:
            record = self.monitor.mark_for_retry(invoice_id)
        except (LifecycleError, InvalidTransition) as e:
            return Err(e)
        return Ok(self.submit(record.invoice))

    # ===============================================================================
    # SEQUENCE RANGES
    # ===============================================================================

    def register_sequence_range(  # noqa: PLR0913
        self,
        company_id: int,
        document_type: DocumentType | str,
        start: int,
        end: int,
        expires_at: datetime,
    ) -> Result[SequenceRange, SequenceError]:
        return self.registry.register_range(company_id, document_type, start, end, expires_at)

    def deactivate_sequence_range(
        self, range_id: int, reason: str = "", *, submit: bool = True
    ) -> Result[SequenceRange, SequenceError]:
        """Deactivate a range and report its unissued tail to DGII."""
        result = self.registry.deactivate_range(range_id, reason)
        if result.is_ok() and submit:
            for annulment in SequenceAnnulment.objects.filter(
                sequence_range_id=range_id, status=AnnulmentStatus.PENDING.value
            ).select_related("company"):
                self.submit_annulment(annulment)
        return result

    def submit_annulment(self, annulment: SequenceAnnulment) -> SequenceAnnulment:
        """
        Sign and send one ANECF.

        An unreachable DGII leaves it PENDING for the next sweep, a refusal
        marks it ERROR and opens an alert.
        """
        company = annulment.company
        try:
            signed = self.signer.sign_annulment(annulment, company)
            message = self.transport.submit_annulment(signed, company)
        except TransportUnreachable as e:
            logger.warning(f"⚠️ [e-CF] Annulment {annulment} deferred, DGII unreachable: {e}")
            return annulment
        except TransportError as e:
            annulment.status = AnnulmentStatus.ERROR.value
            annulment.dgii_message = str(e)
            annulment.save(update_fields=["status", "dgii_message"])
            logger.error(f"🔥 [e-CF] DGII refused annulment {annulment}: {e}")
            AuditService.raise_alert(
                title=f"Range annulment {annulment} refused",
                description=str(e),
                reference_id=str(annulment.sequence_range_id),
                evidence={"encf_from": annulment.encf_from, "encf_to": annulment.encf_to},
            )
            return annulment

        annulment.status = AnnulmentStatus.SENT.value
        annulment.dgii_message = message
        annulment.sent_at = timezone.now()
        annulment.save(update_fields=["status", "dgii_message", "sent_at"])
        logger.info(f"✅ [e-CF] Annulment {annulment} accepted by DGII")
        return annulment

    def submit_pending_annulments(self, limit: int | None = None) -> dict[str, int]:
        """Retry every PENDING annulment, oldest first."""
        limit = limit or getattr(settings, "ECF_RESUBMIT_BATCH_SIZE", 50)
        results = {"sent": 0, "pending": 0, "error": 0}
        pending = SequenceAnnulment.objects.filter(status=AnnulmentStatus.PENDING.value).select_related("company")
        for annulment in pending[:limit]:
            outcome = self.submit_annulment(annulment)
            results[outcome.status] += 1
        return results

    # ===============================================================================
    # HEALTH
    # ===============================================================================

    def health_snapshot(self) -> dict[str, Any]:
        """Contingency summary plus counts of invoices that need attention."""
        summary = self.monitor.summary()
        return {
            "healthy": summary.is_healthy,
            "contingency": summary.to_dict(),
            "invoices": {
                "contingency": Invoice.objects.filter(status=InvoiceStatus.CONTINGENCY.value).count(),
                "error": Invoice.objects.filter(status=InvoiceStatus.ERROR.value).count(),
                "awaiting_dgii": Invoice.objects.filter(status=InvoiceStatus.SENT.value).count(),
            },
            "timestamp": timezone.now().isoformat(),
        }

    # --- Helpers ---

    def _log_audit_event(self, invoice: Invoice, event: str, status: str, evidence: dict[str, Any]) -> None:
        """Log e-CF submission event to audit system."""
        AuditService.log_compliance_event(
            ComplianceEventRequest(
                compliance_type="ecf_submission",
                reference_id=invoice.document_number or str(invoice.pk),
                description=f"e-CF {event}: {invoice.document_number}",
                status=status,
                evidence={"invoice_id": invoice.pk, "company_id": invoice.company_id, **evidence},
            )
        )
