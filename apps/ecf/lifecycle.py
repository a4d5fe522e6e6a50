"""
Invoice lifecycle state machine.

Every status change goes through InvoiceLifecycle.transition(), which locks
the invoice row, checks INVOICE_TRANSITIONS, writes an InvoiceTransition
audit row and stamps status_changed_at. Re-applying the current status is a
no-op, so repeated DGII polls never rewrite timestamps.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from django.db import transaction
from django.utils import timezone

from apps.audit.services import AuditService, ComplianceEventRequest

from .constants import DGIIStatusCode
from .exceptions import InvalidTransition
from .metrics import ecf_metrics
from .models import ContingencyRecord, Invoice, InvoiceStatus, InvoiceTransition

logger = logging.getLogger(__name__)

# Leaving contingency for any of these means DGII has the document or it was retired
_CONTINGENCY_RESOLVING = frozenset(
    {
        InvoiceStatus.SENT,
        InvoiceStatus.ACCEPTED,
        InvoiceStatus.CONDITIONAL,
        InvoiceStatus.REJECTED,
        InvoiceStatus.VOIDED,
    }
)


def map_dgii_status(code: int | DGIIStatusCode, requires_conditional: bool = False) -> InvoiceStatus | None:
    """
    Map a DGII status code to the lifecycle state it implies.

    NOT_FOUND maps to None (ignored). An acceptance for an invoice that
    breached the tolerance rule is classified as conditional.
    """
    status = DGIIStatusCode(int(code))
    if status is DGIIStatusCode.NOT_FOUND:
        return None
    if status is DGIIStatusCode.ACCEPTED:
        return InvoiceStatus.CONDITIONAL if requires_conditional else InvoiceStatus.ACCEPTED
    if status is DGIIStatusCode.REJECTED:
        return InvoiceStatus.REJECTED
    if status is DGIIStatusCode.IN_PROCESS:
        return InvoiceStatus.SENT
    return InvoiceStatus.CONDITIONAL


class InvoiceLifecycle:
    """Applies lifecycle transitions to invoices."""

    @transaction.atomic
    def transition(
        self,
        invoice: Invoice,
        target: InvoiceStatus,
        reason: str = "",
        *,
        now: datetime | None = None,
        **fields: Any,
    ) -> Invoice:
        """
        Move an invoice to target and persist extra fields with it.

        Returns the locked, up-to-date invoice. Raises InvalidTransition when
        the move is not in the transition table.
        """
        locked = Invoice.objects.select_for_update().get(pk=invoice.pk)
        current = InvoiceStatus(locked.status)
        target = InvoiceStatus(target)

        if current == target:
            return locked
        if not current.can_transition_to(target):
            raise InvalidTransition(current.value, target.value)

        now = now or timezone.now()
        locked.status = target.value
        locked.status_changed_at = now
        update_fields = ["status", "status_changed_at", "updated_at"]
        for name, value in fields.items():
            setattr(locked, name, value)
            update_fields.append(name)
        locked.save(update_fields=update_fields)

        InvoiceTransition.objects.create(
            invoice=locked, from_status=current.value, to_status=target.value, reason=reason[:1000]
        )
        if current is InvoiceStatus.CONTINGENCY and target in _CONTINGENCY_RESOLVING:
            ContingencyRecord.objects.filter(invoice=locked).delete()

        ecf_metrics.record_transition(current.value, target.value)
        logger.info(f"🧾 [e-CF] {locked.document_number or locked.pk}: {current.value} → {target.value}")
        return locked

    # ===============================================================================
    # DGII OUTCOMES
    # ===============================================================================

    @transaction.atomic
    def apply_dgii_status(
        self,
        invoice: Invoice,
        code: int | DGIIStatusCode,
        message: str = "",
        *,
        now: datetime | None = None,
    ) -> Invoice:
        """
        Apply a polled DGII status code.

        Idempotent: the same terminal outcome applied twice changes nothing.
        A different outcome for an invoice that already has one raises
        InvalidTransition.
        """
        invoice = Invoice.objects.select_for_update().get(pk=invoice.pk)
        target = map_dgii_status(code, requires_conditional=invoice.requires_conditional)
        if target is None:
            logger.info(f"🔎 [e-CF] DGII has no record of {invoice.document_number} yet")
            return invoice

        current = InvoiceStatus(invoice.status)
        if current == target:
            return invoice
        if target is InvoiceStatus.SENT:
            if current is InvoiceStatus.CONTINGENCY:
                return self.transition(invoice, target, "DGII reports the document in process", now=now)
            return invoice

        now = now or timezone.now()
        updated = self.transition(
            invoice,
            target,
            f"DGII status {int(code)}",
            now=now,
            dgii_message=message,
            dgii_response_at=now,
            next_poll_at=None,
        )
        AuditService.log_compliance_event(
            ComplianceEventRequest(
                compliance_type="ecf_status",
                reference_id=updated.document_number or str(updated.pk),
                description=f"DGII returned {target.value}",
                status="success" if target is not InvoiceStatus.REJECTED else "failed",
                evidence={"dgii_code": int(code), "message": message, "track_id": updated.track_id},
            )
        )
        return updated

    # ===============================================================================
    # VOID
    # ===============================================================================

    def void(self, invoice: Invoice, reason: str, *, now: datetime | None = None) -> Invoice:
        """Retire an invoice. The eNCF stays used and is never reissued."""
        current = InvoiceStatus(invoice.status)
        if current is InvoiceStatus.VOIDED:
            raise InvalidTransition(current.value, InvoiceStatus.VOIDED.value, "invoice is already voided")
        if current in (InvoiceStatus.ACCEPTED, InvoiceStatus.CONDITIONAL):
            raise InvalidTransition(
                current.value,
                InvoiceStatus.VOIDED.value,
                "accepted documents can only be reversed with a credit note (E34)",
            )
        if current in (InvoiceStatus.PROCESSING, InvoiceStatus.SENT):
            raise InvalidTransition(
                current.value, InvoiceStatus.VOIDED.value, "document is in transit to DGII; wait for its outcome"
            )

        now = now or timezone.now()
        updated = self.transition(
            invoice,
            InvoiceStatus.VOIDED,
            reason or "voided",
            now=now,
            voided_at=now,
            void_reason=reason,
            next_poll_at=None,
        )
        ContingencyRecord.objects.filter(invoice=updated).delete()
        AuditService.log_compliance_event(
            ComplianceEventRequest(
                compliance_type="ecf_void",
                reference_id=updated.document_number or str(updated.pk),
                description=f"Invoice voided: {reason}",
                evidence={"previous_status": current.value, "voided_at": now},
            )
        )
        return updated
