"""
Contingency monitor: enforces the 72-hour resubmission window for invoices
issued while DGII was unreachable.

The window is measured from the first contingency entry and is never
extended by retries. Deadlines are checked against a monotonic clock so a
wall-clock adjustment on the host cannot hide or invent a breach. The scan
only touches ContingencyRecord and Invoice rows, never sequence ranges.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Protocol

from django.conf import settings
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from apps.audit.services import AuditService, ComplianceEventRequest

from .exceptions import ContingencyExpired, InvoiceNotFound
from .lifecycle import InvoiceLifecycle
from .metrics import ecf_metrics
from .models import ContingencyRecord, Invoice, InvoiceStatus

logger = logging.getLogger(__name__)


# ===============================================================================
# CLOCKS
# ===============================================================================


class Clock(Protocol):
    def now(self) -> datetime: ...


class MonotonicClock:
    """
    Wall time anchored once, then advanced by time.monotonic().

    Never goes backwards and ignores NTP steps or manual clock changes made
    after the anchor was taken.
    """

    def __init__(
        self,
        wall: Callable[[], datetime] = timezone.now,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._monotonic = monotonic
        self._anchor_wall = wall()
        self._anchor_monotonic = monotonic()

    def now(self) -> datetime:
        return self._anchor_wall + timedelta(seconds=self._monotonic() - self._anchor_monotonic)


# ===============================================================================
# SUMMARY
# ===============================================================================


@dataclass(frozen=True)
class ContingencySummary:
    pending: int
    urgent: int
    expired: int
    escalated: int
    oldest_hours_remaining: float | None

    @property
    def is_healthy(self) -> bool:
        return self.expired == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "pending": self.pending,
            "urgent": self.urgent,
            "expired": self.expired,
            "escalated": self.escalated,
            "oldest_hours_remaining": self.oldest_hours_remaining,
        }


# ===============================================================================
# MONITOR
# ===============================================================================


class ContingencyMonitor:
    """Tracks contingency records and escalates the ones past their deadline."""

    def __init__(self, clock: Clock | None = None, lifecycle: InvoiceLifecycle | None = None) -> None:
        self.clock = clock or MonotonicClock()
        self.lifecycle = lifecycle or InvoiceLifecycle()
        self.urgent_hours = getattr(settings, "ECF_CONTINGENCY_URGENT_HOURS", 12)

    def enter(self, invoice: Invoice, reason: str, *, now: datetime | None = None) -> ContingencyRecord:
        """
        Put an invoice into contingency, or count another failed attempt.

        The first entry fixes entered_at and the deadline; later calls keep them.
        """
        now = now or self.clock.now()
        with transaction.atomic():
            invoice = self.lifecycle.transition(invoice, InvoiceStatus.CONTINGENCY, reason, now=now)
            record, created = ContingencyRecord.objects.get_or_create(
                invoice=invoice,
                defaults={"entered_at": now, "deadline": ContingencyRecord.deadline_for(now)},
            )
            ContingencyRecord.objects.filter(pk=record.pk).update(
                attempts=F("attempts") + 1, last_attempt_at=now, last_error=reason[:2000]
            )
            record.refresh_from_db()

            if created:
                AuditService.log_compliance_event(
                    ComplianceEventRequest(
                        compliance_type="contingency_entry",
                        reference_id=invoice.document_number or str(invoice.pk),
                        description=f"DGII unreachable, resubmit before {record.deadline.isoformat()}",
                        status="pending",
                        evidence={"reason": reason, "entered_at": now, "deadline": record.deadline},
                    )
                )

        if created:
            logger.warning(
                f"⏳ [Contingency] {invoice.document_number} entered contingency, deadline {record.deadline.isoformat()}"
            )
        else:
            logger.info(f"⏳ [Contingency] {invoice.document_number} attempt {record.attempts} failed: {reason}")
        return record

    def scan(self, now: datetime | None = None) -> list[ContingencyRecord]:
        """
        Return every record past its deadline, escalating new breaches to ERROR.

        Safe to run repeatedly: a record is escalated at most once.
        """
        now = now or self.clock.now()
        overdue = list(
            ContingencyRecord.objects.select_related("invoice").filter(deadline__lte=now).order_by("deadline")
        )
        for record in overdue:
            if not record.is_escalated:
                self._escalate(record, now)

        summary = self.summary(now)
        ecf_metrics.update_contingency(summary.pending, summary.expired)
        return overdue

    def _escalate(self, record: ContingencyRecord, now: datetime) -> None:
        invoice = record.invoice
        breach = ContingencyExpired(
            f"{invoice.document_number} was not accepted by DGII within 72 hours of {record.entered_at.isoformat()}"
        )
        with transaction.atomic():
            if invoice.status == InvoiceStatus.CONTINGENCY.value:
                invoice = self.lifecycle.transition(invoice, InvoiceStatus.ERROR, str(breach), now=now)
            record.escalated_at = now
            record.save(update_fields=["escalated_at"])

            reference = invoice.document_number or str(invoice.pk)
            AuditService.log_compliance_event(
                ComplianceEventRequest(
                    compliance_type="contingency_expired",
                    reference_id=reference,
                    description=str(breach),
                    status="failed",
                    evidence={"entered_at": record.entered_at, "deadline": record.deadline, "attempts": record.attempts},
                )
            )
            AuditService.raise_alert(
                title=f"Contingency deadline missed for {reference}",
                description=f"{breach}. Manual reconciliation with DGII is required.",
                reference_id=reference,
                evidence={"invoice_id": invoice.pk, "deadline": record.deadline},
            )

        ecf_metrics.contingency_escalations_total.inc()
        logger.critical(f"🚨 [Contingency] {breach}")

    def resolve(self, invoice_id: Any) -> bool:
        """Drop the contingency record of an invoice. Returns whether one existed."""
        deleted, _ = ContingencyRecord.objects.filter(invoice_id=invoice_id).delete()
        if deleted:
            logger.info(f"✅ [Contingency] Resolved contingency for invoice {invoice_id}")
        return bool(deleted)

    def mark_for_retry(self, invoice_id: Any, *, now: datetime | None = None) -> ContingencyRecord:
        """
        Send an ERROR invoice back to contingency for another resubmission.

        Refused with ContingencyExpired once the original deadline has passed.
        """
        now = now or self.clock.now()
        try:
            invoice = Invoice.objects.get(pk=invoice_id)
        except Invoice.DoesNotExist as e:
            raise InvoiceNotFound(f"Invoice {invoice_id} not found") from e

        record = ContingencyRecord.objects.filter(invoice=invoice).first()
        if record is not None and record.is_expired(now):
            raise ContingencyExpired(
                f"{invoice.document_number} missed its deadline {record.deadline.isoformat()}; it cannot be retried"
            )
        return self.enter(invoice, "Marked for retry", now=now)

    def summary(self, now: datetime | None = None) -> ContingencySummary:
        now = now or self.clock.now()
        records = list(ContingencyRecord.objects.all())
        pending = [r for r in records if not r.is_expired(now)]
        urgent = [r for r in pending if r.hours_remaining(now) < self.urgent_hours]
        return ContingencySummary(
            pending=len(pending),
            urgent=len(urgent),
            expired=len(records) - len(pending),
            escalated=sum(1 for r in records if r.is_escalated),
            oldest_hours_remaining=round(min(r.hours_remaining(now) for r in pending), 2) if pending else None,
        )
