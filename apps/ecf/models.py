"""
e-CF models: issuing companies, DGII-authorized sequence ranges, invoices
and the contingency records that bound their resubmission window.

Lifecycle of an invoice:
    DRAFT → PROCESSING → SENT | CONTINGENCY → ACCEPTED | CONDITIONAL | REJECTED

ERROR is reachable on unrecoverable submission failures and when a
contingency deadline elapses. VOIDED retires an invoice that never reached
an accepted outcome; its eNCF is never reused.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from typing import ClassVar

from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from .constants import CONTINGENCY_WINDOW, ENCF_LENGTH, DGIIEnvironment, DocumentType


class InvoiceStatus(StrEnum):
    """e-CF invoice status enumeration."""

    DRAFT = "draft"  # Validated, no number yet or number just reserved
    PROCESSING = "processing"  # Number allocated, being signed and sent
    SENT = "sent"  # DGII received it, awaiting result
    CONTINGENCY = "contingency"  # DGII unreachable, must be resent within 72h
    ACCEPTED = "accepted"  # DGII accepted
    CONDITIONAL = "conditional"  # DGII accepted with observations
    REJECTED = "rejected"  # DGII rejected
    ERROR = "error"  # Unrecoverable failure, needs manual reconciliation
    VOIDED = "voided"  # Retired before acceptance; number stays used

    @classmethod
    def choices(cls) -> list[tuple[str, str]]:
        return [(status.value, status.name.replace("_", " ").title()) for status in cls]

    @classmethod
    def terminal_statuses(cls) -> set[str]:
        """DGII outcomes: once reached, no other outcome may replace them."""
        return {cls.ACCEPTED.value, cls.CONDITIONAL.value, cls.REJECTED.value}

    @classmethod
    def voidable_statuses(cls) -> set[str]:
        return {cls.DRAFT.value, cls.ERROR.value, cls.CONTINGENCY.value, cls.REJECTED.value}

    @classmethod
    def awaiting_dgii_statuses(cls) -> set[str]:
        return {cls.SENT.value, cls.CONTINGENCY.value}

    def can_transition_to(self, target: InvoiceStatus) -> bool:
        return target in INVOICE_TRANSITIONS[self]


INVOICE_TRANSITIONS: dict[InvoiceStatus, frozenset[InvoiceStatus]] = {
    InvoiceStatus.DRAFT: frozenset({InvoiceStatus.PROCESSING, InvoiceStatus.VOIDED}),
    InvoiceStatus.PROCESSING: frozenset({InvoiceStatus.SENT, InvoiceStatus.CONTINGENCY, InvoiceStatus.ERROR}),
    InvoiceStatus.SENT: frozenset(
        {InvoiceStatus.ACCEPTED, InvoiceStatus.CONDITIONAL, InvoiceStatus.REJECTED, InvoiceStatus.ERROR}
    ),
    InvoiceStatus.CONTINGENCY: frozenset(
        {
            InvoiceStatus.SENT,
            InvoiceStatus.ACCEPTED,
            InvoiceStatus.CONDITIONAL,
            InvoiceStatus.REJECTED,
            InvoiceStatus.ERROR,
            InvoiceStatus.VOIDED,
        }
    ),
    InvoiceStatus.ERROR: frozenset({InvoiceStatus.CONTINGENCY, InvoiceStatus.VOIDED}),
    InvoiceStatus.REJECTED: frozenset({InvoiceStatus.VOIDED}),
    InvoiceStatus.ACCEPTED: frozenset(),
    InvoiceStatus.CONDITIONAL: frozenset(),
    InvoiceStatus.VOIDED: frozenset(),
}


# ===============================================================================
# COMPANIES
# ===============================================================================


class Company(models.Model):
    """Issuer authorized by DGII to emit e-CF documents."""

    name = models.CharField(max_length=255)
    rnc = models.CharField(max_length=11, unique=True)
    dgii_environment = models.CharField(
        max_length=10, choices=DGIIEnvironment.choices(), default=DGIIEnvironment.TEST.value
    )
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "ecf_company"
        verbose_name_plural = "Companies"

    def __str__(self) -> str:
        return f"{self.name} ({self.rnc})"


# ===============================================================================
# SEQUENCE RANGES
# ===============================================================================


class SequenceRange(models.Model):
    """
    DGII-authorized block of document numbers for one (company, document type).

    current_number is the next number to issue; current_number == end + 1
    means the range is exhausted. Only the sequence registry moves it.
    """

    company = models.ForeignKey(Company, on_delete=models.PROTECT, related_name="sequence_ranges")
    document_type = models.CharField(max_length=20, choices=DocumentType.choices())
    start = models.PositiveBigIntegerField()
    end = models.PositiveBigIntegerField()
    current_number = models.PositiveBigIntegerField()
    expires_at = models.DateTimeField()
    is_active = models.BooleanField(default=True)
    version = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    deactivated_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "ecf_sequence_range"
        ordering: ClassVar[list[str]] = ["company_id", "document_type", "start"]
        indexes: ClassVar[list[models.Index]] = [
            models.Index(fields=["company", "document_type", "is_active"], name="ecf_range_key_idx"),
        ]
        constraints: ClassVar[list[models.BaseConstraint]] = [
            models.CheckConstraint(condition=Q(start__gte=1), name="ecf_range_start_positive"),
            models.CheckConstraint(condition=Q(start__lte=F("end")), name="ecf_range_bounds"),
            models.CheckConstraint(
                condition=Q(current_number__gte=F("start")) & Q(current_number__lte=F("end") + 1),
                name="ecf_range_current_within_bounds",
            ),
        ]

    def __str__(self) -> str:
        doc_type = DocumentType(self.document_type)
        return f"{doc_type.format_number(self.start)}..{doc_type.format_number(self.end)}"

    # --- Business Logic ---

    @property
    def total(self) -> int:
        return self.end - self.start + 1

    @property
    def used(self) -> int:
        return self.current_number - self.start

    @property
    def remaining(self) -> int:
        return self.end - self.current_number + 1

    @property
    def is_exhausted(self) -> bool:
        return self.current_number > self.end

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at <= (now or timezone.now())

    def stats(self, now: datetime | None = None) -> dict[str, object]:
        return {
            "id": self.pk,
            "document_type": self.document_type,
            "start": self.start,
            "end": self.end,
            "current_number": self.current_number,
            "used": self.used,
            "remaining": self.remaining,
            "total": self.total,
            "percent_used": round(self.used / self.total * 100, 2),
            "is_exhausted": self.is_exhausted,
            "is_expired": self.is_expired(now),
            "expires_at": self.expires_at.isoformat(),
        }


class SequenceLock(models.Model):
    """
    One row per (company, document type) key.

    Allocation and registration take a row lock on it, serializing work for
    the key without touching other keys.
    """

    company = models.ForeignKey(Company, on_delete=models.CASCADE, related_name="sequence_locks")
    document_type = models.CharField(max_length=20, choices=DocumentType.choices())

    class Meta:
        db_table = "ecf_sequence_lock"
        constraints: ClassVar[list[models.BaseConstraint]] = [
            models.UniqueConstraint(fields=["company", "document_type"], name="ecf_unique_sequence_lock"),
        ]

    def __str__(self) -> str:
        return f"lock {self.company_id}/{self.document_type}"


class AnnulmentStatus(StrEnum):
    """DGII ANECF submission status."""

    PENDING = "pending"  # Recorded, not yet reported to DGII
    SENT = "sent"  # DGII acknowledged the annulment
    ERROR = "error"  # DGII refused it, needs manual follow-up

    @classmethod
    def choices(cls) -> list[tuple[str, str]]:
        return [(status.value, status.name.title()) for status in cls]


class SequenceAnnulment(models.Model):
    """
    Unissued tail of a deactivated range, retired through a DGII ANECF.

    encf_from..encf_to never reach an invoice; the record is the proof that
    those numbers were not skipped silently.
    """

    company = models.ForeignKey(Company, on_delete=models.PROTECT, related_name="sequence_annulments")
    sequence_range = models.ForeignKey(SequenceRange, on_delete=models.PROTECT, related_name="annulments")
    document_type = models.CharField(max_length=20, choices=DocumentType.choices())
    number_from = models.PositiveBigIntegerField()
    number_to = models.PositiveBigIntegerField()
    encf_from = models.CharField(max_length=ENCF_LENGTH)
    encf_to = models.CharField(max_length=ENCF_LENGTH)
    reason = models.TextField(blank=True)
    status = models.CharField(
        max_length=10, choices=AnnulmentStatus.choices(), default=AnnulmentStatus.PENDING.value, db_index=True
    )
    dgii_message = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    sent_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "ecf_sequence_annulment"
        ordering: ClassVar[list[str]] = ["created_at"]
        constraints: ClassVar[list[models.BaseConstraint]] = [
            models.CheckConstraint(condition=Q(number_from__lte=F("number_to")), name="ecf_annulment_bounds"),
        ]

    def __str__(self) -> str:
        return f"{self.encf_from}..{self.encf_to}"

    @property
    def count(self) -> int:
        return self.number_to - self.number_from + 1


# ===============================================================================
# INVOICES
# ===============================================================================


class Invoice(models.Model):
    """Electronic fiscal document (e-CF) and its DGII submission state."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    company = models.ForeignKey(Company, on_delete=models.PROTECT, related_name="invoices")
    document_type = models.CharField(max_length=20, choices=DocumentType.choices())

    # Numbering - immutable once assigned
    document_number = models.CharField(max_length=ENCF_LENGTH, null=True, blank=True)
    sequence_range = models.ForeignKey(
        SequenceRange, on_delete=models.PROTECT, null=True, blank=True, related_name="invoices"
    )
    idempotency_key = models.CharField(max_length=100, null=True, blank=True)

    # Buyer
    buyer_name = models.CharField(max_length=255, blank=True)
    buyer_rnc = models.CharField(max_length=11, blank=True)

    # Totals
    currency = models.CharField(max_length=3, default="DOP")
    exchange_rate = models.DecimalField(max_digits=18, decimal_places=4, null=True, blank=True)
    subtotal = models.DecimalField(max_digits=18, decimal_places=2, default=Decimal("0.00"))
    discount_total = models.DecimalField(max_digits=18, decimal_places=2, default=Decimal("0.00"))
    tax_total = models.DecimalField(max_digits=18, decimal_places=2, default=Decimal("0.00"))
    total = models.DecimalField(max_digits=18, decimal_places=2, default=Decimal("0.00"))
    declared_total = models.DecimalField(max_digits=18, decimal_places=2, null=True, blank=True)
    requires_conditional = models.BooleanField(default=False)

    # Reference to the modified document (debit/credit notes)
    reference_document_number = models.CharField(max_length=19, blank=True)
    reference_issue_date = models.DateField(null=True, blank=True)
    modification_code = models.PositiveSmallIntegerField(null=True, blank=True)
    tax_refundable = models.BooleanField(default=False)

    # Lifecycle
    status = models.CharField(
        max_length=20, choices=InvoiceStatus.choices(), default=InvoiceStatus.DRAFT.value, db_index=True
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    status_changed_at = models.DateTimeField(default=timezone.now)

    # DGII submission
    signed_document = models.TextField(blank=True)
    track_id = models.CharField(max_length=100, blank=True, db_index=True)
    dgii_message = models.TextField(blank=True)
    security_code = models.CharField(max_length=6, blank=True)
    sent_at = models.DateTimeField(null=True, blank=True)
    dgii_response_at = models.DateTimeField(null=True, blank=True)
    poll_attempts = models.PositiveIntegerField(default=0)
    next_poll_at = models.DateTimeField(null=True, blank=True)

    # Void
    voided_at = models.DateTimeField(null=True, blank=True)
    void_reason = models.TextField(blank=True)

    class Meta:
        db_table = "ecf_invoice"
        ordering: ClassVar[list[str]] = ["-created_at"]
        indexes: ClassVar[list[models.Index]] = [
            models.Index(
                fields=["status", "next_poll_at"],
                name="ecf_invoice_poll_idx",
                condition=Q(status="sent"),
            ),
            models.Index(fields=["company", "status"], name="ecf_invoice_company_status_idx"),
        ]
        constraints: ClassVar[list[models.BaseConstraint]] = [
            models.UniqueConstraint(fields=["company", "document_number"], name="ecf_unique_document_number"),
            models.UniqueConstraint(
                fields=["company", "idempotency_key"],
                name="ecf_unique_idempotency_key",
                condition=Q(idempotency_key__isnull=False),
            ),
        ]

    def __str__(self) -> str:
        return f"{self.document_number or 'unnumbered'} [{self.status}]"

    # --- Query Methods ---

    @classmethod
    def get_awaiting_status(cls, limit: int = 100, now: datetime | None = None) -> models.QuerySet[Invoice]:
        """Sent invoices whose next status poll is due."""
        now = now or timezone.now()
        return (
            cls.objects.filter(status=InvoiceStatus.SENT.value)
            .exclude(track_id="")
            .filter(Q(next_poll_at__isnull=True) | Q(next_poll_at__lte=now))
            .order_by("sent_at")[:limit]
        )

    # --- Business Logic ---

    @property
    def is_terminal(self) -> bool:
        return self.status in InvoiceStatus.terminal_statuses()

    @property
    def is_voidable(self) -> bool:
        return self.status in InvoiceStatus.voidable_statuses()

    @property
    def doc_type(self) -> DocumentType:
        return DocumentType(self.document_type)


class InvoiceLine(models.Model):
    """Line item with amounts already rounded half-up to 2 decimals."""

    invoice = models.ForeignKey(Invoice, on_delete=models.CASCADE, related_name="lines")
    line_number = models.PositiveIntegerField()
    description = models.CharField(max_length=1000)
    quantity = models.DecimalField(max_digits=18, decimal_places=4)
    unit_price = models.DecimalField(max_digits=18, decimal_places=4)
    tax_rate = models.DecimalField(max_digits=5, decimal_places=2)
    discount = models.DecimalField(max_digits=18, decimal_places=2, default=Decimal("0.00"))
    net_amount = models.DecimalField(max_digits=18, decimal_places=2)
    tax_amount = models.DecimalField(max_digits=18, decimal_places=2)
    line_total = models.DecimalField(max_digits=18, decimal_places=2)
    declared_total = models.DecimalField(max_digits=18, decimal_places=2, null=True, blank=True)

    class Meta:
        db_table = "ecf_invoice_line"
        ordering: ClassVar[list[str]] = ["invoice", "line_number"]
        constraints: ClassVar[list[models.BaseConstraint]] = [
            models.UniqueConstraint(fields=["invoice", "line_number"], name="ecf_unique_line_number"),
        ]

    def __str__(self) -> str:
        return f"{self.line_number}. {self.description}"


class InvoiceTransition(models.Model):
    """Audit trail of every status change."""

    invoice = models.ForeignKey(Invoice, on_delete=models.CASCADE, related_name="transitions")
    from_status = models.CharField(max_length=20, choices=InvoiceStatus.choices())
    to_status = models.CharField(max_length=20, choices=InvoiceStatus.choices())
    reason = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "ecf_invoice_transition"
        ordering: ClassVar[list[str]] = ["created_at", "id"]

    def __str__(self) -> str:
        return f"{self.from_status} → {self.to_status}"


# ===============================================================================
# CONTINGENCY
# ===============================================================================


class ContingencyRecord(models.Model):
    """
    Tracks an invoice issued while DGII was unreachable.

    entered_at is the first contingency entry and is never reset by retries.
    The record is deleted once the invoice reaches DGII or is voided.
    """

    invoice = models.OneToOneField(Invoice, on_delete=models.CASCADE, related_name="contingency")
    entered_at = models.DateTimeField()
    deadline = models.DateTimeField(db_index=True)
    attempts = models.PositiveIntegerField(default=0)
    last_attempt_at = models.DateTimeField(null=True, blank=True)
    last_error = models.TextField(blank=True)
    escalated_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = "ecf_contingency_record"
        ordering: ClassVar[list[str]] = ["deadline"]

    def __str__(self) -> str:
        return f"contingency {self.invoice_id} until {self.deadline.isoformat()}"

    @staticmethod
    def deadline_for(entered_at: datetime) -> datetime:
        return entered_at + CONTINGENCY_WINDOW

    def is_expired(self, now: datetime) -> bool:
        return self.deadline <= now

    def hours_remaining(self, now: datetime) -> float:
        return max(0.0, (self.deadline - now).total_seconds() / 3600)

    @property
    def is_escalated(self) -> bool:
        return self.escalated_at is not None
