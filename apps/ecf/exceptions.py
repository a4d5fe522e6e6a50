"""
Exception taxonomy for the e-CF compliance core.

Validation and sequence errors are surfaced to the caller and never retried.
AllocationConflict is retried internally a bounded number of times.
TransportUnreachable routes an invoice into contingency instead of failing.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any


class EcfError(Exception):
    """Base exception for the e-CF compliance core."""

    code = "ecf_error"

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": str(self)}


# ===============================================================================
# VALIDATION
# ===============================================================================


class ValidationError(EcfError):
    """Invoice failed a DGII business rule."""

    def __init__(self, code: str, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.field = field

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "field": self.field}


class CeilingExceeded(ValidationError):
    """Total is above the ceiling for the anonymous-buyer document type."""

    def __init__(self, total: Decimal, ceiling: Decimal, suggested_document_type: str) -> None:
        super().__init__(
            "ceiling_exceeded",
            f"Total {total} exceeds the {ceiling} ceiling for consumption invoices; "
            f"issue it as {suggested_document_type} with an identified buyer",
            field="total",
        )
        self.total = total
        self.ceiling = ceiling
        self.suggested_document_type = suggested_document_type

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "suggested_document_type": self.suggested_document_type}


# ===============================================================================
# SEQUENCES
# ===============================================================================


class SequenceError(EcfError):
    """Base class for sequence range errors."""

    code = "sequence_error"


class RangeExhausted(SequenceError):
    """Every usable range for the key has issued its last number."""

    code = "range_exhausted"


class NoActiveRange(RangeExhausted):
    """The key has no active range at all."""

    code = "no_active_range"


class RangeExpired(SequenceError):
    """The remaining ranges for the key are past their authorization date."""

    code = "range_expired"


class OverlapError(SequenceError):
    """A new range intersects an existing one for the same key."""

    code = "range_overlap"


class InvalidRange(SequenceError):
    """Range bounds or expiry are not acceptable."""

    code = "invalid_range"


class AllocationConflict(SequenceError):
    """Lost a concurrent allocation race after the bounded retries."""

    code = "allocation_conflict"


# ===============================================================================
# TRANSPORT
# ===============================================================================


class TransportError(EcfError):
    """Base class for DGII transport errors."""

    code = "transport_error"


class TransportUnreachable(TransportError):
    """DGII could not be reached; the invoice goes into contingency."""

    code = "transport_unreachable"


class TransportRejected(TransportError):
    """DGII refused the document."""

    code = "transport_rejected"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


# ===============================================================================
# LIFECYCLE
# ===============================================================================


class LifecycleError(EcfError):
    """Base class for invoice lifecycle errors."""

    code = "lifecycle_error"


class InvalidTransition(LifecycleError):
    """The requested status change is not in the transition table."""

    code = "invalid_transition"

    def __init__(self, from_status: str, to_status: str, detail: str = "") -> None:
        message = f"Cannot move invoice from {from_status} to {to_status}"
        super().__init__(f"{message}: {detail}" if detail else message)
        self.from_status = from_status
        self.to_status = to_status


class ContingencyExpired(LifecycleError):
    """The 72-hour resubmission window has elapsed."""

    code = "contingency_expired"


class InvoiceNotFound(LifecycleError):
    code = "invoice_not_found"
