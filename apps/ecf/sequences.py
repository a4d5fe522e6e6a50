"""
Sequence registry: DGII-authorized ranges and atomic e-NCF allocation.

Allocation for a (company, document type) key runs under a row lock on the
key's SequenceLock and advances the chosen range with a compare-and-swap on
(current_number, version). It joins the caller's transaction, so a failure
while creating the invoice rolls the number back.

Usage:
    registry = SequenceRegistry()
    with transaction.atomic():
        result = registry.allocate(company.id, DocumentType.CREDIT_FISCAL)
        if result.is_ok():
            allocation = result.unwrap()
            Invoice.objects.create(..., document_number=allocation.document_number)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from django.conf import settings
from django.db import OperationalError, connection, transaction
from django.db.models import F
from django.utils import timezone

from apps.audit.services import AuditService, ComplianceEventRequest
from apps.common.types import Err, Ok, Result

from .constants import MAX_RANGE_SIZE, DocumentType
from .exceptions import (
    AllocationConflict,
    InvalidRange,
    NoActiveRange,
    OverlapError,
    RangeExhausted,
    RangeExpired,
    SequenceError,
)
from .metrics import ecf_metrics
from .models import Company, SequenceAnnulment, SequenceLock, SequenceRange

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Allocation:
    """A reserved e-NCF. Valid only if the surrounding transaction commits."""

    sequence_range_id: int
    document_type: DocumentType
    number: int
    document_number: str
    remaining: int


class SequenceRegistry:
    """Owns sequence ranges and hands out e-NCF numbers."""

    def __init__(
        self,
        max_retries: int | None = None,
        lock_timeout_ms: int | None = None,
        low_watermark: float | None = None,
    ) -> None:
        self.max_retries = (
            max_retries if max_retries is not None else getattr(settings, "ECF_ALLOCATION_MAX_RETRIES", 3)
        )
        self.lock_timeout_ms = (
            lock_timeout_ms if lock_timeout_ms is not None else getattr(settings, "ECF_ALLOCATION_LOCK_TIMEOUT_MS", 0)
        )
        self.low_watermark = (
            low_watermark if low_watermark is not None else getattr(settings, "ECF_SEQUENCE_LOW_WATERMARK", 0.10)
        )

    # ===============================================================================
    # ALLOCATION
    # ===============================================================================

    def allocate(
        self,
        company_id: int,
        document_type: DocumentType | str,
        *,
        now: datetime | None = None,
        lock_timeout_ms: int | None = None,
    ) -> Result[Allocation, SequenceError]:
        """
        Reserve the next e-NCF for the key.

        Picks the active, unexpired, unexhausted range with the lowest
        current_number. Conflicts are retried with a fresh read up to
        max_retries times before AllocationConflict is returned.
        """
        doc_type = DocumentType.from_code(document_type)
        now = now or timezone.now()
        timeout = self.lock_timeout_ms if lock_timeout_ms is None else lock_timeout_ms

        # max_retries=0 still makes one attempt
        attempts = max(self.max_retries, 1)
        for attempt in range(1, attempts + 1):
            try:
                allocation = self._allocate_once(company_id, doc_type, now, timeout)
            except AllocationConflict as e:
                ecf_metrics.record_conflict(doc_type.value)
                logger.warning(
                    f"⚠️ [Sequences] Allocation conflict for {company_id}/{doc_type.prefix} "
                    f"(attempt {attempt}/{attempts}): {e}"
                )
                continue
            except (RangeExhausted, RangeExpired) as e:
                ecf_metrics.record_allocation(doc_type.value, e.code)
                logger.error(f"🔥 [Sequences] No number for {company_id}/{doc_type.prefix}: {e}")
                return Err(e)

            ecf_metrics.record_allocation(doc_type.value, "success")
            logger.info(f"🔢 [Sequences] Allocated {allocation.document_number} for company {company_id}")
            return Ok(allocation)

        ecf_metrics.record_allocation(doc_type.value, AllocationConflict.code)
        return Err(
            AllocationConflict(
                f"Could not allocate {doc_type.prefix} for company {company_id} after {attempts} attempts"
            )
        )

    def _allocate_once(self, company_id: int, doc_type: DocumentType, now: datetime, timeout: int) -> Allocation:
        try:
            with transaction.atomic():
                self._lock_key(company_id, doc_type, timeout)
                candidates = list(
                    SequenceRange.objects.filter(
                        company_id=company_id, document_type=doc_type.value, is_active=True
                    ).order_by("current_number", "start")
                )
                usable = [r for r in candidates if not r.is_exhausted and not r.is_expired(now)]
                if not usable:
                    raise self._unusable_error(company_id, doc_type, candidates)

                chosen = usable[0]
                number = chosen.current_number
                updated = SequenceRange.objects.filter(
                    pk=chosen.pk, current_number=number, version=chosen.version
                ).update(current_number=F("current_number") + 1, version=F("version") + 1)
                if updated != 1:
                    raise AllocationConflict(f"Range {chosen.pk} moved past {number} during allocation")

                remaining = chosen.end - number
                if self._crossed_low_watermark(chosen, remaining):
                    self._report_low_range(chosen, remaining)
        except OperationalError as e:
            # Lock wait timed out or the database refused the lock
            raise AllocationConflict(str(e)) from e

        return Allocation(
            sequence_range_id=chosen.pk,
            document_type=doc_type,
            number=number,
            document_number=doc_type.format_number(number),
            remaining=remaining,
        )

    def _lock_key(self, company_id: int, doc_type: DocumentType, timeout_ms: int) -> SequenceLock:
        if timeout_ms and connection.vendor == "postgresql":
            with connection.cursor() as cursor:
                cursor.execute("SET LOCAL lock_timeout = %s", [f"{int(timeout_ms)}ms"])
        lock, _ = SequenceLock.objects.get_or_create(company_id=company_id, document_type=doc_type.value)
        return SequenceLock.objects.select_for_update().get(pk=lock.pk)

    @staticmethod
    def _unusable_error(company_id: int, doc_type: DocumentType, candidates: list[SequenceRange]) -> SequenceError:
        if not candidates:
            return NoActiveRange(f"Company {company_id} has no active {doc_type.prefix} range")
        if any(not r.is_exhausted for r in candidates):
            return RangeExpired(f"Every usable {doc_type.prefix} range for company {company_id} has expired")
        return RangeExhausted(f"Every {doc_type.prefix} range for company {company_id} is exhausted")

    def _crossed_low_watermark(self, sequence_range: SequenceRange, remaining: int) -> bool:
        threshold = sequence_range.total * self.low_watermark
        return remaining < threshold <= remaining + 1

    def _report_low_range(self, sequence_range: SequenceRange, remaining: int) -> None:
        logger.warning(
            f"⚠️ [Sequences] Range {sequence_range} for company {sequence_range.company_id} "
            f"has {remaining} of {sequence_range.total} numbers left"
        )
        AuditService.log_compliance_event(
            ComplianceEventRequest(
                compliance_type="sequence_low",
                reference_id=str(sequence_range.pk),
                description=f"Sequence range {sequence_range} is running low",
                status="warning",
                evidence={"remaining": remaining, "total": sequence_range.total},
            )
        )

    # ===============================================================================
    # REGISTRATION
    # ===============================================================================

    def register_range(  # noqa: PLR0913
        self,
        company_id: int,
        document_type: DocumentType | str,
        start: int,
        end: int,
        expires_at: datetime,
        *,
        now: datetime | None = None,
    ) -> Result[SequenceRange, SequenceError]:
        """
        Record a DGII authorization for [start, end].

        The overlap check runs under the key lock against every range ever
        registered for the key, so numbers from a deactivated range can
        never be authorized twice.
        """
        try:
            doc_type = DocumentType.from_code(document_type)
        except ValueError as e:
            return Err(InvalidRange(str(e)))

        problem = self._check_bounds(start, end, expires_at, now or timezone.now())
        if problem:
            return Err(InvalidRange(problem))
        if not Company.objects.filter(pk=company_id, is_active=True).exists():
            return Err(InvalidRange(f"Company {company_id} is not an active issuer"))

        try:
            with transaction.atomic():
                self._lock_key(company_id, doc_type, self.lock_timeout_ms)
                overlapping = (
                    SequenceRange.objects.filter(company_id=company_id, document_type=doc_type.value)
                    .filter(start__lte=end, end__gte=start)
                    .first()
                )
                if overlapping is not None:
                    raise OverlapError(
                        f"{doc_type.format_number(start)}..{doc_type.format_number(end)} overlaps {overlapping}"
                    )
                sequence_range = SequenceRange.objects.create(
                    company_id=company_id,
                    document_type=doc_type.value,
                    start=start,
                    end=end,
                    current_number=start,
                    expires_at=expires_at,
                )
                AuditService.log_compliance_event(
                    ComplianceEventRequest(
                        compliance_type="sequence_registration",
                        reference_id=str(sequence_range.pk),
                        description=f"Registered {doc_type.prefix} range {sequence_range}",
                        evidence={"company_id": company_id, "start": start, "end": end, "expires_at": expires_at},
                    )
                )
        except OverlapError as e:
            logger.warning(f"⚠️ [Sequences] Rejected range for company {company_id}: {e}")
            return Err(e)
        except OperationalError as e:
            return Err(AllocationConflict(str(e)))

        logger.info(f"✅ [Sequences] Registered {sequence_range} for company {company_id}")
        return Ok(sequence_range)

    @staticmethod
    def _check_bounds(start: int, end: int, expires_at: datetime, now: datetime) -> str | None:
        if start < 1:
            return "Range start must be at least 1"
        if start > end:
            return "Range start must not be greater than its end"
        if end - start + 1 > MAX_RANGE_SIZE:
            return f"Range cannot cover more than {MAX_RANGE_SIZE} numbers"
        if expires_at <= now:
            return "Range authorization is already expired"
        return None

    # ===============================================================================
    # ADMINISTRATION
    # ===============================================================================

    def deactivate_range(self, range_id: int, reason: str = "") -> Result[SequenceRange, SequenceError]:
        """
        Stop issuing from a range. Issued numbers stay retired.

        Any unissued tail [current_number, end] is recorded as a pending
        SequenceAnnulment so it can be reported to DGII.
        """
        try:
            sequence_range = SequenceRange.objects.get(pk=range_id)
        except SequenceRange.DoesNotExist:
            return Err(InvalidRange(f"Sequence range {range_id} not found"))

        doc_type = DocumentType(sequence_range.document_type)
        try:
            with transaction.atomic():
                self._lock_key(sequence_range.company_id, doc_type, self.lock_timeout_ms)
                sequence_range = SequenceRange.objects.select_for_update().get(pk=range_id)
                if not sequence_range.is_active:
                    return Ok(sequence_range)

                sequence_range.is_active = False
                sequence_range.deactivated_at = timezone.now()
                sequence_range.save(update_fields=["is_active", "deactivated_at"])
                if not sequence_range.is_exhausted:
                    self._annul_tail(sequence_range, doc_type, reason)
        except OperationalError as e:
            return Err(AllocationConflict(str(e)))

        logger.info(f"🔒 [Sequences] Deactivated range {sequence_range}")
        return Ok(sequence_range)

    def _annul_tail(self, sequence_range: SequenceRange, doc_type: DocumentType, reason: str) -> SequenceAnnulment:
        annulment = SequenceAnnulment.objects.create(
            company_id=sequence_range.company_id,
            sequence_range=sequence_range,
            document_type=doc_type.value,
            number_from=sequence_range.current_number,
            number_to=sequence_range.end,
            encf_from=doc_type.format_number(sequence_range.current_number),
            encf_to=doc_type.format_number(sequence_range.end),
            reason=reason,
        )
        AuditService.log_compliance_event(
            ComplianceEventRequest(
                compliance_type="sequence_annulment",
                reference_id=str(sequence_range.pk),
                description=f"Annulled unissued {annulment} of range {sequence_range}",
                evidence={
                    "company_id": sequence_range.company_id,
                    "encf_from": annulment.encf_from,
                    "encf_to": annulment.encf_to,
                    "count": annulment.count,
                    "reason": reason,
                },
            )
        )
        logger.warning(f"🗑️ [Sequences] {annulment.count} unissued numbers annulled: {annulment}")
        return annulment

    def availability(
        self, company_id: int, document_type: DocumentType | str | None = None, now: datetime | None = None
    ) -> list[dict[str, Any]]:
        """Usage stats for the active ranges of a company."""
        queryset = SequenceRange.objects.filter(company_id=company_id, is_active=True)
        if document_type is not None:
            queryset = queryset.filter(document_type=DocumentType.from_code(document_type).value)
        return [r.stats(now) for r in queryset]
