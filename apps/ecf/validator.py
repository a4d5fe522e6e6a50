"""
Compliance validator for DGII e-CF rules.

Checks a proposed invoice before a number is allocated:
1. Buyer identity (RNC / cédula format and per-type requirement)
2. Currency and exchange rate
3. Line items (structure, allowed tax rates, discount bounds, item limits)
4. Rounding of derived amounts (half-up, 2 decimals)
5. Consumption ceiling
6. Tolerance between computed and declared totals
7. Reference to the modified document for debit/credit notes

The first failing rule is returned. Tolerance breaches never fail: they
flag the invoice so its DGII acceptance is classified as conditional.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, ClassVar

from django.utils import timezone

from apps.common.types import Err, Ok, Result

from .constants import (
    CREDIT_NOTE_TAX_REFUND_DAYS,
    DEFAULT_CURRENCY,
    LINE_TOLERANCE,
    MAX_LINE_ITEMS,
    MAX_LINE_ITEMS_CONSUMPTION,
    TAX_RATES,
    DocumentType,
    ModificationCode,
)
from .exceptions import CeilingExceeded, ValidationError
from .metrics import ecf_metrics
from .rnc import check_tax_id
from .rounding import round2, round4, to_decimal

logger = logging.getLogger(__name__)

Number = Decimal | int | float | str


# ===============================================================================
# INPUT TYPES
# ===============================================================================


@dataclass
class LineItemInput:
    description: str
    quantity: Number
    unit_price: Number
    tax_rate: Number
    discount: Number = Decimal("0")
    declared_total: Number | None = None


@dataclass
class DocumentReference:
    """Document modified by a debit or credit note."""

    document_number: str
    issue_date: date
    modification_code: int


@dataclass
class InvoiceProposal:
    company_id: int
    document_type: DocumentType | str
    lines: list[LineItemInput]
    buyer_name: str = ""
    buyer_rnc: str | None = None
    reference: DocumentReference | None = None
    declared_total: Number | None = None
    currency: str = DEFAULT_CURRENCY
    exchange_rate: Number | None = None
    issue_date: date | None = None


# ===============================================================================
# OUTPUT TYPES
# ===============================================================================


@dataclass(frozen=True)
class NormalizedLine:
    line_number: int
    description: str
    quantity: Decimal
    unit_price: Decimal
    tax_rate: Decimal
    discount: Decimal
    net_amount: Decimal
    tax_amount: Decimal
    line_total: Decimal
    declared_total: Decimal | None = None

    @property
    def deviation(self) -> Decimal:
        if self.declared_total is None:
            return Decimal("0.00")
        return abs(self.line_total - self.declared_total)


@dataclass(frozen=True)
class ToleranceReport:
    """How far computed totals drift from what the issuer declared."""

    line_deviations: tuple[Decimal, ...]
    lines_over_tolerance: tuple[int, ...]
    global_deviation: Decimal
    global_allowance: Decimal
    global_exceeded: bool

    @property
    def within_tolerance(self) -> bool:
        return not self.lines_over_tolerance and not self.global_exceeded


@dataclass
class NormalizedInvoice:
    company_id: int
    document_type: DocumentType
    buyer_name: str
    buyer_rnc: str
    lines: list[NormalizedLine]
    subtotal: Decimal
    discount_total: Decimal
    tax_total: Decimal
    total: Decimal
    currency: str
    exchange_rate: Decimal | None
    tolerance: ToleranceReport
    declared_total: Decimal | None = None
    reference: DocumentReference | None = None
    tax_refundable: bool = False
    warnings: list[str] = field(default_factory=list)

    @property
    def requires_conditional(self) -> bool:
        return not self.tolerance.within_tolerance

    def to_dict(self) -> dict[str, Any]:
        return {
            "document_type": self.document_type.value,
            "buyer_name": self.buyer_name,
            "buyer_rnc": self.buyer_rnc,
            "currency": self.currency,
            "exchange_rate": str(self.exchange_rate) if self.exchange_rate is not None else None,
            "lines": [
                {
                    "line_number": line.line_number,
                    "description": line.description,
                    "quantity": str(line.quantity),
                    "unit_price": str(line.unit_price),
                    "tax_rate": str(line.tax_rate),
                    "discount": str(line.discount),
                    "net_amount": str(line.net_amount),
                    "tax_amount": str(line.tax_amount),
                    "line_total": str(line.line_total),
                }
                for line in self.lines
            ],
            "subtotal": str(self.subtotal),
            "discount_total": str(self.discount_total),
            "tax_total": str(self.tax_total),
            "total": str(self.total),
            "reference": (
                {
                    "document_number": self.reference.document_number,
                    "issue_date": self.reference.issue_date.isoformat(),
                    "modification_code": self.reference.modification_code,
                }
                if self.reference
                else None
            ),
        }


# ===============================================================================
# VALIDATOR
# ===============================================================================


class ComplianceValidator:
    """Apply DGII numeric and document-type rules to a proposed invoice."""

    # NCFModificado: electronic (E + 12 digits), pre-printed B series, or A/P series
    REFERENCE_PATTERNS: ClassVar[tuple[re.Pattern[str], ...]] = (
        re.compile(r"^E\d{12}$"),
        re.compile(r"^B\d{10}$"),
        re.compile(r"^[AP][A-Z0-9]{18}$"),
    )

    CURRENCY_PATTERN: ClassVar[re.Pattern[str]] = re.compile(r"^[A-Z]{3}$")

    def validate(self, proposal: InvoiceProposal) -> Result[NormalizedInvoice, ValidationError]:
        """Validate and normalize a proposal. Returns the first rule violation as Err."""
        try:
            doc_type = DocumentType.from_code(proposal.document_type)
        except ValueError as e:
            return Err(ValidationError("invalid_document_type", str(e), field="document_type"))

        warnings: list[str] = []
        try:
            buyer_rnc = self._validate_buyer(proposal, doc_type, warnings)
            currency, exchange_rate = self._validate_currency(proposal)
            lines = self._validate_lines(proposal, doc_type)
            subtotal = sum((line.net_amount for line in lines), Decimal("0.00"))
            discount_total = sum((line.discount for line in lines), Decimal("0.00"))
            tax_total = sum((line.tax_amount for line in lines), Decimal("0.00"))
            total = subtotal + tax_total
            self._validate_ceiling(doc_type, total, exchange_rate)
            declared_total = self._decimal_or_none(proposal.declared_total, "declared_total")
            tolerance = self._evaluate_tolerance(lines, declared_total)
            reference, tax_refundable = self._validate_reference(proposal, doc_type)
        except ValidationError as e:
            ecf_metrics.record_validation(doc_type.value, e.code)
            logger.info(f"🚫 [Validator] {doc_type.prefix} proposal rejected: [{e.code}] {e.message}")
            return Err(e)

        if not tolerance.within_tolerance:
            warnings.append("Declared totals are outside DGII tolerance; acceptance will be conditional")
            logger.warning(
                f"⚠️ [Validator] {doc_type.prefix} proposal outside tolerance "
                f"(lines {list(tolerance.lines_over_tolerance)}, global deviation {tolerance.global_deviation})"
            )

        ecf_metrics.record_validation(doc_type.value, "valid" if tolerance.within_tolerance else "conditional")
        return Ok(
            NormalizedInvoice(
                company_id=proposal.company_id,
                document_type=doc_type,
                buyer_name=(proposal.buyer_name or "").strip(),
                buyer_rnc=buyer_rnc,
                lines=lines,
                subtotal=subtotal,
                discount_total=discount_total,
                tax_total=tax_total,
                total=total,
                currency=currency,
                exchange_rate=exchange_rate,
                tolerance=tolerance,
                declared_total=declared_total,
                reference=reference,
                tax_refundable=tax_refundable,
                warnings=warnings,
            )
        )

    # ===== Rules =====

    def _validate_buyer(self, proposal: InvoiceProposal, doc_type: DocumentType, warnings: list[str]) -> str:
        raw = (proposal.buyer_rnc or "").strip()
        if not raw:
            if doc_type.requires_buyer_rnc:
                raise ValidationError(
                    "buyer_rnc_required", f"{doc_type.prefix} requires an identified buyer RNC", field="buyer_rnc"
                )
            return ""

        if doc_type.forbids_buyer_rnc:
            raise ValidationError(
                "buyer_rnc_not_allowed", f"{doc_type.prefix} must not carry a buyer RNC", field="buyer_rnc"
            )

        check = check_tax_id(raw)
        if not check.is_well_formed:
            raise ValidationError(
                "invalid_buyer_rnc", "Buyer RNC must be 9 digits (RNC) or 11 digits (cédula)", field="buyer_rnc"
            )
        if not check.check_digit_ok:
            warnings.append(f"Buyer {check.kind} {check.value} failed the check digit test")
        if doc_type.requires_buyer_rnc and not (proposal.buyer_name or "").strip():
            raise ValidationError("buyer_name_required", "Buyer name is required", field="buyer_name")
        return check.value

    def _validate_currency(self, proposal: InvoiceProposal) -> tuple[str, Decimal | None]:
        currency = (proposal.currency or DEFAULT_CURRENCY).strip().upper()
        if not self.CURRENCY_PATTERN.match(currency):
            raise ValidationError("invalid_currency", f"Unknown currency code: {currency}", field="currency")

        exchange_rate = self._decimal_or_none(proposal.exchange_rate, "exchange_rate")
        if currency == DEFAULT_CURRENCY:
            return currency, None
        if exchange_rate is None or exchange_rate <= 0:
            raise ValidationError(
                "exchange_rate_required", f"{currency} invoices need a positive exchange rate", field="exchange_rate"
            )
        return currency, round4(exchange_rate)

    def _validate_lines(self, proposal: InvoiceProposal, doc_type: DocumentType) -> list[NormalizedLine]:
        if not proposal.lines:
            raise ValidationError("lines_required", "An invoice needs at least one line item", field="lines")

        limit = MAX_LINE_ITEMS_CONSUMPTION if doc_type is DocumentType.CONSUMPTION else MAX_LINE_ITEMS
        if len(proposal.lines) > limit:
            raise ValidationError(
                "too_many_lines", f"{doc_type.prefix} allows at most {limit} line items", field="lines"
            )

        return [self._normalize_line(index, item) for index, item in enumerate(proposal.lines, start=1)]

    def _normalize_line(self, line_number: int, item: LineItemInput) -> NormalizedLine:
        location = f"lines[{line_number}]"
        description = (item.description or "").strip()
        if not description:
            raise ValidationError("description_required", "Line description is required", field=location)

        quantity = round4(self._decimal(item.quantity, f"{location}.quantity"))
        if quantity <= 0:
            raise ValidationError("invalid_quantity", "Quantity must be greater than zero", field=location)

        unit_price = round4(self._decimal(item.unit_price, f"{location}.unit_price"))
        if unit_price <= 0:
            raise ValidationError("invalid_unit_price", "Unit price must be greater than zero", field=location)

        tax_rate = self._decimal(item.tax_rate, f"{location}.tax_rate")
        if tax_rate not in TAX_RATES:
            allowed = ", ".join(str(rate) for rate in sorted(TAX_RATES))
            raise ValidationError("invalid_tax_rate", f"Tax rate must be one of {allowed}", field=location)

        discount = self._decimal(item.discount if item.discount is not None else 0, f"{location}.discount")
        if discount < 0:
            raise ValidationError("invalid_discount", "Discount cannot be negative", field=location)
        discount = round2(discount)

        line_subtotal = round2(quantity * unit_price)
        if discount > line_subtotal:
            raise ValidationError(
                "discount_exceeds_subtotal",
                f"Discount {discount} exceeds the line subtotal {line_subtotal}",
                field=location,
            )

        net_amount = line_subtotal - discount
        tax_amount = round2(net_amount * tax_rate / Decimal("100"))
        declared = self._decimal_or_none(item.declared_total, f"{location}.declared_total")
        return NormalizedLine(
            line_number=line_number,
            description=description,
            quantity=quantity,
            unit_price=unit_price,
            tax_rate=tax_rate,
            discount=discount,
            net_amount=net_amount,
            tax_amount=tax_amount,
            line_total=net_amount + tax_amount,
            declared_total=round2(declared) if declared is not None else None,
        )

    def _validate_ceiling(self, doc_type: DocumentType, total: Decimal, exchange_rate: Decimal | None) -> None:
        ceiling = doc_type.max_total
        if ceiling is None:
            return
        total_in_dop = round2(total * exchange_rate) if exchange_rate is not None else total
        if total_in_dop > ceiling:
            raise CeilingExceeded(total_in_dop, ceiling, DocumentType.CREDIT_FISCAL.value)

    def _evaluate_tolerance(self, lines: list[NormalizedLine], declared_total: Decimal | None) -> ToleranceReport:
        deviations = tuple(line.deviation for line in lines)
        over = tuple(line.line_number for line in lines if line.deviation > LINE_TOLERANCE)
        allowance = Decimal(len(lines))
        global_deviation = Decimal("0.00")
        if declared_total is not None:
            computed = sum((line.line_total for line in lines), Decimal("0.00"))
            global_deviation = abs(computed - round2(declared_total))
        return ToleranceReport(
            line_deviations=deviations,
            lines_over_tolerance=over,
            global_deviation=global_deviation,
            global_allowance=allowance,
            global_exceeded=global_deviation > allowance,
        )

    def _validate_reference(
        self, proposal: InvoiceProposal, doc_type: DocumentType
    ) -> tuple[DocumentReference | None, bool]:
        if not doc_type.requires_reference:
            return None, False

        reference = proposal.reference
        if reference is None:
            raise ValidationError(
                "reference_required", f"{doc_type.prefix} must reference the document it modifies", field="reference"
            )

        number = (reference.document_number or "").strip().upper()
        if not any(pattern.match(number) for pattern in self.REFERENCE_PATTERNS):
            raise ValidationError(
                "invalid_reference_number",
                f"'{reference.document_number}' is not a valid e-NCF or NCF",
                field="reference.document_number",
            )

        issue_date = proposal.issue_date or timezone.localdate()
        if reference.issue_date is None:
            raise ValidationError(
                "reference_date_required", "Original issue date is required", field="reference.issue_date"
            )
        if reference.issue_date > issue_date:
            raise ValidationError(
                "reference_date_in_future",
                "Original issue date cannot be after the note's issue date",
                field="reference.issue_date",
            )

        try:
            code = ModificationCode(int(reference.modification_code))
        except (TypeError, ValueError) as e:
            raise ValidationError(
                "invalid_modification_code",
                f"Modification code must be one of {[c.value for c in ModificationCode]}",
                field="reference.modification_code",
            ) from e

        tax_refundable = (
            doc_type is DocumentType.CREDIT_NOTE
            and (issue_date - reference.issue_date).days <= CREDIT_NOTE_TAX_REFUND_DAYS
        )
        normalized = DocumentReference(document_number=number, issue_date=reference.issue_date, modification_code=code)
        return normalized, tax_refundable

    # ===== Helpers =====

    @staticmethod
    def _decimal(value: Number, location: str) -> Decimal:
        try:
            result = to_decimal(value)
        except (InvalidOperation, TypeError, ValueError) as e:
            raise ValidationError("invalid_number", f"'{value}' is not a number", field=location) from e
        if not result.is_finite():
            raise ValidationError("invalid_number", f"'{value}' is not a finite number", field=location)
        return result

    @classmethod
    def _decimal_or_none(cls, value: Number | None, location: str) -> Decimal | None:
        if value is None or value == "":
            return None
        return cls._decimal(value, location)
