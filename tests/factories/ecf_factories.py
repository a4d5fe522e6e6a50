# ===============================================================================
# TEST FACTORIES FOR e-CF
# ===============================================================================
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

from django.utils import timezone

from apps.ecf.constants import DocumentType
from apps.ecf.models import Company, ContingencyRecord, Invoice, InvoiceStatus, SequenceRange
from apps.ecf.validator import InvoiceProposal, LineItemInput

VALID_RNC = "131880681"
VALID_CEDULA = "00114272362"


def create_company(name: str = "Comercial Test SRL", rnc: str = "101010101", **kwargs: Any) -> Company:
    """Create an active issuing company."""
    return Company.objects.create(name=name, rnc=rnc, **kwargs)


def create_range(
    company: Company,
    document_type: DocumentType = DocumentType.CREDIT_FISCAL,
    start: int = 1,
    end: int = 100,
    current_number: int | None = None,
    expires_at: datetime | None = None,
    **kwargs: Any,
) -> SequenceRange:
    """Create a sequence range directly, bypassing the registry checks."""
    return SequenceRange.objects.create(
        company=company,
        document_type=document_type.value,
        start=start,
        end=end,
        current_number=start if current_number is None else current_number,
        expires_at=expires_at or timezone.now() + timedelta(days=365),
        **kwargs,
    )


def create_invoice(
    company: Company,
    status: InvoiceStatus = InvoiceStatus.DRAFT,
    document_number: str | None = "E310000000001",
    document_type: DocumentType = DocumentType.CREDIT_FISCAL,
    **kwargs: Any,
) -> Invoice:
    """Create an Invoice with sensible defaults, already in the given status."""
    return Invoice.objects.create(
        company=company,
        document_type=document_type.value,
        document_number=document_number,
        buyer_name="Cliente Test SRL",
        buyer_rnc=VALID_RNC,
        subtotal=Decimal("100.00"),
        tax_total=Decimal("18.00"),
        total=Decimal("118.00"),
        status=status.value,
        **kwargs,
    )


def create_contingency(invoice: Invoice, entered_at: datetime, **kwargs: Any) -> ContingencyRecord:
    """Attach a contingency record that started at entered_at."""
    return ContingencyRecord.objects.create(
        invoice=invoice,
        entered_at=entered_at,
        deadline=ContingencyRecord.deadline_for(entered_at),
        **kwargs,
    )


def credit_fiscal_proposal(company: Company, **kwargs: Any) -> InvoiceProposal:
    """A valid E31 proposal: one line of 2 x 50.00 at 18%."""
    defaults: dict[str, Any] = {
        "company_id": company.pk,
        "document_type": DocumentType.CREDIT_FISCAL,
        "buyer_name": "Cliente Test SRL",
        "buyer_rnc": VALID_RNC,
        "lines": [LineItemInput(description="Hosting", quantity=2, unit_price="50.00", tax_rate=18)],
    }
    defaults.update(kwargs)
    return InvoiceProposal(**defaults)
