"""
e-CF document catalogue and regulatory constants.

Values in this module are fixed by DGII regulation (Norma General 01-2020
and the e-CF technical documentation) and are not configurable.

Usage:
    from apps.ecf.constants import DocumentType

    doc_type = DocumentType.from_code("E31")
    doc_type.requires_buyer_rnc  # True
"""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from enum import IntEnum, StrEnum

# ===============================================================================
# CONSTANTS - Fixed by DGII regulation
# ===============================================================================

# Consumption invoices (E32) above this total must be issued as credit-fiscal (E31)
CONSUMPTION_CEILING = Decimal("250000.00")

# Resubmission window for documents issued in contingency
CONTINGENCY_WINDOW = timedelta(hours=72)

# eNCF = 3-char prefix + 10-digit zero-padded sequence number
ENCF_NUMBER_DIGITS = 10
ENCF_LENGTH = 13

# Largest range a single authorization may cover
MAX_RANGE_SIZE = 10_000_000

# Allowed ITBIS rates (percent)
TAX_RATES: frozenset[Decimal] = frozenset({Decimal("0"), Decimal("16"), Decimal("18")})

# Line item limits
MAX_LINE_ITEMS = 1000
MAX_LINE_ITEMS_CONSUMPTION = 10000

# Allowed deviation between computed and declared line totals
LINE_TOLERANCE = Decimal("1.00")

# Credit notes issued within this window may return the original ITBIS
CREDIT_NOTE_TAX_REFUND_DAYS = 30

# Local currency
DEFAULT_CURRENCY = "DOP"

# RNC / cédula lengths
RNC_LENGTH = 9
CEDULA_LENGTH = 11


class DocumentType(StrEnum):
    """e-CF document types authorized by DGII."""

    CREDIT_FISCAL = "credit-fiscal"  # E31 Factura de Crédito Fiscal
    CONSUMPTION = "consumption"  # E32 Factura de Consumo
    DEBIT_NOTE = "debit-note"  # E33 Nota de Débito
    CREDIT_NOTE = "credit-note"  # E34 Nota de Crédito
    PURCHASES = "purchases"  # E41 Compras
    MINOR_EXPENSE = "minor-expense"  # E43 Gastos Menores
    SPECIAL_REGIME = "special-regime"  # E44 Regímenes Especiales
    GOVERNMENT = "government"  # E45 Gubernamental
    EXPORT = "export"  # E46 Exportaciones
    FOREIGN_PAYMENT = "foreign-payment"  # E47 Pagos al Exterior

    @classmethod
    def choices(cls) -> list[tuple[str, str]]:
        return [(c.value, f"{c.prefix} {c.name.replace('_', ' ').title()}") for c in cls]

    @classmethod
    def from_code(cls, code: str | int) -> DocumentType:
        """Resolve a document type from its slug, its prefix ("E31") or its numeric code (31)."""
        raw = str(code).strip()
        for doc_type in cls:
            if raw in (doc_type.value, doc_type.prefix, str(doc_type.type_code)):
                return doc_type
        raise ValueError(f"Unknown e-CF document type: {code}")

    @property
    def type_code(self) -> int:
        return _TYPE_CODES[self]

    @property
    def prefix(self) -> str:
        return f"E{self.type_code}"

    @property
    def requires_buyer_rnc(self) -> bool:
        return self in _REQUIRES_BUYER_RNC

    @property
    def forbids_buyer_rnc(self) -> bool:
        return self is DocumentType.FOREIGN_PAYMENT

    @property
    def requires_reference(self) -> bool:
        return self in (DocumentType.DEBIT_NOTE, DocumentType.CREDIT_NOTE)

    @property
    def max_total(self) -> Decimal | None:
        return CONSUMPTION_CEILING if self is DocumentType.CONSUMPTION else None

    def format_number(self, number: int) -> str:
        """Render a sequence number as an eNCF, e.g. E310000000001."""
        return f"{self.prefix}{number:0{ENCF_NUMBER_DIGITS}d}"


_TYPE_CODES: dict[DocumentType, int] = {
    DocumentType.CREDIT_FISCAL: 31,
    DocumentType.CONSUMPTION: 32,
    DocumentType.DEBIT_NOTE: 33,
    DocumentType.CREDIT_NOTE: 34,
    DocumentType.PURCHASES: 41,
    DocumentType.MINOR_EXPENSE: 43,
    DocumentType.SPECIAL_REGIME: 44,
    DocumentType.GOVERNMENT: 45,
    DocumentType.EXPORT: 46,
    DocumentType.FOREIGN_PAYMENT: 47,
}

_REQUIRES_BUYER_RNC = frozenset(
    {
        DocumentType.CREDIT_FISCAL,
        DocumentType.PURCHASES,
        DocumentType.GOVERNMENT,
    }
)


class ModificationCode(IntEnum):
    """Reason codes for debit/credit notes (CodigoModificacion)."""

    VOID = 1  # Anula el NCF modificado
    TEXT_CORRECTION = 2  # Corrige texto del comprobante
    AMOUNT_CORRECTION = 3  # Corrige montos del NCF modificado
    CONTINGENCY_REPLACEMENT = 4  # Reemplazo NCF emitido en contingencia

    @classmethod
    def choices(cls) -> list[tuple[int, str]]:
        return [(c.value, c.name.replace("_", " ").title()) for c in cls]


class DGIIStatusCode(IntEnum):
    """Numeric status codes returned by the DGII status query."""

    NOT_FOUND = 0
    ACCEPTED = 1
    REJECTED = 2
    IN_PROCESS = 3
    CONDITIONAL = 4


class DGIIEnvironment(StrEnum):
    """DGII e-CF service environments."""

    TEST = "testecf"
    CERTIFICATION = "certecf"
    PRODUCTION = "ecf"

    @classmethod
    def choices(cls) -> list[tuple[str, str]]:
        return [(c.value, c.name.title()) for c in cls]

    @property
    def api_base_url(self) -> str:
        return f"https://ecf.dgii.gov.do/{self.value}"
