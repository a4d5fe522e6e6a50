"""
Collaborator interfaces used by the invoice service.

The service depends on these protocols only:
- DocumentSigner: turns a normalized invoice into a signed document
- DocumentTransport: delivers signed documents (e-CF and range annulments) to DGII
- StatusPoller: asks DGII for the outcome of a submission

DGIIClient (apps.ecf.client) implements transport and polling.
DevelopmentSigner is a non-cryptographic signer for test and certification
environments; production deployments point ECF_SIGNER_CLASS at a real one.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from django.conf import settings
from django.utils.module_loading import import_string

from .constants import DGIIStatusCode

if TYPE_CHECKING:
    from .models import Company, SequenceAnnulment
    from .validator import NormalizedInvoice


@dataclass(frozen=True)
class SignedDocument:
    document_number: str
    content: str
    security_code: str
    file_name: str = ""


@dataclass(frozen=True)
class SubmissionReceipt:
    """
    What DGII answered to a submission.

    Either a track id to poll later, or an immediate status code.
    """

    track_id: str = ""
    status_code: DGIIStatusCode | None = None
    message: str = ""
    raw_response: dict[str, Any] = field(default_factory=dict)

    @property
    def is_immediate(self) -> bool:
        return self.status_code is not None and self.status_code is not DGIIStatusCode.IN_PROCESS


@dataclass(frozen=True)
class StatusReport:
    track_id: str
    status_code: DGIIStatusCode
    message: str = ""
    raw_response: dict[str, Any] = field(default_factory=dict)


class DocumentSigner(Protocol):
    def sign(self, normalized: NormalizedInvoice, document_number: str, company: Company) -> SignedDocument: ...

    def sign_annulment(self, annulment: SequenceAnnulment, company: Company) -> SignedDocument: ...


class DocumentTransport(Protocol):
    def submit(self, signed: SignedDocument, company: Company) -> SubmissionReceipt: ...

    def submit_annulment(self, signed: SignedDocument, company: Company) -> str: ...


class StatusPoller(Protocol):
    def query_status(self, track_id: str, company: Company) -> StatusReport: ...


class DevelopmentSigner:
    """
    Canonical JSON payload with a SHA-256 digest.

    The security code is the first 6 hex characters of the digest, matching
    the length DGII prints on the representation of an e-CF.
    """

    def sign(self, normalized: NormalizedInvoice, document_number: str, company: Company) -> SignedDocument:
        payload = {
            "issuer_rnc": company.rnc,
            "document_number": document_number,
            **normalized.to_dict(),
        }
        content = json.dumps(payload, sort_keys=True, ensure_ascii=False)
        digest = hashlib.sha256(content.encode("utf-8")).hexdigest()
        return SignedDocument(
            document_number=document_number,
            content=content,
            security_code=digest[:6].upper(),
            file_name=f"{company.rnc}{document_number}.json",
        )

    def sign_annulment(self, annulment: SequenceAnnulment, company: Company) -> SignedDocument:
        payload = {
            "issuer_rnc": company.rnc,
            "document_type": annulment.document_type,
            "encf_from": annulment.encf_from,
            "encf_to": annulment.encf_to,
            "count": annulment.count,
        }
        content = json.dumps(payload, sort_keys=True, ensure_ascii=False)
        digest = hashlib.sha256(content.encode("utf-8")).hexdigest()
        return SignedDocument(
            document_number=annulment.encf_from,
            content=content,
            security_code=digest[:6].upper(),
            file_name=f"{company.rnc}ANECF{annulment.encf_from}.json",
        )


def get_default_signer() -> DocumentSigner:
    signer_class = import_string(getattr(settings, "ECF_SIGNER_CLASS", "apps.ecf.gateways.DevelopmentSigner"))
    signer: DocumentSigner = signer_class()
    return signer
