"""
DGII e-CF API client.

Sends signed documents to the reception service and queries submission
results by track id. Failures are classified for the invoice service:
- TransportUnreachable: timeouts, connection errors, 5xx, exhausted 429 retries
- TransportRejected: DGII refused the document (4xx)
- AuthenticationError: credentials refused, needs operator action

Reference:
- https://dgii.gov.do/cicloContribuyente/facturacion/comprobantesFiscalesElectronicosE-CF
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from datetime import timezone as dt_timezone
from email.utils import parsedate_to_datetime
from typing import Any, ClassVar

import requests
from django.conf import settings
from django.utils import timezone

from .constants import DGIIEnvironment, DGIIStatusCode
from .exceptions import TransportError, TransportRejected, TransportUnreachable
from .gateways import SignedDocument, StatusReport, SubmissionReceipt
from .metrics import ecf_metrics
from .models import Company

logger = logging.getLogger(__name__)

HTTP_OK_MAX = 299
HTTP_TOO_MANY_REQUESTS = 429
HTTP_UNAUTHORIZED = 401
HTTP_FORBIDDEN = 403
HTTP_SERVER_ERROR = 500


class AuthenticationError(TransportError):
    """DGII refused the credentials."""

    code = "dgii_authentication"


@dataclass
class DGIIConfig:
    """Configuration for the DGII API client."""

    api_token: str = ""
    environment: DGIIEnvironment = DGIIEnvironment.TEST
    timeout: int = 30
    max_retries: int = 3
    retry_delay: float = 1.0
    max_retry_after: float = 60.0

    @classmethod
    def from_settings(cls) -> DGIIConfig:
        return cls(
            api_token=getattr(settings, "ECF_DGII_API_TOKEN", ""),
            environment=DGIIEnvironment(getattr(settings, "ECF_DGII_ENVIRONMENT", DGIIEnvironment.TEST.value)),
            timeout=int(getattr(settings, "ECF_DGII_TIMEOUT", 30)),
            max_retries=int(getattr(settings, "ECF_DGII_MAX_RETRIES", 3)),
            retry_delay=float(getattr(settings, "ECF_DGII_RETRY_DELAY", 1.0)),
            max_retry_after=float(getattr(settings, "ECF_DGII_MAX_RETRY_AFTER", 60.0)),
        )


class DGIIClient:
    """
    Client for the DGII e-CF web services.

    Usage:
        client = DGIIClient(DGIIConfig.from_settings())
        receipt = client.submit(signed_document, company)
        report = client.query_status(receipt.track_id, company)
    """

    SEND_ECF_PATH: ClassVar[str] = "recepcion/api/facturaselectronicas"
    QUERY_RESULT_PATH: ClassVar[str] = "consultaresultado/api/consultas/estado"
    ANNUL_RANGE_PATH: ClassVar[str] = "anulacionrangos/api/operaciones/anularrango"

    def __init__(self, config: DGIIConfig | None = None):
        self.config = config or DGIIConfig.from_settings()
        self._session: requests.Session | None = None

    @property
    def session(self) -> requests.Session:
        """Get or create HTTP session."""
        if self._session is None:
            self._session = requests.Session()
            self._session.headers.update({"Accept": "application/json", "User-Agent": "ecf-core/1.0"})
        return self._session

    def close(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None

    def __enter__(self) -> DGIIClient:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def base_url_for(self, company: Company) -> str:
        environment = DGIIEnvironment(company.dgii_environment or self.config.environment.value)
        return environment.api_base_url

    # --- Operations ---

    def submit(self, signed: SignedDocument, company: Company) -> SubmissionReceipt:
        """Upload a signed e-CF. Returns the track id (or an immediate status)."""
        url = f"{self.base_url_for(company)}/{self.SEND_ECF_PATH}"
        file_name = signed.file_name or f"{company.rnc}{signed.document_number}.xml"

        with ecf_metrics.time_dgii_request("submit") as context:
            response = self._request_with_retry(
                "POST",
                url,
                files={"xml": (file_name, signed.content.encode("utf-8"), "text/xml")},
                headers=self._auth_headers(),
            )
            data = self._check_response(response)
            context["outcome"] = "ok"

        track_id = str(data.get("trackId") or data.get("TrackId") or "")
        code = self._status_code(data)
        message = self._message(data)
        if not track_id and code is None:
            raise TransportRejected(message or "DGII returned neither a track id nor a status", response.status_code)

        logger.info(f"🌐 [DGII] Submitted {signed.document_number}, track id {track_id or '-'}")
        return SubmissionReceipt(track_id=track_id, status_code=code, message=message, raw_response=data)

    def query_status(self, track_id: str, company: Company) -> StatusReport:
        """Ask DGII for the result of a submission."""
        url = f"{self.base_url_for(company)}/{self.QUERY_RESULT_PATH}"

        with ecf_metrics.time_dgii_request("status") as context:
            response = self._request_with_retry(
                "GET", url, params={"trackid": track_id}, headers=self._auth_headers()
            )
            data = self._check_response(response)
            context["outcome"] = "ok"

        code = self._status_code(data)
        report = StatusReport(
            track_id=track_id,
            status_code=code if code is not None else DGIIStatusCode.NOT_FOUND,
            message=self._message(data),
            raw_response=data,
        )
        logger.info(f"🌐 [DGII] Status for {track_id}: {report.status_code.name}")
        return report

    def submit_annulment(self, signed: SignedDocument, company: Company) -> str:
        """Upload a signed ANECF. DGII answers synchronously, there is no track id."""
        url = f"{self.base_url_for(company)}/{self.ANNUL_RANGE_PATH}"
        file_name = signed.file_name or f"{company.rnc}ANECF{signed.document_number}.xml"

        with ecf_metrics.time_dgii_request("annul") as context:
            response = self._request_with_retry(
                "POST",
                url,
                files={"xml": (file_name, signed.content.encode("utf-8"), "text/xml")},
                headers=self._auth_headers(),
            )
            data = self._check_response(response)
            context["outcome"] = "ok"

        logger.info(f"🌐 [DGII] Annulment from {signed.document_number} acknowledged")
        return self._message(data)

    # --- Helpers ---

    def _auth_headers(self) -> dict[str, str]:
        if not self.config.api_token:
            return {}
        return {"Authorization": f"Bearer {self.config.api_token}"}

    def _request_with_retry(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        """Make HTTP request with retry logic."""
        kwargs.setdefault("timeout", self.config.timeout)
        last_error: Exception | str | None = None

        for attempt in range(self.config.max_retries):
            try:
                response = self.session.request(method, url, **kwargs)

                if response.status_code == HTTP_TOO_MANY_REQUESTS:
                    retry_after = self._retry_after_seconds(response)
                    last_error = "rate limited"
                    if retry_after > self.config.max_retry_after:
                        raise TransportUnreachable(
                            f"DGII rate limited for {retry_after:.0f}s, "
                            f"over the {self.config.max_retry_after:.0f}s limit"
                        )
                    logger.warning(f"⚠️ [DGII] Rate limited, waiting {retry_after}s")
                    time.sleep(retry_after)
                    continue

                return response

            except requests.Timeout as e:
                last_error = e
                logger.warning(f"⚠️ [DGII] Request timeout (attempt {attempt + 1}/{self.config.max_retries})")
            except requests.ConnectionError as e:
                last_error = e
                logger.warning(f"⚠️ [DGII] Connection error (attempt {attempt + 1}/{self.config.max_retries})")

            # Wait before retry (exponential backoff)
            if attempt < self.config.max_retries - 1:
                time.sleep(self.config.retry_delay * (2**attempt))

        raise TransportUnreachable(f"DGII request failed after {self.config.max_retries} attempts: {last_error}")

    def _retry_after_seconds(self, response: requests.Response) -> float:
        """Seconds to wait from a Retry-After header, in delta-seconds or HTTP-date form."""
        raw = str(response.headers.get("Retry-After", "")).strip()
        if raw.isascii() and raw.isdigit():
            return float(raw)
        try:
            retry_at = parsedate_to_datetime(raw)
        except (TypeError, ValueError):
            if raw:
                logger.warning(f"⚠️ [DGII] Unparseable Retry-After header: {raw!r}")
            return self.config.retry_delay
        if retry_at.tzinfo is None:
            retry_at = retry_at.replace(tzinfo=dt_timezone.utc)
        return max(0.0, (retry_at - timezone.now()).total_seconds())

    def _check_response(self, response: requests.Response) -> dict[str, Any]:
        data = self._parse_body(response)
        status = response.status_code
        if status <= HTTP_OK_MAX:
            return data
        if status >= HTTP_SERVER_ERROR:
            raise TransportUnreachable(f"DGII returned HTTP {status}")
        if status in (HTTP_UNAUTHORIZED, HTTP_FORBIDDEN):
            raise AuthenticationError(f"DGII refused credentials (HTTP {status})")
        raise TransportRejected(self._message(data) or f"HTTP {status}", status)

    @staticmethod
    def _parse_body(response: requests.Response) -> dict[str, Any]:
        if not response.text:
            return {}
        try:
            data = response.json()
        except (json.JSONDecodeError, ValueError):
            return {"raw_text": response.text[:2000]}
        return data if isinstance(data, dict) else {"items": data}

    @staticmethod
    def _status_code(data: dict[str, Any]) -> DGIIStatusCode | None:
        raw = data.get("estado", data.get("codigo", data.get("status")))
        if raw is None:
            return None
        try:
            return DGIIStatusCode(int(raw))
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _message(data: dict[str, Any]) -> str:
        messages = data.get("mensajes") or data.get("Mensajes")
        if isinstance(messages, list):
            parts = [m.get("valor", str(m)) if isinstance(m, dict) else str(m) for m in messages]
            return "; ".join(parts)
        return str(data.get("mensaje") or data.get("message") or data.get("raw_text") or "")
