"""
Tests for the DGII e-CF API client.
"""

from datetime import datetime
from datetime import timezone as dt_timezone
from unittest.mock import Mock, patch

import requests
from django.test import TestCase, override_settings

from apps.ecf.client import AuthenticationError, DGIIClient, DGIIConfig
from apps.ecf.constants import DGIIEnvironment, DGIIStatusCode
from apps.ecf.exceptions import TransportRejected, TransportUnreachable
from apps.ecf.gateways import SignedDocument
from tests.factories.ecf_factories import create_company


def mock_response(status_code: int = 200, json_data=None, text: str | None = None, headers=None) -> Mock:
    response = Mock()
    response.status_code = status_code
    response.headers = headers or {}
    response.json.return_value = json_data if json_data is not None else {}
    response.text = text if text is not None else ("{}" if json_data is None else "json")
    return response


class DGIIConfigTestCase(TestCase):
    """Test DGIIConfig dataclass."""

    @override_settings(ECF_DGII_API_TOKEN="settings-token", ECF_DGII_ENVIRONMENT="certecf", ECF_DGII_TIMEOUT=10)
    def test_config_from_settings(self):
        """Test creating config from Django settings."""
        config = DGIIConfig.from_settings()
        self.assertEqual(config.api_token, "settings-token")
        self.assertEqual(config.environment, DGIIEnvironment.CERTIFICATION)
        self.assertEqual(config.timeout, 10)

    def test_environment_urls(self):
        """Test base URL per environment."""
        self.assertEqual(DGIIEnvironment.TEST.api_base_url, "https://ecf.dgii.gov.do/testecf")
        self.assertEqual(DGIIEnvironment.PRODUCTION.api_base_url, "https://ecf.dgii.gov.do/ecf")


class DGIIClientTestCase(TestCase):
    """Test DGIIClient requests and error classification."""

    def setUp(self):
        self.company = create_company(dgii_environment=DGIIEnvironment.TEST.value)
        self.client_api = DGIIClient(DGIIConfig(api_token="tok", max_retries=3, retry_delay=0.0))
        self.session = Mock()
        self.client_api._session = self.session
        self.signed = SignedDocument(document_number="E310000000001", content="<ECF/>", security_code="ABC123")

    def test_submit_returns_track_id(self):
        """Test a successful upload."""
        self.session.request.return_value = mock_response(200, {"trackId": "TRK-9", "estado": 3})

        receipt = self.client_api.submit(self.signed, self.company)

        self.assertEqual(receipt.track_id, "TRK-9")
        self.assertEqual(receipt.status_code, DGIIStatusCode.IN_PROCESS)
        self.assertFalse(receipt.is_immediate)
        args, kwargs = self.session.request.call_args
        self.assertEqual(args[0], "POST")
        self.assertEqual(args[1], "https://ecf.dgii.gov.do/testecf/recepcion/api/facturaselectronicas")
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer tok")
        self.assertIn("xml", kwargs["files"])

    def test_submit_immediate_status(self):
        """Test an upload answered with a final status."""
        self.session.request.return_value = mock_response(200, {"trackId": "TRK-9", "codigo": 1})
        receipt = self.client_api.submit(self.signed, self.company)
        self.assertTrue(receipt.is_immediate)

    def test_submit_annulment(self):
        """Test an ANECF upload goes to the range annulment service."""
        self.session.request.return_value = mock_response(200, {"mensaje": "Secuencias anuladas"})

        message = self.client_api.submit_annulment(self.signed, self.company)

        self.assertEqual(message, "Secuencias anuladas")
        args, _kwargs = self.session.request.call_args
        self.assertEqual(args[1], "https://ecf.dgii.gov.do/testecf/anulacionrangos/api/operaciones/anularrango")

    def test_submit_annulment_rejected(self):
        """Test a refused ANECF raises TransportRejected."""
        self.session.request.return_value = mock_response(400, {"mensaje": "Rango no autorizado"})
        with self.assertRaisesMessage(TransportRejected, "Rango no autorizado"):
            self.client_api.submit_annulment(self.signed, self.company)

    def test_submit_without_track_id_or_status(self):
        """Test an empty answer is treated as a rejection."""
        self.session.request.return_value = mock_response(200, {"mensaje": "Formato inválido"})
        with self.assertRaisesMessage(TransportRejected, "Formato inválido"):
            self.client_api.submit(self.signed, self.company)

    def test_client_error_is_rejection(self):
        """Test 4xx responses raise TransportRejected with DGII's messages."""
        self.session.request.return_value = mock_response(
            400, {"mensajes": [{"valor": "RNC inválido"}, {"valor": "Fecha inválida"}]}
        )

        with self.assertRaises(TransportRejected) as ctx:
            self.client_api.submit(self.signed, self.company)

        self.assertEqual(ctx.exception.status_code, 400)
        self.assertEqual(ctx.exception.message, "RNC inválido; Fecha inválida")

    def test_auth_error(self):
        """Test 401 raises AuthenticationError."""
        self.session.request.return_value = mock_response(401)
        with self.assertRaises(AuthenticationError):
            self.client_api.submit(self.signed, self.company)

    def test_server_error_is_unreachable(self):
        """Test 5xx responses route to contingency."""
        self.session.request.return_value = mock_response(503, text="")
        with self.assertRaises(TransportUnreachable):
            self.client_api.submit(self.signed, self.company)

    @patch("apps.ecf.client.time.sleep")
    def test_timeouts_retried_then_unreachable(self, mock_sleep):
        """Test network failures are retried with backoff."""
        self.session.request.side_effect = requests.Timeout("timed out")

        with self.assertRaises(TransportUnreachable):
            self.client_api.submit(self.signed, self.company)

        self.assertEqual(self.session.request.call_count, 3)
        self.assertEqual(mock_sleep.call_count, 2)

    @patch("apps.ecf.client.time.sleep")
    def test_connection_error_recovers(self, mock_sleep):
        """Test a transient connection error followed by success."""
        self.session.request.side_effect = [
            requests.ConnectionError("reset"),
            mock_response(200, {"trackId": "TRK-9"}),
        ]

        receipt = self.client_api.submit(self.signed, self.company)

        self.assertEqual(receipt.track_id, "TRK-9")
        mock_sleep.assert_called_once()

    @patch("apps.ecf.client.time.sleep")
    def test_rate_limit_honours_retry_after(self, mock_sleep):
        """Test 429 waits for Retry-After."""
        self.session.request.side_effect = [
            mock_response(429, headers={"Retry-After": "7"}),
            mock_response(200, {"trackId": "TRK-9"}),
        ]

        self.client_api.submit(self.signed, self.company)

        mock_sleep.assert_called_once_with(7)

    @patch("apps.ecf.client.time.sleep")
    @patch("apps.ecf.client.timezone.now", return_value=datetime(2026, 10, 21, 7, 27, 30, tzinfo=dt_timezone.utc))
    def test_rate_limit_retry_after_http_date(self, mock_now, mock_sleep):
        """Test an HTTP-date Retry-After is converted to a delay."""
        self.session.request.side_effect = [
            mock_response(429, headers={"Retry-After": "Wed, 21 Oct 2026 07:28:00 GMT"}),
            mock_response(200, {"trackId": "TRK-9"}),
        ]

        receipt = self.client_api.submit(self.signed, self.company)

        self.assertEqual(receipt.track_id, "TRK-9")
        mock_sleep.assert_called_once_with(30.0)

    @patch("apps.ecf.client.time.sleep")
    @patch("apps.ecf.client.timezone.now", return_value=datetime(2026, 10, 17, 12, 0, tzinfo=dt_timezone.utc))
    def test_rate_limit_far_http_date_is_unreachable(self, mock_now, mock_sleep):
        """Test a Retry-After date days away is not waited for."""
        self.session.request.return_value = mock_response(
            429, headers={"Retry-After": "Wed, 21 Oct 2026 07:28:00 GMT"}
        )

        with self.assertRaises(TransportUnreachable):
            self.client_api.submit(self.signed, self.company)
        mock_sleep.assert_not_called()

    @patch("apps.ecf.client.time.sleep")
    def test_rate_limit_over_cap_is_unreachable(self, mock_sleep):
        """Test a Retry-After above the configured maximum fails fast."""
        self.session.request.return_value = mock_response(429, headers={"Retry-After": "86400"})

        with self.assertRaises(TransportUnreachable):
            self.client_api.submit(self.signed, self.company)
        mock_sleep.assert_not_called()
        self.assertEqual(self.session.request.call_count, 1)

    @patch("apps.ecf.client.time.sleep")
    def test_rate_limit_unparseable_retry_after_uses_retry_delay(self, mock_sleep):
        """Test a garbage Retry-After falls back to the configured delay."""
        self.client_api.config.retry_delay = 2.0
        self.session.request.side_effect = [
            mock_response(429, headers={"Retry-After": "soon"}),
            mock_response(200, {"trackId": "TRK-9"}),
        ]

        self.client_api.submit(self.signed, self.company)

        mock_sleep.assert_called_once_with(2.0)

    def test_query_status(self):
        """Test status query parses the DGII code."""
        self.session.request.return_value = mock_response(200, {"estado": 1, "mensajes": ["Aceptado"]})

        report = self.client_api.query_status("TRK-9", self.company)

        self.assertEqual(report.status_code, DGIIStatusCode.ACCEPTED)
        self.assertEqual(report.message, "Aceptado")
        _, kwargs = self.session.request.call_args
        self.assertEqual(kwargs["params"], {"trackid": "TRK-9"})

    def test_query_status_without_code_is_not_found(self):
        """Test a missing code maps to NOT_FOUND."""
        self.session.request.return_value = mock_response(200, {})
        report = self.client_api.query_status("TRK-9", self.company)
        self.assertEqual(report.status_code, DGIIStatusCode.NOT_FOUND)
