"""
Audit services for the e-CF compliance core
Centralized compliance logging for DGII regulations.
"""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from .models import AuditAlert, ComplianceLog

logger = logging.getLogger(__name__)


class AuditJSONEncoder(json.JSONEncoder):
    """
    JSON encoder for audit metadata.

    Handles the types that show up in e-CF evidence:
    - UUID objects (convert to string)
    - date/datetime objects (convert to ISO format)
    - Decimal objects (convert to string to preserve precision)
    - Model instances (convert to string representation)
    """

    def default(self, obj: Any) -> Any:
        if isinstance(obj, uuid.UUID):
            return str(obj)
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, Decimal):
            return str(obj)
        if hasattr(obj, "pk"):
            return f"{obj.__class__.__name__}(pk={obj.pk})"
        return super().default(obj)


def serialize_metadata(metadata: dict[str, Any]) -> dict[str, Any]:
    """Round-trip metadata through AuditJSONEncoder so it is safe for JSONField storage."""
    if not metadata:
        return {}
    result: dict[str, Any] = json.loads(json.dumps(metadata, cls=AuditJSONEncoder, ensure_ascii=False))
    return result


@dataclass
class ComplianceEventRequest:
    """Parameter object for compliance events"""

    compliance_type: str
    reference_id: str
    description: str
    status: str = "success"
    evidence: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)


class AuditService:
    """Centralized audit logging for DGII compliance"""

    @staticmethod
    def log_compliance_event(request: ComplianceEventRequest) -> ComplianceLog:
        """
        📋 Log DGII compliance event

        Args:
            request: ComplianceEventRequest containing all compliance event data
        """
        try:
            compliance_log = ComplianceLog.objects.create(
                compliance_type=request.compliance_type,
                reference_id=request.reference_id,
                description=request.description,
                status=request.status,
                evidence=serialize_metadata(request.evidence),
                metadata=serialize_metadata(request.metadata),
            )
        except Exception as e:
            logger.error(f"🔥 [Compliance] Failed to log {request.compliance_type}: {e}")
            raise

        logger.info(f"📋 [Compliance] {request.compliance_type} logged: {request.reference_id}")
        return compliance_log

    @staticmethod
    def raise_alert(
        *,
        title: str,
        description: str,
        reference_id: str = "",
        severity: str = "critical",
        alert_type: str = "compliance_violation",
        evidence: dict[str, Any] | None = None,
    ) -> AuditAlert:
        """
        🚨 Open an alert for manual reconciliation.

        An alert that is still active for the same reference and type is
        reused instead of duplicated.
        """
        alert, created = AuditAlert.objects.get_or_create(
            alert_type=alert_type,
            reference_id=reference_id,
            status="active",
            defaults={
                "severity": severity,
                "title": title,
                "description": description,
                "evidence": serialize_metadata(evidence or {}),
            },
        )
        if created:
            logger.warning(f"🚨 [Audit] {severity} alert raised: {title}")
        return alert
