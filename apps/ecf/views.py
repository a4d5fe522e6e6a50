"""
e-CF health endpoint for load balancers and monitoring.
"""

from __future__ import annotations

import logging

from django.http import HttpRequest
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response

from .contingency import ContingencyMonitor
from .models import Invoice, InvoiceStatus

logger = logging.getLogger(__name__)


@api_view(["GET"])
@permission_classes([AllowAny])
def health_check(request: HttpRequest) -> Response:
    """
    🩺 e-CF health

    GET /api/ecf/health/

    Returns 200 while no contingency invoice is past its 72h deadline,
    503 otherwise.
    """
    summary = ContingencyMonitor().summary()
    payload = {
        "status": "healthy" if summary.is_healthy else "degraded",
        "contingency": summary.to_dict(),
        "invoices": {
            "contingency": Invoice.objects.filter(status=InvoiceStatus.CONTINGENCY.value).count(),
            "error": Invoice.objects.filter(status=InvoiceStatus.ERROR.value).count(),
        },
    }
    if not summary.is_healthy:
        logger.warning(f"🚨 [e-CF] Health degraded: {summary.expired} contingency invoice(s) expired")
        return Response(payload, status=status.HTTP_503_SERVICE_UNAVAILABLE)
    return Response(payload)
