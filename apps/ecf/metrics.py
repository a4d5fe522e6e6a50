"""
Prometheus metrics for e-CF observability.

Covers:
- Sequence allocations and range exhaustion
- Compliance validation outcomes
- Lifecycle transitions
- DGII request latency
- Contingency backlog and deadline breaches

Metrics are only collected if ECF_METRICS_ENABLED is set (default on).
"""

from __future__ import annotations

import logging
import time
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from django.conf import settings
from prometheus_client import Counter, Gauge, Histogram

logger = logging.getLogger(__name__)

METRICS_PREFIX = "ecf"


class NoOpMetric:
    """Stand-in used when metrics collection is disabled in settings."""

    def labels(self, *args: Any, **kwargs: Any) -> NoOpMetric:
        return self

    def inc(self, amount: float = 1) -> None:
        pass

    def set(self, value: float) -> None:
        pass

    def observe(self, value: float) -> None:
        pass


def _enabled() -> bool:
    return bool(getattr(settings, "ECF_METRICS_ENABLED", True))


def _create_counter(name: str, description: str, labels: list[str]) -> Any:
    if _enabled():
        return Counter(f"{METRICS_PREFIX}_{name}", description, labels)
    return NoOpMetric()


def _create_histogram(name: str, description: str, labels: list[str], buckets: tuple[float, ...]) -> Any:
    if _enabled():
        return Histogram(f"{METRICS_PREFIX}_{name}", description, labels, buckets=buckets)
    return NoOpMetric()


def _create_gauge(name: str, description: str, labels: list[str]) -> Any:
    if _enabled():
        return Gauge(f"{METRICS_PREFIX}_{name}", description, labels)
    return NoOpMetric()


# ===============================================================================
# METRICS DEFINITIONS
# ===============================================================================


class EcfMetrics:
    """e-CF metrics collection. All metrics are prefixed with 'ecf'."""

    def __init__(self) -> None:
        self.allocations_total = _create_counter(
            "allocations_total",
            "e-NCF allocation attempts",
            ["document_type", "result"],
        )
        self.allocation_conflicts_total = _create_counter(
            "allocation_conflicts_total",
            "Allocation compare-and-swap conflicts (retried)",
            ["document_type"],
        )
        self.validations_total = _create_counter(
            "validations_total",
            "Compliance validation outcomes",
            ["document_type", "result"],
        )
        self.transitions_total = _create_counter(
            "transitions_total",
            "Invoice lifecycle transitions",
            ["from_status", "to_status"],
        )
        self.dgii_request_duration_seconds = _create_histogram(
            "dgii_request_duration_seconds",
            "DGII API request duration",
            ["endpoint", "outcome"],
            buckets=(0.25, 0.5, 1, 2, 5, 10, 30),
        )
        self.contingency_pending = _create_gauge(
            "contingency_pending",
            "Invoices waiting in contingency",
            [],
        )
        self.contingency_expired = _create_gauge(
            "contingency_expired",
            "Contingency invoices past the 72-hour deadline",
            [],
        )
        self.contingency_escalations_total = _create_counter(
            "contingency_escalations_total",
            "Contingency invoices escalated to ERROR",
            [],
        )

    # ===== Convenience Methods =====

    def record_allocation(self, document_type: str, result: str) -> None:
        self.allocations_total.labels(document_type=document_type, result=result).inc()

    def record_conflict(self, document_type: str) -> None:
        self.allocation_conflicts_total.labels(document_type=document_type).inc()

    def record_validation(self, document_type: str, result: str) -> None:
        self.validations_total.labels(document_type=document_type, result=result).inc()

    def record_transition(self, from_status: str, to_status: str) -> None:
        self.transitions_total.labels(from_status=from_status, to_status=to_status).inc()

    def update_contingency(self, pending: int, expired: int) -> None:
        self.contingency_pending.set(pending)
        self.contingency_expired.set(expired)

    @contextmanager
    def time_dgii_request(self, endpoint: str) -> Generator[dict[str, Any]]:
        """Context manager to time DGII API requests."""
        start = time.monotonic()
        context: dict[str, Any] = {"outcome": "error"}
        try:
            yield context
        finally:
            self.dgii_request_duration_seconds.labels(endpoint=endpoint, outcome=context["outcome"]).observe(
                time.monotonic() - start
            )


ecf_metrics = EcfMetrics()
