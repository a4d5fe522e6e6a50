"""
Async tasks for e-CF operations.

These tasks are designed for use with Django-Q2:
- poll_pending_status_task: Check status of every sent invoice that is due
- poll_invoice_status_task: Check status of one invoice
- scan_contingency_task: Escalate contingency records past their 72h deadline
- resubmit_contingency_task: Resend contingency invoices while DGII is back
- submit_annulments_task: Report pending range annulments to DGII

Usage:
    from django_q.tasks import async_task
    async_task("apps.ecf.tasks.poll_invoice_status_task", invoice_id)
"""

from __future__ import annotations

import logging
from typing import Any

from django.conf import settings
from django.db import DatabaseError
from django.utils import timezone
from django_q.models import Schedule
from django_q.tasks import async_task

from .contingency import ContingencyMonitor
from .service import InvoiceService

logger = logging.getLogger(__name__)

# Task timeout in seconds
TASK_TIMEOUT = 300  # 5 minutes


def poll_invoice_status_task(invoice_id: str) -> dict[str, Any]:
    """Poll DGII for a single invoice."""
    logger.info(f"[e-CF Task] Polling status for invoice {invoice_id}")

    result = InvoiceService().poll_status(invoice_id)
    if result.is_err():
        error = result.unwrap_err()
        logger.warning(f"[e-CF Task] Status poll for {invoice_id} failed: {error}")
        return {"success": False, "invoice_id": invoice_id, "error": str(error), "code": error.code}

    invoice = result.unwrap()
    return {
        "success": True,
        "invoice_id": invoice_id,
        "document_number": invoice.document_number,
        "status": invoice.status,
        "is_terminal": invoice.is_terminal,
    }


def poll_pending_status_task() -> dict[str, Any]:
    """
    Poll status for all invoices awaiting a DGII response.

    Scheduled every 2 minutes.
    """
    logger.info("[e-CF Task] Polling status for all pending invoices")

    results = InvoiceService().poll_pending(limit=getattr(settings, "ECF_POLL_BATCH_SIZE", 100))

    logger.info(f"[e-CF Task] Status poll complete: {results}")
    return {
        "success": True,
        "timestamp": timezone.now().isoformat(),
        **results,
    }


def scan_contingency_task() -> dict[str, Any]:
    """
    Escalate contingency invoices whose deadline has passed.

    Scheduled every 5 minutes. Running it twice escalates nothing twice.
    """
    logger.info("[e-CF Task] Scanning contingency deadlines")

    monitor = ContingencyMonitor()
    now = monitor.clock.now()
    expired = monitor.scan(now)
    summary = monitor.summary(now)

    if expired:
        logger.critical(f"[e-CF Task] {len(expired)} contingency invoice(s) past the 72h deadline")
    return {
        "success": True,
        "timestamp": now.isoformat(),
        "expired_invoices": [str(record.invoice_id) for record in expired],
        **summary.to_dict(),
    }


def resubmit_contingency_task() -> dict[str, Any]:
    """
    Resend contingency invoices, oldest deadline first.

    Scheduled every 5 minutes.
    """
    logger.info("[e-CF Task] Resubmitting contingency invoices")

    results = InvoiceService().resubmit_contingency(limit=getattr(settings, "ECF_RESUBMIT_BATCH_SIZE", 50))

    logger.info(f"[e-CF Task] Resubmission complete: {results}")
    return {
        "success": True,
        "timestamp": timezone.now().isoformat(),
        **results,
    }


def submit_annulments_task() -> dict[str, Any]:
    """Send PENDING range annulments. Scheduled every 15 minutes."""
    logger.info("[e-CF Task] Submitting pending range annulments")

    results = InvoiceService().submit_pending_annulments()

    logger.info(f"[e-CF Task] Annulment sweep complete: {results}")
    return {
        "success": True,
        "timestamp": timezone.now().isoformat(),
        **results,
    }


def schedule_ecf_tasks() -> None:
    """
    Schedule recurring e-CF tasks.

    Call this during application startup to set up scheduled tasks.
    """
    try:
        # Poll status every 2 minutes
        Schedule.objects.update_or_create(
            name="ecf_poll_status",
            defaults={
                "func": "apps.ecf.tasks.poll_pending_status_task",
                "schedule_type": Schedule.MINUTES,
                "minutes": 2,
            },
        )

        # Contingency deadline scan every 5 minutes
        Schedule.objects.update_or_create(
            name="ecf_scan_contingency",
            defaults={
                "func": "apps.ecf.tasks.scan_contingency_task",
                "schedule_type": Schedule.MINUTES,
                "minutes": 5,
            },
        )

        # Contingency resubmission every 5 minutes
        Schedule.objects.update_or_create(
            name="ecf_resubmit_contingency",
            defaults={
                "func": "apps.ecf.tasks.resubmit_contingency_task",
                "schedule_type": Schedule.MINUTES,
                "minutes": 5,
            },
        )

        # Range annulment sweep every 15 minutes
        Schedule.objects.update_or_create(
            name="ecf_submit_annulments",
            defaults={
                "func": "apps.ecf.tasks.submit_annulments_task",
                "schedule_type": Schedule.MINUTES,
                "minutes": 15,
            },
        )

        logger.info("[e-CF Task] Scheduled tasks configured")

    except DatabaseError as e:
        logger.error(f"[e-CF Task] Failed to schedule e-CF tasks: {e}")


# --- Async Task Helpers ---


def queue_status_poll(invoice_id: str) -> str:
    """Queue a status poll for one invoice. Returns the task id."""
    task_id = async_task(
        "apps.ecf.tasks.poll_invoice_status_task",
        str(invoice_id),
        timeout=TASK_TIMEOUT,
    )
    logger.info(f"[e-CF Task] Queued status poll for invoice {invoice_id}: task {task_id}")
    return str(task_id)
