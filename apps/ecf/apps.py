"""
Django app configuration for the e-CF app
"""

import logging

from django.apps import AppConfig

logger = logging.getLogger(__name__)


class EcfConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "apps.ecf"
    label = "ecf"
    verbose_name = "e-CF Compliance"

    def ready(self) -> None:
        """Schedule e-CF recurring tasks when Django starts."""
        from django.conf import settings  # noqa: PLC0415

        if getattr(settings, "ECF_SCHEDULE_TASKS", False):
            try:
                from apps.ecf.tasks import schedule_ecf_tasks  # noqa: PLC0415

                schedule_ecf_tasks()
            except Exception:
                logger.warning("⚠️ [e-CF] Failed to schedule e-CF tasks during startup")
