"""
Django management command to scan e-CF contingency deadlines.
Escalates every contingency invoice that passed its 72-hour window.
"""

from typing import Any

from django.core.management.base import BaseCommand, CommandParser

from apps.ecf.contingency import ContingencyMonitor


class Command(BaseCommand):
    help = "Escalate e-CF contingency invoices past their 72-hour deadline"

    def add_arguments(self, parser: CommandParser) -> None:
        parser.add_argument("--summary-only", action="store_true", help="Print the summary without escalating")

    def handle(self, *args: Any, **options: Any) -> None:
        monitor = ContingencyMonitor()
        now = monitor.clock.now()

        if not options["summary_only"]:
            expired = monitor.scan(now)
            for record in expired:
                self.stdout.write(
                    self.style.ERROR(f"🚨 {record.invoice.document_number}: deadline {record.deadline.isoformat()}")
                )

        summary = monitor.summary(now)
        line = (
            f"pending={summary.pending} urgent={summary.urgent} "
            f"expired={summary.expired} escalated={summary.escalated}"
        )
        if summary.is_healthy:
            self.stdout.write(self.style.SUCCESS(f"✅ Contingency OK: {line}"))
        else:
            self.stdout.write(self.style.WARNING(f"⚠️ Contingency breaches: {line}"))
