# ===============================================================================
# e-CF SEQUENCE CONCURRENCY TESTS
# ===============================================================================
from concurrent.futures import ThreadPoolExecutor

from django.db import connections
from django.test import TransactionTestCase

from apps.ecf.constants import DocumentType
from apps.ecf.models import SequenceRange
from apps.ecf.sequences import SequenceRegistry
from tests.factories.ecf_factories import create_company, create_range


class SequenceConcurrencyTestCase(TransactionTestCase):
    """Concurrent allocations on one key never collide or leave gaps"""

    def allocate_in_thread(self, company_id: int) -> int:
        try:
            registry = SequenceRegistry(max_retries=10, lock_timeout_ms=5000)
            return registry.allocate(company_id, DocumentType.CREDIT_FISCAL).unwrap().number
        finally:
            connections.close_all()

    def test_parallel_allocations_are_unique_and_contiguous(self):
        """Test 50 parallel allocations give exactly 1..50"""
        company = create_company()
        create_range(company, start=1, end=1000)

        with ThreadPoolExecutor(max_workers=8) as pool:
            numbers = list(pool.map(self.allocate_in_thread, [company.pk] * 50))

        self.assertEqual(sorted(numbers), list(range(1, 51)))
        sequence_range = SequenceRange.objects.get(company=company)
        self.assertEqual(sequence_range.current_number, 51)

    def test_parallel_allocations_stop_at_range_end(self):
        """Test the range never over-issues under contention"""
        company = create_company()
        create_range(company, start=1, end=10)
        registry = SequenceRegistry(max_retries=10, lock_timeout_ms=5000)

        def attempt(_: int) -> bool:
            try:
                return registry.allocate(company.pk, DocumentType.CREDIT_FISCAL).is_ok()
            finally:
                connections.close_all()

        with ThreadPoolExecutor(max_workers=8) as pool:
            outcomes = list(pool.map(attempt, range(20)))

        self.assertEqual(outcomes.count(True), 10)
        self.assertEqual(SequenceRange.objects.get(company=company).current_number, 11)
