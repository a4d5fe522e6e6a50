"""
Tests for e-CF metrics.
"""

from django.test import SimpleTestCase, override_settings

from apps.ecf.metrics import NoOpMetric, _create_counter, ecf_metrics


class MetricsTestCase(SimpleTestCase):
    """Test metric creation and helpers."""

    @override_settings(ECF_METRICS_ENABLED=False)
    def test_disabled_metrics_are_noop(self):
        """Test disabled metrics swallow calls."""
        counter = _create_counter("test_disabled_total", "unused", ["label"])
        self.assertIsInstance(counter, NoOpMetric)
        counter.labels(label="x").inc()

    @override_settings(ECF_METRICS_ENABLED=True)
    def test_enabled_metrics_are_prometheus(self):
        """Test enabled metrics register a prometheus counter."""
        counter = _create_counter("test_enabled_total", "Test counter", ["label"])
        counter.labels(label="x").inc()
        self.assertEqual(counter.labels(label="x")._value.get(), 1)

    def test_timer_records_error_outcome_on_exception(self):
        """Test the DGII timer re-raises."""
        with self.assertRaises(RuntimeError), ecf_metrics.time_dgii_request("submit") as context:
            self.assertEqual(context["outcome"], "error")
            raise RuntimeError("boom")
