# ===============================================================================
# e-CF ROUNDING TESTS
# ===============================================================================
from decimal import Decimal

from django.test import SimpleTestCase

from apps.ecf.rounding import round2, round3, round4, to_decimal


class RoundingTestCase(SimpleTestCase):
    """Half-up rounding on the first discarded digit"""

    def test_round2_half_up(self):
        """Test .005 rounds up instead of to even"""
        self.assertEqual(round2(Decimal("10.005")), Decimal("10.01"))
        self.assertEqual(round2(Decimal("10.015")), Decimal("10.02"))
        self.assertEqual(round2(Decimal("10.025")), Decimal("10.03"))

    def test_round2_below_half(self):
        """Test .004 rounds down"""
        self.assertEqual(round2(Decimal("10.004")), Decimal("10.00"))

    def test_round2_negative_rounds_away_from_zero(self):
        """Test negative halves move away from zero"""
        self.assertEqual(round2(Decimal("-0.005")), Decimal("-0.01"))

    def test_float_input_has_no_binary_artifacts(self):
        """Test 10.005 as a float still rounds to 10.01"""
        self.assertEqual(to_decimal(10.005), Decimal("10.005"))
        self.assertEqual(round2(10.005), Decimal("10.01"))

    def test_round3_and_round4(self):
        """Test the wider precisions"""
        self.assertEqual(round3("1.0005"), Decimal("1.001"))
        self.assertEqual(round4("1.00005"), Decimal("1.0001"))
        self.assertEqual(round4(3), Decimal("3.0000"))
