# ===============================================================================
# RNC / CÉDULA TESTS
# ===============================================================================
from django.test import SimpleTestCase

from apps.ecf.rnc import (
    cedula_check_digit_ok,
    check_tax_id,
    is_well_formed,
    normalize_tax_id,
    rnc_check_digit_ok,
)


class TaxIdFormatTestCase(SimpleTestCase):
    """Test RNC and cédula format rules"""

    def test_normalize_strips_separators(self):
        """Test dashes and spaces are removed"""
        self.assertEqual(normalize_tax_id("1-31-88068-1"), "131880681")
        self.assertEqual(normalize_tax_id(" 001 1427236 2 "), "00114272362")

    def test_well_formed_lengths(self):
        """Test only 9 or 11 digits are accepted"""
        self.assertTrue(is_well_formed("131880681"))
        self.assertTrue(is_well_formed("00114272362"))
        self.assertFalse(is_well_formed("1318806"))
        self.assertFalse(is_well_formed("1318806810"))
        self.assertFalse(is_well_formed("13188068A"))

    def test_non_ascii_digits_are_malformed(self):
        """Test superscript and Arabic-Indic digits are not accepted"""
        self.assertFalse(is_well_formed("\u00b2" * 9))
        self.assertFalse(is_well_formed("\u0661" * 11))
        self.assertFalse(rnc_check_digit_ok("\u00b2" * 9))
        self.assertFalse(cedula_check_digit_ok("\u0661" * 11))
        self.assertFalse(check_tax_id("\u00b2" * 9).is_well_formed)


class TaxIdCheckDigitTestCase(SimpleTestCase):
    """Test check digit algorithms"""

    def test_valid_rnc(self):
        """Test a registered RNC passes the mod 11 check"""
        self.assertTrue(rnc_check_digit_ok("131880681"))

    def test_invalid_rnc(self):
        """Test a wrong final digit fails"""
        self.assertFalse(rnc_check_digit_ok("131880682"))

    def test_valid_cedula(self):
        """Test a cédula passes the Luhn style check"""
        self.assertTrue(cedula_check_digit_ok("00114272362"))

    def test_invalid_cedula(self):
        """Test a wrong final digit fails"""
        self.assertFalse(cedula_check_digit_ok("00114272360"))

    def test_check_tax_id_reports_kind(self):
        """Test the combined check"""
        rnc = check_tax_id("131-88068-1")
        self.assertTrue(rnc.is_well_formed)
        self.assertTrue(rnc.check_digit_ok)
        self.assertEqual(rnc.kind, "rnc")

        cedula = check_tax_id("001-1427236-0")
        self.assertTrue(cedula.is_well_formed)
        self.assertFalse(cedula.check_digit_ok)
        self.assertEqual(cedula.kind, "cedula")

        bad = check_tax_id("12345")
        self.assertFalse(bad.is_well_formed)
        self.assertEqual(bad.kind, "unknown")
