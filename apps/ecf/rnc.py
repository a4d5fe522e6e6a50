"""
RNC and cédula checks.

Format is enforced (9 digits for an RNC, 11 for a cédula). Check digits
are verified separately: DGII registers some valid taxpayers whose numbers
fail the published algorithm, so a mismatch is reported as a warning.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from .constants import CEDULA_LENGTH, RNC_LENGTH

_SEPARATORS = re.compile(r"[\s-]")
_RNC_WEIGHTS = (7, 9, 8, 6, 5, 4, 3, 2)


@dataclass(frozen=True)
class TaxIdCheck:
    """Outcome of checking a buyer/issuer tax id"""

    value: str
    is_well_formed: bool
    check_digit_ok: bool

    @property
    def kind(self) -> str:
        if len(self.value) == RNC_LENGTH:
            return "rnc"
        if len(self.value) == CEDULA_LENGTH:
            return "cedula"
        return "unknown"


def normalize_tax_id(value: str) -> str:
    return _SEPARATORS.sub("", value or "")


def is_well_formed(value: str) -> bool:
    return value.isascii() and value.isdigit() and len(value) in (RNC_LENGTH, CEDULA_LENGTH)


def rnc_check_digit_ok(rnc: str) -> bool:
    if len(rnc) != RNC_LENGTH or not (rnc.isascii() and rnc.isdigit()):
        return False
    digits = [int(c) for c in rnc]
    remainder = sum(d * w for d, w in zip(digits[:8], _RNC_WEIGHTS, strict=True)) % 11
    if remainder == 0:
        expected = 2
    elif remainder == 1:
        expected = 1
    else:
        expected = 11 - remainder
    return digits[8] == expected


def cedula_check_digit_ok(cedula: str) -> bool:
    if len(cedula) != CEDULA_LENGTH or not (cedula.isascii() and cedula.isdigit()):
        return False
    total = 0
    for index, char in enumerate(cedula[:10]):
        product = int(char) * (2 if index % 2 else 1)
        total += product - 9 if product > 9 else product  # noqa: PLR2004
    return int(cedula[10]) == (10 - total % 10) % 10


def check_tax_id(raw: str) -> TaxIdCheck:
    """Normalize and check a tax id"""
    value = normalize_tax_id(raw)
    if not is_well_formed(value):
        return TaxIdCheck(value=value, is_well_formed=False, check_digit_ok=False)
    digit_ok = rnc_check_digit_ok(value) if len(value) == RNC_LENGTH else cedula_check_digit_ok(value)
    return TaxIdCheck(value=value, is_well_formed=True, check_digit_ok=digit_ok)
