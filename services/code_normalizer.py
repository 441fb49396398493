# WORKFLOW: HS/TARIC code normalization and level detection.
# Used by: Every engine operation before cache lookup or upstream call
# Functions:
# 1. normalize() - Strip non-digits and report length/level, or a validation error
# 2. level_for_length() - Map a digit count onto the nomenclature level
# 3. pad_to() - Caller-side width adjustment (4, 6, 8 or 10 digits)
#
# Normalization flow: raw input -> digits only -> length check -> level
# Padding and truncation are left to each caller because operations need different widths.

import re
from dataclasses import dataclass
from typing import Optional

from api.schemas.response import ClassificationLevel

MIN_CODE_LENGTH = 2
FULL_CODE_LENGTH = 10

_NON_DIGITS = re.compile(r"\D")


@dataclass(frozen=True)
class NormalizedCode:
    digits: str
    length: int
    level: Optional[ClassificationLevel]
    error: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return self.error is None

    @property
    def normalized10(self) -> str:
        return pad_to(self.digits, FULL_CODE_LENGTH)


def level_for_length(length: int) -> Optional[ClassificationLevel]:
    """Level thresholds: 2 chapter, 3-4 heading, 5-6 subheading, 7-8 cn, 9-10 taric."""
    if length < MIN_CODE_LENGTH:
        return None
    if length == 2:
        return ClassificationLevel.CHAPTER
    if length <= 4:
        return ClassificationLevel.HEADING
    if length <= 6:
        return ClassificationLevel.SUBHEADING
    if length <= 8:
        return ClassificationLevel.CN
    return ClassificationLevel.TARIC


def digits_only(value: Optional[str]) -> str:
    return _NON_DIGITS.sub("", value or "")


def normalize(value: Optional[str]) -> NormalizedCode:
    """
    Normalize a user-supplied code.

    Never raises: codes shorter than two digits come back with ``error`` set.
    Input longer than 10 digits is truncated to the TARIC width.
    """
    digits = digits_only(value)[:FULL_CODE_LENGTH]
    if len(digits) < MIN_CODE_LENGTH:
        return NormalizedCode(
            digits=digits,
            length=len(digits),
            level=None,
            error=f"HS code must contain at least {MIN_CODE_LENGTH} digits",
        )
    return NormalizedCode(digits=digits, length=len(digits), level=level_for_length(len(digits)))


def pad_to(code: str, width: int) -> str:
    """Right-pad with zeros, or truncate, to exactly ``width`` digits."""
    return code[:width].ljust(width, "0")
