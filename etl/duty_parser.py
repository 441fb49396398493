# WORKFLOW: Cell-level parsers for duty rates and dates in TARIC spreadsheet exports.
# Used by: etl/taric_parser.py, tests
# Functions:
# 1. parse_duty_rate() - "FREE" / "12%" / "12.5" / "12% + 45 EUR/100 kg" -> float or None
# 2. parse_excel_date() - Excel serial, datetime, ISO, D-M-Y and Y-M-D -> "YYYY-MM-DD" or None
# 3. parse_vat_rate() - VAT column with the jurisdiction default for unparsable cells
#
# Parsing flow: raw cell -> normalize text -> pattern match -> number / ISO date
# Compound rates keep only their leading ad valorem part; specific duties are not converted.

"""
Cell-level parsers for duty rates and dates in TARIC spreadsheet exports.
"""

import logging
import math
import re
from datetime import date, datetime, timedelta
from typing import Any, Optional

from core.config import settings

logger = logging.getLogger(__name__)

FREE_VALUES = {"FREE", "0", "-"}

PLAIN_RATE = re.compile(r'^([\d.]+)\s*%?$')
LEADING_AD_VALOREM = re.compile(r'^([\d.]+)\s*%')
DMY_DATE = re.compile(r'^(\d{1,2})[-/](\d{1,2})[-/](\d{4})$')
YMD_DATE = re.compile(r'^(\d{4})[-/](\d{1,2})[-/](\d{1,2})$')
ISO_PREFIX = re.compile(r'^\d{4}-\d{2}-\d{2}')

# Day zero of the 1900 date system, shifted for the 1900 leap-year bug
EXCEL_EPOCH = date(1899, 12, 30)


def is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return str(value).strip() == ""


def _to_float(text: str) -> float:
    try:
        return float(text)
    except ValueError:
        return 0.0


def parse_duty_rate(value: Any) -> Optional[float]:
    """
    Parse a duty rate cell.

    Args:
        value: Cell value (e.g., "12%", "12.5", "FREE", "12% + 45 EUR/100 kg", 4.7)

    Returns:
        Ad valorem percentage, 0 for duty-free, or None when the rate is not ad valorem
    """
    if is_blank(value):
        return None
    if isinstance(value, (int, float)):
        return float(value)

    text = str(value).strip().upper()
    if text in FREE_VALUES:
        return 0.0

    match = PLAIN_RATE.match(text)
    if match:
        return _to_float(match.group(1))

    match = LEADING_AD_VALOREM.match(text)
    if match:
        return _to_float(match.group(1))

    return None


def parse_vat_rate(value: Any) -> float:
    """VAT cell as a number; empty, zero or unparsable cells fall back to the standard rate."""
    if is_blank(value):
        return settings.vat_standard_rate
    try:
        rate = float(str(value).strip().rstrip("%"))
    except ValueError:
        return settings.vat_standard_rate
    return rate or settings.vat_standard_rate


def parse_excel_date(value: Any) -> Optional[str]:
    """
    Parse a date cell into ISO "YYYY-MM-DD".

    Args:
        value: Excel serial number, datetime/Timestamp, or a string in
            ISO, D-M-Y / D/M/Y or Y/M/D form

    Returns:
        ISO date string, or None when the value is empty or unrecognized
    """
    if is_blank(value):
        return None

    if isinstance(value, (datetime, date)):
        return value.strftime("%Y-%m-%d")

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return (EXCEL_EPOCH + timedelta(days=int(value))).isoformat()
        except OverflowError:
            logger.warning(f"Excel serial date out of range: {value}")
            return None

    text = str(value).strip()
    if ISO_PREFIX.match(text):
        return text[:10]

    match = DMY_DATE.match(text)
    if match:
        day, month, year = match.groups()
        return f"{year}-{month.zfill(2)}-{day.zfill(2)}"

    match = YMD_DATE.match(text)
    if match:
        year, month, day = match.groups()
        return f"{year}-{month.zfill(2)}-{day.zfill(2)}"

    return None
