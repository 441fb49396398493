# WORKFLOW: Record checks applied before merged rows are upserted into tariff_rates.
# Used by: etl/sync_pipeline.py, tests
# Functions:
# 1. validate_hs_code() - 4 to 10 digits
# 2. validate_rate() - empty or within 0..1000
# 3. validate_tariff_record() - list of problems for one record
# 4. split_valid_records() - (valid records, invalid count) with a warning summary
#
# Validation flow: merged record -> code check -> rate range checks -> keep | count as failed

"""
Record checks applied before merged rows are upserted into tariff_rates.
"""

import logging
import re
from typing import Any, Dict, List, Tuple

logger = logging.getLogger(__name__)

RATE_FIELDS = (
    "duty_rate",
    "third_country_duty",
    "vat_rate",
    "anti_dumping_rate",
    "countervailing_rate",
    "preferential_rate",
)

MAX_RATE = 1000.0


def validate_hs_code(hs_code: Any) -> bool:
    if not hs_code or not isinstance(hs_code, str):
        return False
    return re.match(r'^\d{4,10}$', hs_code.strip()) is not None


def validate_rate(rate: Any) -> bool:
    if rate is None:
        return True
    try:
        value = float(rate)
    except (TypeError, ValueError):
        return False
    return 0.0 <= value <= MAX_RATE


def validate_tariff_record(record: Dict[str, Any]) -> List[str]:
    """
    Check one merged record.

    Args:
        record: Dict keyed by TariffRate column names

    Returns:
        Problems found, empty when the record can be stored
    """
    errors = []
    if not validate_hs_code(record.get("hs_code")):
        errors.append(f"Invalid HS code: {record.get('hs_code')!r}")

    for name in RATE_FIELDS:
        if not validate_rate(record.get(name)):
            errors.append(f"{name} out of range: {record.get(name)!r}")

    return errors


def split_valid_records(records: List[Dict[str, Any]]) -> Tuple[List[Dict[str, Any]], int]:
    valid = []
    invalid = 0
    for record in records:
        errors = validate_tariff_record(record)
        if errors:
            invalid += 1
            logger.debug(f"Rejected record {record.get('hs_code')}: {'; '.join(errors)}")
        else:
            valid.append(record)

    if invalid:
        logger.warning(f"{invalid} of {len(records)} records failed validation")
    return valid, invalid
