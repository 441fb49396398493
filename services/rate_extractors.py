# WORKFLOW: Pure rate selection over hydrated measures.
# Used by: services/rate_sources.py, tests
# Functions:
# 1. parse_percentage() - the single place that scrapes a number out of a formatted duty string
# 2. extract_third_country_duty() - erga omnes > third countries > other area; 0 when expression missing
# 3. extract_anti_dumping_rate() / extract_countervailing_rate() - origin-aware trade defence rates
# 4. extract_vat_rate() - standard rate > highest non-zero > 0 > jurisdiction default
# 5. filter_for_origin() - keep measures that can apply to one origin
#
# Extraction flow: Measure[] -> classify by type code / description -> area precedence -> parse_percentage
# None means "no qualifying measure", 0.0 means "duty free".

import re
from typing import Iterable, List, Optional, Sequence

from api.schemas.response import Measure
from core.config import settings

THIRD_COUNTRY_DUTY_TYPES = {"103"}
ANTI_DUMPING_TYPES = {"551", "552", "553"}
COUNTERVAILING_TYPES = {"554", "555", "556"}
VAT_TYPES = {"305"}

_TAGS = re.compile(r"<[^>]*>")
_NUMBER = re.compile(r"(\d+(?:\.\d+)?)\s*%?")
_VAT_WORD = re.compile(r"\bvat\b", re.IGNORECASE)


def parse_percentage(formatted: Optional[str]) -> Optional[float]:
    """
    Parse the first number out of a possibly HTML-tagged duty string.

    Examples:
        '<span>12.00</span> %' -> 12.0
        '0.00 %' -> 0.0
        'EUR 10.00 / 100 kg' -> 10.0
        None or '' -> None
    """
    if not formatted:
        return None
    match = _NUMBER.search(_TAGS.sub("", formatted))
    if not match:
        return None
    return float(match.group(1))


def _description(measure: Measure) -> str:
    return (measure.measure_type_description or "").lower()


def is_third_country_duty(measure: Measure) -> bool:
    return measure.measure_type_id in THIRD_COUNTRY_DUTY_TYPES or "third country duty" in _description(measure)


def is_anti_dumping(measure: Measure) -> bool:
    return measure.measure_type_id in ANTI_DUMPING_TYPES or "anti-dumping" in _description(measure)


def is_countervailing(measure: Measure) -> bool:
    return measure.measure_type_id in COUNTERVAILING_TYPES or "countervailing" in _description(measure)


def is_vat(measure: Measure) -> bool:
    desc = _description(measure)
    return measure.measure_type_id in VAT_TYPES or "value added tax" in desc or bool(_VAT_WORD.search(desc))


def _area_rank(measure: Measure) -> int:
    if measure.geographical_area_id == settings.erga_omnes_area_id:
        return 0
    if measure.geographical_area_id == settings.third_countries_area_id:
        return 1
    return 2


def extract_third_country_duty(measures: Sequence[Measure]) -> Optional[float]:
    candidates = [m for m in measures if is_third_country_duty(m)]
    if not candidates:
        return None
    best = min(candidates, key=_area_rank)
    rate = parse_percentage(best.duty_expression)
    return rate if rate is not None else 0.0


def _first_trade_defence_rate(measures: Iterable[Measure], origin: Optional[str]) -> Optional[float]:
    for measure in measures:
        if origin and measure.geographical_area_id not in (origin, settings.erga_omnes_area_id):
            continue
        return parse_percentage(measure.duty_expression)
    return None


def extract_anti_dumping_rate(measures: Sequence[Measure], origin: Optional[str] = None) -> Optional[float]:
    return _first_trade_defence_rate((m for m in measures if is_anti_dumping(m)), origin)


def extract_countervailing_rate(measures: Sequence[Measure], origin: Optional[str] = None) -> Optional[float]:
    return _first_trade_defence_rate((m for m in measures if is_countervailing(m)), origin)


def extract_vat_rate(measures: Sequence[Measure], standard_rate: Optional[float] = None) -> float:
    """
    Pick the VAT rate that applies in general.

    0% VAT measures are usually scoped exemptions, so the jurisdiction standard
    wins when present, then the highest non-zero rate. Measures without a
    parsable rate are ignored.
    """
    standard = settings.vat_standard_rate if standard_rate is None else standard_rate
    rates: List[float] = []
    for measure in measures:
        if not is_vat(measure):
            continue
        rate = parse_percentage(measure.duty_expression)
        if rate is not None:
            rates.append(rate)

    if not rates:
        return standard
    if standard in rates:
        return standard
    non_zero = [rate for rate in rates if rate > 0]
    if non_zero:
        return max(non_zero)
    return 0.0


def filter_for_origin(measures: Sequence[Measure], origin: Optional[str]) -> List[Measure]:
    """Keep measures with no area, the origin itself, erga omnes or third countries."""
    if not origin:
        return list(measures)
    allowed = {origin, settings.erga_omnes_area_id, settings.third_countries_area_id}
    return [m for m in measures if not m.geographical_area_id or m.geographical_area_id in allowed]
