# WORKFLOW: Merge parsed nomenclature and duty rows into tariff_rates records.
# Used by: etl/sync_pipeline.py, tests
# Functions:
# 1. classify_duty() - third_country | anti_dumping | countervailing | preferential | other
# 2. group_duties() - duties per 8-digit code, bucketed by classify_duty()
# 3. merge_nomenclature_and_duties() - base record per nomenclature row plus origin-specific rows
# 4. extract_trade_agreements() - one agreement per non-erga-omnes geographical area
#
# Transform flow: nomenclature + duties -> group by code -> base record (third-country duty,
# max AD/CVD) -> AD/CVD/preferential/other rows once per code -> duties for codes missing
# from the nomenclature -> agreements
# Generic areas (1011, 1008, 10xx, 20xx) never produce origin-specific "other" rows.

"""
Merge parsed nomenclature and duty rows into tariff_rates records.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from core.config import settings

logger = logging.getLogger(__name__)

THIRD_COUNTRY = "third_country"
ANTI_DUMPING = "anti_dumping"
COUNTERVAILING = "countervailing"
PREFERENTIAL = "preferential"
OTHER = "other"

BASE_MEASURE_TYPE = "Third country duty"
BASE_MEASURE_CODE = "103"

# Checked in order; GSP+ must win over GSP
AGREEMENT_TYPES = [
    ("GSP+", "GSP+ (Special Incentive)", "普惠制增强版"),
    ("GSP", "Generalised Scheme of Preferences", "普惠制"),
    ("EBA", "Everything But Arms", "除武器外一切（最不发达国家）"),
    ("EPA", "Economic Partnership Agreement", "经济伙伴协定"),
    ("FTA", "Free Trade Agreement", "自由贸易协定"),
    ("CU", "Customs Union", "关税同盟"),
]


@dataclass
class DutyGroup:
    third_country: Optional[Dict[str, Any]] = None
    anti_dumping: List[Dict[str, Any]] = field(default_factory=list)
    countervailing: List[Dict[str, Any]] = field(default_factory=list)
    preferential: List[Dict[str, Any]] = field(default_factory=list)
    other: List[Dict[str, Any]] = field(default_factory=list)


def classify_duty(duty: Dict[str, Any]) -> str:
    code = duty.get("measure_code") or ""
    measure_type = (duty.get("measure_type") or "").lower()
    if code == "103" or "third country" in measure_type:
        return THIRD_COUNTRY
    if code in ("551", "552") or "anti-dumping" in measure_type:
        return ANTI_DUMPING
    if code in ("553", "554") or "countervailing" in measure_type:
        return COUNTERVAILING
    if code in ("142", "143") or "preferential" in measure_type or "tariff preference" in measure_type:
        return PREFERENTIAL
    return OTHER


def is_generic_area(area: Optional[str]) -> bool:
    """Erga omnes, third countries and other group areas rather than one origin."""
    if not area:
        return True
    return area in (settings.erga_omnes_area_id, "1008") or area.startswith("10") or area.startswith("20")


def _rate(duty: Dict[str, Any]) -> Optional[float]:
    rate = duty.get("duty_rate")
    return rate if rate is not None else duty.get("third_country_duty")


def _max_rate(duties: List[Dict[str, Any]]) -> Optional[float]:
    rates = [_rate(d) for d in duties if _rate(d) is not None]
    return max(rates) if rates else None


def group_duties(duties: List[Dict[str, Any]]) -> Dict[str, DutyGroup]:
    groups: Dict[str, DutyGroup] = {}
    for duty in duties:
        group = groups.setdefault(duty["hs_code"], DutyGroup())
        kind = classify_duty(duty)
        if kind == THIRD_COUNTRY:
            # Keep the first row, unless a later one actually carries a rate
            if group.third_country is None or (
                duty.get("duty_rate") is not None and group.third_country.get("duty_rate") is None
            ):
                group.third_country = duty
        else:
            getattr(group, kind).append(duty)
    return groups


def _with_nomenclature(nom: Dict[str, Any], duty: Dict[str, Any], **overrides) -> Dict[str, Any]:
    record = {**nom, **duty}
    record["goods_description"] = nom.get("goods_description")
    record["goods_description_cn"] = nom.get("goods_description_cn")
    record.update(overrides)
    return record


def merge_nomenclature_and_duties(nomenclature: List[Dict[str, Any]],
                                  duties: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Merge nomenclature rows with duty rows by 8-digit code.

    Args:
        nomenclature: Output of parse_nomenclature_excel()
        duties: Output of parse_duties_excel()

    Returns:
        Records keyed by TariffRate column names (extra keys are ignored on upsert)
    """
    groups = group_duties(duties)
    merged: List[Dict[str, Any]] = []
    seen_codes = set()

    for nom in nomenclature:
        group = groups.get(nom["hs_code"], DutyGroup())
        first_for_code = nom["hs_code"] not in seen_codes
        seen_codes.add(nom["hs_code"])

        third = group.third_country or {}
        base_duty = third.get("duty_rate")
        if base_duty is None:
            base_duty = nom.get("duty_rate")
        third_country_duty = third.get("third_country_duty")
        if third_country_duty is None:
            third_country_duty = third.get("duty_rate")

        merged.append({
            **nom,
            "duty_rate": base_duty if base_duty is not None else 0.0,
            "third_country_duty": third_country_duty,
            "anti_dumping_rate": _max_rate(group.anti_dumping),
            "countervailing_rate": _max_rate(group.countervailing),
            "measure_type": third.get("measure_type") or BASE_MEASURE_TYPE,
            "measure_code": third.get("measure_code") or BASE_MEASURE_CODE,
            "start_date": third.get("start_date"),
            "end_date": third.get("end_date"),
            "legal_base": third.get("legal_base"),
            "has_anti_dumping": bool(group.anti_dumping),
            "has_countervailing": bool(group.countervailing),
        })

        if not first_for_code:
            continue

        base_rate = third.get("duty_rate") if third.get("duty_rate") is not None else 0.0
        for duty in group.anti_dumping:
            merged.append(_with_nomenclature(nom, duty, anti_dumping_rate=_rate(duty), duty_rate=base_rate))
        for duty in group.countervailing:
            merged.append(_with_nomenclature(nom, duty, countervailing_rate=_rate(duty), duty_rate=base_rate))

        seen_origins = set()
        for duty in group.preferential:
            origin = duty.get("origin_country_code") or duty.get("origin_country") or "unknown"
            if origin in seen_origins:
                continue
            seen_origins.add(origin)
            preferential = duty.get("duty_rate")
            if preferential is None:
                preferential = duty.get("preferential_rate")
            merged.append(_with_nomenclature(nom, duty, preferential_rate=preferential))

        seen_keys = set()
        for duty in group.other:
            origin = duty.get("origin_country_code") or ""
            if is_generic_area(origin):
                continue
            key = (origin, duty.get("measure_type") or "")
            if key in seen_keys:
                continue
            seen_keys.add(key)
            rate = duty.get("duty_rate")
            merged.append(_with_nomenclature(nom, duty, duty_rate=rate if rate is not None else base_rate))

    additional = _duties_without_nomenclature(duties, {n["hs_code"] for n in nomenclature})
    logger.info(f"Merged {len(merged)} records, {len(additional)} more from duties missing in the nomenclature")
    return merged + additional


def _duties_without_nomenclature(duties: List[Dict[str, Any]], known_codes: set) -> List[Dict[str, Any]]:
    records = []
    for duty in duties:
        if duty["hs_code"] in known_codes:
            continue
        if is_generic_area(duty.get("origin_country_code")) and duty.get("measure_code") != BASE_MEASURE_CODE:
            continue

        kind = classify_duty(duty)
        rate = _rate(duty)
        is_trade_defence = kind in (ANTI_DUMPING, COUNTERVAILING)
        records.append({
            "hs_code": duty["hs_code"],
            "hs_code_10": duty.get("hs_code_10"),
            "taric_code": duty.get("taric_code"),
            "goods_description": duty.get("goods_description") or f"HS {duty['hs_code']}",
            "origin_country": duty.get("origin_country"),
            "origin_country_code": duty.get("origin_country_code"),
            "duty_rate": 0.0 if is_trade_defence else (rate if rate is not None else 0.0),
            "third_country_duty": duty.get("third_country_duty"),
            "anti_dumping_rate": rate if kind == ANTI_DUMPING else None,
            "countervailing_rate": rate if kind == COUNTERVAILING else None,
            "measure_type": duty.get("measure_type"),
            "measure_code": duty.get("measure_code"),
            "start_date": duty.get("start_date"),
            "end_date": duty.get("end_date"),
            "legal_base": duty.get("legal_base"),
            "quota_order_number": duty.get("quota_order_number"),
            "additional_code": duty.get("additional_code"),
        })
    return records


def extract_trade_agreements(records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    One agreement per geographical area other than erga omnes.

    The type is the first known abbreviation found in the area or the measure type,
    OTHER when none is present.
    """
    agreements: Dict[str, Dict[str, Any]] = {}
    for record in records:
        area = record.get("geographical_area")
        if not area or area == settings.erga_omnes_area_id or area in agreements:
            continue

        agreement_type = "OTHER"
        name = f"Preferential Rate - {area}"
        name_cn = f"优惠税率 - {area}"
        measure_type = record.get("measure_type") or ""
        for code, type_name, type_name_cn in AGREEMENT_TYPES:
            if code in area or code in measure_type:
                agreement_type, name, name_cn = code, type_name, type_name_cn
                break

        agreements[area] = {
            "agreement_code": area,
            "agreement_name": name,
            "agreement_name_cn": name_cn,
            "agreement_type": agreement_type,
            "country_code": record.get("origin_country_code"),
            "country_name": record.get("origin_country"),
            "geographical_area": area,
            "preferential_rate": record.get("preferential_rate") or record.get("duty_rate"),
            "valid_from": record.get("start_date"),
            "valid_to": record.get("end_date"),
        }
    return list(agreements.values())
