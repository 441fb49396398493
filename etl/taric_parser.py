# WORKFLOW: Parse TARIC nomenclature and duties spreadsheets into mirror records.
# Used by: etl/sync_pipeline.py, tests
# Functions:
# 1. read_sheets() - every sheet of an XLSX path or buffer as a raw DataFrame (openpyxl)
# 2. detect_columns() - header row -> {field: column index} by case-insensitive patterns
# 3. parse_nomenclature_excel() - code tree rows (code, descriptions, duty, VAT, unit, dates)
# 4. parse_duties_excel() - duty rows (rates, measure type, origin, additional code, legal base, quota)
#
# Parsing flow: XLSX -> sheets -> header detection -> row loop -> code padding -> cell parsers -> dicts
# Sheets without a code column are skipped; rows whose code has fewer than 4 digits are skipped.

"""
Parse TARIC nomenclature and duties spreadsheets into mirror records.
"""

import io
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import pandas as pd

from etl.duty_parser import is_blank, parse_duty_rate, parse_excel_date, parse_vat_rate

logger = logging.getLogger(__name__)

ExcelSource = Union[str, Path, bytes]

CODE_PATTERN = r'^(goods\s*code|cn8|cn.?code|code|taric|hs.?code|nomenclature)$'

NOMENCLATURE_COLUMNS = {
    "code": CODE_PATTERN,
    "description": r'^(description|desc|text|name|goods.?desc)$',
    "description_cn": r'^(description.?cn|desc.?cn|中文|chinese)$',
    "duty_rate": r'^(duty|duty.?rate|tariff|关税)$',
    "vat_rate": r'^(vat|vat.?rate|增值税)$',
    "unit": r'^(unit|uom|计量单位)$',
    "start_date": r'^(start\s*date|valid\s*from|effective)$',
    "end_date": r'^(end\s*date|valid\s*to|expiry)$',
}

DUTIES_COLUMNS = {
    "code": CODE_PATTERN,
    "third_country_duty": r'^(duty|third.?country|erga.?omnes|mfn|duty.?rate)$',
    "preferential_duty": r'^(preferential|pref|gsp|fta)$',
    "measure_type": r'^(measure\s*type|meas\.?\s*type|type)$',
    "measure_type_code": r'^(meas\.?\s*type\s*code|measure\s*type\s*code)$',
    "origin": r'^(origin(?!\s*code)|geo|geographical|country|area)$',
    "origin_code": r'^(origin\s*code|country\s*code|geo\s*code)$',
    "additional_code": r'^(add\.?\s*code|additional.?code)$',
    "start_date": r'^(start\s*date|valid.?from|effective)$',
    "end_date": r'^(end\s*date|valid.?to|expiry)$',
    "legal_base": r'^(legal\s*base|regulation|法律依据)$',
    "order_number": r'^(order\s*no\.?|quota|order\s*number)$',
}

MIN_CODE_DIGITS = 4


def read_sheets(source: ExcelSource) -> Dict[str, pd.DataFrame]:
    """
    Read every sheet without header inference.

    Args:
        source: File path or raw XLSX bytes

    Returns:
        Sheet name -> DataFrame of raw cell values
    """
    handle = io.BytesIO(source) if isinstance(source, bytes) else source
    try:
        return pd.read_excel(handle, sheet_name=None, header=None, dtype=object, engine="openpyxl")
    except Exception as e:
        logger.error(f"Failed to read workbook: {e}")
        raise


def detect_columns(headers: List[str], patterns: Dict[str, str]) -> Dict[str, int]:
    """First matching column index per field; one header may serve several fields."""
    columns: Dict[str, int] = {}
    for index, header in enumerate(headers):
        for field, pattern in patterns.items():
            if field not in columns and re.match(pattern, header, re.IGNORECASE):
                columns[field] = index
    return columns


def cell_text(value: Any) -> str:
    if is_blank(value):
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def code_digits(value: Any) -> str:
    """'0100000000 80' -> '010000000080'"""
    return re.sub(r'\D', '', cell_text(value))


def _cell(row: List[Any], columns: Dict[str, int], field: str) -> Any:
    index = columns.get(field)
    return row[index] if index is not None and index < len(row) else None


def _text(row: List[Any], columns: Dict[str, int], field: str) -> Optional[str]:
    if field not in columns:
        return None
    return cell_text(_cell(row, columns, field)) or None


def _code_fields(code: str) -> Dict[str, str]:
    hs_code = code[:8].ljust(8, "0")
    hs_code_10 = code[:10].ljust(10, "0")
    return {"hs_code": hs_code, "hs_code_10": hs_code_10, "taric_code": hs_code_10}


def _sheet_rows(source: ExcelSource, patterns: Dict[str, str], label: str):
    """Yield (sheet_name, columns, row) for data rows of sheets that have a code column."""
    for sheet_name, frame in read_sheets(source).items():
        if len(frame.index) < 2:
            continue
        headers = [cell_text(h).lower() for h in frame.iloc[0].tolist()]
        columns = detect_columns(headers, patterns)
        if "code" not in columns:
            logger.warning(f"{label} sheet '{sheet_name}' has no code column, skipped")
            continue
        logger.info(f"{label} sheet '{sheet_name}': columns {columns}")
        for row in frame.iloc[1:].itertuples(index=False, name=None):
            yield sheet_name, columns, list(row)


def parse_nomenclature_excel(source: ExcelSource) -> List[Dict[str, Any]]:
    """
    Parse the nomenclature workbook.

    Returns:
        One dict per code row with hs_code (8), hs_code_10, chapter/heading/subheading,
        descriptions and whichever of duty, VAT, unit and dates the sheet carries
    """
    records: List[Dict[str, Any]] = []
    for _, columns, row in _sheet_rows(source, NOMENCLATURE_COLUMNS, "Nomenclature"):
        code = code_digits(_cell(row, columns, "code"))
        if len(code) < MIN_CODE_DIGITS:
            continue

        record = _code_fields(code)
        record.update({
            "goods_description": _text(row, columns, "description") or "",
            "goods_description_cn": _text(row, columns, "description_cn"),
            "chapter": record["hs_code"][:2],
            "heading": record["hs_code"][:4],
            "subheading": record["hs_code"][:6],
        })
        if "duty_rate" in columns:
            record["duty_rate"] = parse_duty_rate(_cell(row, columns, "duty_rate"))
        if "vat_rate" in columns:
            record["vat_rate"] = parse_vat_rate(_cell(row, columns, "vat_rate"))
        if "unit" in columns:
            record["unit_name"] = _text(row, columns, "unit")
        if "start_date" in columns:
            record["start_date"] = parse_excel_date(_cell(row, columns, "start_date"))
        if "end_date" in columns:
            record["end_date"] = parse_excel_date(_cell(row, columns, "end_date"))
        records.append(record)

    logger.info(f"Parsed {len(records)} nomenclature rows")
    return records


def parse_duties_excel(source: ExcelSource) -> List[Dict[str, Any]]:
    """
    Parse the duties workbook.

    Returns:
        One dict per duty row; duty_rate mirrors third_country_duty, measure_code holds
        the measure type code and geographical_area the origin code
    """
    records: List[Dict[str, Any]] = []
    for _, columns, row in _sheet_rows(source, DUTIES_COLUMNS, "Duties"):
        code = code_digits(_cell(row, columns, "code"))
        if len(code) < MIN_CODE_DIGITS:
            continue

        record = _code_fields(code)
        if "third_country_duty" in columns:
            record["third_country_duty"] = parse_duty_rate(_cell(row, columns, "third_country_duty"))
            record["duty_rate"] = record["third_country_duty"]
        if "preferential_duty" in columns:
            record["preferential_rate"] = parse_duty_rate(_cell(row, columns, "preferential_duty"))
        if "measure_type" in columns:
            record["measure_type"] = _text(row, columns, "measure_type")
        if "measure_type_code" in columns:
            record["measure_code"] = _text(row, columns, "measure_type_code")
        if "origin" in columns:
            record["origin_country"] = _text(row, columns, "origin")
        if "origin_code" in columns:
            record["origin_country_code"] = _text(row, columns, "origin_code")
            record["geographical_area"] = record["origin_country_code"]
        if "additional_code" in columns:
            record["additional_code"] = _text(row, columns, "additional_code")
        if "start_date" in columns:
            record["start_date"] = parse_excel_date(_cell(row, columns, "start_date"))
        if "end_date" in columns:
            record["end_date"] = parse_excel_date(_cell(row, columns, "end_date"))
        if "legal_base" in columns:
            record["legal_base"] = _text(row, columns, "legal_base")
        if "order_number" in columns:
            record["quota_order_number"] = _text(row, columns, "order_number")
        records.append(record)

    logger.info(f"Parsed {len(records)} duty rows")
    return records
