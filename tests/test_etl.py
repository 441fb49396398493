# WORKFLOW: Tests for the TARIC spreadsheet ETL: cell parsers, workbook parsers, merge and file handling.
# Used by: CI/CD pipelines, development testing
# Test scenarios:
# 1. Duty, VAT and date cell parsing
# 2. Header detection and workbook parsing from in-memory XLSX
# 3. Nomenclature/duty merge, generic areas and trade agreement extraction
# 4. Record validation
# 5. Upload storage with backups, ZIP routing and file status

import io
import zipfile
from datetime import datetime

import pandas as pd
import pytest

from etl.duty_parser import parse_duty_rate, parse_excel_date, parse_vat_rate
from etl.ingest_zip import (
    classify_file_name,
    extract_zip_file,
    get_file_status,
    get_taric_version,
    has_local_files,
    local_file_name,
    read_local_file,
    save_uploaded_file,
)
from etl.taric_parser import (
    DUTIES_COLUMNS,
    NOMENCLATURE_COLUMNS,
    detect_columns,
    parse_duties_excel,
    parse_nomenclature_excel,
)
from etl.transform_canonical import (
    ANTI_DUMPING,
    COUNTERVAILING,
    OTHER,
    PREFERENTIAL,
    THIRD_COUNTRY,
    classify_duty,
    extract_trade_agreements,
    is_generic_area,
    merge_nomenclature_and_duties,
)
from etl.validators import split_valid_records, validate_hs_code, validate_rate, validate_tariff_record

NOMENCLATURE_HEADERS = ["Goods code", "Description", "Duty", "VAT", "Unit", "Start date"]
DUTIES_HEADERS = ["Goods code", "Duty", "Measure type", "Meas. type code", "Origin", "Origin code",
                  "Legal base", "Start date"]


def workbook(sheets):
    """{sheet name: (headers, rows)} -> XLSX bytes"""
    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        for name, (headers, rows) in sheets.items():
            pd.DataFrame(rows, columns=headers).to_excel(writer, sheet_name=name, index=False)
    return buffer.getvalue()


def nomenclature_xlsx(rows):
    return workbook({"Nomenclature": (NOMENCLATURE_HEADERS, rows)})


def duties_xlsx(rows):
    return workbook({"Duties": (DUTIES_HEADERS, rows)})


# ---------------------------------------------------------------- cell parsers

@pytest.mark.parametrize("value, expected", [
    ("FREE", 0.0),
    ("free", 0.0),
    ("-", 0.0),
    ("12%", 12.0),
    ("12.5", 12.5),
    ("4.7 %", 4.7),
    ("12% + 45 EUR/100 kg", 12.0),
    ("EUR 45/100 kg", None),
    (4.7, 4.7),
    (0, 0.0),
    (None, None),
    (float("nan"), None),
    ("  ", None),
])
def test_parse_duty_rate(value, expected):
    assert parse_duty_rate(value) == expected


@pytest.mark.parametrize("value, expected", [
    (None, 19.0),
    ("", 19.0),
    ("20%", 20.0),
    (7, 7.0),
    (0, 19.0),
    ("n/a", 19.0),
])
def test_parse_vat_rate(value, expected):
    assert parse_vat_rate(value) == expected


@pytest.mark.parametrize("value, expected", [
    (45292, "2024-01-01"),
    (45292.0, "2024-01-01"),
    (datetime(2024, 3, 1, 12, 30), "2024-03-01"),
    (pd.Timestamp("2023-07-15"), "2023-07-15"),
    ("2024-01-01T00:00:00", "2024-01-01"),
    ("1/3/2024", "2024-03-01"),
    ("15-07-2019", "2019-07-15"),
    ("2024/3/1", "2024-03-01"),
    ("soon", None),
    (None, None),
])
def test_parse_excel_date(value, expected):
    assert parse_excel_date(value) == expected


# ------------------------------------------------------------ workbook parsing

def test_detect_columns():
    headers = [h.lower() for h in DUTIES_HEADERS]
    columns = detect_columns(headers, DUTIES_COLUMNS)
    assert columns["code"] == 0
    assert columns["third_country_duty"] == 1
    assert columns["measure_type"] == 2
    assert columns["measure_type_code"] == 3
    assert columns["origin"] == 4
    assert columns["origin_code"] == 5
    assert columns["legal_base"] == 6

    nomenclature = detect_columns([h.lower() for h in NOMENCLATURE_HEADERS], NOMENCLATURE_COLUMNS)
    assert nomenclature == {"code": 0, "description": 1, "duty_rate": 2, "vat_rate": 3, "unit": 4, "start_date": 5}


def test_parse_nomenclature_excel():
    content = workbook({
        "Nomenclature": (NOMENCLATURE_HEADERS, [
            ["8471 30 00 10", "Laptops", "FREE", "19", "p/st", "2024-01-01"],
            ["0101210000", "Pure-bred breeding horses", "12%", "n/a", "p/st", "1/3/2024"],
            ["84", "Chapter heading row", "x", "x", "x", "x"],
        ]),
        "Notes": (["Remark"], [["exported from the TARIC consultation"]]),
    })
    records = parse_nomenclature_excel(content)

    assert [r["hs_code"] for r in records] == ["84713000", "01012100"]
    laptops = records[0]
    assert laptops["hs_code_10"] == "8471300010"
    assert laptops["goods_description"] == "Laptops"
    assert laptops["duty_rate"] == 0.0
    assert laptops["vat_rate"] == 19.0
    assert laptops["unit_name"] == "p/st"
    assert laptops["start_date"] == "2024-01-01"
    assert (laptops["chapter"], laptops["heading"], laptops["subheading"]) == ("84", "8471", "847130")
    assert records[1]["duty_rate"] == 12.0
    assert records[1]["start_date"] == "2024-03-01"


def test_parse_duties_excel():
    records = parse_duties_excel(duties_xlsx([
        ["6912001000", "5%", "Third country duty", "103", "ERGA OMNES", "1011", "R2658/87", "2024-01-01"],
        ["6912001000", "36.1%", "Definitive anti-dumping duty", "552", "China", "CN", "R2019/1198", "2019-07-15"],
    ]))

    assert len(records) == 2
    third, anti_dumping = records
    assert third["third_country_duty"] == 5.0
    assert third["duty_rate"] == 5.0
    assert third["measure_code"] == "103"
    assert third["geographical_area"] == "1011"
    assert anti_dumping["origin_country"] == "China"
    assert anti_dumping["origin_country_code"] == "CN"
    assert anti_dumping["legal_base"] == "R2019/1198"
    assert anti_dumping["start_date"] == "2019-07-15"


def test_workbook_without_code_column_yields_nothing():
    content = workbook({"Sheet1": (["Text", "Value"], [["a", "b"]])})
    assert parse_duties_excel(content) == []


# --------------------------------------------------------------------- merge

@pytest.mark.parametrize("duty, kind", [
    ({"measure_code": "103"}, THIRD_COUNTRY),
    ({"measure_type": "Third country duty"}, THIRD_COUNTRY),
    ({"measure_code": "552"}, ANTI_DUMPING),
    ({"measure_type": "Provisional anti-dumping duty"}, ANTI_DUMPING),
    ({"measure_code": "554"}, COUNTERVAILING),
    ({"measure_code": "142"}, PREFERENTIAL),
    ({"measure_type": "Tariff preference"}, PREFERENTIAL),
    ({"measure_code": "695", "measure_type": "Additional duties"}, OTHER),
])
def test_classify_duty(duty, kind):
    assert classify_duty(duty) == kind


@pytest.mark.parametrize("area, generic", [
    ("1011", True), ("1008", True), ("2005", True), ("1032", True),
    (None, True), ("", True), ("CN", False), ("US", False),
])
def test_is_generic_area(area, generic):
    assert is_generic_area(area) is generic


def tableware_inputs():
    nomenclature = [{"hs_code": "69120010", "hs_code_10": "6912001000", "taric_code": "6912001000",
                     "goods_description": "Tableware", "goods_description_cn": None, "duty_rate": None}]
    duties = [
        {"hs_code": "69120010", "duty_rate": 6.0, "third_country_duty": 6.0, "measure_type": "Third country duty",
         "measure_code": "103", "origin_country_code": "1011", "geographical_area": "1011"},
        {"hs_code": "69120010", "duty_rate": 36.1, "third_country_duty": 36.1,
         "measure_type": "Definitive anti-dumping duty", "measure_code": "552",
         "origin_country_code": "CN", "geographical_area": "CN"},
        {"hs_code": "69120010", "duty_rate": 0.0, "measure_type": "Tariff preference", "measure_code": "142",
         "origin_country_code": "2020", "geographical_area": "2020"},
        {"hs_code": "69120010", "duty_rate": 5.0, "measure_type": "Additional duties", "measure_code": "695",
         "origin_country_code": "US", "geographical_area": "US"},
        {"hs_code": "69120010", "duty_rate": 5.0, "measure_type": "Additional duties", "measure_code": "695",
         "origin_country_code": "US", "geographical_area": "US"},
        {"hs_code": "69120010", "duty_rate": 5.0, "measure_type": "Additional duties", "measure_code": "695",
         "origin_country_code": "1008", "geographical_area": "1008"},
        {"hs_code": "99999999", "hs_code_10": "9999999900", "duty_rate": 3.0, "measure_type": "Third country duty",
         "measure_code": "103", "origin_country_code": "1011"},
        {"hs_code": "99999998", "duty_rate": 3.0, "measure_type": "Additional duties", "measure_code": "700",
         "origin_country_code": "1011"},
    ]
    return nomenclature, duties


def test_merge_builds_base_and_origin_rows():
    records = merge_nomenclature_and_duties(*tableware_inputs())
    assert len(records) == 5

    base, anti_dumping, preferential, other, missing = records
    assert base["duty_rate"] == 6.0
    assert base["third_country_duty"] == 6.0
    assert base["anti_dumping_rate"] == 36.1
    assert base["measure_code"] == "103"
    assert base["has_anti_dumping"] is True

    assert anti_dumping["origin_country_code"] == "CN"
    assert anti_dumping["anti_dumping_rate"] == 36.1
    assert anti_dumping["duty_rate"] == 6.0
    assert anti_dumping["goods_description"] == "Tableware"

    assert preferential["preferential_rate"] == 0.0
    assert other["origin_country_code"] == "US"
    assert other["duty_rate"] == 5.0

    assert missing["hs_code"] == "99999999"
    assert missing["goods_description"] == "HS 99999999"
    assert missing["duty_rate"] == 3.0


def test_merge_nomenclature_duty_used_without_third_country_row():
    nomenclature = [{"hs_code": "84713000", "goods_description": "Laptops", "duty_rate": 2.0}]
    records = merge_nomenclature_and_duties(nomenclature, [])
    assert records[0]["duty_rate"] == 2.0
    assert records[0]["third_country_duty"] is None
    assert records[0]["measure_type"] == "Third country duty"


def test_extract_trade_agreements():
    agreements = extract_trade_agreements([
        {"geographical_area": "2020", "measure_type": "Tariff preference (GSP+)", "preferential_rate": 0.0,
         "duty_rate": 0.0, "start_date": "2024-01-01"},
        {"geographical_area": "2020", "measure_type": "Tariff preference (GSP+)"},
        {"geographical_area": "2005", "measure_type": "GSP - general arrangement", "duty_rate": 2.1},
        {"geographical_area": "IL", "origin_country_code": "IL", "origin_country": "Israel",
         "measure_type": "Tariff preference", "preferential_rate": 0.0},
        {"geographical_area": "1011", "measure_type": "Third country duty"},
        {"measure_type": "Third country duty"},
    ])

    by_area = {a["agreement_code"]: a for a in agreements}
    assert list(by_area) == ["2020", "2005", "IL"]
    assert by_area["2020"]["agreement_type"] == "GSP+"
    assert by_area["2020"]["valid_from"] == "2024-01-01"
    assert by_area["2005"]["agreement_type"] == "GSP"
    assert by_area["2005"]["preferential_rate"] == 2.1
    assert by_area["IL"]["agreement_type"] == "OTHER"
    assert by_area["IL"]["agreement_name"] == "Preferential Rate - IL"
    assert by_area["IL"]["country_name"] == "Israel"


# ---------------------------------------------------------------- validation

def test_validators():
    assert validate_hs_code("8471")
    assert validate_hs_code("8471300010")
    assert not validate_hs_code("847")
    assert not validate_hs_code("84713000100")
    assert not validate_hs_code(None)
    assert not validate_hs_code(8471)

    assert validate_rate(None)
    assert validate_rate("12")
    assert not validate_rate(-1)
    assert not validate_rate(1000.5)
    assert not validate_rate("abc")

    assert validate_tariff_record({"hs_code": "84713000", "duty_rate": 0.0}) == []
    assert len(validate_tariff_record({"hs_code": "84", "vat_rate": -5})) == 2


def test_split_valid_records():
    valid, invalid = split_valid_records([
        {"hs_code": "84713000", "duty_rate": 0.0},
        {"hs_code": "x", "duty_rate": 0.0},
        {"hs_code": "69120010", "anti_dumping_rate": 5000},
    ])
    assert [r["hs_code"] for r in valid] == ["84713000"]
    assert invalid == 2


# ------------------------------------------------------------------- files

def test_save_uploaded_file_keeps_backup(data_dir):
    assert not has_local_files()
    first = save_uploaded_file("nomenclature", b"first")
    second = save_uploaded_file("nomenclature", b"second")

    assert first == second
    assert read_local_file("nomenclature") == b"second"
    backups = list(data_dir.glob("Nomenclature_EN.backup.*.xlsx"))
    assert len(backups) == 1
    assert backups[0].read_bytes() == b"first"
    assert has_local_files()
    assert read_local_file("duties") is None


def test_classify_file_name():
    assert classify_file_name("export/Nomenclature_EN.xlsx") == "nomenclature"
    assert classify_file_name("goods.xlsx") == "nomenclature"
    assert classify_file_name("Duties_Import.xlsx") == "duties"
    assert classify_file_name("measures-2024.xlsx") == "duties"
    assert classify_file_name("readme.xlsx") is None

    with pytest.raises(ValueError):
        local_file_name("quotas")


def test_extract_zip_routes_members():
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr("TARIC/Nomenclature_EN.xlsx", b"nomenclature")
        archive.writestr("TARIC/Duties_Import.xlsx", b"duties")
        archive.writestr("TARIC/goods_copy.xlsx", b"second nomenclature")
        archive.writestr("TARIC/readme.txt", b"text")
        archive.writestr("TARIC/quotas.xlsx", b"unrouted")

    files = extract_zip_file(buffer.getvalue())
    assert files == {"nomenclature": b"nomenclature", "duties": b"duties"}


def test_extract_zip_rejects_garbage():
    with pytest.raises(ValueError, match="Invalid ZIP"):
        extract_zip_file(b"definitely not a zip")


def test_file_status_and_version(data_dir):
    save_uploaded_file("duties", b"12345")
    status = get_file_status()

    assert status["duties"]["exists"] is True
    assert status["duties"]["size"] == 5
    assert status["duties"]["local_file"] == "Duties_Import.xlsx"
    assert status["nomenclature"]["exists"] is False
    assert status["nomenclature"]["modified_time"] is None

    version = get_taric_version()
    assert len(version) == 8 and version.isdigit()
