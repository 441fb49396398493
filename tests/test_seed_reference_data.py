# WORKFLOW: Tests for the reference data bootstrap script.
# Used by: CI/CD pipelines, development testing
# Test scenarios:
# 1. Override entries flattened per origin with heading context
# 2. Common rates turned into origin-less mirror records
# 3. Seeding is repeatable: overrides replaced, rates updated in place
# 4. Seeded data served by the rate sources

import pytest

from db import repository
from scripts.seed_reference_data import (
    COMMON_RATES_FILE,
    OVERRIDES_FILE,
    SEED_SOURCE,
    common_rate_records,
    load_seed_file,
    override_rows,
    seed_common_rates,
    seed_overrides,
    validate_setup,
)
from services.rate_sources import CHINA_ANTI_DUMPING_SOURCE, AntiDumpingOverrideSource, LocalMirrorSource


def test_override_rows_carry_heading():
    rows = override_rows([{
        "origin_country_code": "cn", "heading": "6912",
        "heading_description": "Ceramic household articles", "heading_description_cn": "陶瓷制家用器皿",
        "measures": [{"hs_code_8": "69120090", "duty_rate": 12.0, "anti_dumping_rate": 17.6}],
    }])
    assert list(rows) == ["CN"]
    assert rows["CN"][0] == {
        "heading": "6912",
        "heading_description": "Ceramic household articles",
        "heading_description_cn": "陶瓷制家用器皿",
        "hs_code_8": "69120090",
        "duty_rate": 12.0,
        "anti_dumping_rate": 17.6,
    }


def test_common_rate_records():
    records = common_rate_records([{
        "heading": "8507", "rate": 2.7, "description": "Electric accumulators", "description_cn": "蓄电池",
        "sub_codes": [{"hs_code": "85076000", "rate": 2.7, "description": "Lithium-ion accumulators"}],
    }])
    assert [(r["hs_code"], r["hs_code_10"]) for r in records] == [("8507", "8507000000"), ("85076000", "8507600000")]
    assert all(r["data_source"] == SEED_SOURCE for r in records)
    assert records[0]["third_country_duty"] == 2.7
    assert records[0]["vat_rate"] == 19.0
    assert records[1]["goods_description_cn"] is None


def test_seed_overrides_is_repeatable(db_session):
    expected = sum(len(entry["measures"]) for entry in load_seed_file(OVERRIDES_FILE))

    assert seed_overrides(db_session) == expected
    assert seed_overrides(db_session) == expected
    assert len(repository.list_overrides(db_session, "CN")) == expected


def test_seed_common_rates_is_repeatable(db_session):
    entries = load_seed_file(COMMON_RATES_FILE)
    expected = sum(1 + len(entry.get("sub_codes", [])) for entry in entries)

    first = seed_common_rates(db_session)
    second = seed_common_rates(db_session)
    assert first == {"inserted": expected, "updated": 0, "failed": 0}
    assert second == {"inserted": 0, "updated": expected, "failed": 0}


@pytest.mark.asyncio
async def test_seeded_data_feeds_rate_sources(db_session):
    seed_overrides(db_session)
    seed_common_rates(db_session)

    exact = await AntiDumpingOverrideSource(db_session).fetch("6912009000", "CN")
    assert exact.data_source == CHINA_ANTI_DUMPING_SOURCE
    assert exact.fields["anti_dumping_rate"] == 17.6

    heading = await AntiDumpingOverrideSource(db_session).fetch("6912005000", "CN")
    assert heading.fields["anti_dumping_rate"] == 36.1
    assert "Heading-level" in heading.fields["note"]

    battery = await LocalMirrorSource(db_session).fetch("8507600000", None)
    assert battery.fields["duty_rate"] == 2.7
    assert battery.fields["goods_description_cn"] == "锂离子蓄电池"

    assert validate_setup()
