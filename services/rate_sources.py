# WORKFLOW: Named duty-rate providers and their precedence merge.
# Used by: services/rate_resolver.py
# Components:
# 1. SourceResult - partial RateResult fields plus provenance and merge mode
# 2. merge_in_precedence_order() - fill sources set unset fields, overwrite sources replace them
# 3. AntiDumpingOverrideSource - country-specific anti-dumping table (fill)
# 4. LocalMirrorSource - locally mirrored tariff_rates rows (fill)
# 5. RemoteTaricSource - remote classification API, commodity then heading fallback (overwrite)
#
# Precedence: override -> local mirror -> remote. Remote values win whenever it produced them,
# a remote None never erases a fallback value. data_source names the last contributing source.

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from core.config import settings
from db import repository
from services.rate_extractors import (
    extract_anti_dumping_rate,
    extract_countervailing_rate,
    extract_third_country_duty,
    extract_vat_rate,
    filter_for_origin,
)
from services.relationship_graph import Commodity, RelationshipGraph
from services.taric_client import TaricClient

logger = logging.getLogger(__name__)

CHINA_ANTI_DUMPING_SOURCE = "china_anti_dumping_database"
OVERRIDE_SOURCE = "anti_dumping_override"
LOCAL_SOURCE = "local_database"


@dataclass
class SourceResult:
    data_source: str
    fields: Dict[str, Any] = field(default_factory=dict)
    overwrite: bool = False


def _is_unset(value: Any) -> bool:
    return value is None or value == [] or value == ""


def merge_in_precedence_order(results: Sequence[Optional[SourceResult]]) -> Dict[str, Any]:
    """
    Merge partial results, highest precedence first.

    Example:
        override {duty_rate: 6, anti_dumping_rate: 17.6}, local {duty_rate: 12, vat_rate: 19},
        remote(overwrite) {duty_rate: 12, anti_dumping_rate: None}
        -> {duty_rate: 12, anti_dumping_rate: 17.6, vat_rate: 19, data_source: remote}
    """
    merged: Dict[str, Any] = {}
    for result in results:
        if result is None:
            continue
        contributed = False
        for name, value in result.fields.items():
            if _is_unset(value):
                continue
            if result.overwrite or _is_unset(merged.get(name)):
                merged[name] = value
                contributed = True
        if contributed:
            merged["data_source"] = result.data_source
    return merged


class RateSource:
    """Common interface: fetch(code10, origin) -> SourceResult | None."""

    name = "rate_source"
    overwrite = False

    async def fetch(self, code10: str, origin: Optional[str]) -> Optional[SourceResult]:
        raise NotImplementedError


class AntiDumpingOverrideSource(RateSource):
    name = "anti_dumping_override"

    def __init__(self, db: Session):
        self.db = db

    async def fetch(self, code10: str, origin: Optional[str]) -> Optional[SourceResult]:
        if not origin:
            return None
        row, exact = repository.find_override(self.db, origin, code10)
        if row is None:
            return None

        countervailing = row.countervailing_rate or 0.0
        note = row.note
        if not exact:
            heading_note = f"Heading-level anti-dumping rate for {row.heading}; verify the exact product scope"
            note = f"{heading_note}. {note}" if note else heading_note

        return SourceResult(
            data_source=CHINA_ANTI_DUMPING_SOURCE if origin == "CN" else OVERRIDE_SOURCE,
            fields={
                "duty_rate": row.duty_rate,
                "anti_dumping_rate": row.anti_dumping_rate,
                "anti_dumping_rate_range": row.anti_dumping_rate_range,
                "countervailing_rate": countervailing,
                "regulation_id": row.regulation_id,
                "valid_from": row.valid_from,
                "note": note,
                "goods_description": row.description or row.heading_description,
                "goods_description_cn": row.description_cn or row.heading_description_cn,
                "total_duty_rate": (row.duty_rate or 0.0) + (row.anti_dumping_rate or 0.0) + countervailing,
            },
        )


class LocalMirrorSource(RateSource):
    name = "local_mirror"

    def __init__(self, db: Session):
        self.db = db

    async def fetch(self, code10: str, origin: Optional[str]) -> Optional[SourceResult]:
        base = repository.get_base_tariff_row(self.db, code10)
        origin_rows = repository.get_origin_tariff_rows(self.db, code10[:8], origin) if origin else []
        if base is None and not origin_rows:
            return None

        fields: Dict[str, Any] = {}
        if base is not None:
            fields.update({
                "duty_rate": base.duty_rate,
                "third_country_duty": base.third_country_duty,
                "vat_rate": base.vat_rate,
                "anti_dumping_rate": base.anti_dumping_rate,
                "countervailing_rate": base.countervailing_rate,
                "goods_description": base.goods_description,
                "goods_description_cn": base.goods_description_cn,
            })
        ad_rates = [row.anti_dumping_rate for row in origin_rows if row.anti_dumping_rate is not None]
        cvd_rates = [row.countervailing_rate for row in origin_rows if row.countervailing_rate is not None]
        if ad_rates:
            fields["anti_dumping_rate"] = max(ad_rates)
        if cvd_rates:
            fields["countervailing_rate"] = max(cvd_rates)
        if "goods_description" not in fields and origin_rows:
            fields["goods_description"] = origin_rows[0].goods_description
        return SourceResult(data_source=LOCAL_SOURCE, fields=fields)


def parse_commodity_document(document: Dict[str, Any], origin: Optional[str]) -> Dict[str, Any]:
    """Turn one commodity document into RateResult fields."""
    graph = RelationshipGraph.from_document(document)
    primary = graph.primary
    attributes = primary.attributes if primary else {}
    code10 = attributes.get("goods_nomenclature_item_id") or (primary.id if primary else "")

    measures = graph.hydrate_measures()
    scoped = filter_for_origin(measures, origin)
    third_country = extract_third_country_duty(measures)
    anti_dumping = extract_anti_dumping_rate(scoped, origin)
    countervailing = extract_countervailing_rate(scoped, origin)

    return {
        "hs_code": code10[:8],
        "hs_code10": code10,
        "goods_description": attributes.get("description"),
        "formatted_description": attributes.get("formatted_description"),
        "duty_rate": third_country,
        "third_country_duty": third_country,
        "anti_dumping_rate": anti_dumping,
        "countervailing_rate": countervailing,
        "vat_rate": extract_vat_rate(measures),
        "measures": measures,
        "total_measures": len(measures),
        "has_anti_dumping": bool(anti_dumping),
        "has_countervailing": bool(countervailing),
    }


class RemoteTaricSource(RateSource):
    """
    Remote classification API.

    Tries the full code, then 8 digits + '00', then 6 digits + '0000'; the first
    answer with a third-country duty or any measure wins. When every form is
    absent, a declarable commodity under the same subheading is used instead
    (one ending in '90' when present, else the last one) and annotated with a note.
    404s move on to the next form; UpstreamUnavailable propagates.
    """

    name = "remote_taric"
    overwrite = True

    def __init__(self, client: TaricClient):
        self.client = client

    def _result(self, fields: Dict[str, Any]) -> SourceResult:
        return SourceResult(data_source=settings.taric_api_source, fields=fields, overwrite=True)

    async def fetch(self, code10: str, origin: Optional[str]) -> Optional[SourceResult]:
        attempts: List[str] = []
        for candidate in (code10, code10[:8] + "00", code10[:6] + "0000"):
            if candidate not in attempts:
                attempts.append(candidate)

        for candidate in attempts:
            document = await self.client.commodity(candidate, origin)
            if document is None:
                continue
            fields = parse_commodity_document(document, origin)
            if fields["third_country_duty"] is not None or fields["total_measures"] > 0:
                fields["matched_hs_code"] = candidate
                fields["exact_match"] = candidate == code10
                return self._result(fields)

        return await self._heading_fallback(code10, origin)

    async def _heading_fallback(self, code10: str, origin: Optional[str]) -> Optional[SourceResult]:
        heading = await self.client.heading(code10[:4])
        if heading is None:
            return None

        graph = RelationshipGraph.from_document(heading)
        declarables = [c for c in graph.of_type(Commodity) if c.declarable and c.code.startswith(code10[:6])]
        if not declarables:
            return None
        best = next((c for c in declarables if c.code.endswith("90")), declarables[-1])

        document = await self.client.commodity(best.code, origin)
        if document is None:
            return None
        fields = parse_commodity_document(document, origin)
        fields["matched_hs_code"] = best.code
        fields["exact_match"] = False
        fields["note"] = f"Code {code10} not found upstream, showing the closest declarable code {best.code}"
        logger.info(f"Heading fallback for {code10}: using {best.code}")
        return self._result(fields)
