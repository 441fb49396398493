# WORKFLOW: Multi-source duty-rate resolution for one code and origin.
# Used by: services/taric_engine.py (lookup_rate, lookup_v2, batch_lookup, hierarchy enrichment)
# Steps:
# 1. Ask the fallback sources (override table, local mirror) in precedence order
# 2. Ask the remote source; on UpstreamUnavailable keep the fallback data and add a note
# 3. Merge with merge_in_precedence_order() and build a RateResult
# 4. Translate goods description and measure texts (best effort)
#
# Errors: UpstreamUnavailable propagates only when no fallback produced anything;
# TariffCodeNotFound when every source answered "absent".

import logging
from typing import List, Optional

from api.schemas.response import RateResult
from core.exceptions import TariffCodeNotFound, UpstreamUnavailable
from services.rate_sources import RateSource, SourceResult, merge_in_precedence_order
from services.translation import TranslationService

logger = logging.getLogger(__name__)

NETWORK_FALLBACK_NOTE = "Remote tariff service unavailable, showing locally stored rates"


class RateResolver:
    """Runs fallback sources, then the authoritative remote source, and merges them."""

    def __init__(self, fallback_sources: List[RateSource], remote_source: RateSource,
                 translator: Optional[TranslationService] = None):
        self.fallback_sources = fallback_sources
        self.remote_source = remote_source
        self.translator = translator

    async def resolve(self, code10: str, origin: Optional[str] = None) -> RateResult:
        results: List[Optional[SourceResult]] = []
        for source in self.fallback_sources:
            try:
                results.append(await source.fetch(code10, origin))
            except Exception as e:
                logger.warning(f"Rate source {source.name} failed for {code10}: {e}")

        has_fallback = any(result is not None for result in results)
        network_note = None
        try:
            results.append(await self.remote_source.fetch(code10, origin))
        except UpstreamUnavailable as e:
            if not has_fallback:
                logger.error(f"Remote lookup failed for {code10} with no local data: {e}")
                raise
            logger.warning(f"Remote lookup failed for {code10}, using local data: {e}")
            network_note = NETWORK_FALLBACK_NOTE

        if not any(result is not None for result in results):
            raise TariffCodeNotFound(code10)

        merged = merge_in_precedence_order(results)
        if network_note:
            merged["note"] = f"{merged['note']}; {network_note}" if merged.get("note") else network_note

        result = RateResult(
            **{
                "hs_code": code10[:8],
                "hs_code10": code10,
                **merged,
                "origin_country_code": origin,
            }
        )
        result.has_anti_dumping = bool(result.anti_dumping_rate)
        result.has_countervailing = bool(result.countervailing_rate)
        if result.duty_rate is not None:
            result.total_duty_rate = (
                result.duty_rate + (result.anti_dumping_rate or 0.0) + (result.countervailing_rate or 0.0)
            )

        if self.translator is not None:
            await self.translator.with_translation(result, "goods_description", "goods_description_cn")
            if result.measures:
                try:
                    await self.translator.translate_measures(result.measures)
                except Exception as e:
                    logger.warning(f"Measure translation failed for {code10}: {e}")
        return result
