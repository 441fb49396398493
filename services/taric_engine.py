# WORKFLOW: Tariff engine facade used by the HTTP layer and other modules.
# Used by: api/routers/taric.py, api/routers/health.py, tests
# Operations:
# 1. validate_code() / get_hierarchy() / search_by_description() / list_declarable_codes()
# 2. lookup_rate() - cached multi-source rate resolution, optional persistence into the mirror
# 3. lookup_v2() - exact | parent_node | not_found | error, with candidates and guidance
# 4. batch_lookup() - waves of concurrent lookups, per-item errors
# 5. get_measure_details() / get_country_codes() / check_api_health() / clear_cache()
#
# Lookup flow: normalize -> cache -> RateResolver (override -> local -> remote) -> translate -> cache -> persist
# Each cached operation reports from_cache; cache keys include every parameter that changes the result.

import asyncio
import logging
import time
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from api.schemas.response import (
    ApiHealth,
    BatchError,
    BatchItem,
    BatchLookupResult,
    CacheStats,
    CountryCode,
    CountryCodeList,
    DeclarableList,
    HierarchyTree,
    LookupV2Result,
    MatchStatus,
    MeasureDetails,
    RateResult,
    SearchResult,
    ValidationResult,
)
from core.config import settings
from db import repository
from services.candidate_matcher import rank_candidates
from services.code_normalizer import normalize
from services.hierarchy import HierarchyService
from services.rate_resolver import RateResolver
from services.rate_sources import AntiDumpingOverrideSource, LocalMirrorSource, RemoteTaricSource
from services.relationship_graph import Commodity, RelationshipGraph
from services.taric_client import TaricClient
from services.translation import GoogleTranslator, TranslationService
from services.ttl_cache import TTLCache, get_cache

logger = logging.getLogger(__name__)

COUNTRY_CODES_KEY = "country_codes"

FALLBACK_COUNTRIES = [
    ("CN", "China"), ("US", "United States"), ("JP", "Japan"), ("KR", "South Korea"),
    ("IN", "India"), ("VN", "Vietnam"), ("TH", "Thailand"), ("MY", "Malaysia"),
    ("ID", "Indonesia"), ("TW", "Taiwan"), ("HK", "Hong Kong"), ("SG", "Singapore"),
    ("PH", "Philippines"), ("BD", "Bangladesh"), ("PK", "Pakistan"), ("TR", "Turkey"),
    ("MX", "Mexico"), ("BR", "Brazil"), ("RU", "Russia"), ("UA", "Ukraine"),
]

NOT_DECLARABLE_WARNING = "This code is a category and cannot be used on a customs declaration"
NOT_FOUND_WARNING = "This code does not exist in the tariff nomenclature"


class TaricEngine:
    """Classification, hierarchy and duty-rate operations over one database session."""

    def __init__(self, db: Session, client: TaricClient, translator: TranslationService, cache: TTLCache):
        self.db = db
        self.client = client
        self.translator = translator
        self.cache = cache
        self.resolver = RateResolver(
            fallback_sources=[AntiDumpingOverrideSource(db), LocalMirrorSource(db)],
            remote_source=RemoteTaricSource(client),
            translator=translator,
        )
        self.hierarchy = HierarchyService(client, cache, translator, rate_lookup=self._enrichment_lookup)

    async def _enrichment_lookup(self, code: str, origin: Optional[str]) -> RateResult:
        return await self.lookup_rate(code, origin)

    # ------------------------------------------------------------ navigation

    async def validate_code(self, code: str) -> ValidationResult:
        return await self.hierarchy.validate(code)

    async def get_hierarchy(self, prefix: str, origin: Optional[str] = None) -> HierarchyTree:
        return await self.hierarchy.get_hierarchy(prefix, _origin(origin))

    async def search_by_description(self, query: str, chapter: Optional[str] = None,
                                    page: int = 1, page_size: int = 20) -> SearchResult:
        return await self.hierarchy.search_by_description(query.strip(), chapter, page, page_size)

    async def list_declarable_codes(self, prefix: str, origin: Optional[str] = None) -> DeclarableList:
        return await self.hierarchy.list_declarable(prefix, _origin(origin))

    # --------------------------------------------------------------- lookups

    async def lookup_rate(self, code: str, origin: Optional[str] = None, persist: bool = False) -> RateResult:
        """
        Resolve the applicable rates for one code.

        Raises:
            ValueError: fewer than 2 digits
            TariffCodeNotFound: no source knows the code
            UpstreamUnavailable: remote unreachable and nothing stored locally
        """
        normalized = normalize(code)
        if not normalized.is_valid:
            raise ValueError(normalized.error)
        code10 = normalized.normalized10
        origin = _origin(origin)

        cache_key = f"taric:{code10}:{origin or 'ALL'}"
        cached = await self.cache.get(cache_key)
        if cached:
            result = RateResult.model_validate(cached)
            result.from_cache = True
        else:
            result = await self.resolver.resolve(code10, origin)
            result.query_time = datetime.utcnow()
            await self.cache.set(cache_key, result.model_dump(mode="json"), settings.ttl_rate_lookup)

        if persist:
            result.saved_to_db, result.db_error = self._persist(result, "taric_api")
        return result

    def _persist(self, result: RateResult, api_source: str):
        try:
            return repository.save_rate_result(self.db, result, api_source), None
        except Exception as e:
            logger.warning(f"Lookup result for {result.hs_code10} not saved: {e}")
            return "failed", str(e)

    async def lookup_v2(self, code: str, origin: Optional[str] = None, persist: bool = False) -> LookupV2Result:
        normalized = normalize(code)
        if not normalized.is_valid:
            return LookupV2Result(input_code=code, normalized_code=normalized.digits,
                                  match_status=MatchStatus.ERROR, error=normalized.error)
        digits = normalized.digits
        code10 = normalized.normalized10
        origin = _origin(origin)

        cache_key = f"lookup_v2:{digits}:{origin or 'ALL'}"
        cached = await self.cache.get(cache_key)
        if cached:
            result = LookupV2Result.model_validate(cached)
            result.input_code = code
            result.from_cache = True
            if persist and result.exact_match is not None:
                result.saved_to_db, result.db_error = self._persist(result.exact_match, "taric_api_v2")
            return result

        try:
            validation = await self.hierarchy.validate(digits)
            if validation.upstream_error:
                # Unreachable is not absent; report and leave the cache alone
                return LookupV2Result(input_code=code, normalized_code=digits, match_status=MatchStatus.ERROR,
                                      validation=validation, error=validation.error)
            result = LookupV2Result(input_code=code, normalized_code=digits,
                                    match_status=MatchStatus.NOT_FOUND, validation=validation)

            if validation.is_valid and validation.is_declarable:
                result.match_status = MatchStatus.EXACT
                result.exact_match = await self.lookup_rate(code10, origin)
                result.suggestion = f"{digits} is declarable and can be used on a customs declaration"
            elif validation.is_valid:
                result.match_status = MatchStatus.PARENT_NODE
                result.hierarchy = await self.hierarchy.get_hierarchy(digits, origin)
                result.suggestion = (
                    f"{digits} is a category with {validation.declarable_count or 0} declarable codes, "
                    f"select one of them"
                )
                result.warning = NOT_DECLARABLE_WARNING
            else:
                result.candidates = await self._candidates(code10, validation)
                if result.candidates:
                    result.suggestion = (
                        f"{digits} was not found, {len(result.candidates)} similar declarable codes are listed"
                    )
                else:
                    result.suggestion = f"{digits} was not found, check the code or search by description"
                result.warning = NOT_FOUND_WARNING
        except Exception as e:
            logger.error(f"lookup_v2 failed for {digits}: {e}")
            return LookupV2Result(input_code=code, normalized_code=digits,
                                  match_status=MatchStatus.ERROR, error=str(e))

        await self.cache.set(cache_key, result.model_dump(mode="json"), settings.ttl_lookup_v2)

        if persist and result.exact_match is not None:
            result.saved_to_db, result.db_error = self._persist(result.exact_match, "taric_api_v2")
        return result

    async def _candidates(self, code10: str, validation: ValidationResult):
        try:
            document = await self.client.heading(code10[:4])
        except Exception as e:
            logger.warning(f"Candidate heading {code10[:4]} unavailable: {e}")
            document = None
        if document is not None:
            graph = RelationshipGraph.from_document(document)
            pool = [(c.code, c.description) for c in graph.of_type(Commodity) if c.declarable]
        else:
            pool = [(s.code, s.description) for s in validation.similar_codes]
        return rank_candidates(code10, pool)

    async def batch_lookup(self, codes: List[str], origin: Optional[str] = None,
                           concurrency: Optional[int] = None, delay: Optional[float] = None) -> BatchLookupResult:
        """Look codes up in waves of ``concurrency``; a failed code lands in errors, siblings continue."""
        concurrency = max(1, concurrency or settings.batch_concurrency)
        delay = settings.batch_delay_seconds if delay is None else delay
        result = BatchLookupResult(total_count=len(codes))

        for start in range(0, len(codes), concurrency):
            wave = codes[start:start + concurrency]
            outcomes = await asyncio.gather(*(self.lookup_rate(c, origin) for c in wave), return_exceptions=True)
            for code, outcome in zip(wave, outcomes):
                if isinstance(outcome, Exception):
                    logger.warning(f"Batch lookup failed for {code}: {outcome}")
                    result.errors.append(BatchError(hs_code=code, error=str(outcome)))
                else:
                    result.results.append(BatchItem(hs_code=code, data=outcome))
            if start + concurrency < len(codes) and delay > 0:
                await asyncio.sleep(delay)
        return result

    async def get_measure_details(self, code: str, origin: Optional[str] = None) -> MeasureDetails:
        normalized = normalize(code)
        details = MeasureDetails(hs_code=normalized.normalized10 if normalized.is_valid else normalized.digits)
        if not normalized.is_valid:
            return details
        try:
            document = await self.client.commodity(normalized.normalized10, _origin(origin))
            if document is not None:
                details.measures = RelationshipGraph.from_document(document).hydrate_measures()
                await self.translator.translate_measures(details.measures)
        except Exception as e:
            logger.warning(f"Measure details for {code} unavailable: {e}")
            details.measures = []
        return details

    # ------------------------------------------------------------- reference

    async def get_country_codes(self) -> CountryCodeList:
        cached = await self.cache.get(COUNTRY_CODES_KEY)
        if cached:
            result = CountryCodeList.model_validate(cached)
            result.from_cache = True
            return result

        countries: List[CountryCode] = []
        try:
            document = await self.client.geographical_areas()
            for item in (document or {}).get("data") or []:
                attributes = item.get("attributes") or {}
                area_id = attributes.get("geographical_area_id") or item.get("id") or ""
                if len(area_id) == 2 and area_id.isalpha():
                    countries.append(CountryCode(code=area_id, name=attributes.get("description")))
        except Exception as e:
            logger.warning(f"Geographical areas unavailable, using fallback list: {e}")

        if countries:
            result = CountryCodeList(countries=sorted(countries, key=lambda c: c.code))
            await self.cache.set(COUNTRY_CODES_KEY, result.model_dump(mode="json"), settings.ttl_country_codes)
        else:
            result = CountryCodeList(countries=[CountryCode(code=c, name=n) for c, n in FALLBACK_COUNTRIES])
            await self.cache.set(COUNTRY_CODES_KEY, result.model_dump(mode="json"),
                                 settings.ttl_country_codes_fallback)
        return result

    async def check_api_health(self) -> ApiHealth:
        started = time.perf_counter()
        available, error, elapsed = False, None, None
        try:
            document = await self.client.chapter("01", timeout=settings.health_check_timeout)
            elapsed = round((time.perf_counter() - started) * 1000, 1)
            available = document is not None
            if not available:
                error = "Chapter 01 not returned"
        except Exception as e:
            error = str(e)

        return ApiHealth(
            available=available,
            response_time_ms=elapsed,
            error=error,
            api_source=settings.taric_api_source,
            timestamp=datetime.utcnow(),
            cache_stats=CacheStats(**await self.cache.stats()),
        )

    async def clear_cache(self) -> None:
        await self.cache.clear()
        logger.info("Tariff cache cleared")


def _origin(origin: Optional[str]) -> Optional[str]:
    return origin.strip().upper() if origin and origin.strip() else None


# Shared upstream clients, created on first use
_client: Optional[TaricClient] = None
_google: Optional[GoogleTranslator] = None


def get_taric_client() -> TaricClient:
    global _client
    if _client is None:
        _client = TaricClient()
    return _client


def get_translator(cache: Optional[TTLCache] = None) -> TranslationService:
    global _google
    if _google is None:
        _google = GoogleTranslator()
    return TranslationService(cache or get_cache(), translator=_google)


async def close_clients() -> None:
    if _client is not None:
        await _client.aclose()
    if _google is not None:
        await _google.aclose()


def create_taric_engine(db: Session, client: Optional[TaricClient] = None,
                        translator: Optional[TranslationService] = None,
                        cache: Optional[TTLCache] = None) -> TaricEngine:
    """Factory function to create a TaricEngine."""
    cache = cache or get_cache()
    return TaricEngine(
        db,
        client=client or get_taric_client(),
        translator=translator or get_translator(cache),
        cache=cache,
    )
