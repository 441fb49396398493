# WORKFLOW: Best-effort description translation with a shared translation cache.
# Used by: services/taric_engine.py, services/hierarchy.py, etl/sync_pipeline.py
# Components:
# 1. GoogleTranslator - httpx client for translate_a/single?client=gtx with retries and 429 backoff
# 2. TranslationService.translate() - cache first, then translator; never raises
# 3. TranslationService.with_translation() - fill a *_cn field on a model in place
# 4. TranslationService.translate_measures() - measure type / area descriptions
# 5. TranslationService.translate_batch() - waves of concurrent translations for bulk sync
#
# Translation flow: text -> cache key -> hit | translator -> cache write (7 days) -> text_cn
# A failure leaves the target field untouched; it is logged and never propagated.

import asyncio
import hashlib
import logging
from typing import Dict, Iterable, List, Optional

import httpx
from pydantic import BaseModel

from api.schemas.response import Measure
from core.config import settings
from core.exceptions import TranslationFailure
from services.ttl_cache import TTLCache, get_cache

logger = logging.getLogger(__name__)


class GoogleTranslator:
    """Free gtx endpoint client."""

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None, max_retries: Optional[int] = None):
        self._client = http_client
        self.max_retries = max_retries or settings.translation_max_retries

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(headers={"Accept": "*/*", "User-Agent": "Mozilla/5.0"})
        return self._client

    async def translate(self, text: str, source: str, target: str, timeout: float) -> str:
        """
        Translate one text.

        Raises:
            TranslationFailure: after max_retries unsuccessful attempts
        """
        params = {"client": "gtx", "sl": source, "tl": target, "dt": "t", "q": text}
        last_error = None
        for attempt in range(1, self.max_retries + 1):
            try:
                response = await self._get_client().get(settings.translation_api_url, params=params, timeout=timeout)
                if response.status_code == 429:
                    last_error = "rate limited"
                    await asyncio.sleep(attempt * 5)
                    continue
                response.raise_for_status()
                payload = response.json()
                return "".join(part[0] for part in payload[0] if part and part[0])
            except (httpx.HTTPError, ValueError, IndexError, TypeError) as e:
                last_error = str(e)
                if attempt < self.max_retries:
                    await asyncio.sleep(attempt * 1)
        raise TranslationFailure(f"Translation failed after {self.max_retries} attempts: {last_error}")

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()


class TranslationService:
    """Translation cache in front of a translator."""

    def __init__(self, cache: Optional[TTLCache] = None, translator=None,
                 source: Optional[str] = None, target: Optional[str] = None,
                 enabled: Optional[bool] = None):
        self.cache = cache or get_cache()
        self.translator = translator or GoogleTranslator()
        self.source = source or settings.translation_source_lang
        self.target = target or settings.translation_target_lang
        self.enabled = settings.translation_enabled if enabled is None else enabled

    def _key(self, text: str) -> str:
        digest = hashlib.sha1(text.encode("utf-8")).hexdigest()
        return f"translation:{self.source}:{self.target}:{digest}"

    async def cached(self, text: Optional[str]) -> Optional[str]:
        if not text:
            return None
        entry = await self.cache.get(self._key(text))
        return entry.get("text") if entry else None

    async def translate(self, text: Optional[str], cache_only: bool = False) -> Optional[str]:
        if not text or not text.strip():
            return None
        hit = await self.cached(text)
        if hit or cache_only or not self.enabled:
            return hit
        try:
            translated = await self.translator.translate(text, self.source, self.target, settings.translation_timeout)
        except Exception as e:
            logger.warning(f"Translation failed for '{text[:50]}': {e}")
            return None
        if not translated or translated == text:
            return None
        await self.cache.set(self._key(text), {"text": translated}, settings.ttl_translation)
        return translated

    async def with_translation(self, item: Optional[BaseModel], src_field: str, dst_field: str,
                               cache_only: bool = False):
        """Set ``item.dst_field`` from ``item.src_field`` unless already set. Never raises."""
        if item is None or getattr(item, dst_field, None):
            return item
        try:
            translated = await self.translate(getattr(item, src_field, None), cache_only=cache_only)
            if translated:
                setattr(item, dst_field, translated)
        except Exception as e:
            logger.warning(f"Could not translate {type(item).__name__}.{src_field}: {e}")
        return item

    async def translate_measures(self, measures: List[Measure]) -> List[Measure]:
        pending: List[str] = []
        for measure in measures:
            for text in (measure.measure_type_description, measure.geographical_area_description):
                if text and text not in pending:
                    pending.append(text)
        translations = await self.translate_batch(pending[:settings.translation_max_measure_texts])
        for measure in measures:
            measure.measure_type_description_cn = translations.get(measure.measure_type_description or "")
            measure.geographical_area_description_cn = translations.get(measure.geographical_area_description or "")
        return measures

    async def translate_batch(self, texts: Iterable[str], concurrency: Optional[int] = None,
                              delay: Optional[float] = None) -> Dict[str, str]:
        """
        Translate unique texts in waves of ``concurrency`` with ``delay`` seconds between waves.

        A failing wave is logged and skipped; the remaining waves still run.
        """
        concurrency = concurrency or settings.translation_batch_concurrency
        delay = settings.translation_batch_delay_seconds if delay is None else delay
        if not self.enabled:
            delay = 0
        unique = list(dict.fromkeys(t for t in texts if t))
        results: Dict[str, str] = {}

        for start in range(0, len(unique), concurrency):
            wave = unique[start:start + concurrency]
            try:
                translated = await asyncio.gather(*(self.translate(text) for text in wave))
                for text, value in zip(wave, translated):
                    if value:
                        results[text] = value
            except Exception as e:
                logger.warning(f"Translation wave {start // concurrency + 1} failed: {e}")
            if start + concurrency < len(unique) and delay > 0:
                await asyncio.sleep(delay)
        return results
