# WORKFLOW: Tests for the translation cache and the Google gtx client.
# Used by: CI/CD pipelines, development testing
# Test scenarios:
# 1. Cache hit skips the translator
# 2. Translator failure leaves the target field untouched
# 3. Batch translation deduplicates and skips failures
# 4. Measure descriptions translated in place
# 5. GoogleTranslator response parsing and retry exhaustion

import httpx
import pytest

from api.schemas.response import Measure, RateResult
from core.exceptions import TranslationFailure
from services.translation import GoogleTranslator, TranslationService
from tests.conftest import FakeTranslator


@pytest.mark.asyncio
async def test_translation_cached(translator, fake_translator):
    assert await translator.translate("Laptops") == "中文:Laptops"
    assert await translator.translate("Laptops") == "中文:Laptops"
    assert fake_translator.calls == ["Laptops"]
    assert await translator.cached("Laptops") == "中文:Laptops"


@pytest.mark.asyncio
async def test_cache_only_and_disabled(cache, fake_translator):
    service = TranslationService(cache, translator=fake_translator, enabled=False)
    assert await service.translate("Tablets") is None
    assert await service.translate("Tablets", cache_only=False) is None
    assert fake_translator.calls == []


@pytest.mark.asyncio
async def test_empty_text_not_sent(translator, fake_translator):
    assert await translator.translate("   ") is None
    assert await translator.translate(None) is None
    assert fake_translator.calls == []


@pytest.mark.asyncio
async def test_failure_leaves_field_untouched(cache):
    service = TranslationService(cache, translator=FakeTranslator(failing=["Other"]), enabled=True)
    result = RateResult(hs_code="8471300090", hs_code10="8471300090", goods_description="Other")

    await service.with_translation(result, "goods_description", "goods_description_cn")
    assert result.goods_description_cn is None


@pytest.mark.asyncio
async def test_existing_translation_kept(translator, fake_translator):
    result = RateResult(hs_code="8471300010", hs_code10="8471300010",
                        goods_description="Laptops", goods_description_cn="笔记本电脑")
    await translator.with_translation(result, "goods_description", "goods_description_cn")
    assert result.goods_description_cn == "笔记本电脑"
    assert fake_translator.calls == []


@pytest.mark.asyncio
async def test_batch_dedupes_and_skips_failures(cache):
    fake = FakeTranslator(failing=["bad"])
    service = TranslationService(cache, translator=fake, enabled=True)
    results = await service.translate_batch(["a", "b", "a", "bad", "", "c"], concurrency=2, delay=0)

    assert results == {"a": "中文:a", "b": "中文:b", "c": "中文:c"}
    assert sorted(fake.calls) == ["a", "b", "bad", "c"]


@pytest.mark.asyncio
async def test_translate_measures(translator):
    measures = [
        Measure(measure_type_description="Third country duty", geographical_area_description="ERGA OMNES"),
        Measure(measure_type_description="Third country duty", geographical_area_description=None),
    ]
    await translator.translate_measures(measures)

    assert measures[0].measure_type_description_cn == "中文:Third country duty"
    assert measures[0].geographical_area_description_cn == "中文:ERGA OMNES"
    assert measures[1].geographical_area_description_cn is None


@pytest.mark.asyncio
async def test_google_translator_joins_segments():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=[[["笔记本", "Laptop", None], ["电脑", "computers", None]], None, "en"])

    translator = GoogleTranslator(http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
                                  max_retries=1)
    assert await translator.translate("Laptop computers", "en", "zh-CN", timeout=5) == "笔记本电脑"
    assert seen[0].url.params["client"] == "gtx"
    assert seen[0].url.params["tl"] == "zh-CN"
    await translator.aclose()


@pytest.mark.asyncio
async def test_google_translator_gives_up():
    translator = GoogleTranslator(
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500))),
        max_retries=1,
    )
    with pytest.raises(TranslationFailure):
        await translator.translate("Laptop", "en", "zh-CN", timeout=5)
