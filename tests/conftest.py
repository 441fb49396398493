# WORKFLOW: Shared fixtures and in-process fakes for the tariff engine test suite.
# Used by: tests/test_*.py
# Fixtures:
# 1. Environment - test database file, memory cache, no batch or translation delays
# 2. FakeTaricClient - path -> JSON:API document map with call recording and outage simulation
# 3. FakeTranslator / FakeRedis - stand-ins for the Google endpoint and redis.asyncio
# 4. Document builders - chapter / heading / commodity documents shaped like the XI API
# 5. db_session / engine - file-backed SQLite schema recreated per test
#
# Test flow: fixtures build documents -> fake client serves them -> engine / API under test

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_tariff_engine.db")
os.environ["CACHE_BACKEND"] = "memory"
os.environ["BATCH_DELAY_SECONDS"] = "0"
os.environ["TRANSLATION_BATCH_DELAY_SECONDS"] = "0"
os.environ["API_KEYS"] = '["test-api-key"]'
os.environ["SYNC_SCHEDULER_ENABLED"] = "false"

import fnmatch  # noqa: E402
from typing import Any, Dict, Iterable, List, Optional, Tuple  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from core.config import settings  # noqa: E402
from core.exceptions import TranslationFailure, UpstreamUnavailable  # noqa: E402
from db.models import Base  # noqa: E402
from services.taric_engine import TaricEngine  # noqa: E402
from services.translation import TranslationService  # noqa: E402
from services.ttl_cache import MemoryCacheBackend, TTLCache  # noqa: E402

# Test database
SQLALCHEMY_DATABASE_URL = settings.database_url
test_engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


def override_get_db():
    """Override database dependency for testing."""
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


class FakeTaricClient:
    """
    Serves documents from a dict keyed by API path, e.g. ``commodities/8471300010``.

    A value that is an exception instance is raised instead of returned; ``unavailable``
    makes every call raise UpstreamUnavailable.
    """

    def __init__(self, documents: Optional[Dict[str, Any]] = None, unavailable: bool = False):
        self.documents = documents or {}
        self.unavailable = unavailable
        self.calls: List[Tuple[str, Optional[Dict[str, Any]]]] = []

    async def get_json(self, path: str, params: Optional[Dict[str, Any]] = None,
                       timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        self.calls.append((path, params))
        if self.unavailable:
            raise UpstreamUnavailable(f"Request failed: {path}", url=path)
        document = self.documents.get(path)
        if isinstance(document, Exception):
            raise document
        return document

    async def commodity(self, code10: str, origin: Optional[str] = None):
        params = {"filter[geographical_area_id]": origin} if origin else None
        return await self.get_json(f"commodities/{code10}", params=params)

    async def heading(self, code4: str):
        return await self.get_json(f"headings/{code4}")

    async def chapter(self, code2: str, timeout: Optional[float] = None):
        return await self.get_json(f"chapters/{code2}", timeout=timeout)

    async def search(self, query: str):
        return await self.get_json("search", params={"q": query})

    async def resource(self, endpoint: str, item_id: str):
        return await self.get_json(f"{endpoint}/{item_id}")

    async def geographical_areas(self):
        return await self.get_json("geographical_areas")

    async def aclose(self) -> None:
        pass

    def paths(self) -> List[str]:
        return [path for path, _ in self.calls]


class FakeTranslator:
    """Prefixes text with '中文:'; texts listed in ``failing`` raise TranslationFailure."""

    def __init__(self, failing: Iterable[str] = ()):
        self.failing = set(failing)
        self.calls: List[str] = []

    async def translate(self, text: str, source: str, target: str, timeout: float) -> str:
        self.calls.append(text)
        if text in self.failing:
            raise TranslationFailure(f"cannot translate {text}")
        return f"中文:{text}"


class FakeRedis:
    """The subset of redis.asyncio.Redis used by RedisCacheBackend."""

    def __init__(self):
        self.store: Dict[str, str] = {}
        self.ttls: Dict[str, int] = {}

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        self.store[key] = value
        self.ttls[key] = ex

    async def delete(self, key):
        self.store.pop(key, None)
        self.ttls.pop(key, None)

    async def scan_iter(self, match="*"):
        for key in list(self.store):
            if fnmatch.fnmatch(key, match):
                yield key


# ---------------------------------------------------------------------- documents

SECTION_XVI = ("16", "XVI", "Machinery and mechanical appliances; electrical equipment")
CHAPTER_84 = ("84", "Nuclear reactors, boilers, machinery and mechanical appliances")
HEADING_8471 = ("8471", "Automatic data-processing machines and units thereof")


def _section_node(section):
    number, numeral, title = section
    return {"type": "section", "id": number,
            "attributes": {"numeral": numeral, "title": title, "position": int(number)}}


def _chapter_node(chapter):
    code, description = chapter
    return {"type": "chapter", "id": code,
            "attributes": {"goods_nomenclature_item_id": code.ljust(10, "0"), "description": description}}


def _heading_node(heading):
    code, description = heading
    return {"type": "heading", "id": code,
            "attributes": {"goods_nomenclature_item_id": code.ljust(10, "0"), "description": description}}


def measure_nodes(measures: Iterable[Tuple[str, str, str, str, str, str]]) -> List[Dict[str, Any]]:
    """(measure_id, type_id, type_description, area_id, area_description, duty) -> included nodes."""
    nodes = []
    for measure_id, type_id, type_description, area_id, area_description, duty in measures:
        nodes.append({
            "type": "measure", "id": measure_id,
            "attributes": {"effective_start_date": "2024-01-01T00:00:00.000Z", "effective_end_date": None},
            "relationships": {
                "measure_type": {"data": {"type": "measure_type", "id": type_id}},
                "geographical_area": {"data": {"type": "geographical_area", "id": area_id}},
                "duty_expression": {"data": {"type": "duty_expression", "id": f"{measure_id}-duty_expression"}},
            },
        })
        nodes.append({"type": "measure_type", "id": type_id, "attributes": {"description": type_description}})
        nodes.append({"type": "geographical_area", "id": area_id, "attributes": {"description": area_description}})
        nodes.append({"type": "duty_expression", "id": f"{measure_id}-duty_expression",
                      "attributes": {"base": duty, "formatted_base": f"<span>{duty}</span>"}})
    return nodes


def chapter_doc(chapter=CHAPTER_84, headings=(HEADING_8471,), section=SECTION_XVI):
    return {
        "data": {"type": "chapter", "id": chapter[0],
                 "attributes": {"goods_nomenclature_item_id": chapter[0].ljust(10, "0"),
                                "description": chapter[1]}},
        "included": [_section_node(section)] + [_heading_node(h) for h in headings],
    }


def heading_doc(heading=HEADING_8471, commodities=(), chapter=CHAPTER_84, section=SECTION_XVI):
    """``commodities``: (code10, description, declarable, number_indents) in nomenclature order."""
    included = [_section_node(section), _chapter_node(chapter)]
    for code, description, declarable, indents in commodities:
        included.append({
            "type": "commodity", "id": code,
            "attributes": {"goods_nomenclature_item_id": code, "description": description,
                           "declarable": declarable, "number_indents": indents},
        })
    return {
        "data": {"type": "heading", "id": heading[0],
                 "attributes": {"goods_nomenclature_item_id": heading[0].ljust(10, "0"),
                                "description": heading[1], "declarable": False}},
        "included": included,
    }


def commodity_doc(code10, description, declarable=True, measures=(), chapter=CHAPTER_84,
                  heading=HEADING_8471, section=SECTION_XVI):
    return {
        "data": {"type": "commodity", "id": code10,
                 "attributes": {"goods_nomenclature_item_id": code10, "description": description,
                                "formatted_description": f"<b>{description}</b>", "declarable": declarable}},
        "included": [_section_node(section), _chapter_node(chapter), _heading_node(heading)]
        + measure_nodes(measures),
    }


ERGA_OMNES_FREE = ("m-103", "103", "Third country duty", "1011", "ERGA OMNES", "0.00 %")
VAT_STANDARD = ("m-305", "305", "Value added tax", "1011", "ERGA OMNES", "19.00 %")

HEADING_8471_COMMODITIES = [
    ("8471300000", "Portable automatic data-processing machines, weighing not more than 10 kg", False, 1),
    ("8471300010", "Laptops", True, 2),
    ("8471300020", "Tablets", True, 2),
    ("8471300090", "Other", True, 2),
    ("8471410000", "Other automatic data-processing machines", False, 1),
    ("8471410010", "Comprising in the same housing a CPU and an input unit", True, 2),
    ("8471490000", "Other, presented in the form of systems", True, 1),
]


def xi_documents() -> Dict[str, Any]:
    """A small slice of chapter 84 as the XI API would serve it."""
    portable = HEADING_8471_COMMODITIES[0][1]
    return {
        "chapters/84": chapter_doc(),
        "headings/8471": heading_doc(commodities=HEADING_8471_COMMODITIES),
        "commodities/8471300000": commodity_doc("8471300000", portable, declarable=False),
        "commodities/8471300010": commodity_doc("8471300010", "Laptops",
                                                measures=[ERGA_OMNES_FREE, VAT_STANDARD]),
        "commodities/8471300020": commodity_doc("8471300020", "Tablets",
                                                measures=[ERGA_OMNES_FREE, VAT_STANDARD]),
        "commodities/8471300090": commodity_doc("8471300090", "Other",
                                                measures=[ERGA_OMNES_FREE, VAT_STANDARD]),
    }


# ----------------------------------------------------------------------- fixtures

@pytest.fixture
def db_session():
    Base.metadata.drop_all(bind=test_engine)
    Base.metadata.create_all(bind=test_engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def cache():
    return TTLCache(MemoryCacheBackend(), namespace="test")


@pytest.fixture
def fake_translator():
    return FakeTranslator()


@pytest.fixture
def translator(cache, fake_translator):
    return TranslationService(cache, translator=fake_translator, enabled=True)


@pytest.fixture
def fake_client():
    return FakeTaricClient(xi_documents())


@pytest.fixture
def engine(db_session, fake_client, translator, cache):
    return TaricEngine(db_session, client=fake_client, translator=translator, cache=cache)


@pytest.fixture
def data_dir(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "taric_data_dir", str(tmp_path / "taric"))
    return tmp_path / "taric"
