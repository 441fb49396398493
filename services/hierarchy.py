# WORKFLOW: Code validation, hierarchy trees, description search and declarable listings.
# Used by: services/taric_engine.py, api/routers/taric.py
# Functions:
# 1. validate() - existence, declarability, children and breadcrumb for any 2-10 digit code
# 2. get_hierarchy() - grouped declarable children, section and ancestor chain, optional rates
# 3. search_by_description() - upstream search with chapter stats, filtering and pagination
# 4. list_declarable() - declarable commodities under a prefix, optional rates
#
# Validation flow: normalize -> cache -> chapter | heading | commodity document -> translate -> cache
# "Not found" and "too short" are structured results with error set, never exceptions.

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional

from api.schemas.response import (
    BreadcrumbEntry,
    ChapterStat,
    ChildGroup,
    ClassificationLevel,
    DeclarableCode,
    DeclarableList,
    HierarchyChild,
    HierarchyTree,
    RateResult,
    SearchHit,
    SearchResult,
    Section as SectionInfo,
    SimilarCode,
    ValidationResult,
)
from core.config import settings
from services.code_normalizer import normalize, pad_to
from services.relationship_graph import Chapter, Commodity, Heading, RelationshipGraph, Section
from services.taric_client import TaricClient
from services.translation import TranslationService
from services.ttl_cache import TTLCache

logger = logging.getLogger(__name__)

RateLookup = Callable[[str, Optional[str]], Awaitable[RateResult]]

SIMILAR_CODES_LIMIT = 10


def _section_info(graph: RelationshipGraph) -> Optional[SectionInfo]:
    section = graph.first(Section)
    if section is None:
        return None
    return SectionInfo(number=section.number, title=section.title)


def _section_crumb(section: Optional[SectionInfo]) -> List[BreadcrumbEntry]:
    if section is None:
        return []
    return [BreadcrumbEntry(code=f"S{section.number}", description=section.title,
                            description_cn=section.title_cn, level="section")]


def _descendants(heading: RelationshipGraph, digits: str, full_code: str) -> List[Commodity]:
    """Commodities under the first (up to) 6 digits of ``digits``, the node itself excluded."""
    prefix = digits[:min(len(digits), 6)]
    return [c for c in heading.of_type(Commodity) if c.code.startswith(prefix) and c.code != full_code]


def _ancestors(heading: RelationshipGraph, full_code: str) -> List[Commodity]:
    """Indented category nodes above ``full_code`` in the heading's ordered commodity list."""
    commodities = list(heading.of_type(Commodity))
    index = next((i for i, c in enumerate(commodities) if c.code == full_code and c.declarable), -1)
    if index < 0:
        index = next((i for i, c in enumerate(commodities) if c.code == full_code), -1)
    if index < 0:
        return []

    ancestors: List[Commodity] = []
    target = commodities[index].indent - 1
    for item in reversed(commodities[:index]):
        if target < 1:
            break
        if item.indent == target and not item.declarable:
            ancestors.insert(0, item)
            target -= 1
    return ancestors


def _significant(code: str, minimum: int = 6) -> str:
    """'8471300000' -> '847130': drop trailing zero pairs down to ``minimum`` digits."""
    while len(code) > minimum and code.endswith("00"):
        code = code[:-2]
    return code


class HierarchyService:
    """Nomenclature navigation over the remote classification API."""

    def __init__(self, client: TaricClient, cache: TTLCache, translator: TranslationService,
                 rate_lookup: Optional[RateLookup] = None):
        self.client = client
        self.cache = cache
        self.translator = translator
        self.rate_lookup = rate_lookup

    # ------------------------------------------------------------------ validate

    async def validate(self, code: str) -> ValidationResult:
        normalized = normalize(code)
        if not normalized.is_valid:
            return ValidationResult(input_code=code, normalized_code=normalized.digits, error=normalized.error)

        digits = normalized.digits
        cache_key = f"validate:{digits}"
        cached = await self.cache.get(cache_key)
        if cached:
            result = ValidationResult.model_validate(cached)
            result.input_code = code
            result.from_cache = True
            return result

        result = ValidationResult(input_code=code, normalized_code=digits, level=normalized.level)
        try:
            if normalized.level == ClassificationLevel.CHAPTER:
                await self._validate_chapter(result, digits)
            elif normalized.level == ClassificationLevel.HEADING:
                await self._validate_heading(result, digits)
            else:
                await self._validate_commodity(result, digits)
        except Exception as e:
            logger.warning(f"Validation of {digits} failed: {e}")
            result.error = f"Validation failed: {e}"
            result.upstream_error = True
            return result

        await self.translator.with_translation(result, "description", "description_cn")
        if result.breadcrumb:
            result.breadcrumb[-1].description_cn = result.description_cn
        await self.cache.set(cache_key, result.model_dump(mode="json"), settings.ttl_validation)
        return result

    async def _validate_chapter(self, result: ValidationResult, digits: str) -> None:
        document = await self.client.chapter(digits)
        if document is None:
            result.error = f"Chapter {digits} does not exist in the tariff nomenclature"
            return
        graph = RelationshipGraph.from_document(document)
        result.is_valid = True
        result.has_children = True
        result.description = graph.primary.attr("description")
        result.child_count = sum(1 for _ in graph.of_type(Heading))
        result.breadcrumb = [BreadcrumbEntry(code=digits, description=result.description, level="chapter")]

    async def _validate_heading(self, result: ValidationResult, digits: str) -> None:
        document = await self.client.heading(digits[:4])
        if document is None:
            result.error = f"Heading {digits} does not exist in the tariff nomenclature"
            return
        graph = RelationshipGraph.from_document(document)
        commodities = list(graph.of_type(Commodity))
        chapter = graph.first(Chapter)

        result.is_valid = True
        result.has_children = True
        result.description = graph.primary.attr("description")
        result.parent_code = digits[:2]
        result.parent_description = chapter.description if chapter else None
        result.child_count = len(commodities)
        result.declarable_count = sum(1 for c in commodities if c.declarable)
        result.breadcrumb = [
            BreadcrumbEntry(code=digits[:2], description=result.parent_description or f"Chapter {digits[:2]}",
                            level="chapter"),
            BreadcrumbEntry(code=digits, description=result.description, level="heading"),
        ]

    async def _validate_commodity(self, result: ValidationResult, digits: str) -> None:
        full_code = pad_to(digits, 10)
        document = await self.client.commodity(full_code)

        if document is None:
            result.error = f"Code {digits} does not exist in the tariff nomenclature"
            heading = await self.client.heading(digits[:4])
            if heading is not None:
                graph = RelationshipGraph.from_document(heading)
                result.parent_code = digits[:4]
                result.parent_description = graph.primary.attr("description")
                result.similar_codes = [
                    SimilarCode(code=c.code, description=c.description)
                    for c in graph.of_type(Commodity)
                    if c.declarable and c.code.startswith(digits[:6])
                ][:SIMILAR_CODES_LIMIT]
            return

        graph = RelationshipGraph.from_document(document)
        chapter = graph.first(Chapter)
        heading_node = graph.first(Heading)

        result.is_valid = True
        result.is_declarable = graph.primary.attr("declarable") is True
        result.has_children = not result.is_declarable
        result.description = graph.primary.attr("description")
        result.parent_code = digits[:4]
        result.parent_description = heading_node.description if heading_node else None
        result.breadcrumb = [
            BreadcrumbEntry(code=digits[:2], description=chapter.description if chapter else None, level="chapter"),
            BreadcrumbEntry(code=digits[:4], description=result.parent_description, level="heading"),
            BreadcrumbEntry(code=digits, description=result.description, level=result.level.value),
        ]

        if not result.is_declarable:
            heading = await self.client.heading(digits[:4])
            if heading is not None:
                children = _descendants(RelationshipGraph.from_document(heading), digits, full_code)
                result.child_count = len(children)
                result.declarable_count = sum(1 for c in children if c.declarable)

    # ----------------------------------------------------------------- hierarchy

    async def get_hierarchy(self, prefix: str, origin: Optional[str] = None) -> HierarchyTree:
        normalized = normalize(prefix)
        if not normalized.is_valid:
            return HierarchyTree(code=normalized.digits, error=normalized.error)

        digits = normalized.digits
        cache_key = f"hierarchy:{digits}:{origin or 'ALL'}"
        cached = await self.cache.get(cache_key)
        if cached:
            tree = HierarchyTree.model_validate(cached)
            tree.from_cache = True
            return tree

        tree = HierarchyTree(code=digits, level=normalized.level.value)
        try:
            if normalized.level == ClassificationLevel.CHAPTER:
                found = await self._chapter_tree(tree, digits)
            elif normalized.level == ClassificationLevel.HEADING:
                found = await self._heading_tree(tree, digits, origin)
            else:
                found = await self._commodity_tree(tree, digits, origin)
        except Exception as e:
            logger.warning(f"Hierarchy for {digits} failed: {e}")
            tree.error = f"Failed to load hierarchy: {e}"
            return tree

        if not found:
            tree.error = f"Code {digits} does not exist in the tariff nomenclature"
            return tree

        await self.cache.set(cache_key, tree.model_dump(mode="json"), settings.ttl_hierarchy)
        return tree

    async def _translate_section(self, section: Optional[SectionInfo]) -> None:
        if section is not None:
            await self.translator.with_translation(section, "title", "title_cn")

    async def _chapter_tree(self, tree: HierarchyTree, digits: str) -> bool:
        document = await self.client.chapter(digits)
        if document is None:
            return False
        graph = RelationshipGraph.from_document(document)
        tree.description = graph.primary.attr("description")
        tree.section = _section_info(graph)
        await self._translate_section(tree.section)
        await self.translator.with_translation(tree, "description", "description_cn")

        tree.children = [
            HierarchyChild(code=h.code[:4], description=h.description, level="heading", has_children=True)
            for h in graph.of_type(Heading)
        ]
        tree.total_children = len(tree.children)
        tree.breadcrumb = _section_crumb(tree.section) + [
            BreadcrumbEntry(code=digits, description=tree.description, description_cn=tree.description_cn,
                            level="chapter"),
        ]
        return True

    async def _heading_tree(self, tree: HierarchyTree, digits: str, origin: Optional[str]) -> bool:
        document = await self.client.heading(digits[:4])
        if document is None:
            return False
        graph = RelationshipGraph.from_document(document)
        tree.description = graph.primary.attr("description")
        tree.section = _section_info(graph)
        await self._translate_section(tree.section)
        await self.translator.with_translation(tree, "description", "description_cn")

        chapter = graph.first(Chapter)
        tree.breadcrumb = _section_crumb(tree.section)
        if chapter is not None:
            tree.breadcrumb.append(BreadcrumbEntry(
                code=digits[:2], description=chapter.description,
                description_cn=await self.translator.cached(chapter.description), level="chapter",
            ))
        tree.breadcrumb.append(BreadcrumbEntry(code=digits, description=tree.description,
                                               description_cn=tree.description_cn, level="heading"))

        commodities = list(graph.of_type(Commodity))
        groups: Dict[str, ChildGroup] = {}
        for commodity in commodities:
            subheading = commodity.code[:6]
            if subheading not in groups:
                parent = next((c for c in commodities if c.code.startswith(subheading) and not c.declarable), None)
                title = parent.description if parent and parent.description else f"Subheading {subheading}"
                groups[subheading] = ChildGroup(group_code=subheading, group_title=title,
                                                group_title_cn=await self.translator.cached(title))
            if commodity.declarable:
                groups[subheading].children.append(await self._child(commodity))

        tree.child_groups = [g for g in groups.values() if g.children]
        tree.total_children = sum(1 for c in commodities if c.declarable)
        tree.declarable_count = tree.total_children
        await self._enrich_rates(tree, origin, settings.hierarchy_rate_limit_heading)
        return True

    async def _commodity_tree(self, tree: HierarchyTree, digits: str, origin: Optional[str]) -> bool:
        full_code = pad_to(digits, 10)
        document, heading_document = await asyncio.gather(
            self.client.commodity(full_code),
            self.client.heading(digits[:4]),
        )
        if document is None:
            return False

        graph = RelationshipGraph.from_document(document)
        heading = RelationshipGraph.from_document(heading_document) if heading_document else None
        tree.description = graph.primary.attr("description")
        tree.is_declarable = graph.primary.attr("declarable") is True
        tree.section = _section_info(graph)
        await self._translate_section(tree.section)
        await self.translator.with_translation(tree, "description", "description_cn")

        chapter = graph.first(Chapter)
        heading_node = graph.first(Heading)
        tree.breadcrumb = _section_crumb(tree.section) + [
            BreadcrumbEntry(code=digits[:2], description=chapter.description if chapter else None,
                            description_cn=await self.translator.cached(chapter.description if chapter else None),
                            level="chapter"),
            BreadcrumbEntry(code=digits[:4], description=heading_node.description if heading_node else None,
                            description_cn=await self.translator.cached(
                                heading_node.description if heading_node else None),
                            level="heading"),
        ]
        if heading is not None:
            for ancestor in _ancestors(heading, full_code):
                code = _significant(ancestor.code)
                last = tree.breadcrumb[-1].code
                if len(code) > len(last) and code.startswith(last) and digits.startswith(code) and code != digits:
                    tree.breadcrumb.append(BreadcrumbEntry(
                        code=code, description=ancestor.description,
                        description_cn=await self.translator.cached(ancestor.description),
                        level="subheading", indent=ancestor.indent,
                    ))
        tree.breadcrumb.append(BreadcrumbEntry(code=digits, description=tree.description,
                                               description_cn=tree.description_cn, level=tree.level))

        if tree.is_declarable or heading is None:
            return True

        children = _descendants(heading, digits, full_code)
        groups: Dict[str, ChildGroup] = {}
        for child in children:
            if not child.declarable:
                continue
            group_code = child.code[:8]
            if group_code not in groups:
                parent = next((c for c in children if not c.declarable and child.code.startswith(c.code[:8])), None)
                title = parent.description if parent and parent.description else "Other"
                groups[group_code] = ChildGroup(group_code=group_code, group_title=title,
                                                group_title_cn=await self.translator.cached(title))
            groups[group_code].children.append(await self._child(child))

        tree.child_groups = list(groups.values())
        tree.total_children = sum(1 for c in children if c.declarable)
        tree.declarable_count = tree.total_children
        await self._enrich_rates(tree, origin, settings.hierarchy_rate_limit_subheading)
        return True

    async def _child(self, commodity: Commodity) -> HierarchyChild:
        return HierarchyChild(
            code=commodity.code,
            description=commodity.description,
            description_cn=await self.translator.cached(commodity.description),
            declarable=True,
        )

    async def _enrich_rates(self, tree: HierarchyTree, origin: Optional[str], limit: int) -> None:
        if not origin or self.rate_lookup is None or not tree.child_groups:
            return
        children = [child for group in tree.child_groups for child in group.children]
        tree.has_more = len(children) > limit
        targets = children[:limit]
        rates = await asyncio.gather(*(self.rate_lookup(c.code, origin) for c in targets), return_exceptions=True)
        for child, rate in zip(targets, rates):
            if isinstance(rate, Exception):
                logger.warning(f"Rate enrichment failed for {child.code}: {rate}")
                continue
            child.third_country_duty = rate.third_country_duty
            child.vat_rate = rate.vat_rate
            child.anti_dumping_rate = rate.anti_dumping_rate

    # -------------------------------------------------------------------- search

    async def search_by_description(self, query: str, chapter: Optional[str] = None,
                                    page: int = 1, page_size: int = 20) -> SearchResult:
        cache_key = f"search:{query}:{chapter or 'ALL'}:{page}:{page_size}"
        cached = await self.cache.get(cache_key)
        if cached:
            result = SearchResult.model_validate(cached)
            result.from_cache = True
            return result

        result = SearchResult(query=query, page=page, page_size=page_size)
        try:
            document = await self.client.search(query)
            data = (document or {}).get("data") or {}
            if data.get("type") == "exact_search" and await self._exact_search(result, data):
                await self.cache.set(cache_key, result.model_dump(mode="json"), settings.ttl_search)
                return result
            await self._fuzzy_search(result, data, chapter, page, page_size)
        except Exception as e:
            logger.warning(f"Search for '{query}' failed: {e}")
            result.error = f"Search failed: {e}"
            return result

        await self.cache.set(cache_key, result.model_dump(mode="json"), settings.ttl_search)
        return result

    async def _exact_search(self, result: SearchResult, data: Dict) -> bool:
        attributes = data.get("attributes") or {}
        entry = attributes.get("entry") or {}
        if attributes.get("type") != "exact_match" or not entry.get("id"):
            return False
        try:
            document = await self.client.resource(entry.get("endpoint", "commodities"), entry["id"])
        except Exception as e:
            logger.warning(f"Exact match detail for {entry['id']} failed: {e}")
            return False
        if document is None:
            return False

        graph = RelationshipGraph.from_document(document)
        chapter = graph.first(Chapter)
        section = graph.first(Section)
        chapter_code = chapter.code[:2] if chapter else str(entry["id"])[:2]
        hit = SearchHit(
            hs_code=str(entry["id"]),
            description=graph.primary.attr("description"),
            declarable=graph.primary.attr("declarable") is True,
            chapter=chapter_code,
            chapter_description=chapter.description if chapter else None,
            section=section.attr("numeral") if section else None,
            is_exact_match=True,
        )
        await self.translator.with_translation(hit, "description", "description_cn")
        result.total = 1
        result.results = [hit]
        if chapter is not None:
            result.chapter_stats = [ChapterStat(chapter=chapter_code, description=chapter.description, count=1)]
        return True

    async def _fuzzy_search(self, result: SearchResult, data: Dict, chapter: Optional[str],
                            page: int, page_size: int) -> None:
        attributes = data.get("attributes") or {}
        goods_match = attributes.get("goods_nomenclature_match") or {}
        reference_match = attributes.get("reference_match") or {}

        hits: List[Dict] = []
        for item in goods_match.get("commodities") or []:
            source = item.get("_source") or {}
            hits.append({
                "hs_code": source.get("goods_nomenclature_item_id"),
                "description": source.get("description"),
                "declarable": source.get("declarable") is True,
                "chapter_info": source.get("chapter"),
                "keywords": (source.get("ancestor_descriptions") or [])[:3],
                "score": item.get("_score"),
            })
        seen = {hit["hs_code"] for hit in hits}
        for item in (goods_match.get("headings") or []) + (reference_match.get("headings") or []):
            reference = (item.get("_source") or {}).get("reference") or {}
            code = reference.get("goods_nomenclature_item_id")
            if code and code not in seen:
                seen.add(code)
                hits.append({
                    "hs_code": code,
                    "description": reference.get("description"),
                    "declarable": reference.get("class") != "Heading",
                    "chapter_info": reference.get("chapter"),
                    "keywords": [],
                    "score": item.get("_score"),
                })
        hits = [hit for hit in hits if hit["hs_code"]]

        stats: Dict[str, ChapterStat] = {}
        for hit in hits:
            code = hit["hs_code"][:2]
            if code not in stats:
                info = hit["chapter_info"]
                description = info.get("description") if isinstance(info, dict) else None
                stats[code] = ChapterStat(chapter=code, description=description or f"Chapter {code}")
            stats[code].count += 1
        result.chapter_stats = sorted(stats.values(), key=lambda s: s.count, reverse=True)

        if chapter:
            hits = [hit for hit in hits if hit["hs_code"].startswith(chapter)]
        hits.sort(key=lambda hit: hit["score"] or 0, reverse=True)

        start = (page - 1) * page_size
        end = start + page_size
        result.total = len(hits)
        result.has_more = end < len(hits)
        result.results = [
            SearchHit(
                hs_code=hit["hs_code"],
                description=hit["description"],
                description_cn=await self.translator.cached(hit["description"]),
                declarable=hit["declarable"],
                chapter=hit["hs_code"][:2],
                keywords=hit["keywords"],
                score=hit["score"],
            )
            for hit in hits[start:end]
        ]

    # ---------------------------------------------------------------- declarable

    async def list_declarable(self, prefix: str, origin: Optional[str] = None) -> DeclarableList:
        normalized = normalize(prefix)
        digits = normalized.digits
        cache_key = f"declarable:{digits}:{origin or 'ALL'}"
        cached = await self.cache.get(cache_key)
        if cached:
            result = DeclarableList.model_validate(cached)
            result.from_cache = True
            return result

        codes: List[DeclarableCode] = []
        try:
            document = await self.client.heading(digits[:4]) if normalized.is_valid else None
            if document is not None:
                graph = RelationshipGraph.from_document(document)
                for commodity in graph.of_type(Commodity):
                    if not (commodity.declarable and commodity.code.startswith(digits)):
                        continue
                    item = DeclarableCode(code=commodity.code, description=commodity.description)
                    if origin and self.rate_lookup is not None:
                        try:
                            rate = await self.rate_lookup(commodity.code, origin)
                            item.duty_rate = rate.duty_rate
                            item.third_country_duty = rate.third_country_duty
                            item.anti_dumping_rate = rate.anti_dumping_rate
                        except Exception as e:
                            logger.warning(f"Rate lookup for declarable {commodity.code} failed: {e}")
                    codes.append(item)
        except Exception as e:
            logger.warning(f"Failed to list declarable codes under {prefix}: {e}")
            return DeclarableList(prefix=digits, total=len(codes), codes=codes)

        result = DeclarableList(prefix=digits, total=len(codes), codes=codes)
        await self.cache.set(cache_key, result.model_dump(mode="json"), settings.ttl_declarable)
        return result
