# WORKFLOW: Hydrates JSON:API-style upstream documents into flat, typed records.
# Used by: services/rate_sources.py (RemoteTaricSource), services/hierarchy.py, services/taric_engine.py
# Components:
# 1. Node types - MeasureType, GeographicalArea, DutyExpression, GoodsNomenclature, Section
# 2. RelationshipGraph - index of included nodes keyed by (type, id)
# 3. resolve() - typed dereference of a {"type", "id"} pointer, None when absent
# 4. hydrate_measures() - flatten every measure with its related nodes inlined
#
# Resolution flow: document -> index included -> follow relationships.*.data -> Measure
# A dangling pointer never raises; the corresponding field is simply None.

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple, Type, TypeVar

from api.schemas.response import Measure


@dataclass
class Node:
    """Base for every typed graph node."""
    id: str
    attributes: Dict[str, Any] = field(default_factory=dict)
    relationships: Dict[str, Any] = field(default_factory=dict)

    json_type = ""

    def attr(self, name: str, default: Any = None) -> Any:
        return self.attributes.get(name, default)


@dataclass
class MeasureType(Node):
    json_type = "measure_type"

    @property
    def description(self) -> Optional[str]:
        return self.attr("description")


@dataclass
class GeographicalArea(Node):
    json_type = "geographical_area"

    @property
    def description(self) -> Optional[str]:
        return self.attr("description")


@dataclass
class DutyExpression(Node):
    json_type = "duty_expression"

    @property
    def formatted(self) -> Optional[str]:
        return self.attr("formatted_base") or self.attr("base")


@dataclass
class GoodsNomenclature(Node):
    """Chapter, heading or commodity; they share the goods nomenclature attributes."""

    @property
    def code(self) -> str:
        return self.attr("goods_nomenclature_item_id") or self.id

    @property
    def description(self) -> Optional[str]:
        return self.attr("description")

    @property
    def declarable(self) -> bool:
        return self.attr("declarable") is True

    @property
    def indent(self) -> int:
        return self.attr("number_indents") or 0


@dataclass
class Chapter(GoodsNomenclature):
    json_type = "chapter"


@dataclass
class Heading(GoodsNomenclature):
    json_type = "heading"


@dataclass
class Commodity(GoodsNomenclature):
    json_type = "commodity"


@dataclass
class Section(Node):
    json_type = "section"

    @property
    def number(self) -> Optional[int]:
        if self.id.isdigit():
            return int(self.id)
        position = self.attr("position")
        return position if isinstance(position, int) else None

    @property
    def title(self) -> Optional[str]:
        return self.attr("title") or self.attr("description")


@dataclass
class MeasureNode(Node):
    json_type = "measure"


NODE_TYPES: Dict[str, Type[Node]] = {
    cls.json_type: cls
    for cls in (MeasureType, GeographicalArea, DutyExpression, Chapter, Heading, Commodity, Section, MeasureNode)
}

T = TypeVar("T", bound=Node)


def _build_node(raw: Dict[str, Any]) -> Node:
    node_cls = NODE_TYPES.get(raw.get("type"), Node)
    return node_cls(
        id=str(raw.get("id")),
        attributes=raw.get("attributes") or {},
        relationships=raw.get("relationships") or {},
    )


class RelationshipGraph:
    """Typed view over a ``{data, included}`` document."""

    def __init__(self, primary: Optional[Node], nodes: Dict[Tuple[str, str], Node], order: List[Node]):
        self.primary = primary
        self._nodes = nodes
        self._order = order

    @classmethod
    def from_document(cls, document: Optional[Dict[str, Any]]) -> "RelationshipGraph":
        document = document or {}
        data = document.get("data")
        primary = _build_node(data) if isinstance(data, dict) else None

        nodes: Dict[Tuple[str, str], Node] = {}
        order: List[Node] = []
        for raw in document.get("included") or []:
            node = _build_node(raw)
            nodes[(raw.get("type"), node.id)] = node
            order.append(node)
        return cls(primary, nodes, order)

    def __len__(self) -> int:
        return len(self._nodes)

    def get(self, node_type: Type[T], node_id: Optional[str]) -> Optional[T]:
        if node_id is None:
            return None
        node = self._nodes.get((node_type.json_type, str(node_id)))
        return node if isinstance(node, node_type) else None

    def resolve(self, ref: Optional[Dict[str, Any]], node_type: Type[T]) -> Optional[T]:
        """Dereference a relationship pointer; a missing or mistyped target gives None."""
        if not ref or ref.get("type") not in (None, node_type.json_type):
            return None
        return self.get(node_type, ref.get("id"))

    def of_type(self, node_type: Type[T]) -> Iterator[T]:
        """Included nodes of one type, in document order."""
        for node in self._order:
            if isinstance(node, node_type):
                yield node

    def first(self, node_type: Type[T]) -> Optional[T]:
        return next(self.of_type(node_type), None)

    def hydrate_measure(self, measure: Node) -> Measure:
        rel = measure.relationships
        type_ref = _pointer(rel, "measure_type")
        area_ref = _pointer(rel, "geographical_area")
        measure_type = self.resolve(type_ref, MeasureType)
        area = self.resolve(area_ref, GeographicalArea)
        duty = self.resolve(_pointer(rel, "duty_expression"), DutyExpression)

        return Measure(
            measure_id=measure.id,
            measure_type_id=(type_ref or {}).get("id"),
            measure_type_description=measure_type.description if measure_type else None,
            geographical_area_id=(area_ref or {}).get("id"),
            geographical_area_description=area.description if area else None,
            duty_expression=duty.formatted if duty else None,
            effective_start=_date_part(measure.attr("effective_start_date")),
            effective_end=_date_part(measure.attr("effective_end_date")),
        )

    def hydrate_measures(self) -> List[Measure]:
        return [self.hydrate_measure(node) for node in self.of_type(MeasureNode)]


def _pointer(relationships: Dict[str, Any], name: str) -> Optional[Dict[str, Any]]:
    data = (relationships.get(name) or {}).get("data")
    return data if isinstance(data, dict) else None


def _date_part(value: Optional[str]) -> Optional[str]:
    return value[:10] if isinstance(value, str) else value
