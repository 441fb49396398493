# WORKFLOW: Unit tests for JSON:API document hydration and the envelope schema gate.
# Used by: CI/CD pipelines, development testing
# Test scenarios:
# 1. Typed resolution of relationship pointers
# 2. Measure hydration with inlined type, area and duty expression
# 3. Dangling pointers resolve to None instead of raising
# 4. Envelope schema accepts XI documents and rejects malformed ones

import pytest

from api.schemas.validation import document_validator, validate_taric_document
from core.exceptions import InvalidUpstreamPayload
from services.relationship_graph import Chapter, Commodity, GeographicalArea, Heading, RelationshipGraph, Section
from tests.conftest import ERGA_OMNES_FREE, HEADING_8471_COMMODITIES, commodity_doc, heading_doc


def test_primary_and_typed_lookup():
    graph = RelationshipGraph.from_document(commodity_doc("8471300010", "Laptops", measures=[ERGA_OMNES_FREE]))

    assert graph.primary.id == "8471300010"
    assert graph.primary.attr("declarable") is True
    assert graph.first(Chapter).description.startswith("Nuclear reactors")
    assert graph.first(Heading).code == "8471000000"
    assert graph.first(Section).number == 16
    assert graph.get(GeographicalArea, "1011").description == "ERGA OMNES"
    # Same id, different type
    assert graph.get(Heading, "84") is None


def test_hydrate_measures():
    anti_dumping = ("m-552", "552", "Anti-dumping duty", "CN", "China", "36.10 %")
    graph = RelationshipGraph.from_document(
        commodity_doc("6911100000", "Tableware", measures=[ERGA_OMNES_FREE, anti_dumping])
    )
    measures = graph.hydrate_measures()

    assert [m.measure_id for m in measures] == ["m-103", "m-552"]
    ad = measures[1]
    assert ad.measure_type_id == "552"
    assert ad.measure_type_description == "Anti-dumping duty"
    assert ad.geographical_area_id == "CN"
    assert ad.geographical_area_description == "China"
    assert ad.duty_expression == "<span>36.10 %</span>"
    assert ad.effective_start == "2024-01-01"
    assert ad.effective_end is None


def test_dangling_pointer_is_none():
    document = {
        "data": {"type": "commodity", "id": "1"},
        "included": [{
            "type": "measure", "id": "m1",
            "relationships": {
                "measure_type": {"data": {"type": "measure_type", "id": "999"}},
                "geographical_area": {"data": None},
            },
        }],
    }
    measure = RelationshipGraph.from_document(document).hydrate_measures()[0]

    assert measure.measure_type_id == "999"
    assert measure.measure_type_description is None
    assert measure.geographical_area_id is None
    assert measure.duty_expression is None


def test_commodities_keep_document_order():
    graph = RelationshipGraph.from_document(heading_doc(commodities=HEADING_8471_COMMODITIES))
    codes = [c.code for c in graph.of_type(Commodity)]
    assert codes == [c[0] for c in HEADING_8471_COMMODITIES]
    assert graph.resolve({"type": "commodity", "id": "8471300010"}, Commodity).indent == 2
    assert graph.resolve(None, Commodity) is None


def test_empty_document():
    graph = RelationshipGraph.from_document(None)
    assert graph.primary is None
    assert len(graph) == 0
    assert graph.hydrate_measures() == []


def test_schema_accepts_xi_documents():
    assert validate_taric_document(commodity_doc("8471300010", "Laptops", measures=[ERGA_OMNES_FREE]))
    assert validate_taric_document({"data": [{"type": "geographical_area", "id": "CN"}]})


@pytest.mark.parametrize("document", [
    {"included": []},
    {"data": "8471"},
    {"data": {"id": "1"}},
    {"data": {"type": "commodity", "id": "1"}, "included": [{"type": "measure", "relationships": {
        "measure_type": {"data": {"type": "measure_type"}}}}]},
])
def test_schema_rejects_malformed_envelopes(document):
    assert document_validator.get_validation_errors(document) is not None
    with pytest.raises(InvalidUpstreamPayload):
        validate_taric_document(document, url="https://example.test/commodities/1")
