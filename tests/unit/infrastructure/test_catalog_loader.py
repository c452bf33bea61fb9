"""
Unit tests for infrastructure/catalog_loader.py

Load-time validation must report every defect in one error, never
just the first one it trips over.
"""
import json
import logging
from pathlib import Path

import pytest

from core.catalog import CatalogError
from infrastructure.catalog_loader import (
    CatalogDefect,
    CatalogValidationError,
    load_catalog,
    load_catalog_file,
    validate_document,
)
from core.schemas import decode_catalog_document


def _service(sid, rules=()):
    return {"id": sid, "name": sid, "rules": list(rules)}


def _document(services, edges=(), life_events=(), **extra):
    doc = {"services": services, "edges": list(edges), "life_events": list(life_events)}
    doc.update(extra)
    return doc


def _codes(document):
    with pytest.raises(CatalogValidationError) as exc_info:
        load_catalog(document)
    return exc_info.value.codes


# =============================================================================
# VALID INPUT
# =============================================================================

class TestValidSources:

    def test_dict_source(self):
        catalog = load_catalog(_document([_service("a"), _service("b")],
                                         [{"from": "a", "to": "b", "kind": "ENABLES"}]))
        assert catalog.service_count == 2
        assert catalog.successors("a") == ("b",)

    def test_json_text_and_bytes(self):
        text = json.dumps(_document([_service("a")]))
        assert load_catalog(text).service_count == 1
        assert load_catalog(text.encode()).service_count == 1

    def test_fixture_file(self, catalog):
        assert catalog.version == "2026.10-test"

    def test_declared_fact_fields_extend_schema(self):
        doc = _document(
            [_service("a", [{"type": "comparison", "field": "shoe_size", "operator": ">", "value": 9}])],
            fact_fields=[{"name": "shoe_size", "kind": "number", "prompt": "What size shoes?"}],
        )
        catalog = load_catalog(doc)
        assert catalog.fact_fields["shoe_size"].prompt == "What size shoes?"
        assert "age" in catalog.fact_fields

    def test_custom_boolean_fact_needs_no_declaration(self):
        doc = _document([_service("a", [{"type": "boolean", "field": "custom.owns_a_boat"}])])
        assert load_catalog(doc).affected_by("custom.owns_a_boat") == {"a"}


# =============================================================================
# DEFECTS
# =============================================================================

class TestDefects:

    def test_decode_error(self):
        assert _codes(b"{not json") == ["decode_error"]

    def test_unknown_rule_type_is_decode_error(self):
        doc = _document([_service("a", [{"type": "vibes", "field": "age"}])])
        assert _codes(doc) == ["decode_error"]

    def test_duplicate_service(self):
        assert _codes(_document([_service("a"), _service("a")])) == ["duplicate_service"]

    def test_edge_defects(self):
        doc = _document(
            [_service("a"), _service("b")],
            [
                {"from": "a", "to": "b", "kind": "ENABLES"},
                {"from": "a", "to": "b", "kind": "ENABLES"},
                {"from": "a", "to": "b", "kind": "SUGGESTS"},
                {"from": "a", "to": "ghost", "kind": "REQUIRES"},
            ],
        )
        assert _codes(doc) == ["duplicate_edge", "invalid_edge_kind", "unknown_edge_endpoint"]

    def test_same_pair_different_kind_is_allowed(self):
        doc = _document(
            [_service("a"), _service("b")],
            [{"from": "a", "to": "b", "kind": "ENABLES"}, {"from": "a", "to": "b", "kind": "REQUIRES"}],
        )
        assert load_catalog(doc).edge_count == 2

    def test_life_event_defects(self):
        doc = _document(
            [_service("a")],
            life_events=[
                {"id": "e", "entry_nodes": ["a", "ghost"]},
                {"id": "e", "entry_nodes": ["a"]},
            ],
        )
        assert _codes(doc) == ["unknown_entry_node", "duplicate_life_event"]

    def test_unknown_dependency_inside_combinator(self):
        doc = _document([_service("a", [
            {"type": "any", "rules": [{"type": "dependency", "service_id": "ghost"}]},
        ])])
        with pytest.raises(CatalogValidationError) as exc_info:
            load_catalog(doc)
        defect = exc_info.value.defects[0]
        assert defect.code == "unknown_dependency"
        assert defect.service_id == "a"
        assert defect.location == "rules[0].rules[0]"

    def test_rule_field_defects(self):
        doc = _document([_service("a", [
            {"type": "boolean", "field": "favourite_colour"},
            {"type": "comparison", "field": "is_pregnant", "operator": ">", "value": 1},
            {"type": "boolean", "field": "savings"},
            {"type": "comparison", "field": "custom.owns_a_boat", "operator": ">", "value": 1},
            {"type": "enum", "field": "nation", "one_of": ["england", "cornwall"]},
        ])])
        assert _codes(doc) == [
            "unknown_fact_field",
            "incompatible_operator",
            "incompatible_operator",
            "incompatible_operator",
            "invalid_label",
        ]

    def test_every_defect_reported_at_once(self):
        doc = _document(
            [_service("a", [{"type": "dependency", "service_id": "ghost"}]), _service("a")],
            [{"from": "a", "to": "nowhere", "kind": "ENABLES"}],
            [{"id": "e", "entry_nodes": ["missing"]}],
        )
        codes = _codes(doc)
        assert set(codes) == {
            "duplicate_service", "unknown_edge_endpoint", "unknown_entry_node", "unknown_dependency",
        }

    def test_malformed_entries_do_not_hide_other_defects(self):
        doc = _document([
            _service("a", [{"type": "comparison", "field": "age", "operator": "=>", "value": 1}]),
            _service("b", [{"type": "comparison", "field": "age", "operator": "~", "value": 1}]),
            _service("c", [{"type": "dependency", "service_id": "ghost"}]),
        ])
        with pytest.raises(CatalogValidationError) as exc_info:
            load_catalog(doc)
        defects = exc_info.value.defects
        assert [d.code for d in defects] == ["decode_error", "decode_error", "unknown_dependency"]
        assert [(d.service_id, d.location) for d in defects[:2]] == [
            ("a", "services[0]"), ("b", "services[1]"),
        ]
        assert defects[2].service_id == "c"

    def test_references_to_undecoded_service_not_reported_twice(self):
        doc = _document(
            [_service("a", [{"type": "vibes"}]), _service("b")],
            [{"from": "a", "to": "b", "kind": "ENABLES"}, {"from": "b"}],
            [{"id": "e", "entry_nodes": ["a"]}],
        )
        with pytest.raises(CatalogValidationError) as exc_info:
            load_catalog(doc)
        assert [(d.code, d.location) for d in exc_info.value.defects] == [
            ("decode_error", "services[0]"),
            ("decode_error", "edges[1]"),
        ]

    def test_document_must_be_an_object(self):
        assert _codes(b"[1, 2]") == ["decode_error"]
        assert _codes(_document("not a list")) == ["decode_error"]

    def test_validation_error_is_catalog_error(self):
        with pytest.raises(CatalogError) as exc_info:
            load_catalog(_document([_service("a"), _service("a")]))
        assert "duplicate_service" in str(exc_info.value)


def test_validate_document_returns_empty_for_valid():
    path = Path(__file__).parents[2] / "fixtures" / "catalog.json"
    document = decode_catalog_document(path.read_bytes())
    assert validate_document(document) == []


def test_defect_str():
    defect = CatalogDefect("unknown_dependency", "no such service", "a", "rules[1]")
    assert str(defect) == "[unknown_dependency] a rules[1]: no such service"
    assert str(CatalogDefect("decode_error", "bad json")) == "[decode_error] bad json"


def test_requires_cycle_logs_warning(caplog):
    doc = _document(
        [_service("a"), _service("b")],
        [{"from": "a", "to": "b", "kind": "REQUIRES"}, {"from": "b", "to": "a", "kind": "REQUIRES"}],
    )
    with caplog.at_level(logging.WARNING, logger="infrastructure.catalog_loader"):
        catalog = load_catalog(doc)
    assert catalog.requires_cycle_nodes() == {"a", "b"}
    assert "REQUIRES cycle" in caplog.text


def test_load_catalog_file_missing(tmp_path):
    with pytest.raises(OSError):
        load_catalog_file(tmp_path / "missing.json")
