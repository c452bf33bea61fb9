"""
WAYFINDER CATALOG LOADER - Decoding and Load-Time Validation

This module turns catalog JSON into an immutable Catalog with one
principle: authoring defects fail loudly, all at once.

Architecture:
- decode_document: msgspec converts each service, edge and life event on
  its own, so a malformed entry is one defect and the rest still validate
- validate_document: collects EVERY defect (never stops at the first)
- load_catalog: raises one CatalogValidationError, or builds the Catalog

Defect codes:
    decode_error            JSON or type errors in the document itself
    duplicate_service       two services share an id
    duplicate_life_event    two life events share an id
    duplicate_edge          the same (from, to, kind) declared twice
    invalid_edge_kind       edge kind is not REQUIRES / ENABLES
    unknown_edge_endpoint   edge from/to is not a service
    unknown_entry_node      life event entry is not a service
    unknown_dependency      dependency rule names a missing service
    unknown_fact_field      rule reads a field outside the fact schema
    incompatible_operator   rule type does not fit the field's kind
    invalid_label           enum rule lists a label the field can't hold

A REQUIRES cycle is not a defect (traversal still terminates) but is
logged at WARNING: every service on it stays LOCKED.
"""
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple, Union

import msgspec

from core.catalog import Catalog, CatalogError
from core.ontology import EdgeKind, FactKind, is_custom_key
from core.schemas import (
    BooleanRule,
    CatalogDocument,
    ComparisonRule,
    DependencyRule,
    Edge,
    EnumRule,
    FactField,
    LifeEvent,
    Service,
    DEFAULT_FACT_FIELDS,
    iter_rule_tree,
)


logger = logging.getLogger(__name__)

_EDGE_KINDS = frozenset(kind.value for kind in EdgeKind)

# Which fact kinds each leaf type may read
_COMPATIBLE_KINDS = {
    BooleanRule: frozenset({FactKind.BOOLEAN}),
    ComparisonRule: frozenset({FactKind.NUMBER}),
    EnumRule: frozenset({FactKind.LABEL, FactKind.NUMBER}),
}


# =============================================================================
# DEFECTS
# =============================================================================

@dataclass
class CatalogDefect:
    """A specific authoring defect."""
    code: str
    message: str
    service_id: Optional[str] = None
    location: Optional[str] = None   # e.g. "rules[0].rules[2]" or "edges[14]"

    def __str__(self) -> str:
        where = " ".join(part for part in (self.service_id, self.location) if part)
        return f"[{self.code}] {where + ': ' if where else ''}{self.message}"


class CatalogValidationError(CatalogError):
    """Raised once, carrying every defect found in a catalog document."""

    def __init__(self, defects: List[CatalogDefect]):
        self.defects = list(defects)
        lines = "\n".join(f"  - {d}" for d in self.defects)
        super().__init__(f"Catalog has {len(self.defects)} defect(s):\n{lines}")

    @property
    def codes(self) -> List[str]:
        return [d.code for d in self.defects]


# =============================================================================
# VALIDATION
# =============================================================================

def merged_fact_fields(document: CatalogDocument) -> Dict[str, FactField]:
    """Default schema overlaid with the document's own declarations."""
    fields = {f.name: f for f in DEFAULT_FACT_FIELDS}
    fields.update({f.name: f for f in document.fact_fields})
    return fields


def _check_rules(
    service_id: str,
    document_rules,
    service_ids: Set[str],
    fact_fields: Mapping[str, FactField],
) -> List[CatalogDefect]:
    defects: List[CatalogDefect] = []
    for location, rule in iter_rule_tree(document_rules):
        if isinstance(rule, DependencyRule):
            if rule.service_id not in service_ids:
                defects.append(CatalogDefect(
                    "unknown_dependency",
                    f"dependency on unknown service {rule.service_id!r}",
                    service_id, location,
                ))
            continue

        allowed = _COMPATIBLE_KINDS.get(type(rule))
        if allowed is None:
            continue

        if is_custom_key(rule.field):
            # The custom bag only holds booleans
            if not isinstance(rule, BooleanRule):
                defects.append(CatalogDefect(
                    "incompatible_operator",
                    f"{type(rule).__name__} on boolean custom fact {rule.field!r}",
                    service_id, location,
                ))
            continue

        field = fact_fields.get(rule.field)
        if field is None:
            defects.append(CatalogDefect(
                "unknown_fact_field",
                f"rule reads unknown fact {rule.field!r}",
                service_id, location,
            ))
            continue

        if field.kind not in allowed:
            defects.append(CatalogDefect(
                "incompatible_operator",
                f"{type(rule).__name__} on {field.kind.value} fact {rule.field!r}",
                service_id, location,
            ))
            continue

        if isinstance(rule, EnumRule) and field.kind is FactKind.LABEL and field.labels:
            for value in rule.one_of:
                if value not in field.labels:
                    defects.append(CatalogDefect(
                        "invalid_label",
                        f"{value!r} is not a label of {rule.field!r} {list(field.labels)}",
                        service_id, location,
                    ))
    return defects


def validate_document(
    document: CatalogDocument, undecoded_service_ids: Iterable[str] = (),
) -> List[CatalogDefect]:
    """
    Check a decoded document against every load-time invariant.

    Args:
        document: The decoded catalog
        undecoded_service_ids: Ids of services that failed to decode; they
            are already reported, so references to them are not flagged again

    Returns:
        All defects found (empty list means the document is valid)
    """
    defects: List[CatalogDefect] = []

    # === Services ===
    service_ids: Set[str] = set()
    for i, service in enumerate(document.services):
        if service.id in service_ids:
            defects.append(CatalogDefect(
                "duplicate_service", "service id declared twice", service.id, f"services[{i}]",
            ))
        service_ids.add(service.id)
    service_ids.update(undecoded_service_ids)

    # === Edges ===
    seen_edges: Set[Tuple[str, str, str]] = set()
    for i, edge in enumerate(document.edges):
        location = f"edges[{i}]"
        if edge.kind not in _EDGE_KINDS:
            defects.append(CatalogDefect(
                "invalid_edge_kind",
                f"edge kind {edge.kind!r} is not one of {sorted(_EDGE_KINDS)}",
                None, location,
            ))
        for endpoint in (edge.source, edge.target):
            if endpoint not in service_ids:
                defects.append(CatalogDefect(
                    "unknown_edge_endpoint",
                    f"edge {edge.source} -> {edge.target} references unknown service {endpoint!r}",
                    None, location,
                ))
        triple = (edge.source, edge.target, edge.kind)
        if triple in seen_edges:
            defects.append(CatalogDefect(
                "duplicate_edge",
                f"edge {edge.source} -[{edge.kind}]-> {edge.target} declared twice",
                None, location,
            ))
        seen_edges.add(triple)

    # === Life events ===
    event_ids: Set[str] = set()
    for i, evt in enumerate(document.life_events):
        if evt.id in event_ids:
            defects.append(CatalogDefect(
                "duplicate_life_event", f"life event {evt.id!r} declared twice", None, f"life_events[{i}]",
            ))
        event_ids.add(evt.id)
        for j, entry in enumerate(evt.entry_nodes):
            if entry not in service_ids:
                defects.append(CatalogDefect(
                    "unknown_entry_node",
                    f"life event {evt.id!r} enters at unknown service {entry!r}",
                    None, f"life_events[{i}].entry_nodes[{j}]",
                ))

    # === Rules ===
    fact_fields = merged_fact_fields(document)
    for service in document.services:
        defects.extend(_check_rules(service.id, service.rules, service_ids, fact_fields))

    return defects


# =============================================================================
# LOADING
# =============================================================================

CatalogSource = Union[bytes, str, Mapping[str, Any], CatalogDocument]

# Sections decoded entry by entry, so one bad entry can't hide the rest
_ENTRY_SECTIONS = (
    ("services", Service),
    ("edges", Edge),
    ("life_events", LifeEvent),
    ("fact_fields", FactField),
)


def _raw_document(source: Union[bytes, str, Mapping[str, Any]]) -> Dict[str, Any]:
    if isinstance(source, str):
        source = source.encode("utf-8")
    if isinstance(source, (bytes, bytearray)):
        raw = msgspec.json.decode(bytes(source))
    else:
        raw = dict(source)
    if not isinstance(raw, dict):
        raise msgspec.ValidationError(f"Expected `object`, got `{type(raw).__name__}`")
    return raw


def _decode_entries(
    raw: Dict[str, Any], section: str, entry_type: type, defects: List[CatalogDefect],
) -> Tuple[List[Any], Set[str]]:
    """Convert one array section; returns the good entries and ids of the bad ones."""
    entries = raw.get(section, [])
    if not isinstance(entries, list):
        defects.append(CatalogDefect(
            "decode_error", f"Expected `array`, got `{type(entries).__name__}`", None, section,
        ))
        return [], set()

    converted: List[Any] = []
    failed_ids: Set[str] = set()
    for i, entry in enumerate(entries):
        try:
            converted.append(msgspec.convert(entry, type=entry_type))
        except msgspec.ValidationError as e:
            entry_id = entry.get("id") if isinstance(entry, dict) else None
            if not isinstance(entry_id, str):
                entry_id = None
            elif section == "services":
                failed_ids.add(entry_id)
            defects.append(CatalogDefect("decode_error", str(e), entry_id, f"{section}[{i}]"))
    return converted, failed_ids


def decode_document(source: CatalogSource) -> Tuple[CatalogDocument, List[CatalogDefect], Set[str]]:
    """
    Decode a catalog entry by entry.

    Returns:
        (document, defects, undecoded_service_ids). The document holds
        every entry that decoded; each one that didn't is a decode_error
        defect located at its array position.

    Raises:
        msgspec.DecodeError: If the source is not JSON or not an object
    """
    if isinstance(source, CatalogDocument):
        return source, [], set()

    raw = _raw_document(source)
    defects: List[CatalogDefect] = []
    undecoded: Set[str] = set()
    sections: Dict[str, List[Any]] = {}
    for section, entry_type in _ENTRY_SECTIONS:
        sections[section], failed = _decode_entries(raw, section, entry_type, defects)
        undecoded |= failed

    header = {key: value for key, value in raw.items() if key not in sections}
    try:
        document = msgspec.convert(header, type=CatalogDocument)
    except msgspec.ValidationError as e:
        defects.append(CatalogDefect("decode_error", str(e)))
        document = CatalogDocument()
    return msgspec.structs.replace(document, **sections), defects, undecoded


def load_catalog(source: CatalogSource) -> Catalog:
    """
    Decode, validate and index a catalog.

    Entries that fail to decode are reported alongside every validation
    defect of the entries that did, in one error.

    Args:
        source: JSON bytes/text, already-parsed dict, or a decoded document

    Raises:
        CatalogValidationError: With every defect found
    """
    try:
        document, defects, undecoded = decode_document(source)
    except msgspec.DecodeError as e:
        raise CatalogValidationError([CatalogDefect("decode_error", str(e))]) from e

    defects.extend(validate_document(document, undecoded))
    if defects:
        raise CatalogValidationError(defects)

    catalog = Catalog(
        services=document.services,
        edges=document.edges,
        life_events=document.life_events,
        department_contacts=document.department_contacts,
        fact_fields=merged_fact_fields(document).values(),
        version=document.version,
    )

    cycle = catalog.requires_cycle_nodes()
    if cycle:
        logger.warning(
            "REQUIRES cycle among %s: these services can never be unlocked",
            sorted(cycle),
        )
    return catalog


def load_catalog_file(path: Union[str, Path]) -> Catalog:
    """Load a catalog from a JSON file on disk."""
    path = Path(path)
    return load_catalog(path.read_bytes())
