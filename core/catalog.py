"""
WAYFINDER CATALOG - The Immutable Service Graph

The catalog is loaded once per process and shared read-only by every
session. It bridges service id strings with rustworkx's integer indices
and precomputes everything evaluation needs, so nothing is re-derived
from rule trees while a conversation is running:

- id -> Service map and id <-> index bridge
- ordered predecessor / successor lists per edge kind
- the rule-level dependency graph (who references whose status)
- the reverse index: fact key / status key -> services whose own
  evaluation reads that key

Architecture (The Bridge Pattern):
  Python Layer: service ids ("hmrc-child-benefit")
  Bridge Layer: _node_map / _inv_map
  Rust Layer:   rx.PyDiGraph for cycle checks and reachability queries

Thread Safety:
    Safe to share across threads and sessions: nothing here mutates
    after __init__ returns. Session-scoped caches live elsewhere.
"""
import logging
from types import MappingProxyType
from typing import Dict, List, Optional, Set, Tuple, Any, Iterator, Iterable, FrozenSet, Mapping, Sequence

import rustworkx as rx

from core.ontology import EdgeKind, status_key, trigger_date_key
from core.schemas import (
    Service,
    Edge,
    LifeEvent,
    FactField,
    DeadlineRule,
    DependencyRule,
    BooleanRule,
    ComparisonRule,
    EnumRule,
    iter_rule_tree,
    DEFAULT_FACT_FIELDS,
)


logger = logging.getLogger(__name__)


# =============================================================================
# CUSTOM EXCEPTIONS
# =============================================================================

class CatalogError(Exception):
    """Base exception for catalog operations."""
    pass


class ServiceNotFoundError(CatalogError):
    """Raised when a service id is not in the catalog."""
    def __init__(self, service_id: str):
        self.service_id = service_id
        super().__init__(f"Service not found: {service_id}")


class UnknownLifeEventError(CatalogError):
    """Raised when a life event id is not in the catalog."""
    def __init__(self, life_event_id: str):
        self.life_event_id = life_event_id
        super().__init__(f"Unknown life event: {life_event_id}")


class DuplicateServiceError(CatalogError):
    """Raised when two services share an id."""
    def __init__(self, service_id: str):
        self.service_id = service_id
        super().__init__(f"Service already exists: {service_id}")


# =============================================================================
# CATALOG
# =============================================================================

class Catalog:
    """
    Immutable union of Services, Edges and LifeEvents.

    Build one through infrastructure.catalog_loader, which validates the
    content first; constructing directly assumes the content is valid and
    only guards against duplicates and dangling references.

    Usage:
        catalog = load_catalog_file("catalog.json")
        catalog.get_service("hmrc-child-benefit")
        catalog.predecessors("hmcts-probate", EdgeKind.REQUIRES)
        catalog.affected_by("savings")   # services reading that fact
    """

    def __init__(
        self,
        services: Iterable[Service],
        edges: Iterable[Edge] = (),
        life_events: Iterable[LifeEvent] = (),
        department_contacts: Optional[Mapping[str, Mapping[str, Any]]] = None,
        fact_fields: Iterable[FactField] = DEFAULT_FACT_FIELDS,
        version: str = "",
    ):
        self.version = version

        # Core storage: Rust-native directed graph
        self._graph: rx.PyDiGraph = rx.PyDiGraph()

        # The Bridge: bidirectional id <-> index mapping
        self._node_map: Dict[str, int] = {}
        self._inv_map: Dict[int, str] = {}
        self._services: Dict[str, Service] = {}

        for service in services:
            if service.id in self._node_map:
                raise DuplicateServiceError(service.id)
            idx = self._graph.add_node(service.id)
            self._node_map[service.id] = idx
            self._inv_map[idx] = service.id
            self._services[service.id] = service

        # Ordered adjacency (declaration order), per edge kind
        self._edges: Tuple[Edge, ...] = tuple(edges)
        self._preds: Dict[str, Dict[EdgeKind, List[str]]] = {
            sid: {kind: [] for kind in EdgeKind} for sid in self._services
        }
        self._succs: Dict[str, Dict[EdgeKind, List[str]]] = {
            sid: {kind: [] for kind in EdgeKind} for sid in self._services
        }
        self._out: Dict[str, Dict[str, None]] = {sid: {} for sid in self._services}
        for edge in self._edges:
            kind = EdgeKind(edge.kind)
            src_idx = self._get_index(edge.source)
            tgt_idx = self._get_index(edge.target)
            self._graph.add_edge(src_idx, tgt_idx, kind)
            self._succs[edge.source][kind].append(edge.target)
            self._preds[edge.target][kind].append(edge.source)
            self._out[edge.source].setdefault(edge.target, None)

        self._life_events: Dict[str, LifeEvent] = {evt.id: evt for evt in life_events}
        for evt in self._life_events.values():
            for entry in evt.entry_nodes:
                self._get_index(entry)

        self._department_contacts: Mapping[str, Mapping[str, Any]] = MappingProxyType(
            dict(department_contacts or {})
        )
        self._fact_fields: Mapping[str, FactField] = MappingProxyType(
            {f.name: f for f in fact_fields}
        )

        self._build_rule_indexes()

        logger.info(
            "Catalog %s loaded: %d services, %d edges, %d life events",
            version or "(unversioned)", len(self._services), len(self._edges), len(self._life_events),
        )

    # =========================================================================
    # INDEX CONSTRUCTION
    # =========================================================================

    def _build_rule_indexes(self) -> None:
        """
        Precompute the rule-level dependency graph and the reverse index.

        reverse index: key -> services whose OWN rules read that key.
        Fact keys index boolean/comparison/enum fields and trigger dates;
        status keys ("status:<id>") index dependency leaves. The nation
        fact is indexed for every service restricted to some nations.
        """
        reverse: Dict[str, Set[str]] = {}
        dependents: Dict[str, Set[str]] = {sid: set() for sid in self._services}
        referenced: Dict[str, FrozenSet[str]] = {}
        trigger_labels: Dict[str, str] = {}

        for sid, service in self._services.items():
            keys: Set[str] = set()
            for _, rule in iter_rule_tree(service.rules):
                if isinstance(rule, (BooleanRule, ComparisonRule, EnumRule)):
                    keys.add(rule.field)
                elif isinstance(rule, DeadlineRule):
                    key = trigger_date_key(rule.trigger_event)
                    keys.add(key)
                    if rule.trigger_label:
                        trigger_labels.setdefault(key, rule.trigger_label)
                elif isinstance(rule, DependencyRule):
                    self._get_index(rule.service_id)
                    keys.add(status_key(rule.service_id))
                    dependents[rule.service_id].add(sid)
            if service.nations:
                keys.add("nation")
            referenced[sid] = frozenset(keys)
            for key in keys:
                reverse.setdefault(key, set()).add(sid)

        self._reverse_index: Mapping[str, FrozenSet[str]] = MappingProxyType(
            {key: frozenset(sids) for key, sids in reverse.items()}
        )
        self._dependents: Mapping[str, FrozenSet[str]] = MappingProxyType(
            {sid: frozenset(deps) for sid, deps in dependents.items()}
        )
        self._referenced_keys: Mapping[str, FrozenSet[str]] = MappingProxyType(referenced)
        self._trigger_labels: Mapping[str, str] = MappingProxyType(trigger_labels)

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def service_count(self) -> int:
        """Number of services in the catalog."""
        return self._graph.num_nodes()

    @property
    def edge_count(self) -> int:
        """Number of edges in the catalog."""
        return self._graph.num_edges()

    @property
    def department_contacts(self) -> Mapping[str, Mapping[str, Any]]:
        return self._department_contacts

    @property
    def fact_fields(self) -> Mapping[str, FactField]:
        return self._fact_fields

    # =========================================================================
    # SERVICE LOOKUP
    # =========================================================================

    def get_service(self, service_id: str) -> Service:
        """
        Retrieve a service by id.

        Raises:
            ServiceNotFoundError: If the id is not in the catalog
        """
        try:
            return self._services[service_id]
        except KeyError:
            raise ServiceNotFoundError(service_id) from None

    # =========================================================================
    # LIFE EVENTS
    # =========================================================================

    def get_life_event(self, life_event_id: str) -> LifeEvent:
        try:
            return self._life_events[life_event_id]
        except KeyError:
            raise UnknownLifeEventError(life_event_id) from None

    def iter_life_events(self) -> Iterator[LifeEvent]:
        return iter(self._life_events.values())

    def life_events_entering(self, service_id: str) -> List[LifeEvent]:
        """Life events that list this service as an entry node."""
        return [evt for evt in self._life_events.values() if service_id in evt.entry_nodes]

    # =========================================================================
    # ADJACENCY
    # =========================================================================

    def predecessors(self, service_id: str, kind: Optional[EdgeKind] = None) -> Tuple[str, ...]:
        """Immediate predecessors, optionally restricted to one edge kind."""
        preds = self._preds.get(service_id)
        if preds is None:
            raise ServiceNotFoundError(service_id)
        if kind is not None:
            return tuple(preds[kind])
        return tuple(preds[EdgeKind.REQUIRES] + preds[EdgeKind.ENABLES])

    def successors(self, service_id: str, kind: Optional[EdgeKind] = None) -> Tuple[str, ...]:
        """Immediate successors in declaration order, optionally by edge kind."""
        succs = self._succs.get(service_id)
        if succs is None:
            raise ServiceNotFoundError(service_id)
        if kind is not None:
            return tuple(succs[kind])
        return tuple(self._out[service_id])

    def get_descendants(self, service_id: str) -> FrozenSet[str]:
        """Every service reachable from this one over any edge kind."""
        idx = self._get_index(service_id)
        return frozenset(self._inv_map[i] for i in rx.descendants(self._graph, idx))

    def requires_cycle_nodes(self) -> FrozenSet[str]:
        """
        Services that sit on a cycle of REQUIRES edges.

        Such a cycle is an authoring accident: every member would stay
        LOCKED forever. Traversal still terminates; the loader warns.
        """
        # Same node order as self._graph, so indices line up with _inv_map
        requires_only = rx.PyDiGraph()
        requires_only.add_nodes_from(list(self._node_map))
        requires_only.add_edges_from_no_data(
            [
                (s, t)
                for s, t, kind in self._graph.weighted_edge_list()
                if kind == EdgeKind.REQUIRES
            ]
        )
        if rx.is_directed_acyclic_graph(requires_only):
            return frozenset()
        members: Set[str] = set()
        for component in rx.strongly_connected_components(requires_only):
            if len(component) > 1 or requires_only.has_edge(component[0], component[0]):
                members.update(self._inv_map[i] for i in component)
        return frozenset(members)

    def requires_layers(self, service_ids: Sequence[str]) -> Tuple[List[List[str]], List[str]]:
        """
        Layer a set of services by the REQUIRES edges among them.

        Uses rx.layers() from the in-degree-0 roots of the induced
        REQUIRES subgraph, so each service lands one layer after its
        latest prerequisite.

        Args:
            service_ids: The services to layer; edges leaving this set are ignored

        Returns:
            (layers, stuck). Each layer keeps the order of service_ids.
            stuck lists services on a REQUIRES cycle or downstream of
            one, in the order of service_ids; no layering can place them.
        """
        position = {sid: i for i, sid in enumerate(service_ids)}
        sub = rx.PyDiGraph()
        index = {sid: sub.add_node(sid) for sid in position}
        sub.add_edges_from_no_data([
            (index[pred], index[sid])
            for sid in position
            for pred in self.predecessors(sid, EdgeKind.REQUIRES)
            if pred in index
        ])

        stuck_idx: Set[int] = set()
        if not rx.is_directed_acyclic_graph(sub):
            for component in rx.strongly_connected_components(sub):
                if len(component) > 1 or sub.has_edge(component[0], component[0]):
                    for i in component:
                        stuck_idx.add(i)
                        stuck_idx.update(rx.descendants(sub, i))
            sub.remove_nodes_from(list(stuck_idx))

        layers: List[List[str]] = []
        if sub.num_nodes():
            roots = [i for i in sub.node_indices() if sub.in_degree(i) == 0]
            # rx.layers returns node data (the service ids), not indices
            for layer in rx.layers(sub, roots):
                layers.append(sorted(layer, key=position.__getitem__))

        stuck = [sid for sid in position if index[sid] in stuck_idx]
        return layers, stuck

    # =========================================================================
    # RULE-LEVEL DEPENDENCY GRAPH & REVERSE INDEX
    # =========================================================================

    def affected_by(self, key: str) -> FrozenSet[str]:
        """Services whose own rules read this fact or status key (not transitive)."""
        return self._reverse_index.get(key, frozenset())

    def dependents(self, service_id: str) -> FrozenSet[str]:
        """Services carrying a dependency rule on this service."""
        return self._dependents.get(service_id, frozenset())

    def referenced_keys(self, service_id: str) -> FrozenSet[str]:
        """Fact and status keys read by a service's own rules."""
        return self._referenced_keys.get(service_id, frozenset())

    def trigger_label(self, key: str) -> Optional[str]:
        """Human label of the event whose date a trigger-date key holds."""
        return self._trigger_labels.get(key)

    # =========================================================================
    # CONTEXT QUERIES
    # =========================================================================

    def resolve_contact(self, service_id: str) -> Optional[Mapping[str, Any]]:
        """Service-level override, else department default, else None."""
        service = self.get_service(service_id)
        if service.contact is not None:
            return service.contact
        return self._department_contacts.get(service.dept_key)

    def service_context(self, service_id: str) -> Dict[str, Any]:
        """
        A service enriched with its position in the graph.

        Returns:
            Dict with service, prerequisites, unlocks, triggered_by_events
        """
        service = self.get_service(service_id)
        prerequisites = [
            {"service_id": src, "name": self._services[src].name, "kind": kind.value}
            for kind in EdgeKind
            for src in self._preds[service_id][kind]
        ]
        unlocks = [
            {"service_id": tgt, "name": self._services[tgt].name, "kind": kind.value}
            for kind in EdgeKind
            for tgt in self._succs[service_id][kind]
        ]
        return {
            "service": service,
            "prerequisites": prerequisites,
            "unlocks": unlocks,
            "triggered_by_events": [
                {"id": evt.id, "name": evt.name} for evt in self.life_events_entering(service_id)
            ],
            "contact": self.resolve_contact(service_id),
        }

    # =========================================================================
    # INTERNAL HELPERS
    # =========================================================================

    def _get_index(self, service_id: str) -> int:
        """Get rustworkx index for a service id."""
        if service_id not in self._node_map:
            raise ServiceNotFoundError(service_id)
        return self._node_map[service_id]

    def __len__(self) -> int:
        return self.service_count

    def __contains__(self, service_id: str) -> bool:
        return service_id in self._services

    def __repr__(self) -> str:
        return (
            f"Catalog(version={self.version!r}, services={self.service_count}, "
            f"edges={self.edge_count}, life_events={len(self._life_events)})"
        )
