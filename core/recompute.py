"""
WAYFINDER RECOMPUTE - The Incremental Recompute Controller

Keeps one session's per-node results warm. On every fact or status
change published on the session bus, only the services whose state
can actually move are re-evaluated:

    fact key K        -> services whose own rules read K
    status of S       -> services with a dependency rule on S,
                         plus S itself and its REQUIRES / ENABLES
                         successors (SATISFIED, LOCKED, HIDDEN_GATED)

The rule-reading set is closed transitively over dependency
references: if X's rules change outcome, every service that uses X's
rules as a proxy for X's status may change too. The result is
intersected with the traversal scope.

Closures are cached per key for the lifetime of the controller. The
cache is session-scoped and never shared.
"""
import logging
from typing import Dict, FrozenSet, List, Optional, Set

from core.ontology import status_key
from core.schemas import NodeResult, RelevanceReport
from core.resolver import DependencyResolver
from core.session import Session
from core.traversal import LifeEventIds, RelevanceTraversal, TraversalScope
from infrastructure.config import EngineConfig
from infrastructure.event_bus import ChangeEvent, EventType


logger = logging.getLogger(__name__)


class RecomputeController:
    """
    Session-bound cache of NodeResults with bounded recomputation.

    Usage:
        controller = RecomputeController(session, ["bereavement"])
        session.set_fact("estate_value", 120000)   # recomputes a few nodes
        controller.last_recomputed                  # which ones
        controller.report()                         # full RelevanceReport
    """

    def __init__(
        self,
        session: Session,
        life_event_ids: LifeEventIds,
        config: Optional[EngineConfig] = None,
    ):
        self.session = session
        self.catalog = session.catalog
        self.traversal = RelevanceTraversal(self.catalog, config)
        self.scope: TraversalScope = self.traversal.scope(life_event_ids)

        self._results: Dict[str, NodeResult] = {}
        self._closure_cache: Dict[str, FrozenSet[str]] = {}
        self.recompute_count = 0
        self.last_recomputed: FrozenSet[str] = frozenset()

        self._recompute(self.scope.order)

        session.bus.subscribe(EventType.FACT_SET, self._on_fact_set)
        session.bus.subscribe(EventType.SERVICE_STATUS_SET, self._on_status_set)

    # =========================================================================
    # AFFECTED SETS
    # =========================================================================

    def _rule_closure(self, key: str) -> FrozenSet[str]:
        """Services whose rule outcome can change with this key."""
        cached = self._closure_cache.get(key)
        if cached is not None:
            return cached

        closure: Set[str] = set(self.catalog.affected_by(key))
        stack: List[str] = list(closure)
        while stack:
            sid = stack.pop()
            for dependent in self.catalog.dependents(sid):
                if dependent not in closure:
                    closure.add(dependent)
                    stack.append(dependent)

        result = frozenset(closure)
        self._closure_cache[key] = result
        return result

    def affected_by_fact(self, key: str) -> FrozenSet[str]:
        """In-scope services to recompute after a fact write."""
        return frozenset(sid for sid in self._rule_closure(key) if sid in self.scope)

    def affected_by_status(self, service_id: str) -> FrozenSet[str]:
        """In-scope services to recompute after a status write."""
        affected = set(self._rule_closure(status_key(service_id)))
        affected.add(service_id)
        affected.update(self.catalog.successors(service_id))
        return frozenset(sid for sid in affected if sid in self.scope)

    # =========================================================================
    # EVENT HANDLERS
    # =========================================================================

    def _on_fact_set(self, event: ChangeEvent) -> None:
        self._recompute(self.affected_by_fact(event.key))

    def _on_status_set(self, event: ChangeEvent) -> None:
        self._recompute(self.affected_by_status(event.key))

    def _recompute(self, service_ids) -> None:
        wanted = set(service_ids)
        ordered = [sid for sid in self.scope.order if sid in wanted]
        if ordered:
            snapshot = self.session.snapshot()
            resolver = DependencyResolver(self.catalog, snapshot)
            for sid in ordered:
                self._results[sid] = self.traversal.evaluate_node(sid, snapshot, self.scope, resolver)
        self.recompute_count += len(ordered)
        self.last_recomputed = frozenset(ordered)
        logger.debug("Recomputed %d of %d services", len(ordered), len(self.scope))

    # =========================================================================
    # RESULTS
    # =========================================================================

    def result(self, service_id: str) -> Optional[NodeResult]:
        return self._results.get(service_id)

    def results(self) -> Dict[str, NodeResult]:
        """Current per-node results, in traversal order."""
        return {sid: self._results[sid] for sid in self.scope.order}

    def report(self) -> RelevanceReport:
        return self.traversal.build_report(self.scope, self._results)

    def close(self) -> None:
        """Stop listening to the session bus."""
        self.session.bus.unsubscribe(EventType.FACT_SET, self._on_fact_set)
        self.session.bus.unsubscribe(EventType.SERVICE_STATUS_SET, self._on_status_set)
