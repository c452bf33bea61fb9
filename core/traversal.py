"""
WAYFINDER TRAVERSAL - The Relevance Traversal Engine

Walks the catalog's edge graph from the entry services of one or more
life events and assigns every reached service a NodeState.

Algorithm:
    1. Seed a queue with the life events' entry ids.
    2. Breadth-first over REQUIRES + ENABLES out-edges. The visited set
       means each id is processed once, so an accidental edge cycle in
       hand-authored content still terminates.
    3. For each visited node, first match wins:
         SATISFIED     own status is completed
         LOCKED        a REQUIRES predecessor is not completed
         HIDDEN_GATED  gated, not an entry, no satisfied predecessor.
                       A completed REQUIRES prerequisite counts as a
                       satisfied predecessor, so a gated service with one
                       surfaces even when no ENABLES predecessor is
                       receiving or completed.
         INELIGIBLE    nation known and outside the service's nations
         rules         TRUE -> ACTIONABLE, FALSE -> INELIGIBLE,
                       UNKNOWN -> NEEDS_INFO (with ordered questions)
    4. Layer the reached services into journey phases (rx.layers over
       the in-scope REQUIRES subgraph, see Catalog.requires_layers).

Complexity: O(services + edges) per full pass, plus rule evaluation.
"""
import logging
from collections import deque
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Set, Tuple, Union

from core.ontology import (
    EdgeKind,
    NodeState,
    ServiceStatus,
    DeadlineStatus,
    Ternary,
    SATISFYING_STATUSES,
    CUSTOM_PREFIX,
    is_custom_key,
    is_trigger_date_key,
    service_id_from_status_key,
)
from core.schemas import (
    DeadlineRule,
    EvalResult,
    JourneyPhase,
    NodeResult,
    RelevanceReport,
    Service,
)
from core.catalog import Catalog
from core.resolver import DependencyResolver
from core.rules import deadline_status
from core.session import Snapshot
from infrastructure.config import EngineConfig


logger = logging.getLogger(__name__)

LifeEventIds = Union[str, Sequence[str]]

GATEWAY_PHASE_LABEL = "Gateway services - start here"


def _as_id_tuple(life_event_ids: LifeEventIds) -> Tuple[str, ...]:
    if isinstance(life_event_ids, str):
        return (life_event_ids,)
    return tuple(dict.fromkeys(life_event_ids))


class TraversalScope:
    """
    The services reached from a set of life events.

    Attributes:
        life_events: Life event ids, in the order given
        entries: Entry service ids (union over life events)
        order: Reached service ids in breadth-first order
        triggered_by: service id -> life events whose entries reach it
    """

    def __init__(
        self,
        life_events: Tuple[str, ...],
        entries: FrozenSet[str],
        order: Tuple[str, ...],
        triggered_by: Dict[str, Tuple[str, ...]],
    ):
        self.life_events = life_events
        self.entries = entries
        self.order = order
        self.triggered_by = triggered_by
        self._members = frozenset(order)

    def __contains__(self, service_id: str) -> bool:
        return service_id in self._members

    def __iter__(self):
        return iter(self.order)

    def __len__(self) -> int:
        return len(self.order)


class RelevanceTraversal:
    """
    Stateless engine over one Catalog.

    Usage:
        engine = RelevanceTraversal(catalog)
        report = engine.traverse(["baby"], snapshot)
        report.state_of("hmrc-child-benefit")  # NodeState.NEEDS_INFO
    """

    def __init__(self, catalog: Catalog, config: Optional[EngineConfig] = None):
        self.catalog = catalog
        self.config = config or EngineConfig()

    # =========================================================================
    # SCOPE (BFS)
    # =========================================================================

    def reachable_from(self, entries: Iterable[str]) -> List[str]:
        """Breadth-first order of every service reachable from the entries."""
        queue = deque()
        visited: Set[str] = set()
        for entry in entries:
            if entry not in visited:
                visited.add(entry)
                queue.append(entry)
        order: List[str] = []
        while queue:
            current = queue.popleft()
            order.append(current)
            for nxt in self.catalog.successors(current):
                if nxt not in visited:
                    visited.add(nxt)
                    queue.append(nxt)
        return order

    def scope(self, life_event_ids: LifeEventIds) -> TraversalScope:
        """
        Services reachable from the given life events.

        Raises:
            UnknownLifeEventError: If any id is not in the catalog
        """
        ids = _as_id_tuple(life_event_ids)
        events = [self.catalog.get_life_event(eid) for eid in ids]

        entries: List[str] = []
        for evt in events:
            entries.extend(evt.entry_nodes)
        order = self.reachable_from(entries)

        triggered: Dict[str, List[str]] = {sid: [] for sid in order}
        if len(events) == 1:
            for sid in order:
                triggered[sid].append(events[0].id)
        else:
            for evt in events:
                for sid in self.reachable_from(evt.entry_nodes):
                    triggered[sid].append(evt.id)

        return TraversalScope(
            life_events=ids,
            entries=frozenset(entries),
            order=tuple(order),
            triggered_by={sid: tuple(evts) for sid, evts in triggered.items()},
        )

    # =========================================================================
    # PER-NODE EVALUATION
    # =========================================================================

    def evaluate_node(
        self,
        service_id: str,
        snapshot: Snapshot,
        scope: TraversalScope,
        resolver: Optional[DependencyResolver] = None,
    ) -> NodeResult:
        """Assign one in-scope service its NodeState, first match wins."""
        service = self.catalog.get_service(service_id)
        resolver = resolver or DependencyResolver(self.catalog, snapshot)

        outcome = EvalResult(Ternary.UNKNOWN)
        if snapshot.get_service_status(service_id) is ServiceStatus.COMPLETED:
            state = NodeState.SATISFIED
        elif self._is_locked(service_id, snapshot):
            state = NodeState.LOCKED
        elif self._is_hidden(service, snapshot, scope):
            state = NodeState.HIDDEN_GATED
        elif self._outside_nations(service, snapshot):
            state = NodeState.INELIGIBLE
        else:
            outcome = resolver.evaluate_service(service_id)
            state = {
                Ternary.TRUE: NodeState.ACTIONABLE,
                Ternary.FALSE: NodeState.INELIGIBLE,
                Ternary.UNKNOWN: NodeState.NEEDS_INFO,
            }[outcome.value]

        missing: Tuple[str, ...] = ()
        questions: Tuple[str, ...] = ()
        if state is NodeState.NEEDS_INFO:
            missing = tuple(sorted(outcome.missing))
            questions = self.questions_for(service, outcome.missing)

        return NodeResult(
            service_id=service_id,
            name=service.name,
            state=state,
            questions=questions,
            missing=missing,
            triggered_by=scope.triggered_by.get(service_id, ()),
            dept_key=service.dept_key,
            proactive=service.proactive,
            gated=service.gated,
            deadline=service.deadline,
            deadline_status=self._deadline_status(service, snapshot),
            contact=self.catalog.resolve_contact(service_id),
            financial_data=service.financial_data,
        )

    def _is_locked(self, service_id: str, snapshot: Snapshot) -> bool:
        return any(
            snapshot.get_service_status(pred) is not ServiceStatus.COMPLETED
            for pred in self.catalog.predecessors(service_id, EdgeKind.REQUIRES)
        )

    def _is_hidden(self, service: Service, snapshot: Snapshot, scope: TraversalScope) -> bool:
        if not service.gated or service.id in scope.entries:
            return False
        # Reached through a completed prerequisite (not LOCKED, so all are completed)
        if self.catalog.predecessors(service.id, EdgeKind.REQUIRES):
            return False
        return not any(
            pred in scope and snapshot.get_service_status(pred) in SATISFYING_STATUSES
            for pred in self.catalog.predecessors(service.id, EdgeKind.ENABLES)
        )

    @staticmethod
    def _outside_nations(service: Service, snapshot: Snapshot) -> bool:
        if not service.nations:
            return False
        nation = snapshot.get_fact("nation")
        return nation is not None and nation not in service.nations

    @staticmethod
    def _deadline_status(service: Service, snapshot: Snapshot) -> Optional[DeadlineStatus]:
        for rule in service.rules:
            if isinstance(rule, DeadlineRule):
                return deadline_status(rule, snapshot)
        return None

    # =========================================================================
    # QUESTIONS
    # =========================================================================

    def questions_for(self, service: Service, missing: FrozenSet[str]) -> Tuple[str, ...]:
        """
        Ordered questions that would settle the missing keys.

        The service's own key questions come first, in catalog order,
        when they cover a missing key. Keys no key question covers
        follow in sorted order, phrased from the fact schema.
        """
        questions: List[str] = []
        covered: Set[str] = set()
        for kq in service.key_questions:
            settles = missing.intersection(kq.facts)
            if settles:
                questions.append(kq.text)
                covered.update(settles)
        for key in sorted(missing - covered):
            text = self._question_for_key(key)
            if text not in questions:
                questions.append(text)
        return tuple(questions)

    def _question_for_key(self, key: str) -> str:
        target = service_id_from_status_key(key)
        if target is not None:
            name = self.catalog.get_service(target).name or target
            return self.config.status_question_template.format(service=name)
        if is_trigger_date_key(key):
            label = self.catalog.trigger_label(key) or key.split(".", 1)[1].replace("_", " ") + " date"
            return f"What is the {label}?"
        field = self.catalog.fact_fields.get(key)
        if field is not None and field.prompt:
            return field.prompt
        name = key[len(CUSTOM_PREFIX):] if is_custom_key(key) else key
        return self.config.fact_question_template.format(field=name.replace("_", " "))

    # =========================================================================
    # FULL PASS
    # =========================================================================

    def traverse(self, life_event_ids: LifeEventIds, snapshot: Snapshot) -> RelevanceReport:
        """
        Evaluate every service reachable from the given life events.

        One DependencyResolver is shared by the whole pass, so a service
        referenced by many dependency rules is resolved once.
        """
        scope = self.scope(life_event_ids)
        resolver = DependencyResolver(self.catalog, snapshot)
        results = {
            sid: self.evaluate_node(sid, snapshot, scope, resolver)
            for sid in scope.order
        }
        logger.debug(
            "Traversed %s: %d services, %d dependency resolutions",
            ",".join(scope.life_events), len(results), resolver.resolutions,
        )
        return self.build_report(scope, results)

    def build_report(self, scope: TraversalScope, results: Dict[str, NodeResult]) -> RelevanceReport:
        """Assemble a report from per-node results, in scope order."""
        ordered = {sid: results[sid] for sid in scope.order}
        services = ordered
        if not self.config.include_hidden:
            services = {
                sid: result for sid, result in ordered.items()
                if result.state is not NodeState.HIDDEN_GATED
            }
        return RelevanceReport(
            life_events=scope.life_events,
            services=services,
            phases=self.phases(scope),
            summary=self.summarize(ordered.values()),
        )

    # =========================================================================
    # PHASES & SUMMARY
    # =========================================================================

    def phases(self, scope: TraversalScope) -> List[JourneyPhase]:
        """
        Layer in-scope services over the REQUIRES edges among them.

        Phase 1 holds services with no in-scope REQUIRES predecessor.
        Services on an accidental REQUIRES cycle, and anything behind
        one, can't be layered; they are listed together in one final phase.
        """
        layers, stuck = self.catalog.requires_layers(scope.order)
        if stuck:
            logger.warning("REQUIRES cycle among %s; placing them in a final phase", stuck)
            layers.append(stuck)

        return [
            JourneyPhase(
                phase=i + 1,
                label=GATEWAY_PHASE_LABEL if i == 0 else f"Phase {i + 1}",
                services=tuple(layer),
            )
            for i, layer in enumerate(layers)
        ]

    @staticmethod
    def summarize(results: Iterable[NodeResult]) -> Dict[str, int]:
        """Counts per NodeState, plus departments and overdue deadlines."""
        summary = {state.value: 0 for state in NodeState}
        departments: Set[str] = set()
        total = overdue = 0
        for result in results:
            total += 1
            summary[result.state.value] += 1
            if result.dept_key:
                departments.add(result.dept_key)
            if (
                result.deadline_status is DeadlineStatus.OVERDUE
                and result.state is not NodeState.SATISFIED
            ):
                overdue += 1
        summary["total"] = total
        summary["departments"] = len(departments)
        summary["overdue_deadlines"] = overdue
        return summary


# =============================================================================
# STATELESS ENTRY POINT
# =============================================================================

def evaluate_life_event(
    catalog: Catalog,
    snapshot: Snapshot,
    life_event_ids: LifeEventIds,
    config: Optional[EngineConfig] = None,
) -> RelevanceReport:
    """
    One-shot evaluation for request/response callers.

    Pass the full fact and status snapshot on every call; nothing is
    kept between calls.
    """
    return RelevanceTraversal(catalog, config).traverse(life_event_ids, snapshot)
