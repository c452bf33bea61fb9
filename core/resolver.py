"""
WAYFINDER RESOLVER - Dependency Resolution with Cycle Protection

A dependency leaf asks "is the user receiving / has the user completed
service X?". Recorded status answers directly. When the status is
still unknown, X's own top-level rules are evaluated as a proxy for
whether the user is likely to hold it.

Rules that reference other services form a second graph over the same
ids, and hand-authored content can make it cyclic (A needs B, B needs
A). A `visiting` set threaded down the call stack stops recursion: a
service already being resolved resolves to UNKNOWN.

Memoization:
    One resolver per traversal (or recompute batch). Each service's
    proxy result is computed once and shared by every referrer, unless
    the cycle guard fired while computing it: such a result depends on
    who was on the stack, so it is not cached.
"""
import logging
from typing import Dict, FrozenSet, Optional

from core.ontology import DependencyCondition, Ternary, status_key
from core.schemas import DependencyRule, EvalResult
from core.catalog import Catalog
from core.rules import RuleEvaluator, status_satisfies
from core.session import Snapshot


logger = logging.getLogger(__name__)


class DependencyResolver:
    """
    Resolves dependency leaves against one snapshot.

    Usage:
        resolver = DependencyResolver(catalog, snapshot)
        resolver.evaluate_service("dwp-funeral-payment")  # EvalResult
        resolver.resolve("dwp-universal-credit", DependencyCondition.RECEIVING)
    """

    def __init__(self, catalog: Catalog, snapshot: Snapshot):
        self.catalog = catalog
        self.snapshot = snapshot
        self.evaluator = RuleEvaluator(dependency_handler=self._handle_dependency)
        self._proxy_cache: Dict[str, EvalResult] = {}
        self._guard_hits = 0
        self.resolutions = 0  # proxy evaluations actually computed

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def resolve(
        self,
        service_id: str,
        condition: DependencyCondition,
        visiting: FrozenSet[str] = frozenset(),
    ) -> EvalResult:
        """
        Resolve "service_id is <condition>".

        1. Known status: TRUE if it matches the condition, else FALSE.
        2. Unknown and already on the stack: UNKNOWN (cycle guard).
        3. Otherwise the service's own rules stand in for its status.
           An UNKNOWN proxy also reports the status key itself, so the
           caller may ask about the service directly.
        """
        key = status_key(service_id)
        verdict = status_satisfies(self.snapshot.get_service_status(service_id), condition)
        if verdict is not Ternary.UNKNOWN:
            return EvalResult.known(verdict is Ternary.TRUE)

        if service_id in visiting:
            self._guard_hits += 1
            logger.debug("Dependency cycle through %s; resolving as UNKNOWN", service_id)
            return EvalResult.unknown(key)

        proxy = self._proxy(service_id, visiting | {service_id})
        if proxy.value is Ternary.UNKNOWN:
            return EvalResult(Ternary.UNKNOWN, proxy.missing | {key})
        return proxy

    def evaluate_service(self, service_id: str) -> EvalResult:
        """
        Evaluate a service's own top-level rules as an implicit all.

        The service itself starts on the stack, so a rule that loops
        back to it resolves to UNKNOWN instead of recursing.
        """
        service = self.catalog.get_service(service_id)
        return self.evaluator.evaluate_all(service.rules, self.snapshot, frozenset({service_id}))

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _handle_dependency(
        self,
        rule: DependencyRule,
        snapshot: Snapshot,
        visiting: FrozenSet[str],
    ) -> EvalResult:
        return self.resolve(rule.service_id, rule.condition, visiting)

    def _proxy(self, service_id: str, visiting: FrozenSet[str]) -> EvalResult:
        cached: Optional[EvalResult] = self._proxy_cache.get(service_id)
        if cached is not None:
            return cached

        service = self.catalog.get_service(service_id)
        hits_before = self._guard_hits
        result = self.evaluator.evaluate_all(service.rules, self.snapshot, visiting)
        self.resolutions += 1

        if self._guard_hits == hits_before:
            self._proxy_cache[service_id] = result
        return result
