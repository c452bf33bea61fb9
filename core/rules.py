"""
WAYFINDER RULES - The Ternary Rule Evaluator

Evaluates one rule tree against a Fact/Status snapshot and produces an
EvalResult: a three-valued verdict plus the fact keys still missing.

Semantics (Kleene logic):
    not:  TRUE <-> FALSE, UNKNOWN stays UNKNOWN
    any:  TRUE if any TRUE, else UNKNOWN if any UNKNOWN, else FALSE ([] -> FALSE)
    all:  FALSE if any FALSE, else UNKNOWN if any UNKNOWN, else TRUE ([] -> TRUE)

A conclusive result always has an empty missing set. An UNKNOWN
combinator carries the union of its UNKNOWN children's missing sets.

Dependency leaves are delegated to a handler so the Dependency Resolver
can plug in proxy evaluation and cycle protection. Without a handler a
dependency leaf only looks at the recorded service status.

Missing data is never an error. A leaf that cannot compare its value
(bad type, unparseable date) is logged and evaluates to UNKNOWN so the
rest of the tree keeps going.
"""
import logging
import operator
from datetime import date, datetime
from typing import Any, Callable, Dict, FrozenSet, Iterable, Optional, Type, TYPE_CHECKING

from core.ontology import (
    Ternary,
    ServiceStatus,
    DeadlineStatus,
    trigger_date_key,
    status_key,
    ternary_not,
)
from core.schemas import (
    Rule,
    BooleanRule,
    ComparisonRule,
    EnumRule,
    DeadlineRule,
    DependencyRule,
    NotRule,
    AnyRule,
    AllRule,
    EvalResult,
    TRUE_RESULT,
    FALSE_RESULT,
)

if TYPE_CHECKING:
    from core.session import Snapshot


logger = logging.getLogger(__name__)

# (rule, snapshot, visiting) -> result
DependencyHandler = Callable[[DependencyRule, "Snapshot", FrozenSet[str]], EvalResult]

_NOBODY: FrozenSet[str] = frozenset()

_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    ">=": operator.ge,
    ">": operator.gt,
    "<=": operator.le,
    "<": operator.lt,
    "==": operator.eq,
    "!=": operator.ne,
}


# =============================================================================
# VALUE COERCION
# =============================================================================

def _require_number(value: Any) -> float:
    # bool is an int subclass; a boolean fact is never a number
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"expected a number, got {type(value).__name__}")
    return value


def _as_date(value: Any) -> date:
    """Trigger dates arrive as ISO strings or date/datetime objects."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value[:10])
    raise TypeError(f"expected a date, got {type(value).__name__}")


def days_since(trigger: Any, today: date) -> int:
    """Whole days from the trigger date to today (negative if still ahead)."""
    return (today - _as_date(trigger)).days


def deadline_window_holds(delta: int, max_days: int) -> bool:
    """
    The single deadline sign convention.

    max_days >= 0: TRUE iff 0 <= delta <= max_days  (act within N days)
    max_days < 0:  TRUE iff delta <= max_days       (act N days ahead)
    """
    if max_days >= 0:
        return 0 <= delta <= max_days
    return delta <= max_days


def deadline_status(rule: DeadlineRule, snapshot: "Snapshot") -> DeadlineStatus:
    """ok / overdue / unknown_trigger_date for a service's deadline rule."""
    raw = snapshot.get_fact(trigger_date_key(rule.trigger_event))
    if raw is None:
        return DeadlineStatus.UNKNOWN_TRIGGER_DATE
    try:
        delta = days_since(raw, snapshot.today)
    except (TypeError, ValueError):
        return DeadlineStatus.UNKNOWN_TRIGGER_DATE
    return DeadlineStatus.OVERDUE if delta > rule.max_days else DeadlineStatus.OK


def status_satisfies(status: ServiceStatus, condition: Any) -> Ternary:
    """
    Compare a recorded status with a dependency condition.

    UNKNOWN status -> UNKNOWN; any other concrete status is conclusive.
    """
    if status is ServiceStatus.UNKNOWN:
        return Ternary.UNKNOWN
    return Ternary.of(status.value == condition.value)


# =============================================================================
# EVALUATOR
# =============================================================================

class RuleEvaluator:
    """
    Pure evaluator over a snapshot.

    Usage:
        evaluator = RuleEvaluator()
        result = evaluator.evaluate(rule, snapshot)
        result.value    # Ternary
        result.missing  # frozenset of fact / status keys
    """

    def __init__(self, dependency_handler: Optional[DependencyHandler] = None):
        self._dependency_handler = dependency_handler
        self._dispatch: Dict[Type[Any], Callable[..., EvalResult]] = {
            BooleanRule: self._eval_boolean,
            ComparisonRule: self._eval_comparison,
            EnumRule: self._eval_enum,
            DeadlineRule: self._eval_deadline,
            DependencyRule: self._eval_dependency,
            NotRule: self._eval_not,
            AnyRule: self._eval_any,
            AllRule: self._eval_all,
        }

    # =========================================================================
    # ENTRY POINTS
    # =========================================================================

    def evaluate(
        self,
        rule: Rule,
        snapshot: "Snapshot",
        visiting: FrozenSet[str] = _NOBODY,
    ) -> EvalResult:
        """Evaluate a single rule tree."""
        handler = self._dispatch.get(type(rule))
        if handler is None:
            raise TypeError(f"Unsupported rule type: {type(rule).__name__}")
        return handler(rule, snapshot, visiting)

    def evaluate_all(
        self,
        rules: Iterable[Rule],
        snapshot: "Snapshot",
        visiting: FrozenSet[str] = _NOBODY,
    ) -> EvalResult:
        """
        Conjunction over a rule list; a service's top-level rules use this.

        Stops at the first FALSE child.
        """
        saw_unknown = False
        missing: set = set()
        for child in rules:
            result = self.evaluate(child, snapshot, visiting)
            if result.value is Ternary.FALSE:
                return FALSE_RESULT
            if result.value is Ternary.UNKNOWN:
                saw_unknown = True
                missing.update(result.missing)
        if saw_unknown:
            return EvalResult(Ternary.UNKNOWN, frozenset(missing))
        return TRUE_RESULT

    def evaluate_any(
        self,
        rules: Iterable[Rule],
        snapshot: "Snapshot",
        visiting: FrozenSet[str] = _NOBODY,
    ) -> EvalResult:
        """Disjunction over a rule list. Stops at the first TRUE child."""
        saw_unknown = False
        missing: set = set()
        for child in rules:
            result = self.evaluate(child, snapshot, visiting)
            if result.value is Ternary.TRUE:
                return TRUE_RESULT
            if result.value is Ternary.UNKNOWN:
                saw_unknown = True
                missing.update(result.missing)
        if saw_unknown:
            return EvalResult(Ternary.UNKNOWN, frozenset(missing))
        return FALSE_RESULT

    # =========================================================================
    # LEAVES
    # =========================================================================

    def _eval_boolean(self, rule: BooleanRule, snapshot, visiting) -> EvalResult:
        value = snapshot.get_fact(rule.field)
        if value is None:
            return EvalResult.unknown(rule.field)
        return self._guarded(rule, rule.field, value, self._check_boolean)

    def _eval_comparison(self, rule: ComparisonRule, snapshot, visiting) -> EvalResult:
        value = snapshot.get_fact(rule.field)
        if value is None:
            return EvalResult.unknown(rule.field)
        return self._guarded(rule, rule.field, value, self._check_comparison)

    def _eval_enum(self, rule: EnumRule, snapshot, visiting) -> EvalResult:
        value = snapshot.get_fact(rule.field)
        if value is None:
            return EvalResult.unknown(rule.field)
        return self._guarded(rule, rule.field, value, self._check_enum)

    def _eval_deadline(self, rule: DeadlineRule, snapshot, visiting) -> EvalResult:
        key = trigger_date_key(rule.trigger_event)
        value = snapshot.get_fact(key)
        if value is None:
            return EvalResult.unknown(key)
        return self._guarded(
            rule, key, value,
            lambda r, v: deadline_window_holds(days_since(v, snapshot.today), r.max_days),
        )

    def _eval_dependency(self, rule: DependencyRule, snapshot, visiting) -> EvalResult:
        if self._dependency_handler is not None:
            return self._dependency_handler(rule, snapshot, visiting)
        verdict = status_satisfies(snapshot.get_service_status(rule.service_id), rule.condition)
        if verdict is Ternary.UNKNOWN:
            return EvalResult.unknown(status_key(rule.service_id))
        return EvalResult.known(verdict is Ternary.TRUE)

    # =========================================================================
    # COMBINATORS
    # =========================================================================

    def _eval_not(self, rule: NotRule, snapshot, visiting) -> EvalResult:
        # Several children are negated as their implicit AND
        inner = self.evaluate_all(rule.rules, snapshot, visiting)
        return EvalResult(ternary_not(inner.value), inner.missing)

    def _eval_any(self, rule: AnyRule, snapshot, visiting) -> EvalResult:
        return self.evaluate_any(rule.rules, snapshot, visiting)

    def _eval_all(self, rule: AllRule, snapshot, visiting) -> EvalResult:
        return self.evaluate_all(rule.rules, snapshot, visiting)

    # =========================================================================
    # COMPARISONS
    # =========================================================================

    @staticmethod
    def _check_boolean(rule: BooleanRule, value: Any) -> bool:
        if not isinstance(value, bool):
            raise TypeError(f"expected a boolean, got {type(value).__name__}")
        return value is rule.expected

    @staticmethod
    def _check_comparison(rule: ComparisonRule, value: Any) -> bool:
        return _OPERATORS[rule.operator](_require_number(value), rule.value)

    @staticmethod
    def _check_enum(rule: EnumRule, value: Any) -> bool:
        if isinstance(value, bool) or not isinstance(value, (str, int, float)):
            raise TypeError(f"expected a label or number, got {type(value).__name__}")
        return value in rule.one_of

    def _guarded(self, rule: Rule, key: str, value: Any, check: Callable[[Any, Any], bool]) -> EvalResult:
        """Run one leaf comparison; a malformed value degrades to UNKNOWN."""
        try:
            return EvalResult.known(check(rule, value))
        except (TypeError, ValueError) as e:
            logger.warning(
                "Rule %r on %s could not compare value of type %s (%s); treating as UNKNOWN",
                rule.label or type(rule).__name__, key, type(value).__name__, e,
            )
            return EvalResult.unknown(key)


# =============================================================================
# MODULE-LEVEL CONVENIENCE
# =============================================================================

_STATUS_ONLY = RuleEvaluator()


def evaluate(rule: Rule, snapshot: "Snapshot") -> EvalResult:
    """Evaluate one rule; dependency leaves read recorded statuses only."""
    return _STATUS_ONLY.evaluate(rule, snapshot)


def evaluate_all(rules: Iterable[Rule], snapshot: "Snapshot") -> EvalResult:
    """Evaluate a top-level rule list as an implicit all."""
    return _STATUS_ONLY.evaluate_all(rules, snapshot)
