"""
WAYFINDER SCHEMAS - The Grammar of the System

If ontology.py is the Dictionary (defining the words we can use),
schemas.py is the Grammar (defining how we structure sentences).

This module defines the data structures that flow through the engine:
- Rule variants: a closed, tagged union (one Struct per leaf/combinator)
- Service / Edge / LifeEvent: the catalog content as decoded from JSON
- EvalResult / NodeResult / RelevanceReport: what evaluation produces
- Serialization helpers for catalog documents and reports

Design Principles:
1. STRICT TYPING: msgspec.Struct with no silent type coercion
2. CLOSED SUM TYPE: each rule variant carries only its own fields, and the
   "type" tag selects the variant at decode time
3. KW_ONLY: Enforce keyword arguments to prevent positional mix-ups
4. FROZEN CATALOG: everything decoded from a catalog is immutable
"""
import msgspec
from typing import Optional, Dict, Any, List, Tuple, Union, FrozenSet, Iterator

from core.ontology import (
    Ternary,
    NodeState,
    DeadlineStatus,
    DependencyCondition,
    ComparisonOperator,
    FactKind,
)


# =============================================================================
# RULES (The Eligibility DSL)
# =============================================================================

class RuleBase(msgspec.Struct, kw_only=True, frozen=True, tag_field="type"):
    """Common shape of every rule: a human-readable label."""
    label: str = ""


class BooleanRule(RuleBase, kw_only=True, frozen=True, tag="boolean"):
    """Boolean fact check: is_uk_resident == true"""
    field: str
    expected: bool = True


class ComparisonRule(RuleBase, kw_only=True, frozen=True, tag="comparison"):
    """Numeric comparison: age >= 18, savings < 16000"""
    field: str
    operator: ComparisonOperator
    value: float


class EnumRule(RuleBase, kw_only=True, frozen=True, tag="enum"):
    """Set membership: nation in ['scotland']"""
    field: str
    one_of: Tuple[Union[str, float], ...]


class DeadlineRule(RuleBase, kw_only=True, frozen=True, tag="deadline"):
    """
    Window relative to a trigger event's date.

    max_days >= 0: act within max_days of the event.
    max_days < 0:  act at least |max_days| days before the event.
    """
    trigger_event: str
    trigger_label: str = ""
    max_days: int


class DependencyRule(RuleBase, kw_only=True, frozen=True, tag="dependency"):
    """Graph-aware dependency: receiving a benefit, completed a service"""
    service_id: str
    condition: DependencyCondition = DependencyCondition.RECEIVING


class NotRule(RuleBase, kw_only=True, frozen=True, tag="not"):
    """Negation. Several children are negated as their implicit AND."""
    rules: Tuple["Rule", ...] = ()


class AnyRule(RuleBase, kw_only=True, frozen=True, tag="any"):
    """Disjunction; empty -> FALSE"""
    rules: Tuple["Rule", ...] = ()


class AllRule(RuleBase, kw_only=True, frozen=True, tag="all"):
    """Conjunction; empty -> TRUE"""
    rules: Tuple["Rule", ...] = ()


Rule = Union[
    BooleanRule,
    ComparisonRule,
    EnumRule,
    DeadlineRule,
    DependencyRule,
    NotRule,
    AnyRule,
    AllRule,
]

COMBINATOR_RULE_TYPES = (NotRule, AnyRule, AllRule)


def iter_rule_tree(rules: Tuple[Rule, ...], path: str = "rules") -> Iterator[Tuple[str, Rule]]:
    """
    Depth-first walk over a rule list, yielding (location, rule).

    Locations look like "rules[0].rules[2]" so load-time defects can
    point at the exact node that is wrong.
    """
    for i, rule in enumerate(rules):
        location = f"{path}[{i}]"
        yield location, rule
        if isinstance(rule, COMBINATOR_RULE_TYPES):
            yield from iter_rule_tree(rule.rules, f"{location}.rules")


# =============================================================================
# CATALOG CONTENT (decoded once, read-only afterwards)
# =============================================================================

class KeyQuestion(msgspec.Struct, kw_only=True, frozen=True):
    """A question from the catalog and the fact keys it settles."""
    text: str
    facts: Tuple[str, ...] = ()


class Service(msgspec.Struct, kw_only=True, frozen=True):
    """
    One catalog entry.

    contact and financial_data are opaque to the engine: they are
    passed through to the caller exactly as authored.
    """
    # === Identity ===
    id: str
    name: str = ""
    dept: str = ""
    dept_key: str = ""

    # === Presentation (pass-through) ===
    description: str = ""
    deadline: Optional[str] = None
    govuk_url: str = ""
    service_type: str = ""

    # === Traversal flags ===
    proactive: bool = False
    gated: bool = False

    # === Eligibility ===
    rules: Tuple[Rule, ...] = ()
    key_questions: Tuple[KeyQuestion, ...] = ()
    nations: Optional[Tuple[str, ...]] = None  # None = UK-wide

    # === Enrichment (pass-through) ===
    contact: Optional[Dict[str, Any]] = None
    financial_data: Optional[Dict[str, Any]] = None


class Edge(msgspec.Struct, kw_only=True, frozen=True):
    """
    A typed relationship between two services.

    kind is kept as a plain string so that a bad value is reported by
    the loader alongside every other defect instead of aborting decode.
    """
    source: str = msgspec.field(name="from")
    target: str = msgspec.field(name="to")
    kind: str


class LifeEvent(msgspec.Struct, kw_only=True, frozen=True):
    """A named bundle of entry services. Never a graph node itself."""
    id: str
    name: str = ""
    description: str = ""
    entry_nodes: Tuple[str, ...] = ()


class FactField(msgspec.Struct, kw_only=True, frozen=True):
    """Declaration of a first-class fact in the known schema."""
    name: str
    kind: FactKind
    labels: Tuple[str, ...] = ()       # closed set, only for kind=label
    prompt: Optional[str] = None       # fallback question text


class CatalogDocument(msgspec.Struct, kw_only=True):
    """The on-disk catalog format, before validation and indexing."""
    version: str = ""
    services: List[Service] = msgspec.field(default_factory=list)
    edges: List[Edge] = msgspec.field(default_factory=list)
    life_events: List[LifeEvent] = msgspec.field(default_factory=list)
    department_contacts: Dict[str, Dict[str, Any]] = msgspec.field(default_factory=dict)
    fact_fields: List[FactField] = msgspec.field(default_factory=list)


# =============================================================================
# EVALUATION RESULTS
# =============================================================================

_NO_MISSING: FrozenSet[str] = frozenset()


class EvalResult(msgspec.Struct, frozen=True):
    """Outcome of evaluating one rule: a ternary value plus what is missing."""
    value: Ternary
    missing: FrozenSet[str] = _NO_MISSING

    @classmethod
    def known(cls, value: bool) -> "EvalResult":
        return TRUE_RESULT if value else FALSE_RESULT

    @classmethod
    def unknown(cls, *keys: str) -> "EvalResult":
        return cls(Ternary.UNKNOWN, frozenset(keys))


TRUE_RESULT = EvalResult(Ternary.TRUE)
FALSE_RESULT = EvalResult(Ternary.FALSE)


class NodeResult(msgspec.Struct, kw_only=True, frozen=True):
    """Per-service output of a relevance traversal."""
    service_id: str
    name: str = ""
    state: NodeState
    questions: Tuple[str, ...] = ()         # Only for NEEDS_INFO
    missing: Tuple[str, ...] = ()           # Sorted fact/status keys
    triggered_by: Tuple[str, ...] = ()      # Life events whose entries reach it
    dept_key: str = ""
    proactive: bool = False
    gated: bool = False
    deadline: Optional[str] = None
    deadline_status: Optional[DeadlineStatus] = None
    contact: Optional[Dict[str, Any]] = None
    financial_data: Optional[Dict[str, Any]] = None


class JourneyPhase(msgspec.Struct, kw_only=True, frozen=True):
    """A layer of services ordered by REQUIRES edges."""
    phase: int
    label: str
    services: Tuple[str, ...] = ()


class RelevanceReport(msgspec.Struct, kw_only=True):
    """Complete result of one traversal over one or more life events."""
    life_events: Tuple[str, ...]
    services: Dict[str, NodeResult] = msgspec.field(default_factory=dict)
    phases: List[JourneyPhase] = msgspec.field(default_factory=list)
    summary: Dict[str, int] = msgspec.field(default_factory=dict)

    def state_of(self, service_id: str) -> Optional[NodeState]:
        result = self.services.get(service_id)
        return result.state if result is not None else None

    def ids_in_state(self, state: NodeState) -> List[str]:
        return [sid for sid, result in self.services.items() if result.state == state]


# =============================================================================
# DEFAULT FACT SCHEMA
# =============================================================================

_NATIONS = ("england", "scotland", "wales", "northern-ireland")

DEFAULT_FACT_FIELDS: Tuple[FactField, ...] = (
    # Demographics
    FactField(name="age", kind=FactKind.NUMBER, prompt="How old are you?"),
    FactField(name="nation", kind=FactKind.LABEL, labels=_NATIONS,
              prompt="Which UK nation do you live in?"),
    FactField(name="is_uk_resident", kind=FactKind.BOOLEAN, prompt="Do you normally live in the UK?"),
    FactField(name="citizenship", kind=FactKind.LABEL),
    FactField(name="immigration_status", kind=FactKind.LABEL),
    # Employment & income
    FactField(name="employment_status", kind=FactKind.LABEL,
              labels=("employed", "self-employed", "unemployed", "director", "retired", "student"),
              prompt="What is your employment status?"),
    FactField(name="annual_income", kind=FactKind.NUMBER, prompt="What is your annual income?"),
    FactField(name="weekly_income", kind=FactKind.NUMBER),
    FactField(name="weekly_earnings", kind=FactKind.NUMBER, prompt="What are your average weekly earnings?"),
    FactField(name="savings", kind=FactKind.NUMBER, prompt="How much do you have in savings?"),
    FactField(name="ni_qualifying_years", kind=FactKind.NUMBER),
    FactField(name="has_recent_ni_contributions", kind=FactKind.BOOLEAN,
              prompt="Have you paid National Insurance in the last 2-3 tax years?"),
    # Family
    FactField(name="is_pregnant", kind=FactKind.BOOLEAN, prompt="Are you pregnant?"),
    FactField(name="has_children", kind=FactKind.BOOLEAN, prompt="Do you have children?"),
    FactField(name="youngest_child_age", kind=FactKind.NUMBER, prompt="How old is your youngest child?"),
    FactField(name="number_of_children", kind=FactKind.NUMBER),
    FactField(name="is_single_parent", kind=FactKind.BOOLEAN),
    FactField(name="relationship_status", kind=FactKind.LABEL,
              labels=("single", "married", "civil_partnership", "cohabiting",
                      "separated", "divorced", "widowed"),
              prompt="What is your relationship status?"),
    # Health & disability
    FactField(name="has_disability", kind=FactKind.BOOLEAN),
    FactField(name="has_terminal_illness", kind=FactKind.BOOLEAN),
    FactField(name="has_long_term_health_condition", kind=FactKind.BOOLEAN),
    FactField(name="receives_pip", kind=FactKind.BOOLEAN),
    FactField(name="pip_daily_living_rate", kind=FactKind.LABEL, labels=("standard", "enhanced")),
    FactField(name="pip_mobility_rate", kind=FactKind.LABEL, labels=("standard", "enhanced")),
    # Caring
    FactField(name="is_carer", kind=FactKind.BOOLEAN),
    FactField(name="caring_hours_per_week", kind=FactKind.NUMBER),
    FactField(name="cared_for_receives_qualifying_benefit", kind=FactKind.BOOLEAN),
    FactField(name="is_in_full_time_education", kind=FactKind.BOOLEAN),
    # Property & assets
    FactField(name="is_homeowner", kind=FactKind.BOOLEAN),
    FactField(name="is_first_time_buyer", kind=FactKind.BOOLEAN),
    FactField(name="property_value", kind=FactKind.NUMBER),
    FactField(name="estate_value", kind=FactKind.NUMBER, prompt="Roughly what is the estate worth?"),
    FactField(name="has_mortgage", kind=FactKind.BOOLEAN),
    # Bereavement
    FactField(name="has_experienced_bereavement", kind=FactKind.BOOLEAN),
    FactField(name="death_registered", kind=FactKind.BOOLEAN),
    FactField(name="estate_has_sole_assets", kind=FactKind.BOOLEAN,
              prompt="Did the person who died own anything in their sole name?"),
    FactField(name="assets_held_jointly", kind=FactKind.BOOLEAN),
)


# =============================================================================
# SERIALIZATION HELPERS
# =============================================================================

# Pre-compiled encoders/decoders; reuse these instances across the application

_document_decoder = msgspec.json.Decoder(type=CatalogDocument)
_report_encoder = msgspec.json.Encoder()
_rule_decoder = msgspec.json.Decoder(type=Rule)


def decode_catalog_document(data: bytes) -> CatalogDocument:
    """Decode catalog JSON bytes into the typed document. Raises msgspec errors."""
    return _document_decoder.decode(data)


def decode_rule(data: bytes) -> Rule:
    """Decode a single rule tree from JSON bytes."""
    return _rule_decoder.decode(data)


def serialize_report(report: RelevanceReport) -> bytes:
    """Serialize a RelevanceReport to JSON bytes."""
    return _report_encoder.encode(report)
