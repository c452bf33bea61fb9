"""
WAYFINDER ONTOLOGY - The Dictionary of the System

If schemas.py is the Grammar (how we structure sentences),
ontology.py is the Dictionary (the words we can use).

This module defines:
- Enums: The vocabulary (EdgeKind, ServiceStatus, NodeState, Ternary)
- Ternary combinators: Kleene three-valued NOT / ANY / ALL
- Fact key helpers: how custom facts, trigger dates and service
  statuses are addressed in one flat key space

Key Principle: Missing information is a VALUE, not an error.
A rule over an unknown fact evaluates to UNKNOWN, and UNKNOWN flows
through the combinators like any other value.
"""
from typing import Iterable, Literal, Optional
from enum import Enum


# =============================================================================
# ENUMS (The Vocabulary)
# =============================================================================

class Ternary(str, Enum):
    """Three-valued truth used by every rule evaluation."""
    TRUE = "TRUE"
    FALSE = "FALSE"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def of(cls, value: bool) -> "Ternary":
        return cls.TRUE if value else cls.FALSE


class EdgeKind(str, Enum):
    """Types of edges between services."""
    REQUIRES = "REQUIRES"    # Strict prerequisite: source must be completed first
    ENABLES = "ENABLES"      # Soft relevance: discoverability and gating only


class ServiceStatus(str, Enum):
    """
    The user's recorded relationship to a service.

    Transitions are driven only by explicit user confirmation.
    The engine never moves a service out of UNKNOWN on its own.
    """
    UNKNOWN = "unknown"
    RECEIVING = "receiving"
    COMPLETED = "completed"
    NOT_APPLICABLE = "not-applicable"


class DependencyCondition(str, Enum):
    """Status a dependency rule asks for."""
    RECEIVING = "receiving"
    COMPLETED = "completed"


class NodeState(str, Enum):
    """
    Per-service outcome of a relevance traversal.

    Precedence (first match wins):
    SATISFIED > LOCKED > HIDDEN_GATED > rule result
    """
    SATISFIED = "SATISFIED"          # Own status is completed
    LOCKED = "LOCKED"                # A REQUIRES predecessor is not completed
    HIDDEN_GATED = "HIDDEN_GATED"    # Gated and not reached via a satisfied predecessor
    NEEDS_INFO = "NEEDS_INFO"        # Rules evaluate to UNKNOWN
    INELIGIBLE = "INELIGIBLE"        # Rules evaluate to FALSE
    ACTIONABLE = "ACTIONABLE"        # Rules evaluate to TRUE


class FactKind(str, Enum):
    """Declared type of a first-class fact field."""
    NUMBER = "number"
    BOOLEAN = "boolean"
    LABEL = "label"


class DeadlineStatus(str, Enum):
    """Deadline outlook for services carrying a deadline rule."""
    OK = "ok"
    OVERDUE = "overdue"
    UNKNOWN_TRIGGER_DATE = "unknown_trigger_date"


# =============================================================================
# Type Aliases
# =============================================================================

ComparisonOperator = Literal[">=", ">", "<=", "<", "==", "!="]
FactKey = str
ServiceId = str

# Statuses that satisfy an ENABLES predecessor for gating purposes
SATISFYING_STATUSES = frozenset({ServiceStatus.RECEIVING, ServiceStatus.COMPLETED})


# =============================================================================
# FACT KEY SPACE
# =============================================================================

CUSTOM_PREFIX = "custom."
TRIGGER_DATE_PREFIX = "trigger_dates."
STATUS_PREFIX = "status:"


def custom_fact_key(name: str) -> FactKey:
    """Key of an entry in the open boolean bag."""
    return f"{CUSTOM_PREFIX}{name}"


def trigger_date_key(trigger_event: str) -> FactKey:
    """Key of the fact holding a trigger event's date."""
    return f"{TRIGGER_DATE_PREFIX}{trigger_event}"


def status_key(service_id: ServiceId) -> str:
    """Key under which a service's status appears in missing sets and indexes."""
    return f"{STATUS_PREFIX}{service_id}"


def is_custom_key(key: str) -> bool:
    return key.startswith(CUSTOM_PREFIX)


def is_trigger_date_key(key: str) -> bool:
    return key.startswith(TRIGGER_DATE_PREFIX)


def service_id_from_status_key(key: str) -> Optional[ServiceId]:
    """Inverse of status_key(); None for ordinary fact keys."""
    if key.startswith(STATUS_PREFIX):
        return key[len(STATUS_PREFIX):]
    return None


# =============================================================================
# TERNARY COMBINATORS (Kleene logic)
# =============================================================================

def ternary_not(value: Ternary) -> Ternary:
    """Negate TRUE <-> FALSE; UNKNOWN stays UNKNOWN."""
    if value is Ternary.TRUE:
        return Ternary.FALSE
    if value is Ternary.FALSE:
        return Ternary.TRUE
    return Ternary.UNKNOWN


def ternary_any(values: Iterable[Ternary]) -> Ternary:
    """TRUE if any TRUE, else UNKNOWN if any UNKNOWN, else FALSE. Empty -> FALSE."""
    saw_unknown = False
    for value in values:
        if value is Ternary.TRUE:
            return Ternary.TRUE
        if value is Ternary.UNKNOWN:
            saw_unknown = True
    return Ternary.UNKNOWN if saw_unknown else Ternary.FALSE


def ternary_all(values: Iterable[Ternary]) -> Ternary:
    """FALSE if any FALSE, else UNKNOWN if any UNKNOWN, else TRUE. Empty -> TRUE."""
    saw_unknown = False
    for value in values:
        if value is Ternary.FALSE:
            return Ternary.FALSE
        if value is Ternary.UNKNOWN:
            saw_unknown = True
    return Ternary.UNKNOWN if saw_unknown else Ternary.TRUE
