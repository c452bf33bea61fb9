"""
WAYFINDER CORE - Central exports for the eligibility engine.

This module provides access to:
- The immutable Catalog and its exceptions
- Session-scoped stores and snapshots
- Rule evaluation, dependency resolution and relevance traversal
- Incremental recomputation
"""

from core.ontology import (
    Ternary,
    EdgeKind,
    ServiceStatus,
    DependencyCondition,
    NodeState,
    FactKind,
    DeadlineStatus,
)
from core.schemas import (
    Rule,
    Service,
    Edge,
    LifeEvent,
    EvalResult,
    NodeResult,
    RelevanceReport,
)
from core.catalog import (
    Catalog,
    CatalogError,
    ServiceNotFoundError,
    UnknownLifeEventError,
    DuplicateServiceError,
)
from core.session import FactStore, ServiceStatusStore, Snapshot, Session
from core.rules import RuleEvaluator, evaluate
from core.resolver import DependencyResolver
from core.traversal import RelevanceTraversal, evaluate_life_event
from core.recompute import RecomputeController

__all__ = [
    # Vocabulary
    "Ternary",
    "EdgeKind",
    "ServiceStatus",
    "DependencyCondition",
    "NodeState",
    "FactKind",
    "DeadlineStatus",
    # Data model
    "Rule",
    "Service",
    "Edge",
    "LifeEvent",
    "EvalResult",
    "NodeResult",
    "RelevanceReport",
    # Catalog
    "Catalog",
    "CatalogError",
    "ServiceNotFoundError",
    "UnknownLifeEventError",
    "DuplicateServiceError",
    # Session
    "FactStore",
    "ServiceStatusStore",
    "Snapshot",
    "Session",
    # Evaluation
    "RuleEvaluator",
    "evaluate",
    "DependencyResolver",
    "RelevanceTraversal",
    "evaluate_life_event",
    "RecomputeController",
]
