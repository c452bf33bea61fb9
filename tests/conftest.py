"""
Pytest configuration and shared fixtures for Wayfinder test suite.
"""
import sys
from datetime import date
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

FIXTURES = Path(__file__).parent / "fixtures"
CATALOG_PATH = FIXTURES / "catalog.json"

# A fixed "today" so deadline tests never depend on the wall clock
TODAY = date(2026, 10, 18)


@pytest.fixture
def today():
    return TODAY


@pytest.fixture(scope="session")
def catalog():
    """The fixture catalog, loaded once and shared read-only."""
    from infrastructure.catalog_loader import load_catalog_file
    return load_catalog_file(CATALOG_PATH)


@pytest.fixture
def session(catalog):
    """A fresh session against the fixture catalog."""
    from core.session import Session
    return Session(catalog, today=TODAY)


@pytest.fixture
def make_snapshot():
    """Build a Snapshot from plain facts / statuses."""
    from core.session import Snapshot
    from core.ontology import ServiceStatus

    def _make(facts=None, statuses=None, today=TODAY):
        return Snapshot(
            facts=dict(facts or {}),
            statuses={sid: ServiceStatus(s) for sid, s in (statuses or {}).items()},
            today=today,
        )
    return _make


@pytest.fixture
def make_catalog():
    """Build a small Catalog from service dicts, edge tuples and life events."""
    from infrastructure.catalog_loader import load_catalog

    def _make(services, edges=(), life_events=None):
        document = {
            "services": [dict({"name": s["id"]}, **s) for s in services],
            "edges": [{"from": a, "to": b, "kind": kind} for a, b, kind in edges],
            "life_events": life_events or [],
        }
        return load_catalog(document)
    return _make
