"""
WAYFINDER SESSION - Fact Store, Service Status Store and Snapshots

Pure key-value stores, one pair per conversation. Every mutation that
actually changes a value emits a ChangeEvent on the session's own bus;
the stores themselves have no evaluation logic.

Evaluation never reads the stores directly. It reads a Snapshot: an
immutable copy of facts, statuses and "today", taken per evaluation
call, so request/response callers can build one straight from a JSON
payload and skip server-side session state entirely.
"""
import time
from datetime import date, datetime
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Union

import msgspec

from core.ontology import (
    ServiceStatus,
    custom_fact_key,
    trigger_date_key,
)
from core.catalog import Catalog
from infrastructure.event_bus import EventBus, ChangeEvent, EventType


StatusLike = Union[ServiceStatus, str]


def _as_status(status: StatusLike) -> ServiceStatus:
    """Raises ValueError for strings outside the four known statuses."""
    if isinstance(status, ServiceStatus):
        return status
    return ServiceStatus(status)


# =============================================================================
# SNAPSHOT
# =============================================================================

class Snapshot(msgspec.Struct, kw_only=True, frozen=True):
    """
    Read-only view of everything the evaluator may look at.

    facts maps flat fact keys (including custom.* and trigger_dates.*)
    to values; statuses maps service ids to their recorded status.
    """
    facts: Mapping[str, Any] = msgspec.field(default_factory=dict)
    statuses: Mapping[str, ServiceStatus] = msgspec.field(default_factory=dict)
    today: date = msgspec.field(default_factory=date.today)

    def get_fact(self, key: str) -> Optional[Any]:
        return self.facts.get(key)

    def get_service_status(self, service_id: str) -> ServiceStatus:
        return self.statuses.get(service_id, ServiceStatus.UNKNOWN)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Snapshot":
        """
        Build a snapshot from a request payload.

        Accepted keys (all optional):
            facts:         {"age": 34, "nation": "england", ...}
            custom:        {"has_joint_account": true, ...}
            trigger_dates: {"birth": "2026-09-01", ...}
            services:      {"dwp-universal-credit": "receiving", ...}
            services_receiving / services_completed: lists of service ids
            today:         "2026-10-18"

        Raises:
            ValueError: Unknown status string or unparseable today
        """
        facts: Dict[str, Any] = {}
        for key, value in (payload.get("facts") or {}).items():
            if value is not None:
                facts[key] = value
        for name, value in (payload.get("custom") or {}).items():
            if value is not None:
                facts[custom_fact_key(name)] = value
        for event, value in (payload.get("trigger_dates") or {}).items():
            if value:
                facts[trigger_date_key(event)] = value

        statuses: Dict[str, ServiceStatus] = {}
        for sid in payload.get("services_receiving") or ():
            statuses[sid] = ServiceStatus.RECEIVING
        for sid in payload.get("services_completed") or ():
            statuses[sid] = ServiceStatus.COMPLETED
        for sid, status in (payload.get("services") or {}).items():
            statuses[sid] = _as_status(status)

        today = payload.get("today")
        if isinstance(today, str):
            today = date.fromisoformat(today)
        elif isinstance(today, datetime):
            today = today.date()

        return cls(
            facts=MappingProxyType(facts),
            statuses=MappingProxyType(statuses),
            today=today or date.today(),
        )


# =============================================================================
# STORES
# =============================================================================

class FactStore:
    """
    What is known about one user.

    Facts may be overwritten as the conversation progresses but are
    never deleted. Writing the value already stored emits nothing.
    """

    def __init__(self, bus: EventBus):
        self._bus = bus
        self._facts: Dict[str, Any] = {}

    def set_fact(self, key: str, value: Any) -> bool:
        """
        Store a fact. Returns True if the stored value changed.

        Raises:
            ValueError: If value is None (facts cannot be unset)
        """
        if value is None:
            raise ValueError(f"Cannot unset fact {key!r}: facts are never deleted")
        old = self._facts.get(key)
        if key in self._facts and old == value and type(old) is type(value):
            return False
        self._facts[key] = value
        self._bus.publish(ChangeEvent(
            type=EventType.FACT_SET,
            key=key,
            old_value=old,
            new_value=value,
            timestamp=time.time(),
        ))
        return True

    def get_fact(self, key: str) -> Optional[Any]:
        return self._facts.get(key)

    def set_custom(self, name: str, value: bool) -> bool:
        """Store an entry in the open boolean bag."""
        return self.set_fact(custom_fact_key(name), value)

    def set_trigger_date(self, trigger_event: str, value: Union[date, str]) -> bool:
        """Store the date a trigger event happened (or will happen)."""
        return self.set_fact(trigger_date_key(trigger_event), value)

    def as_dict(self) -> Dict[str, Any]:
        return dict(self._facts)

    def __contains__(self, key: str) -> bool:
        return key in self._facts

    def __len__(self) -> int:
        return len(self._facts)


class ServiceStatusStore:
    """Per-service status for one user. Absent means unknown."""

    def __init__(self, catalog: Catalog, bus: EventBus):
        self._catalog = catalog
        self._bus = bus
        self._statuses: Dict[str, ServiceStatus] = {}

    def set_service_status(self, service_id: str, status: StatusLike) -> bool:
        """
        Record the user's confirmed status for a service.

        Returns True if the stored status changed.

        Raises:
            ServiceNotFoundError: If the id is not in the catalog
            ValueError: If the status string is not a known status
        """
        self._catalog.get_service(service_id)
        new = _as_status(status)
        old = self.get_service_status(service_id)
        if old is new:
            return False
        self._statuses[service_id] = new
        self._bus.publish(ChangeEvent(
            type=EventType.SERVICE_STATUS_SET,
            key=service_id,
            old_value=old,
            new_value=new,
            timestamp=time.time(),
        ))
        return True

    def get_service_status(self, service_id: str) -> ServiceStatus:
        return self._statuses.get(service_id, ServiceStatus.UNKNOWN)

    def as_dict(self) -> Dict[str, ServiceStatus]:
        return dict(self._statuses)


# =============================================================================
# SESSION
# =============================================================================

class Session:
    """
    One user's conversation against a shared Catalog.

    Owns its stores and its bus; nothing here is shared between sessions.

    Usage:
        session = Session(catalog)
        session.set_fact("savings", 4000)
        session.set_service_status("gro-register-birth", "completed")
        snapshot = session.snapshot()
    """

    def __init__(self, catalog: Catalog, today: Optional[date] = None):
        self.catalog = catalog
        self.bus = EventBus()
        self.facts = FactStore(self.bus)
        self.statuses = ServiceStatusStore(catalog, self.bus)
        self._today = today

    @property
    def today(self) -> date:
        return self._today or date.today()

    def set_fact(self, key: str, value: Any) -> bool:
        return self.facts.set_fact(key, value)

    def get_fact(self, key: str) -> Optional[Any]:
        return self.facts.get_fact(key)

    def set_facts(self, facts: Mapping[str, Any]) -> int:
        """Apply several answers at once; returns how many changed."""
        return sum(1 for key, value in facts.items() if self.facts.set_fact(key, value))

    def set_service_status(self, service_id: str, status: StatusLike) -> bool:
        return self.statuses.set_service_status(service_id, status)

    def get_service_status(self, service_id: str) -> ServiceStatus:
        return self.statuses.get_service_status(service_id)

    def snapshot(self, today: Optional[date] = None) -> Snapshot:
        """Freeze the current facts and statuses for one evaluation."""
        return Snapshot(
            facts=MappingProxyType(self.facts.as_dict()),
            statuses=MappingProxyType(self.statuses.as_dict()),
            today=today or self.today,
        )
