"""
WAYFINDER INFRASTRUCTURE - System-Level Modules

This package contains infrastructure components:
- catalog_loader: msgspec decoding and load-time catalog validation
- config: TOML-backed engine configuration
- event_bus: Session-scoped pub/sub for fact and status changes
"""

from infrastructure.event_bus import EventBus, ChangeEvent, EventType
from infrastructure.config import EngineConfig, load_engine_config

__all__ = [
    "EventBus",
    "ChangeEvent",
    "EventType",
    "EngineConfig",
    "load_engine_config",
]
