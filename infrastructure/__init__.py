"""
ANNOGRAPH INFRASTRUCTURE - System-Level Modules

This package contains infrastructure components:
- config: Knowledge graph settings (TOML + environment)
- event_bus: Publish/subscribe for rebuild, query and pin events
- logger: Event journal (ring buffer + JSONL)
- store: Annotation Store protocol, in-memory store and search index
"""

from infrastructure.config import KnowledgeGraphSettings, ConfigError, load_settings
from infrastructure.event_bus import EventBus, EventType, GraphEvent, get_event_bus
from infrastructure.logger import GraphEventLogger, get_logger

__all__ = [
    "KnowledgeGraphSettings",
    "ConfigError",
    "load_settings",
    "EventBus",
    "EventType",
    "GraphEvent",
    "get_event_bus",
    "GraphEventLogger",
    "get_logger",
]
