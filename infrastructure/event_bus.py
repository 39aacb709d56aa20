"""
Lightweight event bus for decoupled knowledge graph notifications.

Follows publisher-subscriber pattern so the Renderer, the event journal
and any UI layer can react to graph rebuilds, query changes and pin
releases without the engine knowing about them.

Design Principles:
- Publisher-subscriber pattern (decoupled)
- Supports both sync and async handlers
- Non-blocking (async handlers scheduled via create_task)
- Singleton for global access
- Type-safe events via msgspec

Architecture:
    GraphBuilder / QueryEngine / PinBoard -> EventBus -> [Renderer, Journal, UI]

Usage:
    from infrastructure.event_bus import get_event_bus, GraphEvent, EventType

    def on_rebuilt(event: GraphEvent):
        print(event.payload["node_count"])

    get_event_bus().subscribe(EventType.GRAPH_REBUILT, on_rebuilt)
"""
from typing import Callable, List, Dict, Any, Optional, Set
from enum import Enum
import msgspec
import asyncio
import time
from collections import defaultdict
import logging


logger = logging.getLogger("annograph.event_bus")


class EventType(str, Enum):
    """Types of events published by the engine."""
    GRAPH_REBUILT = "graph_rebuilt"
    QUERY_CHANGED = "query_changed"
    CONDITION_RESOLVED = "condition_resolved"
    CONDITION_DISCARDED = "condition_discarded"
    CONDITION_FAILED = "condition_failed"
    PINS_RELEASED = "pins_released"


class GraphEvent(msgspec.Struct, kw_only=True):
    """
    Event emitted when engine state changes.

    Attributes:
        type: Type of event (GRAPH_REBUILT, QUERY_CHANGED, etc.)
        payload: Event-specific data (node counts, condition ids, etc.)
        timestamp: Unix timestamp when event occurred
        source: Source of event ("graph_builder", "query_engine", "pin_board")
    """
    type: EventType
    payload: Dict[str, Any]
    timestamp: float
    source: str


class EventBus:
    """
    Event bus for engine notifications.

    Thread Safety:
        NOT thread-safe. The engine is single-threaded and cooperative;
        async handlers are scheduled on the running loop.

    Performance:
        - O(1) event publishing
        - O(n) notification per event type (where n = subscriber count)
        - Non-blocking for async handlers (fire-and-forget)
    """

    def __init__(self):
        """Initialize empty subscriber lists."""
        self._subscribers: Dict[EventType, List[Callable]] = defaultdict(list)
        self._async_subscribers: Dict[EventType, List[Callable]] = defaultdict(list)
        self._tasks: Set[asyncio.Task] = set()

    def subscribe(self, event_type: EventType, handler: Callable[[GraphEvent], None]):
        """Subscribe to events with a synchronous handler."""
        if handler not in self._subscribers[event_type]:
            self._subscribers[event_type].append(handler)
            logger.debug(f"Subscribed sync handler to {event_type.value}")

    def subscribe_async(self, event_type: EventType, handler: Callable[[GraphEvent], Any]):
        """Subscribe to events with an async handler."""
        if handler not in self._async_subscribers[event_type]:
            self._async_subscribers[event_type].append(handler)
            logger.debug(f"Subscribed async handler to {event_type.value}")

    def publish(self, event: GraphEvent):
        """
        Publish an event to all subscribers.

        Note:
            - Sync handlers run immediately (blocking)
            - Async handlers are scheduled and run in the background
            - Exceptions in handlers are logged but don't propagate; async
              handler tasks are held until done so their failures are logged
        """
        logger.debug(
            f"Publishing {event.type.value} from {event.source} "
            f"(payload keys: {list(event.payload.keys())})"
        )

        for handler in list(self._subscribers[event.type]):
            try:
                handler(event)
            except Exception as e:
                logger.error(
                    f"Error in sync handler for {event.type.value}: {e}",
                    exc_info=True
                )

        for handler in list(self._async_subscribers[event.type]):
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.warning(
                    f"Cannot schedule async handler for {event.type.value}: "
                    "no event loop running"
                )
                continue
            try:
                task = loop.create_task(handler(event))
            except Exception as e:
                logger.error(
                    f"Error scheduling async handler for {event.type.value}: {e}",
                    exc_info=True
                )
                continue
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                f"Error in async handler: {error}",
                exc_info=(type(error), error, error.__traceback__)
            )

    async def drain(self):
        """Wait for every scheduled async handler to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def unsubscribe(self, event_type: EventType, handler: Callable):
        """Unsubscribe a handler (must be the same instance)."""
        if handler in self._subscribers[event_type]:
            self._subscribers[event_type].remove(handler)
            logger.debug(f"Unsubscribed sync handler from {event_type.value}")

        if handler in self._async_subscribers[event_type]:
            self._async_subscribers[event_type].remove(handler)
            logger.debug(f"Unsubscribed async handler from {event_type.value}")

    def clear_subscribers(self, event_type: Optional[EventType] = None):
        """
        Clear all subscribers for an event type (or all types).

        Warning:
            This is primarily for testing.
        """
        if event_type is None:
            self._subscribers.clear()
            self._async_subscribers.clear()
            logger.info("Cleared all event subscribers")
        else:
            self._subscribers[event_type].clear()
            self._async_subscribers[event_type].clear()
            logger.info(f"Cleared subscribers for {event_type.value}")

    def subscriber_count(self, event_type: Optional[EventType] = None) -> int:
        """Count sync + async subscribers for one event type (or all)."""
        if event_type is None:
            total = sum(len(handlers) for handlers in self._subscribers.values())
            total += sum(len(handlers) for handlers in self._async_subscribers.values())
            return total
        return (
            len(self._subscribers[event_type]) +
            len(self._async_subscribers[event_type])
        )


# =============================================================================
# SINGLETON INSTANCE
# =============================================================================

_event_bus: Optional[EventBus] = None


def get_event_bus() -> EventBus:
    """Get the global event bus instance (singleton)."""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
        logger.info("Initialized global event bus")
    return _event_bus


def reset_event_bus() -> None:
    """Drop the global instance. Used by tests for isolation."""
    global _event_bus
    _event_bus = None


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def publish(event_type: EventType, payload: Dict[str, Any], source: str) -> None:
    """Publish an event on the global bus, stamped with the current time."""
    get_event_bus().publish(GraphEvent(
        type=event_type,
        payload=payload,
        timestamp=time.time(),
        source=source,
    ))


def publish_graph_rebuilt(
    node_count: int,
    link_count: int,
    skipped: int = 0,
    source: str = "graph_builder",
):
    """Publish GRAPH_REBUILT after a full rebuild."""
    publish(
        EventType.GRAPH_REBUILT,
        {
            "node_count": node_count,
            "link_count": link_count,
            "skipped": skipped,
        },
        source,
    )


def publish_query_changed(
    active: bool,
    match_count: int = 0,
    object_type: Optional[str] = None,
    source: str = "query_engine",
):
    """Publish QUERY_CHANGED whenever the published predicate changes."""
    publish(
        EventType.QUERY_CHANGED,
        {
            "active": active,
            "match_count": match_count,
            "object_type": object_type,
        },
        source,
    )


def publish_pins_released(node_ids: List[str], source: str = "pin_board"):
    """Publish PINS_RELEASED after an unpin-all."""
    publish(EventType.PINS_RELEASED, {"node_ids": node_ids}, source)
