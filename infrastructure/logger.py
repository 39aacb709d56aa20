"""
ANNOGRAPH EVENT JOURNAL - The Temporal Debugger

Records every engine-level event (graph rebuilds, condition resolutions,
query changes, pin releases) with a timestamp and sequence number so a
session can be inspected after the fact.

Architecture:
- GraphEventLogger: Core logging interface
- FileJournal: JSON-lines file logging, rotated daily
- EventBuffer: In-memory ring buffer for recent events

Usage:
    journal = GraphEventLogger()
    journal.log_graph_rebuilt(node_count=12, link_count=20, skipped=1)
    journal.log_condition_resolved("c1", generation=3, match_count=4)

    for event in journal.get_recent_events(10):
        print(f"{event.timestamp}: {event.event_type}")
"""
import msgspec
from typing import Optional, Dict, List, Any, Callable
from datetime import datetime, timezone
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from collections import deque
import threading
import logging
import io


logger = logging.getLogger(__name__)


# =============================================================================
# EVENT TYPES
# =============================================================================

class GraphEventKind(str, Enum):
    """Types of journal entries."""
    GRAPH_REBUILT = "GRAPH_REBUILT"
    CONDITION_RESOLVED = "CONDITION_RESOLVED"
    CONDITION_DISCARDED = "CONDITION_DISCARDED"
    CONDITION_FAILED = "CONDITION_FAILED"
    QUERY_CHANGED = "QUERY_CHANGED"
    PINS_RELEASED = "PINS_RELEASED"


class GraphEventRecord(msgspec.Struct, kw_only=True):
    """One journal entry."""
    timestamp: str
    sequence: int
    event_type: str                     # GraphEventKind value

    # Graph rebuilds
    node_count: int = 0
    link_count: int = 0
    skipped: int = 0

    # Conditions
    condition_id: Optional[str] = None
    generation: int = 0
    match_count: int = 0
    error: Optional[str] = None

    # Query / pins
    active: bool = False
    node_ids: List[str] = msgspec.field(default_factory=list)


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass
class JournalConfig:
    """Configuration for the event journal."""
    enable_file_log: bool = False       # Enable file-based logging
    log_path: Optional[Path] = None     # Directory for log files
    buffer_size: int = 10000            # In-memory buffer size

    def __post_init__(self):
        if self.log_path is None:
            self.log_path = Path("./workspace/logs")


# =============================================================================
# EVENT BUFFER
# =============================================================================

class EventBuffer:
    """
    Thread-safe ring buffer for recent journal events.

    Provides O(1) append and O(n) query for time-based filtering.
    """

    def __init__(self, max_size: int = 10000):
        self._buffer: deque[GraphEventRecord] = deque(maxlen=max_size)
        self._lock = threading.RLock()
        self._sequence = 0

    def append(self, event: GraphEventRecord) -> None:
        with self._lock:
            self._buffer.append(event)

    def get_since(self, timestamp: str) -> List[GraphEventRecord]:
        """Get all events since a timestamp."""
        with self._lock:
            return [e for e in self._buffer if e.timestamp >= timestamp]

    def get_last(self, n: int) -> List[GraphEventRecord]:
        """Get the last n events."""
        with self._lock:
            items = list(self._buffer)
            return items[-n:] if len(items) >= n else items

    def get_by_type(self, event_type: str) -> List[GraphEventRecord]:
        with self._lock:
            return [e for e in self._buffer if e.event_type == event_type]

    def get_by_condition(self, condition_id: str) -> List[GraphEventRecord]:
        with self._lock:
            return [e for e in self._buffer if e.condition_id == condition_id]

    def next_sequence(self) -> int:
        with self._lock:
            self._sequence += 1
            return self._sequence

    def clear(self) -> None:
        with self._lock:
            self._buffer.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffer)


# =============================================================================
# FILE JOURNAL
# =============================================================================

class FileJournal:
    """
    File-based event journal.

    Writes events as newline-delimited JSON for easy parsing.
    Rotates logs daily.
    """

    def __init__(self, log_path: Path):
        self._log_path = log_path
        self._current_file: Optional[io.TextIOWrapper] = None
        self._current_date: Optional[str] = None
        self._lock = threading.Lock()
        self._encoder = msgspec.json.Encoder()

        log_path.mkdir(parents=True, exist_ok=True)

    def write(self, event: GraphEventRecord) -> None:
        """Write an event to the journal file."""
        with self._lock:
            self._ensure_file()
            try:
                line = self._encoder.encode(event).decode("utf-8") + "\n"
                if self._current_file:
                    self._current_file.write(line)
                    self._current_file.flush()
            except OSError as e:
                logger.error(f"FileJournal error: {e}")

    def _ensure_file(self) -> None:
        """Ensure we have a valid file handle for today."""
        today = datetime.now(timezone.utc).strftime("%Y-%m-%d")

        if self._current_date != today:
            if self._current_file:
                self._current_file.close()

            filepath = self._log_path / f"graph_events_{today}.jsonl"
            self._current_file = open(filepath, "a", encoding="utf-8")
            self._current_date = today

    def close(self) -> None:
        with self._lock:
            if self._current_file:
                self._current_file.close()
                self._current_file = None

    def read_log(self, date: str) -> List[GraphEventRecord]:
        """Read events from a specific date's journal. Corrupt lines are skipped."""
        filepath = self._log_path / f"graph_events_{date}.jsonl"

        if not filepath.exists():
            return []

        events = []
        decoder = msgspec.json.Decoder(type=GraphEventRecord)

        with open(filepath, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    events.append(decoder.decode(line.encode()))
                except msgspec.DecodeError:
                    logger.warning(f"Skipping corrupt journal line in {filepath}")

        return events


# =============================================================================
# GRAPH EVENT LOGGER (Main Interface)
# =============================================================================

class GraphEventLogger:
    """
    Main logging interface for engine events.

    Provides a unified API for logging events to:
    - In-memory buffer (always)
    - File-based journal (configurable)
    - Subscribers (callbacks)
    """

    def __init__(self, config: Optional[JournalConfig] = None):
        self.config = config or JournalConfig()

        self._buffer = EventBuffer(self.config.buffer_size)
        self._file_journal: Optional[FileJournal] = None

        if self.config.enable_file_log and self.config.log_path:
            self._file_journal = FileJournal(self.config.log_path)

        self._subscribers: List[Callable[[GraphEventRecord], None]] = []

    def _now(self) -> str:
        return datetime.now(timezone.utc).isoformat()

    def _emit(self, event: GraphEventRecord) -> GraphEventRecord:
        """Emit an event to all destinations."""
        self._buffer.append(event)

        if self._file_journal:
            self._file_journal.write(event)

        for subscriber in self._subscribers:
            try:
                subscriber(event)
            except Exception as e:
                logger.error(f"Journal subscriber error: {e}", exc_info=True)

        return event

    def _event(self, event_type: GraphEventKind, **fields: Any) -> GraphEventRecord:
        return self._emit(GraphEventRecord(
            timestamp=self._now(),
            sequence=self._buffer.next_sequence(),
            event_type=event_type.value,
            **fields,
        ))

    # =========================================================================
    # LOGGING METHODS
    # =========================================================================

    def log_graph_rebuilt(self, node_count: int, link_count: int, skipped: int = 0) -> GraphEventRecord:
        return self._event(
            GraphEventKind.GRAPH_REBUILT,
            node_count=node_count,
            link_count=link_count,
            skipped=skipped,
        )

    def log_condition_resolved(self, condition_id: str, generation: int, match_count: int) -> GraphEventRecord:
        return self._event(
            GraphEventKind.CONDITION_RESOLVED,
            condition_id=condition_id,
            generation=generation,
            match_count=match_count,
        )

    def log_condition_discarded(self, condition_id: str, generation: int) -> GraphEventRecord:
        """A resolution completed under a stale generation and was dropped."""
        return self._event(
            GraphEventKind.CONDITION_DISCARDED,
            condition_id=condition_id,
            generation=generation,
        )

    def log_condition_failed(self, condition_id: str, generation: int, error: str) -> GraphEventRecord:
        return self._event(
            GraphEventKind.CONDITION_FAILED,
            condition_id=condition_id,
            generation=generation,
            error=error,
        )

    def log_query_changed(self, active: bool, match_count: int = 0) -> GraphEventRecord:
        return self._event(
            GraphEventKind.QUERY_CHANGED,
            active=active,
            match_count=match_count,
        )

    def log_pins_released(self, node_ids: List[str]) -> GraphEventRecord:
        return self._event(GraphEventKind.PINS_RELEASED, node_ids=list(node_ids))

    # =========================================================================
    # QUERY METHODS
    # =========================================================================

    def get_recent_events(self, n: int = 100) -> List[GraphEventRecord]:
        return self._buffer.get_last(n)

    def get_events_since(self, timestamp: str) -> List[GraphEventRecord]:
        return self._buffer.get_since(timestamp)

    def get_events_by_type(self, event_type: str) -> List[GraphEventRecord]:
        return self._buffer.get_by_type(event_type)

    def get_condition_timeline(self, condition_id: str) -> List[Dict[str, Any]]:
        """Simplified list of everything that happened to one condition."""
        return [
            {
                "time": e.timestamp,
                "type": e.event_type,
                "generation": e.generation,
                "match_count": e.match_count,
                "error": e.error,
            }
            for e in self._buffer.get_by_condition(condition_id)
        ]

    # =========================================================================
    # SUBSCRIPTION
    # =========================================================================

    def subscribe(self, callback: Callable[[GraphEventRecord], None]) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[GraphEventRecord], None]) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def close(self) -> None:
        if self._file_journal:
            self._file_journal.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

_global_logger: Optional[GraphEventLogger] = None


def get_logger() -> GraphEventLogger:
    """Get or create the global journal instance."""
    global _global_logger
    if _global_logger is None:
        _global_logger = GraphEventLogger()
    return _global_logger


def configure_logger(config: JournalConfig) -> GraphEventLogger:
    """Configure and return a new global journal."""
    global _global_logger
    if _global_logger:
        _global_logger.close()
    _global_logger = GraphEventLogger(config)
    return _global_logger


def reset_logger() -> None:
    """Close and drop the global journal. Used by tests for isolation."""
    global _global_logger
    if _global_logger:
        _global_logger.close()
    _global_logger = None


def configure_logging(level: str = "INFO") -> None:
    """Configure stdlib logging for CLI use."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
