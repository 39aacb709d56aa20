"""
Unit tests for infrastructure/logger.py - the event journal
"""
from datetime import datetime, timezone

from infrastructure.logger import (
    EventBuffer,
    FileJournal,
    GraphEventKind,
    GraphEventLogger,
    GraphEventRecord,
    JournalConfig,
    configure_logger,
    get_logger,
    reset_logger,
)


def record(sequence, event_type="GRAPH_REBUILT", timestamp="2026-01-01T00:00:00", **fields):
    return GraphEventRecord(timestamp=timestamp, sequence=sequence, event_type=event_type, **fields)


# =============================================================================
# EVENT BUFFER TESTS
# =============================================================================

def test_ring_buffer_drops_oldest():
    buffer = EventBuffer(max_size=3)
    for i in range(5):
        buffer.append(record(i))

    assert len(buffer) == 3
    assert [e.sequence for e in buffer.get_last(10)] == [2, 3, 4]
    assert [e.sequence for e in buffer.get_last(2)] == [3, 4]


def test_buffer_filters():
    buffer = EventBuffer()
    buffer.append(record(1, timestamp="2026-01-01T00:00:00"))
    buffer.append(record(2, "CONDITION_RESOLVED", timestamp="2026-01-02T00:00:00", condition_id="c1"))
    buffer.append(record(3, "CONDITION_FAILED", timestamp="2026-01-03T00:00:00", condition_id="c2"))

    assert [e.sequence for e in buffer.get_since("2026-01-02T00:00:00")] == [2, 3]
    assert [e.sequence for e in buffer.get_by_type("CONDITION_FAILED")] == [3]
    assert [e.sequence for e in buffer.get_by_condition("c1")] == [2]

    buffer.clear()
    assert len(buffer) == 0


# =============================================================================
# LOGGER TESTS
# =============================================================================

def test_sequences_increase():
    journal = GraphEventLogger()

    first = journal.log_graph_rebuilt(10, 12, skipped=1)
    second = journal.log_query_changed(True, 3)

    assert second.sequence == first.sequence + 1
    assert first.event_type == GraphEventKind.GRAPH_REBUILT.value
    assert [e.event_type for e in journal.get_recent_events()] == ["GRAPH_REBUILT", "QUERY_CHANGED"]


def test_condition_timeline():
    journal = GraphEventLogger()
    journal.log_condition_resolved("c1", generation=2, match_count=4)
    journal.log_condition_discarded("c1", generation=1)
    journal.log_condition_failed("c2", generation=3, error="down")

    timeline = journal.get_condition_timeline("c1")

    assert [t["type"] for t in timeline] == ["CONDITION_RESOLVED", "CONDITION_DISCARDED"]
    assert timeline[0]["match_count"] == 4
    assert journal.get_condition_timeline("c2")[0]["error"] == "down"


def test_subscribers():
    journal = GraphEventLogger()
    seen = []

    def broken(event):
        raise ValueError("subscriber bug")

    journal.subscribe(broken)
    journal.subscribe(seen.append)
    journal.log_pins_released(["n1", "n2"])
    journal.unsubscribe(seen.append)
    journal.log_pins_released(["n3"])

    assert len(seen) == 1
    assert seen[0].node_ids == ["n1", "n2"]


def test_file_journal_round_trip(tmp_path):
    config = JournalConfig(enable_file_log=True, log_path=tmp_path)
    with GraphEventLogger(config) as journal:
        journal.log_graph_rebuilt(5, 4)
        journal.log_condition_failed("c1", 2, "boom")

    today = datetime.now(timezone.utc).strftime("%Y-%m-%d")
    events = FileJournal(tmp_path).read_log(today)

    assert [e.event_type for e in events] == ["GRAPH_REBUILT", "CONDITION_FAILED"]
    assert events[1].error == "boom"


def test_file_journal_skips_corrupt_lines(tmp_path):
    (tmp_path / "graph_events_2026-01-01.jsonl").write_text(
        '{"timestamp": "t", "sequence": 1, "event_type": "GRAPH_REBUILT"}\n'
        'not json\n'
        '\n'
        '{"timestamp": "t", "sequence": 2, "event_type": "QUERY_CHANGED", "active": true}\n'
    )

    events = FileJournal(tmp_path).read_log("2026-01-01")

    assert [e.sequence for e in events] == [1, 2]
    assert FileJournal(tmp_path).read_log("1999-01-01") == []


def test_default_log_path():
    assert JournalConfig().log_path is not None


def test_global_journal():
    first = get_logger()
    assert get_logger() is first

    configured = configure_logger(JournalConfig(buffer_size=5))
    assert get_logger() is configured
    assert configured.config.buffer_size == 5

    reset_logger()
    assert get_logger() is not configured
