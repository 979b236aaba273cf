"""Tests for delivery sink module."""

import pytest

from src.filewatcher.models import ChangeBatch, ChangeEvent, EventType, ProjectWatchConfig
from src.watchhub.exceptions import ProtocolViolationError
from src.watchhub.registry import WatchRegistry
from src.watchhub.sessions import SessionBroadcaster
from src.watchhub.sink import DeliverySink
from src.watchhub.violations import ViolationKind, ViolationRecorder


def batch(ts, *events, project_id="p1"):
    return ChangeBatch(project_id, ts, tuple(events))


def ev(path, event_type, ts=0):
    return ChangeEvent(path, event_type, False, ts)


@pytest.fixture
def registry():
    registry = WatchRegistry(SessionBroadcaster(), ViolationRecorder())
    registry.register(ProjectWatchConfig("p1", "/work/p1"))
    return registry


@pytest.fixture
def sink(registry):
    return DeliverySink(registry)


class TestDeliverySink:
    """Tests for DeliverySink class."""

    def test_accepts_and_logs(self, sink):
        result = sink.accept(batch(10, ev("/a", EventType.CREATE, 10)))
        assert result.accepted
        assert result.violations == []
        assert [e.path for e in sink.get_events("p1")] == ["/a"]
        assert sink.highest_timestamp("p1") == 10

    def test_out_of_order_is_severe(self, sink):
        sink.accept(batch(100, ev("/a", EventType.CREATE)))
        result = sink.accept(batch(99, ev("/b", EventType.CREATE)))

        assert not result.accepted
        assert result.violations[0].kind is ViolationKind.OUT_OF_ORDER
        assert sink.severe_error_occurred
        assert sink.highest_timestamp("p1") == 100
        assert [e.path for e in sink.get_events("p1")] == ["/a"]

    def test_equal_timestamp_allowed(self, sink):
        sink.accept(batch(100, ev("/a", EventType.CREATE)))
        assert sink.accept(batch(100, ev("/a", EventType.MODIFY))).accepted
        assert not sink.severe_error_occurred

    def test_timestamps_are_per_project(self, registry, sink):
        registry.register(ProjectWatchConfig("p2", "/work/p2"))
        sink.accept(batch(100, ev("/a", EventType.CREATE)))
        assert sink.accept(batch(5, ev("/a", EventType.CREATE), project_id="p2")).accepted

    def test_adjacent_duplicates_rejected(self, sink):
        result = sink.accept(batch(
            10,
            ev("/a", EventType.CREATE),
            ev("/b", EventType.MODIFY),
            ev("/a", EventType.CREATE),
        ))
        assert not result.accepted
        assert sink.duplicates_detected
        assert "/a" in result.violations[0].message
        assert sink.get_batches("p1") == []

    def test_non_adjacent_repeats_accepted(self, sink):
        result = sink.accept(batch(
            10,
            ev("/a", EventType.CREATE),
            ev("/a", EventType.DELETE),
            ev("/a", EventType.CREATE),
        ))
        assert result.accepted
        assert not sink.duplicates_detected

    def test_unregistered_project(self, registry, sink):
        registry.unregister("p1")
        result = sink.accept(batch(10, ev("/a", EventType.CREATE)))
        assert not result.accepted
        assert result.violations[0].kind is ViolationKind.UNKNOWN_PROJECT

    def test_strict_mode_raises(self):
        registry = WatchRegistry(SessionBroadcaster(), ViolationRecorder(strict=True))
        registry.register(ProjectWatchConfig("p1", "/work/p1"))
        sink = DeliverySink(registry)
        sink.accept(batch(100))
        with pytest.raises(ProtocolViolationError):
            sink.accept(batch(50))

    def test_downstream_receives_accepted_batches(self, registry):
        received = []
        sink = DeliverySink(registry, downstream=received.append)
        good = batch(10, ev("/a", EventType.CREATE))
        sink.accept(good)
        sink.accept(batch(5, ev("/b", EventType.CREATE)))
        assert received == [good]

    def test_clear(self, sink):
        sink.accept(batch(100, ev("/a", EventType.CREATE)))
        sink.clear("p1")
        assert sink.get_events("p1") == []
        assert sink.accept(batch(1, ev("/a", EventType.DELETE))).accepted

        sink.clear()
        assert sink.highest_timestamp("p1") is None

    def test_to_dict(self, sink):
        sink.accept(batch(100))
        result = sink.accept(batch(1))
        data = result.to_dict()
        assert data["accepted"] is False
        assert data["violations"][0]["kind"] == "out_of_order"
