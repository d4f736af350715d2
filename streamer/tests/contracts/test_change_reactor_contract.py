"""
Contract tests for the Change Reactor and the directory watch source.

Debounce windows are shortened to keep the suite fast; timings are asserted
with generous margins.

Covers:
- a burst of N events with gaps shorter than the window gives exactly one
  hard restart, one window after the last event
- separate bursts give separate restarts
- watchdog notifications become FileEvents, recursively for every directory
"""

import logging
import queue
import time
from unittest.mock import MagicMock, Mock

import pytest
from watchdog.events import (
    DirCreatedEvent,
    DirModifiedEvent,
    FileClosedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from streamer.playback.signals import RestartKind
from streamer.watch.change_reactor import ChangeReactor
from streamer.watch.directory_source import DirectoryWatchSource, FileEvent, LibraryChangeHandler

WINDOW = 0.3


@pytest.fixture
def timed_policy():
    policy = Mock()
    policy.requested_at = []

    def request(kind, reason, exclude=None):
        policy.requested_at.append((time.monotonic(), kind, reason))
        return True

    policy.request.side_effect = request
    return policy


@pytest.fixture
def reactor(timed_policy):
    events = queue.Queue()
    reactor = ChangeReactor(events, timed_policy, debounce_seconds=WINDOW)
    reactor.start()
    yield reactor
    reactor.stop()
    reactor.join(timeout=2.0)


def wait_for(predicate, timeout=3.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class TestDebounce:
    def test_burst_gives_exactly_one_restart_after_last_event(self, reactor, timed_policy, caplog):
        caplog.set_level(logging.INFO)
        last_event_at = None
        for n in range(5):
            reactor.events.put(FileEvent("close_write", f"/videos/part{n}.mp4"))
            last_event_at = time.monotonic()
            time.sleep(WINDOW / 3)

        assert wait_for(lambda: timed_policy.requested_at)
        time.sleep(WINDOW * 2)

        assert len(timed_policy.requested_at) == 1
        fired_at, kind, reason = timed_policy.requested_at[0]
        assert kind is RestartKind.HARD
        assert "part4.mp4" in reason
        assert fired_at - last_event_at >= WINDOW * 0.9
        assert "Further change detected" in caplog.text
        assert "Debounce timer finished" in caplog.text

    def test_separate_bursts_restart_separately(self, reactor, timed_policy):
        reactor.events.put(FileEvent("delete", "/videos/a.mp4"))
        assert wait_for(lambda: len(timed_policy.requested_at) == 1)

        reactor.events.put(FileEvent("moved_to", "/videos/b.mp4"))
        assert wait_for(lambda: len(timed_policy.requested_at) == 2)
        assert reactor.triggered == 2

    def test_stop_during_window_does_not_restart(self, timed_policy):
        events = queue.Queue()
        reactor = ChangeReactor(events, timed_policy, debounce_seconds=5.0)
        reactor.start()
        events.put(FileEvent("create", "/videos/a.mp4"))
        reactor.stop()
        reactor.join(timeout=2.0)

        assert not reactor.is_alive()
        assert timed_policy.requested_at == []


class TestDirectoryWatchSource:
    @pytest.fixture
    def events(self):
        return queue.Queue()

    @pytest.fixture
    def handler(self, events):
        return LibraryChangeHandler(events)

    @pytest.mark.parametrize("event,expected", [
        (FileCreatedEvent("/videos/new.mp4"), FileEvent("created", "/videos/new.mp4")),
        (FileClosedEvent("/videos/copy.mp4"), FileEvent("closed", "/videos/copy.mp4")),
        (FileDeletedEvent("/videos/old.mp4"), FileEvent("deleted", "/videos/old.mp4")),
        (FileModifiedEvent("/videos/a\nb.mp4"), FileEvent("modified", "/videos/a\nb.mp4")),
        (FileMovedEvent("/videos/.part", "/videos/ep1.mp4"), FileEvent("moved", "/videos/ep1.mp4")),
        (DirCreatedEvent("/videos/season2"), FileEvent("created", "/videos/season2")),
    ])
    def test_relevant_changes_are_queued(self, handler, events, event, expected):
        handler.dispatch(event)
        assert events.get_nowait() == expected

    def test_directory_mtime_changes_ignored(self, handler, events):
        handler.dispatch(DirModifiedEvent("/videos"))
        assert events.empty()

    def test_schedules_every_directory_recursively(self, events):
        observer = MagicMock()
        source = DirectoryWatchSource(["/videos", "/music"], events, observer_factory=lambda: observer)
        source.start()

        scheduled = [(c.args[1], c.kwargs["recursive"]) for c in observer.schedule.call_args_list]
        assert scheduled == [("/videos", True), ("/music", True)]
        observer.start.assert_called_once()

        source.stop()
        observer.stop.assert_called_once()
        observer.join.assert_called_once()

    def test_real_file_copy_reaches_queue(self, tmp_path, events):
        nested = tmp_path / "season1"
        nested.mkdir()
        source = DirectoryWatchSource([tmp_path], events)
        source.start()
        try:
            (nested / "ep1.mp4").write_bytes(b"x")
            received = events.get(timeout=5.0)
        finally:
            source.stop()

        assert received.path.startswith(str(tmp_path))
        assert not source.is_alive()
