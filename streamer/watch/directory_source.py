"""
Directory-watch event source.

A watchdog Observer watches the source directories recursively; its handler
turns each relevant notification into a FileEvent on the reactor's queue.
"""

from __future__ import annotations

import logging
import os
import queue
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Sequence

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)

# closed: a write finished (copy done); moved covers renames in, out and within
WATCHED_EVENTS = ("closed", "created", "deleted", "modified", "moved")

OBSERVER_JOIN_SECONDS = 2.0


@dataclass(frozen=True)
class FileEvent:
    """One filesystem notification."""
    event: str
    path: str

    def __str__(self) -> str:
        return f"{self.event} on {self.path}"


class LibraryChangeHandler(FileSystemEventHandler):
    """Queues a FileEvent for every change that can alter the playlist."""

    def __init__(self, events: "queue.Queue") -> None:
        super().__init__()
        self.events = events

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.event_type not in WATCHED_EVENTS:
            return
        # A directory's own mtime changes with every entry; the entry event is enough
        if event.is_directory and event.event_type == "modified":
            return
        path = event.dest_path if event.event_type == "moved" and event.dest_path else event.src_path
        self.events.put(FileEvent(event=event.event_type, path=os.fsdecode(path)))


class DirectoryWatchSource:
    """
    Feeds FileEvents for the watched directories onto a queue.

    Args:
        directories: Directories watched recursively
        events: Queue receiving FileEvent objects
        observer_factory: Builds the watchdog observer (Observer by default)
    """

    def __init__(
        self,
        directories: Sequence[Path],
        events: "queue.Queue",
        observer_factory: Callable[[], Observer] = Observer,
    ) -> None:
        self.directories = [Path(d) for d in directories]
        self.events = events
        self.handler = LibraryChangeHandler(events)
        self._observer_factory = observer_factory
        self._observer: Optional[Observer] = None

    def start(self) -> None:
        if self._observer is not None:
            return
        observer = self._observer_factory()
        for directory in self.directories:
            observer.schedule(self.handler, str(directory), recursive=True)
        observer.start()
        self._observer = observer
        logger.info(f"Watching for changes in {', '.join(str(d) for d in self.directories)}...")

    def stop(self) -> None:
        observer = self._observer
        if observer is None:
            return
        observer.stop()
        observer.join(timeout=OBSERVER_JOIN_SECONDS)
        if observer.is_alive():
            logger.warning("Directory watcher did not terminate within timeout")
        self._observer = None

    def is_alive(self) -> bool:
        observer = self._observer
        return observer is not None and observer.is_alive()
