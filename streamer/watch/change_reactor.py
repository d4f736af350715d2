"""
Change Reactor.

Debounces bursts of filesystem events into a single hard restart. The first
event of a burst starts the quiet window; every further event restarts it.
One restart is requested once the window passes with no new event, so N
events with gaps shorter than the window give exactly one restart, the
window length after the last event.
"""

from __future__ import annotations

import logging
import queue
import threading

from streamer.playback.signals import RestartKind

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 5.0

_STOP = object()


class ChangeReactor(threading.Thread):
    """
    Args:
        events: Queue of FileEvent objects from the watch source
        policy: RestartPolicy receiving hard restart requests
        debounce_seconds: Quiet window before reacting
    """

    def __init__(self, events: "queue.Queue", policy, debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS) -> None:
        super().__init__(name="ChangeReactor", daemon=True)
        self.events = events
        self.policy = policy
        self.debounce_seconds = debounce_seconds
        self.triggered = 0

    def stop(self) -> None:
        self.events.put(_STOP)

    def run(self) -> None:
        while True:
            first = self.events.get()
            if first is _STOP:
                break
            last = self._debounce(first)
            if last is None:
                break
            self._react(last)
        logger.debug("Change reactor exiting")

    def _debounce(self, first):
        """Consume events until the quiet window passes. Returns the last event, or None on stop."""
        logger.info(f"Change detected ({first}). Debouncing for {self.debounce_seconds:g}s...")
        last = first
        while True:
            try:
                event = self.events.get(timeout=self.debounce_seconds)
            except queue.Empty:
                return last
            if event is _STOP:
                return None
            last = event
            logger.info(f"Further change detected ({event}). Resetting debounce timer.")

    def _react(self, last) -> None:
        logger.info(f"Debounce timer finished. Final change was: {last}. Restarting stream...")
        self.triggered += 1
        accepted = self.policy.request(RestartKind.HARD, f"filesystem change ({last})")
        if not accepted:
            logger.info("A restart is already in flight; this change is folded into it")
