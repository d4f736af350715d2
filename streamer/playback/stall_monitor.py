"""
Stall Monitor.

A fixed-interval poll loop over the encoder's progress records. Each tick:

1. Drain the signal inbox first. Premature-loop and reshuffle signals trigger
   their restart immediately, bypassing the stall counter.
2. Wait at most one poll interval for a progress record. Once one arrives,
   let the rest of the interval pass, then take every record queued since
   and judge the newest one of the current encoder.
3. No record: a dead process is a crash (soft restart); a live one counts as
   a stall tick.
4. Zero or unknown speed counts as a stall tick; a real speed, or a playback
   advance newer than the last one seen, resets the counter.
5. At the threshold, request a hard restart that excludes the file that was
   playing.

A "progress=end" record means the encoder finished on its own: soft restart.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Optional

from streamer.errors import PrematureLoop, SubprocessCrash, SubprocessStall
from streamer.media.playlist import MediaKind
from streamer.playback.signals import (
    PlaybackAdvance,
    PrematureLoopDetected,
    ReshuffleRequested,
    RestartKind,
    StallReset,
)

logger = logging.getLogger(__name__)

DEFAULT_STALL_THRESHOLD = 4


@dataclass
class StallState:
    """Counters owned by the monitor thread."""
    consecutive_ticks: int = 0
    last_speed: Optional[float] = None
    last_advance: Optional[float] = None
    observed_advance: Optional[float] = None
    current_file: Optional[str] = None

    def reset(self) -> None:
        self.consecutive_ticks = 0
        self.last_speed = None
        self.last_advance = None
        self.observed_advance = None
        self.current_file = None


class StallMonitor(threading.Thread):
    """
    Watches progress telemetry and playback signals, and files restart requests.

    Args:
        supervisor: FFmpegSupervisor (queried for liveness and generation)
        policy: RestartPolicy receiving requests
        signals: Inbox shared by the playback parser and the restart policy
        poll_interval: Seconds per tick; also the progress read timeout
        threshold: Consecutive stall ticks before a hard restart
    """

    def __init__(
        self,
        supervisor,
        policy,
        signals: "queue.Queue",
        poll_interval: float = 5.0,
        threshold: int = DEFAULT_STALL_THRESHOLD,
    ) -> None:
        super().__init__(name="StallMonitor", daemon=True)
        self.supervisor = supervisor
        self.policy = policy
        self.signals = signals
        self.poll_interval = poll_interval
        self.threshold = threshold
        self.state = StallState()
        self._shutdown_event = threading.Event()

    def stop(self) -> None:
        self._shutdown_event.set()

    def run(self) -> None:
        logger.info(
            f"Stall monitor started (poll every {self.poll_interval}s, threshold {self.threshold} tick(s))"
        )
        while not self._shutdown_event.is_set():
            try:
                self.tick()
            except Exception as e:
                logger.error(f"Stall monitor tick failed: {e}", exc_info=True)
                self._shutdown_event.wait(self.poll_interval)
        logger.info("Stall monitor exiting")

    # ------------------------------------------------------------------
    # One tick
    # ------------------------------------------------------------------

    def tick(self) -> None:
        if self._drain_signals():
            return

        if self.policy.busy or not self.supervisor.has_process():
            # Restarting, or idle waiting for playable files
            self._shutdown_event.wait(self.poll_interval)
            return

        deadline = time.monotonic() + self.poll_interval
        try:
            first = self.supervisor.progress_queue.get(timeout=self.poll_interval)
        except queue.Empty:
            first = None

        record = None
        ended = False
        if first is not None:
            # One judgement per poll interval, however often ffmpeg reports
            remaining = deadline - time.monotonic()
            if remaining > 0 and self._shutdown_event.wait(remaining):
                return
            record, ended = self._latest_progress(first)
            if record is None:
                return

        if record is None:
            if not self.supervisor.is_alive():
                logger.error(f"FFmpeg exited unexpectedly\n{self.supervisor.last_stderr}")
                self.state.reset()
                self.policy.request(
                    RestartKind.SOFT,
                    SubprocessCrash(f"exit status {self.supervisor.returncode}"),
                )
                return
            self._count("no progress reported")
        elif ended:
            logger.warning("FFmpeg reported end of progress without being asked to stop")
            self.state.reset()
            self.policy.request(RestartKind.SOFT, SubprocessCrash("encoder reported end of stream"))
            return
        else:
            self.state.last_speed = record.speed
            if record.zero_throughput:
                self._count(f"speed {record.fields.get('speed', 'N/A')}")
            else:
                if self.state.consecutive_ticks:
                    logger.info(f"Throughput recovered (speed {record.speed}x)")
                self.state.consecutive_ticks = 0
                self.policy.note_healthy()

        if self._advanced():
            self.state.consecutive_ticks = 0

        if self.state.consecutive_ticks >= self.threshold:
            self._declare_stall()

    def _latest_progress(self, first):
        """
        Take every queued record along with first; judge only the newest.

        Returns (newest record of the current encoder or None, whether any of
        its records reported progress=end).
        """
        records = [first]
        while True:
            try:
                records.append(self.supervisor.progress_queue.get_nowait())
            except queue.Empty:
                break

        generation = self.supervisor.generation
        current = [r for r in records if r.generation == generation]
        if len(current) < len(records):
            logger.debug(f"Discarded {len(records) - len(current)} progress record(s) of a replaced encoder")
        if not current:
            return None, False
        return current[-1], any(r.ended for r in current)

    def _count(self, reason: str) -> None:
        self.state.consecutive_ticks += 1
        logger.warning(f"Stall tick {self.state.consecutive_ticks}/{self.threshold}: {reason}")

    def _advanced(self) -> bool:
        state = self.state
        if state.last_advance is None:
            return False
        if state.observed_advance is not None and state.last_advance <= state.observed_advance:
            return False
        state.observed_advance = state.last_advance
        return True

    def _declare_stall(self) -> None:
        current = self.state.current_file
        logger.error(
            f"Stream stalled for {self.state.consecutive_ticks} consecutive tick(s)"
            + (f" while playing {current}" if current else "")
        )
        self.state.consecutive_ticks = 0
        self.policy.request(
            RestartKind.HARD,
            SubprocessStall(f"no throughput while playing {current}" if current else "no throughput"),
            exclude=current,
        )

    # ------------------------------------------------------------------
    # Inbox
    # ------------------------------------------------------------------

    def _drain_signals(self) -> bool:
        """Handle every pending message. Returns True if a restart was requested."""
        requested = False
        while True:
            try:
                message = self.signals.get_nowait()
            except queue.Empty:
                return requested

            if isinstance(message, PlaybackAdvance):
                self.state.last_advance = message.timestamp
                if message.kind is MediaKind.VIDEO:
                    self.state.current_file = message.basename
            elif isinstance(message, StallReset):
                self.state.reset()
                logger.debug(f"Stall state reset ({message.reason})")
            elif isinstance(message, PrematureLoopDetected):
                if message.suspect:
                    self.policy.request(
                        RestartKind.HARD,
                        PrematureLoop(f"looped after {message.index}/{message.total} file(s), suspect {message.suspect}"),
                        exclude=message.suspect,
                    )
                else:
                    self.policy.request(
                        RestartKind.RESHUFFLE,
                        PrematureLoop(f"looped after {message.index}/{message.total} file(s), suspect unknown"),
                    )
                requested = True
            elif isinstance(message, ReshuffleRequested):
                self.policy.request(RestartKind.RESHUFFLE, f"loop {message.loop_count - 1} complete")
                requested = True
            else:
                logger.warning(f"Stall monitor ignoring unexpected message {message!r}")
