"""
Restart Policy.

Every restart trigger (filesystem change, stall, crash, premature loop,
reshuffle) is a RestartRequest on one channel drained by one executor thread;
only that thread stops and respawns the encoder.

Restart kinds:
- HARD: stop -> (append exclusion) -> rebuild raw playlist -> revalidate ->
  refilter -> start
- SOFT: stop -> start over the existing filtered playlist, after the backoff
  delay for consecutive soft restarts
- RESHUFFLE: stop -> shuffle the existing filtered playlist -> start

A request is accepted only when no other request is queued or executing;
anything arriving in that window is coalesced (dropped).
"""

from __future__ import annotations

import enum
import logging
import queue
import random
import threading
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Union

from streamer.errors import ExclusionEmptyResult, StreamerError, ValidationEmpty
from streamer.media.compatibility import CompatibilityValidator
from streamer.media.exclusions import ExclusionList, filter_excluded
from streamer.media.playlist import (
    MediaFile,
    MediaKind,
    PlaylistOrder,
    build_playlist,
    shuffled,
)
from streamer.playback.signals import CursorReset, RestartKind, RestartRequest, StallReset

logger = logging.getLogger(__name__)

DEFAULT_BACKOFF_MS = [1000, 2000, 4000, 8000, 10000]

_STOP = object()


class PolicyState(enum.Enum):
    """Restart policy state."""
    STARTING = 1
    RUNNING = 2
    RESTARTING = 3
    IDLE = 4  # No playable files; waiting for a filesystem change
    STOPPED = 5


class PlaylistPipeline:
    """
    raw -> validated -> filtered playlist refinement for one rebuild.

    Args:
        video_dir: Video source directory
        video_extensions: Accepted video extensions
        order: Initial ordering of the raw playlist
        validator: CompatibilityValidator
        exclusions: ExclusionList (re-read on every rebuild)
        music_dir: Music source directory, or None when music is disabled
        music_extensions: Accepted music extensions
        rng: Random source for shuffling
    """

    def __init__(
        self,
        video_dir: Path,
        video_extensions: Iterable[str],
        order: PlaylistOrder,
        validator: CompatibilityValidator,
        exclusions: ExclusionList,
        music_dir: Optional[Path] = None,
        music_extensions: Iterable[str] = (),
        rng: Optional[random.Random] = None,
    ) -> None:
        self.video_dir = Path(video_dir)
        self.video_extensions = tuple(video_extensions)
        self.order = order
        self.validator = validator
        self.exclusions = exclusions
        self.music_dir = Path(music_dir) if music_dir is not None else None
        self.music_extensions = tuple(music_extensions)
        self.rng = rng

    def rebuild(self) -> List[MediaFile]:
        """
        Produce a fresh filtered playlist from disk.

        Raises:
            ValidationEmpty: If no file is compatible (or none was found)
            ExclusionEmptyResult: If every validated file is excluded
        """
        raw = build_playlist(self.video_dir, self.video_extensions, self.order, MediaKind.VIDEO, self.rng)
        if not raw:
            raise ValidationEmpty(f"No video files found in {self.video_dir}")

        validated, _ = self.validator.validate(raw)
        if not validated:
            raise ValidationEmpty(f"None of {len(raw)} video file(s) passed validation")

        return filter_excluded(validated, self.exclusions.load())

    def build_music(self) -> Optional[List[MediaFile]]:
        """Shuffled music playlist, or None when music is disabled or none is found."""
        if self.music_dir is None:
            return None
        music = build_playlist(
            self.music_dir, self.music_extensions, PlaylistOrder.SHUFFLED, MediaKind.AUDIO, self.rng
        )
        if not music:
            logger.warning(f"No music files found in {self.music_dir}; keeping the videos' own audio")
            return None
        return music


class RestartPolicy(threading.Thread):
    """
    Serialized executor for restart requests.

    Args:
        supervisor: FFmpegSupervisor owning the encoder
        pipeline: PlaylistPipeline used by hard restarts
        exclusions: ExclusionList receiving suspect basenames
        parser_inbox: Inbox of the playback parser (receives CursorReset)
        monitor_inbox: Inbox of the stall monitor (receives StallReset)
        backoff_ms: Delay schedule for consecutive soft restarts
        rng: Random source for reshuffles
    """

    def __init__(
        self,
        supervisor,
        pipeline: PlaylistPipeline,
        exclusions: ExclusionList,
        parser_inbox: "queue.Queue",
        monitor_inbox: "queue.Queue",
        backoff_ms: Optional[Sequence[int]] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        super().__init__(name="RestartPolicy", daemon=True)
        self.supervisor = supervisor
        self.pipeline = pipeline
        self.exclusions = exclusions
        self.parser_inbox = parser_inbox
        self.monitor_inbox = monitor_inbox
        self.backoff_ms = list(backoff_ms) if backoff_ms else list(DEFAULT_BACKOFF_MS)
        self.rng = rng

        self._requests: "queue.Queue" = queue.Queue()
        self._lock = threading.Lock()
        self._in_flight = False
        self._shutdown_event = threading.Event()

        self._state = PolicyState.STARTING
        self._current_kind: Optional[RestartKind] = None
        self._filtered: List[MediaFile] = []
        self._music: Optional[List[MediaFile]] = None
        self._consecutive_soft = 0
        self.restart_count = 0

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    @property
    def state(self) -> PolicyState:
        return self._state

    @property
    def current_kind(self) -> Optional[RestartKind]:
        """Kind of the restart being executed, when RESTARTING."""
        return self._current_kind

    @property
    def filtered_playlist(self) -> List[MediaFile]:
        return list(self._filtered)

    @property
    def busy(self) -> bool:
        """True while a request is queued or executing."""
        with self._lock:
            return self._in_flight

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def request(
        self,
        kind: RestartKind,
        reason: Union[str, StreamerError],
        exclude: Optional[str] = None,
    ) -> bool:
        """
        File a restart request.

        Args:
            kind: RestartKind
            reason: Human-readable reason, or the error that caused it
            exclude: Basename to add to the exclusion list (hard restarts only)

        Returns:
            True if accepted, False if coalesced into the restart in flight
        """
        if isinstance(reason, StreamerError):
            reason = f"{type(reason).__name__}: {reason}"
        with self._lock:
            if self._in_flight or self._shutdown_event.is_set():
                logger.debug(f"Coalescing {kind.value} restart request ({reason}); a restart is already in flight")
                return False
            self._in_flight = True
        self._requests.put(RestartRequest(kind=kind, reason=reason, exclude=exclude))
        return True

    def note_healthy(self) -> None:
        """The encoder is producing output; the next soft restart starts the backoff over."""
        with self._lock:
            self._consecutive_soft = 0

    def stop(self) -> None:
        self._shutdown_event.set()
        self._requests.put(_STOP)

    # ------------------------------------------------------------------
    # Executor
    # ------------------------------------------------------------------

    def run(self) -> None:
        logger.info("Restart policy executor started")
        while True:
            message = self._requests.get()
            if message is _STOP or self._shutdown_event.is_set():
                break
            try:
                self.execute(message)
            except Exception as e:
                logger.error(f"{message.kind.value} restart failed: {e}", exc_info=True)
                self._state = PolicyState.IDLE
            finally:
                self._current_kind = None
                with self._lock:
                    self._in_flight = False
        self._state = PolicyState.STOPPED
        logger.info("Restart policy executor exiting")

    def execute(self, request: RestartRequest) -> None:
        """Carry out one restart. Runs on the executor thread (tests call it directly)."""
        self._state = PolicyState.RESTARTING
        self._current_kind = request.kind
        self.restart_count += 1
        logger.info(f"Restarting stream ({request.kind.value}): {request.reason}")

        self.supervisor.stop()
        if self._shutdown_event.is_set():
            logger.info(f"Shutting down; abandoning {request.kind.value} restart")
            return

        if request.kind is RestartKind.HARD:
            if not self._rebuild(request.exclude):
                return
            with self._lock:
                self._consecutive_soft = 0
        elif request.kind is RestartKind.SOFT:
            if not self._backoff():
                return
        elif request.kind is RestartKind.RESHUFFLE:
            self._filtered = shuffled(self._filtered, self.rng)
            logger.info(f"Reshuffled {len(self._filtered)} file(s)")

        self._respawn(request.reason)

    def _rebuild(self, exclude: Optional[str]) -> bool:
        if exclude:
            self.exclusions.add(exclude)
        try:
            self._filtered = self.pipeline.rebuild()
        except ValidationEmpty as e:
            logger.error(f"{e}. Stream not started; waiting for files to be added.")
            self._go_idle()
            return False
        except ExclusionEmptyResult as e:
            logger.error(f"{e}. Edit {self.exclusions.path} to re-enable files.")
            self._go_idle()
            return False
        self._music = self.pipeline.build_music()
        return True

    def _backoff(self) -> bool:
        with self._lock:
            attempt = self._consecutive_soft
            self._consecutive_soft += 1
        delay_ms = self.backoff_ms[min(attempt, len(self.backoff_ms) - 1)]
        if delay_ms:
            logger.warning(f"Soft restart #{attempt + 1} in a row; waiting {delay_ms}ms before respawning")
            if self._shutdown_event.wait(delay_ms / 1000.0):
                return False
        return True

    def _reset_observers(self, reason: str) -> None:
        self.parser_inbox.put(CursorReset(playlist=list(self._filtered)))
        self.monitor_inbox.put(StallReset(reason=reason))

    def _go_idle(self) -> None:
        self._filtered = []
        self._reset_observers("idle")
        self._state = PolicyState.IDLE

    def _respawn(self, reason: str) -> None:
        if not self._filtered:
            logger.warning("No filtered playlist to restart with; waiting for files to be added.")
            self._go_idle()
            return

        if self._shutdown_event.is_set():
            logger.info("Shutting down; not respawning FFmpeg")
            return

        self._reset_observers(reason)
        handle = self.supervisor.start(self._filtered, self._music)
        self._state = PolicyState.RUNNING if handle is not None else PolicyState.IDLE
