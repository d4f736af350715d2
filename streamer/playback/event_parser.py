"""
Playback Event Parser.

Consumes the encoder's diagnostic lines and derives what is playing now. The
only contract relied on is the concat demuxer announcing each entry with
"Opening '<path>' for reading". From those events the parser keeps a
PlaybackCursor and emits signals on the monitor's inbox:

- PlaybackAdvance for every announced entry (liveness for the stall monitor)
- ReshuffleRequested when a loop completes and shuffle-on-loop is enabled
- PrematureLoopDetected when the first file comes back before the rest of the
  playlist was announced

The parser never restarts anything itself.
"""

from __future__ import annotations

import logging
import os
import queue
import re
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, Sequence

from streamer.encoder.command import OPENING_PATTERN
from streamer.media.playlist import MediaFile, MediaKind
from streamer.playback.signals import (
    CursorReset,
    PlaybackAdvance,
    PrematureLoopDetected,
    ReshuffleRequested,
)

logger = logging.getLogger(__name__)

_OPENING_RE = re.compile(OPENING_PATTERN)

_STOP = object()


@dataclass
class PlaybackCursor:
    """
    Position within the filtered playlist, owned by the parser thread.

    index is 1-based and counts video entries announced since the last loop
    boundary. loop_count is 0 until the first file has been opened once.
    """
    playlist: List[MediaFile] = field(default_factory=list)
    index: int = 0
    loop_count: int = 0
    last_basename: Optional[str] = None

    @property
    def total(self) -> int:
        return len(self.playlist)

    @property
    def first_basename(self) -> Optional[str]:
        return self.playlist[0].basename if self.playlist else None

    def reset(self, playlist: Sequence[MediaFile]) -> None:
        self.playlist = list(playlist)
        self.index = 0
        self.loop_count = 0
        self.last_basename = None

    def entry_after_last_announced(self) -> Optional[str]:
        """Basename of the entry following the last announced one, if it can be located."""
        if self.last_basename is None:
            return None
        names = [item.basename for item in self.playlist]
        try:
            position = names.index(self.last_basename)
        except ValueError:
            return None
        if position + 1 >= len(names):
            return None
        return names[position + 1]


def _under(path: str, directory: Optional[Path]) -> bool:
    if directory is None:
        return False
    root = os.path.join(os.path.abspath(str(directory)), "")
    return os.path.abspath(path).startswith(root)


class PlaybackEventParser(threading.Thread):
    """
    Thread turning diagnostic lines into playback signals.

    The inbox is the diagnostic subscriber queue itself; the restart policy
    puts a CursorReset on it before every respawn, so every line of the old
    process is handled before the cursor moves to the new playlist.

    Args:
        lines: Subscriber queue from FFmpegSupervisor.subscribe()
        signals: Inbox of the stall monitor
        video_dir: Video source directory
        music_dir: Music source directory (None when music is disabled)
        shuffle_on_loop: Emit ReshuffleRequested at every completed loop
        clock: Time source for advance timestamps
    """

    def __init__(
        self,
        lines: "queue.Queue",
        signals: "queue.Queue",
        video_dir: Path,
        music_dir: Optional[Path] = None,
        shuffle_on_loop: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(name="PlaybackEventParser", daemon=True)
        self.lines = lines
        self.signals = signals
        self.video_dir = Path(video_dir)
        self.music_dir = Path(music_dir) if music_dir is not None else None
        self.shuffle_on_loop = shuffle_on_loop
        self._clock = clock
        self.cursor = PlaybackCursor()

    def stop(self) -> None:
        self.lines.put(_STOP)

    def run(self) -> None:
        logger.info("Playback event parser started")
        while True:
            message = self.lines.get()
            if message is _STOP:
                break
            try:
                if isinstance(message, CursorReset):
                    self.cursor.reset(message.playlist)
                    logger.debug(f"Playback cursor reset ({self.cursor.total} file(s))")
                else:
                    self.feed(message)
            except Exception as e:
                # Keep parsing; a bad line must not blind the monitor
                logger.error(f"Playback event parser error: {e}", exc_info=True)
        logger.info("Playback event parser exiting")

    def classify(self, path: str) -> Optional[MediaKind]:
        """Music when under the music directory, video when under the video directory."""
        if _under(path, self.music_dir):
            return MediaKind.AUDIO
        if _under(path, self.video_dir):
            return MediaKind.VIDEO
        return None

    def feed(self, line: str) -> None:
        """Handle one diagnostic line."""
        match = _OPENING_RE.search(line)
        if match is None:
            return
        path = match.group("path")
        kind = self.classify(path)
        if kind is None:
            # The concat list files themselves are announced too
            logger.debug(f"Ignoring open of {path}")
            return

        self.signals.put(PlaybackAdvance(path=path, kind=kind, timestamp=self._clock()))
        if kind is MediaKind.VIDEO:
            self._on_video(os.path.basename(path))

    def _on_video(self, basename: str) -> None:
        cursor = self.cursor
        if cursor.first_basename is not None and basename == cursor.first_basename:
            self._on_first_file(basename)
        else:
            cursor.index += 1
            logger.info(f"Now playing {basename} ({cursor.index}/{cursor.total})")
        cursor.last_basename = basename

    def _on_first_file(self, basename: str) -> None:
        cursor = self.cursor
        if cursor.loop_count == 0:
            cursor.loop_count = 1
            cursor.index = 1
            logger.info(f"Now playing {basename} (1/{cursor.total}), loop 1")
            return

        if cursor.index < cursor.total:
            suspect = cursor.entry_after_last_announced()
            logger.warning(
                f"Premature loop: {basename} reopened after {cursor.index} of {cursor.total} file(s)"
                + (f"; suspect {suspect}" if suspect else "; suspect unknown")
            )
            self.signals.put(PrematureLoopDetected(suspect=suspect, index=cursor.index, total=cursor.total))
            cursor.index = 1
            return

        cursor.loop_count += 1
        cursor.index = 1
        logger.info(f"Loop {cursor.loop_count - 1} complete, now playing {basename} (1/{cursor.total})")
        if self.shuffle_on_loop:
            self.signals.put(ReshuffleRequested(loop_count=cursor.loop_count))
