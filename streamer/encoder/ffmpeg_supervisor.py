"""
FFmpeg process supervisor for the loop streamer.

This module provides FFmpegSupervisor, which owns the encoding subprocess:
spawning it over the current playlist files, draining its two output streams,
and terminating it with confirmed reaping.

Exactly one SubprocessHandle exists at a time. start() terminates and reaps any
previous process before spawning, so at most one encoder is ever alive.

Output streams:
- stdout carries the -progress key=value stream; a dedicated drain thread parses
  it into ProgressRecord objects and puts them on progress_queue.
- stderr carries human-readable diagnostics; a dedicated drain thread reads
  every line and broadcasts it to each subscriber queue (the playback parser,
  the diagnostic file sink). Subscriber queues are unbounded so a slow
  consumer never blocks the pipe.
"""

from __future__ import annotations

import logging
import queue
import subprocess
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, IO, List, Optional, Sequence

from streamer.encoder.command import COMMAND_VERSION, mask_secret
from streamer.encoder.progress import ProgressParser
from streamer.media.playlist import MediaFile, write_concat_playlist

logger = logging.getLogger(__name__)

# Lines that ffmpeg prints at info level but that indicate trouble
_PROBLEM_MARKERS = ("error", "invalid", "failed", "broken pipe", "impossible to open")

STDERR_TAIL_LINES = 50

CommandBuilder = Callable[[Path, Optional[Path]], List[str]]


@dataclass
class SubprocessHandle:
    """The single live encoder process and the threads draining it."""
    process: subprocess.Popen
    generation: int
    started_at: float
    playlist: List[MediaFile] = field(default_factory=list)
    stdout_thread: Optional[threading.Thread] = None
    stderr_thread: Optional[threading.Thread] = None

    @property
    def pid(self) -> int:
        return self.process.pid

    def is_alive(self) -> bool:
        return self.process.poll() is None


class FFmpegSupervisor:
    """
    Owns the encoding subprocess lifecycle (spawn, signal, reap) and its output streams.

    Args:
        command_builder: Callable (playlist_path, music_playlist_path) -> argv
        playlist_path: Where the filtered video playlist is written before each spawn
        music_playlist_path: Where the music playlist is written (when music is used)
        stop_grace_seconds: Time between SIGTERM and SIGKILL
        secret: String masked out of logged command lines (the stream key)
    """

    def __init__(
        self,
        command_builder: CommandBuilder,
        playlist_path: Path,
        music_playlist_path: Optional[Path] = None,
        stop_grace_seconds: float = 10.0,
        secret: str = "",
    ) -> None:
        self._command_builder = command_builder
        self._playlist_path = Path(playlist_path)
        self._music_playlist_path = Path(music_playlist_path) if music_playlist_path else None
        self._stop_grace_seconds = stop_grace_seconds
        self._secret = secret

        self.progress_queue: "queue.Queue" = queue.Queue()
        self._subscribers: List["queue.Queue"] = []
        self._subscribers_lock = threading.Lock()

        self._handle: Optional[SubprocessHandle] = None
        self._lifecycle_lock = threading.RLock()
        self._generation = 0
        self._closed = False

        self._stderr_tail: deque = deque(maxlen=STDERR_TAIL_LINES)

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    @property
    def generation(self) -> int:
        """Generation number of the current (or most recent) process."""
        return self._generation

    @property
    def handle(self) -> Optional[SubprocessHandle]:
        return self._handle

    def has_process(self) -> bool:
        return self._handle is not None

    def is_alive(self) -> bool:
        handle = self._handle
        return handle is not None and handle.is_alive()

    @property
    def returncode(self) -> Optional[int]:
        """Exit status of the current process if it has exited on its own."""
        handle = self._handle
        return handle.process.poll() if handle is not None else None

    @property
    def last_stderr(self) -> str:
        """Most recent diagnostic lines of the current or last process."""
        return "\n".join(self._stderr_tail)

    def subscribe(self) -> "queue.Queue":
        """
        Register a consumer of diagnostic lines.

        Every stderr line of every future process is put on the returned queue
        as a str (newline stripped).
        """
        q: "queue.Queue" = queue.Queue()
        with self._subscribers_lock:
            self._subscribers.append(q)
        return q

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(
        self,
        playlist: Sequence[MediaFile],
        music_playlist: Optional[Sequence[MediaFile]] = None,
    ) -> Optional[SubprocessHandle]:
        """
        Write the playlist files and spawn the encoder.

        Refuses (logs a warning, returns None) when the playlist is empty or
        close() has been called.
        Any previous process is stopped and reaped first.

        Args:
            playlist: Filtered video playlist, in playback order
            music_playlist: Optional replacement audio playlist

        Returns:
            The new SubprocessHandle, or None if nothing was started

        Raises:
            OSError: If the ffmpeg executable cannot be spawned
        """
        with self._lifecycle_lock:
            if self._closed:
                logger.warning("Supervisor is closed; not starting FFmpeg")
                return None

            if not playlist:
                logger.warning("No playable video files; not starting FFmpeg. Waiting for files to be added.")
                return None

            if self._handle is not None:
                logger.warning("start() called with a live encoder; stopping it first")
                self.stop()

            write_concat_playlist(self._playlist_path, playlist)
            music_path = None
            if music_playlist and self._music_playlist_path is not None:
                music_path = write_concat_playlist(self._music_playlist_path, music_playlist)
            elif music_playlist is not None:
                logger.warning("Music playlist given but no music playlist path configured; ignoring music")

            cmd = self._command_builder(self._playlist_path, music_path)
            logger.info(
                f"Starting FFmpeg stream (command v{COMMAND_VERSION}, "
                f"{len(playlist)} video file(s){', with music' if music_path else ''})..."
            )
            logger.debug(f"FFmpeg command: {' '.join(mask_secret(cmd, self._secret))}")

            process = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                bufsize=0,
            )

            self._generation += 1
            self._stderr_tail.clear()
            handle = SubprocessHandle(
                process=process,
                generation=self._generation,
                started_at=time.monotonic(),
                playlist=list(playlist),
            )

            handle.stdout_thread = threading.Thread(
                target=self._stdout_drain,
                args=(process.stdout, handle.generation),
                daemon=True,
                name=f"FFmpegProgressDrain-{handle.generation}",
            )
            handle.stderr_thread = threading.Thread(
                target=self._stderr_drain,
                args=(process.stderr,),
                daemon=True,
                name=f"FFmpegStderrDrain-{handle.generation}",
            )
            handle.stdout_thread.start()
            handle.stderr_thread.start()

            self._handle = handle
            logger.info(f"FFmpeg started with PID: {process.pid}")
            return handle

    def stop(self, timeout: Optional[float] = None) -> Optional[int]:
        """
        Terminate the current process and confirm it has been reaped.

        Sends SIGTERM, waits up to the grace period, then escalates to SIGKILL
        and waits without limit. Drain threads finish on EOF once the process
        is gone.

        Args:
            timeout: Grace period override in seconds

        Returns:
            Exit status of the reaped process, or None if none was running
        """
        with self._lifecycle_lock:
            handle = self._handle
            if handle is None:
                return None

            grace = self._stop_grace_seconds if timeout is None else timeout
            process = handle.process

            if process.poll() is None:
                logger.info(f"Stopping FFmpeg process (PID: {process.pid})...")
                try:
                    process.terminate()
                except ProcessLookupError:
                    pass
                try:
                    process.wait(timeout=grace)
                except subprocess.TimeoutExpired:
                    logger.warning(f"FFmpeg (PID: {process.pid}) did not exit within {grace:.1f}s, killing")
                    process.kill()
                    process.wait()
            else:
                # Already exited on its own; still reap it
                process.wait()

            returncode = process.returncode
            logger.info(f"FFmpeg (PID: {process.pid}) exited with status {returncode}")

            for thread in (handle.stdout_thread, handle.stderr_thread):
                if thread is not None and thread.is_alive():
                    thread.join(timeout=1.0)
                    if thread.is_alive():
                        logger.warning(f"{thread.name} did not terminate within timeout")

            for stream in (process.stdout, process.stderr):
                if stream is not None:
                    try:
                        stream.close()
                    except OSError:
                        pass

            self._handle = None
            return returncode

    def close(self) -> Optional[int]:
        """
        Stop the current process and refuse every later start().

        Waits for a start() in progress to finish, so the process it spawns is
        reaped here too.
        """
        with self._lifecycle_lock:
            self._closed = True
            return self.stop()

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Drain threads
    # ------------------------------------------------------------------

    def _stdout_drain(self, stdout: Optional[IO[bytes]], generation: int) -> None:
        """Parse the progress stream until EOF."""
        if stdout is None:
            return
        parser = ProgressParser(generation)
        try:
            for raw in iter(stdout.readline, b""):
                if not isinstance(raw, bytes):
                    break
                record = parser.feed(raw.decode(errors="ignore"))
                if record is not None:
                    self.progress_queue.put(record)
        except (OSError, ValueError) as e:
            logger.debug(f"Progress stream read error (likely closed): {e}")
        logger.debug(f"FFmpeg progress drain thread exiting (generation {generation})")

    def _stderr_drain(self, stderr: Optional[IO[bytes]]) -> None:
        """Read diagnostic lines until EOF and broadcast them to subscribers."""
        if stderr is None:
            return
        try:
            for raw in iter(stderr.readline, b""):
                if not isinstance(raw, bytes):
                    break
                line = raw.decode(errors="ignore").rstrip()
                if not line:
                    continue
                if self._secret:
                    # ffmpeg echoes the output URL, stream key included
                    line = line.replace(self._secret, "****")
                self._stderr_tail.append(line)
                lowered = line.lower()
                if any(marker in lowered for marker in _PROBLEM_MARKERS):
                    logger.warning(f"[FFMPEG] {line}")
                else:
                    logger.debug(f"[FFMPEG] {line}")
                with self._subscribers_lock:
                    subscribers = list(self._subscribers)
                for q in subscribers:
                    q.put(line)
        except (OSError, ValueError) as e:
            logger.debug(f"Stderr read error (likely closed): {e}")
        logger.debug("FFmpeg stderr drain thread exiting")
