# streamer/service.py

import functools
import logging
import queue
import threading

from streamer.config import StreamerConfig
from streamer.encoder.command import build_ffmpeg_command
from streamer.encoder.diagnostic_sink import DiagnosticLogSink
from streamer.encoder.ffmpeg_supervisor import FFmpegSupervisor
from streamer.media.compatibility import CompatibilityValidator
from streamer.media.exclusions import ExclusionList
from streamer.media.playlist import PlaylistOrder
from streamer.media.probe import MediaProber
from streamer.playback.event_parser import PlaybackEventParser
from streamer.playback.signals import RestartKind
from streamer.playback.stall_monitor import StallMonitor
from streamer.runtime.restart_policy import PlaylistPipeline, RestartPolicy
from streamer.watch.change_reactor import ChangeReactor
from streamer.watch.directory_source import DirectoryWatchSource

logger = logging.getLogger(__name__)


class StreamerService:
    """
    Wires every component together and owns their threads.

    Startup files one hard restart request, so the first playlist goes through
    exactly the same build -> validate -> filter -> start path as every later
    rebuild.
    """

    def __init__(self, config: StreamerConfig):
        self.config = config
        music_dir = config.music_dir if config.enable_music else None

        self.exclusions = ExclusionList(config.exclusion_list_path)
        self.prober = MediaProber(timeout=config.probe_timeout_seconds)
        self.validator = CompatibilityValidator(
            self.prober,
            validate_audio=config.validate_audio,
            min_ratio=config.framerate_min_ratio,
            integer_tolerance=config.framerate_integer_tolerance,
        )
        self.pipeline = PlaylistPipeline(
            video_dir=config.video_dir,
            video_extensions=config.video_extensions,
            order=PlaylistOrder(config.playlist_order),
            validator=self.validator,
            exclusions=self.exclusions,
            music_dir=music_dir,
            music_extensions=config.music_extensions,
        )

        self.supervisor = FFmpegSupervisor(
            command_builder=functools.partial(build_ffmpeg_command, config),
            playlist_path=config.playlist_path,
            music_playlist_path=config.music_playlist_path if music_dir is not None else None,
            stop_grace_seconds=config.stop_grace_seconds,
            secret=config.stream_key,
        )

        # One inbox per consumer of the diagnostic stream
        parser_lines = self.supervisor.subscribe()
        sink_lines = self.supervisor.subscribe()
        self.signals: "queue.Queue" = queue.Queue()

        self.parser = PlaybackEventParser(
            parser_lines,
            self.signals,
            video_dir=config.video_dir,
            music_dir=music_dir,
            shuffle_on_loop=config.shuffle_on_loop,
        )
        self.policy = RestartPolicy(
            self.supervisor,
            self.pipeline,
            self.exclusions,
            parser_inbox=parser_lines,
            monitor_inbox=self.signals,
            backoff_ms=config.restart_backoff_ms,
        )
        self.monitor = StallMonitor(
            self.supervisor,
            self.policy,
            self.signals,
            poll_interval=config.stall_poll_interval_seconds,
            threshold=config.stall_threshold,
        )
        self.sink = DiagnosticLogSink(sink_lines, config.diagnostic_log_path)

        self.fs_events: "queue.Queue" = queue.Queue()
        watched = [config.video_dir] + ([music_dir] if music_dir is not None else [])
        self.watch = DirectoryWatchSource(watched, self.fs_events)
        self.reactor = ChangeReactor(self.fs_events, self.policy, config.restart_debounce_seconds)

        self.running = False
        self._shutdown_event = threading.Event()
        self._stop_lock = threading.Lock()
        self._stopped = False

    def start(self):
        """Start every thread and request the initial stream."""
        logger.info("=== Streamer starting ===")
        logger.info(f"Using filelist, which will be available on the host at {self.config.playlist_path}")
        loaded = self.exclusions.load()
        if loaded:
            logger.info(f"{len(loaded)} file(s) on the exclusion list {self.exclusions.path}")

        self.sink.start()
        self.parser.start()
        self.policy.start()
        self.monitor.start()
        self.reactor.start()
        self.watch.start()
        self.running = True

        self.policy.request(RestartKind.HARD, "startup")
        logger.info("=== Streamer started ===")

    def run_forever(self):
        """Block until stop() is called."""
        try:
            while not self._shutdown_event.wait(1.0):
                pass
        except KeyboardInterrupt:
            self.stop()

    def stop(self):
        """
        Stop all threads and the encoder.

        Triggers stop first so no new restart is filed, then the executor, then
        the encoder itself (closed against later starts and confirmed reaped), then
        the observers.
        """
        with self._stop_lock:
            if self._stopped:
                return
            self._stopped = True

        logger.info("Shutting down streamer...")
        self.running = False

        self.watch.stop()
        self.reactor.stop()
        self.monitor.stop()
        self.policy.stop()

        for thread in (self.reactor, self.monitor, self.policy):
            if thread.is_alive():
                thread.join(timeout=self.config.stop_grace_seconds)
                if thread.is_alive():
                    logger.warning(f"{thread.name} did not terminate within timeout")

        self.supervisor.close()

        self.parser.stop()
        self.sink.stop()
        for thread in (self.parser, self.sink):
            if thread.is_alive():
                thread.join(timeout=2.0)

        self._shutdown_event.set()
        logger.info("Streamer stopped")
