"""
Configuration management for the loop streamer.

Reads configuration from a .env file and environment variables with sensible defaults.
Variable names match the container's compose file so existing deployments keep working.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

from dotenv import load_dotenv


# Default .env file location
DEFAULT_ENV_FILE = Path("/etc/streamer/streamer.env")

DEFAULT_INGEST_URL = "rtmp://live.twitch.tv/app/"

VALID_VIDEO_ENCODERS = ("h264_vaapi", "libx264")
VALID_PLAYLIST_ORDERS = ("sorted", "shuffled")

_TRUE_VALUES = ("1", "true", "yes", "on")

logger = logging.getLogger(__name__)


def _load_env_file():
    """Load environment variables from .env file if it exists."""
    env_file = os.getenv("STREAMER_ENV_FILE", str(DEFAULT_ENV_FILE))
    env_path = Path(env_file)

    if env_path.exists():
        load_dotenv(env_path, override=False)  # Don't override existing env vars


def _parse_backoff_schedule(backoff_str: str) -> List[int]:
    """
    Parse restart backoff schedule from comma-separated string.

    Args:
        backoff_str: Comma-separated list of milliseconds (e.g., "1000,2000,4000")

    Returns:
        List of backoff delays in milliseconds

    Raises:
        ValueError: If parsing fails or values are invalid
    """
    if not backoff_str:
        raise ValueError("Backoff schedule cannot be empty")

    try:
        delays = [int(x.strip()) for x in backoff_str.split(",")]
        if not delays:
            raise ValueError("Backoff schedule must contain at least one value")
        if any(d < 0 for d in delays):
            raise ValueError("Backoff delays must not be negative")
        return delays
    except ValueError as e:
        if "invalid literal" in str(e) or "could not convert" in str(e):
            raise ValueError(f"Invalid backoff schedule format: {backoff_str} (must be comma-separated integers)")
        raise


def parse_extensions(value: str) -> Tuple[str, ...]:
    """
    Parse a file-type list such as '"mp4 mkv mpg"' or 'mp4,.MKV'.

    Compose files often keep the surrounding quotes, so they are stripped here.
    Extensions are returned lower-case without a leading dot, de-duplicated in
    first-seen order. An empty value yields an empty tuple.
    """
    seen = []
    for token in re.split(r"[\s,]+", value.strip().strip('"').strip("'")):
        ext = token.strip().lstrip(".").lower()
        if ext and ext not in seen:
            seen.append(ext)
    return tuple(seen)


def _parse_resolution(value: str) -> Tuple[int, int]:
    match = re.fullmatch(r"\s*(\d+)\s*[xX:]\s*(\d+)\s*", value)
    if not match:
        raise ValueError(f"Invalid STREAM_RESOLUTION: {value} (must look like 1280x720)")
    return int(match.group(1)), int(match.group(2))


def _get_int(name: str, default: str) -> int:
    raw = os.getenv(name, default)
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"Invalid {name}: {raw} (must be an integer)")


def _get_float(name: str, default: str) -> float:
    raw = os.getenv(name, default)
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"Invalid {name}: {raw} (must be a number)")


def _get_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().strip('"').lower() in _TRUE_VALUES


@dataclass
class StreamerConfig:
    """Streamer configuration loaded from .env file and environment variables."""

    # Destination
    stream_key: str = ""
    ingest_url: str = DEFAULT_INGEST_URL

    # Sources
    video_dir: Path = Path("/videos")
    video_extensions: Tuple[str, ...] = ("mp4", "mkv", "mpg")
    enable_music: bool = False
    music_dir: Path = Path("/music")
    music_extensions: Tuple[str, ...] = ("mp3", "flac", "wav", "ogg")
    data_dir: Path = Path("/data")

    # Playlist policy
    playlist_order: str = "sorted"
    shuffle_on_loop: bool = False
    validate_audio: bool = True
    framerate_min_ratio: float = 0.99
    framerate_integer_tolerance: float = 0.01

    # Output encoding
    resolution: Tuple[int, int] = (960, 540)
    framerate: int = 25
    video_bitrate: str = "1800k"
    audio_bitrate: str = "64k"
    audio_sample_rate: int = 44100
    video_encoder: str = "h264_vaapi"
    vaapi_device: str = "/dev/dri/renderD128"

    # Supervision
    restart_debounce_seconds: float = 5.0
    stall_poll_interval_seconds: float = 5.0
    stall_threshold: int = 4
    stop_grace_seconds: float = 10.0
    probe_timeout_seconds: float = 30.0
    restart_backoff_ms: List[int] = field(
        default_factory=lambda: [1000, 2000, 4000, 8000, 10000]
    )

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @property
    def gop_size(self) -> int:
        """Keyframe interval: two seconds of output frames."""
        return self.framerate * 2

    @property
    def stream_url(self) -> str:
        """Ingest URL with the stream key appended."""
        base = self.ingest_url if self.ingest_url.endswith("/") else self.ingest_url + "/"
        return f"{base}{self.stream_key}"

    @property
    def playlist_path(self) -> Path:
        return self.data_dir / "filelist.txt"

    @property
    def music_playlist_path(self) -> Path:
        return self.data_dir / "musiclist.txt"

    @property
    def exclusion_list_path(self) -> Path:
        return self.data_dir / "excluded_files.txt"

    @property
    def diagnostic_log_path(self) -> Path:
        return self.data_dir / "ffmpeg.log"

    @classmethod
    def load_config(cls) -> "StreamerConfig":
        """
        Load configuration from environment variables.

        Returns:
            StreamerConfig instance with loaded values

        Raises:
            ValueError: If configuration is invalid
        """
        # Load .env file first (if it exists)
        _load_env_file()

        stream_key = os.getenv("TWITCH_STREAM_KEY", "").strip()
        ingest_url = os.getenv("TWITCH_INGEST_URL", DEFAULT_INGEST_URL).strip().strip('"')

        video_dir = Path(os.getenv("VIDEO_DIR", "").strip())
        video_extensions = parse_extensions(os.getenv("VIDEO_FILE_TYPES", "mp4 mkv mpg"))
        enable_music = _get_bool("ENABLE_MUSIC", "false")
        music_dir = Path(os.getenv("MUSIC_DIR", "/music").strip())
        music_extensions = parse_extensions(os.getenv("MUSIC_FILE_TYPES", "mp3 flac wav ogg"))
        data_dir = Path(os.getenv("DATA_DIR", "/data").strip())

        playlist_order = os.getenv("PLAYLIST_ORDER", "sorted").strip().lower()
        shuffle_on_loop = _get_bool("SHUFFLE_ON_LOOP", "false")
        validate_audio = _get_bool("VALIDATE_AUDIO", "true")
        framerate_min_ratio = _get_float("FRAMERATE_MIN_RATIO", "0.99")
        framerate_integer_tolerance = _get_float("FRAMERATE_INTEGER_TOLERANCE", "0.01")

        resolution = _parse_resolution(os.getenv("STREAM_RESOLUTION", "960x540"))
        framerate = _get_int("STREAM_FRAMERATE", "25")
        video_bitrate = os.getenv("VIDEO_BITRATE", "1800k").strip()
        audio_bitrate = os.getenv("AUDIO_BITRATE", "64k").strip()
        audio_sample_rate = _get_int("AUDIO_SAMPLE_RATE", "44100")
        video_encoder = os.getenv("VIDEO_ENCODER", "h264_vaapi").strip()
        vaapi_device = os.getenv("VAAPI_DEVICE", "/dev/dri/renderD128").strip()

        restart_debounce_seconds = _get_float("RESTART_DEBOUNCE_SECONDS", "5")
        stall_poll_interval_seconds = _get_float("STALL_POLL_INTERVAL_SECONDS", "5")
        stall_threshold = _get_int("STALL_THRESHOLD", "4")
        stop_grace_seconds = _get_float("STOP_GRACE_SECONDS", "10")
        probe_timeout_seconds = _get_float("PROBE_TIMEOUT_SECONDS", "30")

        restart_backoff_str = os.getenv("RESTART_BACKOFF_MS", "1000,2000,4000,8000,10000")
        try:
            restart_backoff_ms = _parse_backoff_schedule(restart_backoff_str)
        except ValueError as e:
            raise ValueError(f"Invalid RESTART_BACKOFF_MS: {e}")

        log_level = os.getenv("LOG_LEVEL", "INFO").strip()
        log_file = os.getenv("LOG_FILE") or None

        config = cls(
            stream_key=stream_key,
            ingest_url=ingest_url,
            video_dir=video_dir,
            video_extensions=video_extensions,
            enable_music=enable_music,
            music_dir=music_dir,
            music_extensions=music_extensions,
            data_dir=data_dir,
            playlist_order=playlist_order,
            shuffle_on_loop=shuffle_on_loop,
            validate_audio=validate_audio,
            framerate_min_ratio=framerate_min_ratio,
            framerate_integer_tolerance=framerate_integer_tolerance,
            resolution=resolution,
            framerate=framerate,
            video_bitrate=video_bitrate,
            audio_bitrate=audio_bitrate,
            audio_sample_rate=audio_sample_rate,
            video_encoder=video_encoder,
            vaapi_device=vaapi_device,
            restart_debounce_seconds=restart_debounce_seconds,
            stall_poll_interval_seconds=stall_poll_interval_seconds,
            stall_threshold=stall_threshold,
            stop_grace_seconds=stop_grace_seconds,
            probe_timeout_seconds=probe_timeout_seconds,
            restart_backoff_ms=restart_backoff_ms,
            log_level=log_level,
            log_file=log_file,
        )

        # Validate configuration
        config.validate()

        return config

    def validate(self) -> None:
        """
        Validate configuration values.

        Raises:
            ValueError: If configuration is invalid
        """
        if not self.stream_key:
            raise ValueError("Required environment variable TWITCH_STREAM_KEY is not set.")

        if not str(self.video_dir) or str(self.video_dir) == ".":
            raise ValueError("Required environment variable VIDEO_DIR is not set.")
        if not self.video_dir.is_dir():
            raise ValueError(f"VIDEO_DIR ({self.video_dir}) is not a valid directory.")

        if self.enable_music and not self.music_dir.is_dir():
            raise ValueError(f"MUSIC_DIR ({self.music_dir}) is not a valid directory.")

        if self.playlist_order not in VALID_PLAYLIST_ORDERS:
            raise ValueError(
                f"Invalid PLAYLIST_ORDER: {self.playlist_order} "
                f"(must be one of: {', '.join(VALID_PLAYLIST_ORDERS)})"
            )

        if self.video_encoder not in VALID_VIDEO_ENCODERS:
            raise ValueError(
                f"Invalid VIDEO_ENCODER: {self.video_encoder} "
                f"(must be one of: {', '.join(VALID_VIDEO_ENCODERS)})"
            )

        for name, bitrate in (("VIDEO_BITRATE", self.video_bitrate), ("AUDIO_BITRATE", self.audio_bitrate)):
            if not re.fullmatch(r"[1-9]\d*k", bitrate):
                raise ValueError(f"Invalid {name}: {bitrate} (must look like '1800k')")

        width, height = self.resolution
        if width <= 0 or height <= 0:
            raise ValueError(f"Invalid STREAM_RESOLUTION: {width}x{height}")

        if self.framerate <= 0:
            raise ValueError(f"Invalid STREAM_FRAMERATE: {self.framerate} (must be > 0)")

        if self.audio_sample_rate <= 0:
            raise ValueError(f"Invalid AUDIO_SAMPLE_RATE: {self.audio_sample_rate} (must be > 0)")

        if not 0 < self.framerate_min_ratio <= 1:
            raise ValueError(f"Invalid FRAMERATE_MIN_RATIO: {self.framerate_min_ratio} (must be in (0, 1])")

        if not 0 <= self.framerate_integer_tolerance < 0.5:
            raise ValueError(
                f"Invalid FRAMERATE_INTEGER_TOLERANCE: {self.framerate_integer_tolerance} (must be in [0, 0.5))"
            )

        if self.restart_debounce_seconds < 0:
            raise ValueError(f"Invalid RESTART_DEBOUNCE_SECONDS: {self.restart_debounce_seconds} (must be >= 0)")

        if self.stall_poll_interval_seconds <= 0:
            raise ValueError(f"Invalid STALL_POLL_INTERVAL_SECONDS: {self.stall_poll_interval_seconds} (must be > 0)")

        if self.stall_threshold < 1:
            raise ValueError(f"Invalid STALL_THRESHOLD: {self.stall_threshold} (must be >= 1)")

        if self.stop_grace_seconds <= 0:
            raise ValueError(f"Invalid STOP_GRACE_SECONDS: {self.stop_grace_seconds} (must be > 0)")

        if self.probe_timeout_seconds <= 0:
            raise ValueError(f"Invalid PROBE_TIMEOUT_SECONDS: {self.probe_timeout_seconds} (must be > 0)")

        if not self.restart_backoff_ms:
            raise ValueError("Restart backoff schedule cannot be empty")

        # Validate log level
        valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level.upper() not in valid_log_levels:
            raise ValueError(
                f"Invalid LOG_LEVEL: {self.log_level} "
                f"(must be one of: {', '.join(valid_log_levels)})"
            )


def load_config() -> StreamerConfig:
    """
    Load and validate streamer configuration from environment variables.

    Returns:
        StreamerConfig instance with loaded and validated values

    Raises:
        ValueError: If configuration is invalid
    """
    try:
        return StreamerConfig.load_config()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        raise
