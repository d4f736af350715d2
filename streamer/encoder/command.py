"""
Argument contract for the encoding subprocess.

The command is a pure function of configuration and playlist file paths, so
it can be inspected and versioned independently of the supervision logic.
Changing codec, bitrate or ingest parameters happens here and nowhere else.
"""

from pathlib import Path
from typing import List, Optional

from streamer.config import StreamerConfig

COMMAND_VERSION = 2

# Diagnostic line the playback parser relies on. ffmpeg logs it at info level
# each time the concat demuxer opens a playlist entry.
OPENING_PATTERN = r"Opening '(?P<path>.+)' for reading"


def _concat_input(playlist_path: Path) -> List[str]:
    return [
        "-re",                    # Read input at native frame rate
        "-stream_loop", "-1",     # Loop playlist indefinitely
        "-fflags", "+genpts",     # Generate PTS
        "-f", "concat",
        "-safe", "0",             # Allow absolute paths in the list
        "-i", str(playlist_path),
    ]


def build_ffmpeg_command(
    config: StreamerConfig,
    playlist_path: Path,
    music_playlist_path: Optional[Path] = None,
    ffmpeg_bin: str = "ffmpeg",
) -> List[str]:
    """
    Build the full ffmpeg argument list.

    Args:
        config: Streamer configuration (output encoding + destination)
        playlist_path: Concat playlist of validated, filtered videos
        music_playlist_path: Optional concat playlist replacing the video's audio
        ffmpeg_bin: ffmpeg executable

    Returns:
        Argument list suitable for subprocess.Popen
    """
    width, height = config.resolution
    vaapi = config.video_encoder == "h264_vaapi"

    cmd = [
        ffmpeg_bin,
        "-hide_banner",
        "-nostdin",               # Disable interaction on stdin
        "-loglevel", "info",
        "-nostats",               # Human-readable stats off; progress goes to stdout
        "-progress", "pipe:1",
        "-stats_period", f"{config.stall_poll_interval_seconds:g}",
    ]

    if vaapi:
        cmd += ["-hwaccel", "vaapi", "-vaapi_device", config.vaapi_device]

    cmd += _concat_input(playlist_path)

    if music_playlist_path is not None:
        cmd += _concat_input(music_playlist_path)
        cmd += [
            "-map", "0:v:0",
            "-map", "1:a:0",
            # Music timestamps are regenerated from the sample count, so a wrap of
            # the music playlist never looks like end of input.
            "-af", "asetpts=N/SR/TB",
        ]
    else:
        cmd += ["-map", "0:v:0", "-map", "0:a:0"]

    cmd += [
        "-flags", "+global_header",
        "-c:a", "aac",
        "-b:a", config.audio_bitrate,
        "-ar", str(config.audio_sample_rate),
    ]

    if vaapi:
        cmd += [
            "-vf", f"format=nv12,hwupload,scale_vaapi=w={width}:h={height}",
            "-c:v", "h264_vaapi",
        ]
    else:
        cmd += [
            "-vf", f"scale={width}:{height},format=yuv420p",
            "-c:v", "libx264",
            "-preset", "veryfast",
        ]

    gop = str(config.gop_size)
    cmd += [
        "-r", str(config.framerate),
        "-b:v", config.video_bitrate,
        "-minrate", config.video_bitrate,
        "-maxrate", config.video_bitrate,
        "-bufsize", config.video_bitrate,
        "-g", gop,
        "-keyint_min", gop,
        "-f", "flv",
        config.stream_url,
    ]
    return cmd


def mask_secret(cmd: List[str], secret: str) -> List[str]:
    """Copy of cmd with the stream key replaced, for logging."""
    if not secret:
        return list(cmd)
    return [arg.replace(secret, "****") for arg in cmd]
