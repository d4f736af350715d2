"""
Encoder subsystem.

This package provides the components around the ffmpeg encoding process:
- FFmpegSupervisor: spawns, drains and reaps the encoder
- build_ffmpeg_command: the fixed argument contract
- ProgressParser / ProgressRecord: the -progress key=value stream
- DiagnosticLogSink: copies diagnostic lines to the data volume
"""

from streamer.encoder.command import build_ffmpeg_command
from streamer.encoder.diagnostic_sink import DiagnosticLogSink
from streamer.encoder.ffmpeg_supervisor import FFmpegSupervisor, SubprocessHandle
from streamer.encoder.progress import ProgressParser, ProgressRecord

__all__ = [
    "build_ffmpeg_command",
    "DiagnosticLogSink",
    "FFmpegSupervisor",
    "SubprocessHandle",
    "ProgressParser",
    "ProgressRecord",
]
