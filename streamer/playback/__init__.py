"""
Playback observation.

- PlaybackEventParser: diagnostic lines -> cursor, advance and loop signals
- StallMonitor: progress records + signals -> restart requests
- signals: the typed messages passed between them and the restart policy
"""

from streamer.playback.signals import (
    CursorReset,
    PlaybackAdvance,
    PrematureLoopDetected,
    ReshuffleRequested,
    RestartKind,
    RestartRequest,
    StallReset,
)
from streamer.playback.event_parser import PlaybackCursor, PlaybackEventParser
from streamer.playback.stall_monitor import StallMonitor, StallState

__all__ = [
    "CursorReset",
    "PlaybackAdvance",
    "PrematureLoopDetected",
    "ReshuffleRequested",
    "RestartKind",
    "RestartRequest",
    "StallReset",
    "PlaybackCursor",
    "PlaybackEventParser",
    "StallMonitor",
    "StallState",
]
