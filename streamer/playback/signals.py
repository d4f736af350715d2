"""
Typed messages exchanged between the playback parser, the stall monitor and
the restart policy.

Each long-lived thread owns its own state and only changes it in response to
messages arriving on its inbox queue; nothing here is shared mutable state.
"""

from __future__ import annotations

import enum
import os
from dataclasses import dataclass, field
from typing import List, Optional

from streamer.media.playlist import MediaFile, MediaKind


class RestartKind(enum.Enum):
    """How much state is rebuilt before the encoder is respawned."""
    HARD = "hard"            # stop, rebuild, revalidate, refilter, start
    SOFT = "soft"            # stop, start over the existing filtered playlist
    RESHUFFLE = "reshuffle"  # stop, shuffle the existing filtered playlist, start


@dataclass(frozen=True)
class RestartRequest:
    """One trigger on the restart channel."""
    kind: RestartKind
    reason: str
    exclude: Optional[str] = None


# Parser -> monitor

@dataclass(frozen=True)
class PlaybackAdvance:
    """The encoder opened a playlist entry for reading."""
    path: str
    kind: MediaKind
    timestamp: float

    @property
    def basename(self) -> str:
        return os.path.basename(self.path)


@dataclass(frozen=True)
class PrematureLoopDetected:
    """
    The first file was reopened before the rest of the playlist was announced.

    suspect is the basename of the entry that should have played next, or None
    when it could not be located.
    """
    suspect: Optional[str]
    index: int
    total: int


@dataclass(frozen=True)
class ReshuffleRequested:
    """A loop completed and shuffle-on-loop is enabled."""
    loop_count: int


# Policy -> parser / monitor

@dataclass(frozen=True)
class CursorReset:
    """Start tracking a new filtered playlist from the beginning."""
    playlist: List[MediaFile] = field(default_factory=list)


@dataclass(frozen=True)
class StallReset:
    """Forget stall ticks and the currently-playing file."""
    reason: str = ""
