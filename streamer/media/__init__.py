"""
Media subsystem.

This package provides the pieces that decide which files are fed to the encoder:
- build_playlist: directory scan into an ordered playlist
- MediaProber: one-shot ffprobe queries
- CompatibilityValidator: drops files that cannot share the reference's stream layout
- ExclusionList / filter_excluded: persisted denylist by basename
"""

from streamer.media.playlist import MediaFile, MediaKind, PlaylistOrder, build_playlist
from streamer.media.probe import MediaProber, MediaProperties
from streamer.media.compatibility import CompatibilityValidator, frame_rates_compatible
from streamer.media.exclusions import ExclusionList, filter_excluded

__all__ = [
    "MediaFile",
    "MediaKind",
    "PlaylistOrder",
    "build_playlist",
    "MediaProber",
    "MediaProperties",
    "CompatibilityValidator",
    "frame_rates_compatible",
    "ExclusionList",
    "filter_excluded",
]
