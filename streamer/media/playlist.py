"""
Playlist construction and the concat playlist file format.

A playlist is an ordered list of MediaFile; order is playback order. Builders
always return a new list, so earlier refinements (raw, validated, filtered) are
never mutated, only superseded.
"""

from __future__ import annotations

import enum
import logging
import os
import random
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

logger = logging.getLogger(__name__)


class MediaKind(enum.Enum):
    VIDEO = "video"
    AUDIO = "audio"


class PlaylistOrder(enum.Enum):
    SORTED = "sorted"
    SHUFFLED = "shuffled"


@dataclass(frozen=True)
class MediaFile:
    """
    A file discovered by a directory scan.

    Identity is the absolute path; exclusion and loop detection compare by
    basename only.
    """
    path: str
    kind: MediaKind = MediaKind.VIDEO

    @property
    def basename(self) -> str:
        return os.path.basename(self.path)


def _matches_extension(filename: str, extensions: frozenset) -> bool:
    ext = os.path.splitext(filename)[1]
    return bool(ext) and ext[1:].lower() in extensions


def build_playlist(
    directory: Path,
    extensions: Iterable[str],
    order: PlaylistOrder = PlaylistOrder.SORTED,
    kind: MediaKind = MediaKind.VIDEO,
    rng: Optional[random.Random] = None,
) -> List[MediaFile]:
    """
    Scan a directory tree for files with a matching extension.

    Matching is case-insensitive. An empty extension set yields an empty
    playlist, never "all files". Sorted order is lexicographic by absolute
    path; shuffled order is a fresh permutation on every call.

    Args:
        directory: Root directory, scanned recursively
        extensions: Extensions with or without a leading dot
        order: PlaylistOrder.SORTED (default) or PlaylistOrder.SHUFFLED
        kind: MediaKind stamped on every entry
        rng: Optional random source (tests pass a seeded one)

    Returns:
        New list of MediaFile with absolute paths
    """
    wanted = frozenset(e.lstrip(".").lower() for e in extensions if e.lstrip("."))
    if not wanted:
        logger.warning(f"No file extensions configured for {directory}; playlist is empty")
        return []

    root = Path(directory)
    if not root.is_dir():
        logger.warning(f"Playlist directory does not exist: {root}")
        return []

    logger.info(f"Generating file list from {root}...")
    paths = []
    for dirpath, dirs, files in os.walk(root):
        dirs.sort()
        for filename in files:
            if _matches_extension(filename, wanted):
                paths.append(os.path.abspath(os.path.join(dirpath, filename)))

    paths.sort()
    if order is PlaylistOrder.SHUFFLED:
        (rng or random).shuffle(paths)

    playlist = [MediaFile(path=p, kind=kind) for p in paths]
    logger.info(f"Found {len(playlist)} {kind.value} file(s) under {root} ({order.value})")
    return playlist


def shuffled(playlist: Sequence[MediaFile], rng: Optional[random.Random] = None) -> List[MediaFile]:
    """Return a random permutation of an existing playlist without rescanning."""
    result = list(playlist)
    (rng or random).shuffle(result)
    return result


def quote_concat_path(path: str) -> str:
    """Quote a path for a concat directive: ' becomes '\\''."""
    return "'" + path.replace("'", "'\\''") + "'"


def format_concat_playlist(playlist: Iterable[MediaFile]) -> str:
    return "".join(f"file {quote_concat_path(item.path)}\n" for item in playlist)


def write_concat_playlist(path: Path, playlist: Sequence[MediaFile]) -> Path:
    """
    Persist a playlist as concat-demuxer directives, one `file '<path>'` line per entry.

    Written to a temporary sibling and renamed so a reader never sees a partial file.
    """
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    tmp = target.with_name(target.name + ".tmp")
    tmp.write_text(format_concat_playlist(playlist), encoding="utf-8")
    os.replace(tmp, target)
    logger.info(f"File list generated at {target} ({len(playlist)} entries)")
    return target


def read_concat_playlist(path: Path, kind: MediaKind = MediaKind.VIDEO) -> List[MediaFile]:
    """Parse a file written by write_concat_playlist back into MediaFile entries."""
    playlist = []
    for line in Path(path).read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line.startswith("file "):
            continue
        quoted = line[len("file "):].strip()
        if quoted.startswith("'") and quoted.endswith("'"):
            quoted = quoted[1:-1]
        playlist.append(MediaFile(path=quoted.replace("'\\''", "'"), kind=kind))
    return playlist
