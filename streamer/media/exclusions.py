"""
Persisted exclusion list and the Exclusion Filter.

The list is a newline-delimited file of basenames kept on the data volume, so
it survives supervisor restarts. It is append-only during a run and entries
never expire; an operator removes an entry by editing the file.
"""

import logging
import os
import threading
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Set

from streamer.errors import ExclusionEmptyResult
from streamer.media.playlist import MediaFile

logger = logging.getLogger(__name__)


class ExclusionList:
    """
    Set of excluded basenames backed by an append-only file.

    The file is re-read on every load() so hand edits made while the supervisor
    runs take effect on the next rebuild.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = Path(path) if path is not None else None
        self._names: Set[str] = set()
        self._lock = threading.Lock()

    def load(self) -> Set[str]:
        """Reload entries from disk and return a copy of the set."""
        with self._lock:
            if self.path is not None and self.path.exists():
                lines = self.path.read_text(encoding="utf-8").splitlines()
                self._names = {line.strip() for line in lines if line.strip()}
            return set(self._names)

    def add(self, basename: str) -> bool:
        """
        Append a basename. Returns False if it was already excluded.

        Args:
            basename: File name without directory
        """
        name = os.path.basename(basename.strip())
        if not name:
            return False
        with self._lock:
            if name in self._names:
                return False
            self._names.add(name)
            if self.path is not None:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(name + "\n")
        logger.warning(f"Added {name} to exclusion list {self.path or '<memory>'}")
        return True

    def names(self) -> Set[str]:
        with self._lock:
            return set(self._names)

    def __contains__(self, basename: str) -> bool:
        with self._lock:
            return basename in self._names

    def __len__(self) -> int:
        with self._lock:
            return len(self._names)


def filter_excluded(playlist: Sequence[MediaFile], excluded: Iterable[str]) -> List[MediaFile]:
    """
    Remove entries whose basename is excluded, preserving order.

    Args:
        playlist: Validated playlist (not modified)
        excluded: Excluded basenames

    Returns:
        New filtered playlist; equal to the input when nothing is excluded

    Raises:
        ExclusionEmptyResult: If a non-empty input filters down to nothing
    """
    excluded = set(excluded)
    if not excluded:
        return list(playlist)

    filtered = []
    for item in playlist:
        if item.basename in excluded:
            logger.info(f"Excluding {item.basename} (on exclusion list)")
            continue
        filtered.append(item)

    if playlist and not filtered:
        raise ExclusionEmptyResult(
            f"All {len(playlist)} validated file(s) are on the exclusion list; stream cannot start"
        )
    return filtered
