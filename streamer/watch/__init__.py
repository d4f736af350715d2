"""
Filesystem watching: the watchdog event source and the debounced reactor.
"""

from streamer.watch.change_reactor import ChangeReactor
from streamer.watch.directory_source import DirectoryWatchSource, FileEvent

__all__ = ["ChangeReactor", "DirectoryWatchSource", "FileEvent"]
