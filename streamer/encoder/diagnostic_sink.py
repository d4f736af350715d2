"""
File sink for the encoder's diagnostic stream.

Runs on its own thread with its own subscriber queue; disk writes never block
the stderr drain or the playback parser. Lines go through a WatchedFileHandler,
which reopens the file after external rotation (rename/truncate).
"""

from __future__ import annotations

import logging
import logging.handlers
import queue
import threading
from pathlib import Path

logger = logging.getLogger(__name__)

_STOP = object()


class DiagnosticLogSink(threading.Thread):
    """
    Appends every diagnostic line of every encoder process to one file.

    Args:
        lines: Subscriber queue obtained from FFmpegSupervisor.subscribe()
        path: Log file on the data volume
    """

    def __init__(self, lines: "queue.Queue", path: Path) -> None:
        super().__init__(name="DiagnosticLogSink", daemon=True)
        self.lines = lines
        self.path = Path(path)

        self._handler = None
        self._file_logger = logging.getLogger(f"{__name__}.file")
        self._file_logger.setLevel(logging.INFO)
        self._file_logger.propagate = False  # Keep encoder chatter out of the main log

    def stop(self) -> None:
        self.lines.put(_STOP)

    def _attach_handler(self) -> bool:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            handler = logging.handlers.WatchedFileHandler(str(self.path), mode="a", encoding="utf-8")
        except OSError as e:
            logger.warning(f"Cannot open diagnostic log {self.path}: {e}; diagnostic lines will not be kept")
            return False
        handler.setFormatter(logging.Formatter("%(asctime)s %(message)s"))
        self._file_logger.addHandler(handler)
        self._handler = handler
        return True

    def run(self) -> None:
        writing = self._attach_handler()
        if writing:
            logger.info(f"Diagnostic log sink writing to {self.path}")
        try:
            while True:
                line = self.lines.get()
                if line is _STOP:
                    break
                if writing:
                    self._file_logger.info(line)
        finally:
            if self._handler is not None:
                self._file_logger.removeHandler(self._handler)
                self._handler.close()
                self._handler = None
        logger.debug("Diagnostic log sink exiting")
