#!/usr/bin/env python3
"""
Streamer main entry point.

Allows the streamer to be run as a module: python3 -m streamer
"""

import logging
import logging.handlers
import os
import signal
import sys

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Set default log level from environment, or INFO if not set
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, log_level, logging.INFO),
    format=LOG_FORMAT,
)

from streamer.config import load_config
from streamer.dependencies import check_dependencies
from streamer.errors import DependencyMissing
from streamer.service import StreamerService

logger = logging.getLogger("streamer")


def _configure_logging(level: str, log_file):
    """Apply the configured level and the optional rotation-tolerant file handler."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    if not log_file:
        return
    try:
        handler = logging.handlers.WatchedFileHandler(log_file, mode="a")
    except OSError as e:
        logger.warning(f"Cannot open log file {log_file}: {e}; logging to console only")
        return
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)


def main() -> int:
    try:
        check_dependencies()
        config = load_config()
    except DependencyMissing as e:
        logger.error(str(e))
        return 1
    except ValueError:
        # load_config() has already logged the reason
        return 1

    _configure_logging(config.log_level, config.log_file)

    service = StreamerService(config)
    shutdown_initiated = False

    def signal_handler(sig, frame):
        nonlocal shutdown_initiated
        if shutdown_initiated:
            logger.debug("Shutdown already in progress, ignoring duplicate signal")
            return
        shutdown_initiated = True
        signal_name = "SIGTERM" if sig == signal.SIGTERM else "SIGINT"
        logger.info(f"Received {signal_name} signal - cleaning up...")
        service.stop()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        service.start()
        service.run_forever()
    except Exception as e:
        logger.error(f"Streamer failed: {e}", exc_info=True)
        service.stop()
        return 1
    logger.info("Cleanup finished.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
