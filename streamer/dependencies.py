"""
External tool checks performed once at startup.
"""

import logging
import shutil
from typing import Iterable, List

from streamer.errors import DependencyMissing

logger = logging.getLogger(__name__)

REQUIRED_COMMANDS = ("ffmpeg", "ffprobe")


def check_dependencies(commands: Iterable[str] = REQUIRED_COMMANDS) -> List[str]:
    """
    Verify that every required command is on PATH.

    Returns:
        Resolved executable paths, in the order given

    Raises:
        DependencyMissing: For the first command that cannot be found
    """
    logger.info("Checking for required dependencies...")
    resolved = []
    for command in commands:
        path = shutil.which(command)
        if path is None:
            logger.error(f"Required command '{command}' is not installed.")
            raise DependencyMissing(command)
        logger.debug(f"Found {command} at {path}")
        resolved.append(path)
    return resolved
