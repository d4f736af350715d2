"""
Error taxonomy for the stream supervisor.

Per-file and per-cycle failures are recovered locally (skip the file, restart
the subprocess, idle until the next filesystem change). Only DependencyMissing
and invalid configuration are fatal to the whole process.
"""


class StreamerError(Exception):
    """Base class for supervisor errors."""
    pass


class ProbeError(StreamerError):
    """A single file could not be probed (non-zero exit, timeout, missing stream)."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class ValidationEmpty(StreamerError):
    """No file in the playlist passed compatibility validation."""
    pass


class ExclusionEmptyResult(StreamerError):
    """Every validated file is on the exclusion list."""
    pass


class SubprocessCrash(StreamerError):
    """The encoding subprocess exited without being asked to."""
    pass


class SubprocessStall(StreamerError):
    """The encoding subprocess is alive but reports no throughput."""
    pass


class PrematureLoop(StreamerError):
    """The concat input wrapped to its first file before playing every entry."""
    pass


class DependencyMissing(StreamerError):
    """A required external tool is not installed."""

    def __init__(self, command: str):
        super().__init__(
            f"Required command '{command}' is not installed. Please install it and try again."
        )
        self.command = command
