"""
Parser for ffmpeg's machine-readable progress stream (-progress pipe:1).

ffmpeg writes blocks of key=value lines; each block ends with a
`progress=continue` line, and the last block of a finished run ends with
`progress=end`:

    frame=1234
    fps=25.00
    ...
    speed=1.00x
    progress=continue
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

logger = logging.getLogger(__name__)


def parse_speed(value: Optional[str]) -> Optional[float]:
    """Parse '1.02x' into 1.02. 'N/A', empty or malformed values give None."""
    if not value:
        return None
    text = value.strip().rstrip("x").strip()
    try:
        return float(text)
    except ValueError:
        return None


@dataclass(frozen=True)
class ProgressRecord:
    """One completed progress block."""
    fields: Dict[str, str] = field(default_factory=dict)
    ended: bool = False
    generation: int = 0

    @property
    def speed(self) -> Optional[float]:
        return parse_speed(self.fields.get("speed"))

    @property
    def zero_throughput(self) -> bool:
        """True when the block reports no measurable encoding speed (0x or N/A)."""
        speed = self.speed
        return speed is None or speed <= 0.0


class ProgressParser:
    """
    Accumulates progress lines and yields a ProgressRecord per completed block.

    One parser instance belongs to one subprocess; the generation number is
    stamped on every record so consumers can discard records from a process
    that has already been replaced.
    """

    def __init__(self, generation: int = 0) -> None:
        self.generation = generation
        self._fields: Dict[str, str] = {}

    def feed(self, line: str) -> Optional[ProgressRecord]:
        line = line.strip()
        if not line or "=" not in line:
            return None
        key, _, value = line.partition("=")
        key = key.strip()
        value = value.strip()
        if key != "progress":
            self._fields[key] = value
            return None

        record = ProgressRecord(
            fields=self._fields,
            ended=(value == "end"),
            generation=self.generation,
        )
        self._fields = {}
        return record
