"""
Media Prober: one-shot ffprobe query of a single stream's properties.

The query asks for a fixed set of entries and reads them back as one
comma-separated line, in ffprobe's section order:

    video: width,height,pix_fmt,r_frame_rate,duration
    audio: sample_rate,channels,duration

Any non-zero exit, timeout, missing stream or unparsable field is a ProbeError.
There are no retries; callers skip the file for the current pass.
"""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from fractions import Fraction
from typing import List, Optional

from streamer.errors import ProbeError
from streamer.media.playlist import MediaKind

logger = logging.getLogger(__name__)

VIDEO_ENTRIES = "stream=width,height,pix_fmt,r_frame_rate,duration"
AUDIO_ENTRIES = "stream=sample_rate,channels,duration"


@dataclass(frozen=True)
class MediaProperties:
    """
    Stream properties of one file. Fields not covered by the probed stream kind stay None.
    Never persisted; recomputed on every validation pass.
    """
    width: Optional[int] = None
    height: Optional[int] = None
    pixel_format: Optional[str] = None
    frame_rate: Optional[Fraction] = None
    sample_rate: Optional[int] = None
    channels: Optional[int] = None
    duration_seconds: Optional[float] = None

    def merged(self, other: "MediaProperties") -> "MediaProperties":
        """Combine a video probe with an audio probe (other wins where self is None)."""
        values = {}
        for name in self.__dataclass_fields__:
            mine = getattr(self, name)
            values[name] = mine if mine is not None else getattr(other, name)
        return MediaProperties(**values)

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"

    @property
    def frame_rate_text(self) -> str:
        if self.frame_rate is None:
            return "None"
        return f"{self.frame_rate.numerator}/{self.frame_rate.denominator}"


def _parse_rational(value: str) -> Fraction:
    num, sep, den = value.partition("/")
    numerator = int(num)
    denominator = int(den) if sep else 1
    if numerator <= 0 or denominator <= 0:
        raise ValueError(f"non-positive rate {value}")
    return Fraction(numerator, denominator)


def _parse_duration(value: str) -> Optional[float]:
    try:
        return float(value)
    except ValueError:
        return None  # N/A for many containers


class MediaProber:
    """
    Wraps ffprobe for single-file, single-stream property queries.

    Attributes:
        ffprobe_bin: ffprobe executable name or path
        timeout: Seconds before a probe is abandoned
    """

    def __init__(self, ffprobe_bin: str = "ffprobe", timeout: float = 30.0) -> None:
        self.ffprobe_bin = ffprobe_bin
        self.timeout = timeout

    def build_command(self, path: str, kind: MediaKind) -> List[str]:
        selector = "v:0" if kind is MediaKind.VIDEO else "a:0"
        entries = VIDEO_ENTRIES if kind is MediaKind.VIDEO else AUDIO_ENTRIES
        return [
            self.ffprobe_bin,
            "-v", "error",
            "-select_streams", selector,
            "-show_entries", entries,
            "-of", "csv=p=0",
            path,
        ]

    def probe(self, path: str, kind: MediaKind) -> MediaProperties:
        """
        Probe the first stream of the given kind.

        Args:
            path: Absolute path to the media file
            kind: MediaKind.VIDEO or MediaKind.AUDIO

        Returns:
            MediaProperties with the fields for that stream kind

        Raises:
            ProbeError: On non-zero exit, timeout, missing stream or bad output
        """
        cmd = self.build_command(path, kind)
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except subprocess.TimeoutExpired:
            raise ProbeError(path, f"ffprobe timed out after {self.timeout:.0f}s")
        except OSError as e:
            raise ProbeError(path, f"ffprobe could not be run: {e}")

        if result.returncode != 0:
            detail = (result.stderr or "").strip().splitlines()
            reason = detail[-1] if detail else f"exit status {result.returncode}"
            raise ProbeError(path, f"ffprobe failed: {reason}")

        lines = [line.strip() for line in (result.stdout or "").splitlines() if line.strip()]
        if not lines:
            raise ProbeError(path, f"no {kind.value} stream found")

        fields = [f.strip() for f in lines[0].split(",")]
        try:
            if kind is MediaKind.VIDEO:
                return self._parse_video(fields)
            return self._parse_audio(fields)
        except (ValueError, IndexError) as e:
            raise ProbeError(path, f"unexpected ffprobe output {lines[0]!r}: {e}")

    @staticmethod
    def _parse_video(fields: List[str]) -> MediaProperties:
        if len(fields) < 4:
            raise ValueError(f"expected 4+ fields, got {len(fields)}")
        return MediaProperties(
            width=int(fields[0]),
            height=int(fields[1]),
            pixel_format=fields[2],
            frame_rate=_parse_rational(fields[3]),
            duration_seconds=_parse_duration(fields[4]) if len(fields) > 4 else None,
        )

    @staticmethod
    def _parse_audio(fields: List[str]) -> MediaProperties:
        if len(fields) < 2:
            raise ValueError(f"expected 2+ fields, got {len(fields)}")
        return MediaProperties(
            sample_rate=int(fields[0]),
            channels=int(fields[1]),
            duration_seconds=_parse_duration(fields[2]) if len(fields) > 2 else None,
        )
