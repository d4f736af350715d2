"""
Compatibility Validator.

The concat demuxer feeds every playlist entry through one decoder/filter chain,
so all entries must share the stream layout of the first one. The first file
that probes successfully becomes the reference for the pass; every later file
is compared against it and dropped (with a logged reason) on any mismatch.

Compared properties:
- width and height, exactly
- pixel format, exactly, except that full-range and limited-range 4:2:0
  (yuvj420p / yuv420p) are interchangeable
- frame rate, allowing integer multiples and divisors of the reference rate
- sample rate and channel count, exactly (only when audio validation is on)
"""

from __future__ import annotations

import logging
from fractions import Fraction
from typing import List, Optional, Sequence, Tuple

from streamer.errors import ProbeError
from streamer.media.playlist import MediaFile, MediaKind
from streamer.media.probe import MediaProber, MediaProperties

logger = logging.getLogger(__name__)

DEFAULT_MIN_RATIO = 0.99
DEFAULT_INTEGER_TOLERANCE = 0.01

EQUIVALENT_PIXEL_FORMATS = (
    frozenset({"yuv420p", "yuvj420p"}),
)


def pixel_formats_compatible(reference: Optional[str], candidate: Optional[str]) -> bool:
    if reference == candidate:
        return True
    return any(reference in group and candidate in group for group in EQUIVALENT_PIXEL_FORMATS)


def frame_rates_compatible(
    reference: Fraction,
    candidate: Fraction,
    min_ratio: float = DEFAULT_MIN_RATIO,
    integer_tolerance: float = DEFAULT_INTEGER_TOLERANCE,
) -> bool:
    """
    Accept a candidate rate that is an integer multiple or divisor of the reference.

    With reference Rn/Rd and candidate Cn/Cd, both (Cn*Rd)/(Cd*Rn) and its
    inverse are computed; the candidate passes if either ratio is at least
    min_ratio and lies within integer_tolerance of a whole number. So 60 fps
    passes against 30 fps, 29.97 passes against 30, and 25 fails against 30.
    """
    rn, rd = reference.numerator, reference.denominator
    cn, cd = candidate.numerator, candidate.denominator
    if rn <= 0 or cn <= 0:
        return False
    for ratio in ((cn * rd) / (cd * rn), (rn * cd) / (rd * cn)):
        if ratio >= min_ratio and abs(ratio - round(ratio)) <= integer_tolerance:
            return True
    return False


class CompatibilityValidator:
    """
    Filters a playlist down to the entries that can share one encoder input.

    Attributes:
        prober: MediaProber used for every file
        validate_audio: Also compare sample rate and channel count
        min_ratio: Lower bound for an accepted frame-rate ratio
        integer_tolerance: Allowed distance of that ratio from an integer
    """

    def __init__(
        self,
        prober: MediaProber,
        validate_audio: bool = True,
        min_ratio: float = DEFAULT_MIN_RATIO,
        integer_tolerance: float = DEFAULT_INTEGER_TOLERANCE,
    ) -> None:
        self.prober = prober
        self.validate_audio = validate_audio
        self.min_ratio = min_ratio
        self.integer_tolerance = integer_tolerance
        self.last_reference: Optional[MediaProperties] = None

    def _probe(self, item: MediaFile) -> MediaProperties:
        properties = self.prober.probe(item.path, MediaKind.VIDEO)
        if self.validate_audio:
            properties = properties.merged(self.prober.probe(item.path, MediaKind.AUDIO))
        return properties

    def mismatch(self, reference: MediaProperties, candidate: MediaProperties) -> Optional[str]:
        """Return a human-readable reason the candidate is incompatible, or None."""
        if (candidate.width, candidate.height) != (reference.width, reference.height):
            return f"resolution {candidate.resolution} (expected {reference.resolution})"
        if not pixel_formats_compatible(reference.pixel_format, candidate.pixel_format):
            return f"pixel format {candidate.pixel_format} (expected {reference.pixel_format})"
        if not frame_rates_compatible(
            reference.frame_rate, candidate.frame_rate, self.min_ratio, self.integer_tolerance
        ):
            return (
                f"frame rate {candidate.frame_rate_text} "
                f"(expected {reference.frame_rate_text} or an integer multiple/divisor)"
            )
        if self.validate_audio:
            if candidate.sample_rate != reference.sample_rate:
                return f"audio sample rate {candidate.sample_rate} (expected {reference.sample_rate})"
            if candidate.channels != reference.channels:
                return f"audio channels {candidate.channels} (expected {reference.channels})"
        return None

    def validate(self, playlist: Sequence[MediaFile]) -> Tuple[List[MediaFile], int]:
        """
        Validate a playlist in order.

        Args:
            playlist: Raw playlist (not modified)

        Returns:
            (validated playlist in input order, number of dropped entries).
            The validated playlist is empty when no file probes successfully.
        """
        reference: Optional[MediaProperties] = None
        reference_name = None
        validated: List[MediaFile] = []
        dropped = 0

        for item in playlist:
            try:
                properties = self._probe(item)
            except ProbeError as e:
                logger.warning(f"Skipping {item.basename}: probe failed ({e.reason})")
                dropped += 1
                continue

            if reference is None:
                reference = properties
                reference_name = item.basename
                logger.info(
                    f"Reference file {reference_name}: {reference.resolution} "
                    f"{reference.pixel_format} @ {reference.frame_rate_text} fps"
                    + (
                        f", {reference.sample_rate} Hz / {reference.channels} ch"
                        if self.validate_audio else ""
                    )
                )
                validated.append(item)
                continue

            reason = self.mismatch(reference, properties)
            if reason is not None:
                logger.warning(f"Skipping incompatible file {item.basename}: {reason} [reference {reference_name}]")
                dropped += 1
                continue

            validated.append(item)

        self.last_reference = reference
        if reference is None and playlist:
            logger.error(f"No file in the playlist could be probed ({len(playlist)} tried)")
        logger.info(f"Validation kept {len(validated)} of {len(playlist)} file(s), dropped {dropped}")
        return validated, dropped
