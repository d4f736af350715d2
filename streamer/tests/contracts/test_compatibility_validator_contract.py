"""
Contract tests for the Compatibility Validator.

Covers:
- the first successfully probed file is the reference and is always kept
- reference idempotence (identical files are never dropped)
- frame-rate rule: integer multiples/divisors accepted, others rejected
- yuv420p / yuvj420p equivalence
- audio comparison only when enabled
- probe failures drop the file; no reference means an empty result
"""

from fractions import Fraction

import pytest

from streamer.errors import ProbeError
from streamer.media.compatibility import (
    CompatibilityValidator,
    frame_rates_compatible,
    pixel_formats_compatible,
)


class TestFrameRateRule:
    """Integer multiples and divisors of the reference rate pass."""

    def test_double_rate_is_accepted(self):
        assert frame_rates_compatible(Fraction(30, 1), Fraction(60, 1))

    def test_half_rate_is_accepted(self):
        assert frame_rates_compatible(Fraction(60, 1), Fraction(30, 1))

    def test_unrelated_rate_is_rejected(self):
        assert not frame_rates_compatible(Fraction(30, 1), Fraction(25, 1))

    def test_ntsc_rate_within_tolerance(self):
        assert frame_rates_compatible(Fraction(30, 1), Fraction(30000, 1001))
        assert frame_rates_compatible(Fraction(30000, 1001), Fraction(60000, 1001))

    def test_tolerances_are_configurable(self):
        assert not frame_rates_compatible(
            Fraction(30, 1), Fraction(30000, 1001), min_ratio=0.99, integer_tolerance=0.0001
        )

    def test_non_positive_rates_are_rejected(self):
        assert not frame_rates_compatible(Fraction(0, 1), Fraction(30, 1))


class TestPixelFormats:
    def test_full_and_limited_range_420_are_equivalent(self):
        assert pixel_formats_compatible("yuv420p", "yuvj420p")
        assert pixel_formats_compatible("yuvj420p", "yuv420p")

    def test_other_formats_must_match_exactly(self):
        assert pixel_formats_compatible("yuv422p", "yuv422p")
        assert not pixel_formats_compatible("yuv420p", "yuv422p")


class TestValidate:
    """validate(playlist) -> (validated, dropped)."""

    def test_reference_idempotence(self, fake_prober, playlist_of, props):
        playlist = playlist_of("a.mp4", "b.mp4", "c.mp4")
        for item in playlist:
            fake_prober.results[item.basename] = props()

        validated, dropped = CompatibilityValidator(fake_prober).validate(playlist)

        assert validated == playlist
        assert dropped == 0

    def test_mixed_30_and_60_fps_are_kept(self, fake_prober, playlist_of, props):
        playlist = playlist_of("a.mp4", "b.mp4")
        fake_prober.results["a.mp4"] = props(rate="30/1")
        fake_prober.results["b.mp4"] = props(rate="60/1")

        validated, dropped = CompatibilityValidator(fake_prober).validate(playlist)
        assert [m.basename for m in validated] == ["a.mp4", "b.mp4"]
        assert dropped == 0

    def test_incompatible_files_dropped_in_order(self, fake_prober, playlist_of, props, caplog):
        playlist = playlist_of("a.mp4", "b.mp4", "c.mp4", "d.mp4", "e.mp4")
        fake_prober.results.update({
            "a.mp4": props(),
            "b.mp4": props(width=1280, height=720),
            "c.mp4": props(pix_fmt="yuvj420p"),
            "d.mp4": props(rate="25/1"),
            "e.mp4": props(),
        })

        validated, dropped = CompatibilityValidator(fake_prober).validate(playlist)

        assert [m.basename for m in validated] == ["a.mp4", "c.mp4", "e.mp4"]
        assert dropped == 2
        assert "Skipping incompatible file b.mp4: resolution 1280x720 (expected 1920x1080)" in caplog.text
        assert "Skipping incompatible file d.mp4: frame rate 25/1" in caplog.text

    def test_reference_is_first_successful_probe(self, fake_prober, playlist_of, props, caplog):
        playlist = playlist_of("broken.mp4", "b.mp4", "c.mp4")
        fake_prober.results.update({
            "broken.mp4": ProbeError("/videos/broken.mp4", "ffprobe failed: moov atom not found"),
            "b.mp4": props(width=1280, height=720),
            "c.mp4": props(),
        })

        validator = CompatibilityValidator(fake_prober)
        validated, dropped = validator.validate(playlist)

        assert [m.basename for m in validated] == ["b.mp4"]
        assert dropped == 2
        assert validator.last_reference.width == 1280
        assert "Skipping broken.mp4: probe failed (ffprobe failed: moov atom not found)" in caplog.text

    def test_no_probeable_file_gives_empty_playlist(self, fake_prober, playlist_of):
        playlist = playlist_of("x.mp4", "y.mp4")
        for item in playlist:
            fake_prober.results[item.basename] = ProbeError(item.path, "no video stream found")

        validated, dropped = CompatibilityValidator(fake_prober).validate(playlist)
        assert validated == []
        assert dropped == 2

    def test_audio_compared_only_when_enabled(self, fake_prober, playlist_of, props):
        playlist = playlist_of("a.mp4", "b.mp4", "c.mp4")
        fake_prober.results.update({
            "a.mp4": props(sample_rate=44100, channels=2),
            "b.mp4": props(sample_rate=48000, channels=2),
            "c.mp4": props(sample_rate=44100, channels=1),
        })

        with_audio, dropped = CompatibilityValidator(fake_prober, validate_audio=True).validate(playlist)
        assert [m.basename for m in with_audio] == ["a.mp4"]
        assert dropped == 2

        without_audio, dropped = CompatibilityValidator(fake_prober, validate_audio=False).validate(playlist)
        assert without_audio == playlist
        assert dropped == 0

    def test_input_playlist_not_modified(self, fake_prober, playlist_of, props):
        playlist = playlist_of("a.mp4", "b.mp4")
        fake_prober.results.update({"a.mp4": props(), "b.mp4": props(rate="24/1")})
        original = list(playlist)
        CompatibilityValidator(fake_prober).validate(playlist)
        assert playlist == original
