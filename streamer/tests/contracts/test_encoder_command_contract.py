"""
Contract tests for the encoder argument contract and the progress stream parser.

The command is a pure function of configuration and playlist paths; these tests
pin the flags the rest of the system depends on (concat looping, progress on
stdout, the "Opening" diagnostic at info level, CBR + GOP output).
"""

import re
from pathlib import Path

import pytest

from streamer.config import StreamerConfig
from streamer.encoder.command import OPENING_PATTERN, build_ffmpeg_command, mask_secret
from streamer.encoder.progress import ProgressParser, parse_speed


@pytest.fixture
def config(tmp_path):
    return StreamerConfig(stream_key="live_123_secret", video_dir=tmp_path, data_dir=tmp_path)


def value_after(cmd, flag, occurrence=0):
    positions = [i for i, arg in enumerate(cmd) if arg == flag]
    return cmd[positions[occurrence] + 1]


class TestCommandContract:
    def test_concat_input_loops_forever(self, config):
        cmd = build_ffmpeg_command(config, Path("/data/filelist.txt"))
        start = cmd.index("-re")
        assert cmd[start:start + 10] == [
            "-re", "-stream_loop", "-1", "-fflags", "+genpts",
            "-f", "concat", "-safe", "0", "-i",
        ]
        assert value_after(cmd, "-i") == "/data/filelist.txt"

    def test_progress_and_diagnostics_are_separate_streams(self, config):
        cmd = build_ffmpeg_command(config, Path("/data/filelist.txt"))
        assert value_after(cmd, "-progress") == "pipe:1"
        assert "-nostats" in cmd
        assert value_after(cmd, "-loglevel") == "info", "The Opening line is only logged at info level"
        assert "-nostdin" in cmd

    def test_progress_reported_once_per_stall_poll(self, config):
        assert value_after(build_ffmpeg_command(config, Path("/data/filelist.txt")), "-stats_period") == "5"
        config.stall_poll_interval_seconds = 2.5
        assert value_after(build_ffmpeg_command(config, Path("/data/filelist.txt")), "-stats_period") == "2.5"

    def test_output_encoding_defaults(self, config):
        cmd = build_ffmpeg_command(config, Path("/data/filelist.txt"))
        assert value_after(cmd, "-c:v") == "h264_vaapi"
        assert value_after(cmd, "-vf") == "format=nv12,hwupload,scale_vaapi=w=960:h=540"
        assert value_after(cmd, "-vaapi_device") == "/dev/dri/renderD128"
        assert value_after(cmd, "-r") == "25"
        for flag in ("-b:v", "-minrate", "-maxrate", "-bufsize"):
            assert value_after(cmd, flag) == "1800k"
        assert value_after(cmd, "-g") == "50"
        assert value_after(cmd, "-keyint_min") == "50"
        assert value_after(cmd, "-c:a") == "aac"
        assert value_after(cmd, "-b:a") == "64k"
        assert value_after(cmd, "-ar") == "44100"
        assert cmd[-3:] == ["-f", "flv", "rtmp://live.twitch.tv/app/live_123_secret"]

    def test_software_encoder(self, config):
        config.video_encoder = "libx264"
        config.resolution = (1280, 720)
        config.framerate = 30
        cmd = build_ffmpeg_command(config, Path("/data/filelist.txt"))
        assert "-hwaccel" not in cmd
        assert value_after(cmd, "-c:v") == "libx264"
        assert value_after(cmd, "-vf") == "scale=1280:720,format=yuv420p"
        assert value_after(cmd, "-g") == "60"

    def test_video_audio_mapping_without_music(self, config):
        cmd = build_ffmpeg_command(config, Path("/data/filelist.txt"))
        assert [value_after(cmd, "-map", n) for n in range(2)] == ["0:v:0", "0:a:0"]
        assert "-af" not in cmd

    def test_music_is_a_second_looped_input_with_reset_timestamps(self, config):
        cmd = build_ffmpeg_command(config, Path("/data/filelist.txt"), Path("/data/musiclist.txt"))
        assert cmd.count("-stream_loop") == 2
        assert value_after(cmd, "-i", 1) == "/data/musiclist.txt"
        assert [value_after(cmd, "-map", n) for n in range(2)] == ["0:v:0", "1:a:0"]
        assert value_after(cmd, "-af") == "asetpts=N/SR/TB"

    def test_stream_key_masked_for_logging(self, config):
        cmd = build_ffmpeg_command(config, Path("/data/filelist.txt"))
        masked = " ".join(mask_secret(cmd, config.stream_key))
        assert "live_123_secret" not in masked
        assert "rtmp://live.twitch.tv/app/****" in masked

    def test_opening_pattern_matches_concat_diagnostic(self):
        line = "[concat @ 0x55d5c8a0] Opening '/videos/it's a file.mp4' for reading"
        match = re.search(OPENING_PATTERN, line)
        assert match is not None
        assert match.group("path") == "/videos/it's a file.mp4"


class TestProgressParser:
    """Blocks of key=value lines terminated by progress=continue|end."""

    def test_block_becomes_record(self):
        parser = ProgressParser(generation=3)
        lines = ["frame=100", "fps=25.0", "out_time=00:00:04.000000", "speed=1.01x"]
        assert all(parser.feed(line + "\n") is None for line in lines)

        record = parser.feed("progress=continue\n")
        assert record is not None
        assert record.generation == 3
        assert record.fields["frame"] == "100"
        assert record.speed == pytest.approx(1.01)
        assert not record.zero_throughput
        assert not record.ended

    def test_end_marker(self):
        parser = ProgressParser()
        parser.feed("speed=0.99x")
        record = parser.feed("progress=end")
        assert record.ended

    def test_fields_do_not_leak_between_blocks(self):
        parser = ProgressParser()
        parser.feed("frame=1")
        parser.feed("progress=continue")
        record = parser.feed("progress=continue")
        assert record.fields == {}

    @pytest.mark.parametrize("value,expected", [
        ("1.00x", 1.0),
        (" 0.5x", 0.5),
        ("N/A", None),
        ("", None),
        (None, None),
        ("garbage", None),
    ])
    def test_parse_speed(self, value, expected):
        assert parse_speed(value) == expected

    @pytest.mark.parametrize("speed", ["0x", "0.00x", "N/A"])
    def test_zero_and_unknown_speed_are_zero_throughput(self, speed):
        parser = ProgressParser()
        parser.feed(f"speed={speed}")
        assert parser.feed("progress=continue").zero_throughput

    def test_ignores_noise(self):
        parser = ProgressParser()
        assert parser.feed("") is None
        assert parser.feed("not a key value line") is None
