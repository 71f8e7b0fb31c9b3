"""Tests for media.py: silence detection and encoding commands."""

import subprocess
from pathlib import Path
from unittest.mock import patch

from space_press.media import (
    PROFILE_FILTERS, parse_leading_silence, measure_leading_silence,
    build_encode_command, encode_audio,
)

SILENCE_STDERR = """\
Input #0, mp3, from 'in.mp3':
[silencedetect @ 0x7f8] silence_start: 0
[silencedetect @ 0x7f8] silence_end: 4.218 | silence_duration: 4.218
[silencedetect @ 0x7f8] silence_start: 120.5
[silencedetect @ 0x7f8] silence_end: 122.0 | silence_duration: 1.5
"""


# ---------------------------------------------------------------------------
# parse_leading_silence
# ---------------------------------------------------------------------------

class TestParseLeadingSilence:
    def test_leading_run(self):
        assert parse_leading_silence(SILENCE_STDERR) == 4.218

    def test_silence_not_at_start(self):
        stderr = ("[silencedetect @ 0x1] silence_start: 12.3\n"
                  "[silencedetect @ 0x1] silence_end: 14.0 | silence_duration: 1.7\n")
        assert parse_leading_silence(stderr) == 0.0

    def test_negative_rounding_start(self):
        stderr = ("[silencedetect @ 0x1] silence_start: -0.00133\n"
                  "[silencedetect @ 0x1] silence_end: 2.5 | silence_duration: 2.5\n")
        assert parse_leading_silence(stderr) == 2.5

    def test_unterminated_or_missing(self):
        assert parse_leading_silence("[silencedetect @ 0x1] silence_start: 0\n") == 0.0
        assert parse_leading_silence("") == 0.0
        assert parse_leading_silence(None) == 0.0


@patch("space_press.media.run_command")
def test_measure_leading_silence(mock_run):
    mock_run.return_value = subprocess.CompletedProcess([], 0, "", SILENCE_STDERR)
    assert measure_leading_silence(Path("in.mp3"), timeout=30) == 4.218
    cmd = mock_run.call_args.args[0]
    assert cmd[0] == "ffmpeg"
    assert any(a.startswith("silencedetect=") for a in cmd)
    assert mock_run.call_args.kwargs["timeout"] == 30


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------

class TestBuildEncodeCommand:
    def test_radio_with_trim(self):
        cmd = build_encode_command(Path("in.m4a"), Path("out.mp3"), "radio", trim_secs=4.2181)
        assert cmd[cmd.index("-ss") + 1] == "4.218"
        assert cmd.index("-ss") < cmd.index("-i")
        assert cmd[cmd.index("-af") + 1] == PROFILE_FILTERS["radio"]
        assert cmd[-1] == "out.mp3"
        assert "libmp3lame" in cmd

    def test_transparent_has_no_filter(self):
        cmd = build_encode_command(Path("in.m4a"), Path("out.mp3"), "transparent")
        assert "-af" not in cmd
        assert "-ss" not in cmd

    def test_aggressive_compresses_and_denoises(self):
        cmd = build_encode_command(Path("in.m4a"), Path("out.mp3"), "aggressive")
        chain = cmd[cmd.index("-af") + 1]
        assert "acompressor" in chain
        assert "afftdn" in chain

    def test_unknown_profile_uses_default(self):
        cmd = build_encode_command(Path("in.m4a"), Path("out.mp3"), "loud")
        assert cmd[cmd.index("-af") + 1] == PROFILE_FILTERS["radio"]


@patch("space_press.media.run_command")
def test_encode_audio(mock_run, tmp_path):
    dest = tmp_path / "out.mp3"
    assert encode_audio(tmp_path / "in.m4a", dest, "radio", 1.5, timeout=60) == dest
    assert mock_run.call_args.args[0] == build_encode_command(tmp_path / "in.m4a", dest, "radio", 1.5)
    assert mock_run.call_args.kwargs["timeout"] == 60
