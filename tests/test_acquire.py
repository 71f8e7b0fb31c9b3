"""Tests for acquire.py: the acquisition fallback chain."""

import json
import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from conftest import make_job
from space_press.shared import (
    SOURCE_LIVE, SOURCE_FILE, SOURCE_UNKNOWN, MODE_TRANSCRIPT, MODE_ATTENDEES,
    AcquisitionFailure,
)
from space_press.acquire import (
    STRATEGY_LIVE, STRATEGY_DOWNLOAD, STRATEGY_PROVIDED,
    acquire_audio, fetch_session_metadata, load_metadata_file,
)

SPACE_ID = "1YqKDqDXAbwKV"
CREDS = dict(capture_auth_token="auth", capture_csrf_token="csrf")


def _out_dir(cmd):
    return Path(cmd[cmd.index("--out") + 1])


def _fake_crawler(cmd, description, verbose=False, **kwargs):
    """Crawler that leaves audio, a caption stream and session metadata."""
    out = _out_dir(cmd)
    (out / "audio.m4a").write_bytes(b"\x00" * 64)
    (out / f"{SPACE_ID}_cc.jsonl").write_text('{"start": 0, "end": 1, "text": "hi"}\n')
    (out / f"{SPACE_ID}.json").write_text(json.dumps({"metadata": {"title": "Captured"}}))
    return subprocess.CompletedProcess(cmd, 0, "", "")


def _fake_downloader(cmd, description, verbose=False, **kwargs):
    template = cmd[cmd.index("-o") + 1]
    Path(template.replace("%(ext)s", "mp3")).write_bytes(b"\x00" * 64)
    return subprocess.CompletedProcess(cmd, 0, "", "")


def _fake_tools(cmd, description, verbose=False, **kwargs):
    if cmd[0] == "twspace-crawler":
        return _fake_crawler(cmd, description, verbose, **kwargs)
    return _fake_downloader(cmd, description, verbose, **kwargs)


# ---------------------------------------------------------------------------
# Strategy order
# ---------------------------------------------------------------------------

class TestAcquireAudio:
    @patch("space_press.acquire.run_command", side_effect=_fake_tools)
    def test_live_capture_first(self, mock_run, tmp_path):
        job = make_job(tmp_path, **CREDS)
        result, attempts = acquire_audio(job, SOURCE_LIVE, SPACE_ID, tmp_path)
        assert result.strategy == STRATEGY_LIVE
        assert result.audio_path.name == "audio.m4a"
        assert result.caption_source.name == f"{SPACE_ID}_cc.jsonl"
        assert result.session_metadata == {"metadata": {"title": "Captured"}}
        assert result.captured_at is not None
        assert attempts == [(STRATEGY_LIVE, "ok")]
        # later strategies never run once one succeeds
        assert mock_run.call_count == 1

    @patch("space_press.acquire.run_command", side_effect=_fake_tools)
    def test_capture_gets_credentials_and_budget(self, mock_run, tmp_path):
        job = make_job(tmp_path, **CREDS)
        acquire_audio(job, SOURCE_LIVE, SPACE_ID, tmp_path)
        kwargs = mock_run.call_args.kwargs
        assert kwargs["env"] == {"TWITTER_AUTH_TOKEN": "auth", "TWITTER_CSRF_TOKEN": "csrf"}
        assert kwargs["timeout"] == job.options.capture_timeout_sec

    @patch("space_press.acquire.run_command")
    def test_capture_ignores_files_from_earlier_runs(self, mock_run, tmp_path):
        # leftovers from a previous run, and from an earlier attempt of this one
        for stale in (tmp_path / "capture" / SPACE_ID, tmp_path / "capture" / f"{SPACE_ID}-run0001"):
            stale.mkdir(parents=True)
            (stale / "old.m4a").write_bytes(b"\x00" * 64)
            (stale / "old_cc.jsonl").write_text('{"start": 0, "end": 1, "text": "stale"}\n')
            (stale / "old.json").write_text(json.dumps({"metadata": {"title": "Stale"}}))

        def fake(cmd, description, verbose=False, **kwargs):
            (_out_dir(cmd) / "new.m4a").write_bytes(b"\x00" * 64)
            return subprocess.CompletedProcess(cmd, 0, "", "")
        mock_run.side_effect = fake

        result, _ = acquire_audio(make_job(tmp_path, **CREDS), SOURCE_LIVE, SPACE_ID, tmp_path)
        assert result.audio_path.name == "new.m4a"
        assert result.audio_path.parent == tmp_path / "capture" / f"{SPACE_ID}-run0001"
        assert result.caption_source is None
        assert result.session_metadata is None

    @patch("space_press.acquire.run_command", side_effect=_fake_tools)
    def test_download_when_capture_unavailable(self, mock_run, tmp_path):
        job = make_job(tmp_path)
        result, attempts = acquire_audio(job, SOURCE_LIVE, SPACE_ID, tmp_path)
        assert result.strategy == STRATEGY_DOWNLOAD
        assert result.caption_source is None
        assert result.session_metadata is None
        assert attempts[0] == (STRATEGY_LIVE, "unavailable: no capture credentials")
        assert attempts[1] == (STRATEGY_DOWNLOAD, "ok")
        assert mock_run.call_args.args[0][0] == "yt-dlp"

    @patch("space_press.acquire.run_command")
    def test_download_after_capture_failure(self, mock_run, tmp_path):
        def fake(cmd, description, verbose=False, **kwargs):
            if cmd[0] == "twspace-crawler":
                raise subprocess.CalledProcessError(1, cmd, stderr="403")
            return _fake_downloader(cmd, description, verbose, **kwargs)
        mock_run.side_effect = fake

        job = make_job(tmp_path, **CREDS)
        result, attempts = acquire_audio(job, SOURCE_LIVE, SPACE_ID, tmp_path)
        assert result.strategy == STRATEGY_DOWNLOAD
        assert attempts[0][0] == STRATEGY_LIVE
        assert attempts[0][1].startswith("failed")

    @patch("space_press.acquire.run_command")
    def test_timeout_is_not_retried(self, mock_run, tmp_path):
        mock_run.side_effect = subprocess.TimeoutExpired(["x"], 1)
        job = make_job(tmp_path, **CREDS)
        with pytest.raises(AcquisitionFailure) as exc:
            acquire_audio(job, SOURCE_LIVE, SPACE_ID, tmp_path)
        # one call per strategy, the provided-file strategy is unavailable in full mode
        assert mock_run.call_count == 2
        assert exc.value.attempts[:2] == [(STRATEGY_LIVE, "timed out"), (STRATEGY_DOWNLOAD, "timed out")]

    @patch("space_press.acquire.run_command", return_value=subprocess.CompletedProcess([], 0, "", ""))
    def test_tool_leaving_no_audio(self, mock_run, tmp_path):
        job = make_job(tmp_path, mode=MODE_ATTENDEES)
        result, attempts = acquire_audio(job, SOURCE_LIVE, SPACE_ID, tmp_path)
        assert result is None
        assert (STRATEGY_DOWNLOAD, "produced no audio") in attempts

    @patch("space_press.acquire.run_command")
    def test_no_source_at_all(self, mock_run, tmp_path):
        job = make_job(tmp_path, source_ref="")
        with pytest.raises(AcquisitionFailure):
            acquire_audio(job, SOURCE_UNKNOWN, "unknown", tmp_path)
        mock_run.assert_not_called()

    @patch("space_press.acquire.run_command")
    def test_provided_file_in_transcript_mode(self, mock_run, tmp_path):
        audio = tmp_path / "episode.mp3"
        audio.write_bytes(b"\x00" * 64)
        job = make_job(tmp_path, source_ref=str(audio), mode=MODE_TRANSCRIPT)
        result, attempts = acquire_audio(job, SOURCE_FILE, "episode", tmp_path)
        assert result.strategy == STRATEGY_PROVIDED
        assert result.audio_path == audio
        assert result.captured_at is None
        mock_run.assert_not_called()

    @patch("space_press.acquire.run_command", side_effect=_fake_tools)
    def test_live_capture_beats_provided_file(self, mock_run, tmp_path):
        audio = tmp_path / "episode.mp3"
        audio.write_bytes(b"\x00" * 64)
        job = make_job(tmp_path, mode=MODE_TRANSCRIPT, audio_file=audio, **CREDS)
        result, _ = acquire_audio(job, SOURCE_LIVE, SPACE_ID, tmp_path)
        assert result.strategy == STRATEGY_LIVE

    @patch("space_press.acquire.run_command")
    def test_provided_file_ignored_in_full_mode(self, mock_run, tmp_path):
        audio = tmp_path / "episode.mp3"
        audio.write_bytes(b"\x00" * 64)
        job = make_job(tmp_path, source_ref=str(audio))
        with pytest.raises(AcquisitionFailure) as exc:
            acquire_audio(job, SOURCE_FILE, "episode", tmp_path)
        assert "transcript-only" in str(exc.value)

    @patch("space_press.acquire.run_command")
    def test_missing_provided_file(self, mock_run, tmp_path):
        job = make_job(tmp_path, source_ref="", mode=MODE_TRANSCRIPT,
                       audio_file=tmp_path / "missing.mp3")
        with pytest.raises(AcquisitionFailure) as exc:
            acquire_audio(job, SOURCE_FILE, "missing", tmp_path)
        assert "provided file not found" in str(exc.value)


# ---------------------------------------------------------------------------
# Session metadata
# ---------------------------------------------------------------------------

class TestSessionMetadata:
    @patch("space_press.acquire.run_command")
    def test_needs_credentials(self, mock_run, tmp_path):
        assert fetch_session_metadata(make_job(tmp_path), SPACE_ID, tmp_path) is None
        mock_run.assert_not_called()

    @patch("space_press.acquire.run_command")
    def test_metadata_only_fetch(self, mock_run, tmp_path):
        def fake(cmd, description, verbose=False, **kwargs):
            assert "--skip-download" in cmd
            (_out_dir(cmd) / "meta.json").write_text(json.dumps({"creator": "alice"}))
            return subprocess.CompletedProcess(cmd, 0, "", "")
        mock_run.side_effect = fake
        meta = fetch_session_metadata(make_job(tmp_path, **CREDS), SPACE_ID, tmp_path)
        assert meta == {"creator": "alice"}

    @patch("space_press.acquire.run_command")
    def test_metadata_budget_and_fresh_directory(self, mock_run, tmp_path):
        stale = tmp_path / "capture" / f"{SPACE_ID}-run0001-meta"
        stale.mkdir(parents=True)
        (stale / "old.json").write_text(json.dumps({"creator": "stale"}))
        mock_run.return_value = subprocess.CompletedProcess([], 0, "", "")

        job = make_job(tmp_path, **CREDS)
        assert fetch_session_metadata(job, SPACE_ID, tmp_path) is None
        assert mock_run.call_args.kwargs["timeout"] == job.options.metadata_timeout_sec

    @patch("space_press.acquire.run_command",
           side_effect=subprocess.CalledProcessError(1, ["twspace-crawler"]))
    def test_failure_returns_none(self, mock_run, tmp_path):
        assert fetch_session_metadata(make_job(tmp_path, **CREDS), SPACE_ID, tmp_path) is None

    def test_load_metadata_skips_bad_json(self, tmp_path):
        (tmp_path / "broken.json").write_text("{nope")
        (tmp_path / "list.json").write_text("[1, 2]")
        assert load_metadata_file(tmp_path) is None
