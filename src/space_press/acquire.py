"""
Acquisition module for the space publishing pipeline.

Obtains a local audio file by trying strategies in fixed priority order and
stopping at the first that yields a usable file:

1. live-capture: the space crawler (needs session cookies); also yields
   the session metadata and the caption stream
2. download: yt-dlp against the source reference
3. provided-file: an audio file handed to the job directly (transcript-only)

A strategy that fails or exceeds its time budget is "not usable" and the
next one is tried; nothing is retried in place.
"""

import json
import shutil
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from space_press.shared import (
    tprint as print,
    Job, SOURCE_LIVE, MODE_TRANSCRIPT, CAPTURE_DIR,
    AcquisitionFailure, run_command,
)
from space_press.source import AUDIO_EXTENSIONS, is_audio_file_ref

STRATEGY_LIVE = "live-capture"
STRATEGY_DOWNLOAD = "download"
STRATEGY_PROVIDED = "provided-file"

CAPTION_GLOBS = ("*cc.jsonl", "*captions*.jsonl", "*.jsonl")


@dataclass
class AcquisitionResult:
    """What the first successful strategy handed back.

    Caption source and session metadata always come from the same call as
    the audio.
    """
    strategy: str
    audio_path: Path
    caption_source: Optional[Path] = None
    session_metadata: Optional[dict] = None
    captured_at: Optional[float] = None


def _capture_env(job: Job) -> dict:
    return {
        "TWITTER_AUTH_TOKEN": job.capture_auth_token,
        "TWITTER_CSRF_TOKEN": job.capture_csrf_token,
    }


def _fresh_dir(path: Path) -> Path:
    """Empty per-run directory, so only files from this call are picked up."""
    if path.exists():
        shutil.rmtree(path)
    path.mkdir(parents=True)
    return path


def _newest(paths) -> Optional[Path]:
    files = [p for p in paths if p.is_file() and p.stat().st_size > 0]
    if not files:
        return None
    return max(files, key=lambda p: p.stat().st_mtime)


def _find_audio(directory: Path, stem_prefix: str = "") -> Optional[Path]:
    candidates = []
    for ext in AUDIO_EXTENSIONS:
        candidates.extend(directory.rglob(f"{stem_prefix}*{ext}"))
    return _newest(candidates)


def _find_captions(directory: Path) -> Optional[Path]:
    for pattern in CAPTION_GLOBS:
        found = _newest(directory.rglob(pattern))
        if found:
            return found
    return None


def load_metadata_file(directory: Path) -> Optional[dict]:
    """Load the newest JSON document the crawler left in ``directory``."""
    for path in sorted(directory.rglob("*.json"), key=lambda p: p.stat().st_mtime, reverse=True):
        try:
            with open(path, encoding="utf-8") as f:
                doc = json.load(f)
        except (OSError, ValueError):
            continue
        if isinstance(doc, dict):
            return doc
    return None


# ---------------------------------------------------------------------------
# Strategy availability
# ---------------------------------------------------------------------------

def _live_unavailable(job: Job, kind: str, identifier: str) -> Optional[str]:
    if kind != SOURCE_LIVE:
        return "source is not a live conversation"
    if not identifier or identifier == "unknown":
        return "no conversation identifier"
    if not job.has_capture_credentials:
        return "no capture credentials"
    return None


def _download_unavailable(job: Job, kind: str, identifier: str) -> Optional[str]:
    if not job.source_ref.startswith(("http://", "https://")):
        return "no downloadable source reference"
    return None


def _provided_file(job: Job) -> Optional[Path]:
    if job.audio_file:
        return Path(job.audio_file)
    ref = job.source_ref
    if ref and not ref.startswith(("http://", "https://")) and is_audio_file_ref(ref):
        return Path(ref)
    return None


def _provided_unavailable(job: Job, kind: str, identifier: str) -> Optional[str]:
    if job.mode != MODE_TRANSCRIPT:
        return "provided files are only used in transcript-only mode"
    path = _provided_file(job)
    if path is None:
        return "no audio file provided"
    if not path.is_file():
        return f"provided file not found: {path}"
    return None


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

def _capture_live(job: Job, identifier: str, workdir: Path) -> Optional[AcquisitionResult]:
    capture_dir = _fresh_dir(workdir / CAPTURE_DIR / f"{identifier}-{job.run_id}")
    run_command(
        ["twspace-crawler", "--id", identifier, "--force", "--out", str(capture_dir)],
        "capturing live conversation",
        job.verbose,
        timeout=job.options.capture_timeout_sec,
        env=_capture_env(job),
    )
    audio = _find_audio(capture_dir)
    if audio is None:
        print("  Crawler finished but left no audio file")
        return None
    return AcquisitionResult(
        strategy=STRATEGY_LIVE,
        audio_path=audio,
        caption_source=_find_captions(capture_dir),
        session_metadata=load_metadata_file(capture_dir),
        captured_at=time.time(),
    )


def _download(job: Job, identifier: str, workdir: Path) -> Optional[AcquisitionResult]:
    download_dir = workdir / "download"
    download_dir.mkdir(parents=True, exist_ok=True)
    stem = f"{identifier}.source"
    run_command(
        ["yt-dlp", "-x", "--audio-format", "mp3", "--no-progress",
         "-o", str(download_dir / f"{stem}.%(ext)s"), job.source_ref],
        "downloading audio",
        job.verbose,
        timeout=job.options.download_timeout_sec,
    )
    audio = _find_audio(download_dir, stem)
    if audio is None:
        print("  Downloader finished but left no audio file")
        return None
    return AcquisitionResult(strategy=STRATEGY_DOWNLOAD, audio_path=audio,
                             captured_at=time.time())


def _use_provided(job: Job, identifier: str, workdir: Path) -> Optional[AcquisitionResult]:
    return AcquisitionResult(strategy=STRATEGY_PROVIDED, audio_path=_provided_file(job))


# Fixed priority order: (name, unavailable-reason check, strategy)
STRATEGIES = [
    (STRATEGY_LIVE, _live_unavailable, _capture_live),
    (STRATEGY_DOWNLOAD, _download_unavailable, _download),
    (STRATEGY_PROVIDED, _provided_unavailable, _use_provided),
]


def acquire_audio(job: Job, kind: str, identifier: str,
                  workdir: Path) -> tuple[Optional[AcquisitionResult], list[tuple[str, str]]]:
    """Run the fallback chain.

    Returns (result, attempts) where attempts lists (strategy, outcome) for
    the summary. Raises AcquisitionFailure when no strategy produced audio
    and the job's mode requires it.
    """
    print()
    print("[acquire] Acquiring audio...")
    attempts = []

    for name, unavailable, strategy in STRATEGIES:
        reason = unavailable(job, kind, identifier)
        if reason:
            print(f"  Skipping {name}: {reason}")
            attempts.append((name, f"unavailable: {reason}"))
            continue

        print(f"  Trying {name}...")
        try:
            result = strategy(job, identifier, workdir)
        except subprocess.TimeoutExpired:
            attempts.append((name, "timed out"))
            continue
        except (subprocess.CalledProcessError, OSError) as e:
            attempts.append((name, f"failed: {e}"))
            continue

        if result is None:
            attempts.append((name, "produced no audio"))
            continue

        attempts.append((name, "ok"))
        print(f"  Audio acquired via {name}: {result.audio_path.name}")
        if result.caption_source:
            print(f"  Caption stream: {result.caption_source.name}")
        if result.session_metadata:
            print("  Session metadata captured")
        return result, attempts

    if job.requires_audio:
        detail = "; ".join(f"{n}: {o}" for n, o in attempts)
        raise AcquisitionFailure(f"no acquisition strategy produced audio ({detail})", attempts)
    print("  No audio acquired (not required in this mode)")
    return None, attempts


def fetch_session_metadata(job: Job, identifier: str, workdir: Path) -> Optional[dict]:
    """Fetch session metadata only (no audio) via the crawler.

    Used by attendee-only runs, which skip acquisition. Failures return None.
    """
    if _live_unavailable(job, SOURCE_LIVE, identifier):
        return None
    try:
        meta_dir = _fresh_dir(workdir / CAPTURE_DIR / f"{identifier}-{job.run_id}-meta")
        run_command(
            ["twspace-crawler", "--id", identifier, "--skip-download", "--out", str(meta_dir)],
            "fetching session metadata",
            job.verbose,
            timeout=job.options.metadata_timeout_sec,
            env=_capture_env(job),
        )
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError):
        return None
    return load_metadata_file(meta_dir)
