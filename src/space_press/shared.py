"""
Shared types and utilities for the space publishing pipeline.

Contains Job, JobContext, StageOutcome, the error taxonomy, and utility
functions used by pipeline.py and all pipeline stage modules.
"""

import json
import math
import os
import shutil
import subprocess
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from dataclasses import dataclass, field
from typing import Optional

import builtins


def tprint(*args, **kwargs):
    """Print with [HH:MM:SS] timestamp prefix.

    Skips the timestamp for carriage-return progress lines (end != newline)
    so that in-place progress updates remain clean.
    """
    if kwargs.get("end", "\n") != "\n":
        builtins.print(*args, flush=True, **kwargs)
        return
    stamp = time.strftime("[%H:%M:%S]")
    builtins.print(stamp, *args, flush=True, **kwargs)


print = tprint

# Source kinds
SOURCE_LIVE = "live-conversation"
SOURCE_FILE = "direct-audio-file"
SOURCE_UNKNOWN = "unknown"
UNKNOWN_ID = "unknown"

# Execution modes (empty string on the command line means full)
MODE_FULL = "full"
MODE_TRANSCRIPT = "transcript-only"
MODE_ATTENDEES = "attendees-only"
MODE_REPLIES = "replies-only"
VALID_MODES = (MODE_FULL, MODE_TRANSCRIPT, MODE_ATTENDEES, MODE_REPLIES)
AUDIO_MODES = (MODE_FULL, MODE_TRANSCRIPT)  # modes that cannot finish without audio

AUDIO_PROFILES = ("transparent", "radio", "aggressive")

# Artifact suffixes, appended to the run's base name
AUDIO_MP3 = ".mp3"
CAPTIONS_VTT = ".vtt"
EMOJI_VTT = "_emoji.vtt"
TRANSCRIPT_HTML = "_transcript.html"
ATTENDEES_HTML = "_attendees.html"
LINKS_HTML = "_links.html"
REPLIES_HTML = "_replies.html"
METADATA_JSON = "_metadata.json"
PAYLOAD_JSON = "_payload.json"
SUMMARY_JSON = "_summary.json"
CAPTURE_DIR = "capture"


class SpacePressError(Exception):
    """Base class for pipeline errors."""


class ResolutionError(SpacePressError):
    """Source reference could not be turned into something acquirable.

    ``kind`` carries whatever classification was still possible.
    """

    def __init__(self, message: str, kind: str = "unknown"):
        super().__init__(message)
        self.kind = kind


class AcquisitionFailure(SpacePressError):
    """Every acquisition strategy failed while audio was required."""

    def __init__(self, message: str, attempts=()):
        super().__init__(message)
        self.attempts = list(attempts)


class CaptionParseError(SpacePressError):
    """A single caption record could not be resolved into a cue."""


class TranscriptionUnavailable(SpacePressError):
    """Speech-to-text fallback failed or is not configured."""


class LinkTitleFetchError(SpacePressError):
    """A link's page title could not be fetched."""


class PublishFailure(SpacePressError):
    """The publishing endpoint rejected the request or was unreachable."""


# ---------------------------------------------------------------------------
# Field resolution for loosely-structured JSON records
# ---------------------------------------------------------------------------

def resolve_field(record: dict, aliases) -> object:
    """Return the first usable value among synonymous keys of a record.

    ``aliases`` is an ordered sequence of either plain key names or
    ``(key, convert)`` pairs. A value is usable when it is not None and not
    an empty string, and its converter (if any) returns something other than
    None. Converters may raise ValueError/TypeError to reject a value.
    """
    if not isinstance(record, dict):
        return None
    for alias in aliases:
        key, convert = alias if isinstance(alias, tuple) else (alias, None)
        value = record.get(key)
        if value is None or value == "":
            continue
        if convert is not None:
            try:
                value = convert(value)
            except (TypeError, ValueError):
                continue
            if value is None:
                continue
        return value
    return None


def to_seconds(value) -> float:
    """Coerce a number or numeric string to finite float seconds."""
    if isinstance(value, bool):
        raise TypeError("boolean is not a time value")
    seconds = float(value)
    if math.isnan(seconds) or math.isinf(seconds):
        raise ValueError(f"non-finite time value: {value!r}")
    return seconds


def ms_to_seconds(value) -> float:
    return to_seconds(value) / 1000.0


# ---------------------------------------------------------------------------
# Job configuration and per-run context
# ---------------------------------------------------------------------------

def _option_bool(value, default: bool) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off"):
            return False
    if isinstance(value, (int, float)):
        return bool(value)
    return default


def _option_number(value, default, cast=int, minimum=0):
    if isinstance(value, bool) or value is None:
        return default
    try:
        number = cast(value)
    except (TypeError, ValueError):
        return default
    return number if number >= minimum else default


@dataclass(frozen=True)
class JobOptions:
    """Tunable knobs passed as a JSON object on the command line."""
    fetch_titles: bool = True
    fetch_limit: int = 18
    fetch_timeout_sec: int = 4
    fetch_workers: int = 6
    capture_timeout_sec: int = 3600
    metadata_timeout_sec: int = 120
    download_timeout_sec: int = 1800
    transcribe_timeout_sec: int = 900
    trim_silence: bool = True
    deadline_sec: Optional[float] = None  # overall job deadline (None = unbounded)

    @classmethod
    def from_mapping(cls, raw) -> "JobOptions":
        """Build options from a loosely-typed mapping; bad values keep defaults."""
        if not isinstance(raw, dict):
            return cls()
        d = cls()
        deadline = _option_number(raw.get("deadline_sec"), None, float, minimum=1)
        return cls(
            fetch_titles=_option_bool(raw.get("fetch_titles"), d.fetch_titles),
            fetch_limit=_option_number(raw.get("fetch_limit"), d.fetch_limit),
            fetch_timeout_sec=_option_number(raw.get("fetch_timeout_sec"), d.fetch_timeout_sec, minimum=1),
            fetch_workers=_option_number(raw.get("fetch_workers"), d.fetch_workers, minimum=1),
            capture_timeout_sec=_option_number(raw.get("capture_timeout_sec"), d.capture_timeout_sec, minimum=1),
            metadata_timeout_sec=_option_number(raw.get("metadata_timeout_sec"), d.metadata_timeout_sec, minimum=1),
            download_timeout_sec=_option_number(raw.get("download_timeout_sec"), d.download_timeout_sec, minimum=1),
            transcribe_timeout_sec=_option_number(raw.get("transcribe_timeout_sec"), d.transcribe_timeout_sec, minimum=1),
            trim_silence=_option_bool(raw.get("trim_silence"), d.trim_silence),
            deadline_sec=deadline,
        )


def normalize_mode(mode: Optional[str]) -> str:
    """Map a user-supplied mode to one of VALID_MODES ('' and None mean full)."""
    value = (mode or "").strip().lower()
    if not value:
        return MODE_FULL
    if value not in VALID_MODES:
        raise ValueError(f"Invalid mode: {mode!r} (valid: {', '.join(VALID_MODES)})")
    return value


def default_storage_prefix(when: float) -> str:
    """Year/month storage prefix for a run started at epoch ``when``."""
    dt = datetime.fromtimestamp(when, timezone.utc)
    return f"spaces/{dt:%Y}/{dt:%m}"


@dataclass(frozen=True)
class Job:
    """One invocation: what to process and where the collaborators live.

    Built once by the command line (or a test) and never mutated; stage
    outputs go to JobContext.
    """
    source_ref: str = ""
    source_kind_hint: str = "auto"
    title_hint: str = ""
    post_id: str = ""
    mode: str = MODE_FULL
    storage_prefix: str = ""
    visibility: str = "public"
    audio_profile: str = "radio"
    reference_link: str = ""
    audio_file: Optional[Path] = None  # explicitly provided local audio file
    artifact_dir: Path = Path("./out")
    options: JobOptions = field(default_factory=JobOptions)
    verbose: bool = False
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    started_at: float = field(default_factory=time.time)
    # Credentials and endpoints (read from the environment by the CLI)
    capture_auth_token: str = ""
    capture_csrf_token: str = ""
    openai_api_key: str = ""
    stt_model: str = "whisper-1"
    wp_base_url: str = ""
    wp_user: str = ""
    wp_app_password: str = ""
    s3_bucket: str = ""
    s3_endpoint: str = ""
    s3_public_base: str = ""
    s3_proxy_base: str = ""

    @property
    def effective_storage_prefix(self) -> str:
        prefix = self.storage_prefix.strip().strip("/")
        return prefix or default_storage_prefix(self.started_at)

    @property
    def has_capture_credentials(self) -> bool:
        return bool(self.capture_auth_token and self.capture_csrf_token)

    @property
    def has_stt_credentials(self) -> bool:
        return bool(self.openai_api_key)

    @property
    def has_storage(self) -> bool:
        return bool(self.s3_bucket)

    @property
    def has_publisher(self) -> bool:
        return bool(self.wp_base_url)

    @property
    def requires_audio(self) -> bool:
        return self.mode in AUDIO_MODES


def job_from_environ(environ=None, **params) -> Job:
    """Build a Job from invocation parameters plus credentials in the environment."""
    env = os.environ if environ is None else environ
    return Job(
        capture_auth_token=(env.get("TWITTER_AUTH_TOKEN") or "").strip(),
        capture_csrf_token=(env.get("TWITTER_CSRF_TOKEN") or "").strip(),
        openai_api_key=(env.get("OPENAI_API_KEY") or "").strip(),
        stt_model=(env.get("STT_MODEL") or "whisper-1").strip(),
        wp_base_url=(env.get("WP_BASE_URL") or "").strip().rstrip("/"),
        wp_user=(env.get("WP_USER") or "").strip(),
        wp_app_password=(env.get("WP_APP_PASSWORD") or "").strip(),
        s3_bucket=(env.get("S3_BUCKET") or "").strip(),
        s3_endpoint=(env.get("S3_ENDPOINT") or "").strip().rstrip("/"),
        s3_public_base=(env.get("S3_PUBLIC_BASE") or "").strip().rstrip("/"),
        s3_proxy_base=(env.get("S3_PROXY_BASE") or "").strip().rstrip("/"),
        **params,
    )


@dataclass
class JobContext:
    """Outputs collected during pipeline execution.

    Stages never assign to these fields themselves; they return updates in
    a StageOutcome and the orchestrator applies them, bumping ``version``.
    """
    version: int = 0
    source_kind: str = SOURCE_UNKNOWN
    identifier: str = UNKNOWN_ID
    base_name: str = ""
    acquisition: Optional[object] = None  # acquire.AcquisitionResult
    acquisition_attempts: list = field(default_factory=list)  # (strategy, outcome)
    session_metadata: Optional[dict] = None
    audio_path: Optional[Path] = None  # encoded audio, else the acquired file
    caption_shift: float = 0.0
    cues: list = field(default_factory=list)  # captions.Cue, time-ordered
    transcript_source: str = ""  # "captions" or "speech-to-text"
    vtt_path: Optional[Path] = None
    emoji_vtt_path: Optional[Path] = None
    transcript_html_path: Optional[Path] = None
    transcript_html: str = ""
    roster: Optional[object] = None  # attendees.Roster
    attendees_html: str = ""
    links: list = field(default_factory=list)  # engagement.LinkEntry
    links_html: str = ""
    replies_html: str = ""
    audio_url: str = ""
    audio_proxy_url: str = ""
    vtt_url: str = ""
    metadata_resolved_at: Optional[float] = None
    bundle: Optional[object] = None  # publish.AssetBundle
    publish_response: Optional[dict] = None
    outcomes: dict = field(default_factory=dict)  # stage name -> StageOutcome

    def apply(self, updates: dict) -> None:
        """Apply a stage's updates as one new context version."""
        if not updates:
            return
        for key, value in updates.items():
            if key in ("version", "outcomes") or not hasattr(self, key):
                raise AttributeError(f"JobContext has no updatable field {key!r}")
            setattr(self, key, value)
        self.version += 1


STATUS_OK = "ok"
STATUS_SKIPPED = "skipped"
STATUS_SOFT_FAIL = "soft_fail"
STATUS_HARD_FAIL = "hard_fail"


@dataclass
class StageOutcome:
    """Result of running (or not running) one pipeline stage."""
    status: str
    reason: str = ""
    updates: dict = field(default_factory=dict)

    @classmethod
    def ok(cls, reason: str = "", **updates) -> "StageOutcome":
        return cls(STATUS_OK, reason, updates)

    @classmethod
    def skipped(cls, reason: str, **updates) -> "StageOutcome":
        return cls(STATUS_SKIPPED, reason, updates)

    @classmethod
    def soft_fail(cls, reason: str, **updates) -> "StageOutcome":
        return cls(STATUS_SOFT_FAIL, reason, updates)

    @classmethod
    def hard_fail(cls, reason: str, **updates) -> "StageOutcome":
        return cls(STATUS_HARD_FAIL, reason, updates)

    @property
    def failed(self) -> bool:
        return self.status in (STATUS_SOFT_FAIL, STATUS_HARD_FAIL)


def artifact_path(job: Job, ctx: JobContext, suffix: str) -> Path:
    """Path of a run artifact: <artifact_dir>/<base><suffix>."""
    return job.artifact_dir / f"{ctx.base_name}{suffix}"


def find_previous_artifact(job: Job, ctx: JobContext, suffix: str) -> Optional[Path]:
    """Locate an artifact for the same identifier left by an earlier run.

    Prefers this run's own file; otherwise the newest match by mtime.
    """
    own = artifact_path(job, ctx, suffix)
    if own.exists() and own.stat().st_size > 0:
        return own
    if ctx.identifier == UNKNOWN_ID or not job.artifact_dir.exists():
        return None
    matches = [p for p in job.artifact_dir.glob(f"space-*-{ctx.identifier}{suffix}")
               if p.stat().st_size > 0]
    if not matches:
        return None
    return max(matches, key=lambda p: p.stat().st_mtime)


# ---------------------------------------------------------------------------
# Pipeline utilities (used across acquire, media, storage, transcription)
# ---------------------------------------------------------------------------

def run_command(cmd: list[str], description: str, verbose: bool = False,
                timeout: Optional[float] = None, env: Optional[dict] = None,
                cwd: Optional[Path] = None) -> subprocess.CompletedProcess:
    """Run an external tool with error handling and an optional time budget."""
    if verbose:
        print(f"  Running: {' '.join(cmd)}")
    run_env = None
    if env:
        run_env = dict(os.environ)
        run_env.update(env)
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, check=True,
                                timeout=timeout, env=run_env, cwd=cwd)
        return result
    except subprocess.CalledProcessError as e:
        print(f"  Error: {description}")
        print(f"  {(e.stderr or '').strip()[-800:]}")
        raise
    except subprocess.TimeoutExpired:
        print(f"  Error: {description} timed out after {timeout}s")
        raise


def _save_json(path: Path, data) -> None:
    """Write data to a JSON file with standard formatting."""
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2, ensure_ascii=False)


def create_stt_client(api_key: str, timeout: float):
    """Create an OpenAI client for the speech-to-text fallback."""
    from openai import OpenAI
    return OpenAI(api_key=api_key, timeout=timeout, max_retries=0)


def check_dependencies() -> dict[str, bool]:
    """Check for the external tools the collaborators shell out to."""
    deps = {}
    for tool in ["twspace-crawler", "yt-dlp", "ffmpeg", "aws"]:
        deps[tool] = shutil.which(tool) is not None
    return deps
