"""
Publishing for the space publishing pipeline.

Assembles the AssetBundle from whatever the stages produced and sends it to
the CMS endpoint, either as one full registration or as a scoped patch
limited to the assets a partial mode refreshes. Only non-blank fields go
over the wire, so the endpoint can tell "omitted" from "explicitly empty".
"""

import re
from dataclasses import dataclass, fields
from datetime import datetime, timezone
from typing import Optional

import httpx

from space_press.shared import (
    tprint as print,
    Job, JobContext, PublishFailure, UNKNOWN_ID,
    MODE_FULL, MODE_TRANSCRIPT, MODE_ATTENDEES, MODE_REPLIES,
)
from space_press.attendees import locate_session

REGISTER_PATH = "/wp-json/space-press/v1/register"
PATCH_PATH = "/wp-json/space-press/v1/patch"
PUBLISH_TIMEOUT_SECS = 60.0

TITLE_KEYS = ("title", "space_title")
START_KEYS = ("started_at", "start", "start_time", "scheduled_start", "created_at")


@dataclass
class AssetBundle:
    """Everything a post can carry; every field but post_id is optional."""
    post_id: str = ""
    title: str = ""
    audio_url: str = ""
    audio_proxy_url: str = ""
    vtt_url: str = ""
    transcript_html: str = ""
    attendees_html: str = ""
    replies_html: str = ""
    links_html: str = ""
    start_time: str = ""


# AssetBundle field -> request key
PAYLOAD_KEYS = {
    "post_id": "post_id",
    "title": "title",
    "audio_url": "mp3_url",
    "audio_proxy_url": "mp3_proxy_url",
    "vtt_url": "vtt_url",
    "transcript_html": "transcript_html",
    "attendees_html": "attendees_html",
    "replies_html": "replies_html",
    "links_html": "links_html",
    "start_time": "start_time",
}

# Fields a scoped patch carries, per partial mode
PATCH_FIELDS = {
    MODE_ATTENDEES: ("attendees_html",),
    MODE_REPLIES: ("replies_html", "links_html"),
    MODE_TRANSCRIPT: ("vtt_url", "transcript_html"),
}


# ---------------------------------------------------------------------------
# Title and start-time policies
# ---------------------------------------------------------------------------

def parse_epoch(value) -> Optional[float]:
    """Parse a timestamp as epoch seconds.

    Integers (or digit strings) with 13+ digits are milliseconds, shorter
    ones seconds; strings may also be ISO-8601.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        digits = len(str(int(abs(value))))
        return float(value) / 1000.0 if digits >= 13 else float(value)
    s = str(value).strip()
    if not s:
        return None
    if re.fullmatch(r"\d+(\.\d+)?", s):
        return parse_epoch(float(s) if "." in s else int(s))
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()


def _session_value(session_meta, keys):
    session, _ = locate_session(session_meta)
    for key in keys:
        value = session.get(key)
        if value not in (None, ""):
            return value
    return None


def resolve_title(session_meta, title_hint: str, identifier: str, when: float) -> str:
    """Session title, else the job's hint, else "Space <id> <date>"."""
    title = _session_value(session_meta, TITLE_KEYS)
    if isinstance(title, str) and title.strip():
        return title.strip()
    if title_hint and title_hint.strip():
        return title_hint.strip()
    day = datetime.fromtimestamp(when, timezone.utc).strftime("%Y-%m-%d")
    if identifier and identifier != UNKNOWN_ID:
        return f"Space {identifier} {day}"
    return f"Space recording {day}"


def resolve_start_time(session_meta, captured_at: Optional[float],
                       resolved_at: float) -> tuple[float, str]:
    """(epoch, source) preferring session metadata, then capture time."""
    started = parse_epoch(_session_value(session_meta, START_KEYS))
    if started:
        return started, "session metadata"
    if captured_at:
        return captured_at, "acquisition time"
    return resolved_at, "metadata resolution time"


def iso_utc(epoch: float) -> str:
    return datetime.fromtimestamp(epoch, timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def build_bundle(job: Job, ctx: JobContext, resolved_at: float) -> AssetBundle:
    """Collect the stage outputs into an AssetBundle."""
    acquisition = ctx.acquisition
    captured_at = getattr(acquisition, "captured_at", None)
    capture_day = captured_at or job.started_at
    started, _ = resolve_start_time(ctx.session_metadata, captured_at, resolved_at)
    return AssetBundle(
        post_id=job.post_id,
        title=resolve_title(ctx.session_metadata, job.title_hint, ctx.identifier, capture_day),
        audio_url=ctx.audio_url,
        audio_proxy_url=ctx.audio_proxy_url,
        vtt_url=ctx.vtt_url,
        transcript_html=ctx.transcript_html,
        attendees_html=ctx.attendees_html,
        replies_html=ctx.replies_html,
        links_html=ctx.links_html,
        start_time=iso_utc(started),
    )


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------

def _present(value) -> bool:
    return value is not None and str(value).strip() != ""


def registration_payload(bundle: AssetBundle) -> dict:
    """Full registration body: every non-blank bundle field."""
    payload = {}
    for f in fields(bundle):
        value = getattr(bundle, f.name)
        if _present(value):
            payload[PAYLOAD_KEYS[f.name]] = value.strip()
    return payload


def patch_payload(bundle: AssetBundle, mode: str, status: str = "complete",
                  progress: int = 100) -> dict:
    """Scoped patch body for a partial mode."""
    assets = {}
    for name in PATCH_FIELDS.get(mode, ()):
        value = getattr(bundle, name)
        if _present(value):
            assets[PAYLOAD_KEYS[name]] = value.strip()
    return {"post_id": bundle.post_id.strip(), "status": status, "progress": progress, **assets}


# ---------------------------------------------------------------------------
# Publishing endpoint
# ---------------------------------------------------------------------------

def _post(job: Job, path: str, payload: dict) -> dict:
    auth = (job.wp_user, job.wp_app_password) if job.wp_user else None
    try:
        r = httpx.post(f"{job.wp_base_url}{path}", json=payload, auth=auth,
                       timeout=PUBLISH_TIMEOUT_SECS)
        r.raise_for_status()
    except httpx.HTTPStatusError as e:
        body = e.response.text[:300] if e.response is not None else ""
        raise PublishFailure(f"{path} rejected with HTTP {e.response.status_code}: {body}") from e
    except httpx.HTTPError as e:
        raise PublishFailure(f"{path} unreachable: {e}") from e
    try:
        return r.json()
    except ValueError:
        return {}


def register(job: Job, bundle: AssetBundle) -> dict:
    """Idempotent upsert of the full bundle against the post identifier."""
    return _post(job, REGISTER_PATH, registration_payload(bundle))


def patch_assets(job: Job, bundle: AssetBundle, mode: str,
                 status: str = "complete", progress: int = 100) -> dict:
    """Idempotent partial update of one category of assets."""
    if not bundle.post_id.strip():
        raise PublishFailure("a scoped patch needs a post identifier")
    return _post(job, PATCH_PATH, patch_payload(bundle, mode, status, progress))


def request_for_mode(bundle: AssetBundle, mode: str) -> tuple[str, dict]:
    """("register" | "patch", body) for the job's mode."""
    if mode == MODE_FULL:
        return "register", registration_payload(bundle)
    return "patch", patch_payload(bundle, mode)


def publish_bundle(job: Job, bundle: AssetBundle) -> dict:
    """Send the bundle the way the job's mode asks for."""
    if job.mode == MODE_FULL:
        print(f"  Registering post {bundle.post_id or '(new)'}: {bundle.title}")
        return register(job, bundle)
    print(f"  Patching post {bundle.post_id} ({job.mode})")
    return patch_assets(job, bundle, job.mode)
