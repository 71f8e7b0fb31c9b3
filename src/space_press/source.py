"""
Source resolution for the space publishing pipeline.

Classifies the source reference (live conversation vs. direct audio file)
and derives the stable identifier used to name run artifacts. Never touches
the network; resolve_source never raises, anything unrecognised degrades to
SOURCE_UNKNOWN / UNKNOWN_ID.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import PurePosixPath
from urllib.parse import unquote, urlparse

from space_press.shared import (
    SOURCE_LIVE, SOURCE_FILE, UNKNOWN_ID, ResolutionError,
)

AUDIO_EXTENSIONS = (".mp3", ".m4a", ".aac", ".wav", ".ogg", ".opus", ".flac", ".webm")

# https://x.com/i/spaces/1YqKDqDXAbwKV (also twitter.com, optional trailing path)
LIVE_PATH_RE = re.compile(r"/i/spaces/([A-Za-z0-9]+)")
# Bare space identifiers look like "1YqKDqDXAbwKV"
BARE_LIVE_ID_RE = re.compile(r"^1[A-Za-z0-9]{10,15}$")

_HINT_ALIASES = {
    "": "auto",
    "auto": "auto",
    "live-conversation": SOURCE_LIVE,
    "live": SOURCE_LIVE,
    "space": SOURCE_LIVE,
    "direct-audio-file": SOURCE_FILE,
    "file": SOURCE_FILE,
    "audio": SOURCE_FILE,
}


@dataclass(frozen=True)
class SourceInfo:
    kind: str
    identifier: str
    reason: str = ""  # why resolution degraded, empty when it did not


def _slugify(text: str, max_len: int = 60) -> str:
    """Convert a file stem to a filesystem- and URL-safe slug."""
    safe = re.sub(r'[^\w\s-]', '', text)[:max_len].strip()
    return re.sub(r'[\s_]+', '-', safe).strip('-').lower()


def _path_of(ref: str) -> str:
    if ref.startswith(("http://", "https://")):
        return unquote(urlparse(ref).path)
    return ref


def is_audio_file_ref(ref: str) -> bool:
    """True when the reference's path ends in a known audio extension."""
    return PurePosixPath(_path_of(ref).replace("\\", "/")).suffix.lower() in AUDIO_EXTENSIONS


def live_identifier(ref: str):
    """Extract the conversation identifier from a live-conversation reference."""
    m = LIVE_PATH_RE.search(_path_of(ref))
    if m:
        return m.group(1)
    if BARE_LIVE_ID_RE.match(ref):
        return ref
    return None


def file_identifier(ref: str):
    stem = PurePosixPath(_path_of(ref).replace("\\", "/")).stem
    return _slugify(stem) or None


def classify_source(ref: str, hint: str = "auto") -> SourceInfo:
    """Classify a source reference and derive its identifier.

    An explicit hint decides the kind; "auto" (or empty, or an unrecognised
    hint) classifies by file extension first, then by the live-conversation
    path pattern. Raises ResolutionError when no kind or no identifier can
    be determined.
    """
    ref = (ref or "").strip()
    wanted = _HINT_ALIASES.get((hint or "").strip().lower(), "auto")

    if wanted == "auto":
        if ref and is_audio_file_ref(ref):
            wanted = SOURCE_FILE
        elif ref and live_identifier(ref):
            wanted = SOURCE_LIVE
        else:
            raise ResolutionError(f"unrecognised source reference: {ref!r}")

    if wanted == SOURCE_LIVE:
        ident = live_identifier(ref) if ref else None
    else:
        ident = file_identifier(ref) if ref else None
    if not ident:
        raise ResolutionError(f"no identifier in source reference {ref!r}", kind=wanted)
    return SourceInfo(wanted, ident)


def resolve_source(ref: str, hint: str = "auto") -> SourceInfo:
    """Like classify_source, but degrades to sentinel values instead of raising.

    The degraded SourceInfo carries the ResolutionError message as ``reason``.
    """
    try:
        return classify_source(ref, hint)
    except ResolutionError as e:
        return SourceInfo(e.kind, UNKNOWN_ID, str(e))


def make_base_name(identifier: str, when: float) -> str:
    """Run-specific artifact base name: space-<YYYYMMDD>-<identifier>."""
    day = datetime.fromtimestamp(when, timezone.utc).strftime("%Y%m%d")
    return f"space-{day}-{identifier or UNKNOWN_ID}"
