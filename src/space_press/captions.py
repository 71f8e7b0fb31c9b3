"""
Caption normalization for the space publishing pipeline.

Turns the crawler's line-delimited caption records (loosely structured,
with several synonymous key schemes) into canonical, time-ordered cues.
Individual bad records are dropped; a batch never fails as a whole.
"""

import json
import re
import unicodedata
from dataclasses import dataclass, replace
from pathlib import Path

from space_press.shared import (
    CaptionParseError, resolve_field, to_seconds, ms_to_seconds,
)


def _text_or_none(value):
    return value if isinstance(value, str) and value.strip() else None


# Ordered key aliases per logical field. Earlier entries win.
START_KEYS = (("start", to_seconds), ("startSec", to_seconds), ("startMs", ms_to_seconds),
              ("offset", to_seconds))
END_KEYS = (("end", to_seconds), ("endSec", to_seconds), ("endMs", ms_to_seconds))
DURATION_KEYS = (("duration", to_seconds), ("durationSec", to_seconds),
                 ("durationMs", ms_to_seconds), ("dur", to_seconds))
TEXT_KEYS = tuple((k, _text_or_none) for k in ("text", "body", "caption", "payloadText"))
SPEAKER_KEYS = tuple((k, _text_or_none) for k in
                     ("displayName", "speaker_name", "speakerName", "speaker", "name"))
HANDLE_KEYS = tuple((k, _text_or_none) for k in ("username", "handle", "screen_name"))
# Envelope sender fields, used when the record itself names no speaker
SENDER_SPEAKER_KEYS = (("display_name", _text_or_none),)
SENDER_HANDLE_KEYS = (("screen_name", _text_or_none),)

_CONTROL_RE = re.compile(r"[\u200B-\u200F\u202A-\u202E\u2060-\u206F\uFEFF]")
_SPACE_BEFORE_PUNCT_RE = re.compile(r"\s+([,.;:!?])")


@dataclass(frozen=True)
class Cue:
    """One caption unit: 0 <= start <= end, non-empty single-line text."""
    start: float
    end: float
    text: str
    speaker: str = ""
    handle: str = ""


def clean_caption_text(text) -> str:
    """NFC-normalize, drop zero-width/bidi controls, collapse whitespace."""
    if not isinstance(text, str):
        return ""
    s = unicodedata.normalize("NFC", text)
    s = _CONTROL_RE.sub("", s)
    s = s.replace("\u2028", " ").replace("\u2029", " ")
    s = re.sub(r"\s+", " ", s).strip()
    return _SPACE_BEFORE_PUNCT_RE.sub(r"\1", s)


def _unwrap_record(obj) -> tuple[dict, dict]:
    """Return (record, sender) for a raw line object.

    The live stream wraps each caption as
    {"payload": "<json>"} whose payload has "body": "<json>" and "sender";
    plain records are returned as-is with an empty sender.
    """
    if not isinstance(obj, dict):
        return {}, {}
    if not isinstance(obj.get("payload"), str):
        return obj, {}
    try:
        payload = json.loads(obj["payload"])
        body = json.loads(payload["body"]) if isinstance(payload, dict) else None
    except (ValueError, KeyError, TypeError):
        return obj, {}
    if not isinstance(body, dict):
        return obj, {}
    sender = payload.get("sender") if isinstance(payload.get("sender"), dict) else {}
    return body, sender


def parse_caption_record(obj) -> Cue:
    """Resolve a single raw record into a Cue (unshifted).

    Raises CaptionParseError when start, end, or text cannot be resolved,
    or when the record ends before it starts.
    """
    record, sender = _unwrap_record(obj)
    if not record:
        raise CaptionParseError("record is not an object")

    start = resolve_field(record, START_KEYS)
    if start is None:
        raise CaptionParseError("no resolvable start")

    end = resolve_field(record, END_KEYS)
    if end is None:
        duration = resolve_field(record, DURATION_KEYS)
        if duration is None or duration < 0:
            raise CaptionParseError("no resolvable end or duration")
        end = start + duration
    if end < start:
        raise CaptionParseError(f"end {end} precedes start {start}")

    text = clean_caption_text(resolve_field(record, TEXT_KEYS))
    if not text:
        raise CaptionParseError("empty text")

    speaker = resolve_field(record, SPEAKER_KEYS) or resolve_field(sender, SENDER_SPEAKER_KEYS) or ""
    handle = resolve_field(record, HANDLE_KEYS) or resolve_field(sender, SENDER_HANDLE_KEYS) or ""
    return Cue(
        start=start,
        end=end,
        text=text,
        speaker=clean_caption_text(speaker),
        handle=handle.strip().lstrip("@"),
    )


def shift_cues(cues: list[Cue], shift: float) -> list[Cue]:
    """Subtract ``shift`` seconds from every cue, clamping at zero."""
    return [replace(c, start=max(0.0, c.start - shift), end=max(0.0, c.end - shift))
            for c in cues]


def normalize_records(records, shift: float = 0.0) -> list[Cue]:
    """Normalize raw caption records into the canonical cue sequence.

    Output is sorted by start (stable for ties) and shifted; records that
    fail to parse are dropped.
    """
    cues = []
    for obj in records:
        try:
            cues.append(parse_caption_record(obj))
        except CaptionParseError:
            continue
    cues.sort(key=lambda c: c.start)
    return shift_cues(cues, shift)


def read_caption_records(path: Path) -> list:
    """Read line-delimited JSON records; undecodable lines are skipped."""
    records = []
    with open(path, 'r', encoding='utf-8', errors='ignore') as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                obj = json.loads(line)
            except ValueError:
                continue
            if isinstance(obj, list):
                records.extend(obj)
            else:
                records.append(obj)
    return records


def load_captions(path: Path, shift: float = 0.0) -> list[Cue]:
    """Read and normalize a caption stream file. Missing file → no cues."""
    if not path or not Path(path).is_file():
        return []
    return normalize_records(read_caption_records(Path(path)), shift)
