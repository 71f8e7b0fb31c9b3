"""
Transcript rendering for the space publishing pipeline.

Pure functions from the canonical cue list to:
- a WebVTT subtitle document (plus an emoji-only companion track)
- an annotated HTML transcript: one element per cue with machine-readable
  start/end attributes, bare URLs turned into anchors
"""

import html
import re
from pathlib import Path

from space_press.captions import Cue

VTT_HEADER = "WEBVTT\n\n"

URL_RE = re.compile(r"https?://[^\s<>\"']+", re.IGNORECASE)
_TRAILING_PUNCT = ".,;:!?)]}'\""

EMOJI_RE = re.compile(
    "["
    "\U0001F1E6-\U0001F1FF"  # flags
    "\U0001F300-\U0001F5FF"  # symbols & pictographs
    "\U0001F600-\U0001F64F"  # emoticons
    "\U0001F680-\U0001F6FF"  # transport & map
    "\U0001F900-\U0001F9FF"  # supplemental
    "\U0001FA70-\U0001FAFF"  # extended-A
    "\u2600-\u26FF"          # misc symbols
    "\u2700-\u27BF"          # dingbats
    "]+"
)


def format_timestamp(seconds: float) -> str:
    """Format seconds as HH:MM:SS.mmm (negative values clamp to zero)."""
    total_ms = int(round(max(0.0, seconds) * 1000))
    h, rem = divmod(total_ms, 3_600_000)
    m, rem = divmod(rem, 60_000)
    s, ms = divmod(rem, 1000)
    return f"{h:02d}:{m:02d}:{s:02d}.{ms:03d}"


def _one_line(text: str) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def _vtt_escape(text: str) -> str:
    return html.escape(_one_line(text), quote=False)


def render_vtt(cues: list[Cue]) -> str:
    """Render cues as a WebVTT document, voice-tagged when a speaker is known."""
    blocks = [VTT_HEADER.rstrip("\n")]
    for i, cue in enumerate(cues, 1):
        text = _vtt_escape(cue.text)
        if cue.speaker:
            text = f"<v {_vtt_escape(cue.speaker)}>{text}"
        blocks.append(f"{i}\n{format_timestamp(cue.start)} --> {format_timestamp(cue.end)}\n{text}")
    return "\n\n".join(blocks) + "\n\n" if cues else VTT_HEADER


def only_emoji(text: str) -> str:
    return "".join(EMOJI_RE.findall(text or ""))


def render_emoji_vtt(cues: list[Cue]) -> str:
    """WebVTT track carrying only the emoji of each cue; emoji-free cues are left out."""
    out = [VTT_HEADER]
    n = 0
    for cue in cues:
        emoji = only_emoji(cue.text)
        if not emoji:
            continue
        n += 1
        out.append(f"{n}\n{format_timestamp(cue.start)} --> {format_timestamp(cue.end)}\n{emoji}\n\n")
    return "".join(out)


def _linkify(text: str) -> str:
    """Escape text for HTML and turn bare http(s) URLs into anchors."""
    parts = []
    pos = 0
    for m in URL_RE.finditer(text):
        url = m.group(0).rstrip(_TRAILING_PUNCT)
        if not url or "://" not in url or url.endswith("://"):
            continue
        end = m.start() + len(url)
        parts.append(html.escape(text[pos:m.start()]))
        href = html.escape(url, quote=True)
        parts.append(f'<a href="{href}" target="_blank" rel="noopener">{href}</a>')
        pos = end
    parts.append(html.escape(text[pos:]))
    return "".join(parts)


def render_transcript_html(cues: list[Cue]) -> str:
    """Annotated transcript markup, one ``sp-seg`` element per cue."""
    if not cues:
        return ""
    lines = ['<div class="sp-transcript">']
    for i, cue in enumerate(cues, 1):
        attrs = ['class="sp-seg"', f'id="seg-{i:04d}"',
                 f'data-start="{cue.start:.3f}"', f'data-end="{cue.end:.3f}"']
        if cue.speaker:
            attrs.append(f'data-speaker="{html.escape(cue.speaker, quote=True)}"')
        if cue.handle:
            attrs.append(f'data-handle="@{html.escape(cue.handle, quote=True)}"')
        meta = f'<time>{format_timestamp(cue.start)}</time>'
        if cue.speaker:
            meta = f'<strong>{html.escape(cue.speaker)}</strong> · {meta}'
        lines.append(
            f'<div {" ".join(attrs)}>'
            f'<div class="sp-meta">{meta}</div>'
            f'<div class="sp-text">{_linkify(_one_line(cue.text))}</div>'
            f'</div>'
        )
    lines.append('</div>')
    return "\n".join(lines) + "\n"


def write_transcript_files(cues: list[Cue], vtt_path: Path, emoji_vtt_path: Path,
                           html_path: Path) -> str:
    """Write the three transcript artifacts; returns the transcript markup."""
    markup = render_transcript_html(cues)
    vtt_path.write_text(render_vtt(cues), encoding="utf-8")
    emoji_vtt_path.write_text(render_emoji_vtt(cues), encoding="utf-8")
    html_path.write_text(markup, encoding="utf-8")
    return markup
