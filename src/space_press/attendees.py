"""
Attendee roster extraction for the space publishing pipeline.

Maps the crawler's session metadata onto a Host / Co-hosts / Speakers
roster. Handles are the identity key and compare case-insensitively.
"""

import html
from dataclasses import dataclass, field
from typing import Optional

from space_press.shared import resolve_field

PROFILE_BASE = "https://x.com"

HANDLE_KEYS = ("screen_name", "twitter_screen_name", "handle", "username", "user_name")
NAME_KEYS = ("display_name", "name", "displayName")


@dataclass(frozen=True)
class ParticipantEntry:
    handle: str
    name: str
    profile_url: str

    @property
    def key(self) -> str:
        return self.handle.lower()


@dataclass
class Roster:
    host: Optional[ParticipantEntry] = None
    cohosts: list = field(default_factory=list)
    speakers: list = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.host is None and not self.cohosts and not self.speakers


def locate_session(meta) -> tuple[dict, dict]:
    """Return (session, participants) from any of the supported layouts.

    Accepts the raw crawler document ({"data": {"audioSpace": ...}}), the
    bare audioSpace object, or a flat {"creator", "admins", "speakers"} map.
    """
    if not isinstance(meta, dict):
        return {}, {}
    node = meta
    if isinstance(node.get("data"), dict):
        node = node["data"]
    if isinstance(node.get("audioSpace"), dict):
        node = node["audioSpace"]
    session = node.get("metadata") if isinstance(node.get("metadata"), dict) else node
    participants = node.get("participants") if isinstance(node.get("participants"), dict) else node
    return session, participants


def _user_legacy(raw: dict) -> dict:
    """Dig the legacy user object out of a GraphQL-style user wrapper."""
    for wrapper in ("user_results", "creator_results"):
        result = (raw.get(wrapper) or {}).get("result") if isinstance(raw.get(wrapper), dict) else None
        if isinstance(result, dict):
            legacy = result.get("legacy")
            return legacy if isinstance(legacy, dict) else result
    if isinstance(raw.get("legacy"), dict):
        return raw["legacy"]
    if isinstance(raw.get("user"), dict):
        return raw["user"]
    return {}


def to_participant(raw) -> Optional[ParticipantEntry]:
    """Map one raw role entry (a handle string or a user object) to an entry."""
    if isinstance(raw, str):
        handle, name = raw, ""
    elif isinstance(raw, dict):
        legacy = _user_legacy(raw)
        handle = resolve_field(raw, HANDLE_KEYS) or resolve_field(legacy, HANDLE_KEYS) or ""
        name = resolve_field(raw, NAME_KEYS) or resolve_field(legacy, NAME_KEYS) or ""
    else:
        return None
    handle = str(handle).strip().lstrip("@")
    if not handle:
        return None
    name = str(name).strip() or handle
    return ParticipantEntry(handle=handle, name=name, profile_url=f"{PROFILE_BASE}/{handle}")


def _dedupe(entries, exclude: set = frozenset()) -> list:
    seen = set(exclude)
    out = []
    for entry in entries:
        if entry is None or entry.key in seen:
            continue
        seen.add(entry.key)
        out.append(entry)
    return out


def _creator(session: dict, participants: dict):
    for source in (session, participants):
        for key in ("creator", "host"):
            if source.get(key):
                return source[key]
        if isinstance(source.get("creator_results"), dict):
            return {"creator_results": source["creator_results"]}
    return None


def _role_list(participants: dict, *keys) -> list:
    for key in keys:
        value = participants.get(key)
        if isinstance(value, list):
            return value
    return []


def extract_roster(meta) -> Roster:
    """Build the deduplicated roster from raw session metadata.

    Host comes from the creator field; co-hosts from admins minus the host;
    speakers are only deduplicated among themselves.
    """
    session, participants = locate_session(meta)
    host = to_participant(_creator(session, participants))
    exclude = {host.key} if host else set()
    cohosts = _dedupe((to_participant(r) for r in _role_list(participants, "admins", "cohosts")),
                      exclude)
    speakers = _dedupe(to_participant(r) for r in _role_list(participants, "speakers"))
    return Roster(host=host, cohosts=cohosts, speakers=speakers)


def _render_entry(entry: ParticipantEntry) -> str:
    url = html.escape(entry.profile_url, quote=True)
    name = html.escape(entry.name)
    handle = html.escape(entry.handle)
    return f'<li><a href="{url}" target="_blank" rel="noopener">{name}</a> <span>@{handle}</span></li>'


def _render_section(heading: str, entries: list) -> str:
    items = "\n".join(_render_entry(e) for e in entries)
    return f"<h4>{heading}</h4>\n<ul>\n{items}\n</ul>"


def render_attendees_html(roster: Optional[Roster]) -> str:
    """Render the non-empty roster sections; an empty roster renders nothing."""
    if roster is None or roster.is_empty:
        return ""
    sections = []
    if roster.host:
        sections.append(_render_section("Host", [roster.host]))
    if roster.cohosts:
        heading = "Co-host" if len(roster.cohosts) == 1 else "Co-hosts"
        sections.append(_render_section(heading, roster.cohosts))
    if roster.speakers:
        sections.append(_render_section("Speakers", roster.speakers))
    return '<div class="sp-attendees">\n' + "\n".join(sections) + "\n</div>\n"
