#!/usr/bin/env python3
"""
Space Press
===========
Turns a recorded live audio conversation into a published article.

Pipeline:
1. Resolve the source reference (live conversation vs. audio file)
2. Acquire audio (live capture, then download, then a provided file)
3. Encode the publishable MP3 (leading-silence trim, audio profile)
4. Normalize the caption stream into time-ordered cues
5. Fall back to speech-to-text when no caption survived
6. Render WebVTT + annotated HTML transcript
7. Upload audio and captions to object storage
8. Extract the attendee roster
9. Collect the links mentioned in the transcript + reply digest
10. Register (or patch) the post on the publishing endpoint

Each stage declares the modes it runs in and a skip guard; the table in
STAGES is the whole conditional matrix.

Usage:
    space-press --url <space url | audio url> [options]

Examples:
    # Full run for a recorded space
    space-press --url "https://x.com/i/spaces/1YqKDqDXAbwKV" --post-id 123

    # Re-generate only the transcript from a local file
    space-press --url ./episode.mp3 --mode transcript-only --post-id 123

    # Refresh the attendee roster of an existing post
    space-press --url "https://x.com/i/spaces/1YqKDqDXAbwKV" --mode attendees-only --post-id 123
"""

import argparse
import json
import subprocess
import sys
import time
import traceback
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from space_press import __version__
from space_press.shared import (
    tprint as print,
    Job, JobContext, JobOptions, StageOutcome, job_from_environ, normalize_mode,
    MODE_FULL, MODE_TRANSCRIPT, MODE_ATTENDEES, MODE_REPLIES, VALID_MODES,
    AUDIO_PROFILES, UNKNOWN_ID, SOURCE_LIVE, SOURCE_FILE,
    AUDIO_MP3, CAPTIONS_VTT, EMOJI_VTT, TRANSCRIPT_HTML, ATTENDEES_HTML,
    LINKS_HTML, REPLIES_HTML, METADATA_JSON, PAYLOAD_JSON, SUMMARY_JSON,
    STATUS_OK, STATUS_HARD_FAIL,
    AcquisitionFailure, PublishFailure,
    artifact_path, find_previous_artifact, check_dependencies, _save_json,
)
from space_press.source import make_base_name, resolve_source
from space_press.acquire import acquire_audio, fetch_session_metadata
from space_press.media import ENCODE_TIMEOUT_SECS, encode_audio, measure_leading_silence
from space_press.captions import load_captions
from space_press.transcription import fallback_skip_reason, run_transcription_fallback
from space_press.render import write_transcript_files
from space_press.attendees import extract_roster, render_attendees_html
from space_press.engagement import (
    extract_links, resolve_links, render_links_html, render_reply_digest,
)
from space_press.storage import object_key, upload_file
from space_press.publish import build_bundle, publish_bundle, request_for_mode

SECTION_SEPARATOR = "=" * 50

ALL_MODES = VALID_MODES

_COLLABORATOR_ERRORS = (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError)


@dataclass(frozen=True)
class Stage:
    """One node of the stage graph.

    ``guard`` returns a skip reason (or None) computed from the job and the
    current context. ``needs_audio`` stages are skipped once a required
    stage hard-fails; ``final`` stages run even past the job deadline.
    """
    name: str
    run: Callable[[Job, JobContext], StageOutcome]
    modes: tuple = ALL_MODES
    needs_audio: bool = False
    required: bool = False
    final: bool = False
    guard: Optional[Callable[[Job, JobContext], Optional[str]]] = None


def _read_json(path: Path):
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError):
        return None


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------

def resolve_stage(job: Job, ctx: JobContext) -> StageOutcome:
    print()
    print("[resolve] Resolving source...")
    info = resolve_source(job.source_ref, job.source_kind_hint)
    if info.reason:
        print(f"  Warning: {info.reason}")

    # Unknown sources still need a collision-free base name
    name_id = info.identifier if info.identifier != UNKNOWN_ID else f"{UNKNOWN_ID}-{job.run_id}"
    base_name = make_base_name(name_id, job.started_at)
    print(f"  Source: {info.kind} ({info.identifier})")
    print(f"  Base name: {base_name}")
    return StageOutcome.ok(info.reason, source_kind=info.kind, identifier=info.identifier,
                           base_name=base_name)


def acquire_stage(job: Job, ctx: JobContext) -> StageOutcome:
    try:
        result, attempts = acquire_audio(job, ctx.source_kind, ctx.identifier, job.artifact_dir)
    except AcquisitionFailure as e:
        print(f"  Error: {e}")
        return StageOutcome.hard_fail(str(e), acquisition_attempts=e.attempts)

    if result is None:
        return StageOutcome.ok("no audio acquired", acquisition_attempts=attempts)

    updates = {
        "acquisition": result,
        "acquisition_attempts": attempts,
        "audio_path": result.audio_path,
    }
    if result.session_metadata:
        meta_path = artifact_path(job, ctx, METADATA_JSON)
        _save_json(meta_path, result.session_metadata)
        updates["session_metadata"] = result.session_metadata
    return StageOutcome.ok(f"via {result.strategy}", **updates)


def encode_stage(job: Job, ctx: JobContext) -> StageOutcome:
    print()
    print("[encode] Encoding audio...")
    src = ctx.acquisition.audio_path
    dest = artifact_path(job, ctx, AUDIO_MP3)

    trim = 0.0
    if job.options.trim_silence:
        try:
            trim = measure_leading_silence(src, job.verbose, timeout=ENCODE_TIMEOUT_SECS)
        except _COLLABORATOR_ERRORS as e:
            print(f"  Warning: could not measure leading silence ({e}), not trimming")
        if trim:
            print(f"  Leading silence: {trim:.2f}s")

    try:
        encode_audio(src, dest, job.audio_profile, trim, job.verbose, timeout=ENCODE_TIMEOUT_SECS)
    except _COLLABORATOR_ERRORS as e:
        # Captions stay unshifted: the acquired file is published untrimmed
        return StageOutcome.soft_fail(f"encoding failed, publishing the acquired audio: {e}")
    return StageOutcome.ok(f"profile {job.audio_profile}", audio_path=dest, caption_shift=trim)


def captions_stage(job: Job, ctx: JobContext) -> StageOutcome:
    source = getattr(ctx.acquisition, "caption_source", None)
    if not source:
        return StageOutcome.skipped("no caption stream captured")

    print()
    print("[captions] Normalizing caption stream...")
    cues = load_captions(source, ctx.caption_shift)
    print(f"  {len(cues)} cues"
          + (f" (shifted by {ctx.caption_shift:.2f}s)" if ctx.caption_shift else ""))
    if not cues:
        return StageOutcome.ok("caption stream had no usable records", cues=[])
    return StageOutcome.ok(f"{len(cues)} cues", cues=cues, transcript_source="captions")


def transcription_stage(job: Job, ctx: JobContext) -> StageOutcome:
    vtt_path = run_transcription_fallback(ctx.audio_path, artifact_path(job, ctx, CAPTIONS_VTT), job)
    if vtt_path is None:
        return StageOutcome.soft_fail("speech-to-text unavailable, no caption track")
    return StageOutcome.ok("captions from speech-to-text", vtt_path=vtt_path,
                           transcript_source="speech-to-text")


def render_stage(job: Job, ctx: JobContext) -> StageOutcome:
    print()
    print("[render] Rendering transcript...")
    vtt_path = artifact_path(job, ctx, CAPTIONS_VTT)
    emoji_path = artifact_path(job, ctx, EMOJI_VTT)
    html_path = artifact_path(job, ctx, TRANSCRIPT_HTML)
    markup = write_transcript_files(ctx.cues, vtt_path, emoji_path, html_path)
    print(f"  Saved: {vtt_path.name}, {emoji_path.name}, {html_path.name}")
    return StageOutcome.ok(f"{len(ctx.cues)} cues", vtt_path=vtt_path, emoji_vtt_path=emoji_path,
                           transcript_html_path=html_path, transcript_html=markup)


def upload_stage(job: Job, ctx: JobContext) -> StageOutcome:
    print()
    print("[upload] Uploading assets...")
    prefix = job.effective_storage_prefix
    wanted = []
    if job.mode == MODE_FULL and ctx.audio_path:
        wanted.append(("audio", ctx.audio_path, f"{ctx.base_name}{ctx.audio_path.suffix}"))
    if ctx.vtt_path:
        wanted.append(("captions", ctx.vtt_path, f"{ctx.base_name}{CAPTIONS_VTT}"))
    if not wanted:
        return StageOutcome.skipped("nothing to upload")

    updates = {}
    failures = []
    for label, path, filename in wanted:
        try:
            stored = upload_file(job, path, object_key(prefix, filename))
        except _COLLABORATOR_ERRORS as e:
            failures.append(f"{label}: {e}")
            continue
        if label == "audio":
            updates["audio_url"] = stored.url
            updates["audio_proxy_url"] = stored.proxy_url
        else:
            updates["vtt_url"] = stored.url
        print(f"  {label}: {stored.url}")

    if failures:
        return StageOutcome.soft_fail("upload failed: " + "; ".join(failures), **updates)
    return StageOutcome.ok(f"{len(wanted)} file(s) stored under {prefix}", **updates)


def attendees_stage(job: Job, ctx: JobContext) -> StageOutcome:
    print()
    print("[attendees] Extracting attendee roster...")
    updates = {}
    meta = ctx.session_metadata
    if meta is None:
        previous = find_previous_artifact(job, ctx, METADATA_JSON)
        if previous:
            print(f"  Reusing session metadata: {previous.name}")
            meta = _read_json(previous)
    if meta is None and ctx.source_kind == SOURCE_LIVE:
        meta = fetch_session_metadata(job, ctx.identifier, job.artifact_dir)
        if meta:
            _save_json(artifact_path(job, ctx, METADATA_JSON), meta)
    if not meta:
        return StageOutcome.skipped("no session metadata")
    if meta is not ctx.session_metadata:
        updates["session_metadata"] = meta

    roster = extract_roster(meta)
    markup = render_attendees_html(roster)
    if not markup:
        return StageOutcome.ok("roster is empty", roster=roster, **updates)
    out = artifact_path(job, ctx, ATTENDEES_HTML)
    out.write_text(markup, encoding="utf-8")
    cohosts, speakers = len(roster.cohosts), len(roster.speakers)
    print(f"  Host: {roster.host.handle if roster.host else '-'}, "
          f"co-hosts: {cohosts}, speakers: {speakers}")
    return StageOutcome.ok(f"{cohosts} co-host(s), {speakers} speaker(s)",
                           roster=roster, attendees_html=markup, **updates)


def engagement_stage(job: Job, ctx: JobContext) -> StageOutcome:
    print()
    print("[engagement] Collecting links and replies...")
    opts = job.options
    markup = ctx.transcript_html
    if not markup:
        previous = find_previous_artifact(job, ctx, TRANSCRIPT_HTML)
        if previous:
            print(f"  Reusing transcript: {previous.name}")
            markup = previous.read_text(encoding="utf-8")

    urls = extract_links(markup, opts.fetch_limit)
    entries = resolve_links(urls, opts.fetch_titles, opts.fetch_timeout_sec, opts.fetch_workers)
    links_html = render_links_html(entries)
    replies_html = render_reply_digest(job.reference_link)

    if links_html:
        artifact_path(job, ctx, LINKS_HTML).write_text(links_html, encoding="utf-8")
    if replies_html:
        artifact_path(job, ctx, REPLIES_HTML).write_text(replies_html, encoding="utf-8")
    titled = sum(1 for e in entries if e.title_fetched)
    print(f"  {len(entries)} link(s), {titled} titled"
          + (", reply digest rendered" if replies_html else ""))
    return StageOutcome.ok(f"{len(entries)} link(s)", links=entries, links_html=links_html,
                           replies_html=replies_html)


def publish_stage(job: Job, ctx: JobContext) -> StageOutcome:
    print()
    print("[publish] Publishing...")
    resolved_at = time.time()
    bundle = build_bundle(job, ctx, resolved_at)
    request, body = request_for_mode(bundle, job.mode)
    _save_json(artifact_path(job, ctx, PAYLOAD_JSON), {"request": request, "body": body})
    updates = {"bundle": bundle, "metadata_resolved_at": resolved_at}

    if not job.has_publisher:
        print("  No publishing endpoint configured, payload saved only")
        return StageOutcome.skipped("no publishing endpoint configured", **updates)
    try:
        response = publish_bundle(job, bundle)
    except PublishFailure as e:
        print(f"  Error: {e}")
        return StageOutcome.soft_fail(str(e), **updates)
    return StageOutcome.ok(f"{request} accepted", publish_response=response, **updates)


# ---------------------------------------------------------------------------
# Skip guards
# ---------------------------------------------------------------------------

def _no_acquired_audio(job: Job, ctx: JobContext) -> Optional[str]:
    return None if ctx.acquisition is not None else "no audio acquired"


def _no_fallback_needed(job: Job, ctx: JobContext) -> Optional[str]:
    return fallback_skip_reason(ctx.cues, ctx.audio_path, job)


def _no_cues(job: Job, ctx: JobContext) -> Optional[str]:
    return None if ctx.cues else "no cues to render"


def _no_storage(job: Job, ctx: JobContext) -> Optional[str]:
    return None if job.has_storage else "no object storage configured"


AUDIO_STAGE_MODES = (MODE_FULL, MODE_TRANSCRIPT)

STAGES = [
    Stage("resolve", resolve_stage),
    Stage("acquire", acquire_stage, AUDIO_STAGE_MODES, required=True),
    Stage("encode", encode_stage, (MODE_FULL,), needs_audio=True, guard=_no_acquired_audio),
    Stage("captions", captions_stage, AUDIO_STAGE_MODES, needs_audio=True, guard=_no_acquired_audio),
    Stage("transcription_fallback", transcription_stage, AUDIO_STAGE_MODES, needs_audio=True,
          guard=_no_fallback_needed),
    Stage("render", render_stage, AUDIO_STAGE_MODES, needs_audio=True, guard=_no_cues),
    Stage("upload", upload_stage, AUDIO_STAGE_MODES, needs_audio=True, guard=_no_storage),
    Stage("attendees", attendees_stage, (MODE_FULL, MODE_ATTENDEES)),
    Stage("engagement", engagement_stage, (MODE_FULL, MODE_REPLIES)),
    Stage("publish", publish_stage, final=True),
]


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------

def skip_reason(stage: Stage, job: Job, ctx: JobContext, halted: Optional[str] = None,
                expired: bool = False) -> Optional[str]:
    """Why ``stage`` should not run for this job in its current state."""
    if job.mode not in stage.modes:
        return f"not run in {job.mode} mode"
    if halted and stage.needs_audio:
        return halted
    if expired and not stage.final:
        return "job deadline passed"
    if stage.guard is not None:
        return stage.guard(job, ctx)
    return None


def _run_stage(stage: Stage, job: Job, ctx: JobContext) -> StageOutcome:
    try:
        return stage.run(job, ctx)
    except Exception as e:
        print(f"  Error in {stage.name}: {e}")
        if job.verbose:
            traceback.print_exc()
        if stage.required:
            return StageOutcome.hard_fail(f"unexpected error: {e}")
        return StageOutcome.soft_fail(f"unexpected error: {e}")


def run_job(job: Job, stages=None) -> JobContext:
    """Run the stage table for one job and return the final context.

    A hard failure skips the remaining audio-dependent stages; independent
    stages and publishing still run so partial assets get out.
    """
    stages = STAGES if stages is None else stages
    job.artifact_dir.mkdir(parents=True, exist_ok=True)
    ctx = JobContext()
    clock = time.monotonic()
    deadline = job.options.deadline_sec
    halted = None

    for stage in stages:
        expired = bool(deadline) and time.monotonic() - clock > deadline
        reason = skip_reason(stage, job, ctx, halted, expired)

        if reason is not None:
            if job.verbose:
                print(f"  Skipping {stage.name}: {reason}")
            outcome = StageOutcome.skipped(reason)
        else:
            outcome = _run_stage(stage, job, ctx)

        ctx.apply(outcome.updates)
        ctx.outcomes[stage.name] = outcome
        if outcome.status == STATUS_HARD_FAIL:
            halted = f"{stage.name} failed"
    return ctx


def exit_code(ctx: JobContext) -> int:
    """1 on any hard failure or a failed publish, else 0."""
    if any(o.status == STATUS_HARD_FAIL for o in ctx.outcomes.values()):
        return 1
    publish = ctx.outcomes.get("publish")
    if publish is not None and publish.failed:
        return 1
    return 0


def concurrency_key(job: Job) -> str:
    """Jobs sharing this key must be serialized by the scheduler."""
    return job.post_id.strip() or f"run-{job.run_id}"


# ---------------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------------

# (label, context field, stages whose outcome explains an absence)
ASSET_SOURCES = (
    ("audio", "audio_path", ("acquire", "encode")),
    ("captions", "vtt_path", ("transcription_fallback", "captions", "render")),
    ("emoji captions", "emoji_vtt_path", ("captions", "render")),
    ("transcript", "transcript_html_path", ("captions", "render")),
    ("attendees", "attendees_html", ("attendees",)),
    ("links", "links_html", ("engagement",)),
    ("reply digest", "replies_html", ("engagement",)),
    ("audio url", "audio_url", ("upload",)),
    ("caption url", "vtt_url", ("upload",)),
)


def _asset_value(value):
    if isinstance(value, Path):
        return str(value) if value.exists() else None
    return value or None


def _omission_reason(ctx: JobContext, stage_names) -> str:
    for name in stage_names:
        outcome = ctx.outcomes.get(name)
        if outcome is not None and outcome.status != STATUS_OK:
            return f"{name}: {outcome.reason or outcome.status}"
    return "not produced"


def summarize(job: Job, ctx: JobContext) -> dict:
    """Machine-readable job summary."""
    produced, omitted = {}, {}
    for label, attr, stage_names in ASSET_SOURCES:
        value = _asset_value(getattr(ctx, attr))
        if value is None:
            omitted[label] = _omission_reason(ctx, stage_names)
        elif isinstance(value, str) and attr.endswith("_html"):
            produced[label] = f"{len(value)} chars"
        else:
            produced[label] = value

    acquisition = ctx.acquisition
    return {
        "run_id": job.run_id,
        "concurrency_key": concurrency_key(job),
        "mode": job.mode,
        "source_ref": job.source_ref,
        "source_kind": ctx.source_kind,
        "identifier": ctx.identifier,
        "base_name": ctx.base_name,
        "acquisition": {
            "strategy": getattr(acquisition, "strategy", None),
            "attempts": [{"strategy": s, "outcome": o} for s, o in ctx.acquisition_attempts],
        },
        "transcript_source": ctx.transcript_source or None,
        "stages": {name: {"status": o.status, "reason": o.reason}
                   for name, o in ctx.outcomes.items()},
        "produced": produced,
        "omitted": omitted,
        "context_version": ctx.version,
        "exit_code": exit_code(ctx),
    }


def print_summary(summary: dict) -> None:
    print()
    print(SECTION_SEPARATOR)
    print("COMPLETE!" if summary["exit_code"] == 0 else "FINISHED WITH FAILURES")
    print(SECTION_SEPARATOR)
    print()
    print(f"Source: {summary['source_kind']} ({summary['identifier']})")
    print(f"Mode: {summary['mode']}")
    strategy = summary["acquisition"]["strategy"]
    if strategy or summary["acquisition"]["attempts"]:
        print(f"Acquisition: {strategy or 'none'}")
        for attempt in summary["acquisition"]["attempts"]:
            print(f"  - {attempt['strategy']}: {attempt['outcome']}")
    print()
    print("Stages:")
    for name, stage in summary["stages"].items():
        detail = f" ({stage['reason']})" if stage["reason"] else ""
        print(f"  - {name}: {stage['status']}{detail}")
    if summary["produced"]:
        print()
        print("Produced:")
        for label, value in summary["produced"].items():
            print(f"  - {label}: {value}")
    if summary["omitted"]:
        print()
        print("Omitted:")
        for label, reason in summary["omitted"].items():
            print(f"  - {label}: {reason}")


# ---------------------------------------------------------------------------
# Command line
# ---------------------------------------------------------------------------

def _parse_options(raw: Optional[str]) -> JobOptions:
    if not raw:
        return JobOptions()
    try:
        parsed = json.loads(raw)
    except ValueError:
        print("Warning: --options is not valid JSON, using defaults")
        return JobOptions()
    if not isinstance(parsed, dict):
        print("Warning: --options must be a JSON object, using defaults")
    return JobOptions.from_mapping(parsed)


def main():
    parser = argparse.ArgumentParser(
        prog="space-press",
        description="Publish a recorded live audio conversation as an article",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --url "https://x.com/i/spaces/1YqKDqDXAbwKV" --post-id 123
  %(prog)s --url ./episode.mp3 --mode transcript-only --post-id 123
  %(prog)s --url "https://x.com/i/spaces/1YqKDqDXAbwKV" --mode attendees-only --post-id 123
  %(prog)s --url "https://x.com/i/spaces/1YqKDqDXAbwKV" --mode replies-only --post-id 123 \\
      --reference-link "https://x.com/host/status/1790000000000000000"
  %(prog)s --url "https://x.com/i/spaces/1YqKDqDXAbwKV" --options '{"fetch_titles": false}'
        """
    )
    parser.add_argument("--version", action="version",
                        version=f"%(prog)s {__version__}")

    # Input
    input_group = parser.add_argument_group("input")
    input_group.add_argument("--url", "--space-url", dest="url", default="",
                        help="Space URL or identifier, or an audio file URL/path")
    input_group.add_argument("--source-kind", default="auto",
                        choices=["auto", SOURCE_LIVE, SOURCE_FILE],
                        help="How to treat --url (default: auto)")
    input_group.add_argument("--audio-file",
                        help="Local audio file to use in transcript-only mode")
    input_group.add_argument("--title", default="",
                        help="Title used when the session metadata has none")

    # Output
    output_group = parser.add_argument_group("output")
    output_group.add_argument("-o", "--output-dir", default="./out",
                        help="Directory for run artifacts (default: ./out)")
    output_group.add_argument("--storage-prefix", default="",
                        help="Object storage prefix (default: spaces/<YYYY>/<MM>)")
    output_group.add_argument("--visibility", default="public", choices=["public", "private"],
                        help="Stored object visibility (default: public)")
    output_group.add_argument("--audio-profile", default="radio", choices=list(AUDIO_PROFILES),
                        help="Encoding profile (default: radio)")

    # Publishing and engagement
    publish_group = parser.add_argument_group("publishing")
    publish_group.add_argument("--post-id", default="",
                        help="Target post identifier (required by the partial modes)")
    publish_group.add_argument("--reference-link", "--purple-tweet-url", dest="reference_link",
                        default="",
                        help="Post linking to the full conversation, for the reply digest")

    # Pipeline control
    pipeline_group = parser.add_argument_group("pipeline")
    pipeline_group.add_argument("--mode", default="",
                        help="Execution mode: full (default, also empty), "
                             f"{MODE_TRANSCRIPT}, {MODE_ATTENDEES}, {MODE_REPLIES}")
    pipeline_group.add_argument("--options",
                        help="JSON object of tuning options, e.g. "
                             '\'{"fetch_titles": true, "fetch_limit": 18, "fetch_timeout_sec": 4}\'')
    pipeline_group.add_argument("-v", "--verbose", action="store_true",
                        help="Show collaborator commands and skipped stages")

    args = parser.parse_args()

    try:
        mode = normalize_mode(args.mode)
    except ValueError as e:
        parser.error(str(e))

    print("Checking dependencies...")
    for tool, available in check_dependencies().items():
        print(f"  {tool}: {'OK' if available else 'not found'}")

    job = job_from_environ(
        source_ref=args.url.strip(),
        source_kind_hint=args.source_kind,
        title_hint=args.title,
        post_id=args.post_id.strip(),
        mode=mode,
        storage_prefix=args.storage_prefix,
        visibility=args.visibility,
        audio_profile=args.audio_profile,
        reference_link=args.reference_link.strip(),
        audio_file=Path(args.audio_file) if args.audio_file else None,
        artifact_dir=Path(args.output_dir),
        options=_parse_options(args.options),
        verbose=args.verbose,
    )

    print()
    print(f"Processing: {job.source_ref or '(no source)'}")
    print(f"Mode: {job.mode}")
    print(f"Output directory: {job.artifact_dir}")
    print(f"Concurrency key: {concurrency_key(job)}")
    if not job.has_publisher:
        print("  Note: WP_BASE_URL not set, the payload is only saved locally")

    ctx = run_job(job)
    summary = summarize(job, ctx)
    print_summary(summary)
    if ctx.base_name:
        summary_path = artifact_path(job, ctx, SUMMARY_JSON)
        _save_json(summary_path, summary)
        print()
        print(f"Summary saved: {summary_path}")
    sys.exit(summary["exit_code"])


if __name__ == "__main__":
    main()
