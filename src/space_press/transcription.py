"""
Speech-to-text fallback for the space publishing pipeline.

Only used when the caption stream produced no cues: sends the audio to the
OpenAI transcription endpoint once, with a bounded wait, and takes the
returned WebVTT as the caption track verbatim.
"""

from pathlib import Path
from typing import Optional

from space_press.shared import (
    tprint as print,
    Job, TranscriptionUnavailable, create_stt_client,
)


def fallback_skip_reason(cues: list, audio_path: Optional[Path], job: Job) -> Optional[str]:
    """Why the fallback should not run, or None when it should."""
    if cues:
        return "captions already available"
    if not audio_path or not Path(audio_path).is_file():
        return "no audio file"
    if not job.has_stt_credentials:
        return "no speech-to-text credential configured"
    return None


def transcribe_to_vtt(audio_path: Path, job: Job) -> str:
    """Run one synchronous transcription and return the WebVTT document.

    Raises TranscriptionUnavailable on any client error, timeout, or a
    response that is not WebVTT.
    """
    import openai

    client = create_stt_client(job.openai_api_key, job.options.transcribe_timeout_sec)
    try:
        with open(audio_path, "rb") as f:
            response = client.audio.transcriptions.create(
                model=job.stt_model,
                file=f,
                response_format="vtt",
            )
    except (openai.OpenAIError, OSError) as e:
        raise TranscriptionUnavailable(f"speech-to-text request failed: {e}") from e

    text = response if isinstance(response, str) else getattr(response, "text", "")
    text = (text or "").lstrip("\ufeff")
    if not text.startswith("WEBVTT"):
        raise TranscriptionUnavailable("speech-to-text response is not WebVTT")
    if "-->" not in text:
        raise TranscriptionUnavailable("speech-to-text returned no cues")
    return text


def run_transcription_fallback(audio_path: Path, vtt_path: Path, job: Job) -> Optional[Path]:
    """Transcribe ``audio_path`` into ``vtt_path``; None when unavailable."""
    print()
    print("[transcribe] No usable captions, falling back to speech-to-text...")
    print(f"  Model: {job.stt_model} (timeout {job.options.transcribe_timeout_sec}s)")
    try:
        vtt = transcribe_to_vtt(audio_path, job)
    except TranscriptionUnavailable as e:
        print(f"  Warning: {e}")
        return None
    vtt_path.write_text(vtt, encoding="utf-8")
    print(f"  Captions saved: {vtt_path.name}")
    return vtt_path
