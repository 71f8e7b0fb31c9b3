"""
Audio encoding for the space publishing pipeline.

Wraps ffmpeg: measures leading silence (so captions can be shifted onto the
trimmed audio's zero point) and encodes the publishable MP3 with one of the
named audio profiles.
"""

import re
from pathlib import Path
from typing import Optional

from space_press.shared import (
    tprint as print,
    run_command,
)

# ffmpeg -af chains per audio profile
PROFILE_FILTERS = {
    "transparent": None,
    "radio": "highpass=f=70,lowpass=f=14000,loudnorm=I=-16:TP=-1.5:LRA=11",
    "aggressive": ("highpass=f=90,lowpass=f=12000,afftdn=nf=-25,"
                   "acompressor=threshold=-21dB:ratio=4:attack=5:release=120,"
                   "loudnorm=I=-16:TP=-1.5:LRA=7"),
}
DEFAULT_PROFILE = "radio"
ENCODE_TIMEOUT_SECS = 1800

SILENCE_NOISE_DB = -45
SILENCE_MIN_SECS = 0.5
# A silence run only counts as "leading" if it starts this close to zero
LEADING_TOLERANCE_SECS = 0.05

_SILENCE_START_RE = re.compile(r"silence_start:\s*(-?\d+(?:\.\d+)?)")
_SILENCE_END_RE = re.compile(r"silence_end:\s*(\d+(?:\.\d+)?)")


def parse_leading_silence(stderr: str) -> float:
    """Return the length of silence at the very start, from silencedetect output.

    ffmpeg logs pairs like:
        [silencedetect @ 0x...] silence_start: 0
        [silencedetect @ 0x...] silence_end: 4.218 | silence_duration: 4.218
    """
    start = _SILENCE_START_RE.search(stderr or "")
    if not start or float(start.group(1)) > LEADING_TOLERANCE_SECS:
        return 0.0
    end = _SILENCE_END_RE.search(stderr, start.end())
    if not end:
        return 0.0
    return float(end.group(1))


def measure_leading_silence(audio_path: Path, verbose: bool = False,
                            timeout: Optional[float] = None) -> float:
    """Measure leading silence of an audio file in seconds."""
    result = run_command(
        ["ffmpeg", "-hide_banner", "-nostats", "-i", str(audio_path),
         "-af", f"silencedetect=noise={SILENCE_NOISE_DB}dB:d={SILENCE_MIN_SECS}",
         "-f", "null", "-"],
        "measuring leading silence",
        verbose,
        timeout=timeout,
    )
    return parse_leading_silence(result.stderr)


def build_encode_command(src: Path, dest: Path, profile: str, trim_secs: float = 0.0) -> list[str]:
    """ffmpeg command line encoding ``src`` to MP3 with the given profile."""
    cmd = ["ffmpeg", "-hide_banner", "-y"]
    if trim_secs > 0:
        cmd += ["-ss", f"{trim_secs:.3f}"]
    cmd += ["-i", str(src), "-vn"]
    chain = PROFILE_FILTERS.get(profile, PROFILE_FILTERS[DEFAULT_PROFILE])
    if chain:
        cmd += ["-af", chain]
    cmd += ["-ac", "1", "-ar", "44100", "-c:a", "libmp3lame", "-b:a", "96k", str(dest)]
    return cmd


def encode_audio(src: Path, dest: Path, profile: str, trim_secs: float = 0.0,
                 verbose: bool = False, timeout: Optional[float] = None) -> Path:
    """Encode the acquired audio into the publishable MP3."""
    if profile not in PROFILE_FILTERS:
        print(f"  Unknown audio profile {profile!r}, using {DEFAULT_PROFILE}")
    print(f"  Encoding {src.name} → {dest.name} (profile: {profile}"
          + (f", trimming {trim_secs:.2f}s" if trim_secs > 0 else "") + ")")
    run_command(build_encode_command(src, dest, profile, trim_secs),
                "encoding audio", verbose, timeout=timeout)
    return dest
