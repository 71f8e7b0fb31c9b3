"""
Object storage for the space publishing pipeline.

Uploads run artifacts to an S3-compatible bucket through the aws CLI and
returns where readers can fetch them.
"""

import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from space_press.shared import (
    tprint as print,
    Job, run_command,
)

UPLOAD_TIMEOUT_SECS = 900

_CONTENT_TYPES = {
    ".mp3": "audio/mpeg",
    ".vtt": "text/vtt; charset=utf-8",
    ".html": "text/html; charset=utf-8",
    ".json": "application/json",
}


@dataclass(frozen=True)
class StoredObject:
    key: str
    url: str
    proxy_url: str = ""


def object_key(prefix: str, filename: str) -> str:
    prefix = (prefix or "").strip().strip("/")
    return f"{prefix}/{filename}" if prefix else filename


def content_type_for(path: Path) -> str:
    suffix = path.suffix.lower()
    if suffix in _CONTENT_TYPES:
        return _CONTENT_TYPES[suffix]
    guessed, _ = mimetypes.guess_type(path.name)
    return guessed or "application/octet-stream"


def public_url(job: Job, key: str) -> str:
    if job.s3_public_base:
        return f"{job.s3_public_base}/{key}"
    if job.s3_endpoint:
        return f"{job.s3_endpoint}/{job.s3_bucket}/{key}"
    return f"https://{job.s3_bucket}.s3.amazonaws.com/{key}"


def upload_file(job: Job, local_path: Path, key: Optional[str] = None) -> StoredObject:
    """Store ``local_path`` under the job's storage prefix.

    Raises subprocess.CalledProcessError / TimeoutExpired from the CLI.
    """
    key = key or object_key(job.effective_storage_prefix, local_path.name)
    acl = "public-read" if job.visibility == "public" else "private"
    cmd = ["aws", "s3", "cp", str(local_path), f"s3://{job.s3_bucket}/{key}",
           "--acl", acl, "--content-type", content_type_for(local_path), "--only-show-errors"]
    if job.s3_endpoint:
        cmd += ["--endpoint-url", job.s3_endpoint]
    print(f"  Uploading {local_path.name} → s3://{job.s3_bucket}/{key}")
    run_command(cmd, f"uploading {local_path.name}", job.verbose, timeout=UPLOAD_TIMEOUT_SECS)
    proxy = f"{job.s3_proxy_base}/{key}" if job.s3_proxy_base else ""
    return StoredObject(key=key, url=public_url(job, key), proxy_url=proxy)
