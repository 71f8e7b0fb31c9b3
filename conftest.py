"""Shared test fixtures and utilities."""

from pathlib import Path

import pytest

from space_press.shared import Job, JobContext, JobOptions


def make_job(tmp_path: Path, **overrides) -> Job:
    """Job writing into tmp_path with no collaborators configured."""
    defaults = dict(
        source_ref="https://x.com/i/spaces/1YqKDqDXAbwKV",
        artifact_dir=tmp_path,
        run_id="run0001",
        started_at=1714521600.0,  # 2024-05-01T00:00:00Z
        options=JobOptions(fetch_titles=False, trim_silence=False),
    )
    defaults.update(overrides)
    return Job(**defaults)


def make_context(**fields) -> JobContext:
    ctx = JobContext(base_name="space-20240501-1YqKDqDXAbwKV", identifier="1YqKDqDXAbwKV")
    ctx.apply(fields)
    return ctx


@pytest.fixture
def job(tmp_path):
    return make_job(tmp_path)
