"""Shared fixtures for pipeline tests."""

import json
from typing import Callable, Optional

import pytest

from hlspipe.errors import CommandError
from hlspipe.models.job import Job, JobStatus
from hlspipe.services.job_store import JobStore
from hlspipe.utils.runner import CommandResult


class FakeRunner:
    """Records invocations instead of running ffmpeg/ffprobe.

    ``handler(binary, args)`` may return output text or raise CommandError.
    """

    def __init__(self, handler: Optional[Callable] = None):
        self.calls = []
        self.timeouts = []
        self.handler = handler

    async def run(self, binary, args, timeout=None):
        self.calls.append((binary, list(args)))
        self.timeouts.append(timeout)
        output = self.handler(binary, list(args)) if self.handler else ""
        return CommandResult(output=output or "", returncode=0)

    async def run_with_input(self, data, binary, args, timeout=None):
        return await self.run(binary, args, timeout)

    def calls_to(self, binary: str) -> list:
        return [args for name, args in self.calls if name == binary]


def ffprobe_json(width=1920, height=1080, duration="10.0", fps="30/1", audio="aac") -> str:
    streams = [
        {
            "codec_type": "video",
            "codec_name": "h264",
            "width": width,
            "height": height,
            "r_frame_rate": fps,
            "duration": duration,
        }
    ]
    if audio:
        streams.append({"codec_type": "audio", "codec_name": audio})
    return json.dumps(
        {"streams": streams, "format": {"duration": duration, "bit_rate": "4500000"}}
    )


def fail_command(binary: str, output: str = "boom"):
    raise CommandError(binary, 1, output)


@pytest.fixture
def store(tmp_path) -> JobStore:
    return JobStore(tmp_path / "metadata")


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def make_job(tmp_path):
    """Factory for queued job records rooted in the test's tmp dir."""

    def _make(job_id: str = "job-1", **overrides) -> Job:
        fields = dict(
            id=job_id,
            original_filename="clip.mp4",
            mime="video/mp4",
            size_bytes=1024,
            status=JobStatus.QUEUED,
            storage_base=str(tmp_path / "storage"),
        )
        fields.update(overrides)
        return Job(**fields)

    return _make
