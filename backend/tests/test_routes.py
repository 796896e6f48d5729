"""Tests for the video API endpoints."""

import asyncio
import hashlib

import httpx
import pytest
from fastapi.testclient import TestClient

from conftest import FakeRunner, fail_command
from hlspipe.errors import CommandTimeoutError, PersistenceError
from hlspipe.main import app
from hlspipe.models.job import JobStatus
from hlspipe.routes import videos
from hlspipe.services.ingest import IngestService, resolve_mime
from hlspipe.services.job_queue import JobQueue
from hlspipe.services.job_store import JobStore
from hlspipe.services.thumbnails import ThumbnailGenerator
from hlspipe.utils import paths


async def _noop(job_id):
    return None


class CountingRunner(FakeRunner):
    """Runner that holds each command briefly and records peak overlap."""

    def __init__(self):
        super().__init__()
        self.running = 0
        self.peak = 0

    async def run(self, binary, args, timeout=None):
        self.running += 1
        self.peak = max(self.peak, self.running)
        try:
            await asyncio.sleep(0.05)
            return await super().run(binary, args, timeout)
        finally:
            self.running -= 1


@pytest.fixture
def storage_dir(tmp_path):
    return str(tmp_path / "storage")


@pytest.fixture
def queue(store):
    return JobQueue(_noop, store, workers=1)


@pytest.fixture
def thumb_runner():
    return FakeRunner()


@pytest.fixture
def client(store, queue, storage_dir, thumb_runner):
    ingest = IngestService(store, storage_dir, ["video/mp4", "video/quicktime"], max_upload_bytes=1024)
    app.dependency_overrides[videos.get_job_store] = lambda: store
    app.dependency_overrides[videos.get_job_queue] = lambda: queue
    app.dependency_overrides[videos.get_ingest_service] = lambda: ingest
    app.dependency_overrides[videos.get_thumbnailer] = lambda: ThumbnailGenerator("ffmpeg", thumb_runner)
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.mark.parametrize(
    "content_type, filename, expected",
    [
        ("video/webm", "a.mp4", "video/webm"),
        (None, "a.MOV", "video/quicktime"),
        ("application/octet-stream", "a.mkv", "video/x-matroska"),
        ("", "noext", "video/mp4"),
    ],
)
def test_resolve_mime(content_type, filename, expected):
    assert resolve_mime(content_type, filename) == expected


class TestUpload:
    def test_upload_stores_original_and_queues_job(self, client, store, queue, storage_dir):
        payload = b"\x00\x01fake video bytes"
        response = client.post("/api/videos", files={"file": ("holiday.mp4", payload, "video/mp4")})

        assert response.status_code == 200
        job_id = response.json()["id"]

        job = store.get(job_id)
        assert job.status == JobStatus.QUEUED
        assert job.original_filename == "holiday.mp4"
        assert job.mime == "video/mp4"
        assert job.size_bytes == len(payload)
        assert job.checksum == hashlib.sha256(payload).hexdigest()
        assert job.storage_base == storage_dir
        assert paths.original_path(storage_dir, job_id, "holiday.mp4").read_bytes() == payload

        assert queue.queue.get_nowait() == job_id

    def test_disallowed_type_rejected(self, client, store, queue):
        response = client.post("/api/videos", files={"file": ("song.ogg", b"abc", "audio/ogg")})

        assert response.status_code == 400
        assert store.list() == []
        assert queue.queue.empty()

    def test_oversize_upload_rejected_and_removed(self, client, store, storage_dir):
        response = client.post("/api/videos", files={"file": ("big.mp4", b"x" * 2048, "video/mp4")})

        assert response.status_code == 413
        assert store.list() == []
        originals = paths.originals_dir(storage_dir, "x").parent
        assert not originals.exists() or list(originals.iterdir()) == []

    def test_file_field_required(self, client):
        assert client.post("/api/videos").status_code == 422

    def test_failed_record_removes_original(self, client, queue, storage_dir, tmp_path):
        class BrokenStore(JobStore):
            def create(self, job):
                raise PersistenceError("disk full")

        broken = BrokenStore(tmp_path / "metadata")
        ingest = IngestService(broken, storage_dir, ["video/mp4"], max_upload_bytes=1024)
        app.dependency_overrides[videos.get_ingest_service] = lambda: ingest

        response = client.post("/api/videos", files={"file": ("clip.mp4", b"abc", "video/mp4")})

        assert response.status_code == 500
        originals = paths.originals_dir(storage_dir, "x").parent
        assert not originals.exists() or list(originals.iterdir()) == []
        assert queue.queue.empty()


class TestRead:
    def test_list_newest_first_with_filter(self, client, store, make_job):
        store.create(make_job("first"))
        store.create(make_job("second"))
        job = store.get("second")
        job.transition_to(JobStatus.PROCESSING)
        store.update(job)

        body = client.get("/api/videos").json()
        assert body["total"] == 2
        assert [v["id"] for v in body["videos"]] == ["second", "first"]

        body = client.get("/api/videos", params={"status": "processing"}).json()
        assert [v["id"] for v in body["videos"]] == ["second"]

    def test_get_video(self, client, store, make_job):
        store.create(make_job())
        body = client.get("/api/videos/job-1").json()
        assert body["id"] == "job-1"
        assert body["status"] == "queued"
        assert body["variants"] == []

    def test_get_missing_video(self, client):
        assert client.get("/api/videos/nope").status_code == 404

    def test_master_playlist(self, client, store, make_job):
        job = store.create(make_job())
        assert client.get("/api/videos/job-1/master.m3u8").status_code == 404

        output_dir = paths.outputs_dir(job.storage_base, job.id)
        output_dir.mkdir(parents=True)
        (output_dir / "master.m3u8").write_text("#EXTM3U\n")

        response = client.get("/api/videos/job-1/master.m3u8")
        assert response.status_code == 200
        assert response.text == "#EXTM3U\n"
        assert response.headers["content-type"].startswith("application/vnd.apple.mpegurl")


class TestPreview:
    def test_preview_frame(self, client, store, make_job, thumb_runner):
        store.create(make_job(duration_sec=20.0))
        response = client.post("/api/videos/job-1/preview", params={"timestamp": 4.5})

        assert response.status_code == 200
        assert response.json() == {"path": "thumbnails/job-1/preview.jpg"}
        assert len(thumb_runner.calls) == 1

    def test_preview_past_end(self, client, store, make_job):
        store.create(make_job(duration_sec=2.0))
        response = client.post("/api/videos/job-1/preview", params={"timestamp": 9})
        assert response.status_code == 400

    def test_preview_failure(self, client, store, make_job, thumb_runner):
        store.create(make_job())
        thumb_runner.handler = lambda binary, args: fail_command(binary)
        response = client.post("/api/videos/job-1/preview", params={"timestamp": 1})
        assert response.status_code == 500

    def test_preview_timeout(self, client, store, make_job, thumb_runner):
        store.create(make_job())

        def handler(binary, args):
            raise CommandTimeoutError(binary, 60)

        thumb_runner.handler = handler
        response = client.post("/api/videos/job-1/preview", params={"timestamp": 1})
        assert response.status_code == 504

    @pytest.mark.asyncio
    async def test_concurrent_previews_share_a_cap(self, store, make_job):
        store.create(make_job())
        runner = CountingRunner()
        thumbnailer = ThumbnailGenerator("ffmpeg", runner, preview_concurrency=2)
        app.dependency_overrides[videos.get_job_store] = lambda: store
        app.dependency_overrides[videos.get_thumbnailer] = lambda: thumbnailer
        try:
            transport = httpx.ASGITransport(app=app)
            async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
                responses = await asyncio.gather(
                    *(ac.post("/api/videos/job-1/preview", params={"timestamp": n}) for n in range(6))
                )
        finally:
            app.dependency_overrides.clear()

        assert [r.status_code for r in responses] == [200] * 6
        assert runner.peak == 2


def test_health(client):
    body = client.get("/api/health").json()
    assert body["status"] == "healthy"
    assert "queue_size" in body and "workers" in body
