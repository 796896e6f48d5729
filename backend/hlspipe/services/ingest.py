"""Upload ingestion: store the original, then create the queued job."""

import hashlib
import logging
import os
import shutil
import uuid
from pathlib import Path
from typing import Optional

from fastapi import UploadFile

from hlspipe.config import settings
from hlspipe.errors import JobAlreadyExistsError, PersistenceError, UploadRejected
from hlspipe.models.job import Job, JobStatus
from hlspipe.services.job_store import JobStore, job_store
from hlspipe.utils import paths

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024

MIME_BY_EXTENSION = {
    ".mp4": "video/mp4",
    ".mov": "video/quicktime",
    ".avi": "video/x-msvideo",
    ".mkv": "video/x-matroska",
    ".webm": "video/webm",
    ".wmv": "video/x-ms-wmv",
    ".flv": "video/x-flv",
}


def resolve_mime(content_type: Optional[str], filename: str) -> str:
    """
    MIME type of an upload.

    The client's header wins unless it is missing or generic, in which case
    the extension decides (falling back to video/mp4).
    """
    if content_type and content_type != "application/octet-stream":
        return content_type
    return MIME_BY_EXTENSION.get(Path(filename).suffix.lower(), "video/mp4")


class IngestService:
    """Accepts uploads into durable storage and registers their jobs."""

    def __init__(
        self,
        store: JobStore,
        storage_dir: str,
        allowed_mime: list,
        max_upload_bytes: int,
    ):
        self.store = store
        self.storage_dir = storage_dir
        self.allowed_mime = list(allowed_mime)
        self.max_upload_bytes = max_upload_bytes

    async def ingest(self, upload: UploadFile) -> Job:
        """
        Store an uploaded file and create its queued job record.

        The original is written and synced before the record exists, so a
        queued job always has its source on disk. If the record cannot be
        created the original is removed again.

        Args:
            upload: Uploaded file

        Returns:
            The created job record

        Raises:
            UploadRejected: For a disallowed type (400) or an oversize file (413)
            PersistenceError: If the file or record cannot be written
        """
        filename = Path(upload.filename or "upload").name
        mime = resolve_mime(upload.content_type, filename)
        if mime not in self.allowed_mime:
            raise UploadRejected(
                f"unsupported file type {mime}, allowed types: {', '.join(self.allowed_mime)}"
            )

        job_id = str(uuid.uuid4())
        dest = paths.original_path(self.storage_dir, job_id, filename)
        size, checksum = await self._save(upload, dest)

        job = Job(
            id=job_id,
            original_filename=filename,
            mime=mime,
            size_bytes=size,
            checksum=checksum,
            status=JobStatus.QUEUED,
            storage_base=self.storage_dir,
        )
        try:
            job = self.store.create(job)
        except (PersistenceError, JobAlreadyExistsError):
            # never leave an original without a record
            shutil.rmtree(dest.parent, ignore_errors=True)
            raise
        logger.info(f"Ingested {filename} as job {job_id} ({size} bytes)")
        return job

    async def _save(self, upload: UploadFile, dest: Path) -> tuple[int, str]:
        """Stream the upload to ``dest``, returning its size and sha256."""
        digest = hashlib.sha256()
        size = 0
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            with open(dest, "wb") as f:
                while True:
                    chunk = await upload.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    size += len(chunk)
                    if size > self.max_upload_bytes:
                        raise UploadRejected(
                            f"file too large, max size is {self.max_upload_bytes // (1024 * 1024)} MB",
                            status_code=413,
                        )
                    digest.update(chunk)
                    f.write(chunk)
                f.flush()
                os.fsync(f.fileno())
        except UploadRejected:
            shutil.rmtree(dest.parent, ignore_errors=True)
            raise
        except OSError as e:
            shutil.rmtree(dest.parent, ignore_errors=True)
            raise PersistenceError(f"cannot save upload: {e}") from e

        return size, digest.hexdigest()


# Global ingest service instance
ingest_service = IngestService(
    job_store,
    settings.STORAGE_DIR,
    settings.ALLOWED_MIME,
    settings.MAX_UPLOAD_MB * 1024 * 1024,
)
