"""File-backed job store: one JSON document per job."""

import logging
import os
import re
import tempfile
import threading
from pathlib import Path

from pydantic import ValidationError

from hlspipe.config import settings
from hlspipe.errors import JobAlreadyExistsError, JobNotFoundError, PersistenceError
from hlspipe.models.job import Job, utcnow
from hlspipe.utils import paths

logger = logging.getLogger(__name__)

_JOB_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_TEMP_SUFFIX = ".tmp"


class JobStore:
    """
    Durable job records under a metadata directory.

    Every write lands in a uniquely named temp file which is then renamed
    over ``<id>.json``, so readers only ever see complete documents.
    """

    def __init__(self, root):
        self.root = Path(root)
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, job_id: str) -> threading.Lock:
        """Per-record lock serializing read-modify-write cycles in this process."""
        with self._locks_guard:
            lock = self._locks.get(job_id)
            if lock is None:
                lock = self._locks[job_id] = threading.Lock()
            return lock

    def _path_for(self, job_id: str) -> Path:
        if not isinstance(job_id, str) or not _JOB_ID_RE.match(job_id):
            raise JobNotFoundError(str(job_id))
        return self.root / f"{job_id}.json"

    def _write_temp(self, dest: Path, job: Job) -> str:
        """Write the record to a temp file beside ``dest`` and return its path."""
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(
                prefix=f".{dest.name}.", suffix=_TEMP_SUFFIX, dir=self.root
            )
        except OSError as e:
            raise PersistenceError(f"cannot create temp file for {dest.name}: {e}") from e

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(job.model_dump_json(indent=2))
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            self._discard(tmp)
            raise PersistenceError(f"cannot write {dest.name}: {e}") from e
        return tmp

    @staticmethod
    def _discard(tmp: str):
        try:
            os.unlink(tmp)
        except FileNotFoundError:
            pass

    def _read(self, path: Path, job_id: str) -> Job:
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise JobNotFoundError(job_id) from None
        except OSError as e:
            raise PersistenceError(f"cannot read job {job_id}: {e}") from e

        try:
            return Job.model_validate_json(raw)
        except ValidationError as e:
            raise PersistenceError(f"corrupt record for job {job_id}: {e}") from e

    def create(self, job: Job) -> Job:
        """
        Persist a new job record.

        Args:
            job: Record to store; its timestamps are overwritten

        Returns:
            The stored record

        Raises:
            JobAlreadyExistsError: If a record with the same id exists
            PersistenceError: On I/O failure
        """
        dest = self._path_for(job.id)
        now = utcnow()
        record = job.model_copy(deep=True, update={"created_at": now, "updated_at": now})

        tmp = self._write_temp(dest, record)
        try:
            # link() refuses to replace an existing name, making create atomic
            os.link(tmp, dest)
        except FileExistsError:
            raise JobAlreadyExistsError(job.id) from None
        except OSError as e:
            raise PersistenceError(f"cannot create job {job.id}: {e}") from e
        finally:
            self._discard(tmp)

        logger.debug(f"Created job record {job.id}")
        return record

    def get(self, job_id: str) -> Job:
        """
        Load a job record.

        Raises:
            JobNotFoundError: If no record exists
            PersistenceError: If the record cannot be read or parsed
        """
        return self._read(self._path_for(job_id), job_id)

    def update(self, job: Job) -> Job:
        """
        Overwrite an existing job record.

        ``created_at`` is kept from the stored record and ``updated_at`` is
        bumped, never moving backward. Updates of the same id from one
        process are serialized, so the last write carries the newest
        ``updated_at``.

        Returns:
            The stored record

        Raises:
            JobNotFoundError: If no record exists
            PersistenceError: On I/O failure
        """
        dest = self._path_for(job.id)
        with self._lock_for(job.id):
            current = self._read(dest, job.id)

            now = utcnow()
            if current.updated_at is not None and current.updated_at > now:
                now = current.updated_at
            record = job.model_copy(
                deep=True,
                update={"created_at": current.created_at, "updated_at": now},
            )

            tmp = self._write_temp(dest, record)
            try:
                os.replace(tmp, dest)
            except OSError as e:
                self._discard(tmp)
                raise PersistenceError(f"cannot update job {job.id}: {e}") from e

        return record

    def list(self) -> list[Job]:
        """
        Snapshot of all readable job records, in no particular order.

        Records that cannot be read or parsed are skipped.
        """
        try:
            entries = list(self.root.iterdir())
        except FileNotFoundError:
            return []
        except OSError as e:
            raise PersistenceError(f"cannot list {self.root}: {e}") from e

        jobs = []
        for entry in entries:
            if entry.suffix != ".json" or entry.name.startswith("."):
                continue
            try:
                jobs.append(Job.model_validate_json(entry.read_text(encoding="utf-8")))
            except (OSError, ValidationError) as e:
                logger.warning(f"Skipping unreadable job record {entry.name}: {e}")
        return jobs

    def remove_stale_temp_files(self) -> int:
        """
        Delete temp files orphaned by an interrupted write.

        Only safe while no writer is active (i.e. at startup).

        Returns:
            Number of files removed
        """
        removed = 0
        if not self.root.exists():
            return removed

        for item in self.root.iterdir():
            if item.name.startswith(".") and item.name.endswith(_TEMP_SUFFIX):
                try:
                    item.unlink()
                    removed += 1
                    logger.info(f"Removed orphaned temp file: {item.name}")
                except OSError as e:
                    logger.error(f"Error removing temp file {item.name}: {e}")
        return removed


# Global job store instance
job_store = JobStore(paths.metadata_dir(settings.STORAGE_DIR))
