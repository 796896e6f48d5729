"""Job queue with a bounded pool of background workers."""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

from hlspipe.config import settings
from hlspipe.errors import JobNotFoundError
from hlspipe.models.job import JobStatus
from hlspipe.services.job_store import JobStore, job_store
from hlspipe.services.pipeline import pipeline

logger = logging.getLogger(__name__)

ProcessFunc = Callable[[str], Awaitable[object]]


class JobQueue:
    """
    Feeds queued job ids to a fixed number of workers.

    Submissions beyond the worker count wait in the queue instead of
    starting more encoder processes.
    """

    def __init__(
        self,
        process: ProcessFunc,
        store: JobStore,
        workers: int = 1,
        job_timeout: Optional[float] = None,
    ):
        self.process = process
        self.store = store
        self.workers = max(1, workers)
        self.job_timeout = job_timeout or None
        self.queue: asyncio.Queue = asyncio.Queue()
        self.active_job_ids: set = set()
        self.running = False
        self.worker_tasks: list = []

    async def add_job(self, job_id: str):
        """
        Add job to queue.

        Args:
            job_id: Job identifier
        """
        await self.queue.put(job_id)
        logger.info(f"Job {job_id} added to queue. Queue size: {self.queue.qsize()}")

    async def start_worker(self):
        """Start the background worker tasks."""
        if self.running:
            logger.warning("Workers already running")
            return

        self.running = True
        self.worker_tasks = [
            asyncio.create_task(self._worker_loop(n)) for n in range(self.workers)
        ]
        logger.info(f"Job queue started with {self.workers} workers")

    async def stop_worker(self):
        """Stop the background worker tasks, cancelling jobs in flight."""
        if not self.running:
            return

        self.running = False
        for task in self.worker_tasks:
            task.cancel()
        await asyncio.gather(*self.worker_tasks, return_exceptions=True)
        self.worker_tasks = []
        logger.info("Job queue workers stopped")

    async def join(self):
        """Wait until every queued job has been processed."""
        await self.queue.join()

    async def recover(self) -> int:
        """
        Resume work left by a previous run.

        Jobs still marked processing were interrupted and are failed; queued
        jobs are enqueued again.

        Returns:
            Number of jobs re-enqueued
        """
        requeued = 0
        for job in self.store.list():
            if job.status == JobStatus.PROCESSING:
                job.fail("Processing interrupted by service restart")
                self.store.update(job)
                logger.warning(f"Job {job.id} was interrupted, marked failed")
            elif job.status == JobStatus.QUEUED:
                await self.add_job(job.id)
                requeued += 1
        return requeued

    async def _worker_loop(self, worker_id: int):
        """Background worker that processes jobs one after another."""
        logger.info(f"Worker {worker_id} started")

        while self.running:
            job_id = await self.queue.get()
            self.active_job_ids.add(job_id)
            try:
                logger.info(f"Worker {worker_id} processing job {job_id}")
                await self._process_job(job_id)
            except asyncio.CancelledError:
                logger.info(f"Worker {worker_id} cancelled during job {job_id}")
                self._mark_failed(job_id, "Processing cancelled by shutdown")
                raise
            except Exception as e:
                logger.error(f"Error in worker {worker_id}: {e}", exc_info=True)
            finally:
                self.active_job_ids.discard(job_id)
                self.queue.task_done()

    async def _process_job(self, job_id: str):
        """
        Process a single job under the per-job timeout.

        Args:
            job_id: Job identifier
        """
        try:
            await asyncio.wait_for(self.process(job_id), self.job_timeout)
        except asyncio.TimeoutError:
            logger.error(f"Job {job_id} timed out after {self.job_timeout}s")
            self._mark_failed(job_id, f"Processing timed out after {self.job_timeout:g}s")
        except Exception as e:
            logger.error(f"Error processing job {job_id}: {e}", exc_info=True)
            self._mark_failed(job_id, str(e) or type(e).__name__)

    def _mark_failed(self, job_id: str, message: str):
        """Persist a failed status unless the job already finished."""
        try:
            job = self.store.get(job_id)
            if job.status.is_terminal:
                return
            job.fail(message)
            self.store.update(job)
        except JobNotFoundError:
            logger.error(f"Job {job_id} vanished before it could be marked failed")
        except Exception as db_error:
            logger.error(f"Error updating failed job {job_id}: {db_error}")

    def get_queue_status(self) -> dict:
        """Get current queue status."""
        return {
            "queue_size": self.queue.qsize(),
            "active_job_ids": sorted(self.active_job_ids),
            "workers": self.workers,
            "running": self.running,
        }


# Global job queue instance
job_queue = JobQueue(
    pipeline.process_video,
    job_store,
    workers=settings.WORKERS,
    job_timeout=settings.JOB_TIMEOUT,
)
