"""Per-job processing pipeline: probe, thumbnails, transcode."""

import logging
from typing import Optional

from hlspipe.config import settings
from hlspipe.errors import JobNotFoundError, ProbeError, ThumbnailError, TranscodeError
from hlspipe.models.job import Job, JobStatus
from hlspipe.services.job_store import JobStore, job_store
from hlspipe.services.thumbnails import ThumbnailGenerator
from hlspipe.services.transcoder import Transcoder, presets_for_heights
from hlspipe.utils import paths
from hlspipe.utils.ffprobe import Prober
from hlspipe.utils.runner import CommandRunner

logger = logging.getLogger(__name__)

PROBE_UNAVAILABLE_MESSAGE = "FFmpeg/FFprobe not available or unusable"


class Pipeline:
    """Runs the processing stages for one job at a time."""

    def __init__(
        self,
        store: JobStore,
        prober: Prober,
        thumbnailer: ThumbnailGenerator,
        transcoder: Transcoder,
    ):
        self.store = store
        self.prober = prober
        self.thumbnailer = thumbnailer
        self.transcoder = transcoder

    async def process_video(self, job_id: str) -> Optional[Job]:
        """
        Process a queued job through every stage.

        Probe and thumbnail failures are soft: a failed probe still attempts
        thumbnails before the job is failed, and thumbnail failures never
        change the job status. A transcode failure is terminal. No stage is
        retried.

        Args:
            job_id: Job identifier

        Returns:
            Final job record, or None if the job does not exist
        """
        try:
            job = self.store.get(job_id)
        except JobNotFoundError:
            logger.error(f"Job {job_id} not found in store")
            return None

        if job.status.is_terminal:
            logger.warning(f"Job {job_id} already {job.status.value}, skipping")
            return job

        logger.info(f"Starting processing for job {job_id}")
        input_path = paths.original_path(job.storage_base, job.id, job.original_filename)

        try:
            info = await self.prober.probe_video(str(input_path))
        except ProbeError as e:
            return await self._handle_probe_failure(job, str(input_path), e)

        job.duration_sec = info.duration
        job.width = info.width
        job.height = info.height
        job.fps = info.fps
        job = self.store.update(job)
        logger.info(
            f"Job {job_id}: {info.width}x{info.height} @ {info.fps:.2f}fps, "
            f"{info.duration:.1f}s, {info.video_codec}/{info.audio_codec or 'no audio'}"
        )

        await self._generate_thumbnails(job, str(input_path), info.duration)

        try:
            job = await self.transcoder.transcode_video(job_id)
        except TranscodeError as e:
            logger.error(f"Failed to transcode job {job_id}: {e}")
            return self.store.get(job_id)

        logger.info(f"Successfully processed job {job_id}")
        return job

    async def _handle_probe_failure(self, job: Job, input_path: str, error: ProbeError) -> Job:
        logger.warning(f"Failed to probe job {job.id}, skipping video analysis: {error}")
        job.transition_to(JobStatus.PROCESSING)
        job = self.store.update(job)

        # Thumbnails without a duration are only a diagnostic here
        await self._generate_thumbnails(job, input_path, 0)

        job.fail(f"{PROBE_UNAVAILABLE_MESSAGE}: {error}")
        return self.store.update(job)

    async def _generate_thumbnails(self, job: Job, input_path: str, duration: float) -> list[str]:
        try:
            thumbnails = await self.thumbnailer.generate_thumbnails(job, input_path, duration)
        except ThumbnailError as e:
            logger.warning(
                f"Failed to generate thumbnails for job {job.id} "
                f"({len(e.thumbnails)} kept): {e}"
            )
            return e.thumbnails
        return thumbnails


def create_pipeline(store: JobStore = job_store) -> Pipeline:
    """Build a pipeline wired from settings."""
    runner = CommandRunner()
    return Pipeline(
        store=store,
        prober=Prober(settings.FFPROBE_PATH, runner),
        thumbnailer=ThumbnailGenerator(
            settings.FFMPEG_PATH,
            runner,
            preview_concurrency=settings.PREVIEW_CONCURRENCY,
            preview_timeout=settings.PREVIEW_TIMEOUT,
        ),
        transcoder=Transcoder(
            store,
            settings.FFMPEG_PATH,
            runner,
            presets_for_heights(settings.RESOLUTIONS),
        ),
    )


# Global pipeline instance
pipeline = create_pipeline()
