"""Preview frame extraction with ffmpeg."""

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Optional

from hlspipe.errors import (
    CommandError,
    CommandTimeoutError,
    PreviewTimeoutError,
    ThumbnailError,
)
from hlspipe.models.job import Job
from hlspipe.utils import paths
from hlspipe.utils.runner import CommandRunner

logger = logging.getLogger(__name__)

DEFAULT_COUNT = 5
DEFAULT_WIDTH = 320
DEFAULT_QUALITY = 2  # ffmpeg -q:v, 1 (best) to 31
SCENE_THRESHOLD = 0.4
PREVIEW_WIDTH = 640


@dataclass
class ThumbnailOptions:
    """Thumbnail extraction options."""

    count: int = DEFAULT_COUNT
    interval: float = 0  # seconds between frames, 0 = spread over duration
    width: int = DEFAULT_WIDTH  # height follows aspect ratio
    quality: int = DEFAULT_QUALITY

    def normalized(self) -> "ThumbnailOptions":
        """Copy with out-of-range values replaced by defaults."""
        return replace(
            self,
            count=self.count if self.count > 0 else DEFAULT_COUNT,
            width=self.width if self.width > 0 else DEFAULT_WIDTH,
            quality=self.quality if 1 <= self.quality <= 31 else DEFAULT_QUALITY,
        )


def thumbnail_timestamps(duration: float, count: int, interval: float = 0) -> list[float]:
    """
    Seek positions for ``count`` evenly spaced frames.

    Frame ``i`` (1-based) sits at ``interval * i``; a position at or past the
    end is pulled back to ``duration * (i - 1) / count``.

    Args:
        duration: Source duration in seconds
        count: Number of frames
        interval: Spacing in seconds, or <= 0 for ``duration / (count + 1)``

    Returns:
        Timestamps in seconds, in frame order
    """
    if interval <= 0:
        interval = duration / (count + 1)

    timestamps = []
    for i in range(1, count + 1):
        timestamp = interval * i
        if timestamp >= duration:
            timestamp = duration * ((i - 1) / count)
        timestamps.append(timestamp)
    return timestamps


class ThumbnailGenerator:
    """Extracts numbered preview frames and a poster frame."""

    def __init__(
        self,
        ffmpeg_path: str = "ffmpeg",
        runner: Optional[CommandRunner] = None,
        preview_concurrency: int = 1,
        preview_timeout: Optional[float] = None,
    ):
        self.ffmpeg_path = ffmpeg_path
        self.runner = runner or CommandRunner()
        self.preview_timeout = preview_timeout or None
        # On-demand previews share this cap; batch thumbnails run inside job workers
        self._preview_slots = asyncio.Semaphore(max(1, preview_concurrency))

    async def generate_thumbnails(
        self,
        job: Job,
        input_path: str,
        duration: float,
        options: Optional[ThumbnailOptions] = None,
    ) -> list[str]:
        """
        Extract preview frames for a job.

        Frames are written to ``thumbnails/<id>/thumb_NNN.jpg`` under the
        job's storage base, one ffmpeg run each. A poster picked by scene
        change follows as ``poster.jpg`` when it can be produced.

        Args:
            job: Job the frames belong to
            input_path: Source media path
            duration: Source duration in seconds
            options: Extraction options (defaults when None)

        Returns:
            Paths relative to the storage base, numbered frames first

        Raises:
            ThumbnailError: When a numbered frame fails; frames already
                written are kept and listed on the exception
        """
        options = (options or ThumbnailOptions()).normalized()
        thumb_dir = paths.thumbnails_dir(job.storage_base, job.id)
        try:
            thumb_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ThumbnailError(f"create thumbnail dir: {e}") from e

        thumbnails = []
        timestamps = thumbnail_timestamps(duration, options.count, options.interval)

        for i, timestamp in enumerate(timestamps, start=1):
            name = f"thumb_{i:03d}.jpg"
            args = [
                "-y",
                "-ss", f"{timestamp:.2f}",
                "-i", str(input_path),
                "-vframes", "1",
                "-vf", f"scale={options.width}:-1",
                "-q:v", str(options.quality),
                str(thumb_dir / name),
            ]
            try:
                await self.runner.run(self.ffmpeg_path, args)
            except CommandError as e:
                raise ThumbnailError(
                    f"generate thumbnail {i} at {timestamp:.2f}s: {e}", thumbnails
                ) from e
            thumbnails.append(f"thumbnails/{job.id}/{name}")

        poster = await self._generate_poster(job, input_path, options)
        if poster:
            thumbnails.append(poster)

        logger.info(f"Generated {len(thumbnails)} thumbnails for job {job.id}")
        return thumbnails

    async def _generate_poster(
        self, job: Job, input_path: str, options: ThumbnailOptions
    ) -> Optional[str]:
        """Extract the first frame past a scene change; None on failure."""
        poster_path = paths.thumbnails_dir(job.storage_base, job.id) / "poster.jpg"
        args = [
            "-y",
            "-i", str(input_path),
            "-vf", f"select='gt(scene,{SCENE_THRESHOLD})',scale={options.width * 2}:-1",
            "-frames:v", "1",
            "-q:v", str(options.quality),
            str(poster_path),
        ]
        try:
            await self.runner.run(self.ffmpeg_path, args)
        except CommandError as e:
            logger.warning(f"Poster extraction failed for job {job.id}: {e}")
            return None
        return f"thumbnails/{job.id}/poster.jpg"

    async def generate_single_thumbnail(self, job: Job, input_path: str, timestamp: float) -> str:
        """
        Extract one 640px preview frame at ``timestamp``.

        At most ``preview_concurrency`` extractions run at once; further
        callers wait for a slot. Each run is killed after ``preview_timeout``.

        Returns:
            ``thumbnails/<id>/preview.jpg``

        Raises:
            PreviewTimeoutError: If ffmpeg exceeds the preview deadline
            ThumbnailError: If extraction fails
        """
        thumb_dir = paths.thumbnails_dir(job.storage_base, job.id)
        try:
            thumb_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ThumbnailError(f"create thumbnail dir: {e}") from e

        args = [
            "-y",
            "-ss", f"{timestamp:.2f}",
            "-i", str(input_path),
            "-vframes", "1",
            "-vf", f"scale={PREVIEW_WIDTH}:-1",
            "-q:v", str(DEFAULT_QUALITY),
            str(thumb_dir / "preview.jpg"),
        ]
        async with self._preview_slots:
            try:
                await self.runner.run(self.ffmpeg_path, args, timeout=self.preview_timeout)
            except CommandTimeoutError as e:
                raise PreviewTimeoutError(f"preview at {timestamp:.2f}s: {e}") from e
            except CommandError as e:
                raise ThumbnailError(f"generate thumbnail at {timestamp:.2f}s: {e}") from e
        return f"thumbnails/{job.id}/preview.jpg"
