"""HLS rendition transcoding and master playlist synthesis."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from hlspipe.errors import CommandError, TranscodeError
from hlspipe.models.job import Job, JobStatus, Variant, utcnow
from hlspipe.services.job_store import JobStore
from hlspipe.utils import paths
from hlspipe.utils.runner import CommandRunner

logger = logging.getLogger(__name__)

SEGMENT_DURATION = 4  # seconds
KEYFRAME_INTERVAL = 48  # frames, fixed so segments cut cleanly
PLAYLIST_NAME = "index.m3u8"
MASTER_PLAYLIST_NAME = "master.m3u8"


@dataclass(frozen=True)
class Preset:
    """Encoder rate-control settings for one rendition height."""

    height: int
    video_bitrate_kbps: int
    audio_bitrate_kbps: int
    max_rate_kbps: int
    buffer_size_kbps: int

    @property
    def bandwidth(self) -> int:
        """Declared stream bandwidth in bits/second."""
        return (self.video_bitrate_kbps + self.audio_bitrate_kbps) * 1000

    @property
    def resolution(self) -> str:
        """Declared resolution, assuming a 16:9 frame."""
        return f"{self.height * 16 // 9}x{self.height}"

    @property
    def playlist_path(self) -> str:
        return f"{self.height}/{PLAYLIST_NAME}"


PRESETS = (
    Preset(480, video_bitrate_kbps=600, audio_bitrate_kbps=96, max_rate_kbps=900, buffer_size_kbps=1200),
    Preset(720, video_bitrate_kbps=1000, audio_bitrate_kbps=128, max_rate_kbps=1500, buffer_size_kbps=2000),
    Preset(1080, video_bitrate_kbps=1800, audio_bitrate_kbps=128, max_rate_kbps=2700, buffer_size_kbps=3600),
)


def presets_for_heights(heights: Sequence[int]) -> tuple:
    """Restrict the preset table to ``heights``; an empty filter keeps all."""
    if not heights:
        return PRESETS
    selected = tuple(p for p in PRESETS if p.height in set(heights))
    return selected or PRESETS


def select_resolutions(source_height: int, presets: Sequence[Preset] = PRESETS) -> list[Preset]:
    """
    Choose the rendition ladder for a source.

    Every preset strictly below the source height is used. A source at or
    below the smallest preset gets the smallest preset alone, so there is
    always at least one rendition (even if that means upscaling).

    Args:
        source_height: Probed source height in pixels
        presets: Available presets

    Returns:
        Presets in ascending height order
    """
    ordered = sorted(presets, key=lambda p: p.height)
    selected = [p for p in ordered if p.height < source_height]
    if not selected:
        selected = ordered[:1]
    return selected


def build_rendition_args(input_path: str, rendition_dir: Path, preset: Preset) -> list[str]:
    """ffmpeg arguments encoding one preset as a VOD HLS stream."""
    return [
        "-y",
        "-i", str(input_path),
        "-vf", f"scale=-2:{preset.height}",
        "-c:v", "libx264",
        "-preset", "ultrafast",
        "-profile:v", "main",
        "-b:v", f"{preset.video_bitrate_kbps}k",
        "-maxrate", f"{preset.max_rate_kbps}k",
        "-bufsize", f"{preset.buffer_size_kbps}k",
        "-g", str(KEYFRAME_INTERVAL),
        "-keyint_min", str(KEYFRAME_INTERVAL),
        "-sc_threshold", "0",
        "-c:a", "aac",
        "-b:a", f"{preset.audio_bitrate_kbps}k",
        "-threads", "2",
        "-f", "hls",
        "-hls_time", str(SEGMENT_DURATION),
        "-hls_playlist_type", "vod",
        "-hls_segment_filename", str(rendition_dir / "%05d.ts"),
        str(rendition_dir / PLAYLIST_NAME),
    ]


def build_master_playlist(presets: Sequence[Preset]) -> str:
    """Master playlist text listing each rendition, ascending by height."""
    lines = ["#EXTM3U", "#EXT-X-VERSION:3", ""]
    for preset in sorted(presets, key=lambda p: p.height):
        lines.append(
            f"#EXT-X-STREAM-INF:BANDWIDTH={preset.bandwidth},RESOLUTION={preset.resolution}"
        )
        lines.append(preset.playlist_path)
    return "\n".join(lines) + "\n"


def _directory_size(directory: Path) -> int:
    return sum(f.stat().st_size for f in directory.iterdir() if f.is_file())


class Transcoder:
    """Encodes a job's renditions and records them on the job."""

    def __init__(
        self,
        store: JobStore,
        ffmpeg_path: str = "ffmpeg",
        runner: Optional[CommandRunner] = None,
        presets: Sequence[Preset] = PRESETS,
    ):
        self.store = store
        self.ffmpeg_path = ffmpeg_path
        self.runner = runner or CommandRunner()
        self.presets = tuple(presets)

    def _fail(self, job: Job, message: str) -> Job:
        job.fail(message)
        return self.store.update(job)

    async def transcode_video(self, job_id: str) -> Job:
        """
        Encode every selected rendition of a job and write its master playlist.

        Renditions run one at a time in ascending height. The job record is
        persisted after each finished rendition, so its variant list always
        matches the renditions on disk. The first failure marks the job
        failed and stops; later renditions are not attempted.

        Args:
            job_id: Job identifier

        Returns:
            The ready job record

        Raises:
            TranscodeError: If a rendition or the master playlist fails (the
                job has been persisted as failed)
            JobNotFoundError: If the job does not exist
            PersistenceError: If the store cannot be written
        """
        job = self.store.get(job_id)
        job.transition_to(JobStatus.PROCESSING)
        job = self.store.update(job)

        input_path = paths.original_path(job.storage_base, job.id, job.original_filename)
        output_dir = paths.outputs_dir(job.storage_base, job.id)
        targets = select_resolutions(job.height, self.presets)

        logger.info(
            f"Transcoding job {job.id} ({job.height}p source) to "
            f"{', '.join(f'{p.height}p' for p in targets)}"
        )

        for preset in targets:
            rendition_dir = output_dir / str(preset.height)
            try:
                rendition_dir.mkdir(parents=True, exist_ok=True)
                await self.runner.run(
                    self.ffmpeg_path, build_rendition_args(input_path, rendition_dir, preset)
                )
                size_bytes = _directory_size(rendition_dir)
            except (CommandError, OSError) as e:
                message = f"transcode {preset.height}p failed: {e}"
                logger.error(f"Job {job.id}: {message}")
                self._fail(job, message)
                raise TranscodeError(message) from e

            job.variants.append(
                Variant(
                    format="hls",
                    height=preset.height,
                    bitrate_kbps=preset.video_bitrate_kbps,
                    path=preset.playlist_path,
                    size_bytes=size_bytes,
                    ready_at=utcnow(),
                )
            )
            job = self.store.update(job)
            logger.info(f"Job {job.id}: {preset.height}p rendition ready")

        try:
            (output_dir / MASTER_PLAYLIST_NAME).write_text(
                build_master_playlist(targets), encoding="utf-8"
            )
        except OSError as e:
            message = f"generate master playlist failed: {e}"
            logger.error(f"Job {job.id}: {message}")
            self._fail(job, message)
            raise TranscodeError(message) from e

        job.transition_to(JobStatus.READY)
        job = self.store.update(job)
        logger.info(f"Job {job.id} ready with {len(job.variants)} renditions")
        return job
