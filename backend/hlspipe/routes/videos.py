"""Video upload and read API endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from fastapi.responses import FileResponse

from hlspipe.errors import JobNotFoundError, PreviewTimeoutError, ThumbnailError, UploadRejected
from hlspipe.models.job import Job, JobStatus
from hlspipe.models.schemas import PreviewResponse, UploadResponse, VideoListResponse
from hlspipe.services.ingest import IngestService, ingest_service
from hlspipe.services.job_queue import JobQueue, job_queue
from hlspipe.services.job_store import JobStore, job_store
from hlspipe.services.pipeline import pipeline
from hlspipe.services.thumbnails import ThumbnailGenerator
from hlspipe.services.transcoder import MASTER_PLAYLIST_NAME
from hlspipe.utils import paths

logger = logging.getLogger(__name__)

router = APIRouter()


def get_job_store() -> JobStore:
    return job_store


def get_job_queue() -> JobQueue:
    return job_queue


def get_ingest_service() -> IngestService:
    return ingest_service


def get_thumbnailer() -> ThumbnailGenerator:
    return pipeline.thumbnailer


def _load_job(store: JobStore, job_id: str) -> Job:
    try:
        return store.get(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Video not found")


@router.post("", response_model=UploadResponse)
async def upload_video(
    file: UploadFile = File(...),
    ingest: IngestService = Depends(get_ingest_service),
    queue: JobQueue = Depends(get_job_queue),
):
    """
    Accept an uploaded video and queue it for processing.

    Args:
        file: Multipart file field

    Returns:
        Identifier of the created job
    """
    try:
        job = await ingest.ingest(file)
        await queue.add_job(job.id)
        return UploadResponse(id=job.id)

    except UploadRejected as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    except Exception as e:
        logger.error(f"Error ingesting upload: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Cannot store upload")


@router.get("", response_model=VideoListResponse)
async def list_videos(
    status: Optional[JobStatus] = Query(None, description="Filter by status"),
    store: JobStore = Depends(get_job_store),
):
    """
    List videos, newest first.

    Args:
        status: Optional status filter

    Returns:
        Job records and total count
    """
    try:
        videos = store.list()
        if status:
            videos = [v for v in videos if v.status == status]
        videos.sort(key=lambda v: v.created_at.timestamp() if v.created_at else 0, reverse=True)
        return VideoListResponse(videos=videos, total=len(videos))

    except Exception as e:
        logger.error(f"Error listing videos: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to list videos")


@router.get("/{job_id}", response_model=Job)
async def get_video(job_id: str, store: JobStore = Depends(get_job_store)):
    """
    Get a video's job record.

    Args:
        job_id: Job identifier

    Returns:
        Job record
    """
    try:
        return _load_job(store, job_id)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error getting video {job_id}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


@router.get("/{job_id}/master.m3u8")
async def get_master_playlist(job_id: str, store: JobStore = Depends(get_job_store)):
    """Serve the master playlist of a processed video."""
    job = _load_job(store, job_id)
    master = paths.outputs_dir(job.storage_base, job.id) / MASTER_PLAYLIST_NAME
    if not master.is_file():
        raise HTTPException(status_code=404, detail="Playlist not found")
    return FileResponse(master, media_type="application/vnd.apple.mpegurl")


@router.post("/{job_id}/preview", response_model=PreviewResponse)
async def create_preview(
    job_id: str,
    timestamp: float = Query(0.0, ge=0, description="Seek position in seconds"),
    store: JobStore = Depends(get_job_store),
    thumbnailer: ThumbnailGenerator = Depends(get_thumbnailer),
):
    """
    Extract a single preview frame.

    Args:
        job_id: Job identifier
        timestamp: Seek position in seconds

    Returns:
        Path of the preview relative to the storage root
    """
    job = _load_job(store, job_id)
    if job.duration_sec and timestamp > job.duration_sec:
        raise HTTPException(status_code=400, detail="Timestamp is past the end of the video")

    source = paths.original_path(job.storage_base, job.id, job.original_filename)
    try:
        path = await thumbnailer.generate_single_thumbnail(job, str(source), timestamp)
        return PreviewResponse(path=path)

    except PreviewTimeoutError as e:
        logger.error(f"Preview for {job_id} timed out: {e}")
        raise HTTPException(status_code=504, detail="Preview generation timed out")
    except ThumbnailError as e:
        logger.error(f"Error generating preview for {job_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to generate preview")
