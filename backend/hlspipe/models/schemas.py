"""Pydantic schemas for API responses."""
from pydantic import BaseModel

from hlspipe.models.job import Job


class UploadResponse(BaseModel):
    """Schema for upload response."""
    id: str


class VideoListResponse(BaseModel):
    """Schema for video list response."""
    videos: list[Job]
    total: int


class PreviewResponse(BaseModel):
    """Schema for preview frame response."""
    path: str
