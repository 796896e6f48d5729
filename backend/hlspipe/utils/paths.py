"""Storage layout helpers."""
from pathlib import Path


def metadata_dir(root) -> Path:
    return Path(root) / "metadata"


def originals_dir(root, job_id: str) -> Path:
    return Path(root) / "originals" / job_id


def outputs_dir(root, job_id: str) -> Path:
    return Path(root) / "outputs" / job_id


def thumbnails_dir(root, job_id: str) -> Path:
    return Path(root) / "thumbnails" / job_id


def original_path(root, job_id: str, original_filename: str) -> Path:
    """Path of the stored original, keeping the uploaded file's extension."""
    ext = Path(original_filename).suffix or ".mp4"
    return originals_dir(root, job_id) / f"original{ext}"
