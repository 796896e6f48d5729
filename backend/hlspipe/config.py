"""Configuration management for the media pipeline service."""

import os
from pathlib import Path


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name, "")
    try:
        return int(value) if value else default
    except ValueError:
        return default


def _env_list(name: str, default: list) -> list:
    value = os.getenv(name, "")
    items = [item.strip() for item in value.split(",") if item.strip()]
    return items or default


class Settings:
    """Application settings loaded from environment variables."""

    # Server
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = _env_int("PORT", 1323)

    # Paths
    STORAGE_DIR: str = os.getenv("STORAGE_DIR", "storage")
    FFMPEG_PATH: str = os.getenv("FFMPEG_PATH", "ffmpeg")
    FFPROBE_PATH: str = os.getenv("FFPROBE_PATH", "ffprobe")

    # Processing
    WORKERS: int = max(1, _env_int("WORKERS", 1))
    JOB_TIMEOUT: int = _env_int("JOB_TIMEOUT", 3600)  # seconds, 0 disables
    PREVIEW_CONCURRENCY: int = max(1, _env_int("PREVIEW_CONCURRENCY", WORKERS))
    PREVIEW_TIMEOUT: int = _env_int("PREVIEW_TIMEOUT", 60)  # seconds, 0 disables
    RESOLUTIONS: list = [
        int(h) for h in _env_list("RESOLUTIONS", []) if h.isdigit()
    ]

    # Uploads
    MAX_UPLOAD_MB: int = _env_int("MAX_UPLOAD_MB", 512)
    ALLOWED_MIME: list = _env_list(
        "ALLOWED_MIME", ["video/mp4", "video/quicktime", "video/x-matroska"]
    )

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # CORS
    CORS_ORIGINS: list = _env_list("CORS_ORIGINS", ["*"])

    @classmethod
    def ensure_directories(cls):
        """Ensure the storage layout exists."""
        root = Path(cls.STORAGE_DIR)
        for name in ("metadata", "originals", "outputs", "thumbnails"):
            (root / name).mkdir(parents=True, exist_ok=True)


settings = Settings()
