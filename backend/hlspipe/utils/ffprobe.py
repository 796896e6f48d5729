"""FFprobe wrapper for extracting video metadata."""
import json
import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Optional

from hlspipe.errors import CommandError, ProbeError
from hlspipe.utils.runner import CommandRunner

logger = logging.getLogger(__name__)


@dataclass
class VideoInfo:
    """Essential attributes of a probed media file."""

    duration: float = 0.0
    width: int = 0
    height: int = 0
    fps: float = 0.0
    bitrate_kbps: int = 0
    video_codec: str = ""
    audio_codec: str = ""


class Prober:
    """Runs ffprobe and reduces its JSON report to a VideoInfo."""

    def __init__(self, ffprobe_path: str = "ffprobe", runner: Optional[CommandRunner] = None):
        self.ffprobe_path = ffprobe_path
        self.runner = runner or CommandRunner()

    async def probe_video(self, file_path: str, timeout: Optional[float] = None) -> VideoInfo:
        """
        Get video metadata using ffprobe.

        Args:
            file_path: Path to video file
            timeout: Optional deadline in seconds

        Returns:
            Parsed VideoInfo

        Raises:
            ProbeError: If ffprobe fails, its output is not JSON, or the
                file has no video stream
        """
        args = [
            "-v", "quiet",
            "-print_format", "json",
            "-show_format",
            "-show_streams",
            str(file_path),
        ]

        try:
            result = await self.runner.run(self.ffprobe_path, args, timeout=timeout)
        except CommandError as e:
            raise ProbeError(f"ffprobe failed: {e}") from e

        try:
            data = json.loads(result.output)
        except json.JSONDecodeError as e:
            raise ProbeError(f"parse ffprobe output: {e}") from e
        if not isinstance(data, dict):
            raise ProbeError("parse ffprobe output: expected a JSON object")

        try:
            info = parse_probe_output(data)
        except (TypeError, ValueError, AttributeError) as e:
            raise ProbeError(f"parse ffprobe output: {e}") from e
        if info is None:
            raise ProbeError(f"no video stream in {file_path}")

        logger.debug(f"Probed {file_path}: {info}")
        return info


def parse_probe_output(data: Dict[str, Any]) -> Optional[VideoInfo]:
    """
    Reduce ffprobe's ``-show_format -show_streams`` JSON to a VideoInfo.

    Returns:
        VideoInfo, or None if there is no video stream

    Raises:
        ValueError: If ``streams`` or ``format`` has the wrong shape
    """
    streams = data.get("streams") or []
    format_info = data.get("format") or {}
    if not isinstance(streams, list) or not all(isinstance(s, dict) for s in streams):
        raise ValueError("streams must be a list of objects")
    if not isinstance(format_info, dict):
        raise ValueError("format must be an object")

    video_stream = next((s for s in streams if s.get("codec_type") == "video"), None)
    if video_stream is None:
        return None
    audio_stream = next((s for s in streams if s.get("codec_type") == "audio"), None)

    duration = _to_float(format_info.get("duration"))
    if duration == 0:
        duration = _to_float(video_stream.get("duration"))

    return VideoInfo(
        duration=duration,
        width=_to_int(video_stream.get("width")),
        height=_to_int(video_stream.get("height")),
        fps=eval_fps(video_stream.get("r_frame_rate", "0/1")),
        bitrate_kbps=_to_int(format_info.get("bit_rate")) // 1000,
        video_codec=str(video_stream.get("codec_name") or ""),
        audio_codec=str(audio_stream.get("codec_name") or "") if audio_stream else "",
    )


def _to_float(value) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def _to_int(value) -> int:
    # ffprobe reports "N/A" for unknown numeric fields
    return int(_to_float(value))


def eval_fps(fps_string: str) -> float:
    """
    Evaluate FPS from fraction string (e.g., "30000/1001").

    Args:
        fps_string: FPS as fraction string

    Returns:
        FPS as float, 0.0 for a zero denominator or garbage
    """
    try:
        if "/" in fps_string:
            num, den = fps_string.split("/")
            return float(num) / float(den)
        return float(fps_string)
    except (ValueError, ZeroDivisionError, TypeError):
        return 0.0
