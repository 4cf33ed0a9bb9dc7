"""Media file information utilities using FFprobe."""

import json
import logging

from clipworks.config import get_settings
from clipworks.exceptions import TranscodeError
from clipworks.utils.ffmpeg import run_ffmpeg

logger = logging.getLogger(__name__)


async def _run_ffprobe(file_path: str, *args: str) -> dict:
    """Run ffprobe and return parsed JSON."""
    settings = get_settings()
    stdout = await run_ffmpeg(
        ["-v", "quiet", "-print_format", "json", *args, file_path],
        timeout=settings.probe_timeout_s * 6,
        binary=settings.ffprobe_path,
    )
    try:
        return json.loads(stdout)
    except json.JSONDecodeError as e:
        raise TranscodeError(f"Failed to parse ffprobe output: {e}")


async def get_media_duration(file_path: str) -> float:
    """
    Get media duration in seconds.

    Args:
        file_path: Local path or URL

    Returns:
        Duration in seconds

    Raises:
        TranscodeError: If ffprobe fails or reports no duration
    """
    data = await _run_ffprobe(file_path, "-show_format")
    duration = data.get("format", {}).get("duration")
    if duration is None:
        raise TranscodeError(f"Could not determine duration of {file_path}")
    return float(duration)

