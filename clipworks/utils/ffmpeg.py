"""Async FFmpeg invocation and the fixed command lines used by the pipeline."""

import asyncio
import logging

from clipworks.config import get_settings
from clipworks.exceptions import TranscodeError, TranscodeTimeoutError

logger = logging.getLogger(__name__)

# Fixed H.264/AAC output preset shared by every extraction path
H264_AAC_OUTPUT = [
    "-c:v", "libx264",
    "-preset", "veryfast",
    "-crf", "23",
    "-c:a", "aac",
    "-movflags", "+faststart",
    "-pix_fmt", "yuv420p",
]

HTTP_RECONNECT = [
    "-reconnect", "1",
    "-reconnect_streamed", "1",
    "-reconnect_delay_max", "5",
]

SUBTITLE_STYLE = (
    "FontSize=24,Bold=1,FontName=Impact,PrimaryColour=&H00FFFFFF,"
    "OutlineColour=&H00303030,Outline=0.5,Shadow=0,MarginV=30,Alignment=2"
)


async def run_ffmpeg(args: list[str], *, timeout: float | None = None, binary: str | None = None) -> bytes:
    """Run ffmpeg with ``args`` and return stdout.

    Raises:
        TranscodeTimeoutError: If the process outlives ``timeout``; it is killed.
        TranscodeError: On a non-zero exit status.
    """
    settings = get_settings()
    cmd = [binary or settings.ffmpeg_path, *args]
    timeout = settings.transcode_timeout_s if timeout is None else timeout
    logger.debug(f"[FFMPEG] {' '.join(cmd)}")

    process = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise TranscodeTimeoutError(f"{cmd[0]} timed out after {timeout:g}s")

    if process.returncode != 0:
        tail = stderr.decode(errors="replace")[-500:]
        raise TranscodeError(f"{cmd[0]} exited with {process.returncode}: {tail}")
    return stdout


def range_extract_args(source_url: str, start: float, duration: float, output_path: str) -> list[str]:
    """Seek straight into a remote source and re-encode the window."""
    return [
        "-y",
        *HTTP_RECONNECT,
        "-ss", f"{start:g}",
        "-accurate_seek",
        "-i", source_url,
        "-t", f"{duration:g}",
        *H264_AAC_OUTPUT,
        "-avoid_negative_ts", "make_zero",
        output_path,
    ]


def segment_extract_args(input_path: str, start: float, duration: float, output_path: str) -> list[str]:
    return [
        "-y",
        "-ss", f"{start:g}",
        "-i", input_path,
        "-t", f"{duration:g}",
        *H264_AAC_OUTPUT,
        output_path,
    ]


def burn_subtitles_args(input_path: str, srt_path: str, output_path: str) -> list[str]:
    escaped = srt_path.replace("\\", "\\\\").replace(":", "\\:").replace("'", "\\'")
    return [
        "-y",
        "-i", input_path,
        "-vf", f"subtitles={escaped}:force_style='{SUBTITLE_STYLE}'",
        "-sn",
        *H264_AAC_OUTPUT,
        output_path,
    ]


def audio_window_args(source_url: str, start: int, duration: int, output_path: str) -> list[str]:
    """Cut an MP3 excerpt from a remote audio source."""
    return [
        "-y",
        *HTTP_RECONNECT,
        "-ss", str(start),
        "-i", source_url,
        "-t", str(duration),
        "-vn",
        "-acodec", "libmp3lame",
        "-ar", "44100",
        "-ac", "2",
        "-b:a", "128k",
        output_path,
    ]


def pcm_wav_args(input_path: str, output_path: str, sample_rate: int = 44100) -> list[str]:
    return [
        "-y",
        "-i", input_path,
        "-vn",
        "-acodec", "pcm_s16le",
        "-ar", str(sample_rate),
        "-ac", "1",
        output_path,
    ]


def mux_frames_args(frame_pattern: str, fps: int, audio_path: str, output_path: str) -> list[str]:
    return [
        "-y",
        "-framerate", str(fps),
        "-i", frame_pattern,
        "-i", audio_path,
        "-c:v", "libx264",
        "-c:a", "aac",
        "-pix_fmt", "yuv420p",
        "-shortest",
        "-movflags", "+faststart",
        output_path,
    ]
