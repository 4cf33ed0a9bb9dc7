import asyncio
import logging
import os
import shutil
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path

from PIL import Image

from clipworks.config import Settings, get_settings
from clipworks.exceptions import ProcessingError, RenderError
from clipworks.render.audio_levels import frame_count, frame_levels, load_wav_samples
from clipworks.render.frame_renderer import (
    FrameAssets,
    FrameInput,
    build_frame_assets,
    render_frame,
    text_watermark,
)
from clipworks.render.palette import resolve_base_color
from clipworks.services.subtitles import Subtitle
from clipworks.utils.ffmpeg import mux_frames_args, pcm_wav_args, run_ffmpeg

logger = logging.getLogger(__name__)

FRAME_PATTERN = "frame-%06d.png"
PNG_COMPRESS_LEVEL = 3


@dataclass
class RenderOutput:
    output_path: str
    preview_path: str
    duration_s: float
    frame_count: int


def _render_and_save(frame: FrameInput, assets: FrameAssets, frames_dir: str, preview_path: str | None) -> None:
    image = render_frame(frame, assets)
    image.save(os.path.join(frames_dir, FRAME_PATTERN % frame.index), compress_level=PNG_COMPRESS_LEVEL)
    if preview_path is not None:
        image.save(preview_path, format="PNG")


class FrameSynthesisEngine:
    """Renders a waveform clip video from an audio excerpt.

    Frames are rasterised on a fixed thread pool in batches of at most
    ``max_concurrent_frames`` and muxed with the audio by ffmpeg. All working
    files live in a per-job directory that is removed on success or failure.
    """

    def __init__(self, settings: Settings | None = None, watermark: Image.Image | None = None) -> None:
        self.settings = settings or get_settings()
        self.max_concurrent_frames = max(1, self.settings.max_concurrent_frames)
        self.fps = self.settings.render_fps
        self.watermark = watermark if watermark is not None else self._load_watermark()
        self._executor = ThreadPoolExecutor(
            max_workers=min(self.max_concurrent_frames, (os.cpu_count() or 1) * 2),
            thread_name_prefix="frame-render",
        )

    def _load_watermark(self) -> Image.Image:
        path = self.settings.watermark_path
        if path:
            try:
                with Image.open(path) as img:
                    return img.convert("RGBA")
            except OSError as e:
                logger.warning(f"[RENDER] Could not load watermark {path}: {e}; using text watermark")
        return text_watermark(self.settings.watermark_text)

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    async def render(
        self,
        *,
        audio_path: str,
        output_path: str,
        preview_path: str,
        artwork: Image.Image,
        creator: str,
        episode_title: str,
        subtitles: list[Subtitle],
    ) -> RenderOutput:
        work_dir = Path(self.settings.temp_dir) / f"video-gen-{uuid.uuid4().hex}"
        frames_dir = work_dir / "frames"
        frames_dir.mkdir(parents=True, exist_ok=True)
        wav_path = str(work_dir / "audio.wav")

        try:
            await run_ffmpeg(pcm_wav_args(audio_path, wav_path))
            samples, sample_rate = await asyncio.to_thread(load_wav_samples, wav_path)
            duration = len(samples) / sample_rate if sample_rate else 0.0
            if duration <= 0:
                raise RenderError("Audio excerpt is empty")

            total_frames = frame_count(duration, self.fps)
            levels = frame_levels(samples, total_frames, self.settings.waveform_bands)

            base_color = resolve_base_color(creator, artwork, self.settings.creator_color_overrides)
            assets = await asyncio.to_thread(
                build_frame_assets,
                width=self.settings.canvas_width,
                height=self.settings.canvas_height,
                artwork=artwork,
                watermark=self.watermark,
                base_color=base_color,
                creator=creator,
                episode_title=episode_title,
                subtitles=subtitles,
            )

            logger.info(
                f"[RENDER] Processing {total_frames} frames in batches of {self.max_concurrent_frames}"
            )
            await self._render_frames(assets, levels, str(frames_dir), preview_path)

            await run_ffmpeg(
                mux_frames_args(str(frames_dir / FRAME_PATTERN), self.fps, wav_path, output_path)
            )
            return RenderOutput(
                output_path=output_path,
                preview_path=preview_path,
                duration_s=duration,
                frame_count=total_frames,
            )
        except ProcessingError:
            raise
        except (OSError, ValueError) as e:
            raise RenderError(f"Frame rendering failed: {e}") from e
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)

    async def _render_frames(
        self,
        assets: FrameAssets,
        levels: list,
        frames_dir: str,
        preview_path: str,
    ) -> None:
        loop = asyncio.get_running_loop()
        total = len(levels)
        for batch_start in range(0, total, self.max_concurrent_frames):
            batch_end = min(batch_start + self.max_concurrent_frames, total)
            await asyncio.gather(
                *(
                    loop.run_in_executor(
                        self._executor,
                        _render_and_save,
                        FrameInput(index=i, time_s=i / self.fps, levels=levels[i]),
                        assets,
                        frames_dir,
                        preview_path if i == 0 else None,
                    )
                    for i in range(batch_start, batch_end)
                )
            )
            logger.debug(f"[RENDER] Rendered frames {batch_end}/{total}")
