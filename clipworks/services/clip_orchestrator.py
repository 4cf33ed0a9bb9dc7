"""Clip synthesis: audio excerpt in, waveform video out.

A request is identified by its fingerprint. The first request for a
fingerprint inserts a queued work item and schedules one background task;
every later request answers from that work item.
"""

import logging
import time
import uuid

import httpx

from clipworks.config import Settings, get_settings
from clipworks.exceptions import InvalidTimeRangeError
from clipworks.models.work_item import KIND_CLIP_SYNTHESIS
from clipworks.render.frame_engine import FrameSynthesisEngine
from clipworks.schemas.jobs import ClipSynthesisRequest, ClipSynthesisResult, JobOutcome, JobStatus
from clipworks.services.artwork import fetch_artwork
from clipworks.services.background import BackgroundTaskRunner
from clipworks.services.content_hasher import clip_fingerprint, normalize_seconds
from clipworks.services.job_store import JobStore
from clipworks.services.outcomes import outcome_for, status_for
from clipworks.services.resource_guard import ResourceGuard
from clipworks.services.storage_service import StorageService
from clipworks.services.subtitles import adjust_subtitles, subtitles_text
from clipworks.utils.ffmpeg import audio_window_args, run_ffmpeg

logger = logging.getLogger(__name__)


def clip_storage_key(feed_id: str, episode_guid: str, fingerprint: str, suffix: str = "clip.mp4") -> str:
    return f"clips/{feed_id}/{episode_guid}/{fingerprint}-{suffix}"


def resolve_clip_window(request: ClipSynthesisRequest, settings: Settings) -> tuple[int, int]:
    """Whole-second (start, end) window to extract.

    A missing end defaults to ``default_clip_length_s`` after the start.

    Raises:
        InvalidTimeRangeError: No start, a negative start or an empty window.
    """
    if request.start_time is None:
        raise InvalidTimeRangeError("A clip start time is required")
    end_time = request.end_time
    if end_time is None:
        end_time = request.start_time + settings.default_clip_length_s
    if request.start_time < 0 or end_time <= request.start_time:
        raise InvalidTimeRangeError(start_time=request.start_time, end_time=end_time)

    start = normalize_seconds(request.start_time)
    end = normalize_seconds(end_time)
    if end - start <= 0:
        raise InvalidTimeRangeError(start_time=request.start_time, end_time=end_time)
    return start, end


class ClipSynthesisOrchestrator:
    def __init__(
        self,
        store: JobStore,
        storage: StorageService,
        guard: ResourceGuard,
        engine: FrameSynthesisEngine,
        runner: BackgroundTaskRunner,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.store = store
        self.storage = storage
        self.guard = guard
        self.engine = engine
        self.runner = runner
        self.settings = settings or get_settings()
        self.http_client = http_client

    @staticmethod
    def poll_url(fingerprint: str) -> str:
        return f"/api/clips/{fingerprint}"

    async def synthesize(self, request: ClipSynthesisRequest) -> JobOutcome:
        start, end = resolve_clip_window(request, self.settings)
        end_time = request.end_time
        if end_time is None and not request.share_token:
            end_time = end
        fingerprint = clip_fingerprint(
            request.feed_id,
            request.episode_guid,
            request.start_time,
            end_time,
            request.share_token,
        )

        existing = await self.store.get(fingerprint)
        if existing is not None:
            logger.info(f"[CLIP][{fingerprint[:12]}] Existing work item is {existing.status}")
            return outcome_for(existing, self.poll_url(fingerprint))

        queued = ClipSynthesisResult(
            feed_id=request.feed_id,
            episode_guid=request.episode_guid,
            clip_start=start,
            clip_end=end,
            clip_duration=end - start,
        )
        item, created = await self.store.create_if_absent(KIND_CLIP_SYNTHESIS, fingerprint, queued)
        if not created:
            return outcome_for(item, self.poll_url(fingerprint))

        logger.info(f"[CLIP][{fingerprint[:12]}] Queued clip {start}s-{end}s of {request.episode_guid}")
        self.runner.spawn(self._run(fingerprint, request, start, end), name=f"clip-{fingerprint[:12]}")
        return JobOutcome(status="processing", fingerprint=fingerprint, poll_url=self.poll_url(fingerprint))

    async def status(self, fingerprint: str) -> JobStatus:
        return status_for(fingerprint, await self.store.get(fingerprint))

    async def _run(self, fingerprint: str, request: ClipSynthesisRequest, start: int, end: int) -> None:
        prefix = f"[CLIP][{fingerprint[:12]}]"
        started = time.monotonic()
        duration = end - start
        token = uuid.uuid4().hex[:8]
        audio_path: str | None = None
        video_path: str | None = None
        preview_path: str | None = None

        self.guard.register_job(fingerprint, KIND_CLIP_SYNTHESIS, request.audio_url, window=f"{start}-{end}")
        try:
            await self.store.mark_processing(fingerprint)

            audio_path = self.guard.new_temp_path(f"clip-{fingerprint[:16]}-{token}.mp3")
            logger.info(f"{prefix} Extracting {duration}s of audio from {start}s")
            await run_ffmpeg(
                audio_window_args(request.audio_url, start, duration, audio_path),
                timeout=self.settings.transcode_timeout_s,
            )

            subtitles = adjust_subtitles(request.subtitles, start, duration)
            artwork = await fetch_artwork(request.artwork_url, client=self.http_client, settings=self.settings)

            video_path = self.guard.new_temp_path(f"clip-{fingerprint[:16]}-{token}.mp4")
            preview_path = self.guard.new_temp_path(f"clip-{fingerprint[:16]}-{token}-preview.png")
            rendered = await self.engine.render(
                audio_path=audio_path,
                output_path=video_path,
                preview_path=preview_path,
                artwork=artwork,
                creator=request.creator,
                episode_title=request.episode_title,
                subtitles=subtitles,
            )

            bucket = self.settings.clip_bucket_name
            video_key = clip_storage_key(request.feed_id, request.episode_guid, fingerprint)
            preview_key = clip_storage_key(request.feed_id, request.episode_guid, fingerprint, "clip-preview.png")
            video_url = await self.storage.upload_file(bucket, video_key, rendered.output_path, "video/mp4")
            preview_url = await self.storage.upload_file(bucket, preview_key, rendered.preview_path, "image/png")

            elapsed_ms = int((time.monotonic() - started) * 1000)
            await self.store.mark_completed(
                fingerprint,
                video_url,
                ClipSynthesisResult(
                    feed_id=request.feed_id,
                    episode_guid=request.episode_guid,
                    clip_start=start,
                    clip_end=end,
                    clip_duration=duration,
                    has_subtitles=bool(subtitles),
                    subtitle_count=len(subtitles),
                    clip_text=subtitles_text(subtitles) or None,
                    storage_key=video_key,
                    preview_url=preview_url,
                    processing_time_ms=elapsed_ms,
                ),
            )
            logger.info(f"{prefix} Completed in {elapsed_ms}ms ({rendered.frame_count} frames)")
        except Exception as e:
            logger.exception(f"{prefix} Clip synthesis failed")
            await self._record_failure(fingerprint, str(e) or type(e).__name__)
        finally:
            for path in (audio_path, video_path, preview_path):
                self.guard.cleanup_temp_file(path)
            self.guard.unregister_job(fingerprint)

    async def _record_failure(self, fingerprint: str, message: str) -> None:
        try:
            await self.store.mark_failed(fingerprint, message)
        except Exception:
            logger.exception(f"[CLIP][{fingerprint[:12]}] Could not record failure")
