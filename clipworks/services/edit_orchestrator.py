"""Video edits: cut a time window out of a remote media file.

Validation runs synchronously and in a fixed order so that bad requests are
rejected before any network I/O (time range, then duration) and before any
work item exists (host trust, then the HEAD probe). Accepted requests are
deduplicated by fingerprint and processed by one background task.
"""

import logging
import time
import uuid

import httpx

from clipworks.config import Settings, get_settings
from clipworks.exceptions import DurationTooLongError, InvalidTimeRangeError, ProcessingError
from clipworks.models.work_item import KIND_VIDEO_EDIT
from clipworks.schemas.jobs import JobOutcome, JobStatus, VideoEditRequest, VideoEditResult
from clipworks.services.background import BackgroundTaskRunner
from clipworks.services.content_hasher import edit_fingerprint
from clipworks.services.derived_asset_cache import GLOBAL_NAMESPACE, DerivedAssetCache
from clipworks.services.extraction import ExtractionRequest, ExtractionStrategySelector
from clipworks.services.job_store import JobStore
from clipworks.services.outcomes import outcome_for, status_for
from clipworks.services.resource_guard import ResourceGuard
from clipworks.services.source_probe import (
    ParentIdentity,
    SourceMetadata,
    derive_parent_identity,
    ensure_trusted_source,
    probe_source,
)
from clipworks.services.storage_service import StorageService
from clipworks.services.subtitles import adjust_subtitles, to_srt
from clipworks.utils.ffmpeg import burn_subtitles_args, run_ffmpeg

logger = logging.getLogger(__name__)


def edit_storage_key(feed_id: str | None, parent_file_base: str, fingerprint: str) -> str:
    return f"uploads/{feed_id or GLOBAL_NAMESPACE}/{parent_file_base}-children/{fingerprint}.mp4"


def validate_edit_window(start_time: float, end_time: float, max_duration: float) -> float:
    """Return the window duration, rejecting bad ranges without touching the network."""
    if start_time < 0 or end_time <= start_time:
        raise InvalidTimeRangeError(start_time=start_time, end_time=end_time)
    duration = end_time - start_time
    if duration > max_duration:
        raise DurationTooLongError(duration, max_duration)
    return duration


class EditOrchestrator:
    def __init__(
        self,
        store: JobStore,
        storage: StorageService,
        guard: ResourceGuard,
        selector: ExtractionStrategySelector,
        cache: DerivedAssetCache,
        runner: BackgroundTaskRunner,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.store = store
        self.storage = storage
        self.guard = guard
        self.selector = selector
        self.cache = cache
        self.runner = runner
        self.settings = settings or get_settings()
        self.http_client = http_client

    @staticmethod
    def poll_url(fingerprint: str) -> str:
        return f"/api/edits/{fingerprint}"

    async def edit(self, request: VideoEditRequest) -> JobOutcome:
        """Validate an edit request and start or reuse its work item.

        Raises:
            InvalidTimeRangeError, DurationTooLongError, UntrustedSourceError:
                Before any network I/O.
            SourceUnavailableError, UnsupportedMediaTypeError, SourceTooLargeError:
                From the metadata probe.
        """
        url = request.url.strip()
        duration = validate_edit_window(request.start_time, request.end_time, self.settings.max_edit_duration_s)
        ensure_trusted_source(url, self.settings)
        metadata = await probe_source(url, client=self.http_client, settings=self.settings)

        fingerprint = edit_fingerprint(url, request.start_time, request.end_time, request.use_subtitles)
        existing = await self.store.get(fingerprint)
        if existing is not None:
            logger.info(f"[EDIT][{fingerprint[:12]}] Existing work item is {existing.status}")
            return outcome_for(existing, self.poll_url(fingerprint))

        parent = derive_parent_identity(url, self.settings)
        queued = VideoEditResult(
            feed_id=request.feed_id,
            original_url=url,
            parent_file_name=parent.file_name,
            parent_file_base=parent.file_base,
            edit_start=request.start_time,
            edit_end=request.end_time,
            edit_duration=duration,
            use_subtitles=request.use_subtitles,
        )
        item, created = await self.store.create_if_absent(KIND_VIDEO_EDIT, fingerprint, queued)
        if not created:
            return outcome_for(item, self.poll_url(fingerprint))

        self.cache.invalidate(parent.file_base, request.feed_id)
        logger.info(
            f"[EDIT][{fingerprint[:12]}] Queued {request.start_time:g}s-{request.end_time:g}s "
            f"of {parent.file_base} ({metadata.content_type}, {metadata.size_bytes} bytes)"
        )
        self.runner.spawn(
            self._run(fingerprint, url, request, parent, metadata),
            name=f"edit-{fingerprint[:12]}",
        )
        return JobOutcome(status="processing", fingerprint=fingerprint, poll_url=self.poll_url(fingerprint))

    async def status(self, fingerprint: str) -> JobStatus:
        return status_for(fingerprint, await self.store.get(fingerprint))

    async def _run(
        self,
        fingerprint: str,
        url: str,
        request: VideoEditRequest,
        parent: ParentIdentity,
        metadata: SourceMetadata,
    ) -> None:
        prefix = f"[EDIT][{fingerprint[:12]}]"
        started = time.monotonic()
        extraction = ExtractionRequest(
            source_url=url,
            start_time=request.start_time,
            end_time=request.end_time,
            fingerprint=fingerprint,
        )
        segment_path: str | None = None
        final_path: str | None = None

        job = self.guard.register_job(
            fingerprint,
            KIND_VIDEO_EDIT,
            url,
            edit_range=f"{request.start_time:g}-{request.end_time:g}",
        )
        try:
            await self.store.mark_processing(fingerprint)

            chain = self.selector.select(metadata.size_bytes, extraction, is_streaming=metadata.is_streaming)
            logger.info(f"{prefix} Strategy chain: {[name.value for name in chain]}")
            extracted = await self.selector.run(extraction, chain)
            segment_path = extracted.output_path
            final_path = segment_path

            subtitle_fields: dict = {}
            if request.use_subtitles and request.subtitles:
                final_path, subtitle_fields = await self._burn_subtitles(fingerprint, segment_path, request)

            self.guard.check_memory_pressure("upload")
            storage_key = edit_storage_key(request.feed_id, parent.file_base, fingerprint)
            output_url = await self.storage.upload_file(
                self.settings.edit_bucket_name, storage_key, final_path, "video/mp4"
            )

            elapsed_ms = int((time.monotonic() - started) * 1000)
            memory_delta = self.guard.memory_delta_mb(job)
            await self.store.mark_completed(
                fingerprint,
                output_url,
                {
                    "strategy": extracted.strategy.value,
                    "storage_key": storage_key,
                    "processing_time_ms": elapsed_ms,
                    "memory_delta_mb": memory_delta,
                    **subtitle_fields,
                },
            )
            logger.info(
                f"{prefix} Completed via {extracted.strategy.value} in {elapsed_ms}ms "
                f"(memory delta {memory_delta}MB)"
            )
        except Exception as e:
            logger.exception(f"{prefix} Edit failed")
            await self._record_failure(fingerprint, str(e) or type(e).__name__)
        finally:
            for path in {segment_path, final_path}:
                self.guard.cleanup_temp_file(path)
            self.guard.unregister_job(fingerprint)
            self.cache.invalidate(parent.file_base, request.feed_id)

    async def _burn_subtitles(
        self, fingerprint: str, segment_path: str, request: VideoEditRequest
    ) -> tuple[str, dict]:
        """Burn adjusted subtitles into the segment.

        Returns the path to upload and the result fields to record. A failed
        burn-in falls back to the plain segment.
        """
        prefix = f"[EDIT][{fingerprint[:12]}]"
        duration = request.end_time - request.start_time
        subtitles = adjust_subtitles(request.subtitles, request.start_time, duration)
        if not subtitles:
            logger.info(f"{prefix} No subtitles in the edit window")
            return segment_path, {"has_subtitles": False, "subtitle_count": 0}

        token = uuid.uuid4().hex[:8]
        srt_path = self.guard.new_temp_path(f"edit-{fingerprint[:16]}-{token}.srt")
        output_path = self.guard.new_temp_path(f"edit-{fingerprint[:16]}-{token}-subtitled.mp4")
        try:
            with open(srt_path, "w", encoding="utf-8") as f:
                f.write(to_srt(subtitles))
            await run_ffmpeg(
                burn_subtitles_args(segment_path, srt_path, output_path),
                timeout=self.settings.transcode_timeout_s,
            )
        except (ProcessingError, OSError) as e:
            message = e.message if isinstance(e, ProcessingError) else str(e)
            logger.error(f"{prefix} Subtitle processing failed: {message}")
            self.guard.cleanup_temp_file(output_path)
            return segment_path, {"has_subtitles": False, "subtitle_error": message}
        finally:
            self.guard.cleanup_temp_file(srt_path)

        logger.info(f"{prefix} Burned {len(subtitles)} subtitles")
        self.guard.cleanup_temp_file(segment_path)
        return output_path, {"has_subtitles": True, "subtitle_count": len(subtitles)}

    async def _record_failure(self, fingerprint: str, message: str) -> None:
        try:
            await self.store.mark_failed(fingerprint, message)
        except Exception:
            logger.exception(f"[EDIT][{fingerprint[:12]}] Could not record failure")
