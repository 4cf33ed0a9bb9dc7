"""Cutting a time window out of a remote media source.

Two strategies exist. ``range`` lets ffmpeg seek straight into the remote URL
and never holds the source locally; it is only worth it for large files when
the window is short and not at the very beginning. ``full_download`` streams
the whole source to disk first and is the fallback for everything else.
Strategies are tried in order; a memory-pressure abort ends the chain at once.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

import httpx

from clipworks.config import Settings, get_settings
from clipworks.exceptions import (
    DownloadError,
    ExtractionError,
    ExtractionFailedError,
    MemoryPressureError,
    ProcessingError,
)
from clipworks.services.resource_guard import MB, ResourceGuard
from clipworks.utils.ffmpeg import range_extract_args, run_ffmpeg, segment_extract_args
from clipworks.utils.media_info import get_media_duration

logger = logging.getLogger(__name__)

DOWNLOAD_CHUNK_SIZE = 1024 * 1024
MEMORY_CHECK_BYTES = 10 * MB
MEMORY_CHECK_INTERVAL_S = 5.0


class StrategyName(str, Enum):
    RANGE = "range"
    FULL_DOWNLOAD = "full_download"


@dataclass(frozen=True)
class ExtractionRequest:
    source_url: str
    start_time: float
    end_time: float
    fingerprint: str

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


@dataclass
class ExtractionResult:
    output_path: str
    strategy: StrategyName
    failed_attempts: list[str] = field(default_factory=list)


class ExtractionStrategy(Protocol):
    name: StrategyName

    async def extract(self, request: ExtractionRequest) -> str:
        """Return the path of a local MP4 holding the requested window."""
        ...


def select_strategies(
    size_bytes: int,
    start_time: float,
    duration: float,
    *,
    is_streaming: bool = False,
    settings: Settings | None = None,
) -> list[StrategyName]:
    """Ordered strategy chain for a source.

    Streaming manifests can only be read through ffmpeg, so they get ``range``
    alone. Large files with a short window that starts well into the file get
    ``range`` with ``full_download`` as the single fallback.
    """
    settings = settings or get_settings()
    if is_streaming:
        return [StrategyName.RANGE]
    if (
        size_bytes > settings.range_size_threshold_bytes
        and duration < settings.range_max_duration_s
        and start_time > settings.range_min_start_offset_s
    ):
        return [StrategyName.RANGE, StrategyName.FULL_DOWNLOAD]
    return [StrategyName.FULL_DOWNLOAD]


class RangeExtraction:
    name = StrategyName.RANGE

    def __init__(self, guard: ResourceGuard, settings: Settings | None = None) -> None:
        self.guard = guard
        self.settings = settings or get_settings()

    async def extract(self, request: ExtractionRequest) -> str:
        output_path = self.guard.new_temp_path(f"edit-{request.fingerprint[:16]}-{uuid.uuid4().hex[:8]}-range.mp4")
        logger.info(
            f"[EXTRACT][{request.fingerprint[:12]}] Range-extracting {request.duration:g}s "
            f"from {request.start_time:g}s"
        )
        try:
            await run_ffmpeg(
                range_extract_args(request.source_url, request.start_time, request.duration, output_path),
                timeout=self.settings.transcode_timeout_s,
            )
        except ProcessingError as e:
            self.guard.cleanup_temp_file(output_path)
            raise ExtractionError(f"Range extraction failed: {e.message}") from e
        return output_path


class FullDownloadExtraction:
    name = StrategyName.FULL_DOWNLOAD

    def __init__(
        self,
        guard: ResourceGuard,
        settings: Settings | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.guard = guard
        self.settings = settings or get_settings()
        self._http_client = http_client

    async def download(self, url: str, dest_path: str) -> int:
        """Stream ``url`` to ``dest_path``, checking memory every 10MB or 5s."""
        client = self._http_client or httpx.AsyncClient(follow_redirects=True)
        downloaded = 0
        next_check_at = MEMORY_CHECK_BYTES
        last_check = time.monotonic()
        try:
            async with client.stream("GET", url, timeout=self.settings.full_download_timeout_s) as response:
                if response.status_code != 200:
                    raise DownloadError(f"Download failed with HTTP {response.status_code}")
                with open(dest_path, "wb") as f:
                    async for chunk in response.aiter_bytes(DOWNLOAD_CHUNK_SIZE):
                        f.write(chunk)
                        downloaded += len(chunk)
                        now = time.monotonic()
                        if downloaded >= next_check_at or now - last_check > MEMORY_CHECK_INTERVAL_S:
                            if self.guard.is_under_pressure():
                                raise MemoryPressureError("Download aborted due to memory pressure")
                            next_check_at = downloaded + MEMORY_CHECK_BYTES
                            last_check = now
        except httpx.HTTPError as e:
            raise DownloadError(f"Download failed: {e}") from e
        finally:
            if self._http_client is None:
                await client.aclose()

        logger.info(f"[DOWNLOAD] Downloaded {downloaded // MB}MB")
        return downloaded

    async def extract(self, request: ExtractionRequest) -> str:
        prefix = f"[EXTRACT][{request.fingerprint[:12]}]"
        self.guard.admit_full_download()

        token = uuid.uuid4().hex[:8]
        source_path = self.guard.new_temp_path(f"edit-{request.fingerprint[:16]}-{token}-source.tmp")
        output_path = self.guard.new_temp_path(f"edit-{request.fingerprint[:16]}-{token}-full.mp4")
        try:
            logger.info(f"{prefix} Downloading source file")
            await self.download(request.source_url, source_path)

            actual_duration = await get_media_duration(source_path)
            if request.end_time > actual_duration:
                raise ExtractionError(
                    f"End time ({request.end_time:g}s) exceeds video duration ({actual_duration:g}s)"
                )

            await run_ffmpeg(
                segment_extract_args(source_path, request.start_time, request.duration, output_path),
                timeout=self.settings.transcode_timeout_s,
            )
        except MemoryPressureError:
            self.guard.cleanup_temp_file(output_path)
            raise
        except ProcessingError as e:
            self.guard.cleanup_temp_file(output_path)
            if isinstance(e, ExtractionError):
                raise
            raise ExtractionError(f"Full download extraction failed: {e.message}") from e
        finally:
            self.guard.cleanup_temp_file(source_path)
        return output_path


class ExtractionStrategySelector:
    """Chooses and runs the strategy chain for an edit."""

    def __init__(
        self,
        guard: ResourceGuard,
        settings: Settings | None = None,
        strategies: dict[StrategyName, ExtractionStrategy] | None = None,
    ) -> None:
        self.guard = guard
        self.settings = settings or get_settings()
        self.strategies = strategies or {
            StrategyName.RANGE: RangeExtraction(guard, self.settings),
            StrategyName.FULL_DOWNLOAD: FullDownloadExtraction(guard, self.settings),
        }

    def select(self, size_bytes: int, request: ExtractionRequest, *, is_streaming: bool = False) -> list[StrategyName]:
        return select_strategies(
            size_bytes,
            request.start_time,
            request.duration,
            is_streaming=is_streaming,
            settings=self.settings,
        )

    async def run(self, request: ExtractionRequest, chain: list[StrategyName]) -> ExtractionResult:
        """Try each strategy in order and return the first success.

        Raises:
            MemoryPressureError: Immediately, without trying later strategies.
            ExtractionFailedError: When every strategy failed.
        """
        failures: list[str] = []
        last_error: ProcessingError | None = None
        for name in chain:
            strategy = self.strategies[name]
            try:
                output_path = await strategy.extract(request)
            except MemoryPressureError:
                logger.warning(f"[EXTRACT][{request.fingerprint[:12]}] Memory pressure during {name.value}, aborting")
                raise
            except ProcessingError as e:
                logger.warning(f"[EXTRACT][{request.fingerprint[:12]}] {name.value} failed: {e.message}")
                failures.append(f"{name.value}: {e.message}")
                last_error = e
                continue
            if failures:
                logger.info(f"[EXTRACT][{request.fingerprint[:12]}] Fell back to {name.value}")
            return ExtractionResult(output_path=output_path, strategy=name, failed_attempts=failures)

        message = last_error.message if last_error else "No extraction strategy available"
        raise ExtractionFailedError(message, attempts=failures) from last_error
