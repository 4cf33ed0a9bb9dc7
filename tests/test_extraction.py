"""Tests for extraction strategy selection, fallback and the two strategies."""

import os
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from clipworks.exceptions import (
    ExtractionError,
    ExtractionFailedError,
    MemoryPressureError,
    TranscodeError,
)
from clipworks.services import extraction as extraction_module
from clipworks.services.extraction import (
    ExtractionRequest,
    ExtractionStrategySelector,
    FullDownloadExtraction,
    RangeExtraction,
    StrategyName,
    select_strategies,
)
from clipworks.services.resource_guard import MB, ResourceGuard

SOURCE_URL = "https://traffic.libsyn.com/show/episode-42.mp4"


def make_request(start: float = 120, end: float = 180) -> ExtractionRequest:
    return ExtractionRequest(source_url=SOURCE_URL, start_time=start, end_time=end, fingerprint="f" * 64)


class FakeStrategy:
    def __init__(self, name: StrategyName, outcome):
        self.name = name
        self.outcome = outcome
        self.calls = 0

    async def extract(self, request: ExtractionRequest) -> str:
        self.calls += 1
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


def write_output(args, **kwargs):
    """Side effect for a mocked run_ffmpeg: create the output file (last arg)."""
    with open(args[-1], "wb") as f:
        f.write(b"mp4")
    return b""


class TestSelectStrategies:
    """Tests for select_strategies."""

    def test_large_file_short_late_window_uses_range_then_full(self, settings):
        chain = select_strategies(500 * MB, 120, 60, settings=settings)
        assert chain == [StrategyName.RANGE, StrategyName.FULL_DOWNLOAD]

    def test_small_file_uses_full_download(self, settings):
        assert select_strategies(50 * MB, 120, 60, settings=settings) == [StrategyName.FULL_DOWNLOAD]

    def test_window_near_start_uses_full_download(self, settings):
        assert select_strategies(500 * MB, 10, 60, settings=settings) == [StrategyName.FULL_DOWNLOAD]

    def test_long_window_uses_full_download(self, settings):
        assert select_strategies(500 * MB, 120, 300, settings=settings) == [StrategyName.FULL_DOWNLOAD]

    def test_streaming_sources_use_range_only(self, settings):
        assert select_strategies(0, 0, 60, is_streaming=True, settings=settings) == [StrategyName.RANGE]


class TestStrategySelectorRun:
    """Tests for ExtractionStrategySelector.run."""

    @pytest.mark.asyncio
    async def test_first_success_wins(self, guard, settings):
        range_strategy = FakeStrategy(StrategyName.RANGE, "/tmp/range.mp4")
        full = FakeStrategy(StrategyName.FULL_DOWNLOAD, "/tmp/full.mp4")
        selector = ExtractionStrategySelector(
            guard, settings, {StrategyName.RANGE: range_strategy, StrategyName.FULL_DOWNLOAD: full}
        )

        result = await selector.run(make_request(), [StrategyName.RANGE, StrategyName.FULL_DOWNLOAD])

        assert result.strategy == StrategyName.RANGE
        assert result.output_path == "/tmp/range.mp4"
        assert result.failed_attempts == []
        assert full.calls == 0

    @pytest.mark.asyncio
    async def test_range_failure_falls_back_to_one_full_download(self, guard, settings):
        range_strategy = FakeStrategy(StrategyName.RANGE, ExtractionError("seek failed"))
        full = FakeStrategy(StrategyName.FULL_DOWNLOAD, "/tmp/full.mp4")
        selector = ExtractionStrategySelector(
            guard, settings, {StrategyName.RANGE: range_strategy, StrategyName.FULL_DOWNLOAD: full}
        )

        result = await selector.run(make_request(), selector.select(500 * MB, make_request()))

        assert result.strategy == StrategyName.FULL_DOWNLOAD
        assert range_strategy.calls == 1
        assert full.calls == 1
        assert result.failed_attempts == ["range: seek failed"]

    @pytest.mark.asyncio
    async def test_all_failures_raise_with_last_message(self, guard, settings):
        range_strategy = FakeStrategy(StrategyName.RANGE, ExtractionError("seek failed"))
        full = FakeStrategy(StrategyName.FULL_DOWNLOAD, ExtractionError("disk full"))
        selector = ExtractionStrategySelector(
            guard, settings, {StrategyName.RANGE: range_strategy, StrategyName.FULL_DOWNLOAD: full}
        )

        with pytest.raises(ExtractionFailedError) as exc_info:
            await selector.run(make_request(), [StrategyName.RANGE, StrategyName.FULL_DOWNLOAD])

        assert exc_info.value.message == "disk full"
        assert len(exc_info.value.attempts) == 2
        assert full.calls == 1

    @pytest.mark.asyncio
    async def test_memory_pressure_ends_the_chain(self, guard, settings):
        range_strategy = FakeStrategy(StrategyName.RANGE, MemoryPressureError("too much"))
        full = FakeStrategy(StrategyName.FULL_DOWNLOAD, "/tmp/full.mp4")
        selector = ExtractionStrategySelector(
            guard, settings, {StrategyName.RANGE: range_strategy, StrategyName.FULL_DOWNLOAD: full}
        )

        with pytest.raises(MemoryPressureError):
            await selector.run(make_request(), [StrategyName.RANGE, StrategyName.FULL_DOWNLOAD])
        assert full.calls == 0


class TestRangeExtraction:
    @pytest.mark.asyncio
    async def test_extracts_to_tracked_temp_file(self, guard, settings):
        with patch.object(extraction_module, "run_ffmpeg", AsyncMock(side_effect=write_output)) as run:
            path = await RangeExtraction(guard, settings).extract(make_request())

        assert os.path.exists(path)
        assert path in guard.temp_files
        args = run.call_args.args[0]
        assert args[args.index("-ss") + 1] == "120"
        assert args[args.index("-t") + 1] == "60"
        assert SOURCE_URL in args

    @pytest.mark.asyncio
    async def test_transcode_failure_becomes_extraction_error(self, guard, settings):
        with patch.object(extraction_module, "run_ffmpeg", AsyncMock(side_effect=TranscodeError("boom"))):
            with pytest.raises(ExtractionError, match="Range extraction failed: boom"):
                await RangeExtraction(guard, settings).extract(make_request())
        assert guard.temp_files == set()


class TestFullDownloadExtraction:
    """Tests for FullDownloadExtraction with a mocked HTTP transport."""

    @staticmethod
    def client_for(status_code: int = 200, body: bytes = b"x" * 2048) -> httpx.AsyncClient:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status_code, content=body)

        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    @pytest.mark.asyncio
    async def test_downloads_checks_duration_and_cuts_segment(self, guard, settings):
        strategy = FullDownloadExtraction(guard, settings, http_client=self.client_for())

        with (
            patch.object(extraction_module, "get_media_duration", AsyncMock(return_value=600.0)),
            patch.object(extraction_module, "run_ffmpeg", AsyncMock(side_effect=write_output)) as run,
        ):
            path = await strategy.extract(make_request())

        assert os.path.exists(path)
        # Only the cut segment remains; the downloaded source is gone
        assert guard.temp_files == {path}
        source_path = run.call_args.args[0][run.call_args.args[0].index("-i") + 1]
        assert not os.path.exists(source_path)

    @pytest.mark.asyncio
    async def test_end_beyond_duration_is_rejected(self, guard, settings):
        strategy = FullDownloadExtraction(guard, settings, http_client=self.client_for())

        with (
            patch.object(extraction_module, "get_media_duration", AsyncMock(return_value=150.0)),
            patch.object(extraction_module, "run_ffmpeg", AsyncMock(side_effect=write_output)) as run,
        ):
            with pytest.raises(ExtractionError, match="exceeds video duration"):
                await strategy.extract(make_request(120, 180))

        run.assert_not_called()
        assert guard.temp_files == set()

    @pytest.mark.asyncio
    async def test_http_error_becomes_extraction_error(self, guard, settings):
        strategy = FullDownloadExtraction(guard, settings, http_client=self.client_for(status_code=404))

        with pytest.raises(ExtractionError, match="HTTP 404"):
            await strategy.extract(make_request())
        assert guard.temp_files == set()

    @pytest.mark.asyncio
    async def test_refused_under_memory_pressure(self, guard, settings, memory):
        memory.value = 2048 * MB
        strategy = FullDownloadExtraction(guard, settings, http_client=self.client_for())

        with pytest.raises(MemoryPressureError):
            await strategy.extract(make_request())
        assert guard.temp_files == set()

    @pytest.mark.asyncio
    async def test_download_aborts_when_memory_rises(self, settings, monkeypatch):
        samples = iter([100 * MB, 2048 * MB, 2048 * MB])
        guard = ResourceGuard(settings, memory_sampler=lambda: next(samples), memory_ceiling=1024 * MB)
        monkeypatch.setattr(extraction_module, "MEMORY_CHECK_BYTES", 1024)
        strategy = FullDownloadExtraction(guard, settings, http_client=self.client_for(body=b"x" * 4096))

        with pytest.raises(MemoryPressureError, match="Download aborted due to memory pressure"):
            await strategy.extract(make_request())
        assert guard.temp_files == set()
