"""Tests for ResourceGuard memory checks, job tracking and temp file sweeping."""

import asyncio
import os
from pathlib import Path

import pytest

from clipworks.exceptions import MemoryPressureError
from clipworks.services.resource_guard import MB, ResourceGuard


class FakeClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestMemory:
    def test_under_ceiling_is_not_pressure(self, guard):
        assert guard.is_under_pressure() is False
        guard.check_memory_pressure("upload")

    def test_over_ceiling_raises(self, guard, memory):
        memory.value = 1100 * MB
        assert guard.is_under_pressure() is True
        with pytest.raises(MemoryPressureError, match="during upload"):
            guard.check_memory_pressure("upload")

    def test_full_download_refused_under_pressure(self, guard, memory):
        memory.value = 1100 * MB
        with pytest.raises(MemoryPressureError):
            guard.admit_full_download()

    def test_instances_are_independent(self, settings):
        a = ResourceGuard(settings, memory_sampler=lambda: 0, memory_ceiling=MB)
        b = ResourceGuard(settings, memory_sampler=lambda: 0, memory_ceiling=MB)
        a.register_job("fp", "video-edit", "url")
        assert "fp" in a.active_jobs
        assert b.active_jobs == {}


class TestJobs:
    def test_register_and_unregister(self, guard):
        job = guard.register_job("fp1", "video-edit", "https://example/a.mp4", edit_range="5-65")
        assert guard.active_jobs["fp1"] is job
        assert job.detail == {"edit_range": "5-65"}
        guard.unregister_job("fp1")
        assert guard.active_jobs == {}

    def test_memory_delta(self, guard, memory):
        job = guard.register_job("fp3", "video-edit", "url")
        memory.value += 50 * MB
        assert guard.memory_delta_mb(job) == 50.0

    def test_stats(self, guard):
        guard.register_job("fp4", "video-edit", "url", edit_range="1-2")
        stats = guard.stats()
        assert stats["active_jobs"] == 1
        assert stats["memory_ceiling_mb"] == 1024
        assert stats["active_job_details"][0]["fingerprint"] == "fp4"
        assert stats["active_job_details"][0]["edit_range"] == "1-2"


class TestTempFiles:
    """Tests for temp file tracking and the periodic sweep."""

    def test_new_temp_path_is_tracked_under_temp_dir(self, guard, settings):
        path = guard.new_temp_path("a.mp4")
        assert path in guard.temp_files
        assert Path(path).parent == Path(settings.temp_dir)

    def test_cleanup_removes_file_and_tracking(self, guard):
        path = guard.new_temp_path("b.mp4")
        Path(path).write_bytes(b"data")
        guard.cleanup_temp_file(path)
        assert not os.path.exists(path)
        assert path not in guard.temp_files

    def test_cleanup_ignores_missing(self, guard):
        guard.cleanup_temp_file(None)
        guard.cleanup_temp_file("/nonexistent/file.mp4")

    def test_sweep_removes_only_old_files(self, settings, memory):
        clock = FakeClock()
        guard = ResourceGuard(settings, memory_sampler=memory, clock=clock, memory_ceiling=1024 * MB)
        old = guard.new_temp_path("old.mp4")
        fresh = guard.new_temp_path("fresh.mp4")
        Path(old).write_bytes(b"old")
        Path(fresh).write_bytes(b"fresh")
        os.utime(old, (clock.now - 3700, clock.now - 3700))
        os.utime(fresh, (clock.now - 60, clock.now - 60))

        removed = guard.sweep()

        assert removed == [old]
        assert not os.path.exists(old)
        assert os.path.exists(fresh)
        assert guard.temp_files == {fresh}

    def test_sweep_forgets_vanished_files(self, guard):
        path = guard.new_temp_path("gone.mp4")
        assert guard.sweep() == [path]
        assert guard.temp_files == set()


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_shutdown_removes_all_temp_files(self, guard):
        guard.start()
        path = guard.new_temp_path("c.mp4")
        Path(path).write_bytes(b"data")

        await guard.shutdown(grace_s=0)

        assert not os.path.exists(path)
        assert guard.temp_files == set()

    @pytest.mark.asyncio
    async def test_shutdown_waits_for_active_jobs(self, guard):
        guard.register_job("fp", "video-edit", "url")
        asyncio.get_running_loop().call_later(0.05, guard.unregister_job, "fp")

        await guard.shutdown(grace_s=2, poll_interval_s=0.01)
        assert guard.active_jobs == {}
