"""Process-wide supervision of memory, active jobs and temporary files.

One ResourceGuard is created at startup and handed to the orchestrators and
extraction strategies. It samples resident memory with psutil, refuses full
downloads above the configured ceiling, and periodically removes tracked
temp files that have outlived ``temp_file_max_age_s``.
"""

import asyncio
import logging
import os
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import psutil

from clipworks.config import Settings, get_settings
from clipworks.exceptions import MemoryPressureError

logger = logging.getLogger(__name__)

MB = 1024 * 1024


def get_container_memory_limit() -> int | None:
    """Detect the container memory limit from cgroup (Cloud Run / Docker).

    Returns:
        Memory limit in bytes, or None when unlimited or undetectable.
    """
    for path in ("/sys/fs/cgroup/memory.max", "/sys/fs/cgroup/memory/memory.limit_in_bytes"):
        try:
            with open(path) as f:
                raw = f.read().strip()
                if raw == "max":
                    return None
                limit = int(raw)
                if 0 < limit < 1 << 60:
                    return limit
        except (FileNotFoundError, ValueError, PermissionError):
            continue
    return None


def _process_rss() -> int:
    return psutil.Process().memory_info().rss


@dataclass
class ActiveJob:
    fingerprint: str
    kind: str
    source_ref: str
    started_at: float
    memory_at_start: int
    detail: dict[str, Any] = field(default_factory=dict)


class ResourceGuard:
    def __init__(
        self,
        settings: Settings | None = None,
        *,
        memory_sampler: Callable[[], int] = _process_rss,
        clock: Callable[[], float] = time.time,
        memory_ceiling: int | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._sample = memory_sampler
        self._clock = clock
        self.active_jobs: dict[str, ActiveJob] = {}
        self.temp_files: set[str] = set()
        self._sweeper: asyncio.Task | None = None

        ceiling = memory_ceiling or self.settings.memory_ceiling_bytes
        container_limit = get_container_memory_limit()
        if memory_ceiling is None and container_limit:
            # Leave headroom for ffmpeg children that are not counted in our RSS
            ceiling = min(ceiling, int(container_limit * 0.9))
        self.memory_ceiling = ceiling

    # ------------------------------------------------------------------
    # Memory
    # ------------------------------------------------------------------

    def memory_usage(self) -> int:
        return self._sample()

    def is_under_pressure(self) -> bool:
        usage = self.memory_usage()
        if usage > self.memory_ceiling:
            logger.warning(f"[MEMORY] High memory usage detected: {usage // MB}MB")
            return True
        return False

    def check_memory_pressure(self, context: str = "") -> None:
        """Raise MemoryPressureError if resident memory is above the ceiling."""
        if self.is_under_pressure():
            suffix = f" during {context}" if context else ""
            raise MemoryPressureError(f"Memory pressure detected{suffix}")

    def admit_full_download(self) -> None:
        self.check_memory_pressure("full download")

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def register_job(self, fingerprint: str, kind: str, source_ref: str, **detail: Any) -> ActiveJob:
        job = ActiveJob(
            fingerprint=fingerprint,
            kind=kind,
            source_ref=source_ref,
            started_at=self._clock(),
            memory_at_start=self.memory_usage(),
            detail=detail,
        )
        self.active_jobs[fingerprint] = job
        return job

    def unregister_job(self, fingerprint: str) -> None:
        self.active_jobs.pop(fingerprint, None)

    def memory_delta_mb(self, job: ActiveJob) -> float:
        return round((self.memory_usage() - job.memory_at_start) / MB, 1)

    # ------------------------------------------------------------------
    # Temp files
    # ------------------------------------------------------------------

    def new_temp_path(self, name: str) -> str:
        temp_dir = Path(self.settings.temp_dir)
        temp_dir.mkdir(parents=True, exist_ok=True)
        path = str(temp_dir / name)
        self.register_temp_file(path)
        return path

    def register_temp_file(self, path: str) -> None:
        self.temp_files.add(path)

    def unregister_temp_file(self, path: str) -> None:
        self.temp_files.discard(path)

    def cleanup_temp_file(self, path: str | None) -> None:
        if not path:
            return
        try:
            if os.path.exists(path):
                os.unlink(path)
        except OSError as e:
            logger.warning(f"[MEMORY] Could not remove temp file {path}: {e}")
        finally:
            self.unregister_temp_file(path)

    def sweep(self) -> list[str]:
        """Remove tracked temp files older than the max age.

        Files that have already disappeared are dropped from tracking.
        """
        now = self._clock()
        removed: list[str] = []
        for path in list(self.temp_files):
            try:
                age = now - os.path.getmtime(path)
            except OSError:
                removed.append(path)
                continue
            if age > self.settings.temp_file_max_age_s:
                try:
                    os.unlink(path)
                except OSError as e:
                    logger.warning(f"[MEMORY] Could not remove stale temp file {path}: {e}")
                removed.append(path)

        for path in removed:
            self.temp_files.discard(path)
        if removed:
            logger.info(f"[MEMORY] Cleaned up {len(removed)} orphaned temp files")

        usage = self.memory_usage()
        if usage > 500 * MB:
            logger.info(f"[MEMORY] Memory usage: {usage // MB}MB, active jobs: {len(self.active_jobs)}")
        return removed

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.cleanup_interval_s)
            try:
                self.sweep()
            except Exception:
                logger.exception("[MEMORY] Cleanup tick failed")

    def start(self) -> None:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_loop())
            logger.info("[MEMORY] Resource guard started")

    async def stop(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
            logger.info("[MEMORY] Resource guard stopped")

    async def shutdown(self, grace_s: float | None = None, poll_interval_s: float = 1.0) -> None:
        """Wait for active jobs up to the grace period, then remove every temp file."""
        grace = self.settings.shutdown_grace_s if grace_s is None else grace_s
        await self.stop()

        deadline = time.monotonic() + grace
        while self.active_jobs and time.monotonic() < deadline:
            logger.info(f"[MEMORY] Waiting for {len(self.active_jobs)} active jobs to complete...")
            await asyncio.sleep(poll_interval_s)
        if self.active_jobs:
            logger.warning(f"[MEMORY] {len(self.active_jobs)} jobs still active after timeout")

        for path in list(self.temp_files):
            self.cleanup_temp_file(path)
        logger.info("[MEMORY] Shutdown complete")

    def stats(self) -> dict[str, Any]:
        now = self._clock()
        return {
            "memory_usage_mb": self.memory_usage() // MB,
            "memory_ceiling_mb": self.memory_ceiling // MB,
            "active_jobs": len(self.active_jobs),
            "tracked_temp_files": len(self.temp_files),
            "range_size_threshold_mb": self.settings.range_size_threshold_bytes // MB,
            "active_job_details": [
                {
                    "fingerprint": job.fingerprint,
                    "kind": job.kind,
                    "running_time_ms": int((now - job.started_at) * 1000),
                    "start_memory_mb": job.memory_at_start // MB,
                    **job.detail,
                }
                for job in self.active_jobs.values()
            ],
        }
