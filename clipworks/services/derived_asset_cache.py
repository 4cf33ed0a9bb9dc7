"""Stale-while-revalidate cache of the edits derived from a parent file.

Entries are namespaced by feed so that two feeds sharing a parent file name
never see each other's children. An expired entry is still served while a
single background refresh rebuilds it from the job store.
"""

import asyncio
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from clipworks.config import Settings, get_settings
from clipworks.models.work_item import WorkItem
from clipworks.schemas.jobs import ChildAsset, DerivedChildren
from clipworks.services.job_store import JobStore

logger = logging.getLogger(__name__)

GLOBAL_NAMESPACE = "global"


def cache_key(parent_key: str, feed_id: str | None = None) -> str:
    return f"{feed_id or GLOBAL_NAMESPACE}::{parent_key}"


def child_from_item(item: WorkItem) -> ChildAsset:
    result = item.result or {}
    start = float(result.get("edit_start", 0))
    end = float(result.get("edit_end", 0))
    return ChildAsset(
        fingerprint=item.fingerprint,
        status=item.status,
        url=item.output_url,
        edit_range=f"{start:g}s-{end:g}s",
        duration=float(result.get("edit_duration", end - start)),
        created_at=item.created_at,
        original_url=result.get("original_url", ""),
    )


@dataclass(frozen=True)
class CacheEntry:
    parent_key: str
    feed_id: str | None
    children: tuple[ChildAsset, ...]
    fetched_at: float
    expires_at: float

    def is_stale(self, now: float) -> bool:
        return now >= self.expires_at

    def to_response(self, now: float) -> DerivedChildren:
        return DerivedChildren(
            parent_file_name=self.parent_key,
            feed_id=self.feed_id,
            children=list(self.children),
            child_count=len(self.children),
            fetched_at=datetime.fromtimestamp(self.fetched_at, tz=timezone.utc),
            stale=self.is_stale(now),
        )


class DerivedAssetCache:
    def __init__(
        self,
        store: JobStore,
        settings: Settings | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.settings = settings or get_settings()
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._inflight: dict[str, asyncio.Task] = {}
        # Bumped on invalidation so a refresh that started earlier does not store its result
        self._generation: dict[str, int] = {}
        self.refresh_count = 0

    async def get_children(
        self,
        parent_key: str,
        feed_id: str | None = None,
        *,
        trigger_refresh: bool = True,
        block_on_miss: bool | None = None,
    ) -> DerivedChildren | None:
        """Children of ``parent_key``.

        Fresh entries are returned as-is. Stale entries are returned with
        ``stale=True`` and one refresh is started. On a miss the call waits
        for the refresh when blocking, otherwise it starts one and returns
        None.
        """
        key = cache_key(parent_key, feed_id)
        now = self._clock()
        entry = self._entries.get(key)

        if entry is not None:
            if entry.is_stale(now) and trigger_refresh:
                logger.debug(f"[CACHE] Serving stale entry for {key}, refreshing")
                self._start_refresh(key, parent_key, feed_id)
            return entry.to_response(now)

        if block_on_miss is None:
            block_on_miss = self.settings.cache_block_on_miss
        if block_on_miss:
            entry = await self.refresh(parent_key, feed_id)
            return entry.to_response(self._clock()) if entry is not None else None
        if trigger_refresh:
            self._start_refresh(key, parent_key, feed_id)
        return None

    async def refresh(self, parent_key: str, feed_id: str | None = None) -> CacheEntry | None:
        """Rebuild one entry; concurrent callers share a single query.

        Returns None when the refresh failed and there was no entry before.
        """
        key = cache_key(parent_key, feed_id)
        task = self._start_refresh(key, parent_key, feed_id)
        await asyncio.shield(task)
        return self._entries.get(key)

    def _start_refresh(self, key: str, parent_key: str, feed_id: str | None) -> asyncio.Task:
        task = self._inflight.get(key)
        if task is None or task.done():
            task = asyncio.create_task(self._do_refresh(key, parent_key, feed_id), name=f"cache-refresh-{key}")
            self._inflight[key] = task
        return task

    async def _do_refresh(self, key: str, parent_key: str, feed_id: str | None) -> None:
        generation = self._generation.get(key, 0)
        try:
            items = await self.store.list_children(parent_key, feed_id)
            if self._generation.get(key, 0) != generation:
                logger.debug(f"[CACHE] Discarding refresh of {key} invalidated mid-flight")
                return
            now = self._clock()
            self._entries[key] = CacheEntry(
                parent_key=parent_key,
                feed_id=feed_id,
                children=tuple(child_from_item(item) for item in items),
                fetched_at=now,
                expires_at=now + self.settings.cache_ttl_s,
            )
            self.refresh_count += 1
            logger.info(f"[CACHE] Refreshed {key}: {len(items)} children")
        except Exception:
            logger.exception(f"[CACHE] Refresh failed for {key}")
        finally:
            if self._inflight.get(key) is asyncio.current_task():
                del self._inflight[key]

    def invalidate(self, parent_key: str, feed_id: str | None = None) -> int:
        """Drop cached listings for a parent.

        With a feed_id this drops that feed's entry and the global entry;
        with None it drops every namespace.
        """
        if feed_id is not None:
            # The global listing spans every feed, so it goes stale too
            keys = [cache_key(parent_key, feed_id), cache_key(parent_key)]
        else:
            suffix = f"::{parent_key}"
            keys = [k for k in {*self._entries, *self._inflight} if k.endswith(suffix)]
        removed = 0
        for key in keys:
            self._generation[key] = self._generation.get(key, 0) + 1
            # Later readers start a new refresh instead of joining the discarded one
            self._inflight.pop(key, None)
            if self._entries.pop(key, None) is not None:
                removed += 1
        if removed:
            logger.debug(f"[CACHE] Invalidated {removed} entries for {parent_key}")
        return removed

    def invalidate_many(self, parent_keys: Iterable[str], feed_id: str | None = None) -> int:
        return sum(self.invalidate(parent_key, feed_id) for parent_key in parent_keys)

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> dict[str, Any]:
        now = self._clock()
        stale = sum(1 for entry in self._entries.values() if entry.is_stale(now))
        return {
            "entries": len(self._entries),
            "stale_entries": stale,
            "refreshes_in_flight": len(self._inflight),
            "refresh_count": self.refresh_count,
            "ttl_s": self.settings.cache_ttl_s,
        }
