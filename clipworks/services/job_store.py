import logging
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel
from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clipworks.exceptions import InvalidStatusTransitionError, JobNotFoundError
from clipworks.models.work_item import (
    KIND_VIDEO_EDIT,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PROCESSING,
    STATUS_QUEUED,
    STATUS_TRANSITIONS,
    WorkItem,
)

logger = logging.getLogger(__name__)


def _as_dict(result: BaseModel | dict[str, Any] | None) -> dict[str, Any]:
    if result is None:
        return {}
    if isinstance(result, BaseModel):
        return result.model_dump(mode="json")
    return dict(result)


class JobStore:
    """Persistent work items keyed by fingerprint.

    Creation relies on the unique index on ``fingerprint`` so that two
    concurrent requests for the same input produce exactly one row. Status
    updates are read-check-write inside one transaction and refuse to move a
    work item backwards.
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]) -> None:
        self._session_maker = session_maker

    async def get(self, fingerprint: str) -> WorkItem | None:
        async with self._session_maker() as session:
            return await session.scalar(select(WorkItem).where(WorkItem.fingerprint == fingerprint))

    async def create_if_absent(
        self,
        kind: str,
        fingerprint: str,
        result: BaseModel | dict[str, Any] | None = None,
    ) -> tuple[WorkItem, bool]:
        """Insert a queued work item unless one exists.

        Returns:
            (work item, created). ``created`` is False when another request
            already owns the fingerprint.
        """
        async with self._session_maker() as session:
            item = WorkItem(
                kind=kind,
                fingerprint=fingerprint,
                status=STATUS_QUEUED,
                result=_as_dict(result),
            )
            session.add(item)
            try:
                await session.commit()
                return item, True
            except IntegrityError:
                await session.rollback()

        existing = await self.get(fingerprint)
        if existing is None:
            # Unique violation without a visible row; surface the conflict
            raise JobNotFoundError(fingerprint)
        logger.debug(f"[JOBS] Lost insert race for {fingerprint[:12]}, reusing existing item")
        return existing, False

    async def _transition(
        self,
        fingerprint: str,
        target: str,
        *,
        output_url: str | None = None,
        error_message: str | None = None,
        result_update: BaseModel | dict[str, Any] | None = None,
    ) -> WorkItem:
        async with self._session_maker() as session:
            item = await session.scalar(
                select(WorkItem).where(WorkItem.fingerprint == fingerprint).with_for_update()
            )
            if item is None:
                raise JobNotFoundError(fingerprint)
            if target not in STATUS_TRANSITIONS.get(item.status, frozenset()):
                raise InvalidStatusTransitionError(fingerprint, item.status, target)

            now = datetime.now(timezone.utc)
            item.status = target
            if target == STATUS_PROCESSING:
                item.started_at = now
            else:
                item.completed_at = now
            if output_url is not None:
                item.output_url = output_url
            if error_message is not None:
                item.error_message = error_message
            if result_update is not None:
                # New dict so the JSON column is flagged dirty
                item.result = {**(item.result or {}), **_as_dict(result_update)}

            await session.commit()
            return item

    async def mark_processing(self, fingerprint: str) -> WorkItem:
        return await self._transition(fingerprint, STATUS_PROCESSING)

    async def mark_completed(
        self,
        fingerprint: str,
        output_url: str,
        result_update: BaseModel | dict[str, Any] | None = None,
    ) -> WorkItem:
        return await self._transition(
            fingerprint, STATUS_COMPLETED, output_url=output_url, result_update=result_update
        )

    async def mark_failed(
        self,
        fingerprint: str,
        error_message: str,
        result_update: BaseModel | dict[str, Any] | None = None,
    ) -> WorkItem:
        return await self._transition(
            fingerprint, STATUS_FAILED, error_message=error_message, result_update=result_update
        )

    async def list_children(self, parent_file_base: str, feed_id: str | None = None) -> list[WorkItem]:
        """Completed edits derived from a parent file, newest first.

        With a feed id, records scoped to that feed are returned together with
        legacy records that carry no feed id at all.
        """
        parent_col = WorkItem.result["parent_file_base"].as_string()
        feed_col = WorkItem.result["feed_id"].as_string()

        stmt = select(WorkItem).where(
            WorkItem.kind == KIND_VIDEO_EDIT,
            WorkItem.status == STATUS_COMPLETED,
            parent_col == parent_file_base,
        )
        if feed_id is not None:
            stmt = stmt.where(or_(feed_col == str(feed_id), feed_col.is_(None)))
        stmt = stmt.order_by(WorkItem.created_at.desc(), WorkItem.fingerprint.asc())

        async with self._session_maker() as session:
            rows = await session.scalars(stmt)
            return list(rows)

    async def count(self) -> int:
        async with self._session_maker() as session:
            return int(await session.scalar(select(func.count()).select_from(WorkItem)) or 0)

