from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from clipworks.models.base import Base, TimestampMixin, UUIDMixin

KIND_CLIP_SYNTHESIS = "clip-synthesis"
KIND_VIDEO_EDIT = "video-edit"

STATUS_QUEUED = "queued"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

# Allowed forward moves; anything else is a regression
STATUS_TRANSITIONS: dict[str, frozenset[str]] = {
    STATUS_QUEUED: frozenset({STATUS_PROCESSING, STATUS_FAILED}),
    STATUS_PROCESSING: frozenset({STATUS_COMPLETED, STATUS_FAILED}),
    STATUS_COMPLETED: frozenset(),
    STATUS_FAILED: frozenset(),
}

JSONVariant = JSON().with_variant(JSONB(), "postgresql")


class WorkItem(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "work_items"

    # clip-synthesis | video-edit
    kind: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    # SHA-256 hex digest of the normalised request
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    # Status: queued, processing, completed, failed
    status: Mapped[str] = mapped_column(String(50), default=STATUS_QUEUED, index=True)

    # Output
    output_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Kind-specific payload, see clipworks.schemas.jobs
    result: Mapped[dict[str, Any]] = mapped_column(JSONVariant, default=dict)

    # Timing
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<WorkItem {self.fingerprint[:12]} {self.kind} ({self.status})>"
