from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Requests
# =============================================================================


class ClipSynthesisRequest(CamelModel):
    feed_id: str
    episode_guid: str
    audio_url: str
    start_time: float | None = None
    end_time: float | None = None
    share_token: str | None = None
    creator: str = ""
    episode_title: str = ""
    artwork_url: str | None = None
    # Raw entries; malformed ones are dropped during adjustment
    subtitles: list[dict[str, Any]] | None = None


class VideoEditRequest(CamelModel):
    url: str
    start_time: float
    end_time: float
    use_subtitles: bool = False
    feed_id: str | None = None
    subtitles: list[dict[str, Any]] | None = None


# =============================================================================
# Work item results (tagged by kind)
# =============================================================================


class ClipSynthesisResult(CamelModel):
    kind: Literal["clip-synthesis"] = "clip-synthesis"
    feed_id: str
    episode_guid: str
    clip_start: float
    clip_end: float
    clip_duration: float
    has_subtitles: bool = False
    subtitle_count: int = 0
    clip_text: str | None = None
    storage_key: str | None = None
    preview_url: str | None = None
    processing_time_ms: int | None = None


class VideoEditResult(CamelModel):
    kind: Literal["video-edit"] = "video-edit"
    feed_id: str | None = None  # None marks a record created before feed scoping
    original_url: str
    parent_file_name: str
    parent_file_base: str
    edit_start: float
    edit_end: float
    edit_duration: float
    use_subtitles: bool = False
    strategy: str | None = None
    has_subtitles: bool = False
    subtitle_count: int = 0
    subtitle_error: str | None = None
    storage_key: str | None = None
    processing_time_ms: int | None = None
    memory_delta_mb: float | None = None


WorkResult = Annotated[Union[ClipSynthesisResult, VideoEditResult], Field(discriminator="kind")]

work_result_adapter: TypeAdapter[ClipSynthesisResult | VideoEditResult] = TypeAdapter(WorkResult)


def parse_work_result(data: dict[str, Any] | None) -> ClipSynthesisResult | VideoEditResult | None:
    if not data:
        return None
    return work_result_adapter.validate_python(data)


# =============================================================================
# Outcomes returned to callers
# =============================================================================


class JobOutcome(CamelModel):
    """Immediate answer to a synthesize/edit request."""

    status: Literal["processing", "completed", "failed"]
    fingerprint: str
    asset_url: str | None = None
    preview_url: str | None = None
    error: str | None = None
    poll_url: str | None = None


class JobStatus(CamelModel):
    """Answer to a status lookup by fingerprint."""

    status: Literal["not_found", "processing", "completed", "failed"]
    fingerprint: str
    asset_url: str | None = None
    preview_url: str | None = None
    error: str | None = None


# =============================================================================
# Derived assets
# =============================================================================


class ChildAsset(CamelModel):
    fingerprint: str
    status: str
    url: str | None = None
    edit_range: str
    duration: float
    created_at: datetime
    original_url: str


class DerivedChildren(CamelModel):
    parent_file_name: str
    feed_id: str | None = None
    children: list[ChildAsset] = Field(default_factory=list)
    child_count: int = 0
    fetched_at: datetime | None = None
    stale: bool = False
