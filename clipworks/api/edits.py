from typing import Annotated

from fastapi import APIRouter, Query, status

from clipworks.api.deps import DerivedAssetCacheDep, EditOrchestratorDep
from clipworks.schemas.jobs import DerivedChildren, JobOutcome, JobStatus, VideoEditRequest

router = APIRouter()


def parent_key_from_name(parent_file_name: str) -> str:
    """Strip the extension so ``episode.mp4`` and ``episode`` address the same parent."""
    return parent_file_name.rsplit(".", 1)[0] if "." in parent_file_name else parent_file_name


@router.post(
    "",
    response_model=JobOutcome,
    response_model_exclude_none=True,
    status_code=status.HTTP_202_ACCEPTED,
)
async def create_edit(request: VideoEditRequest, edits: EditOrchestratorDep) -> JobOutcome:
    """Validate an edit request and start (or look up) its processing."""
    return await edits.edit(request)


@router.get("/children/{parent_file_name}", response_model=DerivedChildren)
async def list_edit_children(
    parent_file_name: str,
    cache: DerivedAssetCacheDep,
    feed_id: Annotated[str | None, Query(alias="feedId")] = None,
) -> DerivedChildren:
    """Completed edits cut from one parent file, newest first."""
    parent_key = parent_key_from_name(parent_file_name)
    children = await cache.get_children(parent_key, feed_id, block_on_miss=True)
    if children is None:
        # Refresh failed on a cold cache; report an empty, stale listing
        return DerivedChildren(parent_file_name=parent_key, feed_id=feed_id, stale=True)
    return children


@router.get("/{fingerprint}", response_model=JobStatus, response_model_exclude_none=True)
async def get_edit_status(fingerprint: str, edits: EditOrchestratorDep) -> JobStatus:
    return await edits.status(fingerprint)
