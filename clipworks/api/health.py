from typing import Any

from fastapi import APIRouter

from clipworks.api.deps import DerivedAssetCacheDep, ResourceGuardDep

router = APIRouter()


@router.get("/resources")
async def get_resource_stats(guard: ResourceGuardDep, cache: DerivedAssetCacheDep) -> dict[str, Any]:
    """Memory, active jobs, tracked temp files and cache counters."""
    return {**guard.stats(), "cache": cache.stats()}
