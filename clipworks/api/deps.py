from dataclasses import dataclass
from typing import Annotated

import httpx
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from clipworks.config import Settings, get_settings
from clipworks.render.frame_engine import FrameSynthesisEngine
from clipworks.services.background import BackgroundTaskRunner
from clipworks.services.clip_orchestrator import ClipSynthesisOrchestrator
from clipworks.services.derived_asset_cache import DerivedAssetCache
from clipworks.services.edit_orchestrator import EditOrchestrator
from clipworks.services.extraction import ExtractionStrategySelector, FullDownloadExtraction, RangeExtraction, StrategyName
from clipworks.services.job_store import JobStore
from clipworks.services.resource_guard import ResourceGuard
from clipworks.services.storage_service import StorageService, get_storage_service


@dataclass
class Pipeline:
    """Everything the HTTP layer needs, built once per application."""

    settings: Settings
    store: JobStore
    storage: StorageService
    guard: ResourceGuard
    runner: BackgroundTaskRunner
    cache: DerivedAssetCache
    engine: FrameSynthesisEngine
    http_client: httpx.AsyncClient
    clips: ClipSynthesisOrchestrator
    edits: EditOrchestrator

    async def aclose(self) -> None:
        await self.runner.drain()
        await self.guard.shutdown()
        self.engine.close()
        await self.http_client.aclose()


def build_pipeline(
    session_maker: async_sessionmaker[AsyncSession],
    settings: Settings | None = None,
    *,
    storage: StorageService | None = None,
    guard: ResourceGuard | None = None,
    engine: FrameSynthesisEngine | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> Pipeline:
    settings = settings or get_settings()
    store = JobStore(session_maker)
    storage = storage or get_storage_service()
    guard = guard or ResourceGuard(settings)
    runner = BackgroundTaskRunner()
    cache = DerivedAssetCache(store, settings)
    engine = engine or FrameSynthesisEngine(settings)
    http_client = http_client or httpx.AsyncClient(follow_redirects=True)

    selector = ExtractionStrategySelector(
        guard,
        settings,
        strategies={
            StrategyName.RANGE: RangeExtraction(guard, settings),
            StrategyName.FULL_DOWNLOAD: FullDownloadExtraction(guard, settings, http_client=http_client),
        },
    )
    return Pipeline(
        settings=settings,
        store=store,
        storage=storage,
        guard=guard,
        runner=runner,
        cache=cache,
        engine=engine,
        http_client=http_client,
        clips=ClipSynthesisOrchestrator(store, storage, guard, engine, runner, settings, http_client),
        edits=EditOrchestrator(store, storage, guard, selector, cache, runner, settings, http_client),
    )


def get_pipeline(request: Request) -> Pipeline:
    return request.app.state.pipeline


def get_clip_orchestrator(pipeline: Annotated[Pipeline, Depends(get_pipeline)]) -> ClipSynthesisOrchestrator:
    return pipeline.clips


def get_edit_orchestrator(pipeline: Annotated[Pipeline, Depends(get_pipeline)]) -> EditOrchestrator:
    return pipeline.edits


def get_derived_asset_cache(pipeline: Annotated[Pipeline, Depends(get_pipeline)]) -> DerivedAssetCache:
    return pipeline.cache


def get_resource_guard(pipeline: Annotated[Pipeline, Depends(get_pipeline)]) -> ResourceGuard:
    return pipeline.guard


def get_storage(pipeline: Annotated[Pipeline, Depends(get_pipeline)]) -> StorageService:
    return pipeline.storage


ClipOrchestratorDep = Annotated[ClipSynthesisOrchestrator, Depends(get_clip_orchestrator)]
EditOrchestratorDep = Annotated[EditOrchestrator, Depends(get_edit_orchestrator)]
DerivedAssetCacheDep = Annotated[DerivedAssetCache, Depends(get_derived_asset_cache)]
ResourceGuardDep = Annotated[ResourceGuard, Depends(get_resource_guard)]
StorageDep = Annotated[StorageService, Depends(get_storage)]
