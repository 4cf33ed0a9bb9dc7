import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import uvicorn
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from clipworks.api import clips, edits, files, health
from clipworks.api.deps import Pipeline, build_pipeline
from clipworks.config import get_settings
from clipworks.constants.error_codes import get_error_spec
from clipworks.exceptions import ClipworksError
from clipworks.middleware.request_context import build_meta, create_request_context
from clipworks.models.database import async_session_maker, engine, init_db
from clipworks.schemas.envelope import ErrorEnvelope, ErrorInfo

settings = get_settings()
logger = logging.getLogger(__name__)


def _envelope_response(request: Request, status_code: int, error: ErrorInfo) -> JSONResponse:
    context = create_request_context(request)
    envelope = ErrorEnvelope(request_id=context.request_id, error=error, meta=build_meta(context))
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(envelope.model_dump(exclude_none=True)),
    )


def create_app(pipeline: Pipeline | None = None) -> FastAPI:
    """Build the API.

    A prebuilt pipeline is used as-is and left open on shutdown; otherwise the
    database is initialised and a pipeline is built on startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        # Startup
        if pipeline is not None:
            app.state.pipeline = pipeline
            yield
            return

        await init_db()
        app.state.pipeline = build_pipeline(async_session_maker, settings)
        app.state.pipeline.guard.start()
        yield
        # Shutdown
        await app.state.pipeline.aclose()
        await engine.dispose()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    @app.exception_handler(ClipworksError)
    async def clipworks_exception_handler(request: Request, exc: ClipworksError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{exc.code} on {request.url.path}: {exc.message}")
        return _envelope_response(request, exc.status_code, exc.to_error_info())

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        spec = get_error_spec("VALIDATION_ERROR")
        errors = exc.errors()
        if errors:
            first_error = errors[0]
            loc = " -> ".join(str(x) for x in first_error.get("loc", []))
            msg = first_error.get("msg", "Validation error")
            message = f"{loc}: {msg}" if loc else msg
        else:
            message = "Request validation failed"

        error = ErrorInfo(
            code="VALIDATION_ERROR",
            message=message,
            retryable=spec.get("retryable", False),
            suggested_fix=spec.get("suggested_fix"),
        )
        return _envelope_response(request, 422, error)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled exception: {exc}")
        spec = get_error_spec("INTERNAL_ERROR")
        error = ErrorInfo(
            code="INTERNAL_ERROR",
            message="Internal server error",
            retryable=spec.get("retryable", False),
            suggested_fix=spec.get("suggested_fix"),
        )
        return _envelope_response(request, 500, error)

    # Routers
    app.include_router(clips.router, prefix="/api/clips", tags=["clips"])
    app.include_router(edits.router, prefix="/api/edits", tags=["edits"])
    app.include_router(health.router, prefix="/api/health", tags=["health"])
    # Matches local_storage_base_url, so local asset URLs resolve
    app.include_router(files.router, prefix="/files", tags=["files"])

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "healthy", "version": settings.app_version}

    return app


app = create_app()


def run() -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run("clipworks.main:app", host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
