from dataclasses import dataclass
from datetime import datetime, timezone
from time import perf_counter
from uuid import uuid4

from fastapi import Request

from clipworks.schemas.envelope import ResponseMeta


@dataclass
class RequestContext:
    request_id: str
    start_time: float


def create_request_context(request: Request | None = None) -> RequestContext:
    request_id = None
    if request is not None:
        request_id = request.headers.get("X-Request-ID")
    return RequestContext(request_id=request_id or str(uuid4()), start_time=perf_counter())


def build_meta(context: RequestContext, api_version: str = "1.0") -> ResponseMeta:
    processing_time_ms = int((perf_counter() - context.start_time) * 1000)
    return ResponseMeta(
        api_version=api_version,
        processing_time_ms=processing_time_ms,
        timestamp=datetime.now(timezone.utc),
    )
