from clipworks.schemas.envelope import ErrorEnvelope, ErrorInfo
from clipworks.schemas.jobs import (
    ChildAsset,
    ClipSynthesisRequest,
    ClipSynthesisResult,
    DerivedChildren,
    JobOutcome,
    JobStatus,
    VideoEditRequest,
    VideoEditResult,
)

__all__ = [
    "ErrorEnvelope",
    "ErrorInfo",
    "ClipSynthesisRequest",
    "ClipSynthesisResult",
    "VideoEditRequest",
    "VideoEditResult",
    "JobOutcome",
    "JobStatus",
    "ChildAsset",
    "DerivedChildren",
]
