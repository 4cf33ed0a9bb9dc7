from fastapi import APIRouter

from clipworks.api.deps import ClipOrchestratorDep
from clipworks.schemas.jobs import ClipSynthesisRequest, JobOutcome, JobStatus

router = APIRouter()


@router.post("", response_model=JobOutcome, response_model_exclude_none=True)
async def synthesize_clip(request: ClipSynthesisRequest, clips: ClipOrchestratorDep) -> JobOutcome:
    """Start (or look up) a waveform clip for an episode window."""
    return await clips.synthesize(request)


@router.get("/{fingerprint}", response_model=JobStatus, response_model_exclude_none=True)
async def get_clip_status(fingerprint: str, clips: ClipOrchestratorDep) -> JobStatus:
    return await clips.status(fingerprint)
