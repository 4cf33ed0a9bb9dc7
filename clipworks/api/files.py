"""Serves uploaded assets when running with local storage."""

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import FileResponse

from clipworks.api.deps import StorageDep
from clipworks.services.storage_service import LocalStorageService

router = APIRouter()

MEDIA_TYPES = {
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".mp4": "video/mp4",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".srt": "application/x-subrip",
}


@router.get("/{bucket}/{storage_key:path}")
async def get_file(bucket: str, storage_key: str, storage: StorageDep) -> FileResponse:
    """Serve a stored file by the same bucket/key its public URL carries."""
    if not isinstance(storage, LocalStorageService):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Local storage not enabled",
        )

    try:
        file_path = storage.resolve_path(bucket, storage_key)
    except FileNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="File not found",
        )

    media_type = MEDIA_TYPES.get(file_path.suffix.lower(), "application/octet-stream")
    return FileResponse(path=str(file_path), media_type=media_type, filename=file_path.name)
