import asyncio
import logging
import shutil
from pathlib import Path

from clipworks.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()


class LocalStorageService:
    """Local file storage for development without GCS."""

    def __init__(self, base_path: str | None = None, base_url: str | None = None) -> None:
        self.base_path = Path(base_path or settings.local_storage_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.base_url = (base_url or settings.local_storage_base_url).rstrip("/")

    def _get_full_path(self, bucket: str, storage_key: str) -> Path:
        full_path = self.base_path / bucket / storage_key
        full_path.parent.mkdir(parents=True, exist_ok=True)
        return full_path

    def get_public_url(self, bucket: str, storage_key: str) -> str:
        return f"{self.base_url}/{bucket}/{storage_key}"

    def resolve_path(self, bucket: str, storage_key: str) -> Path:
        """Existing file for a bucket/key; keys may not escape the storage root."""
        root = self.base_path.resolve()
        full_path = (root / bucket / storage_key).resolve()
        if not full_path.is_relative_to(root) or not full_path.is_file():
            raise FileNotFoundError(f"{bucket}/{storage_key}")
        return full_path

    async def put(self, bucket: str, storage_key: str, data: bytes, content_type: str) -> str:
        """Write bytes and return the public URL."""
        self._get_full_path(bucket, storage_key).write_bytes(data)
        return self.get_public_url(bucket, storage_key)

    async def upload_file(self, bucket: str, storage_key: str, local_path: str, content_type: str) -> str:
        """Upload from local path."""
        shutil.copy(local_path, str(self._get_full_path(bucket, storage_key)))
        return self.get_public_url(bucket, storage_key)

    async def get(self, bucket: str, storage_key: str) -> bytes:
        full_path = self.base_path / bucket / storage_key
        if not full_path.exists():
            raise FileNotFoundError(f"{bucket}/{storage_key}")
        return full_path.read_bytes()

    async def delete(self, bucket: str, storage_key: str) -> bool:
        full_path = self.base_path / bucket / storage_key
        if full_path.exists():
            full_path.unlink()
            return True
        return False


class GCSStorageService:
    """Google Cloud Storage service for production."""

    def __init__(self) -> None:
        from google.cloud import storage

        self._storage = storage
        self._client: storage.Client | None = None
        self._buckets: dict[str, storage.Bucket] = {}

    @property
    def client(self):
        if self._client is None:
            if settings.gcs_project_id:
                self._client = self._storage.Client(project=settings.gcs_project_id)
            else:
                self._client = self._storage.Client()
        return self._client

    def bucket(self, name: str):
        if name not in self._buckets:
            self._buckets[name] = self.client.bucket(name)
        return self._buckets[name]

    def get_public_url(self, bucket: str, storage_key: str) -> str:
        return f"https://{bucket}.storage.googleapis.com/{storage_key}"

    async def put(self, bucket: str, storage_key: str, data: bytes, content_type: str) -> str:
        blob = self.bucket(bucket).blob(storage_key)
        await asyncio.to_thread(blob.upload_from_string, data, content_type=content_type)
        return self.get_public_url(bucket, storage_key)

    async def upload_file(self, bucket: str, storage_key: str, local_path: str, content_type: str) -> str:
        blob = self.bucket(bucket).blob(storage_key)
        await asyncio.to_thread(blob.upload_from_filename, local_path, content_type=content_type)
        logger.info(f"[STORAGE] Uploaded gs://{bucket}/{storage_key}")
        return self.get_public_url(bucket, storage_key)

    async def get(self, bucket: str, storage_key: str) -> bytes:
        blob = self.bucket(bucket).blob(storage_key)
        return await asyncio.to_thread(blob.download_as_bytes)

    async def delete(self, bucket: str, storage_key: str) -> bool:
        from google.api_core.exceptions import NotFound

        blob = self.bucket(bucket).blob(storage_key)
        try:
            await asyncio.to_thread(blob.delete)
        except NotFound:
            return False
        return True


# Use local storage for development, GCS for production
StorageService = LocalStorageService if settings.use_local_storage else GCSStorageService


def get_storage_service() -> LocalStorageService | GCSStorageService:
    return StorageService()
