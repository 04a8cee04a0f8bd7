import asyncio
import shutil
from functools import lru_cache
from pathlib import Path

from scene_composer.config import Settings, get_settings


def _join_url(base: str, storage_key: str) -> str:
    return f"{base.rstrip('/')}/{storage_key}"


class LocalStorageService:
    """Composite storage on the local disk, served from /files in development."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self.base_path = Path(self.settings.local_storage_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _get_full_path(self, storage_key: str) -> Path:
        full_path = (self.base_path / storage_key).resolve()
        if self.base_path.resolve() not in full_path.parents:
            raise ValueError(f"Storage key escapes storage root: {storage_key}")
        full_path.parent.mkdir(parents=True, exist_ok=True)
        return full_path

    def get_public_url(self, storage_key: str) -> str:
        """Public URL under the CDN prefix or the local /files mount."""
        base = self.settings.public_base_url or self.settings.local_storage_base_url
        return _join_url(base, storage_key)

    async def upload_file(self, local_path: str, storage_key: str, content_type: str | None = None) -> str:
        """Copy a finished file into the storage root."""
        full_path = self._get_full_path(storage_key)
        await asyncio.to_thread(shutil.copy, local_path, str(full_path))
        return self.get_public_url(storage_key)

    def delete_file(self, storage_key: str) -> bool:
        """Delete file."""
        full_path = self._get_full_path(storage_key)
        if full_path.exists():
            full_path.unlink()
            return True
        return False

    def file_exists(self, storage_key: str) -> bool:
        """Check if file exists."""
        return self._get_full_path(storage_key).exists()

    def get_file_path(self, storage_key: str) -> Path:
        """Resolved on-disk path for a key."""
        return self._get_full_path(storage_key)


class GCSStorageService:
    """Composite storage in a GCS bucket."""

    def __init__(self, settings: Settings | None = None) -> None:
        from google.cloud import storage

        self.settings = settings or get_settings()
        self._storage = storage
        self._client: storage.Client | None = None
        self._bucket: storage.Bucket | None = None

    @property
    def client(self):
        if self._client is None:
            if self.settings.gcs_project_id:
                self._client = self._storage.Client(project=self.settings.gcs_project_id)
            else:
                self._client = self._storage.Client()
        return self._client

    @property
    def bucket(self):
        if self._bucket is None:
            self._bucket = self.client.bucket(self.settings.gcs_bucket_name)
        return self._bucket

    def get_public_url(self, storage_key: str) -> str:
        """Get the public URL for a stored file."""
        if self.settings.public_base_url:
            return _join_url(self.settings.public_base_url, storage_key)
        return f"https://storage.googleapis.com/{self.settings.gcs_bucket_name}/{storage_key}"

    async def upload_file(self, local_path: str, storage_key: str, content_type: str | None = None) -> str:
        """Upload a finished file to the bucket and return its public URL."""
        blob = self.bucket.blob(storage_key)
        if content_type:
            await asyncio.to_thread(blob.upload_from_filename, local_path, content_type=content_type)
        else:
            await asyncio.to_thread(blob.upload_from_filename, local_path)
        return self.get_public_url(storage_key)

    def delete_file(self, storage_key: str) -> bool:
        """Delete a file from GCS."""
        blob = self.bucket.blob(storage_key)
        if blob.exists():
            blob.delete()
            return True
        return False

    def file_exists(self, storage_key: str) -> bool:
        """Check if a file exists in GCS."""
        blob = self.bucket.blob(storage_key)
        return blob.exists()


StorageService = LocalStorageService | GCSStorageService


@lru_cache
def get_storage_service() -> StorageService:
    # Use LocalStorageService or GCSStorageService based on config
    settings = get_settings()
    if settings.use_local_storage:
        return LocalStorageService(settings)
    return GCSStorageService(settings)
