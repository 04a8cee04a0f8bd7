"""Publishes a finished composite and its thumbnail to durable storage."""

import logging
import time
from dataclasses import dataclass

from scene_composer.exceptions import PublishError
from scene_composer.services.storage_service import StorageService, get_storage_service

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PublishedAssets:
    video_url: str
    thumbnail_url: str
    video_key: str
    thumbnail_key: str


def composite_keys(project_id: str, scene_id: str, job_id: str, timestamp_ms: int) -> tuple[str, str]:
    """Storage keys for the composite video and its thumbnail."""
    prefix = f"projects/{project_id}/scenes/{scene_id}"
    return (
        f"{prefix}/composite-{timestamp_ms}-{job_id}.mp4",
        f"{prefix}/composite-thumb-{timestamp_ms}-{job_id}.jpg",
    )


class AssetPublisher:
    def __init__(self, storage: StorageService | None = None):
        self.storage = storage or get_storage_service()

    async def publish(
        self,
        project_id: str,
        scene_id: str,
        job_id: str,
        video_path: str,
        thumbnail_path: str,
    ) -> PublishedAssets:
        """Upload video then thumbnail; any failure raises PublishError."""
        timestamp_ms = int(time.time() * 1000)
        video_key, thumb_key = composite_keys(project_id, scene_id, job_id, timestamp_ms)

        try:
            video_url = await self.storage.upload_file(video_path, video_key, "video/mp4")
            thumbnail_url = await self.storage.upload_file(thumbnail_path, thumb_key, "image/jpeg")
        except PublishError:
            raise
        except Exception as e:
            logger.error(f"[PUBLISH {job_id}] upload failed: {e}")
            raise PublishError(f"Failed to upload composite: {e}") from e

        logger.info(f"[PUBLISH {job_id}] uploaded {video_key}")
        return PublishedAssets(
            video_url=video_url,
            thumbnail_url=thumbnail_url,
            video_key=video_key,
            thumbnail_key=thumb_key,
        )
