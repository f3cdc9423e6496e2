"""
Final artifact upload.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from shared.config import settings
from shared.logging import get_logger
from shared.storage import StorageClient

logger = get_logger("stage_orchestrator.artifacts")


class ArtifactUploader(ABC):
    @abstractmethod
    async def upload(self, local_path: Path, job_id: str, owner_id: str) -> str:
        """Publish the rendered file and return its reference."""


class LocalArtifactUploader(ArtifactUploader):
    """Leaves the file where the compositor wrote it."""

    async def upload(self, local_path: Path, job_id: str, owner_id: str) -> str:
        return str(Path(local_path).resolve())


class SupabaseArtifactUploader(ArtifactUploader):
    """Uploads to the configured Supabase Storage bucket."""

    def __init__(self, storage: Optional[StorageClient] = None, bucket: Optional[str] = None):
        self.storage = storage or StorageClient()
        self.bucket = bucket or settings.storage_bucket

    async def upload(self, local_path: Path, job_id: str, owner_id: str) -> str:
        local_path = Path(local_path)
        object_path = f"{owner_id}/{job_id}/final{local_path.suffix}"
        url = await self.storage.upload_file(self.bucket, object_path, local_path)
        logger.info("Uploaded final video", extra={"job_id": job_id, "url": url})
        return url


def create_artifact_uploader(backend: Optional[str] = None) -> ArtifactUploader:
    backend = backend or settings.artifact_storage_backend
    if backend == "local":
        return LocalArtifactUploader()
    return SupabaseArtifactUploader()
