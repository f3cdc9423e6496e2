"""
Storage utilities.

Supabase Storage upload for finished artifacts.
"""

import asyncio
import mimetypes
from pathlib import Path
from typing import Any, Callable, Dict, Optional
from supabase import create_client
from shared.config import settings
from shared.errors import RetryableError, ConfigError, ValidationError
from shared.retry import retry_with_backoff
from shared.logging import get_logger

logger = get_logger("storage")

# File size limits per bucket (in bytes)
DEFAULT_BUCKET_LIMITS: Dict[str, int] = {
    "video-outputs": 500 * 1024 * 1024,  # 500MB
}


class StorageClient:
    """Supabase Storage client for file operations."""

    def __init__(self, client: Any = None, bucket_limits: Optional[Dict[str, int]] = None):
        """
        Initialize storage client.

        Args:
            client: Existing supabase client (created from settings if omitted)
            bucket_limits: Optional dict of bucket name to max file size in bytes
        """
        try:
            self.client = client or create_client(
                settings.supabase_url,
                settings.supabase_service_key
            )
            self.storage = self.client.storage
            self.bucket_limits = bucket_limits or DEFAULT_BUCKET_LIMITS.copy()
        except Exception as e:
            raise ConfigError(f"Failed to initialize storage client: {str(e)}") from e

    async def _execute_sync(self, func: Callable[[], Any]) -> Any:
        """Execute a synchronous Supabase storage operation in an executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func)

    @staticmethod
    def _detect_content_type(path: str, default: Optional[str] = None) -> str:
        content_type, _ = mimetypes.guess_type(path)
        return content_type or default or "application/octet-stream"

    @retry_with_backoff(max_attempts=3, base_delay=2)
    async def upload_file(
        self,
        bucket: str,
        path: str,
        local_path: Path,
        content_type: Optional[str] = None
    ) -> str:
        """
        Upload a local file to Supabase Storage.

        Args:
            bucket: Storage bucket name
            path: Object path in bucket
            local_path: File to upload
            content_type: Content type (auto-detected if not provided)

        Returns:
            Public URL of uploaded file

        Raises:
            RetryableError: If upload fails after retries
            ValidationError: If file is missing or exceeds the bucket limit
        """
        local_path = Path(local_path)
        if not local_path.is_file():
            raise ValidationError(f"Artifact not found: {local_path}")

        size = local_path.stat().st_size
        max_size = self.bucket_limits.get(bucket, 100 * 1024 * 1024)
        if size > max_size:
            raise ValidationError(
                f"File size ({size / (1024 * 1024):.2f} MB) exceeds maximum of "
                f"{max_size / (1024 * 1024):.2f} MB for bucket {bucket}"
            )

        content_type = content_type or self._detect_content_type(path)

        try:
            def _upload():
                with open(local_path, "rb") as f:
                    return self.storage.from_(bucket).upload(
                        path=path,
                        file=f.read(),
                        file_options={"content-type": content_type, "upsert": "true"}
                    )

            await self._execute_sync(_upload)
            file_url = await self._execute_sync(
                lambda: self.storage.from_(bucket).get_public_url(path)
            )
        except Exception as e:
            logger.error(
                f"Failed to upload file to {bucket}/{path}: {str(e)}",
                extra={"bucket": bucket, "path": path, "error": str(e)}
            )
            raise RetryableError(f"Failed to upload file: {str(e)}") from e

        logger.info(
            f"Uploaded file to {bucket}/{path}",
            extra={"bucket": bucket, "path": path, "size": size}
        )
        return file_url
