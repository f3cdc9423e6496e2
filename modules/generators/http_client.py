"""
Shared httpx plumbing for REST providers.
"""

from pathlib import Path
from typing import Any, Dict, Optional
from uuid import uuid4

import httpx

from shared.config import settings
from modules.generators.polling import raise_for_provider_status, translate_transport_errors


class HTTPBackend:
    """Base for providers called over REST with an API key."""

    provider = "provider"

    def __init__(
        self,
        base_url: str,
        headers: Dict[str, str],
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.headers = headers
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        """Send a request, raising the pipeline error for any failure."""
        url = path if path.startswith("http") else f"{self.base_url}/{path.lstrip('/')}"
        headers = {**self.headers, **kwargs.pop("headers", {})}
        with translate_transport_errors(self.provider):
            response = await self.client.request(method, url, headers=headers, **kwargs)
        raise_for_provider_status(response, self.provider)
        return response

    async def read_media(self, uri: str) -> bytes:
        """Bytes of a local file or a remote url."""
        if uri.startswith(("http://", "https://")):
            with translate_transport_errors(self.provider):
                response = await self.client.get(uri)
            raise_for_provider_status(response, self.provider)
            return response.content
        return Path(uri).read_bytes()

    async def aclose(self) -> None:
        await self.client.aclose()


def media_path(kind: str, extension: str) -> Path:
    """New unique file path under MEDIA_DIR/<kind>/."""
    directory = Path(settings.media_dir) / kind
    directory.mkdir(parents=True, exist_ok=True)
    return directory / f"{uuid4().hex}.{extension}"
