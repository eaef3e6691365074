"""Upload generated images to the hosted object storage bucket."""

from typing import Optional

import httpx
from loguru import logger

from ..errors import UploadError
from ..utils.retry import RetryManager


class ObjectStorage:
    """Storage REST client: ``POST {base}/storage/v1/object/{bucket}/{path}``."""

    def __init__(
        self,
        base_url: str,
        bucket: str = "fileuploads",
        service_key: str = "",
        max_attempts: int = 3,
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.bucket = bucket
        self.service_key = service_key
        self.max_attempts = max_attempts
        self.timeout = timeout
        self._client = client

    def public_url(self, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{path.lstrip('/')}"

    async def upload_bytes(
        self, data: bytes, path: str, content_type: str = "image/png"
    ) -> str:
        """Upload (overwriting any existing object) and return the public URL.

        Raises:
            UploadError: If every attempt failed
        """
        path = path.lstrip("/")
        url = f"{self.base_url}/storage/v1/object/{self.bucket}/{path}"
        headers = {
            "Content-Type": content_type,
            "x-upsert": "true",
            "Cache-Control": "3600",
        }
        if self.service_key:
            headers["Authorization"] = f"Bearer {self.service_key}"
            headers["apikey"] = self.service_key

        async def attempt():
            if self._client is not None:
                response = await self._client.post(
                    url, content=data, headers=headers, timeout=self.timeout
                )
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.post(
                        url, content=data, headers=headers, timeout=self.timeout
                    )
            response.raise_for_status()
            return response

        try:
            await RetryManager.retry_with_backoff(
                attempt,
                max_retries=self.max_attempts - 1,
                base_delay=1.0,
                max_delay=8.0,
                retry_on=(httpx.HTTPError,),
            )
        except httpx.HTTPError as e:
            logger.error(f"Upload of {path} failed after {self.max_attempts} attempts: {e}")
            raise UploadError(f"Failed to upload {path}: {e}") from e

        public = self.public_url(path)
        logger.debug(f"Uploaded {len(data)} bytes to {public}")
        return public
