"""Image payload helpers: data URLs, MIME normalisation and remote fetches."""

import base64
import binascii
from typing import Optional, Tuple

import httpx
from loguru import logger

from ..errors import ValidationError
from .retry import RetryManager

SUPPORTED_MIME_TYPES = ("image/png", "image/jpeg", "image/gif", "image/webp")


def normalize_mime_type(content_type: Optional[str]) -> str:
    """Map a Content-Type header onto a MIME type the AI providers accept."""
    content_type = (content_type or "").lower()
    if "jpg" in content_type or "jpeg" in content_type:
        return "image/jpeg"
    if "png" in content_type:
        return "image/png"
    if "gif" in content_type:
        return "image/gif"
    if "webp" in content_type:
        return "image/webp"
    return "image/png"


def is_data_url(value: str) -> bool:
    return value.startswith("data:")


def split_data_url(data_url: str) -> Tuple[str, str]:
    """Return ``(mime_type, base64_payload)`` for a data URL."""
    if not is_data_url(data_url) or "," not in data_url:
        raise ValidationError("Not a base64 data URL")

    header, payload = data_url.split(",", 1)
    mime_type = header[len("data:"):].split(";")[0] or "image/png"
    return mime_type, payload


def data_url_to_bytes(data_url: str) -> bytes:
    """Decode the base64 payload of a data URL."""
    _, payload = split_data_url(data_url)
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError(f"Invalid base64 image payload: {e}") from e


def bytes_to_data_url(data: bytes, mime_type: str = "image/png") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


async def fetch_image_as_data_url(
    image_url: str,
    max_retries: int = 3,
    timeout: float = 10.0,
    client: Optional[httpx.AsyncClient] = None,
) -> Optional[str]:
    """Download an image and inline it as a data URL.

    Returns None once every attempt has failed so callers can fall back to
    passing the plain URL.
    """

    async def fetch() -> str:
        async def do_get(http: httpx.AsyncClient) -> httpx.Response:
            response = await http.get(
                image_url, headers={"Accept": "image/*"}, timeout=timeout
            )
            response.raise_for_status()
            return response

        if client is not None:
            response = await do_get(client)
        else:
            async with httpx.AsyncClient(follow_redirects=True) as http:
                response = await do_get(http)

        mime_type = normalize_mime_type(response.headers.get("content-type"))
        logger.debug(f"Fetched image ({len(response.content)} bytes) from {image_url}")
        return bytes_to_data_url(response.content, mime_type)

    try:
        return await RetryManager.retry_with_backoff(
            fetch,
            max_retries=max_retries - 1,
            base_delay=1.0,
            max_delay=5.0,
            retry_on=(httpx.HTTPError,),
        )
    except httpx.HTTPError as e:
        logger.error(f"All {max_retries} attempts failed for image {image_url}: {e}")
        return None
