"""Download photo bytes and sniff their encoding."""
import logging
from urllib.parse import urljoin

import httpx

from scopescan.config import settings
from scopescan.utils.exceptions import ImageFetchError, ImageFormatError

logger = logging.getLogger(__name__)

MAX_REDIRECTS = 3
_REDIRECT_STATUSES = {301, 302, 303, 307, 308}

_JPEG_MAGIC = b"\xff\xd8\xff"
_PNG_MAGIC = b"\x89PNG\r\n\x1a\n"


def detect_image_format(data: bytes) -> tuple[str | None, str | None]:
    """Return ``(format, error)``; ``error`` is None only for JPEG and PNG."""
    if len(data) < 8:
        return None, "Image too small to be valid"
    if data.startswith(_JPEG_MAGIC):
        return "jpeg", None
    if data.startswith(_PNG_MAGIC):
        return "png", None
    if len(data) >= 12 and data[4:8] == b"ftyp":
        return "heic", "HEIC format not supported - convert to JPEG first"
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "webp", "WebP format not supported - convert to JPEG first"
    return None, "Unknown image format - JPEG or PNG required"


def require_supported_format(data: bytes) -> str:
    fmt, error = detect_image_format(data)
    if error:
        raise ImageFormatError(error)
    return fmt


def content_type_for(data: bytes) -> str:
    fmt, _ = detect_image_format(data)
    return "image/png" if fmt == "png" else "image/jpeg"


def _raise_for_status(response: httpx.Response) -> None:
    status = response.status_code
    if status == 403:
        raise ImageFetchError(
            "Access denied to image (403) - check bucket permissions or URL signature expiration",
            code="FETCH_FORBIDDEN", status=status,
        )
    if status == 404:
        raise ImageFetchError("Image not found (404) - file may have been deleted", code="FETCH_NOT_FOUND", status=status)
    if status >= 500:
        raise ImageFetchError(
            f"Image host returned server error ({status}) - try again later",
            code="FETCH_SERVER_ERROR", status=status,
        )
    raise ImageFetchError(f"Failed to fetch image ({status})", status=status)


async def fetch_image_bytes(url: str, client: httpx.AsyncClient | None = None) -> bytes:
    """Fetch an image following at most ``MAX_REDIRECTS`` redirects by hand."""
    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=settings.http_timeout_seconds, follow_redirects=False)

    try:
        current = url
        redirects = 0
        while True:
            try:
                response = await client.get(current, headers={"Accept": "image/*,*/*"})
            except httpx.HTTPError as e:
                raise ImageFetchError(f"Request failed: {type(e).__name__}: {e}") from e

            if response.status_code in _REDIRECT_STATUSES:
                location = response.headers.get("location")
                if not location:
                    raise ImageFetchError(
                        f"Image URL returned redirect ({response.status_code}) with no location header",
                        code="FETCH_REDIRECT_ERROR", status=response.status_code,
                    )
                redirects += 1
                if redirects > MAX_REDIRECTS:
                    raise ImageFetchError(
                        f"Image URL exceeded {MAX_REDIRECTS} redirects", code="FETCH_TOO_MANY_REDIRECTS",
                    )
                current = urljoin(current, location)
                logger.info("fetch.redirect status=%s count=%d", response.status_code, redirects)
                continue

            if response.status_code >= 400:
                _raise_for_status(response)

            data = response.content
            if not data:
                raise ImageFetchError("Image response was empty (0 bytes)", code="FETCH_EMPTY")
            logger.info("fetch.ok bytes=%d redirects=%d", len(data), redirects)
            return data
    finally:
        if owns_client:
            await client.aclose()
