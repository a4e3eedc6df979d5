"""Label detection through the Cloud Vision REST ``images:annotate`` endpoint."""
import base64
import logging
import time

import httpx

from scopescan.config import settings
from scopescan.schemas.vision import DetectorLabel, DetectorResult
from scopescan.services.image_fetcher import require_supported_format
from scopescan.utils.exceptions import ProviderError

logger = logging.getLogger(__name__)

VISION_ANNOTATE_URL = "https://vision.googleapis.com/v1/images:annotate"


def _build_annotate_request(image_bytes: bytes, max_results: int) -> dict:
    return {
        "requests": [
            {
                "image": {"content": base64.standard_b64encode(image_bytes).decode("ascii")},
                "features": [{"type": "LABEL_DETECTION", "maxResults": max_results}],
            }
        ]
    }


def parse_label_response(data: dict, min_confidence: float, max_results: int) -> list[DetectorLabel]:
    """Convert ``labelAnnotations`` (score 0-1) into labels with 0-100 confidence."""
    responses = data.get("responses") or []
    if not responses:
        return []
    item = responses[0]
    if "error" in item:
        raise ProviderError(item["error"].get("message", str(item["error"])), code="DETECTOR_ERROR")

    labels = []
    for ann in item.get("labelAnnotations") or []:
        name = ann.get("description")
        if not name or ann.get("score") is None:
            continue
        confidence = round(float(ann["score"]) * 100, 2)
        if confidence >= min_confidence:
            labels.append(DetectorLabel(name=name, confidence=confidence))

    labels.sort(key=lambda label: label.confidence, reverse=True)
    return labels[:max_results]


async def detect_labels(
    image_bytes: bytes,
    client: httpx.AsyncClient | None = None,
    min_confidence: float | None = None,
    max_results: int | None = None,
) -> DetectorResult:
    # Unsupported encodings fail here, before any provider call.
    require_supported_format(image_bytes)

    if not settings.google_vision_api_key:
        raise ProviderError("GOOGLE_VISION_API_KEY not configured", code="DETECTOR_NO_API_KEY")

    min_confidence = settings.label_min_confidence if min_confidence is None else min_confidence
    max_results = max_results or settings.label_max_results

    owns_client = client is None
    if owns_client:
        client = httpx.AsyncClient(timeout=settings.http_timeout_seconds)

    start = time.monotonic()
    try:
        resp = await client.post(
            VISION_ANNOTATE_URL,
            params={"key": settings.google_vision_api_key},
            json=_build_annotate_request(image_bytes, max_results),
        )
        if resp.status_code in (401, 403):
            raise ProviderError(f"Label detection rejected credentials ({resp.status_code})", code="DETECTOR_AUTH_ERROR")
        if resp.status_code == 429:
            raise ProviderError("Label detection rate limit exceeded", code="DETECTOR_RATE_LIMITED")
        if resp.status_code >= 400:
            raise ProviderError(f"Label detection failed ({resp.status_code})", code="DETECTOR_ERROR")
        labels = parse_label_response(resp.json(), min_confidence, max_results)
    except httpx.HTTPError as e:
        raise ProviderError(f"{type(e).__name__}: {e}", code="DETECTOR_ERROR") from e
    finally:
        if owns_client:
            await client.aclose()

    logger.info(
        "vision.detector.success labels=%d top=%s duration_ms=%d",
        len(labels), [label.name for label in labels[:5]], int((time.monotonic() - start) * 1000),
    )
    return DetectorResult(labels=labels)
