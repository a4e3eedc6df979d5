"""Run both vision providers on a photo and fuse them into one findings record."""
import logging
import time

from sqlalchemy.ext.asyncio import AsyncSession

from scopescan.models.photo import Photo
from scopescan.schemas.vision import (
    CombinedFindings,
    DetectorBranch,
    DetectorResult,
    LlmBranch,
    LlmVisionResult,
    PhotoFindings,
)
from scopescan.services import ai_service, label_detector
from scopescan.services.image_fetcher import fetch_image_bytes
from scopescan.services.task_queue import ClaimQueue
from scopescan.utils.clock import utcnow
from scopescan.utils.exceptions import ImageFormatError, VisionFailedError, mask_secrets

logger = logging.getLogger(__name__)

# Used when only the label detector answered; equals a 0.5 model confidence after scaling.
DETECTOR_ONLY_CONFIDENCE = 0.55
DETECTOR_SUMMARY_LABELS = 5
MAX_SUMMARY_LABELS = 10

photo_queue = ClaimQueue(
    Photo,
    status_column="findings_status",
    done_status="ready",
    error_column="findings_error",
    subject_column="job_id",
)


def combined_confidence(llm: LlmVisionResult | None) -> float:
    if llm is None:
        return DETECTOR_ONLY_CONFIDENCE
    return max(0.0, min(1.0, llm.confidence * 0.9 + 0.1))


def summary_labels(llm: LlmVisionResult | None, detector: DetectorResult | None) -> list[str]:
    labels = list(llm.labels) if llm else []
    if detector:
        labels += [label.name for label in detector.labels[:DETECTOR_SUMMARY_LABELS]]
    return list(dict.fromkeys(labels))[:MAX_SUMMARY_LABELS]


def fuse_results(
    image_url: str,
    kind: str,
    detector: DetectorResult | None,
    llm: LlmVisionResult | None,
    detector_error: str | None = None,
    llm_error: str | None = None,
) -> PhotoFindings:
    if detector is None and llm is None:
        raise VisionFailedError(f"detector={detector_error or 'unknown'} llm={llm_error or 'unknown'}")

    combined = CombinedFindings(
        confidence=combined_confidence(llm),
        summary_labels=summary_labels(llm, detector),
        needs_more_photos=list(llm.needs_more_photos) if llm else [],
    )
    if llm is not None:
        combined.needs_clarification = llm.needs_clarification
        combined.scope_ambiguous = llm.scope_ambiguous
        combined.clarification_reasons = list(llm.clarification_reasons)
        combined.detected_trade = llm.detected_trade or None
        combined.is_painting_related = llm.is_painting_related
        combined.estimated_severity = llm.estimated_severity

    return PhotoFindings(
        image_url=image_url,
        kind=kind,
        detector=(
            DetectorBranch(status="ready", result=detector)
            if detector is not None
            else DetectorBranch(status="failed", error=detector_error or "DETECTOR_FAILED")
        ),
        llm=(
            LlmBranch(status="ready", result=llm)
            if llm is not None
            else LlmBranch(status="failed", error=llm_error or "LLM_FAILED")
        ),
        combined=combined,
    )


async def analyze_photo(photo: Photo) -> PhotoFindings:
    """Call both providers; one may fail, both failing raises ``VisionFailedError``."""
    start = time.monotonic()
    image_bytes = await fetch_image_bytes(photo.image_url)

    detector = None
    detector_error = None
    unsupported_format = False
    try:
        detector = await label_detector.detect_labels(image_bytes)
    except ImageFormatError as e:
        detector_error = str(e)
        unsupported_format = True
        logger.warning("vision.detector.unsupported_format photo=%s error=%s", photo.id, detector_error)
    except Exception as e:
        detector_error = mask_secrets(str(e))
        logger.warning("vision.detector.failed photo=%s error=%s", photo.id, detector_error)

    llm = None
    llm_error = None
    if unsupported_format:
        # The LLM would receive the same bytes under a wrong content type.
        llm_error = detector_error
    else:
        hints = [label.name for label in detector.labels] if detector else []
        try:
            llm = await ai_service.analyze_with_llm(image_bytes, photo.kind, hints)
        except Exception as e:
            llm_error = mask_secrets(str(e))
            logger.warning("vision.llm.failed photo=%s error=%s", photo.id, llm_error)

    findings = fuse_results(photo.image_url, photo.kind, detector, llm, detector_error, llm_error)
    logger.info(
        "vision.photo.analyzed photo=%s job=%s detector=%s llm=%s confidence=%.2f duration_ms=%d",
        photo.id, photo.job_id, findings.detector.status, findings.llm.status,
        findings.combined.confidence, int((time.monotonic() - start) * 1000),
    )
    return findings


async def run_vision_for_photo(session: AsyncSession, photo: Photo, worker_id: str | None = None) -> bool:
    """Analyze a claimed photo and release it as ready, or hand the error to the retry policy."""
    attempts = photo.attempts or 1
    try:
        findings = await analyze_photo(photo)
    except Exception as e:
        await photo_queue.mark_failed(session, photo.id, str(e), attempts, worker_id=worker_id)
        return False

    return await photo_queue.mark_done(
        session,
        photo.id,
        worker_id=worker_id,
        findings=findings.model_dump(mode="json"),
        analyzed_at=utcnow(),
    )
