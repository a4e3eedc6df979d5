"""Job-level operations: drive photo analysis inline and build the findings summary."""
import logging
import time

from sqlalchemy import select

from scopescan.database import async_session
from scopescan.models.photo import Photo
from scopescan.schemas.findings import FindingsSummary
from scopescan.schemas.job import AnalysisProgress
from scopescan.services.clarification import build_clarification
from scopescan.services.embeddings import enqueue_embedding_task
from scopescan.services.findings_aggregator import aggregate_findings
from scopescan.services.task_queue import FAILED, new_worker_id
from scopescan.services.vision_fusion import photo_queue, run_vision_for_photo

logger = logging.getLogger(__name__)

READY = "ready"
FINISHED_STATUSES = (READY, FAILED)


def _worker_id(request_id: str | None) -> str:
    return new_worker_id(f"api-{request_id}" if request_id else "api")


async def advance_analysis(job_id: str, max_to_process: int, request_id: str | None = None) -> int:
    """Claim and analyze up to ``max_to_process`` photos of the job; returns how many ran.

    Safe to call from several requests at once: each photo is handed to exactly
    one caller by the queue claim.
    """
    worker_id = _worker_id(request_id)
    processed = 0
    async with async_session() as session:
        while processed < max_to_process:
            photo = await photo_queue.claim_next(session, worker_id, Photo.job_id == job_id)
            if photo is None:
                break
            await run_vision_for_photo(session, photo, worker_id=worker_id)
            processed += 1

    if processed:
        logger.info("analysis.advanced job=%s worker=%s processed=%d", job_id, worker_id, processed)
    return processed


async def _job_photos(session, job_id: str) -> list[Photo]:
    result = await session.execute(select(Photo).where(Photo.job_id == job_id).order_by(Photo.created_at))
    return list(result.scalars().all())


async def get_analysis_progress(job_id: str, processed: int = 0) -> AnalysisProgress:
    async with async_session() as session:
        photos = await _job_photos(session, job_id)

    if not photos:
        return AnalysisProgress(status="no_photos", photos_analyzed=0, photos_total=0, processed=processed)
    done = sum(1 for p in photos if p.findings_status in FINISHED_STATUSES)
    return AnalysisProgress(
        status=READY if done == len(photos) else "analyzing",
        photos_analyzed=done,
        photos_total=len(photos),
        processed=processed,
    )


async def retry_failed_photos(job_id: str, request_id: str | None = None, max_to_process: int = 2) -> dict:
    """Give permanently failed photos a fresh attempt budget and start on them."""
    async with async_session() as session:
        reset = await photo_queue.reset_failed(session, Photo.job_id == job_id)
    logger.info("analysis.retry job=%s reset=%d", job_id, reset)

    processed = await advance_analysis(job_id, max_to_process, request_id) if reset else 0
    return {"reset": reset, "processed": processed}


async def get_findings_summary(job_id: str) -> FindingsSummary:
    """Aggregate the job's analyzed photos into findings, questions and tiers.

    Returns ``no_photos`` when the job has no photos or none of them could be
    analyzed, and ``analyzing`` while any photo is still queued or in flight.
    """
    start = time.monotonic()
    async with async_session() as session:
        photos = await _job_photos(session, job_id)

        if not photos:
            return FindingsSummary(status="no_photos")

        ready = [p for p in photos if p.findings_status == READY]
        done = sum(1 for p in photos if p.findings_status in FINISHED_STATUSES)

        if done < len(photos):
            return FindingsSummary(status="analyzing", photos_analyzed=done, photos_total=len(photos))

        if not ready:
            return FindingsSummary(status="no_photos", photos_analyzed=0, photos_total=len(photos))

        aggregate = aggregate_findings(ready)
        decision = build_clarification(aggregate)
        await enqueue_embedding_task(session, job_id)

    summary = FindingsSummary(
        status="ready",
        findings=aggregate.findings,
        unknowns=aggregate.unknowns,
        needs_clarification=decision.needs_clarification,
        clarifying_questions=decision.clarifying_questions,
        suggested_tiers=decision.suggested_tiers,
        overall_confidence=aggregate.overall_confidence,
        photos_analyzed=len(ready),
        photos_total=len(photos),
        suggested_problem=aggregate.suggested_problem,
        needs_more_photos=aggregate.needs_more_photos or None,
        detected_trade=aggregate.detected_trade,
        is_painting_job=aggregate.is_painting_job,
    )
    logger.info(
        "findings.summary.ok job=%s photos=%d ready=%d findings=%d unknowns=%d clarify=%s painting=%s trade=%s duration_ms=%d",
        job_id, len(photos), len(ready), len(summary.findings), len(summary.unknowns),
        summary.needs_clarification, summary.is_painting_job, summary.detected_trade,
        int((time.monotonic() - start) * 1000),
    )
    return summary
