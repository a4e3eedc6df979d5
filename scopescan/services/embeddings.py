"""Job embeddings for similar-job lookup, computed through the claim queue."""
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from scopescan.config import settings
from scopescan.database import async_session
from scopescan.models.embedding import EmbeddingTask, JobEmbedding
from scopescan.models.photo import Photo
from scopescan.services import ai_service
from scopescan.services.task_queue import ClaimQueue, new_worker_id
from scopescan.utils.clock import utcnow
from scopescan.utils.exceptions import PipelineError

logger = logging.getLogger(__name__)

embedding_queue = ClaimQueue(EmbeddingTask, subject_column="job_id")


async def enqueue_embedding_task(session: AsyncSession, job_id: str) -> bool:
    return await embedding_queue.enqueue(session, job_id)


def job_text(photos: list[Photo]) -> str:
    """One line per analyzed photo: summary labels, then damage and issue texts.

    The whole job is embedded as this single text rather than averaging per-photo
    caption vectors.
    """
    lines = []
    for photo in photos:
        findings = photo.findings or {}
        parts = list((findings.get("combined") or {}).get("summary_labels") or [])
        llm = (findings.get("llm") or {}).get("result") or {}
        parts += llm.get("damage") or []
        parts += llm.get("issues") or []
        if parts:
            lines.append(", ".join(parts))
    return "\n".join(lines)


async def run_embedding_task(session: AsyncSession, task: EmbeddingTask, worker_id: str | None = None) -> bool:
    # Rollback expires loaded rows, so keep plain values.
    task_id, job_id, attempts = task.id, task.job_id, task.attempts or 1
    try:
        result = await session.execute(
            select(Photo)
            .where(Photo.job_id == job_id, Photo.findings_status == "ready")
            .order_by(Photo.created_at)
        )
        text = job_text(list(result.scalars().all()))
        if not text:
            raise PipelineError("No analyzed photos to embed", code="NO_FINDINGS")

        vector = await ai_service.embed_text(text)

        row = await session.get(JobEmbedding, job_id)
        if row is None:
            row = JobEmbedding(job_id=job_id, model=settings.openai_embedding_model, embedding=vector)
            session.add(row)
        else:
            row.model = settings.openai_embedding_model
            row.embedding = vector
            row.updated_at = utcnow()
        await session.commit()
    except Exception as e:
        await session.rollback()
        await embedding_queue.mark_failed(session, task_id, str(e), attempts, worker_id=worker_id)
        return False

    logger.info("embedding.done job=%s task=%s dims=%d", job_id, task_id, len(vector))
    return await embedding_queue.mark_done(session, task_id, worker_id=worker_id)


async def advance_embedding_tasks(max_to_process: int) -> int:
    worker_id = new_worker_id("similarity")
    processed = 0
    async with async_session() as session:
        while processed < max_to_process:
            task = await embedding_queue.claim_next(session, worker_id)
            if task is None:
                break
            await run_embedding_task(session, task, worker_id=worker_id)
            processed += 1
    return processed
