"""Claim-based work queue backed by ordinary table rows.

Any number of callers (request handlers, pollers, separate processes) may drive
the same queue at once. The only mutual exclusion is the conditional UPDATE in
``ClaimQueue._try_claim``: it matches a row only while it is unlocked or its lock
has expired, and returns the row only to the caller whose write succeeded.
A worker that dies mid-task simply stops touching its row; once the lock is
older than the expiry, any other caller may claim it again.
"""
import logging
import os
import secrets
from datetime import datetime, timedelta

from sqlalchemy import and_, insert, literal, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import func

from scopescan.config import settings
from scopescan.utils.clock import utcnow
from scopescan.utils.exceptions import mask_secrets

logger = logging.getLogger(__name__)

PENDING = "pending"
PROCESSING = "processing"
FAILED = "failed"

BACKOFF_TABLE_SECONDS = [0, 1, 3, 8, 20, 45]


def backoff_seconds(attempts: int) -> int:
    """Delay before a failed row becomes claimable again."""
    index = min(max(attempts, 0), len(BACKOFF_TABLE_SECONDS) - 1)
    return BACKOFF_TABLE_SECONDS[index]


def new_worker_id(prefix: str) -> str:
    return f"{prefix}-{os.getpid()}-{secrets.token_hex(6)}"


class ClaimQueue:
    """Queue operations over one model.

    The model must have ``id``, ``attempts``, ``locked_by``, ``locked_at``,
    ``next_attempt_at`` and ``created_at`` columns. Status and error columns are
    configurable because photos keep their queue state in ``findings_*`` columns.
    """

    def __init__(
        self,
        model,
        *,
        status_column: str = "status",
        done_status: str = "done",
        error_column: str = "error",
        subject_column: str | None = None,
        max_attempts: int | None = None,
    ):
        self.model = model
        self.status_column = status_column
        self.done_status = done_status
        self.error_column = error_column
        self.subject_column = subject_column
        self.max_attempts = max_attempts or settings.max_attempts

    @property
    def _status(self):
        return getattr(self.model, self.status_column)

    def _has(self, column: str) -> bool:
        return hasattr(self.model, column)

    def _touch(self, values: dict, now: datetime) -> dict:
        if self._has("updated_at"):
            values["updated_at"] = now
        return values

    async def enqueue(self, session: AsyncSession, subject_id) -> bool:
        """Insert a pending row for ``subject_id`` unless one is already active.

        A single ``INSERT ... SELECT ... WHERE NOT EXISTS`` statement, so two
        concurrent enqueues cannot both see "no active row" and insert twice
        through a read-then-write gap. Returns True when a row was inserted.
        """
        if self.subject_column is None:
            raise ValueError(f"{self.model.__name__} queue has no subject column")

        now = utcnow()
        subject = getattr(self.model, self.subject_column)
        active = (
            select(self.model.id)
            .where(subject == subject_id, self._status.in_([PENDING, PROCESSING]))
            .correlate(None)
        )

        columns = [self.subject_column, self.status_column, "attempts", "next_attempt_at", "created_at"]
        values = [literal(subject_id), literal(PENDING), literal(0), literal(now), literal(now)]
        if self._has("updated_at"):
            columns.append("updated_at")
            values.append(literal(now))

        stmt = insert(self.model).from_select(columns, select(*values).where(~active.exists()))
        result = await session.execute(stmt)
        await session.commit()

        inserted = (result.rowcount or 0) > 0
        logger.info(
            "queue.enqueue table=%s subject=%s inserted=%s",
            self.model.__tablename__, subject_id, inserted,
        )
        return inserted

    async def claim_next(
        self,
        session: AsyncSession,
        worker_id: str,
        *criteria,
        batch_size: int | None = None,
        lock_expiry_seconds: int | None = None,
        now: datetime | None = None,
    ):
        """Claim one row for ``worker_id`` and return it, or None if nothing is claimable.

        Candidates are pending rows whose backoff has elapsed plus processing rows
        whose lock is stale, newest first. Each candidate is attempted with the
        conditional update; losing a race on one candidate moves on to the next.
        """
        now = now or utcnow()
        batch_size = batch_size or settings.claim_batch_size
        expiry = lock_expiry_seconds if lock_expiry_seconds is not None else settings.lock_expiry_seconds
        stale_before = now - timedelta(seconds=expiry)

        model = self.model
        stmt = (
            select(model)
            .where(
                *criteria,
                or_(
                    self._status == PENDING,
                    and_(
                        self._status == PROCESSING,
                        or_(model.locked_at.is_(None), model.locked_at <= stale_before),
                    ),
                ),
                or_(model.next_attempt_at.is_(None), model.next_attempt_at <= now),
            )
            .order_by(model.created_at.desc())
            .limit(batch_size)
        )
        candidates = (await session.execute(stmt)).scalars().all()

        for candidate in candidates:
            claimed = await self._try_claim(session, candidate.id, worker_id, now, stale_before)
            if claimed is not None:
                logger.info(
                    "queue.claimed table=%s id=%s worker=%s attempts=%s",
                    model.__tablename__, claimed.id, worker_id, claimed.attempts,
                )
                return claimed
        return None

    async def _try_claim(self, session: AsyncSession, row_id, worker_id: str, now: datetime, stale_before: datetime):
        model = self.model
        values = {
            self.status_column: PROCESSING,
            "locked_by": worker_id,
            "locked_at": now,
            "attempts": model.attempts + 1,
        }
        if self._has("started_at"):
            values["started_at"] = func.coalesce(model.started_at, now)
        self._touch(values, now)

        stmt = (
            update(model)
            .where(
                model.id == row_id,
                self._status.in_([PENDING, PROCESSING]),
                or_(model.locked_at.is_(None), model.locked_at <= stale_before),
                or_(model.next_attempt_at.is_(None), model.next_attempt_at <= now),
            )
            .values(**values)
            .returning(model.id)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        claimed_id = result.scalar_one_or_none()
        await session.commit()

        if claimed_id is None:
            return None
        return await session.get(model, claimed_id, populate_existing=True)

    def _owned_by(self, row_id, worker_id: str | None) -> list:
        conditions = [self.model.id == row_id]
        if worker_id is not None:
            conditions.append(self.model.locked_by == worker_id)
        return conditions

    async def mark_done(self, session: AsyncSession, row_id, worker_id: str | None = None, **extra) -> bool:
        """Finish a claimed row. ``extra`` carries result columns written in the same update.

        With ``worker_id`` the write only lands while that worker still owns the
        lock; a worker whose lock expired and was reclaimed gets False back.
        """
        now = utcnow()
        values = {
            self.status_column: self.done_status,
            self.error_column: None,
            "locked_by": None,
            "locked_at": None,
            **extra,
        }
        if self._has("finished_at"):
            values["finished_at"] = now
        self._touch(values, now)

        stmt = (
            update(self.model)
            .where(*self._owned_by(row_id, worker_id))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        await session.commit()

        if not result.rowcount:
            logger.warning("queue.done.lost_lock table=%s id=%s worker=%s", self.model.__tablename__, row_id, worker_id)
            return False
        return True

    async def mark_failed(
        self,
        session: AsyncSession,
        row_id,
        error: str,
        attempts: int,
        worker_id: str | None = None,
    ) -> str:
        """Release a claimed row after a failure; returns the resulting status.

        Below ``max_attempts`` the row goes back to pending with a backoff delay;
        at ``max_attempts`` it is failed for good and never scheduled again.
        """
        now = utcnow()
        final = attempts >= self.max_attempts
        status = FAILED if final else PENDING
        values = {
            self.status_column: status,
            self.error_column: mask_secrets(error),
            "next_attempt_at": None if final else now + timedelta(seconds=backoff_seconds(attempts)),
            "locked_by": None,
            "locked_at": None,
        }
        if self._has("finished_at"):
            values["finished_at"] = now if final else None
        self._touch(values, now)

        stmt = (
            update(self.model)
            .where(*self._owned_by(row_id, worker_id))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        await session.commit()

        if not result.rowcount:
            logger.warning("queue.failed.lost_lock table=%s id=%s worker=%s", self.model.__tablename__, row_id, worker_id)
        elif final:
            logger.error(
                "queue.failed.permanent table=%s id=%s attempts=%s error=%s",
                self.model.__tablename__, row_id, attempts, mask_secrets(error),
            )
        else:
            logger.warning(
                "queue.failed.retry table=%s id=%s attempts=%s backoff=%ss",
                self.model.__tablename__, row_id, attempts, backoff_seconds(attempts),
            )
        return status

    async def reset_failed(self, session: AsyncSession, *criteria) -> int:
        """Put permanently failed rows back in the queue with a fresh attempt budget."""
        now = utcnow()
        values = self._touch(
            {
                self.status_column: PENDING,
                self.error_column: None,
                "attempts": 0,
                "next_attempt_at": None,
                "locked_by": None,
                "locked_at": None,
            },
            now,
        )
        stmt = (
            update(self.model)
            .where(*criteria, self._status == FAILED)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        await session.commit()
        return result.rowcount or 0
