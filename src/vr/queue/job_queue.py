"""
Durable research job queue.

A SQLite-backed, at-least-once work queue with the delivery contract the
research worker relies on:
- one queue entry per framework (id ``research-<frameworkId>``); duplicate
  enqueues are ignored while the entry is retained
- atomic claiming, so an entry is never active on two workers at once
- bounded retries with exponential backoff
- lock expiry, so entries held by a crashed worker are redelivered
- retention pruning of finished entries

Timestamps are epoch seconds so due-time comparisons happen in SQL.
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator

import aiosqlite
import orjson

from vr.config import Settings
from vr.exceptions import NotFoundError, QueueError
from vr.logging import get_logger
from vr.store.sqlite import connect, resolve_db_path, retry_on_locked
from vr.types import QueueState, ResearchJobData

logger = get_logger(__name__)

RESEARCH_JOB_NAME = "research"
LOCK_GRACE_SECONDS = 300.0

SCHEMA = """
CREATE TABLE IF NOT EXISTS queue_jobs (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    data TEXT NOT NULL,
    state TEXT NOT NULL,
    attempts_made INTEGER NOT NULL DEFAULT 0,
    max_attempts INTEGER NOT NULL,
    progress INTEGER NOT NULL DEFAULT 0,
    failed_reason TEXT,
    worker_id TEXT,
    run_at REAL NOT NULL,
    locked_until REAL,
    created_at REAL NOT NULL,
    updated_at REAL NOT NULL,
    finished_at REAL
);

CREATE INDEX IF NOT EXISTS idx_queue_due ON queue_jobs(state, run_at, created_at);
CREATE INDEX IF NOT EXISTS idx_queue_finished ON queue_jobs(state, finished_at);
"""

_CLAIMABLE = (QueueState.WAITING.value, QueueState.DELAYED.value)
_FINISHED = (QueueState.COMPLETED.value, QueueState.FAILED.value)


def research_job_id(framework_id: str) -> str:
    return f"research-{framework_id}"


@dataclass(frozen=True)
class JobOptions:
    """Delivery and retention policy for queued research jobs."""

    attempts: int = 3
    backoff_seconds: float = 5.0
    lock_seconds: float = 2100.0
    keep_completed_seconds: float = 86400.0
    keep_completed_count: int = 100
    keep_failed_seconds: float = 604800.0

    @classmethod
    def from_settings(cls, settings: Settings) -> JobOptions:
        return cls(
            attempts=settings.JOB_ATTEMPTS,
            backoff_seconds=settings.JOB_BACKOFF_SECONDS,
            lock_seconds=settings.JOB_LOCK_SECONDS,
            keep_completed_seconds=settings.KEEP_COMPLETED_SECONDS,
            keep_completed_count=settings.KEEP_COMPLETED_COUNT,
            keep_failed_seconds=settings.KEEP_FAILED_SECONDS,
        )

    def lock_for(self, data: ResearchJobData) -> float:
        """Lock duration for a claimed job; always outlasts the job's own time budget."""
        if data.max_duration_seconds is None:
            return self.lock_seconds
        return max(self.lock_seconds, data.max_duration_seconds + LOCK_GRACE_SECONDS)

    def backoff_delay(self, attempts_made: int) -> float:
        """Delay before the next attempt: 5s, 10s, 20s, ... by default."""
        return self.backoff_seconds * 2 ** max(attempts_made - 1, 0)


@dataclass(frozen=True)
class QueueJob:
    """A queue entry as seen by workers and operators."""

    id: str
    name: str
    data: ResearchJobData
    state: QueueState
    attempts_made: int
    max_attempts: int
    progress: int
    run_at: float
    created_at: float
    updated_at: float
    failed_reason: str | None = None
    worker_id: str | None = None
    locked_until: float | None = None
    finished_at: float | None = None


@dataclass(frozen=True)
class EnqueueResult:
    job_id: str
    created: bool


class ResearchQueue:
    """SQLite-backed queue of research jobs."""

    def __init__(self, db_path: str | Path, options: JobOptions | None = None) -> None:
        self.db_path = resolve_db_path(db_path)
        self.options = options or JobOptions()
        self._db: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    async def start(self) -> None:
        if self._db is not None:
            return
        self._db = await connect(self.db_path)
        await self._db.executescript(SCHEMA)
        await self._db.commit()
        logger.info("Research queue started", db_path=str(self.db_path))

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    async def __aenter__(self) -> ResearchQueue:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise QueueError("ResearchQueue not started. Call start() first.")
        return self._db

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        # The database write lock is held from the first read to commit.
        db = self._conn()
        async with self._write_lock:
            await db.execute("BEGIN IMMEDIATE")
            try:
                yield db
                await db.commit()
            except BaseException:
                await db.rollback()
                raise

    # =========================================================================
    # Producer side
    # =========================================================================

    @retry_on_locked
    async def enqueue_research_job(
        self,
        data: ResearchJobData,
        replace_finished: bool = False,
    ) -> EnqueueResult:
        """Add a research job for a framework.

        While an entry with the same id is retained the call is a no-op and
        reports the existing id with ``created=False``. With
        ``replace_finished`` a completed or failed entry is replaced.
        """
        job_id = research_job_id(data.framework_id)
        now = time.time()

        async with self._transaction() as db:
            if replace_finished:
                await db.execute(
                    "DELETE FROM queue_jobs WHERE id = ? AND state IN (?, ?)",
                    (job_id, *_FINISHED),
                )
            cursor = await db.execute(
                """
                INSERT INTO queue_jobs (
                    id, name, data, state, attempts_made, max_attempts, progress,
                    run_at, created_at, updated_at
                ) VALUES (?, ?, ?, ?, 0, ?, 0, ?, ?, ?)
                ON CONFLICT(id) DO NOTHING
                """,
                (
                    job_id,
                    RESEARCH_JOB_NAME,
                    orjson.dumps(data.to_dict()).decode("utf-8"),
                    QueueState.WAITING.value,
                    self.options.attempts,
                    now,
                    now,
                    now,
                ),
            )
            created = cursor.rowcount == 1

        if created:
            logger.info("Research job enqueued", job_id=job_id, framework_id=data.framework_id)
        else:
            logger.info("Duplicate research job ignored", job_id=job_id)
        return EnqueueResult(job_id=job_id, created=created)

    # =========================================================================
    # Worker side
    # =========================================================================

    @retry_on_locked
    async def claim_next(self, worker_id: str, now: float | None = None) -> QueueJob | None:
        """Move the oldest due job to active and hand it to ``worker_id``."""
        now = time.time() if now is None else now

        async with self._transaction() as db:
            async with db.execute(
                """
                SELECT id, data FROM queue_jobs
                WHERE state IN (?, ?) AND run_at <= ?
                ORDER BY run_at ASC, created_at ASC, rowid ASC
                LIMIT 1
                """,
                (*_CLAIMABLE, now),
            ) as cursor:
                row = await cursor.fetchone()
            if row is None:
                return None
            data = ResearchJobData.from_dict(orjson.loads(row["data"]))

            await db.execute(
                """
                UPDATE queue_jobs
                SET state = ?, attempts_made = attempts_made + 1, worker_id = ?,
                    locked_until = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    QueueState.ACTIVE.value,
                    worker_id,
                    now + self.options.lock_for(data),
                    now,
                    row["id"],
                ),
            )
            async with db.execute("SELECT * FROM queue_jobs WHERE id = ?", (row["id"],)) as cursor:
                claimed = await cursor.fetchone()

        job = self._row_to_job(claimed)
        logger.debug(
            "Job claimed",
            job_id=job.id,
            worker_id=worker_id,
            attempt=job.attempts_made,
        )
        return job

    @retry_on_locked
    async def update_progress(self, job_id: str, progress: int) -> None:
        """Record progress and extend the holder's lock."""
        now = time.time()
        async with self._transaction() as db:
            await db.execute(
                """
                UPDATE queue_jobs
                SET progress = ?, locked_until = MAX(locked_until, ?), updated_at = ?
                WHERE id = ? AND state = ?
                """,
                (progress, now + self.options.lock_seconds, now, job_id, QueueState.ACTIVE.value),
            )

    @retry_on_locked
    async def complete(self, job_id: str) -> None:
        now = time.time()
        async with self._transaction() as db:
            cursor = await db.execute(
                """
                UPDATE queue_jobs
                SET state = ?, progress = 100, locked_until = NULL,
                    finished_at = ?, updated_at = ?
                WHERE id = ? AND state = ?
                """,
                (QueueState.COMPLETED.value, now, now, job_id, QueueState.ACTIVE.value),
            )
            if cursor.rowcount == 0:
                raise QueueError("Job is not active", {"job_id": job_id})

        await self.clean()

    @retry_on_locked
    async def fail(self, job_id: str, error: str, now: float | None = None) -> QueueState:
        """Record a failed attempt; reschedule with backoff while attempts remain.

        Returns:
            DELAYED if the job will be retried, FAILED if attempts are exhausted.
        """
        now = time.time() if now is None else now

        async with self._transaction() as db:
            async with db.execute(
                "SELECT attempts_made, max_attempts FROM queue_jobs WHERE id = ? AND state = ?",
                (job_id, QueueState.ACTIVE.value),
            ) as cursor:
                row = await cursor.fetchone()
            if row is None:
                raise QueueError("Job is not active", {"job_id": job_id})

            attempts_made = row["attempts_made"]
            if attempts_made < row["max_attempts"]:
                state = QueueState.DELAYED
                await db.execute(
                    """
                    UPDATE queue_jobs
                    SET state = ?, failed_reason = ?, worker_id = NULL, locked_until = NULL,
                        run_at = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    (
                        state.value,
                        error,
                        now + self.options.backoff_delay(attempts_made),
                        now,
                        job_id,
                    ),
                )
            else:
                state = QueueState.FAILED
                await db.execute(
                    """
                    UPDATE queue_jobs
                    SET state = ?, failed_reason = ?, locked_until = NULL,
                        finished_at = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    (state.value, error, now, now, job_id),
                )

        logger.info(
            "Job attempt failed",
            job_id=job_id,
            attempt=attempts_made,
            next_state=state.value,
        )
        await self.clean(now)
        return state

    @retry_on_locked
    async def recover_stalled(self, now: float | None = None) -> list[str]:
        """Return active jobs whose lock expired to waiting.

        Redelivery counts against the job's attempts when it is claimed again.
        """
        now = time.time() if now is None else now

        async with self._transaction() as db:
            async with db.execute(
                "SELECT id FROM queue_jobs WHERE state = ? AND locked_until < ?",
                (QueueState.ACTIVE.value, now),
            ) as cursor:
                stalled = [row["id"] for row in await cursor.fetchall()]
            if stalled:
                placeholders = ",".join("?" * len(stalled))
                await db.execute(
                    f"""
                    UPDATE queue_jobs
                    SET state = ?, worker_id = NULL, locked_until = NULL, updated_at = ?
                    WHERE id IN ({placeholders})
                    """,
                    (QueueState.WAITING.value, now, *stalled),
                )

        if stalled:
            logger.warning("Recovered stalled jobs", count=len(stalled), job_ids=stalled)
        return stalled

    @retry_on_locked
    async def clean(self, now: float | None = None) -> int:
        """Prune finished jobs past their retention. Returns rows removed."""
        now = time.time() if now is None else now
        opts = self.options

        async with self._transaction() as db:
            aged = await db.execute(
                """
                DELETE FROM queue_jobs
                WHERE (state = ? AND finished_at < ?) OR (state = ? AND finished_at < ?)
                """,
                (
                    QueueState.COMPLETED.value,
                    now - opts.keep_completed_seconds,
                    QueueState.FAILED.value,
                    now - opts.keep_failed_seconds,
                ),
            )
            overflow = await db.execute(
                """
                DELETE FROM queue_jobs
                WHERE state = ? AND id NOT IN (
                    SELECT id FROM queue_jobs WHERE state = ?
                    ORDER BY finished_at DESC LIMIT ?
                )
                """,
                (QueueState.COMPLETED.value, QueueState.COMPLETED.value, opts.keep_completed_count),
            )
            removed = aged.rowcount + overflow.rowcount

        if removed:
            logger.debug("Pruned finished jobs", removed=removed)
        return removed

    # =========================================================================
    # Inspection
    # =========================================================================

    async def get_job(self, job_id: str) -> QueueJob:
        """Raises NotFoundError if the job was never enqueued or was pruned."""
        async with self._conn().execute(
            "SELECT * FROM queue_jobs WHERE id = ?", (job_id,)
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            raise NotFoundError("QueueJob", job_id)
        return self._row_to_job(row)

    async def list_jobs(self, state: QueueState | None = None, limit: int = 50) -> list[QueueJob]:
        if state is None:
            sql = "SELECT * FROM queue_jobs ORDER BY created_at DESC, rowid DESC LIMIT ?"
            params: tuple[Any, ...] = (limit,)
        else:
            sql = "SELECT * FROM queue_jobs WHERE state = ? ORDER BY created_at DESC, rowid DESC LIMIT ?"
            params = (state.value, limit)
        async with self._conn().execute(sql, params) as cursor:
            return [self._row_to_job(row) for row in await cursor.fetchall()]

    async def counts(self) -> dict[QueueState, int]:
        counts = {state: 0 for state in QueueState}
        async with self._conn().execute(
            "SELECT state, COUNT(*) AS n FROM queue_jobs GROUP BY state"
        ) as cursor:
            for row in await cursor.fetchall():
                counts[QueueState(row["state"])] = row["n"]
        return counts

    @staticmethod
    def _row_to_job(row: aiosqlite.Row) -> QueueJob:
        return QueueJob(
            id=row["id"],
            name=row["name"],
            data=ResearchJobData.from_dict(orjson.loads(row["data"])),
            state=QueueState(row["state"]),
            attempts_made=row["attempts_made"],
            max_attempts=row["max_attempts"],
            progress=row["progress"],
            failed_reason=row["failed_reason"],
            worker_id=row["worker_id"],
            run_at=row["run_at"],
            locked_until=row["locked_until"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            finished_at=row["finished_at"],
        )
