"""
Research job worker.

Claims research jobs from the queue and drives each one through its
lifecycle:

    QUEUED -> ACTIVE -> COMPLETED   (report stored first)
    QUEUED -> ACTIVE -> FAILED      (error recorded, queue may retry)

The durable job record in the validation store is the authority for
progress; the queue entry mirrors it so operators can see it too. Up to
``concurrency`` jobs run at once, each in its own asyncio task.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import socket
from typing import Any, Awaitable

from vr.config import Settings
from vr.exceptions import ResearchTimeoutError, VRError
from vr.logging import get_logger, log_context
from vr.queue.job_queue import QueueJob, ResearchQueue
from vr.research.orchestrator import ResearchOrchestrator
from vr.store.validation_store import ValidationStore
from vr.types import FrameworkStatus, JobStatus, ResearchReport, ResearchResult, utc_now

logger = get_logger(__name__)

INITIAL_STEP = "Initializing..."
STALLED_CHECK_INTERVAL_SECONDS = 30.0


def error_message(error: BaseException) -> str:
    """The message recorded on a failed job, without any context suffix."""
    if isinstance(error, VRError):
        return error.message
    return str(error) or type(error).__name__


def _log_abandoned_result(task: asyncio.Task[Any]) -> None:
    # Retrieve the outcome of work that lost the race with its timeout
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.debug(
            "Abandoned research task failed after timeout",
            error=str(error),
            error_type=type(error).__name__,
        )


def default_worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


class ResearchWorker:
    """Consumes research jobs from a ResearchQueue."""

    def __init__(
        self,
        queue: ResearchQueue,
        store: ValidationStore,
        orchestrator: ResearchOrchestrator,
        concurrency: int = 2,
        default_timeout_seconds: float = 1800.0,
        poll_interval: float = 1.0,
        worker_id: str | None = None,
    ) -> None:
        """Initialize the worker.

        Args:
            queue: Queue to claim jobs from.
            store: Durable framework/job/report state.
            orchestrator: Runs the research pipeline.
            concurrency: Maximum jobs in flight.
            default_timeout_seconds: Budget for jobs that don't carry their own.
            poll_interval: Seconds to sleep when the queue is empty.
            worker_id: Identity recorded on claimed jobs.
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        self.queue = queue
        self.store = store
        self.orchestrator = orchestrator
        self.concurrency = concurrency
        self.default_timeout_seconds = default_timeout_seconds
        self.poll_interval = poll_interval
        self.worker_id = worker_id or default_worker_id()

        self._semaphore = asyncio.Semaphore(concurrency)
        self._stopping = asyncio.Event()
        self._loop_task: asyncio.Task[None] | None = None
        self._in_flight: set[asyncio.Task[None]] = set()
        self._abandoned: set[asyncio.Task[Any]] = set()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        queue: ResearchQueue,
        store: ValidationStore,
        orchestrator: ResearchOrchestrator,
        concurrency: int | None = None,
    ) -> ResearchWorker:
        return cls(
            queue=queue,
            store=store,
            orchestrator=orchestrator,
            concurrency=concurrency or settings.WORKER_CONCURRENCY,
            default_timeout_seconds=settings.JOB_TIMEOUT_SECONDS,
            poll_interval=settings.WORKER_POLL_INTERVAL,
        )

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    @property
    def abandoned(self) -> int:
        """Timed-out research tasks still running detached."""
        return len(self._abandoned)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> None:
        """Recover stalled jobs and begin claiming work."""
        if self.is_running:
            return
        await self.queue.recover_stalled()
        self._stopping.clear()
        self._loop_task = asyncio.create_task(self._run_loop(), name=f"vr-worker-{self.worker_id}")
        logger.info(
            "Research worker started",
            worker_id=self.worker_id,
            concurrency=self.concurrency,
        )

    async def stop(self, graceful: bool = True) -> None:
        """Stop claiming jobs.

        Args:
            graceful: Wait for in-flight jobs to finish. Otherwise they are
                cancelled and their queue entries are redelivered once their
                lock expires. Research abandoned after a timeout is cancelled
                either way.
        """
        self._stopping.set()
        if self._loop_task is not None:
            self._loop_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._loop_task
            self._loop_task = None

        if not graceful:
            for task in self._in_flight:
                task.cancel()
        if self._in_flight:
            await asyncio.gather(*self._in_flight, return_exceptions=True)

        # Timed-out research still running detached
        abandoned = list(self._abandoned)
        for task in abandoned:
            task.cancel()
        if abandoned:
            await asyncio.gather(*abandoned, return_exceptions=True)

        logger.info("Research worker stopped", worker_id=self.worker_id, graceful=graceful)

    async def wait_idle(self) -> None:
        """Wait until no job is in flight."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    async def _run_loop(self) -> None:
        loop = asyncio.get_running_loop()
        last_stalled_check = loop.time()

        while not self._stopping.is_set():
            await self._semaphore.acquire()
            try:
                job = await self.queue.claim_next(self.worker_id)
            except Exception:
                self._semaphore.release()
                logger.exception("Failed to claim next job")
                await self._idle()
                continue

            if job is None:
                self._semaphore.release()
                if loop.time() - last_stalled_check >= STALLED_CHECK_INTERVAL_SECONDS:
                    last_stalled_check = loop.time()
                    try:
                        await self.queue.recover_stalled()
                    except Exception:
                        logger.exception("Stalled job recovery failed")
                await self._idle()
                continue

            task = asyncio.create_task(self._handle(job), name=f"vr-job-{job.id}")
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)

    async def _idle(self) -> None:
        with contextlib.suppress(asyncio.TimeoutError):
            await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_interval)

    async def _handle(self, job: QueueJob) -> None:
        try:
            try:
                await self.process_job(job)
            except Exception as e:
                state = await self.queue.fail(job.id, error_message(e))
                logger.info("Queue entry updated after failure", job_id=job.id, state=state.value)
            else:
                await self.queue.complete(job.id)
        except asyncio.CancelledError:
            logger.warning("Research job cancelled", job_id=job.id)
            raise
        except Exception:
            logger.exception("Queue bookkeeping failed", job_id=job.id)
        finally:
            self._semaphore.release()

    # =========================================================================
    # Job processing
    # =========================================================================

    async def process_job(self, job: QueueJob) -> ResearchReport:
        """Run one research job to completion or failure.

        On failure the job and framework are marked FAILED and the error is
        re-raised so the queue can schedule a retry.
        """
        framework_id = job.data.framework_id

        with log_context(framework_id=framework_id, job_id=job.id):
            logger.info("Processing research job", attempt=job.attempts_made)
            try:
                loaded = await self.store.get_framework_tasks(framework_id)

                await self.store.update_job_status(
                    framework_id,
                    JobStatus.ACTIVE,
                    queue_job_id=job.id,
                    started_at=utc_now(),
                    completed_at=None,
                    error=None,
                    progress=0,
                    current_step=INITIAL_STEP,
                )
                if loaded.framework.status is not FrameworkStatus.IN_PROGRESS:
                    await self.store.update_framework_status(
                        framework_id, FrameworkStatus.IN_PROGRESS
                    )

                timeout_seconds = job.data.max_duration_seconds or self.default_timeout_seconds
                abandoned = asyncio.Event()

                async def on_progress(step: str, progress: int) -> None:
                    if abandoned.is_set():
                        return
                    await self.store.update_job_progress(framework_id, progress, step)
                    await self.queue.update_progress(job.id, progress)

                result = await self._run_with_timeout(
                    self.orchestrator.conduct_research(
                        loaded.project_description,
                        loaded.tasks,
                        on_progress=on_progress,
                    ),
                    timeout_seconds,
                    abandoned,
                )

                report = ResearchReport.from_result(framework_id, result)
                await self.store.finalize_success(framework_id, report)
            except Exception as e:
                message = error_message(e)
                logger.error(
                    "Research job failed",
                    error=message,
                    error_type=type(e).__name__,
                    attempt=job.attempts_made,
                )
                await self._record_failure(framework_id, message)
                raise

            logger.info(
                "Research job completed",
                summary_score=report.summary_score,
                verdict=report.summary_verdict.value,
                sources=report.sources_count,
            )
            return report

    async def _run_with_timeout(
        self,
        work: Awaitable[ResearchResult],
        timeout_seconds: float,
        abandoned: asyncio.Event,
    ) -> ResearchResult:
        """Race ``work`` against the job's time budget.

        The losing work is not cancelled. It keeps running detached until it
        finishes or the worker stops; its progress updates are dropped and
        its result is discarded.
        """
        task = asyncio.ensure_future(work)
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout_seconds)
        except asyncio.CancelledError:
            task.cancel()
            raise

        if task in done:
            return task.result()

        abandoned.set()
        self._abandoned.add(task)
        task.add_done_callback(self._abandoned.discard)
        task.add_done_callback(_log_abandoned_result)
        raise ResearchTimeoutError(timeout_seconds)

    async def _record_failure(self, framework_id: str, message: str) -> None:
        # Best-effort; the caller re-raises the original error.
        try:
            await self.store.mark_failed(framework_id, message)
        except Exception:
            logger.exception("Failed to record research failure")
