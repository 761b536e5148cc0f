"""
Validation service.

The founder-facing path that leads up to a research run: instantiate a
framework for a project, record task answers, check readiness and start
research. Polling clients read progress back through
``get_research_status``.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

from vr.exceptions import (
    NotFoundError,
    ResearchCompletedError,
    ResearchInProgressError,
    ValidationNotReadyError,
)
from vr.logging import get_logger, log_context
from vr.queue.job_queue import ResearchQueue
from vr.queue.worker import error_message
from vr.store.validation_store import ValidationStore
from vr.types import (
    FrameworkDefinition,
    FrameworkStatus,
    JobStatus,
    ReadinessCheck,
    ResearchJob,
    ResearchJobData,
    ResearchReport,
    ValidationFramework,
    ValidationTask,
    utc_now,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class StartedResearch:
    """Identifiers returned when a research run is accepted."""

    job_id: str
    framework_id: str
    queue_job_id: str

    def to_dict(self) -> dict[str, str]:
        return {
            "jobId": self.job_id,
            "frameworkId": self.framework_id,
            "queueJobId": self.queue_job_id,
        }


@dataclass(frozen=True)
class ResearchStatus:
    """What a polling client sees for a framework."""

    framework: ValidationFramework
    job: ResearchJob | None
    report: ResearchReport | None

    def to_dict(self) -> dict[str, Any]:
        job = self.job
        report = self.report
        return {
            "frameworkId": self.framework.id,
            "status": self.framework.status.value,
            "startedAt": _iso(self.framework.started_at),
            "completedAt": _iso(self.framework.completed_at),
            "job": None
            if job is None
            else {
                "id": job.id,
                "status": job.status.value,
                "progress": job.progress,
                "currentStep": job.current_step,
                "error": job.error,
                "startedAt": _iso(job.started_at),
                "completedAt": _iso(job.completed_at),
            },
            "report": None
            if report is None
            else {
                "id": report.id,
                "summaryScore": report.summary_score,
                "summaryVerdict": report.summary_verdict.value,
                "summaryPoints": list(report.summary_points),
                "sections": report.sections_to_dict(),
                "recommendations": list(report.recommendations),
                "sourcesCount": report.sources_count,
            },
        }


def _iso(value: Any) -> str | None:
    return value.isoformat() if value else None


def readiness_of(tasks: list[ValidationTask] | tuple[ValidationTask, ...]) -> ReadinessCheck:
    required = [t for t in tasks if t.is_required]
    completed = [t for t in required if t.is_completed]
    missing = tuple(t.title for t in required if not t.is_completed)
    return ReadinessCheck(
        is_ready=len(completed) == len(required),
        completed_required_tasks=len(completed),
        total_required_tasks=len(required),
        missing_tasks=missing,
    )


class ValidationService:
    """Framework lifecycle up to, and including, starting research."""

    def __init__(self, store: ValidationStore, queue: ResearchQueue) -> None:
        self.store = store
        self.queue = queue
        self._start_lock = asyncio.Lock()

    async def list_framework_types(self) -> list[FrameworkDefinition]:
        return await self.store.list_active_definitions()

    async def initialize_framework(
        self, project_id: str, framework_type: str
    ) -> ValidationFramework:
        """Return the project's framework of this type, creating it if needed.

        Raises:
            NotFoundError: If the project or framework type does not exist.
        """
        definition = await self.store.get_framework_definition_by_type(framework_type)
        if definition is None:
            raise NotFoundError("FrameworkDefinition", framework_type)
        if await self.store.get_project(project_id) is None:
            raise NotFoundError("Project", project_id)

        existing = await self.store.find_framework_by_project_and_definition(
            project_id, definition.id
        )
        if existing is not None:
            logger.info("Framework already exists, returning existing", framework_id=existing.id)
            return existing

        framework = await self.store.create_framework(
            project_id, definition.id, definition.task_templates
        )
        logger.info(
            "Framework initialized with tasks",
            framework_id=framework.id,
            task_count=len(framework.tasks),
        )
        return framework

    async def get_framework(self, framework_id: str) -> ValidationFramework:
        framework = await self.store.get_framework(framework_id)
        if framework is None:
            raise NotFoundError("ValidationFramework", framework_id)
        return framework

    async def complete_task(self, task_id: str, answer: str) -> ValidationTask:
        """Record a task answer; flips the framework to READY once every
        required task is answered."""
        task = await self.store.complete_task(task_id, answer)

        framework = await self.get_framework(task.framework_id)
        if (
            framework.status is FrameworkStatus.PENDING_INFO
            and readiness_of(framework.tasks).is_ready
        ):
            await self.store.update_framework_status(framework.id, FrameworkStatus.READY)
            logger.info("Framework is now ready for research", framework_id=framework.id)

        return task

    async def check_readiness(self, framework_id: str) -> ReadinessCheck:
        framework = await self.get_framework(framework_id)
        return readiness_of(framework.tasks)

    async def start_research(
        self,
        framework_id: str,
        max_duration_seconds: float | None = None,
    ) -> StartedResearch:
        """Accept a research run for a framework and hand it to the queue.

        A FAILED framework may be restarted; its job record is reset.

        Raises:
            NotFoundError: If the framework does not exist.
            ResearchInProgressError: If a run is already in progress.
            ResearchCompletedError: If research already completed.
            ValidationNotReadyError: If required tasks are unanswered.
        """
        with log_context(framework_id=framework_id):
            async with self._start_lock:
                framework = await self.get_framework(framework_id)

                if framework.status is FrameworkStatus.IN_PROGRESS:
                    raise ResearchInProgressError(framework_id)
                if framework.status is FrameworkStatus.COMPLETED:
                    raise ResearchCompletedError(framework_id)

                readiness = readiness_of(framework.tasks)
                if not readiness.is_ready:
                    raise ValidationNotReadyError(framework_id, list(readiness.missing_tasks))

                if max_duration_seconds is None:
                    definition = await self.store.get_framework_definition(
                        framework.definition_id
                    )
                    if definition is not None:
                        max_duration_seconds = definition.research_config.max_duration_seconds

                project = await self.store.get_project(framework.project_id)
                if project is None:
                    raise NotFoundError("Project", framework.project_id)

                job = await self.store.create_or_reset_job(framework_id)
                await self.store.update_framework_status(
                    framework_id,
                    FrameworkStatus.IN_PROGRESS,
                    started_at=utc_now(),
                    completed_at=None,
                )

                try:
                    enqueued = await self.queue.enqueue_research_job(
                        ResearchJobData(
                            framework_id=framework_id,
                            project_description=project.description,
                            max_duration_seconds=max_duration_seconds,
                        ),
                        replace_finished=True,
                    )
                    await self.store.update_job_status(
                        framework_id, JobStatus.QUEUED, queue_job_id=enqueued.job_id
                    )
                except Exception as e:
                    # No worker will see this run; leave the framework restartable
                    logger.error("Failed to queue research", error=error_message(e))
                    await self._record_start_failure(framework_id, error_message(e))
                    raise

            if not enqueued.created:
                logger.warning(
                    "Queue already holds a pending entry for this framework",
                    queue_job_id=enqueued.job_id,
                )
            logger.info("Research started", job_id=job.id, queue_job_id=enqueued.job_id)

        return StartedResearch(
            job_id=job.id,
            framework_id=framework_id,
            queue_job_id=enqueued.job_id,
        )

    async def _record_start_failure(self, framework_id: str, message: str) -> None:
        try:
            await self.store.mark_failed(framework_id, message)
        except Exception:
            logger.exception("Failed to record research start failure")

    async def get_research_status(self, framework_id: str) -> ResearchStatus:
        framework = await self.get_framework(framework_id)
        return ResearchStatus(
            framework=framework,
            job=await self.store.get_job(framework_id),
            report=await self.store.get_report(framework_id),
        )
