"""
Tests for the validation service.
"""

from __future__ import annotations

import asyncio

import pytest

from conftest import ANSWERS, IDEA, FakeResearchClient
from vr.exceptions import (
    NotFoundError,
    QueueError,
    ResearchCompletedError,
    ResearchInProgressError,
    StateError,
    ValidationNotReadyError,
)
from vr.llm.base import LLMError
from vr.queue.job_queue import ResearchQueue
from vr.queue.worker import ResearchWorker
from vr.research.orchestrator import ResearchOrchestrator
from vr.store.definitions import PROBLEM_SOLUTION_FIT
from vr.store.validation_store import ValidationStore
from vr.types import FrameworkStatus, JobStatus, QueueState, ValidationFramework
from vr.validation.service import ValidationService


@pytest.fixture
def service(store: ValidationStore, queue: ResearchQueue) -> ValidationService:
    return ValidationService(store, queue)


async def answer_all(service: ValidationService, framework: ValidationFramework) -> None:
    for task in framework.tasks:
        await service.complete_task(task.id, ANSWERS[task.category])


async def run_next(
    service: ValidationService, client: FakeResearchClient | None = None
) -> None:
    """Claim the next queued job and run it the way the worker loop does."""
    worker = ResearchWorker(
        service.queue, service.store, ResearchOrchestrator(client or FakeResearchClient())
    )
    job = await service.queue.claim_next(worker.worker_id)
    assert job is not None
    await worker._semaphore.acquire()
    await worker._handle(job)


class TestFrameworkSetup:
    """Tests for framework creation and task answers."""

    async def test_lists_framework_types(self, service: ValidationService) -> None:
        types = await service.list_framework_types()

        assert [d.type for d in types] == [PROBLEM_SOLUTION_FIT]

    async def test_initialize_is_idempotent(self, service: ValidationService) -> None:
        project = await service.store.create_project("PhysioFill", IDEA)

        first = await service.initialize_framework(project.id, PROBLEM_SOLUTION_FIT)
        second = await service.initialize_framework(project.id, PROBLEM_SOLUTION_FIT)

        assert second.id == first.id
        assert len(second.tasks) == 5
        assert len(await service.store.get_tasks(first.id)) == 5

    async def test_initialize_unknown_type(self, service: ValidationService) -> None:
        project = await service.store.create_project("PhysioFill", IDEA)

        with pytest.raises(NotFoundError, match="FrameworkDefinition"):
            await service.initialize_framework(project.id, "GO_TO_MARKET")

    async def test_initialize_unknown_project(self, service: ValidationService) -> None:
        with pytest.raises(NotFoundError, match="Project"):
            await service.initialize_framework("proj_missing", PROBLEM_SOLUTION_FIT)

    async def test_answers_flip_framework_to_ready(
        self, service: ValidationService, framework: ValidationFramework
    ) -> None:
        *first, last = framework.tasks
        for task in first:
            await service.complete_task(task.id, ANSWERS[task.category])

        readiness = await service.check_readiness(framework.id)
        assert not readiness.is_ready
        assert readiness.completed_required_tasks == 4
        assert readiness.missing_tasks == (last.title,)
        assert (await service.get_framework(framework.id)).status is FrameworkStatus.PENDING_INFO

        await service.complete_task(last.id, ANSWERS[last.category])

        assert (await service.check_readiness(framework.id)).is_ready
        assert (await service.get_framework(framework.id)).status is FrameworkStatus.READY

    async def test_task_answered_once(
        self, service: ValidationService, framework: ValidationFramework
    ) -> None:
        task = framework.tasks[0]
        await service.complete_task(task.id, "Clinic owners")

        with pytest.raises(StateError):
            await service.complete_task(task.id, "Hospitals")

    async def test_get_missing_framework(self, service: ValidationService) -> None:
        with pytest.raises(NotFoundError):
            await service.get_framework("fw_missing")


class TestStartResearch:
    """Tests for accepting research runs."""

    async def test_start_queues_job(
        self, service: ValidationService, framework: ValidationFramework
    ) -> None:
        await answer_all(service, framework)

        started = await service.start_research(framework.id)

        assert started.framework_id == framework.id
        assert started.queue_job_id == f"research-{framework.id}"
        status = await service.get_research_status(framework.id)
        assert status.framework.status is FrameworkStatus.IN_PROGRESS
        assert status.framework.started_at is not None
        assert status.job is not None
        assert status.job.id == started.job_id
        assert status.job.status is JobStatus.QUEUED
        assert status.job.queue_job_id == started.queue_job_id
        assert status.report is None

        entry = await service.queue.get_job(started.queue_job_id)
        assert entry.state is QueueState.WAITING
        assert entry.data.project_description == IDEA
        assert entry.data.max_duration_seconds == 7200

    async def test_explicit_max_duration(
        self, service: ValidationService, framework: ValidationFramework
    ) -> None:
        await answer_all(service, framework)

        started = await service.start_research(framework.id, max_duration_seconds=600)

        entry = await service.queue.get_job(started.queue_job_id)
        assert entry.data.max_duration_seconds == 600

    async def test_not_ready(
        self, service: ValidationService, framework: ValidationFramework
    ) -> None:
        with pytest.raises(ValidationNotReadyError) as exc_info:
            await service.start_research(framework.id)

        assert exc_info.value.context["missing_tasks"] == [t.title for t in framework.tasks]
        assert await service.store.get_job(framework.id) is None
        assert sum((await service.queue.counts()).values()) == 0

    async def test_in_progress_rejected(
        self, service: ValidationService, framework: ValidationFramework
    ) -> None:
        await answer_all(service, framework)
        started = await service.start_research(framework.id)

        with pytest.raises(ResearchInProgressError):
            await service.start_research(framework.id)

        job = await service.store.get_job(framework.id)
        assert job is not None and job.id == started.job_id
        assert sum((await service.queue.counts()).values()) == 1

    async def test_concurrent_starts_accept_one(
        self, service: ValidationService, framework: ValidationFramework
    ) -> None:
        await answer_all(service, framework)

        results = await asyncio.gather(
            service.start_research(framework.id),
            service.start_research(framework.id),
            return_exceptions=True,
        )

        assert len([r for r in results if isinstance(r, ResearchInProgressError)]) == 1
        assert sum((await service.queue.counts()).values()) == 1

    async def test_missing_framework(self, service: ValidationService) -> None:
        with pytest.raises(NotFoundError):
            await service.start_research("fw_missing")

    async def test_enqueue_failure_leaves_framework_restartable(
        self,
        service: ValidationService,
        framework: ValidationFramework,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        await answer_all(service, framework)

        async def unavailable(*args: object, **kwargs: object) -> None:
            raise QueueError("Queue database is unavailable")

        with monkeypatch.context() as patched:
            patched.setattr(service.queue, "enqueue_research_job", unavailable)
            with pytest.raises(QueueError):
                await service.start_research(framework.id)

        status = await service.get_research_status(framework.id)
        assert status.framework.status is FrameworkStatus.FAILED
        assert status.job is not None
        assert status.job.status is JobStatus.FAILED
        assert status.job.error == "Queue database is unavailable"
        assert sum((await service.queue.counts()).values()) == 0

        started = await service.start_research(framework.id)

        assert started.job_id == status.job.id
        assert (await service.queue.get_job(started.queue_job_id)).state is QueueState.WAITING
        restarted = await service.get_framework(framework.id)
        assert restarted.status is FrameworkStatus.IN_PROGRESS


class TestResearchLifecycle:
    """End-to-end runs through the queue and worker."""

    async def test_full_run(
        self, service: ValidationService, framework: ValidationFramework
    ) -> None:
        await answer_all(service, framework)
        await service.start_research(framework.id)

        await run_next(service)

        status = await service.get_research_status(framework.id)
        assert status.framework.status is FrameworkStatus.COMPLETED
        assert status.framework.completed_at is not None
        assert status.job is not None
        assert status.job.status is JobStatus.COMPLETED
        assert status.job.progress == 100
        assert status.report is not None
        assert status.report.summary_score == 7

        payload = status.to_dict()
        assert payload["status"] == "COMPLETED"
        assert payload["job"]["currentStep"] == "Complete"
        assert payload["report"]["summaryVerdict"] == "MODERATE"
        assert payload["report"]["sourcesCount"] == 4

        entry = await service.queue.get_job(f"research-{framework.id}")
        assert entry.state is QueueState.COMPLETED

    async def test_completed_rejected(
        self, service: ValidationService, framework: ValidationFramework
    ) -> None:
        await answer_all(service, framework)
        await service.start_research(framework.id)
        await run_next(service)

        with pytest.raises(ResearchCompletedError):
            await service.start_research(framework.id)

    async def test_restart_after_failure(
        self, service: ValidationService, framework: ValidationFramework
    ) -> None:
        """A failed framework restarts on the same job record."""
        await answer_all(service, framework)
        first = await service.start_research(framework.id)
        await run_next(service, FakeResearchClient(results=[LLMError("Gemini API error: down")]))

        failed = await service.get_research_status(framework.id)
        assert failed.framework.status is FrameworkStatus.FAILED
        assert failed.job is not None
        assert failed.job.error == "Gemini API error: down"

        # Exhaust the queue's retries so the entry is finished
        entry = await service.queue.get_job(first.queue_job_id)
        while entry.state is QueueState.DELAYED:
            job = await service.queue.claim_next("test-worker", now=entry.run_at)
            assert job is not None
            await service.queue.fail(job.id, "Gemini API error: down", now=entry.run_at)
            entry = await service.queue.get_job(first.queue_job_id)
        assert entry.state is QueueState.FAILED

        second = await service.start_research(framework.id)

        assert second.job_id == first.job_id
        restarted = await service.get_research_status(framework.id)
        assert restarted.framework.status is FrameworkStatus.IN_PROGRESS
        assert restarted.job is not None
        assert restarted.job.status is JobStatus.QUEUED
        assert restarted.job.progress == 0
        assert restarted.job.error is None
        assert (await service.queue.get_job(second.queue_job_id)).state is QueueState.WAITING

        await run_next(service)

        done = await service.get_research_status(framework.id)
        assert done.framework.status is FrameworkStatus.COMPLETED
        assert done.report is not None
