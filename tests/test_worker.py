"""
Tests for the research worker.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import pytest

from conftest import FakeResearchClient
from vr.config import Settings
from vr.exceptions import NotFoundError, ResearchTimeoutError, StateError
from vr.llm.base import GroundedResearch, LLMError
from vr.queue.job_queue import JobOptions, QueueJob, ResearchQueue
from vr.queue.worker import ResearchWorker, error_message
from vr.research.orchestrator import ResearchOrchestrator
from vr.store.validation_store import ValidationStore
from vr.types import (
    FrameworkStatus,
    JobStatus,
    QueueState,
    ResearchJobData,
    ValidationFramework,
)


async def enqueue(
    store: ValidationStore,
    queue: ResearchQueue,
    framework: ValidationFramework,
    max_duration: float | None = None,
) -> str:
    """Put a framework in the state the validation service leaves it in."""
    await store.create_or_reset_job(framework.id)
    await store.update_framework_status(framework.id, FrameworkStatus.IN_PROGRESS)
    result = await queue.enqueue_research_job(
        ResearchJobData(
            framework_id=framework.id,
            project_description="An idea",
            max_duration_seconds=max_duration,
        )
    )
    return result.job_id


async def claim(queue: ResearchQueue) -> QueueJob:
    job = await queue.claim_next("test-worker")
    assert job is not None
    return job


async def wait_for_state(
    queue: ResearchQueue, job_id: str, state: QueueState, timeout: float = 5.0
) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while (await queue.get_job(job_id)).state is not state:
        if loop.time() > deadline:
            raise AssertionError(f"{job_id} never reached {state.value}")
        await asyncio.sleep(0.02)


def make_worker(
    queue: ResearchQueue,
    store: ValidationStore,
    client: Any,
    **kwargs: Any,
) -> ResearchWorker:
    kwargs.setdefault("poll_interval", 0.02)
    return ResearchWorker(queue, store, ResearchOrchestrator(client), **kwargs)


class TestProcessJob:
    """Tests for the per-job state machine."""

    async def test_success_stores_report_and_completes(
        self,
        store: ValidationStore,
        queue: ResearchQueue,
        answered_framework: ValidationFramework,
        fake_client: FakeResearchClient,
    ) -> None:
        await enqueue(store, queue, answered_framework)
        job = await claim(queue)

        report = await make_worker(queue, store, fake_client).process_job(job)

        stored_job = await store.get_job(answered_framework.id)
        framework = await store.get_framework(answered_framework.id)
        stored_report = await store.get_report(answered_framework.id)
        assert stored_job is not None and framework is not None and stored_report is not None
        assert stored_job.status is JobStatus.COMPLETED
        assert stored_job.progress == 100
        assert stored_job.current_step == "Complete"
        assert stored_job.queue_job_id == job.id
        assert stored_job.started_at is not None
        assert stored_job.completed_at is not None
        assert framework.status is FrameworkStatus.COMPLETED
        assert stored_report.id == report.id
        assert stored_report.sources_count == 4

    async def test_progress_written_to_store_before_queue(
        self,
        store: ValidationStore,
        queue: ResearchQueue,
        answered_framework: ValidationFramework,
        fake_client: FakeResearchClient,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        await enqueue(store, queue, answered_framework)
        job = await claim(queue)
        calls: list[tuple[str, int]] = []

        store_progress = store.update_job_progress
        queue_progress = queue.update_progress

        async def record_store(framework_id: str, progress: int, step: str) -> bool:
            calls.append(("store", progress))
            return await store_progress(framework_id, progress, step)

        async def record_queue(job_id: str, progress: int) -> None:
            calls.append(("queue", progress))
            await queue_progress(job_id, progress)

        monkeypatch.setattr(store, "update_job_progress", record_store)
        monkeypatch.setattr(queue, "update_progress", record_queue)

        await make_worker(queue, store, fake_client).process_job(job)

        checkpoints = [10, 30, 35, 60, 65, 80, 85, 100]
        assert calls == [
            entry for p in checkpoints for entry in (("store", p), ("queue", p))
        ]
        assert (await queue.get_job(job.id)).progress == 100

    async def test_stage_failure_marks_failed_without_report(
        self,
        store: ValidationStore,
        queue: ResearchQueue,
        answered_framework: ValidationFramework,
    ) -> None:
        client = FakeResearchClient(results=[LLMError("Gemini API error: quota")])
        await enqueue(store, queue, answered_framework)
        job = await claim(queue)

        with pytest.raises(LLMError):
            await make_worker(queue, store, client).process_job(job)

        stored_job = await store.get_job(answered_framework.id)
        framework = await store.get_framework(answered_framework.id)
        assert stored_job is not None and framework is not None
        assert stored_job.status is JobStatus.FAILED
        assert stored_job.error == "Gemini API error: quota"
        assert stored_job.completed_at is not None
        assert framework.status is FrameworkStatus.FAILED
        assert await store.get_report(answered_framework.id) is None

    async def test_timeout_marks_failed_and_discards_late_result(
        self,
        store: ValidationStore,
        queue: ResearchQueue,
        answered_framework: ValidationFramework,
    ) -> None:
        client = FakeResearchClient(delay=0.2)
        await enqueue(store, queue, answered_framework, max_duration=0.1)
        job = await claim(queue)

        worker = make_worker(queue, store, client)
        with pytest.raises(ResearchTimeoutError) as exc_info:
            await worker.process_job(job)

        assert str(exc_info.value) == "Research timed out after 100ms"
        stored_job = await store.get_job(answered_framework.id)
        assert stored_job is not None
        assert stored_job.status is JobStatus.FAILED
        assert stored_job.error == "Research timed out after 100ms"

        assert worker.abandoned == 1

        # Let the detached research finish; its progress and result are dropped
        await asyncio.sleep(1.0)
        assert len(client.structured_prompts) == 1
        assert worker.abandoned == 0

        stored_job = await store.get_job(answered_framework.id)
        framework = await store.get_framework(answered_framework.id)
        assert stored_job is not None and framework is not None
        assert stored_job.status is JobStatus.FAILED
        assert stored_job.progress == 10
        assert framework.status is FrameworkStatus.FAILED
        assert await store.get_report(answered_framework.id) is None

    async def test_default_timeout_applies(
        self,
        store: ValidationStore,
        queue: ResearchQueue,
        answered_framework: ValidationFramework,
    ) -> None:
        client = FakeResearchClient(delay=0.2)
        await enqueue(store, queue, answered_framework)
        job = await claim(queue)
        worker = make_worker(queue, store, client, default_timeout_seconds=0.05)

        with pytest.raises(ResearchTimeoutError, match="50ms"):
            await worker.process_job(job)

        await worker.stop()

    async def test_stop_cancels_timed_out_research(
        self,
        store: ValidationStore,
        queue: ResearchQueue,
        answered_framework: ValidationFramework,
    ) -> None:
        client = FakeResearchClient(delay=0.2)
        await enqueue(store, queue, answered_framework, max_duration=0.05)
        job = await claim(queue)
        worker = make_worker(queue, store, client)

        with pytest.raises(ResearchTimeoutError):
            await worker.process_job(job)
        assert worker.abandoned == 1

        await worker.stop()

        assert worker.abandoned == 0
        assert client.structured_prompts == []
        stored_job = await store.get_job(answered_framework.id)
        assert stored_job is not None
        assert stored_job.status is JobStatus.FAILED
        assert await store.get_report(answered_framework.id) is None

    async def test_missing_framework_fails(
        self, store: ValidationStore, queue: ResearchQueue, fake_client: FakeResearchClient
    ) -> None:
        await queue.enqueue_research_job(
            ResearchJobData(framework_id="fw_missing", project_description="")
        )
        job = await claim(queue)

        with pytest.raises(NotFoundError):
            await make_worker(queue, store, fake_client).process_job(job)

        assert fake_client.research_prompts == []

    async def test_retry_attempt_resets_progress(
        self,
        store: ValidationStore,
        queue: ResearchQueue,
        answered_framework: ValidationFramework,
        fake_client: FakeResearchClient,
    ) -> None:
        """A redelivered job starts its new attempt from zero."""
        await enqueue(store, queue, answered_framework)
        await store.update_job_progress(answered_framework.id, 65, "Researching market signals...")
        await store.mark_failed(answered_framework.id, "previous attempt")
        job = await claim(queue)
        recorded: list[int] = []

        worker = make_worker(queue, store, fake_client)
        store_progress = store.update_job_progress

        async def record(framework_id: str, progress: int, step: str) -> bool:
            applied = await store_progress(framework_id, progress, step)
            if applied:
                recorded.append(progress)
            return applied

        store.update_job_progress = record  # type: ignore[method-assign]
        await worker.process_job(job)

        assert recorded == [10, 30, 35, 60, 65, 80, 85, 100]
        stored_job = await store.get_job(answered_framework.id)
        assert stored_job is not None
        assert stored_job.error is None
        assert stored_job.status is JobStatus.COMPLETED


class TestRunLoop:
    """Tests for claiming and running jobs in the background."""

    async def test_processes_queued_job(
        self,
        store: ValidationStore,
        queue: ResearchQueue,
        answered_framework: ValidationFramework,
        fake_client: FakeResearchClient,
    ) -> None:
        worker = make_worker(queue, store, fake_client)
        await worker.start()
        try:
            job_id = await enqueue(store, queue, answered_framework)
            await wait_for_state(queue, job_id, QueueState.COMPLETED)
        finally:
            await worker.stop()

        stored_job = await store.get_job(answered_framework.id)
        assert stored_job is not None
        assert stored_job.status is JobStatus.COMPLETED
        assert not worker.is_running

    async def test_failure_reaches_queue(
        self,
        store: ValidationStore,
        temp_dir: Path,
        answered_framework: ValidationFramework,
    ) -> None:
        client = FakeResearchClient(results=[LLMError("Gemini API error: down")])
        async with ResearchQueue(temp_dir / "single.db", JobOptions(attempts=1)) as queue:
            worker = make_worker(queue, store, client)
            await worker.start()
            try:
                job_id = await enqueue(store, queue, answered_framework)
                await wait_for_state(queue, job_id, QueueState.FAILED)
            finally:
                await worker.stop()

            entry = await queue.get_job(job_id)

        assert entry.failed_reason == "Gemini API error: down"

    async def test_failed_attempt_is_retried(
        self,
        store: ValidationStore,
        temp_dir: Path,
        answered_framework: ValidationFramework,
    ) -> None:
        """The first attempt fails, the retry completes the job."""
        results: list[GroundedResearch | Exception] = [LLMError("Gemini API error: blip")]
        results.extend(FakeResearchClient().results)

        class FlakyClient(FakeResearchClient):
            async def research_with_grounding(self, prompt: str) -> GroundedResearch:
                self.research_prompts.append(prompt)
                result = results.pop(0)
                if isinstance(result, Exception):
                    raise result
                return result

        options = JobOptions(attempts=2, backoff_seconds=0.05)
        async with ResearchQueue(temp_dir / "retry.db", options) as queue:
            worker = make_worker(queue, store, FlakyClient())
            await worker.start()
            try:
                job_id = await enqueue(store, queue, answered_framework)
                await wait_for_state(queue, job_id, QueueState.COMPLETED)
            finally:
                await worker.stop()

            entry = await queue.get_job(job_id)

        assert entry.attempts_made == 2
        framework = await store.get_framework(answered_framework.id)
        assert framework is not None
        assert framework.status is FrameworkStatus.COMPLETED

    async def test_jobs_run_concurrently(
        self,
        store: ValidationStore,
        queue: ResearchQueue,
        answered_framework: ValidationFramework,
    ) -> None:
        in_flight = 0
        peak = 0

        class SlowClient(FakeResearchClient):
            async def research_with_grounding(self, prompt: str) -> GroundedResearch:
                nonlocal in_flight, peak
                in_flight += 1
                peak = max(peak, in_flight)
                try:
                    await asyncio.sleep(0.05)
                    return await super().research_with_grounding(prompt)
                finally:
                    in_flight -= 1

        project = await store.create_project("Second", "Another idea")
        definition = await store.get_framework_definition(answered_framework.definition_id)
        assert definition is not None
        other = await store.create_framework(project.id, definition.id, definition.task_templates)

        worker = make_worker(queue, store, SlowClient(), concurrency=2)
        first_id = await enqueue(store, queue, answered_framework)
        second_id = await enqueue(store, queue, other)
        await worker.start()
        try:
            await wait_for_state(queue, first_id, QueueState.COMPLETED)
            await wait_for_state(queue, second_id, QueueState.COMPLETED)
        finally:
            await worker.stop()

        assert peak == 2

    async def test_graceful_stop_waits_for_job(
        self,
        store: ValidationStore,
        queue: ResearchQueue,
        answered_framework: ValidationFramework,
    ) -> None:
        worker = make_worker(queue, store, FakeResearchClient(delay=0.05))
        job_id = await enqueue(store, queue, answered_framework)
        await worker.start()
        await wait_for_state(queue, job_id, QueueState.ACTIVE)

        await worker.stop(graceful=True)

        assert (await queue.get_job(job_id)).state is QueueState.COMPLETED
        assert worker.in_flight == 0

    async def test_start_recovers_stalled_jobs(
        self,
        store: ValidationStore,
        temp_dir: Path,
        answered_framework: ValidationFramework,
        fake_client: FakeResearchClient,
    ) -> None:
        options = JobOptions(lock_seconds=0.01)
        async with ResearchQueue(temp_dir / "stalled.db", options) as queue:
            job_id = await enqueue(store, queue, answered_framework)
            await queue.claim_next("crashed-worker")
            await asyncio.sleep(0.05)

            worker = make_worker(queue, store, fake_client)
            await worker.start()
            try:
                await wait_for_state(queue, job_id, QueueState.COMPLETED)
            finally:
                await worker.stop()

            entry = await queue.get_job(job_id)

        assert entry.attempts_made == 2

    def test_from_settings(
        self,
        mock_settings: Settings,
        store: ValidationStore,
        queue: ResearchQueue,
        fake_client: FakeResearchClient,
    ) -> None:
        orchestrator = ResearchOrchestrator(fake_client)

        worker = ResearchWorker.from_settings(mock_settings, queue, store, orchestrator)
        assert worker.concurrency == 2
        assert worker.default_timeout_seconds == 1800

        override = ResearchWorker.from_settings(
            mock_settings, queue, store, orchestrator, concurrency=4
        )
        assert override.concurrency == 4

    def test_concurrency_must_be_positive(
        self, fake_client: FakeResearchClient
    ) -> None:
        with pytest.raises(ValueError):
            ResearchWorker(None, None, ResearchOrchestrator(fake_client), concurrency=0)  # type: ignore[arg-type]


class TestErrorMessage:
    """Tests for the failure message recorded on jobs."""

    def test_domain_error_omits_context(self) -> None:
        error = StateError("Task has already been completed", {"task_id": "t1"})
        assert error_message(error) == "Task has already been completed"

    def test_plain_exception(self) -> None:
        assert error_message(RuntimeError("boom")) == "boom"

    def test_empty_message_uses_type(self) -> None:
        assert error_message(RuntimeError()) == "RuntimeError"
