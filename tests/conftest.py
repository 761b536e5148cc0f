"""
Pytest configuration and fixtures for validation research tests.
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import Any, AsyncGenerator, Generator
from unittest.mock import patch

import pytest

from vr.config import Settings, clear_settings_cache
from vr.llm.base import GroundedResearch, SchemaT
from vr.queue.job_queue import JobOptions, ResearchQueue
from vr.research.schemas import ResearchSynthesis
from vr.store.definitions import PROBLEM_SOLUTION_FIT, seed_definitions
from vr.store.validation_store import ValidationStore
from vr.types import ResearchSource, ValidationFramework

IDEA = "A scheduling assistant for independent physiotherapy clinics"

ANSWERS = {
    "TARGET_CUSTOMER": "Owners of 1-3 location physiotherapy clinics in the US",
    "PROBLEM_STATEMENT": "No-shows and late cancellations leave gaps in the schedule",
    "CURRENT_WORKAROUNDS": "Front-desk staff phone patients the day before",
    "PAIN_FREQUENCY": "Daily",
    "FINANCIAL_IMPACT": "Roughly $4k/month in lost appointments per location",
}


def synthesis_payload(**overrides: Any) -> dict[str, Any]:
    """A valid synthesis payload in the model's JSON shape."""
    payload: dict[str, Any] = {
        "summaryScore": 7,
        "summaryVerdict": "MODERATE",
        "summaryPoints": [
            "Clinics report frequent no-shows",
            "Several reminder tools exist",
            "Willingness to pay is unproven",
        ],
        "sections": {
            "problemEvidence": {
                "score": 8,
                "keyFindings": ["Forum threads describe the pain"],
                "concerns": ["Evidence skews toward large clinics"],
            },
            "competitorAnalysis": {
                "score": 6,
                "keyFindings": ["Generic reminder SaaS is common"],
                "concerns": ["Low switching costs"],
            },
            "marketSignals": {
                "score": 7,
                "keyFindings": ["Practice management spend is growing"],
                "concerns": ["Fragmented buyers"],
            },
        },
        "recommendations": [
            "Interview ten clinic owners",
            "Price against a single recovered appointment",
            "Pilot with one multi-location clinic",
        ],
    }
    payload.update(overrides)
    return payload


class FakeResearchClient:
    """Scripted ResearchClient.

    Each grounded call returns the next scripted result (or raises it, if it
    is an exception). ``delay`` makes every call sleep first.
    """

    def __init__(
        self,
        results: list[GroundedResearch | Exception] | None = None,
        synthesis: dict[str, Any] | Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self.results = list(results) if results is not None else default_stage_results()
        self.synthesis = synthesis if synthesis is not None else synthesis_payload()
        self.delay = delay
        self.research_prompts: list[str] = []
        self.structured_prompts: list[str] = []

    async def research_with_grounding(self, prompt: str) -> GroundedResearch:
        self.research_prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        result = self.results[(len(self.research_prompts) - 1) % len(self.results)]
        if isinstance(result, Exception):
            raise result
        return result

    async def generate_structured(self, prompt: str, schema: type[SchemaT]) -> SchemaT:
        self.structured_prompts.append(prompt)
        if isinstance(self.synthesis, Exception):
            raise self.synthesis
        return schema.model_validate(self.synthesis)


def default_stage_results() -> list[GroundedResearch | Exception]:
    return [
        GroundedResearch(
            content="Problem evidence findings",
            sources=(
                ResearchSource(title="Clinic forum", url="https://forum.example.com/thread/1"),
                ResearchSource(title="Survey", url="https://survey.example.com/report"),
            ),
            search_queries=("physio no-show rate",),
        ),
        GroundedResearch(
            content="Competitor findings",
            sources=(
                ResearchSource(title="Clinic forum again", url="https://FORUM.example.com/thread/1/"),
                ResearchSource(title="Competitor", url="https://competitor.example.com"),
            ),
            search_queries=("appointment reminder software",),
        ),
        GroundedResearch(
            content="Market findings",
            sources=(ResearchSource(title="Market report", url="https://market.example.com/2026"),),
            search_queries=("physiotherapy software market size",),
        ),
    ]


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test outputs."""
    return tmp_path


@pytest.fixture
def mock_env_vars(temp_dir: Path) -> Generator[dict[str, str], None, None]:
    """Provide mock environment variables for testing."""
    env_vars = {
        "GEMINI_API_KEY": "test-fake-gemini-key-1234567890",
        "DATABASE_PATH": str(temp_dir / "data" / "validation.db"),
        "QUEUE_DB_PATH": str(temp_dir / "data" / "queue.db"),
        "LOG_LEVEL": "DEBUG",
    }

    with patch.dict(os.environ, env_vars, clear=False):
        clear_settings_cache()
        yield env_vars


@pytest.fixture
def mock_settings(mock_env_vars: dict[str, str]) -> Generator[Settings, None, None]:
    """Provide a Settings instance with mock configuration."""
    from vr.config import get_settings

    settings = get_settings()
    settings.ensure_directories()
    yield settings
    clear_settings_cache()


@pytest.fixture
async def store(temp_dir: Path) -> AsyncGenerator[ValidationStore, None]:
    """An initialized validation store with the built-in definitions seeded."""
    validation_store = ValidationStore(temp_dir / "validation.db")
    await validation_store.init()
    await seed_definitions(validation_store)
    yield validation_store
    await validation_store.close()


@pytest.fixture
def job_options() -> JobOptions:
    return JobOptions(attempts=3, backoff_seconds=5.0)


@pytest.fixture
async def queue(temp_dir: Path, job_options: JobOptions) -> AsyncGenerator[ResearchQueue, None]:
    """A started research queue."""
    research_queue = ResearchQueue(temp_dir / "queue.db", job_options)
    await research_queue.start()
    yield research_queue
    await research_queue.close()


@pytest.fixture
async def framework(store: ValidationStore) -> ValidationFramework:
    """A Problem-Solution Fit framework for a fresh project, no answers yet."""
    project = await store.create_project("PhysioFill", IDEA)
    definition = await store.get_framework_definition_by_type(PROBLEM_SOLUTION_FIT)
    assert definition is not None
    return await store.create_framework(project.id, definition.id, definition.task_templates)


@pytest.fixture
async def answered_framework(
    store: ValidationStore, framework: ValidationFramework
) -> ValidationFramework:
    """The framework with every task answered."""
    for task in framework.tasks:
        await store.complete_task(task.id, ANSWERS[task.category])
    loaded = await store.get_framework(framework.id)
    assert loaded is not None
    return loaded


@pytest.fixture
def fake_client() -> FakeResearchClient:
    return FakeResearchClient()


@pytest.fixture
def synthesis() -> ResearchSynthesis:
    return ResearchSynthesis.model_validate(synthesis_payload())


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None, None, None]:
    """Automatically reset settings cache before and after each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()
