"""
Research Orchestrator.

Runs the validation research pipeline for one framework:
1. Problem evidence   - grounded search (progress 10 -> 30)
2. Competitor analysis - grounded search (progress 35 -> 60)
3. Market signals     - grounded search (progress 65 -> 80)
4. Synthesis          - structured scoring (progress 85 -> 100)

Stages run one after another. A failing research stage aborts the run; a
failing synthesis is replaced with a neutral fallback so the run still yields
a storable report.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, Sequence

from vr.llm.base import ResearchClient
from vr.logging import get_logger, log_context
from vr.research.prompts import (
    ResearchStage,
    answered_tasks,
    build_stage_prompt,
    build_synthesis_prompt,
)
from vr.research.schemas import ResearchSynthesis, fallback_synthesis
from vr.research.sources import merge_sources
from vr.types import ResearchResult, SectionResearch, ValidationTask

logger = get_logger(__name__)

ProgressCallback = Callable[[str, int], Awaitable[None]]


@dataclass(frozen=True)
class ProgressEvent:
    """A progress checkpoint: step label and percentage."""

    step: str
    progress: int


@dataclass(frozen=True)
class StageCheckpoints:
    """Progress emitted before and after a pipeline stage."""

    start: ProgressEvent
    end: ProgressEvent


STAGE_CHECKPOINTS: dict[ResearchStage, StageCheckpoints] = {
    ResearchStage.PROBLEM_EVIDENCE: StageCheckpoints(
        ProgressEvent("Researching problem evidence...", 10),
        ProgressEvent("Problem evidence research complete", 30),
    ),
    ResearchStage.COMPETITOR_ANALYSIS: StageCheckpoints(
        ProgressEvent("Analyzing competitors...", 35),
        ProgressEvent("Competitor analysis complete", 60),
    ),
    ResearchStage.MARKET_SIGNALS: StageCheckpoints(
        ProgressEvent("Researching market signals...", 65),
        ProgressEvent("Market signals research complete", 80),
    ),
}

SYNTHESIS_CHECKPOINTS = StageCheckpoints(
    ProgressEvent("Synthesizing final report...", 85),
    ProgressEvent("Report synthesis complete", 100),
)


class ResearchOrchestrator:
    """Runs the four-stage research pipeline against a ResearchClient."""

    def __init__(self, client: ResearchClient) -> None:
        self.client = client

    async def conduct_research(
        self,
        project_description: str,
        tasks: Sequence[ValidationTask],
        on_progress: ProgressCallback | None = None,
    ) -> ResearchResult:
        """Research an idea and synthesize a scored result.

        Args:
            project_description: The founder's idea.
            tasks: Framework tasks in priority order; unanswered ones are ignored.
            on_progress: Awaited at every checkpoint with (step, progress).

        Returns:
            Stage outputs, synthesis and deduplicated sources.

        Raises:
            LLMError: If any grounded research stage fails.
        """
        answered = answered_tasks(tasks)
        logger.info(
            "Starting research",
            answered_tasks=len(answered),
            total_tasks=len(tasks),
        )

        stage_results: dict[ResearchStage, SectionResearch] = {}
        for stage in ResearchStage:
            checkpoints = STAGE_CHECKPOINTS[stage]
            await self._emit(on_progress, checkpoints.start)
            stage_results[stage] = await self._run_stage(stage, project_description, answered)
            await self._emit(on_progress, checkpoints.end)

        problem = stage_results[ResearchStage.PROBLEM_EVIDENCE]
        competitor = stage_results[ResearchStage.COMPETITOR_ANALYSIS]
        market = stage_results[ResearchStage.MARKET_SIGNALS]

        await self._emit(on_progress, SYNTHESIS_CHECKPOINTS.start)
        synthesis = await self.synthesize(project_description, problem, competitor, market)
        await self._emit(on_progress, SYNTHESIS_CHECKPOINTS.end)

        all_sources = merge_sources(problem.sources, competitor.sources, market.sources)

        logger.info(
            "Research complete",
            summary_score=synthesis.summary_score,
            verdict=synthesis.summary_verdict.value,
            sources=len(all_sources),
        )

        return ResearchResult(
            problem_evidence=problem,
            competitor_analysis=competitor,
            market_signals=market,
            synthesis=synthesis,
            all_sources=tuple(all_sources),
        )

    async def _run_stage(
        self,
        stage: ResearchStage,
        project_description: str,
        tasks: Sequence[ValidationTask],
    ) -> SectionResearch:
        with log_context(stage=stage.value):
            prompt = build_stage_prompt(stage, project_description, tasks)
            result = await self.client.research_with_grounding(prompt)
            logger.info(
                "Stage complete",
                sources=len(result.sources),
                search_queries=len(result.search_queries),
            )
            return SectionResearch(
                content=result.content,
                sources=tuple(result.sources),
                search_queries=tuple(result.search_queries),
            )

    async def synthesize(
        self,
        project_description: str,
        problem: SectionResearch,
        competitor: SectionResearch,
        market: SectionResearch,
    ) -> ResearchSynthesis:
        """Score the research; any failure yields the fallback synthesis."""
        prompt = build_synthesis_prompt(
            project_description,
            problem.content,
            competitor.content,
            market.content,
        )
        with log_context(stage="synthesis"):
            try:
                return await self.client.generate_structured(prompt, ResearchSynthesis)
            except Exception as e:
                logger.error(
                    "Synthesis failed, using fallback",
                    error=str(e),
                    error_type=type(e).__name__,
                )
                return fallback_synthesis()

    @staticmethod
    async def _emit(on_progress: ProgressCallback | None, event: ProgressEvent) -> None:
        if on_progress is not None:
            await on_progress(event.step, event.progress)
