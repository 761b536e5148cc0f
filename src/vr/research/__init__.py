"""Research pipeline: prompts, synthesis schema, source merging, orchestration."""

from vr.research.orchestrator import ProgressCallback, ProgressEvent, ResearchOrchestrator
from vr.research.prompts import ResearchStage
from vr.research.schemas import ResearchSynthesis, SectionAnalysis, fallback_synthesis
from vr.research.sources import merge_sources, normalize_url

__all__ = [
    "ProgressCallback",
    "ProgressEvent",
    "ResearchOrchestrator",
    "ResearchStage",
    "ResearchSynthesis",
    "SectionAnalysis",
    "fallback_synthesis",
    "merge_sources",
    "normalize_url",
]
