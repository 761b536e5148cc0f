"""
Core types for the validation research service.

This module defines the data structures shared by the store, the queue,
the worker and the research orchestrator:
- Enums for framework, job and queue lifecycles and report verdicts
- Typed framework definitions (task templates, research config)
- Framework, task, job and report records as persisted by the store
- Research outputs (sources, per-stage research, full result)
- Helpers for ID generation and timestamps
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

from uuid6 import uuid7

if TYPE_CHECKING:
    from vr.research.schemas import ResearchSynthesis


def generate_id(prefix: str = "") -> str:
    """Generate a time-ordered unique ID using UUID7.

    Args:
        prefix: Optional prefix for the ID (e.g., "fw", "task", "job")

    Returns:
        A unique ID string, optionally prefixed.
    """
    uid = str(uuid7())
    return f"{prefix}_{uid}" if prefix else uid


def utc_now() -> datetime:
    """Get current UTC time with timezone info."""
    return datetime.now(timezone.utc)


class FrameworkStatus(str, Enum):
    """Lifecycle of a validation framework."""

    PENDING_INFO = "PENDING_INFO"
    READY = "READY"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class JobStatus(str, Enum):
    """Lifecycle of the durable research job record."""

    QUEUED = "QUEUED"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class Verdict(str, Enum):
    """Overall verdict of a research report."""

    STRONG = "STRONG"
    MODERATE = "MODERATE"
    WEAK = "WEAK"


class QueueState(str, Enum):
    """State of a unit of work inside the job queue."""

    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


# Report section keys in stage order, with their persisted (camelCase) names
SECTION_KEYS: tuple[str, ...] = (
    "problem_evidence",
    "competitor_analysis",
    "market_signals",
)
SECTION_JSON_KEYS: dict[str, str] = {
    "problem_evidence": "problemEvidence",
    "competitor_analysis": "competitorAnalysis",
    "market_signals": "marketSignals",
}


# =============================================================================
# Framework definitions
# =============================================================================


@dataclass(frozen=True)
class TaskTemplate:
    """A question in a framework definition's template set."""

    category: str
    title: str
    description: str
    is_required: bool = True
    priority: int = 0
    help_text: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category,
            "title": self.title,
            "description": self.description,
            "helpText": self.help_text,
            "isRequired": self.is_required,
            "priority": self.priority,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaskTemplate:
        missing = [k for k in ("category", "title", "description") if not data.get(k)]
        if missing:
            raise ValueError(f"Task template missing fields: {', '.join(missing)}")
        return cls(
            category=str(data["category"]),
            title=str(data["title"]),
            description=str(data["description"]),
            help_text=data.get("helpText"),
            is_required=bool(data.get("isRequired", True)),
            priority=int(data.get("priority", 0)),
        )


@dataclass(frozen=True)
class ResearchConfig:
    """Research parameters attached to a framework definition."""

    search_queries: tuple[str, ...] = ()
    sources_target: int = 15
    max_duration_seconds: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": 1,
            "searchQueries": list(self.search_queries),
            "sourcesTarget": self.sources_target,
            "maxDurationSeconds": self.max_duration_seconds,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ResearchConfig:
        version = data.get("version", 1)
        if version != 1:
            raise ValueError(f"Unsupported research config version: {version}")
        max_duration = data.get("maxDurationSeconds")
        return cls(
            search_queries=tuple(data.get("searchQueries", ())),
            sources_target=int(data.get("sourcesTarget", 15)),
            max_duration_seconds=float(max_duration) if max_duration is not None else None,
        )


@dataclass(frozen=True)
class FrameworkDefinition:
    """A question template set, e.g. Problem-Solution Fit."""

    id: str
    type: str
    name: str
    description: str
    task_templates: tuple[TaskTemplate, ...]
    research_config: ResearchConfig = field(default_factory=ResearchConfig)
    report_sections: tuple[str, ...] = tuple(SECTION_JSON_KEYS.values())
    is_active: bool = True


# =============================================================================
# Persisted records
# =============================================================================


@dataclass(frozen=True)
class Project:
    """A founder's startup idea."""

    id: str
    name: str
    description: str
    created_at: datetime


@dataclass(frozen=True)
class ValidationTask:
    """One question of a framework, answered by the founder.

    Immutable except for the answer/completion fields, which the store sets
    exactly once.
    """

    id: str
    framework_id: str
    category: str
    title: str
    description: str
    is_required: bool
    priority: int
    help_text: str | None = None
    is_completed: bool = False
    answer: str | None = None
    completed_at: datetime | None = None
    created_at: datetime | None = None

    @property
    def has_answer(self) -> bool:
        """Completed with a non-empty answer (the only tasks research sees)."""
        return self.is_completed and bool(self.answer)


@dataclass(frozen=True)
class ValidationFramework:
    """A framework definition instantiated for one project."""

    id: str
    project_id: str
    definition_id: str
    status: FrameworkStatus
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    tasks: tuple[ValidationTask, ...] = ()


@dataclass(frozen=True)
class ResearchJob:
    """Durable record of one research run for a framework."""

    id: str
    framework_id: str
    status: JobStatus
    progress: int = 0
    current_step: str | None = None
    error: str | None = None
    queue_job_id: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class ReadinessCheck:
    """Whether every required task of a framework has been answered."""

    is_ready: bool
    completed_required_tasks: int
    total_required_tasks: int
    missing_tasks: tuple[str, ...] = ()


# =============================================================================
# Research outputs
# =============================================================================


@dataclass(frozen=True)
class ResearchSource:
    """A citation returned by web-search grounding."""

    title: str
    url: str

    def to_dict(self) -> dict[str, str]:
        return {"title": self.title, "url": self.url}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ResearchSource:
        return cls(title=data["title"], url=data["url"])


@dataclass(frozen=True)
class SectionResearch:
    """Free-text output of one grounded research stage."""

    content: str
    sources: tuple[ResearchSource, ...] = ()
    search_queries: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "sources": [s.to_dict() for s in self.sources],
            "searchQueries": list(self.search_queries),
        }


@dataclass(frozen=True)
class ResearchResult:
    """Everything a research run produced."""

    problem_evidence: SectionResearch
    competitor_analysis: SectionResearch
    market_signals: SectionResearch
    synthesis: ResearchSynthesis
    all_sources: tuple[ResearchSource, ...]

    def section(self, key: str) -> SectionResearch:
        if key not in SECTION_KEYS:
            raise KeyError(key)
        return getattr(self, key)


@dataclass(frozen=True)
class ResearchJobData:
    """Payload of a queued research job."""

    framework_id: str
    project_description: str
    max_duration_seconds: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "frameworkId": self.framework_id,
            "projectDescription": self.project_description,
            "maxDurationSeconds": self.max_duration_seconds,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ResearchJobData:
        max_duration = data.get("maxDurationSeconds")
        return cls(
            framework_id=data["frameworkId"],
            project_description=data.get("projectDescription", ""),
            max_duration_seconds=float(max_duration) if max_duration is not None else None,
        )


# =============================================================================
# Report
# =============================================================================


@dataclass(frozen=True)
class ReportSection:
    """Synthesis scores for one stage joined with that stage's research."""

    score: int
    key_findings: tuple[str, ...]
    concerns: tuple[str, ...]
    content: str
    sources: tuple[ResearchSource, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "score": self.score,
            "keyFindings": list(self.key_findings),
            "concerns": list(self.concerns),
            "content": self.content,
            "sources": [s.to_dict() for s in self.sources],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReportSection:
        return cls(
            score=int(data["score"]),
            key_findings=tuple(data.get("keyFindings", ())),
            concerns=tuple(data.get("concerns", ())),
            content=data.get("content", ""),
            sources=tuple(ResearchSource.from_dict(s) for s in data.get("sources", ())),
        )


@dataclass(frozen=True)
class ResearchReport:
    """The scored report persisted for a framework (one per framework)."""

    framework_id: str
    summary_score: int
    summary_verdict: Verdict
    summary_points: tuple[str, ...]
    sections: dict[str, ReportSection]
    recommendations: tuple[str, ...]
    sources_count: int
    raw_data: dict[str, Any]
    id: str = field(default_factory=lambda: generate_id("rpt"))
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_result(cls, framework_id: str, result: ResearchResult) -> ResearchReport:
        """Join the synthesis with the per-stage research it scored."""
        synthesis = result.synthesis
        sections: dict[str, ReportSection] = {}
        for key in SECTION_KEYS:
            analysis = getattr(synthesis.sections, key)
            research = result.section(key)
            sections[key] = ReportSection(
                score=analysis.score,
                key_findings=tuple(analysis.key_findings),
                concerns=tuple(analysis.concerns),
                content=research.content,
                sources=research.sources,
            )

        raw_data: dict[str, Any] = {
            SECTION_JSON_KEYS[key]: result.section(key).to_dict() for key in SECTION_KEYS
        }
        raw_data["allSources"] = [s.to_dict() for s in result.all_sources]

        return cls(
            framework_id=framework_id,
            summary_score=synthesis.summary_score,
            summary_verdict=Verdict(synthesis.summary_verdict),
            summary_points=tuple(synthesis.summary_points),
            sections=sections,
            recommendations=tuple(synthesis.recommendations),
            sources_count=len(result.all_sources),
            raw_data=raw_data,
        )

    def sections_to_dict(self) -> dict[str, Any]:
        return {
            SECTION_JSON_KEYS[key]: section.to_dict()
            for key, section in self.sections.items()
        }
