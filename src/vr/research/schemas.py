"""
Structured output contract for report synthesis.

The synthesis step asks the model for JSON matching ResearchSynthesis. Field
aliases are the camelCase names used in the prompt and the persisted report;
python names are accepted too so values can be built in code.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from vr.types import Verdict


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class SectionAnalysis(_CamelModel):
    """Scores and findings for one research section."""

    score: int = Field(..., ge=1, le=10, description="Score from 1-10 based on evidence quality")
    key_findings: list[str] = Field(
        ..., alias="keyFindings", description="Key findings from the research"
    )
    concerns: list[str] = Field(..., description="Concerns or red flags identified")


class SynthesisSections(_CamelModel):
    problem_evidence: SectionAnalysis = Field(
        ..., alias="problemEvidence", description="Analysis of problem evidence"
    )
    competitor_analysis: SectionAnalysis = Field(
        ..., alias="competitorAnalysis", description="Analysis of competitive landscape"
    )
    market_signals: SectionAnalysis = Field(
        ..., alias="marketSignals", description="Analysis of market timing and signals"
    )


class ResearchSynthesis(_CamelModel):
    """Final scored assessment combining all three research stages."""

    summary_score: int = Field(
        ..., alias="summaryScore", ge=1, le=10, description="Overall score from 1-10"
    )
    summary_verdict: Verdict = Field(..., alias="summaryVerdict", description="Overall verdict")
    summary_points: list[str] = Field(
        ..., alias="summaryPoints", min_length=3, max_length=5, description="3-5 key summary points"
    )
    sections: SynthesisSections
    recommendations: list[str] = Field(
        ..., min_length=3, max_length=5, description="3-5 actionable recommendations"
    )


def fallback_synthesis() -> ResearchSynthesis:
    """Neutral synthesis stored when the structured synthesis call fails."""
    section = SectionAnalysis(
        score=5,
        key_findings=["See raw research data"],
        concerns=["Synthesis generation failed"],
    )
    return ResearchSynthesis(
        summary_score=5,
        summary_verdict=Verdict.MODERATE,
        summary_points=[
            "Research completed but synthesis failed to generate properly",
            "Please review the raw research data for detailed findings",
            "Consider re-running the analysis",
        ],
        sections=SynthesisSections(
            problem_evidence=section,
            competitor_analysis=section.model_copy(deep=True),
            market_signals=section.model_copy(deep=True),
        ),
        recommendations=[
            "Review the raw research data manually",
            "Re-run the synthesis if needed",
            "Check the research service logs for errors",
        ],
    )
