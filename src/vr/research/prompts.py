"""
Prompt templates for the research stages and the final synthesis.

All builders are pure: the same idea description and tasks always render the
same prompt. Only tasks that are completed with a non-empty answer reach the
model; the rest are skipped, keeping the caller's (priority) order.
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable

from vr.types import ValidationTask


class ResearchStage(str, Enum):
    """The three grounded research stages, in execution order."""

    PROBLEM_EVIDENCE = "problem_evidence"
    COMPETITOR_ANALYSIS = "competitor_analysis"
    MARKET_SIGNALS = "market_signals"


PROBLEM_EVIDENCE_PROMPT = """You are a startup validation researcher. Your task is to find evidence that validates (or invalidates) whether a real problem exists for this startup idea.

## Startup Idea
{description}

## Information Gathered from Founder
{task_context}

## Research Objectives
Search for:
1. **Forum discussions** - Reddit posts, Hacker News threads, Stack Overflow questions or industry forums where people discuss this problem
2. **Product reviews** - Reviews of existing solutions that mention frustrations, limitations or unmet needs
3. **Social media** - Posts on X or LinkedIn where professionals complain about or discuss this problem
4. **Community discussions** - Slack communities, Discord servers and groups related to the target audience

## What to Look For
- Evidence that people are actively experiencing this problem
- Intensity of pain (frustrated, or mildly annoyed?)
- Frequency of discussion (common topic or rare?)
- Willingness to pay signals (have people mentioned paying for solutions?)
- Workaround attempts (how are people solving this today?)

## Output Format
1. **Evidence Summary**: Brief overview of what you found
2. **Key Findings**: 3-5 most important pieces of evidence with sources
3. **Pain Intensity Assessment**: Low/Medium/High with justification
4. **Frequency Assessment**: Rare/Occasional/Common/Widespread
5. **Willingness to Pay Signals**: None/Weak/Moderate/Strong
6. **Concerns or Red Flags**: Any reasons to be cautious

Be specific and cite your sources. Include URLs where possible."""


COMPETITOR_ANALYSIS_PROMPT = """You are a startup validation researcher. Your task is to analyze the competitive landscape for this startup idea.

## Startup Idea
{description}

## Information Gathered from Founder
{task_context}

## Research Objectives
Search for:
1. **Direct competitors** - Products or services that solve the exact same problem
2. **Indirect competitors** - Products that solve adjacent problems or are used as workarounds
3. **Failed attempts** - Startups that tried to solve this problem and failed (and why)
4. **Market leaders** - Who dominates this space and where they are weak

## For Each Competitor, Find
- Company name and website
- What they do (one sentence)
- Pricing model
- Customer reviews and ratings
- Key strengths
- Key weaknesses or gaps

## Output Format
1. **Market Overview**: Brief summary of the competitive landscape
2. **Direct Competitors**: List with details (max 5-7)
3. **Indirect Competitors/Workarounds**: What people use today
4. **Market Gaps**: What is missing in current solutions
5. **Differentiation Opportunities**: Where this startup could stand out
6. **Competitive Moat Assessment**: How defensible this market is

Include pricing information and review ratings where available. Be honest about the level of competition."""


MARKET_SIGNALS_PROMPT = """You are a startup validation researcher. Your task is to analyze market signals and timing for this startup idea.

## Startup Idea
{description}

## Information Gathered from Founder
{task_context}

## Research Objectives
Search for:
1. **Search trends** - Is interest in this problem or solution growing, stable or declining?
2. **Funding activity** - Have investors recently funded companies in this space?
3. **News coverage** - Recent articles about this problem or market
4. **Industry reports** - Market size estimates and growth projections
5. **Technology enablers** - New technologies that make this solution more viable now

## What to Look For
- Trend data for relevant keywords
- Funding rounds in the space in the last 12-24 months
- Acquisitions that signal market interest
- Regulatory changes that create opportunities
- Technology shifts that enable new solutions

## Output Format
1. **Trend Analysis**: Is the market growing? Evidence?
2. **Funding Signals**: Recent investments in the space
3. **Timing Assessment**: Why now? What has changed?
4. **Market Size Indicators**: Any data on market size
5. **Technology Tailwinds**: Tech trends that support this idea
6. **Risk Factors**: What could derail this market

Be data-driven. Include specific numbers, dates and sources where possible."""


SYNTHESIS_PROMPT = """You are a startup validation analyst. Based on the research conducted, synthesize a final Problem-Solution Fit assessment report.

## Original Idea
{description}

## Research Findings

### Problem Evidence
{problem_evidence}

### Competitor Analysis
{competitor_analysis}

### Market Signals
{market_signals}

## Your Task
Synthesize all the research into a final assessment with:

1. **Overall Score (1-10)**: Based on all evidence
   - 1-3: Weak - Problem not validated, saturated market, or poor timing
   - 4-5: Below Average - Some concerns that need addressing
   - 6-7: Moderate - Promising but with notable risks
   - 8-9: Strong - Well-validated problem with good market opportunity
   - 10: Exceptional - Clear problem, gap in market, perfect timing

2. **Verdict**: STRONG, MODERATE, or WEAK

3. **Summary Points**: 3-5 key bullet points (both positive and negative)

4. **Detailed Analysis by Section**:
   - problemEvidence: {{ score (1-10), keyFindings, concerns }}
   - competitorAnalysis: {{ score (1-10), keyFindings, concerns }}
   - marketSignals: {{ score (1-10), keyFindings, concerns }}

5. **Recommendations**: 3-5 actionable next steps for the founder

## Response Format
Respond with a JSON object:
{{
  "summaryScore": 7,
  "summaryVerdict": "MODERATE",
  "summaryPoints": ["Point 1", "Point 2", "Point 3"],
  "sections": {{
    "problemEvidence": {{"score": 8, "keyFindings": ["Finding 1"], "concerns": ["Concern 1"]}},
    "competitorAnalysis": {{"score": 6, "keyFindings": ["Finding 1"], "concerns": ["Concern 1"]}},
    "marketSignals": {{"score": 7, "keyFindings": ["Finding 1"], "concerns": ["Concern 1"]}}
  }},
  "recommendations": ["Recommendation 1", "Recommendation 2", "Recommendation 3"]
}}

Be balanced and honest. A good report identifies both opportunities and risks."""


STAGE_PROMPTS: dict[ResearchStage, str] = {
    ResearchStage.PROBLEM_EVIDENCE: PROBLEM_EVIDENCE_PROMPT,
    ResearchStage.COMPETITOR_ANALYSIS: COMPETITOR_ANALYSIS_PROMPT,
    ResearchStage.MARKET_SIGNALS: MARKET_SIGNALS_PROMPT,
}


def answered_tasks(tasks: Iterable[ValidationTask]) -> list[ValidationTask]:
    """Tasks that are completed with a non-empty answer, order preserved."""
    return [task for task in tasks if task.has_answer]


def build_task_context(tasks: Iterable[ValidationTask]) -> str:
    """Render the founder's answers as markdown blocks."""
    return "\n\n".join(f"## {task.title}\n{task.answer}" for task in answered_tasks(tasks))


def build_stage_prompt(
    stage: ResearchStage,
    description: str,
    tasks: Iterable[ValidationTask],
) -> str:
    return STAGE_PROMPTS[stage].format(
        description=description,
        task_context=build_task_context(tasks),
    )


def build_problem_evidence_prompt(description: str, tasks: Iterable[ValidationTask]) -> str:
    return build_stage_prompt(ResearchStage.PROBLEM_EVIDENCE, description, tasks)


def build_competitor_analysis_prompt(description: str, tasks: Iterable[ValidationTask]) -> str:
    return build_stage_prompt(ResearchStage.COMPETITOR_ANALYSIS, description, tasks)


def build_market_signals_prompt(description: str, tasks: Iterable[ValidationTask]) -> str:
    return build_stage_prompt(ResearchStage.MARKET_SIGNALS, description, tasks)


def build_synthesis_prompt(
    description: str,
    problem_evidence: str,
    competitor_analysis: str,
    market_signals: str,
) -> str:
    """Render the synthesis prompt from the three stage outputs."""
    return SYNTHESIS_PROMPT.format(
        description=description,
        problem_evidence=problem_evidence,
        competitor_analysis=competitor_analysis,
        market_signals=market_signals,
    )
