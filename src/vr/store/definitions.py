"""Built-in framework definitions and the seeding routine that installs them."""

from __future__ import annotations

from vr.logging import get_logger
from vr.store.validation_store import ValidationStore
from vr.types import FrameworkDefinition, ResearchConfig, TaskTemplate

logger = get_logger(__name__)

PROBLEM_SOLUTION_FIT = "PROBLEM_SOLUTION_FIT"

PROBLEM_SOLUTION_FIT_DEFINITION = FrameworkDefinition(
    id="def_problem_solution_fit",
    type=PROBLEM_SOLUTION_FIT,
    name="Problem-Solution Fit",
    description=(
        "Validates that your solution addresses a real, painful problem "
        "for a specific customer segment"
    ),
    task_templates=(
        TaskTemplate(
            category="TARGET_CUSTOMER",
            title="Define target customer",
            description=(
                "Who specifically will use this? Describe their role, industry, "
                "company size, or demographics."
            ),
            help_text=(
                "Be specific. 'Startups' is too broad. 'Solo founders with technical "
                "backgrounds building B2B SaaS' is better."
            ),
            priority=1,
        ),
        TaskTemplate(
            category="PROBLEM_STATEMENT",
            title="Describe the core problem",
            description="What specific pain point are they experiencing? What triggers this pain?",
            help_text="Focus on the problem, not your solution. Describe what makes this painful.",
            priority=2,
        ),
        TaskTemplate(
            category="CURRENT_WORKAROUNDS",
            title="Explain current workarounds",
            description=(
                "How are they solving this problem today? What tools, processes, "
                "or manual work do they use?"
            ),
            help_text="Understanding existing solutions helps identify gaps and switching costs.",
            priority=3,
        ),
        TaskTemplate(
            category="PAIN_FREQUENCY",
            title="Rate problem frequency",
            description=(
                "How often does this problem occur? "
                "(hourly, daily, weekly, monthly, quarterly)"
            ),
            help_text="Higher frequency problems are generally better opportunities.",
            priority=4,
        ),
        TaskTemplate(
            category="FINANCIAL_IMPACT",
            title="Estimate financial impact",
            description=(
                "What's the cost of this problem going unsolved? "
                "(time wasted, money lost, opportunities missed)"
            ),
            help_text=(
                "Quantify if possible. '$5k/month in lost deals' is more compelling "
                "than 'costs them money'."
            ),
            priority=5,
        ),
    ),
    research_config=ResearchConfig(
        search_queries=("problem_evidence", "competitor_analysis", "market_signals"),
        sources_target=15,
        max_duration_seconds=7200,
    ),
    report_sections=("problemEvidence", "competitorAnalysis", "marketSignals", "recommendations"),
)

BUILTIN_DEFINITIONS: tuple[FrameworkDefinition, ...] = (PROBLEM_SOLUTION_FIT_DEFINITION,)


async def seed_definitions(store: ValidationStore) -> list[FrameworkDefinition]:
    """Install or refresh the built-in definitions. Idempotent."""
    seeded = []
    for definition in BUILTIN_DEFINITIONS:
        await store.upsert_framework_definition(definition)
        stored = await store.get_framework_definition_by_type(definition.type)
        if stored is not None:
            seeded.append(stored)
        logger.info("Seeded framework definition", type=definition.type, name=definition.name)
    return seeded
