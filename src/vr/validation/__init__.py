"""Framework readiness and research start."""

from vr.validation.service import ResearchStatus, StartedResearch, ValidationService

__all__ = ["ResearchStatus", "StartedResearch", "ValidationService"]
