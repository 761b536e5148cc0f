"""Research model clients."""

from vr.llm.base import (
    AuthenticationError,
    GroundedResearch,
    LLMError,
    ModelNotFoundError,
    RateLimitError,
    ResearchClient,
    StructuredOutputError,
)
from vr.llm.gemini_client import GeminiResearchClient

__all__ = [
    "AuthenticationError",
    "GeminiResearchClient",
    "GroundedResearch",
    "LLMError",
    "ModelNotFoundError",
    "RateLimitError",
    "ResearchClient",
    "StructuredOutputError",
]
