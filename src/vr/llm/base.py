"""
Base classes and interfaces for the research model client.

This module defines:
- GroundedResearch: Free text plus the citations and queries behind it
- ResearchClient: Protocol the orchestrator depends on
- The LLM error hierarchy raised by client implementations
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, TypeVar, runtime_checkable

from pydantic import BaseModel

from vr.types import ResearchSource

SchemaT = TypeVar("SchemaT", bound=BaseModel)


@dataclass(frozen=True)
class GroundedResearch:
    """Result of a web-search grounded generation.

    Empty content and no sources is a valid result: a response without a
    usable candidate is not an error.
    """

    content: str = ""
    sources: tuple[ResearchSource, ...] = field(default_factory=tuple)
    search_queries: tuple[str, ...] = field(default_factory=tuple)
    latency_ms: int = 0


@runtime_checkable
class ResearchClient(Protocol):
    """Protocol for generative research clients.

    Implementations never retry; callers own retry and fallback policy.
    """

    async def research_with_grounding(self, prompt: str) -> GroundedResearch:
        """Generate free text with web-search grounding enabled.

        Raises:
            LLMError: If the API call fails.
        """
        ...

    async def generate_structured(self, prompt: str, schema: type[SchemaT]) -> SchemaT:
        """Generate a value that validates against ``schema``.

        Raises:
            LLMError: On API failure, unparseable output or schema violation.
        """
        ...


class LLMError(Exception):
    """Base exception for LLM errors."""

    pass


class RateLimitError(LLMError):
    """Rate limit exceeded."""

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class AuthenticationError(LLMError):
    """Authentication failed."""

    pass


class ModelNotFoundError(LLMError):
    """Model not found or not accessible."""

    pass


class StructuredOutputError(LLMError):
    """Model output was empty, not JSON, or violated the requested schema."""

    def __init__(self, message: str, raw_output: str | None = None) -> None:
        super().__init__(message)
        self.raw_output = raw_output
