"""
Google Gemini research client.

Uses the google-genai SDK (Google AI Studio, not Vertex AI) in two modes:
- grounded generation with the Google Search tool, returning text plus the
  citations and search queries Gemini reports in its grounding metadata
- structured generation constrained to a pydantic schema

Neither call retries. Errors are classified into the LLMError hierarchy and
propagate to the caller.
"""

from __future__ import annotations

import time
from typing import Any

from google import genai
from google.genai import types
from pydantic import ValidationError

from vr.config import Settings
from vr.exceptions import ConfigurationError
from vr.llm.base import (
    AuthenticationError,
    GroundedResearch,
    LLMError,
    ModelNotFoundError,
    RateLimitError,
    SchemaT,
    StructuredOutputError,
)
from vr.logging import get_logger
from vr.types import ResearchSource

logger = get_logger(__name__)

DEFAULT_MODEL = "gemini-2.0-flash"


def extract_grounded_research(response: Any) -> GroundedResearch:
    """Pull text, web citations and search queries out of a raw response.

    Only grounding chunks with both a web URI and a title become sources.
    """
    candidates = getattr(response, "candidates", None)
    if not candidates:
        return GroundedResearch()

    candidate = candidates[0]

    content = ""
    candidate_content = getattr(candidate, "content", None)
    for part in getattr(candidate_content, "parts", None) or []:
        text = getattr(part, "text", None)
        if text:
            content += text

    sources: list[ResearchSource] = []
    search_queries: list[str] = []
    grounding = getattr(candidate, "grounding_metadata", None)
    if grounding is not None:
        for chunk in getattr(grounding, "grounding_chunks", None) or []:
            web = getattr(chunk, "web", None)
            if web is None:
                continue
            uri = getattr(web, "uri", None)
            title = getattr(web, "title", None)
            if uri and title:
                sources.append(ResearchSource(title=title, url=uri))
        search_queries.extend(getattr(grounding, "web_search_queries", None) or [])

    return GroundedResearch(
        content=content,
        sources=tuple(sources),
        search_queries=tuple(search_queries),
    )


def strip_json_fences(text: str) -> str:
    """Remove a surrounding markdown code fence, if any."""
    cleaned = text.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def classify_error(error: Exception, model: str) -> LLMError:
    """Map an SDK exception onto the LLMError hierarchy."""
    error_msg = str(error)
    lowered = error_msg.lower()

    if "429" in error_msg or "rate" in lowered or "resource_exhausted" in lowered:
        return RateLimitError(f"Gemini rate limit: {error_msg}")

    if "401" in error_msg or "403" in error_msg or "api key" in lowered:
        return AuthenticationError(f"Gemini authentication failed: {error_msg}")

    if "not found" in lowered or "invalid model" in lowered:
        return ModelNotFoundError(f"Model not found: {model}")

    return LLMError(f"Gemini API error: {error_msg}")


class GeminiResearchClient:
    """ResearchClient backed by Gemini with Google Search grounding."""

    def __init__(
        self,
        api_key: str | None = None,
        research_model: str = DEFAULT_MODEL,
        synthesis_model: str = DEFAULT_MODEL,
        max_output_tokens: int = 8192,
        client: genai.Client | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            api_key: Google AI Studio API key. If None, the SDK reads GEMINI_API_KEY.
            research_model: Model for grounded research calls.
            synthesis_model: Model for structured synthesis calls.
            max_output_tokens: Output token cap per call.
            client: Pre-built SDK client (tests inject a double here).
        """
        self._client = client or genai.Client(api_key=api_key)
        self.research_model = research_model
        self.synthesis_model = synthesis_model
        self.max_output_tokens = max_output_tokens

    @classmethod
    def from_settings(cls, settings: Settings) -> GeminiResearchClient:
        if not settings.gemini_api_key:
            raise ConfigurationError(
                "GEMINI_API_KEY must be set to run research",
                {"setting": "GEMINI_API_KEY"},
            )
        return cls(
            api_key=settings.gemini_api_key,
            research_model=settings.model_research,
            synthesis_model=settings.model_synthesis,
            max_output_tokens=settings.MAX_OUTPUT_TOKENS,
        )

    @property
    def provider(self) -> str:
        return "google"

    async def research_with_grounding(self, prompt: str) -> GroundedResearch:
        """Generate text for ``prompt`` with the Google Search tool enabled.

        Args:
            prompt: Rendered research prompt.

        Returns:
            Grounded text with its citations and search queries.

        Raises:
            LLMError: If the API call fails.
        """
        start_time = time.monotonic()

        config = types.GenerateContentConfig(
            max_output_tokens=self.max_output_tokens,
            tools=[types.Tool(google_search=types.GoogleSearch())],
        )

        try:
            response = await self._client.aio.models.generate_content(
                model=self.research_model,
                contents=prompt,
                config=config,
            )
        except Exception as e:
            error = classify_error(e, self.research_model)
            if isinstance(error, RateLimitError):
                logger.warning("Gemini rate limit hit", model=self.research_model)
            raise error from e

        latency_ms = int((time.monotonic() - start_time) * 1000)
        result = extract_grounded_research(response)

        logger.debug(
            "Grounded research call complete",
            model=self.research_model,
            latency_ms=latency_ms,
            content_length=len(result.content),
            sources=len(result.sources),
            search_queries=len(result.search_queries),
        )

        return GroundedResearch(
            content=result.content,
            sources=result.sources,
            search_queries=result.search_queries,
            latency_ms=latency_ms,
        )

    async def generate_structured(self, prompt: str, schema: type[SchemaT]) -> SchemaT:
        """Generate JSON constrained to ``schema`` and validate it.

        Args:
            prompt: Rendered synthesis prompt.
            schema: Pydantic model the output must satisfy.

        Returns:
            The validated model instance.

        Raises:
            StructuredOutputError: If the output is empty or fails validation.
            LLMError: If the API call fails.
        """
        start_time = time.monotonic()

        config = types.GenerateContentConfig(
            max_output_tokens=self.max_output_tokens,
            response_mime_type="application/json",
            response_schema=schema,
        )

        try:
            response = await self._client.aio.models.generate_content(
                model=self.synthesis_model,
                contents=prompt,
                config=config,
            )
        except Exception as e:
            raise classify_error(e, self.synthesis_model) from e

        text = extract_grounded_research(response).content
        if not text.strip():
            raise StructuredOutputError("Gemini returned no structured output")

        try:
            value = schema.model_validate_json(strip_json_fences(text))
        except ValidationError as e:
            raise StructuredOutputError(
                f"Structured output failed {schema.__name__} validation: "
                f"{e.error_count()} error(s)",
                raw_output=text,
            ) from e

        logger.debug(
            "Structured generation complete",
            model=self.synthesis_model,
            schema=schema.__name__,
            latency_ms=int((time.monotonic() - start_time) * 1000),
        )
        return value
