"""
Exception hierarchy for the validation research service.

All exceptions inherit from VRError, which carries a machine-readable code
and optional structured context for logging and for request layers that
need to map errors onto responses.
"""

from __future__ import annotations

from typing import Any


class VRError(Exception):
    """Base exception for all validation research errors.

    Attributes:
        message: Human-readable error message.
        context: Optional structured context for logging/debugging.
    """

    code = "INTERNAL_ERROR"

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx_str})"
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, context={self.context!r})"

    def to_dict(self) -> dict[str, Any]:
        """Serializable form for API responses."""
        return {"code": self.code, "message": self.message, "details": self.context}


class ConfigurationError(VRError):
    """Raised when configuration is invalid or missing (e.g. no GEMINI_API_KEY)."""

    code = "CONFIGURATION_ERROR"


class NotFoundError(VRError):
    """Raised when a referenced framework, task, project or definition is absent."""

    code = "NOT_FOUND"

    def __init__(self, resource: str, identifier: str | None = None) -> None:
        context: dict[str, Any] = {"resource": resource}
        if identifier is not None:
            context["id"] = identifier
        super().__init__(f"{resource} not found", context)


class StateError(VRError):
    """Raised when an operation is not allowed in the entity's current state."""

    code = "CONFLICT"


class ValidationNotReadyError(StateError):
    """Raised when research is requested before all required tasks are answered."""

    code = "VALIDATION_NOT_READY"

    def __init__(self, framework_id: str, missing_tasks: list[str]) -> None:
        super().__init__(
            f"Cannot start research. Missing required tasks: {', '.join(missing_tasks)}",
            {"framework_id": framework_id, "missing_tasks": missing_tasks},
        )


class ResearchInProgressError(StateError):
    """Raised when research is requested while a run is already underway."""

    code = "RESEARCH_IN_PROGRESS"

    def __init__(self, framework_id: str) -> None:
        super().__init__(
            "Research is already in progress for this framework",
            {"framework_id": framework_id},
        )


class ResearchCompletedError(StateError):
    """Raised when research is requested for an already completed framework."""

    code = "RESEARCH_COMPLETED"

    def __init__(self, framework_id: str) -> None:
        super().__init__(
            "Research has already been completed for this framework",
            {"framework_id": framework_id},
        )


class ResearchTimeoutError(VRError):
    """Raised when a research run exceeds its wall-clock limit.

    The message names the limit so it reads well when stored verbatim on the
    failed job record.
    """

    code = "RESEARCH_TIMEOUT"

    def __init__(self, timeout_seconds: float) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Research timed out after {format_duration(timeout_seconds)}")

    def __str__(self) -> str:
        return self.message


class QueueError(VRError):
    """Raised when the job queue is misused or its storage fails."""

    code = "QUEUE_ERROR"


class StoreError(VRError):
    """Raised when the validation store cannot satisfy a request."""

    code = "STORE_ERROR"


def format_duration(seconds: float) -> str:
    """Render a timeout for humans: whole minutes when exact, else seconds."""
    if seconds >= 60 and seconds % 60 == 0:
        minutes = int(seconds // 60)
        return f"{minutes} minute{'s' if minutes != 1 else ''}"
    if seconds >= 1 and float(seconds).is_integer():
        whole = int(seconds)
        return f"{whole} second{'s' if whole != 1 else ''}"
    return f"{int(round(seconds * 1000))}ms"
