"""
Structured logging for the validation research service.

Provides:
- Context variables for framework_id, job_id and stage (using contextvars)
- JSONFormatter for machine-readable logs to file
- A rich console handler that prefixes records with the active context
- ContextLogger wrapper that accepts keyword context on every call
- setup_logging() and get_logger()
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Generator

import orjson
from rich.console import Console
from rich.logging import RichHandler
from rich.text import Text

_framework_id_var: ContextVar[str | None] = ContextVar("framework_id", default=None)
_job_id_var: ContextVar[str | None] = ContextVar("job_id", default=None)
_stage_var: ContextVar[str | None] = ContextVar("stage", default=None)


def get_framework_id() -> str | None:
    """Get the framework being processed in this context."""
    return _framework_id_var.get()


def get_job_id() -> str | None:
    """Get the queue job being processed in this context."""
    return _job_id_var.get()


def get_stage() -> str | None:
    """Get the research stage running in this context."""
    return _stage_var.get()


def _current_context() -> dict[str, str]:
    context: dict[str, str] = {}
    framework_id = _framework_id_var.get()
    job_id = _job_id_var.get()
    stage = _stage_var.get()
    if framework_id:
        context["framework_id"] = framework_id
    if job_id:
        context["job_id"] = job_id
    if stage:
        context["stage"] = stage
    return context


@contextmanager
def log_context(
    framework_id: str | None = None,
    job_id: str | None = None,
    stage: str | None = None,
) -> Generator[None, None, None]:
    """Context manager for scoped logging context.

    Values left as None keep whatever the enclosing scope set. Each asyncio
    task gets its own copy of the context, so concurrent jobs do not leak
    into each other's records.
    """
    tokens = []
    if framework_id is not None:
        tokens.append((_framework_id_var, _framework_id_var.set(framework_id)))
    if job_id is not None:
        tokens.append((_job_id_var, _job_id_var.set(job_id)))
    if stage is not None:
        tokens.append((_stage_var, _stage_var.set(stage)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


class JSONFormatter(logging.Formatter):
    """JSON Lines formatter with structured context."""

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as JSON."""
        log_obj: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_obj.update(_current_context())

        if hasattr(record, "extra"):
            log_obj["extra"] = record.extra

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        return orjson.dumps(log_obj, default=str).decode("utf-8")


class ContextRichHandler(RichHandler):
    """Rich handler that includes context in console output."""

    def get_level_text(self, record: logging.LogRecord) -> Text:
        """Override to add context prefix."""
        level_text = super().get_level_text(record)

        parts: list[str] = []
        framework_id = get_framework_id()
        stage = get_stage()

        if framework_id:
            parts.append(f"[dim]{framework_id[-8:]}[/dim]")
        if stage:
            parts.append(f"[cyan]{stage}[/cyan]")

        if parts:
            return Text.from_markup(f"{level_text} {' '.join(parts)}")

        return level_text


class ContextLogger:
    """Logger wrapper that attaches context and keyword fields to records."""

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    @property
    def name(self) -> str:
        """Get the logger name."""
        return self._logger.name

    def _log(
        self,
        level: int,
        msg: str,
        *args: Any,
        exc_info: bool = False,
        **kwargs: Any,
    ) -> None:
        extra = kwargs.pop("extra", {})
        extra.update(_current_context())

        for key in list(kwargs.keys()):
            if key not in ("stack_info", "stacklevel"):
                extra[key] = kwargs.pop(key)

        self._logger.log(level, msg, *args, exc_info=exc_info, extra={"extra": extra})

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args: Any, exc_info: bool = False, **kwargs: Any) -> None:
        self._log(logging.ERROR, msg, *args, exc_info=exc_info, **kwargs)

    def exception(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log an error with the active traceback."""
        self._log(logging.ERROR, msg, *args, exc_info=True, **kwargs)


_console: Console | None = None
_setup_done: bool = False


def get_console() -> Console:
    """Get the global rich console."""
    global _console
    if _console is None:
        _console = Console(stderr=True)
    return _console


def setup_logging(
    log_level: str = "INFO",
    log_file: Path | None = None,
    console_output: bool = True,
) -> None:
    """Set up logging with a JSON file handler and a rich console handler.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Path to log file. If None, only console logging is enabled.
        console_output: Whether to enable console output.
    """
    global _setup_done

    root_logger = logging.getLogger("vr")
    root_logger.setLevel(getattr(logging, log_level.upper()))
    root_logger.handlers.clear()

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setFormatter(JSONFormatter())
        file_handler.setLevel(logging.DEBUG)
        root_logger.addHandler(file_handler)

    if console_output:
        rich_handler = ContextRichHandler(
            console=get_console(),
            show_time=True,
            show_path=False,
            rich_tracebacks=True,
            tracebacks_show_locals=False,
            markup=True,
        )
        rich_handler.setLevel(getattr(logging, log_level.upper()))
        root_logger.addHandler(rich_handler)

    root_logger.propagate = False

    for noisy_logger in ["httpx", "httpcore", "google_genai", "aiosqlite", "asyncio"]:
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)

    _setup_done = True


def get_logger(name: str) -> ContextLogger:
    """Get a context-aware logger.

    Args:
        name: Logger name (usually __name__).

    Returns:
        ContextLogger wrapper around the standard logger.
    """
    if not _setup_done:
        setup_logging()

    if not name.startswith("vr"):
        name = f"vr.{name}"

    return ContextLogger(logging.getLogger(name))
