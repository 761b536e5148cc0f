"""
CLI for the validation research service.

Commands:
    vr config - Show current configuration
    vr version - Print version
    vr init-db - Create schemas and seed framework definitions
    vr new-project NAME DESCRIPTION - Create a project and its framework
    vr answer TASK_ID ANSWER - Answer a framework task
    vr research FRAMEWORK_ID - Queue a research run
    vr worker - Process research jobs until interrupted
    vr status FRAMEWORK_ID - Show research progress and report
    vr jobs - List queue entries
    vr clean - Prune finished queue entries
"""

from __future__ import annotations

import asyncio
import signal
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Annotated, Any, AsyncIterator, Coroutine, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from vr import __version__
from vr.config import Settings, clear_settings_cache, get_settings
from vr.exceptions import VRError
from vr.logging import setup_logging
from vr.queue.job_queue import JobOptions, ResearchQueue
from vr.queue.worker import ResearchWorker
from vr.store.definitions import PROBLEM_SOLUTION_FIT, seed_definitions
from vr.store.validation_store import ValidationStore
from vr.types import QueueState
from vr.validation.service import ValidationService

app = typer.Typer(
    name="vr",
    help="Validation Research - AI-assisted startup idea validation",
    no_args_is_help=True,
)

console = Console()
error_console = Console(stderr=True)


def _get_settings_safe() -> Settings | None:
    """Get settings, returning None if configuration is invalid."""
    try:
        clear_settings_cache()
        return get_settings()
    except Exception:
        return None


def _require_settings() -> Settings:
    settings = _get_settings_safe()
    if settings is None:
        error_console.print(
            "[red]Error:[/red] Configuration is invalid. "
            "Run 'vr config' to see what's wrong."
        )
        raise typer.Exit(1)
    setup_logging(settings.LOG_LEVEL, settings.LOG_FILE)
    return settings


@asynccontextmanager
async def _open(settings: Settings) -> AsyncIterator[tuple[ValidationStore, ResearchQueue]]:
    settings.ensure_directories()
    store = ValidationStore(settings.DATABASE_PATH)
    queue = ResearchQueue(settings.QUEUE_DB_PATH, JobOptions.from_settings(settings))
    await store.init()
    await queue.start()
    try:
        yield store, queue
    finally:
        await queue.close()
        await store.close()


def _run(coro: Coroutine[Any, Any, None]) -> None:
    """Run a command coroutine, turning domain errors into a clean exit."""
    try:
        asyncio.run(coro)
    except VRError as e:
        error_console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(1)


def _fmt_epoch(value: float | None) -> str:
    if value is None:
        return "-"
    return datetime.fromtimestamp(value, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


@app.command()
def config() -> None:
    """Show current configuration.

    Displays all configuration values with API keys redacted.
    """
    console.print()
    console.print("[bold]Validation Research Configuration[/bold]")
    console.print()

    settings = _get_settings_safe()

    if settings is None:
        error_console.print("[red]Configuration is invalid or incomplete.[/red]")
        error_console.print()
        error_console.print("Check numeric settings and that JOB_LOCK_SECONDS >= JOB_TIMEOUT_SECONDS.")
        error_console.print("Create a .env file or set environment variables.")
        raise typer.Exit(1)

    table = Table(title="Settings", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    for key, value in settings.redacted_display().items():
        display_value = str(value) if value is not None else "[dim]not set[/dim]"
        table.add_row(key, display_value)

    console.print(table)

    console.print()
    if settings.gemini_api_key:
        console.print("[bold]Research provider:[/bold] google (Gemini with Search grounding)")
    else:
        console.print("[yellow]GEMINI_API_KEY is not set; the worker cannot run research.[/yellow]")
    console.print()


@app.command()
def version() -> None:
    """Print the version number."""
    console.print(f"validation-research version {__version__}")


@app.command("init-db")
def init_db() -> None:
    """Create database schemas and seed the built-in framework definitions."""
    settings = _require_settings()

    async def _init() -> None:
        async with _open(settings) as (store, _queue):
            seeded = await seed_definitions(store)
        for definition in seeded:
            console.print(f"[green]Seeded[/green] {definition.type} ({definition.name})")
        console.print(f"[dim]Database:[/dim] {settings.DATABASE_PATH}")
        console.print(f"[dim]Queue:[/dim] {settings.QUEUE_DB_PATH}")

    _run(_init())


@app.command("new-project")
def new_project(
    name: Annotated[str, typer.Argument(help="Project name")],
    description: Annotated[str, typer.Argument(help="One-paragraph description of the idea")],
    framework: Annotated[
        str,
        typer.Option("--framework", "-f", help="Framework type to initialize"),
    ] = PROBLEM_SOLUTION_FIT,
) -> None:
    """Create a project and initialize a validation framework for it."""
    settings = _require_settings()

    async def _create() -> None:
        async with _open(settings) as (store, queue):
            await seed_definitions(store)
            project = await store.create_project(name, description)
            fw = await ValidationService(store, queue).initialize_framework(project.id, framework)

        console.print(
            Panel(
                f"[bold]Project:[/bold] {project.id}\n"
                f"[bold]Framework:[/bold] {fw.id}\n"
                f"[bold]Status:[/bold] {fw.status.value}",
                title=f"[bold cyan]{name}[/bold cyan]",
                border_style="cyan",
            )
        )
        table = Table(title="Tasks", show_header=True)
        table.add_column("Task ID", style="cyan")
        table.add_column("Title")
        table.add_column("Required")
        for task in fw.tasks:
            table.add_row(task.id, task.title, "yes" if task.is_required else "no")
        console.print(table)

    _run(_create())


@app.command()
def answer(
    task_id: Annotated[str, typer.Argument(help="Task to complete")],
    text: Annotated[str, typer.Argument(help="The answer")],
) -> None:
    """Answer a framework task."""
    settings = _require_settings()

    async def _answer() -> None:
        async with _open(settings) as (store, queue):
            service = ValidationService(store, queue)
            task = await service.complete_task(task_id, text)
            readiness = await service.check_readiness(task.framework_id)

        console.print(f"[green]Answered[/green] {task.title}")
        console.print(
            f"[dim]Required tasks:[/dim] "
            f"{readiness.completed_required_tasks}/{readiness.total_required_tasks}"
        )
        if readiness.is_ready:
            console.print(f"[bold green]Ready for research:[/bold green] vr research {task.framework_id}")

    _run(_answer())


@app.command()
def research(
    framework_id: Annotated[str, typer.Argument(help="Framework to research")],
    max_duration: Annotated[
        Optional[float],
        typer.Option("--max-duration", "-t", help="Time budget in seconds"),
    ] = None,
) -> None:
    """Queue a research run for a ready framework."""
    settings = _require_settings()

    async def _start() -> None:
        async with _open(settings) as (store, queue):
            started = await ValidationService(store, queue).start_research(
                framework_id, max_duration_seconds=max_duration
            )
        console.print(f"[green]Research queued[/green] (job {started.job_id})")
        console.print(f"[dim]Queue entry:[/dim] {started.queue_job_id}")
        console.print("Run 'vr worker' to process it and 'vr status' to follow progress.")

    _run(_start())


@app.command()
def worker(
    concurrency: Annotated[
        Optional[int],
        typer.Option("--concurrency", "-c", help="Jobs processed at once"),
    ] = None,
) -> None:
    """Process research jobs until interrupted (Ctrl-C stops gracefully)."""
    settings = _require_settings()

    from vr.llm.gemini_client import GeminiResearchClient
    from vr.research.orchestrator import ResearchOrchestrator

    async def _work() -> None:
        client = GeminiResearchClient.from_settings(settings)
        async with _open(settings) as (store, queue):
            research_worker = ResearchWorker.from_settings(
                settings, queue, store, ResearchOrchestrator(client), concurrency=concurrency
            )

            stop = asyncio.Event()
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, stop.set)

            await research_worker.start()
            console.print(
                f"[bold green]Worker running[/bold green] "
                f"(concurrency {research_worker.concurrency}). Press Ctrl-C to stop."
            )
            await stop.wait()
            console.print("[yellow]Stopping; waiting for in-flight jobs...[/yellow]")
            await research_worker.stop(graceful=True)

    _run(_work())


@app.command()
def status(
    framework_id: Annotated[str, typer.Argument(help="Framework to inspect")],
) -> None:
    """Show framework status, job progress and the report summary."""
    settings = _require_settings()

    async def _status() -> None:
        async with _open(settings) as (store, queue):
            view = await ValidationService(store, queue).get_research_status(framework_id)

        lines = [f"[bold]Framework:[/bold] {view.framework.status.value}"]
        if view.job is not None:
            lines.append(f"[bold]Job:[/bold] {view.job.status.value} ({view.job.progress}%)")
            if view.job.current_step:
                lines.append(f"[bold]Step:[/bold] {view.job.current_step}")
            if view.job.error:
                lines.append(f"[bold red]Error:[/bold red] {view.job.error}")
        console.print(
            Panel("\n".join(lines), title=f"[bold cyan]{framework_id}[/bold cyan]", border_style="cyan")
        )

        report = view.report
        if report is None:
            return
        body = [
            f"[bold]Score:[/bold] {report.summary_score}/10 ({report.summary_verdict.value})",
            f"[bold]Sources:[/bold] {report.sources_count}",
            "",
            *[f"- {point}" for point in report.summary_points],
            "",
            "[bold]Recommendations:[/bold]",
            *[f"- {rec}" for rec in report.recommendations],
        ]
        console.print(Panel("\n".join(body), title="[bold green]Report[/bold green]", border_style="green"))

    _run(_status())


@app.command()
def jobs(
    state: Annotated[
        Optional[QueueState],
        typer.Option("--state", "-s", help="Only show entries in this state"),
    ] = None,
    limit: Annotated[int, typer.Option("--limit", "-n", help="Maximum rows")] = 50,
) -> None:
    """List queue entries."""
    settings = _require_settings()

    async def _jobs() -> None:
        async with _open(settings) as (_store, queue):
            entries = await queue.list_jobs(state, limit=limit)
            counts = await queue.counts()

        table = Table(title="Research Queue", show_header=True)
        table.add_column("Job ID", style="cyan")
        table.add_column("State")
        table.add_column("Attempts")
        table.add_column("Progress")
        table.add_column("Created")
        table.add_column("Last Error")
        for entry in entries:
            table.add_row(
                entry.id,
                entry.state.value,
                f"{entry.attempts_made}/{entry.max_attempts}",
                f"{entry.progress}%",
                _fmt_epoch(entry.created_at),
                entry.failed_reason or "",
            )
        console.print(table)
        console.print(" ".join(f"[dim]{s.value}:[/dim] {n}" for s, n in counts.items()))

    _run(_jobs())


@app.command()
def clean() -> None:
    """Prune completed and failed queue entries past their retention."""
    settings = _require_settings()

    async def _clean() -> None:
        async with _open(settings) as (_store, queue):
            removed = await queue.clean()
        console.print(f"Removed {removed} finished queue entr{'y' if removed == 1 else 'ies'}.")

    _run(_clean())


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
