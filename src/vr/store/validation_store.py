"""
Validation store: durable state for frameworks, tasks, jobs and reports.

SQLite (via aiosqlite) holds the single source of truth that polling clients
read. The research worker mutates job, framework and report rows during a
run; the validation service creates frameworks, records task answers and
flips frameworks to READY / IN_PROGRESS.

Writes are serialized through one transaction lock per store and retried with
exponential backoff when SQLite reports the database as locked by another
process.
"""

from __future__ import annotations

import asyncio
import sqlite3
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Iterable

import aiosqlite
import orjson

from vr.exceptions import NotFoundError, StateError, StoreError
from vr.logging import get_logger
from vr.store.sqlite import connect, resolve_db_path, retry_on_locked
from vr.types import (
    SECTION_JSON_KEYS,
    FrameworkDefinition,
    FrameworkStatus,
    JobStatus,
    Project,
    ReportSection,
    ResearchConfig,
    ResearchJob,
    ResearchReport,
    TaskTemplate,
    ValidationFramework,
    ValidationTask,
    Verdict,
    generate_id,
    utc_now,
)

logger = get_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS projects (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS framework_definitions (
    id TEXT PRIMARY KEY,
    type TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    description TEXT NOT NULL,
    task_templates TEXT NOT NULL,
    research_config TEXT NOT NULL,
    report_sections TEXT NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS validation_frameworks (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    definition_id TEXT NOT NULL REFERENCES framework_definitions(id),
    status TEXT NOT NULL DEFAULT 'PENDING_INFO',
    started_at TEXT,
    completed_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (project_id, definition_id)
);

CREATE TABLE IF NOT EXISTS validation_tasks (
    id TEXT PRIMARY KEY,
    framework_id TEXT NOT NULL REFERENCES validation_frameworks(id) ON DELETE CASCADE,
    category TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT NOT NULL,
    help_text TEXT,
    is_required INTEGER NOT NULL DEFAULT 1,
    is_completed INTEGER NOT NULL DEFAULT 0,
    answer TEXT,
    priority INTEGER NOT NULL DEFAULT 0,
    completed_at TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS research_jobs (
    id TEXT PRIMARY KEY,
    framework_id TEXT NOT NULL UNIQUE REFERENCES validation_frameworks(id) ON DELETE CASCADE,
    queue_job_id TEXT,
    status TEXT NOT NULL DEFAULT 'QUEUED',
    progress INTEGER NOT NULL DEFAULT 0,
    current_step TEXT,
    error TEXT,
    started_at TEXT,
    completed_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS research_reports (
    id TEXT PRIMARY KEY,
    framework_id TEXT NOT NULL UNIQUE REFERENCES validation_frameworks(id) ON DELETE CASCADE,
    summary_score INTEGER NOT NULL,
    summary_verdict TEXT NOT NULL,
    summary_points TEXT NOT NULL,
    sections TEXT NOT NULL,
    recommendations TEXT NOT NULL,
    sources_count INTEGER NOT NULL DEFAULT 0,
    raw_data TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_frameworks_project ON validation_frameworks(project_id);
CREATE INDEX IF NOT EXISTS idx_frameworks_status ON validation_frameworks(status);
CREATE INDEX IF NOT EXISTS idx_tasks_framework ON validation_tasks(framework_id, priority);
"""

# Columns a caller may set through the partial update methods
JOB_UPDATE_FIELDS = frozenset(
    {"queue_job_id", "progress", "current_step", "error", "started_at", "completed_at"}
)
FRAMEWORK_UPDATE_FIELDS = frozenset({"started_at", "completed_at"})

_SECTION_KEYS_FROM_JSON = {v: k for k, v in SECTION_JSON_KEYS.items()}


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def _dumps(value: Any) -> str:
    return orjson.dumps(value).decode("utf-8")


@dataclass(frozen=True)
class FrameworkTasks:
    """Research input loaded for a framework at dequeue time."""

    framework: ValidationFramework
    tasks: tuple[ValidationTask, ...]
    project_description: str


class ValidationStore:
    """Durable store for validation frameworks and their research runs."""

    def __init__(self, db_path: str | Path) -> None:
        """Initialize the store.

        Args:
            db_path: SQLite database file (":memory:" works for tests).
        """
        self.db_path = resolve_db_path(db_path)
        self._db: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    async def init(self) -> None:
        """Open the connection and create the schema. Safe to call twice."""
        if self._db is not None:
            return

        self._db = await connect(self.db_path)
        await self._db.executescript(SCHEMA)
        await self._db.commit()

        logger.info("Validation store initialized", db_path=str(self.db_path))

    async def close(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    async def __aenter__(self) -> ValidationStore:
        await self.init()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StoreError("ValidationStore not initialized. Call init() first.")
        return self._db

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        db = self._conn()
        async with self._write_lock:
            try:
                yield db
                await db.commit()
            except BaseException:
                await db.rollback()
                raise

    async def _fetchone(self, sql: str, params: Iterable[Any] = ()) -> aiosqlite.Row | None:
        async with self._conn().execute(sql, tuple(params)) as cursor:
            return await cursor.fetchone()

    async def _fetchall(self, sql: str, params: Iterable[Any] = ()) -> list[aiosqlite.Row]:
        async with self._conn().execute(sql, tuple(params)) as cursor:
            return list(await cursor.fetchall())

    # =========================================================================
    # Projects and framework definitions
    # =========================================================================

    @retry_on_locked
    async def create_project(self, name: str, description: str) -> Project:
        project = Project(
            id=generate_id("proj"),
            name=name,
            description=description,
            created_at=utc_now(),
        )
        async with self._transaction() as db:
            await db.execute(
                "INSERT INTO projects (id, name, description, created_at) VALUES (?, ?, ?, ?)",
                (project.id, project.name, project.description, _ts(project.created_at)),
            )
        return project

    async def get_project(self, project_id: str) -> Project | None:
        row = await self._fetchone("SELECT * FROM projects WHERE id = ?", (project_id,))
        if row is None:
            return None
        return Project(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    @retry_on_locked
    async def upsert_framework_definition(self, definition: FrameworkDefinition) -> None:
        """Insert a definition, or refresh the one with the same type."""
        now = _ts(utc_now())
        async with self._transaction() as db:
            await db.execute(
                """
                INSERT INTO framework_definitions (
                    id, type, name, description, task_templates, research_config,
                    report_sections, is_active, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(type) DO UPDATE SET
                    name = excluded.name,
                    description = excluded.description,
                    task_templates = excluded.task_templates,
                    research_config = excluded.research_config,
                    report_sections = excluded.report_sections,
                    is_active = excluded.is_active,
                    updated_at = excluded.updated_at
                """,
                (
                    definition.id,
                    definition.type,
                    definition.name,
                    definition.description,
                    _dumps([t.to_dict() for t in definition.task_templates]),
                    _dumps(definition.research_config.to_dict()),
                    _dumps(list(definition.report_sections)),
                    int(definition.is_active),
                    now,
                    now,
                ),
            )

    async def get_framework_definition(self, definition_id: str) -> FrameworkDefinition | None:
        row = await self._fetchone(
            "SELECT * FROM framework_definitions WHERE id = ?", (definition_id,)
        )
        return self._row_to_definition(row) if row else None

    async def get_framework_definition_by_type(
        self, framework_type: str
    ) -> FrameworkDefinition | None:
        row = await self._fetchone(
            "SELECT * FROM framework_definitions WHERE type = ?", (framework_type,)
        )
        return self._row_to_definition(row) if row else None

    async def list_active_definitions(self) -> list[FrameworkDefinition]:
        rows = await self._fetchall(
            "SELECT * FROM framework_definitions WHERE is_active = 1 ORDER BY name ASC"
        )
        return [self._row_to_definition(row) for row in rows]

    # =========================================================================
    # Frameworks and tasks
    # =========================================================================

    @retry_on_locked
    async def create_framework(
        self,
        project_id: str,
        definition_id: str,
        templates: Iterable[TaskTemplate] = (),
    ) -> ValidationFramework:
        """Create a framework and its tasks in one transaction.

        Raises:
            StoreError: If the project already has a framework for the
                definition, or either foreign key is missing.
        """
        now = utc_now()
        framework_id = generate_id("fw")

        async with self._transaction() as db:
            try:
                await db.execute(
                    """
                    INSERT INTO validation_frameworks (
                        id, project_id, definition_id, status, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        framework_id,
                        project_id,
                        definition_id,
                        FrameworkStatus.PENDING_INFO.value,
                        _ts(now),
                        _ts(now),
                    ),
                )
            except sqlite3.IntegrityError as e:
                raise StoreError(
                    "Framework could not be created",
                    {"project_id": project_id, "definition_id": definition_id, "reason": str(e)},
                ) from e
            tasks = await self._insert_tasks(db, framework_id, templates)

        logger.info("Framework created", framework_id=framework_id, task_count=len(tasks))
        return ValidationFramework(
            id=framework_id,
            project_id=project_id,
            definition_id=definition_id,
            status=FrameworkStatus.PENDING_INFO,
            created_at=now,
            tasks=tuple(tasks),
        )

    @retry_on_locked
    async def create_tasks(
        self, framework_id: str, templates: Iterable[TaskTemplate]
    ) -> list[ValidationTask]:
        """Instantiate task templates for an existing framework."""
        async with self._transaction() as db:
            try:
                return await self._insert_tasks(db, framework_id, templates)
            except sqlite3.IntegrityError as e:
                raise NotFoundError("ValidationFramework", framework_id) from e

    async def _insert_tasks(
        self,
        db: aiosqlite.Connection,
        framework_id: str,
        templates: Iterable[TaskTemplate],
    ) -> list[ValidationTask]:
        now = utc_now()
        tasks = [
            ValidationTask(
                id=generate_id("task"),
                framework_id=framework_id,
                category=t.category,
                title=t.title,
                description=t.description,
                help_text=t.help_text,
                is_required=t.is_required,
                priority=t.priority,
                created_at=now,
            )
            for t in sorted(templates, key=lambda t: t.priority)
        ]
        await db.executemany(
            """
            INSERT INTO validation_tasks (
                id, framework_id, category, title, description, help_text,
                is_required, is_completed, answer, priority, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, 0, NULL, ?, ?)
            """,
            [
                (
                    task.id,
                    framework_id,
                    task.category,
                    task.title,
                    task.description,
                    task.help_text,
                    int(task.is_required),
                    task.priority,
                    _ts(now),
                )
                for task in tasks
            ],
        )
        return tasks

    async def find_framework_by_project_and_definition(
        self, project_id: str, definition_id: str
    ) -> ValidationFramework | None:
        row = await self._fetchone(
            "SELECT id FROM validation_frameworks WHERE project_id = ? AND definition_id = ?",
            (project_id, definition_id),
        )
        return await self.get_framework(row["id"]) if row else None

    async def get_framework(self, framework_id: str) -> ValidationFramework | None:
        """Load a framework with its tasks (priority ascending)."""
        row = await self._fetchone(
            "SELECT * FROM validation_frameworks WHERE id = ?", (framework_id,)
        )
        if row is None:
            return None
        tasks = await self.get_tasks(framework_id)
        return self._row_to_framework(row, tasks)

    async def get_framework_tasks(self, framework_id: str) -> FrameworkTasks:
        """Load the research input for a framework.

        Raises:
            NotFoundError: If the framework does not exist.
        """
        row = await self._fetchone(
            """
            SELECT f.*, p.description AS project_description
            FROM validation_frameworks f
            JOIN projects p ON p.id = f.project_id
            WHERE f.id = ?
            """,
            (framework_id,),
        )
        if row is None:
            raise NotFoundError("ValidationFramework", framework_id)

        tasks = await self.get_tasks(framework_id)
        return FrameworkTasks(
            framework=self._row_to_framework(row, tasks),
            tasks=tuple(tasks),
            project_description=row["project_description"],
        )

    async def get_tasks(self, framework_id: str) -> list[ValidationTask]:
        rows = await self._fetchall(
            """
            SELECT * FROM validation_tasks
            WHERE framework_id = ?
            ORDER BY priority ASC, created_at ASC, id ASC
            """,
            (framework_id,),
        )
        return [self._row_to_task(row) for row in rows]

    async def get_task(self, task_id: str) -> ValidationTask | None:
        row = await self._fetchone("SELECT * FROM validation_tasks WHERE id = ?", (task_id,))
        return self._row_to_task(row) if row else None

    @retry_on_locked
    async def complete_task(self, task_id: str, answer: str) -> ValidationTask:
        """Record the answer for a task. A task is completed exactly once.

        Raises:
            NotFoundError: If the task does not exist.
            StateError: If the task was already completed.
        """
        async with self._transaction() as db:
            cursor = await db.execute(
                """
                UPDATE validation_tasks
                SET answer = ?, is_completed = 1, completed_at = ?
                WHERE id = ? AND is_completed = 0
                """,
                (answer, _ts(utc_now()), task_id),
            )
            updated = cursor.rowcount

        task = await self.get_task(task_id)
        if task is None:
            raise NotFoundError("ValidationTask", task_id)
        if updated == 0:
            raise StateError("Task has already been completed", {"task_id": task_id})
        return task

    @retry_on_locked
    async def update_framework_status(
        self,
        framework_id: str,
        status: FrameworkStatus,
        **fields: Any,
    ) -> None:
        """Set a framework's status plus optional timestamp fields.

        Raises:
            NotFoundError: If the framework does not exist.
        """
        assignments, params = self._assignments(fields, FRAMEWORK_UPDATE_FIELDS)
        async with self._transaction() as db:
            cursor = await db.execute(
                f"UPDATE validation_frameworks SET status = ?, updated_at = ?{assignments} "
                "WHERE id = ?",
                (status.value, _ts(utc_now()), *params, framework_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError("ValidationFramework", framework_id)

    # =========================================================================
    # Research jobs
    # =========================================================================

    @retry_on_locked
    async def create_or_reset_job(self, framework_id: str) -> ResearchJob:
        """Create the framework's job record, or reset the existing one to QUEUED.

        A framework has at most one job; a re-run after failure reuses it.
        """
        now = _ts(utc_now())
        async with self._transaction() as db:
            await db.execute(
                """
                INSERT INTO research_jobs (
                    id, framework_id, status, progress, created_at, updated_at
                ) VALUES (?, ?, ?, 0, ?, ?)
                ON CONFLICT(framework_id) DO UPDATE SET
                    status = excluded.status,
                    progress = 0,
                    current_step = NULL,
                    error = NULL,
                    queue_job_id = NULL,
                    started_at = NULL,
                    completed_at = NULL,
                    updated_at = excluded.updated_at
                """,
                (generate_id("job"), framework_id, JobStatus.QUEUED.value, now, now),
            )

        job = await self.get_job(framework_id)
        if job is None:
            raise NotFoundError("ResearchJob", framework_id)
        return job

    async def get_job(self, framework_id: str) -> ResearchJob | None:
        row = await self._fetchone(
            "SELECT * FROM research_jobs WHERE framework_id = ?", (framework_id,)
        )
        return self._row_to_job(row) if row else None

    @retry_on_locked
    async def update_job_status(
        self,
        framework_id: str,
        status: JobStatus,
        **fields: Any,
    ) -> None:
        """Set a job's status plus any of JOB_UPDATE_FIELDS.

        Raises:
            NotFoundError: If the framework has no job record.
        """
        assignments, params = self._assignments(fields, JOB_UPDATE_FIELDS)
        async with self._transaction() as db:
            cursor = await db.execute(
                f"UPDATE research_jobs SET status = ?, updated_at = ?{assignments} "
                "WHERE framework_id = ?",
                (status.value, _ts(utc_now()), *params, framework_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError("ResearchJob", framework_id)

    @retry_on_locked
    async def update_job_progress(
        self, framework_id: str, progress: int, current_step: str
    ) -> bool:
        """Record a progress checkpoint; progress never moves backwards.

        Returns:
            False if the stored progress was already ahead (stale update).

        Raises:
            NotFoundError: If the framework has no job record.
        """
        if not 0 <= progress <= 100:
            raise ValueError(f"progress must be within 0..100, got {progress}")

        async with self._transaction() as db:
            cursor = await db.execute(
                """
                UPDATE research_jobs
                SET progress = ?, current_step = ?, updated_at = ?
                WHERE framework_id = ? AND progress <= ?
                """,
                (progress, current_step, _ts(utc_now()), framework_id, progress),
            )
            updated = cursor.rowcount

        if updated:
            return True
        if await self.get_job(framework_id) is None:
            raise NotFoundError("ResearchJob", framework_id)
        logger.debug("Ignored stale progress update", framework_id=framework_id, progress=progress)
        return False

    # =========================================================================
    # Reports and terminal transitions
    # =========================================================================

    @retry_on_locked
    async def upsert_report(self, report: ResearchReport) -> None:
        """Create the framework's report, or replace its contents."""
        async with self._transaction() as db:
            await self._upsert_report(db, report)

    async def get_report(self, framework_id: str) -> ResearchReport | None:
        row = await self._fetchone(
            "SELECT * FROM research_reports WHERE framework_id = ?", (framework_id,)
        )
        return self._row_to_report(row) if row else None

    @retry_on_locked
    async def finalize_success(self, framework_id: str, report: ResearchReport) -> None:
        """Store the report, then mark job and framework COMPLETED.

        All three writes share one transaction and the report is written
        first, so a COMPLETED status always has a report behind it.
        """
        now = _ts(utc_now())
        async with self._transaction() as db:
            await self._upsert_report(db, report)
            job_cursor = await db.execute(
                """
                UPDATE research_jobs
                SET status = ?, progress = 100, current_step = 'Complete',
                    completed_at = ?, updated_at = ?
                WHERE framework_id = ?
                """,
                (JobStatus.COMPLETED.value, now, now, framework_id),
            )
            if job_cursor.rowcount == 0:
                raise NotFoundError("ResearchJob", framework_id)
            fw_cursor = await db.execute(
                """
                UPDATE validation_frameworks
                SET status = ?, completed_at = ?, updated_at = ?
                WHERE id = ?
                """,
                (FrameworkStatus.COMPLETED.value, now, now, framework_id),
            )
            if fw_cursor.rowcount == 0:
                raise NotFoundError("ValidationFramework", framework_id)

    @retry_on_locked
    async def mark_failed(self, framework_id: str, error: str) -> None:
        """Mark job and framework FAILED, keeping the error message verbatim."""
        now = _ts(utc_now())
        async with self._transaction() as db:
            await db.execute(
                """
                UPDATE research_jobs
                SET status = ?, error = ?, completed_at = ?, updated_at = ?
                WHERE framework_id = ?
                """,
                (JobStatus.FAILED.value, error, now, now, framework_id),
            )
            await db.execute(
                "UPDATE validation_frameworks SET status = ?, updated_at = ? WHERE id = ?",
                (FrameworkStatus.FAILED.value, now, framework_id),
            )

    async def _upsert_report(self, db: aiosqlite.Connection, report: ResearchReport) -> None:
        now = _ts(utc_now())
        await db.execute(
            """
            INSERT INTO research_reports (
                id, framework_id, summary_score, summary_verdict, summary_points,
                sections, recommendations, sources_count, raw_data, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(framework_id) DO UPDATE SET
                summary_score = excluded.summary_score,
                summary_verdict = excluded.summary_verdict,
                summary_points = excluded.summary_points,
                sections = excluded.sections,
                recommendations = excluded.recommendations,
                sources_count = excluded.sources_count,
                raw_data = excluded.raw_data,
                updated_at = excluded.updated_at
            """,
            (
                report.id,
                report.framework_id,
                report.summary_score,
                report.summary_verdict.value,
                _dumps(list(report.summary_points)),
                _dumps(report.sections_to_dict()),
                _dumps(list(report.recommendations)),
                report.sources_count,
                _dumps(report.raw_data),
                now,
                now,
            ),
        )

    # =========================================================================
    # Row mapping
    # =========================================================================

    @staticmethod
    def _assignments(
        fields: dict[str, Any], allowed: frozenset[str]
    ) -> tuple[str, list[Any]]:
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        columns = sorted(fields)
        params = [
            _ts(fields[c]) if isinstance(fields[c], datetime) else fields[c] for c in columns
        ]
        assignments = "".join(f", {c} = ?" for c in columns)
        return assignments, params

    @staticmethod
    def _row_to_definition(row: aiosqlite.Row) -> FrameworkDefinition:
        return FrameworkDefinition(
            id=row["id"],
            type=row["type"],
            name=row["name"],
            description=row["description"],
            task_templates=tuple(
                TaskTemplate.from_dict(t) for t in orjson.loads(row["task_templates"])
            ),
            research_config=ResearchConfig.from_dict(orjson.loads(row["research_config"])),
            report_sections=tuple(orjson.loads(row["report_sections"])),
            is_active=bool(row["is_active"]),
        )

    @staticmethod
    def _row_to_framework(
        row: aiosqlite.Row, tasks: Iterable[ValidationTask] = ()
    ) -> ValidationFramework:
        return ValidationFramework(
            id=row["id"],
            project_id=row["project_id"],
            definition_id=row["definition_id"],
            status=FrameworkStatus(row["status"]),
            started_at=_parse_ts(row["started_at"]),
            completed_at=_parse_ts(row["completed_at"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            tasks=tuple(tasks),
        )

    @staticmethod
    def _row_to_task(row: aiosqlite.Row) -> ValidationTask:
        return ValidationTask(
            id=row["id"],
            framework_id=row["framework_id"],
            category=row["category"],
            title=row["title"],
            description=row["description"],
            help_text=row["help_text"],
            is_required=bool(row["is_required"]),
            is_completed=bool(row["is_completed"]),
            answer=row["answer"],
            priority=row["priority"],
            completed_at=_parse_ts(row["completed_at"]),
            created_at=_parse_ts(row["created_at"]),
        )

    @staticmethod
    def _row_to_job(row: aiosqlite.Row) -> ResearchJob:
        return ResearchJob(
            id=row["id"],
            framework_id=row["framework_id"],
            status=JobStatus(row["status"]),
            progress=row["progress"],
            current_step=row["current_step"],
            error=row["error"],
            queue_job_id=row["queue_job_id"],
            started_at=_parse_ts(row["started_at"]),
            completed_at=_parse_ts(row["completed_at"]),
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )

    @staticmethod
    def _row_to_report(row: aiosqlite.Row) -> ResearchReport:
        sections_json: dict[str, Any] = orjson.loads(row["sections"])
        return ResearchReport(
            id=row["id"],
            framework_id=row["framework_id"],
            summary_score=row["summary_score"],
            summary_verdict=Verdict(row["summary_verdict"]),
            summary_points=tuple(orjson.loads(row["summary_points"])),
            sections={
                _SECTION_KEYS_FROM_JSON[key]: ReportSection.from_dict(value)
                for key, value in sections_json.items()
            },
            recommendations=tuple(orjson.loads(row["recommendations"])),
            sources_count=row["sources_count"],
            raw_data=orjson.loads(row["raw_data"]),
            created_at=_parse_ts(row["created_at"]),
            updated_at=_parse_ts(row["updated_at"]),
        )
