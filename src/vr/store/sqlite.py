"""SQLite plumbing shared by the validation store and the job queue."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import aiosqlite
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

BUSY_TIMEOUT_SECONDS = 30.0


def is_locked_error(exc: BaseException) -> bool:
    """True for the transient errors SQLite raises under write contention."""
    if not isinstance(exc, sqlite3.OperationalError):
        return False
    message = str(exc).lower()
    return "locked" in message or "busy" in message


# Applied to every write; the wrapped method must be a whole transaction so a
# retry replays it from the start.
retry_on_locked = retry(
    retry=retry_if_exception(is_locked_error),
    wait=wait_exponential(multiplier=0.05, min=0.05, max=2),
    stop=stop_after_attempt(5),
    reraise=True,
)


def resolve_db_path(db_path: str | Path) -> str | Path:
    """Keep ":memory:" as-is, otherwise return a Path."""
    return db_path if db_path == ":memory:" else Path(db_path)


async def connect(db_path: str | Path) -> aiosqlite.Connection:
    """Open a connection with Row access and foreign keys enforced."""
    if isinstance(db_path, Path):
        db_path.parent.mkdir(parents=True, exist_ok=True)

    db = await aiosqlite.connect(db_path, timeout=BUSY_TIMEOUT_SECONDS)
    db.row_factory = aiosqlite.Row
    await db.execute("PRAGMA foreign_keys = ON")
    return db
