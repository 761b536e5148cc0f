"""Durable validation state (SQLite)."""

from vr.store.definitions import PROBLEM_SOLUTION_FIT, seed_definitions
from vr.store.validation_store import FrameworkTasks, ValidationStore

__all__ = [
    "PROBLEM_SOLUTION_FIT",
    "FrameworkTasks",
    "ValidationStore",
    "seed_definitions",
]
