"""Research job queue and worker."""

from vr.queue.job_queue import (
    EnqueueResult,
    JobOptions,
    QueueJob,
    ResearchQueue,
    research_job_id,
)
from vr.queue.worker import ResearchWorker, error_message

__all__ = [
    "EnqueueResult",
    "JobOptions",
    "QueueJob",
    "ResearchQueue",
    "ResearchWorker",
    "error_message",
    "research_job_id",
]
