"""Batch job state, persistence and retention.

The orchestrator lives in postcode_finder.jobs.orchestrator and is imported
from there directly.
"""

from .models import (
    Job,
    JobOptions,
    JobStatus,
    RowError,
    RowErrorCategory,
    RowResult,
    StepStatus,
    new_job_id,
    is_valid_job_id,
)
from .store import (
    JobStore,
    InMemoryJobStore,
    SnapshotJobStore,
    RedisJobStore,
    JobNotFoundError,
    JobResourceError,
    create_job_store,
)

__all__ = [
    "Job",
    "JobOptions",
    "JobStatus",
    "RowError",
    "RowErrorCategory",
    "RowResult",
    "StepStatus",
    "new_job_id",
    "is_valid_job_id",
    "JobStore",
    "InMemoryJobStore",
    "SnapshotJobStore",
    "RedisJobStore",
    "JobNotFoundError",
    "JobResourceError",
    "create_job_store",
]
