"""Periodic removal of expired jobs and their output artifacts."""

import asyncio
import logging
import time

from postcode_finder.jobs.models import Job
from postcode_finder.jobs.store import JobStore
from postcode_finder.upload.upload_handler import UploadHandler

logger = logging.getLogger(__name__)


def retention_reference(job: Job) -> float:
    """Time a job's retention window starts from.

    Terminal jobs age from end_time; others from their last sign of life.
    """
    if job.is_terminal and job.end_time:
        return job.end_time
    return max(job.created_at, job.heartbeat)


class RetentionSweeper:
    """Deletes jobs older than the retention window.

    Args:
        store: Job store to sweep.
        uploads: Handler used to discard output artifacts.
        retention_seconds: Age after which a job is removed.
        interval_seconds: Pause between sweeps in run().
    """

    def __init__(
        self,
        store: JobStore,
        uploads: UploadHandler,
        retention_seconds: float = 86400,
        interval_seconds: float = 3600,
    ):
        self.store = store
        self.uploads = uploads
        self.retention_seconds = retention_seconds
        self.interval_seconds = interval_seconds

    async def sweep(self, now: float | None = None) -> list[str]:
        """Remove every expired job once.

        Returns:
            Ids of removed jobs.
        """
        now = time.time() if now is None else now
        removed = []
        for job in await self.store.list_jobs():
            if now - retention_reference(job) <= self.retention_seconds:
                continue
            self.uploads.discard(job.output_path)
            await self.store.delete(job.id)
            removed.append(job.id)
        if removed:
            logger.info(f"Retention sweep removed {len(removed)} job(s)")
        return removed

    async def run(self) -> None:
        """Sweep forever; cancel the task to stop."""
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"Retention sweep failed: {e}", exc_info=True)
