"""Job Store with file-snapshot or Redis persistence.

The store exclusively owns job state. It keeps serialized snapshots, so
get() always hands out a fresh Job and a caller's in-place edits are
invisible to everyone else until it calls upsert(). upsert() replaces the
in-memory view in one step and then persists the same snapshot.

Works in LITE MODE (no Redis) with one JSON file per job id.
"""

import asyncio
import json
import logging
import os
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

import aiofiles
import redis.asyncio as aioredis

from postcode_finder.config import Config
from postcode_finder.jobs.models import Job, JobStatus, is_valid_job_id

logger = logging.getLogger(__name__)


class JobNotFoundError(KeyError):
    """No job with this id exists."""


class JobResourceError(Exception):
    """A job snapshot could not be read or written."""


class JobStore(ABC):
    """Base store: in-memory view plus an abstract durable snapshot."""

    def __init__(self):
        self._jobs: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    @property
    def backend(self) -> str:
        return "base"

    # ==================== Durable snapshot ====================

    @abstractmethod
    async def persist(self, job_id: str, data: dict[str, Any]) -> None:
        """Write one job snapshot durably."""

    @abstractmethod
    async def load(self, job_id: str) -> dict[str, Any] | None:
        """Read one job snapshot, None if absent."""

    @abstractmethod
    async def _remove_snapshot(self, job_id: str) -> None:
        pass

    @abstractmethod
    async def _snapshot_ids(self) -> list[str]:
        pass

    async def load_all(self) -> int:
        """Load every snapshot into the in-memory view (startup recovery).

        Returns:
            Number of jobs loaded. Unreadable snapshots are skipped.
        """
        loaded = 0
        for job_id in await self._snapshot_ids():
            try:
                data = await self.load(job_id)
            except JobResourceError as e:
                logger.warning(f"Skipping unreadable snapshot {job_id}: {e}")
                continue
            if data:
                self._jobs[job_id] = data
                loaded += 1
        logger.info(f"Job store ({self.backend}): restored {loaded} job(s)")
        return loaded

    # ==================== Job access ====================

    async def get(self, job_id: str) -> Job | None:
        data = self._jobs.get(job_id)
        if data is None:
            data = await self.load(job_id)
            if data is None:
                return None
            self._jobs[job_id] = data
        return Job.from_dict(data)

    async def require(self, job_id: str) -> Job:
        job = await self.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def upsert(self, job: Job) -> None:
        """Publish a job state change: update the view, then persist it."""
        data = job.to_dict()
        self._jobs[job.id] = data
        await self.persist(job.id, data)

    async def delete(self, job_id: str) -> bool:
        existed = self._jobs.pop(job_id, None) is not None
        await self._remove_snapshot(job_id)
        return existed

    async def list_jobs(self) -> list[Job]:
        jobs = [Job.from_dict(data) for data in self._jobs.values()]
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return jobs

    async def claim(self, job_id: str, owner: str, lease_seconds: float) -> Job | None:
        """Take ownership of a job for driving.

        Declines (returns None) when the job is terminal or another owner
        holds a fresh lease on it.

        Args:
            job_id: Job to claim.
            owner: Identifier of the claiming driver.
            lease_seconds: Heartbeat age after which a lease is stale.

        Returns:
            The claimed job (status processing), or None.
        """
        async with self._lock:
            job = await self.get(job_id)
            if job is None or job.is_terminal:
                return None
            if (
                job.status == JobStatus.PROCESSING
                and job.owner
                and job.owner != owner
                and not job.lease_expired(lease_seconds)
            ):
                return None
            if not await self._acquire_lease(job_id, owner, lease_seconds):
                return None

            # Another instance may have finished the job before the lease was ours
            job = await self.get(job_id)
            if job is None or job.is_terminal:
                await self.release(job_id, owner)
                return None

            now = time.time()
            job.status = JobStatus.PROCESSING
            job.owner = owner
            job.heartbeat = now
            if not job.start_time:
                job.start_time = now
            await self.upsert(job)
            return job

    async def _acquire_lease(self, job_id: str, owner: str, lease_seconds: float) -> bool:
        return True

    async def renew(self, job_id: str, owner: str, lease_seconds: float) -> None:
        """Extend a lease taken by claim(). No-op for single-process stores."""

    async def release(self, job_id: str, owner: str) -> None:
        """Drop a lease taken by claim(). No-op for single-process stores."""

    async def close(self) -> None:
        pass


class InMemoryJobStore(JobStore):
    """Volatile store for tests and single-shot runs."""

    @property
    def backend(self) -> str:
        return "memory"

    async def persist(self, job_id: str, data: dict[str, Any]) -> None:
        pass

    async def load(self, job_id: str) -> dict[str, Any] | None:
        return None

    async def _remove_snapshot(self, job_id: str) -> None:
        pass

    async def _snapshot_ids(self) -> list[str]:
        return []


class SnapshotJobStore(JobStore):
    """One JSON snapshot file per job id in a directory."""

    def __init__(self, directory: str | Path):
        super().__init__()
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    @property
    def backend(self) -> str:
        return "file"

    def _path(self, job_id: str) -> Path:
        if not is_valid_job_id(job_id):
            raise JobNotFoundError(job_id)
        return self.directory / f"{job_id}.json"

    async def persist(self, job_id: str, data: dict[str, Any]) -> None:
        path = self._path(job_id)
        tmp = path.with_suffix(".json.tmp")
        try:
            async with aiofiles.open(tmp, "w", encoding="utf-8") as f:
                await f.write(json.dumps(data, ensure_ascii=False))
            os.replace(tmp, path)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise JobResourceError(f"Cannot write snapshot for {job_id}: {e}") from e

    async def load(self, job_id: str) -> dict[str, Any] | None:
        try:
            path = self._path(job_id)
        except JobNotFoundError:
            return None
        if not path.exists():
            return None
        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                return json.loads(await f.read())
        except (OSError, ValueError) as e:
            raise JobResourceError(f"Cannot read snapshot for {job_id}: {e}") from e

    async def _remove_snapshot(self, job_id: str) -> None:
        try:
            self._path(job_id).unlink(missing_ok=True)
        except JobNotFoundError:
            pass

    async def _snapshot_ids(self) -> list[str]:
        return sorted(
            p.stem for p in self.directory.glob("job_*.json")
            if is_valid_job_id(p.stem)
        )


class RedisJobStore(JobStore):
    """Snapshots in Redis with SET EX; claims guarded by SET NX EX.

    Redis is shared between instances, so reads always go to Redis. The
    in-memory view only mirrors the last snapshot this instance saw.
    """

    PREFIX = "postcode_finder:job:"
    LEASE_PREFIX = "postcode_finder:lease:"

    def __init__(self, client: Any, retention_seconds: int = 86400):
        super().__init__()
        self.client = client
        self.retention_seconds = retention_seconds

    @property
    def backend(self) -> str:
        return "redis"

    async def persist(self, job_id: str, data: dict[str, Any]) -> None:
        try:
            await self.client.set(
                f"{self.PREFIX}{job_id}",
                json.dumps(data, ensure_ascii=False),
                ex=self.retention_seconds,
            )
        except aioredis.RedisError as e:
            raise JobResourceError(f"Cannot write snapshot for {job_id}: {e}") from e

    async def load(self, job_id: str) -> dict[str, Any] | None:
        try:
            raw = await self.client.get(f"{self.PREFIX}{job_id}")
        except aioredis.RedisError as e:
            raise JobResourceError(f"Cannot read snapshot for {job_id}: {e}") from e
        if not raw:
            return None
        try:
            return json.loads(raw)
        except ValueError as e:
            raise JobResourceError(f"Corrupt snapshot for {job_id}: {e}") from e

    async def get(self, job_id: str) -> Job | None:
        data = await self.load(job_id)
        if data is None:
            self._jobs.pop(job_id, None)
            return None
        self._jobs[job_id] = data
        return Job.from_dict(data)

    async def list_jobs(self) -> list[Job]:
        jobs = []
        for job_id in await self._snapshot_ids():
            try:
                job = await self.get(job_id)
            except JobResourceError as e:
                logger.warning(f"Skipping unreadable snapshot {job_id}: {e}")
                continue
            if job is not None:
                jobs.append(job)
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return jobs

    async def _remove_snapshot(self, job_id: str) -> None:
        await self.client.delete(f"{self.PREFIX}{job_id}", f"{self.LEASE_PREFIX}{job_id}")

    async def _snapshot_ids(self) -> list[str]:
        ids = []
        async for key in self.client.scan_iter(match=f"{self.PREFIX}*"):
            ids.append(key[len(self.PREFIX):])
        return ids

    async def _acquire_lease(self, job_id: str, owner: str, lease_seconds: float) -> bool:
        key = f"{self.LEASE_PREFIX}{job_id}"
        ttl = max(int(lease_seconds), 1)
        if await self.client.set(key, owner, nx=True, ex=ttl):
            return True
        if await self.client.get(key) == owner:
            await self.client.expire(key, ttl)
            return True
        logger.warning(f"Job {job_id} lease held by another instance")
        return False

    async def renew(self, job_id: str, owner: str, lease_seconds: float) -> None:
        key = f"{self.LEASE_PREFIX}{job_id}"
        if await self.client.get(key) == owner:
            await self.client.expire(key, max(int(lease_seconds), 1))

    async def release(self, job_id: str, owner: str) -> None:
        key = f"{self.LEASE_PREFIX}{job_id}"
        if await self.client.get(key) == owner:
            await self.client.delete(key)

    async def close(self) -> None:
        await self.client.aclose()


def create_job_store(config: Config) -> JobStore:
    """Redis store when REDIS_URL is set, else file snapshots."""
    if config.is_redis_store():
        client = aioredis.from_url(config.redis_url, decode_responses=True)
        return RedisJobStore(client, retention_seconds=config.job_retention_seconds)
    return SnapshotJobStore(config.job_snapshot_dir)
