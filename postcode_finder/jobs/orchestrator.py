"""Batch Job Orchestrator.

Drives a Job through its lifecycle:

    uploaded -> processing -> completed | error

    1. upload + dedupe   (ingest: parse sheet, find address column, dedupe, cap rows)
    2. lookup            (fixed-size batches of concurrent per-row resolutions)
    3. export            (shape output matrix, render, write artifact)

Every state change is published through the JobStore. Lookup progress is
persisted after each full batch, so a restarted process resumes from
``processed`` instead of redoing finished batches. Only one driver advances
a job at a time: a second start for a job that is already processing is
declined.
"""

import asyncio
import json
import logging
import os
import socket
import time
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator

import aiofiles

from postcode_finder.address_models import RawRow
from postcode_finder.address_normalizer import is_valid_address, normalize
from postcode_finder.address_resolver import AddressResolver
from postcode_finder.export import ExportShaper, OutputRenderer, label_rows
from postcode_finder.geocoder import GeocoderError
from postcode_finder.jobs.models import (
    STEP_NAMES,
    DuplicateInfo,
    Job,
    JobOptions,
    JobStatus,
    RowError,
    RowErrorCategory,
    RowResult,
    StepStatus,
    new_job_id,
)
from postcode_finder.jobs.store import JobNotFoundError, JobResourceError, JobStore
from postcode_finder.upload.document_parser import (
    DocumentParserService,
    JobInputError,
    dedupe_rows,
    find_address_column,
)
from postcode_finder.upload.upload_handler import UploadHandler

logger = logging.getLogger(__name__)

STEP_LABELS = {
    "upload": "파일 업로드",
    "dedupe": "중복 제거",
    "lookup": "우편번호 조회",
    "export": "엑셀 생성",
}

CANCELLED_MESSAGE = "cancelled"


class JobCancelledError(Exception):
    """Cancellation observed at a batch boundary."""


class JobNotReadyError(Exception):
    """Output requested before the job completed."""


def _iso(timestamp: float) -> str | None:
    if not timestamp:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


class JobOrchestrator:
    """Owns the job lifecycle; one instance per process.

    Args:
        store: Job store (exclusive owner of job state).
        resolver: Per-address resolver.
        parser: Spreadsheet parser service.
        uploads: Temp file handler for uploads and artifacts.
        shaper: Output matrix builder.
        renderer: Output renderer collaborator.
        max_rows: Rows kept after dedupe; the rest are truncated and counted.
        batch_size: Rows resolved concurrently per batch.
        inter_batch_delay: Seconds to wait between batches.
        lease_seconds: Heartbeat age after which a processing job may be resumed.
    """

    def __init__(
        self,
        store: JobStore,
        resolver: AddressResolver,
        parser: DocumentParserService,
        uploads: UploadHandler,
        shaper: ExportShaper,
        renderer: OutputRenderer,
        max_rows: int = 1000,
        batch_size: int = 10,
        inter_batch_delay: float = 1.0,
        lease_seconds: float = 60,
    ):
        self.store = store
        self.resolver = resolver
        self.parser = parser
        self.uploads = uploads
        self.shaper = shaper
        self.renderer = renderer
        self.max_rows = max_rows
        self.batch_size = max(batch_size, 1)
        self.inter_batch_delay = inter_batch_delay
        self.lease_seconds = lease_seconds

        self.instance_id = f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:6]}"
        self._drivers: dict[str, asyncio.Task] = {}
        self._cancel_events: dict[str, asyncio.Event] = {}
        self._start_lock = asyncio.Lock()

    # ========================================================================
    # Upload + dedupe
    # ========================================================================

    async def ingest(self, path: Path, filename: str, options: JobOptions | None = None) -> Job:
        """Create a job from a saved upload and run the dedupe step.

        The uploaded file is deleted on every exit path.

        Args:
            path: Saved upload.
            filename: Original filename (selects the parser).
            options: Address column hint and columns to drop.

        Returns:
            The job in status uploaded, dedupe done.

        Raises:
            JobInputError: The file cannot be used; the job is stored in error.
        """
        job = Job(id=new_job_id(), filename=filename, options=options or JobOptions(), max_rows=self.max_rows)
        job.set_step("upload", StepStatus.DONE)

        async with self.uploads.scoped(path):
            try:
                job.set_step("dedupe", StepStatus.IN_PROGRESS)
                await self.store.upsert(job)

                sheet = await self.parser.parse_file(path, filename)
                column = find_address_column(sheet.headers, job.options.address_column)
                deduped = dedupe_rows(sheet, column)
            except (JobInputError, JobResourceError) as e:
                logger.warning(f"Job {job.id} rejected: {e}")
                if isinstance(e, JobInputError):
                    e.job_id = job.id
                await self._fail(job, str(e))
                raise
            except Exception as e:
                logger.error(f"Job {job.id} ingest failed: {e}", exc_info=True)
                await self._fail(job, str(e) or type(e).__name__)
                raise

        rows = deduped.rows
        job.headers = sheet.headers
        job.address_column = column
        job.truncated_count = max(len(rows) - self.max_rows, 0)
        job.rows = rows[: self.max_rows]
        job.total = len(job.rows)
        job.total_original = deduped.original_count
        job.duplicate_info = DuplicateInfo(
            original_count=deduped.original_count,
            unique_count=deduped.unique_count,
            duplicate_count=deduped.duplicate_count,
        )
        job.set_step("dedupe", StepStatus.DONE)
        await self.store.upsert(job)

        logger.info(
            f"Job {job.id} created from {filename}: {deduped.original_count} rows, "
            f"{deduped.duplicate_count} duplicates, {job.truncated_count} truncated, {job.total} to resolve"
        )
        return job

    # ========================================================================
    # Driving
    # ========================================================================

    def is_running(self, job_id: str) -> bool:
        task = self._drivers.get(job_id)
        return task is not None and not task.done()

    async def start(self, job_id: str) -> bool:
        """Start driving a job in the background.

        Returns:
            False if the job is terminal, unknown, or already owned by a
            driver here or elsewhere.
        """
        async with self._start_lock:
            if self.is_running(job_id):
                logger.warning(f"Job {job_id} already has a local driver; start declined")
                return False
            job = await self.store.claim(job_id, self.instance_id, self.lease_seconds)
            if job is None:
                logger.info(f"Job {job_id} not claimable; start declined")
                return False

            event = asyncio.Event()
            self._cancel_events[job_id] = event
            task = asyncio.create_task(self._drive(job, event), name=f"job-{job_id}")
            self._drivers[job_id] = task
            task.add_done_callback(lambda t, jid=job_id: self._forget(jid, t))
            logger.info(f"Job {job_id} started (resume from row {job.processed}/{job.total})")
            return True

    def _forget(self, job_id: str, task: asyncio.Task) -> None:
        if self._drivers.get(job_id) is task:
            self._drivers.pop(job_id, None)
            self._cancel_events.pop(job_id, None)

    async def process(self, job_id: str) -> Job:
        """Start a job if needed and wait for its driver to finish."""
        await self.start(job_id)
        task = self._drivers.get(job_id)
        if task is not None:
            await task
        return await self.store.require(job_id)

    async def resume(self, job_id: str) -> bool:
        """Resume a job interrupted by a restart (stale lease)."""
        job = await self.store.require(job_id)
        if job.is_terminal:
            return False
        return await self.start(job_id)

    async def cancel(self, job_id: str) -> bool:
        """Request cancellation; a running job stops at the next batch boundary."""
        event = self._cancel_events.get(job_id)
        if event is not None and self.is_running(job_id):
            event.set()
            logger.info(f"Job {job_id} cancellation requested")
            return True

        job = await self.store.require(job_id)
        if job.is_terminal:
            return False
        if job.status == JobStatus.PROCESSING and not job.lease_expired(self.lease_seconds):
            # Driven by another instance
            return False
        await self._fail(job, CANCELLED_MESSAGE)
        return True

    async def _drive(self, job: Job, cancel: asyncio.Event) -> Job:
        try:
            if not job.step_done("dedupe") or not job.rows:
                raise JobInputError("Job has no deduplicated rows to process")
            if not job.step_done("lookup"):
                await self._lookup(job, cancel)
            if not job.step_done("export"):
                await self._export(job)

            job.status = JobStatus.COMPLETED
            job.end_time = time.time()
            job.owner = ""
            await self.store.upsert(job)
            logger.info(
                f"Job {job.id} completed: {len(job.results)} resolved, {len(job.errors)} failed "
                f"in {job.end_time - job.start_time:.1f}s"
            )
        except JobCancelledError:
            logger.info(f"Job {job.id} cancelled at row {job.processed}/{job.total}")
            await self._fail(job, CANCELLED_MESSAGE)
        except Exception as e:
            logger.error(f"Job {job.id} failed: {e}", exc_info=True)
            await self._fail(job, str(e) or type(e).__name__)
        finally:
            await self.store.release(job.id, self.instance_id)
        return job

    async def _fail(self, job: Job, message: str) -> None:
        job.status = JobStatus.ERROR
        job.error = message
        job.end_time = time.time()
        job.owner = ""
        job.fail_open_steps()
        if job.output_path:
            self.uploads.discard(job.output_path)
            job.output_path = ""
        try:
            await self.store.upsert(job)
        except JobResourceError as e:
            logger.warning(f"Job {job.id}: error state not persisted: {e}")

    # ========================================================================
    # Lookup
    # ========================================================================

    async def _lookup(self, job: Job, cancel: asyncio.Event) -> None:
        job.set_step("lookup", StepStatus.IN_PROGRESS)
        await self.store.upsert(job)

        while job.processed < job.total:
            if cancel.is_set():
                raise JobCancelledError(job.id)

            batch = job.rows[job.processed: job.processed + self.batch_size]
            outcomes = await asyncio.gather(*(self._resolve_row(row) for row in batch))

            for outcome in outcomes:
                if isinstance(outcome, RowResult):
                    job.results.append(outcome)
                else:
                    job.errors.append(outcome)
            job.processed += len(batch)
            job.heartbeat = time.time()
            await self.store.upsert(job)
            await self.store.renew(job.id, self.instance_id, self.lease_seconds)
            logger.info(f"Job {job.id}: {job.processed}/{job.total} rows ({len(job.errors)} errors)")

            if job.processed < job.total and self.inter_batch_delay > 0:
                await asyncio.sleep(self.inter_batch_delay)

        job.set_step("lookup", StepStatus.DONE)
        await self.store.upsert(job)

    async def _resolve_row(self, row: RawRow) -> RowResult | RowError:
        """Resolve one row; every failure becomes a RowError."""
        address = row.address
        normalized = normalize(address)
        if not normalized.main or not is_valid_address(normalized.main):
            return RowError(row.sheet_row, address, "Invalid address", RowErrorCategory.INVALID)

        try:
            resolved = await self.resolver.resolve_normalized(normalized)
        except GeocoderError as e:
            return RowError(row.sheet_row, address, f"Upstream error ({e.code}): {e.message}", RowErrorCategory.UPSTREAM)
        except Exception as e:
            logger.warning(f"Row {row.sheet_row} lookup failed: {e}")
            return RowError(row.sheet_row, address, str(e) or type(e).__name__, RowErrorCategory.OTHER)

        if resolved is None:
            return RowError(row.sheet_row, address, "Postal code not found", RowErrorCategory.NOT_FOUND)
        return RowResult(row=row.sheet_row, resolved=resolved, main=normalized.main, detail=normalized.detail)

    # ========================================================================
    # Export
    # ========================================================================

    async def _render(self, job: Job) -> bytes:
        matrix = self.shaper.build(job)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.renderer.render, matrix)

    async def _export(self, job: Job) -> None:
        job.set_step("export", StepStatus.IN_PROGRESS)
        await self.store.upsert(job)

        data = await self._render(job)
        path = self.uploads.output_path(job.id, self.renderer.extension)
        try:
            await self.uploads.write_output(path, data)
        except OSError as e:
            raise JobResourceError(f"Cannot write output file: {e}") from e

        job.output_path = str(path)
        job.set_step("export", StepStatus.DONE)
        await self.store.upsert(job)

    # ========================================================================
    # Queries
    # ========================================================================

    async def status(self, job_id: str) -> dict[str, Any]:
        """Status payload; lazily starts a job that was never started.

        A processing job whose driver died (stale lease, no local driver) is
        resumed as well.
        """
        job = await self.store.require(job_id)
        if not self.is_running(job_id):
            stale = job.status == JobStatus.PROCESSING and job.lease_expired(self.lease_seconds)
            if job.status == JobStatus.UPLOADED or stale:
                if await self.start(job_id):
                    job = await self.store.require(job_id)
        return self.status_payload(job)

    def status_payload(self, job: Job) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "jobId": job.id,
            "filename": job.filename,
            "status": job.status.value,
            "progress": job.progress,
            "processed": job.processed,
            "total": job.total,
            "steps": [
                {"key": name, "label": STEP_LABELS[name], "status": job.steps[name].value}
                for name in STEP_NAMES
            ],
            "truncatedCount": job.truncated_count,
            "maxRows": job.max_rows or self.max_rows,
            "totalOriginal": job.total_original,
            "duplicateInfo": {
                "originalCount": job.duplicate_info.original_count,
                "uniqueCount": job.duplicate_info.unique_count,
                "duplicateCount": job.duplicate_info.duplicate_count,
            },
            "createdAt": _iso(job.created_at),
            "startTime": _iso(job.start_time),
            "errors": [
                {"row": e.row, "address": e.address, "error": e.message, "category": e.category.value}
                for e in job.errors
            ],
            "results": [
                {"row": r.row, **r.resolved.to_response(), "detail": r.detail}
                for r in job.results
            ],
            "summary": self.summary(job),
        }

        if job.status == JobStatus.PROCESSING:
            eta = self._estimate_remaining_ms(job)
            if eta is not None:
                payload["estimatedRemainingMs"] = eta
        elif job.status == JobStatus.COMPLETED:
            payload["estimatedRemainingMs"] = 0
            payload["downloadUrl"] = f"/api/file/download/{job.id}"
            payload["endTime"] = _iso(job.end_time)
        elif job.status == JobStatus.ERROR:
            payload["error"] = job.error
            payload["endTime"] = _iso(job.end_time)
        return payload

    async def stream_status(self, job_id: str, interval: float = 0.5) -> AsyncIterator[str]:
        """
        Stream status payloads as Server-Sent Events until the job is terminal.

        Args:
            job_id: Job to follow
            interval: Poll interval in seconds

        Yields:
            SSE-formatted event strings
        """
        last_sent = None
        while True:
            try:
                payload = await self.status(job_id)
            except JobNotFoundError:
                yield self._format_sse({"error": "Job not found", "jobId": job_id}, event="error")
                break

            marker = (payload["status"], payload["processed"], tuple(s["status"] for s in payload["steps"]))
            if marker != last_sent:
                last_sent = marker
                yield self._format_sse(payload, event="progress")

            if payload["status"] in (JobStatus.COMPLETED.value, JobStatus.ERROR.value):
                yield self._format_sse(payload, event="complete")
                break

            await asyncio.sleep(interval)

    @staticmethod
    def _format_sse(data: dict, event: str = "message") -> str:
        """Format data as Server-Sent Event."""
        return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"

    @staticmethod
    def _estimate_remaining_ms(job: Job) -> int | None:
        if not job.start_time or job.processed <= 0 or job.total <= job.processed:
            return None
        elapsed_ms = (time.time() - job.start_time) * 1000
        if elapsed_ms <= 0:
            return None
        return round((job.total - job.processed) * elapsed_ms / job.processed)

    @staticmethod
    def summary(job: Job) -> dict[str, Any]:
        successful = len(job.results)
        failed = len(job.errors)
        total = successful + failed
        error_types = {"notFound": 0, "invalid": 0, "upstream": 0, "other": 0}
        keys = {
            RowErrorCategory.NOT_FOUND: "notFound",
            RowErrorCategory.INVALID: "invalid",
            RowErrorCategory.UPSTREAM: "upstream",
            RowErrorCategory.OTHER: "other",
        }
        for error in job.errors:
            error_types[keys[error.category]] += 1
        return {
            "total": total,
            "successful": successful,
            "failed": failed,
            "successRate": round(successful * 100 / total) if total else 0,
            "errorTypes": error_types,
        }

    async def _completed(self, job_id: str) -> Job:
        job = await self.store.require(job_id)
        if job.status != JobStatus.COMPLETED:
            raise JobNotReadyError(f"Job {job_id} is {job.status.value}")
        return job

    async def output(self, job_id: str) -> tuple[str, bytes, str]:
        """Rendered artifact of a completed job.

        Re-renders from the job state if the artifact file is gone (for
        example after a restart on a fresh temp directory).

        Returns:
            (download filename, bytes, media type)
        """
        job = await self._completed(job_id)
        path = Path(job.output_path) if job.output_path else None
        if path is not None and path.exists():
            async with aiofiles.open(path, "rb") as f:
                data = await f.read()
        else:
            logger.info(f"Job {job_id}: output file missing, re-rendering")
            data = await self._render(job)

        stem = Path(job.filename).stem or "result"
        return f"{stem}_우편번호{self.renderer.extension}", data, self.renderer.media_type

    async def label_data(self, job_id: str) -> list[dict[str, Any]]:
        """Output rows as header-keyed dicts (for label printing)."""
        job = await self._completed(job_id)
        return label_rows(self.shaper.build(job))

    async def list_jobs(self) -> list[dict[str, Any]]:
        return [
            {
                "jobId": job.id,
                "filename": job.filename,
                "status": job.status.value,
                "progress": job.progress,
                "total": job.total,
                "createdAt": _iso(job.created_at),
                "endTime": _iso(job.end_time),
            }
            for job in await self.store.list_jobs()
        ]

    async def delete(self, job_id: str) -> bool:
        """Delete a job, its snapshot and its artifact; a running driver is stopped."""
        job = await self.store.require(job_id)
        task = self._drivers.get(job_id)
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        self.uploads.discard(job.output_path)
        deleted = await self.store.delete(job_id)
        logger.info(f"Job {job_id} deleted")
        return deleted

    async def shutdown(self) -> None:
        """Stop local drivers; their jobs stay processing and resume after the lease expires."""
        tasks = [t for t in self._drivers.values() if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Stopped {len(tasks)} job driver(s)")
