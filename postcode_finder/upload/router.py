"""
Postcode Finder File Router - FastAPI Endpoints
===============================================
Routes for spreadsheet upload, job status (polling and SSE), download,
label data, job listing, resume, cancel and delete.
"""

import json
import logging
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, File, Form, HTTPException, UploadFile
from fastapi.responses import Response, StreamingResponse

from postcode_finder.jobs.models import JobOptions, is_valid_job_id
from postcode_finder.jobs.orchestrator import JobNotReadyError, JobOrchestrator
from postcode_finder.jobs.store import JobNotFoundError, JobResourceError
from .document_parser import JobInputError
from .upload_handler import FileTooLargeError, UnsupportedFileError, UploadHandler

logger = logging.getLogger(__name__)


# Global services (initialized from main.py)
_orchestrator: JobOrchestrator = None
_uploads: UploadHandler = None
_process_on_upload: bool = True


def configure_file_routes(
    orchestrator: JobOrchestrator,
    uploads: UploadHandler,
    process_on_upload: bool = True,
) -> None:
    """Configure file routes with the job orchestrator and upload handler.

    Args:
        orchestrator: Job lifecycle owner.
        uploads: Scoped temp file handler.
        process_on_upload: Start jobs right after upload, else on first status poll.
    """
    global _orchestrator, _uploads, _process_on_upload
    _orchestrator = orchestrator
    _uploads = uploads
    _process_on_upload = process_on_upload
    logger.info(f"File routes configured (process_on_upload={process_on_upload})")


# Create router
router = APIRouter(prefix="/api/file", tags=["File Jobs"])


def _require_services() -> JobOrchestrator:
    if not _orchestrator or not _uploads:
        raise HTTPException(status_code=503, detail="File service not initialized")
    return _orchestrator


def _check_job_id(job_id: str) -> None:
    if not is_valid_job_id(job_id):
        raise HTTPException(status_code=400, detail=f"Invalid job id: {job_id}")


def _parse_drop_columns(value: Optional[str]) -> list[str]:
    """Accept a JSON array or a comma-separated list."""
    if not value or not value.strip():
        return []
    text = value.strip()
    if text.startswith("["):
        try:
            items = json.loads(text)
        except ValueError:
            raise HTTPException(status_code=400, detail="dropColumns is not valid JSON")
        if not isinstance(items, list):
            raise HTTPException(status_code=400, detail="dropColumns must be a list")
        return [str(item).strip() for item in items if str(item).strip()]
    return [part.strip() for part in text.split(",") if part.strip()]


def _content_disposition(filename: str) -> str:
    # RFC 5987 form so Korean filenames survive
    return f"attachment; filename=\"download\"; filename*=UTF-8''{quote(filename)}"


@router.post("/upload")
async def upload_file(
    file: UploadFile = File(...),
    addressColumn: Optional[str] = Form(default=None),
    dropColumns: Optional[str] = Form(default=None),
    wait: bool = Form(default=False),
):
    """Upload a spreadsheet and create a job.

    With wait=true the request returns after the job finished; otherwise the
    job runs in the background (or on first status poll).
    """
    orchestrator = _require_services()
    filename = file.filename or ""

    try:
        path = await _uploads.save(file, filename)
    except UnsupportedFileError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except FileTooLargeError as e:
        raise HTTPException(status_code=413, detail=str(e))
    finally:
        await file.close()

    options = JobOptions(address_column=addressColumn or None, drop_columns=_parse_drop_columns(dropColumns))
    try:
        job = await orchestrator.ingest(path, filename, options)
    except JobInputError as e:
        raise HTTPException(status_code=422, detail={"error": str(e), "jobId": e.job_id or None})
    except JobResourceError as e:
        logger.error(f"Upload of {filename} failed: {e}")
        raise HTTPException(status_code=500, detail="Job state could not be stored")

    if wait:
        job = await orchestrator.process(job.id)
    elif _process_on_upload:
        await orchestrator.start(job.id)
        job = await orchestrator.store.require(job.id)

    return {
        "success": True,
        "jobId": job.id,
        "filename": job.filename,
        "status": job.status.value,
        "originalRows": job.duplicate_info.original_count,
        "duplicatesRemoved": job.duplicate_info.duplicate_count,
        "uniqueRows": job.duplicate_info.unique_count,
        "truncatedCount": job.truncated_count,
        "total": job.total,
    }


@router.get("/status/{job_id}")
async def get_status(job_id: str):
    """Job status; starts a job that was uploaded but never started."""
    orchestrator = _require_services()
    _check_job_id(job_id)
    try:
        return await orchestrator.status(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")


@router.get("/status/{job_id}/stream")
async def stream_status(job_id: str, interval: float = 0.5):
    """Job status as Server-Sent Events until the job finishes."""
    orchestrator = _require_services()
    _check_job_id(job_id)
    if await orchestrator.store.get(job_id) is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return StreamingResponse(
        orchestrator.stream_status(job_id, interval=max(interval, 0.1)),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/download/{job_id}")
async def download(job_id: str):
    """Download the output file of a completed job."""
    orchestrator = _require_services()
    _check_job_id(job_id)
    try:
        filename, data, media_type = await orchestrator.output(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")
    except JobNotReadyError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return Response(
        content=data,
        media_type=media_type,
        headers={"Content-Disposition": _content_disposition(filename)},
    )


@router.get("/label-data/{job_id}")
async def label_data(job_id: str):
    """Output rows as header-keyed objects, for label printing."""
    orchestrator = _require_services()
    _check_job_id(job_id)
    try:
        rows = await orchestrator.label_data(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")
    except JobNotReadyError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"success": True, "jobId": job_id, "count": len(rows), "data": rows}


@router.get("/list")
async def list_jobs():
    orchestrator = _require_services()
    jobs = await orchestrator.list_jobs()
    return {"success": True, "count": len(jobs), "jobs": jobs}


@router.post("/{job_id}/resume")
async def resume_job(job_id: str):
    """Resume a job whose driver stopped (restart, crash)."""
    orchestrator = _require_services()
    _check_job_id(job_id)
    try:
        started = await orchestrator.resume(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")
    return {"success": started, "jobId": job_id, "resumed": started}


@router.post("/{job_id}/cancel")
async def cancel_job(job_id: str):
    orchestrator = _require_services()
    _check_job_id(job_id)
    try:
        cancelled = await orchestrator.cancel(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")
    if not cancelled:
        raise HTTPException(status_code=409, detail="Job is already finished or owned by another instance")
    return {"success": True, "jobId": job_id, "cancelled": True}


@router.delete("/{job_id}")
async def delete_job(job_id: str):
    orchestrator = _require_services()
    _check_job_id(job_id)
    try:
        await orchestrator.delete(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Job not found")
    return {"success": True, "jobId": job_id, "deleted": True}
