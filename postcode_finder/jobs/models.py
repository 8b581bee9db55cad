"""Job state for bulk address resolution.

A Job is the unit of orchestration state for one uploaded file. Snapshots
are plain dicts (snake_case) produced by to_dict() and read back by
from_dict(); the API payload is built separately by the orchestrator.
"""

import random
import re
import string
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from postcode_finder.address_models import RawRow, ResolvedAddress

JOB_ID_PATTERN = re.compile(r"^job_\d+_[a-z0-9]+$")

STEP_NAMES: tuple[str, ...] = ("upload", "dedupe", "lookup", "export")


def new_job_id() -> str:
    """job_<epoch-ms>_<random lowercase alnum>."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"job_{int(time.time() * 1000)}_{suffix}"


def is_valid_job_id(job_id: str) -> bool:
    return bool(job_id) and bool(JOB_ID_PATTERN.match(job_id))


class JobStatus(str, Enum):
    UPLOADED = "uploaded"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class StepStatus(str, Enum):
    """Per-step observational status; does not gate transitions."""
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    DONE = "done"
    ERROR = "error"


class RowErrorCategory(str, Enum):
    NOT_FOUND = "not_found"   # no admissible candidate
    INVALID = "invalid"       # empty / not an address
    UPSTREAM = "upstream"     # timeout, provider error code, circuit open
    OTHER = "other"


@dataclass(slots=True)
class RowResult:
    """Successful resolution of one row."""
    row: int  # sheet row number
    resolved: ResolvedAddress
    main: str = ""
    detail: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "row": self.row,
            "resolved": self.resolved.to_dict(),
            "main": self.main,
            "detail": self.detail,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RowResult":
        return cls(
            row=data["row"],
            resolved=ResolvedAddress.from_dict(data.get("resolved", {})),
            main=data.get("main", ""),
            detail=data.get("detail", ""),
        )


@dataclass(slots=True)
class RowError:
    """Failed resolution of one row; the row's output columns stay blank."""
    row: int  # sheet row number
    address: str
    message: str
    category: RowErrorCategory = RowErrorCategory.OTHER

    def to_dict(self) -> dict[str, Any]:
        return {
            "row": self.row,
            "address": self.address,
            "message": self.message,
            "category": self.category.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RowError":
        return cls(
            row=data["row"],
            address=data.get("address", ""),
            message=data.get("message", ""),
            category=RowErrorCategory(data.get("category", "other")),
        )


@dataclass(slots=True)
class DuplicateInfo:
    original_count: int = 0
    unique_count: int = 0
    duplicate_count: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "original_count": self.original_count,
            "unique_count": self.unique_count,
            "duplicate_count": self.duplicate_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "DuplicateInfo":
        data = data or {}
        return cls(
            original_count=data.get("original_count", 0),
            unique_count=data.get("unique_count", 0),
            duplicate_count=data.get("duplicate_count", 0),
        )


@dataclass(slots=True)
class JobOptions:
    """Caller choices made at upload time."""
    address_column: str | None = None  # header name; None = auto-detect
    drop_columns: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"address_column": self.address_column, "drop_columns": list(self.drop_columns)}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "JobOptions":
        data = data or {}
        return cls(
            address_column=data.get("address_column"),
            drop_columns=list(data.get("drop_columns") or []),
        )


@dataclass(slots=True)
class Job:
    """One uploaded file's end-to-end resolution run."""
    id: str
    filename: str = ""
    status: JobStatus = JobStatus.UPLOADED
    steps: dict[str, StepStatus] = field(
        default_factory=lambda: {name: StepStatus.PENDING for name in STEP_NAMES}
    )
    options: JobOptions = field(default_factory=JobOptions)

    # Input schema, fixed once dedupe is done
    headers: list[str] = field(default_factory=list)
    address_column: int = -1
    rows: list[RawRow] = field(default_factory=list)

    # Progress
    processed: int = 0
    total: int = 0
    results: list[RowResult] = field(default_factory=list)
    errors: list[RowError] = field(default_factory=list)

    # Bookkeeping
    total_original: int = 0
    truncated_count: int = 0
    max_rows: int = 0
    duplicate_info: DuplicateInfo = field(default_factory=DuplicateInfo)
    output_path: str = ""
    error: str = ""

    # Timing (epoch seconds)
    created_at: float = field(default_factory=time.time)
    start_time: float = 0.0
    end_time: float = 0.0

    # Driver lease
    owner: str = ""
    heartbeat: float = 0.0

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.ERROR)

    @property
    def progress(self) -> int:
        """Whole percent of rows processed."""
        if self.status == JobStatus.COMPLETED:
            return 100
        if self.total <= 0:
            return 0
        return int(self.processed * 100 / self.total)

    def step_done(self, name: str) -> bool:
        return self.steps.get(name) == StepStatus.DONE

    def set_step(self, name: str, status: StepStatus) -> None:
        self.steps[name] = status

    def fail_open_steps(self) -> None:
        """Mark every step that is not done as errored."""
        for name in STEP_NAMES:
            if self.steps.get(name) != StepStatus.DONE:
                self.steps[name] = StepStatus.ERROR

    def lease_expired(self, lease_seconds: float, now: float | None = None) -> bool:
        now = time.time() if now is None else now
        return now - self.heartbeat > lease_seconds

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for JSON snapshots."""
        return {
            "id": self.id,
            "filename": self.filename,
            "status": self.status.value,
            "steps": {name: status.value for name, status in self.steps.items()},
            "options": self.options.to_dict(),
            "headers": list(self.headers),
            "address_column": self.address_column,
            "rows": [row.to_dict() for row in self.rows],
            "processed": self.processed,
            "total": self.total,
            "results": [r.to_dict() for r in self.results],
            "errors": [e.to_dict() for e in self.errors],
            "total_original": self.total_original,
            "truncated_count": self.truncated_count,
            "max_rows": self.max_rows,
            "duplicate_info": self.duplicate_info.to_dict(),
            "output_path": self.output_path,
            "error": self.error,
            "created_at": self.created_at,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "owner": self.owner,
            "heartbeat": self.heartbeat,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Job":
        """Create from a snapshot dict."""
        steps = {name: StepStatus.PENDING for name in STEP_NAMES}
        for name, value in (data.get("steps") or {}).items():
            steps[name] = StepStatus(value)
        return cls(
            id=data["id"],
            filename=data.get("filename", ""),
            status=JobStatus(data.get("status", "uploaded")),
            steps=steps,
            options=JobOptions.from_dict(data.get("options")),
            headers=list(data.get("headers") or []),
            address_column=data.get("address_column", -1),
            rows=[RawRow.from_dict(r) for r in data.get("rows") or []],
            processed=data.get("processed", 0),
            total=data.get("total", 0),
            results=[RowResult.from_dict(r) for r in data.get("results") or []],
            errors=[RowError.from_dict(e) for e in data.get("errors") or []],
            total_original=data.get("total_original", 0),
            truncated_count=data.get("truncated_count", 0),
            max_rows=data.get("max_rows", 0),
            duplicate_info=DuplicateInfo.from_dict(data.get("duplicate_info")),
            output_path=data.get("output_path", ""),
            error=data.get("error", ""),
            created_at=data.get("created_at", 0.0),
            start_time=data.get("start_time", 0.0),
            end_time=data.get("end_time", 0.0),
            owner=data.get("owner", ""),
            heartbeat=data.get("heartbeat", 0.0),
        )
