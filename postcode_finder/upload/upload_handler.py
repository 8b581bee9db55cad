"""
Upload Handler - scoped temp files
==================================
Streams uploads to disk under a size limit and guarantees cleanup of the
uploaded file and of partially written output artifacts on every exit path.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from enum import Enum
from pathlib import Path
from typing import AsyncIterator, Protocol

import aiofiles

logger = logging.getLogger(__name__)


class FileType(str, Enum):
    """Supported upload types"""
    CSV = "csv"
    EXCEL = "xlsx"


class FileTooLargeError(Exception):
    """Upload exceeded the configured byte limit."""

    def __init__(self, limit: int):
        super().__init__(f"File exceeds the {limit // (1024 * 1024)}MB limit")
        self.limit = limit


class UnsupportedFileError(Exception):
    """Upload has an extension that cannot be parsed."""


class AsyncReadable(Protocol):
    async def read(self, size: int = -1) -> bytes: ...


class UploadHandler:
    """
    Writes uploads into upload_dir in chunks and removes them afterwards.
    """

    # Chunk size for streaming (1MB chunks)
    CHUNK_SIZE = 1024 * 1024

    def __init__(
        self,
        upload_dir: str | Path,
        output_dir: str | Path,
        max_file_size: int,
        allowed_extensions: tuple[str, ...] = (".xlsx", ".csv"),
    ):
        self.upload_dir = Path(upload_dir)
        self.output_dir = Path(output_dir)
        self.max_file_size = max_file_size
        self.allowed_extensions = allowed_extensions
        self.upload_dir.mkdir(parents=True, exist_ok=True)
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def detect_file_type(self, filename: str) -> FileType:
        """Detect file type from the filename extension"""
        ext = Path(filename or "").suffix.lower()
        if ext not in self.allowed_extensions:
            raise UnsupportedFileError(
                f"Unsupported file type '{ext or filename}'. Allowed: {', '.join(self.allowed_extensions)}"
            )
        return FileType(ext.lstrip("."))

    async def save(self, source: AsyncReadable, filename: str) -> Path:
        """
        Stream an upload to disk.
        Returns path to the saved file; nothing is left behind on failure.
        """
        file_type = self.detect_file_type(filename)
        path = self.upload_dir / f"{uuid.uuid4().hex}.{file_type.value}"
        received = 0
        try:
            async with aiofiles.open(path, "wb") as f:
                while chunk := await source.read(self.CHUNK_SIZE):
                    received += len(chunk)
                    if received > self.max_file_size:
                        raise FileTooLargeError(self.max_file_size)
                    await f.write(chunk)
        except BaseException:
            path.unlink(missing_ok=True)
            raise
        logger.info(f"Saved upload {filename} ({received} bytes) to {path.name}")
        return path

    @asynccontextmanager
    async def scoped(self, path: Path) -> AsyncIterator[Path]:
        """Yield an uploaded file and delete it when the block exits."""
        try:
            yield path
        finally:
            self.discard(path)

    def discard(self, path: Path | str | None) -> None:
        if not path:
            return
        try:
            Path(path).unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not remove temp file {path}: {e}")

    def output_path(self, job_id: str, extension: str) -> Path:
        return self.output_dir / f"{job_id}{extension}"

    async def write_output(self, path: Path, data: bytes) -> Path:
        """Write an output artifact; a partial file is removed on failure."""
        try:
            async with aiofiles.open(path, "wb") as f:
                await f.write(data)
        except BaseException:
            self.discard(path)
            raise
        return path
