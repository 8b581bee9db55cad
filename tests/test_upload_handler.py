"""Tests for upload streaming, size limits and temp file cleanup."""

import io

import pytest

from postcode_finder.upload.upload_handler import (
    FileTooLargeError,
    FileType,
    UnsupportedFileError,
)


class BytesSource:
    """Async reader over in-memory bytes (stands in for UploadFile)."""

    def __init__(self, data: bytes):
        self._buffer = io.BytesIO(data)

    async def read(self, size: int = -1) -> bytes:
        return self._buffer.read(size)


class TestUploadHandler:

    def test_detect_file_type(self, uploads):
        assert uploads.detect_file_type("주소록.XLSX") == FileType.EXCEL
        assert uploads.detect_file_type("a.csv") == FileType.CSV
        with pytest.raises(UnsupportedFileError):
            uploads.detect_file_type("a.txt")
        with pytest.raises(UnsupportedFileError):
            uploads.detect_file_type("noext")

    @pytest.mark.asyncio
    async def test_save(self, uploads):
        path = await uploads.save(BytesSource("주소\n".encode("utf-8")), "a.csv")
        assert path.parent == uploads.upload_dir
        assert path.suffix == ".csv"
        assert path.read_text(encoding="utf-8") == "주소\n"

    @pytest.mark.asyncio
    async def test_size_limit_leaves_nothing(self, uploads):
        data = b"x" * (uploads.max_file_size + 1)
        with pytest.raises(FileTooLargeError):
            await uploads.save(BytesSource(data), "big.csv")
        assert list(uploads.upload_dir.iterdir()) == []

    @pytest.mark.asyncio
    async def test_scoped_removes_on_error(self, uploads):
        path = await uploads.save(BytesSource(b"a"), "a.csv")
        with pytest.raises(RuntimeError):
            async with uploads.scoped(path):
                raise RuntimeError("boom")
        assert not path.exists()

    @pytest.mark.asyncio
    async def test_write_output(self, uploads):
        path = uploads.output_path("job_1_abc", ".xlsx")
        await uploads.write_output(path, b"PK")
        assert path.read_bytes() == b"PK"
        uploads.discard(path)
        assert not path.exists()

    def test_discard_tolerates_missing(self, uploads):
        uploads.discard(None)
        uploads.discard("")
        uploads.discard(uploads.output_dir / "missing.xlsx")
