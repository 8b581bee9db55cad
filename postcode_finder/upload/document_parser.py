"""
Spreadsheet Parser
==================
Reads uploaded .xlsx / .csv files into a header row plus typed RawRows,
detects the address column and deduplicates rows by address.
"""

import asyncio
import csv
import io
import logging
import zipfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any

import aiofiles
import openpyxl
from openpyxl.utils.exceptions import InvalidFileException

from postcode_finder.address_models import CellValue, RawRow

logger = logging.getLogger(__name__)


# Header names that identify the address column (case-insensitive, substring)
ADDRESS_HEADER_PATTERNS: tuple[str, ...] = (
    "주소", "주소지", "거주지", "소재지", "위치",
    "address", "addr", "location", "place",
)

CSV_ENCODINGS: tuple[str, ...] = ("utf-8-sig", "cp949")

# 상세주소 / 세부주소 hold the unit part, never the searchable address
_DETAIL_HEADER_HINTS: tuple[str, ...] = ("상세", "세부")


class JobInputError(Exception):
    """The upload cannot be processed at all (job-level, terminal)."""

    job_id: str = ""  # set once the failed job has been recorded


@dataclass
class ParsedSheet:
    """Header row and data rows of the first worksheet."""
    headers: list[str]
    rows: list[tuple[CellValue, ...]] = field(default_factory=list)


@dataclass
class DedupeResult:
    rows: list[RawRow]
    original_count: int
    duplicate_count: int

    @property
    def unique_count(self) -> int:
        return len(self.rows)


def _clean_value(value: Any) -> CellValue:
    if value is None:
        return None
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, (int, float)):
        return value
    text = str(value).strip()
    return text or None


def _is_blank(row: tuple[CellValue, ...]) -> bool:
    return all(v is None or str(v).strip() == "" for v in row)


class BaseParser(ABC):
    """Abstract base for spreadsheet parsers"""

    @abstractmethod
    async def parse(self, file_path: Path) -> ParsedSheet:
        """Parse file into headers and data rows"""
        pass

    @staticmethod
    def _build(raw_rows: list[list[Any]]) -> ParsedSheet:
        # Blank rows are kept so positions match spreadsheet row numbers
        rows = [tuple(_clean_value(v) for v in row) for row in raw_rows]
        if all(_is_blank(row) for row in rows):
            raise JobInputError("The uploaded file is empty")
        headers = ["" if v is None else str(v).strip() for v in rows[0]]
        if not any(headers):
            raise JobInputError("The uploaded file has no header row")
        width = len(headers)
        data = [tuple(row[:width]) + (None,) * (width - len(row)) for row in rows[1:]]
        return ParsedSheet(headers=headers, rows=data)


class CSVParser(BaseParser):
    """CSV parser; tries UTF-8 (with BOM) then CP949, sniffs tab delimiter."""

    async def parse(self, file_path: Path) -> ParsedSheet:
        async with aiofiles.open(file_path, "rb") as f:
            raw = await f.read()

        content = None
        for encoding in CSV_ENCODINGS:
            try:
                content = raw.decode(encoding)
                break
            except UnicodeDecodeError:
                continue
        if content is None:
            raise JobInputError("Cannot decode CSV file (expected UTF-8 or CP949)")

        first_line = content.split("\n", 1)[0]
        delimiter = "\t" if first_line.count("\t") > first_line.count(",") else ","
        reader = csv.reader(io.StringIO(content), delimiter=delimiter)
        return self._build([row for row in reader])


class ExcelParser(BaseParser):
    """Excel (.xlsx) parser; reads the first worksheet with openpyxl."""

    async def parse(self, file_path: Path) -> ParsedSheet:
        loop = asyncio.get_running_loop()
        try:
            raw_rows = await loop.run_in_executor(None, self._read_rows, file_path)
        except (OSError, ValueError, KeyError, zipfile.BadZipFile, InvalidFileException) as e:
            raise JobInputError(f"Cannot read spreadsheet: {e}") from e
        return self._build(raw_rows)

    @staticmethod
    def _read_rows(file_path: Path) -> list[list[Any]]:
        wb = openpyxl.load_workbook(file_path, read_only=True, data_only=True)
        try:
            ws = wb.worksheets[0]
            return [list(row) for row in ws.iter_rows(values_only=True)]
        finally:
            wb.close()


class DocumentParserService:
    """Selects the parser by file extension."""

    def __init__(self):
        self.parsers: dict[str, BaseParser] = {
            ".csv": CSVParser(),
            ".xlsx": ExcelParser(),
        }

    @property
    def supported_extensions(self) -> tuple[str, ...]:
        return tuple(self.parsers)

    def get_parser(self, filename: str) -> BaseParser:
        ext = Path(filename).suffix.lower()
        if ext not in self.parsers:
            raise JobInputError(f"Unsupported file type: {ext or filename}")
        return self.parsers[ext]

    async def parse_file(self, file_path: Path, filename: str) -> ParsedSheet:
        sheet = await self.get_parser(filename).parse(file_path)
        logger.info(f"Parsed {filename}: {len(sheet.headers)} columns, {len(sheet.rows)} rows")
        return sheet


# ============================================================================
# Address column detection and dedupe
# ============================================================================

def find_address_column(headers: list[str], hint: str | None = None) -> int:
    """Locate the address column.

    Args:
        headers: Header row.
        hint: Caller-designated header name (or 0-based index as text).

    Returns:
        Column index.

    Raises:
        JobInputError: No column matches.
    """
    if hint:
        hint = hint.strip()
        for i, header in enumerate(headers):
            if header == hint:
                return i
        if hint.isdigit() and int(hint) < len(headers):
            return int(hint)
        raise JobInputError(f"Address column '{hint}' not found")

    for i, header in enumerate(headers):
        name = header.strip().casefold()
        if not name or any(h in name for h in _DETAIL_HEADER_HINTS):
            continue
        if any(p in name for p in ADDRESS_HEADER_PATTERNS):
            return i
    raise JobInputError("No address column found (use a header such as 주소 or address)")


def dedupe_key(address: str) -> str:
    """Case- and whitespace-insensitive address key."""
    return " ".join(address.split()).casefold()


def dedupe_rows(sheet: ParsedSheet, address_column: int) -> DedupeResult:
    """Build RawRows, dropping blank addresses and repeated addresses.

    The first occurrence of an address wins and keeps its sheet position.
    """
    seen: set[str] = set()
    unique: list[RawRow] = []
    original = 0
    duplicates = 0

    for position, cells in enumerate(sheet.rows, start=1):
        row = RawRow(index=position, cells=cells, address_column=address_column)
        key = dedupe_key(row.address)
        if not key:
            continue
        original += 1
        if key in seen:
            duplicates += 1
            continue
        seen.add(key)
        unique.append(row)

    if not unique:
        raise JobInputError("No rows with an address value")

    return DedupeResult(rows=unique, original_count=original, duplicate_count=duplicates)
