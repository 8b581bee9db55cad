"""Export shaping and output renderers.

ExportShaper turns a finished job into a header + row matrix; an
OutputRenderer turns that matrix into downloadable bytes. The orchestrator
never looks at the bytes.

Output columns: the input columns minus administrative-region, existing
road-address / detail / postal-code columns and caller-dropped columns,
followed by 도로명주소 (optional), 상세주소 and 우편번호.
"""

import csv
import io
import logging
import re
from abc import ABC, abstractmethod
from typing import Any

import openpyxl

from postcode_finder.address_models import CellValue, RawRow
from postcode_finder.address_normalizer import normalize
from postcode_finder.jobs.models import Job, RowResult
from postcode_finder.utils.resilience import sanitize_address_input

logger = logging.getLogger(__name__)

ROAD_ADDRESS_HEADER = "도로명주소"
DETAIL_HEADER = "상세주소"
POSTAL_CODE_HEADER = "우편번호"

_REGION_HEADER_PATTERNS = (
    "시도", "시군구", "시도명", "시군구명", "광역시", "특별시", "특별자치시", "특별자치도",
    "sido", "sigungu", "metropolitan", "province", "행정구역", "행정동",
)
_ROAD_HEADER_PATTERNS = ("도로명주소", "road", "fulladdress", "전체주소")
_DETAIL_HEADER_PATTERNS = ("상세주소", "세부주소", "동호", "호수", "호실")
_DETAIL_SOURCE_PATTERNS = ("상세주소", "상세", "세부주소", "동호", "동호수", "호수", "호실", "아파트상세")
_POSTAL_HEADER_PATTERNS = ("우편번호", "postal", "zip")
_DONG_HEADER_KEYS = ("동", "dong")
_HO_HEADER_KEYS = ("호", "호수", "hosu", "unit", "room")


def header_key(header: str) -> str:
    return re.sub(r"[\s_/]", "", str(header or "")).casefold()


def _contains_any(header: str, patterns: tuple[str, ...]) -> bool:
    key = header_key(header)
    return bool(key) and any(p in key for p in patterns)


def is_detail_header(header: str) -> bool:
    return _contains_any(header, _DETAIL_HEADER_PATTERNS)


def _find_column(headers: list[str], match) -> int:
    for i, header in enumerate(headers):
        if match(header_key(header)):
            return i
    return -1


def _text(value: CellValue) -> str:
    return "" if value is None else str(value).strip()


class ExportShaper:
    """Builds the output matrix for a job.

    Args:
        include_road_address: Append the canonical 도로명주소 column.
    """

    def __init__(self, include_road_address: bool = True):
        self.include_road_address = include_road_address

    def output_headers(self, headers: list[str], address_column: int, drop_columns: list[str]) -> list[int]:
        """Indexes of input columns kept in the output."""
        dropped = {header_key(h) for h in drop_columns}
        kept = []
        for i, header in enumerate(headers):
            if i == address_column:
                kept.append(i)
                continue
            if header_key(header) in dropped:
                continue
            if (
                _contains_any(header, _REGION_HEADER_PATTERNS)
                or _contains_any(header, _ROAD_HEADER_PATTERNS)
                or _contains_any(header, _DETAIL_HEADER_PATTERNS)
                or _contains_any(header, _POSTAL_HEADER_PATTERNS)
            ):
                continue
            kept.append(i)
        return kept

    def build(self, job: Job) -> list[list[Any]]:
        """Build [header row, *data rows] for a job.

        Rows keep their input order; failed rows get blank output columns.
        """
        headers = job.headers
        kept = self.output_headers(headers, job.address_column, job.options.drop_columns)

        # The address and postal-code columns never feed the detail
        candidates = [
            "" if i == job.address_column or _contains_any(h, _POSTAL_HEADER_PATTERNS) else h
            for i, h in enumerate(headers)
        ]
        detail_column = _find_column(
            candidates, lambda key: any(key == k or k in key for k in _DETAIL_SOURCE_PATTERNS)
        )
        dong_column = _find_column(
            candidates, lambda key: any(key == k or key.endswith(k) for k in _DONG_HEADER_KEYS)
        )
        ho_column = _find_column(
            candidates, lambda key: any(key == k or key.endswith(k) for k in _HO_HEADER_KEYS)
        )

        out_headers = [headers[i] for i in kept]
        if self.include_road_address:
            out_headers.append(ROAD_ADDRESS_HEADER)
        out_headers.extend([DETAIL_HEADER, POSTAL_CODE_HEADER])

        results: dict[int, RowResult] = {r.row: r for r in job.results}
        matrix: list[list[Any]] = [out_headers]
        for row in job.rows:
            matrix.append(self._row(row, kept, results.get(row.sheet_row), detail_column, dong_column, ho_column))
        return matrix

    def _row(
        self,
        row: RawRow,
        kept: list[int],
        result: RowResult | None,
        detail_column: int,
        dong_column: int,
        ho_column: int,
    ) -> list[Any]:
        normalized = normalize(row.address)
        base = []
        for i in kept:
            if i == row.address_column:
                base.append(normalized.main or row.address)
            else:
                value = row.cell(i)
                base.append("" if value is None else value)

        extras: list[Any] = []
        if result is None:
            if self.include_road_address:
                extras.append("")
            extras.extend(["", ""])
            return base + extras

        if self.include_road_address:
            extras.append(result.resolved.full_address)
        extras.append(self._detail(row, normalized.detail, detail_column, dong_column, ho_column))
        extras.append(result.resolved.postal_code)
        return base + extras

    @staticmethod
    def _detail(row: RawRow, derived: str, detail_column: int, dong_column: int, ho_column: int) -> str:
        """Existing detail column > detail split from the address > 동/호 columns."""
        if detail_column >= 0:
            sanitized = sanitize_address_input(_text(row.cell(detail_column)))
            if sanitized:
                return sanitized
        if derived:
            return derived
        parts = []
        dong = _text(row.cell(dong_column)) if dong_column >= 0 else ""
        ho = _text(row.cell(ho_column)) if ho_column >= 0 else ""
        if dong:
            parts.append(dong if dong.endswith("동") else f"{dong}동")
        if ho:
            parts.append(ho if ho.endswith("호") else f"{ho}호")
        return " ".join(parts)


def label_rows(matrix: list[list[Any]]) -> list[dict[str, Any]]:
    """Output rows as header-keyed dicts, skipping rows with no values."""
    if not matrix:
        return []
    headers = [str(h) for h in matrix[0]]
    labels = []
    for row in matrix[1:]:
        if all(_text(v) == "" for v in row):
            continue
        labels.append({h: ("" if v is None else v) for h, v in zip(headers, row)})
    return labels


# ============================================================================
# Renderers
# ============================================================================

class OutputRenderer(ABC):
    """Turns a row matrix into an artifact."""

    media_type: str = "application/octet-stream"
    extension: str = ""

    @abstractmethod
    def render(self, rows: list[list[Any]]) -> bytes:
        pass


class XlsxRenderer(OutputRenderer):
    media_type = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
    extension = ".xlsx"

    def __init__(self, sheet_title: str = "우편번호"):
        self.sheet_title = sheet_title

    def render(self, rows: list[list[Any]]) -> bytes:
        wb = openpyxl.Workbook()
        ws = wb.active
        ws.title = self.sheet_title
        for row in rows:
            ws.append(list(row))
        buffer = io.BytesIO()
        wb.save(buffer)
        return buffer.getvalue()


class CsvRenderer(OutputRenderer):
    """UTF-8 with BOM so spreadsheet applications detect the encoding."""

    media_type = "text/csv"
    extension = ".csv"

    def render(self, rows: list[list[Any]]) -> bytes:
        buffer = io.StringIO()
        writer = csv.writer(buffer)
        for row in rows:
            writer.writerow(["" if v is None else v for v in row])
        return ("\ufeff" + buffer.getvalue()).encode("utf-8")


RENDERERS: dict[str, type[OutputRenderer]] = {
    "xlsx": XlsxRenderer,
    "csv": CsvRenderer,
}


def create_renderer(output_format: str) -> OutputRenderer:
    renderer_cls = RENDERERS.get((output_format or "").lower())
    if renderer_cls is None:
        logger.warning(f"Unknown output format '{output_format}', using xlsx")
        renderer_cls = XlsxRenderer
    return renderer_cls()
