"""Tests for output shaping and renderers."""

import io

import openpyxl
import pytest

from postcode_finder.address_models import RawRow, ResolvedAddress
from postcode_finder.export import (
    CsvRenderer,
    ExportShaper,
    XlsxRenderer,
    create_renderer,
    label_rows,
)
from postcode_finder.jobs.models import Job, JobOptions, RowResult, new_job_id

HEADERS = ["주소", "상세주소", "동", "호", "우편번호", "시도", "비고"]

SILLIM = ResolvedAddress("08754", "서울특별시 관악구 신림로 330", "서울특별시", "관악구")


def make_job(rows, resolved_rows=(), options=None) -> Job:
    job = Job(id=new_job_id(), headers=list(HEADERS), address_column=0, options=options or JobOptions())
    job.rows = [RawRow(index=i, cells=cells, address_column=0) for i, cells in enumerate(rows, start=1)]
    job.results = [RowResult(row=r + 1, resolved=SILLIM) for r in resolved_rows]
    return job


class TestOutputColumns:

    def test_region_postal_and_detail_columns_dropped(self):
        job = make_job([("서울특별시 관악구 신림로 330", None, None, None, "00000", "서울", "메모")], [1])
        matrix = ExportShaper().build(job)
        assert matrix[0] == ["주소", "동", "호", "비고", "도로명주소", "상세주소", "우편번호"]
        assert matrix[1][-1] == "08754"
        assert matrix[1][-3] == "서울특별시 관악구 신림로 330"

    def test_caller_drop_columns(self):
        job = make_job([("서울특별시 관악구 신림로 330", None, None, None, None, None, "메모")], [1],
                       options=JobOptions(drop_columns=["비고"]))
        assert "비고" not in ExportShaper().build(job)[0]

    def test_without_road_address(self):
        job = make_job([("서울특별시 관악구 신림로 330", None, None, None, None, None, None)], [1])
        headers = ExportShaper(include_road_address=False).build(job)[0]
        assert headers[-2:] == ["상세주소", "우편번호"]
        assert "도로명주소" not in headers

    def test_address_cell_is_normalized_main(self):
        job = make_job([("서울특별시 관악구 신림로 330 101동 202호", None, None, None, None, None, None)], [1])
        assert ExportShaper().build(job)[1][0] == "서울특별시 관악구 신림로 330"


class TestDetail:

    def detail(self, cells):
        job = make_job([cells], [1])
        return ExportShaper().build(job)[1][-2]

    def test_existing_detail_column_wins(self):
        assert self.detail(("서울특별시 관악구 신림로 330 101동 202호", "3층", "1", "2", None, None, None)) == "3층"

    def test_detail_from_address(self):
        assert self.detail(("서울특별시 관악구 신림로 330 101동 202호", None, "1", "2", None, None, None)) == "101동 202호"

    def test_dong_ho_columns(self):
        assert self.detail(("서울특별시 관악구 신림로 330", None, 101, "202호", None, None, None)) == "101동 202호"

    def test_no_detail(self):
        assert self.detail(("서울특별시 관악구 신림로 330", None, None, None, None, None, None)) == ""

    def test_failed_row_blank(self):
        job = make_job([
            ("서울특별시 관악구 신림로 330", "3층", None, None, None, None, "a"),
            ("없는주소 123", "4층", None, None, None, None, "b"),
        ], [1])
        matrix = ExportShaper().build(job)
        assert matrix[2][-3:] == ["", "", ""]
        assert matrix[2][3] == "b"


class TestLabelRows:

    def test_header_keyed(self):
        labels = label_rows([["주소", "우편번호"], ["서울특별시 관악구 신림로 330", "08754"], ["", None]])
        assert labels == [{"주소": "서울특별시 관악구 신림로 330", "우편번호": "08754"}]

    def test_empty_matrix(self):
        assert label_rows([]) == []


class TestRenderers:

    MATRIX = [["주소", "우편번호"], ["서울특별시 관악구 신림로 330", "08754"]]

    def test_xlsx(self):
        data = XlsxRenderer().render(self.MATRIX)
        wb = openpyxl.load_workbook(io.BytesIO(data))
        assert wb.active.title == "우편번호"
        assert [list(r) for r in wb.active.iter_rows(values_only=True)] == self.MATRIX

    def test_csv_has_bom(self):
        data = CsvRenderer().render(self.MATRIX)
        assert data.startswith(b"\xef\xbb\xbf")
        assert data.decode("utf-8-sig").splitlines()[1] == "서울특별시 관악구 신림로 330,08754"

    @pytest.mark.parametrize("name,cls", [("xlsx", XlsxRenderer), ("CSV", CsvRenderer), ("pdf", XlsxRenderer)])
    def test_factory(self, name, cls):
        assert isinstance(create_renderer(name), cls)
