"""Pytest configuration and shared fixtures."""

import pytest
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from postcode_finder.address_models import Candidate, SearchResult
from postcode_finder.address_resolver import AddressResolver
from postcode_finder.candidate_verifier import CandidateVerifier
from postcode_finder.export import ExportShaper, XlsxRenderer
from postcode_finder.geocoder import BaseGeocoder, GeocoderConfig, LocalGeocoder
from postcode_finder.jobs.orchestrator import JobOrchestrator
from postcode_finder.jobs.store import InMemoryJobStore
from postcode_finder.upload.document_parser import DocumentParserService
from postcode_finder.upload.upload_handler import UploadHandler


POSTCODE_DATA = """postalCode,sido,sigungu,roadName,buildingMain,buildingSub,legalDong,jibunMain,jibunSub,fullAddress,buildingName
06236,서울특별시,강남구,테헤란로,152,0,역삼동,737,0,서울특별시 강남구 테헤란로 152,강남파이낸스센터
08754,서울특별시,관악구,신림로,330,0,신림동,1422,5,서울특별시 관악구 신림로 330,
08711,서울특별시,관악구,봉천로,227,0,봉천동,1568,0,서울특별시 관악구 봉천로 227,삼영아파트
13529,경기도,성남시 분당구,판교역로,166,0,백현동,532,0,경기도 성남시 분당구 판교역로 166,
36209,경상북도,봉화군,봉화로,1111,0,봉화읍 문단리,699,3,경상북도 봉화군 봉화읍 봉화로 1111,
36210,경상북도,봉화군,내성로,20,0,봉화읍 내성리,115,0,경상북도 봉화군 봉화읍 내성로 20,
"""

# Upload with one duplicate, one invalid and one unknown address
UPLOAD_CSV = """주소,이름
서울특별시 관악구 신림로 330 101동 202호,홍길동
경상북도 봉화군 봉화읍 문단리 699-3,김철수
서울특별시  관악구 신림로 330 101동 202호,중복
없는주소 123,이영희
서울특별시 종로구 없는로 1,박민수
"""


@pytest.fixture(scope="session")
def event_loop_policy():
    """Use default event loop policy for Windows compatibility."""
    import asyncio
    if sys.platform == "win32":
        asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
    return asyncio.get_event_loop_policy()


class StubGeocoder(BaseGeocoder):
    """Geocoder answering from a query -> candidates (or exception) table."""

    def __init__(self, answers: dict | None = None):
        super().__init__(GeocoderConfig(provider="stub"))
        self._provider_name = "stub"
        self.answers = answers or {}
        self.queries: list[str] = []

    async def search(self, query: str, page: int = 1, page_size: int = 10) -> SearchResult:
        self.queries.append(query)
        answer = self.answers.get(query, [])
        if isinstance(answer, Exception):
            raise answer
        return SearchResult(total=len(answer), items=list(answer))


@pytest.fixture
def postcode_csv(tmp_path):
    path = tmp_path / "postcodes.csv"
    path.write_text(POSTCODE_DATA, encoding="utf-8")
    return path


@pytest.fixture
def local_geocoder(postcode_csv):
    return LocalGeocoder(GeocoderConfig(provider="local", data_path=str(postcode_csv)))


@pytest.fixture
def resolver(local_geocoder):
    return AddressResolver(local_geocoder, verifier=CandidateVerifier(fallback_query_limit=2))


@pytest.fixture
def uploads(tmp_path):
    return UploadHandler(
        upload_dir=tmp_path / "uploads",
        output_dir=tmp_path / "outputs",
        max_file_size=1024 * 1024,
    )


@pytest.fixture
def store():
    return InMemoryJobStore()


@pytest.fixture
def orchestrator(store, resolver, uploads):
    return JobOrchestrator(
        store=store,
        resolver=resolver,
        parser=DocumentParserService(),
        uploads=uploads,
        shaper=ExportShaper(include_road_address=True),
        renderer=XlsxRenderer(),
        max_rows=1000,
        batch_size=2,
        inter_batch_delay=0,
        lease_seconds=60,
    )


@pytest.fixture
def write_upload(uploads):
    """Place a file in the upload directory as if it had just been saved."""

    def _write(name: str, content: str | bytes) -> Path:
        path = uploads.upload_dir / name
        if isinstance(content, str):
            path.write_text(content, encoding="utf-8")
        else:
            path.write_bytes(content)
        return path

    return _write


def candidate(**fields) -> Candidate:
    return Candidate(**fields)
