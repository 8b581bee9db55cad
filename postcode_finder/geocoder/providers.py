"""
Geocoder Provider Implementations.

Each provider implements the BaseGeocoder interface:
- JusoGeocoder: juso.go.kr road-address API (httpx)
- LocalGeocoder: CSV postcode dataset loaded with aiofiles (no network)
"""

import asyncio
import csv
import io
import logging
import re
from pathlib import Path
from typing import Any, Optional

import aiofiles
import httpx

from postcode_finder.address_models import Candidate, SearchResult
from postcode_finder.address_parser import canonical_province

from .base import (
    BaseGeocoder,
    GeocoderConfig,
    GeocoderConfigError,
    GeocoderError,
    GeocoderTimeout,
)

logger = logging.getLogger(__name__)


def _number(value: Any) -> str:
    """Provider numbers come as int/str; a zero sub-number means none."""
    text = str(value or "").strip()
    return "" if text in ("", "0") else text


# ============================================================================
# Juso (juso.go.kr)
# ============================================================================

class JusoGeocoder(BaseGeocoder):
    """
    juso.go.kr address search API.

    One GET per search with a mandatory short timeout. errorCode "0" is
    success; any other code is an upstream error.
    """

    DEFAULT_URL = "https://business.juso.go.kr/addrlink/addrLinkApi.do"

    def __init__(
        self,
        config: Optional[GeocoderConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(config)
        self._provider_name = "juso"
        self._base_url = self.config.base_url or self.DEFAULT_URL
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=self.config.timeout)

    async def search(self, query: str, page: int = 1, page_size: int = 10) -> SearchResult:
        if not self.config.api_key:
            raise GeocoderConfigError("Juso API key (JUSO_API_KEY) is not configured")

        params = {
            "confmKey": self.config.api_key,
            "currentPage": page,
            "countPerPage": page_size,
            "keyword": query,
            "resultType": "json",
            "hstryYn": "N",
            "firstSort": "road",
        }
        logger.info(f"Juso search: {query!r} (page={page}, size={page_size})")

        try:
            response = await self._client.get(
                self._base_url, params=params, timeout=self.config.timeout
            )
        except httpx.TimeoutException as e:
            raise GeocoderTimeout(f"Juso request timed out after {self.config.timeout}s") from e
        except httpx.HTTPError as e:
            raise GeocoderTimeout(f"Juso transport error: {e}") from e

        if response.status_code >= 400:
            raise GeocoderError(f"http_{response.status_code}", response.text[:200])

        try:
            data = response.json()
        except ValueError as e:
            raise GeocoderError("bad_response", "Juso returned non-JSON body") from e

        results = data.get("results") if isinstance(data, dict) else None
        if not results:
            return SearchResult()

        common = results.get("common") or {}
        error_code = str(common.get("errorCode", results.get("errorCode", "0")) or "0")
        if error_code != "0":
            message = common.get("errorMessage") or results.get("errorMessage") or "Juso API error"
            logger.warning(f"Juso API error {error_code}: {message}")
            raise GeocoderError(error_code, message)

        items = results.get("juso") or []
        try:
            total = int(common.get("totalCount") or len(items))
        except (TypeError, ValueError):
            total = len(items)

        logger.info(f"Juso search result: {query!r} total={total}")
        return SearchResult(total=total, items=[self._to_candidate(item) for item in items])

    @staticmethod
    def _to_candidate(item: dict[str, Any]) -> Candidate:
        return Candidate(
            postal_code=str(item.get("zipNo") or ""),
            road_address=item.get("roadAddr") or "",
            lot_address=item.get("jibunAddr") or "",
            province=item.get("siNm") or "",
            municipality=item.get("sggNm") or "",
            neighborhood=item.get("emdNm") or "",
            road_name=item.get("rn") or "",
            building_main=_number(item.get("buldMnnm")),
            building_sub=_number(item.get("buldSlno")),
            lot_main=_number(item.get("lnbrMnnm")),
            lot_sub=_number(item.get("lnbrSlno")),
            building_name=item.get("bdNm") or "",
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def get_info(self) -> dict[str, Any]:
        info = super().get_info()
        info["available"] = bool(self.config.api_key)
        return info


# ============================================================================
# Local CSV dataset (LITE MODE)
# ============================================================================

LOCAL_COLUMNS = (
    "postalCode", "sido", "sigungu", "roadName", "buildingMain",
    "buildingSub", "legalDong", "jibunMain", "jibunSub", "fullAddress",
)


class LocalGeocoder(BaseGeocoder):
    """
    Offline provider backed by a CSV/TSV postcode dataset.

    A record matches when every query token appears among its address
    tokens; short province forms (서울, 경북) match the official names.
    A missing dataset file means an empty dataset, not an error.
    """

    def __init__(self, config: Optional[GeocoderConfig] = None):
        super().__init__(config)
        self._provider_name = "local"
        self._records: list[tuple[Candidate, frozenset[str]]] = []
        self._loaded = False
        self._lock = asyncio.Lock()

    async def _ensure_loaded(self) -> None:
        if self._loaded:
            return
        async with self._lock:
            if self._loaded:
                return
            self._records = await self._load(self.config.data_path or "")
            self._loaded = True

    async def _load(self, data_path: str) -> list[tuple[Candidate, frozenset[str]]]:
        path = Path(data_path)
        if not data_path or not path.exists():
            logger.warning(f"Local postal data not found at {data_path!r}. Using empty dataset.")
            return []

        try:
            async with aiofiles.open(path, "r", encoding="utf-8-sig") as f:
                raw = await f.read()
        except OSError as e:
            raise GeocoderConfigError(f"Cannot read local postal data: {e}") from e

        first_line = raw.split("\n", 1)[0]
        delimiter = "\t" if "\t" in first_line else ","
        reader = csv.DictReader(io.StringIO(raw), delimiter=delimiter)

        records = []
        for row in reader:
            row = {k.strip(): (v or "").strip() for k, v in row.items() if k}
            candidate = self._to_candidate(row)
            records.append((candidate, self._index_tokens(candidate)))

        logger.info(f"Loaded {len(records)} postal records from {path}")
        return records

    @staticmethod
    def _to_candidate(row: dict[str, str]) -> Candidate:
        sido = row.get("sido", "")
        sigungu = row.get("sigungu", "")
        building = _number(row.get("buildingMain"))
        building_sub = _number(row.get("buildingSub"))
        lot = _number(row.get("jibunMain"))
        lot_sub = _number(row.get("jibunSub"))

        road_address = row.get("fullAddress", "")
        if not road_address and row.get("roadName") and building:
            number = f"{building}-{building_sub}" if building_sub else building
            road_address = " ".join(p for p in (sido, sigungu, row["roadName"], number) if p)

        lot_address = ""
        if row.get("legalDong") and lot:
            number = f"{lot}-{lot_sub}" if lot_sub else lot
            lot_address = " ".join(p for p in (sido, sigungu, row["legalDong"], number) if p)

        return Candidate(
            postal_code=row.get("postalCode", ""),
            road_address=road_address,
            lot_address=lot_address,
            province=sido,
            municipality=sigungu,
            neighborhood=row.get("legalDong", "").split(" ")[0],
            road_name=row.get("roadName", ""),
            building_main=building,
            building_sub=building_sub,
            lot_main=lot,
            lot_sub=lot_sub,
            building_name=row.get("buildingName", ""),
        )

    @staticmethod
    def _index_tokens(candidate: Candidate) -> frozenset[str]:
        text = " ".join((
            candidate.road_address,
            candidate.lot_address,
            candidate.province,
            candidate.municipality,
            candidate.building_name,
        ))
        return frozenset(text.split())

    @staticmethod
    def _token_matches(token: str, index: frozenset[str]) -> bool:
        if token in index:
            return True
        if re.search(r"\d", token):
            return False
        wanted = canonical_province(token)
        return any(wanted in word or token in word for word in index)

    async def search(self, query: str, page: int = 1, page_size: int = 10) -> SearchResult:
        await self._ensure_loaded()
        tokens = (query or "").split()
        if not tokens:
            return SearchResult()

        matches = [
            candidate for candidate, index in self._records
            if all(self._token_matches(token, index) for token in tokens)
        ]
        start = max(page - 1, 0) * page_size
        logger.info(f"Local search: {query!r} total={len(matches)}")
        return SearchResult(total=len(matches), items=matches[start:start + page_size])

    async def find_by_postal_code(self, postal_code: str) -> list[Candidate]:
        await self._ensure_loaded()
        code = str(postal_code).strip()
        return [candidate for candidate, _ in self._records if candidate.postal_code == code]

    def get_info(self) -> dict[str, Any]:
        info = super().get_info()
        info["data_path"] = self.config.data_path
        info["records"] = len(self._records) if self._loaded else None
        return info
