"""
Base Geocoder Interface.

Defines the abstract interface for postal address lookup providers and the
errors they raise. A provider makes exactly one upstream call per search and
never retries; zero results is a normal empty answer, not an error.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

from postcode_finder.address_models import Candidate, SearchResult

logger = logging.getLogger(__name__)


class GeocoderError(Exception):
    """Upstream non-success (HTTP status or provider error code)."""

    def __init__(self, code: str, message: str):
        super().__init__(f"{code}: {message}")
        self.code = str(code)
        self.message = message


class GeocoderTimeout(GeocoderError):
    """Upstream call timed out or the transport failed."""

    def __init__(self, message: str = "upstream request timed out"):
        super().__init__("timeout", message)


class GeocoderConfigError(GeocoderError):
    """Provider is missing credentials or data."""

    def __init__(self, message: str):
        super().__init__("config", message)


@dataclass(slots=True)
class GeocoderConfig:
    """Provider-agnostic geocoder configuration."""

    provider: str = "local"  # local, juso
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    data_path: Optional[str] = None
    timeout: float = 7.0
    page_size: int = 50


class BaseGeocoder(ABC):
    """
    Abstract base class for address lookup providers.

    The resolver and the address router depend only on this interface.

    Implementations:
    - JusoGeocoder: juso.go.kr address API over HTTP
    - LocalGeocoder: CSV postcode dataset (offline)
    """

    def __init__(self, config: Optional[GeocoderConfig] = None):
        self.config = config or GeocoderConfig()
        self._provider_name = "base"

    @property
    def provider(self) -> str:
        """Get the provider name."""
        return self._provider_name

    @abstractmethod
    async def search(self, query: str, page: int = 1, page_size: int = 10) -> SearchResult:
        """
        Search candidates for a query string.

        Args:
            query: Address text (never contains the detail fragment)
            page: 1-based result page
            page_size: Candidates per page

        Returns:
            SearchResult with the total hit count and this page's candidates

        Raises:
            GeocoderError: Upstream error (distinct from zero results)
        """
        pass

    async def autocomplete(self, query: str, limit: int = 10) -> list[dict[str, Any]]:
        """Address completions for a partial query."""
        keyword = (query or "").strip()
        if not keyword:
            return []
        result = await self.search(keyword, 1, min(limit, 50))
        return [
            {
                "address": item.canonical_text,
                "postalCode": item.postal_code,
                "category": "ROAD" if item.road_address else "JIBUN",
            }
            for item in result.items[:limit]
        ]

    async def find_by_postal_code(self, postal_code: str) -> list[Candidate]:
        """All candidates carrying exactly this postal code."""
        code = str(postal_code).strip()
        result = await self.search(code, 1, 50)
        return [item for item in result.items if item.postal_code == code]

    async def aclose(self) -> None:
        """Cleanup resources. Override if needed."""
        pass

    def get_info(self) -> dict[str, Any]:
        """Get provider info for the health endpoint."""
        return {
            "provider": self._provider_name,
            "timeout": self.config.timeout,
            "page_size": self.config.page_size,
        }
