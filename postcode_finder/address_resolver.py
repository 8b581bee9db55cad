"""Per-address resolution: normalize, parse, search, verify.

One primary geocoder query per address, then at most a bounded number of
coarse building-name fallback queries when nothing admissible came back.
"""

import logging

from postcode_finder.address_models import NormalizedAddress, ResolvedAddress, SearchResult
from postcode_finder.address_normalizer import extract_building_name, normalize
from postcode_finder.address_parser import parse_components
from postcode_finder.candidate_verifier import CandidateVerifier
from postcode_finder.geocoder import BaseGeocoder, GeocoderError
from postcode_finder.utils.resilience import CircuitBreaker

logger = logging.getLogger(__name__)


class AddressResolver:
    """Resolves single addresses to a ResolvedAddress.

    Upstream errors on the primary query propagate as GeocoderError so the
    caller can record them; "no admissible candidate" is returned as None.
    """

    def __init__(
        self,
        geocoder: BaseGeocoder,
        verifier: CandidateVerifier | None = None,
        breaker: CircuitBreaker | None = None,
        page_size: int = 50,
    ):
        """Initialize the resolver.

        Args:
            geocoder: Address lookup provider.
            verifier: Candidate verifier (default limits fallback to 2 queries).
            breaker: Circuit breaker shared by all lookups, optional.
            page_size: Candidates requested per query.
        """
        self.geocoder = geocoder
        self.verifier = verifier or CandidateVerifier()
        self.breaker = breaker
        self.page_size = page_size

    async def _search(self, query: str) -> SearchResult:
        if self.breaker:
            self.breaker.check()
        try:
            result = await self.geocoder.search(query, 1, self.page_size)
        except GeocoderError:
            if self.breaker:
                self.breaker.record_failure()
            raise
        if self.breaker:
            self.breaker.record_success()
        return result

    async def resolve(self, address: str) -> ResolvedAddress | None:
        """Normalize and resolve a raw address.

        Args:
            address: Raw address text.

        Returns:
            ResolvedAddress or None when nothing admissible was found.

        Raises:
            GeocoderError: The primary query failed upstream.
        """
        return await self.resolve_normalized(normalize(address))

    async def resolve_normalized(self, normalized: NormalizedAddress) -> ResolvedAddress | None:
        main = normalized.main
        if not main:
            return None

        components = parse_components(main)
        result = await self._search(main)
        resolved = self.verifier.resolve(main, result.items, components)
        if resolved:
            return resolved

        # Building labels (삼영A동) usually sit in the detail fragment
        text = normalized.joined
        keyword = extract_building_name(text)
        for query in self.verifier.fallback_queries(text, components):
            try:
                fallback = await self._search(query)
            except GeocoderError as e:
                logger.warning(f"Fallback query {query!r} failed: {e}")
                continue
            resolved = self.verifier.resolve_fallback(main, keyword, fallback.items, components)
            if resolved:
                logger.info(f"Resolved {main!r} via fallback query {query!r}")
                return resolved

        logger.info(f"No admissible candidate for {main!r} ({result.total} raw hits)")
        return None
