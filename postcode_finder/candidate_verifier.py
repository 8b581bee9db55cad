"""Candidate verification and scoring.

Given an input address and the candidates a geocoder returned for it, picks
the candidate that is in the right region and best matches the road or lot
number. Everything here is pure: no I/O, no hidden state, so the same input
and candidate list always resolve to the same result.

Selection order:
    1. Admissibility (hard): province, municipality and neighborhood must
       agree wherever both sides carry them.
    2. Road/lot consistency (soft): prefer candidates on the input's road
       (or with the input's lot number); fall back to all admissible ones.
    3. Score: similarity x 100, +50 main number match, +20 sub number match.
       An exact main (+sub) match short-circuits the scan.
"""

import logging
import re

from postcode_finder.address_models import (
    AddressComponents,
    BuildingNumbers,
    Candidate,
    ResolvedAddress,
)
from postcode_finder.address_normalizer import (
    calculate_similarity,
    extract_building_name,
    extract_building_numbers,
)
from postcode_finder.address_parser import (
    ROAD_TOKEN_PATTERN,
    canonical_province,
    parse_components,
)

logger = logging.getLogger(__name__)

MAIN_NUMBER_BONUS = 50
SUB_NUMBER_BONUS = 20


def _compact(value: str) -> str:
    return re.sub(r"\s+", "", value or "")


def _neighborhood_key(value: str) -> str:
    # 신림1동 (administrative) and 신림동 (legal) name the same area
    return re.sub(r"\d+", "", _compact(value))


def province_matches(input_province: str, candidate_province: str) -> bool:
    return canonical_province(input_province) == canonical_province(candidate_province)


def municipality_matches(input_municipality: str, candidate_municipality: str) -> bool:
    """Compare municipalities; 성남시 matches a candidate's "성남시 분당구"."""
    wanted = _compact(input_municipality)
    if wanted == _compact(candidate_municipality):
        return True
    return wanted in (candidate_municipality or "").split()


def neighborhood_matches(input_neighborhood: str, candidate_neighborhood: str) -> bool:
    return _neighborhood_key(input_neighborhood) == _neighborhood_key(candidate_neighborhood)


class CandidateVerifier:
    """Admissibility filter and scorer for geocoder candidates.

    Args:
        fallback_query_limit: Maximum number of coarse building-name
            queries suggested by fallback_queries().
    """

    __slots__ = ("fallback_query_limit",)

    def __init__(self, fallback_query_limit: int = 2):
        self.fallback_query_limit = fallback_query_limit

    # ========================================================================
    # Filters
    # ========================================================================

    def admissible(self, components: AddressComponents, candidate: Candidate) -> bool:
        """Check the hard region filter.

        Args:
            components: Parsed input components.
            candidate: Geocoder candidate.

        Returns:
            False if any region field present on both sides disagrees.
        """
        if components.province and candidate.province:
            if not province_matches(components.province, candidate.province):
                return False
        if components.municipality and candidate.municipality:
            if not municipality_matches(components.municipality, candidate.municipality):
                return False
        if components.neighborhood and candidate.neighborhood:
            if not neighborhood_matches(components.neighborhood, candidate.neighborhood):
                return False
        return True

    def matches_road(self, components: AddressComponents, candidate: Candidate) -> bool:
        road = _compact(components.road)
        if not road:
            return False
        if candidate.road_name:
            return _compact(candidate.road_name) == road
        for token in candidate.road_address.split():
            match = ROAD_TOKEN_PATTERN.match(token)
            if match and match.group(1) == road:
                return True
        return False

    def matches_lot(self, numbers: BuildingNumbers, candidate: Candidate) -> bool:
        if not numbers:
            return False
        if candidate.lot_main:
            return candidate.lot_main == numbers.main and (
                not numbers.sub or candidate.lot_sub == numbers.sub
            )
        return numbers.text in candidate.lot_address.split()

    def _pool(
        self,
        components: AddressComponents,
        numbers: BuildingNumbers,
        candidates: list[Candidate],
    ) -> list[Candidate]:
        admissible = [c for c in candidates if self.admissible(components, c)]
        if components.road:
            preferred = [c for c in admissible if self.matches_road(components, c)]
        else:
            preferred = [c for c in admissible if self.matches_lot(numbers, c)]
        return preferred or admissible

    # ========================================================================
    # Scoring
    # ========================================================================

    def _number_fields(self, candidate: Candidate, by_road: bool) -> tuple[str, str]:
        if by_road:
            return candidate.building_main, candidate.building_sub
        return candidate.lot_main, candidate.lot_sub

    def score(
        self,
        input_address: str,
        candidate: Candidate,
        numbers: BuildingNumbers | None = None,
    ) -> int:
        """Score a candidate against the input address.

        Args:
            input_address: Normalized main address.
            candidate: Candidate to score.
            numbers: Building/lot numbers of the input (extracted if omitted).

        Returns:
            Integer score; higher is better.
        """
        if numbers is None:
            numbers = extract_building_numbers(input_address)
        by_road = bool(parse_components(input_address).road)
        text = candidate.road_address if by_road else (candidate.lot_address or candidate.road_address)

        total = round(calculate_similarity(input_address, text) * 100)
        main, sub = self._number_fields(candidate, by_road)
        if numbers.main and main == numbers.main:
            total += MAIN_NUMBER_BONUS
        if numbers.sub and sub == numbers.sub:
            total += SUB_NUMBER_BONUS
        return total

    def is_exact(self, numbers: BuildingNumbers, candidate: Candidate, by_road: bool) -> bool:
        main, sub = self._number_fields(candidate, by_road)
        return bool(numbers.main) and main == numbers.main and (not numbers.sub or sub == numbers.sub)

    def resolve(
        self,
        input_address: str,
        candidates: list[Candidate],
        components: AddressComponents | None = None,
    ) -> ResolvedAddress | None:
        """Pick the best admissible candidate.

        Args:
            input_address: Normalized main address.
            candidates: Candidates returned for the address.
            components: Parsed components (parsed from input if omitted).

        Returns:
            ResolvedAddress, or None if no candidate is admissible.
        """
        if components is None:
            components = parse_components(input_address)
        numbers = extract_building_numbers(input_address)
        pool = self._pool(components, numbers, candidates)
        if not pool:
            return None

        by_road = bool(components.road)
        best: Candidate | None = None
        best_score = -1
        for candidate in pool:
            if self.is_exact(numbers, candidate, by_road):
                best = candidate
                break
            candidate_score = self.score(input_address, candidate, numbers)
            # strict > keeps the first of equal scores
            if candidate_score > best_score:
                best, best_score = candidate, candidate_score

        logger.debug(
            f"Chose {best.postal_code} {best.canonical_text!r} for {input_address!r} "
            f"(pool={len(pool)}, main={numbers.main}, sub={numbers.sub})"
        )
        return ResolvedAddress.from_candidate(best)

    # ========================================================================
    # Building-name fallback
    # ========================================================================

    def fallback_queries(self, input_address: str, components: AddressComponents) -> list[str]:
        """Coarse re-queries built from the region and a building keyword.

        Args:
            input_address: Address text including the detail fragment, since
                building labels such as 삼영A동 usually live there.
            components: Parsed components of the main address.

        Returns:
            Up to fallback_query_limit queries, empty if no region or keyword.
        """
        keyword = extract_building_name(input_address)
        region = components.region
        if not keyword or not region:
            return []
        queries = [f"{region} {keyword} 아파트", f"{region} {keyword}"]
        return queries[: max(self.fallback_query_limit, 0)]

    def resolve_fallback(
        self,
        input_address: str,
        keyword: str,
        candidates: list[Candidate],
        components: AddressComponents | None = None,
    ) -> ResolvedAddress | None:
        """Resolve a fallback query: first admissible candidate naming the keyword."""
        if components is None:
            components = parse_components(input_address)
        wanted = _compact(keyword)
        if not wanted:
            return None
        for candidate in candidates:
            if not self.admissible(components, candidate):
                continue
            if wanted in _compact(candidate.building_name) or wanted in _compact(candidate.canonical_text):
                return ResolvedAddress.from_candidate(candidate)
        return None
