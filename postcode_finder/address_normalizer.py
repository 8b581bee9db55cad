"""Korean address normalization utilities.

This module turns a raw, messy address cell into a searchable main address
and a residual detail fragment (building dong, unit, floor). The detail is
kept for the output but never sent to the geocoder.

The transform only removes or relocates characters, never rewrites them,
and normalizing an already-normalized main address is a no-op.
"""

import re

from postcode_finder.address_models import (
    AddressType,
    BuildingNumbers,
    NormalizedAddress,
)
from postcode_finder.address_parser import ROAD_TOKEN_PATTERN
from postcode_finder.utils.resilience import sanitize_address_input


# Substrings at least one of which appears in anything that looks like an address
ADDRESS_KEYWORDS: tuple[str, ...] = (
    "시", "군", "구", "동", "읍", "면", "리", "로", "길", "가",
    "번", "호", "층", "아파트", "APT", "빌딩", "타워",
)

# Unit markers that make a digit-bearing fragment a detail rather than address
UNIT_MARKERS: tuple[str, ...] = ("호실", "동", "호", "층")

# Building-label syllables used as 가동/나동 in villas
_BUILDING_SYLLABLES = "가나다라마바사아자차카타파하"

# Words stripped from a fallback building keyword
_BUILDING_WORDS = re.compile(r"(아파트|빌라|맨션|APT)", re.IGNORECASE)

# Administrative / addressing suffixes excluded from a fallback building keyword
_ADMIN_SUFFIX = re.compile(r"(특별자치시|특별자치도|특별시|광역시|시|도|군|구|동|읍|면|리|로|길|가|번|호|층)$")


class AddressNormalizer:
    """Splits raw address text into main address and detail fragment."""

    _BRACKET_GROUP = re.compile(r"[\(\[\{]([^\(\)\[\]\{\}]*)[\)\]\}]")
    _STRAY_BRACKET = re.compile(r"[\(\)\[\]\{\}]")
    _LOT_SUFFIX = re.compile(r"(\d)(?:\s*번지)+")
    _PUNCTUATION = re.compile(r"[.;:·]")
    # Digits glued to Hangul (신림1동) are an administrative name, not a unit
    _HAS_UNIT = re.compile(r"(?<![가-힣\d])\d+\s*(?:호실|동|호|층)")

    # Trailing bare unit tokens: 101동, 1203호, 3층, B102호, 지하1층
    _UNIT_TOKEN = re.compile(r"^(?:지하|[A-Za-z])?\d{1,5}(?:호실|동|호|층)$")
    # Compound tokens: 101동1203호, 3층301호
    _COMPOUND_UNIT = re.compile(r"^\d{1,4}(?:동|층)\d{1,5}(?:호실|호)?$")
    # Hyphenated details with a marker or letter prefix: 101동-1203, 101-1203호, B-102
    _HYPHEN_UNIT = re.compile(
        r"^(?:\d{1,4}동-\d{1,5}(?:호|층)?"
        r"|[A-Za-z]-\d{1,4}(?:-\d{1,5})?호?"
        r"|\d{1,4}-\d{1,5}(?:호실|호|층))$"
    )
    # Building labels that are never administrative: A동, AB동, 삼영A동
    _LETTER_DONG = re.compile(r"^(?:[A-Za-z]{1,2}|[가-힣]+[A-Za-z])동$")
    # 가동/나동 only count when a unit token follows them
    _SYLLABLE_DONG = re.compile(rf"^[{_BUILDING_SYLLABLES}]동$")

    @classmethod
    def normalize(cls, raw: str) -> NormalizedAddress:
        """Normalize a raw address into main and detail parts.

        Args:
            raw: Raw address cell text.

        Returns:
            NormalizedAddress whose main is safe to send to the geocoder.
        """
        text = sanitize_address_input(raw or "")
        if not text:
            return NormalizedAddress(main="")

        details: list[str] = []

        text = cls._extract_brackets(text, details)
        text = cls._extract_comma_detail(text, details)

        text = cls._PUNCTUATION.sub(" ", text)
        text = cls._LOT_SUFFIX.sub(r"\1", text)
        tokens = text.split()

        tail = cls._split_trailing_units(tokens)
        if tail:
            details.append(" ".join(tail))

        return NormalizedAddress(main=" ".join(tokens), detail=" ".join(details))

    @classmethod
    def _extract_brackets(cls, text: str, details: list[str]) -> str:
        """Drop bracket groups, keeping unit-bearing comma segments as detail."""

        def _replace(match: re.Match) -> str:
            for part in match.group(1).split(","):
                part = part.strip()
                if part and cls._HAS_UNIT.search(part):
                    details.append(part)
            return " "

        text = cls._BRACKET_GROUP.sub(_replace, text)
        return cls._STRAY_BRACKET.sub(" ", text)

    @classmethod
    def _extract_comma_detail(cls, text: str, details: list[str]) -> str:
        """Move trailing unit-bearing comma segments to detail and join the rest."""
        segments = [seg.strip() for seg in text.split(",") if seg.strip()]
        trailing: list[str] = []
        while len(segments) > 1 and cls._HAS_UNIT.search(segments[-1]):
            trailing.insert(0, segments.pop())
        details.extend(trailing)
        return " ".join(segments)

    @classmethod
    def _split_trailing_units(cls, tokens: list[str]) -> list[str]:
        """Pop trailing unit tokens off ``tokens`` (in place) until none remain.

        At least one token is always left in place. Pure lot numbers such
        as 699-3 never match any rule.
        """
        tail: list[str] = []
        while len(tokens) > 1:
            token = tokens[-1]
            if (
                cls._UNIT_TOKEN.match(token)
                or cls._COMPOUND_UNIT.match(token)
                or cls._HYPHEN_UNIT.match(token)
                or cls._LETTER_DONG.match(token)
                or (tail and cls._SYLLABLE_DONG.match(token))
            ):
                tail.insert(0, tokens.pop())
                continue
            break
        return tail


def normalize(raw: str) -> NormalizedAddress:
    """Normalize a raw address (see AddressNormalizer.normalize)."""
    return AddressNormalizer.normalize(raw)


def split_address_detail(raw: str) -> tuple[str, str]:
    result = AddressNormalizer.normalize(raw)
    return result.main, result.detail


# ============================================================================
# Address helpers
# ============================================================================

def is_valid_address(address: str | None) -> bool:
    """Check whether text plausibly is an address.

    Args:
        address: Address text.

    Returns:
        True if at least 2 characters, not digits only, and containing an
        address keyword.
    """
    if not address or not isinstance(address, str):
        return False
    trimmed = address.strip()
    if len(trimmed) < 2 or trimmed.isdigit():
        return False
    return any(keyword in trimmed for keyword in ADDRESS_KEYWORDS)


def is_valid_postal_code(postal_code: str | int | None) -> bool:
    """Korean postal codes are exactly five digits."""
    if postal_code is None:
        return False
    return bool(re.fullmatch(r"\d{5}", str(postal_code).strip()))


def get_address_type(address: str) -> AddressType:
    """Classify an address as road-based, lot-based or unknown."""
    main = normalize(address).main
    tokens = main.split()
    if any(ROAD_TOKEN_PATTERN.match(token) for token in tokens):
        return AddressType.ROAD
    has_locality = any(re.search(r"(동|읍|면|리|가)$", token) for token in tokens)
    if has_locality and extract_building_numbers(main):
        return AddressType.JIBUN
    return AddressType.UNKNOWN


def extract_building_numbers(address: str) -> BuildingNumbers:
    """Extract the building (road) or lot number pair from a main address.

    The first standalone ``main[-sub]`` token wins; a number glued to a road
    name (테헤란로152) is also accepted.
    """
    for token in (address or "").split():
        match = re.fullmatch(r"(\d+)(?:-(\d+))?번?", token)
        if match:
            return BuildingNumbers(main=match.group(1), sub=match.group(2) or "")
        match = re.search(r"(?:로|길)(\d+)(?:-(\d+))?$", token)
        if match:
            return BuildingNumbers(main=match.group(1), sub=match.group(2) or "")
    return BuildingNumbers()


def extract_building_name(address: str) -> str:
    """Guess a building/complex keyword for the coarse fallback query.

    Best effort: a token next to 아파트/빌라 wins, then a lettered building
    label (삼영A동 -> 삼영), then the longest remaining token once digits and
    administrative suffixes are stripped.

    Returns:
        Keyword of at least 2 characters, or "" when none is found.
    """
    cleaned = re.sub(r"\([^)]*\)", " ", address or "")
    tokens = cleaned.split()

    for i, token in enumerate(tokens):
        if _BUILDING_WORDS.search(token):
            base = _BUILDING_WORDS.sub("", token)
            if len(base) < 2 and i > 0:
                base = tokens[i - 1]
            base = re.sub(r"[A-Za-z]*동?$", "", base)
            if len(base) >= 2 and not re.search(r"\d", base):
                return base

    for token in tokens:
        match = re.fullmatch(r"([가-힣]{2,})[A-Za-z]+동", token)
        if match:
            return match.group(1)

    best = ""
    for token in tokens:
        if re.search(r"\d", token) or _ADMIN_SUFFIX.search(token):
            continue
        base = _BUILDING_WORDS.sub("", token)
        if len(base) >= 2 and len(base) > len(best):
            best = base
    return best


def calculate_similarity(address1: str, address2: str) -> float:
    """Token-overlap similarity in [0, 1], case-insensitive.

    A token counts as shared when either side contains the other.
    """
    words1 = " ".join((address1 or "").split()).casefold().split(" ")
    words2 = " ".join((address2 or "").split()).casefold().split(" ")
    if words1 == words2:
        return 1.0
    total = max(len(words1), len(words2))
    if not total:
        return 0.0
    common = sum(
        1 for w1 in words1
        if w1 and any(w2 and (w1 in w2 or w2 in w1) for w2 in words2)
    )
    return common / total


def generate_suggestions(original: str, addresses: list[str], limit: int = 5) -> list[dict]:
    """Rank alternative addresses by similarity to the original."""
    suggestions = [
        {
            "address": address,
            "similarity": round(calculate_similarity(original, address), 3),
            "type": get_address_type(address).value,
        }
        for address in addresses
        if address
    ]
    suggestions.sort(key=lambda s: s["similarity"], reverse=True)
    return suggestions[:limit]
