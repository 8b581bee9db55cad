"""Korean address component parser.

Decomposes a normalized address into region tokens and a road token with a
single left-to-right token scan. Token classes:

    province      official name or short alias (서울, 경북, 강원도, ...)
                  or any token ending in 특별시/광역시/특별자치시/특별자치도
    municipality  first token after the province ending in 시/군/구
    neighborhood  first token ending in 동/읍/면 that is not a building label
    road          <name>로 / <name>길, a house number may follow directly

Absence of any component is normal; the parser never raises.
"""

import re

from postcode_finder.address_models import AddressComponents


# Official province-level names
PROVINCES: tuple[str, ...] = (
    "서울특별시", "부산광역시", "대구광역시", "인천광역시", "광주광역시",
    "대전광역시", "울산광역시", "세종특별자치시", "경기도", "강원특별자치도",
    "충청북도", "충청남도", "전북특별자치도", "전라남도", "경상북도",
    "경상남도", "제주특별자치도",
)

# Short and legacy forms -> official name
PROVINCE_ALIASES: dict[str, str] = {
    "서울": "서울특별시", "서울시": "서울특별시",
    "부산": "부산광역시", "부산시": "부산광역시",
    "대구": "대구광역시", "대구시": "대구광역시",
    "인천": "인천광역시", "인천시": "인천광역시",
    "광주": "광주광역시",  # 광주시 is a city in 경기도
    "대전": "대전광역시", "대전시": "대전광역시",
    "울산": "울산광역시", "울산시": "울산광역시",
    "세종": "세종특별자치시", "세종시": "세종특별자치시",
    "경기": "경기도",
    "강원": "강원특별자치도", "강원도": "강원특별자치도",
    "충북": "충청북도",
    "충남": "충청남도",
    "전북": "전북특별자치도", "전라북도": "전북특별자치도",
    "전남": "전라남도",
    "경북": "경상북도",
    "경남": "경상남도",
    "제주": "제주특별자치도", "제주도": "제주특별자치도",
}

PROVINCE_SUFFIXES: tuple[str, ...] = ("특별자치시", "특별자치도", "특별시", "광역시")

_MUNICIPALITY = re.compile(r"(시|군|구)$")
_NEIGHBORHOOD = re.compile(r"(동|읍|면)$")
_BUILDING_LABEL = re.compile(r"^(?:[A-Za-z0-9]|[가-힣]+[A-Za-z])")

# 을지로3가 is a legal dong, not a road
ROAD_TOKEN_PATTERN = re.compile(r"^(?!\S*\d+가$)(\S+(?:로|길))(?=\d|$)")


def canonical_province(name: str) -> str:
    """Map a province name or alias to its official form ("" stays "")."""
    key = re.sub(r"\s+", "", name or "")
    return PROVINCE_ALIASES.get(key, key)


def is_province_token(token: str) -> bool:
    if token in PROVINCES or token in PROVINCE_ALIASES:
        return True
    return token.endswith(PROVINCE_SUFFIXES) and len(token) > 3


def parse_components(normalized: str) -> AddressComponents:
    """Parse region and road components from a normalized address.

    Args:
        normalized: Main address as returned by the normalizer.

    Returns:
        AddressComponents with empty strings for absent parts.
    """
    tokens = (normalized or "").split()

    province = ""
    province_index = -1
    for i, token in enumerate(tokens):
        if is_province_token(token):
            province = canonical_province(token)
            province_index = i
            break

    municipality = ""
    for token in tokens[province_index + 1:]:
        if _MUNICIPALITY.search(token) and not is_province_token(token):
            municipality = token
            break

    neighborhood = ""
    for token in tokens:
        if _NEIGHBORHOOD.search(token) and not _BUILDING_LABEL.match(token):
            neighborhood = token
            break

    road = ""
    for token in tokens:
        match = ROAD_TOKEN_PATTERN.match(token)
        if match:
            road = match.group(1)
            break

    return AddressComponents(
        province=province,
        municipality=municipality,
        neighborhood=neighborhood,
        road=road,
    )
