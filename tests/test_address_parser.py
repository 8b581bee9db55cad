"""Tests for the Korean address component parser."""

import pytest

from postcode_finder.address_models import AddressComponents
from postcode_finder.address_parser import (
    canonical_province,
    is_province_token,
    parse_components,
)


class TestProvince:

    @pytest.mark.parametrize("alias,official", [
        ("서울", "서울특별시"),
        ("서울시", "서울특별시"),
        ("경북", "경상북도"),
        ("강원도", "강원특별자치도"),
        ("전라북도", "전북특별자치도"),
        ("제주도", "제주특별자치도"),
        ("경기도", "경기도"),
    ])
    def test_canonical_province(self, alias, official):
        assert canonical_province(alias) == official

    def test_canonical_province_empty(self):
        assert canonical_province("") == ""
        assert canonical_province(None) == ""

    def test_province_tokens(self):
        assert is_province_token("서울특별시")
        assert is_province_token("경북")
        assert is_province_token("광주")

    def test_gwangju_city_is_not_a_province(self):
        # 광주시 is a city in 경기도, 광주광역시 is the province-level city
        assert not is_province_token("광주시")

    def test_bare_suffix_is_not_a_province(self):
        assert not is_province_token("광역시")


class TestParseComponents:

    def test_road_address(self):
        assert parse_components("서울 관악구 신림로 330") == AddressComponents(
            province="서울특별시",
            municipality="관악구",
            neighborhood="",
            road="신림로",
        )

    def test_lot_address(self):
        components = parse_components("경상북도 봉화군 봉화읍 문단리 699-3")
        assert components.province == "경상북도"
        assert components.municipality == "봉화군"
        assert components.neighborhood == "봉화읍"
        assert components.road == ""

    def test_city_with_district_takes_first_municipality(self):
        components = parse_components("경기도 성남시 분당구 판교역로 166")
        assert components.municipality == "성남시"
        assert components.road == "판교역로"

    def test_road_with_glued_number(self):
        assert parse_components("서울특별시 강남구 테헤란로152").road == "테헤란로"

    def test_gil_road(self):
        assert parse_components("서울특별시 관악구 신림로23길 16").road == "신림로23길"

    def test_legal_dong_with_ga_is_not_a_road(self):
        components = parse_components("서울특별시 중구 을지로3가 315-1")
        assert components.road == ""
        assert parse_components("서울특별시 중구 을지로3가 을지로 100").road == "을지로"

    def test_city_without_province(self):
        components = parse_components("광주시 오포읍 1")
        assert components.province == ""
        assert components.municipality == "광주시"
        assert components.neighborhood == "오포읍"

    def test_building_label_is_not_neighborhood(self):
        components = parse_components("서울특별시 관악구 봉천로 227 A동")
        assert components.neighborhood == ""

    def test_province_only_city(self):
        components = parse_components("세종특별자치시 한누리대로 2130")
        assert components.province == "세종특별자치시"
        assert components.municipality == ""
        assert components.road == "한누리대로"

    def test_empty(self):
        assert parse_components("") == AddressComponents()

    def test_region_prefers_municipality(self):
        assert parse_components("서울 관악구 신림로 330").region == "관악구"
        assert parse_components("세종특별자치시 한누리대로 2130").region == "세종특별자치시"
