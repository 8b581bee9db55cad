"""Tests for address normalization and the address helper functions.

Tests cover:
- Main / detail split (trailing units, brackets, comma segments)
- Lot numbers and administrative names that must stay in the main address
- Idempotency
- Validity checks, address type, building numbers and names
- Similarity and suggestions
- Input sanitization
"""

from collections import Counter

import pytest

from postcode_finder.address_models import AddressType, BuildingNumbers
from postcode_finder.address_normalizer import (
    AddressNormalizer,
    calculate_similarity,
    extract_building_name,
    extract_building_numbers,
    generate_suggestions,
    get_address_type,
    is_valid_address,
    is_valid_postal_code,
    normalize,
    split_address_detail,
)
from postcode_finder.utils.resilience import sanitize_address_input


# ============================================================================
# Main / detail split
# ============================================================================


class TestNormalize:
    """Tests for the main address / detail fragment split."""

    def test_trailing_dong_ho_moves_to_detail(self):
        result = normalize("서울특별시 관악구 신림로 330 101동 202호")
        assert result.main == "서울특별시 관악구 신림로 330"
        assert result.detail == "101동 202호"

    def test_compound_unit_token(self):
        result = normalize("서울특별시 강남구 테헤란로 152 101동1203호")
        assert result.main == "서울특별시 강남구 테헤란로 152"
        assert result.detail == "101동1203호"

    def test_hyphenated_unit(self):
        result = normalize("서울특별시 관악구 신림로 330 101-1203호")
        assert result.main == "서울특별시 관악구 신림로 330"
        assert result.detail == "101-1203호"

    def test_floor_and_basement(self):
        assert normalize("서울특별시 강남구 테헤란로 152 3층").detail == "3층"
        assert normalize("서울특별시 강남구 테헤란로 152 지하1층").detail == "지하1층"

    def test_lettered_building_label(self):
        result = normalize("서울특별시 관악구 봉천로 227 삼영A동 101호")
        assert result.main == "서울특별시 관악구 봉천로 227"
        assert result.detail == "삼영A동 101호"

    def test_syllable_dong_only_before_unit(self):
        result = normalize("서울특별시 관악구 봉천로 227 가동 101호")
        assert result.main == "서울특별시 관악구 봉천로 227"
        assert result.detail == "가동 101호"

    def test_bracket_unit_moves_to_detail(self):
        result = normalize("서울시 강남구 테헤란로 152 (역삼동, 5층)")
        assert result.main == "서울시 강남구 테헤란로 152"
        assert result.detail == "5층"

    def test_comma_segment_with_unit(self):
        result = normalize("서울 관악구 봉천로 227, 삼영아파트 103동 1104호")
        assert result.main == "서울 관악구 봉천로 227"
        assert result.detail == "삼영아파트 103동 1104호"

    def test_comma_segment_without_unit_is_joined(self):
        result = normalize("서울특별시 강남구, 테헤란로 152")
        assert result.main == "서울특별시 강남구 테헤란로 152"
        assert result.detail == ""

    def test_lot_number_stays_in_main(self):
        result = normalize("경상북도 봉화군 봉화읍 문단리 699-3")
        assert result.main == "경상북도 봉화군 봉화읍 문단리 699-3"
        assert result.detail == ""

    def test_beonji_suffix_removed(self):
        result = normalize("경상북도 봉화군 봉화읍 문단리 699-3번지")
        assert result.main == "경상북도 봉화군 봉화읍 문단리 699-3"

    def test_administrative_dong_with_digit_is_not_detail(self):
        result = normalize("서울특별시 관악구 신림1동 1422-5")
        assert result.main == "서울특별시 관악구 신림1동 1422-5"
        assert result.detail == ""

    def test_single_token_is_kept(self):
        result = normalize("101호")
        assert result.main == "101호"
        assert result.detail == ""

    def test_empty_and_none(self):
        assert normalize("").main == ""
        assert normalize(None).main == ""
        assert normalize("   ").main == ""

    def test_whitespace_collapsed(self):
        result = normalize("  서울특별시   강남구\t테헤란로  152 ")
        assert result.main == "서울특별시 강남구 테헤란로 152"

    @pytest.mark.parametrize("raw", [
        "서울특별시 관악구 신림로 330 101동 202호",
        "서울시 강남구 테헤란로 152 (역삼동, 5층)",
        "경상북도 봉화군 봉화읍 문단리 699-3번지",
        "서울 관악구 봉천로 227, 삼영아파트 103동 1104호",
        "서울특별시 종로구 관철동 4.번지",
        ")(면8층0.번지7730,.",
    ])
    def test_idempotent_on_main(self, raw):
        main = normalize(raw).main
        again = normalize(main)
        assert again.main == main
        assert again.detail == ""

    def test_punctuation_before_beonji(self):
        assert normalize("서울특별시 종로구 관철동 4.번지").main == "서울특별시 종로구 관철동 4"
        assert normalize("경상북도 봉화군 봉화읍 문단리 699-3·번지").main == "경상북도 봉화군 봉화읍 문단리 699-3"

    @pytest.mark.parametrize("raw", [
        "서울특별시 관악구 신림로 330 101동 202호",
        "서울시 강남구 테헤란로 152 (역삼동, 5층)",
        "서울 관악구 봉천로 227, 삼영아파트 103동 1104호 (봉천동)",
        "경상북도 봉화군 봉화읍 문단리 699-3번지번지",
        "[삼영A동] 서울특별시 관악구 봉천로 227; B102호",
        "부산광역시 해운대구 센텀중앙로 97, 101동-1203, 3층",
        ")(면8층0.번지7730,.",
        "{{가동}} 나동 1층",
    ])
    def test_output_only_uses_input_characters(self, raw):
        result = normalize(raw)
        available = Counter(raw.replace(" ", ""))
        used = Counter((result.main + result.detail).replace(" ", ""))
        assert all(used[char] <= available[char] for char in used)

    def test_split_address_detail_tuple(self):
        assert split_address_detail("서울특별시 관악구 신림로 330 101동 202호") == (
            "서울특별시 관악구 신림로 330",
            "101동 202호",
        )

    def test_classmethod_matches_function(self):
        raw = "서울특별시 관악구 신림로 330 101동 202호"
        assert AddressNormalizer.normalize(raw) == normalize(raw)


# ============================================================================
# Helpers
# ============================================================================


class TestValidity:
    """Tests for address and postal code validity checks."""

    def test_valid_addresses(self):
        assert is_valid_address("서울특별시 강남구 테헤란로 152")
        assert is_valid_address("문단리 699-3")

    def test_invalid_addresses(self):
        assert not is_valid_address("")
        assert not is_valid_address(None)
        assert not is_valid_address("1")
        assert not is_valid_address("12345")
        assert not is_valid_address("없는주소 123")

    def test_postal_codes(self):
        assert is_valid_postal_code("06236")
        assert is_valid_postal_code(36209)
        assert not is_valid_postal_code("6236")
        assert not is_valid_postal_code("062366")
        assert not is_valid_postal_code("0623a")
        assert not is_valid_postal_code(None)


class TestAddressType:

    def test_road(self):
        assert get_address_type("서울특별시 강남구 테헤란로 152") == AddressType.ROAD
        assert get_address_type("서울특별시 강남구 테헤란로152") == AddressType.ROAD

    def test_jibun(self):
        assert get_address_type("경상북도 봉화군 봉화읍 문단리 699-3") == AddressType.JIBUN

    def test_unknown(self):
        assert get_address_type("서울특별시 강남구") == AddressType.UNKNOWN


class TestBuildingNumbers:

    def test_main_and_sub(self):
        assert extract_building_numbers("경상북도 봉화군 봉화읍 문단리 699-3") == BuildingNumbers("699", "3")

    def test_main_only(self):
        numbers = extract_building_numbers("서울특별시 강남구 테헤란로 152")
        assert numbers.main == "152"
        assert numbers.sub == ""
        assert numbers.text == "152"

    def test_glued_to_road(self):
        assert extract_building_numbers("서울특별시 강남구 테헤란로152") == BuildingNumbers("152", "")

    def test_none(self):
        assert not extract_building_numbers("서울특별시 강남구")


class TestBuildingName:

    def test_apartment_token(self):
        assert extract_building_name("서울특별시 관악구 봉천동 삼영아파트 103동") == "삼영"

    def test_token_before_apartment_word(self):
        assert extract_building_name("서울특별시 관악구 봉천동 삼영 아파트") == "삼영"

    def test_lettered_label(self):
        assert extract_building_name("서울특별시 관악구 봉천동 999 삼영A동 101호") == "삼영"

    def test_no_keyword(self):
        assert extract_building_name("서울특별시 종로구 없는로 1") == ""

    def test_province_is_not_a_keyword(self):
        assert extract_building_name("경상북도 봉화군 봉화읍 문단리 699-3") == ""


class TestSimilarity:

    def test_identical(self):
        assert calculate_similarity("서울특별시 강남구 테헤란로 152", "서울특별시 강남구 테헤란로 152") == 1.0

    def test_case_insensitive(self):
        assert calculate_similarity("Teheran-ro 152", "teheran-ro 152") == 1.0

    def test_partial_overlap(self):
        score = calculate_similarity("서울 강남구 테헤란로 152", "서울특별시 강남구 테헤란로 999")
        assert score == pytest.approx(0.75)

    def test_empty(self):
        assert calculate_similarity("", "서울특별시") == 0.0

    def test_suggestions_ranked(self):
        suggestions = generate_suggestions(
            "서울특별시 강남구 테헤란로 152",
            ["부산광역시 해운대구 우동 1411", "서울특별시 강남구 테헤란로 152", "서울특별시 강남구 영동대로 513"],
        )
        assert suggestions[0]["address"] == "서울특별시 강남구 테헤란로 152"
        assert suggestions[0]["similarity"] == 1.0
        assert suggestions[0]["type"] == "road"
        assert [s["similarity"] for s in suggestions] == sorted(
            (s["similarity"] for s in suggestions), reverse=True
        )

    def test_suggestions_limit(self):
        addresses = [f"서울특별시 강남구 테헤란로 {n}" for n in range(10)]
        assert len(generate_suggestions("서울특별시 강남구 테헤란로 1", addresses)) == 5


# ============================================================================
# Input Sanitization Tests
# ============================================================================


class TestInputSanitization:
    """Tests for input sanitization functionality."""

    def test_empty_input(self):
        assert sanitize_address_input("") == ""
        assert sanitize_address_input(None) == ""

    def test_max_length_truncation(self):
        assert len(sanitize_address_input("가" * 1000, max_length=500)) == 500

    def test_control_character_removal(self):
        clean = sanitize_address_input("서울특별시\x00 강남구\x01")
        assert clean == "서울특별시 강남구"

    def test_newlines_become_spaces(self):
        assert sanitize_address_input("서울특별시\n강남구\r\n테헤란로 152") == "서울특별시 강남구 테헤란로 152"
