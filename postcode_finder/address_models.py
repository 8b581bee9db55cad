"""Address resolution data models and enums.

This module defines the value types shared across the resolution pipeline:
rows read from the uploaded spreadsheet, the normalizer's main/detail split,
parsed region components, geocoder candidates, and the resolved result.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class AddressType(str, Enum):
    """Korean address scheme."""

    ROAD = "road"           # 도로명주소 (road name + building number)
    JIBUN = "jibun"         # 지번주소 (neighborhood + lot number)
    UNKNOWN = "unknown"


CellValue = str | int | float | None


@dataclass(slots=True, frozen=True)
class RawRow:
    """One data row of the uploaded spreadsheet.

    Attributes:
        index: 1-based position among the data rows (header excluded).
        cells: Cell values in input column order.
        address_column: Index of the column holding the address.
    """

    index: int
    cells: tuple[CellValue, ...]
    address_column: int

    @property
    def address(self) -> str:
        """Raw address cell as text (empty when missing)."""
        if self.address_column >= len(self.cells):
            return ""
        value = self.cells[self.address_column]
        return "" if value is None else str(value)

    @property
    def sheet_row(self) -> int:
        """Row number as shown in the spreadsheet (row 1 is the header)."""
        return self.index + 1

    def cell(self, column: int) -> CellValue:
        if 0 <= column < len(self.cells):
            return self.cells[column]
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "cells": list(self.cells),
            "address_column": self.address_column,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RawRow":
        return cls(
            index=data["index"],
            cells=tuple(data.get("cells", [])),
            address_column=data.get("address_column", 0),
        )


@dataclass(slots=True, frozen=True)
class NormalizedAddress:
    """Searchable main address plus the unit/floor fragment moved out of it."""

    main: str
    detail: str = ""

    @property
    def joined(self) -> str:
        return f"{self.main} {self.detail}".strip()


@dataclass(slots=True, frozen=True)
class AddressComponents:
    """Region and road tokens parsed from a normalized address. Empty = absent."""

    province: str = ""
    municipality: str = ""
    neighborhood: str = ""
    road: str = ""

    @property
    def region(self) -> str:
        """Most specific administrative region available for coarse queries."""
        return self.municipality or self.province

    def to_dict(self) -> dict[str, str]:
        return {
            "province": self.province,
            "municipality": self.municipality,
            "neighborhood": self.neighborhood,
            "road": self.road,
        }


@dataclass(slots=True, frozen=True)
class BuildingNumbers:
    """Main/sub number pair (e.g. 152 or 699-3)."""

    main: str = ""
    sub: str = ""

    def __bool__(self) -> bool:
        return bool(self.main)

    @property
    def text(self) -> str:
        return f"{self.main}-{self.sub}" if self.sub else self.main


@dataclass(slots=True, frozen=True)
class Candidate:
    """One address record returned by the geocoder."""

    postal_code: str = ""
    road_address: str = ""
    lot_address: str = ""
    province: str = ""
    municipality: str = ""
    neighborhood: str = ""
    road_name: str = ""
    building_main: str = ""
    building_sub: str = ""
    lot_main: str = ""
    lot_sub: str = ""
    building_name: str = ""

    @property
    def canonical_text(self) -> str:
        """Road-based address, or the lot-based one when no road address exists."""
        return self.road_address or self.lot_address

    def to_dict(self) -> dict[str, str]:
        return {
            "postal_code": self.postal_code,
            "road_address": self.road_address,
            "lot_address": self.lot_address,
            "province": self.province,
            "municipality": self.municipality,
            "neighborhood": self.neighborhood,
            "road_name": self.road_name,
            "building_main": self.building_main,
            "building_sub": self.building_sub,
            "lot_main": self.lot_main,
            "lot_sub": self.lot_sub,
            "building_name": self.building_name,
        }


@dataclass(slots=True, frozen=True)
class ResolvedAddress:
    """Canonical output of a successful resolution."""

    postal_code: str
    full_address: str
    province: str = ""
    municipality: str = ""

    @classmethod
    def from_candidate(cls, candidate: Candidate) -> "ResolvedAddress":
        return cls(
            postal_code=candidate.postal_code,
            full_address=candidate.canonical_text,
            province=candidate.province,
            municipality=candidate.municipality,
        )

    def to_dict(self) -> dict[str, str]:
        return {
            "postal_code": self.postal_code,
            "full_address": self.full_address,
            "province": self.province,
            "municipality": self.municipality,
        }

    def to_response(self) -> dict[str, str]:
        """API (camelCase) representation."""
        return {
            "postalCode": self.postal_code,
            "fullAddress": self.full_address,
            "province": self.province,
            "municipality": self.municipality,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ResolvedAddress":
        return cls(
            postal_code=data.get("postal_code", ""),
            full_address=data.get("full_address", ""),
            province=data.get("province", ""),
            municipality=data.get("municipality", ""),
        )


@dataclass(slots=True)
class SearchResult:
    """Geocoder answer: total hit count and one page of candidates."""

    total: int = 0
    items: list[Candidate] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.items
