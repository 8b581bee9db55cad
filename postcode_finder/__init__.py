"""Postcode Finder - bulk resolution of Korean postal addresses to canonical address + postal code."""

__version__ = "1.0.0"
