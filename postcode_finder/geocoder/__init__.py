"""
Geocoder Provider Package.

Provider-agnostic postal address lookup.

Usage:
    from postcode_finder.geocoder import create_geocoder

    geocoder = create_geocoder(cfg)
    result = await geocoder.search("경상북도 봉화군 봉화읍 문단리 699-3", page_size=50)
"""

from .base import (
    BaseGeocoder,
    GeocoderConfig,
    GeocoderConfigError,
    GeocoderError,
    GeocoderTimeout,
)
from .factory import create_geocoder, get_available_providers
from .providers import JusoGeocoder, LocalGeocoder

__all__ = [
    # Base
    "BaseGeocoder",
    "GeocoderConfig",
    "GeocoderError",
    "GeocoderTimeout",
    "GeocoderConfigError",
    # Factory
    "create_geocoder",
    "get_available_providers",
    # Providers
    "JusoGeocoder",
    "LocalGeocoder",
]
