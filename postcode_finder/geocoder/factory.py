"""
Geocoder Provider Factory.

Creates the configured address lookup provider.
"""

import logging
from typing import Optional

import httpx

from postcode_finder.config import Config

from .base import BaseGeocoder, GeocoderConfig
from .providers import JusoGeocoder, LocalGeocoder

logger = logging.getLogger(__name__)

# Provider class mapping
PROVIDER_CLASSES = {
    "juso": JusoGeocoder,
    "local": LocalGeocoder,
}


def get_available_providers(config: Config) -> list[str]:
    """
    Get list of providers usable with the given config.

    Returns:
        Provider names ("local" is always available)
    """
    available = ["local"]
    if config.is_juso_available():
        available.insert(0, "juso")
    return available


def create_geocoder(
    config: Config,
    client: Optional[httpx.AsyncClient] = None,
) -> BaseGeocoder:
    """
    Create the geocoder selected by POSTAL_PROVIDER.

    Args:
        config: Service configuration
        client: Optional shared httpx client (HTTP providers only)

    Returns:
        Configured BaseGeocoder instance

    Example:
        geocoder = create_geocoder(cfg)
        result = await geocoder.search("서울특별시 강남구 테헤란로 152")
    """
    provider = config.postal_provider
    if provider not in PROVIDER_CLASSES:
        logger.warning(f"Unknown postal provider '{provider}', using local dataset")
        provider = "local"

    if provider == "juso" and not config.is_juso_available():
        logger.warning("POSTAL_PROVIDER=juso but JUSO_API_KEY is empty; lookups will fail as upstream errors")

    geocoder_config = GeocoderConfig(
        provider=provider,
        api_key=config.juso_api_key or None,
        base_url=config.juso_base_url,
        data_path=config.local_data_path,
        timeout=config.geocoder_timeout,
        page_size=config.geocoder_page_size,
    )

    if provider == "juso":
        geocoder = JusoGeocoder(geocoder_config, client=client)
    else:
        geocoder = LocalGeocoder(geocoder_config)

    logger.info(f"Geocoder: {geocoder.provider}")
    return geocoder
