"""FastAPI router for single-address postal code lookups.

Single address search with suggestions, autocomplete, reverse lookup by
postal code and a small synchronous batch endpoint. Bulk spreadsheet jobs
live in postcode_finder.upload.router.
"""

import logging
import time
from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from postcode_finder.address_normalizer import (
    generate_suggestions,
    get_address_type,
    is_valid_address,
    is_valid_postal_code,
    normalize,
)
from postcode_finder.address_resolver import AddressResolver
from postcode_finder.geocoder import BaseGeocoder, GeocoderError
from postcode_finder.utils.resilience import CircuitOpenError

logger = logging.getLogger(__name__)

# Router instance - configured with the resolver in main.py
router = APIRouter(prefix="/api/address", tags=["Address Lookup"])

MAX_BATCH_ADDRESSES = 100

# Global references (set during app startup)
_resolver: AddressResolver | None = None
_geocoder: BaseGeocoder | None = None


def configure_router(resolver: AddressResolver) -> None:
    """Configure the router with the shared resolver.

    Args:
        resolver: Initialized resolver; its geocoder serves autocomplete and
            postal code lookups.
    """
    global _resolver, _geocoder
    _resolver = resolver
    _geocoder = resolver.geocoder
    logger.info(f"Address router configured (provider={_geocoder.provider})")


# ============================================================================
# Request/Response Models
# ============================================================================


class AddressSearchRequest(BaseModel):
    """Request model for single address search."""

    address: str = Field(
        ...,
        min_length=1,
        max_length=500,
        description="Raw address text, detail (동/호) may be included",
        examples=["서울특별시 관악구 신림동 1422-5 101동 202호"],
    )


class BatchSearchRequest(BaseModel):
    """Request model for synchronous batch search."""

    addresses: list[str] = Field(
        ...,
        min_length=1,
        max_length=MAX_BATCH_ADDRESSES,
        description="Addresses to resolve, in order",
    )


def _require_resolver() -> AddressResolver:
    if _resolver is None:
        raise HTTPException(status_code=503, detail="Address service not initialized")
    return _resolver


def _upstream_http_error(e: GeocoderError) -> HTTPException:
    if isinstance(e, CircuitOpenError):
        return HTTPException(status_code=503, detail=f"Address provider unavailable, retry in {e.seconds_until_retry:.0f}s")
    return HTTPException(status_code=502, detail=f"Address provider error ({e.code})")


async def _suggest(address: str) -> list[dict[str, Any]]:
    try:
        completions = await _geocoder.autocomplete(address, limit=10)
    except GeocoderError as e:
        logger.warning(f"Suggestion lookup failed: {e}")
        return []
    return generate_suggestions(address, [c["address"] for c in completions])


# ============================================================================
# Endpoints
# ============================================================================


@router.post("/search")
async def search_address(request: AddressSearchRequest) -> dict[str, Any]:
    """Resolve one address to its postal code.

    Returns 404 with suggestions when no admissible candidate exists.
    """
    resolver = _require_resolver()
    start = time.time()
    normalized = normalize(request.address)
    if not is_valid_address(normalized.main):
        raise HTTPException(status_code=400, detail="Invalid address")

    try:
        resolved = await resolver.resolve_normalized(normalized)
    except GeocoderError as e:
        raise _upstream_http_error(e)

    if resolved is None:
        suggestions = await _suggest(normalized.main)
        raise HTTPException(
            status_code=404,
            detail={
                "error": "Postal code not found",
                "address": normalized.main,
                "suggestions": suggestions,
            },
        )

    return {
        "success": True,
        "data": {
            **resolved.to_response(),
            "detail": normalized.detail,
            "addressType": get_address_type(normalized.main).value,
        },
        "processingTimeMs": int((time.time() - start) * 1000),
    }


@router.get("/autocomplete")
async def autocomplete(q: str, limit: int = 10) -> dict[str, Any]:
    """Address completions for a partial query."""
    _require_resolver()
    query = q.strip()
    if len(query) < 2:
        return {"success": True, "data": []}
    try:
        items = await _geocoder.autocomplete(query, limit=max(1, min(limit, 50)))
    except GeocoderError as e:
        raise _upstream_http_error(e)
    return {"success": True, "data": items}


@router.get("/postal/{postal_code}")
async def find_by_postal_code(postal_code: str) -> dict[str, Any]:
    """Addresses carrying a postal code."""
    _require_resolver()
    if not is_valid_postal_code(postal_code):
        raise HTTPException(status_code=400, detail="Postal code must be 5 digits")
    try:
        candidates = await _geocoder.find_by_postal_code(postal_code)
    except GeocoderError as e:
        raise _upstream_http_error(e)
    if not candidates:
        raise HTTPException(status_code=404, detail="No address found for this postal code")
    return {
        "success": True,
        "postalCode": postal_code,
        "count": len(candidates),
        "data": [c.to_dict() for c in candidates],
    }


@router.post("/batch")
async def batch_search(request: BatchSearchRequest) -> dict[str, Any]:
    """Resolve up to 100 addresses one after another.

    Each item reports its own success or error; the request itself only
    fails when the service is not configured.
    """
    resolver = _require_resolver()
    results = []
    for index, address in enumerate(request.addresses):
        normalized = normalize(address)
        item: dict[str, Any] = {"index": index, "address": address}
        if not is_valid_address(normalized.main):
            results.append({**item, "success": False, "error": "Invalid address"})
            continue
        try:
            resolved = await resolver.resolve_normalized(normalized)
        except GeocoderError as e:
            results.append({**item, "success": False, "error": f"Upstream error ({e.code})"})
            continue
        if resolved is None:
            results.append({**item, "success": False, "error": "Postal code not found"})
            continue
        results.append({**item, "success": True, "data": {**resolved.to_response(), "detail": normalized.detail}})

    successful = sum(1 for r in results if r["success"])
    return {
        "success": True,
        "total": len(results),
        "successful": successful,
        "failed": len(results) - successful,
        "results": results,
    }
