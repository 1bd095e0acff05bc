"""Query entry points: address or point to a composite district response."""

from __future__ import annotations

from typing import Any

from district_lookup.common.errors import GeocodingUnavailable
from district_lookup.common.models import GeocodeResult, ResolutionResult, ResolutionStatus
from district_lookup.lookup.geocoding import GeocodingOrchestrator, extract_region_hints
from district_lookup.lookup.resolution import ResolutionEngine

NOT_GEOCODED_MESSAGE = "Address could not be found or geocoded"


def _status_message(result: ResolutionResult, county: str) -> str | None:
    if result.status is ResolutionStatus.UNSUPPORTED:
        return f"Location is outside {county} County and is not supported"
    if result.status is ResolutionStatus.NOT_FOUND:
        return f"Location is in {county} County but no district information was found"
    return None


def _response(result: ResolutionResult, engine: ResolutionEngine) -> dict[str, Any]:
    payload = result.to_dict()
    payload["county"] = result.county if result.supported else None
    payload["message"] = _status_message(result, engine.county)
    return payload


def lookup_point(lon: float, lat: float, engine: ResolutionEngine) -> dict[str, Any]:
    result = engine.resolve(lon, lat)
    return _response(result, engine)


def lookup_address(address: str, geocoder: GeocodingOrchestrator, engine: ResolutionEngine) -> dict[str, Any]:
    """Geocode then resolve.

    A geocoding miss is a normal outcome and comes back as a not-found
    payload; storage errors from the resolver propagate.
    """
    geocoded: GeocodeResult | None = geocoder.geocode(address)
    if geocoded is None:
        return {
            "address": address,
            "status": ResolutionStatus.NOT_FOUND.value,
            "found": False,
            "error_code": GeocodingUnavailable.error_code,
            "message": NOT_GEOCODED_MESSAGE,
            "districts": None,
        }

    payload = {
        "address": address,
        "formatted_address": geocoded.formatted_address,
        "geocoding_source": geocoded.source.value,
        "geocoding_provider": geocoded.provider,
        "geocoding_confidence": geocoded.confidence,
    }
    payload.update(lookup_point(geocoded.lon, geocoded.lat, engine))
    payload["region_hints"] = extract_region_hints(geocoded.regions)
    return payload
