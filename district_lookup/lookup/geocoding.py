"""Address geocoding with primary/secondary provider fallback.

Geocoding itself is delegated to external services. This module only calls
them in order, interprets each provider's response shape, and normalises the
result into :class:`GeocodeResult`. A miss from both providers is a normal
outcome and is returned as ``None``.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Protocol

from district_lookup.common.constants import (
    DEFAULT_PRIMARY_GEOCODER_TIMEOUT,
    DEFAULT_SECONDARY_GEOCODER_TIMEOUT,
)
from district_lookup.common.errors import GeocodingUnavailable
from district_lookup.common.geometry import valid_lon_lat
from district_lookup.common.http import HttpClient, HttpRequestError, RetryConfig, TimeoutConfig
from district_lookup.common.logging import log_event
from district_lookup.common.models import GeocodeResult, GeocodeSource

logger = logging.getLogger(__name__)

REGION_HINT_KEYS = {
    "pittsburgh_city_council": "city_council_district",
    "pittsburgh_ward": "ward",
}


def _safe_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


class GeocodingProvider(Protocol):
    name: str

    def geocode(self, address: str, source: GeocodeSource) -> GeocodeResult | None: ...


class GeomancerProvider:
    name = "geomancer"

    def __init__(
        self,
        base_url: str,
        http_client: HttpClient,
        *,
        timeout: float = DEFAULT_PRIMARY_GEOCODER_TIMEOUT,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.http_client = http_client
        self.timeout = timeout

    def geocode(self, address: str, source: GeocodeSource) -> GeocodeResult | None:
        payload = self.http_client.get_json(
            f"{self.base_url}/geocode",
            source_type="geocoder",
            params={"addr": address},
            timeout=TimeoutConfig.bounded(self.timeout),
        )
        if not isinstance(payload, dict) or payload.get("status") != "OK":
            return None

        data = payload.get("data")
        if not isinstance(data, dict):
            return None
        lat = _safe_float(data.get("lat"))
        lon = _safe_float(data.get("lon"))
        if not valid_lon_lat(lon, lat):
            return None

        return GeocodeResult(
            lat=lat,
            lon=lon,
            source=source,
            provider=self.name,
            formatted_address=data.get("formatted_address") or address,
            confidence=data.get("score"),
            regions=_as_mapping(data.get("regions")),
        )


class CensusProvider:
    name = "census"

    def __init__(
        self,
        base_url: str,
        http_client: HttpClient,
        *,
        timeout: float = DEFAULT_SECONDARY_GEOCODER_TIMEOUT,
        benchmark: str = "Public_AR_Current",
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.http_client = http_client
        self.timeout = timeout
        self.benchmark = benchmark

    def geocode(self, address: str, source: GeocodeSource) -> GeocodeResult | None:
        payload = self.http_client.get_json(
            f"{self.base_url}/locations/onelineaddress",
            source_type="geocoder",
            params={"address": address, "benchmark": self.benchmark, "format": "json"},
            timeout=TimeoutConfig.bounded(self.timeout),
        )
        result = _as_mapping(payload).get("result")
        matches = _as_mapping(result).get("addressMatches")
        if not isinstance(matches, list) or not matches or not isinstance(matches[0], dict):
            return None

        match = matches[0]
        coordinates = _as_mapping(match.get("coordinates"))
        lat = _safe_float(coordinates.get("y"))
        lon = _safe_float(coordinates.get("x"))
        if not valid_lon_lat(lon, lat):
            return None

        tiger_line = _as_mapping(match.get("tigerLine"))
        return GeocodeResult(
            lat=lat,
            lon=lon,
            source=source,
            provider=self.name,
            formatted_address=match.get("matchedAddress") or address,
            confidence=tiger_line.get("tigerLineId"),
            regions={},
        )


class GeocodingOrchestrator:
    def __init__(self, primary: GeocodingProvider, secondary: GeocodingProvider) -> None:
        self.primary = primary
        self.secondary = secondary

    def _attempt(self, provider: GeocodingProvider, address: str, source: GeocodeSource) -> GeocodeResult | None:
        try:
            result = provider.geocode(address, source)
        except HttpRequestError as exc:
            log_event(
                logger,
                f"{provider.name} geocoding failed: {exc}",
                level=logging.WARNING,
                source=provider.name,
                event="GEOCODER_FAIL",
                status="error",
                error_code=exc.error_code,
            )
            return None
        if result is None:
            log_event(logger, f"{provider.name} returned no match", source=provider.name, event="GEOCODER_MISS", status="miss")
        return result

    def geocode(self, address: str) -> GeocodeResult | None:
        result = self._attempt(self.primary, address, GeocodeSource.PRIMARY)
        if result is not None:
            return result

        log_event(logger, f"falling back to {self.secondary.name}", source=self.secondary.name, event="GEOCODER_FALLBACK", status="ok")
        result = self._attempt(self.secondary, address, GeocodeSource.SECONDARY)
        if result is None:
            log_event(
                logger,
                "no geocoder matched the address",
                event="GEOCODER_EXHAUSTED",
                status="miss",
                error_code=GeocodingUnavailable.error_code,
            )
        return result


def extract_region_hints(regions: Mapping[str, Any]) -> dict[str, Any]:
    """Provider region ids worth echoing back; hints only, never authoritative."""
    return {target: regions[source] for source, target in REGION_HINT_KEYS.items() if regions.get(source)}


def build_geocoder(settings: dict, http_client: HttpClient | None = None) -> GeocodingOrchestrator:
    client = http_client or HttpClient(retry=RetryConfig(max_attempts=1))
    primary_cfg = settings["geocoding"]["primary"]
    secondary_cfg = settings["geocoding"]["secondary"]
    return GeocodingOrchestrator(
        primary=GeomancerProvider(
            primary_cfg["base_url"],
            client,
            timeout=float(primary_cfg["timeout_seconds"]),
        ),
        secondary=CensusProvider(
            secondary_cfg["base_url"],
            client,
            timeout=float(secondary_cfg["timeout_seconds"]),
            benchmark=secondary_cfg.get("benchmark", "Public_AR_Current"),
        ),
    )
