"""
Abstract base class and shared types for geocoding providers.

Defines the common interface that every provider adapter (Google Maps,
Yandex Maps, OpenStreetMap) implements, plus the normalized Location type
they all return.
"""

import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Optional, Tuple

import requests

from ..monitoring import GeocodingMonitor
from .http_cache import served_from_cache

logger = logging.getLogger(__name__)

# Mean length of one degree of latitude
METERS_PER_DEGREE = 111_320.0

LatLon = Tuple[float, float]


class ProviderError(Exception):
    """A provider call failed (transport, status code, or undecodable payload)."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"{provider}: {message}")


def validate_coordinates(latitude: float, longitude: float):
    if not -90.0 <= latitude <= 90.0:
        raise ValueError(f"Latitude out of range: {latitude}")
    if not -180.0 <= longitude <= 180.0:
        raise ValueError(f"Longitude out of range: {longitude}")


@dataclass(frozen=True)
class Location:
    """
    A resolved geographic location.

    ``address`` is None for locations parsed straight from a coordinate pair.
    """

    address: Optional[str]
    latitude: float
    longitude: float

    def __post_init__(self):
        validate_coordinates(self.latitude, self.longitude)

    def to_dict(self):
        return {
            'address': self.address,
            'latitude': self.latitude,
            'longitude': self.longitude,
        }


@dataclass(frozen=True)
class SearchParams:
    """Per-query parameters handed to every provider in the chain."""

    lang_code: str
    location_bias: Optional[LatLon] = None


# ==============================================================================
# PAYLOAD HELPERS
# ==============================================================================

def dig(payload: Any, *path) -> Any:
    """
    Walk nested dicts/lists, returning None as soon as a step is missing.

    Example:
        >>> dig({'a': [{'b': 1}]}, 'a', 0, 'b')
        1
        >>> dig({'a': {}}, 'a', 'b', 'c') is None
        True
    """
    current = payload
    for step in path:
        try:
            current = current[step]
        except (KeyError, IndexError, TypeError):
            return None
    return current


def iter_array(value: Any) -> Iterable[Any]:
    """Yield the items of a JSON array; anything else counts as empty."""
    if isinstance(value, list):
        return value
    if value is not None:
        logger.debug(f"Expected a JSON array, got {type(value).__name__}; treating as empty")
    return []


def map_elements(provider: str, items: Iterable[Any], mapper: Callable[[Any], Optional[Location]]) -> List[Location]:
    """
    Convert provider elements into Locations, dropping the ones that don't fit.

    ``mapper`` may return None or raise KeyError/TypeError/ValueError for a
    malformed element; either way only that element is skipped.
    """
    locations = []
    for item in items:
        try:
            location = mapper(item)
        except (KeyError, IndexError, TypeError, ValueError, AttributeError) as e:
            logger.debug(f"[{provider}] Dropping malformed element: {type(e).__name__}: {e}")
            continue
        if location is not None:
            locations.append(location)
    return locations


def join_address(*parts: Optional[str]) -> Optional[str]:
    """Join non-empty address parts with ', ' (None if nothing is left)."""
    cleaned = [p.strip() for p in parts if isinstance(p, str) and p.strip()]
    return ', '.join(cleaned) or None


def degree_deltas(latitude: float, radius_meters: float) -> LatLon:
    """
    Convert a radius in meters into (delta_lat, delta_lon) degrees at a latitude.

    Longitude degrees shrink with cos(latitude); the value is clamped near the
    poles so the box never inverts.
    """
    delta_lat = radius_meters / METERS_PER_DEGREE
    cos_lat = max(math.cos(math.radians(latitude)), 0.01)
    delta_lon = radius_meters / (METERS_PER_DEGREE * cos_lat)
    return min(delta_lat, 90.0), min(delta_lon, 180.0)


def bounding_box(center: LatLon, radius_meters: float) -> Tuple[float, float, float, float]:
    """
    Box around a point, clamped to valid coordinates.

    Returns:
        (south, west, north, east)
    """
    latitude, longitude = center
    delta_lat, delta_lon = degree_deltas(latitude, radius_meters)
    return (
        max(latitude - delta_lat, -90.0),
        max(longitude - delta_lon, -180.0),
        min(latitude + delta_lat, 90.0),
        min(longitude + delta_lon, 180.0),
    )


# ==============================================================================
# BASE PROVIDER
# ==============================================================================

class BaseLocFinder(ABC):
    """
    Abstract base class for geocoding providers.

    Subclasses implement ``find`` and route every HTTP call through
    ``_request``, which applies the timeout, updates the request/response
    counters and turns transport or decoding problems into ProviderError.

    Args:
        session: HTTP session (normally a caching session shared by all providers)
        monitor: Counter sink shared across providers
        timeout: Per-call timeout in seconds
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        monitor: Optional[GeocodingMonitor] = None,
        timeout: float = 10,
    ):
        self.session = session if session is not None else requests.Session()
        self.monitor = monitor if monitor is not None else GeocodingMonitor()
        self.timeout = timeout

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name (e.g., 'google', 'osm')."""
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the provider is configured (API key present)."""
        pass

    @abstractmethod
    def find(self, query: str, params: SearchParams) -> List[Location]:
        """
        Resolve a free-text query.

        Args:
            query: Free text typed by the user
            params: Language and optional location bias

        Returns:
            Locations in provider order (empty list if nothing matched)

        Raises:
            ProviderError: Transport, HTTP status or payload decoding failure
        """
        pass

    def _request(self, method: str, url: str, api: str, **kwargs) -> Any:
        """
        Perform one provider call and return its decoded JSON payload.

        Args:
            method: HTTP method
            url: Endpoint URL
            api: Sub-operation label for the request counter (e.g. 'geocode')
            **kwargs: Passed to ``requests.Session.request``
        """
        self.monitor.record_request(self.provider_name, api)
        kwargs.setdefault('timeout', self.timeout)

        try:
            response = self.session.request(method, url, **kwargs)
        except requests.RequestException as e:
            error = ProviderError(self.provider_name, f"{api} request failed: {e}")
            self.monitor.record_error(self.provider_name, error)
            raise error from e

        self.monitor.record_response(self.provider_name, from_cache=served_from_cache(response))

        try:
            response.raise_for_status()
            return response.json()
        except requests.HTTPError as e:
            error = ProviderError(self.provider_name, f"{api} returned HTTP {response.status_code}")
            self.monitor.record_error(self.provider_name, error)
            raise error from e
        except ValueError as e:
            error = ProviderError(self.provider_name, f"{api} returned invalid JSON: {e}")
            self.monitor.record_error(self.provider_name, error)
            raise error from e

    def __repr__(self):
        return f"<{type(self).__name__} provider={self.provider_name}>"
