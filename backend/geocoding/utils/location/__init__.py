"""
Location resolution utilities.

This module provides the provider clients (Google Maps, Yandex Maps,
OpenStreetMap), the ordered search chain that falls back between them,
and the shared HTTP response cache all of them go through.

Provider order is configured via the GEOCODING_SEARCH_CHAIN setting;
switches, modes and TTLs via Constance.
"""

from .base import (
    BaseLocFinder,
    Location,
    ProviderError,
    SearchParams,
    bounding_box,
)
from .coordinates import parse_coordinates
from .google_maps import GoogleMapsClient
from .yandex_maps import YandexMapsClient
from .osm import NominatimClient
from .chain import ChainLink, SearchChain, finder
from .factory import build_search_chain, build_caching_session, get_available_providers
from .http_cache import (
    CachePolicy,
    CachingHTTPAdapter,
    ResponseCache,
    body_aware_cache_key,
    caching_session,
    served_from_cache,
)

__all__ = [
    # Types
    'BaseLocFinder',
    'Location',
    'ProviderError',
    'SearchParams',
    'bounding_box',
    'parse_coordinates',
    # Provider clients
    'GoogleMapsClient',
    'YandexMapsClient',
    'NominatimClient',
    # Chain
    'ChainLink',
    'SearchChain',
    'finder',
    # Factory
    'build_search_chain',
    'build_caching_session',
    'get_available_providers',
    # Response cache
    'CachePolicy',
    'CachingHTTPAdapter',
    'ResponseCache',
    'body_aware_cache_key',
    'caching_session',
    'served_from_cache',
]
