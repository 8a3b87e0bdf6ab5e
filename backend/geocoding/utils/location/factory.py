"""
Factory for building the provider search chain from configuration.

Provider order comes from the GEOCODING_SEARCH_CHAIN setting:

    GEOCODING_SEARCH_CHAIN = {
        'global': ['osm', 'google'],
        'ru': ['yandex'],
    }

Enable switches, API modes, timeouts and cache TTLs come from Constance.
Each provider is instantiated once and shared by every locale that lists it.
"""

import logging
from typing import Callable, Dict, List, Optional

import requests
from django.conf import settings

from locplace.utils.fail_open import config_value

from ..monitoring import GeocodingMonitor
from .base import BaseLocFinder
from .chain import ChainLink, SearchChain, finder
from .google_maps import GoogleMapsClient
from .http_cache import ResponseCache, caching_session
from .osm import NominatimClient
from .yandex_maps import YandexMapsClient

logger = logging.getLogger(__name__)

# Provider name constants
PROVIDER_OSM = "osm"
PROVIDER_GOOGLE = "google"
PROVIDER_YANDEX = "yandex"

GLOBAL_CHAIN = 'global'

DEFAULT_SEARCH_CHAIN = {
    GLOBAL_CHAIN: [PROVIDER_OSM, PROVIDER_GOOGLE],
}

# Constance switch per provider
PROVIDER_ENABLE_FLAGS = {
    PROVIDER_OSM: 'OSM_ENABLED',
    PROVIDER_GOOGLE: 'GOOGLE_MAPS_ENABLED',
    PROVIDER_YANDEX: 'YANDEX_MAPS_ENABLED',
}


def _osm(**common) -> BaseLocFinder:
    return NominatimClient(**common)


def _google(**common) -> BaseLocFinder:
    return GoogleMapsClient(mode=config_value('GOOGLE_API_MODE', log=logger), **common)


def _yandex(**common) -> BaseLocFinder:
    return YandexMapsClient(mode=config_value('YANDEX_API_MODE', log=logger), **common)


# Map provider names to client constructors
PROVIDER_CLIENTS: Dict[str, Callable[..., BaseLocFinder]] = {
    PROVIDER_OSM: _osm,
    PROVIDER_GOOGLE: _google,
    PROVIDER_YANDEX: _yandex,
}


def build_caching_session() -> requests.Session:
    """HTTP session shared by all providers, routed through the response cache."""
    return caching_session(
        response_cache=ResponseCache(revalidation_grace=config_value('RESPONSE_CACHE_REVALIDATION_GRACE_SECS', log=logger)),
        default_ttl=config_value('RESPONSE_CACHE_DEFAULT_TTL_SECS', log=logger),
        enabled=config_value('RESPONSE_CACHE_ENABLED', log=logger),
    )


def _create_client(provider: str, **common) -> Optional[BaseLocFinder]:
    """
    Create a client instance for the given provider.

    Returns:
        Client instance or None if the provider is unknown or misconfigured
    """
    factory = PROVIDER_CLIENTS.get(provider)
    if factory is None:
        logger.error(f"Unknown geocoding provider: {provider}")
        return None
    try:
        return factory(**common)
    except ValueError as e:
        logger.error(f"Cannot configure geocoding provider '{provider}': {e}")
        return None


def _is_enabled(provider: str) -> bool:
    flag = PROVIDER_ENABLE_FLAGS.get(provider)
    return bool(config_value(flag, log=logger)) if flag else True


def build_search_chain(
    chain_config: Optional[Dict[str, List[str]]] = None,
    session: Optional[requests.Session] = None,
    monitor: Optional[GeocodingMonitor] = None,
) -> SearchChain:
    """
    Build the search chain.

    A provider ends up disabled (and is dropped from the chain) when its
    Constance switch is off or its API key is missing.

    Args:
        chain_config: Provider order per locale (defaults to settings.GEOCODING_SEARCH_CHAIN)
        session: HTTP session for all providers (defaults to a caching session)
        monitor: Counter sink shared by all providers

    Example:
        >>> chain = build_search_chain({'global': ['osm'], 'ru': ['yandex', 'osm']})
        >>> [f.provider_name for f in chain.finders_for('ru')]
        ['yandex', 'osm']
    """
    if chain_config is None:
        chain_config = getattr(settings, 'GEOCODING_SEARCH_CHAIN', None) or DEFAULT_SEARCH_CHAIN
    if session is None:
        session = build_caching_session()
    if monitor is None:
        monitor = GeocodingMonitor()

    common = {
        'session': session,
        'monitor': monitor,
        'timeout': config_value('PROVIDER_REQUEST_TIMEOUT_SECS', log=logger),
        'search_radius': config_value('SEARCH_RADIUS_METERS', log=logger),
    }
    clients: Dict[str, Optional[BaseLocFinder]] = {}

    def links(providers: List[str]) -> List[ChainLink]:
        result = []
        for provider in providers:
            provider = provider.lower()
            if provider not in clients:
                clients[provider] = _create_client(provider, **common)
            client = clients[provider]
            if client is None:
                continue

            enabled = _is_enabled(provider)
            if enabled and not client.is_available():
                logger.warning(f"Geocoding provider '{provider}' is enabled but not configured, skipping")
                enabled = False
            result.append(finder(client, enabled=enabled))
        return result

    chain = SearchChain(links(chain_config.get(GLOBAL_CHAIN, [])), monitor=monitor)
    for lang_code, providers in chain_config.items():
        if lang_code != GLOBAL_CHAIN:
            chain = chain.for_lang_code(lang_code, links(providers))

    logger.info(f"Built geocoding search chain: {chain!r}")
    return chain


def get_available_providers() -> List[str]:
    """
    Get list of providers that are switched on and configured.

    Returns:
        List of provider names usable right now
    """
    available = []
    for provider in PROVIDER_CLIENTS:
        if not _is_enabled(provider):
            continue
        client = _create_client(provider, session=requests.Session())
        if client is not None and client.is_available():
            available.append(provider)
    return available
