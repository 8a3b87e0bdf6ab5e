"""
Location resolution service.

LocationResolver ties together the provider search chain, the request rate
limiter and the user profile cache. One instance is built by
GeocodingConfig.ready() and shared by the views and management commands:

    from django.apps import apps
    resolver = apps.get_app_config('geocoding').resolver
    resolver.resolve('Eiffel Tower', 'en')
"""

import logging
from typing import List, Optional, Tuple

from profiles.cache import CachedUserServiceClient, build_profile_client
from profiles.client import Profile

from .utils.location import Location, SearchChain, build_search_chain
from .utils.location.base import LatLon
from .utils.monitoring import GeocodingMonitor
from .utils.rate_limit import RequestsLimiter

logger = logging.getLogger(__name__)

DEFAULT_LANG_CODE = 'en'


def normalize_lang_code(lang_code: Optional[str]) -> Optional[str]:
    """
    Reduce a locale tag to its language part.

    Example:
        >>> normalize_lang_code('pt-BR')
        'pt'
    """
    if not lang_code:
        return None
    return lang_code.replace('_', '-').split('-')[0].strip().lower() or None


class LocationResolver:
    """
    Entry point for resolving location queries.

    Args:
        chain: Provider search chain
        limiter: Per-user request limiter
        profiles: Cached profile client (None when the profile service is disabled)
        monitor: Counter sink shared with the providers
    """

    def __init__(
        self,
        chain: SearchChain,
        limiter: RequestsLimiter,
        profiles: Optional[CachedUserServiceClient] = None,
        monitor: Optional[GeocodingMonitor] = None,
    ):
        self.chain = chain
        self.limiter = limiter
        self.profiles = profiles
        self.monitor = monitor if monitor is not None else chain.monitor

    @classmethod
    def from_config(cls) -> 'LocationResolver':
        """Build every collaborator from settings and Constance."""
        monitor = GeocodingMonitor()
        return cls(
            chain=build_search_chain(monitor=monitor),
            limiter=RequestsLimiter.from_config(),
            profiles=build_profile_client(),
            monitor=monitor,
        )

    def resolve(self, query: str, lang_code: str, location_bias: Optional[LatLon] = None) -> List[Location]:
        """
        Resolve a free-text or coordinate query.

        Returns:
            Locations from the first provider that found something (may be empty)
        """
        query = (query or '').strip()
        if not query:
            return []
        lang_code = normalize_lang_code(lang_code) or DEFAULT_LANG_CODE
        return self.chain.find(query, lang_code, location_bias)

    def is_request_allowed(self, identity) -> bool:
        return self.limiter.is_allowed(identity)

    def get_profile(self, user_id) -> Optional[Profile]:
        if self.profiles is None or user_id in (None, ''):
            return None
        return self.profiles.get(str(user_id))

    def resolve_for_user(
        self,
        query: str,
        user_id=None,
        lang_hint: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> Tuple[str, List[Location]]:
        """
        Resolve a query on behalf of a chat user.

        The user's saved language wins over the platform's locale hint, and
        the user's last shared location biases the providers.

        Returns:
            (lang_code used, locations truncated to ``limit``)
        """
        profile = self.get_profile(user_id)

        lang_code = (
            normalize_lang_code(profile.language_code if profile else None)
            or normalize_lang_code(lang_hint)
            or DEFAULT_LANG_CODE
        )
        location_bias = profile.location if profile else None

        locations = self.resolve(query, lang_code, location_bias)
        if limit is not None:
            locations = locations[:limit]
        return lang_code, locations
