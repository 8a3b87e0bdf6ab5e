"""
OpenStreetMap Nominatim client.

Free to use, but the usage policy requires an identifying User-Agent and
at most one request per second; the shared response cache keeps repeated
queries off the public instance.

API Documentation: https://nominatim.org/release-docs/latest/api/Search/
"""

import logging
from typing import Any, Dict, List, Optional

from django.conf import settings

from .base import BaseLocFinder, Location, SearchParams
from .base import bounding_box, iter_array, map_elements

logger = logging.getLogger(__name__)


class NominatimClient(BaseLocFinder):
    """
    Nominatim free-form search client.

    Args:
        user_agent: Identifying User-Agent (defaults to settings.NOMINATIM_USER_AGENT)
        search_radius: Bias radius in meters around the user's location
    """

    SEARCH_URL = "https://nominatim.openstreetmap.org/search"

    def __init__(self, user_agent: Optional[str] = None, search_radius: float = 10000, **kwargs):
        super().__init__(**kwargs)
        self.user_agent = user_agent or getattr(settings, 'NOMINATIM_USER_AGENT', 'locplace')
        self.search_radius = search_radius

    @property
    def provider_name(self) -> str:
        return "osm"

    def is_available(self) -> bool:
        # No key needed
        return True

    def find(self, query: str, params: SearchParams) -> List[Location]:
        request_params = {
            'q': query,
            'format': 'json',
            'accept-language': params.lang_code,
        }
        if params.location_bias:
            south, west, north, east = bounding_box(params.location_bias, self.search_radius)
            request_params['viewbox'] = f"{west},{south},{east},{north}"

        headers = {
            'User-Agent': self.user_agent,
        }

        data = self._request('GET', self.SEARCH_URL, 'search', params=request_params, headers=headers)
        logger.debug(f"[osm] {len(data) if isinstance(data, list) else 0} raw results for '{query}'")
        return map_elements(self.provider_name, iter_array(data), self._place)

    @staticmethod
    def _place(place: Dict[str, Any]) -> Location:
        # Nominatim returns coordinates as strings
        return Location(
            address=place['display_name'],
            latitude=float(place['lat']),
            longitude=float(place['lon']),
        )
