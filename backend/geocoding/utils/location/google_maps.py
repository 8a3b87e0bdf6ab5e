"""
Google Maps client for free-text location search.

Uses the Geocoding API for addresses and the Places API (New) Text Search
for points of interest ("Eiffel Tower", "coffee near the station").

Modes (GOOGLE_API_MODE):
- Text: Places Text Search only
- GeoText: Geocoding first, Text Search when geocoding finds nothing

API Documentation:
- Geocoding: https://developers.google.com/maps/documentation/geocoding/requests-geocoding
- Text Search: https://developers.google.com/maps/documentation/places/web-service/text-search
"""

import logging
from typing import Any, Dict, List, Optional

from django.conf import settings

from .base import BaseLocFinder, Location, SearchParams, ProviderError
from .base import bounding_box, dig, iter_array, join_address, map_elements

logger = logging.getLogger(__name__)

MODE_TEXT = 'Text'
MODE_GEO_TEXT = 'GeoText'
MODES = (MODE_TEXT, MODE_GEO_TEXT)

# Geocoding statuses that still carry a valid (possibly empty) result list
GEOCODE_OK_STATUSES = {'OK', 'ZERO_RESULTS'}

TEXT_SEARCH_FIELD_MASK = 'places.displayName,places.formattedAddress,places.location'


class GoogleMapsClient(BaseLocFinder):
    """
    Google Maps Geocoding + Places Text Search client.

    Args:
        api_key: Google Maps Platform key (defaults to settings.GOOGLE_MAPS_API_KEY)
        mode: 'Text' or 'GeoText'
        search_radius: Bias radius in meters around the user's location
    """

    GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"
    TEXT_SEARCH_URL = "https://places.googleapis.com/v1/places:searchText"

    def __init__(self, api_key: Optional[str] = None, mode: str = MODE_GEO_TEXT, search_radius: float = 10000, **kwargs):
        super().__init__(**kwargs)
        self.api_key = api_key if api_key is not None else getattr(settings, 'GOOGLE_MAPS_API_KEY', '')
        if not self.api_key:
            logger.warning("GOOGLE_MAPS_API_KEY not configured")
        if mode not in MODES:
            raise ValueError(f"Unknown Google Maps mode '{mode}', expected one of {MODES}")
        self.mode = mode
        self.search_radius = search_radius

    @property
    def provider_name(self) -> str:
        return "google"

    def is_available(self) -> bool:
        return bool(self.api_key)

    def find(self, query: str, params: SearchParams) -> List[Location]:
        if self.mode == MODE_TEXT:
            return self.text_search(query, params)

        locations = self.geocode(query, params)
        if locations:
            return locations
        logger.debug(f"[google] Geocoding found nothing for '{query}', trying text search")
        return self.text_search(query, params)

    def geocode(self, query: str, params: SearchParams) -> List[Location]:
        """Resolve an address through the Geocoding API."""
        request_params = {
            'key': self.api_key,
            'address': query,
            'language': params.lang_code,
            'region': params.lang_code,
        }
        if params.location_bias:
            south, west, north, east = bounding_box(params.location_bias, self.search_radius)
            request_params['bounds'] = f"{south},{west}|{north},{east}"

        data = self._request('GET', self.GEOCODE_URL, 'geocode', params=request_params)

        status = dig(data, 'status')
        if status is not None and status not in GEOCODE_OK_STATUSES:
            message = dig(data, 'error_message') or 'no details'
            raise ProviderError(self.provider_name, f"geocode status {status}: {message}")

        return map_elements(self.provider_name, iter_array(dig(data, 'results')), self._geocode_result)

    def text_search(self, query: str, params: SearchParams) -> List[Location]:
        """Find places by free text through Places Text Search."""
        body: Dict[str, Any] = {
            'textQuery': query,
            'languageCode': params.lang_code,
        }
        if params.location_bias:
            latitude, longitude = params.location_bias
            body['locationBias'] = {
                'circle': {
                    'center': {'latitude': latitude, 'longitude': longitude},
                    'radius': float(self.search_radius),
                }
            }

        headers = {
            'X-Goog-Api-Key': self.api_key,
            'X-Goog-FieldMask': TEXT_SEARCH_FIELD_MASK,
        }
        data = self._request('POST', self.TEXT_SEARCH_URL, 'place-text', json=body, headers=headers)

        return map_elements(self.provider_name, iter_array(dig(data, 'places')), self._place)

    @staticmethod
    def _geocode_result(result: Dict[str, Any]) -> Location:
        location = result['geometry']['location']
        return Location(
            address=result.get('formatted_address'),
            latitude=float(location['lat']),
            longitude=float(location['lng']),
        )

    @staticmethod
    def _place(place: Dict[str, Any]) -> Location:
        location = place['location']
        return Location(
            address=join_address(dig(place, 'displayName', 'text'), place.get('formattedAddress')),
            latitude=float(location['latitude']),
            longitude=float(location['longitude']),
        )
