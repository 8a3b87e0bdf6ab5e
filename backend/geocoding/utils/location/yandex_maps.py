"""
Yandex Maps client for free-text location search.

Modes (YANDEX_API_MODE):
- Geocode: HTTP Geocoder only
- Place: Places (organization search) API only
- GeoPlace: Geocoder first, Places when the geocoder finds nothing

The Geocoder and the Places API use separate keys; the Places key is only
required in the Place/GeoPlace modes.

API Documentation:
- Geocoder: https://yandex.ru/dev/geocode/doc/en/
- Places: https://yandex.ru/dev/geosearch/doc/en/
"""

import logging
from typing import Any, Dict, List, Optional

from django.conf import settings

from .base import BaseLocFinder, Location, SearchParams, ProviderError
from .base import degree_deltas, dig, iter_array, join_address, map_elements

logger = logging.getLogger(__name__)

MODE_GEOCODE = 'Geocode'
MODE_PLACE = 'Place'
MODE_GEO_PLACE = 'GeoPlace'
MODES = (MODE_GEOCODE, MODE_PLACE, MODE_GEO_PLACE)


class YandexMapsClient(BaseLocFinder):
    """
    Yandex Maps Geocoder + Places client.

    Args:
        geocoder_api_key: Key for the HTTP Geocoder
        places_api_key: Key for the Places API (needed for Place/GeoPlace)
        mode: 'Geocode', 'Place' or 'GeoPlace'
        search_radius: Bias radius in meters around the user's location
    """

    GEOCODE_URL = "https://geocode-maps.yandex.ru/1.x"
    PLACES_URL = "https://search-maps.yandex.ru/v1/"

    def __init__(
        self,
        geocoder_api_key: Optional[str] = None,
        places_api_key: Optional[str] = None,
        mode: str = MODE_GEOCODE,
        search_radius: float = 10000,
        **kwargs,
    ):
        super().__init__(**kwargs)
        if mode not in MODES:
            raise ValueError(f"Unknown Yandex Maps mode '{mode}', expected one of {MODES}")
        self.mode = mode
        self.search_radius = search_radius

        self.geocoder_api_key = (
            geocoder_api_key if geocoder_api_key is not None
            else getattr(settings, 'YANDEX_MAPS_GEOCODER_API_KEY', '')
        )
        self.places_api_key = (
            places_api_key if places_api_key is not None
            else getattr(settings, 'YANDEX_MAPS_PLACES_API_KEY', '')
        )

        if self.uses_geocoder and not self.geocoder_api_key:
            logger.warning("YANDEX_MAPS_GEOCODER_API_KEY not configured")
        if self.uses_places and not self.places_api_key:
            logger.warning(f"YANDEX_MAPS_PLACES_API_KEY not configured (required by mode {mode})")

    @property
    def provider_name(self) -> str:
        return "yandex"

    @property
    def uses_geocoder(self) -> bool:
        return self.mode in (MODE_GEOCODE, MODE_GEO_PLACE)

    @property
    def uses_places(self) -> bool:
        return self.mode in (MODE_PLACE, MODE_GEO_PLACE)

    def is_available(self) -> bool:
        if self.uses_geocoder and not self.geocoder_api_key:
            return False
        if self.uses_places and not self.places_api_key:
            return False
        return True

    def find(self, query: str, params: SearchParams) -> List[Location]:
        if self.mode == MODE_GEOCODE:
            return self.geocode(query, params)
        if self.mode == MODE_PLACE:
            return self.find_places(query, params)

        locations = self.geocode(query, params)
        if locations:
            return locations
        logger.debug(f"[yandex] Geocoder found nothing for '{query}', trying places")
        return self.find_places(query, params)

    def geocode(self, query: str, params: SearchParams) -> List[Location]:
        """Resolve an address through the HTTP Geocoder."""
        request_params = {
            'apikey': self.geocoder_api_key,
            'lang': params.lang_code,
            'geocode': query,
            'format': 'json',
        }
        request_params.update(self._bias_params(params))

        data = self._request('GET', self.GEOCODE_URL, 'geocode', params=request_params)
        members = dig(data, 'response', 'GeoObjectCollection', 'featureMember')
        return map_elements(self.provider_name, iter_array(members), self._geo_object)

    def find_places(self, query: str, params: SearchParams) -> List[Location]:
        """Find organizations and places through the Places API."""
        if not self.places_api_key:
            raise ProviderError(self.provider_name, "Places API key is not configured")

        request_params = {
            'apikey': self.places_api_key,
            'lang': params.lang_code,
            'text': query,
        }
        request_params.update(self._bias_params(params))

        data = self._request('GET', self.PLACES_URL, 'place', params=request_params)
        return map_elements(self.provider_name, iter_array(dig(data, 'features')), self._feature)

    def _bias_params(self, params: SearchParams) -> Dict[str, str]:
        # Yandex takes the center and the span as "lon,lat"
        if not params.location_bias:
            return {}
        latitude, longitude = params.location_bias
        delta_lat, delta_lon = degree_deltas(latitude, self.search_radius)
        return {
            'll': f"{longitude},{latitude}",
            'spn': f"{delta_lon * 2},{delta_lat * 2}",
        }

    @staticmethod
    def _geo_object(member: Dict[str, Any]) -> Optional[Location]:
        geo_object = member['GeoObject']
        address = geo_object['metaDataProperty']['GeocoderMetaData']['text']
        pos = geo_object['Point']['pos'].split()
        if len(pos) < 2:
            logger.error(f"[yandex] Point.pos has fewer than 2 components: {pos}")
            return None
        longitude, latitude = float(pos[0]), float(pos[1])
        return Location(address=address, latitude=latitude, longitude=longitude)

    @staticmethod
    def _feature(feature: Dict[str, Any]) -> Location:
        properties = feature['properties']
        longitude, latitude = feature['geometry']['coordinates'][:2]
        return Location(
            address=join_address(properties['name'], properties.get('description')),
            latitude=float(latitude),
            longitude=float(longitude),
        )
