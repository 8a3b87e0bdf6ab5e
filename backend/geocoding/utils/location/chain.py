"""
Ordered multi-provider search with first-success-wins fallback.

A SearchChain holds a global provider order plus optional per-locale orders
(e.g. Yandex first for Russian). Providers are asked one at a time; the first
non-empty answer wins, errors are logged and skipped, and running out of
providers is a normal "nothing found".

Example:
    >>> chain = SearchChain([finder(osm), finder(google, enabled=False)]) \\
    ...     .for_lang_code('ru', [finder(yandex)])
    >>> chain.find('Eiffel Tower', 'en')
    [Location(address='Champ de Mars, Paris', ...)]
"""

import logging
import time
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from ..monitoring import GeocodingMonitor
from .base import BaseLocFinder, LatLon, Location, SearchParams, ProviderError
from .coordinates import parse_coordinates

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChainLink:
    """A provider slot in the chain; disabled slots are dropped at construction."""
    finder: BaseLocFinder
    enabled: bool = True


def finder(loc_finder: BaseLocFinder, enabled: bool = True) -> ChainLink:
    return ChainLink(loc_finder, enabled)


def _enabled_finders(links: Iterable[ChainLink]) -> Tuple[BaseLocFinder, ...]:
    return tuple(link.finder for link in links if link.enabled)


class SearchChain:
    """
    Immutable provider order, global and per locale.

    ``for_lang_code`` returns a new chain, so a chain can be built fluently at
    startup and shared by every request thread afterwards.
    """

    def __init__(self, links: Iterable[ChainLink], monitor: Optional[GeocodingMonitor] = None):
        self._global = _enabled_finders(links)
        self._by_lang: Dict[str, Tuple[BaseLocFinder, ...]] = {}
        self.monitor = monitor

    def for_lang_code(self, lang_code: str, links: Iterable[ChainLink]) -> 'SearchChain':
        """Return a copy of the chain with an override order for ``lang_code``."""
        chain = SearchChain([], monitor=self.monitor)
        chain._global = self._global
        chain._by_lang = dict(self._by_lang)
        chain._by_lang[lang_code.lower()] = _enabled_finders(links)
        return chain

    def finders_for(self, lang_code: str) -> Tuple[BaseLocFinder, ...]:
        """Provider order used for a locale (global order when no override exists)."""
        return self._by_lang.get((lang_code or '').lower(), self._global)

    @property
    def lang_codes(self) -> List[str]:
        return sorted(self._by_lang)

    def find(self, query: str, lang_code: str, location_bias: Optional[LatLon] = None) -> List[Location]:
        """
        Resolve a query into locations.

        Args:
            query: Free text, or a "lat lon" / "lat, lon" pair
            lang_code: Two-letter language code selecting the provider order
            location_bias: Optional (latitude, longitude) to prefer nearby results

        Returns:
            The first non-empty provider answer, a single address-less
            Location for coordinate queries, or an empty list
        """
        start = time.time()

        coordinates = parse_coordinates(query)
        if coordinates is not None:
            logger.debug(f"Query '{query}' is a coordinate pair, skipping providers")
            self._record(lang_code, 'coordinates', 1, start)
            return [coordinates]

        params = SearchParams(lang_code=lang_code, location_bias=location_bias)

        for loc_finder in self.finders_for(lang_code):
            try:
                locations = loc_finder.find(query, params)
            except ProviderError as e:
                logger.error(f"Provider {loc_finder.provider_name} failed for '{query}': {e}")
                continue
            except Exception as e:
                logger.exception(f"Unexpected error from provider {loc_finder.provider_name}: {e}")
                continue

            if locations:
                logger.info(f"Resolved '{query}' via {loc_finder.provider_name}: {len(locations)} location(s)")
                self._record(lang_code, loc_finder.provider_name, len(locations), start)
                return locations

            logger.debug(f"Provider {loc_finder.provider_name} found nothing for '{query}'")

        logger.info(f"No provider found anything for '{query}' (lang={lang_code})")
        self._record(lang_code, None, 0, start)
        return []

    def _record(self, lang_code: str, provider: Optional[str], count: int, start: float):
        if self.monitor is not None:
            self.monitor.record_resolution(lang_code, provider, count, (time.time() - start) * 1000)

    def __repr__(self):
        overrides = {lang: [f.provider_name for f in finders] for lang, finders in self._by_lang.items()}
        return f"<SearchChain global={[f.provider_name for f in self._global]} overrides={overrides}>"
