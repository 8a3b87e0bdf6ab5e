"""
In-process monitoring for geocoding provider traffic.

Tracks, per provider:
- Requests issued, split by sub-operation (e.g. 'geocode', 'place-text')
- Responses split by source ('cache' when served from the shared response
  cache, 'remote' when fetched from the provider)
- Provider errors
- Chain resolutions (which provider won, how many locations)

Aggregated counters are always tracked (cheap, lock-protected). Detailed
events go into a ring buffer only while ENABLE_MONITORING is on.

Usage:
    monitor = GeocodingMonitor()
    monitor.record_request('google', 'geocode')
    monitor.record_response('google', from_cache=True)
    monitor.counter('google', 'responses', 'cache')  # -> 1
"""

import threading
import time
from collections import deque, defaultdict
from typing import Dict, List, Optional

from django.conf import settings


SOURCE_CACHE = 'cache'
SOURCE_REMOTE = 'remote'


class GeocodingMonitor:
    """
    Thread-safe counters and a recent-events buffer for provider calls.

    One instance is owned by the LocationResolver and shared by every
    provider adapter it builds, so the admin monitor sees a single view.
    """

    def __init__(self, buffer_size: int = 500):
        self.event_buffer = deque(maxlen=buffer_size)
        self.buffer_lock = threading.Lock()

        self.metrics = defaultdict(int)
        self.metrics_lock = threading.Lock()

        self._enabled_cache = None
        self._enabled_cache_time = 0

    @property
    def enabled(self) -> bool:
        """Check if event recording is enabled (uses Constance with caching)"""
        # Cache the setting for 5 seconds to avoid a backend hit per event
        current_time = time.time()
        if self._enabled_cache is None or (current_time - self._enabled_cache_time) > 5:
            try:
                from constance import config
                self._enabled_cache = config.ENABLE_MONITORING
            except Exception:
                self._enabled_cache = getattr(settings, 'ENABLE_MONITORING', False)
            self._enabled_cache_time = current_time
        return self._enabled_cache

    @staticmethod
    def _metric_name(provider: str, kind: str, label: str) -> str:
        return f'{provider}:{kind}:{label}'

    def _increment(self, name: str):
        with self.metrics_lock:
            self.metrics[name] += 1

    def _log_event(self, event: Dict):
        if not self.enabled:
            return
        event['timestamp'] = time.time()
        with self.buffer_lock:
            self.event_buffer.append(event)

    # Public API: recording

    def record_request(self, provider: str, api: str):
        """Count an outbound request for one of the provider's sub-operations."""
        self._increment(self._metric_name(provider, 'requests', api))

    def record_response(self, provider: str, from_cache: bool):
        """Count a completed response by where it was served from."""
        source = SOURCE_CACHE if from_cache else SOURCE_REMOTE
        self._increment(self._metric_name(provider, 'responses', source))

    def record_error(self, provider: str, error: Exception):
        self._increment(self._metric_name(provider, 'errors', type(error).__name__))
        self._log_event({
            'type': 'provider_error',
            'provider': provider,
            'error': str(error),
        })

    def record_resolution(self, lang_code: str, provider: Optional[str], count: int, duration_ms: float):
        """
        Record the outcome of one chain resolution.

        Args:
            lang_code: Locale the chain was resolved for
            provider: Provider that produced the result (None if nothing found)
            count: Number of locations returned
            duration_ms: Wall time of the whole resolution
        """
        self._increment(self._metric_name('chain', 'resolutions', provider or 'none'))
        self._log_event({
            'type': 'resolution',
            'lang_code': lang_code,
            'provider': provider,
            'count': count,
            'duration_ms': round(duration_ms, 2),
        })

    # Public API: queries

    def counter(self, provider: str, kind: str, label: str) -> int:
        """Current value of a single counter (0 if never incremented)."""
        with self.metrics_lock:
            return self.metrics.get(self._metric_name(provider, kind, label), 0)

    def get_metrics_summary(self) -> Dict[str, int]:
        """
        Get aggregated counters.

        Returns:
            Dict like:
            {
                'google:requests:geocode': 12,
                'google:responses:cache': 9,
                'google:responses:remote': 3,
                'chain:resolutions:osm': 11,
            }
        """
        with self.metrics_lock:
            return dict(self.metrics)

    def get_recent_events(self, limit: int = 100, provider: Optional[str] = None) -> List[Dict]:
        """Recent events, newest first, optionally filtered by provider."""
        with self.buffer_lock:
            events = list(self.event_buffer)

        if provider:
            events = [e for e in events if e.get('provider') == provider]

        return list(reversed(events))[:limit]

    def reset_metrics(self):
        with self.metrics_lock:
            self.metrics.clear()
        with self.buffer_lock:
            self.event_buffer.clear()
