"""
Read-through, write-invalidate cache in front of the profile service.

Profiles are looked up on every location query but change rarely, so lookups
(including "not registered" answers) are kept in process memory for
USER_CACHE_TIME_SECS. Writes go straight to the service and drop the cached
entry. A background CacheSweeper removes stale entries every
CACHE_CLEAN_UP_INTERVAL_SECS so the map doesn't grow with one-off users.

When the service is unreachable a lookup answers None ("unknown") and nothing
is cached, so the next query tries again.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from django.conf import settings

from locplace.utils.fail_open import call_fail_open, config_value
from .client import HttpUserServiceClient, Profile, UserServiceClient, UserServiceError

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECS = 360
DEFAULT_CLEAN_UP_INTERVAL_SECS = 3600

_UNKNOWN = object()


@dataclass(frozen=True)
class CachedProfile:
    """A lookup result (None means "not registered") and when it was fetched."""
    user: Optional[Profile]
    fetched_at: float


class CachedUserServiceClient(UserServiceClient):
    """
    Caching wrapper around a UserServiceClient.

    Args:
        inner: Client doing the remote calls
        ttl: Seconds a lookup stays fresh
        clock: Monotonic time source
    """

    def __init__(self, inner: UserServiceClient, ttl: float = DEFAULT_TTL_SECS, clock: Callable[[], float] = time.monotonic):
        self.inner = inner
        self.ttl = ttl
        self.clock = clock
        self._entries: Dict[str, CachedProfile] = {}
        # Write counter and, per id, the (generation, time) of its last invalidate()
        self._generation = 0
        self._writes: Dict[str, Tuple[int, float]] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, inner: UserServiceClient) -> 'CachedUserServiceClient':
        return cls(inner, ttl=config_value('USER_CACHE_TIME_SECS', log=logger))

    def _is_fresh(self, entry: CachedProfile, now: float) -> bool:
        return now - entry.fetched_at <= self.ttl

    def get(self, external_id: str) -> Optional[Profile]:
        external_id = str(external_id)
        now = self.clock()
        with self._lock:
            entry = self._entries.get(external_id)
            started_at = self._generation
        if entry is not None and self._is_fresh(entry, now):
            return entry.user

        # Remote call happens outside the lock
        user = call_fail_open(
            self.inner.get, external_id,
            default=_UNKNOWN,
            action=f"look up profile {external_id}",
            exceptions=(UserServiceError,),
            log=logger,
        )
        if user is _UNKNOWN:
            return None

        with self._lock:
            last_write, _ = self._writes.get(external_id, (0, 0.0))
            if last_write <= started_at:
                self._entries[external_id] = CachedProfile(user=user, fetched_at=self.clock())
            else:
                logger.debug(f"Profile {external_id} changed during lookup, not caching")
        return user

    def set_language(self, external_id: str, lang_code: str):
        try:
            self.inner.set_language(external_id, lang_code)
        finally:
            self.invalidate(external_id)

    def set_location(self, external_id: str, latitude: float, longitude: float):
        try:
            self.inner.set_location(external_id, latitude, longitude)
        finally:
            self.invalidate(external_id)

    def invalidate(self, external_id: str):
        external_id = str(external_id)
        with self._lock:
            self._entries.pop(external_id, None)
            self._generation += 1
            self._writes[external_id] = (self._generation, self.clock())

    def clean_up(self) -> int:
        """
        Drop stale entries.

        Returns:
            Number of entries removed
        """
        now = self.clock()
        with self._lock:
            stale = [key for key, entry in self._entries.items() if not self._is_fresh(entry, now)]
            for key in stale:
                del self._entries[key]
            # Write marks only matter to lookups still in flight
            for key in [key for key, (_, at) in self._writes.items() if now - at > self.ttl]:
                del self._writes[key]
        if stale:
            logger.debug(f"Profile cache sweep removed {len(stale)} stale entries")
        return len(stale)

    def __len__(self):
        with self._lock:
            return len(self._entries)


class CacheSweeper:
    """
    Runs ``cache.clean_up()`` every ``interval`` seconds on a daemon thread.

    Usage:
        sweeper = CacheSweeper(profile_cache, interval=3600)
        sweeper.start()
        ...
        sweeper.stop()
    """

    def __init__(self, cache: CachedUserServiceClient, interval: float = DEFAULT_CLEAN_UP_INTERVAL_SECS):
        self.cache = cache
        self.interval = interval
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name='profile-cache-sweeper', daemon=True)
        self._thread.start()
        logger.info(f"Profile cache sweeper started (every {self.interval}s)")

    def stop(self, timeout: Optional[float] = 5):
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Profile cache sweeper stopped")

    def _run(self):
        while not self._stop_event.wait(self.interval):
            try:
                self.cache.clean_up()
            except Exception as e:
                logger.exception(f"Profile cache sweep failed: {e}")


def build_profile_client() -> Optional[CachedUserServiceClient]:
    """
    Build the cached profile client from settings.

    Returns:
        CachedUserServiceClient, or None when USER_SERVICE_URL is not set
    """
    if not getattr(settings, 'USER_SERVICE_URL', ''):
        logger.warning("USER_SERVICE_URL not configured, user profiles are disabled")
        return None
    return CachedUserServiceClient.from_config(HttpUserServiceClient())
