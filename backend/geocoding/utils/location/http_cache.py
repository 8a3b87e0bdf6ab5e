"""
Shared response cache for outbound provider calls.

Every provider adapter talks HTTP through a ``requests.Session`` that has a
``CachingHTTPAdapter`` mounted. The adapter sits between the session and the
network:

1. Derive a cache key from the prepared request (method + URL, plus a
   SHA-256 of the body for anything that is not GET/HEAD, so distinct POST
   payloads to the same endpoint never collide)
2. Look the key up in Redis (via the Django cache, django-redis backend)
3. Fresh entry -> rebuild the response locally, mark it ``X-Cache-Lookup: HIT``
4. Stale entry with validators -> conditional request; a 304 renews the entry
5. Otherwise fetch from the provider, evaluate the HTTP caching policy once,
   store response + policy side by side, mark it ``MISS``

The policy is evaluated at write time against the original headers and stored
with the payload, so read-time freshness checks are deterministic.

Store failures never fail the request: reads degrade to a miss, writes are
logged and the fetched response is still returned.
"""

import base64
import hashlib
import json
import logging
import time
from dataclasses import dataclass, field, asdict
from email.utils import parsedate_to_datetime
from typing import Any, Callable, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from requests.structures import CaseInsensitiveDict
from django.core.cache import cache as default_cache

from locplace.utils.fail_open import fail_open, call_fail_open

logger = logging.getLogger(__name__)

KEY_PREFIX = 'response-cache'

CACHE_LOOKUP_HEADER = 'X-Cache-Lookup'
HIT = 'HIT'
MISS = 'MISS'

IDEMPOTENT_METHODS = {'GET', 'HEAD'}

# Request headers that change what the provider answers
KEY_HEADERS = ('Accept-Language',)

# RFC 9111 "heuristically cacheable" status codes; anything else is never stored
CACHEABLE_STATUS_CODES = {200, 203, 204, 300, 301, 404, 405, 410, 414, 501}

# Headers describing the wire encoding of the original body; the stored body is already decoded
_DROPPED_HEADERS = {'content-encoding', 'transfer-encoding', 'content-length', 'connection'}

HEURISTIC_FRACTION = 0.1


# ==============================================================================
# CACHE KEY DERIVATION
# ==============================================================================

def body_digest(body) -> str:
    """SHA-256 hex digest of a request body (str, bytes or None)."""
    if body is None:
        body = b''
    elif isinstance(body, str):
        body = body.encode('utf-8')
    elif not isinstance(body, (bytes, bytearray)):
        # Streaming bodies are not replayable, so they cannot be part of a key
        raise TypeError(f"Cannot derive a cache key from a {type(body).__name__} body")
    return hashlib.sha256(body).hexdigest()


def uri_cache_key(request: requests.PreparedRequest) -> str:
    """Key on method + URL only."""
    return f"{KEY_PREFIX}:{request.method.upper()}:{request.url}"


def body_aware_cache_key(request: requests.PreparedRequest) -> str:
    """
    Key on method + URL, plus the body digest for non-idempotent methods and
    any KEY_HEADERS the request carries.

    Example:
        >>> body_aware_cache_key(requests.Request('GET', 'https://a.b/x').prepare())
        'response-cache:GET:https://a.b/x'
        >>> body_aware_cache_key(requests.Request('GET', 'https://a.b/x', headers={'Accept-Language': 'ru'}).prepare())
        'response-cache:GET:https://a.b/x:accept-language=ru'
    """
    key = uri_cache_key(request)
    if request.method.upper() not in IDEMPOTENT_METHODS:
        key = f"{key}:{body_digest(request.body)}"
    for name in KEY_HEADERS:
        value = request.headers.get(name)
        if value:
            key = f"{key}:{name.lower()}={value}"
    return key


# ==============================================================================
# CACHE POLICY
# ==============================================================================

def parse_cache_control(value: Optional[str]) -> Dict[str, Any]:
    """
    Parse a Cache-Control header into a directive dict.

    Example:
        >>> parse_cache_control('public, max-age=60, no-transform')
        {'public': True, 'max-age': '60', 'no-transform': True}
    """
    directives = {}
    if not value:
        return directives
    for part in value.split(','):
        part = part.strip()
        if not part:
            continue
        name, sep, arg = part.partition('=')
        directives[name.strip().lower()] = arg.strip().strip('"') if sep else True
    return directives


def _parse_seconds(value: Any) -> Optional[int]:
    try:
        seconds = int(value)
    except (TypeError, ValueError):
        return None
    return max(0, seconds)


def _parse_http_date(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return parsedate_to_datetime(value).timestamp()
    except (TypeError, ValueError, IndexError):
        return None


@dataclass
class CachePolicy:
    """
    Freshness policy of one stored response, evaluated from its original headers.

    Attributes:
        stored_at: Epoch seconds when the response was received
        lifetime: Freshness lifetime in seconds
        initial_age: Age the response already had when received
        no_cache: Stored but must be revalidated before every reuse
        must_revalidate: Must not be served stale
        etag: Validator for If-None-Match
        last_modified: Validator for If-Modified-Since
        vary: Request header values the response varies on
        vary_all: ``Vary: *`` (never reusable)
    """

    stored_at: float
    lifetime: float
    initial_age: float = 0.0
    no_cache: bool = False
    must_revalidate: bool = False
    etag: Optional[str] = None
    last_modified: Optional[str] = None
    vary: Dict[str, Optional[str]] = field(default_factory=dict)
    vary_all: bool = False

    @classmethod
    def evaluate(
        cls,
        request: requests.PreparedRequest,
        response: requests.Response,
        default_ttl: float,
        now: Optional[float] = None,
    ) -> Optional['CachePolicy']:
        """
        Decide whether a response may be stored and for how long.

        Returns:
            CachePolicy, or None if the response must not be stored
        """
        now = time.time() if now is None else now
        if request.method.upper() == 'HEAD' or response.status_code not in CACHEABLE_STATUS_CODES:
            return None

        request_cc = parse_cache_control(request.headers.get('Cache-Control'))
        response_cc = parse_cache_control(response.headers.get('Cache-Control'))

        if 'no-store' in request_cc or 'no-store' in response_cc:
            return None
        # Shared store: responses meant for a single user stay out of it
        if 'private' in response_cc:
            return None
        if 'Authorization' in request.headers and not (
            'public' in response_cc or 's-maxage' in response_cc or 'must-revalidate' in response_cc
        ):
            return None

        vary_header = response.headers.get('Vary', '')
        vary_names = [v.strip() for v in vary_header.split(',') if v.strip()]
        vary_all = '*' in vary_names
        vary = {name.lower(): request.headers.get(name) for name in vary_names if name != '*'}

        date = _parse_http_date(response.headers.get('Date')) or now
        lifetime = cls._freshness_lifetime(response, response_cc, date, default_ttl)

        age_header = _parse_seconds(response.headers.get('Age')) or 0
        apparent_age = max(0.0, now - date)

        return cls(
            stored_at=now,
            lifetime=float(lifetime),
            initial_age=float(max(age_header, apparent_age)),
            no_cache='no-cache' in response_cc,
            must_revalidate='must-revalidate' in response_cc or 'proxy-revalidate' in response_cc,
            etag=response.headers.get('ETag'),
            last_modified=response.headers.get('Last-Modified'),
            vary=vary,
            vary_all=vary_all,
        )

    @staticmethod
    def _freshness_lifetime(response, response_cc, date: float, default_ttl: float) -> float:
        # Priority: s-maxage > max-age > Expires > Last-Modified heuristic > default
        for directive in ('s-maxage', 'max-age'):
            if directive in response_cc:
                seconds = _parse_seconds(response_cc[directive])
                if seconds is not None:
                    return seconds

        if 'Expires' in response.headers:
            expires = _parse_http_date(response.headers.get('Expires'))
            # An unparseable Expires means "already expired"
            return max(0.0, expires - date) if expires is not None else 0.0

        last_modified = _parse_http_date(response.headers.get('Last-Modified'))
        if last_modified is not None and last_modified < date:
            return (date - last_modified) * HEURISTIC_FRACTION

        return default_ttl

    @property
    def has_validators(self) -> bool:
        return bool(self.etag or self.last_modified)

    def age(self, now: Optional[float] = None) -> float:
        now = time.time() if now is None else now
        return self.initial_age + max(0.0, now - self.stored_at)

    def is_fresh(self, now: Optional[float] = None) -> bool:
        """True if the stored response may be reused without contacting the origin."""
        if self.no_cache:
            return False
        return self.age(now) < self.lifetime

    def matches(self, request: requests.PreparedRequest) -> bool:
        """True if the request selects this stored response (Vary check)."""
        if self.vary_all:
            return False
        return all(request.headers.get(name) == value for name, value in self.vary.items())

    def revalidation_headers(self) -> Dict[str, str]:
        headers = {}
        if self.etag:
            headers['If-None-Match'] = self.etag
        if self.last_modified:
            headers['If-Modified-Since'] = self.last_modified
        return headers

    def store_ttl(self, revalidation_grace: float = 0) -> int:
        """
        How long the shared store should keep the entry.

        Fresh lifetime remaining, plus a grace period for entries that can be
        revalidated cheaply with a conditional request.
        """
        remaining = self.lifetime - self.initial_age
        if self.has_validators:
            remaining = max(remaining, 0) + revalidation_grace
        return int(max(0, remaining))

    def renewed(self, response: requests.Response, default_ttl: float, now: Optional[float] = None) -> 'CachePolicy':
        """Policy after a successful (304) revalidation: headers merged, clock restarted."""
        now = time.time() if now is None else now
        response_cc = parse_cache_control(response.headers.get('Cache-Control'))
        date = _parse_http_date(response.headers.get('Date')) or now
        return CachePolicy(
            stored_at=now,
            lifetime=float(self._freshness_lifetime(response, response_cc, date, default_ttl)),
            initial_age=0.0,
            no_cache='no-cache' in response_cc if response_cc else self.no_cache,
            must_revalidate=self.must_revalidate,
            etag=response.headers.get('ETag') or self.etag,
            last_modified=response.headers.get('Last-Modified') or self.last_modified,
            vary=self.vary,
            vary_all=self.vary_all,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CachePolicy':
        return cls(**data)


# ==============================================================================
# RESPONSE (DE)SERIALIZATION
# ==============================================================================

def serialize_response(response: requests.Response) -> Dict[str, Any]:
    headers = {k: v for k, v in response.headers.items() if k.lower() not in _DROPPED_HEADERS}
    headers.pop(CACHE_LOOKUP_HEADER, None)
    return {
        'status_code': response.status_code,
        'reason': response.reason,
        'url': response.url,
        'encoding': response.encoding,
        'headers': headers,
        'body': base64.b64encode(response.content or b'').decode('ascii'),
    }


def deserialize_response(data: Dict[str, Any], request: Optional[requests.PreparedRequest] = None) -> requests.Response:
    response = requests.Response()
    response.status_code = int(data['status_code'])
    response.reason = data.get('reason')
    response.url = data.get('url') or (request.url if request is not None else None)
    response.encoding = data.get('encoding')
    response.headers = CaseInsensitiveDict(data.get('headers') or {})
    response._content = base64.b64decode(data['body'])
    response._content_consumed = True
    response.request = request
    return response


@dataclass
class CacheEntry:
    """A stored response together with the policy it was stored under."""
    response: requests.Response
    policy: CachePolicy


# ==============================================================================
# RESPONSE CACHE (shared store)
# ==============================================================================

class ResponseCache:
    """
    Keyed store of (response, policy) pairs shared by every process.

    Backed by the Django cache (django-redis). Entries are replaced, never
    mutated in place. All operations fail open.
    """

    def __init__(self, backend=None, revalidation_grace: float = 0):
        self.backend = backend if backend is not None else default_cache
        self.revalidation_grace = revalidation_grace

    @fail_open(default=None, action="read cached response", log=logger)
    def get(self, key: str, request: Optional[requests.PreparedRequest] = None) -> Optional[CacheEntry]:
        """
        Look up a stored response.

        Returns:
            CacheEntry, or None on a miss, an unreachable store or an
            undecodable entry
        """
        raw = self.backend.get(key)
        if raw is None:
            return None
        data = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
        return CacheEntry(
            response=deserialize_response(data['response'], request),
            policy=CachePolicy.from_dict(data['policy']),
        )

    def put(self, key: str, response: requests.Response, policy: CachePolicy) -> requests.Response:
        """
        Store a response with its policy and hand the response back.

        A failed write is logged; the caller still gets its response.
        """
        call_fail_open(
            self._write, key, response, policy,
            default=None,
            action=f"cache response for {key}",
            log=logger,
        )
        return response

    def _write(self, key: str, response: requests.Response, policy: CachePolicy):
        ttl = policy.store_ttl(self.revalidation_grace)
        if ttl <= 0:
            return
        payload = json.dumps({
            'response': serialize_response(response),
            'policy': policy.to_dict(),
        })
        self.backend.set(key, payload, timeout=ttl)
        logger.debug(f"Cached response: {key} (TTL: {ttl}s)")

    @fail_open(default=None, action="invalidate cached response", log=logger)
    def delete(self, key: str):
        self.backend.delete(key)
        logger.info(f"Invalidated cached response: {key}")


# ==============================================================================
# TRANSPORT ADAPTER
# ==============================================================================

def served_from_cache(response: requests.Response) -> bool:
    """True if the response was produced from the shared cache."""
    return response.headers.get(CACHE_LOOKUP_HEADER) == HIT


def _mark(response: requests.Response, lookup: str) -> requests.Response:
    response.headers[CACHE_LOOKUP_HEADER] = lookup
    return response


class CachingHTTPAdapter(HTTPAdapter):
    """
    ``requests`` transport adapter that serves repeatable calls from the
    shared ResponseCache.

    Args:
        response_cache: Store to read/write entries (defaults to the Django cache)
        key_func: Cache key derivation, ``f(prepared_request) -> str``
        default_ttl: Freshness lifetime for responses without caching headers
        enabled: When False, every call goes to the origin (still marked MISS)
    """

    def __init__(
        self,
        response_cache: Optional[ResponseCache] = None,
        key_func: Callable[[requests.PreparedRequest], str] = body_aware_cache_key,
        default_ttl: float = 0,
        enabled: bool = True,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.response_cache = response_cache if response_cache is not None else ResponseCache()
        self.key_func = key_func
        self.default_ttl = default_ttl
        self.enabled = enabled

    def send(self, request: requests.PreparedRequest, **kwargs) -> requests.Response:
        request_cc = parse_cache_control(request.headers.get('Cache-Control'))
        if not self.enabled or 'no-store' in request_cc:
            return _mark(super().send(request, **kwargs), MISS)

        key = self.key_func(request)
        now = time.time()

        entry = None
        if 'no-cache' not in request_cc:
            entry = self.response_cache.get(key, request)
            if entry is not None and not entry.policy.matches(request):
                entry = None

        if entry is not None:
            if entry.policy.is_fresh(now):
                logger.debug(f"Response cache HIT for key={key}")
                return _mark(entry.response, HIT)

            if entry.policy.has_validators:
                conditional = request.copy()
                conditional.headers.update(entry.policy.revalidation_headers())
                response = super().send(conditional, **kwargs)
                if response.status_code == 304:
                    logger.debug(f"Response cache REVALIDATED for key={key}")
                    policy = entry.policy.renewed(response, self.default_ttl, now)
                    return _mark(self.response_cache.put(key, entry.response, policy), HIT)
                return self._store(key, request, response, now)

        logger.debug(f"Response cache MISS for key={key}")
        response = super().send(request, **kwargs)
        return self._store(key, request, response, now)

    def _store(self, key: str, request, response: requests.Response, now: float) -> requests.Response:
        policy = CachePolicy.evaluate(request, response, self.default_ttl, now)
        if policy is not None:
            response = self.response_cache.put(key, response, policy)
        return _mark(response, MISS)


def caching_session(
    response_cache: Optional[ResponseCache] = None,
    key_func: Callable[[requests.PreparedRequest], str] = body_aware_cache_key,
    default_ttl: float = 0,
    enabled: bool = True,
) -> requests.Session:
    """
    Build a ``requests.Session`` whose HTTP(S) traffic goes through the cache.

    Example:
        >>> session = caching_session(default_ttl=3600)
        >>> response = session.get('https://nominatim.openstreetmap.org/search', params={...}, timeout=10)
        >>> served_from_cache(response)
        False
    """
    session = requests.Session()
    adapter = CachingHTTPAdapter(
        response_cache=response_cache,
        key_func=key_func,
        default_ttl=default_ttl,
        enabled=enabled,
    )
    session.mount('https://', adapter)
    session.mount('http://', adapter)
    return session
