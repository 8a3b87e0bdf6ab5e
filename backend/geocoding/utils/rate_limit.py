"""
Rate limiting for the location resolution entry points.
Uses a Redis counter per identity with a rolling window.

Each request atomically increments ``rate-limiter.<identity>`` and re-sets its
expiry to the window length (MULTI/INCR/EXPIRE/EXEC). The value returned by
INCR is the request's ordinal within the window; the request is allowed while
that ordinal is at most ``max_allowed``. Since the expiry is pushed forward on
every increment, an identity that keeps hammering stays limited until it has
been quiet for a whole window.

The limiter fails open: a missing identity or an unreachable Redis lets the
request through and logs why.
"""
import logging
from functools import wraps
from typing import Optional

from django.http import JsonResponse
from django_redis import get_redis_connection
from rest_framework.request import Request

from locplace.utils.fail_open import call_fail_open, config_value

logger = logging.getLogger(__name__)

KEY_PREFIX = 'rate-limiter'

DEFAULT_MAX_ALLOWED = 10
DEFAULT_TIMEFRAME = 60


class UnexpectedReply(ValueError):
    """Redis answered the INCR/EXPIRE transaction with something unexpected."""


def get_rate_limit_key(identity) -> str:
    """
    Generate Redis key for rate limiting.

    Example:
        >>> get_rate_limit_key(123)
        'rate-limiter.123'
    """
    return f"{KEY_PREFIX}.{identity}"


class RequestsLimiter:
    """
    Per-identity request gate.

    Args:
        max_allowed: Requests allowed within one window
        timeframe: Window length in seconds
        connection: Raw redis client (defaults to django-redis "default")
        enabled: When False every request is allowed
        live: Read max_allowed, timeframe and enabled from Constance on every
            call instead of using the values above
    """

    def __init__(
        self,
        max_allowed: int = DEFAULT_MAX_ALLOWED,
        timeframe: int = DEFAULT_TIMEFRAME,
        connection=None,
        enabled: bool = True,
        live: bool = False,
    ):
        self._max_allowed = max_allowed
        self._timeframe = timeframe
        self._enabled = enabled
        self.live = live
        self._connection = connection

    @classmethod
    def from_config(cls, connection=None) -> 'RequestsLimiter':
        """Limiter following the REQUESTS_LIMITER_* Constance settings."""
        return cls(connection=connection, live=True)

    def _setting(self, name: str, value):
        if not self.live:
            return value
        return config_value(name, log=logger)

    @property
    def max_allowed(self) -> int:
        return self._setting('REQUESTS_LIMITER_MAX_ALLOWED', self._max_allowed)

    @property
    def timeframe(self) -> int:
        return self._setting('REQUESTS_LIMITER_TIMEFRAME', self._timeframe)

    @property
    def enabled(self) -> bool:
        return self._setting('REQUESTS_LIMITER_ENABLED', self._enabled)

    @property
    def connection(self):
        if self._connection is None:
            return get_redis_connection("default")
        return self._connection

    def hit(self, identity) -> int:
        """
        Count one request and return its ordinal within the current window.

        Raises:
            redis.RedisError: Store unreachable
            UnexpectedReply: Transaction reply was not [ordinal, expire_result]
        """
        key = get_rate_limit_key(identity)
        pipe = self.connection.pipeline(transaction=True)
        pipe.incr(key)
        pipe.expire(key, self.timeframe)
        reply = pipe.execute()

        if not isinstance(reply, (list, tuple)) or len(reply) != 2:
            raise UnexpectedReply(f"Unexpected reply to INCR/EXPIRE for {key}: {reply!r}")
        ordinal = reply[0]
        if isinstance(ordinal, bool) or not isinstance(ordinal, int):
            raise UnexpectedReply(f"Unexpected INCR result for {key}: {ordinal!r}")
        return ordinal

    def is_allowed(self, identity) -> bool:
        """
        Check (and count) a request from ``identity``.

        Returns:
            True if the request may proceed
        """
        if not self.enabled:
            return True

        if identity is None or identity == '':
            logger.warning("No identity for rate limiting, allowing the request")
            return True

        ordinal = call_fail_open(
            self.hit, identity,
            default=None,
            action=f"check rate limit for {identity}",
            log=logger,
        )
        if ordinal is None:
            return True

        allowed = ordinal <= self.max_allowed
        if not allowed:
            logger.info(f"Rate limit exceeded for {identity}: {ordinal}/{self.max_allowed} in {self.timeframe}s")
        return allowed


def get_chat_identity(request: Request) -> Optional[str]:
    """
    Extract the chat user identity from a request.

    Looks at ``user_id`` in the request body, then the X-Chat-User-Id header.

    Returns:
        Identity string, or None if the request carries none
    """
    identity = None
    try:
        if hasattr(request, 'data') and hasattr(request.data, 'get'):
            identity = request.data.get('user_id')
    except Exception as e:
        # Unparseable body; the view reports it properly
        logger.debug(f"Could not read user_id from request body: {e}")

    if identity in (None, ''):
        identity = request.META.get('HTTP_X_CHAT_USER_ID')

    return str(identity) if identity not in (None, '') else None


def resolve_rate_limit(view_func):
    """
    Decorator to enforce the per-user limit on resolution endpoints.

    The view must expose a ``resolver`` (LocationResolver) attribute.

    Usage:
        @resolve_rate_limit
        def resolve(self, request, *args, **kwargs):
            ...

    Response Format (rate limited):
        {
            "error": "Rate limit exceeded",
            "detail": "Too many location requests. Please try again later.",
            "limit": 10,
            "retry_after_seconds": 60
        }
    """
    @wraps(view_func)
    def wrapper(self, request: Request, *args, **kwargs):
        resolver = self.resolver
        identity = get_chat_identity(request)

        if not resolver.is_request_allowed(identity):
            limiter = resolver.limiter
            response = JsonResponse({
                "error": "Rate limit exceeded",
                "detail": "Too many location requests. Please try again later.",
                "limit": limiter.max_allowed,
                "retry_after_seconds": limiter.timeframe,
            }, status=429)
            response['Retry-After'] = str(limiter.timeframe)
            return response

        response = view_func(self, request, *args, **kwargs)
        response['X-RateLimit-Limit'] = str(resolver.limiter.max_allowed)
        return response

    return wrapper
