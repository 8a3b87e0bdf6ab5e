"""
Fail-open helpers for calls into shared infrastructure.

The response cache, the rate limiter and the profile client all sit in front
of the resolution path. When their backing service (Redis, the user service)
is unreachable, the request must proceed as if the protective layer were not
there. These helpers turn "log and degrade" into a single reusable pattern.

Usage:
    from locplace.utils.fail_open import fail_open, call_fail_open

    @fail_open(default=None, action="read cached response")
    def get(self, key):
        ...

    allowed = call_fail_open(self._count, key, default=True, action="check limits")
"""

import functools
import logging
from typing import Any, Callable, Tuple, Type

logger = logging.getLogger(__name__)


def _resolve_default(default: Any) -> Any:
    # Mutable defaults ([] / {}) are passed as factories so callers never share them
    return default() if callable(default) else default


def call_fail_open(
    func: Callable,
    *args,
    default: Any = None,
    action: str = '',
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    log: logging.Logger = None,
    **kwargs,
) -> Any:
    """
    Call ``func`` and return ``default`` if it raises one of ``exceptions``.

    Args:
        func: Callable to invoke
        default: Value (or zero-argument factory) returned on failure
        action: Human-readable description used in the log message
        exceptions: Exception types treated as infrastructure failures
        log: Logger to report through (defaults to this module's logger)

    Returns:
        The callable's result, or the default on failure
    """
    try:
        return func(*args, **kwargs)
    except exceptions as e:
        (log or logger).error(
            f"Failed to {action or getattr(func, '__name__', 'call')}, failing open: "
            f"{type(e).__name__}: {e}"
        )
        return _resolve_default(default)


def fail_open(
    default: Any = None,
    action: str = '',
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    log: logging.Logger = None,
):
    """
    Decorator form of :func:`call_fail_open`.

    Example:
        >>> @fail_open(default=True, action="check rate limit")
        ... def check(identity):
        ...     raise ConnectionError("redis is down")
        >>> check("42")
        True
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            return call_fail_open(
                func, *args,
                default=default,
                action=action or func.__name__,
                exceptions=exceptions,
                log=log,
                **kwargs,
            )
        return wrapper
    return decorator


def config_value(name: str, log: logging.Logger = None) -> Any:
    """
    Read a Constance value, falling back to its CONSTANCE_CONFIG default.

    Every read goes to the Constance backend (Redis in production); a backend
    error is logged and the default is returned.

    Example:
        >>> config_value('MSG_LOC_LIMIT')
        10
    """
    from constance import config
    from django.conf import settings

    default = settings.CONSTANCE_CONFIG[name][0]
    return call_fail_open(
        getattr, config, name,
        default=lambda: default,
        action=f"read setting {name}",
        log=log,
    )
