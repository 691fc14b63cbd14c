"""
Retry/backoff wrapper for Kite REST calls made on the tick path.

Only transient venue failures are retried: network errors, timeouts,
HTTP 429 and 5xx. Credential and request errors surface immediately.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Iterable, Optional, TypeVar

from kiteconnect import exceptions as kite_exceptions
from requests import exceptions as requests_exceptions

logger = logging.getLogger(__name__)

T = TypeVar("T")

# a tick waits on these, so keep the total well under the tick interval budget
DEFAULT_DELAYS = (0.5, 1.0, 2.0)

_FATAL = (
    kite_exceptions.TokenException,
    kite_exceptions.InputException,
    kite_exceptions.PermissionException,
)
_TRANSIENT = (
    kite_exceptions.NetworkException,
    requests_exceptions.Timeout,
    requests_exceptions.ConnectionError,
)


def http_status(exc: Exception) -> Optional[int]:
    """HTTP status carried by a Kite or requests exception, if any."""
    code = getattr(exc, "code", None)
    if isinstance(code, int):
        return code
    response = getattr(exc, "response", None)
    status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def should_retry(exc: Exception) -> bool:
    if isinstance(exc, _FATAL):
        return False
    if isinstance(exc, _TRANSIENT):
        return True
    status = http_status(exc)
    return status is not None and (status == 429 or 500 <= status < 600)


def _call_name(fn: Callable[..., Any]) -> str:
    return getattr(fn, "__name__", None) or type(fn).__name__


def kite_request(
    fn: Callable[..., T],
    *args: Any,
    delays: Iterable[float] = DEFAULT_DELAYS,
    sleep: Callable[[float], None] = time.sleep,
    **kwargs: Any,
) -> T:
    """
    Call `fn(*args, **kwargs)`, sleeping through `delays` between attempts
    while the failure is transient. The last error is re-raised.
    """
    schedule = iter(delays)
    attempt = 0
    while True:
        attempt += 1
        try:
            return fn(*args, **kwargs)
        except Exception as exc:  # noqa: BLE001
            delay = next(schedule, None) if should_retry(exc) else None
            if delay is None:
                logger.warning("Kite %s failed after %d attempt(s): %s", _call_name(fn), attempt, exc)
                raise
            logger.info("Kite %s failed (attempt %d): %s; retrying in %.1fs", _call_name(fn), attempt, exc, delay)
            sleep(delay)
