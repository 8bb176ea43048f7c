"""
Retry state machine for source and store I/O.

Every call into the tenant source or the canonical store goes through a
:class:`ResilientExecutor`. Transient failures are retried with bounded
exponential backoff, reconnecting before each new attempt; rate-limit
responses sleep for the advertised delay without consuming an attempt; any
other error propagates on the first occurrence.
"""

from __future__ import annotations

import enum
import errno
import logging
import socket
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Callable, Iterator, TypeVar

import requests
from sqlalchemy.exc import DBAPIError, IntegrityError

from .errors import TransientConnectivityError
from .metrics import record_retry

T = TypeVar("T")

DEFAULT_RETRY_AFTER_SECONDS = 60.0

_TRANSIENT_ERRNOS = {
    errno.ECONNRESET,
    errno.ETIMEDOUT,
    errno.ECONNREFUSED,
    errno.ECONNABORTED,
    errno.EPIPE,
}
_TRANSIENT_CODES = {"ECONNRESET", "ETIMEDOUT", "EAI_AGAIN", "ENOTFOUND", "ECONNREFUSED"}
# connection_exception class, admin/crash shutdown, cannot_connect_now, query_canceled
_TRANSIENT_SQLSTATES = {"08000", "08001", "08003", "08004", "08006", "57P01", "57P02", "57P03", "57014"}
_TRANSIENT_GAI_ERRORS = {getattr(socket, "EAI_AGAIN", None), getattr(socket, "EAI_NONAME", None)} - {None}
_TRANSIENT_MARKERS = (
    "connection terminated unexpectedly",
    "terminating connection",
    "server closed the connection",
    "could not connect to server",
    "connection refused",
    "connection reset",
    "timed out",
    "statement timeout",
    "timeout expired",
    "the database system is starting up",
    "the database system is shutting down",
    "ssl syscall error",
)
_MISSING_RELATION_MARKERS = (
    "no such table",
    "undefined table",
    "undefinedtable",
    "42p01",
)


class ConnectionState(str, enum.Enum):
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int
    base_delay: float
    max_delay: float
    max_rate_limit_retries: int = 10

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number ``attempt`` (1-based)."""

        return min(self.max_delay, self.base_delay * (2 ** max(0, attempt - 1)))

    def with_attempts(self, max_attempts: int | None) -> "RetryPolicy":
        if not max_attempts:
            return self
        return RetryPolicy(max(1, int(max_attempts)), self.base_delay, self.max_delay, self.max_rate_limit_retries)


SOURCE_RETRY_POLICY = RetryPolicy(max_attempts=5, base_delay=2.0, max_delay=60.0)
STORE_RETRY_POLICY = RetryPolicy(max_attempts=3, base_delay=1.0, max_delay=30.0)


class RateLimited(Exception):
    """Raised by a call that was refused with a rate-limit response."""

    def __init__(self, retry_after: float, message: str | None = None):
        super().__init__(message or f"Rate limited; retry after {retry_after:.1f}s")
        self.retry_after = retry_after


def parse_retry_after(value: Any, *, now: datetime | None = None) -> float:
    """Read a ``Retry-After`` header given in seconds or as an HTTP date."""

    if value is None:
        return DEFAULT_RETRY_AFTER_SECONDS
    text = str(value).strip()
    if not text:
        return DEFAULT_RETRY_AFTER_SECONDS
    try:
        return max(0.0, float(text))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(text)
    except (TypeError, ValueError, IndexError):
        return DEFAULT_RETRY_AFTER_SECONDS
    if when is None:
        return DEFAULT_RETRY_AFTER_SECONDS
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    current = now or datetime.now(timezone.utc)
    return max(0.0, (when - current).total_seconds())


def _error_chain(exc: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    pending: list[BaseException | None] = [exc]
    while pending:
        current = pending.pop(0)
        if current is None or id(current) in seen:
            continue
        seen.add(id(current))
        yield current
        pending.append(getattr(current, "orig", None))
        pending.append(current.__cause__)
        pending.append(current.__context__)


def is_missing_relation_error(exc: BaseException) -> bool:
    """True when the error says a table or relation does not exist."""

    for error in _error_chain(exc):
        if type(error).__name__ == "UndefinedTable" or getattr(error, "sqlstate", None) == "42P01":
            return True
        message = str(error).lower()
        if any(marker in message for marker in _MISSING_RELATION_MARKERS):
            return True
        if "relation" in message and "does not exist" in message:
            return True
    return False


def is_transient_error(exc: BaseException) -> bool:
    """Classify ``exc`` as a retryable connectivity failure."""

    if isinstance(exc, (IntegrityError, TransientConnectivityError)) or is_missing_relation_error(exc):
        return False
    for error in _error_chain(exc):
        if isinstance(error, DBAPIError) and error.connection_invalidated:
            return True
        if isinstance(error, (requests.ConnectionError, requests.Timeout)):
            return True
        if isinstance(error, requests.HTTPError):
            response = error.response
            if response is not None and response.status_code >= 500:
                return True
            return False
        if isinstance(error, socket.gaierror) and error.errno in _TRANSIENT_GAI_ERRORS:
            return True
        if isinstance(error, (ConnectionError, TimeoutError)):
            return True
        if isinstance(error, OSError) and error.errno in _TRANSIENT_ERRNOS:
            return True
        if getattr(error, "sqlstate", None) in _TRANSIENT_SQLSTATES:
            return True
        code = getattr(error, "code", None)
        if isinstance(code, str) and code.upper() in _TRANSIENT_CODES:
            return True
        message = str(error).lower()
        if any(marker in message for marker in _TRANSIENT_MARKERS):
            return True
        if any(code_name.lower() in message for code_name in _TRANSIENT_CODES):
            return True
    return False


class ResilientExecutor:
    """Run callables under a :class:`RetryPolicy` with reconnect between attempts."""

    def __init__(
        self,
        policy: RetryPolicy,
        *,
        name: str,
        target: str = "source",
        reconnect: Callable[[], None] | None = None,
        sleep: Callable[[float], None] = time.sleep,
        logger: logging.Logger | None = None,
    ) -> None:
        self.policy = policy
        self.name = name
        self.target = target
        self.reconnect = reconnect
        self.sleep = sleep
        self.logger = logger or logging.getLogger(__name__)
        self.state = ConnectionState.CONNECTED

    def call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        attempt = 0
        rate_limited = 0
        while True:
            try:
                if self.state is ConnectionState.RECONNECTING and self.reconnect is not None:
                    self.reconnect()
                result = fn(*args, **kwargs)
            except RateLimited as exc:
                rate_limited += 1
                if rate_limited > self.policy.max_rate_limit_retries:
                    self.state = ConnectionState.FAILED
                    raise TransientConnectivityError(
                        f"{self.name}: still rate limited after {rate_limited - 1} retries"
                    ) from exc
                record_retry(target=self.target, reason="rate_limited")
                self.logger.warning(
                    "%s rate limited; sleeping %.1fs",
                    self.name,
                    exc.retry_after,
                    extra={"sync_retry_target": self.target, "sync_retry_after": exc.retry_after},
                )
                self.sleep(exc.retry_after)
                continue
            except Exception as exc:
                if not is_transient_error(exc):
                    raise
                attempt += 1
                if attempt >= self.policy.max_attempts:
                    self.state = ConnectionState.FAILED
                    self.logger.error(
                        "%s failed after %s attempts: %s",
                        self.name,
                        attempt,
                        exc,
                        extra={"sync_retry_target": self.target, "sync_retry_attempts": attempt},
                    )
                    raise TransientConnectivityError(f"{self.name} failed after {attempt} attempts: {exc}") from exc
                self.state = ConnectionState.RECONNECTING
                delay = self.policy.delay_for(attempt)
                record_retry(target=self.target, reason="transient")
                self.logger.warning(
                    "%s transient error (attempt %s/%s); retrying in %.1fs: %s",
                    self.name,
                    attempt,
                    self.policy.max_attempts,
                    delay,
                    exc,
                    extra={
                        "sync_retry_target": self.target,
                        "sync_retry_attempt": attempt,
                        "sync_retry_delay": delay,
                    },
                )
                self.sleep(delay)
                continue
            self.state = ConnectionState.CONNECTED
            return result
