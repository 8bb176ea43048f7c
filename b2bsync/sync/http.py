"""
JSON-over-HTTP helper for HTTP-backed tenant sources.

The response handling maps onto the resilience wrapper: 429 raises
:class:`RateLimited` with the ``Retry-After`` hint, 5xx and connection
failures are transient, and any other 4xx propagates immediately.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Mapping

import requests

from .resilience import SOURCE_RETRY_POLICY, RateLimited, ResilientExecutor, parse_retry_after

logger = logging.getLogger(__name__)


def _request_json(
    session: requests.Session,
    method: str,
    url: str,
    *,
    params: Mapping[str, Any] | None,
    headers: Mapping[str, str] | None,
    json_body: Any,
    timeout: float,
) -> Any:
    response = session.request(method, url, params=params, headers=headers, json=json_body, timeout=timeout)
    if response.status_code == 429:
        retry_after = parse_retry_after(response.headers.get("Retry-After"))
        raise RateLimited(retry_after, f"{method} {url} returned 429")
    response.raise_for_status()
    if not response.content:
        return None
    return response.json()


def fetch_json(
    session: requests.Session,
    url: str,
    *,
    method: str = "GET",
    params: Mapping[str, Any] | None = None,
    headers: Mapping[str, str] | None = None,
    json_body: Any = None,
    timeout: float = 30.0,
    executor: ResilientExecutor | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Any:
    """Perform one JSON request under the source retry policy.

    Public helper for custom HTTP-backed sources; the bundled pipeline reads
    SQL sources only and does not call it.
    """

    executor = executor or ResilientExecutor(
        SOURCE_RETRY_POLICY,
        name=f"http {method} {url}",
        target="source",
        sleep=sleep,
        logger=logger,
    )
    return executor.call(
        _request_json,
        session,
        method,
        url,
        params=params,
        headers=headers,
        json_body=json_body,
        timeout=timeout,
    )
