"""Shared HTTP helpers for direct product page requests."""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from primepulse.errors import FetchError

logger = logging.getLogger(__name__)

# Transport errors worth another attempt
RETRYABLE_EXC = (
    httpx.ReadTimeout,
    httpx.ConnectTimeout,
    httpx.ConnectError,
    httpx.RemoteProtocolError,
    httpx.PoolTimeout,
)


def default_headers(user_agent: str) -> dict[str, str]:
    """Browser-like headers for a product page request."""
    return {
        "User-Agent": user_agent,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.9",
        "Accept-Encoding": "gzip, deflate",
        "Connection": "keep-alive",
        "Cache-Control": "no-cache",
        "Upgrade-Insecure-Requests": "1",
    }


def build_timeout(seconds: float) -> httpx.Timeout:
    """Overall request timeout with a shorter connect phase."""
    return httpx.Timeout(seconds, connect=min(10.0, seconds))


def check_response(response: httpx.Response, identifier: str) -> str:
    """
    Return the body of a successful page response.

    Raises:
        FetchError: On any non-2xx status, with a status-specific message
    """
    status = response.status_code
    if 200 <= status < 300:
        return response.text

    reason: Optional[str]
    if status == 429:
        reason = "rate limited"
    elif status in (401, 403):
        reason = "blocked"
    elif status == 404:
        reason = "not found"
    elif status >= 500:
        reason = "server error"
    else:
        reason = None

    message = f"HTTP {status}" + (f" ({reason})" if reason else "")
    raise FetchError(identifier, message, status_code=status)
