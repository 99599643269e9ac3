"""Batch listing fetcher.

Delegates a whole batch to the remote scraping worker when one is
configured, and falls back to direct page requests when the worker is
absent or fails outright. Every identifier yields exactly one FetchResult,
positionally matched to the request.
"""

import asyncio
import logging
import random
import time
from typing import Awaitable, Callable, Optional, Sequence

import httpx

from primepulse import metrics
from primepulse.config import settings
from primepulse.errors import FetchError, RemoteFetchError
from primepulse.ingest.http_client import (
    RETRYABLE_EXC,
    build_timeout,
    check_response,
    default_headers,
)
from primepulse.ingest.parser import AmazonListingParser
from primepulse.ingest.user_agent_pool import UserAgentPool
from primepulse.interfaces import ListingParser, RemoteFetchDelegate
from primepulse.models import FetchResult
from primepulse.utils.clock import utcnow

logger = logging.getLogger(__name__)


class Fetcher:
    """Concurrency-bounded, retrying acquisition of listing data."""

    def __init__(
        self,
        remote: Optional[RemoteFetchDelegate] = None,
        parser: Optional[ListingParser] = None,
        user_agents: Optional[UserAgentPool] = None,
        client: Optional[httpx.AsyncClient] = None,
        max_concurrent: Optional[int] = None,
        retry_attempts: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
        chunk_delay: Optional[tuple[float, float]] = None,
        timeout: Optional[float] = None,
        url_template: Optional[str] = None,
        proxy_config: Optional[dict] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.remote = remote
        self.parser = parser or AmazonListingParser()
        self.user_agents = user_agents or UserAgentPool()
        self.max_concurrent = max(1, max_concurrent or settings.max_concurrent_requests)
        self.retry_attempts = max(1, retry_attempts or settings.retry_attempts)
        self.retry_base_delay = (
            retry_base_delay if retry_base_delay is not None else settings.retry_base_delay_seconds
        )
        self.chunk_delay = chunk_delay or (
            settings.chunk_delay_min_seconds,
            settings.chunk_delay_max_seconds,
        )
        self.timeout = timeout or settings.request_timeout_seconds
        self.url_template = url_template or settings.product_url_template
        self.proxy_config = proxy_config if proxy_config is not None else settings.proxy_config
        self._sleep = sleep
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=build_timeout(self.timeout),
                follow_redirects=True,
            )
        return self._client

    async def close(self):
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def fetch_many(self, identifiers: Sequence[str]) -> list[FetchResult]:
        """
        Fetch listing data for every identifier.

        Never raises for a single item; failures come back as unsuccessful
        results in the same position as their identifier.
        """
        identifiers = list(identifiers)
        if not identifiers:
            return []

        if self.remote is not None:
            try:
                results = await self._fetch_remote(identifiers)
                for result in results:
                    metrics.record_fetch_result("remote", result.success)
                return results
            except RemoteFetchError as e:
                metrics.remote_fallbacks_total.inc()
                logger.warning(
                    f"Remote worker failed, falling back to direct fetching: {e}",
                    extra={"items": len(identifiers)},
                )

        return await self._fetch_direct(identifiers)

    async def _fetch_remote(self, identifiers: list[str]) -> list[FetchResult]:
        remote_results = await self.remote.scrape(
            identifiers, self.proxy_config, self.max_concurrent
        )
        by_identifier = {result.identifier: result for result in remote_results}
        return [
            by_identifier.get(identifier)
            or FetchResult.failure(identifier, "missing from remote response")
            for identifier in identifiers
        ]

    async def _fetch_direct(self, identifiers: list[str]) -> list[FetchResult]:
        chunks = [
            identifiers[i:i + self.max_concurrent]
            for i in range(0, len(identifiers), self.max_concurrent)
        ]
        logger.info(
            f"Fetching {len(identifiers)} items directly in {len(chunks)} chunks"
        )

        results: list[FetchResult] = []
        for index, chunk in enumerate(chunks):
            settled = await asyncio.gather(
                *(self.fetch_one(identifier) for identifier in chunk),
                return_exceptions=True,
            )
            for identifier, outcome in zip(chunk, settled):
                if isinstance(outcome, BaseException):
                    logger.error(f"Unexpected fetch failure for {identifier}: {outcome}")
                    outcome = FetchResult.failure(identifier, str(outcome) or type(outcome).__name__)
                metrics.record_fetch_result("direct", outcome.success)
                results.append(outcome)

            if index < len(chunks) - 1:
                await self._sleep(random.uniform(*self.chunk_delay))

        return results

    async def fetch_one(self, identifier: str) -> FetchResult:
        """Fetch and parse one product page, retrying with a fresh user agent."""
        client = await self._get_client()
        url = self.url_template.format(identifier=identifier)
        last_error = "no attempts made"

        for attempt in range(1, self.retry_attempts + 1):
            user_agent = self.user_agents.get_random()
            start = time.monotonic()
            try:
                response = await client.get(
                    url,
                    headers=default_headers(user_agent),
                    timeout=self.timeout,
                )
                html = check_response(response, identifier)
                data = self.parser.parse(html, identifier)
                metrics.record_fetch_attempt(time.monotonic() - start)
                return FetchResult(
                    identifier=identifier,
                    success=True,
                    data=data,
                    fetched_at=utcnow(),
                )
            except FetchError as e:
                last_error = str(e)
                error_type = type(e).__name__
            except RETRYABLE_EXC as e:
                last_error = f"{identifier}: {type(e).__name__}"
                error_type = "timeout" if isinstance(e, httpx.TimeoutException) else "transport"
            except httpx.HTTPError as e:
                last_error = f"{identifier}: {e}"
                error_type = "http"

            metrics.record_fetch_error(error_type, time.monotonic() - start)
            logger.debug(
                f"Fetch attempt {attempt}/{self.retry_attempts} failed for {identifier}: {last_error}"
            )
            if attempt < self.retry_attempts:
                await self._sleep(attempt * self.retry_base_delay)

        logger.warning(f"Giving up on {identifier} after {self.retry_attempts} attempts: {last_error}")
        return FetchResult.failure(identifier, last_error)
