"""Client for the remote scraping worker.

The worker accepts a batch of identifiers and scrapes them behind a proxy:

    POST {worker_url}/scrape
    {"asins": [...], "proxyConfig": {...}, "maxConcurrent": 10}

and answers ``{"success": true, "results": [{"asin", "success", "data",
"error", "timestamp"}]}``.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Sequence

import httpx

from primepulse.errors import RemoteFetchError
from primepulse.models import FetchResult, ListingData
from primepulse.utils.clock import utcnow

logger = logging.getLogger(__name__)

USER_AGENT = "PrimePulse/1.0"


class WorkerClient:
    """RemoteFetchDelegate backed by the scraping worker's HTTP API."""

    def __init__(
        self,
        worker_url: str,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.worker_url = worker_url.rstrip("/")
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self):
        """Close the HTTP client if this instance created it."""
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def scrape(
        self,
        identifiers: Sequence[str],
        proxy_config: dict,
        max_concurrent: int,
    ) -> list[FetchResult]:
        payload = {
            "asins": list(identifiers),
            "proxyConfig": proxy_config,
            "maxConcurrent": max_concurrent,
        }
        client = await self._get_client()

        try:
            response = await client.post(
                f"{self.worker_url}/scrape",
                json=payload,
                headers={"User-Agent": USER_AGENT},
                timeout=self.timeout,
            )
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as e:
            raise RemoteFetchError(
                f"worker returned HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise RemoteFetchError(f"worker request failed: {e}") from e
        except ValueError as e:
            raise RemoteFetchError(f"worker returned invalid JSON: {e}") from e

        if not isinstance(body, dict) or not body.get("success"):
            error = body.get("error") if isinstance(body, dict) else None
            raise RemoteFetchError(f"worker reported failure: {error or 'unknown error'}")

        raw_results = body.get("results")
        if not isinstance(raw_results, list):
            raise RemoteFetchError("worker response has no results list")

        results = []
        for raw in raw_results:
            try:
                results.append(self._to_result(raw))
            except (KeyError, TypeError, ValueError, ArithmeticError) as e:
                raise RemoteFetchError(f"malformed worker result: {e}") from e

        logger.info(
            f"Remote worker returned {len(results)} results for {len(identifiers)} identifiers"
        )
        return results

    @staticmethod
    def _to_result(raw: dict) -> FetchResult:
        identifier = raw["asin"]
        fetched_at = _parse_timestamp(raw.get("timestamp"))
        if raw.get("success") and raw.get("data"):
            return FetchResult(
                identifier=identifier,
                success=True,
                data=ListingData.from_dict(raw["data"]),
                fetched_at=fetched_at,
            )
        return FetchResult(
            identifier=identifier,
            success=False,
            error=raw.get("error") or "remote scrape failed",
            fetched_at=fetched_at,
        )


def _parse_timestamp(value: Optional[str]) -> datetime:
    """Worker timestamps are ISO 8601; stored as naive UTC."""
    if not value:
        return utcnow()
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed
