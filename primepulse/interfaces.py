"""Collaborator contracts consumed by the run cycle.

Concrete implementations live in ``primepulse.db``, ``primepulse.ingest`` and
``primepulse.notify``; tests substitute in-memory fakes.
"""

from datetime import datetime
from typing import Optional, Protocol, Sequence

from primepulse.models import (
    Alert,
    FetchResult,
    ListingData,
    Observation,
    PriceFeatures,
    RankedPrediction,
    ThreatAssessment,
    TrackedItem,
    TrackingScope,
)


class ItemSource(Protocol):
    """Tracked-item registry owned by the relational store."""

    async def list_scopes(self) -> list[TrackingScope]:
        ...

    async def list_due_items(self, scope_id: int, limit: int) -> list[TrackedItem]:
        ...

    async def mark_observed(self, item_id: int, timestamp: datetime) -> None:
        ...


class ObservationStore(Protocol):
    """Append-only observation history."""

    async def append(self, observation: Observation) -> Observation:
        ...

    async def recent_by_item(
        self,
        item_id: int,
        limit: int = 50,
        window_days: Optional[int] = 7,
    ) -> list[Observation]:
        """Most recent observations, newest first."""
        ...

    async def purge_older_than(self, days: int) -> int:
        ...


class AlertLog(Protocol):
    """Append-only record of generated alerts."""

    async def record(self, scope_id: int, alert: Alert) -> None:
        ...


class AnalyticsStore(Protocol):
    """Feature and prediction persistence."""

    async def upsert_features(self, row: PriceFeatures) -> None:
        ...

    async def feature_rows(
        self,
        item_id: int,
        since: datetime,
        limit: int = 50,
    ) -> list[PriceFeatures]:
        """Feature rows newer than ``since``, newest first."""
        ...

    async def upsert_prediction(self, assessment: ThreatAssessment) -> None:
        ...

    async def top_predictions(
        self,
        limit: int = 50,
        recency_hours: Optional[int] = None,
    ) -> list[RankedPrediction]:
        ...


class RemoteFetchDelegate(Protocol):
    """Remote execution service that scrapes a batch of identifiers."""

    async def scrape(
        self,
        identifiers: Sequence[str],
        proxy_config: dict,
        max_concurrent: int,
    ) -> list[FetchResult]:
        ...


class ListingParser(Protocol):
    """Turns a raw product page into structured listing fields."""

    def parse(self, html: str, identifier: str) -> ListingData:
        ...


class NotificationChannel(Protocol):
    """Outbound notification sink. Methods raise NotificationError on failure."""

    async def for_scope(self, scope: TrackingScope) -> "NotificationChannel":
        """Channel that delivers to the scope's own destination, if it has one."""
        ...

    async def send_alert(self, alert: Alert) -> None:
        ...

    async def send_batch(self, alerts: Sequence[Alert]) -> None:
        ...

    async def send_digest(self, threats: Sequence[ThreatAssessment], scope_name: str) -> None:
        ...

    async def send_system_notice(self, message: str, level: str = "info") -> None:
        ...
