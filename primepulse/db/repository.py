"""Relational store adapters: tracked items, observations and alerts."""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from primepulse.db.models import AlertRow, ObservationRow, Scope, TrackedItemRow
from primepulse.errors import StoreError
from primepulse.models import Alert, Availability, Observation, TrackedItem, TrackingScope
from primepulse.utils.clock import utcnow

logger = logging.getLogger(__name__)


class SqlItemSource:
    """Reads due items and records fetch times."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        min_refresh_interval: timedelta = timedelta(hours=2),
    ):
        self.session_factory = session_factory
        self.min_refresh_interval = min_refresh_interval

    async def list_scopes(self) -> list[TrackingScope]:
        query = select(Scope).where(Scope.is_active == True).order_by(Scope.id.asc())  # noqa: E712
        try:
            async with self.session_factory() as db:
                result = await db.execute(query)
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            logger.error(f"Failed to list tracking scopes: {e}")
            raise StoreError(f"cannot list scopes: {e}") from e

        return [
            TrackingScope(
                id=row.id,
                name=row.name,
                active=row.is_active,
                webhook_url=row.webhook_url,
                max_alerts_per_cycle=row.max_alerts_per_cycle,
            )
            for row in rows
        ]

    async def list_due_items(self, scope_id: int, limit: int) -> list[TrackedItem]:
        """
        Active items not observed within the refresh interval.

        Ordered by priority (high first), then staleness (never observed first,
        then oldest observation).
        """
        cutoff = utcnow() - self.min_refresh_interval
        query = (
            select(TrackedItemRow)
            .where(
                TrackedItemRow.scope_id == scope_id,
                TrackedItemRow.is_active == True,  # noqa: E712
                or_(
                    TrackedItemRow.last_observed_at.is_(None),
                    TrackedItemRow.last_observed_at < cutoff,
                ),
            )
            .order_by(
                TrackedItemRow.priority.desc(),
                TrackedItemRow.last_observed_at.asc().nulls_first(),
                TrackedItemRow.id.asc(),
            )
            .limit(limit)
        )
        try:
            async with self.session_factory() as db:
                result = await db.execute(query)
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            logger.error(f"Failed to list due items for scope {scope_id}: {e}")
            raise StoreError(f"cannot list due items: {e}") from e

        return [
            TrackedItem(
                id=row.id,
                identifier=row.identifier,
                scope_id=row.scope_id,
                priority=row.priority,
                title=row.title,
                last_observed_at=row.last_observed_at,
                active=row.is_active,
            )
            for row in rows
        ]

    async def mark_observed(self, item_id: int, timestamp: datetime) -> None:
        try:
            async with self.session_factory() as db:
                await db.execute(
                    update(TrackedItemRow)
                    .where(TrackedItemRow.id == item_id)
                    .values(last_observed_at=timestamp)
                )
                await db.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"cannot mark item {item_id} observed: {e}") from e


class SqlObservationStore:
    """Append-only observation history."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def append(self, observation: Observation) -> Observation:
        row = ObservationRow(
            item_id=observation.item_id,
            captured_at=observation.captured_at,
            price=observation.price,
            list_price=observation.list_price,
            discount_percent=observation.discount_percent,
            has_coupon=observation.has_coupon,
            coupon_amount=observation.coupon_amount,
            seller_name=observation.seller_name,
            seller_count=observation.seller_count,
            availability=Availability.parse(observation.availability).value,
            prime_eligible=observation.prime_eligible,
            rating=observation.rating,
            review_count=observation.review_count,
        )
        try:
            async with self.session_factory() as db:
                db.add(row)
                await db.commit()
                await db.refresh(row)
        except SQLAlchemyError as e:
            raise StoreError(f"cannot append observation for item {observation.item_id}: {e}") from e

        return _to_observation(row)

    async def recent_by_item(
        self,
        item_id: int,
        limit: int = 50,
        window_days: Optional[int] = 7,
    ) -> list[Observation]:
        query = select(ObservationRow).where(ObservationRow.item_id == item_id)
        if window_days is not None:
            query = query.where(
                ObservationRow.captured_at >= utcnow() - timedelta(days=window_days)
            )
        query = query.order_by(
            ObservationRow.captured_at.desc(),
            ObservationRow.id.desc(),
        ).limit(limit)

        try:
            async with self.session_factory() as db:
                result = await db.execute(query)
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            raise StoreError(f"cannot read observations for item {item_id}: {e}") from e

        return [_to_observation(row) for row in rows]

    async def purge_older_than(self, days: int) -> int:
        """Delete observations captured more than ``days`` ago."""
        cutoff = utcnow() - timedelta(days=days)
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    delete(ObservationRow).where(ObservationRow.captured_at < cutoff)
                )
                await db.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"cannot purge observations: {e}") from e

        removed = result.rowcount or 0
        logger.info(f"Purged {removed} observations older than {days} days")
        return removed


class SqlAlertLog:
    """Persists every alert the detector emits."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def record(self, scope_id: int, alert: Alert) -> None:
        row = AlertRow(
            scope_id=scope_id,
            item_id=alert.item_id,
            kind=alert.kind.value,
            severity=alert.severity.value,
            current_price=alert.current_price,
            previous_price=alert.previous_price,
            price_change=alert.price_change,
            price_change_percent=alert.price_change_percent,
            coupon_amount=alert.coupon_amount,
            message=alert.to_dict(),
            created_at=alert.created_at,
        )
        try:
            async with self.session_factory() as db:
                db.add(row)
                await db.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"cannot record {alert.kind.value} alert for {alert.identifier}: {e}") from e

        logger.info(
            "Price alert generated",
            extra={
                "scope_id": scope_id,
                "item_id": alert.item_id,
                "alert_type": alert.kind.value,
                "severity": alert.severity.value,
            },
        )


def _to_observation(row: ObservationRow) -> Observation:
    return Observation(
        id=row.id,
        item_id=row.item_id,
        captured_at=row.captured_at,
        price=row.price,
        list_price=row.list_price,
        discount_percent=row.discount_percent,
        has_coupon=row.has_coupon,
        coupon_amount=row.coupon_amount,
        seller_name=row.seller_name,
        seller_count=row.seller_count,
        availability=Availability.parse(row.availability),
        prime_eligible=row.prime_eligible,
        rating=row.rating,
        review_count=row.review_count,
    )
