"""Analytics store: feature rows and threat predictions.

Both tables are keyed by (item, timestamp) and written with
replace-on-conflict upserts so that overlapping cycles for the same item
never produce duplicates.
"""

import logging
from dataclasses import asdict
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from primepulse.config import settings
from primepulse.db.models import PredictionRow, PriceFeatureRow
from primepulse.errors import StoreError
from primepulse.models import PriceFeatures, RankedPrediction, ThreatAssessment
from primepulse.utils.clock import utcnow

logger = logging.getLogger(__name__)

_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class SqlAnalyticsStore:
    """SQLAlchemy-backed feature/prediction store."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def _upsert(self, model, values: dict, key_columns: list[str]) -> None:
        try:
            async with self.session_factory() as db:
                dialect = db.bind.dialect.name
                insert_fn = _DIALECT_INSERTS.get(dialect)
                if insert_fn is not None:
                    stmt = insert_fn(model).values(**values)
                    stmt = stmt.on_conflict_do_update(
                        index_elements=key_columns,
                        set_={k: v for k, v in values.items() if k not in key_columns},
                    )
                    await db.execute(stmt)
                else:
                    await db.merge(model(**values))
                await db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Analytics upsert into {model.__tablename__} failed: {e}")
            raise StoreError(f"cannot upsert into {model.__tablename__}: {e}") from e

    async def upsert_features(self, row: PriceFeatures) -> None:
        await self._upsert(PriceFeatureRow, asdict(row), ["item_id", "timestamp"])

    async def feature_rows(
        self,
        item_id: int,
        since: datetime,
        limit: int = 50,
    ) -> list[PriceFeatures]:
        query = (
            select(PriceFeatureRow)
            .where(
                PriceFeatureRow.item_id == item_id,
                PriceFeatureRow.timestamp >= since,
            )
            .order_by(PriceFeatureRow.timestamp.desc())
            .limit(limit)
        )
        try:
            async with self.session_factory() as db:
                result = await db.execute(query)
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            raise StoreError(f"cannot read feature rows for item {item_id}: {e}") from e

        return [
            PriceFeatures(
                item_id=r.item_id,
                identifier=r.identifier,
                timestamp=r.timestamp,
                current_price=r.current_price,
                previous_price=r.previous_price,
                price_delta=r.price_delta,
                price_delta_percent=r.price_delta_percent,
                coupon_flip=r.coupon_flip,
                coupon_amount=r.coupon_amount,
                seller_count=r.seller_count,
                seller_delta=r.seller_delta,
                availability_score=r.availability_score,
                prime_eligible=r.prime_eligible,
                rating=r.rating,
                review_count=r.review_count,
                price_volatility=r.price_volatility,
                is_weekend=r.is_weekend,
                hour_of_day=r.hour_of_day,
            )
            for r in rows
        ]

    async def upsert_prediction(self, assessment: ThreatAssessment) -> None:
        values = {
            "item_id": assessment.item_id,
            "prediction_timestamp": assessment.created_at,
            "identifier": assessment.identifier,
            "drop_probability": assessment.drop_probability,
            "expected_drop_percent": assessment.expected_drop,
            "confidence_score": assessment.confidence,
            "current_price": (
                float(assessment.current_price)
                if assessment.current_price is not None
                else None
            ),
            "features": assessment.features,
            "model_version": assessment.model_version,
            "created_at": utcnow(),
        }
        await self._upsert(PredictionRow, values, ["item_id", "prediction_timestamp"])

    async def top_predictions(
        self,
        limit: int = 50,
        recency_hours: Optional[int] = None,
    ) -> list[RankedPrediction]:
        """
        Latest prediction per item within the recency window, joined with the
        item's most recent feature-row price.

        Ordered by drop probability, then expected drop (both descending).
        """
        if recency_hours is None:
            recency_hours = settings.prediction_recency_hours
        cutoff = utcnow() - timedelta(hours=recency_hours)

        latest_prediction = (
            select(
                PredictionRow,
                func.row_number()
                .over(
                    partition_by=PredictionRow.item_id,
                    order_by=PredictionRow.prediction_timestamp.desc(),
                )
                .label("rn"),
            )
            .where(PredictionRow.prediction_timestamp >= cutoff)
            .subquery()
        )
        latest_price = select(
            PriceFeatureRow.item_id,
            PriceFeatureRow.current_price,
            func.row_number()
            .over(
                partition_by=PriceFeatureRow.item_id,
                order_by=PriceFeatureRow.timestamp.desc(),
            )
            .label("rn"),
        ).subquery()

        query = (
            select(
                latest_prediction.c.item_id,
                latest_prediction.c.identifier,
                latest_prediction.c.drop_probability,
                latest_prediction.c.expected_drop_percent,
                latest_prediction.c.confidence_score,
                latest_prediction.c.prediction_timestamp,
                latest_prediction.c.current_price.label("predicted_price"),
                latest_price.c.current_price,
            )
            .outerjoin(
                latest_price,
                (latest_price.c.item_id == latest_prediction.c.item_id)
                & (latest_price.c.rn == 1),
            )
            .where(latest_prediction.c.rn == 1)
            .order_by(
                latest_prediction.c.drop_probability.desc(),
                latest_prediction.c.expected_drop_percent.desc(),
            )
            .limit(limit)
        )

        try:
            async with self.session_factory() as db:
                result = await db.execute(query)
                rows = result.all()
        except SQLAlchemyError as e:
            raise StoreError(f"cannot read top predictions: {e}") from e

        return [
            RankedPrediction(
                item_id=row.item_id,
                identifier=row.identifier,
                drop_probability=row.drop_probability,
                expected_drop=row.expected_drop_percent,
                confidence=row.confidence_score,
                current_price=(
                    row.current_price if row.current_price is not None else row.predicted_price
                ),
                predicted_at=row.prediction_timestamp,
            )
            for row in rows
        ]
