"""SQLAlchemy database models.

Two declarative bases: ``Base`` for the relational store (scopes, tracked
items, observations, alerts) and ``AnalyticsBase`` for the analytics store
(feature rows, predictions), which may live in a separate database.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from primepulse.utils.clock import utcnow


class Base(DeclarativeBase):
    """Base class for relational store models."""

    pass


class AnalyticsBase(DeclarativeBase):
    """Base class for analytics store models."""

    pass


class Scope(Base):
    """A customer / tenant whose items are tracked together."""

    __tablename__ = "tracking_scopes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    webhook_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    max_alerts_per_cycle: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    items: Mapped[list["TrackedItemRow"]] = relationship(
        "TrackedItemRow", back_populates="scope", cascade="all, delete-orphan"
    )


class TrackedItemRow(Base):
    """Product monitored for one scope."""

    __tablename__ = "tracked_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    scope_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tracking_scopes.id"), nullable=False
    )
    identifier: Mapped[str] = mapped_column(String(32), nullable=False)  # ASIN
    title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    priority: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    last_observed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    scope: Mapped["Scope"] = relationship("Scope", back_populates="items")
    observations: Mapped[list["ObservationRow"]] = relationship(
        "ObservationRow", back_populates="item", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("priority BETWEEN 1 AND 5", name="ck_tracked_item_priority"),
        # At most one active row per (scope, identifier)
        Index(
            "uq_tracked_item_active",
            "scope_id",
            "identifier",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active"),
        ),
    )


class ObservationRow(Base):
    """Point-in-time listing snapshot. Rows are never updated."""

    __tablename__ = "observations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    item_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tracked_items.id"), nullable=False
    )
    captured_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    list_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    discount_percent: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    has_coupon: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    coupon_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    seller_name: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    seller_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    availability: Mapped[str] = mapped_column(String(32), default="unknown", nullable=False)
    prime_eligible: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    rating: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    review_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    item: Mapped["TrackedItemRow"] = relationship("TrackedItemRow", back_populates="observations")

    __table_args__ = (
        CheckConstraint("price IS NULL OR price >= 0", name="ck_observation_price"),
        CheckConstraint("seller_count >= 1", name="ck_observation_seller_count"),
        Index("ix_observations_item_captured", "item_id", "captured_at"),
    )


class AlertRow(Base):
    """Alert generated by the detector."""

    __tablename__ = "alerts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    scope_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tracking_scopes.id"), nullable=False
    )
    item_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tracked_items.id"), nullable=False
    )
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    current_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    previous_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    price_change: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    price_change_percent: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    coupon_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    message: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


class PriceFeatureRow(AnalyticsBase):
    """Feature row per (item, observation timestamp); replaced on conflict."""

    __tablename__ = "price_features"

    item_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime, primary_key=True)
    identifier: Mapped[str] = mapped_column(String(32), nullable=False)
    current_price: Mapped[float] = mapped_column(Float, nullable=False)
    previous_price: Mapped[float] = mapped_column(Float, nullable=False)
    price_delta: Mapped[float] = mapped_column(Float, nullable=False)
    price_delta_percent: Mapped[float] = mapped_column(Float, nullable=False)
    coupon_flip: Mapped[bool] = mapped_column(Boolean, nullable=False)
    coupon_amount: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    seller_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    seller_delta: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    availability_score: Mapped[float] = mapped_column(Float, nullable=False)
    prime_eligible: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    rating: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    review_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    price_volatility: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    is_weekend: Mapped[bool] = mapped_column(Boolean, nullable=False)
    hour_of_day: Mapped[int] = mapped_column(Integer, nullable=False)


class PredictionRow(AnalyticsBase):
    """Threat assessment per (item, prediction timestamp)."""

    __tablename__ = "predictions"

    item_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    prediction_timestamp: Mapped[datetime] = mapped_column(DateTime, primary_key=True)
    identifier: Mapped[str] = mapped_column(String(32), nullable=False)
    drop_probability: Mapped[float] = mapped_column(Float, nullable=False)
    expected_drop_percent: Mapped[float] = mapped_column(Float, nullable=False)
    confidence_score: Mapped[float] = mapped_column(Float, nullable=False)
    current_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    features: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    model_version: Mapped[str] = mapped_column(String(32), default="rules-v1", nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
