"""Domain records exchanged between the pipeline and its collaborators."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Optional

from primepulse.utils.clock import utcnow

CENT = Decimal("0.01")


def to_cents(value) -> Optional[Decimal]:
    """Round a money amount to cents, the precision prices are stored at."""
    if value is None:
        return None
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


class Availability(str, Enum):
    """Stock state of a listing, using the scraper's wire values."""

    IN_STOCK = "in stock"
    LIMITED = "limited"
    LOW_STOCK = "low stock"
    OUT_OF_STOCK = "out of stock"
    UNAVAILABLE = "unavailable"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: "str | Availability | None") -> "Availability":
        """Map free availability text onto a known state."""
        if isinstance(value, Availability):
            return value
        if not value:
            return cls.UNKNOWN

        text = " ".join(value.lower().replace("_", " ").replace("-", " ").split())
        for member in cls:
            if text == member.value:
                return member

        # Order matters: "out of stock" must win over "in stock" style phrases
        if "out of stock" in text:
            return cls.OUT_OF_STOCK
        if "low stock" in text:
            return cls.LOW_STOCK
        if "in stock" in text:
            return cls.IN_STOCK
        if "limited" in text:
            return cls.LIMITED
        if "unavailable" in text:
            return cls.UNAVAILABLE
        return cls.UNKNOWN


class AlertKind(str, Enum):
    PRICE_DROP = "price_drop"
    COUPON_ADDED = "coupon_added"
    BACK_IN_STOCK = "back_in_stock"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass
class TrackingScope:
    """A customer's set of monitored items."""

    id: int
    name: str
    active: bool = True
    webhook_url: Optional[str] = None
    max_alerts_per_cycle: Optional[int] = None


@dataclass
class TrackedItem:
    """One monitored product for one tracking scope."""

    id: int
    identifier: str  # ASIN or other opaque external id
    scope_id: int
    priority: int = 3  # 1 (low) - 5 (high)
    title: Optional[str] = None
    last_observed_at: Optional[datetime] = None
    active: bool = True


@dataclass
class ListingData:
    """Structured fields parsed from one product page."""

    price: Optional[Decimal] = None
    list_price: Optional[Decimal] = None
    has_coupon: bool = False
    coupon_amount: Optional[Decimal] = None
    seller_name: Optional[str] = None
    seller_count: int = 1
    availability: Availability = Availability.UNKNOWN
    prime_eligible: bool = False
    rating: Optional[float] = None
    review_count: Optional[int] = None
    title: Optional[str] = None

    def __post_init__(self):
        self.price = to_cents(self.price)
        self.list_price = to_cents(self.list_price)
        self.coupon_amount = to_cents(self.coupon_amount)
        self.availability = Availability.parse(self.availability)
        if self.seller_count is None or self.seller_count < 1:
            self.seller_count = 1

    @property
    def discount_percent(self) -> Optional[float]:
        """Percent below list price, when the listing shows a higher list price."""
        if self.price is None or self.list_price is None:
            return None
        if self.price <= 0 or self.list_price <= self.price:
            return None
        return float((self.list_price - self.price) / self.list_price * 100)

    @classmethod
    def from_dict(cls, data: dict) -> "ListingData":
        """Build from the remote worker's camelCase payload."""

        def _decimal(value) -> Optional[Decimal]:
            if value is None or value == "":
                return None
            return Decimal(str(value))

        rating = data.get("rating")
        review_count = data.get("reviewCount")
        return cls(
            price=_decimal(data.get("price")),
            list_price=_decimal(data.get("listPrice")),
            has_coupon=bool(data.get("hasCoupon", False)),
            coupon_amount=_decimal(data.get("couponAmount")),
            seller_name=data.get("seller"),
            seller_count=int(data.get("sellerCount") or 1),
            availability=Availability.parse(data.get("availability")),
            prime_eligible=bool(data.get("primeEligible", False)),
            rating=float(rating) if rating is not None else None,
            review_count=int(review_count) if review_count is not None else None,
            title=data.get("title"),
        )


@dataclass(frozen=True)
class Observation:
    """One point-in-time snapshot of a tracked item. Immutable once stored."""

    item_id: int
    captured_at: datetime
    price: Optional[Decimal] = None
    list_price: Optional[Decimal] = None
    discount_percent: Optional[float] = None
    has_coupon: bool = False
    coupon_amount: Optional[Decimal] = None
    seller_name: Optional[str] = None
    seller_count: int = 1
    availability: Availability = Availability.UNKNOWN
    prime_eligible: bool = False
    rating: Optional[float] = None
    review_count: Optional[int] = None
    id: Optional[int] = None

    def __post_init__(self):
        for name in ("price", "list_price", "coupon_amount"):
            object.__setattr__(self, name, to_cents(getattr(self, name)))

    @classmethod
    def from_listing(
        cls,
        item_id: int,
        data: ListingData,
        captured_at: datetime,
    ) -> "Observation":
        return cls(
            item_id=item_id,
            captured_at=captured_at,
            price=data.price,
            list_price=data.list_price,
            discount_percent=data.discount_percent,
            has_coupon=data.has_coupon,
            coupon_amount=data.coupon_amount,
            seller_name=data.seller_name,
            seller_count=data.seller_count,
            availability=data.availability,
            prime_eligible=data.prime_eligible,
            rating=data.rating,
            review_count=data.review_count,
        )


@dataclass
class FetchResult:
    """Outcome of fetching one identifier: a listing or a recorded failure."""

    identifier: str
    success: bool
    data: Optional[ListingData] = None
    error: Optional[str] = None
    fetched_at: datetime = field(default_factory=utcnow)

    @classmethod
    def failure(cls, identifier: str, error: str) -> "FetchResult":
        return cls(identifier=identifier, success=False, error=error)


@dataclass
class PriceFeatures:
    """Per-observation-pair feature row, keyed by (item_id, timestamp)."""

    item_id: int
    identifier: str
    timestamp: datetime
    current_price: float
    previous_price: float
    price_delta: float
    price_delta_percent: float
    coupon_flip: bool
    coupon_amount: float
    seller_count: int
    seller_delta: int
    availability_score: float
    prime_eligible: bool
    rating: float
    review_count: int
    price_volatility: float
    is_weekend: bool
    hour_of_day: int


@dataclass(frozen=True)
class FeatureSnapshot:
    """Rolling-window summary statistics for one item."""

    item_id: int
    timestamp: datetime
    avg_price_change: float  # mean signed delta percent
    avg_abs_price_change: float
    price_volatility: float  # coefficient of variation of price
    drop_count: int
    coupon_flips: int
    avg_seller_count: float
    max_price_drop: float  # magnitude of the deepest drop, percent
    max_price_increase: float  # largest rise, percent
    data_points: int


@dataclass
class Alert:
    """A discrete, user-facing event produced by the detector."""

    item_id: int
    identifier: str
    kind: AlertKind
    severity: Severity
    current_price: Optional[Decimal] = None
    previous_price: Optional[Decimal] = None
    price_change: Optional[Decimal] = None
    price_change_percent: Optional[float] = None
    coupon_amount: Optional[Decimal] = None
    availability: Optional[Availability] = None
    title: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        return {
            "asin": self.identifier,
            "title": self.title,
            "alertType": self.kind.value,
            "severity": self.severity.value,
            "currentPrice": _float_or_none(self.current_price),
            "previousPrice": _float_or_none(self.previous_price),
            "priceChange": _float_or_none(self.price_change),
            "priceChangePercent": self.price_change_percent,
            "couponAmount": _float_or_none(self.coupon_amount),
            "availability": self.availability.value if self.availability else None,
            "timestamp": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class ThreatAssessment:
    """Forecast of an upcoming price drop for one item."""

    item_id: int
    identifier: str
    drop_probability: float
    expected_drop: float
    confidence: float
    current_price: Optional[Decimal]
    features: dict
    created_at: datetime
    title: Optional[str] = None
    model_version: str = "rules-v1"


@dataclass
class RankedPrediction:
    """A stored prediction joined with the item's latest observed price."""

    item_id: int
    identifier: str
    drop_probability: float
    expected_drop: float
    confidence: float
    current_price: Optional[float]
    predicted_at: datetime


@dataclass
class CycleSummary:
    """Result of one run cycle, returned to the trigger."""

    scope_id: int
    started_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    items_due: int = 0
    items_fetched: int = 0
    items_failed: int = 0
    items_processed: int = 0
    item_errors: dict[str, str] = field(default_factory=dict)
    alerts_generated: int = 0
    alerts_delivered: int = 0
    threats_identified: int = 0
    top_threats: list[ThreatAssessment] = field(default_factory=list)

    @property
    def fetch_success_rate(self) -> float:
        if self.items_due == 0:
            return 1.0
        return self.items_fetched / self.items_due

    def record_error(self, identifier: str, message: str, limit: int = 10) -> None:
        """Keep the first few per-item errors for operational visibility."""
        if len(self.item_errors) < limit:
            self.item_errors[identifier] = message


def _float_or_none(value) -> Optional[float]:
    return float(value) if value is not None else None
