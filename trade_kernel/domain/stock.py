"""
Stock -- Immutable domain objects for the stock ledger and trade history.

Responsibility:
    Defines the value types the reconciliation engine passes between the
    ledger, the transaction log and the listing mirror: item references,
    pricing hints, price observations, riven attributes and filters, the
    StockEntry DTO (a tagged union over PlainDetail / RivenDetail) and the
    TransactionRecord DTO.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - owned_quantity >= 0; a riven owns 0 or 1.
    - acquisition_count >= owned_quantity is NOT required (units can be
      sold), but acquisition_count never decreases (enforced by the ledger).
    - A StockEntry carries exactly one detail; its kind is derived from the
      detail type, so plain/riven field mixes are unrepresentable.
    - Riven attributes keep their input order (tuple, never a set).

Failure modes:
    - ValueError on construction with negative quantities, non-positive
      attribute magnitudes or inverted ranges.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


class StockKind(str, Enum):
    """Variant tag of a stock entry."""

    PLAIN = "plain"
    RIVEN = "riven"


class StockStatus(str, Enum):
    """
    Lifecycle state of a stock entry.

    PENDING is instantaneous: every entry is created LIVE, hidden or not.
    INACTIVE is reached only by hiding an existing entry.  SOLD is the
    terminal state reported for an entry removed by selling its last unit.
    """

    PENDING = "pending"
    LIVE = "live"
    SOLD = "sold"
    INACTIVE = "inactive"


class TransactionItemKind(str, Enum):
    ITEM = "item"
    RIVEN = "riven"


class TransactionDirection(str, Enum):
    PURCHASE = "purchase"
    SALE = "sale"


@dataclass(frozen=True, slots=True)
class SubType:
    """Variant discriminator on an item identifier (rank, refinement, ...)."""

    rank: int | None = None
    variant: str | None = None

    def __post_init__(self) -> None:
        if self.rank is not None and self.rank < 0:
            raise ValueError(f"Sub-type rank cannot be negative: {self.rank}")

    @property
    def is_empty(self) -> bool:
        return self.rank is None and self.variant is None

    def to_dict(self) -> dict[str, Any]:
        return {"rank": self.rank, "variant": self.variant}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> SubType | None:
        if not data:
            return None
        return cls(rank=data.get("rank"), variant=data.get("variant"))

    def __str__(self) -> str:
        parts = []
        if self.rank is not None:
            parts.append(f"rank={self.rank}")
        if self.variant is not None:
            parts.append(f"variant={self.variant}")
        return ",".join(parts) or "none"


@dataclass(frozen=True, slots=True)
class ItemRef:
    """
    Catalog reference resolved once at entry creation.

    ``url_name`` is the stable marketplace identifier used to match remote
    listings; ``item_id`` is the marketplace's opaque id.
    """

    item_id: str
    url_name: str
    name: str
    unique_name: str
    sub_type: SubType | None = None

    def same_item(self, other: ItemRef) -> bool:
        """True when both refer to the same item and sub-type."""
        return self.url_name == other.url_name and _norm(self.sub_type) == _norm(
            other.sub_type
        )


def _norm(sub_type: SubType | None) -> SubType | None:
    if sub_type is None or sub_type.is_empty:
        return None
    return sub_type


@dataclass(frozen=True, slots=True)
class PricingHint:
    """Advisory prices. Never enforced by the engine, only forwarded."""

    minimum_price: int | None = None
    list_price: int | None = None

    def __post_init__(self) -> None:
        for name in ("minimum_price", "list_price"):
            value = getattr(self, name)
            if value is not None and value < 0:
                raise ValueError(f"{name} cannot be negative: {value}")


@dataclass(frozen=True, slots=True)
class PriceObservation:
    price: int
    observed_at: datetime

    def to_dict(self) -> dict[str, Any]:
        return {"price": self.price, "observed_at": self.observed_at.isoformat()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PriceObservation:
        return cls(
            price=int(data["price"]),
            observed_at=datetime.fromisoformat(data["observed_at"]),
        )


@dataclass(frozen=True, slots=True)
class RivenAttribute:
    """
    One rolled stat on a riven.

    ``value`` is the magnitude; ``positive`` says whether it is a buff or a
    curse.  Decimal keeps the exact rolled value through persistence.
    """

    url_name: str
    positive: bool
    value: Decimal

    def __post_init__(self) -> None:
        if not isinstance(self.value, Decimal):
            object.__setattr__(self, "value", Decimal(str(self.value)))
        if self.value <= 0:
            raise ValueError(
                f"Attribute magnitude must be positive: {self.url_name}={self.value}"
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "url_name": self.url_name,
            "positive": self.positive,
            "value": str(self.value),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RivenAttribute:
        return cls(
            url_name=data["url_name"],
            positive=bool(data["positive"]),
            value=Decimal(str(data["value"])),
        )


@dataclass(frozen=True, slots=True)
class IntRange:
    """Inclusive integer range; either bound may be open."""

    min: int | None = None
    max: int | None = None

    def __post_init__(self) -> None:
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError(f"Inverted range: {self.min} > {self.max}")

    def contains(self, value: int) -> bool:
        if self.min is not None and value < self.min:
            return False
        if self.max is not None and value > self.max:
            return False
        return True

    def to_dict(self) -> dict[str, Any]:
        return {"min": self.min, "max": self.max}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> IntRange | None:
        if data is None:
            return None
        return cls(min=data.get("min"), max=data.get("max"))


@dataclass(frozen=True, slots=True)
class RivenMatchFilter:
    """
    Criteria a remote auction's riven must meet to count as comparable.

    Stored on a riven entry and used when importing from or comparing
    against auction listings.  A disabled filter matches nothing.
    """

    enabled: bool = False
    rank: IntRange | None = None
    mastery_rank: IntRange | None = None
    re_rolls: IntRange | None = None
    polarity: str | None = None
    required_negative: bool = False
    attributes: tuple[str, ...] = ()

    def matches(self, detail: RivenDetail) -> bool:
        if not self.enabled:
            return False
        if self.rank is not None and not self.rank.contains(detail.rank):
            return False
        if self.mastery_rank is not None and not self.mastery_rank.contains(
            detail.mastery_rank
        ):
            return False
        if self.re_rolls is not None and not self.re_rolls.contains(detail.re_rolls):
            return False
        if self.polarity is not None and self.polarity != detail.polarity:
            return False
        if self.required_negative and not any(
            not a.positive for a in detail.attributes
        ):
            return False
        positives = {a.url_name for a in detail.attributes if a.positive}
        return all(name in positives for name in self.attributes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "enabled": self.enabled,
            "rank": self.rank.to_dict() if self.rank else None,
            "mastery_rank": self.mastery_rank.to_dict() if self.mastery_rank else None,
            "re_rolls": self.re_rolls.to_dict() if self.re_rolls else None,
            "polarity": self.polarity,
            "required_negative": self.required_negative,
            "attributes": list(self.attributes),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> RivenMatchFilter | None:
        if data is None:
            return None
        return cls(
            enabled=bool(data.get("enabled", False)),
            rank=IntRange.from_dict(data.get("rank")),
            mastery_rank=IntRange.from_dict(data.get("mastery_rank")),
            re_rolls=IntRange.from_dict(data.get("re_rolls")),
            polarity=data.get("polarity"),
            required_negative=bool(data.get("required_negative", False)),
            attributes=tuple(data.get("attributes") or ()),
        )


@dataclass(frozen=True, slots=True)
class PlainDetail:
    """Detail of a plain (fungible) item entry.  Carries no fields."""


@dataclass(frozen=True, slots=True)
class RivenDetail:
    """Detail of a uniquely-rolled riven entry."""

    mod_name: str
    polarity: str
    mastery_rank: int
    re_rolls: int
    rank: int
    riven_type: str | None = None
    attributes: tuple[RivenAttribute, ...] = ()
    match_filter: RivenMatchFilter | None = None

    def __post_init__(self) -> None:
        if self.mastery_rank < 0 or self.re_rolls < 0 or self.rank < 0:
            raise ValueError(
                "Riven mastery_rank, re_rolls and rank must be non-negative"
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "mod_name": self.mod_name,
            "polarity": self.polarity,
            "mastery_rank": self.mastery_rank,
            "re_rolls": self.re_rolls,
            "rank": self.rank,
            "riven_type": self.riven_type,
            "attributes": [a.to_dict() for a in self.attributes],
            "match_filter": (
                self.match_filter.to_dict() if self.match_filter else None
            ),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RivenDetail:
        return cls(
            mod_name=data["mod_name"],
            polarity=data["polarity"],
            mastery_rank=int(data["mastery_rank"]),
            re_rolls=int(data["re_rolls"]),
            rank=int(data["rank"]),
            riven_type=data.get("riven_type"),
            attributes=tuple(
                RivenAttribute.from_dict(a) for a in data.get("attributes") or ()
            ),
            match_filter=RivenMatchFilter.from_dict(data.get("match_filter")),
        )

    def snapshot(self) -> dict[str, Any]:
        """Riven state recorded in a transaction's ``extra``."""
        data = self.to_dict()
        data.pop("match_filter")
        return data


@dataclass(frozen=True)
class StockEntry:
    """
    Immutable DTO for one owned position.

    Contract:
        Returned by the ledger and the engine; never an ORM object.
    """

    id: UUID
    item: ItemRef
    detail: PlainDetail | RivenDetail
    owned_quantity: int
    acquisition_count: int
    status: StockStatus
    is_hidden: bool = False
    pricing: PricingHint | None = None
    price_history: tuple[PriceObservation, ...] = ()
    remote_listing_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.owned_quantity < 0:
            raise ValueError(f"owned_quantity cannot be negative: {self.owned_quantity}")
        if isinstance(self.detail, RivenDetail) and self.owned_quantity > 1:
            raise ValueError("A riven entry owns at most one unit")

    @property
    def kind(self) -> StockKind:
        if isinstance(self.detail, RivenDetail):
            return StockKind.RIVEN
        return StockKind.PLAIN

    @property
    def is_riven(self) -> bool:
        return self.kind == StockKind.RIVEN

    @property
    def is_active(self) -> bool:
        """Counted in active totals: owns something and is not hidden."""
        return self.owned_quantity > 0 and not self.is_hidden


@dataclass(frozen=True)
class TransactionRecord:
    """Immutable DTO for one completed trade."""

    item: ItemRef
    item_kind: TransactionItemKind
    direction: TransactionDirection
    quantity: int
    unit_price: int
    extra: dict[str, Any] | None = None
    id: UUID | None = None
    created_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.quantity <= 0:
            raise ValueError(f"Transaction quantity must be positive: {self.quantity}")
        if self.unit_price < 0:
            raise ValueError(f"Transaction price cannot be negative: {self.unit_price}")

    @property
    def sub_type(self) -> SubType | None:
        return self.item.sub_type

    @property
    def total(self) -> int:
        return self.quantity * self.unit_price
