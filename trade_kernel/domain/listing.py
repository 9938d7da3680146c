"""
Listing -- Contract for the remote marketplace's "my listings" surface.

Responsibility:
    Describes what the reconciliation engine needs from the marketplace:
    list the trader's open orders and auctions, create, update, close and
    delete them.  Transport, authentication and rate limiting live in the
    adapter that implements ``ListingMirror``.

Architecture position:
    Kernel > Domain -- pure types and a Protocol, zero I/O.

Failure contract for adapters:
    - ``delete``/``update``/``close`` on a listing that is already gone
      MUST raise ``RemoteAlreadyAbsentError``.
    - Any transport failure MUST raise ``RemoteUnavailableError``.
    The engine distinguishes the two by type only.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol, Sequence

from trade_kernel.domain.stock import RivenAttribute, SubType


class ListingKind(str, Enum):
    """Order-book listing (plain items) or auction (rivens)."""

    ORDER = "order"
    AUCTION = "auction"


class TradeDirection(str, Enum):
    BUY = "buy"
    SELL = "sell"


@dataclass(frozen=True, slots=True)
class AuctionItem:
    """Riven descriptor embedded in a remote auction."""

    weapon_url: str
    mod_name: str
    polarity: str
    mastery_rank: int
    re_rolls: int
    mod_rank: int
    attributes: tuple[RivenAttribute, ...] = ()


@dataclass(frozen=True, slots=True)
class RemoteListing:
    id: str
    kind: ListingKind
    direction: TradeDirection
    item_url: str
    price: int
    quantity: int = 1
    visible: bool = True
    sub_type: SubType | None = None
    auction_item: AuctionItem | None = None

    def matches_item(self, item_url: str, sub_type: SubType | None) -> bool:
        """True when this listing is for the given item and sub-type."""
        if self.item_url != item_url:
            return False
        mine = self.sub_type if self.sub_type and not self.sub_type.is_empty else None
        theirs = sub_type if sub_type and not sub_type.is_empty else None
        return mine == theirs


@dataclass(frozen=True, slots=True)
class ListingSpec:
    """Desired state of a listing, sent on create/update."""

    item_url: str
    kind: ListingKind
    direction: TradeDirection
    price: int
    quantity: int
    visible: bool = True
    sub_type: SubType | None = None
    minimum_price: int | None = None


class ListingMirror(Protocol):
    """Abstract remote listing API consumed by the engine."""

    def list_open(self) -> Sequence[RemoteListing]: ...

    def create(self, spec: ListingSpec) -> RemoteListing: ...

    def update(self, listing_id: str, spec: ListingSpec) -> RemoteListing: ...

    def close(self, listing_id: str, direction: TradeDirection) -> None: ...

    def delete(self, listing_id: str) -> RemoteListing: ...
