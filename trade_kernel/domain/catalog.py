"""
Catalog -- Read-only item and riven-attribute lookup.

Responsibility:
    Maps a stable item identifier plus optional sub-type to a canonical
    ItemDescriptor, and a riven attribute identifier to an
    AttributeDescriptor.  The reconciliation engine validates every create
    and import against a CatalogResolver before touching the ledger.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  ``StaticCatalog`` is the in-memory
    resolver; ``trade_kernel.services.catalog_loader`` builds one from a
    YAML catalog file.

Invariants enforced:
    - Unknown identifiers, sub-types and attributes raise ValidationError
      subclasses, so every catalog failure aborts an action before any
      mutation.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Protocol

from trade_kernel.domain.stock import ItemRef, SubType
from trade_kernel.exceptions import (
    InvalidAttributeError,
    InvalidSubTypeError,
    UnknownItemError,
)


class ItemCategory(str, Enum):
    ITEM = "item"
    RIVEN_WEAPON = "riven_weapon"


@dataclass(frozen=True, slots=True)
class ItemDescriptor:
    """
    Canonical catalog description of a tradeable item.

    ``max_rank`` and ``variants`` define the valid sub-types: an item with
    neither accepts no sub-type at all.
    """

    item_id: str
    url_name: str
    name: str
    unique_name: str
    category: ItemCategory = ItemCategory.ITEM
    riven_type: str | None = None
    max_rank: int | None = None
    variants: tuple[str, ...] = ()

    def to_ref(self, sub_type: SubType | None = None) -> ItemRef:
        return ItemRef(
            item_id=self.item_id,
            url_name=self.url_name,
            name=self.name,
            unique_name=self.unique_name,
            sub_type=sub_type if sub_type is not None and not sub_type.is_empty else None,
        )


@dataclass(frozen=True, slots=True)
class AttributeDescriptor:
    url_name: str
    effect: str
    units: str | None = None


class CatalogResolver(Protocol):
    """Read-only catalog lookup consumed by the engine."""

    def resolve(
        self, identifier: str, sub_type: SubType | None = None
    ) -> ItemDescriptor: ...

    def resolve_attribute(self, identifier: str) -> AttributeDescriptor: ...


class StaticCatalog:
    """
    In-memory CatalogResolver.

    Contract:
        Items and attributes are fixed at construction.  Lookups are by
        ``url_name``.
    """

    def __init__(
        self,
        items: Iterable[ItemDescriptor] = (),
        attributes: Iterable[AttributeDescriptor] = (),
    ):
        self._items = {item.url_name: item for item in items}
        self._attributes = {attr.url_name: attr for attr in attributes}

    def __len__(self) -> int:
        return len(self._items)

    def resolve(
        self, identifier: str, sub_type: SubType | None = None
    ) -> ItemDescriptor:
        """
        Resolve an item and validate its sub-type.

        Raises:
            UnknownItemError: identifier not in the catalog.
            InvalidSubTypeError: rank above ``max_rank``, unknown variant,
                or a sub-type given for an item that has none.
        """
        descriptor = self._items.get(identifier)
        if descriptor is None:
            raise UnknownItemError(identifier)
        if sub_type is not None and not sub_type.is_empty:
            self._check_sub_type(descriptor, sub_type)
        return descriptor

    def resolve_attribute(self, identifier: str) -> AttributeDescriptor:
        attribute = self._attributes.get(identifier)
        if attribute is None:
            raise InvalidAttributeError(identifier)
        return attribute

    @staticmethod
    def _check_sub_type(descriptor: ItemDescriptor, sub_type: SubType) -> None:
        if sub_type.rank is not None:
            if descriptor.max_rank is None:
                raise InvalidSubTypeError(
                    descriptor.url_name, str(sub_type), "item has no ranks"
                )
            if sub_type.rank > descriptor.max_rank:
                raise InvalidSubTypeError(
                    descriptor.url_name,
                    str(sub_type),
                    f"rank exceeds max rank {descriptor.max_rank}",
                )
        if sub_type.variant is not None and sub_type.variant not in descriptor.variants:
            raise InvalidSubTypeError(
                descriptor.url_name,
                str(sub_type),
                f"variant not in {list(descriptor.variants)}",
            )
