"""
Catalog Loader (``trade_kernel.services.catalog_loader``).

Responsibility
--------------
Reads a YAML catalog file and builds a ``StaticCatalog``.  The file has
three top-level lists:

    items:             tradeable items (optional max_rank / variants)
    riven_weapons:     weapons a riven can be rolled for
    riven_attributes:  attribute identifiers valid on a riven

Failure modes
-------------
* Missing file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Duplicate ``url_name``  -> ``ValueError``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from trade_kernel.domain.catalog import (
    AttributeDescriptor,
    ItemCategory,
    ItemDescriptor,
    StaticCatalog,
)
from trade_kernel.logging_config import get_logger

logger = get_logger("services.catalog_loader")


def parse_item(
    data: dict[str, Any],
    category: ItemCategory = ItemCategory.ITEM,
) -> ItemDescriptor:
    """Parse one item or riven weapon entry."""
    max_rank = data.get("max_rank")
    return ItemDescriptor(
        item_id=str(data["item_id"]),
        url_name=data["url_name"],
        name=data["name"],
        unique_name=data.get("unique_name", ""),
        category=category,
        riven_type=data.get("riven_type"),
        max_rank=int(max_rank) if max_rank is not None else None,
        variants=tuple(data.get("variants", ())),
    )


def parse_attribute(data: dict[str, Any]) -> AttributeDescriptor:
    return AttributeDescriptor(
        url_name=data["url_name"],
        effect=data.get("effect", data["url_name"]),
        units=data.get("units"),
    )


def parse_catalog(data: dict[str, Any]) -> StaticCatalog:
    """
    Build a StaticCatalog from an already-parsed mapping.

    Raises:
        KeyError: an entry lacks ``item_id``, ``url_name`` or ``name``.
        ValueError: two entries share a ``url_name``.
    """
    items = [parse_item(d) for d in data.get("items", [])]
    items.extend(
        parse_item(d, ItemCategory.RIVEN_WEAPON) for d in data.get("riven_weapons", [])
    )
    attributes = [parse_attribute(d) for d in data.get("riven_attributes", [])]

    seen: set[str] = set()
    for item in items:
        if item.url_name in seen:
            raise ValueError(f"Duplicate catalog url_name: {item.url_name}")
        seen.add(item.url_name)

    return StaticCatalog(items=items, attributes=attributes)


def load_catalog(path: Path | str) -> StaticCatalog:
    """Load a YAML catalog file."""
    path = Path(path)
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    catalog = parse_catalog(data)
    logger.info(
        "catalog_loaded",
        extra={
            "catalog_path": str(path),
            "item_count": len(catalog),
            "attribute_count": len(data.get("riven_attributes", [])),
        },
    )
    return catalog
