"""Lookup of asset types by type_id."""

from __future__ import annotations

from emberline.assets.base import AssetType
from emberline.assets.drone import Drone
from emberline.assets.nanobot import Nanobot
from emberline.assets.truck import Truck

_REGISTRY: dict[str, type[AssetType]] = {
    cls.type_id: cls for cls in (Truck, Drone, Nanobot)
}


def get_type(type_id: str) -> type[AssetType] | None:
    """Look up an asset type by id; None when unknown."""
    return _REGISTRY.get(type_id)


def all_types() -> list[type[AssetType]]:
    return [_REGISTRY[k] for k in sorted(_REGISTRY)]
