"""Base classes for the delivery asset type system.

MovementCategory -- enum for how an asset reaches a zone
AssetType        -- abstract base every concrete asset type subclasses
"""

from __future__ import annotations

from enum import Enum
from typing import ClassVar


class MovementCategory(Enum):
    """How an asset moves between its depot and a zone."""
    GROUND = "ground"
    AIR = "air"
    SOIL = "soil"


class AssetType:
    """Abstract base for every asset type definition.

    Subclasses MUST set all ClassVar fields.  The registry discovers
    concrete subclasses automatically at import time.
    """

    # -- identity --
    type_id: ClassVar[str]
    display_name: ClassVar[str]
    icon: ClassVar[str]

    # -- movement --
    category: ClassVar[MovementCategory]
    speed_mps: ClassVar[float]

    # -- payload --
    capacity_unit: ClassVar[str] = "liters"
    liters_per_unit: ClassVar[float] = 1.0  # water delivered per capacity unit
    service_minutes: ClassVar[float]        # on-site time per trip

    # -- defaults used when the registry omits a field --
    default_capacity: ClassVar[float]
    default_battery_j: ClassVar[float]
    default_recharge_interval_h: ClassVar[float]

    @classmethod
    def travel_hours(cls, distance_m: float) -> float:
        return distance_m / cls.speed_mps / 3600.0

    @classmethod
    def is_flying(cls) -> bool:
        return cls.category is MovementCategory.AIR

    def __repr__(self) -> str:
        return f"<AssetType {self.type_id}>"
