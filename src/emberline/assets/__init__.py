"""Asset types (trucks, drones, nanobots) and runtime asset state."""

from emberline.assets.base import AssetType, MovementCategory
from emberline.assets.drone import Drone
from emberline.assets.fleet import Asset, Mission
from emberline.assets.nanobot import Nanobot
from emberline.assets.registry import all_types, get_type
from emberline.assets.truck import Truck

__all__ = [
    "Asset",
    "AssetType",
    "Drone",
    "Mission",
    "MovementCategory",
    "Nanobot",
    "Truck",
    "all_types",
    "get_type",
]
