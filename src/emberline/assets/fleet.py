"""Asset and Mission — runtime state of one delivery asset.

An Asset is the registry entry plus everything that changes tick to tick:
battery, position, state-machine status, the mission it is flying, and any
further legs planned behind it in the same tick.
Battery is in joules.  Capacity is in the type's capacity unit (liters for
trucks and drones, injections for nanobots).
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field

from emberline.assets.base import AssetType
from emberline.assets.registry import get_type
from emberline.errors import ConfigurationError


@dataclass
class Mission:
    """A committed delivery: one asset, one zone, one or more trips.

    Attributes:
        zone_id: Zone being serviced.
        tick: Tick in which the mission was planned.
        trips: Number of depot -> zone -> depot round trips.
        distance_m: One-way depot-to-zone distance.
        energy_j: Total energy reserved for the mission.
        volume_l: Water the mission delivers on completion.
        outbound_h: Hours until the asset first reaches the zone.
        duration_h: Hours from departure until the asset is back at base.
        elapsed_h: Hours flown so far.
    """

    zone_id: str
    tick: int
    trips: int
    distance_m: float
    energy_j: float
    volume_l: float
    outbound_h: float
    duration_h: float
    elapsed_h: float = 0.0

    @property
    def progress(self) -> float:
        if self.duration_h <= 0.0:
            return 1.0
        return min(1.0, self.elapsed_h / self.duration_h)

    @property
    def service_end_h(self) -> float:
        """Elapsed time at which the last delivery is made."""
        return self.duration_h - self.outbound_h

    def to_dict(self) -> dict:
        return {
            "zone_id": self.zone_id,
            "tick": self.tick,
            "trips": self.trips,
            "distance_m": self.distance_m,
            "energy_j": self.energy_j,
            "volume_l": self.volume_l,
            "outbound_h": self.outbound_h,
            "duration_h": self.duration_h,
            "elapsed_h": self.elapsed_h,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Mission":
        return cls(
            zone_id=str(data["zone_id"]),
            tick=int(data["tick"]),
            trips=int(data["trips"]),
            distance_m=float(data["distance_m"]),
            energy_j=float(data["energy_j"]),
            volume_l=float(data["volume_l"]),
            outbound_h=float(data["outbound_h"]),
            duration_h=float(data["duration_h"]),
            elapsed_h=float(data.get("elapsed_h", 0.0)),
        )


@dataclass
class Asset:
    """A delivery asset registered with the engine."""

    asset_id: str
    asset_type: str
    capacity: float
    depot: tuple[float, float]
    battery_j: float
    battery_max_j: float
    recharge_interval_h: float
    next_recharge_h: float = 0.0
    position: tuple[float, float] | None = None
    status: str = "idle"
    mission: Mission | None = field(default=None)
    # Legs planned in the same tick, flown back to back after ``mission``
    queued: list[Mission] = field(default_factory=list)

    def __post_init__(self) -> None:
        if self.position is None:
            self.position = self.depot
        if self.next_recharge_h <= 0.0:
            self.next_recharge_h = self.recharge_interval_h

    @property
    def type_cls(self) -> type[AssetType]:
        cls = get_type(self.asset_type)
        if cls is None:
            raise ConfigurationError(f"Unknown asset type '{self.asset_type}' for {self.asset_id}")
        return cls

    @property
    def capacity_liters(self) -> float:
        return self.capacity * self.type_cls.liters_per_unit

    @property
    def state_of_charge(self) -> float:
        if self.battery_max_j <= 0.0:
            return 0.0
        return max(0.0, self.battery_j) / self.battery_max_j

    @property
    def available(self) -> bool:
        return self.status == "idle" and self.mission is None

    def validate(self) -> None:
        """Raise ConfigurationError when the registry entry is unusable."""
        _ = self.type_cls  # unknown type raises
        if not math.isfinite(self.capacity) or self.capacity <= 0.0:
            raise ConfigurationError(f"Asset {self.asset_id} capacity must be > 0 (got {self.capacity})")
        if self.battery_max_j <= 0.0:
            raise ConfigurationError(f"Asset {self.asset_id} battery must be > 0")
        if self.recharge_interval_h <= 0.0:
            raise ConfigurationError(f"Asset {self.asset_id} recharge interval must be > 0")

    def to_dict(self) -> dict:
        return {
            "asset_id": self.asset_id,
            "asset_type": self.asset_type,
            "capacity": self.capacity,
            "depot": list(self.depot),
            "position": list(self.position),
            "battery_j": self.battery_j,
            "battery_max_j": self.battery_max_j,
            "recharge_interval_h": self.recharge_interval_h,
            "next_recharge_h": self.next_recharge_h,
            "status": self.status,
            "mission": self.mission.to_dict() if self.mission else None,
            "queued": [m.to_dict() for m in self.queued],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Asset":
        """Build an Asset; omitted fields fall back to the type's defaults."""
        type_id = str(data["asset_type"])
        type_cls = get_type(type_id)
        if type_cls is None:
            raise ConfigurationError(f"Unknown asset type '{type_id}'")
        depot = data.get("depot", (0.0, 0.0))
        position = data.get("position")
        battery_max = float(data.get("battery_max_j", type_cls.default_battery_j))
        mission = data.get("mission")
        return cls(
            asset_id=str(data["asset_id"]),
            asset_type=type_id,
            capacity=float(data.get("capacity", type_cls.default_capacity)),
            depot=(float(depot[0]), float(depot[1])),
            position=(float(position[0]), float(position[1])) if position else None,
            battery_j=float(data.get("battery_j", battery_max)),
            battery_max_j=battery_max,
            recharge_interval_h=float(data.get("recharge_interval_h", type_cls.default_recharge_interval_h)),
            next_recharge_h=float(data.get("next_recharge_h", 0.0)),
            status=str(data.get("status", "idle")),
            mission=Mission.from_dict(mission) if mission else None,
            queued=[Mission.from_dict(m) for m in data.get("queued") or ()],
        )
