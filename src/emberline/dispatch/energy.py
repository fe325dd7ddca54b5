"""EnergyBudgetModel — mission energy cost and feasibility per asset type.

    Drone:    E = 0.5*distance_m + 1000 + 500*time_airborne_minutes
    Nanobot:  E = 0.1*distance_m + 50*injection_count
    Truck:    E = 4.0*distance_m + 200*service_minutes

Energies are joules.  A trip is one depot -> zone -> depot round trip, so
its distance is twice the one-way leg.  A mission is feasible only when its
energy fits in what the asset holds *now*: batteries are only restored at
the asset's fixed recharge windows, never mid-mission.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from emberline.assets.fleet import Asset

DRONE_J_PER_M = 0.5
DRONE_TAKEOFF_J = 1000.0
DRONE_J_PER_AIRBORNE_MIN = 500.0

NANOBOT_J_PER_M = 0.1
NANOBOT_J_PER_INJECTION = 50.0

TRUCK_J_PER_M = 4.0
TRUCK_J_PER_SERVICE_MIN = 200.0


def drone_energy(distance_m: float, airborne_minutes: float) -> float:
    return DRONE_J_PER_M * distance_m + DRONE_TAKEOFF_J + DRONE_J_PER_AIRBORNE_MIN * airborne_minutes


def nanobot_energy(distance_m: float, injection_count: float) -> float:
    return NANOBOT_J_PER_M * distance_m + NANOBOT_J_PER_INJECTION * injection_count


def truck_energy(distance_m: float, service_minutes: float) -> float:
    return TRUCK_J_PER_M * distance_m + TRUCK_J_PER_SERVICE_MIN * service_minutes


def trip_count(volume: float, capacity: float) -> int:
    """Trips needed to move ``volume`` in loads of ``capacity`` (ceiling)."""
    if capacity <= 0.0:
        raise ValueError(f"capacity must be > 0 (got {capacity})")
    if volume <= 0.0:
        return 0
    return math.ceil(volume / capacity)


@dataclass(frozen=True)
class MissionEstimate:
    trips: int
    per_trip_j: float
    energy_j: float
    outbound_h: float
    duration_h: float
    feasible: bool


class EnergyBudgetModel:
    """Stateless energy arithmetic over Asset records."""

    def trip_energy(self, asset: Asset, distance_m: float) -> float:
        """Energy for one full-load round trip over a one-way ``distance_m``."""
        type_cls = asset.type_cls
        round_trip_m = 2.0 * distance_m
        if asset.asset_type == "drone":
            airborne_min = type_cls.travel_hours(round_trip_m) * 60.0 + type_cls.service_minutes
            return drone_energy(round_trip_m, airborne_min)
        if asset.asset_type == "nanobot":
            return nanobot_energy(round_trip_m, asset.capacity)
        return truck_energy(round_trip_m, type_cls.service_minutes)

    def trip_hours(self, asset: Asset, distance_m: float) -> float:
        type_cls = asset.type_cls
        return type_cls.travel_hours(2.0 * distance_m) + type_cls.service_minutes / 60.0

    def return_cost(self, asset: Asset, distance_m: float) -> float:
        """Energy to fly/drive an empty one-way leg back to the depot."""
        type_cls = asset.type_cls
        if asset.asset_type == "drone":
            return drone_energy(distance_m, type_cls.travel_hours(distance_m) * 60.0)
        if asset.asset_type == "nanobot":
            return nanobot_energy(distance_m, 0)
        return truck_energy(distance_m, 0.0)

    def estimate(self, asset: Asset, distance_m: float, trips: int) -> MissionEstimate:
        per_trip = self.trip_energy(asset, distance_m)
        energy = per_trip * trips
        return MissionEstimate(
            trips=trips,
            per_trip_j=per_trip,
            energy_j=energy,
            outbound_h=asset.type_cls.travel_hours(distance_m),
            duration_h=self.trip_hours(asset, distance_m) * trips,
            feasible=self.is_feasible(asset, energy),
        )

    def is_feasible(self, asset: Asset, energy_j: float) -> bool:
        """True when the asset holds ``energy_j`` before its next recharge."""
        return energy_j <= asset.battery_j

    def affordable_trips(self, asset: Asset, distance_m: float, wanted: int,
                         time_budget_h: float, strict_time: bool = False) -> int:
        """Trips the asset can fly now, capped by battery and the time budget.

        A single trip longer than the time budget is still allowed unless
        ``strict_time`` is set; the mission then spans several ticks.  Legs
        planned behind an earlier one in the same tick pass ``strict_time``
        so they only use time that is actually left.
        """
        if wanted <= 0:
            return 0
        per_trip = self.trip_energy(asset, distance_m)
        by_energy = math.floor(asset.battery_j / per_trip) if per_trip > 0.0 else wanted
        trip_h = self.trip_hours(asset, distance_m)
        if trip_h <= 0.0:
            by_time = wanted
        elif strict_time:
            by_time = math.floor(time_budget_h / trip_h)
        else:
            by_time = max(1, math.floor(time_budget_h / trip_h))
        return max(0, min(wanted, by_energy, by_time))

    def recharge_due(self, asset: Asset, now_h: float) -> bool:
        return now_h >= asset.next_recharge_h

    def recharge(self, asset: Asset, now_h: float) -> None:
        """Restore the battery and schedule the next window after ``now_h``."""
        asset.battery_j = asset.battery_max_j
        windows_passed = math.floor((now_h - asset.next_recharge_h) / asset.recharge_interval_h) + 1
        asset.next_recharge_h += windows_passed * asset.recharge_interval_h
