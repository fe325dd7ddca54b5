"""RouteAssigner — greedy constrained assignment of assets to ranked zones.

One pass per tick:

  1. Walk zones best-first (descending Pz, ascending id).  Each zone gets at
     most one assignment per tick; zones with no outstanding demand are
     skipped.
  2. Pick the nearest asset that is not yet exhausted (ties by asset id) and
     can afford at least one trip.  When none can, the zone is recorded
     unmet (backlog) and the walk moves on.
  3. R = ceil(volume / capacity).  The asset flies min(R, affordable) trips
     (partial fulfillment is allowed); the mission energy is reserved from
     its battery and its time left in the tick shrinks by the mission time.
  4. Stop once no asset has budget left or no zone has demand.

An asset's first mission may run past the end of the tick.  Further legs
only use time still left in the tick; they are queued on the asset behind
its first mission and start from the depot.

Strict greedy-by-Pz is deliberate: a zone whose Pz never beats its peers
can wait forever while a static fleet keeps servicing the leaders.  The
optional ``min_service_interval_ticks`` guard is the extension point for
operators who want a fairness floor; it is off by default.

The pass is pure with respect to its inputs: assets are copied, the result
carries the updated copies, and the caller decides whether to commit them.
Re-running on the same inputs yields the same manifest.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Iterable, Mapping

from loguru import logger

from emberline.assets.fleet import Asset, Mission
from emberline.dispatch.energy import EnergyBudgetModel, trip_count
from emberline.dispatch.priority import RankedZone
from emberline.geo.reference import distance_m
from emberline.grid.cell import Patch
from emberline.simulation.asset_states import step_asset

if TYPE_CHECKING:
    from emberline.config import EngineConfig


class AssignmentStatus(str, Enum):
    PLANNED = "planned"
    INFEASIBLE = "infeasible"
    COMPLETED = "completed"
    INCOMPLETE = "incomplete"


@dataclass(frozen=True)
class Assignment:
    """One row of the route manifest: asset -> zone -> trips -> energy -> status."""

    asset_id: str
    zone_id: str
    trips: int
    distance_m: float
    energy_j: float
    volume_l: float
    tick: int
    status: AssignmentStatus

    def to_dict(self) -> dict:
        return {
            "asset_id": self.asset_id,
            "zone_id": self.zone_id,
            "trips": self.trips,
            "distance_m": self.distance_m,
            "energy_j": self.energy_j,
            "volume_l": self.volume_l,
            "tick": self.tick,
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Assignment":
        return cls(
            asset_id=data["asset_id"],
            zone_id=data["zone_id"],
            trips=int(data["trips"]),
            distance_m=float(data["distance_m"]),
            energy_j=float(data["energy_j"]),
            volume_l=float(data["volume_l"]),
            tick=int(data["tick"]),
            status=AssignmentStatus(data["status"]),
        )


@dataclass(frozen=True)
class BacklogEntry:
    """A zone whose demand was not (fully) met this tick.

    reason: "partial", "infeasible" (no asset could afford a trip),
    "no_assets" (every asset exhausted or busy).
    """

    zone_id: str
    unmet_l: float
    reason: str

    def to_dict(self) -> dict:
        return {"zone_id": self.zone_id, "unmet_l": self.unmet_l, "reason": self.reason}

    @classmethod
    def from_dict(cls, data: dict) -> "BacklogEntry":
        return cls(zone_id=data["zone_id"], unmet_l=float(data["unmet_l"]), reason=data["reason"])


@dataclass
class AssignmentResult:
    manifest: tuple[Assignment, ...]
    backlog: tuple[BacklogEntry, ...]
    assets: dict[str, Asset]


class RouteAssigner:
    """Greedy nearest-asset assignment over a Pz ranking."""

    def __init__(
        self,
        energy_model: EnergyBudgetModel | None = None,
        tick_duration_h: float = 1.0,
        cell_area_m2: float = 100.0,
        min_service_interval_ticks: int | None = None,
    ) -> None:
        self.energy = energy_model or EnergyBudgetModel()
        self.tick_duration_h = tick_duration_h
        self.cell_area_m2 = cell_area_m2
        self.min_service_interval_ticks = min_service_interval_ticks

    @classmethod
    def from_config(cls, config: "EngineConfig", energy_model: EnergyBudgetModel | None = None) -> "RouteAssigner":
        return cls(
            energy_model=energy_model,
            tick_duration_h=config.tick_duration_h,
            cell_area_m2=config.cell_area_m2,
            min_service_interval_ticks=config.min_service_interval_ticks,
        )

    def zone_volume_l(self, zone: Patch) -> float:
        """Water needed to clear the deficit: 1 mm over 1 m^2 is 1 liter."""
        return max(0.0, zone.deficit_mm) * len(zone.cell_ids) * self.cell_area_m2

    def _walk_order(self, ranked: Iterable[RankedZone], zones: Mapping[str, Patch],
                    tick: int) -> list[RankedZone]:
        order = list(ranked)
        interval = self.min_service_interval_ticks
        if interval is None:
            return order

        def overdue(rz: RankedZone) -> bool:
            last = zones[rz.zone_id].last_serviced_tick
            return tick - (last if last is not None else 0) >= interval

        # Stable partition keeps Pz order inside each group
        return [rz for rz in order if overdue(rz)] + [rz for rz in order if not overdue(rz)]

    def assign(
        self,
        ranked: Iterable[RankedZone],
        zones: Mapping[str, Patch],
        assets: Mapping[str, Asset],
        tick: int,
        in_flight_l: Mapping[str, float] | None = None,
    ) -> AssignmentResult:
        """Run one greedy assignment pass.

        Args:
            ranked: Zones best-first, as produced by PriorityScheduler.
            zones: Zone state by id.
            assets: Asset registry by id (not mutated).
            tick: Current tick, stamped on every manifest row.
            in_flight_l: Liters already on their way to each zone.

        Returns:
            AssignmentResult with the manifest, the backlog and updated
            copies of every asset.
        """
        in_flight_l = in_flight_l or {}
        fleet = {aid: copy.deepcopy(assets[aid]) for aid in sorted(assets)}
        free = [fleet[aid] for aid in sorted(fleet) if fleet[aid].available]
        remaining_h = {a.asset_id: self.tick_duration_h for a in free}
        used: set[str] = set()

        manifest: list[Assignment] = []
        backlog: list[BacklogEntry] = []

        for rz in self._walk_order(ranked, zones, tick):
            zone = zones.get(rz.zone_id)
            if zone is None or zone.excluded:
                continue
            demand = self.zone_volume_l(zone) - in_flight_l.get(zone.zone_id, 0.0)
            if demand <= 0.0:
                continue
            if not free:
                backlog.append(BacklogEntry(zone.zone_id, demand, "no_assets"))
                continue

            # A used asset starts its next leg from the depot
            candidates = sorted(
                ((distance_m(a.depot if a.asset_id in used else a.position, zone.centroid), a.asset_id, a)
                 for a in free),
                key=lambda c: (c[0], c[1]),
            )
            chosen: tuple[float, Asset, int] | None = None
            for dist, aid, asset in candidates:
                wanted = trip_count(demand, asset.capacity_liters)
                trips = self.energy.affordable_trips(
                    asset, dist, wanted, remaining_h[aid], strict_time=aid in used
                )
                if trips >= 1:
                    chosen = (dist, asset, trips)
                    break

            if chosen is None:
                fresh = [c for c in candidates if c[1] not in used]
                if not fresh:
                    backlog.append(BacklogEntry(zone.zone_id, demand, "no_assets"))
                    continue
                dist, _, nearest = fresh[0]
                manifest.append(Assignment(
                    asset_id=nearest.asset_id,
                    zone_id=zone.zone_id,
                    trips=0,
                    distance_m=dist,
                    energy_j=self.energy.trip_energy(nearest, dist),
                    volume_l=0.0,
                    tick=tick,
                    status=AssignmentStatus.INFEASIBLE,
                ))
                backlog.append(BacklogEntry(zone.zone_id, demand, "infeasible"))
                logger.debug(f"Zone {zone.zone_id}: no asset can afford a trip ({demand:.0f} L unmet)")
                continue

            dist, asset, trips = chosen
            est = self.energy.estimate(asset, dist, trips)
            volume = min(demand, trips * asset.capacity_liters)
            asset.battery_j -= est.energy_j
            mission = Mission(
                zone_id=zone.zone_id,
                tick=tick,
                trips=trips,
                distance_m=dist,
                energy_j=est.energy_j,
                volume_l=volume,
                outbound_h=est.outbound_h,
                duration_h=est.duration_h,
            )
            if asset.mission is None:
                asset.mission = mission
                step_asset(asset, {"has_mission": True})
            else:
                asset.queued.append(mission)
            used.add(asset.asset_id)
            remaining_h[asset.asset_id] -= est.duration_h
            if remaining_h[asset.asset_id] <= 0.0:
                free.remove(asset)
            manifest.append(Assignment(
                asset_id=asset.asset_id,
                zone_id=zone.zone_id,
                trips=trips,
                distance_m=dist,
                energy_j=est.energy_j,
                volume_l=volume,
                tick=tick,
                status=AssignmentStatus.PLANNED,
            ))
            if volume < demand:
                backlog.append(BacklogEntry(zone.zone_id, demand - volume, "partial"))

        return AssignmentResult(tuple(manifest), tuple(backlog), fleet)
