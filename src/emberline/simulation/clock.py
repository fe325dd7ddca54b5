"""SimulationClock — advances zone and asset state by one discrete tick.

Order of work inside a tick (always the same, always sorted by id):

  1. Energy-loss events hit asset batteries.
  2. Missions progress by one tick duration through the asset FSM.  A
     mission whose asset went below zero spare energy before delivering
     ends in emergency return: unspent reserved energy is refunded, the
     return leg is paid, nothing is delivered and the mission is recorded
     incomplete, along with every leg queued behind it.  Otherwise the
     delivery is credited when the asset leaves servicing, and an asset
     back at base with a queued leg starts it with the time left over.
  3. Assets at base recharge at their fixed windows.
  4. Zones: serviced zones lose deficit (delivered liters / zone area),
     un-serviced zones accrue deficit; disturbed zones reset recovery to
     0, the rest advance by one.

The clock reads no wall time, so replaying the same snapshot with the
same events reproduces the same state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping

from loguru import logger

from emberline.assets.fleet import Asset, Mission
from emberline.config import EngineConfig
from emberline.dispatch.assigner import Assignment, AssignmentStatus
from emberline.dispatch.energy import EnergyBudgetModel
from emberline.grid.cell import Patch

from .asset_states import (
    EMERGENCY_RETURN,
    IN_MISSION_STATES,
    RECHARGING,
    RETURNING,
    SERVICING,
    step_asset,
)
from .events import DisturbanceEvent, EnergyLossEvent, Event, event_sort_key

# A recharging asset above this state of charge is released without
# waiting for its next window.
RESUME_CHARGE_FRACTION = 0.5


@dataclass
class ClockResult:
    """What happened during one clock advance."""

    completions: list[Assignment] = field(default_factory=list)
    delivered_l: dict[str, float] = field(default_factory=dict)
    disturbed: set[str] = field(default_factory=set)
    changed_zones: set[str] = field(default_factory=set)


def _record(asset: Asset, mission: Mission, status: AssignmentStatus, volume_l: float) -> Assignment:
    return Assignment(
        asset_id=asset.asset_id,
        zone_id=mission.zone_id,
        trips=mission.trips,
        distance_m=mission.distance_m,
        energy_j=mission.energy_j,
        volume_l=volume_l,
        tick=mission.tick,
        status=status,
    )


class SimulationClock:
    """Discrete-time stepper for zones and assets."""

    def __init__(self, config: EngineConfig | None = None,
                 energy_model: EnergyBudgetModel | None = None) -> None:
        self.config = config or EngineConfig()
        self.energy = energy_model or EnergyBudgetModel()

    @property
    def tick_duration_h(self) -> float:
        return self.config.tick_duration_h

    def time_at(self, tick: int) -> float:
        return tick * self.config.tick_duration_h

    def zone_area_m2(self, zone: Patch) -> float:
        return len(zone.cell_ids) * self.config.cell_area_m2

    def advance(
        self,
        tick: int,
        zones: Mapping[str, Patch],
        assets: Mapping[str, Asset],
        centroids: Mapping[str, tuple[float, float]] | None = None,
        events: Iterable[Event] = (),
    ) -> ClockResult:
        """Advance ``zones`` and ``assets`` in place to the end of ``tick``."""
        result = ClockResult()
        now_h = self.time_at(tick)
        ordered = sorted(events, key=event_sort_key)

        for ev in ordered:
            if isinstance(ev, EnergyLossEvent):
                asset = assets.get(ev.asset_id)
                if asset is None:
                    logger.warning(f"Energy-loss event for unknown asset {ev.asset_id}")
                    continue
                asset.battery_j -= ev.energy_j
            elif isinstance(ev, DisturbanceEvent):
                if ev.zone_id not in zones:
                    logger.warning(f"Disturbance event for unknown zone {ev.zone_id}")
                    continue
                result.disturbed.add(ev.zone_id)

        for asset_id in sorted(assets):
            asset = assets[asset_id]
            if asset.mission is not None:
                self._progress(asset, now_h, result, centroids or {})
            elif asset.status == RECHARGING:
                step_asset(asset, {"recharged": self._recharge_ready(asset, now_h)})
            elif self.energy.recharge_due(asset, now_h):
                self.energy.recharge(asset, now_h)

        for zone_id in sorted(zones):
            zone = zones[zone_id]
            if zone.excluded:
                continue
            before = (zone.deficit_mm, zone.recovery_stage)
            delivered = result.delivered_l.get(zone_id)
            if delivered is not None:
                area = self.zone_area_m2(zone)
                reduction = delivered / area if area > 0.0 else 0.0
                zone.deficit_mm = max(0.0, zone.deficit_mm - reduction)
                zone.last_serviced_tick = tick
            else:
                zone.deficit_mm += self.config.deficit_accrual_mm_per_tick

            if zone_id in result.disturbed:
                zone.recovery_stage = 0
            elif delivered is not None and self.config.reset_recovery_on_service:
                zone.recovery_stage = 0
            else:
                zone.recovery_stage += 1

            if (zone.deficit_mm, zone.recovery_stage) != before:
                result.changed_zones.add(zone_id)

        return result

    def _recharge_ready(self, asset: Asset, now_h: float) -> bool:
        if self.energy.recharge_due(asset, now_h):
            self.energy.recharge(asset, now_h)
            return True
        return asset.state_of_charge >= RESUME_CHARGE_FRACTION

    def _progress(self, asset: Asset, now_h: float, result: ClockResult,
                  centroids: Mapping[str, tuple[float, float]]) -> None:
        step_h = self.tick_duration_h
        while asset.mission is not None:
            mission = asset.mission
            mission.elapsed_h += step_h

            if asset.battery_j < 0.0 and asset.status in IN_MISSION_STATES:
                self._emergency(asset, mission, now_h, result)
                return

            ctx = {
                "arrived": mission.elapsed_h >= mission.outbound_h,
                "service_done": mission.elapsed_h >= mission.service_end_h,
                "at_base": mission.elapsed_h >= mission.duration_h,
            }
            chained = ctx["at_base"] and bool(asset.queued)
            if chained:
                # Finish the delivery first; the base arrival is handled below
                history = step_asset(asset, dict(ctx, at_base=False))
            else:
                if ctx["at_base"]:
                    ctx["recharged"] = self._recharge_ready(asset, now_h)
                history = step_asset(asset, ctx)

            if (SERVICING, RETURNING) in history:
                result.delivered_l[mission.zone_id] = (
                    result.delivered_l.get(mission.zone_id, 0.0) + mission.volume_l
                )
                result.completions.append(
                    _record(asset, mission, AssignmentStatus.COMPLETED, mission.volume_l)
                )
            if not ctx["at_base"]:
                if ctx["arrived"]:
                    asset.position = centroids.get(mission.zone_id, asset.position)
                return

            asset.position = asset.depot
            if not chained:
                asset.mission = None
                return
            # Time left over after this leg goes to the next one
            step_h = mission.elapsed_h - mission.duration_h
            asset.mission = asset.queued.pop(0)
            step_asset(asset, {"at_base": True, "next_leg": True})

    def _emergency(self, asset: Asset, mission: Mission, now_h: float,
                   result: ClockResult) -> None:
        delivered = asset.status == RETURNING
        refund = mission.energy_j * (1.0 - mission.progress)
        refund += sum(leg.energy_j for leg in asset.queued)
        cost = self.energy.return_cost(asset, mission.distance_m)
        asset.battery_j = max(0.0, asset.battery_j + refund - cost)
        step_asset(asset, {"energy_short": True})
        step_asset(asset, {"at_base": True})
        if asset.status != EMERGENCY_RETURN:
            step_asset(asset, {"recharged": self._recharge_ready(asset, now_h)})
        asset.position = asset.depot
        asset.mission = None
        if not delivered:
            result.completions.append(
                _record(asset, mission, AssignmentStatus.INCOMPLETE, 0.0)
            )
        for leg in asset.queued:
            result.completions.append(_record(asset, leg, AssignmentStatus.INCOMPLETE, 0.0))
        asset.queued.clear()
        logger.warning(
            f"Asset {asset.asset_id} emergency return from zone {mission.zone_id} "
            f"(refund {refund:.0f} J, return {cost:.0f} J)"
        )
