"""GridEngine — the per-tick pipeline from raw cell signals to a route manifest.

Architecture
------------
The engine owns the pipeline stages; the GridStore owns the data.  One
tick is:

  1. Take the committed snapshot and everything queued since (cells,
     zones, assets, events) from the store, with the store generation.
  2. SimulationClock advances missions, deficits and recovery stages.
  3. IndexEngine scores only cells whose inputs changed (every cell on the
     first tick).
  4. PatchAggregator applies O(1) deltas for re-scored cells and full
     recomputes for zones whose membership changed or that are excluded.
  5. PriorityScheduler re-ranks zones whose dispatch inputs changed.
  6. RouteAssigner walks the ranking and produces the manifest.
  7. The new snapshot is published with an atomic swap, then a one-way
     ``tick_published`` event goes to the EventBus if one is attached.

Every stage works on copies.  If new input was ingested while the tick was
computing, the store refuses the publish and the tick restarts from the
latest committed snapshot (bounded by ``max_tick_retries``, then
TickAbortedError).  Any unexpected error rolls the tick back, leaves the
previous snapshot authoritative, and surfaces as TickFailedError.

Ticks are serialized by a lock, so two assignment passes can never run at
once.  ``start()`` runs the same discrete tick on a daemon thread at a
fixed wall-clock interval; tests call ``tick()`` directly.
"""

from __future__ import annotations

import copy
import math
import threading

from loguru import logger

from emberline.assets.fleet import Asset
from emberline.comms.event_bus import EventBus
from emberline.config import EngineConfig
from emberline.dispatch.assigner import AssignmentStatus, RouteAssigner
from emberline.dispatch.energy import EnergyBudgetModel
from emberline.dispatch.priority import PriorityScheduler
from emberline.errors import ConfigurationError, Issue, TickAbortedError, TickFailedError
from emberline.geo.reference import distance_m
from emberline.grid.cell import Cell, Patch
from emberline.grid.snapshot import Snapshot
from emberline.grid.store import GridStore, PendingInput
from emberline.scoring.aggregator import PatchAggregator, unowned_cells
from emberline.scoring.compliance import compliance_report
from emberline.scoring.index import IndexEngine

from .asset_states import EN_ROUTE, SERVICING
from .clock import SimulationClock


class GridEngine:
    """Runs ticks against a GridStore."""

    def __init__(self, config: EngineConfig | None = None, store: GridStore | None = None,
                 event_bus: EventBus | None = None) -> None:
        self.config = config or EngineConfig()
        self.store = store or GridStore()
        self.event_bus = event_bus
        self.energy = EnergyBudgetModel()
        self.index = IndexEngine.from_config(self.config)
        self.assigner = RouteAssigner.from_config(self.config, self.energy)
        self.clock = SimulationClock(self.config, self.energy)

        self._aggregator = PatchAggregator()
        self._scheduler = PriorityScheduler()
        self._built = False
        self._tick_lock = threading.Lock()

        self._running = False
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    # -- state -------------------------------------------------------------

    def latest(self) -> Snapshot:
        return self.store.latest()

    def load(self, snapshot: Snapshot) -> None:
        """Make ``snapshot`` the committed state and rebuild derived indexes."""
        with self._tick_lock:
            aggregator = PatchAggregator()
            patches = copy.deepcopy(snapshot.patches)
            aggregator.build(patches, snapshot.cells)
            aggregator.clear_dirty()
            scheduler = PriorityScheduler()
            for zone_id in sorted(patches):
                scheduler.upsert(patches[zone_id])
            self._aggregator = aggregator
            self._scheduler = scheduler
            self._built = bool(snapshot.cells or snapshot.patches)
            self.store.reset(snapshot)
        logger.info(
            f"Loaded snapshot at tick {snapshot.tick}: {len(snapshot.cells)} cells, "
            f"{len(snapshot.patches)} zones, {len(snapshot.assets)} assets"
        )

    # -- tick --------------------------------------------------------------

    def tick(self) -> Snapshot:
        """Compute and publish one tick.

        Raises:
            TickAbortedError: input kept arriving mid-tick past the retry limit.
            TickFailedError: the tick hit an unexpected error and was rolled back.
        """
        with self._tick_lock:
            attempts = self.config.max_tick_retries
            tick = self.store.latest().tick + 1
            for attempt in range(1, attempts + 1):
                generation, base, pending = self.store.begin()
                tick = base.tick + 1
                aggregator = self._aggregator.copy()
                scheduler = self._scheduler.copy()
                try:
                    snapshot, deferred = self._compute(base, pending, aggregator, scheduler)
                except Exception as e:
                    logger.exception(f"Tick {tick} failed, keeping snapshot {base.tick}")
                    self._emit("tick_failed", {"tick": tick, "reason": str(e)})
                    raise TickFailedError(tick, str(e)) from e

                if self.store.publish(snapshot, generation, deferred):
                    self._aggregator = aggregator
                    self._scheduler = scheduler
                    self._built = True
                    logger.info(
                        f"Tick {tick} published: {len(snapshot.ranking)} zones ranked, "
                        f"{len(snapshot.manifest)} assignments, {len(snapshot.backlog)} backlog"
                    )
                    self._emit("tick_published", self._summary(snapshot))
                    return snapshot
                logger.warning(f"Tick {tick} invalidated by new input (attempt {attempt}/{attempts})")

            logger.warning(f"Tick {tick} aborted after {attempts} attempts")
            self._emit("tick_aborted", {"tick": tick, "attempts": attempts})
            raise TickAbortedError(tick, attempts)

    def run(self, ticks: int) -> list[Snapshot]:
        return [self.tick() for _ in range(ticks)]

    def _compute(self, base: Snapshot, pending: PendingInput, aggregator: PatchAggregator,
                 scheduler: PriorityScheduler) -> tuple[Snapshot, list]:
        tick = base.tick + 1
        cells = copy.deepcopy(base.cells)
        patches = copy.deepcopy(base.patches)
        assets = copy.deepcopy(base.assets)
        issues: list[Issue] = []

        changed_cells = self._apply_cells(cells, pending.cells)
        membership = self._apply_patches(patches, pending.patches)
        self._apply_assets(assets, pending.assets, issues)

        due = [e for e in pending.events if e.tick <= tick]
        deferred = [e for e in pending.events if e.tick > tick]

        # Clock
        centroids = {zid: p.centroid for zid, p in patches.items()}
        clock_result = self.clock.advance(tick, patches, assets, centroids, due)

        # Index + aggregation
        if not self._built:
            self.index.score_cells(cells[cid] for cid in sorted(cells))
            for issue in aggregator.build(patches, cells):
                issues.append(issue)
            geometry = set(patches)
        else:
            changes = self.index.score_cells(cells[cid] for cid in changed_cells)
            for ch in changes:
                aggregator.update_cell(ch.cell_id, ch.old_risk, ch.new_risk, ch.old_valid, ch.new_valid)
                if ch.old_valid and not ch.new_valid:
                    logger.warning(f"Cell {ch.cell_id} has inputs outside [0, 1]; excluded this tick")
            # Excluded zones get another try every tick: a missing cell may have arrived.
            # Release every rebound zone first so zones swapping cells never collide.
            rebind = sorted(set(membership) | {zid for zid, p in patches.items() if p.excluded})
            for zone_id in rebind:
                aggregator.drop_patch(zone_id)
            for zone_id in rebind:
                self._set_membership(aggregator, patches[zone_id], cells, issues)
            geometry = set(rebind)

        for zone_id in aggregator.dirty_zones():
            if zone_id in patches:
                patches[zone_id].qj = aggregator.qj(zone_id)
        aggregator.clear_dirty()

        for cell_id in sorted(cells):
            if not cells[cell_id].valid:
                issues.append(Issue("invalid_cell", cell_id, "inputs outside [0, 1]"))
        if self.config.require_cell_owner:
            orphans = unowned_cells(patches, cells)
            if orphans:
                logger.warning(f"{len(orphans)} cells belong to no patch")
            for cell_id in orphans:
                issues.append(Issue("configuration", cell_id, "cell belongs to no patch"))

        # Geometry: new members move the centroid, new depots move the distance
        if pending.assets:
            geometry = set(patches)
        for zone_id in sorted(geometry):
            self._update_geometry(patches[zone_id], cells, assets)

        for zone_id in sorted(patches):
            scheduler.upsert(patches[zone_id])

        in_flight: dict[str, float] = {}
        for asset_id in sorted(assets):
            asset = assets[asset_id]
            if asset.mission is not None and asset.status in (EN_ROUTE, SERVICING):
                in_flight[asset.mission.zone_id] = in_flight.get(asset.mission.zone_id, 0.0) + asset.mission.volume_l
            for leg in asset.queued:
                in_flight[leg.zone_id] = in_flight.get(leg.zone_id, 0.0) + leg.volume_l

        result = self.assigner.assign(scheduler.iter_ranked(), patches, assets, tick, in_flight)
        for row in result.manifest:
            if row.status is AssignmentStatus.INFEASIBLE:
                issues.append(Issue("infeasible", row.zone_id, f"no asset can afford a trip (nearest {row.asset_id})"))

        snapshot = Snapshot(
            tick=tick,
            time_h=self.clock.time_at(tick),
            cells=cells,
            patches=patches,
            assets=result.assets,
            ranking=tuple(scheduler.ranked()),
            manifest=result.manifest,
            completions=tuple(clock_result.completions),
            backlog=result.backlog,
            compliance=compliance_report(cells.values(), self.config.bands),
            issues=tuple(issues),
        )
        return snapshot, deferred

    # -- ingestion helpers -------------------------------------------------

    @staticmethod
    def _apply_cells(cells: dict[str, Cell], incoming: dict[str, Cell]) -> list[str]:
        changed = []
        for cell_id in sorted(incoming):
            fresh = copy.copy(incoming[cell_id])
            old = cells.get(cell_id)
            if old is not None:
                # Carry the committed score so the re-score yields a true delta
                fresh.risk, fresh.band, fresh.valid = old.risk, old.band, old.valid
            cells[cell_id] = fresh
            changed.append(cell_id)
        return changed

    @staticmethod
    def _apply_patches(patches: dict[str, Patch], incoming: dict[str, Patch]) -> list[str]:
        """Merge zone definitions; returns zones whose membership changed."""
        membership = []
        for zone_id in sorted(incoming):
            fresh = incoming[zone_id]
            current = patches.get(zone_id)
            if current is None:
                patches[zone_id] = copy.deepcopy(fresh)
                membership.append(zone_id)
                continue
            if tuple(fresh.cell_ids) != tuple(current.cell_ids):
                membership.append(zone_id)
            current.cell_ids = tuple(fresh.cell_ids)
            current.name = fresh.name
            current.deficit_mm = fresh.deficit_mm
            current.wildlife_count = fresh.wildlife_count
            current.recovery_stage = fresh.recovery_stage
        return membership

    @staticmethod
    def _apply_assets(assets: dict[str, Asset], incoming: dict[str, Asset], issues: list[Issue]) -> None:
        for asset_id in sorted(incoming):
            fresh = copy.deepcopy(incoming[asset_id])
            try:
                fresh.validate()
            except ConfigurationError as e:
                logger.warning(f"Asset {asset_id} rejected: {e}")
                issues.append(Issue("configuration", asset_id, str(e)))
                continue
            current = assets.get(asset_id)
            if current is not None and current.mission is not None:
                # Keep runtime state of an asset in flight
                current.capacity = fresh.capacity
                current.depot = fresh.depot
                current.battery_max_j = fresh.battery_max_j
                current.recharge_interval_h = fresh.recharge_interval_h
                continue
            assets[asset_id] = fresh

    @staticmethod
    def _set_membership(aggregator: PatchAggregator, patch: Patch, cells: dict[str, Cell],
                        issues: list[Issue]) -> None:
        try:
            aggregator.set_membership(patch.zone_id, patch.cell_ids, cells)
            patch.excluded = False
        except ConfigurationError as e:
            aggregator.drop_patch(patch.zone_id)
            patch.excluded = True
            patch.qj = 0.0
            logger.warning(f"Patch {patch.zone_id} excluded: {e}")
            issues.append(Issue("configuration", patch.zone_id, str(e)))

    @staticmethod
    def _update_geometry(patch: Patch, cells: dict[str, Cell], assets: dict[str, Asset]) -> None:
        members = [cells[c] for c in patch.cell_ids if c in cells]
        if members:
            patch.centroid = (
                math.fsum(c.x for c in members) / len(members),
                math.fsum(c.y for c in members) / len(members),
            )
        if assets:
            nearest = min(distance_m(a.depot, patch.centroid) for a in assets.values())
            patch.distance_km = nearest / 1000.0
        else:
            patch.distance_km = 0.0

    # -- telemetry ---------------------------------------------------------

    def _emit(self, event_type: str, data: dict) -> None:
        if self.event_bus is not None:
            self.event_bus.publish(event_type, data)

    @staticmethod
    def _summary(snapshot: Snapshot) -> dict:
        return {
            "tick": snapshot.tick,
            "time_h": snapshot.time_h,
            "ranking": [r.to_dict() for r in snapshot.ranking[:10]],
            "manifest": [a.to_dict() for a in snapshot.manifest],
            "completions": [a.to_dict() for a in snapshot.completions],
            "backlog": len(snapshot.backlog),
            "issues": len(snapshot.issues),
        }

    # -- background loop ---------------------------------------------------

    @property
    def running(self) -> bool:
        return self._running

    def start(self, interval_s: float = 1.0) -> None:
        if self._running:
            return
        self._running = True
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._tick_loop, args=(interval_s,), name="grid-tick", daemon=True
        )
        self._thread.start()
        logger.info(f"Grid engine started ({interval_s}s tick interval)")

    def stop(self) -> None:
        self._running = False
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=2.0)
            self._thread = None

    def _tick_loop(self, interval_s: float) -> None:
        while self._running:
            if self._stop.wait(interval_s):
                break
            try:
                self.tick()
            except (TickFailedError, TickAbortedError):
                # Already logged and emitted; the loop keeps the last good snapshot
                continue
