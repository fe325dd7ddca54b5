"""Tests for GridEngine — the tick pipeline, publication, retries, replay."""

from __future__ import annotations

import time

import pytest

from emberline.assets.fleet import Asset
from emberline.comms.event_bus import EventBus
from emberline.config import EngineConfig
from emberline.errors import TickAbortedError, TickFailedError
from emberline.grid.cell import Cell, Patch
from emberline.grid.snapshot import load_snapshot, save_snapshot
from emberline.scoring.aggregator import PatchAggregator
from emberline.simulation.engine import GridEngine
from emberline.simulation.events import DisturbanceEvent, EnergyLossEvent

pytestmark = pytest.mark.integration


def _make_cells() -> list[Cell]:
    signals = [(0.9, 0.8, 0.5), (0.7, 0.9, 0.4), (0.2, 0.1, 0.1), (0.3, 0.2, 0.0)]
    return [
        Cell(cell_id=f"c{i}", x=float(i * 10), y=500.0, vegetation=v, grass=g, slope=s,
             distance_to_structure_m=5.0 + i * 10, grass_height_cm=8.0 + i)
        for i, (v, g, s) in enumerate(signals)
    ]


def _make_zones() -> list[Patch]:
    return [
        Patch(zone_id="z1", cell_ids=("c0", "c1"), deficit_mm=50.0, wildlife_count=30),
        Patch(zone_id="z2", cell_ids=("c2", "c3"), deficit_mm=10.0, wildlife_count=5),
    ]


def _make_assets() -> list[Asset]:
    return [
        Asset(asset_id="t1", asset_type="truck", capacity=4000.0, depot=(0.0, 0.0),
              battery_j=2e6, battery_max_j=2e6, recharge_interval_h=1.0),
        Asset(asset_id="d1", asset_type="drone", capacity=20.0, depot=(0.0, 400.0),
              battery_j=1.8e6, battery_max_j=1.8e6, recharge_interval_h=4.0),
    ]


def _make_engine(event_bus=None, engine_cls=GridEngine, **config) -> GridEngine:
    engine = engine_cls(EngineConfig(**config), event_bus=event_bus)
    engine.store.ingest_cells(_make_cells())
    engine.store.ingest_patches(_make_zones())
    engine.store.register_assets(_make_assets())
    return engine


class TestFirstTick:
    def test_publishes_ranked_snapshot(self):
        engine = _make_engine()
        snap = engine.tick()
        assert snap.tick == 1
        assert snap.time_h == 1.0
        assert engine.latest() is snap
        assert [r.zone_id for r in snap.ranking] == ["z1", "z2"]

    def test_scores_every_cell_and_sums_zones(self):
        snap = _make_engine().tick()
        c0, c1 = snap.cells["c0"], snap.cells["c1"]
        assert c0.risk == pytest.approx(0.35 * 0.9 + 0.45 * 0.8 + 0.20 * 0.5)
        assert snap.patches["z1"].qj == pytest.approx(c0.risk + c1.risk)

    def test_geometry(self):
        snap = _make_engine().tick()
        z1 = snap.patches["z1"]
        assert z1.centroid == (5.0, 500.0)
        # nearest depot is the drone pad at (0, 400)
        assert z1.distance_km == pytest.approx(((5.0 ** 2 + 100.0 ** 2) ** 0.5) / 1000.0)

    def test_manifest_and_missions(self):
        snap = _make_engine().tick()
        assert {a.asset_id for a in snap.manifest} == {"t1", "d1"}
        assert all(a.tick == 1 for a in snap.manifest)
        for row in snap.manifest:
            asset = snap.assets[row.asset_id]
            assert asset.status == "en_route"
            assert asset.mission.zone_id == row.zone_id

    def test_compliance_report(self):
        snap = _make_engine().tick()
        # c0 at 5 m (limit 10 cm, 8 cm measured), c1 at 15 m (20 cm, 9 cm),
        # c2 at 25 m (20 cm, 10 cm), c3 at 35 m outside every band
        assert [e.cell_id for e in snap.compliance] == ["c0", "c1", "c2"]
        assert all(e.compliant for e in snap.compliance)

    def test_clock_runs_before_ranking(self):
        snap = _make_engine().tick()
        assert snap.patches["z2"].recovery_stage == 1
        assert snap.patches["z2"].deficit_mm == pytest.approx(12.0)


class TestIncremental:
    def test_changed_cell_updates_only_its_zone(self):
        engine = _make_engine()
        engine.tick()
        recomputes = engine._aggregator.full_recomputes
        z2_before = engine.latest().patches["z2"].qj

        engine.store.ingest_cells([Cell("c0", 0.0, 500.0, 0.1, 0.1, 0.1)])
        snap = engine.tick()

        assert engine._aggregator.full_recomputes == recomputes
        assert snap.cells["c0"].risk == pytest.approx(0.1)
        assert snap.patches["z1"].qj == pytest.approx(0.1 + snap.cells["c1"].risk)
        assert snap.patches["z2"].qj == z2_before
        assert engine._aggregator.verify("z1", snap.cells)

    def test_incremental_matches_fresh_build(self):
        engine = _make_engine()
        engine.tick()
        for step in range(5):
            engine.store.ingest_cells([Cell("c1", 10.0, 500.0, 0.1 * step, 0.5, 0.3)])
            engine.tick()
        snap = engine.latest()
        fresh = PatchAggregator()
        fresh.build({k: Patch(zone_id=k, cell_ids=p.cell_ids) for k, p in snap.patches.items()}, snap.cells)
        for zone_id in ("z1", "z2"):
            assert fresh.total_units(zone_id) == engine._aggregator.total_units(zone_id)

    def test_membership_change_recomputes_zone(self):
        engine = _make_engine()
        engine.tick()
        engine.store.ingest_patches([Patch(zone_id="z2", cell_ids=("c2",), deficit_mm=10.0)])
        snap = engine.tick()
        assert snap.patches["z2"].qj == pytest.approx(snap.cells["c2"].risk)
        assert snap.patches["z2"].centroid == (20.0, 500.0)

    def test_new_zone_after_first_tick(self):
        engine = _make_engine()
        engine.tick()
        engine.store.ingest_cells([Cell("c9", 900.0, 0.0, 0.5, 0.5, 0.5)])
        engine.store.ingest_patches([Patch(zone_id="z9", cell_ids=("c9",), deficit_mm=5.0)])
        snap = engine.tick()
        assert "z9" in {r.zone_id for r in snap.ranking}
        assert snap.patches["z9"].qj == pytest.approx(0.5)


class TestHandledProblems:
    def test_invalid_cell_reported_and_excluded(self):
        engine = _make_engine()
        engine.tick()
        engine.store.ingest_cells([Cell("c1", 10.0, 500.0, 1.5, 0.9, 0.4)])
        snap = engine.tick()
        assert not snap.cells["c1"].valid
        assert snap.patches["z1"].qj == pytest.approx(snap.cells["c0"].risk)
        assert ("invalid_cell", "c1") in {(i.kind, i.entity_id) for i in snap.issues}

    def test_malformed_zone_excluded_not_fatal(self):
        engine = _make_engine()
        engine.store.ingest_patches([Patch(zone_id="bad", cell_ids=("c0", "ghost"))])
        snap = engine.tick()
        assert snap.patches["bad"].excluded
        assert snap.patches["z1"].excluded  # shares c0
        assert "bad" not in {r.zone_id for r in snap.ranking}
        assert {i.entity_id for i in snap.issues if i.kind == "configuration"} == {"bad", "z1"}

    def test_excluded_zone_returns_once_its_cell_arrives(self):
        engine = GridEngine(EngineConfig())
        c0, c1 = _make_cells()[:2]
        engine.store.ingest_cells([c0])
        engine.store.ingest_patches([Patch(zone_id="z1", cell_ids=("c0", "c1"), deficit_mm=5.0)])
        first = engine.tick()
        assert first.patches["z1"].excluded
        assert first.ranking == ()

        engine.store.ingest_cells([c1])
        snap = engine.tick()

        z1 = snap.patches["z1"]
        assert not z1.excluded
        assert z1.qj == pytest.approx(snap.cells["c0"].risk + snap.cells["c1"].risk)
        assert z1.centroid == (5.0, 500.0)
        assert [r.zone_id for r in snap.ranking] == ["z1"]
        assert not [i for i in snap.issues if i.kind == "configuration"]
        assert engine._aggregator.verify("z1", snap.cells)

    def test_zones_swapping_cells_stay_valid(self):
        engine = _make_engine()
        before = engine.tick()
        engine.store.ingest_patches([
            Patch(zone_id="z1", cell_ids=("c2", "c3"), deficit_mm=50.0, wildlife_count=30),
            Patch(zone_id="z2", cell_ids=("c0", "c1"), deficit_mm=10.0, wildlife_count=5),
        ])
        snap = engine.tick()
        assert not snap.patches["z1"].excluded
        assert not snap.patches["z2"].excluded
        assert snap.patches["z1"].qj == pytest.approx(before.patches["z2"].qj)
        assert snap.patches["z2"].qj == pytest.approx(before.patches["z1"].qj)
        assert engine._aggregator.owner("c0") == "z2"

    def test_cell_without_patch_reported_when_required(self):
        engine = _make_engine(require_cell_owner=True)
        engine.store.ingest_cells([Cell("c9", 900.0, 0.0, 0.5, 0.5, 0.5)])
        snap = engine.tick()
        assert ("configuration", "c9") in {(i.kind, i.entity_id) for i in snap.issues}
        assert "c9" in snap.cells

    def test_cell_without_patch_allowed_by_default(self):
        engine = _make_engine()
        engine.store.ingest_cells([Cell("c9", 900.0, 0.0, 0.5, 0.5, 0.5)])
        snap = engine.tick()
        assert not [i for i in snap.issues if i.entity_id == "c9"]

    def test_bad_asset_rejected(self):
        engine = _make_engine()
        engine.store.register_assets([
            Asset(asset_id="broken", asset_type="truck", capacity=0.0, depot=(0.0, 0.0),
                  battery_j=1.0, battery_max_j=1.0, recharge_interval_h=1.0),
        ])
        snap = engine.tick()
        assert "broken" not in snap.assets
        assert ("configuration", "broken") in {(i.kind, i.entity_id) for i in snap.issues}


class TestSpareBudget:
    def test_one_truck_serves_two_zones_in_a_tick(self):
        engine = GridEngine(EngineConfig())
        engine.store.ingest_cells(_make_cells())
        engine.store.ingest_patches([
            Patch(zone_id="z1", cell_ids=("c0", "c1"), deficit_mm=1.0),
            Patch(zone_id="z2", cell_ids=("c2", "c3"), deficit_mm=0.5),
        ])
        engine.store.register_assets([
            Asset(asset_id="t1", asset_type="truck", capacity=4000.0, depot=(0.0, 480.0),
                  battery_j=2e6, battery_max_j=2e6, recharge_interval_h=1.0),
        ])
        first = engine.tick()
        assert [(a.zone_id, a.asset_id) for a in first.manifest] == [("z1", "t1"), ("z2", "t1")]
        assert first.backlog == ()
        assert [leg.zone_id for leg in first.assets["t1"].queued] == ["z2"]

        snap = engine.tick()
        assert {(c.zone_id, c.status.value) for c in snap.completions} == {
            ("z1", "completed"), ("z2", "completed"),
        }
        assert snap.patches["z1"].last_serviced_tick == 2
        assert snap.patches["z2"].last_serviced_tick == 2
        assert snap.assets["t1"].queued == []


class TestEvents:
    def test_future_event_waits_for_its_tick(self):
        engine = _make_engine()
        engine.store.submit_events([DisturbanceEvent("z2", "mowing", 3)])
        engine.run(2)
        assert engine.latest().patches["z2"].recovery_stage == 2
        snap = engine.tick()
        assert snap.patches["z2"].recovery_stage == 0
        engine.tick()
        assert engine.latest().patches["z2"].recovery_stage == 1

    def test_energy_loss_aborts_mission(self):
        engine = _make_engine()
        first = engine.tick()
        assert first.assets["t1"].mission.zone_id == "z2"
        engine.store.submit_events([EnergyLossEvent("t1", 10_000_000.0, 2, "pump fault")])
        snap = engine.tick()
        outcomes = {(c.asset_id, c.status.value) for c in snap.completions}
        assert ("t1", "incomplete") in outcomes
        assert ("d1", "completed") in outcomes
        assert snap.patches["z2"].last_serviced_tick is None


class TestRetries:
    def test_ingestion_mid_tick_restarts(self):
        class Interrupted(GridEngine):
            calls = 0

            def _compute(self, *args):
                Interrupted.calls += 1
                if Interrupted.calls == 1:
                    self.store.ingest_cells([Cell("c3", 30.0, 500.0, 1.0, 1.0, 1.0)])
                return super()._compute(*args)

        engine = _make_engine(engine_cls=Interrupted)
        snap = engine.tick()
        assert Interrupted.calls == 2
        assert snap.tick == 1
        assert snap.cells["c3"].risk == pytest.approx(1.0)
        assert engine.store.begin()[2].cells == {}

    def test_aborts_after_retry_limit(self):
        class Flooded(GridEngine):
            def _compute(self, *args):
                self.store.submit_events([DisturbanceEvent("z1", "fire", 99)])
                return super()._compute(*args)

        bus = EventBus()
        q = bus.subscribe(["tick_aborted"])
        engine = _make_engine(event_bus=bus, engine_cls=Flooded, max_tick_retries=2)
        with pytest.raises(TickAbortedError) as exc:
            engine.tick()
        assert exc.value.attempts == 2
        assert engine.latest().tick == 0
        assert q.get_nowait()["data"]["tick"] == 1


class TestFailure:
    def test_failed_tick_rolls_back(self):
        class Broken(GridEngine):
            fail = False

            def _compute(self, *args):
                if self.fail:
                    raise RuntimeError("disk on fire")
                return super()._compute(*args)

        bus = EventBus()
        q = bus.subscribe(["tick_failed"])
        engine = _make_engine(event_bus=bus, engine_cls=Broken)
        good = engine.tick()
        engine.fail = True
        with pytest.raises(TickFailedError, match="disk on fire"):
            engine.tick()
        assert engine.latest() is good
        assert q.get_nowait()["data"]["tick"] == 2

        engine.fail = False
        assert engine.tick().tick == 2


class TestTelemetry:
    def test_tick_published_event(self):
        bus = EventBus()
        q = bus.subscribe()
        _make_engine(event_bus=bus).tick()
        msg = q.get_nowait()
        assert msg["type"] == "tick_published"
        assert msg["data"]["tick"] == 1
        assert msg["data"]["ranking"][0]["zone_id"] == "z1"

    def test_runs_without_bus(self):
        assert _make_engine(event_bus=None).tick().tick == 1


class TestDeterminism:
    def test_identical_runs_produce_identical_snapshots(self):
        def run():
            engine = _make_engine()
            engine.store.submit_events([DisturbanceEvent("z1", "fire", 3), EnergyLossEvent("d1", 500.0, 2)])
            return [s.to_dict() for s in engine.run(6)]

        assert run() == run()

    def test_replay_from_saved_snapshot(self, tmp_path):
        engine = _make_engine()
        engine.run(3)
        path = save_snapshot(engine.latest(), tmp_path / "tick3.json")
        continued = [s.to_dict() for s in engine.run(3)]

        restored = GridEngine(EngineConfig())
        restored.load(load_snapshot(path))
        assert restored.latest().tick == 3
        replayed = [s.to_dict() for s in restored.run(3)]
        assert replayed == continued


class TestBackgroundLoop:
    def test_start_stop(self):
        engine = _make_engine()
        engine.start(interval_s=0.01)
        try:
            deadline = time.time() + 5.0
            while engine.latest().tick < 2 and time.time() < deadline:
                time.sleep(0.01)
        finally:
            engine.stop()
        assert engine.latest().tick >= 2
        assert not engine.running
