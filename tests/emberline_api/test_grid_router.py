"""Unit tests for the grid API router (/api/v1/grid/*).

Uses FastAPI TestClient against a real GridEngine seeded with a small
four-cell, two-zone grid; failure paths use a mocked engine.
"""
from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from emberline.assets.fleet import Asset
from emberline.config import EngineConfig
from emberline.errors import TickAbortedError, TickFailedError
from emberline.grid.cell import Cell, Patch
from emberline.simulation.engine import GridEngine
from emberline_api.routers.grid import router


def _make_app(engine=None):
    app = FastAPI()
    app.include_router(router)
    app.state.engine = engine
    return app


def _make_engine() -> GridEngine:
    engine = GridEngine(EngineConfig())
    signals = [(0.9, 0.8, 0.5), (0.7, 0.9, 0.4), (0.2, 0.1, 0.1), (0.3, 0.2, 0.0)]
    engine.store.ingest_cells([
        Cell(cell_id=f"c{i}", x=float(i * 10), y=500.0, vegetation=v, grass=g, slope=s,
             distance_to_structure_m=5.0, grass_height_cm=4.0 + 4 * i)
        for i, (v, g, s) in enumerate(signals)
    ])
    engine.store.ingest_patches([
        Patch(zone_id="z1", cell_ids=("c0", "c1"), deficit_mm=50.0, wildlife_count=30),
        Patch(zone_id="z2", cell_ids=("c2", "c3"), deficit_mm=10.0, wildlife_count=5),
    ])
    engine.store.register_assets([
        Asset(asset_id="t1", asset_type="truck", capacity=4000.0, depot=(0.0, 0.0),
              battery_j=2e6, battery_max_j=2e6, recharge_interval_h=1.0),
    ])
    return engine


def _ticked_client(count=1):
    engine = _make_engine()
    engine.run(count)
    return TestClient(_make_app(engine)), engine


@pytest.mark.unit
class TestWithoutEngine:
    @pytest.mark.parametrize("method,path", [
        ("get", "/api/v1/grid/snapshot"),
        ("get", "/api/v1/grid/zones"),
        ("get", "/api/v1/grid/manifest"),
        ("post", "/api/v1/grid/tick"),
    ])
    def test_503(self, method, path):
        client = TestClient(_make_app(engine=None))
        assert getattr(client, method)(path).status_code == 503


@pytest.mark.unit
class TestReads:
    def test_snapshot_before_first_tick(self):
        client = TestClient(_make_app(_make_engine()))
        resp = client.get("/api/v1/grid/snapshot")
        assert resp.status_code == 200
        assert resp.json()["tick"] == 0
        assert resp.json()["cells"] == []

    def test_snapshot_after_tick(self):
        client, _ = _ticked_client()
        data = client.get("/api/v1/grid/snapshot").json()
        assert data["tick"] == 1
        assert [c["cell_id"] for c in data["cells"]] == ["c0", "c1", "c2", "c3"]
        assert data["format_version"] == 1

    def test_zones_ranked_best_first(self):
        client, _ = _ticked_client()
        data = client.get("/api/v1/grid/zones").json()
        assert [z["zone_id"] for z in data["zones"]] == ["z1", "z2"]
        assert data["zones"][0]["priority"] >= data["zones"][1]["priority"]

    def test_zones_limit(self):
        client, _ = _ticked_client()
        assert len(client.get("/api/v1/grid/zones?limit=1").json()["zones"]) == 1

    def test_zone_detail(self):
        client, engine = _ticked_client()
        data = client.get("/api/v1/grid/zones/z2").json()
        assert data["cell_ids"] == ["c2", "c3"]
        assert data["qj"] == pytest.approx(engine.latest().patches["z2"].qj)

    def test_zone_404(self):
        client, _ = _ticked_client()
        resp = client.get("/api/v1/grid/zones/nope")
        assert resp.status_code == 404
        assert "nope" in resp.json()["detail"]

    def test_asset_detail(self):
        client, _ = _ticked_client()
        data = client.get("/api/v1/grid/assets/t1").json()
        assert data["asset_type"] == "truck"
        assert 0.0 <= data["state_of_charge"] <= 1.0

    def test_asset_404(self):
        client, _ = _ticked_client()
        assert client.get("/api/v1/grid/assets/ghost").status_code == 404

    def test_manifest(self):
        client, _ = _ticked_client()
        data = client.get("/api/v1/grid/manifest").json()
        assert data["tick"] == 1
        assert [a["asset_id"] for a in data["manifest"]] == ["t1"]
        assert data["manifest"][0]["zone_id"] == "z1"
        assert data["completions"] == []
        assert any(b["zone_id"] == "z2" for b in data["backlog"])

    def test_compliance_filter(self):
        client, _ = _ticked_client()
        everything = client.get("/api/v1/grid/compliance").json()["entries"]
        assert len(everything) == 4
        failing = client.get("/api/v1/grid/compliance?non_compliant_only=true").json()["entries"]
        # band 1-10 m allows 10 cm: c2 (12 cm) and c3 (16 cm) fail
        assert [e["cell_id"] for e in failing] == ["c2", "c3"]


@pytest.mark.unit
class TestTick:
    def test_runs_ticks(self):
        client = TestClient(_make_app(_make_engine()))
        resp = client.post("/api/v1/grid/tick?count=3")
        assert resp.status_code == 200
        data = resp.json()
        assert data["tick"] == 3
        assert data["time_h"] == 3.0
        assert data["ranked"] == 2
        assert data["issues"] == []

    def test_ticks_run_off_the_event_loop(self):
        engine = _make_engine()
        run = engine.run
        threads = []

        def recording_run(count):
            try:
                asyncio.get_running_loop()
                threads.append("event_loop")
            except RuntimeError:
                threads.append("worker")
            return run(count)

        engine.run = recording_run
        client = TestClient(_make_app(engine))
        assert client.post("/api/v1/grid/tick?count=2").json()["tick"] == 2
        assert threads == ["worker"]

    def test_count_bounds(self):
        client = TestClient(_make_app(_make_engine()))
        assert client.post("/api/v1/grid/tick?count=0").status_code == 422

    def test_aborted_409(self):
        engine = MagicMock()
        engine.run.side_effect = TickAbortedError(4, 3)
        client = TestClient(_make_app(engine))
        resp = client.post("/api/v1/grid/tick")
        assert resp.status_code == 409
        assert "aborted" in resp.json()["detail"]

    def test_failed_500(self):
        engine = MagicMock()
        engine.run.side_effect = TickFailedError(4, "boom")
        client = TestClient(_make_app(engine))
        resp = client.post("/api/v1/grid/tick")
        assert resp.status_code == 500
        assert "boom" in resp.json()["detail"]


@pytest.mark.unit
class TestIngestion:
    def test_events_queued(self):
        engine = _make_engine()
        client = TestClient(_make_app(engine))
        resp = client.post("/api/v1/grid/events", json={"events": [
            {"zone_id": "z1", "event_type": "fire", "tick": 1},
        ]})
        assert resp.json() == {"status": "queued", "count": 1}
        assert len(engine.store.begin()[2].events) == 1

    def test_bad_event_422(self):
        client = TestClient(_make_app(_make_engine()))
        resp = client.post("/api/v1/grid/events", json={"events": [{"kind": "meteor", "tick": 1}]})
        assert resp.status_code == 422

    def test_cells_take_effect_next_tick(self):
        client, engine = _ticked_client()
        before = engine.latest().patches["z2"].qj
        resp = client.post("/api/v1/grid/cells", json={"cells": [
            {"cell_id": "c2", "x": 20, "y": 500, "vegetation": 1.0, "grass": 1.0, "slope": 1.0},
        ]})
        assert resp.json()["count"] == 1
        assert engine.latest().patches["z2"].qj == before
        client.post("/api/v1/grid/tick")
        assert engine.latest().patches["z2"].qj > before

    def test_unreadable_cell_422(self):
        client = TestClient(_make_app(_make_engine()))
        resp = client.post("/api/v1/grid/cells", json={"cells": [{"cell_id": "c9"}]})
        assert resp.status_code == 422
