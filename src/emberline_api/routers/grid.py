"""Grid API — published snapshots, rankings, manifests, ingestion, ticks.

Reads go straight to ``GridStore.latest()`` and never wait on a tick in
progress.  Writes only queue input; it takes effect on the next tick.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel

from emberline.errors import (
    AssetNotFoundError,
    InvalidInputError,
    TickAbortedError,
    TickFailedError,
    ZoneNotFoundError,
)
from emberline.grid.feeds import parse_cells_json, parse_events_json
from emberline.scoring.compliance import non_compliant
from emberline.simulation.engine import GridEngine

router = APIRouter(prefix="/api/v1/grid", tags=["grid"])


class EventsRequest(BaseModel):
    events: list[dict[str, Any]]


class CellsRequest(BaseModel):
    cells: list[dict[str, Any]]


def _get_engine(request: Request) -> GridEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(503, "Grid engine not available")
    return engine


@router.get("/snapshot")
async def get_snapshot(request: Request):
    """The full latest snapshot in its persisted form."""
    return _get_engine(request).latest().to_dict()


@router.get("/zones")
async def get_zones(request: Request, limit: int = Query(default=50, ge=1, le=1000)):
    """Zones best-first with their dispatch inputs."""
    snapshot = _get_engine(request).latest()
    zones = []
    for ranked in snapshot.ranking[:limit]:
        zone = snapshot.patches[ranked.zone_id]
        entry = zone.to_dict()
        entry["priority"] = ranked.score
        zones.append(entry)
    return {"tick": snapshot.tick, "zones": zones}


def _find_zone(snapshot, zone_id: str):
    zone = snapshot.zone(zone_id)
    if zone is None:
        raise ZoneNotFoundError(zone_id)
    return zone


@router.get("/zones/{zone_id}")
async def get_zone(zone_id: str, request: Request):
    snapshot = _get_engine(request).latest()
    try:
        zone = _find_zone(snapshot, zone_id)
    except ZoneNotFoundError as e:
        raise HTTPException(404, str(e))
    return zone.to_dict()


@router.get("/assets/{asset_id}")
async def get_asset(asset_id: str, request: Request):
    snapshot = _get_engine(request).latest()
    asset = snapshot.asset(asset_id)
    if asset is None:
        raise HTTPException(404, str(AssetNotFoundError(asset_id)))
    data = asset.to_dict()
    data["state_of_charge"] = round(asset.state_of_charge, 4)
    return data


@router.get("/manifest")
async def get_manifest(request: Request):
    """This tick's assignments, completed missions and backlog."""
    snapshot = _get_engine(request).latest()
    return {
        "tick": snapshot.tick,
        "manifest": [a.to_dict() for a in snapshot.manifest],
        "completions": [a.to_dict() for a in snapshot.completions],
        "backlog": [b.to_dict() for b in snapshot.backlog],
    }


@router.get("/compliance")
async def get_compliance(request: Request, non_compliant_only: bool = False):
    snapshot = _get_engine(request).latest()
    entries = non_compliant(snapshot.compliance) if non_compliant_only else snapshot.compliance
    return {"tick": snapshot.tick, "entries": [e.to_dict() for e in entries]}


@router.post("/tick")
def run_tick(request: Request, count: int = Query(default=1, ge=1, le=1000)):
    """Run ``count`` ticks now and return the last published summary."""
    engine = _get_engine(request)
    try:
        snapshots = engine.run(count)
    except TickAbortedError as e:
        raise HTTPException(409, str(e))
    except TickFailedError as e:
        raise HTTPException(500, str(e))
    last = snapshots[-1]
    return {
        "tick": last.tick,
        "time_h": last.time_h,
        "ranked": len(last.ranking),
        "assignments": len(last.manifest),
        "backlog": len(last.backlog),
        "issues": [i.to_dict() for i in last.issues],
    }


@router.post("/events")
async def submit_events(body: EventsRequest, request: Request):
    """Queue disturbance and energy-loss events for upcoming ticks."""
    engine = _get_engine(request)
    try:
        events = parse_events_json(body.events)
    except InvalidInputError as e:
        raise HTTPException(422, str(e))
    engine.store.submit_events(events)
    return {"status": "queued", "count": len(events)}


@router.post("/cells")
async def submit_cells(body: CellsRequest, request: Request):
    """Queue cell attribute updates (normalized or field units)."""
    engine = _get_engine(request)
    try:
        cells = parse_cells_json(body.cells)
    except InvalidInputError as e:
        raise HTTPException(422, str(e))
    engine.store.ingest_cells(cells)
    return {"status": "queued", "count": len(cells)}
