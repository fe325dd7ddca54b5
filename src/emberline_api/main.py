"""EMBERLINE — FastAPI application for risk scoring and dispatch ticks."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from emberline import __version__
from emberline.comms.event_bus import EventBus
from emberline.grid.feeds import load_assets, load_cells, load_events, load_zones
from emberline.grid.snapshot import load_snapshot
from emberline.simulation.engine import GridEngine
from emberline_api.config import Settings, settings
from emberline_api.routers.grid import router as grid_router
from emberline_api.routers.risk import router as risk_router


def create_engine(cfg: Settings) -> GridEngine:
    """Build the engine and queue whatever feeds the settings point at."""
    engine = GridEngine(cfg.engine_config(), event_bus=EventBus())

    if cfg.snapshot_path is not None:
        engine.load(load_snapshot(cfg.snapshot_path))
        return engine

    ref = cfg.geo_reference()
    store = engine.store
    if cfg.cells_path is not None:
        cells = load_cells(cfg.cells_path, ref)
        store.ingest_cells(cells)
        logger.info(f"Cells: loaded {len(cells)} from {cfg.cells_path}")
    if cfg.zones_path is not None:
        zones = load_zones(cfg.zones_path)
        store.ingest_patches(zones)
        logger.info(f"Zones: loaded {len(zones)} from {cfg.zones_path}")
    if cfg.assets_path is not None:
        assets = load_assets(cfg.assets_path, ref)
        store.register_assets(assets)
        logger.info(f"Assets: loaded {len(assets)} from {cfg.assets_path}")
    if cfg.events_path is not None:
        events = load_events(cfg.events_path)
        store.submit_events(events)
        logger.info(f"Events: queued {len(events)} from {cfg.events_path}")
    return engine


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("=" * 60)
    logger.info(f"  EMBERLINE v{__version__} - INITIALIZING")
    logger.info("=" * 60)

    engine = create_engine(settings)
    app.state.engine = engine
    if settings.tick_interval_s > 0:
        engine.start(settings.tick_interval_s)

    logger.info("EMBERLINE ONLINE")
    yield

    logger.info("EMBERLINE shutting down...")
    engine.stop()


app = FastAPI(
    title="EMBERLINE",
    description="Grid priority and dispatch engine",
    version=__version__,
    lifespan=lifespan,
)

app.include_router(risk_router)
app.include_router(grid_router)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "operational",
        "version": __version__,
        "system": "EMBERLINE",
    }
