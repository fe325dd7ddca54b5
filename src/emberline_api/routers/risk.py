"""Risk calculator — score one location from raw or normalized signals."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from emberline.errors import ConfigurationError
from emberline.scoring.index import (
    IndexEngine,
    defensible_zone,
    normalize_raw,
    recommendation,
)

router = APIRouter(prefix="/api/v1", tags=["risk"])


class RiskRequest(BaseModel):
    """Either normalized signals or field measurements."""
    vegetation: Optional[float] = None
    grass: Optional[float] = None
    slope: Optional[float] = None
    trees_per_ha: Optional[float] = Field(default=None, ge=0)
    grass_percent: Optional[float] = Field(default=None, ge=0, le=100)
    slope_degrees: Optional[float] = Field(default=None, ge=0)
    strategy: Optional[str] = None


class RiskResponse(BaseModel):
    risk_index: float
    band: str
    valid: bool
    defensible_zone: list[int]
    recommendation: str


def _index(request: Request, strategy: str | None) -> IndexEngine:
    engine = getattr(request.app.state, "engine", None)
    base = engine.index if engine is not None else IndexEngine()
    if strategy is None or strategy == base.strategy:
        return base
    try:
        return IndexEngine(base.weights, strategy)
    except ConfigurationError as e:
        raise HTTPException(400, str(e))


@router.post("/risk", response_model=RiskResponse)
async def calculate_risk(body: RiskRequest, request: Request):
    """Risk index, band, defensible zone and advice for one location."""
    if None not in (body.vegetation, body.grass, body.slope):
        v, g, s = body.vegetation, body.grass, body.slope
    elif None not in (body.trees_per_ha, body.grass_percent, body.slope_degrees):
        v, g, s = normalize_raw(body.trees_per_ha, body.grass_percent, body.slope_degrees)
    else:
        raise HTTPException(
            422, "Provide vegetation/grass/slope or trees_per_ha/grass_percent/slope_degrees"
        )

    result = _index(request, body.strategy).score(v, g, s)
    return RiskResponse(
        risk_index=round(result.risk, 4),
        band=result.band.value,
        valid=result.valid,
        defensible_zone=list(defensible_zone(result.band)),
        recommendation=recommendation(result.band),
    )
