"""Engine configuration — scoring weights, defensible bands, tick behavior.

The model validates itself on construction.  A weight set that does not
sum to 1.0 or an unordered band table raises ConfigurationError before the
engine ever runs; nothing here is checked per tick.
"""

from __future__ import annotations

import math
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .errors import ConfigurationError

# Sonoran WUI calibration (vegetation, invasive grass, slope)
DEFAULT_ALPHA = 0.35
DEFAULT_BETA = 0.45
DEFAULT_GAMMA = 0.20

WEIGHT_TOLERANCE = 1e-9

# Risk band thresholds (lower bound inclusive)
RISK_MEDIUM_THRESHOLD = 0.33
RISK_HIGH_THRESHOLD = 0.67


class DefensibleBand(BaseModel):
    """Distance range around a structure and its maximum grass height."""

    model_config = ConfigDict(frozen=True)

    min_m: float = Field(ge=0.0)
    max_m: float = Field(gt=0.0)
    max_grass_height_cm: float = Field(ge=0.0)

    def contains(self, distance_m: float) -> bool:
        return self.min_m <= distance_m < self.max_m


# Zero-fuel 0-1 m, reduction 1-10 m, extended management 10-30 m
DEFAULT_BANDS: tuple[DefensibleBand, ...] = (
    DefensibleBand(min_m=0.0, max_m=1.0, max_grass_height_cm=0.0),
    DefensibleBand(min_m=1.0, max_m=10.0, max_grass_height_cm=10.0),
    DefensibleBand(min_m=10.0, max_m=30.0, max_grass_height_cm=20.0),
)


class EngineConfig(BaseModel):
    """Recognized engine options.

    Attributes:
        alpha, beta, gamma: scoring weights for Vi, Gi, Si (sum to 1.0).
        strategy: registered scoring strategy name ("weighted_sum", "product").
        bands: defensible-space compliance table, ordered by distance.
        deficit_accrual_mm_per_tick: water deficit added to un-serviced zones.
        tick_duration_h: simulated hours per tick.
        cell_area_m2: ground area of one cell (10 x 10 m by default).
        min_service_interval_ticks: optional fairness guard; None disables it.
        reset_recovery_on_service: treat a completed service as a disturbance.
        require_cell_owner: report cells that belong to no patch as
            configuration issues.
        max_tick_retries: restarts allowed when input invalidates a tick.
        index_workers: thread-pool width for the per-cell scoring phase.
    """

    model_config = ConfigDict(frozen=True)

    alpha: float = DEFAULT_ALPHA
    beta: float = DEFAULT_BETA
    gamma: float = DEFAULT_GAMMA
    strategy: str = "weighted_sum"
    bands: tuple[DefensibleBand, ...] = DEFAULT_BANDS
    deficit_accrual_mm_per_tick: float = Field(default=2.0, ge=0.0)
    tick_duration_h: float = Field(default=1.0, gt=0.0)
    cell_area_m2: float = Field(default=100.0, gt=0.0)
    min_service_interval_ticks: Optional[int] = Field(default=None, ge=1)
    reset_recovery_on_service: bool = False
    require_cell_owner: bool = False
    max_tick_retries: int = Field(default=3, ge=1)
    index_workers: int = Field(default=1, ge=1)

    @model_validator(mode="after")
    def _check(self) -> "EngineConfig":
        weights = (self.alpha, self.beta, self.gamma)
        if any(w < 0.0 or not math.isfinite(w) for w in weights):
            raise ConfigurationError(f"Scoring weights must be finite and >= 0: {weights}")
        total = math.fsum(weights)
        if abs(total - 1.0) > WEIGHT_TOLERANCE:
            raise ConfigurationError(
                f"Scoring weights must sum to 1.0 (alpha+beta+gamma={total!r})"
            )
        previous_max = 0.0
        for band in self.bands:
            if band.max_m <= band.min_m:
                raise ConfigurationError(f"Defensible band has empty range: {band}")
            if band.min_m < previous_max:
                raise ConfigurationError("Defensible bands must be ordered and non-overlapping")
            previous_max = band.max_m
        return self

    @property
    def weights(self) -> tuple[float, float, float]:
        return (self.alpha, self.beta, self.gamma)
