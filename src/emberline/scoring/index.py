"""IndexEngine — per-cell risk index and defensible-space band.

Pi is a pure function of a cell's (Vi, Gi, Si) and the configured weights.
Two scoring rules exist for Pi and neither is canonical yet, so the rule is
a named strategy picked by configuration:

    weighted_sum:  Pi = alpha*Vi + beta*Gi + gamma*Si
    product:       Pi = Vi * Gi * Si

Scoring is vectorized with numpy.  Cells are independent, so large grids
can be split into chunks and scored on a thread pool; the per-element
arithmetic is identical either way, so results do not depend on the worker
count.  Inputs outside [0, 1] (or NaN) never raise: the cell is flagged
invalid and scores 0.0.
"""

from __future__ import annotations

import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable, Iterable, Sequence

import numpy as np

from emberline.config import (
    DEFAULT_ALPHA,
    DEFAULT_BETA,
    DEFAULT_GAMMA,
    RISK_HIGH_THRESHOLD,
    RISK_MEDIUM_THRESHOLD,
    WEIGHT_TOLERANCE,
)
from emberline.errors import ConfigurationError
from emberline.grid.cell import Cell, RiskBand

if TYPE_CHECKING:
    from emberline.config import EngineConfig

Weights = tuple[float, float, float]
StrategyFn = Callable[[np.ndarray, np.ndarray, np.ndarray, Weights], np.ndarray]


class ScoringStrategy(str, Enum):
    """Built-in scoring rules."""
    WEIGHTED_SUM = "weighted_sum"
    PRODUCT = "product"


def _weighted_sum(v: np.ndarray, g: np.ndarray, s: np.ndarray, w: Weights) -> np.ndarray:
    return w[0] * v + w[1] * g + w[2] * s


def _product(v: np.ndarray, g: np.ndarray, s: np.ndarray, w: Weights) -> np.ndarray:
    return v * g * s


_STRATEGIES: dict[str, StrategyFn] = {
    ScoringStrategy.WEIGHTED_SUM.value: _weighted_sum,
    ScoringStrategy.PRODUCT.value: _product,
}


def register_strategy(name: str, fn: StrategyFn) -> None:
    """Register a custom scoring rule under ``name``.

    ``fn`` receives three float64 arrays and the weight tuple and must
    return an array of the same shape.  Output is clamped to [0, 1].
    """
    _STRATEGIES[name] = fn


def available_strategies() -> list[str]:
    return sorted(_STRATEGIES)


@dataclass(frozen=True)
class CellScore:
    risk: float
    band: RiskBand
    valid: bool


@dataclass(frozen=True)
class ScoreChange:
    """A cell whose risk or validity changed during a scoring pass."""
    cell_id: str
    old_risk: float
    new_risk: float
    old_valid: bool
    new_valid: bool


# Defensible zone in decimeters (inner, middle, outer) and advice per band
_DEFENSIBLE_ZONES = {
    RiskBand.LOW: (0, 100, 20),
    RiskBand.MEDIUM: (100, 200, 20),
    RiskBand.HIGH: (200, 300, 30),
}

_RECOMMENDATIONS = {
    RiskBand.LOW: "Low risk: maintain 0-10m defensible space",
    RiskBand.MEDIUM: "Medium risk: implement 10-30m defensible space",
    RiskBand.HIGH: "High risk: full 0-30m defensible space and invasive grass removal",
}


def classify(risk: float) -> RiskBand:
    """Band for a risk index; lower bounds are inclusive (0.33 -> MEDIUM)."""
    if risk >= RISK_HIGH_THRESHOLD:
        return RiskBand.HIGH
    if risk >= RISK_MEDIUM_THRESHOLD:
        return RiskBand.MEDIUM
    return RiskBand.LOW


def recommendation(band: RiskBand) -> str:
    return _RECOMMENDATIONS[band]


def defensible_zone(band: RiskBand) -> tuple[int, int, int]:
    return _DEFENSIBLE_ZONES[band]


def normalize_raw(trees_per_ha: float, grass_percent: float, slope_degrees: float) -> Weights:
    """Normalize field units to [0, 1]: 1000 trees/ha, 100 %, 60 degrees."""
    return (
        min(trees_per_ha / 1000.0, 1.0),
        grass_percent / 100.0,
        min(slope_degrees / 60.0, 1.0),
    )


class IndexEngine:
    """Scores cells with a configured strategy and weight set."""

    def __init__(
        self,
        weights: Weights = (DEFAULT_ALPHA, DEFAULT_BETA, DEFAULT_GAMMA),
        strategy: str | ScoringStrategy = ScoringStrategy.WEIGHTED_SUM,
        workers: int = 1,
    ) -> None:
        if len(weights) != 3 or abs(math.fsum(weights) - 1.0) > WEIGHT_TOLERANCE:
            raise ConfigurationError(f"Scoring weights must sum to 1.0: {tuple(weights)}")
        name = strategy.value if isinstance(strategy, ScoringStrategy) else str(strategy)
        if name not in _STRATEGIES:
            raise ConfigurationError(
                f"Unknown scoring strategy '{name}' (known: {', '.join(available_strategies())})"
            )
        self.weights: Weights = tuple(float(w) for w in weights)
        self.strategy = name
        self.workers = max(1, int(workers))
        self._fn = _STRATEGIES[name]

    @classmethod
    def from_config(cls, config: EngineConfig) -> "IndexEngine":
        return cls(config.weights, config.strategy, config.index_workers)

    # -- array API ---------------------------------------------------------

    def score_arrays(
        self, v: Sequence[float], g: Sequence[float], s: Sequence[float],
    ) -> tuple[np.ndarray, np.ndarray]:
        """Score equal-length input arrays.

        Returns:
            (risk, valid) arrays.  Invalid entries have risk 0.0.
        """
        v = np.asarray(v, dtype=np.float64)
        g = np.asarray(g, dtype=np.float64)
        s = np.asarray(s, dtype=np.float64)
        if self.workers == 1 or v.size < 2 * self.workers:
            return self._score_chunk(v, g, s)

        bounds = np.linspace(0, v.size, self.workers + 1, dtype=int)
        chunks = [(v[a:b], g[a:b], s[a:b]) for a, b in zip(bounds[:-1], bounds[1:])]
        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            parts = list(pool.map(lambda c: self._score_chunk(*c), chunks))
        return (
            np.concatenate([p[0] for p in parts]),
            np.concatenate([p[1] for p in parts]),
        )

    def _score_chunk(self, v: np.ndarray, g: np.ndarray, s: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        with np.errstate(invalid="ignore"):
            valid = (
                np.isfinite(v) & np.isfinite(g) & np.isfinite(s)
                & (v >= 0.0) & (v <= 1.0)
                & (g >= 0.0) & (g <= 1.0)
                & (s >= 0.0) & (s <= 1.0)
            )
        safe_v = np.where(valid, v, 0.0)
        safe_g = np.where(valid, g, 0.0)
        safe_s = np.where(valid, s, 0.0)
        risk = np.clip(self._fn(safe_v, safe_g, safe_s, self.weights), 0.0, 1.0)
        return np.where(valid, risk, 0.0), valid

    # -- scalar / cell API -------------------------------------------------

    def score(self, vegetation: float, grass: float, slope: float) -> CellScore:
        risk, valid = self.score_arrays([vegetation], [grass], [slope])
        r = float(risk[0])
        return CellScore(risk=r, band=classify(r), valid=bool(valid[0]))

    def score_cell(self, cell: Cell) -> ScoreChange | None:
        """Score one cell in place; returns the change, if any."""
        changes = self.score_cells([cell])
        return changes[0] if changes else None

    def score_cells(self, cells: Iterable[Cell]) -> list[ScoreChange]:
        """Write Pi, band, and validity onto each cell.

        Returns the cells whose risk or validity changed, in input order.
        """
        cells = list(cells)
        if not cells:
            return []
        risk, valid = self.score_arrays(
            [c.vegetation for c in cells],
            [c.grass for c in cells],
            [c.slope for c in cells],
        )
        changes: list[ScoreChange] = []
        for cell, r, ok in zip(cells, risk.tolist(), valid.tolist()):
            if cell.risk != r or cell.valid != ok:
                changes.append(ScoreChange(cell.cell_id, cell.risk, r, cell.valid, ok))
            cell.risk = r
            cell.valid = ok
            cell.band = classify(r)
        return changes
