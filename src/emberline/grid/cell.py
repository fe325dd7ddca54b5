"""Cell and Patch dataclasses — the spatial state of one simulation tick.

Coordinates are local meters (+X east, +Y north).  Cells carry the
normalized environmental signals and the derived risk index; patches
(a.k.a. zones) group cells into dispatch units.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum


class RiskBand(Enum):
    """Defensible-space band derived from a cell's risk index."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# Stored in place of a NaN or infinite signal: outside [0, 1] and equal to itself
INVALID_SIGNAL = -1.0


def in_unit_range(value: float) -> bool:
    """True when value is a finite number inside [0, 1]."""
    return isinstance(value, (int, float)) and math.isfinite(value) and 0.0 <= value <= 1.0


def _non_finite(value) -> bool:
    return isinstance(value, float) and not math.isfinite(value)


@dataclass
class Cell:
    """Smallest spatial unit (10 x 10 m by default).

    Attributes:
        cell_id: Unique identifier.
        x, y: Cell center in local meters.
        vegetation: Vi, normalized vegetation density.
        grass: Gi, normalized invasive-grass coverage.
        slope: Si, normalized slope steepness.
        distance_to_structure_m: Distance to the nearest structure, if known.
        grass_height_cm: Measured grass height, used only for compliance.
        risk: Pi, derived risk index in [0, 1].
        band: Risk band derived from Pi.
        valid: False when any input lies outside [0, 1]; such cells are
            excluded from aggregation for the tick.

    Non-finite signals are stored as INVALID_SIGNAL and non-finite
    measurements as None, so a cell always equals its own reloaded copy.
    """

    cell_id: str
    x: float
    y: float
    vegetation: float
    grass: float
    slope: float
    distance_to_structure_m: float | None = None
    grass_height_cm: float | None = None
    risk: float = 0.0
    band: RiskBand = RiskBand.LOW
    valid: bool = True

    def __post_init__(self) -> None:
        for name in ("vegetation", "grass", "slope"):
            if _non_finite(getattr(self, name)):
                setattr(self, name, INVALID_SIGNAL)
        for name in ("distance_to_structure_m", "grass_height_cm"):
            if _non_finite(getattr(self, name)):
                setattr(self, name, None)

    @property
    def inputs(self) -> tuple[float, float, float]:
        return (self.vegetation, self.grass, self.slope)

    @property
    def position(self) -> tuple[float, float]:
        return (self.x, self.y)

    def inputs_in_range(self) -> bool:
        return all(in_unit_range(v) for v in self.inputs)

    def to_dict(self) -> dict:
        return {
            "cell_id": self.cell_id,
            "x": self.x,
            "y": self.y,
            "vegetation": self.vegetation,
            "grass": self.grass,
            "slope": self.slope,
            "distance_to_structure_m": self.distance_to_structure_m,
            "grass_height_cm": self.grass_height_cm,
            "risk": self.risk,
            "band": self.band.value,
            "valid": self.valid,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Cell":
        return cls(
            cell_id=str(data["cell_id"]),
            x=float(data["x"]),
            y=float(data["y"]),
            vegetation=float(data["vegetation"]),
            grass=float(data["grass"]),
            slope=float(data["slope"]),
            distance_to_structure_m=data.get("distance_to_structure_m"),
            grass_height_cm=data.get("grass_height_cm"),
            risk=float(data.get("risk", 0.0)),
            band=RiskBand(data.get("band", RiskBand.LOW.value)),
            valid=bool(data.get("valid", True)),
        )


@dataclass
class Patch:
    """A named group of cells treated as one dispatch unit (zone).

    Attributes:
        zone_id: Unique identifier; ties in priority break on this, ascending.
        cell_ids: Ordered member cell ids.
        qj: Sum of member cells' risk index (valid cells only).
        deficit_mm: Water deficit.
        wildlife_count: Native wildlife individuals observed.
        recovery_stage: Ticks since the last disturbance event.
        centroid: Mean member cell position in local meters.
        distance_km: Distance from centroid to the nearest asset depot.
        last_serviced_tick: Tick of the last completed delivery, if any.
        excluded: True when membership is malformed for this tick.
    """

    zone_id: str
    cell_ids: tuple[str, ...] = ()
    qj: float = 0.0
    deficit_mm: float = 0.0
    wildlife_count: int = 0
    recovery_stage: int = 0
    centroid: tuple[float, float] = (0.0, 0.0)
    distance_km: float = 0.0
    last_serviced_tick: int | None = None
    excluded: bool = False
    name: str = field(default="")

    def to_dict(self) -> dict:
        return {
            "zone_id": self.zone_id,
            "name": self.name,
            "cell_ids": list(self.cell_ids),
            "qj": self.qj,
            "deficit_mm": self.deficit_mm,
            "wildlife_count": self.wildlife_count,
            "recovery_stage": self.recovery_stage,
            "centroid": list(self.centroid),
            "distance_km": self.distance_km,
            "last_serviced_tick": self.last_serviced_tick,
            "excluded": self.excluded,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Patch":
        centroid = data.get("centroid", (0.0, 0.0))
        return cls(
            zone_id=str(data["zone_id"]),
            name=data.get("name", ""),
            cell_ids=tuple(str(c) for c in data.get("cell_ids", ())),
            qj=float(data.get("qj", 0.0)),
            deficit_mm=float(data.get("deficit_mm", 0.0)),
            wildlife_count=int(data.get("wildlife_count", 0)),
            recovery_stage=int(data.get("recovery_stage", 0)),
            centroid=(float(centroid[0]), float(centroid[1])),
            distance_km=float(data.get("distance_km", 0.0)),
            last_serviced_tick=data.get("last_serviced_tick"),
            excluded=bool(data.get("excluded", False)),
        )
