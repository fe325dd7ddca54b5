"""Defensible-space compliance report.

For every cell with a known distance to a structure that falls inside a
configured band, compare the band's maximum grass height with the cell's
measured height.  Cells without a measurement are listed as unmeasured
rather than guessed compliant.  This report never feeds back into Pi.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from emberline.config import DefensibleBand
from emberline.grid.cell import Cell


@dataclass(frozen=True)
class ComplianceEntry:
    cell_id: str
    distance_m: float
    required_height_cm: float
    actual_height_cm: float | None
    compliant: bool | None  # None when unmeasured

    def to_dict(self) -> dict:
        return {
            "cell_id": self.cell_id,
            "distance_m": self.distance_m,
            "required_height_cm": self.required_height_cm,
            "actual_height_cm": self.actual_height_cm,
            "compliant": self.compliant,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ComplianceEntry":
        return cls(
            cell_id=data["cell_id"],
            distance_m=data["distance_m"],
            required_height_cm=data["required_height_cm"],
            actual_height_cm=data["actual_height_cm"],
            compliant=data["compliant"],
        )


def band_for(bands: Iterable[DefensibleBand], distance_m: float) -> DefensibleBand | None:
    for band in bands:
        if band.contains(distance_m):
            return band
    return None


def compliance_report(cells: Iterable[Cell], bands: tuple[DefensibleBand, ...]) -> tuple[ComplianceEntry, ...]:
    """Build the report, ordered by cell id."""
    entries = []
    for cell in sorted(cells, key=lambda c: c.cell_id):
        if cell.distance_to_structure_m is None:
            continue
        band = band_for(bands, cell.distance_to_structure_m)
        if band is None:
            continue
        actual = cell.grass_height_cm
        entries.append(ComplianceEntry(
            cell_id=cell.cell_id,
            distance_m=cell.distance_to_structure_m,
            required_height_cm=band.max_grass_height_cm,
            actual_height_cm=actual,
            compliant=None if actual is None else actual <= band.max_grass_height_cm,
        ))
    return tuple(entries)


def non_compliant(entries: Iterable[ComplianceEntry]) -> list[ComplianceEntry]:
    return [e for e in entries if e.compliant is False]
