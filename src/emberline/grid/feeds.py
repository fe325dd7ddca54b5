"""Feed parsers — cell attributes, zones, asset registry, events.

Cell feeds come as CSV or JSON.  Either form may give positions in local
meters (``x``/``y``) or in ``lat``/``lng`` (converted through a
GeoReference), and signals either normalized (``vegetation``, ``grass``,
``slope``) or in field units (``trees_per_ha``, ``grass_percent``,
``slope_degrees``), which are normalized on the way in.

A row that cannot be read at all raises InvalidInputError.  A row that
reads fine but carries out-of-range signals is kept: the index engine
marks that cell invalid for the tick instead.
"""

from __future__ import annotations

import csv
import io
import json
from pathlib import Path
from typing import Any

from emberline.assets.fleet import Asset
from emberline.errors import InvalidInputError
from emberline.geo.reference import GeoReference, latlng_to_local
from emberline.grid.cell import Cell, Patch
from emberline.scoring.index import normalize_raw
from emberline.simulation.events import Event, parse_event

_OPTIONAL_FLOATS = ("distance_to_structure_m", "grass_height_cm")


def _number(row: dict, key: str) -> float:
    value = row[key]
    if isinstance(value, str):
        value = value.strip()
    return float(value)


def _maybe_number(row: dict, key: str) -> float | None:
    value = row.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return _number(row, key)


def _position(row: dict, ref: GeoReference | None) -> tuple[float, float]:
    if "x" in row and "y" in row and row["x"] not in (None, ""):
        return (_number(row, "x"), _number(row, "y"))
    if "lat" in row and "lng" in row:
        if ref is None:
            raise KeyError("lat/lng given without a geo reference")
        return latlng_to_local(_number(row, "lat"), _number(row, "lng"), ref)
    raise KeyError("x/y or lat/lng")


def _signals(row: dict) -> tuple[float, float, float]:
    if "vegetation" in row and row["vegetation"] not in (None, ""):
        return (_number(row, "vegetation"), _number(row, "grass"), _number(row, "slope"))
    return normalize_raw(
        _number(row, "trees_per_ha"),
        _number(row, "grass_percent"),
        _number(row, "slope_degrees"),
    )


def cell_from_row(row: dict, ref: GeoReference | None = None) -> Cell:
    """Build a Cell from one feed record (CSV row or JSON object)."""
    row = {str(k).strip().lower(): v for k, v in row.items() if k is not None}
    try:
        cell_id = str(row["cell_id"]).strip()
        if not cell_id:
            raise ValueError("empty cell_id")
        x, y = _position(row, ref)
        v, g, s = _signals(row)
        extras = {key: _maybe_number(row, key) for key in _OPTIONAL_FLOATS}
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidInputError(f"Unreadable cell record {row!r}: {e}") from e
    return Cell(cell_id=cell_id, x=x, y=y, vegetation=v, grass=g, slope=s, **extras)


def parse_cells_csv(csv_string: str, ref: GeoReference | None = None) -> list[Cell]:
    """Parse a CSV string with a header row into Cells."""
    reader = csv.DictReader(io.StringIO(csv_string))
    if reader.fieldnames is None:
        return []
    cells = []
    for line, row in enumerate(reader, start=2):
        try:
            cells.append(cell_from_row(row, ref))
        except InvalidInputError as e:
            raise InvalidInputError(f"line {line}: {e}") from e
    return cells


def _records(data: Any, key: str) -> list[dict]:
    if isinstance(data, dict):
        data = data.get(key, [])
    if not isinstance(data, list) or not all(isinstance(r, dict) for r in data):
        raise InvalidInputError(f"Expected a list of '{key}' objects")
    return data


def parse_cells_json(data: Any, ref: GeoReference | None = None) -> list[Cell]:
    """Parse ``{"cells": [...]}`` or a bare list of cell objects."""
    return [cell_from_row(r, ref) for r in _records(data, "cells")]


def parse_zones_json(data: Any) -> list[Patch]:
    zones = []
    for record in _records(data, "zones"):
        try:
            zones.append(Patch(
                zone_id=str(record["zone_id"]),
                name=str(record.get("name", "")),
                cell_ids=tuple(str(c) for c in record.get("cell_ids", ())),
                deficit_mm=float(record.get("deficit_mm", 0.0)),
                wildlife_count=int(record.get("wildlife_count", 0)),
                recovery_stage=int(record.get("recovery_stage", 0)),
            ))
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidInputError(f"Unreadable zone record {record!r}: {e}") from e
    return zones


def parse_assets_json(data: Any, ref: GeoReference | None = None) -> list[Asset]:
    """Parse the asset registry.  Depots may be ``[x, y]`` or ``{"lat", "lng"}``."""
    assets = []
    for record in _records(data, "assets"):
        record = dict(record)
        depot = record.get("depot")
        if isinstance(depot, dict):
            if ref is None:
                raise InvalidInputError(f"Asset {record.get('asset_id')} depot in lat/lng without a geo reference")
            record["depot"] = latlng_to_local(float(depot["lat"]), float(depot["lng"]), ref)
        try:
            assets.append(Asset.from_dict(record))
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidInputError(f"Unreadable asset record {record!r}: {e}") from e
    return assets


def parse_events_json(data: Any) -> list[Event]:
    return [parse_event(r) for r in _records(data, "events")]


# -- file loaders -----------------------------------------------------------

def _read_json(path: Path) -> Any:
    try:
        return json.loads(path.read_text())
    except json.JSONDecodeError as e:
        raise InvalidInputError(f"{path}: not valid JSON: {e}") from e


def load_cells(path: str | Path, ref: GeoReference | None = None) -> list[Cell]:
    path = Path(path)
    if path.suffix.lower() == ".csv":
        return parse_cells_csv(path.read_text(), ref)
    return parse_cells_json(_read_json(path), ref)


def load_zones(path: str | Path) -> list[Patch]:
    return parse_zones_json(_read_json(Path(path)))


def load_assets(path: str | Path, ref: GeoReference | None = None) -> list[Asset]:
    return parse_assets_json(_read_json(Path(path)), ref)


def load_events(path: str | Path) -> list[Event]:
    return parse_events_json(_read_json(Path(path)))
