"""Snapshot — the complete, immutable-by-convention state after one tick.

A snapshot is everything a reader needs: cells with their risk index,
zones with Qj and dispatch inputs, the fleet, the Pz ranking, this tick's
route manifest, the backlog, the compliance report and any handled issues.
It holds no wall-clock data, so two replays of the same input produce
equal snapshots.

Persistence is versioned JSON.  ``save_snapshot`` followed by
``load_snapshot`` returns a snapshot equal to the one saved.
"""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field
from pathlib import Path

from emberline.assets.fleet import Asset
from emberline.dispatch.assigner import Assignment, BacklogEntry
from emberline.dispatch.priority import RankedZone
from emberline.errors import ConfigurationError, Issue, SnapshotError
from emberline.grid.cell import Cell, Patch
from emberline.scoring.compliance import ComplianceEntry

FORMAT_VERSION = 1


@dataclass
class Snapshot:
    tick: int = 0
    time_h: float = 0.0
    cells: dict[str, Cell] = field(default_factory=dict)
    patches: dict[str, Patch] = field(default_factory=dict)
    assets: dict[str, Asset] = field(default_factory=dict)
    ranking: tuple[RankedZone, ...] = ()
    manifest: tuple[Assignment, ...] = ()
    completions: tuple[Assignment, ...] = ()
    backlog: tuple[BacklogEntry, ...] = ()
    compliance: tuple[ComplianceEntry, ...] = ()
    issues: tuple[Issue, ...] = ()
    format_version: int = FORMAT_VERSION

    def copy(self) -> "Snapshot":
        return copy.deepcopy(self)

    def zone(self, zone_id: str) -> Patch | None:
        return self.patches.get(zone_id)

    def asset(self, asset_id: str) -> Asset | None:
        return self.assets.get(asset_id)

    def to_dict(self) -> dict:
        return {
            "format_version": self.format_version,
            "tick": self.tick,
            "time_h": self.time_h,
            "cells": [self.cells[k].to_dict() for k in sorted(self.cells)],
            "patches": [self.patches[k].to_dict() for k in sorted(self.patches)],
            "assets": [self.assets[k].to_dict() for k in sorted(self.assets)],
            "ranking": [r.to_dict() for r in self.ranking],
            "manifest": [a.to_dict() for a in self.manifest],
            "completions": [a.to_dict() for a in self.completions],
            "backlog": [b.to_dict() for b in self.backlog],
            "compliance": [c.to_dict() for c in self.compliance],
            "issues": [i.to_dict() for i in self.issues],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Snapshot":
        """Rebuild a snapshot.

        Raises:
            SnapshotError: unsupported format version or malformed content.
        """
        version = data.get("format_version")
        if version != FORMAT_VERSION:
            raise SnapshotError(f"Unsupported snapshot format version: {version!r}")
        try:
            cells = [Cell.from_dict(c) for c in data.get("cells", [])]
            patches = [Patch.from_dict(p) for p in data.get("patches", [])]
            assets = [Asset.from_dict(a) for a in data.get("assets", [])]
            return cls(
                format_version=version,
                tick=int(data["tick"]),
                time_h=float(data["time_h"]),
                cells={c.cell_id: c for c in cells},
                patches={p.zone_id: p for p in patches},
                assets={a.asset_id: a for a in assets},
                ranking=tuple(RankedZone.from_dict(r) for r in data.get("ranking", [])),
                manifest=tuple(Assignment.from_dict(a) for a in data.get("manifest", [])),
                completions=tuple(Assignment.from_dict(a) for a in data.get("completions", [])),
                backlog=tuple(BacklogEntry.from_dict(b) for b in data.get("backlog", [])),
                compliance=tuple(ComplianceEntry.from_dict(c) for c in data.get("compliance", [])),
                issues=tuple(Issue.from_dict(i) for i in data.get("issues", [])),
            )
        except (KeyError, TypeError, ValueError, ConfigurationError) as e:
            raise SnapshotError(f"Corrupt snapshot: {e}") from e


def save_snapshot(snapshot: Snapshot, path: str | Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        text = json.dumps(snapshot.to_dict(), indent=1, sort_keys=True, allow_nan=False)
    except ValueError as e:
        raise SnapshotError(f"Snapshot at tick {snapshot.tick} holds a non-finite number: {e}") from e
    path.write_text(text)
    return path


def load_snapshot(path: str | Path) -> Snapshot:
    """Load a snapshot written by save_snapshot.

    Raises:
        SnapshotError: file missing, not JSON, or not a valid snapshot.
    """
    path = Path(path)
    try:
        data = json.loads(path.read_text())
    except FileNotFoundError as e:
        raise SnapshotError(f"Snapshot not found: {path}") from e
    except json.JSONDecodeError as e:
        raise SnapshotError(f"Snapshot is not valid JSON: {path}: {e}") from e
    if not isinstance(data, dict):
        raise SnapshotError(f"Snapshot root must be an object: {path}")
    return Snapshot.from_dict(data)
