"""GridStore — single authoritative owner of the published snapshot.

Readers call ``latest()`` and never wait on a tick in progress: a tick
builds a whole new Snapshot and ``publish()`` swaps the reference under a
short lock.

Ingestion (cell updates, zone definitions, asset registrations, events)
is queued here and bumps a generation counter.  A tick records the
generation it started from; if ingestion happened while it was computing,
``publish()`` refuses the stale result and the tick is re-run from the
latest committed snapshot plus everything queued.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field

from emberline.assets.fleet import Asset
from emberline.grid.cell import Cell, Patch
from emberline.grid.snapshot import Snapshot
from emberline.simulation.events import Event


@dataclass
class PendingInput:
    """Everything queued for the next tick, keyed for deterministic replay."""

    cells: dict[str, Cell] = field(default_factory=dict)
    patches: dict[str, Patch] = field(default_factory=dict)
    assets: dict[str, Asset] = field(default_factory=dict)
    events: list[Event] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.cells or self.patches or self.assets or self.events)


class GridStore:
    """Thread-safe holder of the committed snapshot and queued input."""

    def __init__(self, snapshot: Snapshot | None = None) -> None:
        self._lock = threading.Lock()
        self._snapshot = snapshot or Snapshot()
        self._generation = 0
        self._pending = PendingInput()

    # -- readers -----------------------------------------------------------

    def latest(self) -> Snapshot:
        """The most recently published snapshot; treat it as read-only."""
        with self._lock:
            return self._snapshot

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    # -- ingestion ---------------------------------------------------------

    def ingest_cells(self, cells: list[Cell]) -> None:
        with self._lock:
            for cell in cells:
                self._pending.cells[cell.cell_id] = cell
            self._generation += 1

    def ingest_patches(self, patches: list[Patch]) -> None:
        with self._lock:
            for patch in patches:
                self._pending.patches[patch.zone_id] = patch
            self._generation += 1

    def register_assets(self, assets: list[Asset]) -> None:
        with self._lock:
            for asset in assets:
                self._pending.assets[asset.asset_id] = asset
            self._generation += 1

    def submit_events(self, events: list[Event]) -> None:
        with self._lock:
            self._pending.events.extend(events)
            self._generation += 1

    # -- tick side ---------------------------------------------------------

    def begin(self) -> tuple[int, Snapshot, PendingInput]:
        """Generation, committed snapshot and a copy of queued input."""
        with self._lock:
            pending = PendingInput(
                cells=dict(self._pending.cells),
                patches=dict(self._pending.patches),
                assets=dict(self._pending.assets),
                events=list(self._pending.events),
            )
            return self._generation, self._snapshot, pending

    def publish(self, snapshot: Snapshot, generation: int,
                deferred_events: list[Event] | None = None) -> bool:
        """Swap in ``snapshot`` if nothing was ingested since ``generation``.

        On success the queued input is consumed; events scheduled for a
        later tick (``deferred_events``) stay queued.
        """
        with self._lock:
            if generation != self._generation:
                return False
            self._snapshot = snapshot
            self._pending = PendingInput(events=list(deferred_events or ()))
            return True

    def reset(self, snapshot: Snapshot) -> None:
        """Replace the committed snapshot outright and drop queued input."""
        with self._lock:
            self._snapshot = snapshot
            self._pending = PendingInput()
            self._generation += 1
