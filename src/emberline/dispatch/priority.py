"""PriorityScheduler — dynamic zone ranking by dispatch priority Pz.

    Pz = deficit_mm/100 + wildlife_count/100 - recovery_stage*2.0 - distance_km/10

Order is descending Pz with ties broken by ascending zone id, so equal
floating-point scores still rank reproducibly.

The ranking lives in a binary heap keyed on (-Pz, zone_id) with an entry
map for update-key: changing one zone invalidates its old entry and pushes
a new one in O(log n); no other zone is re-scored.  Stale entries are
skipped lazily and compacted once they outnumber live ones.
"""

from __future__ import annotations

import heapq
from dataclasses import dataclass
from typing import Iterator

from emberline.grid.cell import Patch


def priority_score(deficit_mm: float, wildlife_count: int, recovery_stage: int,
                   distance_km: float) -> float:
    return (
        deficit_mm / 100.0
        + wildlife_count / 100.0
        - recovery_stage * 2.0
        - distance_km / 10.0
    )


@dataclass(frozen=True)
class RankedZone:
    zone_id: str
    score: float

    def to_dict(self) -> dict:
        return {"zone_id": self.zone_id, "score": self.score}

    @classmethod
    def from_dict(cls, data: dict) -> "RankedZone":
        return cls(zone_id=str(data["zone_id"]), score=float(data["score"]))


class PriorityScheduler:
    """Heap-backed zone ranking with O(log n) update and removal."""

    def __init__(self) -> None:
        self._heap: list[list] = []                  # [-score, zone_id, live]
        self._entries: dict[str, list] = {}          # zone_id -> live heap entry
        self._inputs: dict[str, tuple] = {}          # zone_id -> last scored inputs
        self.rescored = 0

    def copy(self) -> "PriorityScheduler":
        other = PriorityScheduler()
        # Entries are rebuilt so the copy never shares mutable lists
        for zone_id, entry in self._entries.items():
            fresh = [entry[0], zone_id, True]
            other._entries[zone_id] = fresh
            other._heap.append(fresh)
        heapq.heapify(other._heap)
        other._inputs = dict(self._inputs)
        other.rescored = self.rescored
        return other

    def upsert(self, zone: Patch) -> bool:
        """Insert or re-score a zone.  Returns False when nothing changed.

        Excluded zones are removed from the ranking.
        """
        if zone.excluded:
            return self.remove(zone.zone_id)
        inputs = (zone.deficit_mm, zone.wildlife_count, zone.recovery_stage, zone.distance_km)
        if self._inputs.get(zone.zone_id) == inputs and zone.zone_id in self._entries:
            return False
        score = priority_score(*inputs)
        self._invalidate(zone.zone_id)
        entry = [-score, zone.zone_id, True]
        self._entries[zone.zone_id] = entry
        self._inputs[zone.zone_id] = inputs
        heapq.heappush(self._heap, entry)
        self.rescored += 1
        self._maybe_compact()
        return True

    def remove(self, zone_id: str) -> bool:
        if zone_id not in self._entries:
            return False
        self._invalidate(zone_id)
        self._inputs.pop(zone_id, None)
        self._maybe_compact()
        return True

    def _invalidate(self, zone_id: str) -> None:
        entry = self._entries.pop(zone_id, None)
        if entry is not None:
            entry[2] = False

    def _maybe_compact(self) -> None:
        if len(self._heap) > 2 * len(self._entries) + 16:
            self._heap = [e for e in self._heap if e[2]]
            heapq.heapify(self._heap)

    def score(self, zone_id: str) -> float | None:
        entry = self._entries.get(zone_id)
        return -entry[0] if entry is not None else None

    def iter_ranked(self) -> Iterator[RankedZone]:
        """Yield zones best-first; popping stops as soon as the caller does."""
        heap = list(self._heap)
        while heap:
            neg_score, zone_id, live = heapq.heappop(heap)
            if live:
                yield RankedZone(zone_id, -neg_score)

    def ranked(self) -> list[RankedZone]:
        return list(self.iter_ranked())

    def top(self, n: int) -> list[RankedZone]:
        out = []
        for ranked in self.iter_ranked():
            if len(out) >= n:
                break
            out.append(ranked)
        return out

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, zone_id: object) -> bool:
        return zone_id in self._entries
