"""PatchAggregator — patch membership and patch-level risk sums (Qj).

Qj is accumulated in fixed-point integer units (1e-12 of a risk point), so
an incremental delta update and a full recompute always produce the same
total bit-for-bit; floating-point drift cannot creep in over many ticks.

Two update paths:
    - update_cell(): one cell's Pi changed -> O(1) delta on its owner.
    - recompute(): membership changed -> full sum for that patch only.
"""

from __future__ import annotations

from typing import Mapping

from loguru import logger

from emberline.errors import ConfigurationError, Issue
from emberline.grid.cell import Cell, Patch

SCALE = 10 ** 12


def to_units(risk: float) -> int:
    return round(risk * SCALE)


def unowned_cells(patches: Mapping[str, Patch], cells: Mapping[str, Cell]) -> list[str]:
    """Cells no patch lists, sorted."""
    claimed = {cid for patch in patches.values() for cid in patch.cell_ids}
    return sorted(cid for cid in cells if cid not in claimed)


class PatchAggregator:
    """Owns patch -> cells and cell -> patch maps plus each patch's Qj."""

    def __init__(self) -> None:
        self._members: dict[str, tuple[str, ...]] = {}
        self._owner: dict[str, str] = {}
        self._totals: dict[str, int] = {}
        self._dirty: set[str] = set()
        self.full_recomputes = 0

    def copy(self) -> "PatchAggregator":
        other = PatchAggregator()
        other._members = dict(self._members)
        other._owner = dict(self._owner)
        other._totals = dict(self._totals)
        other._dirty = set(self._dirty)
        other.full_recomputes = self.full_recomputes
        return other

    # -- membership --------------------------------------------------------

    def build(self, patches: Mapping[str, Patch], cells: Mapping[str, Cell]) -> list[Issue]:
        """Load every patch's membership, excluding malformed patches.

        A patch is excluded when it references an unknown cell, lists a cell
        more than once, or shares a cell with another patch (membership is
        exclusive).  Excluded patches get ``excluded=True`` and Qj 0.0; the
        rest are fully recomputed.
        """
        self._members.clear()
        self._owner.clear()
        self._totals.clear()

        issues: list[Issue] = []
        bad: dict[str, str] = {}
        claims: dict[str, list[str]] = {}
        for zone_id in sorted(patches):
            seen: set[str] = set()
            for cell_id in patches[zone_id].cell_ids:
                if cell_id in seen:
                    bad.setdefault(zone_id, f"lists cell {cell_id} more than once")
                    continue
                seen.add(cell_id)
                claims.setdefault(cell_id, []).append(zone_id)

        for cell_id in sorted(claims):
            owners = claims[cell_id]
            if cell_id not in cells:
                for zone_id in owners:
                    bad.setdefault(zone_id, f"references unknown cell {cell_id}")
            elif len(owners) > 1:
                for zone_id in owners:
                    bad.setdefault(zone_id, f"cell {cell_id} claimed more than once ({', '.join(owners)})")

        for zone_id in sorted(patches):
            patch = patches[zone_id]
            if zone_id in bad:
                patch.excluded = True
                patch.qj = 0.0
                logger.warning(f"Patch {zone_id} excluded: {bad[zone_id]}")
                issues.append(Issue("configuration", zone_id, bad[zone_id]))
                continue
            patch.excluded = False
            self._members[zone_id] = tuple(patch.cell_ids)
            for cell_id in patch.cell_ids:
                self._owner[cell_id] = zone_id
            self.recompute(zone_id, cells)
            patch.qj = self.qj(zone_id)

        orphans = unowned_cells(patches, cells)
        if orphans:
            logger.debug(f"{len(orphans)} cells belong to no patch")
        return issues

    def set_membership(self, zone_id: str, cell_ids: tuple[str, ...] | list[str],
                       cells: Mapping[str, Cell]) -> None:
        """Replace a patch's member list and fully recompute that patch.

        Raises:
            ConfigurationError: a cell is unknown, listed twice, or owned by
                another patch.
        """
        cell_ids = tuple(cell_ids)
        for cell_id in cell_ids:
            if cell_id not in cells:
                raise ConfigurationError(f"Patch {zone_id} references unknown cell {cell_id}")
            owner = self._owner.get(cell_id)
            if owner is not None and owner != zone_id:
                raise ConfigurationError(f"Cell {cell_id} already belongs to patch {owner}")
        if len(set(cell_ids)) != len(cell_ids):
            raise ConfigurationError(f"Patch {zone_id} lists a cell more than once")

        for cell_id in self._members.get(zone_id, ()):
            self._owner.pop(cell_id, None)
        self._members[zone_id] = cell_ids
        for cell_id in cell_ids:
            self._owner[cell_id] = zone_id
        self.recompute(zone_id, cells)

    def add_cell(self, zone_id: str, cell_id: str, cells: Mapping[str, Cell]) -> None:
        self.set_membership(zone_id, self._members.get(zone_id, ()) + (cell_id,), cells)

    def remove_cell(self, zone_id: str, cell_id: str, cells: Mapping[str, Cell]) -> None:
        remaining = tuple(c for c in self._members.get(zone_id, ()) if c != cell_id)
        self.set_membership(zone_id, remaining, cells)

    def drop_patch(self, zone_id: str) -> None:
        for cell_id in self._members.pop(zone_id, ()):
            self._owner.pop(cell_id, None)
        self._totals.pop(zone_id, None)
        self._dirty.discard(zone_id)

    # -- sums --------------------------------------------------------------

    def recompute(self, zone_id: str, cells: Mapping[str, Cell]) -> None:
        """Full sum over the patch's current valid member cells."""
        total = 0
        for cell_id in self._members.get(zone_id, ()):
            cell = cells[cell_id]
            if cell.valid:
                total += to_units(cell.risk)
        self._totals[zone_id] = total
        self._dirty.add(zone_id)
        self.full_recomputes += 1

    def update_cell(self, cell_id: str, old_risk: float, new_risk: float,
                    old_valid: bool = True, new_valid: bool = True) -> str | None:
        """Apply one cell's Pi change to its owning patch in O(1).

        Returns the owning zone id, or None for cells outside every patch.
        """
        zone_id = self._owner.get(cell_id)
        if zone_id is None:
            return None
        old = to_units(old_risk) if old_valid else 0
        new = to_units(new_risk) if new_valid else 0
        if old != new:
            self._totals[zone_id] += new - old
            self._dirty.add(zone_id)
        return zone_id

    def qj(self, zone_id: str) -> float:
        return self._totals.get(zone_id, 0) / SCALE

    def members(self, zone_id: str) -> tuple[str, ...]:
        return self._members.get(zone_id, ())

    def owner(self, cell_id: str) -> str | None:
        return self._owner.get(cell_id)

    def verify(self, zone_id: str, cells: Mapping[str, Cell]) -> bool:
        """True when the running total equals a fresh sum of member cells."""
        expected = sum(
            to_units(cells[c].risk) for c in self._members.get(zone_id, ()) if cells[c].valid
        )
        return expected == self._totals.get(zone_id, 0)

    def dirty_zones(self) -> list[str]:
        return sorted(self._dirty)

    def clear_dirty(self) -> None:
        self._dirty.clear()

    def zone_ids(self) -> list[str]:
        return sorted(self._members)

    def total_units(self, zone_id: str) -> int:
        """Raw fixed-point total (Qj * 1e12) for exact comparisons."""
        return self._totals.get(zone_id, 0)
