"""Grid state — cells, zones, snapshots and the store that publishes them.

Only the leaf data types are re-exported here; import ``store``,
``snapshot`` and ``feeds`` by module path.
"""

from emberline.grid.cell import Cell, Patch, RiskBand, in_unit_range

__all__ = ["Cell", "Patch", "RiskBand", "in_unit_range"]
