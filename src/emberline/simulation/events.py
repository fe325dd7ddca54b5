"""Inputs the clock applies at a tick boundary.

Two kinds, both keyed by the tick they take effect in:

  - DisturbanceEvent: fire, mowing, grazing... on a zone.  Resets the
    zone's recovery stage to 0.
  - EnergyLossEvent: an asset lost energy it did not plan for (headwind,
    battery fault).  Can push an asset in flight into emergency return.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from emberline.errors import InvalidInputError


@dataclass(frozen=True)
class DisturbanceEvent:
    zone_id: str
    event_type: str
    tick: int

    kind = "disturbance"

    def to_dict(self) -> dict:
        return {"kind": self.kind, "zone_id": self.zone_id, "event_type": self.event_type, "tick": self.tick}


@dataclass(frozen=True)
class EnergyLossEvent:
    asset_id: str
    energy_j: float
    tick: int
    reason: str = ""

    kind = "energy_loss"

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "asset_id": self.asset_id,
            "energy_j": self.energy_j,
            "tick": self.tick,
            "reason": self.reason,
        }


Event = Union[DisturbanceEvent, EnergyLossEvent]


def parse_event(data: dict) -> Event:
    """Build an event from its dict form.

    Raises:
        InvalidInputError: unknown kind, missing field, or bad value.
    """
    kind = data.get("kind", "disturbance")
    try:
        if kind == "disturbance":
            return DisturbanceEvent(
                zone_id=str(data["zone_id"]),
                event_type=str(data.get("event_type", "disturbance")),
                tick=int(data["tick"]),
            )
        if kind == "energy_loss":
            energy = float(data["energy_j"])
            if energy < 0.0:
                raise ValueError(f"energy_j must be >= 0 (got {energy})")
            return EnergyLossEvent(
                asset_id=str(data["asset_id"]),
                energy_j=energy,
                tick=int(data["tick"]),
                reason=str(data.get("reason", "")),
            )
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidInputError(f"Bad {kind} event {data!r}: {e}") from e
    raise InvalidInputError(f"Unknown event kind '{kind}'")


def event_sort_key(event: Event) -> tuple:
    """Deterministic application order within a tick."""
    if isinstance(event, DisturbanceEvent):
        return (event.tick, 0, event.zone_id, event.event_type, 0.0)
    return (event.tick, 1, event.asset_id, event.reason, event.energy_j)
