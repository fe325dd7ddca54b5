"""Exception taxonomy for the dispatch engine.

Invalid cell input and assignment infeasibility are NOT exceptions — they
are recorded on the snapshot (invalid flag, backlog).  Exceptions are for
configuration problems the operator must fix and for tick-level failures.
"""

from __future__ import annotations

from dataclasses import dataclass


class EmberlineError(Exception):
    """Base class for every engine error."""


class ConfigurationError(EmberlineError):
    """Scoring weights, asset capacity, or patch membership is malformed."""


class InvalidInputError(EmberlineError):
    """A feed row could not be parsed at all."""


class SnapshotError(EmberlineError):
    """A persisted snapshot is corrupt or has an unsupported format version."""


class TickFailedError(EmberlineError):
    """A tick hit an unrecoverable error and was rolled back."""

    def __init__(self, tick: int, reason: str) -> None:
        super().__init__(f"Tick {tick} failed: {reason}")
        self.tick = tick
        self.reason = reason


class TickAbortedError(EmberlineError):
    """A tick kept being invalidated by new input and gave up retrying."""

    def __init__(self, tick: int, attempts: int) -> None:
        super().__init__(f"Tick {tick} aborted after {attempts} attempts")
        self.tick = tick
        self.attempts = attempts


class ZoneNotFoundError(EmberlineError, KeyError):
    def __init__(self, zone_id: str) -> None:
        super().__init__(f"Zone not found: {zone_id}")
        self.zone_id = zone_id

    def __str__(self) -> str:
        return self.args[0]


class AssetNotFoundError(EmberlineError, KeyError):
    def __init__(self, asset_id: str) -> None:
        super().__init__(f"Asset not found: {asset_id}")
        self.asset_id = asset_id

    def __str__(self) -> str:
        return self.args[0]


@dataclass(frozen=True)
class Issue:
    """A handled problem surfaced to the operator on the published snapshot.

    kind is one of "invalid_cell", "configuration", "infeasible".
    """

    kind: str
    entity_id: str
    message: str

    def to_dict(self) -> dict:
        return {"kind": self.kind, "entity_id": self.entity_id, "message": self.message}

    @classmethod
    def from_dict(cls, data: dict) -> "Issue":
        return cls(kind=data["kind"], entity_id=data["entity_id"], message=data["message"])
