"""One-way telemetry emission for published ticks."""

from emberline.comms.event_bus import EventBus

__all__ = ["EventBus"]
