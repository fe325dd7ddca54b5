"""Simulation subsystem — asset FSM, tick clock, pipeline engine.

The clock and engine sit on top of the dispatch and grid packages, so they
are imported by module path (``emberline.simulation.engine``) rather than
re-exported here.
"""
from .asset_states import ALL_STATES, IN_MISSION_STATES, create_asset_fsm, step_asset
from .events import DisturbanceEvent, EnergyLossEvent, parse_event
from .state_machine import State, StateMachine, Transition

__all__ = [
    "ALL_STATES",
    "DisturbanceEvent",
    "EnergyLossEvent",
    "IN_MISSION_STATES",
    "State",
    "StateMachine",
    "Transition",
    "create_asset_fsm",
    "parse_event",
    "step_asset",
]
