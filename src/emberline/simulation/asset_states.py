"""Asset mission FSM — lifecycle of a delivery asset across ticks.

The FSM is driven by a context dict the clock builds for each asset on
each tick:

    has_mission:   bool -- a planned mission is attached to the asset
    arrived:       bool -- outbound leg finished
    service_done:  bool -- last delivery made
    at_base:       bool -- asset is back at its depot
    energy_short:  bool -- projected battery is below the cost of returning
    recharged:     bool -- battery restored (window reached) or still usable
    next_leg:      bool -- another leg is queued behind the one just finished

Lifecycle:
  idle -> en_route -> servicing -> returning -> recharging -> idle

An asset back at base with a queued leg goes straight out again
(returning -> en_route) instead of recharging.

Any airborne/on-road state short-circuits to emergency_return when
energy_short is set; emergency_return always lands in recharging, never
back in servicing.  The asset's ``status`` field stores the state name, so
the machine is rebuilt from it each tick and carries no hidden state.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from .state_machine import State, StateMachine

if TYPE_CHECKING:
    from emberline.assets.fleet import Asset

IDLE = "idle"
EN_ROUTE = "en_route"
SERVICING = "servicing"
RETURNING = "returning"
RECHARGING = "recharging"
EMERGENCY_RETURN = "emergency_return"

ALL_STATES = (IDLE, EN_ROUTE, SERVICING, RETURNING, RECHARGING, EMERGENCY_RETURN)
IN_MISSION_STATES = (EN_ROUTE, SERVICING, RETURNING)


def create_asset_fsm(initial: str = IDLE) -> StateMachine:
    """Create the mission FSM, starting in ``initial``."""
    sm = StateMachine(initial)
    for name in ALL_STATES:
        sm.add_state(State(name))

    sm.add_transition(IDLE, EN_ROUTE, condition=lambda ctx: ctx.get("has_mission", False))
    sm.add_transition(EN_ROUTE, SERVICING, condition=lambda ctx: ctx.get("arrived", False))
    sm.add_transition(SERVICING, RETURNING, condition=lambda ctx: ctx.get("service_done", False))
    sm.add_transition(RETURNING, RECHARGING, condition=lambda ctx: ctx.get("at_base", False))
    sm.add_transition(
        RETURNING, EN_ROUTE,
        condition=lambda ctx: ctx.get("at_base", False),
        guard=lambda ctx: ctx.get("next_leg", False),
        priority=5,
    )
    sm.add_transition(RECHARGING, IDLE, condition=lambda ctx: ctx.get("recharged", False))

    # Energy emergencies pre-empt normal progress
    for src in IN_MISSION_STATES:
        sm.add_transition(
            src, EMERGENCY_RETURN,
            condition=lambda ctx: ctx.get("energy_short", False),
            priority=10,
        )
    sm.add_transition(EMERGENCY_RETURN, RECHARGING, condition=lambda ctx: ctx.get("at_base", False))

    return sm


def step_asset(asset: Asset, ctx: dict) -> list[tuple[str, str]]:
    """Run the asset's FSM until it settles; updates ``asset.status``.

    Returns the transitions taken, oldest first.
    """
    sm = create_asset_fsm(asset.status)
    sm.settle(ctx)
    asset.status = sm.current_state
    return sm.history
