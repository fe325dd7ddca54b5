"""Minimal finite state machine — states and guarded, prioritized transitions.

Each step evaluates the current state's outgoing transitions by descending
priority (insertion order within a priority); the first whose condition
and guard both pass fires.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable

Condition = Callable[[dict], bool]


class State:
    """A named state."""

    def __init__(self, name: str) -> None:
        self.name = name

    def __repr__(self) -> str:
        return f"<State {self.name}>"


@dataclass
class Transition:
    source: str
    target: str
    condition: Condition
    guard: Condition | None = None
    priority: int = 0
    order: int = field(default=0, compare=False)

    def fires(self, ctx: dict) -> bool:
        if not self.condition(ctx):
            return False
        return self.guard is None or self.guard(ctx)


class StateMachine:
    """Drives one entity through its states."""

    def __init__(self, initial: str) -> None:
        self._states: dict[str, State] = {}
        self._transitions: dict[str, list[Transition]] = {}
        self._current = initial
        self.history: list[tuple[str, str]] = []

    @property
    def current_state(self) -> str:
        return self._current

    @property
    def state_names(self) -> list[str]:
        return list(self._states)

    def add_state(self, state: State) -> None:
        self._states[state.name] = state

    def add_transition(self, source: str, target: str, condition: Condition,
                       guard: Condition | None = None, priority: int = 0) -> None:
        bucket = self._transitions.setdefault(source, [])
        bucket.append(Transition(source, target, condition, guard, priority, order=len(bucket)))
        bucket.sort(key=lambda t: (-t.priority, t.order))

    def transitions_from(self, source: str) -> list[Transition]:
        return list(self._transitions.get(source, ()))

    def step(self, ctx: dict) -> str:
        """Fire at most one transition; returns the (possibly new) current state."""
        if self._current not in self._states:
            raise KeyError(f"Unknown state: {self._current}")
        for transition in self._transitions.get(self._current, ()):
            if transition.fires(ctx):
                self._switch(transition.target)
                break
        return self._current

    def settle(self, ctx: dict, max_steps: int = 16) -> str:
        """Step until no transition fires (bounded)."""
        for _ in range(max_steps):
            before = self._current
            self.step(ctx)
            if self._current == before:
                break
        return self._current

    def _switch(self, target: str) -> None:
        if target not in self._states:
            raise KeyError(f"Unknown state: {target}")
        self.history.append((self._current, target))
        self._current = target
