"""
draftpatch.machine — A minimal state machine that runs context actions.

Just enough of a statechart runtime to drive the actions built in
draftpatch.actions the way a full engine would:

    machine = Machine({
        "id": "count",
        "initial": "active",
        "context": {"count": 0},
        "states": {
            "active": {"on": {"INC": {"actions": "increment"}}},
        },
    }, actions={"increment": assign(increment)})

    zero = machine.initial_state
    one = machine.transition(zero, "INC")

Configuration:
    states[name]["on"][EVENT]   a target name, a transition dict
                                {"target", "actions", "cond"}, or a list
                                of such dicts (first whose cond holds wins)
    states[name]["on"][""]      eventless transition, taken right after
                                entering the state while its cond holds
    states[name]["type"]        "final" marks the machine done

Actions run synchronously, in the configured order, each receiving the
context returned by the previous one.  `transition` is pure.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .actions import type_of

logger = logging.getLogger(__name__)

INIT_EVENT = "machine.init"
EVENTLESS = ""
MAX_EVENTLESS_STEPS = 100


@dataclass(frozen=True)
class State:
    """Snapshot of a machine: state value plus context."""
    value: str
    context: Any
    event: Any
    changed: bool = False
    done: bool = False

    def matches(self, value: str) -> bool:
        return self.value == value


def _to_event(event: Any) -> Any:
    if isinstance(event, str):
        return {"type": event}
    if type_of(event) is None:
        raise ValueError(f"event has no type: {event!r}")
    return event


def _as_list(value: Any) -> list:
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


class Machine:
    """Transition table plus named actions."""

    def __init__(self, config: Mapping, actions: Optional[Mapping[str, Callable]] = None):
        self.id = config.get("id", "machine")
        self.initial = config["initial"]
        self.context = config.get("context")
        self.states = dict(config["states"])
        self.actions = dict(actions or {})
        if self.initial not in self.states:
            raise ValueError(f"initial state {self.initial!r} is not defined")

    @property
    def initial_state(self) -> State:
        event = {"type": INIT_EVENT}
        state = State(self.initial, self.context, event, done=self._is_final(self.initial))
        return self._settle(state, event)

    def transition(self, state: State, event: Any) -> State:
        """Resolve the next state for `event`.  `state` is left untouched."""
        event = _to_event(event)
        if state.done:
            return State(state.value, state.context, event, changed=False, done=True)

        taken = self._take(state, type_of(event), event)
        if taken is None:
            return State(state.value, state.context, event, changed=False, done=state.done)
        return self._settle(taken, event)

    # ── internals ─────────────────────────────────────────────────

    def _is_final(self, name: str) -> bool:
        return self.states[name].get("type") == "final"

    def _candidates(self, name: str, kind: str) -> list[dict]:
        on = self.states[name].get("on", {})
        if kind not in on:
            return []
        result = []
        for candidate in _as_list(on[kind]):
            if isinstance(candidate, str):
                candidate = {"target": candidate}
            result.append(candidate)
        return result

    def _take(self, state: State, kind: str, event: Any) -> Optional[State]:
        for candidate in self._candidates(state.value, kind):
            cond = candidate.get("cond")
            if cond is not None and not cond(state.context, event):
                continue
            target = candidate.get("target") or state.value
            if target not in self.states:
                raise KeyError(f"unknown target state {target!r}")
            context = self._run_actions(candidate.get("actions"), state.context, event)
            logger.debug("transition event=%s source=%s target=%s",
                         kind or "(eventless)", state.value, target)
            return State(target, context, event, changed=True, done=self._is_final(target))
        return None

    def _run_actions(self, actions: Any, context: Any, event: Any) -> Any:
        for action in _as_list(actions):
            if isinstance(action, str):
                try:
                    action = self.actions[action]
                except KeyError:
                    raise KeyError(f"unknown action {action!r}") from None
            context = action(context, event)
        return context

    def _settle(self, state: State, event: Any) -> State:
        for _ in range(MAX_EVENTLESS_STEPS):
            if state.done:
                return state
            taken = self._take(state, EVENTLESS, event)
            if taken is None:
                return state
            state = taken
        raise RuntimeError(f"eventless transitions in {self.id!r} did not settle")


class Service:
    """A running machine instance that delivers events one at a time."""

    def __init__(self, machine: Machine):
        self.machine = machine
        self._state: Optional[State] = None
        self._on_transition: list[Callable[[State], None]] = []
        self._on_done: list[Callable[[State], None]] = []

    @property
    def state(self) -> State:
        if self._state is None:
            raise RuntimeError("service has not been started")
        return self._state

    def on_transition(self, listener: Callable[[State], None]) -> "Service":
        self._on_transition.append(listener)
        return self

    def on_done(self, listener: Callable[[State], None]) -> "Service":
        self._on_done.append(listener)
        return self

    def start(self) -> "Service":
        self._update(self.machine.initial_state)
        return self

    def send(self, event: Any) -> State:
        current = self.state
        if current.done:
            logger.debug("event_ignored_after_done type=%s", type_of(_to_event(event)))
            return current
        self._update(self.machine.transition(current, event))
        return self._state

    def _update(self, state: State) -> None:
        self._state = state
        for listener in self._on_transition:
            listener(state)
        if state.done:
            for listener in self._on_done:
                listener(state)


def interpret(machine: Machine) -> Service:
    """Create a service for `machine`.  Call start() before sending."""
    return Service(machine)
