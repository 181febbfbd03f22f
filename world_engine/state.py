"""Game state management for one play session.

GameStateManager owns the canonical GameState of a session. Every write goes
through it so numeric values stay inside their declared [min, max] and
listeners see each change exactly once.

Type rules for effects:
  add / subtract / multiply   numbers only (booleans are not numbers)
  toggle                      booleans only
  append                      strings only
  set                         coerced where lossless, otherwise ignored
Mismatched effects, and arithmetic or set values that are not finite
(nan, inf), are no-ops and do not notify listeners.

Not thread-safe and not reentrant: the owning session serialises calls, and
listeners must not write back into the manager from inside a callback.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from pydantic import BaseModel

from world_engine.models import Effect, GameState, Value, Variable, WorldDefinition

logger = logging.getLogger(__name__)

ChangeListener = Callable[[str, Value, Value], None]


class StateChange(BaseModel):
    variable_id: str
    old_value: Value
    new_value: Value


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_finite(value: Any) -> bool:
    return not isinstance(value, float) or math.isfinite(value)


def clamp(variable: Variable, value: Value) -> Value:
    """Clamp numeric values of numeric variables into [min, max]."""
    if variable.type != "number" or not _is_number(value):
        return value
    if variable.min is not None and value < variable.min:
        value = variable.min
    if variable.max is not None and value > variable.max:
        value = variable.max
    if isinstance(value, float) and value.is_integer():
        # bounds are floats; keep whole numbers as ints
        value = int(value)
    return value


def coerce(variable: Variable, value: Any) -> Value | None:
    """Convert a value to the variable's type, or None if that would lose meaning."""
    if variable.type == "number":
        if _is_number(value):
            return value if _is_finite(value) else None
        if isinstance(value, str):
            try:
                number = float(value.strip())
            except ValueError:
                return None
            if not math.isfinite(number):
                return None
            return int(number) if number.is_integer() else number
        return None
    if variable.type == "boolean":
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in ("true", "false"):
            return value.strip().lower() == "true"
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if _is_number(value):
        return str(value)
    return None


def apply_effect_value(variable: Variable, current: Value, effect: Effect) -> Value:
    """Compute the new value of a variable under one effect. Pure."""
    op = effect.operation
    operand = effect.value

    if op == "set":
        coerced = coerce(variable, operand)
        return current if coerced is None else clamp(variable, coerced)
    if op in ("add", "subtract", "multiply"):
        if not (_is_number(current) and _is_number(operand)):
            return current
        try:
            if op == "add":
                result = current + operand
            elif op == "subtract":
                result = current - operand
            else:
                result = current * operand
        except OverflowError:
            result = math.inf
        if not _is_finite(result):
            logger.debug("Dropped %s on %s: result %r is not finite", op, variable.id, result)
            return current
        return clamp(variable, result)
    if op == "toggle":
        return (not current) if isinstance(current, bool) else current
    if op == "append":
        if isinstance(current, str) and isinstance(operand, str):
            return current + operand
        return current
    return current


def project_effects(
    values: Mapping[str, Value],
    variables: Iterable[Variable],
    effects: Iterable[Effect],
) -> dict[str, Value]:
    """Apply effects to a copy of values and return it. Used for what-if checks."""
    by_id = {v.id: v for v in variables}
    projected = dict(values)
    for effect in effects:
        variable = by_id.get(effect.variable_id)
        if variable is None or effect.variable_id not in projected:
            continue
        projected[effect.variable_id] = apply_effect_value(
            variable, projected[effect.variable_id], effect
        )
    return projected


class GameStateManager:
    """Stateful wrapper around one session's GameState."""

    def __init__(self, world: WorldDefinition, existing_state: GameState | None = None) -> None:
        self._world = world
        self._variables = {v.id: v for v in world.variables}
        self._listeners: list[ChangeListener] = []
        if existing_state is not None:
            self._state = existing_state.model_copy(deep=True)
        else:
            self._state = GameState.initial(world)

    @property
    def turn_count(self) -> int:
        return self._state.turn_count

    def get(self, variable_id: str) -> Value | None:
        return self._state.variables.get(variable_id)

    def set(self, variable_id: str, value: Any) -> bool:
        """Write a value directly. Returns True if the stored value changed."""
        variable = self._variables.get(variable_id)
        if variable is None:
            logger.warning("Ignoring write to unknown variable %r", variable_id)
            return False
        coerced = coerce(variable, value)
        if coerced is None:
            return False
        effect = Effect(variable_id=variable_id, operation="set", value=coerced)
        return self._write(variable, effect) is not None

    def apply_effects(self, effects: Iterable[Effect]) -> list[StateChange]:
        """Apply effects in order, notifying listeners per change."""
        changes: list[StateChange] = []
        for effect in effects:
            variable = self._variables.get(effect.variable_id)
            if variable is None:
                logger.warning("Ignoring effect on unknown variable %r", effect.variable_id)
                continue
            change = self._write(variable, effect)
            if change is not None:
                changes.append(change)
        return changes

    def _write(self, variable: Variable, effect: Effect) -> StateChange | None:
        if variable.id not in self._state.variables:
            return None
        old = self._state.variables[variable.id]
        new = apply_effect_value(variable, old, effect)
        if new == old and type(new) is type(old):
            return None

        self._state.variables[variable.id] = new
        logger.debug("%s: %r -> %r (%s)", variable.id, old, new, effect.operation)
        for listener in list(self._listeners):
            listener(variable.id, old, new)
        return StateChange(variable_id=variable.id, old_value=old, new_value=new)

    def increment_turn(self) -> int:
        self._state.turn_count += 1
        return self._state.turn_count

    def snapshot(self) -> GameState:
        """Deep copy of the current state, safe to persist or hand out."""
        return self._state.model_copy(deep=True)

    def load_snapshot(self, state: GameState) -> None:
        self._state = state.model_copy(deep=True)

    def restart(self) -> None:
        """Reset to the world's defaults: turn 0, empty metadata."""
        self._state = GameState.initial(self._world)

    def get_metadata(self, key: str, default: Any = None) -> Any:
        return self._state.metadata.get(key, default)

    def set_metadata(self, key: str, value: Any) -> None:
        self._state.metadata[key] = value

    def on_change(self, callback: ChangeListener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe
