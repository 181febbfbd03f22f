"""Tests for GameStateManager and the pure effect arithmetic."""

import pytest

from world_engine.models import Effect, GameState, Variable
from world_engine.parsers import parse_directives, parse_structured
from world_engine.state import (
    GameStateManager,
    apply_effect_value,
    clamp,
    coerce,
    project_effects,
)


def eff(variable_id, operation, value=True):
    return Effect(variable_id=variable_id, operation=operation, value=value)


HEALTH = Variable(id="health", name="Health", type="number", default_value=100, min=0, max=100)
NAME = Variable(id="name", name="Name", type="string", default_value="")
FLAG = Variable(id="flag", name="Flag", type="boolean", default_value=False)


# ── clamp / coerce ───────────────────────────────────────


def test_clamp_bounds():
    assert clamp(HEALTH, 150) == 100
    assert clamp(HEALTH, -5) == 0
    assert clamp(HEALTH, 42) == 42


def test_clamp_keeps_whole_numbers_int():
    assert clamp(HEALTH, 150) == 100
    assert isinstance(clamp(HEALTH, 150), int)


def test_clamp_ignores_non_numbers():
    assert clamp(NAME, "x") == "x"


@pytest.mark.parametrize("variable,value,expected", [
    (HEALTH, "42", 42),
    (HEALTH, "2.5", 2.5),
    (HEALTH, "lots", None),
    (HEALTH, True, None),
    (HEALTH, "nan", None),
    (HEALTH, "-inf", None),
    (HEALTH, float("nan"), None),
    (FLAG, "true", True),
    (FLAG, "False", False),
    (FLAG, 1, None),
    (NAME, 7, "7"),
    (NAME, False, "false"),
])
def test_coerce(variable, value, expected):
    assert coerce(variable, value) == expected


# ── apply_effect_value ───────────────────────────────────


def test_arithmetic():
    assert apply_effect_value(HEALTH, 50, eff("health", "add", 20)) == 70
    assert apply_effect_value(HEALTH, 50, eff("health", "subtract", 20)) == 30
    assert apply_effect_value(HEALTH, 20, eff("health", "multiply", 2)) == 40


def test_arithmetic_clamped():
    assert apply_effect_value(HEALTH, 90, eff("health", "add", 50)) == 100
    assert apply_effect_value(HEALTH, 10, eff("health", "subtract", 50)) == 0


def test_arithmetic_rejects_booleans():
    assert apply_effect_value(HEALTH, 50, eff("health", "add", True)) == 50


def test_toggle_booleans_only():
    assert apply_effect_value(FLAG, False, eff("flag", "toggle")) is True
    assert apply_effect_value(HEALTH, 50, eff("health", "toggle")) == 50


def test_append_strings_only():
    assert apply_effect_value(NAME, "Mi", eff("name", "append", "ra")) == "Mira"
    assert apply_effect_value(NAME, "Mi", eff("name", "append", 5)) == "Mi"


def test_set_uncoercible_is_noop():
    assert apply_effect_value(HEALTH, 50, eff("health", "set", "lots")) == 50


def test_non_finite_values_are_noops():
    assert apply_effect_value(HEALTH, 50, eff("health", "set", float("nan"))) == 50
    assert apply_effect_value(HEALTH, 50, eff("health", "add", float("inf"))) == 50
    assert apply_effect_value(HEALTH, 50, eff("health", "multiply", float("nan"))) == 50


def test_overflowing_arithmetic_is_noop():
    wealth = Variable(id="wealth", name="Wealth", type="number", default_value=0)
    assert apply_effect_value(wealth, 1e308, eff("wealth", "multiply", 10)) == 1e308
    assert apply_effect_value(wealth, 10**400, eff("wealth", "add", 0.5)) == 10**400


def test_project_effects_does_not_mutate():
    values = {"health": 50}
    projected = project_effects(values, [HEALTH], [eff("health", "add", 10)])
    assert projected == {"health": 60}
    assert values == {"health": 50}


def test_project_effects_skips_unknown():
    assert project_effects({"health": 50}, [HEALTH], [eff("mana", "add", 10)]) == {"health": 50}


# ── GameStateManager ─────────────────────────────────────


class TestManager:
    def test_initial_defaults(self, manager):
        assert manager.get("health") == 100
        assert manager.get("location") == "tavern"
        assert manager.turn_count == 0

    def test_existing_state_is_copied(self, world):
        existing = GameState(world_id="tavern", variables={"health": 5, "gold": 1,
                                                           "location": "x", "hasKey": True})
        mgr = GameStateManager(world, existing)
        mgr.set("health", 6)
        assert existing.variables["health"] == 5

    def test_apply_effects_returns_changes(self, manager):
        changes = manager.apply_effects([eff("gold", "add", 5), eff("hasKey", "toggle")])
        assert [(c.variable_id, c.old_value, c.new_value) for c in changes] == [
            ("gold", 10, 15), ("hasKey", False, True),
        ]

    def test_clamping_in_manager(self, manager):
        manager.apply_effects([eff("health", "add", 50)])
        assert manager.get("health") == 100
        manager.apply_effects([eff("health", "subtract", 500)])
        assert manager.get("health") == 0

    def test_clamped_to_same_value_is_no_change(self, manager):
        assert manager.apply_effects([eff("health", "add", 5)]) == []

    def test_unknown_variable_ignored(self, manager):
        assert manager.apply_effects([eff("mana", "add", 5)]) == []
        assert manager.set("mana", 5) is False

    def test_type_mismatch_no_listener(self, manager):
        calls = []
        manager.on_change(lambda *a: calls.append(a))
        manager.apply_effects([eff("location", "add", 5), eff("gold", "toggle")])
        assert calls == []

    def test_set_coerces(self, manager):
        assert manager.set("gold", "25") is True
        assert manager.get("gold") == 25
        assert manager.set("hasKey", "true") is True
        assert manager.get("hasKey") is True
        assert manager.set("location", 3) is True
        assert manager.get("location") == "3"

    def test_set_rejects_lossy(self, manager):
        assert manager.set("gold", "many") is False
        assert manager.get("gold") == 10

    def test_set_clamps(self, manager):
        manager.set("health", 1000)
        assert manager.get("health") == 100

    def test_nan_from_directive_is_rejected(self, manager):
        parsed = parse_directives('Ouch [health: set "nan"] [health: nan] [health: 1e999]')
        assert manager.apply_effects(parsed.effects) == []
        assert manager.get("health") == 100

    def test_nan_from_structured_output_is_rejected(self, manager):
        raw = (
            '{"narrative": "Ouch", "stateChanges": ['
            '{"variableId": "health", "operation": "set", "value": NaN},'
            '{"variableId": "health", "operation": "add", "value": -Infinity}]}'
        )
        parsed = parse_structured(raw)
        assert parsed.effects == []
        manager.apply_effects(parsed.effects)
        assert manager.get("health") == 100

    def test_listeners_fire_in_order(self, manager):
        calls = []
        manager.on_change(lambda vid, old, new: calls.append((vid, old, new)))
        manager.apply_effects([eff("gold", "add", 1), eff("gold", "add", 1)])
        assert calls == [("gold", 10, 11), ("gold", 11, 12)]

    def test_unsubscribe(self, manager):
        calls = []
        unsubscribe = manager.on_change(lambda *a: calls.append(a))
        unsubscribe()
        unsubscribe()
        manager.set("gold", 99)
        assert calls == []

    def test_increment_turn(self, manager):
        assert manager.increment_turn() == 1
        assert manager.increment_turn() == 2
        assert manager.turn_count == 2

    def test_snapshot_is_deep_copy(self, manager):
        manager.set_metadata("notes", ["a"])
        snap = manager.snapshot()
        snap.variables["gold"] = 0
        snap.metadata["notes"].append("b")
        assert manager.get("gold") == 10
        assert manager.get_metadata("notes") == ["a"]

    def test_load_snapshot(self, manager):
        snap = manager.snapshot()
        manager.set("gold", 50)
        manager.load_snapshot(snap)
        assert manager.get("gold") == 10

    def test_restart(self, manager):
        manager.set("gold", 50)
        manager.increment_turn()
        manager.set_metadata("lastMessage", "hi")
        manager.restart()
        assert manager.get("gold") == 10
        assert manager.turn_count == 0
        assert manager.get_metadata("lastMessage") is None

    def test_metadata_default(self, manager):
        assert manager.get_metadata("missing", "fallback") == "fallback"
