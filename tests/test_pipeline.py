"""End-to-end turn tests with scripted generation providers.

Each test runs a full turn (lorebook, prompt assembly, generation, parsing,
state update, rules) against the sample world from conftest.py.
"""

import json

import pytest

from world_engine.config import EngineConfig
from world_engine.history import ChatMessage
from world_engine.llm import EchoProvider
from world_engine.pipeline.orchestrator import generation_params, run_turn, trigger_action


# ── Helpers ──────────────────────────────────────────────


class ScriptedProvider:
    """Returns a canned reply and records what it was sent."""

    model = "scripted-1"

    def __init__(self, reply):
        self.reply = reply
        self.calls = []  # list of (messages, params)

    async def stream(self, messages, **params):
        self.calls.append((messages, params))
        for i in range(0, len(self.reply), 7):
            yield self.reply[i:i + 7]


class FailingProvider:
    async def stream(self, messages, **params):
        raise RuntimeError("connection reset")
        yield  # pragma: no cover


def history(*pairs):
    return [ChatMessage(role=r, content=c) for r, c in pairs]


# ── run_turn ─────────────────────────────────────────────


async def test_echo_turn_applies_directives(world, manager):
    result = await run_turn(
        world=world, manager=manager, history=[],
        user_message="Any news about the dragon? [gold: +5]",
        provider=EchoProvider(),
    )
    assert result.text == "Any news about the dragon?"
    assert [(c.variable_id, c.old_value, c.new_value) for c in result.changes] == [
        ("gold", 10, 15),
    ]
    assert result.matched == ["dragon"]
    assert manager.get("gold") == 15
    assert manager.turn_count == 1


async def test_metadata_recorded(world, manager):
    provider = ScriptedProvider("Welcome back, traveller.")
    await run_turn(world=world, manager=manager, history=[], user_message="Hi!",
                   provider=provider)
    assert manager.get_metadata("lastUserMessage") == "Hi!"
    assert manager.get_metadata("lastCharMessage") == "Welcome back, traveller."
    assert manager.get_metadata("lastMessage") == "Welcome back, traveller."
    assert manager.get_metadata("model") == "scripted-1"
    assert manager.get_metadata("lastUserMessageAt")


async def test_prompt_sent_to_provider(world, manager):
    provider = ScriptedProvider("ok")
    past = history(("user", "We met a dragon"), ("assistant", "It was asleep."))
    await run_turn(world=world, manager=manager, history=past,
                   user_message="What now?", provider=provider)

    [(messages, params)] = provider.calls
    assert messages[0].role == "system"
    assert "A red dragon sleeps under the hill." in messages[0].content
    assert [m.content for m in messages[1:]] == [
        "We met a dragon", "It was asleep.", "Keep replies short.", "What now?",
        "Stay in character.",
    ]
    assert params == {"max_tokens": 2048, "temperature": 0.8}


async def test_scan_depth_limits_lorebook(world, manager):
    provider = ScriptedProvider("ok")
    past = history(("user", "We met a dragon"), ("assistant", "It was asleep."))
    result = await run_turn(world=world, manager=manager, history=past,
                            user_message="What now?", provider=provider,
                            config=EngineConfig(scan_depth=1))
    assert result.matched == []


async def test_condition_rules_run_after_effects(world, manager):
    provider = ScriptedProvider("The trap snaps shut. [health: -100]")
    result = await run_turn(world=world, manager=manager, history=[],
                            user_message="I open the chest", provider=provider)
    assert [(c.variable_id, c.new_value) for c in result.changes] == [
        ("health", 0), ("location", "graveyard"),
    ]
    assert manager.get("location") == "graveyard"


async def test_audio_and_choices_structured(world, manager):
    world.settings.structured_output = True
    reply = json.dumps({
        "narrative": "Rain falls.",
        "stateChanges": [{"variableId": "hasKey", "operation": "toggle"}],
        "choices": ["Wait", "Leave"],
        "audioTriggers": [{"trackId": "rain", "action": "play"}],
    })
    provider = ScriptedProvider(reply)
    result = await run_turn(world=world, manager=manager, history=[],
                            user_message="I listen", provider=provider)
    assert result.text == "Rain falls."
    assert result.choices == ["Wait", "Leave"]
    assert [a.track_id for a in result.audio_effects] == ["rain"]
    assert manager.get("hasKey") is True

    [(messages, params)] = provider.calls
    assert "You MUST respond with a JSON object" in messages[0].content
    assert params["response_schema"]["required"] == ["narrative"]


async def test_structured_fallback_to_directives(world, manager):
    provider = ScriptedProvider("Plain text after all. [gold: -3]")
    result = await run_turn(world=world, manager=manager, history=[], user_message="hm",
                            provider=provider, config=EngineConfig(structured=True))
    assert result.text == "Plain text after all."
    assert manager.get("gold") == 7


async def test_provider_errors_propagate(world, manager):
    with pytest.raises(RuntimeError, match="connection reset"):
        await run_turn(world=world, manager=manager, history=[], user_message="[gold: +1]",
                       provider=FailingProvider())
    assert manager.get("gold") == 10


async def test_failed_generation_restores_session(world, manager):
    await run_turn(world=world, manager=manager, history=[], user_message="hello",
                   provider=ScriptedProvider("Evening."))
    before = manager.snapshot()

    with pytest.raises(RuntimeError):
        await run_turn(world=world, manager=manager, history=[], user_message="hi",
                       provider=FailingProvider())

    assert manager.turn_count == 1
    assert manager.get_metadata("lastUserMessage") == "hello"
    assert manager.get_metadata("lastMessage") == "Evening."
    assert manager.snapshot() == before


async def test_retry_after_failure_counts_one_turn(world, manager):
    with pytest.raises(RuntimeError):
        await run_turn(world=world, manager=manager, history=[], user_message="hi",
                       provider=FailingProvider())
    assert manager.turn_count == 0
    assert manager.get_metadata("lastUserMessageAt") is None

    await run_turn(world=world, manager=manager, history=[], user_message="hi",
                   provider=EchoProvider())
    assert manager.turn_count == 1


async def test_turn_counter_advances(world, manager):
    for _ in range(3):
        await run_turn(world=world, manager=manager, history=[], user_message="hi",
                       provider=EchoProvider())
    assert manager.turn_count == 3


# ── trigger_action ───────────────────────────────────────


def test_trigger_action(world, manager):
    result = trigger_action(world, manager, "buy-ale")
    assert result.notifications == ["You buy an ale. Gold left: 8"]
    assert manager.get("gold") == 8


def test_trigger_action_gated(world, manager):
    manager.set("gold", 1)
    result = trigger_action(world, manager, "buy-ale")
    assert result.notifications == []
    assert result.changes == []


def test_trigger_unknown_action(world, manager):
    assert trigger_action(world, manager, "dance").changes == []


# ── generation_params ────────────────────────────────────


def test_generation_params_include_optional(world):
    world.settings.top_p = 0.9
    params = generation_params(world.settings)
    assert params == {"max_tokens": 2048, "temperature": 0.8, "top_p": 0.9}
