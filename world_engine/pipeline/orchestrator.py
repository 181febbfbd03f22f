"""Pipeline orchestrator — runs one player turn end-to-end.

Turn flow:
  1. Record the player message in session metadata, bump the turn counter.
  2. Match the lorebook against the last scanDepth history messages plus
     the new message.
  3. Assemble the prompt (macro-expanded entries, state summary, format
     instructions) and lay out the chat message list.
  4. Stream the reply from the generation provider.
  5. Parse the reply (structured JSON with directive fallback) and apply
     its effects.
  6. Evaluate condition rules once against the updated state and apply
     their effects.
  7. Record the cleaned reply in session metadata.

The provider call is the only await. Exceptions from the provider (and
cancellation) propagate unchanged after the session state is restored to
what it was before the turn: no turn count, metadata or effects are kept.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from world_engine.config import EngineConfig
from world_engine.history import ChatMessage, build_chat_messages
from world_engine.llm import GenerationProvider, collect
from world_engine.lorebook import match_lorebook
from world_engine.models import AudioEffect, WorldDefinition, WorldSettings
from world_engine.parsers import build_response_schema, parse_response
from world_engine.prompts import assemble_prompt
from world_engine.rules import evaluate_action, evaluate_rules
from world_engine.state import GameStateManager, StateChange

logger = logging.getLogger(__name__)


class TurnResult(BaseModel):
    text: str
    choices: list[str] = Field(default_factory=list)
    changes: list[StateChange] = Field(default_factory=list)
    audio_effects: list[AudioEffect] = Field(default_factory=list)
    notifications: list[str] = Field(default_factory=list)
    matched: list[str] = Field(default_factory=list)


def generation_params(settings: WorldSettings) -> dict[str, Any]:
    """Sampling parameters for the provider, omitting unset optional ones."""
    params: dict[str, Any] = {
        "max_tokens": settings.max_tokens,
        "temperature": settings.temperature,
    }
    for name in ("top_p", "frequency_penalty", "presence_penalty"):
        value = getattr(settings, name)
        if value is not None:
            params[name] = value
    return params


def _scan_window(history: list[ChatMessage], user_message: str, scan_depth: int) -> list[str]:
    recent = history[-scan_depth:] if scan_depth > 0 else []
    return [m.content for m in recent] + [user_message]


async def run_turn(
    *,
    world: WorldDefinition,
    manager: GameStateManager,
    history: list[ChatMessage],
    user_message: str,
    provider: GenerationProvider,
    config: EngineConfig | None = None,
) -> TurnResult:
    """Execute one player turn and return what changed."""
    config = config or EngineConfig()
    settings = world.settings
    structured = config.structured_output(settings)

    before = manager.snapshot()
    manager.set_metadata("lastUserMessage", user_message)
    manager.set_metadata("lastMessage", user_message)
    model = getattr(provider, "model", None)
    if model:
        manager.set_metadata("model", model)
    turn = manager.increment_turn()

    # 2. Lorebook
    state = manager.snapshot()
    match = match_lorebook(
        world.entries,
        _scan_window(history, user_message, config.lorebook_scan(settings)),
        state,
        token_budget=config.lorebook_budget(settings),
        recursion_depth=config.lorebook_recursion(settings),
    )
    logger.debug(
        "Turn %d: %d always-send, %d triggered (%d tokens)",
        turn, len(match.always_send), len(match.triggered), match.triggered_tokens,
    )

    # 3. Prompt
    assembly = assemble_prompt(world, state, match.triggered, structured)
    messages = build_chat_messages(
        assembly, history, user_message, max_tokens=config.history_budget(settings)
    )
    manager.set_metadata("lastUserMessageAt", datetime.now(timezone.utc).isoformat())

    # 4. Generation
    params = generation_params(settings)
    if structured:
        params["response_schema"] = build_response_schema(world.variables, world.audio_tracks)
    try:
        reply = await collect(provider, messages, **params)
    except BaseException:
        logger.debug("Turn %d: generation failed, restoring session state", turn)
        manager.load_snapshot(before)
        raise

    # 5. Parse + apply
    parsed = parse_response(reply, structured)
    changes = manager.apply_effects(parsed.effects)
    audio = list(parsed.audio_effects)

    # 6. Condition rules, one pass
    outcome = evaluate_rules(manager.snapshot(), world.rules)
    if outcome.fired:
        logger.debug("Turn %d: rules fired %s", turn, outcome.fired)
        changes.extend(manager.apply_effects(outcome.effects))
        audio.extend(outcome.audio_effects)

    # 7. Metadata
    manager.set_metadata("lastCharMessage", parsed.clean_text)
    manager.set_metadata("lastMessage", parsed.clean_text)

    return TurnResult(
        text=parsed.clean_text,
        choices=parsed.choices,
        changes=changes,
        audio_effects=audio,
        matched=[e.id for e in match.triggered],
    )


def trigger_action(world: WorldDefinition, manager: GameStateManager, action_id: str) -> TurnResult:
    """Apply the rules bound to a player action (button, choice) without a model call."""
    outcome = evaluate_action(action_id, manager.snapshot(), world.rules, world.variables)
    if not outcome.fired:
        logger.debug("Action %r matched no rules", action_id)
    changes = manager.apply_effects(outcome.effects)
    return TurnResult(
        text="",
        changes=changes,
        audio_effects=outcome.audio_effects,
        notifications=outcome.notifications,
    )
