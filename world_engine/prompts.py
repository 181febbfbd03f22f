"""Prompt assembly from matched world entries.

assemble_prompt() returns the four pieces a chat request is built from:
  system_prompt     entries in slot order, the variable summary, output format
  greeting          the opening message
  depth_injections  {content, depth} blocks spliced into the chat history
  post_history      instructions placed after the chat history

Entry content is expanded with the {{macro}} language (see macros.py). The
fixed instruction blocks are Handlebars templates rendered with pybars.
"""

from collections.abc import Callable
from typing import Any

import pybars
from pydantic import BaseModel, Field

from world_engine.macros import expand_macros
from world_engine.models import (
    OPERATIONS,
    SYSTEM_PROMPT_SLOTS,
    GameState,
    WorldDefinition,
    WorldEntry,
    format_value,
)

_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return str(compiled(context)).strip()
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


# ── Instruction templates ────────────────────────────────

STATE_SUMMARY_TEMPLATE = (
    "Current game state:\n"
    "{{#each variables}}- {{{name}}}: {{{value}}}\n{{/each}}"
)

DIRECTIVE_TEMPLATE = (
    "When you want to change game variables, use this format in your response: "
    "[variableId: operation value]\n"
    "Operations: {{{operations}}}. Shorthand: +N, -N, *N. Quote string values.\n"
    'Examples: [health: -10], [gold: +50], [location: set "forest"], [hasKey: toggle]'
)

AUDIO_DIRECTIVE_TEMPLATE = (
    "Available audio tracks:\n"
    "{{#each tracks}}  - {{{id}}} ({{{type}}}): {{{name}}}\n{{/each}}\n"
    "To trigger audio, use: [audio: trackId play|stop|crossfade|volume amount]\n"
    "Examples: [audio: {{{example}}} play], [audio: {{{example}}} volume 0.5]"
)

STRUCTURED_TEMPLATE = (
    "You MUST respond with a JSON object in this exact format:\n"
    "{\n"
    '  "narrative": "Your in-character response text here",\n'
    '  "stateChanges": [{"variableId": "id", "operation": "{{{operations_pipe}}}", "value": ...}],\n'
    '  "choices": ["Choice 1", "Choice 2"]{{#if has_audio}},\n'
    '  "audioTriggers": [{"trackId": "id", "action": "play|stop|crossfade|volume", '
    '"volume": 0.8, "fadeDuration": 2}]{{/if}}\n'
    "}\n\n"
    "Rules:\n"
    '- "narrative" is REQUIRED: your in-character roleplay response\n'
    '- "stateChanges" is optional: only include when game variables should change\n'
    '- "choices" is optional: include when you want to present the player with 2-4 choices\n'
    "{{#if has_audio}}"
    '- "audioTriggers" is optional: include to play, stop, or fade audio tracks\n'
    "{{/if}}"
    "- Respond ONLY with the JSON object, no other text"
)

STRUCTURED_VARIABLES_TEMPLATE = (
    "Available variables you can modify:\n"
    "{{#each variables}}  - {{{id}}} ({{{type}}}): {{{label}}}\n{{/each}}\n"
    "Valid operations: {{{operations}}}"
)

STRUCTURED_AUDIO_TEMPLATE = (
    "Available audio tracks:\n"
    "{{#each tracks}}  - {{{id}}} ({{{type}}}): {{{name}}}\n{{/each}}\n"
    'Include "audioTriggers" in your JSON to play/stop audio:\n'
    '  "audioTriggers": [{"trackId": "{{{example}}}", "action": "play"}]'
)


class DepthInjection(BaseModel):
    content: str
    depth: int


class PromptAssembly(BaseModel):
    system_prompt: str
    greeting: str = ""
    depth_injections: list[DepthInjection] = Field(default_factory=list)
    post_history: list[str] = Field(default_factory=list)


# ── Entry selection ──────────────────────────────────────


def select_entries(world: WorldDefinition, triggered: list[WorldEntry]) -> list[WorldEntry]:
    """Always-send entries plus triggered ones, one copy per id (always-send wins)."""
    selected: dict[str, WorldEntry] = {}
    for entry in world.entries:
        if entry.enabled and entry.always_send and entry.position != "greeting":
            selected.setdefault(entry.id, entry)
    for entry in triggered:
        if entry.enabled and entry.position != "greeting":
            selected.setdefault(entry.id, entry)
    return list(selected.values())


def _by_priority(entries: list[WorldEntry]) -> list[WorldEntry]:
    return sorted(entries, key=lambda e: -e.priority)


def _expand_all(
    entries: list[WorldEntry], world: WorldDefinition, state: GameState
) -> list[tuple[WorldEntry, str]]:
    expanded = []
    for entry in _by_priority(entries):
        text = expand_macros(entry.content, world, state).strip()
        if text:
            expanded.append((entry, text))
    return expanded


# ── Instruction blocks ───────────────────────────────────


def build_variable_summary(world: WorldDefinition, state: GameState) -> str:
    if not world.variables:
        return ""
    rows = [
        {"name": v.name, "value": format_value(state.variables.get(v.id, v.default_value))}
        for v in world.variables
    ]
    return render_prompt(STATE_SUMMARY_TEMPLATE, {"variables": rows})


def _track_rows(world: WorldDefinition) -> list[dict[str, str]]:
    return [{"id": t.id, "type": t.type, "name": t.name or t.id} for t in world.audio_tracks]


def build_format_instructions(world: WorldDefinition, structured: bool) -> list[str]:
    """Output-format instructions: directive grammar or the structured JSON contract."""
    tracks = _track_rows(world)
    example = tracks[0]["id"] if tracks else ""

    if not structured:
        blocks = [render_prompt(DIRECTIVE_TEMPLATE, {"operations": ", ".join(OPERATIONS)})]
        if tracks:
            blocks.append(render_prompt(
                AUDIO_DIRECTIVE_TEMPLATE, {"tracks": tracks, "example": example}
            ))
        return blocks

    blocks = [render_prompt(STRUCTURED_TEMPLATE, {
        "operations_pipe": "|".join(OPERATIONS),
        "has_audio": bool(tracks),
    })]
    if world.variables:
        rows = [
            {"id": v.id, "type": v.type, "label": v.description or v.name}
            for v in world.variables
        ]
        blocks.append(render_prompt(
            STRUCTURED_VARIABLES_TEMPLATE,
            {"variables": rows, "operations": ", ".join(OPERATIONS)},
        ))
    if tracks:
        blocks.append(render_prompt(
            STRUCTURED_AUDIO_TEMPLATE, {"tracks": tracks, "example": example}
        ))
    return blocks


# ── Assembly ─────────────────────────────────────────────


def build_system_prompt(
    world: WorldDefinition,
    state: GameState,
    triggered: list[WorldEntry],
    structured: bool | None = None,
) -> str:
    if structured is None:
        structured = world.settings.structured_output

    selected = select_entries(world, triggered)
    parts: list[str] = []
    for slot in SYSTEM_PROMPT_SLOTS:
        in_slot = [e for e in selected if e.position == slot]
        parts.extend(text for _, text in _expand_all(in_slot, world, state))

    summary = build_variable_summary(world, state)
    if summary:
        parts.append(summary)
    parts.extend(build_format_instructions(world, structured))
    return "\n\n".join(parts)


def build_greeting(world: WorldDefinition, state: GameState) -> str:
    greetings = [e for e in world.entries if e.enabled and e.position == "greeting"]
    expanded = _expand_all(greetings, world, state)
    return expanded[0][1] if expanded else ""


def build_depth_injections(
    world: WorldDefinition, state: GameState, triggered: list[WorldEntry]
) -> list[DepthInjection]:
    at_depth = [e for e in select_entries(world, triggered) if e.position == "depth"]
    return [
        DepthInjection(content=text, depth=entry.depth or 0)
        for entry, text in _expand_all(at_depth, world, state)
    ]


def build_post_history(
    world: WorldDefinition, state: GameState, triggered: list[WorldEntry]
) -> list[str]:
    after = [e for e in select_entries(world, triggered) if e.position == "post_history"]
    return [text for _, text in _expand_all(after, world, state)]


def assemble_prompt(
    world: WorldDefinition,
    state: GameState,
    triggered: list[WorldEntry],
    structured: bool | None = None,
) -> PromptAssembly:
    """Build every prompt part for one turn from the lorebook's triggered entries."""
    return PromptAssembly(
        system_prompt=build_system_prompt(world, state, triggered, structured),
        greeting=build_greeting(world, state),
        depth_injections=build_depth_injections(world, state, triggered),
        post_history=build_post_history(world, state, triggered),
    )
