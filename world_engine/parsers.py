"""Model output parsing into narrative text plus typed effects.

Two formats:

Directive (free text):
  You take [health: -15] damage.        -> subtract 15 from health
  [location: set "forest"] [hasKey: toggle] [gold: +50] [mood: 3]
  [audio: battle_bgm play] [audio: rain volume 0.4]

Structured (JSON):
  {"narrative": "...", "stateChanges": [...], "choices": [...], "audioTriggers": [...]}

Both degrade instead of failing: directives that make no sense are dropped,
and JSON that does not parse comes back as the raw text with no effects.
"""

import json
import logging
import math
import re
from typing import Any

from pydantic import BaseModel, Field

from world_engine.models import (
    AUDIO_ACTIONS,
    OPERATIONS,
    AudioEffect,
    AudioTrack,
    Effect,
    Value,
    Variable,
)

logger = logging.getLogger(__name__)

DIRECTIVE_RE = re.compile(
    r'\[(\w+):\s*((?:set|add|subtract|multiply|toggle|append)(?!\w)|\+|-|\*)?\s*("(?:[^"\\]|\\.)*"|[\w.-]+)?\]'
)
AUDIO_RE = re.compile(
    r"\[audio:\s*([\w.-]+)\s+(play|stop|crossfade|volume)(?:\s+(\d+(?:\.\d+)?))?\s*\]",
    re.IGNORECASE,
)
_NUMBER_RE = re.compile(r"^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$")
_ESCAPE_RE = re.compile(r"\\(.)")

_SHORTHAND = {"+": "add", "-": "subtract", "*": "multiply"}


class ParseResult(BaseModel):
    clean_text: str
    effects: list[Effect] = Field(default_factory=list)
    audio_effects: list[AudioEffect] = Field(default_factory=list)
    choices: list[str] = Field(default_factory=list)


# ── Directive parsing ────────────────────────────────────


def _parse_number(raw: str) -> int | float | None:
    if not _NUMBER_RE.match(raw):
        return None
    number = float(raw)
    if not math.isfinite(number):
        return None
    if number.is_integer() and "." not in raw and "e" not in raw.lower():
        return int(raw)
    return number


def parse_value(raw: str) -> Value:
    """Typed value from a directive token: quoted string, boolean, number, or word."""
    if len(raw) >= 2 and raw.startswith('"') and raw.endswith('"'):
        return _ESCAPE_RE.sub(r"\1", raw[1:-1])
    if raw == "true":
        return True
    if raw == "false":
        return False
    number = _parse_number(raw)
    return raw if number is None else number


def parse_directive(variable_id: str, op: str | None, raw: str | None) -> Effect | None:
    """Build the effect for one [variableId: op value] token, or None to drop it."""
    if op == "toggle":
        return Effect(variable_id=variable_id, operation="toggle", value=True)

    if op in _SHORTHAND:
        number = _parse_number(raw) if raw else None
        if number is None:
            return None
        return Effect(variable_id=variable_id, operation=_SHORTHAND[op], value=number)

    if raw is None:
        return None

    return Effect(variable_id=variable_id, operation=op or "set", value=parse_value(raw))


def _collapse_whitespace(text: str) -> str:
    text = re.sub(r"[ \t]{2,}", " ", text)
    text = re.sub(r"[ \t]+\n", "\n", text)
    return text.strip()


def parse_directives(text: str) -> ParseResult:
    """Extract [audio: ...] and [variable: ...] directives and strip them from the text."""
    audio: list[AudioEffect] = []

    def take_audio(match: re.Match) -> str:
        track_id, action, amount = match.groups()
        audio.append(AudioEffect(
            track_id=track_id,
            action=action.lower(),
            volume=float(amount) if amount else None,
        ))
        return ""

    effects: list[Effect] = []

    def take_directive(match: re.Match) -> str:
        effect = parse_directive(*match.groups())
        if effect is not None:
            effects.append(effect)
        else:
            logger.debug("Dropped unrecognised directive %r", match.group(0))
        return ""

    without_audio = AUDIO_RE.sub(take_audio, text)
    clean = DIRECTIVE_RE.sub(take_directive, without_audio)
    return ParseResult(
        clean_text=_collapse_whitespace(clean),
        effects=effects,
        audio_effects=audio,
    )


# ── Structured (JSON) parsing ────────────────────────────


def _load_structured(text: str) -> dict | None:
    """Parse JSON model output, stripping markdown fences. None unless it has a narrative."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        lines = cleaned.split("\n")
        lines = [l for l in lines[1:] if not l.strip().startswith("```")]
        cleaned = "\n".join(lines)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        logger.debug("Structured output is not valid JSON: %s", e)
        return None
    if not isinstance(data, dict) or not isinstance(data.get("narrative"), str):
        return None
    return data


def _is_scalar(value: Any) -> bool:
    if isinstance(value, float):
        return math.isfinite(value)
    return isinstance(value, (bool, int, str))


def _state_changes(raw: Any) -> list[Effect]:
    if not isinstance(raw, list):
        return []
    effects = []
    for change in raw:
        if not isinstance(change, dict):
            continue
        variable_id = change.get("variableId")
        operation = change.get("operation")
        value = change.get("value", True if operation == "toggle" else None)
        if not isinstance(variable_id, str) or operation not in OPERATIONS or not _is_scalar(value):
            logger.debug("Dropped invalid state change %r", change)
            continue
        effects.append(Effect(variable_id=variable_id, operation=operation, value=value))
    return effects


def _audio_triggers(raw: Any) -> list[AudioEffect]:
    if not isinstance(raw, list):
        return []
    triggers = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        track_id = item.get("trackId")
        action = item.get("action")
        if not isinstance(track_id, str) or action not in AUDIO_ACTIONS:
            continue
        volume = item.get("volume")
        fade = item.get("fadeDuration")
        triggers.append(AudioEffect(
            track_id=track_id,
            action=action,
            volume=volume if isinstance(volume, (int, float)) and not isinstance(volume, bool) else None,
            fade_duration=fade if isinstance(fade, (int, float)) and not isinstance(fade, bool) else None,
        ))
    return triggers


def parse_structured(text: str) -> ParseResult:
    """Parse a JSON response. Unusable JSON returns the raw text and no effects."""
    data = _load_structured(text)
    if data is None:
        return ParseResult(clean_text=text)

    choices = data.get("choices")
    return ParseResult(
        clean_text=data["narrative"].strip(),
        effects=_state_changes(data.get("stateChanges")),
        audio_effects=_audio_triggers(data.get("audioTriggers")),
        choices=[c for c in choices if isinstance(c, str)] if isinstance(choices, list) else [],
    )


def parse_response(text: str, structured: bool = False) -> ParseResult:
    """Parse model output, falling back from JSON to directives when JSON is unusable."""
    if structured:
        if _load_structured(text) is not None:
            return parse_structured(text)
        logger.warning("Structured output unusable, falling back to directive parsing")
    return parse_directives(text)


def build_response_schema(
    variables: list[Variable], audio_tracks: list[AudioTrack] | tuple = ()
) -> dict[str, Any]:
    """JSON Schema for structured output, enumerating the world's live ids."""
    variable_id: dict[str, Any] = {
        "type": "string",
        "description": "The ID of the variable to change",
    }
    if variables:
        variable_id["enum"] = [v.id for v in variables]

    properties: dict[str, Any] = {
        "narrative": {
            "type": "string",
            "description": "Your in-character response text. This is what the player reads.",
        },
        "stateChanges": {
            "type": "array",
            "description": "State changes to apply to game variables. "
                           "Only include changes that happened in this response.",
            "items": {
                "type": "object",
                "properties": {
                    "variableId": variable_id,
                    "operation": {
                        "type": "string",
                        "enum": list(OPERATIONS),
                        "description": "set (replace), add/subtract/multiply (number), "
                                       "toggle (boolean), append (string)",
                    },
                    "value": {"description": "The value for the operation"},
                },
                "required": ["variableId", "operation", "value"],
            },
        },
        "choices": {
            "type": "array",
            "description": "Optional choices to present to the player. 2-4 short options.",
            "items": {"type": "string"},
        },
    }

    if audio_tracks:
        properties["audioTriggers"] = {
            "type": "array",
            "description": "Audio cues to play, stop, crossfade, or change volume.",
            "items": {
                "type": "object",
                "properties": {
                    "trackId": {"type": "string", "enum": [t.id for t in audio_tracks]},
                    "action": {"type": "string", "enum": list(AUDIO_ACTIONS)},
                    "volume": {"type": "number", "minimum": 0, "maximum": 1},
                    "fadeDuration": {"type": "number", "minimum": 0},
                },
                "required": ["trackId", "action"],
            },
        }

    return {"type": "object", "properties": properties, "required": ["narrative"]}
