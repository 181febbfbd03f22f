"""{{macro}} expansion for entry content.

Each {{...}} token is numbered left to right and classified against an ordered
table of macro kinds; the first kind whose matcher accepts the token body wins.
Bodies no kind accepts fall back to a state variable lookup when they are a
bare identifier, and are otherwise left in the text untouched, braces included.
Bodies are matched exactly as written, so a padded {{ char }} is not a macro.

    {{char}} {{user}} {{turnCount}} {{varId}}
    {{random::a::b}}   re-rolled on every expansion
    {{pick::a::b}}     stable for the same position and turn
    {{roll::2d6+3}}
    {{time}} {{date}} {{weekday}} {{isodate}} {{isotime}} {{idle}}
    {{lastMessage}} {{lastUserMessage}} {{lastCharMessage}} {{model}}
    {{// comment}} {{trim}}
"""

import random
import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from world_engine.models import GameState, WorldDefinition, format_value

MACRO_RE = re.compile(r"\{\{((?:[^{}]|\{(?!\{)|\}(?!\}))*)\}\}")
_IDENT_RE = re.compile(r"^\w+$")
_ROLL_RE = re.compile(r"^(\d+)d(\d+)([+-]\d+)?$", re.IGNORECASE)

_TRIM_MARK = "\x00TRIM\x00"
_TRIM_RE = re.compile(r"\s*\x00TRIM\x00\s*")

MAX_DICE = 1000


class MacroKind(Enum):
    COMMENT = "comment"
    TRIM = "trim"
    CHAR = "char"
    USER = "user"
    TURN_COUNT = "turnCount"
    RANDOM = "random"
    PICK = "pick"
    ROLL = "roll"
    TIME = "time"
    DATE = "date"
    WEEKDAY = "weekday"
    ISODATE = "isodate"
    ISOTIME = "isotime"
    IDLE = "idle"
    LAST_MESSAGE = "lastMessage"
    LAST_USER_MESSAGE = "lastUserMessage"
    LAST_CHAR_MESSAGE = "lastCharMessage"
    MODEL = "model"


@dataclass
class _Context:
    char_name: str
    user_name: str
    state: GameState
    index: int
    now: datetime


# ── Matchers: body -> args, or None when the kind does not apply ──


def _exact(name: str) -> Callable[[str], list[str] | None]:
    return lambda body: [] if body == name else None


def _prefixed_list(prefix: str) -> Callable[[str], list[str] | None]:
    def match(body: str) -> list[str] | None:
        if not body.startswith(prefix):
            return None
        return body[len(prefix):].split("::")
    return match


def _match_comment(body: str) -> list[str] | None:
    return [] if body.startswith("//") else None


def _match_roll(body: str) -> list[str] | None:
    if not body.startswith("roll::"):
        return None
    m = _ROLL_RE.match(body[6:].strip())
    if not m:
        return None
    count, sides = int(m.group(1)), int(m.group(2))
    if sides < 1 or count > MAX_DICE:
        return None
    return [m.group(1), m.group(2), m.group(3) or "0"]


# First match wins; order is part of the macro language
_MATCHERS: list[tuple[MacroKind, Callable[[str], list[str] | None]]] = [
    (MacroKind.COMMENT, _match_comment),
    (MacroKind.TRIM, _exact("trim")),
    (MacroKind.CHAR, _exact("char")),
    (MacroKind.USER, _exact("user")),
    (MacroKind.TURN_COUNT, _exact("turnCount")),
    (MacroKind.RANDOM, _prefixed_list("random::")),
    (MacroKind.PICK, _prefixed_list("pick::")),
    (MacroKind.ROLL, _match_roll),
    (MacroKind.TIME, _exact("time")),
    (MacroKind.DATE, _exact("date")),
    (MacroKind.WEEKDAY, _exact("weekday")),
    (MacroKind.ISODATE, _exact("isodate")),
    (MacroKind.ISOTIME, _exact("isotime")),
    (MacroKind.IDLE, _exact("idle")),
    (MacroKind.LAST_MESSAGE, _exact("lastMessage")),
    (MacroKind.LAST_USER_MESSAGE, _exact("lastUserMessage")),
    (MacroKind.LAST_CHAR_MESSAGE, _exact("lastCharMessage")),
    (MacroKind.MODEL, _exact("model")),
]

_METADATA_KEYS = {
    MacroKind.LAST_MESSAGE: "lastMessage",
    MacroKind.LAST_USER_MESSAGE: "lastUserMessage",
    MacroKind.LAST_CHAR_MESSAGE: "lastCharMessage",
    MacroKind.MODEL: "model",
}


def classify(body: str) -> tuple[MacroKind, list[str]] | None:
    """Return the macro kind and its arguments for a token body."""
    for kind, match in _MATCHERS:
        args = match(body)
        if args is not None:
            return kind, args
    return None


def pick_index(macro_index: int, turn_count: int, size: int) -> int:
    """Deterministic choice index for {{pick}}: same position + turn, same pick."""
    h = (macro_index * 2654435761 + turn_count * 40503) & 0xFFFFFFFF
    return h % size


def humanize_idle(last_at: str | None, now: datetime) -> str:
    if not last_at:
        return "unknown"
    try:
        then = datetime.fromisoformat(last_at.replace("Z", "+00:00"))
    except ValueError:
        return "just now"
    if then.tzinfo is None:
        then = then.replace(tzinfo=timezone.utc)
    current = now if now.tzinfo else now.replace(tzinfo=timezone.utc)

    seconds = int((current - then).total_seconds())
    if seconds < 60:
        return "just now"
    minutes = seconds // 60
    if minutes < 60:
        return "1 minute" if minutes == 1 else f"{minutes} minutes"
    hours = minutes // 60
    if hours < 24:
        return "1 hour" if hours == 1 else f"{hours} hours"
    days = hours // 24
    return "1 day" if days == 1 else f"{days} days"


def _resolve(kind: MacroKind, args: list[str], ctx: _Context) -> str:
    if kind == MacroKind.COMMENT:
        return ""
    if kind == MacroKind.TRIM:
        return _TRIM_MARK
    if kind == MacroKind.CHAR:
        return ctx.char_name
    if kind == MacroKind.USER:
        return ctx.user_name
    if kind == MacroKind.TURN_COUNT:
        return str(ctx.state.turn_count)
    if kind == MacroKind.RANDOM:
        return random.choice(args)
    if kind == MacroKind.PICK:
        return args[pick_index(ctx.index, ctx.state.turn_count, len(args))]
    if kind == MacroKind.ROLL:
        count, sides, modifier = (int(a) for a in args)
        return str(sum(random.randint(1, sides) for _ in range(count)) + modifier)

    local = ctx.now.astimezone() if ctx.now.tzinfo else ctx.now
    utc = ctx.now.astimezone(timezone.utc) if ctx.now.tzinfo else ctx.now
    if kind == MacroKind.TIME:
        return local.strftime("%H:%M")
    if kind == MacroKind.DATE:
        return f"{local.month}/{local.day}/{local.year}"
    if kind == MacroKind.WEEKDAY:
        return local.strftime("%A")
    if kind == MacroKind.ISODATE:
        return utc.strftime("%Y-%m-%d")
    if kind == MacroKind.ISOTIME:
        return utc.strftime("%H:%M:%S")
    if kind == MacroKind.IDLE:
        return humanize_idle(ctx.state.metadata.get("lastUserMessageAt"), ctx.now)

    value = ctx.state.metadata.get(_METADATA_KEYS[kind])
    return "" if value is None else str(value)


def character_name(world: WorldDefinition) -> str:
    for entry in world.entries:
        if entry.role == "character" and entry.enabled:
            return entry.name
    return "Assistant"


def expand_macros(
    template: str,
    world: WorldDefinition,
    state: GameState,
    *,
    now: datetime | None = None,
) -> str:
    """Expand every {{...}} token in template. Never raises on unknown macros."""
    if "{{" not in template:
        return template

    char_name = character_name(world)
    user_name = world.settings.player_name or "User"
    current = now or datetime.now(timezone.utc)
    counter = 0

    def replace(match: re.Match) -> str:
        nonlocal counter
        ctx = _Context(char_name, user_name, state, counter, current)
        counter += 1

        body = match.group(1)
        found = classify(body)
        if found is not None:
            return _resolve(found[0], found[1], ctx)

        if _IDENT_RE.match(body) and body in state.variables:
            return format_value(state.variables[body])

        return match.group(0)

    return _TRIM_RE.sub("", MACRO_RE.sub(replace, template))
