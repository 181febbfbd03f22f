"""SillyTavern character card import.

Turns a V1 card (top-level fields), a V2 card (fields nested under ``data``)
or a standalone character book into a raw current-version World Definition
document. The result is an ordinary dict; pass it through load_world() to
validate it like any other document.

Card field mapping:
  system_prompt              -> top           (system, priority 100)
  description                -> character     (character, priority 90)
  personality                -> character     (personality, priority 85)
  scenario                   -> after_char    (scenario, priority 80)
  mes_example                -> bottom        (example, priority 40)
  first_mes                  -> greeting      (greeting, priority 50)
  post_history_instructions  -> post_history  (system, priority 95)

Book entries named like variable initialisers (InitVar, MVU update blocks)
are not imported as content; their ``key: value`` lines become variables.
"""

from __future__ import annotations

import logging
import math
import re
import uuid
from typing import Any

from world_engine.migrations import CURRENT_VERSION

logger = logging.getLogger(__name__)

# ST world info positions
_POSITIONS = {0: "before_char", 1: "after_char", 2: "bottom", 3: "bottom", 4: "depth"}
DEFAULT_DEPTH = 4

# ST selectiveLogic codes
_SELECTIVE_LOGIC = {0: "AND_ANY", 1: "NOT_ANY", 2: "NOT_ALL", 3: "AND_ALL"}

_INIT_PATTERNS = [
    re.compile(r"initvar", re.IGNORECASE),
    re.compile(r"mvu_update", re.IGNORECASE),
    re.compile("\u521d\u59cb"),  # "initial"
]

_ROLE_PATTERNS = [
    ("style", re.compile(r"format|cot|output", re.IGNORECASE)),
    ("plot", re.compile(r"chapter|plot|story", re.IGNORECASE)),
    ("character", re.compile(r"character|npc", re.IGNORECASE)),
    ("lore", re.compile(r"world|setting|background|lore", re.IGNORECASE)),
    ("scenario", re.compile(r"scenario|location", re.IGNORECASE)),
    ("personality", re.compile(r"personality", re.IGNORECASE)),
    ("system", re.compile(r"system", re.IGNORECASE)),
    ("greeting", re.compile(r"greeting", re.IGNORECASE)),
]

_KV_LINE_RE = re.compile(r"^\s*([^:#\n]+?)\s*[:\uff1a]\s*(.+?)\s*$")
_ID_STRIP_RE = re.compile(r"[^a-zA-Z0-9_\u4e00-\u9fff\u3040-\u309f\u30a0-\u30ff]")

MAIN_PROMPT = "Write {{char}}'s next reply in a fictional chat between {{char}} and {{user}}."


def _new_id() -> str:
    return str(uuid.uuid4())


def _entry(name: str, content: str, role: str, position: str, priority: int, **extra: Any) -> dict:
    entry = {
        "id": _new_id(),
        "name": name,
        "content": content,
        "role": role,
        "position": position,
        "alwaysSend": True,
        "keywords": [],
        "conditions": [],
        "conditionLogic": "all",
        "priority": priority,
        "enabled": True,
    }
    entry.update(extra)
    return entry


def infer_role(name: str) -> str:
    for role, pattern in _ROLE_PATTERNS:
        if pattern.search(name):
            return role
    return "custom"


def is_variable_initialiser(name: str) -> bool:
    return any(p.search(name) for p in _INIT_PATTERNS)


def _parse_scalar(raw: str) -> tuple[str, Any] | None:
    if raw in ("true", "false"):
        return "boolean", raw == "true"
    try:
        number = float(raw)
        if not math.isfinite(number):
            raise ValueError(raw)
    except ValueError:
        text = raw.strip("\"'\u300c\u300d").strip()
        if 0 < len(text) < 200:
            return "string", text
        return None
    if number.is_integer() and re.fullmatch(r"[+-]?\d+", raw):
        return "number", int(raw)
    return "number", number


def extract_variables(content: str) -> list[dict]:
    """Variables from ``key: value`` lines. Dotted keys are flattened to snake ids."""
    variables = []
    for line in content.splitlines():
        match = _KV_LINE_RE.match(line)
        if not match:
            continue
        key, raw = match.group(1).strip(), match.group(2).strip()
        if key.startswith(("#", "-", "//")) or len(key) > 60:
            continue
        var_id = _ID_STRIP_RE.sub("", re.sub(r"[.\s]+", "_", key)).lower()
        parsed = _parse_scalar(raw)
        if not var_id or parsed is None:
            continue
        var_type, value = parsed
        variables.append({
            "id": var_id,
            "name": re.sub(r"[._]", " ", key),
            "type": var_type,
            "defaultValue": value,
        })
    return variables


def _book_entries(book: dict) -> list[dict]:
    raw = book.get("entries") or []
    if isinstance(raw, dict):
        raw = list(raw.values())
    return [e for e in raw if isinstance(e, dict)]


def _keys(st: dict) -> list[str]:
    return st.get("key") or st.get("keys") or []


def _entry_name(st: dict) -> str:
    keys = _keys(st)
    return st.get("comment") or (keys[0] if keys else "") or f"Entry {st.get('uid', '?')}"


def _import_book_entry(st: dict) -> dict:
    keys = _keys(st)
    name = _entry_name(st)
    extensions = st.get("extensions") or {}

    st_position = extensions.get("position", st.get("position"))
    position = _POSITIONS.get(st_position, "after_char")
    extra: dict[str, Any] = {}
    if position == "depth":
        extra["depth"] = extensions.get("depth", st.get("depth", DEFAULT_DEPTH))

    secondary = [k for k in (st.get("keysecondary") or st.get("secondary_keys") or []) if k and k.strip()]
    if secondary:
        extra["secondaryKeywords"] = secondary
        extra["secondaryKeywordLogic"] = _SELECTIVE_LOGIC.get(st.get("selectiveLogic"), "AND_ANY")

    priority = st.get("priority")
    if priority is None:
        priority = 1000 - (st.get("insertion_order") if st.get("insertion_order") is not None else 500)

    if st.get("group"):
        extra["group"] = st["group"]

    return _entry(
        name,
        st.get("content") or "",
        infer_role(name),
        position,
        int(priority),
        alwaysSend=bool(st.get("constant", False)),
        keywords=[k for k in keys if k and k.strip()],
        enabled=st.get("enabled", True),
        **extra,
    )


def import_sillytavern_card(card: dict) -> dict:
    """Convert a SillyTavern card or character book into a World Definition document."""
    data = card.get("data") or card
    book = data.get("character_book") or card.get("character_book") or {}
    if not book and "entries" in card:
        book = card
    char_name = data.get("name") or ""

    entries: list[dict] = []
    variables: list[dict] = []

    def label(suffix: str, fallback: str) -> str:
        return f"{char_name}: {suffix}" if char_name else fallback

    if data.get("system_prompt"):
        entries.append(_entry("System Prompt", data["system_prompt"], "system", "top", 100))
    if data.get("description"):
        entries.append(_entry(
            label("Description", "Character Description"), data["description"],
            "character", "character", 90,
        ))
    if data.get("personality"):
        entries.append(_entry(
            label("Personality", "Personality"), data["personality"],
            "personality", "character", 85,
        ))
    if data.get("scenario"):
        entries.append(_entry("Scenario", data["scenario"], "scenario", "after_char", 80))
    if data.get("mes_example"):
        entries.append(_entry("Example Messages", data["mes_example"], "example", "bottom", 40))
    if data.get("first_mes"):
        entries.append(_entry("Greeting", data["first_mes"], "greeting", "greeting", 50))
    if data.get("post_history_instructions"):
        entries.append(_entry(
            "Post-History Instructions", data["post_history_instructions"],
            "system", "post_history", 95,
        ))

    seen: set[str] = set()
    for st in _book_entries(book):
        if is_variable_initialiser(_entry_name(st)):
            for var in extract_variables(st.get("content") or ""):
                if var["id"] not in seen:
                    seen.add(var["id"])
                    variables.append(var)
            continue
        entries.append(_import_book_entry(st))

    if not entries:
        entries.append(_entry("Main Prompt", MAIN_PROMPT, "system", "top", 100))

    logger.info(
        "imported card %r: %d entries, %d variables",
        char_name or book.get("name"), len(entries), len(variables),
    )
    return {
        "id": _new_id(),
        "version": f"{CURRENT_VERSION}.0.0",
        "name": char_name or book.get("name") or "Imported World",
        "description": book.get("description") or data.get("scenario") or "",
        "author": "",
        "entries": entries,
        "variables": variables,
        "rules": [],
        "components": [],
        "audioTracks": [],
        "displayTransforms": [],
        "settings": {
            "maxTokens": 12000,
            "maxContext": 200000,
            "temperature": 1.0,
            "topP": 1,
            "frequencyPenalty": 0,
            "presencePenalty": 0,
            "playerName": "User",
            "structuredOutput": False,
            "lorebookScanDepth": 2,
            "lorebookRecursionDepth": 0,
            "uiMode": "chat",
        },
    }
