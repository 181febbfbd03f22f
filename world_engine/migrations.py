"""World Definition schema migrations.

Raw documents of any historical version are normalised to the current one
before anything else reads them:

  v1 -> v2  legacy characters / lorebookEntries / settings.systemPrompt and
            settings.greeting become entries; token budget becomes a percentage
  v2 -> v3  insertionOrder folded into priority
  v3 -> v4  settings.layoutMode becomes settings.uiMode
  v4 -> v5  uiMode "persistent" becomes settings.fullScreenComponent

Steps are dispatched by the document's major version and each also checks for
the legacy shape it handles, passing anything else through. Running the chain
on a current document changes nothing.
"""

from __future__ import annotations

import copy
import json
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from world_engine.models import WorldDefinition

logger = logging.getLogger(__name__)

CURRENT_VERSION = 5

Document = dict[str, Any]


class WorldLoadError(ValueError):
    """Raised when a World Definition cannot be read or fails validation."""


def major_version(doc: Document) -> int:
    raw = str(doc.get("version") or "1")
    try:
        return int(raw.split(".")[0])
    except ValueError:
        return 1


def _stamp(doc: Document, version: int) -> None:
    doc["version"] = f"{version}.0.0"


def _settings(doc: Document) -> Document:
    """The settings object of doc, created when missing or null.

    A settings value of any other type is left for model validation to reject;
    the migration steps then work on a detached empty dict.
    """
    settings = doc.get("settings")
    if settings is None:
        settings = doc["settings"] = {}
    return settings if isinstance(settings, dict) else {}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _records(value: Any) -> list[Document]:
    """The dict items of a JSON array; anything else yields nothing."""
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _base_entry(entry_id: str, name: str, content: str, **fields: Any) -> Document:
    entry = {
        "id": entry_id,
        "name": name,
        "content": content,
        "alwaysSend": True,
        "keywords": [],
        "conditions": [],
        "conditionLogic": "all",
        "enabled": True,
    }
    entry.update(fields)
    return entry


# ── v1 -> v2 ─────────────────────────────────────────────

_LEGACY_ROLES = {"character", "lore", "plot", "style", "custom"}


def _has_legacy_content(doc: Document, settings: Document) -> bool:
    return bool(
        doc.get("characters")
        or doc.get("lorebookEntries")
        or settings.get("systemPrompt")
        or settings.get("greeting")
    )


def _budget_to_percent(settings: Document) -> None:
    budget = settings.pop("lorebookTokenBudget", None)
    if budget is None or "lorebookBudgetPercent" in settings:
        return
    context = settings.get("maxContext")
    if not _is_number(context) or context <= 0:
        context = 8192
    try:
        percent = round(float(budget) * 100 / float(context))
    except (TypeError, ValueError, OverflowError):
        logger.warning("Dropping unreadable lorebookTokenBudget %r", budget)
        return
    settings["lorebookBudgetPercent"] = max(1, min(100, percent))


def migrate_v1_to_v2(doc: Document) -> Document:
    settings = _settings(doc)
    _budget_to_percent(settings)

    if doc.get("entries") or not _has_legacy_content(doc, settings):
        if doc.get("entries") is None:
            doc["entries"] = []
        _stamp(doc, 2)
        return doc

    entries: list[Document] = []
    order = 0

    if settings.get("systemPrompt"):
        entries.append(_base_entry(
            "system-prompt", "System Prompt", settings["systemPrompt"],
            role="system", position="top", priority=100, insertionOrder=order,
        ))
        order += 1

    for char in _records(doc.get("characters")):
        content = f"You are {char.get('name', '')}. {char.get('description', '')}"
        if char.get("systemPrompt"):
            content += f"\n\n{char['systemPrompt']}"
        entries.append(_base_entry(
            char.get("id") or f"character-{order}", char.get("name", ""), content,
            role="character", position="character", priority=90, insertionOrder=order,
        ))
        order += 1

    for lore in _records(doc.get("lorebookEntries")):
        role = lore.get("type") if lore.get("type") in _LEGACY_ROLES else "custom"
        entries.append(_base_entry(
            lore.get("id") or f"lore-{order}", lore.get("name", ""), lore.get("content", ""),
            role=role,
            position="before_char" if lore.get("position") == "before" else "after_char",
            alwaysSend=bool(lore.get("alwaysSend", False)),
            keywords=lore.get("keywords") or [],
            conditions=lore.get("conditions") or [],
            conditionLogic=lore.get("conditionLogic") or "all",
            priority=lore.get("priority") or 0,
            enabled=lore.get("enabled", True),
            insertionOrder=order,
        ))
        order += 1

    if settings.get("greeting"):
        entries.append(_base_entry(
            "greeting", "Greeting", settings["greeting"],
            role="greeting", position="greeting", priority=0, insertionOrder=order,
        ))

    characters = _records(doc.pop("characters", None))
    if not doc.get("avatar") and characters and characters[0].get("avatar"):
        doc["avatar"] = characters[0]["avatar"]
    doc.pop("lorebookEntries", None)
    settings.pop("systemPrompt", None)
    settings.pop("greeting", None)

    doc["entries"] = entries
    _stamp(doc, 2)
    return doc


# ── v2 -> v3 ─────────────────────────────────────────────


def migrate_v2_to_v3(doc: Document) -> Document:
    for entry in _records(doc.get("entries")):
        order = entry.pop("insertionOrder", None)
        if not _is_number(order):
            order = None
        # numeric groups were ordering buckets before groups meant competition
        if _is_number(entry.get("group")):
            legacy_group = entry.pop("group")
            if order is None:
                order = legacy_group
        if order is None:
            continue
        priority = entry.get("priority")
        entry["priority"] = int((1000 - order * 10) + (priority if _is_number(priority) else 0))
    _stamp(doc, 3)
    return doc


# ── v3 -> v4 ─────────────────────────────────────────────


def migrate_v3_to_v4(doc: Document) -> Document:
    settings = _settings(doc)
    layout = settings.pop("layoutMode", None)
    if "uiMode" not in settings:
        if layout == "immersive":
            settings["uiMode"] = "persistent"
        elif doc.get("displayTransforms"):
            settings["uiMode"] = "per-reply"
        else:
            settings["uiMode"] = "chat"
    _stamp(doc, 4)
    return doc


# ── v4 -> v5 ─────────────────────────────────────────────


def migrate_v4_to_v5(doc: Document) -> Document:
    settings = _settings(doc)
    if settings.get("uiMode") == "persistent":
        settings["fullScreenComponent"] = True
    _stamp(doc, 5)
    return doc


MIGRATIONS: dict[int, Callable[[Document], Document]] = {
    1: migrate_v1_to_v2,
    2: migrate_v2_to_v3,
    3: migrate_v3_to_v4,
    4: migrate_v4_to_v5,
}


def migrate_world(raw: Document) -> Document:
    """Return a copy of raw upgraded to the current schema version."""
    doc = copy.deepcopy(raw)
    start = version = major_version(doc)
    while version in MIGRATIONS:
        doc = MIGRATIONS[version](doc)
        version = major_version(doc)
    if version != start:
        logger.info("world %s migrated from v%d to v%d", doc.get("id", "?"), start, version)
    return doc


def load_world(source: Document | str | Path) -> WorldDefinition:
    """Migrate and validate a World Definition from a dict or a JSON file path."""
    if isinstance(source, (str, Path)):
        try:
            source = json.loads(Path(source).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise WorldLoadError(f"Cannot read world definition: {e}") from e
    if not isinstance(source, dict):
        raise WorldLoadError("World definition must be a JSON object")

    try:
        return WorldDefinition.model_validate(migrate_world(source))
    except ValidationError as e:
        raise WorldLoadError(f"Invalid world definition: {e}") from e
