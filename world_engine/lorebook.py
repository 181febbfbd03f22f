"""Lorebook matching: which non-mandatory entries fire this turn.

Flow for one call to match_lorebook():
  1. Split enabled, non-greeting entries into always-send and candidates.
  2. Scan recent messages (plus cascaded entry content) for candidate keywords,
     one pass per recursion depth. Conditions are checked before keywords.
  3. Grouped entries compete; only the best-scoring member of a group survives.
  4. Order by priority, then score.
  5. Fill the token budget greedily. The top entry is always admitted.

Pure: identical inputs give identical output.
"""

import logging

from pydantic import BaseModel, Field

from world_engine.conditions import check_conditions
from world_engine.history import estimate_tokens
from world_engine.keywords import count_matches
from world_engine.models import GameState, WorldEntry

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_BUDGET = 2048
MAX_RECURSION_DEPTH = 10


class LorebookMatch(BaseModel):
    always_send: list[WorldEntry] = Field(default_factory=list)
    triggered: list[WorldEntry] = Field(default_factory=list)
    triggered_tokens: int = 0
    scores: dict[str, int] = Field(default_factory=dict)


def _secondary_passes(entry: WorldEntry, text: str) -> bool:
    secondary = entry.secondary_keywords or []
    whole = bool(entry.match_whole_words)
    fuzzy = bool(entry.use_fuzzy_match)
    matched = count_matches(text, secondary, whole, fuzzy)
    logic = entry.secondary_keyword_logic or "AND_ANY"

    if logic == "AND_ALL":
        return matched == len(secondary)
    if logic == "NOT_ANY":
        return matched == 0
    if logic == "NOT_ALL":
        return matched < len(secondary)
    return matched >= 1


def score_entry(entry: WorldEntry, text: str, state: GameState) -> int | None:
    """Score a candidate against the scan text, or None if it does not fire."""
    if not check_conditions(state.variables, entry.conditions, entry.condition_logic):
        return None

    primary = count_matches(
        text, entry.keywords, bool(entry.match_whole_words), bool(entry.use_fuzzy_match)
    )
    if primary == 0:
        return None

    score = primary
    if entry.secondary_keywords:
        if not _secondary_passes(entry, text):
            return None
        score += 1
    return score


def resolve_groups(activated: list[WorldEntry], scores: dict[str, int]) -> list[WorldEntry]:
    """Keep one winner per non-empty group: best score, then priority, then first seen."""
    winners: dict[str, WorldEntry] = {}
    for entry in activated:
        if not entry.group:
            continue
        best = winners.get(entry.group)
        if best is None or (scores[entry.id], entry.priority) > (scores[best.id], best.priority):
            winners[entry.group] = entry

    survivors = []
    for entry in activated:
        if not entry.group or winners[entry.group] is entry:
            survivors.append(entry)
    return survivors


def apply_budget(entries: list[WorldEntry], token_budget: int) -> tuple[list[WorldEntry], int]:
    """Greedy fill. The first entry always goes in, even alone over budget."""
    included: list[WorldEntry] = []
    total = 0
    for entry in entries:
        tokens = estimate_tokens(entry.content)
        if included and total + tokens > token_budget:
            logger.debug("Lorebook entry %s skipped: %d tokens over budget", entry.id, tokens)
            continue
        included.append(entry)
        total += tokens
    return included, total


def match_lorebook(
    entries: list[WorldEntry],
    recent_messages: list[str],
    state: GameState,
    token_budget: int = DEFAULT_TOKEN_BUDGET,
    recursion_depth: int = 0,
) -> LorebookMatch:
    """Select the always-send and keyword-triggered entries for this turn.

    recent_messages is ordered oldest to newest.
    """
    recursion_depth = max(0, min(MAX_RECURSION_DEPTH, recursion_depth))

    always_send: list[WorldEntry] = []
    candidates: list[WorldEntry] = []
    for entry in entries:
        if not entry.enabled or entry.position == "greeting":
            continue
        if entry.always_send:
            always_send.append(entry)
        elif entry.keywords:
            candidates.append(entry)

    if not candidates:
        return LorebookMatch(always_send=always_send)

    buffer = "\n".join(recent_messages)
    scores: dict[str, int] = {}
    activated: list[WorldEntry] = []

    for depth in range(recursion_depth + 1):
        newly: list[WorldEntry] = []
        for entry in candidates:
            if entry.id in scores:
                continue
            if depth > 0 and entry.exclude_recursion:
                continue
            score = score_entry(entry, buffer, state)
            if score is None:
                continue
            scores[entry.id] = score
            newly.append(entry)

        if not newly:
            break
        logger.debug("Lorebook depth %d activated %s", depth, [e.id for e in newly])
        activated.extend(newly)

        cascade = [e.content for e in newly if not e.prevent_recursion]
        if cascade:
            buffer = "\n".join([buffer, *cascade])

    survivors = resolve_groups(activated, scores)
    survivors.sort(key=lambda e: (-e.priority, -scores[e.id]))
    triggered, tokens = apply_budget(survivors, token_budget)

    return LorebookMatch(
        always_send=always_send,
        triggered=triggered,
        triggered_tokens=tokens,
        scores={e.id: scores[e.id] for e in triggered},
    )


def format_lorebook(entries: list[WorldEntry]) -> str:
    """Format matched entries as one '[Name] content' line each, for previews."""
    return "\n".join(f"[{e.name}] {e.content}" for e in entries)
