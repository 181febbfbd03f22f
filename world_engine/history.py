"""Chat message list assembly around an assembled prompt.

Message order sent to the generation provider:
  system prompt
  history (oldest trimmed first), with depth injections spliced in
  the new user message
  post-history instructions

A depth injection at depth N sits N messages before the end of the history
plus user message; depth 0 goes after the last message.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel

if TYPE_CHECKING:
    from world_engine.prompts import PromptAssembly

ChatRole = Literal["system", "user", "assistant"]


class ChatMessage(BaseModel):
    role: ChatRole
    content: str


def estimate_tokens(text: str) -> int:
    """Rough token estimate: 1 token ~ 4 characters."""
    return math.ceil(len(text) / 4)


def trim_history(messages: list[ChatMessage], max_tokens: int | None) -> list[ChatMessage]:
    """Keep the newest messages that fit in max_tokens. The newest one always stays."""
    if not max_tokens or not messages:
        return list(messages)

    char_limit = max_tokens * 4
    kept: list[ChatMessage] = []
    total = 0
    for msg in reversed(messages):
        if kept and total + len(msg.content) > char_limit:
            break
        total += len(msg.content)
        kept.append(msg)
    kept.reverse()
    return kept


def build_chat_messages(
    assembly: PromptAssembly,
    history: list[ChatMessage],
    user_message: str | None = None,
    max_tokens: int | None = None,
) -> list[ChatMessage]:
    """Lay out the full message list for one generation request."""
    budget = None
    if max_tokens:
        budget = max(1, max_tokens - estimate_tokens(assembly.system_prompt))
    body = trim_history(history, budget)
    if user_message is not None:
        body.append(ChatMessage(role="user", content=user_message))

    # Deepest first so shallower inserts do not shift their positions
    for injection in sorted(assembly.depth_injections, key=lambda i: -i.depth):
        index = max(0, len(body) - injection.depth)
        body.insert(index, ChatMessage(role="system", content=injection.content))

    messages = [ChatMessage(role="system", content=assembly.system_prompt)]
    messages.extend(body)
    messages.extend(ChatMessage(role="system", content=text) for text in assembly.post_history)
    return messages
