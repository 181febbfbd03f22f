"""Collaborator interfaces — generation providers and session stores.

The engine never talks to a model or a database itself. The turn pipeline is
handed objects matching these protocols:

    class GenerationProvider(Protocol):
        def stream(self, messages, **params) -> AsyncIterator[str]: ...

    class SessionStore(Protocol):
        def load_state(self, session_id) -> GameState | None: ...
        ...

Concrete network clients (OpenAI, Anthropic, OpenRouter, Ollama...) and
persistent stores live in the server layer, which also owns retries,
timeouts and cancellation.

One implementation is provided:

    EchoProvider — streams the last user message back. Lets you verify the
                   turn wiring (matching, assembly, parsing, state updates)
                   without a running model.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any, Protocol

from world_engine.history import ChatMessage
from world_engine.models import GameState

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------

class GenerationProvider(Protocol):
    def stream(self, messages: list[ChatMessage], **params: Any) -> AsyncIterator[str]: ...


class SessionStore(Protocol):
    def load_state(self, session_id: str) -> GameState | None: ...

    def save_state(self, session_id: str, state: GameState) -> None: ...

    def load_history(self, session_id: str) -> list[ChatMessage]: ...

    def append_messages(self, session_id: str, messages: list[ChatMessage]) -> None: ...


# ---------------------------------------------------------------------------
# EchoProvider: no network calls
# ---------------------------------------------------------------------------

class EchoProvider:
    """Streams the content of the last user message back, in word-sized chunks."""

    async def stream(self, messages: list[ChatMessage], **params: Any) -> AsyncIterator[str]:
        logger.debug("EchoProvider messages=%d params=%s", len(messages), sorted(params))
        text = ""
        for msg in reversed(messages):
            if msg.role == "user":
                text = msg.content
                break
        for i, word in enumerate(text.split(" ")):
            yield word if i == 0 else " " + word


async def collect(provider: GenerationProvider, messages: list[ChatMessage], **params: Any) -> str:
    """Drain a provider stream into one string."""
    chunks: list[str] = []
    async for chunk in provider.stream(messages, **params):
        chunks.append(chunk)
    text = "".join(chunks)
    logger.debug("provider reply len=%d chunks=%d", len(text), len(chunks))
    return text
