"""Engine configuration from environment variables (and a .env file).

WORLD_ENGINE_TOKEN_BUDGET      lorebook token budget when the world sets no budget percent
WORLD_ENGINE_RECURSION_DEPTH   overrides settings.lorebookRecursionDepth
WORLD_ENGINE_SCAN_DEPTH        overrides settings.lorebookScanDepth
WORLD_ENGINE_HISTORY_TOKENS    chat history trim budget (default: settings.maxContext)
WORLD_ENGINE_STRUCTURED        "1"/"true" forces structured JSON output
LOG_LEVEL                      logging level for the CLI (default INFO)
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel

from world_engine.lorebook import DEFAULT_TOKEN_BUDGET, MAX_RECURSION_DEPTH
from world_engine.models import WorldSettings

_TRUE = {"1", "true", "yes", "on"}


class ConfigError(ValueError):
    """Raised when an environment variable holds an unusable value."""


class EngineConfig(BaseModel):
    token_budget: int = DEFAULT_TOKEN_BUDGET
    recursion_depth: int | None = None
    scan_depth: int | None = None
    history_tokens: int | None = None
    structured: bool | None = None
    log_level: str = "INFO"

    def lorebook_budget(self, settings: WorldSettings) -> int:
        """Token budget for triggered entries; a world's budget percent wins."""
        if settings.lorebook_budget_percent:
            return max(1, settings.max_context * settings.lorebook_budget_percent // 100)
        return self.token_budget

    def lorebook_recursion(self, settings: WorldSettings) -> int:
        depth = self.recursion_depth
        if depth is None:
            depth = settings.lorebook_recursion_depth
        return max(0, min(MAX_RECURSION_DEPTH, depth))

    def lorebook_scan(self, settings: WorldSettings) -> int:
        return max(0, self.scan_depth if self.scan_depth is not None else settings.lorebook_scan_depth)

    def history_budget(self, settings: WorldSettings) -> int:
        return self.history_tokens or settings.max_context

    def structured_output(self, settings: WorldSettings) -> bool:
        return settings.structured_output if self.structured is None else self.structured


def _int_env(name: str) -> int | None:
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None


def load_config(env_file: Path | None = None) -> EngineConfig:
    """Read EngineConfig from the environment after loading ``.env``.

    Raises ConfigError for a non-integer numeric variable.
    """
    load_dotenv(env_file)
    structured = os.getenv("WORLD_ENGINE_STRUCTURED", "").strip().lower()
    return EngineConfig(
        token_budget=_int_env("WORLD_ENGINE_TOKEN_BUDGET") or DEFAULT_TOKEN_BUDGET,
        recursion_depth=_int_env("WORLD_ENGINE_RECURSION_DEPTH"),
        scan_depth=_int_env("WORLD_ENGINE_SCAN_DEPTH"),
        history_tokens=_int_env("WORLD_ENGINE_HISTORY_TOKENS"),
        structured=(structured in _TRUE) if structured else None,
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
