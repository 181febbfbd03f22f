"""Tests for environment configuration."""

import os

import pytest

from world_engine.config import ConfigError, EngineConfig, load_config
from world_engine.models import WorldSettings

ENV_VARS = [
    "WORLD_ENGINE_TOKEN_BUDGET",
    "WORLD_ENGINE_RECURSION_DEPTH",
    "WORLD_ENGINE_SCAN_DEPTH",
    "WORLD_ENGINE_HISTORY_TOKENS",
    "WORLD_ENGINE_STRUCTURED",
    "LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    config = load_config(env_file=None)
    assert config == EngineConfig()
    assert config.token_budget == 2048
    assert config.log_level == "INFO"


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("WORLD_ENGINE_TOKEN_BUDGET", "512")
    monkeypatch.setenv("WORLD_ENGINE_RECURSION_DEPTH", "3")
    monkeypatch.setenv("WORLD_ENGINE_SCAN_DEPTH", "0")
    monkeypatch.setenv("WORLD_ENGINE_HISTORY_TOKENS", "1000")
    monkeypatch.setenv("WORLD_ENGINE_STRUCTURED", "true")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    config = load_config()
    assert config.token_budget == 512
    assert config.recursion_depth == 3
    assert config.scan_depth == 0
    assert config.history_tokens == 1000
    assert config.structured is True
    assert config.log_level == "DEBUG"


def test_structured_false(monkeypatch):
    monkeypatch.setenv("WORLD_ENGINE_STRUCTURED", "0")
    assert load_config().structured is False


def test_non_integer_env_raises(monkeypatch):
    monkeypatch.setenv("WORLD_ENGINE_TOKEN_BUDGET", "abc")
    with pytest.raises(ConfigError, match="WORLD_ENGINE_TOKEN_BUDGET must be an integer"):
        load_config()


def test_dotenv_file(tmp_path):
    env = tmp_path / "engine.env"
    env.write_text("WORLD_ENGINE_TOKEN_BUDGET=99\n")
    try:
        assert load_config(env).token_budget == 99
    finally:
        os.environ.pop("WORLD_ENGINE_TOKEN_BUDGET", None)


# ── Resolution against world settings ────────────────────


def test_budget_percent_wins():
    settings = WorldSettings(max_context=8000, lorebook_budget_percent=25)
    assert EngineConfig(token_budget=100).lorebook_budget(settings) == 2000
    assert EngineConfig(token_budget=100).lorebook_budget(WorldSettings()) == 100


def test_recursion_override_and_clamp():
    settings = WorldSettings(lorebook_recursion_depth=2)
    assert EngineConfig().lorebook_recursion(settings) == 2
    assert EngineConfig(recursion_depth=0).lorebook_recursion(settings) == 0
    assert EngineConfig(recursion_depth=50).lorebook_recursion(settings) == 10


def test_scan_depth_override():
    settings = WorldSettings(lorebook_scan_depth=4)
    assert EngineConfig().lorebook_scan(settings) == 4
    assert EngineConfig(scan_depth=1).lorebook_scan(settings) == 1


def test_history_budget():
    assert EngineConfig().history_budget(WorldSettings(max_context=3000)) == 3000
    assert EngineConfig(history_tokens=500).history_budget(WorldSettings()) == 500


def test_structured_output():
    on = WorldSettings(structured_output=True)
    assert EngineConfig().structured_output(on) is True
    assert EngineConfig(structured=False).structured_output(on) is False
