import pytest

from world_engine.models import WorldDefinition
from world_engine.state import GameStateManager


def sample_world_doc() -> dict:
    """A small current-version world touching every entry position."""
    return {
        "id": "tavern",
        "version": "5.0.0",
        "name": "The Crossroads Tavern",
        "entries": [
            {"id": "sys", "name": "System", "content": "You narrate a fantasy tale.",
             "role": "system", "position": "top", "alwaysSend": True, "priority": 100},
            {"id": "mira", "name": "Mira", "content": "{{char}} is the innkeeper. {{user}} is a traveller.",
             "role": "character", "position": "character", "alwaysSend": True, "priority": 90},
            {"id": "dragon", "name": "Dragon", "content": "A red dragon sleeps under the hill.",
             "role": "lore", "position": "after_char", "keywords": ["dragon"], "priority": 10},
            {"id": "village", "name": "Village", "content": "The village is called Ashford.",
             "role": "lore", "position": "before_char", "keywords": ["village"], "priority": 5},
            {"id": "whisper", "name": "Whisper", "content": "Keep replies short.",
             "role": "style", "position": "depth", "depth": 1, "alwaysSend": True},
            {"id": "post", "name": "Post", "content": "Stay in character.",
             "role": "system", "position": "post_history", "alwaysSend": True},
            {"id": "hello", "name": "Greeting", "content": "Welcome, {{user}}!",
             "role": "greeting", "position": "greeting", "alwaysSend": True},
        ],
        "variables": [
            {"id": "health", "name": "Health", "type": "number", "defaultValue": 100,
             "min": 0, "max": 100},
            {"id": "gold", "name": "Gold", "type": "number", "defaultValue": 10},
            {"id": "location", "name": "Location", "type": "string", "defaultValue": "tavern"},
            {"id": "hasKey", "name": "Has Key", "type": "boolean", "defaultValue": False},
        ],
        "rules": [
            {"id": "death", "name": "Death", "trigger": "condition",
             "conditions": [{"variableId": "health", "operator": "lte", "value": 0}],
             "effects": [{"variableId": "location", "operation": "set", "value": "graveyard"}]},
            {"id": "buy-ale", "name": "Buy ale", "trigger": "action", "actionId": "buy-ale",
             "conditions": [{"variableId": "gold", "operator": "gte", "value": 2}],
             "effects": [{"variableId": "gold", "operation": "subtract", "value": 2}],
             "notification": "always",
             "notificationTemplate": "You buy an ale. Gold left: {gold}"},
        ],
        "settings": {"playerName": "Aria"},
    }


@pytest.fixture
def world_doc() -> dict:
    return sample_world_doc()


@pytest.fixture
def world(world_doc) -> WorldDefinition:
    return WorldDefinition.model_validate(world_doc)


@pytest.fixture
def manager(world) -> GameStateManager:
    return GameStateManager(world)
