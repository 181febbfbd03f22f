"""World Engine — prompt assembly and game state for LLM roleplay worlds.

Load a world, open a session, run turns:

    world = load_world("world.json")
    manager = GameStateManager(world)
    result = await run_turn(world=world, manager=manager, history=[],
                            user_message="Hello", provider=provider)
"""

from world_engine.components import resolve_components
from world_engine.migrations import WorldLoadError, load_world, migrate_world
from world_engine.models import GameState, WorldDefinition
from world_engine.pipeline.orchestrator import TurnResult, run_turn, trigger_action
from world_engine.state import GameStateManager

__all__ = [
    "GameState",
    "GameStateManager",
    "TurnResult",
    "WorldDefinition",
    "WorldLoadError",
    "load_world",
    "migrate_world",
    "resolve_components",
    "run_turn",
    "trigger_action",
]
