"""Core domain models.

Every engine component operates on these types. Pydantic is used for
validation and serialisation at every data boundary: Python attributes are
snake_case, the at-rest World Definition document is camelCase, so dump with
``model_dump(by_alias=True)`` when writing JSON back out.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

Value = bool | int | float | str

VariableType = Literal["number", "string", "boolean"]

Operator = Literal["eq", "neq", "gt", "gte", "lt", "lte", "contains"]

Operation = Literal["set", "add", "subtract", "multiply", "toggle", "append"]

OPERATIONS: tuple[str, ...] = ("set", "add", "subtract", "multiply", "toggle", "append")

AudioAction = Literal["play", "stop", "crossfade", "volume"]

AUDIO_ACTIONS: tuple[str, ...] = ("play", "stop", "crossfade", "volume")

ConditionLogic = Literal["all", "any"]

EntryRole = Literal[
    "system",
    "character",
    "personality",
    "scenario",
    "persona",
    "lore",
    "plot",
    "style",
    "example",
    "greeting",
    "custom",
]

EntryPosition = Literal[
    "top",
    "before_char",
    "character",
    "after_char",
    "persona",
    "bottom",
    "depth",
    "post_history",
    "greeting",
]

# Order in which positions are concatenated into the system prompt
SYSTEM_PROMPT_SLOTS: tuple[str, ...] = (
    "top",
    "before_char",
    "character",
    "after_char",
    "persona",
    "bottom",
)

SecondaryKeywordLogic = Literal["AND_ANY", "AND_ALL", "NOT_ANY", "NOT_ALL"]

RuleTrigger = Literal["condition", "action"]

NotificationPolicy = Literal["silent", "always", "conditional"]


class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Variable(_Model):
    """A typed game variable (health, gold, mood...)."""

    id: str
    name: str
    type: VariableType
    default_value: Value
    description: str | None = None
    min: float | None = None
    max: float | None = None
    category: str | None = None


class Condition(_Model):
    variable_id: str
    operator: Operator
    value: Value


class Effect(_Model):
    """A single state mutation instruction, from model output or a rule."""

    variable_id: str
    operation: Operation
    value: Value


class AudioEffect(_Model):
    track_id: str
    action: AudioAction
    volume: float | None = None
    fade_duration: float | None = None


class WorldEntry(_Model):
    """The unit of injectable content: lore, character cards, instructions."""

    id: str
    name: str = ""
    content: str = ""
    role: EntryRole = "custom"
    position: EntryPosition = "after_char"
    depth: int | None = None
    always_send: bool = False
    keywords: list[str] = Field(default_factory=list)
    secondary_keywords: list[str] | None = None
    secondary_keyword_logic: SecondaryKeywordLogic | None = None
    conditions: list[Condition] = Field(default_factory=list)
    condition_logic: ConditionLogic = "all"
    priority: int = 0
    enabled: bool = True
    match_whole_words: bool | None = None
    use_fuzzy_match: bool | None = None
    prevent_recursion: bool | None = None
    exclude_recursion: bool | None = None
    group: str | None = None

    @field_validator("role", mode="before")
    @classmethod
    def _unknown_role_is_custom(cls, value: Any) -> Any:
        # Authored documents drift; an unrecognised role must not reject the world
        if value not in EntryRole.__args__:
            return "custom"
        return value

    @model_validator(mode="after")
    def _depth_entries_need_depth(self) -> WorldEntry:
        if self.position == "depth" and self.depth is None:
            raise ValueError(f"entry {self.id!r} has position 'depth' but no depth")
        return self


class Rule(_Model):
    """Declarative condition -> effect mapping. Evaluated, never mutated."""

    id: str
    name: str = ""
    description: str | None = None
    conditions: list[Condition] = Field(default_factory=list)
    condition_logic: ConditionLogic = "all"
    effects: list[Effect] = Field(default_factory=list)
    audio_effects: list[AudioEffect] = Field(default_factory=list)
    priority: int = 0
    trigger: RuleTrigger = "condition"
    action_id: str | None = None
    notification: NotificationPolicy = "silent"
    notification_template: str | None = None
    notification_conditions: list[Condition] = Field(default_factory=list)


class AudioTrack(_Model):
    id: str
    name: str = ""
    type: str = "bgm"
    url: str | None = None


class Component(_Model):
    """A UI component bound to variables. Rendering happens outside the engine."""

    id: str
    type: str
    name: str = ""
    order: int = 0
    visible: bool = True
    config: dict[str, Any] = Field(default_factory=dict)


class WorldSettings(_Model):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    max_tokens: int = 2048
    max_context: int = 8192
    temperature: float = 0.8
    top_p: float | None = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None
    player_name: str = ""
    structured_output: bool = False
    lorebook_scan_depth: int = 2
    lorebook_recursion_depth: int = 0
    lorebook_budget_percent: int | None = None
    ui_mode: str | None = None
    full_screen_component: bool = False


class WorldDefinition(_Model):
    """The aggregate root of an authored world, always in the current schema."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: str
    version: str = "5.0.0"
    name: str = ""
    description: str = ""
    author: str = ""
    entries: list[WorldEntry] = Field(default_factory=list)
    variables: list[Variable] = Field(default_factory=list)
    rules: list[Rule] = Field(default_factory=list)
    components: list[Component] = Field(default_factory=list)
    audio_tracks: list[AudioTrack] = Field(default_factory=list)
    display_transforms: list[dict[str, Any]] = Field(default_factory=list)
    settings: WorldSettings = Field(default_factory=WorldSettings)

    def variable(self, variable_id: str) -> Variable | None:
        for var in self.variables:
            if var.id == variable_id:
                return var
        return None


class GameState(_Model):
    """Mutable per-session store. Only GameStateManager should write to it."""

    world_id: str
    variables: dict[str, Value] = Field(default_factory=dict)
    turn_count: int = 0
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def initial(cls, world: WorldDefinition) -> GameState:
        """Fresh state seeded from the world's variable defaults."""
        return cls(
            world_id=world.id,
            variables={v.id: v.default_value for v in world.variables},
        )


def format_value(value: Any) -> str:
    """Stringify a variable value the way prompts and macros show it.

    Booleans are lowercase and integral floats drop the trailing ``.0``.
    """
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)
