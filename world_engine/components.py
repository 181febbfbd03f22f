"""Game panel components resolved against live state.

resolve_components() turns a world's component definitions plus the current
GameState into render-ready descriptors: visible components only, sorted by
order, each bound variable already read, formatted and bounded. Drawing them
is the client's job; nothing here produces markup.

    stat-bar        numeric variable as a 0-100 percentage of [min, max]
    text-display    variable value through a "{{value}}" format string
    choice-list     current value of a string variable
    image-panel     image URL held in a variable, with a fallback
    inventory-grid  JSON array string variable, cut to maxSlots
    toggle-switch   boolean variable with on/off labels
    form            field list passed through for the client to render

A component bound to a variable the world does not declare, or of a type
not listed above, resolves to an error descriptor instead.
"""

from __future__ import annotations

import json
import math
from collections.abc import Iterable
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from world_engine.models import Component, GameState, Value, Variable, format_value

DEFAULT_STAT_MAX = 100
DEFAULT_MAX_CHOICES = 4
DEFAULT_COLUMNS = 4
DEFAULT_MAX_SLOTS = 16


class _Resolved(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    name: str
    order: int


class ResolvedStatBar(_Resolved):
    type: Literal["stat-bar"] = "stat-bar"
    value: float
    min: float
    max: float
    percentage: float
    color: str | None = None
    show_value: bool = True
    show_label: bool = True


class ResolvedTextDisplay(_Resolved):
    type: Literal["text-display"] = "text-display"
    text: str
    raw_value: Value
    font_size: Literal["sm", "md", "lg"] = "md"
    icon: str | None = None


class ResolvedChoiceList(_Resolved):
    type: Literal["choice-list"] = "choice-list"
    variable_id: str
    current_value: str
    max_choices: int = DEFAULT_MAX_CHOICES
    style: Literal["buttons", "list"] = "buttons"


class ResolvedImagePanel(_Resolved):
    type: Literal["image-panel"] = "image-panel"
    image_url: str
    aspect_ratio: Literal["square", "portrait", "landscape", "wide"] = "landscape"
    fallback_url: str | None = None


class ResolvedInventoryGrid(_Resolved):
    type: Literal["inventory-grid"] = "inventory-grid"
    items: list[str] = Field(default_factory=list)
    columns: int = DEFAULT_COLUMNS
    max_slots: int = DEFAULT_MAX_SLOTS


class ResolvedToggleSwitch(_Resolved):
    type: Literal["toggle-switch"] = "toggle-switch"
    value: bool
    on_label: str = "On"
    off_label: str = "Off"
    color: str | None = None


class ResolvedForm(_Resolved):
    type: Literal["form"] = "form"
    fields: list[dict[str, Any]] = Field(default_factory=list)
    submit_label: str = "Submit"
    message_template: str | None = None
    hide_after_submit: bool = True


class ResolvedError(_Resolved):
    type: Literal["error"] = "error"
    message: str


ResolvedComponent = (
    ResolvedStatBar
    | ResolvedTextDisplay
    | ResolvedChoiceList
    | ResolvedImagePanel
    | ResolvedInventoryGrid
    | ResolvedToggleSwitch
    | ResolvedForm
    | ResolvedError
)


# ── Config access ────────────────────────────────────────


def _opt(config: dict[str, Any], key: str, default: Any, kind: type | tuple[type, ...]) -> Any:
    """config[key] when it has the expected type, else default."""
    value = config.get(key)
    if isinstance(value, bool) and kind is not bool:
        return default
    return value if isinstance(value, kind) else default


def _choice(config: dict[str, Any], key: str, allowed: tuple[str, ...]) -> str:
    value = config.get(key)
    return value if value in allowed else allowed[0]


def _positive_int(config: dict[str, Any], key: str, default: int) -> int:
    value = _opt(config, key, default, int)
    return value if value > 0 else default


def _as_number(value: Any) -> float:
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return 0.0
        return number if math.isfinite(number) else 0.0
    if isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return 0.0
        return number if math.isfinite(number) else 0.0
    return 0.0


# ── Per-type resolvers ───────────────────────────────────


def _stat_bar(c: Component, variable: Variable, state: GameState) -> ResolvedStatBar:
    config = c.config
    value = _as_number(state.variables.get(variable.id))
    high = variable.max if variable.max is not None else DEFAULT_STAT_MAX
    secondary = _opt(config, "secondaryVariableId", None, str)
    if secondary is not None:
        dynamic = state.variables.get(secondary)
        if isinstance(dynamic, (int, float)) and not isinstance(dynamic, bool):
            high = dynamic
    low = variable.min if variable.min is not None else 0
    span = high - low
    percentage = max(0.0, min(100.0, (value - low) / span * 100)) if span > 0 else 0.0
    return ResolvedStatBar(
        id=c.id, name=c.name, order=c.order,
        value=value, min=low, max=high, percentage=percentage,
        color=_opt(config, "color", None, str),
        show_value=_opt(config, "showValue", True, bool),
        show_label=_opt(config, "showLabel", True, bool),
    )


def _text_display(c: Component, variable: Variable, state: GameState) -> ResolvedTextDisplay:
    config = c.config
    raw = state.variables.get(variable.id, variable.default_value)
    fmt = _opt(config, "format", "", str)
    text = fmt.replace("{{value}}", format_value(raw)) if fmt else format_value(raw)
    return ResolvedTextDisplay(
        id=c.id, name=c.name, order=c.order,
        text=text, raw_value=raw,
        font_size=_choice(config, "fontSize", ("md", "sm", "lg")),
        icon=_opt(config, "icon", None, str),
    )


def _choice_list(c: Component, variable: Variable, state: GameState) -> ResolvedChoiceList:
    current = state.variables.get(variable.id)
    return ResolvedChoiceList(
        id=c.id, name=c.name, order=c.order,
        variable_id=variable.id,
        current_value="" if current is None else format_value(current),
        max_choices=_positive_int(c.config, "maxChoices", DEFAULT_MAX_CHOICES),
        style=_choice(c.config, "style", ("buttons", "list")),
    )


def _image_panel(c: Component, variable: Variable, state: GameState) -> ResolvedImagePanel:
    fallback = _opt(c.config, "fallbackUrl", None, str)
    current = state.variables.get(variable.id)
    url = format_value(current) if current is not None else (fallback or "")
    return ResolvedImagePanel(
        id=c.id, name=c.name, order=c.order,
        image_url=url,
        aspect_ratio=_choice(c.config, "aspectRatio", ("landscape", "square", "portrait", "wide")),
        fallback_url=fallback,
    )


def _inventory_items(raw: Value | None) -> list[str]:
    if raw is None:
        return []
    try:
        parsed = json.loads(format_value(raw))
    except json.JSONDecodeError:
        return []
    if not isinstance(parsed, list):
        return []
    return [item if isinstance(item, str) else format_value(item) for item in parsed]


def _inventory_grid(c: Component, variable: Variable, state: GameState) -> ResolvedInventoryGrid:
    max_slots = _positive_int(c.config, "maxSlots", DEFAULT_MAX_SLOTS)
    items = _inventory_items(state.variables.get(variable.id))
    return ResolvedInventoryGrid(
        id=c.id, name=c.name, order=c.order,
        items=items[:max_slots],
        columns=_positive_int(c.config, "columns", DEFAULT_COLUMNS),
        max_slots=max_slots,
    )


def _toggle_switch(c: Component, variable: Variable, state: GameState) -> ResolvedToggleSwitch:
    config = c.config
    return ResolvedToggleSwitch(
        id=c.id, name=c.name, order=c.order,
        value=bool(state.variables.get(variable.id, False)),
        on_label=_opt(config, "onLabel", "On", str),
        off_label=_opt(config, "offLabel", "Off", str),
        color=_opt(config, "color", None, str),
    )


def _form(c: Component) -> ResolvedForm:
    config = c.config
    fields = config.get("fields")
    return ResolvedForm(
        id=c.id, name=c.name, order=c.order,
        fields=[f for f in fields if isinstance(f, dict)] if isinstance(fields, list) else [],
        submit_label=_opt(config, "submitLabel", "Submit", str),
        message_template=_opt(config, "messageTemplate", None, str),
        hide_after_submit=_opt(config, "hideAfterSubmit", True, bool),
    )


_BOUND = {
    "stat-bar": _stat_bar,
    "text-display": _text_display,
    "choice-list": _choice_list,
    "image-panel": _image_panel,
    "inventory-grid": _inventory_grid,
    "toggle-switch": _toggle_switch,
}


def _error(c: Component, message: str) -> ResolvedError:
    return ResolvedError(id=c.id, name=c.name, order=c.order, message=message)


def resolve_component(
    component: Component,
    state: GameState,
    variables: dict[str, Variable],
) -> ResolvedComponent:
    if component.type == "form":
        return _form(component)
    resolver = _BOUND.get(component.type)
    if resolver is None:
        return _error(component, f'Unknown component type "{component.type}"')
    variable_id = component.config.get("variableId")
    variable = variables.get(variable_id) if isinstance(variable_id, str) else None
    if variable is None:
        return _error(component, f'Variable "{variable_id}" not found')
    return resolver(component, variable, state)


def resolve_components(
    components: Iterable[Component],
    state: GameState,
    variables: Iterable[Variable],
) -> list[ResolvedComponent]:
    """Visible components in display order, resolved against state."""
    by_id = {v.id: v for v in variables}
    visible = sorted((c for c in components if c.visible), key=lambda c: c.order)
    return [resolve_component(c, state, by_id) for c in visible]
