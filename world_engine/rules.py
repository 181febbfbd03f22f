"""Rules evaluation. Pure: rules and state are read, never written.

Two modes:
  evaluate_rules   condition-triggered rules; every passing rule contributes
  evaluate_action  rules bound to a player action id, each with its own
                   notification policy for telling the model what happened
"""

import logging
import re

from pydantic import BaseModel, Field

from world_engine.conditions import check_conditions
from world_engine.models import AudioEffect, Effect, GameState, Rule, Variable, format_value
from world_engine.state import project_effects

logger = logging.getLogger(__name__)

_PLACEHOLDER_RE = re.compile(r"\{([^{}]+)\}")


class RuleOutcome(BaseModel):
    effects: list[Effect] = Field(default_factory=list)
    audio_effects: list[AudioEffect] = Field(default_factory=list)
    fired: list[str] = Field(default_factory=list)


class ActionOutcome(RuleOutcome):
    notifications: list[str] = Field(default_factory=list)


def _by_priority(rules: list[Rule]) -> list[Rule]:
    return sorted(rules, key=lambda r: -r.priority)


def evaluate_rules(state: GameState, rules: list[Rule]) -> RuleOutcome:
    """Collect effects of every condition rule whose conditions pass."""
    outcome = RuleOutcome()
    for rule in _by_priority([r for r in rules if r.trigger == "condition"]):
        if not check_conditions(state.variables, rule.conditions, rule.condition_logic):
            continue
        outcome.effects.extend(rule.effects)
        outcome.audio_effects.extend(rule.audio_effects)
        outcome.fired.append(rule.id)
    return outcome


def interpolate(template: str, values: dict, variables: list[Variable]) -> str:
    """Fill {variableId} or {Variable Name} placeholders; unknown ones stay literal."""
    names = {v.name.lower(): v.id for v in variables}

    def replace(match: re.Match) -> str:
        key = match.group(1).strip()
        if key in values:
            return format_value(values[key])
        var_id = names.get(key.lower())
        if var_id is not None and var_id in values:
            return format_value(values[var_id])
        return match.group(0)

    return _PLACEHOLDER_RE.sub(replace, template)


def evaluate_action(
    action_id: str,
    state: GameState,
    rules: list[Rule],
    variables: list[Variable],
) -> ActionOutcome:
    """Evaluate the rules bound to action_id and decide which notifications to emit.

    Notifications are rendered against the state as it would look after the
    effects accumulated so far, this rule's included, are applied.
    """
    outcome = ActionOutcome()
    matching = [r for r in rules if r.trigger == "action" and r.action_id == action_id]

    for rule in _by_priority(matching):
        if not check_conditions(state.variables, rule.conditions, rule.condition_logic):
            continue
        outcome.effects.extend(rule.effects)
        outcome.audio_effects.extend(rule.audio_effects)
        outcome.fired.append(rule.id)

        if rule.notification == "silent":
            continue

        projected = project_effects(state.variables, variables, outcome.effects)
        if rule.notification == "conditional" and not check_conditions(
            projected, rule.notification_conditions, "all"
        ):
            logger.debug("Rule %s notification suppressed", rule.id)
            continue

        template = rule.notification_template or rule.description or rule.name
        if template:
            outcome.notifications.append(interpolate(template, projected, variables))

    return outcome
