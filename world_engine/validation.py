"""Non-fatal World Definition checks.

validate_world() reports authoring mistakes (dangling variable references,
empty entries, unused variables) as warnings. It never blocks loading or play.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel

from world_engine.models import Condition, Effect, WorldDefinition

WarningType = Literal[
    "orphaned-var-ref",
    "keywords-on-always-send",
    "empty-content",
    "rule-refs-deleted-var",
    "unused-variable",
]


class WorldWarning(BaseModel):
    type: WarningType
    severity: Literal["warning", "info"]
    message: str
    entity_id: str | None = None
    entity_name: str | None = None


def _component_refs(config: dict) -> list[str]:
    refs = []
    if isinstance(config.get("variableId"), str):
        refs.append(config["variableId"])
    fields = config.get("fields")
    if isinstance(fields, list):
        refs.extend(
            f["variableId"] for f in fields
            if isinstance(f, dict) and isinstance(f.get("variableId"), str)
        )
    return refs


def validate_world(world: WorldDefinition) -> list[WorldWarning]:
    warnings: list[WorldWarning] = []
    known = {v.id for v in world.variables}
    referenced: set[str] = set()

    def check_refs(
        items: list[Condition] | list[Effect],
        kind: WarningType,
        what: str,
        entity_id: str,
        entity_name: str,
        owner: str,
    ) -> None:
        for item in items:
            if item.variable_id in known:
                referenced.add(item.variable_id)
                continue
            warnings.append(WorldWarning(
                type=kind,
                severity="warning",
                message=f'{owner} "{entity_name}" {what} references non-existent '
                        f'variable "{item.variable_id}"',
                entity_id=entity_id,
                entity_name=entity_name,
            ))

    for rule in world.rules:
        for items, what in (
            (rule.conditions, "condition"),
            (rule.effects, "effect"),
            (rule.notification_conditions, "notification condition"),
        ):
            check_refs(items, "rule-refs-deleted-var", what, rule.id, rule.name, "Rule")

    for comp in world.components:
        for ref in _component_refs(comp.config):
            if ref in known:
                referenced.add(ref)
            else:
                warnings.append(WorldWarning(
                    type="orphaned-var-ref",
                    severity="warning",
                    message=f'Component "{comp.name}" references non-existent variable "{ref}"',
                    entity_id=comp.id,
                    entity_name=comp.name,
                ))

    for entry in world.entries:
        if entry.enabled and entry.always_send and entry.keywords:
            warnings.append(WorldWarning(
                type="keywords-on-always-send",
                severity="info",
                message=f'Entry "{entry.name}" has keywords but is always sent, '
                        "so the keywords are ignored",
                entity_id=entry.id,
                entity_name=entry.name,
            ))
        if entry.enabled and not entry.content.strip():
            warnings.append(WorldWarning(
                type="empty-content",
                severity="warning",
                message=f'Entry "{entry.name}" is enabled but has empty content',
                entity_id=entry.id,
                entity_name=entry.name,
            ))
        check_refs(entry.conditions, "orphaned-var-ref", "condition", entry.id, entry.name, "Entry")

    for var in world.variables:
        if var.id not in referenced:
            warnings.append(WorldWarning(
                type="unused-variable",
                severity="info",
                message=f'Variable "{var.name}" is not referenced by any rule, '
                        "component or entry condition",
                entity_id=var.id,
                entity_name=var.name,
            ))

    return warnings
