"""World Engine command line.

    python -m world_engine migrate world.json -o world.v5.json
    python -m world_engine validate world.json
    python -m world_engine import-card card.json -o world.json
    python -m world_engine preview world.json --message "I enter the tavern"
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from world_engine.components import resolve_components
from world_engine.config import ConfigError, EngineConfig, load_config
from world_engine.history import build_chat_messages
from world_engine.importers import import_sillytavern_card
from world_engine.lorebook import format_lorebook, match_lorebook
from world_engine.migrations import WorldLoadError, load_world, migrate_world
from world_engine.models import GameState
from world_engine.prompts import PromptError, assemble_prompt
from world_engine.validation import validate_world

logger = logging.getLogger("world_engine")


def _read_json(path: Path) -> dict:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise WorldLoadError(f"Cannot read {path}: {e}") from e
    if not isinstance(data, dict):
        raise WorldLoadError(f"{path} must contain a JSON object")
    return data


def _write_json(data: dict, out: Path | None) -> None:
    text = json.dumps(data, indent=2, ensure_ascii=False)
    if out is None:
        print(text)
    else:
        out.write_text(text + "\n", encoding="utf-8")
        print(f"Wrote {out}")


def cmd_migrate(args: argparse.Namespace, config: EngineConfig) -> int:
    _write_json(migrate_world(_read_json(args.path)), args.output)
    return 0


def cmd_validate(args: argparse.Namespace, config: EngineConfig) -> int:
    world = load_world(args.path)
    warnings = validate_world(world)
    for w in warnings:
        print(f"{w.severity.upper():8} {w.type:26} {w.message}")
    print(f"{world.name or world.id}: {len(warnings)} warning(s)")
    return 0


def cmd_import_card(args: argparse.Namespace, config: EngineConfig) -> int:
    _write_json(import_sillytavern_card(_read_json(args.path)), args.output)
    return 0


def cmd_preview(args: argparse.Namespace, config: EngineConfig) -> int:
    world = load_world(args.path)
    state = GameState.initial(world)
    settings = world.settings
    structured = True if args.structured else config.structured_output(settings)

    match = match_lorebook(
        world.entries,
        [args.message] if args.message else [],
        state,
        token_budget=config.lorebook_budget(settings),
        recursion_depth=config.lorebook_recursion(settings),
    )
    assembly = assemble_prompt(world, state, match.triggered, structured)
    messages = build_chat_messages(
        assembly, [], args.message, max_tokens=config.history_budget(settings)
    )

    if match.triggered:
        print(f"── Triggered ({match.triggered_tokens} tokens) ──")
        print(format_lorebook(match.triggered))
        print()
    if assembly.greeting:
        print("── Greeting ──")
        print(assembly.greeting)
        print()
    panel = resolve_components(world.components, state, world.variables)
    if panel:
        print("── Components ──")
        for component in panel:
            print(component.model_dump_json(by_alias=True, exclude_none=True))
        print()
    for msg in messages:
        print(f"── {msg.role} ──")
        print(msg.content)
        print()
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="world_engine", description="World Engine tools")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("migrate", help="Upgrade a world definition to the current schema")
    p.add_argument("path", type=Path)
    p.add_argument("-o", "--output", type=Path, default=None,
                   help="Output file (default: stdout)")
    p.set_defaults(func=cmd_migrate)

    p = sub.add_parser("validate", help="Report authoring warnings for a world")
    p.add_argument("path", type=Path)
    p.set_defaults(func=cmd_validate)

    p = sub.add_parser("import-card", help="Convert a SillyTavern card into a world")
    p.add_argument("path", type=Path)
    p.add_argument("-o", "--output", type=Path, default=None,
                   help="Output file (default: stdout)")
    p.set_defaults(func=cmd_import_card)

    p = sub.add_parser("preview", help="Print the prompt a world produces for one message")
    p.add_argument("path", type=Path)
    p.add_argument("--message", default=None, help="Player message to match against")
    p.add_argument("--structured", action="store_true",
                   help="Use structured JSON output instructions")
    p.set_defaults(func=cmd_preview)

    args = parser.parse_args(argv)
    try:
        config = load_config()
    except ConfigError as e:
        parser.error(str(e))
    logging.basicConfig(
        level=config.log_level,
        format="%(levelname)s %(name)s: %(message)s",
    )

    try:
        return args.func(args, config)
    except (WorldLoadError, PromptError) as e:
        logger.error("%s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
