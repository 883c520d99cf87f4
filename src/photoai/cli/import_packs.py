"""CLI command for loading curated prompt packs.

The input file is a JSON list of packs:

    [
      {
        "name": "Headshots",
        "description": "Studio portraits",
        "prompts": ["a studio headshot of {name}", "..."]
      }
    ]

Packs whose name already exists are skipped, so the command can be re-run
against the same file.

Usage:
    python -m photoai.cli.import_packs packs.json [--dry-run]
"""

import asyncio
import json
import sys
from argparse import ArgumentParser, Namespace
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog

from photoai.core import timezone  # noqa: F401
from photoai.core.config import Settings, configure_logging
from photoai.core.database import setup_db_session
from photoai.models.pack import Pack
from photoai.services.exceptions import ValidationError
from photoai.services.submitter import validate_prompt
from photoai.uow import create_uow_factory

logger = structlog.get_logger()


@dataclass
class PackDefinition:
    name: str
    prompts: list[str]
    description: str | None = None


@dataclass
class ImportResult:
    created: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


def load_pack_definitions(data: Any) -> list[PackDefinition]:
    """Validate decoded JSON into pack definitions.

    Raises:
        ValidationError: On a malformed file (nothing is imported)
    """
    if not isinstance(data, list):
        raise ValidationError("Pack file must contain a JSON list")

    definitions = []
    for index, entry in enumerate(data):
        if not isinstance(entry, dict):
            raise ValidationError(f"Pack #{index} must be an object")
        name = entry.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ValidationError(f"Pack #{index} is missing a name")
        prompts = entry.get("prompts")
        if not isinstance(prompts, list) or not prompts:
            raise ValidationError(f"Pack {name!r} must have at least one prompt")
        try:
            cleaned = [validate_prompt(prompt) for prompt in prompts]
        except ValidationError as e:
            raise ValidationError(f"Pack {name!r}: {e}") from e
        definitions.append(
            PackDefinition(name=name.strip(), prompts=cleaned, description=entry.get("description"))
        )
    return definitions


async def import_packs(uow_factory, definitions: list[PackDefinition], dry_run: bool = False) -> ImportResult:
    """Create every pack that does not exist yet, in one transaction."""
    result = ImportResult()
    async with await uow_factory() as uow:
        for definition in definitions:
            if await uow.packs.get_by_name(definition.name) is not None:
                result.skipped.append(definition.name)
                continue
            if not dry_run:
                await uow.packs.add(
                    Pack(name=definition.name, description=definition.description),
                    definition.prompts,
                )
            result.created.append(definition.name)
            logger.info("packs.imported", name=definition.name, prompts=len(definition.prompts))
    return result


def parse_args(argv: list[str] | None = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(description="Import prompt packs from a JSON file")

    parser.add_argument("path", type=Path, help="JSON file with pack definitions")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate and report without database writes",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    return parser.parse_args(argv)


async def async_main(argv: list[str] | None = None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (success), 1 (error)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]
    if args.verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings)

    try:
        definitions = load_pack_definitions(json.loads(args.path.read_text()))
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        logger.error("cli.invalid_pack_file", path=str(args.path), error=str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)

    try:
        result = await import_packs(uow_factory, definitions, dry_run=args.dry_run)
    except Exception as e:
        logger.error("cli.unexpected_error", error=str(e), error_type=type(e).__name__)
        print(f"\nUnexpected error: {e}", file=sys.stderr)
        return 1

    print(f"Packs created: {len(result.created)}")
    print(f"Packs skipped (already exist): {len(result.skipped)}")
    if args.dry_run:
        print("[DRY RUN] No changes were persisted to database")
    return 0


def main() -> None:
    """Synchronous entry point for CLI."""
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()
