#!/usr/bin/env python3
"""
Command line entry points for the D&D Beyond import pipeline.

Usage:
    dnd-archive preview character.json
    dnd-archive insert character.json --user-id 5f0c...
    dnd-archive insert https://www.dndbeyond.com/characters/12345678
    dnd-archive auto-import character.json
    dnd-archive import-spells https://example.com/spells.json

``insert`` without ``--user-id`` uses the signed-in session from
``DND_ARCHIVE_ACCESS_TOKEN``. It is best-effort: a failed child table is
logged and the remaining tables are still written, and the exit status is
non-zero only when the character row itself could not be saved.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from .auto_import import auto_import_references
from .config import ArchiveConfig, load_config
from .importers.base import CharacterImportError
from .importers.dndbeyond.fetcher import fetch_character, read_character_file
from .importers.dndbeyond.transformer import transform
from .models import TransformedCharacter
from .persistence import SaveError, resolve_user_id, save_character
from .review import build_import_report
from .spell_json import SpellImportError, import_spells_from_url
from .store import build_auth, build_store
from .store.base import AuthError, StoreError
from .wiki.fetcher import WikiFetcher

logger = logging.getLogger("dnd-archive")


async def load_character(source: str, config: ArchiveConfig) -> TransformedCharacter:
    """Read and transform an export from a file path, character URL or id.

    Raises:
        CharacterImportError: If the export cannot be read or fetched.
    """
    if Path(source).exists():
        export = read_character_file(source)
    else:
        export = await fetch_character(source, timeout=config.http_timeout)
    return transform(export)


async def cmd_preview(args: argparse.Namespace, config: ArchiveConfig) -> int:
    character = await load_character(args.source, config)
    print(build_import_report(character).format())
    return 0


async def cmd_insert(args: argparse.Namespace, config: ArchiveConfig) -> int:
    character = await load_character(args.source, config)
    for warning in character.warnings:
        logger.warning(f"⚠️ {warning}")

    store = build_store(config)
    user_id = await resolve_user_id(build_auth(config, args.user_id))

    try:
        report = await save_character(store, character, user_id, best_effort=not args.stop_on_error)
    except SaveError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1

    print(report.format())
    if not report.complete:
        print(
            f"\n⚠️ Some records were not saved. Character id: {report.character_id}",
            file=sys.stderr,
        )
    return 0


async def cmd_auto_import(args: argparse.Namespace, config: ArchiveConfig) -> int:
    character = await load_character(args.source, config)
    store = build_store(config)
    results = await auto_import_references(store, WikiFetcher(config), character)

    failures = 0
    for kind, result in results.items():
        print(f"{kind.value}: {len(result.imported)} imported, {len(result.failed)} failed")
        for name in result.imported:
            print(f"  ✅ {name}")
        for failure in result.failed:
            print(f"  ❌ {failure['name']}: {failure['error']}")
        failures += len(result.failed)
    return 1 if failures else 0


async def cmd_import_spells(args: argparse.Namespace, config: ArchiveConfig) -> int:
    store = build_store(config)
    result = await import_spells_from_url(store, args.url, timeout=config.http_timeout)
    print(f"✅ Imported {len(result.imported)} spells")
    for skipped in result.skipped:
        print(f"  ⚠️ Skipped {skipped['name']}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser.

    Returns:
        Parser with one subcommand per entry point
    """
    parser = argparse.ArgumentParser(
        prog="dnd-archive",
        description="Import D&D Beyond characters and their reference data",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Show what would be imported
  dnd-archive preview character.json

  # Save a character for an explicit user
  dnd-archive insert character.json --user-id 5f0c2b1e

  # Scrape missing spells, items and feats without review
  dnd-archive auto-import character.json
        """,
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Path to a .env file (default: search the working directory)"
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override DND_ARCHIVE_LOG_LEVEL"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    preview = subparsers.add_parser("preview", help="Transform an export and print a summary")
    preview.add_argument("source", help="Export JSON file, character URL or character id")
    preview.set_defaults(handler=cmd_preview)

    insert = subparsers.add_parser("insert", help="Save a character and all its records")
    insert.add_argument("source", help="Export JSON file, character URL or character id")
    insert.add_argument(
        "--user-id",
        default=None,
        help="Owner of the character (default: the signed-in session user)"
    )
    insert.add_argument(
        "--stop-on-error",
        action="store_true",
        help="Stop at the first failed child table instead of continuing"
    )
    insert.set_defaults(handler=cmd_insert)

    auto_import = subparsers.add_parser(
        "auto-import", help="Scrape and save a character's missing spells, items and feats"
    )
    auto_import.add_argument("source", help="Export JSON file, character URL or character id")
    auto_import.set_defaults(handler=cmd_auto_import)

    spells = subparsers.add_parser("import-spells", help="Import spells from a JSON document URL")
    spells.add_argument("url", help="URL of a spell JSON document")
    spells.set_defaults(handler=cmd_import_spells)

    return parser


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the dnd-archive command."""
    args = build_parser().parse_args(argv)

    config = load_config(args.env_file)
    if args.log_level:
        config = config.model_copy(update={"log_level": args.log_level.upper()})
    logging.basicConfig(level=config.log_level)

    try:
        exit_code = asyncio.run(args.handler(args, config))
    except (CharacterImportError, SpellImportError) as e:
        print(f"❌ {e}", file=sys.stderr)
        exit_code = 1
    except AuthError as e:
        print(f"❌ {e}. Pass --user-id or set DND_ARCHIVE_ACCESS_TOKEN.", file=sys.stderr)
        exit_code = 1
    except StoreError as e:
        print(f"❌ Store error: {e}", file=sys.stderr)
        exit_code = 1

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
