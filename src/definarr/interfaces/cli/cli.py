from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import sys
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Any

import structlog

from definarr.application.factories import IndexerFactory, record_for
from definarr.application.use_cases import SearchIndexersUseCase, TestIndexerUseCase
from definarr.domain.entities.criteria import SearchCriteria
from definarr.domain.exceptions import DefinarrError
from definarr.infrastructure.composition import engine_context
from definarr.infrastructure.config import AppConfig, load_config
from definarr.infrastructure.definitions.loader import DefinitionLoader
from definarr.infrastructure.logging.setup import configure_logging

log = structlog.get_logger(__name__)

SEARCH_TYPES = ("basic", "movie", "tv", "music", "book")


def _parse_args(argv: Iterable[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="definarr")

    # Config wiring flags (no business logic)
    parser.add_argument("--config", default=None, help="Path to YAML config file.")
    parser.add_argument("--dotenv", default=None, help="Path to .env file.")
    parser.add_argument(
        "--definitions",
        default=None,
        help="Override definitions directory.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override log level.",
    )
    parser.add_argument(
        "--log-format",
        default=None,
        choices=["json", "console"],
        help="Override log format.",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    validate = commands.add_parser("validate", help="Load all definitions and report errors.")
    validate.add_argument("--definitions", dest="definitions_sub", default=None)

    search = commands.add_parser("search", help="Search one definition; prints JSON lines.")
    _add_indexer_args(search)
    search.add_argument("--query", "-q", default=None)
    search.add_argument("--type", dest="search_type", choices=SEARCH_TYPES, default="basic")
    search.add_argument("--season", type=int, default=None)
    search.add_argument("--episode", type=int, default=None)
    search.add_argument("--imdb", default=None)
    search.add_argument("--year", type=int, default=None)
    search.add_argument("--category", type=int, action="append", default=[])

    test = commands.add_parser("test", help="Run the connectivity test of one definition.")
    _add_indexer_args(test)

    return parser.parse_args(list(argv) if argv is not None else None)


def _add_indexer_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--definition", "-d", required=True, help="Definition id.")
    parser.add_argument(
        "--setting",
        "-s",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Indexer setting (repeatable).",
    )


def parse_settings(pairs: Sequence[str]) -> dict[str, str]:
    """``["user=a", "pass=b"]`` -> ``{"user": "a", "pass": "b"}``."""
    settings: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"Invalid setting {pair!r}, expected KEY=VALUE")
        settings[key.strip()] = value
    return settings


def build_criteria(args: argparse.Namespace) -> SearchCriteria:
    return SearchCriteria(
        search_type=args.search_type,
        query=args.query,
        categories=tuple(args.category),
        season=args.season,
        episode=args.episode,
        imdb_id=args.imdb,
        year=args.year,
    )


def _release_json(scored: Any) -> str:
    data = dataclasses.asdict(scored.release)
    data["score"] = scored.score
    return json.dumps(data, default=str, ensure_ascii=False)


# ------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------


def run_validate(directory: Path) -> int:
    loader = DefinitionLoader(directory)
    ids = loader.list_ids()
    errors = loader.errors
    for issue in errors:
        sys.stderr.write(f"{issue.source}: {issue.error}\n")
    sys.stdout.write(f"{len(ids)} definitions loaded, {len(errors)} errors\n")
    return 1 if errors else 0


async def run_search(config: AppConfig, args: argparse.Namespace) -> int:
    criteria = build_criteria(args)
    async with engine_context(config) as ctx:
        definition = ctx.definitions.get(args.definition)
        indexer = IndexerFactory(ctx).create(
            record_for(definition, parse_settings(args.setting)), definition
        )
        outcome = await SearchIndexersUseCase(
            [indexer],
            circuit_breaker=ctx.circuit_breaker,
            max_concurrent=config.search.max_concurrent_indexers,
            indexer_timeout=config.search.indexer_timeout_seconds,
        ).execute(criteria)

    for scored in outcome.releases:
        sys.stdout.write(_release_json(scored) + "\n")
    for indexer_id, message in outcome.errors.items():
        sys.stderr.write(f"{indexer_id}: {message}\n")
    for indexer_id, reason in outcome.skipped.items():
        sys.stderr.write(f"{indexer_id}: skipped ({reason})\n")
    return 1 if outcome.errors else 0


async def run_test(config: AppConfig, args: argparse.Namespace) -> int:
    async with engine_context(config) as ctx:
        definition = ctx.definitions.get(args.definition)
        indexer = IndexerFactory(ctx).create(
            record_for(definition, parse_settings(args.setting)), definition
        )
        result = await TestIndexerUseCase(indexer).execute()

    status = "OK" if result.ok else "FAILED"
    sys.stdout.write(f"{definition.id}: {status} - {result.message} ({result.duration_ms} ms)\n")
    return 0 if result.ok else 1


def start(argv: Iterable[str] | None = None) -> int:
    """Process entrypoint: load config exactly once, then dispatch the subcommand."""
    args = _parse_args(argv)

    config_path = Path(args.config) if args.config else None
    dotenv_path = Path(args.dotenv) if args.dotenv else None

    cli_overrides: dict[str, Any] = {}
    definitions_dir = getattr(args, "definitions_sub", None) or args.definitions
    if definitions_dir:
        cli_overrides["definitions_dir"] = definitions_dir
    if args.log_level:
        cli_overrides["log_level"] = args.log_level
    if args.log_format:
        cli_overrides["log_format"] = args.log_format

    config = load_config(
        config_path=config_path,
        dotenv_path=dotenv_path,
        cli_overrides=cli_overrides,
    )
    configure_logging(config)

    try:
        if args.command == "validate":
            return run_validate(config.definitions_dir)
        if args.command == "search":
            return asyncio.run(run_search(config, args))
        return asyncio.run(run_test(config, args))
    except (DefinarrError, ValueError) as e:
        log.error("cli_command_failed", command=args.command, error=str(e))
        sys.stderr.write(f"error: {e}\n")
        return 2


if __name__ == "__main__":
    raise SystemExit(start())
