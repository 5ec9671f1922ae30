"""Maintenance commands for the API response cache.

Usage:
    python -m apicache.cli create-tables openai
    python -m apicache.cli sweep [--client openai]
    python -m apicache.cli stats openai
    python -m apicache.cli compress openai --batch-size 500 [--overwrite]
    python -m apicache.cli decompress openai [--copy-processing-state]
    python -m apicache.cli validate openai [--direction decompress]

Every command accepts ``--config`` (YAML file) and ``--database-url``.
"""

import argparse
import asyncio
import json
import sys
from typing import Any, Optional

import structlog

from apicache.cache.compression import CompressionService
from apicache.cache.repository import CacheRepository
from apicache.config import ApiCacheConfig, load_config
from apicache.conversion import (
    CompressionConverter,
    ConversionOptions,
    DecompressionConverter,
)
from apicache.db.session import close_db, init_db
from apicache.exceptions import ApiCacheError
from apicache.utils.logging import configure_logging

logger = structlog.get_logger()


def _print(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _build_repository(config: ApiCacheConfig, database_url: Optional[str]) -> CacheRepository:
    engine = init_db(database_url or config.database_url)
    return CacheRepository(engine, CompressionService(config), config)


async def create_tables(repository: CacheRepository, client: str) -> dict[str, Any]:
    await repository.create_tables(client)
    return {
        "client": client,
        "tables": [
            repository.get_table_name(client, compressed=False),
            repository.get_table_name(client, compressed=True),
        ],
    }


async def sweep(repository: CacheRepository, client: Optional[str]) -> dict[str, int]:
    return await repository.delete_expired(client)


async def stats(repository: CacheRepository, client: str) -> dict[str, Any]:
    return {
        "client": client,
        "table": repository.get_table_name(client),
        "total": await repository.count_total_responses(client),
        "active": await repository.count_active_responses(client),
        "expired": await repository.count_expired_responses(client),
    }


async def convert(
    repository: CacheRepository,
    client: str,
    direction: str,
    options: ConversionOptions,
) -> dict[str, int]:
    converter_class = CompressionConverter if direction == "compress" else DecompressionConverter
    converter = converter_class(client, repository, options=options)
    result = await converter.convert_all()
    return result.to_dict()


async def validate(
    repository: CacheRepository,
    client: str,
    direction: str,
    options: ConversionOptions,
) -> dict[str, int]:
    converter_class = CompressionConverter if direction == "compress" else DecompressionConverter
    converter = converter_class(client, repository, options=options)
    result = await converter.validate_all()
    return result.to_dict()


async def run(args: argparse.Namespace) -> Any:
    config = load_config(args.config)
    repository = _build_repository(config, args.database_url)

    options = ConversionOptions(
        batch_size=getattr(args, "batch_size", 100),
        overwrite=getattr(args, "overwrite", False),
        copy_processing_state=getattr(args, "copy_processing_state", False),
    )

    try:
        if args.command == "create-tables":
            return await create_tables(repository, args.client)
        if args.command == "sweep":
            return await sweep(repository, args.client)
        if args.command == "stats":
            return await stats(repository, args.client)
        if args.command in ("compress", "decompress"):
            return await convert(repository, args.client, args.command, options)
        if args.command == "validate":
            return await validate(repository, args.client, args.direction, options)
        raise ValueError(f"Unknown command: {args.command}")
    finally:
        await close_db()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="apicache",
        description="Maintain API response cache tables",
    )
    parser.add_argument("--config", "-c", help="Path to api-cache.yaml")
    parser.add_argument("--database-url", help="Override the configured database URL")
    parser.add_argument("--log-level", default="INFO", help="Log level")

    subparsers = parser.add_subparsers(dest="command", required=True)

    create = subparsers.add_parser("create-tables", help="Create both cache tables for a client")
    create.add_argument("client")

    sweep_parser = subparsers.add_parser("sweep", help="Delete expired responses")
    sweep_parser.add_argument("--client", help="Only sweep this client (default: all configured clients)")

    stats_parser = subparsers.add_parser("stats", help="Show response counts for a client")
    stats_parser.add_argument("client")

    for name, help_text in (
        ("compress", "Copy rows from the uncompressed table into the compressed table"),
        ("decompress", "Copy rows from the compressed table into the uncompressed table"),
        ("validate", "Check converted rows against their source rows"),
    ):
        sub = subparsers.add_parser(name, help=help_text)
        sub.add_argument("client")
        sub.add_argument("--batch-size", type=int, default=100, help="Rows per batch")
        sub.add_argument(
            "--copy-processing-state",
            action="store_true",
            help="Keep processed_at/processed_status instead of resetting them",
        )
        if name == "validate":
            sub.add_argument(
                "--direction",
                choices=("compress", "decompress"),
                default="compress",
                help="Conversion direction to validate",
            )
        else:
            sub.add_argument(
                "--overwrite",
                action="store_true",
                help="Replace rows whose key already exists in the target table",
            )

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(args.log_level)

    try:
        result = asyncio.run(run(args))
    except ApiCacheError as exc:
        logger.error("command_failed", command=args.command, error=str(exc))
        return 1

    _print(result)
    return 0


if __name__ == "__main__":
    sys.exit(main())
