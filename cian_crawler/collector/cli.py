"""CLI entry point for polygon crawls."""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional, Tuple

import orjson
import psycopg2

from ..config import Settings, load_settings
from ..errors import CrawlerError
from ..models import ListingRecord
from ..statistic import flat_statistic
from ..upsert import ensure_schema, get_db_connection, save_statistic
from .orchestrator import CrawlOrchestrator

LOGGER = logging.getLogger(__name__)


def _write_jsonl(items) -> int:
    count = 0
    for item in items:
        sys.stdout.write(orjson.dumps(item).decode() + "\n")
        count += 1
    return count


async def crawl(
    settings: Settings,
    geojson: str,
    *,
    with_records: bool = True,
) -> Tuple[List[int], List[ListingRecord]]:
    """Run the id phase and, optionally, the record phase on one session."""
    async with CrawlOrchestrator.from_settings(settings) as orchestrator:
        ids = await orchestrator.collect_ids(geojson, settings.cian.max_cell_size_meters)
        records: List[ListingRecord] = []
        if with_records:
            records = await orchestrator.collect_records(ids)
    return ids, records


def command_ids(settings: Settings, geojson: str) -> None:
    """Collect offer ids and emit them as JSON lines."""
    ids, _ = asyncio.run(crawl(settings, geojson, with_records=False))
    _write_jsonl(ids)
    LOGGER.info("pulled_ids=%s", len(ids))


def command_pull(settings: Settings, geojson: str) -> None:
    """Collect listing records and emit them as JSON lines."""
    _, records = asyncio.run(crawl(settings, geojson))
    count = _write_jsonl(record.model_dump(mode="json", by_alias=True) for record in records)
    LOGGER.info("pulled_offers=%s", count)


def command_stats(settings: Settings, geojson: str, to_db: bool = False) -> None:
    """Collect records, print the median statistic and optionally save it."""
    _, records = asyncio.run(crawl(settings, geojson))
    rows = flat_statistic(records)
    _write_jsonl(row.to_dict() for row in rows)

    if to_db:
        conn = get_db_connection(settings.database.dsn)
        try:
            ensure_schema(conn)
            saved = save_statistic(conn, rows)
        finally:
            conn.close()
        LOGGER.info("statistic collected and saved (%d rows)", saved)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="CIAN polygon crawler CLI")
    sub = parser.add_subparsers(dest="cmd")

    def add_common_arguments(subparser: argparse.ArgumentParser) -> None:
        subparser.add_argument("-c", "--config", default="config.yaml", help="Config file path")
        subparser.add_argument(
            "-f", "--geojson", default="polygon.geojson", help="GeoJSON file with the search area"
        )
        subparser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    ids_parser = sub.add_parser("ids", help="Collect unique offer ids and print JSONL")
    add_common_arguments(ids_parser)

    pull_parser = sub.add_parser("pull", help="Collect listing records and print JSONL")
    add_common_arguments(pull_parser)

    stats_parser = sub.add_parser("stats", help="Collect records and compute median price per meter")
    add_common_arguments(stats_parser)
    stats_parser.add_argument(
        "--to-db",
        action="store_true",
        help="Save the statistic into PostgreSQL (PG_DSN or database.dsn)",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.cmd is None:
        parser.print_help()
        return 2

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        settings = load_settings(args.config)
        geojson = Path(args.geojson).read_text(encoding="utf-8")
        if args.cmd == "ids":
            command_ids(settings, geojson)
        elif args.cmd == "pull":
            command_pull(settings, geojson)
        elif args.cmd == "stats":
            command_stats(settings, geojson, to_db=args.to_db)
    except (CrawlerError, OSError, psycopg2.Error) as exc:
        LOGGER.error("%s failed: %s", args.cmd, exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
