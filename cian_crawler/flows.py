"""Prefect flow wiring for the scheduled polygon crawl."""
from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Dict, List

from dotenv import load_dotenv
from prefect import flow, get_run_logger, task

from .collector.orchestrator import CrawlOrchestrator
from .config import Settings, load_settings
from .models import ListingRecord
from .statistic import FlatStatistic, flat_statistic
from .upsert import ensure_schema, get_db_connection, save_statistic

BASE_DIR = Path(__file__).resolve().parents[1]
load_dotenv(BASE_DIR / ".env")


async def _crawl(settings: Settings, geojson: str) -> List[ListingRecord]:
    async with CrawlOrchestrator.from_settings(settings) as orchestrator:
        ids = await orchestrator.collect_ids(geojson, settings.cian.max_cell_size_meters)
        return await orchestrator.collect_records(ids)


@task
def crawl_task(config_path: str, geojson_path: str) -> List[ListingRecord]:
    """Collect every listing record inside the polygon."""
    logger = get_run_logger()
    settings = load_settings(config_path)
    geojson = Path(geojson_path).read_text(encoding="utf-8")
    records = asyncio.run(_crawl(settings, geojson))
    logger.info("crawl_task records=%s", len(records))
    return records


@task
def statistic_task(records: List[ListingRecord]) -> List[FlatStatistic]:
    """Aggregate median price per meter."""
    rows = flat_statistic(records)
    get_run_logger().info("statistic_task groups=%s", len(rows))
    return rows


@task
def save_task(config_path: str, rows: List[FlatStatistic]) -> int:
    """Persist the statistic snapshot into PostgreSQL."""
    settings = load_settings(config_path)
    conn = get_db_connection(settings.database.dsn)
    try:
        ensure_schema(conn)
        saved = save_statistic(conn, rows)
    finally:
        conn.close()
    get_run_logger().info("save_task rows=%s", saved)
    return saved


@flow(name="crawl-flow")
def crawl_flow(
    config_path: str = "config.yaml",
    geojson_path: str = "polygon.geojson",
    save: bool = True,
) -> Dict[str, Any]:
    """Crawl → aggregate → save routine."""
    records = crawl_task(config_path, geojson_path)
    rows = statistic_task(records)
    saved = save_task(config_path, rows) if save else 0

    summary = {
        "records": len(records),
        "groups": len(rows),
        "saved_rows": saved,
    }
    get_run_logger().info("crawl_flow summary=%s", json.dumps(summary))
    return summary
