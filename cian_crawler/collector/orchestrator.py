"""Two-phase crawl: unique offer ids over a polygon, then full listing records."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, AsyncIterator, List, Optional, Sequence, Union

import httpx
from shapely.geometry.base import BaseGeometry

from ..antibot.captcha import CaptchaSolver, ChallengeSolver
from ..antibot.gate import ChallengeGate
from ..antibot.session import create_client
from ..errors import CrawlError, WorkerPoolError
from ..geo import load_geometry, partition
from ..models import ListingRecord
from ..workerpool import WorkerPool, chunks, unique
from .client import MAX_OFFERS_PER_REQUEST, CianClient

if TYPE_CHECKING:
    from ..config import Settings

LOGGER = logging.getLogger(__name__)

Area = Union[BaseGeometry, str, dict]


def _progress_logger(phase: str):
    def report(current: int, total: int) -> None:
        LOGGER.info("%s progress: %d%%", phase, current * 100 // total)

    return report


class CrawlOrchestrator:
    """Drive cluster and offer queries through bounded worker pools."""

    def __init__(
        self,
        client: CianClient,
        *,
        collect_ids_workers: int = 10,
        collect_offers_workers: int = 5,
    ) -> None:
        if collect_ids_workers <= 0 or collect_offers_workers <= 0:
            raise ValueError("worker counts must be positive")
        self.client = client
        self.collect_ids_workers = collect_ids_workers
        self.collect_offers_workers = collect_offers_workers

    @classmethod
    @asynccontextmanager
    async def from_settings(
        cls,
        settings: "Settings",
        *,
        solver: Optional[ChallengeSolver] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> AsyncIterator["CrawlOrchestrator"]:
        """Open the shared HTTP session and yield an orchestrator bound to it."""
        if solver is None:
            solver = CaptchaSolver(
                settings.captcha.api_key,
                max_wait=settings.captcha.max_wait,
                poll_interval=settings.captcha.poll_interval,
            )
        async with create_client(
            timeout=settings.http.timeout,
            proxy=settings.http.proxy,
            transport=transport,
        ) as http:
            gate = ChallengeGate(http, solver)
            yield cls(
                CianClient(gate, settings.cian.search()),
                collect_ids_workers=settings.cian.max_workers_collect_ids,
                collect_offers_workers=settings.cian.max_workers_collect_offers,
            )

    async def collect_ids(self, area: Area, cell_size_meters: float) -> List[int]:
        """Collect unique offer ids for every cell covering ``area``.

        Ids keep the order in which they were first seen, cells being
        processed in grid order.

        Raises
        ------
        GeometryError
            If ``area`` is malformed (before any request is made)
        CrawlError
            If any cell query failed
        """
        geometry = area if isinstance(area, BaseGeometry) else load_geometry(area)
        cells = partition(geometry, cell_size_meters)
        LOGGER.info("Collecting offer ids from %d cells", len(cells))

        pool = WorkerPool(self.client.get_clusters, self.collect_ids_workers)
        pool.on_progress(_progress_logger("get clusters"))
        try:
            clusters_per_cell = await pool.map(cells)
        except WorkerPoolError as exc:
            raise CrawlError("collect ids", f"can't get clusters: {exc}") from exc

        ids = unique(
            offer_id
            for clusters in clusters_per_cell
            for cluster in clusters
            for offer_id in cluster.cluster_offer_ids
        )
        LOGGER.info("Collected %d unique offer ids", len(ids))
        return ids

    async def collect_records(
        self,
        ids: Sequence[int],
        batch_size: int = MAX_OFFERS_PER_REQUEST,
    ) -> List[ListingRecord]:
        """Fetch listing records for ``ids`` in batches, flattened in batch order."""
        if not 0 < batch_size <= MAX_OFFERS_PER_REQUEST:
            raise ValueError(
                f"batch_size must be between 1 and {MAX_OFFERS_PER_REQUEST}, got {batch_size}"
            )
        batches = chunks(ids, batch_size)
        LOGGER.info("Fetching %d offers in %d batches", len(ids), len(batches))

        pool = WorkerPool(self.client.get_offers, self.collect_offers_workers)
        pool.on_progress(_progress_logger("get offers"))
        try:
            records_per_batch = await pool.map(batches)
        except WorkerPoolError as exc:
            raise CrawlError("collect records", f"can't get offers: {exc}") from exc

        records = [record for batch in records_per_batch for record in batch]
        LOGGER.info("Fetched %d listing records", len(records))
        return records
