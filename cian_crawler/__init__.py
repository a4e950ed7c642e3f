"""Concurrent crawler for the CIAN map-search API.

The crawl covers an arbitrary polygon with a grid of query cells, collects
unique offer ids through bounded worker pools and then fetches the listing
records in batches, solving the anti-bot challenge on the way.
"""

from .collector.orchestrator import CrawlOrchestrator
from .geo import load_geometry, partition, partition_geojson
from .models import GeoBounds, ListingRecord, SearchQuery
from .workerpool import WorkerPool

__all__ = [
    "CrawlOrchestrator",
    "GeoBounds",
    "ListingRecord",
    "SearchQuery",
    "WorkerPool",
    "load_geometry",
    "partition",
    "partition_geojson",
]
