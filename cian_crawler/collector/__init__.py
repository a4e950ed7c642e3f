"""CIAN map-search collector: API client and crawl orchestration."""

from .client import CianClient
from .orchestrator import CrawlOrchestrator

__all__ = ["CianClient", "CrawlOrchestrator"]
