"""
Base collector class: abstract interface for the report's data collectors.
A collector failure is fatal to the run, so execute() times and logs but re-raises.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Any

from ..graph.client import GraphClient
from ..config import ReportConfig

logger = logging.getLogger("sp_usage_report.collectors")


class CollectorResult:
    """Standardized result from a collector."""

    def __init__(self, collector_name: str):
        self.collector_name = collector_name
        self.data: dict[str, Any] = {}
        self.metadata: dict[str, Any] = {
            "collector": collector_name,
            "started_at": None,
            "completed_at": None,
            "duration_seconds": 0,
            "items_collected": 0,
            "endpoints_queried": 0,
            "sub_request_errors": 0,
            "warnings": [],
        }

    def add_data(self, key: str, value: Any):
        self.data[key] = value
        if isinstance(value, (list, dict)):
            self.metadata["items_collected"] += len(value)
        else:
            self.metadata["items_collected"] += 1

    def add_warning(self, warning: str):
        self.metadata["warnings"].append(warning)
        logger.warning(f"[{self.collector_name}] {warning}")


class BaseCollector(ABC):
    """
    Abstract base class for all collectors.

    Subclasses implement collect() against an already-authenticated GraphClient.
    The base class provides timing, metadata and logging.
    """

    name: str = "base"
    description: str = "Base collector"

    def __init__(self, graph: GraphClient, config: ReportConfig):
        self.graph = graph
        self.config = config

    async def execute(self) -> CollectorResult:
        """Execute the collector with timing; any exception propagates."""
        result = CollectorResult(self.name)
        result.metadata["started_at"] = time.time()
        logger.info(f"[{self.name}] Starting collection...")

        try:
            await self.collect(result)
        except Exception as e:
            logger.error(f"[{self.name}] Collection failed: {type(e).__name__}: {e}")
            raise

        result.metadata["completed_at"] = time.time()
        result.metadata["duration_seconds"] = round(
            result.metadata["completed_at"] - result.metadata["started_at"], 2
        )
        logger.info(
            f"[{self.name}] Completed in {result.metadata['duration_seconds']}s, "
            f"{result.metadata['items_collected']} items"
        )
        return result

    @abstractmethod
    async def collect(self, result: CollectorResult):
        """
        Implement data collection logic.
        Add data to result via result.add_data(key, value).
        """
        raise NotImplementedError

    async def get_all(self, endpoint: str, result: CollectorResult, **kwargs) -> list:
        """Get all pages of an endpoint and count the query."""
        items = await self.graph.get_all_pages(endpoint, **kwargs)
        result.metadata["endpoints_queried"] += 1
        return items
