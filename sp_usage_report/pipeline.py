"""
Report pipeline: fetch -> batch-enrich -> join -> export.
Any failure aborts the run before the CSV is written.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from .config import EngineConfig
from .graph.client import GraphClient
from .collectors import (
    ServicePrincipalCollector,
    SignInActivityCollector,
    OwnershipCollector,
)
from .reporting import compile_rows, export_csv

logger = logging.getLogger("sp_usage_report.pipeline")


async def run_report(client: GraphClient, config: EngineConfig, run_id: str) -> Path:
    """Run one report against an authenticated client; returns the CSV path."""
    report_cfg = config.report

    # Entities and telemetry are independent listings; first failure cancels the other.
    tasks = [
        asyncio.ensure_future(ServicePrincipalCollector(client, report_cfg).execute()),
        asyncio.ensure_future(SignInActivityCollector(client, report_cfg).execute()),
    ]
    try:
        sp_result, activity_result = await asyncio.gather(*tasks)
    except BaseException:
        for t in tasks:
            t.cancel()
        raise
    entities = sp_result.data["service_principals"]
    sign_ins = activity_result.data["sign_in_activity"]

    ownership = await OwnershipCollector(client, report_cfg, entities).execute()
    enrichment = ownership.data["enrichment"]

    rows = compile_rows(
        entities,
        enrichment,
        sign_ins,
        error_policy=report_cfg.enrichment_error_policy,
    )
    if len(rows) != len(entities):
        raise RuntimeError(f"Compiled {len(rows)} rows for {len(entities)} service principals")

    path = export_csv(
        rows,
        config.output.report_dir,
        run_id,
        sort_mode=report_cfg.sort_mode,
    )
    logger.info(f"Graph stats: {client.get_stats()}")
    return path
