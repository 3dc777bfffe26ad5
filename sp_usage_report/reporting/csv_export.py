"""
CSV exporter: writes the compiled report rows, sorted by display name.
"""

from __future__ import annotations

import csv
import logging
import os
from pathlib import Path
from typing import Callable

from .rows import ReportRow

logger = logging.getLogger("sp_usage_report.reporting")

REPORT_PREFIX = "ServicePrincipalUsage"

SORT_KEYS: dict[str, Callable[[ReportRow], str]] = {
    "casefold": lambda row: row.DisplayName.casefold(),
    "ordinal": lambda row: row.DisplayName,
}


def sort_rows(rows: list[ReportRow], sort_mode: str = "casefold") -> list[ReportRow]:
    """Stable sort by DisplayName; equal names keep their input order."""
    try:
        key = SORT_KEYS[sort_mode]
    except KeyError:
        raise ValueError(f"Unknown sort mode: {sort_mode}")
    return sorted(rows, key=key)


def export_csv(
    rows: list[ReportRow],
    output_dir: Path,
    run_id: str,
    sort_mode: str = "casefold",
) -> Path:
    """
    Write the report CSV for one run.

    Returns:
        Path of the created CSV file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    report_path = output_dir / f"{REPORT_PREFIX}_{run_id}.csv"
    partial_path = report_path.with_name(report_path.name + ".partial")

    ordered = sort_rows(rows, sort_mode)
    try:
        with open(partial_path, "w", newline="", encoding="utf-8-sig") as fh:
            writer = csv.DictWriter(fh, fieldnames=ReportRow.field_names())
            writer.writeheader()
            for row in ordered:
                writer.writerow(row.to_dict())
        os.replace(partial_path, report_path)
    finally:
        if partial_path.exists():
            partial_path.unlink()

    logger.info(f"Wrote {len(ordered)} rows to {report_path}")
    return report_path
