"""Reporting package: row compilation and CSV output."""

from .rows import ReportRow, compile_row, compile_rows, index_sign_ins, LOOKUP_FAILED
from .csv_export import export_csv, sort_rows

__all__ = [
    "ReportRow",
    "compile_row",
    "compile_rows",
    "index_sign_ins",
    "LOOKUP_FAILED",
    "export_csv",
    "sort_rows",
]
