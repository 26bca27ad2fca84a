"""Readers for bulk import files (CSV and XLSX)."""

from .tabular import SUPPORTED_EXTENSIONS, TEMPLATE_COLUMNS, read_csv, read_rows, read_xlsx, write_template

__all__ = [
    "SUPPORTED_EXTENSIONS",
    "TEMPLATE_COLUMNS",
    "read_csv",
    "read_rows",
    "read_xlsx",
    "write_template",
]
