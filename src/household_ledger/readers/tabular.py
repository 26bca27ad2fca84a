"""
Raw-row readers for bulk import files.

Turns an uploaded CSV or XLSX payload into a list of {column: value} rows.
Values are passed through untouched (XLSX dates stay datetime objects,
numbers stay numbers); interpretation belongs to the normalizer.

A file that cannot be read at all raises SourceParseError, which fails the
whole import job.
"""

import csv
import io
import logging
import zipfile
from pathlib import Path
from typing import Any

from openpyxl import Workbook, load_workbook
from openpyxl.styles import Font
from openpyxl.utils.exceptions import InvalidFileException

from ..errors import SourceParseError
from ..schemas.records import RecordKind

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = (".csv", ".xlsx", ".xlsm")

# Column headers of the downloadable import templates
TEMPLATE_COLUMNS: dict[RecordKind, list[str]] = {
    RecordKind.ORIGINS: ["Name"],
    RecordKind.BANKS: ["Name"],
    RecordKind.CATEGORIES: ["Flow", "Major Category", "Category", "Sub Category"],
    RecordKind.TRANSACTIONS: [
        "Date",
        "Origin",
        "Bank",
        "Flow",
        "Major Category",
        "Category",
        "Sub Category",
        "Description",
        "Income Amount",
        "Outgoing Amount",
        "Notes",
    ],
}


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _decode(payload: bytes) -> str:
    for encoding in ("utf-8-sig", "cp1252"):
        try:
            return payload.decode(encoding)
        except UnicodeDecodeError:
            continue
    raise SourceParseError("File is not valid UTF-8 or Windows-1252 text")


def read_csv(payload: bytes) -> list[dict[str, Any]]:
    """Read a CSV payload; the delimiter (comma, semicolon, tab) is sniffed."""
    text = _decode(payload)
    lines = [line for line in text.splitlines() if line.strip()]
    if not lines:
        raise SourceParseError("File is empty")

    try:
        dialect = csv.Sniffer().sniff(lines[0], delimiters=",;\t")
    except csv.Error:
        dialect = csv.excel

    reader = csv.DictReader(lines, dialect=dialect, skipinitialspace=True)
    if not reader.fieldnames or all(_is_blank(h) for h in reader.fieldnames):
        raise SourceParseError("File has no header row")

    rows = []
    try:
        for raw in reader:
            row = {k.strip(): v for k, v in raw.items() if k}
            if all(_is_blank(v) for v in row.values()):
                continue
            rows.append(row)
    except csv.Error as e:
        raise SourceParseError(f"Malformed CSV at line {reader.line_num}: {e}") from e
    return rows


def read_xlsx(payload: bytes) -> list[dict[str, Any]]:
    """Read the first worksheet of an XLSX payload."""
    try:
        workbook = load_workbook(io.BytesIO(payload), read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
        raise SourceParseError(f"Not a readable XLSX workbook: {e}") from e

    try:
        sheet = workbook.worksheets[0]
        values = sheet.iter_rows(values_only=True)
        header = next(values, None)
        if header is None or all(_is_blank(h) for h in header):
            raise SourceParseError("Worksheet has no header row")
        columns = [str(h).strip() if h is not None else "" for h in header]

        rows = []
        for cells in values:
            if all(_is_blank(c) for c in cells):
                continue
            row = {col: cell for col, cell in zip(columns, cells) if col}
            rows.append(row)
        return rows
    finally:
        workbook.close()


def read_rows(payload: bytes, filename: str) -> list[dict[str, Any]]:
    """
    Read an uploaded import file.

    Args:
        payload: Raw file bytes
        filename: Original file name; its extension selects the reader

    Returns:
        Data rows in file order, header excluded

    Raises:
        SourceParseError: If the file type is unsupported or the file is unreadable
    """
    suffix = Path(filename).suffix.lower()
    if suffix == ".csv":
        rows = read_csv(payload)
    elif suffix in (".xlsx", ".xlsm"):
        rows = read_xlsx(payload)
    else:
        raise SourceParseError(
            f"Unsupported file type {suffix or '(none)'}; use one of {', '.join(SUPPORTED_EXTENSIONS)}"
        )
    logger.debug("Read %d rows from %s", len(rows), filename)
    return rows


_TEMPLATE_EXAMPLES: dict[RecordKind, list[list[Any]]] = {
    RecordKind.ORIGINS: [["Shared"], ["Personal"]],
    RecordKind.BANKS: [["Main Bank"], ["Savings Bank"]],
    RecordKind.CATEGORIES: [
        ["INFLOW", "INCOME", "Salary", "Net Salary"],
        ["OUTFLOW", "VARIABLE_COSTS", "Food", "Groceries"],
        ["OUTFLOW", "FIXED_COSTS", "Home", "Rent"],
    ],
    RecordKind.TRANSACTIONS: [
        ["2024-01-15", "Shared", "Main Bank", "INFLOW", "INCOME", "Salary", "Net Salary",
         "Monthly salary", 3500.00, None, None],
        ["2024-01-16", "Shared", "Main Bank", "OUTFLOW", "VARIABLE_COSTS", "Food", "Groceries",
         "Weekly shopping", None, 85.50, "Supermarket"],
    ],
}


def write_template(kind: RecordKind, path: Path) -> Path:
    """Write an XLSX import template with a bold header and example rows."""
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = kind.value.capitalize()

    columns = TEMPLATE_COLUMNS[kind]
    sheet.append(columns)
    for cell in sheet[1]:
        cell.font = Font(bold=True)
    for example in _TEMPLATE_EXAMPLES[kind]:
        sheet.append(example)
    for index, column in enumerate(columns, start=1):
        letter = sheet.cell(row=1, column=index).column_letter
        sheet.column_dimensions[letter].width = max(12, len(column) + 4)

    path.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(path)
    return path
