"""Spreadsheet parsing: header mapping, row validation and chunking."""
import logging
import os
import zipfile
from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Iterable, Sequence, TypeVar

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from app.exceptions import ParseError
from app.models.upload_error import ERROR_VALIDATION
from app.schemas.upload import ErrorRecord
from app.services.row_validator import REQUIRED_HEADERS, validate_row

CHUNK_SIZE = 100

T = TypeVar("T")

logger = logging.getLogger(__name__)


@dataclass
class ParseResult:
    """Output of the parse-validate step; nothing here has touched the database."""

    valid_chunks: list[list[dict]] = field(default_factory=list)
    error_records: list[ErrorRecord] = field(default_factory=list)

    @property
    def valid_count(self) -> int:
        return sum(len(chunk) for chunk in self.valid_chunks)

    @property
    def total_count(self) -> int:
        return self.valid_count + len(self.error_records)


def chunk_array(items: Sequence[T], size: int) -> list[list[T]]:
    """
    Split items into consecutive chunks of ``size``; only the last may be shorter.

    >>> chunk_array([1, 2, 3, 4, 5], 2)
    [[1, 2], [3, 4], [5]]
    """
    if size < 1:
        raise ValueError(f"chunk size must be positive, got {size}")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


def _normalize_header(value: Any) -> str:
    return str(value).strip().lower() if value is not None else ""


def _jsonable(value: Any) -> Any:
    """Make a raw cell value safe for JSON payloads and the raw_data column."""
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


def _is_blank(row: Iterable[Any]) -> bool:
    return all(cell is None or (isinstance(cell, str) and not cell.strip()) for cell in row)


def read_sheet_rows(file_path: str) -> list[tuple[int, tuple]]:
    """
    Read the non-blank rows of the first worksheet.

    Returns:
        (sheet row number, cell values) pairs; blank rows are skipped but
        keep their place in the numbering

    Raises:
        ParseError: If the file is missing, unreadable, or lacks a header
            row plus at least one data row
    """
    if not os.path.exists(file_path):
        raise ParseError(f"File not found: {file_path}")

    try:
        workbook = load_workbook(file_path, read_only=True, data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError) as e:
        raise ParseError(f"Unable to read spreadsheet: {e}") from e

    try:
        if not workbook.worksheets:
            raise ParseError("Spreadsheet has no worksheets")
        sheet = workbook.worksheets[0]
        rows = [
            (number, row)
            for number, row in enumerate(sheet.iter_rows(values_only=True), start=1)
            if not _is_blank(row)
        ]
    finally:
        workbook.close()

    if len(rows) < 2:
        raise ParseError("Excel file must contain at least a header row and one data row")

    return rows


def map_headers(header_row: Sequence[Any]) -> dict[str, int]:
    """
    Map each required header name to its column index.

    Extra and reordered columns are tolerated; duplicates keep the first.

    Raises:
        ParseError: Naming every required header that is absent
    """
    columns: dict[str, int] = {}
    for index, value in enumerate(header_row):
        name = _normalize_header(value)
        if name and name not in columns:
            columns[name] = index

    missing = [name for name in REQUIRED_HEADERS if name not in columns]
    if missing:
        raise ParseError(
            f"Missing required headers: {', '.join(missing)}", missing_headers=missing
        )
    return {name: columns[name] for name in REQUIRED_HEADERS}


def parse_validate(file_path: str, chunk_size: int = CHUNK_SIZE) -> ParseResult:
    """
    Parse a spreadsheet, validate every data row and chunk the valid ones.

    Row numbers are sheet row numbers, so a data row right below the header
    is row 2.

    Args:
        file_path: Path of the uploaded spreadsheet
        chunk_size: Rows per data-insert chunk

    Returns:
        ParseResult with valid row chunks and validation error records

    Raises:
        ParseError: If the file as a whole cannot be used
    """
    logger.info(f"🔍 Parsing spreadsheet: {file_path}")
    rows = read_sheet_rows(file_path)
    columns = map_headers(rows[0][1])

    valid_rows: list[dict] = []
    error_records: list[ErrorRecord] = []

    for row_number, row in rows[1:]:
        raw_row = {
            name: _jsonable(row[index]) if index < len(row) else None
            for name, index in columns.items()
        }
        result = validate_row(raw_row, row_number)
        if result.is_valid:
            valid_rows.append(result.data)
        else:
            error_records.append(
                ErrorRecord(
                    row_number=row_number,
                    error_type=ERROR_VALIDATION,
                    error_message=", ".join(result.errors),
                    raw_data=raw_row,
                )
            )

    result = ParseResult(
        valid_chunks=chunk_array(valid_rows, chunk_size),
        error_records=error_records,
    )
    logger.info(
        f"✅ Parsing completed: {len(result.valid_chunks)} chunks, "
        f"{len(error_records)} errors, {result.total_count} rows"
    )
    return result
