"""Reading staged CSV files: header checks at upload time, row streaming at run time."""

from __future__ import annotations

import csv
import io
import logging
import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from pathlib import Path

from batch_import.core.errors import InvalidFile, SourceUnavailable
from batch_import.services.row_validator import REQUIRED_COLUMNS

logger = logging.getLogger(__name__)

CSV_ENCODING = "utf-8-sig"
REQUIRED_MARKER = "*"


@dataclass(frozen=True)
class CsvSummary:
    headers: list[str]
    total_rows: int


@dataclass(frozen=True)
class SourceRecord:
    """One data row; row_number is 1-based and ignores the header and blank lines."""

    row_number: int
    values: dict[str, str] = field(default_factory=dict)
    parse_error: str | None = None


def normalize_header(raw: str) -> str:
    """``" Cost Price* "`` -> ``"cost_price"``."""
    name = raw.strip()
    if name.endswith(REQUIRED_MARKER):
        name = name[: -len(REQUIRED_MARKER)].rstrip()
    return re.sub(r"\s+", "_", name.lower())


def _is_blank(row: list[str]) -> bool:
    return not any(cell.strip() for cell in row)


def _read_headers(reader: Iterator[list[str]]) -> list[str]:
    for row in reader:
        if _is_blank(row):
            continue
        headers = [normalize_header(cell) for cell in row]
        break
    else:
        raise InvalidFile("CSV file is empty")

    named = [header for header in headers if header]
    duplicates = sorted({header for header in named if named.count(header) > 1})
    if duplicates:
        raise InvalidFile(f"Duplicate column(s): {', '.join(duplicates)}")
    missing = [column for column in REQUIRED_COLUMNS if column not in headers]
    if missing:
        raise InvalidFile(f"Missing required column(s): {', '.join(missing)}")
    return headers


def _records(reader: Iterator[list[str]], headers: list[str]) -> Iterator[SourceRecord]:
    row_number = 0
    while True:
        try:
            row = next(reader)
        except StopIteration:
            return
        except csv.Error as e:
            row_number += 1
            yield SourceRecord(row_number, parse_error=f"Malformed CSV row: {e}")
            continue

        if _is_blank(row):
            continue
        row_number += 1
        if len(row) != len(headers):
            yield SourceRecord(
                row_number,
                parse_error=f"Expected {len(headers)} fields but found {len(row)}",
            )
            continue
        yield SourceRecord(
            row_number,
            values={header: cell for header, cell in zip(headers, row) if header},
        )


def _reader(lines: Iterable[str]) -> Iterator[list[str]]:
    return csv.reader(lines, strict=True)


def inspect_csv(content: bytes, max_bytes: int | None = None) -> CsvSummary:
    """Validate an upload before it is attached to a job.

    Raises InvalidFile for oversize, undecodable, header-less or
    column-deficient files. Malformed data rows are counted, not rejected;
    they become per-row parse errors when the job runs.
    """
    if max_bytes is not None and len(content) > max_bytes:
        raise InvalidFile(f"CSV file exceeds the {max_bytes} byte upload limit")
    if not content.strip():
        raise InvalidFile("CSV file is empty")
    try:
        text = content.decode(CSV_ENCODING)
    except UnicodeDecodeError as e:
        raise InvalidFile(f"CSV file must be UTF-8 encoded: {e}") from e

    try:
        reader = _reader(io.StringIO(text, newline=""))
        headers = _read_headers(reader)
    except csv.Error as e:
        raise InvalidFile(f"CSV header could not be parsed: {e}") from e

    total_rows = sum(1 for _ in _records(reader, headers))
    if total_rows == 0:
        raise InvalidFile("CSV file has no data rows")
    return CsvSummary(headers=headers, total_rows=total_rows)


def iter_records(file_path: str | Path, start_after: int = 0) -> Iterator[SourceRecord]:
    """Stream records whose row_number is greater than ``start_after``.

    Rows up to the checkpoint are still parsed so numbering stays identical
    across runs. Any failure to open or decode the file raises
    SourceUnavailable.
    """
    path = Path(file_path)
    try:
        with path.open("r", encoding=CSV_ENCODING, newline="") as handle:
            reader = _reader(handle)
            try:
                headers = _read_headers(reader)
            except (InvalidFile, csv.Error) as e:
                raise SourceUnavailable(f"CSV header is no longer valid: {e}") from e
            for record in _records(reader, headers):
                if record.row_number > start_after:
                    yield record
    except FileNotFoundError as e:
        raise SourceUnavailable(f"CSV file not found: {path}") from e
    except PermissionError as e:
        raise SourceUnavailable(f"Permission denied reading file: {path}") from e
    except UnicodeDecodeError as e:
        raise SourceUnavailable(f"File encoding error: {e}") from e
    except OSError as e:
        raise SourceUnavailable(f"Error reading CSV file: {e}") from e
