"""
CSV parsing and preview sampling for uploaded import files.

Every cell is read as a raw string; typing happens later in the coercion layer
so a bad cell never breaks parsing of the whole file.
"""
import csv
import io
import logging
import warnings
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import pandas as pd

from crm_import.core.config import settings

logger = logging.getLogger(__name__)

# Row numbers are reported as spreadsheet line numbers: header is line 1.
FIRST_DATA_ROW_NUMBER = 2

_FALLBACK_ENCODINGS = ("utf-8-sig", "cp1252", "latin-1")
_HEADER_NOISE = "\ufeff\u200b\x00 \t\r\n"


class CsvFormatError(ValueError):
    """Raised when an upload cannot be parsed as a delimited table."""


class FileTooLargeError(ValueError):
    """Raised when an upload exceeds the configured size ceiling."""

    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(
            f"File is {size} bytes; the maximum allowed size is {limit} bytes "
            f"({limit // (1024 * 1024)}MB)."
        )


RowRecord = Dict[str, str]


@dataclass
class ParsedFile:
    headers: List[str]
    rows: List[RowRecord]
    preview: List[RowRecord] = field(default_factory=list)

    @property
    def total_rows(self) -> int:
        return len(self.rows)

    def row_number(self, index: int) -> int:
        """One-based line number in the original file for the row at ``index``."""
        return index + FIRST_DATA_ROW_NUMBER


def _decode(file_content: bytes) -> str:
    for encoding in _FALLBACK_ENCODINGS:
        try:
            return file_content.decode(encoding)
        except UnicodeDecodeError:
            continue
    # latin-1 decodes any byte sequence, so this is unreachable in practice
    raise CsvFormatError("Unable to decode file contents")


def _clean_header(value: str) -> str:
    return str(value).strip(_HEADER_NOISE)


def _unique_headers(headers: List[str]) -> List[str]:
    """Fill blank headers and suffix repeats so every column keeps its own key."""
    seen: Dict[str, int] = {}
    unique: List[str] = []
    for idx, header in enumerate(headers):
        candidate = header or f"Column {idx + 1}"
        base = candidate
        while candidate in seen:
            seen[base] += 1
            candidate = f"{base}.{seen[base]}"
        seen.setdefault(candidate, 0)
        unique.append(candidate)
    return unique


def parse_csv_file(
    file_content: bytes,
    *,
    max_bytes: Optional[int] = None,
    preview_rows: Optional[int] = None,
) -> ParsedFile:
    """
    Parse an uploaded CSV into headers, raw string rows and a preview sample.

    - Missing trailing cells become empty strings.
    - Duplicate headers are suffixed (``Email``, ``Email.1``).
    - A leading byte-order mark is dropped.

    Raises:
        FileTooLargeError: upload is above the size ceiling.
        CsvFormatError: upload is empty or not a well-formed table.
    """
    limit = max_bytes if max_bytes is not None else settings.upload_max_file_size_mb * 1024 * 1024
    if len(file_content) > limit:
        raise FileTooLargeError(len(file_content), limit)

    text_content = _decode(file_content)
    if not text_content.strip(_HEADER_NOISE):
        raise CsvFormatError("The uploaded file is empty")

    try:
        # With index_col=False pandas truncates an over-long first data row
        # and only warns; treat that like any other ragged row.
        with warnings.catch_warnings():
            warnings.simplefilter("error", pd.errors.ParserWarning)
            df = pd.read_csv(
                io.StringIO(text_content),
                dtype=str,
                keep_default_na=False,
                na_filter=False,
                skip_blank_lines=True,
                index_col=False,
            )
    except pd.errors.EmptyDataError as exc:
        raise CsvFormatError("The uploaded file has no header row") from exc
    except (pd.errors.ParserError, pd.errors.ParserWarning, csv.Error, ValueError) as exc:
        logger.warning("CSV parse failed: %s", exc)
        raise CsvFormatError(f"Unable to parse CSV file: {exc}") from exc

    # Ragged rows leave NaN in the missing trailing cells
    df = df.fillna("")

    headers = _unique_headers([_clean_header(col) for col in df.columns])
    df.columns = headers

    rows: List[RowRecord] = [
        {header: str(value) for header, value in record.items()}
        for record in df.to_dict("records")
        if any(str(value).strip() for value in record.values())
    ]
    sample_size = preview_rows if preview_rows is not None else settings.preview_rows

    logger.info("Parsed CSV with %d rows, columns: %s", len(rows), headers)
    return ParsedFile(headers=headers, rows=rows, preview=rows[:sample_size])


def rows_to_csv(headers: List[str], rows: List[RowRecord], *, extra_columns: Optional[List[str]] = None) -> str:
    """Serialize rows back to CSV text in the given column order."""
    columns = list(headers) + list(extra_columns or [])
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=columns, extrasaction="ignore", lineterminator="\n")
    writer.writeheader()
    for row in rows:
        writer.writerow({col: row.get(col, "") for col in columns})
    return buffer.getvalue()
