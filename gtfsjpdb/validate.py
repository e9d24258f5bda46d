"""Header validation and cell coercion for GTFS-JP CSV files.

Checks a CSV header against its table contract before any row is read.
On the first missing mandatory column, raises SchemaValidationError and
aborts; no partial load occurs. Matching is case-insensitive. Extra
columns are logged as warnings and ignored.

Cell values are coerced to the contract's logical type on the way into
the database. Types are not validated further: the feed is trusted
beyond what the loader needs to store it.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

from gtfsjpdb.contracts import TableContract

logger = logging.getLogger(__name__)

_INTEGER_PATTERN: re.Pattern[str] = re.compile(r"^[-+]?\d+$")


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class SchemaValidationError(Exception):
    """Raised when a CSV file deviates from its table contract.

    Attributes:
        file_path: Path to the non-conforming file.
        expected_columns: Column names defined by the contract.
        actual_columns: Column names found in the CSV header.
        mismatches: Human-readable descriptions of each deviation.
    """

    def __init__(
        self,
        file_path: Path,
        expected_columns: list[str],
        actual_columns: list[str],
        mismatches: list[str],
    ) -> None:
        self.file_path = file_path
        self.expected_columns = expected_columns
        self.actual_columns = actual_columns
        self.mismatches = mismatches
        detail = "; ".join(mismatches)
        super().__init__(f"Schema validation failed for '{file_path}': {detail}")


# ---------------------------------------------------------------------------
# Header validation
# ---------------------------------------------------------------------------


def validate_header(
    csv_path: Path,
    contract: TableContract,
    fieldnames: list[str] | None,
) -> dict[str, str]:
    """Match a CSV header against a table contract.

    Args:
        csv_path: Path of the CSV file, used in error messages.
        contract: Table contract to validate against.
        fieldnames: Header row as parsed by csv.DictReader.

    Returns:
        Mapping of contract column name to the header name present in the
        file. Nullable columns absent from the file are omitted.

    Raises:
        SchemaValidationError: If the header is missing or lacks a
            mandatory column.
    """
    if not fieldnames:
        raise SchemaValidationError(
            file_path=csv_path,
            expected_columns=list(contract.column_names),
            actual_columns=[],
            mismatches=["File has no header row"],
        )

    # GTFS producers commonly pad header cells with spaces
    actual_columns = [name.strip() for name in fieldnames]
    actual_lower_map: dict[str, str] = {
        stripped.lower(): original
        for stripped, original in zip(actual_columns, fieldnames, strict=True)
    }

    missing = [
        c.name
        for c in contract.columns
        if not c.nullable and c.name.lower() not in actual_lower_map
    ]
    if missing:
        raise SchemaValidationError(
            file_path=csv_path,
            expected_columns=list(contract.column_names),
            actual_columns=actual_columns,
            mismatches=[f"Missing required columns: {missing}"],
        )

    expected_lower = {name.lower() for name in contract.column_names}
    extra = [col for col in actual_columns if col.lower() not in expected_lower]
    if extra:
        logger.warning(
            "%s: extra columns not in contract (ignored): %s",
            csv_path.name,
            extra,
        )

    return {
        c.name: actual_lower_map[c.name.lower()]
        for c in contract.columns
        if c.name.lower() in actual_lower_map
    }


# ---------------------------------------------------------------------------
# Cell coercion
# ---------------------------------------------------------------------------


def coerce_value(value: str | None, expected_dtype: str) -> str | int | float | None:
    """Convert a raw CSV cell into the Python value stored in sqlite.

    Empty cells become None. INTEGER and DECIMAL cells are parsed;
    every other dtype is kept as stripped text.

    Raises:
        ValueError: If a numeric cell cannot be parsed.
    """
    if value is None:
        return None
    value = value.strip()
    if value == "":
        return None

    match expected_dtype:
        case "INTEGER":
            if not _INTEGER_PATTERN.match(value):
                raise ValueError(f"'{value[:50]}' is not an integer")
            return int(value)
        case "DECIMAL":
            return float(value)
        case _:
            return value
