"""Read-only export of database tables for the `get` command.

Tables are read into pandas DataFrames and written to a text stream as
CSV or JSON records, ordered by primary key so repeated exports of the
same database are identical.
"""

from __future__ import annotations

import enum
import logging
import sqlite3
from typing import TYPE_CHECKING, Final, TextIO

import pandas as pd

from gtfsjpdb.contracts import (
    AGENCY_CONTRACT,
    NODES_CONTRACT,
    ROUTES_CONTRACT,
    SERVICE_ROUTES_CONTRACT,
    STOPS_CONTRACT,
    TRIPS_TO_SERVICE_ROUTES_CONTRACT,
    TableContract,
)
from gtfsjpdb.load import SourceError

if TYPE_CHECKING:
    from gtfsjpdb.load import GtfsDatabase

logger: Final[logging.Logger] = logging.getLogger(__name__)


class ExportFormat(enum.Enum):
    """Output format of an export."""

    CSV = "csv"
    JSON = "json"


EXPORT_TARGETS: Final[dict[str, TableContract]] = {
    "agency": AGENCY_CONTRACT,
    "routes": ROUTES_CONTRACT,
    "stops": STOPS_CONTRACT,
    "service-routes": SERVICE_ROUTES_CONTRACT,
    "trips-to-service-routes": TRIPS_TO_SERVICE_ROUTES_CONTRACT,
    "nodes": NODES_CONTRACT,
}


def execute_query(query: str, conn: sqlite3.Connection) -> pd.DataFrame:
    """Execute a SQL query and return the result as a DataFrame.

    Integer columns containing NULLs keep an integer dtype.

    Raises:
        SourceError: If sqlite rejects the query.
    """
    try:
        return pd.read_sql_query(query, conn, dtype_backend="numpy_nullable")
    except (sqlite3.Error, pd.errors.DatabaseError) as exc:
        raise SourceError(f"Query execution failed: {exc}") from exc


def fetch_table(db: GtfsDatabase, target: str) -> pd.DataFrame:
    """Read one exportable table, ordered by its primary key.

    Args:
        db: Database to read; the file must already exist.
        target: Key of EXPORT_TARGETS (e.g. "service-routes").

    Returns:
        DataFrame with the contract's columns in contract order.

    Raises:
        KeyError: If target is not exportable.
        SourceError: If the database file is missing or the read fails.
    """
    contract = EXPORT_TARGETS[target]
    if not db.path.exists():
        raise SourceError(
            f"Database '{db.path}' does not exist", table=contract.table_name
        )

    order_by = ", ".join(contract.primary_key or contract.column_names)
    query = (
        f"SELECT {', '.join(contract.column_names)} "
        f"FROM {contract.table_name} ORDER BY {order_by}"
    )
    frame = execute_query(query, db.connect())
    logger.debug("Fetched %d rows from %s", len(frame), contract.table_name)
    return frame


def write_frame(frame: pd.DataFrame, fmt: ExportFormat, stream: TextIO) -> None:
    """Serialize a DataFrame to a text stream.

    CSV is written with a header and without the index. JSON is one
    array of records with non-ASCII characters kept as-is.
    """
    match fmt:
        case ExportFormat.CSV:
            frame.to_csv(stream, index=False, lineterminator="\n")
        case ExportFormat.JSON:
            stream.write(frame.to_json(orient="records", force_ascii=False))
            stream.write("\n")
