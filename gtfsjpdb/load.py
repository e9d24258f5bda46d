"""sqlite loading module for the GTFS-JP database builder.

Owns the single sqlite connection used during a run. Reads GTFS-JP CSV
files against their table contracts, bulk-inserts rows with one
transaction per table, writes the derived tables, and serves the
stop-time and stop detail queries the derivation stages consume.
"""

from __future__ import annotations

import csv
import logging
import sqlite3
from collections.abc import Iterable, Iterator
from dataclasses import astuple, dataclass
from itertools import islice
from pathlib import Path
from typing import TYPE_CHECKING, Any, Final

from gtfsjpdb.config import INSERT_BATCH_SIZE, RUBY_LANGUAGE
from gtfsjpdb.contracts import (
    ALL_CONTRACTS,
    NODES_CONTRACT,
    SERVICE_ROUTES_CONTRACT,
    TRIPS_TO_SERVICE_ROUTES_CONTRACT,
    TableContract,
)
from gtfsjpdb.validate import coerce_value, validate_header

if TYPE_CHECKING:
    from gtfsjpdb.nodes import Node
    from gtfsjpdb.service_routes import ServiceRoute, Trip2ServiceRoute

logger: Final[logging.Logger] = logging.getLogger(__name__)


# ---- Exceptions -------------------------------------------------------------


class LoadError(Exception):
    """Raised when sqlite refuses a write or a CSV row cannot be stored.

    Attributes:
        table: Target table name, if applicable.
        file_path: Source file path, if applicable.
    """

    def __init__(
        self,
        message: str,
        *,
        table: str = "",
        file_path: str = "",
    ) -> None:
        self.table: Final[str] = table
        self.file_path: Final[str] = file_path
        super().__init__(message)


class SourceError(Exception):
    """Raised when a read from the database fails.

    Attributes:
        table: Table or view being read, if applicable.
    """

    def __init__(self, message: str, *, table: str = "") -> None:
        self.table: Final[str] = table
        super().__init__(message)


# ---- Detail records ---------------------------------------------------------


@dataclass(frozen=True, slots=True)
class StopTimeDetail:
    """One stop visit of a trip, joined with the stop it serves.

    Attributes:
        trip_id: Trip the visit belongs to.
        stop_sequence: Position within the trip; unique per trip.
        stop_id: Visited stop.
        stop_name: Name of the visited stop.
        stop_headsign: Headsign shown at this stop, if any.
    """

    trip_id: str
    stop_sequence: int
    stop_id: str
    stop_name: str
    stop_headsign: str | None = None


@dataclass(frozen=True, slots=True)
class StopDetail:
    """A stop with its phonetic reading and parent station.

    Attributes:
        stop_id: Stop identifier.
        stop_name: Display name.
        stop_ruby: ja-Hrkt reading from translations, if any.
        parent_station: Parent station stop_id for child platforms.
    """

    stop_id: str
    stop_name: str
    stop_ruby: str | None = None
    parent_station: str | None = None


_STOP_TIME_DETAILS_SQL: Final[str] = """
SELECT st.trip_id, st.stop_sequence, st.stop_id, s.stop_name, st.stop_headsign
FROM stop_times AS st
LEFT JOIN stops AS s ON s.stop_id = st.stop_id
WHERE (:trip_id IS NULL OR st.trip_id = :trip_id)
  AND (:stop_id IS NULL OR st.stop_id = :stop_id)
ORDER BY st.trip_id, st.stop_sequence
"""

# Ruby comes from the ja-Hrkt translation of stops.stop_name, in either
# the current translations layout or the GTFS-JP v2 layout.
_STOP_DETAILS_SQL: Final[str] = """
SELECT
    s.stop_id,
    s.stop_name,
    COALESCE(
        (
            SELECT MIN(t.translation)
            FROM translations AS t
            WHERE t.table_name = 'stops'
              AND t.field_name = 'stop_name'
              AND t.language = :language
              AND (
                  t.record_id = s.stop_id
                  OR (t.record_id IS NULL AND t.field_value = s.stop_name)
              )
        ),
        (
            SELECT MIN(l.translation)
            FROM legacy_translations AS l
            WHERE l.lang = :language AND l.trans_id = s.stop_name
        )
    ) AS stop_ruby,
    s.parent_station
FROM stops AS s
ORDER BY s.stop_id
"""


# ---- CSV reading ------------------------------------------------------------


def read_gtfs_csv(
    csv_path: Path,
    contract: TableContract,
) -> Iterator[tuple[Any, ...]]:
    """Yield contract-ordered, type-coerced rows from a GTFS-JP CSV file.

    The header is validated before the first row is produced. Blank
    lines are skipped. Columns absent from the file load as None.

    Args:
        csv_path: UTF-8 encoded CSV file.
        contract: Table contract describing the destination table.

    Yields:
        One tuple per data row, in contract column order.

    Raises:
        SchemaValidationError: If the header lacks a mandatory column.
        LoadError: If a cell cannot be coerced to its column type.
    """
    with csv_path.open("r", encoding="utf-8", newline="") as fh:
        reader = csv.DictReader(fh)
        column_map = validate_header(csv_path, contract, reader.fieldnames)

        for row_number, row in enumerate(reader, start=2):
            if not any((v or "").strip() for v in row.values() if isinstance(v, str)):
                continue
            values: list[Any] = []
            for column in contract.columns:
                header = column_map.get(column.name)
                raw = row.get(header) if header is not None else None
                try:
                    values.append(coerce_value(raw, column.expected_dtype))
                except ValueError as exc:
                    raise LoadError(
                        f"{csv_path.name} line {row_number}: column "
                        f"'{column.name}': {exc}",
                        table=contract.table_name,
                        file_path=str(csv_path),
                    ) from exc
            yield tuple(values)


def _batched(
    rows: Iterable[tuple[Any, ...]],
    size: int,
) -> Iterator[list[tuple[Any, ...]]]:
    iterator = iter(rows)
    while batch := list(islice(iterator, size)):
        yield batch


# ---- Database ---------------------------------------------------------------


class GtfsDatabase:
    """Single-file sqlite store for a GTFS-JP feed and its derived tables.

    Implements the context manager protocol to guarantee the connection
    is closed on scope exit. Every write method commits all of its rows
    in one transaction or none of them.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._connection: sqlite3.Connection | None = None

    @property
    def path(self) -> Path:
        """Location of the database file."""
        return self._path

    def connect(self) -> sqlite3.Connection:
        """Open the database file, creating it if necessary.

        Raises:
            LoadError: If sqlite cannot open the file.
        """
        if self._connection is not None:
            return self._connection
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._connection = sqlite3.connect(self._path)
        except (sqlite3.Error, OSError) as exc:
            raise LoadError(f"Cannot open database '{self._path}': {exc}") from exc
        return self._connection

    def close(self) -> None:
        """Close the connection if it is open."""
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    def __enter__(self) -> GtfsDatabase:
        """Enter context manager; open the connection."""
        self.connect()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        """Exit context manager; close connection unconditionally."""
        self.close()

    # ---- Schema ------------------------------------------------------------

    def drop_all(self) -> None:
        """Drop every table this tool creates."""
        self._execute_ddl(
            [f"DROP TABLE IF EXISTS {c.table_name}" for c in ALL_CONTRACTS],
            "drop tables",
        )

    def create_all(self) -> None:
        """Create every GTFS-JP and derived table."""
        self._execute_ddl([c.create_sql() for c in ALL_CONTRACTS], "create tables")

    def _execute_ddl(self, statements: list[str], action: str) -> None:
        conn = self.connect()
        try:
            with conn:
                for statement in statements:
                    conn.execute(statement)
        except sqlite3.Error as exc:
            raise LoadError(f"Failed to {action} in '{self._path}': {exc}") from exc

    def clear_table(self, table_name: str) -> None:
        """Delete every row of a table."""
        conn = self.connect()
        try:
            with conn:
                conn.execute(f"DELETE FROM {table_name}")
        except sqlite3.Error as exc:
            raise LoadError(
                f"Failed to clear {table_name}: {exc}", table=table_name
            ) from exc

    # ---- Writes ------------------------------------------------------------

    def insert_rows(
        self,
        contract: TableContract,
        rows: Iterable[tuple[Any, ...]],
    ) -> int:
        """Bulk-insert rows into a table inside a single transaction.

        Args:
            contract: Contract of the destination table.
            rows: Tuples in contract column order. May be a generator;
                it is consumed in batches.

        Returns:
            Number of rows inserted.

        Raises:
            LoadError: If sqlite rejects any row. Nothing is committed.
        """
        conn = self.connect()
        sql = contract.insert_sql()
        inserted = 0
        try:
            with conn:
                for batch in _batched(rows, INSERT_BATCH_SIZE):
                    conn.executemany(sql, batch)
                    inserted += len(batch)
        except sqlite3.Error as exc:
            raise LoadError(
                f"INSERT INTO {contract.table_name} failed: {exc}",
                table=contract.table_name,
            ) from exc
        logger.debug("Inserted %d rows into %s", inserted, contract.table_name)
        return inserted

    def load_csv(self, csv_path: Path, contract: TableContract) -> int:
        """Stream a GTFS-JP CSV file into its table.

        Returns:
            Number of rows inserted.
        """
        return self.insert_rows(contract, read_gtfs_csv(csv_path, contract))

    def insert_trips_to_service_routes(self, rows: Iterable[Trip2ServiceRoute]) -> int:
        """Insert trip to service route assignments."""
        return self.insert_rows(
            TRIPS_TO_SERVICE_ROUTES_CONTRACT, (astuple(r) for r in rows)
        )

    def insert_service_routes(self, rows: Iterable[ServiceRoute]) -> int:
        """Insert service routes; the pattern key is not persisted."""
        return self.insert_rows(
            SERVICE_ROUTES_CONTRACT,
            ((r.service_route_id, r.direction_id, r.service_route_name) for r in rows),
        )

    def insert_nodes(self, rows: Iterable[Node]) -> int:
        """Insert derived nodes."""
        return self.insert_rows(NODES_CONTRACT, (astuple(r) for r in rows))

    # ---- Reads -------------------------------------------------------------

    def select_stop_time_details(
        self,
        trip_id: str | None = None,
        stop_id: str | None = None,
    ) -> list[StopTimeDetail]:
        """Return stop visits joined with stop names.

        Args:
            trip_id: Restrict to a single trip.
            stop_id: Restrict to visits of a single stop.

        Returns:
            Details ordered by (trip_id, stop_sequence).

        Raises:
            SourceError: If the query fails or a visited stop_id is not in
                stops.
        """
        rows = self._query(
            _STOP_TIME_DETAILS_SQL,
            {"trip_id": trip_id, "stop_id": stop_id},
            table="stop_times",
        )
        unresolved = [row for row in rows if row[3] is None]
        if unresolved:
            trip, _, stop = unresolved[0][:3]
            raise SourceError(
                f"{len(unresolved)} stop_times rows reference unknown stops "
                f"(first: trip_id '{trip}', stop_id '{stop}')",
                table="stop_times",
            )
        return [
            StopTimeDetail(
                trip_id=row[0],
                stop_sequence=row[1],
                stop_id=row[2],
                stop_name=row[3],
                stop_headsign=row[4],
            )
            for row in rows
        ]

    def select_stop_details(self) -> list[StopDetail]:
        """Return every stop with its ruby, ordered by stop_id.

        Raises:
            SourceError: If the query fails.
        """
        rows = self._query(
            _STOP_DETAILS_SQL,
            {"language": RUBY_LANGUAGE},
            table="stops",
        )
        return [
            StopDetail(
                stop_id=row[0],
                stop_name=row[1],
                stop_ruby=row[2],
                parent_station=row[3],
            )
            for row in rows
        ]

    def count(self, table_name: str) -> int:
        """Return the number of rows in a table."""
        rows = self._query(f"SELECT COUNT(*) FROM {table_name}", {}, table=table_name)
        return int(rows[0][0])

    def _query(
        self,
        sql: str,
        params: dict[str, Any],
        *,
        table: str,
    ) -> list[tuple[Any, ...]]:
        conn = self.connect()
        try:
            cursor = conn.execute(sql, params)
            try:
                return list(cursor.fetchall())
            finally:
                cursor.close()
        except sqlite3.Error as exc:
            raise SourceError(f"Query on {table} failed: {exc}", table=table) from exc
