"""Table contract definitions for GTFS-JP source files and derived tables.

Each contract lists the columns of one database table with their logical
data type and nullability. The loader uses the contracts to check CSV
headers, convert cell values, and generate sqlite DDL. Non-nullable
columns are mandatory in the source CSV header; nullable columns may be
absent and load as NULL.

Column sets follow the GTFS-JP format reference (version 2/3), which
adds agency_jp, routes_jp, office_jp and the jp_* columns to GTFS.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

_SQL_TYPES: Final[dict[str, str]] = {
    "STRING": "TEXT",
    "INTEGER": "INTEGER",
    "DECIMAL": "REAL",
    "DATE": "TEXT",
    "TIME": "TEXT",
}


@dataclass(frozen=True, slots=True)
class ColumnContract:
    """Schema expectation for a single column.

    Attributes:
        name: Exact column header as it appears in the source CSV.
        expected_dtype: Logical data type. One of:
            STRING, INTEGER, DECIMAL, DATE, TIME.
        nullable: Whether the column permits empty/null values.
    """

    name: str
    expected_dtype: str
    nullable: bool

    @property
    def sql_type(self) -> str:
        """Return the sqlite column type for the logical dtype."""
        return _SQL_TYPES[self.expected_dtype]


@dataclass(frozen=True, slots=True)
class TableContract:
    """Full schema contract for one database table.

    Attributes:
        table_name: Name of the sqlite table.
        columns: Ordered tuple of column definitions.
        primary_key: Columns forming the primary key (empty for none).
    """

    table_name: str
    columns: tuple[ColumnContract, ...]
    primary_key: tuple[str, ...] = ()

    @property
    def column_names(self) -> tuple[str, ...]:
        """Return ordered tuple of column names."""
        return tuple(c.name for c in self.columns)

    @property
    def required_columns(self) -> frozenset[str]:
        """Return set of column names that must be present in the source."""
        return frozenset(c.name for c in self.columns if not c.nullable)

    @property
    def nullable_columns(self) -> frozenset[str]:
        """Return set of column names that permit null values."""
        return frozenset(c.name for c in self.columns if c.nullable)

    def create_sql(self) -> str:
        """Build the CREATE TABLE statement for this contract."""
        definitions = [
            f"{c.name} {c.sql_type}{'' if c.nullable else ' NOT NULL'}"
            for c in self.columns
        ]
        if self.primary_key:
            definitions.append(f"PRIMARY KEY ({', '.join(self.primary_key)})")
        return f"CREATE TABLE {self.table_name} ({', '.join(definitions)})"

    def insert_sql(self) -> str:
        """Build the parameterized INSERT statement for this contract."""
        placeholders = ", ".join("?" for _ in self.columns)
        return (
            f"INSERT INTO {self.table_name} ({', '.join(self.column_names)}) "
            f"VALUES ({placeholders})"
        )


def _text(name: str, *, nullable: bool = True) -> ColumnContract:
    return ColumnContract(name=name, expected_dtype="STRING", nullable=nullable)


def _int(name: str, *, nullable: bool = True) -> ColumnContract:
    return ColumnContract(name=name, expected_dtype="INTEGER", nullable=nullable)


def _decimal(name: str, *, nullable: bool = True) -> ColumnContract:
    return ColumnContract(name=name, expected_dtype="DECIMAL", nullable=nullable)


def _date(name: str, *, nullable: bool = True) -> ColumnContract:
    return ColumnContract(name=name, expected_dtype="DATE", nullable=nullable)


def _time(name: str, *, nullable: bool = True) -> ColumnContract:
    return ColumnContract(name=name, expected_dtype="TIME", nullable=nullable)


# ---------------------------------------------------------------------------
# Agencies
# agency_id is optional in single-agency GTFS feeds, so agency carries no
# primary key.
# ---------------------------------------------------------------------------
AGENCY_CONTRACT: Final[TableContract] = TableContract(
    table_name="agency",
    columns=(
        _text("agency_id"),
        _text("agency_name", nullable=False),
        _text("agency_url", nullable=False),
        _text("agency_timezone", nullable=False),
        _text("agency_lang"),
        _text("agency_phone"),
        _text("agency_fare_url"),
        _text("agency_email"),
    ),
)

AGENCY_JP_CONTRACT: Final[TableContract] = TableContract(
    table_name="agency_jp",
    columns=(
        _text("agency_id", nullable=False),
        _text("agency_official_name"),
        _text("agency_zip_number"),
        _text("agency_address"),
        _text("agency_president_pos"),
        _text("agency_president_name"),
    ),
    primary_key=("agency_id",),
)

# ---------------------------------------------------------------------------
# Stops, routes and trips
# ---------------------------------------------------------------------------
STOPS_CONTRACT: Final[TableContract] = TableContract(
    table_name="stops",
    columns=(
        _text("stop_id", nullable=False),
        _text("stop_code"),
        _text("stop_name", nullable=False),
        _text("stop_desc"),
        _decimal("stop_lat"),
        _decimal("stop_lon"),
        _text("zone_id"),
        _text("stop_url"),
        _int("location_type"),
        _text("parent_station"),
        _text("stop_timezone"),
        _int("wheelchair_boarding"),
        _text("platform_code"),
    ),
    primary_key=("stop_id",),
)

ROUTES_CONTRACT: Final[TableContract] = TableContract(
    table_name="routes",
    columns=(
        _text("route_id", nullable=False),
        _text("agency_id"),
        _text("route_short_name"),
        _text("route_long_name"),
        _text("route_desc"),
        _int("route_type", nullable=False),
        _text("route_url"),
        _text("route_color"),
        _text("route_text_color"),
        _text("jp_parent_route_id"),
    ),
    primary_key=("route_id",),
)

ROUTES_JP_CONTRACT: Final[TableContract] = TableContract(
    table_name="routes_jp",
    columns=(
        _text("route_id", nullable=False),
        _date("route_update_date"),
        _text("origin_stop"),
        _text("via_stop"),
        _text("destination_stop"),
    ),
)

TRIPS_CONTRACT: Final[TableContract] = TableContract(
    table_name="trips",
    columns=(
        _text("route_id", nullable=False),
        _text("service_id", nullable=False),
        _text("trip_id", nullable=False),
        _text("trip_headsign"),
        _text("trip_short_name"),
        _int("direction_id"),
        _text("block_id"),
        _text("shape_id"),
        _int("wheelchair_accessible"),
        _int("bikes_allowed"),
        _text("jp_trip_desc"),
        _text("jp_trip_desc_symbol"),
        _text("jp_office_id"),
    ),
    primary_key=("trip_id",),
)

OFFICE_JP_CONTRACT: Final[TableContract] = TableContract(
    table_name="office_jp",
    columns=(
        _text("office_id", nullable=False),
        _text("office_name", nullable=False),
        _text("office_url"),
        _text("office_phone"),
    ),
    primary_key=("office_id",),
)

# Times stay text: GTFS allows hours >= 24 for trips past midnight.
STOP_TIMES_CONTRACT: Final[TableContract] = TableContract(
    table_name="stop_times",
    columns=(
        _text("trip_id", nullable=False),
        _time("arrival_time"),
        _time("departure_time"),
        _text("stop_id", nullable=False),
        _int("stop_sequence", nullable=False),
        _text("stop_headsign"),
        _int("pickup_type"),
        _int("drop_off_type"),
        _decimal("shape_dist_traveled"),
        _int("timepoint"),
    ),
    primary_key=("trip_id", "stop_sequence"),
)

# ---------------------------------------------------------------------------
# Service calendars
# ---------------------------------------------------------------------------
CALENDAR_CONTRACT: Final[TableContract] = TableContract(
    table_name="calendar",
    columns=(
        _text("service_id", nullable=False),
        _int("monday", nullable=False),
        _int("tuesday", nullable=False),
        _int("wednesday", nullable=False),
        _int("thursday", nullable=False),
        _int("friday", nullable=False),
        _int("saturday", nullable=False),
        _int("sunday", nullable=False),
        _date("start_date", nullable=False),
        _date("end_date", nullable=False),
    ),
    primary_key=("service_id",),
)

CALENDAR_DATES_CONTRACT: Final[TableContract] = TableContract(
    table_name="calendar_dates",
    columns=(
        _text("service_id", nullable=False),
        _date("date", nullable=False),
        _int("exception_type", nullable=False),
    ),
    primary_key=("service_id", "date"),
)

# ---------------------------------------------------------------------------
# Fares
# An empty transfers value means unlimited transfers, so it stays nullable.
# ---------------------------------------------------------------------------
FARE_ATTRIBUTES_CONTRACT: Final[TableContract] = TableContract(
    table_name="fare_attributes",
    columns=(
        _text("fare_id", nullable=False),
        _int("price", nullable=False),
        _text("currency_type", nullable=False),
        _int("payment_method", nullable=False),
        _int("transfers"),
        _text("agency_id"),
        _int("transfer_duration"),
    ),
    primary_key=("fare_id",),
)

FARE_RULES_CONTRACT: Final[TableContract] = TableContract(
    table_name="fare_rules",
    columns=(
        _text("fare_id", nullable=False),
        _text("route_id"),
        _text("origin_id"),
        _text("destination_id"),
        _text("contains_id"),
    ),
)

# ---------------------------------------------------------------------------
# Geometry, frequencies and transfers
# ---------------------------------------------------------------------------
SHAPES_CONTRACT: Final[TableContract] = TableContract(
    table_name="shapes",
    columns=(
        _text("shape_id", nullable=False),
        _decimal("shape_pt_lat", nullable=False),
        _decimal("shape_pt_lon", nullable=False),
        _int("shape_pt_sequence", nullable=False),
        _decimal("shape_dist_traveled"),
    ),
    primary_key=("shape_id", "shape_pt_sequence"),
)

FREQUENCIES_CONTRACT: Final[TableContract] = TableContract(
    table_name="frequencies",
    columns=(
        _text("trip_id", nullable=False),
        _time("start_time", nullable=False),
        _time("end_time", nullable=False),
        _int("headway_secs", nullable=False),
        _int("exact_times"),
    ),
)

TRANSFERS_CONTRACT: Final[TableContract] = TableContract(
    table_name="transfers",
    columns=(
        _text("from_stop_id", nullable=False),
        _text("to_stop_id", nullable=False),
        _int("transfer_type", nullable=False),
        _int("min_transfer_time"),
    ),
)

# ---------------------------------------------------------------------------
# Feed metadata and translations
# ---------------------------------------------------------------------------
FEED_INFO_CONTRACT: Final[TableContract] = TableContract(
    table_name="feed_info",
    columns=(
        _text("feed_publisher_name", nullable=False),
        _text("feed_publisher_url", nullable=False),
        _text("feed_lang", nullable=False),
        _date("feed_start_date"),
        _date("feed_end_date"),
        _text("feed_version"),
    ),
)

TRANSLATIONS_CONTRACT: Final[TableContract] = TableContract(
    table_name="translations",
    columns=(
        _text("table_name", nullable=False),
        _text("field_name", nullable=False),
        _text("language", nullable=False),
        _text("translation", nullable=False),
        _text("record_id"),
        _text("record_sub_id"),
        _text("field_value"),
    ),
)

# GTFS-JP v2 layout: trans_id is the translated source text itself.
LEGACY_TRANSLATIONS_CONTRACT: Final[TableContract] = TableContract(
    table_name="legacy_translations",
    columns=(
        _text("trans_id", nullable=False),
        _text("lang", nullable=False),
        _text("translation", nullable=False),
    ),
)

# ---------------------------------------------------------------------------
# Derived tables (not part of GTFS)
# ---------------------------------------------------------------------------
SERVICE_ROUTES_CONTRACT: Final[TableContract] = TableContract(
    table_name="service_routes",
    columns=(
        _int("service_route_id", nullable=False),
        _int("direction_id", nullable=False),
        _text("service_route_name", nullable=False),
    ),
    primary_key=("service_route_id",),
)

TRIPS_TO_SERVICE_ROUTES_CONTRACT: Final[TableContract] = TableContract(
    table_name="trips_to_service_routes",
    columns=(
        _text("trip_id", nullable=False),
        _int("service_route_id", nullable=False),
        _int("service_route_direction_id", nullable=False),
    ),
    primary_key=("trip_id",),
)

NODES_CONTRACT: Final[TableContract] = TableContract(
    table_name="nodes",
    columns=(
        _int("node_id", nullable=False),
        _text("node_name", nullable=False),
        _text("node_ruby"),
    ),
    primary_key=("node_id",),
)

# ---------------------------------------------------------------------------
# Contract registries keyed by table name.
# Keys match GtfsFileConfig.table_name values in config.py.
# ---------------------------------------------------------------------------
CONTRACTS: Final[dict[str, TableContract]] = {
    c.table_name: c
    for c in (
        AGENCY_CONTRACT,
        AGENCY_JP_CONTRACT,
        STOPS_CONTRACT,
        ROUTES_CONTRACT,
        ROUTES_JP_CONTRACT,
        TRIPS_CONTRACT,
        OFFICE_JP_CONTRACT,
        STOP_TIMES_CONTRACT,
        CALENDAR_CONTRACT,
        CALENDAR_DATES_CONTRACT,
        FARE_ATTRIBUTES_CONTRACT,
        FARE_RULES_CONTRACT,
        SHAPES_CONTRACT,
        FREQUENCIES_CONTRACT,
        TRANSFERS_CONTRACT,
        FEED_INFO_CONTRACT,
        TRANSLATIONS_CONTRACT,
    )
}

DERIVED_CONTRACTS: Final[dict[str, TableContract]] = {
    c.table_name: c
    for c in (
        SERVICE_ROUTES_CONTRACT,
        TRIPS_TO_SERVICE_ROUTES_CONTRACT,
        NODES_CONTRACT,
    )
}

# Every table the database holds, in creation order.
ALL_CONTRACTS: Final[tuple[TableContract, ...]] = (
    *CONTRACTS.values(),
    LEGACY_TRANSLATIONS_CONTRACT,
    *DERIVED_CONTRACTS.values(),
)
