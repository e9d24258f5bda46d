"""Feed configuration registry for the GTFS-JP database builder.

Defines the GTFS-JP files the loader knows about, the order in which
they are loaded, and which of them a feed must provide. Also holds the
service route identification strategies exposed on the command line.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Final


class IdentifyStrategy(Enum):
    """How trips are grouped into service routes."""

    STOP_NAMES = "stop_names"
    STOP_IDS = "stop_ids"
    FIRST_AND_LAST_STOP_NAMES = "first_and_last_stop_names"
    IDENTITY_TABLE = "identity_table"


@dataclass(frozen=True, slots=True)
class GtfsFileConfig:
    """Immutable configuration for a single GTFS-JP source file.

    Attributes:
        file_name: File name inside the feed directory (e.g. stops.txt).
        table_name: Destination table in the database.
        required: Whether the feed is invalid without this file.
    """

    file_name: str
    table_name: str
    required: bool


DEFAULT_DATABASE: Final[str] = "gtfs.db"
DEFAULT_STRATEGY: Final[IdentifyStrategy] = IdentifyStrategy.STOP_NAMES

# Rows per executemany() call during bulk inserts
INSERT_BATCH_SIZE: Final[int] = 10_000

# Language tag GTFS-JP uses for phonetic (yomigana) translations
RUBY_LANGUAGE: Final[str] = "ja-Hrkt"

# Separator between stop names in the identity table stop_pattern column
STOP_PATTERN_SEPARATOR: Final[str] = "|"


# Load order follows foreign key dependencies: agencies before routes,
# routes before trips, trips and stops before stop_times.
GTFS_FILES: Final[tuple[GtfsFileConfig, ...]] = (
    GtfsFileConfig(file_name="agency.txt", table_name="agency", required=True),
    GtfsFileConfig(file_name="agency_jp.txt", table_name="agency_jp", required=False),
    GtfsFileConfig(file_name="stops.txt", table_name="stops", required=True),
    GtfsFileConfig(file_name="routes.txt", table_name="routes", required=True),
    GtfsFileConfig(file_name="routes_jp.txt", table_name="routes_jp", required=False),
    GtfsFileConfig(file_name="trips.txt", table_name="trips", required=True),
    GtfsFileConfig(file_name="office_jp.txt", table_name="office_jp", required=False),
    GtfsFileConfig(file_name="stop_times.txt", table_name="stop_times", required=True),
    GtfsFileConfig(file_name="calendar.txt", table_name="calendar", required=False),
    GtfsFileConfig(
        file_name="calendar_dates.txt",
        table_name="calendar_dates",
        required=False,
    ),
    GtfsFileConfig(
        file_name="fare_attributes.txt",
        table_name="fare_attributes",
        required=False,
    ),
    GtfsFileConfig(file_name="fare_rules.txt", table_name="fare_rules", required=False),
    GtfsFileConfig(file_name="shapes.txt", table_name="shapes", required=False),
    GtfsFileConfig(
        file_name="frequencies.txt",
        table_name="frequencies",
        required=False,
    ),
    GtfsFileConfig(file_name="transfers.txt", table_name="transfers", required=False),
    GtfsFileConfig(file_name="feed_info.txt", table_name="feed_info", required=False),
    GtfsFileConfig(
        file_name="translations.txt",
        table_name="translations",
        required=False,
    ),
)


def get_file_by_table(table_name: str) -> GtfsFileConfig:
    """Look up a GTFS file configuration by its destination table.

    Args:
        table_name: Table name matching GtfsFileConfig.table_name.

    Returns:
        Matching GtfsFileConfig instance.

    Raises:
        KeyError: If no file loads into the given table.
    """
    for gtfs_file in GTFS_FILES:
        if gtfs_file.table_name == table_name:
            return gtfs_file
    valid_names = ", ".join(f.table_name for f in GTFS_FILES)
    raise KeyError(f"Unknown table '{table_name}'. Valid names: {valid_names}")


def get_required_files() -> tuple[GtfsFileConfig, ...]:
    """Return the files every feed must contain."""
    return tuple(f for f in GTFS_FILES if f.required)


def strategy_names() -> list[str]:
    """Return the command-line names of all identification strategies."""
    return [s.value for s in IdentifyStrategy]
