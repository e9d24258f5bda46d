"""Pipeline orchestrator and command-line entry point.

The `create` command reads the identity table (when the strategy needs
one), then sequences feed preparation, schema reset, GTFS-JP table load,
service route derivation and node derivation against one sqlite
database. Every stage is fatal on failure: there is no partial
success and no retry. The schema is dropped and recreated at the start
of every run so a failed run leaves reproducible state.

The `get` command exports a table as CSV or JSON.

Usage:
    gtfs-jp-db create ./feed --database gtfs.db
    gtfs-jp-db create feed.zip -S first_and_last_stop_names
    gtfs-jp-db create ./feed -S identity_table -s identity.csv
    gtfs-jp-db get service-routes --database gtfs.db --format json
"""

from __future__ import annotations

import argparse
import enum
import logging
import sys
import tempfile
import time
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from operator import attrgetter
from pathlib import Path
from typing import Final, TextIO

import httpx

from gtfsjpdb.config import (
    DEFAULT_DATABASE,
    DEFAULT_STRATEGY,
    GTFS_FILES,
    IdentifyStrategy,
    strategy_names,
)
from gtfsjpdb.contracts import (
    CONTRACTS,
    LEGACY_TRANSLATIONS_CONTRACT,
    NODES_CONTRACT,
    SERVICE_ROUTES_CONTRACT,
    TRIPS_TO_SERVICE_ROUTES_CONTRACT,
)
from gtfsjpdb.download import DownloadError, download_feed, is_url
from gtfsjpdb.export import EXPORT_TARGETS, ExportFormat, fetch_table, write_frame
from gtfsjpdb.load import GtfsDatabase, LoadError, SourceError, StopTimeDetail
from gtfsjpdb.nodes import generate_nodes
from gtfsjpdb.service_routes import (
    EmptyTripError,
    MalformedIdentityTableError,
    ServiceRoute,
    ServiceRouteGenerator,
    ServiceRouteIdentity,
    Trip2ServiceRoute,
    UnknownServiceRouteError,
    load_identity_table,
)
from gtfsjpdb.transform import (
    EncodingError,
    TransformError,
    extract_zip,
    normalize_directory,
    stage_feed_directory,
)
from gtfsjpdb.validate import SchemaValidationError

logger: Final[logging.Logger] = logging.getLogger(__name__)


# ---- Stages and results -----------------------------------------------------


class PipelineStage(enum.Enum):
    """Pipeline execution stage identifier."""

    IDENTITY_TABLE = "IDENTITY_TABLE"
    PREPARE = "PREPARE"
    SCHEMA = "SCHEMA"
    LOAD = "LOAD"
    SERVICE_ROUTES = "SERVICE_ROUTES"
    NODES = "NODES"


_STAGE_CONTEXT: Final[dict[PipelineStage, str]] = {
    PipelineStage.IDENTITY_TABLE: "failed to read identity table",
    PipelineStage.PREPARE: "failed to prepare feed",
    PipelineStage.SCHEMA: "failed to reset database schema",
    PipelineStage.LOAD: "failed to load GTFS tables",
    PipelineStage.SERVICE_ROUTES: "failed to derive service routes",
    PipelineStage.NODES: "failed to derive nodes",
}

_PIPELINE_ERRORS: Final[tuple[type[Exception], ...]] = (
    DownloadError,
    httpx.HTTPError,
    TransformError,
    EncodingError,
    SchemaValidationError,
    MalformedIdentityTableError,
    EmptyTripError,
    UnknownServiceRouteError,
    LoadError,
    SourceError,
    OSError,
)


@dataclass(frozen=True, slots=True)
class TableResult:
    """Number of records written to one table.

    Attributes:
        table_name: Destination table.
        records: Rows inserted.
    """

    table_name: str
    records: int


@dataclass(frozen=True, slots=True)
class PipelineResult:
    """Aggregate outcome of a create run.

    Attributes:
        tables: Per-table results, in insertion order.
        stage: Last pipeline stage attempted.
        elapsed_seconds: Wall-clock time for the full run.
        success: True only if every stage succeeded.
        error_message: Description of the failure, if any.
    """

    tables: list[TableResult] = field(default_factory=list)
    stage: PipelineStage = PipelineStage.PREPARE
    elapsed_seconds: float = 0.0
    success: bool = True
    error_message: str = ""


# ---- Stage executors --------------------------------------------------------


def prepare_feed(source: str, work_dir: Path) -> Path:
    """Stage a feed directory, zip archive or URL as UTF-8 files.

    Args:
        source: Directory path, .zip path, or http(s) URL of a zip.
        work_dir: Scratch directory owned by the caller.

    Returns:
        Directory holding the staged *.txt files.
    """
    feed_dir = work_dir / "feed"
    if is_url(source):
        result = download_feed(source, work_dir / "feed.zip")
        extract_zip(result.file_path, feed_dir)
        normalize_directory(feed_dir)
        return feed_dir

    source_path = Path(source)
    if source_path.is_file():
        extract_zip(source_path, feed_dir)
        normalize_directory(feed_dir)
        return feed_dir

    stage_feed_directory(source_path, feed_dir)
    return feed_dir


def drop_tables(db: GtfsDatabase) -> None:
    """Drop every table of the database."""
    logger.info("Drop all tables.")
    db.drop_all()
    logger.info("Success")


def create_tables(db: GtfsDatabase) -> None:
    """Create every table of the database."""
    logger.info("Create all tables.")
    db.create_all()
    logger.info("Success")


def insert_tables(
    db: GtfsDatabase,
    feed_dir: Path,
    legacy_translations: bool = False,
) -> list[TableResult]:
    """Load every GTFS-JP file present in the feed directory.

    Args:
        db: Open database with the schema already created.
        feed_dir: Directory of UTF-8 feed files.
        legacy_translations: Read translations.txt in the GTFS-JP v2
            layout (trans_id, lang, translation).

    Returns:
        One TableResult per loaded file.

    Raises:
        LoadError: If a required file is missing or a row is rejected.
        SchemaValidationError: If a file lacks a mandatory column.
    """
    results: list[TableResult] = []
    for gtfs_file in GTFS_FILES:
        contract = CONTRACTS[gtfs_file.table_name]
        if gtfs_file.table_name == "translations" and legacy_translations:
            contract = LEGACY_TRANSLATIONS_CONTRACT

        csv_path = feed_dir / gtfs_file.file_name
        if not csv_path.exists():
            if gtfs_file.required:
                raise LoadError(
                    f"Required file {gtfs_file.file_name} not found in feed",
                    table=contract.table_name,
                    file_path=str(csv_path),
                )
            logger.info(
                "[%s] %s not found, skipped",
                contract.table_name,
                gtfs_file.file_name,
            )
            continue

        records = db.load_csv(csv_path, contract)
        logger.info("[%s] %d records", contract.table_name, records)
        logger.info("Success")
        results.append(TableResult(table_name=contract.table_name, records=records))
    return results


def group_trip_details(
    details: Iterable[StopTimeDetail],
) -> dict[str, list[StopTimeDetail]]:
    """Group stop-time details by trip.

    Returns:
        Mapping with trip_ids in ascending order, each list sorted by
        stop_sequence.
    """
    trips: defaultdict[str, list[StopTimeDetail]] = defaultdict(list)
    for detail in details:
        trips[detail.trip_id].append(detail)
    return {
        trip_id: sorted(trips[trip_id], key=attrgetter("stop_sequence"))
        for trip_id in sorted(trips)
    }


def derive_service_routes(
    details: Iterable[StopTimeDetail],
    generator: ServiceRouteGenerator,
) -> tuple[list[Trip2ServiceRoute], list[ServiceRoute]]:
    """Assign every trip to a service route.

    Trips are fed to the generator in ascending trip_id order, which
    makes the assigned ids deterministic.

    Returns:
        Tuple of (assignments sorted by trip_id, service routes sorted
        by service_route_id).

    Raises:
        EmptyTripError: Propagated from the generator.
        UnknownServiceRouteError: Propagated from the generator.
    """
    assignments: list[Trip2ServiceRoute] = []
    for trip_id, trip_details in group_trip_details(details).items():
        route = generator.generate(trip_details, trip_id=trip_id)
        assignments.append(
            Trip2ServiceRoute(
                trip_id=trip_id,
                service_route_id=route.service_route_id,
                service_route_direction_id=route.direction_id,
            )
        )
    service_routes = sorted(generator.all(), key=attrgetter("service_route_id"))
    return assignments, service_routes


def insert_service_routes_tables(
    db: GtfsDatabase,
    strategy: IdentifyStrategy,
    identities: list[ServiceRouteIdentity] | None = None,
) -> list[TableResult]:
    """Derive and store service routes and trip assignments.

    Both derived tables are cleared first. Nothing is written until
    every trip has been assigned.
    """
    generator = ServiceRouteGenerator(strategy, identities)
    assignments, service_routes = derive_service_routes(
        db.select_stop_time_details(), generator
    )

    assignments_table = TRIPS_TO_SERVICE_ROUTES_CONTRACT.table_name
    logger.info("[%s] %d records", assignments_table, len(assignments))
    db.clear_table(assignments_table)
    db.insert_trips_to_service_routes(assignments)
    logger.info("Success")

    routes_table = SERVICE_ROUTES_CONTRACT.table_name
    logger.info("[%s] %d records", routes_table, len(service_routes))
    db.clear_table(routes_table)
    db.insert_service_routes(service_routes)
    logger.info("Success")

    return [
        TableResult(assignments_table, len(assignments)),
        TableResult(routes_table, len(service_routes)),
    ]


def insert_nodes_tables(db: GtfsDatabase) -> TableResult:
    """Derive and store nodes from the loaded stops."""
    nodes = generate_nodes(db.select_stop_details())
    logger.info("[%s] %d records", NODES_CONTRACT.table_name, len(nodes))
    db.clear_table(NODES_CONTRACT.table_name)
    db.insert_nodes(nodes)
    logger.info("Success")
    return TableResult(NODES_CONTRACT.table_name, len(nodes))


# ---- Pipeline orchestration -------------------------------------------------


def run_create(
    source: str,
    database: Path,
    strategy: IdentifyStrategy = DEFAULT_STRATEGY,
    identify_path: Path | None = None,
    legacy_translations: bool = False,
) -> PipelineResult:
    """Build a database from a GTFS-JP feed.

    The identity table, when the strategy needs one, is parsed before
    the database is touched.

    Args:
        source: Feed directory, zip archive path, or zip URL.
        database: sqlite file to (re)create.
        strategy: Service route identification strategy.
        identify_path: Identity table CSV for IdentifyStrategy.IDENTITY_TABLE.
        legacy_translations: Read translations.txt in the v2 layout.

    Returns:
        PipelineResult with per-table counts; success=False on the first
        failing stage.
    """
    start = time.monotonic()
    stage = PipelineStage.IDENTITY_TABLE
    tables: list[TableResult] = []

    try:
        identities: list[ServiceRouteIdentity] | None = None
        if strategy is IdentifyStrategy.IDENTITY_TABLE:
            logger.info("Stage: %s", stage.value)
            if identify_path is None:
                raise MalformedIdentityTableError(None, ["No identity table given"])
            identities = load_identity_table(identify_path)

        stage = PipelineStage.PREPARE
        with tempfile.TemporaryDirectory(prefix="gtfs-jp-db-") as tmp:
            logger.info("Stage: %s", stage.value)
            feed_dir = prepare_feed(source, Path(tmp))

            with GtfsDatabase(database) as db:
                stage = PipelineStage.SCHEMA
                logger.info("Stage: %s", stage.value)
                drop_tables(db)
                create_tables(db)

                stage = PipelineStage.LOAD
                logger.info("Stage: %s", stage.value)
                tables.extend(insert_tables(db, feed_dir, legacy_translations))

                stage = PipelineStage.SERVICE_ROUTES
                logger.info("Stage: %s", stage.value)
                tables.extend(insert_service_routes_tables(db, strategy, identities))

                stage = PipelineStage.NODES
                logger.info("Stage: %s", stage.value)
                tables.append(insert_nodes_tables(db))
    except _PIPELINE_ERRORS as exc:
        elapsed = time.monotonic() - start
        logger.error("FAILED [%s] %s: %s", stage.value, _STAGE_CONTEXT[stage], exc)
        return PipelineResult(
            tables=tables,
            stage=stage,
            elapsed_seconds=round(elapsed, 3),
            success=False,
            error_message=f"{_STAGE_CONTEXT[stage]}: {exc}",
        )

    elapsed = time.monotonic() - start
    logger.info("SUCCESS in %.1fs", elapsed)
    return PipelineResult(
        tables=tables,
        stage=stage,
        elapsed_seconds=round(elapsed, 3),
        success=True,
    )


def run_get(
    target: str,
    database: Path,
    fmt: ExportFormat,
    stream: TextIO | None = None,
) -> int:
    """Export one table to a stream (stdout by default).

    Returns:
        Exit code: 0 on success, 1 if the database cannot be read.
    """
    out = stream if stream is not None else sys.stdout
    db = GtfsDatabase(database)
    try:
        frame = fetch_table(db, target)
    except (SourceError, LoadError) as exc:
        logger.error("FAILED [get %s]: %s", target, exc)
        return 1
    finally:
        db.close()
    write_frame(frame, fmt, out)
    return 0


# ---- CLI --------------------------------------------------------------------


def _build_arg_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the create and get commands."""
    parser = argparse.ArgumentParser(
        prog="gtfs-jp-db",
        description="Build and query a sqlite database from a GTFS-JP feed.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug-level logging.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    create = subparsers.add_parser(
        "create",
        help="Create a database from GTFS-JP files.",
    )
    create.add_argument(
        "gtfs_source",
        help="Directory of GTFS files, a GTFS zip archive, or its URL.",
    )
    create.add_argument(
        "-d",
        "--database",
        type=Path,
        default=Path(DEFAULT_DATABASE),
        help=f"Database file to create (default: {DEFAULT_DATABASE}).",
    )
    create.add_argument(
        "-l",
        "--legacy-translations",
        action="store_true",
        help="Read translations.txt in the GTFS-JP v2 layout.",
    )
    create.add_argument(
        "-S",
        "--service-route-identify-strategy",
        choices=strategy_names(),
        default=DEFAULT_STRATEGY.value,
        help=f"How trips are grouped into service routes "
        f"(default: {DEFAULT_STRATEGY.value}).",
    )
    create.add_argument(
        "-s",
        "--service-route-identify",
        type=Path,
        default=None,
        help="Identity table CSV; required by the identity_table strategy.",
    )

    get = subparsers.add_parser("get", help="Export a table from a database.")
    get.add_argument("target", choices=list(EXPORT_TARGETS), help="Table to export.")
    get.add_argument(
        "-d",
        "--database",
        type=Path,
        default=Path(DEFAULT_DATABASE),
        help=f"Database file to read (default: {DEFAULT_DATABASE}).",
    )
    get.add_argument(
        "-f",
        "--format",
        choices=[f.value for f in ExportFormat],
        default=ExportFormat.CSV.value,
        help="Output format (default: csv).",
    )
    return parser


def _print_summary(result: PipelineResult) -> None:
    """Print structured execution summary to stdout."""
    print(f"\n{'=' * 60}")
    print("Database Build Summary")
    print(f"{'=' * 60}")
    print(f"{'Table':<40} {'Records':>10}")
    print("-" * 60)

    for table in result.tables:
        print(f"{table.table_name:<40} {table.records:>10}")

    print("-" * 60)
    print(
        f"Stage: {result.stage.value}  "
        f"Elapsed: {result.elapsed_seconds:.1f}s  "
        f"Result: {'SUCCESS' if result.success else 'FAILED'}"
    )
    if result.error_message:
        print(f"Error: {result.error_message}")
    print(f"{'=' * 60}\n")


def main(argv: list[str] | None = None) -> int:
    """CLI entry point.

    Args:
        argv: Command-line arguments (defaults to sys.argv[1:]).

    Returns:
        Exit code: 0 on success, 1 on any failure.
    """
    parser = _build_arg_parser()
    args: argparse.Namespace = parser.parse_args(argv)

    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        stream=sys.stderr,
    )

    if args.command == "get":
        return run_get(args.target, args.database, ExportFormat(args.format))

    strategy = IdentifyStrategy(args.service_route_identify_strategy)
    identify_path: Path | None = args.service_route_identify
    if strategy is IdentifyStrategy.IDENTITY_TABLE and identify_path is None:
        parser.error(
            "--service-route-identify is required by the identity_table strategy"
        )
    if strategy is not IdentifyStrategy.IDENTITY_TABLE and identify_path is not None:
        logger.warning(
            "--service-route-identify is ignored by the %s strategy", strategy.value
        )
        identify_path = None

    result = run_create(
        source=args.gtfs_source,
        database=args.database,
        strategy=strategy,
        identify_path=identify_path,
        legacy_translations=args.legacy_translations,
    )

    _print_summary(result)
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
