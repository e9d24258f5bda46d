"""Service route identification for GTFS-JP trips.

A service route groups the trips that share one service pattern. GTFS
route_id is too coarse for this (it follows line branding) and trip_id
is too fine (one per departure). The pattern is computed from each
trip's ordered stop visits by a configurable IdentifyStrategy:

- stop_names: the ordered stop names along the trip.
- stop_ids: the ordered stop ids along the trip.
- first_and_last_stop_names: only the origin and destination names.
- identity_table: the stop names, looked up in a user-supplied table
  that pins service_route_id and direction_id across runs.

For the stop-based strategies a pattern and its exact reverse share one
service_route_id. The first pattern observed is direction 0 and its
reverse is direction 1. Ids are assigned sequentially from 1 in the
order new patterns are observed, so feeding trips sorted by trip_id
makes the ids a pure function of the feed.

The generator keeps one registry entry per distinct pattern and never
logs; reporting is left to the caller.
"""

from __future__ import annotations

import csv
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from gtfsjpdb.config import STOP_PATTERN_SEPARATOR, IdentifyStrategy
from gtfsjpdb.load import StopTimeDetail

PatternKey = tuple[str, ...]

_IDENTITY_COLUMNS: Final[tuple[str, ...]] = (
    "service_route_id",
    "direction_id",
    "service_route_name",
    "stop_pattern",
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class EmptyTripError(Exception):
    """Raised when a trip has no stop-time details.

    Attributes:
        trip_id: Offending trip, if the caller supplied it.
    """

    def __init__(self, trip_id: str = "") -> None:
        self.trip_id = trip_id
        super().__init__(f"Trip '{trip_id}' has no stop times")


class UnknownServiceRouteError(Exception):
    """Raised when the identity table has no row for a trip's pattern.

    Attributes:
        trip_id: Offending trip, if the caller supplied it.
        pattern: Stop pattern that could not be resolved.
    """

    def __init__(self, trip_id: str, pattern: PatternKey) -> None:
        self.trip_id = trip_id
        self.pattern = pattern
        super().__init__(
            f"No service route in identity table for trip '{trip_id}' "
            f"(stop_pattern: {STOP_PATTERN_SEPARATOR.join(pattern)})"
        )


class MalformedIdentityTableError(Exception):
    """Raised when an identity table CSV violates its schema.

    Attributes:
        file_path: Path to the identity table.
        problems: Human-readable description of every violation found.
    """

    def __init__(self, file_path: Path | None, problems: list[str]) -> None:
        self.file_path = file_path
        self.problems = problems
        detail = "; ".join(problems)
        super().__init__(f"Malformed identity table '{file_path}': {detail}")


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ServiceRoute:
    """A service route as seen from one direction of travel.

    Attributes:
        service_route_id: Identifier shared by both directions.
        direction_id: 0 for the canonical pattern, 1 for its reverse.
        service_route_name: "<origin> - <destination>" of direction 0.
        pattern: Pattern key that produced this record.
    """

    service_route_id: int
    direction_id: int
    service_route_name: str
    pattern: PatternKey


@dataclass(frozen=True, slots=True)
class Trip2ServiceRoute:
    """Assignment of one trip to a service route and direction."""

    trip_id: str
    service_route_id: int
    service_route_direction_id: int


@dataclass(frozen=True, slots=True)
class ServiceRouteIdentity:
    """One row of a user-supplied identity table."""

    service_route_id: int
    direction_id: int
    service_route_name: str
    stop_pattern: PatternKey


# ---------------------------------------------------------------------------
# Pattern keys
# ---------------------------------------------------------------------------


def _stop_names_key(details: Sequence[StopTimeDetail]) -> PatternKey:
    return tuple(d.stop_name for d in details)


def _stop_ids_key(details: Sequence[StopTimeDetail]) -> PatternKey:
    return tuple(d.stop_id for d in details)


def _first_and_last_key(details: Sequence[StopTimeDetail]) -> PatternKey:
    return (details[0].stop_name, details[-1].stop_name)


PatternKeyFunction = Callable[[Sequence[StopTimeDetail]], PatternKey]

_PATTERN_KEYS: Final[dict[IdentifyStrategy, PatternKeyFunction]] = {
    IdentifyStrategy.STOP_NAMES: _stop_names_key,
    IdentifyStrategy.STOP_IDS: _stop_ids_key,
    IdentifyStrategy.FIRST_AND_LAST_STOP_NAMES: _first_and_last_key,
    IdentifyStrategy.IDENTITY_TABLE: _stop_names_key,
}


def parse_stop_pattern(text: str) -> PatternKey:
    """Split an identity table stop_pattern cell into stop names."""
    return tuple(part.strip() for part in text.split(STOP_PATTERN_SEPARATOR))


# ---------------------------------------------------------------------------
# Identity table
# ---------------------------------------------------------------------------


def _index_identities(
    identities: Iterable[ServiceRouteIdentity],
) -> tuple[dict[PatternKey, ServiceRoute], list[str]]:
    """Index identity rows by pattern, reporting conflicting duplicates."""
    index: dict[PatternKey, ServiceRoute] = {}
    problems: list[str] = []
    for identity in identities:
        route = ServiceRoute(
            service_route_id=identity.service_route_id,
            direction_id=identity.direction_id,
            service_route_name=identity.service_route_name,
            pattern=identity.stop_pattern,
        )
        existing = index.get(identity.stop_pattern)
        if existing is not None and existing != route:
            problems.append(
                "stop_pattern "
                f"'{STOP_PATTERN_SEPARATOR.join(identity.stop_pattern)}' maps to "
                f"both ({existing.service_route_id}, {existing.direction_id}) and "
                f"({route.service_route_id}, {route.direction_id})"
            )
            continue
        index[identity.stop_pattern] = route
    return index, problems


def load_identity_table(csv_path: Path) -> list[ServiceRouteIdentity]:
    """Read and validate an identity table CSV.

    Expected header: service_route_id, direction_id, service_route_name,
    stop_pattern. stop_pattern holds stop names joined with "|".
    Every row is checked before anything is returned so the error lists
    all violations at once.

    Args:
        csv_path: UTF-8 encoded CSV file with a header row.

    Returns:
        Parsed identity rows in file order.

    Raises:
        MalformedIdentityTableError: On unreadable files, missing
            columns, invalid values, or conflicting patterns.
    """
    try:
        with csv_path.open("r", encoding="utf-8-sig", newline="") as fh:
            reader = csv.DictReader(fh)
            fieldnames = [name.strip() for name in reader.fieldnames or []]
            missing = [c for c in _IDENTITY_COLUMNS if c not in fieldnames]
            if missing:
                raise MalformedIdentityTableError(
                    csv_path, [f"Missing required columns: {missing}"]
                )
            reader.fieldnames = fieldnames
            rows = list(reader)
    except (OSError, UnicodeDecodeError, csv.Error) as exc:
        raise MalformedIdentityTableError(
            csv_path, [f"Cannot read file: {exc}"]
        ) from exc

    identities: list[ServiceRouteIdentity] = []
    problems: list[str] = []
    for line_number, row in enumerate(rows, start=2):
        row_problems: list[str] = []

        raw_id = (row.get("service_route_id") or "").strip()
        if not (raw_id.isascii() and raw_id.isdigit()):
            row_problems.append(
                f"line {line_number}: service_route_id '{raw_id}' "
                "is not a non-negative integer"
            )

        raw_direction = (row.get("direction_id") or "").strip()
        if raw_direction not in {"0", "1"}:
            row_problems.append(
                f"line {line_number}: direction_id '{raw_direction}' is not 0 or 1"
            )

        raw_pattern = (row.get("stop_pattern") or "").strip()
        pattern = parse_stop_pattern(raw_pattern) if raw_pattern else ()
        if not pattern or any(name == "" for name in pattern):
            row_problems.append(f"line {line_number}: stop_pattern is empty")

        if row_problems:
            problems.extend(row_problems)
            continue

        identities.append(
            ServiceRouteIdentity(
                service_route_id=int(raw_id),
                direction_id=int(raw_direction),
                service_route_name=(row.get("service_route_name") or "").strip(),
                stop_pattern=pattern,
            )
        )

    _, conflicts = _index_identities(identities)
    problems.extend(conflicts)
    if problems:
        raise MalformedIdentityTableError(csv_path, problems)
    return identities


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------


class ServiceRouteGenerator:
    """Assign trips to service routes for the duration of one run.

    Call generate() once per trip, in trip_id order, then read every
    distinct service route with all().
    """

    def __init__(
        self,
        strategy: IdentifyStrategy,
        identities: Iterable[ServiceRouteIdentity] | None = None,
    ) -> None:
        if strategy is IdentifyStrategy.IDENTITY_TABLE and identities is None:
            raise ValueError("identity_table strategy requires identity rows")
        self._strategy = strategy
        self._pattern_key = _PATTERN_KEYS[strategy]
        # Forward and reversed patterns both point at their ServiceRoute
        self._registry: dict[PatternKey, ServiceRoute] = {}
        self._routes: dict[int, ServiceRoute] = {}
        self._next_id = 1
        self._identities: dict[PatternKey, ServiceRoute] = {}
        if strategy is IdentifyStrategy.IDENTITY_TABLE and identities is not None:
            self._identities, problems = _index_identities(identities)
            if problems:
                raise MalformedIdentityTableError(None, problems)

    @property
    def strategy(self) -> IdentifyStrategy:
        """Strategy this generator was built with."""
        return self._strategy

    def generate(
        self,
        trip_details: Sequence[StopTimeDetail],
        *,
        trip_id: str = "",
    ) -> ServiceRoute:
        """Return the service route and direction of one trip.

        Args:
            trip_details: The trip's stop-time details in stop_sequence order.
            trip_id: Used only for error context; defaults to the trip_id
                of the first detail.

        Returns:
            ServiceRoute whose direction_id is this trip's direction.
            Patterns seen before resolve to their existing id.

        Raises:
            EmptyTripError: If trip_details is empty.
            UnknownServiceRouteError: If the identity table has no row
                for the trip's pattern.
        """
        if not trip_details:
            raise EmptyTripError(trip_id)
        trip_id = trip_id or trip_details[0].trip_id
        key = self._pattern_key(trip_details)

        if self._strategy is IdentifyStrategy.IDENTITY_TABLE:
            return self._resolve_identity(key, trip_id)

        route = self._registry.get(key)
        if route is None:
            route = self._register(key, trip_details)
        return route

    def all(self) -> list[ServiceRoute]:
        """Return every distinct service route generated so far.

        One record per service_route_id, in no particular order. For the
        identity table the direction 0 row wins when both were used.
        """
        return list(self._routes.values())

    def _register(
        self,
        key: PatternKey,
        trip_details: Sequence[StopTimeDetail],
    ) -> ServiceRoute:
        name = f"{trip_details[0].stop_name} - {trip_details[-1].stop_name}"
        forward = ServiceRoute(
            service_route_id=self._next_id,
            direction_id=0,
            service_route_name=name,
            pattern=key,
        )
        self._next_id += 1
        self._registry[key] = forward
        reverse_key = key[::-1]
        # A palindromic pattern stays direction 0
        self._registry.setdefault(
            reverse_key,
            ServiceRoute(
                service_route_id=forward.service_route_id,
                direction_id=1,
                service_route_name=name,
                pattern=reverse_key,
            ),
        )
        self._routes[forward.service_route_id] = forward
        return forward

    def _resolve_identity(self, key: PatternKey, trip_id: str) -> ServiceRoute:
        route = self._identities.get(key)
        if route is None:
            raise UnknownServiceRouteError(trip_id, key)
        seen = self._routes.get(route.service_route_id)
        if seen is None or route.direction_id < seen.direction_id:
            self._routes[route.service_route_id] = route
        return route
