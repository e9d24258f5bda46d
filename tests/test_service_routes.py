"""Tests for service route identification (gtfsjpdb/service_routes.py).

Exercises the generator directly with hand-built stop-time details and
the identity table loader against CSV files written to tmp_path.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from gtfsjpdb.config import IdentifyStrategy
from gtfsjpdb.service_routes import (
    EmptyTripError,
    MalformedIdentityTableError,
    ServiceRoute,
    ServiceRouteGenerator,
    ServiceRouteIdentity,
    UnknownServiceRouteError,
    load_identity_table,
    parse_stop_pattern,
)
from tests.conftest import make_trip, write_csv

_IDENTITY_HEADER: list[str] = [
    "service_route_id",
    "direction_id",
    "service_route_name",
    "stop_pattern",
]


def _identity(
    route_id: int,
    direction: int,
    pattern: str,
    name: str = "",
) -> ServiceRouteIdentity:
    return ServiceRouteIdentity(
        service_route_id=route_id,
        direction_id=direction,
        service_route_name=name or f"route {route_id}",
        stop_pattern=parse_stop_pattern(pattern),
    )


# ---- Stop-based strategies -------------------------------------------------


class TestStopNamesStrategy:
    """Tests for grouping trips by their ordered stop names."""

    def test_reverse_pattern_shares_id(self) -> None:
        """A trip and its exact reverse share an id, directions 0 and 1."""
        gen = ServiceRouteGenerator(IdentifyStrategy.STOP_NAMES)

        outbound = gen.generate(make_trip("T1", ["A", "B", "C"]))
        inbound = gen.generate(make_trip("T2", ["C", "B", "A"]))

        assert (outbound.service_route_id, outbound.direction_id) == (1, 0)
        assert (inbound.service_route_id, inbound.direction_id) == (1, 1)
        assert outbound.service_route_name == "A - C"
        assert inbound.service_route_name == "A - C"

    def test_all_returns_direction_zero_record(self) -> None:
        """all() lists one direction-0 record per service route."""
        gen = ServiceRouteGenerator(IdentifyStrategy.STOP_NAMES)
        gen.generate(make_trip("T1", ["A", "B", "C"]))
        gen.generate(make_trip("T2", ["C", "B", "A"]))

        routes = gen.all()

        assert len(routes) == 1
        assert routes[0].service_route_id == 1
        assert routes[0].direction_id == 0
        assert routes[0].service_route_name == "A - C"

    def test_branch_gets_new_id(self) -> None:
        """A pattern that is neither seen nor a reverse gets the next id."""
        gen = ServiceRouteGenerator(IdentifyStrategy.STOP_NAMES)

        first = gen.generate(make_trip("T1", ["A", "B", "C"]))
        branch = gen.generate(make_trip("T2", ["A", "B", "D"]))

        assert first.service_route_id == 1
        assert (branch.service_route_id, branch.direction_id) == (2, 0)
        assert branch.service_route_name == "A - D"
        assert sorted(r.service_route_id for r in gen.all()) == [1, 2]

    def test_reverse_of_branch_joins_branch(self) -> None:
        """[A,B,C], [A,B,D], [D,B,A] yield routes 1 and 2, the last reversed."""
        gen = ServiceRouteGenerator(IdentifyStrategy.STOP_NAMES)

        results = [
            gen.generate(make_trip(trip_id, names))
            for trip_id, names in (
                ("t1", ["A", "B", "C"]),
                ("t2", ["A", "B", "D"]),
                ("t3", ["D", "B", "A"]),
            )
        ]

        assert [(r.service_route_id, r.direction_id) for r in results] == [
            (1, 0),
            (2, 0),
            (2, 1),
        ]
        assert sorted(
            (r.service_route_id, r.direction_id, r.service_route_name)
            for r in gen.all()
        ) == [(1, 0, "A - C"), (2, 0, "A - D")]

    def test_repeated_pattern_resolves_to_same_route(self) -> None:
        """Generating the same pattern twice does not allocate a new id."""
        gen = ServiceRouteGenerator(IdentifyStrategy.STOP_NAMES)

        first = gen.generate(make_trip("T1", ["A", "B", "C"]))
        second = gen.generate(make_trip("T2", ["A", "B", "C"]))

        assert first == second
        assert len(gen.all()) == 1

    def test_palindromic_pattern_stays_direction_zero(self) -> None:
        """A loop reading the same both ways never becomes direction 1."""
        gen = ServiceRouteGenerator(IdentifyStrategy.STOP_NAMES)

        first = gen.generate(make_trip("T1", ["A", "B", "A"]))
        again = gen.generate(make_trip("T2", ["A", "B", "A"]))

        assert first.direction_id == 0
        assert again.direction_id == 0

    def test_ids_are_dense_from_one(self) -> None:
        """Ids form 1..N in order of first observation."""
        gen = ServiceRouteGenerator(IdentifyStrategy.STOP_NAMES)
        patterns = [["A", "B"], ["B", "A"], ["A", "C"], ["C", "D"], ["D", "C"]]
        for i, names in enumerate(patterns):
            gen.generate(make_trip(f"T{i}", names))

        assert sorted(r.service_route_id for r in gen.all()) == [1, 2, 3]

    def test_direction_symmetry(self) -> None:
        """Whenever (id, 1) is assigned, (id, 0) was assigned too."""
        gen = ServiceRouteGenerator(IdentifyStrategy.STOP_NAMES)
        trips = [
            ["A", "B", "C"],
            ["C", "B", "A"],
            ["X", "Y"],
            ["Y", "X"],
            ["A", "B"],
        ]
        assigned = {
            (r.service_route_id, r.direction_id)
            for r in (
                gen.generate(make_trip(f"T{i}", names))
                for i, names in enumerate(trips)
            )
        }

        for route_id, direction in assigned:
            if direction == 1:
                assert (route_id, 0) in assigned

    def test_single_stop_trip(self) -> None:
        """A one-stop trip is its own reverse and is named after that stop."""
        gen = ServiceRouteGenerator(IdentifyStrategy.STOP_NAMES)

        route = gen.generate(make_trip("T1", ["A"]))

        assert route == ServiceRoute(1, 0, "A - A", ("A",))

    def test_empty_trip_raises(self) -> None:
        """An empty detail list is rejected with the trip id in context."""
        gen = ServiceRouteGenerator(IdentifyStrategy.STOP_NAMES)

        with pytest.raises(EmptyTripError, match="T9") as exc_info:
            gen.generate([], trip_id="T9")

        assert exc_info.value.trip_id == "T9"
        assert gen.all() == []


class TestStopIdsStrategy:
    """Tests for grouping trips by their ordered stop ids."""

    def test_same_names_different_ids_are_distinct(self) -> None:
        """Two patterns with equal names but different ids split apart."""
        gen = ServiceRouteGenerator(IdentifyStrategy.STOP_IDS)

        first = gen.generate(make_trip("T1", ["A", "B"], ["s1", "s2"]))
        second = gen.generate(make_trip("T2", ["A", "B"], ["s1", "s3"]))

        assert first.service_route_id == 1
        assert second.service_route_id == 2

    def test_reverse_by_ids(self) -> None:
        """The reverse of an id sequence is direction 1."""
        gen = ServiceRouteGenerator(IdentifyStrategy.STOP_IDS)

        gen.generate(make_trip("T1", ["A", "B"], ["s1", "s2"]))
        reverse = gen.generate(make_trip("T2", ["B", "A"], ["s2", "s1"]))

        assert (reverse.service_route_id, reverse.direction_id) == (1, 1)


class TestFirstAndLastStrategy:
    """Tests for grouping trips by origin and destination only."""

    def test_intermediate_stops_are_ignored(self) -> None:
        """Trips with equal terminals share a route regardless of the middle."""
        gen = ServiceRouteGenerator(IdentifyStrategy.FIRST_AND_LAST_STOP_NAMES)

        local = gen.generate(make_trip("T1", ["A", "B", "C", "D"]))
        express = gen.generate(make_trip("T2", ["A", "D"]))
        reverse = gen.generate(make_trip("T3", ["D", "X", "A"]))

        assert local.service_route_id == express.service_route_id == 1
        assert express.direction_id == 0
        assert (reverse.service_route_id, reverse.direction_id) == (1, 1)
        assert gen.all()[0].service_route_name == "A - D"


# ---- Identity table strategy -----------------------------------------------


class TestIdentityTableStrategy:
    """Tests for resolving trips through a user-supplied identity table."""

    def test_requires_identities(self) -> None:
        """Constructing without identity rows is a programming error."""
        with pytest.raises(ValueError, match="identity"):
            ServiceRouteGenerator(IdentifyStrategy.IDENTITY_TABLE)

    def test_assigns_ids_from_table(self) -> None:
        """Ids and directions come from the table, not from observation order."""
        gen = ServiceRouteGenerator(
            IdentifyStrategy.IDENTITY_TABLE,
            [
                _identity(7, 0, "A|B|C", "A - C"),
                _identity(7, 1, "C|B|A", "A - C"),
            ],
        )

        inbound = gen.generate(make_trip("T1", ["C", "B", "A"]))
        outbound = gen.generate(make_trip("T2", ["A", "B", "C"]))

        assert (inbound.service_route_id, inbound.direction_id) == (7, 1)
        assert (outbound.service_route_id, outbound.direction_id) == (7, 0)

    def test_all_prefers_direction_zero(self) -> None:
        """all() reports the direction-0 row once both were used."""
        gen = ServiceRouteGenerator(
            IdentifyStrategy.IDENTITY_TABLE,
            [
                _identity(7, 0, "A|B|C", "outbound"),
                _identity(7, 1, "C|B|A", "inbound"),
            ],
        )
        gen.generate(make_trip("T1", ["C", "B", "A"]))
        assert [r.direction_id for r in gen.all()] == [1]

        gen.generate(make_trip("T2", ["A", "B", "C"]))

        routes = gen.all()
        assert len(routes) == 1
        assert routes[0].direction_id == 0
        assert routes[0].service_route_name == "outbound"

    def test_unlisted_pattern_raises(self) -> None:
        """A pattern absent from the table fails with trip and pattern."""
        gen = ServiceRouteGenerator(
            IdentifyStrategy.IDENTITY_TABLE, [_identity(1, 0, "A|B|C")]
        )

        with pytest.raises(UnknownServiceRouteError) as exc_info:
            gen.generate(make_trip("T2", ["C", "B", "A"]))

        assert exc_info.value.trip_id == "T2"
        assert exc_info.value.pattern == ("C", "B", "A")
        assert "C|B|A" in str(exc_info.value)

    def test_reverse_is_not_inferred(self) -> None:
        """Only listed patterns resolve; reverses are not derived."""
        gen = ServiceRouteGenerator(
            IdentifyStrategy.IDENTITY_TABLE, [_identity(1, 0, "A|B")]
        )
        gen.generate(make_trip("T1", ["A", "B"]))

        with pytest.raises(UnknownServiceRouteError):
            gen.generate(make_trip("T2", ["B", "A"]))

    def test_conflicting_rows_rejected(self) -> None:
        """Rows mapping one pattern to two routes are rejected up front."""
        with pytest.raises(MalformedIdentityTableError, match="maps to both"):
            ServiceRouteGenerator(
                IdentifyStrategy.IDENTITY_TABLE,
                [_identity(1, 0, "A|B"), _identity(2, 0, "A|B")],
            )


# ---- Identity table loader -------------------------------------------------


class TestLoadIdentityTable:
    """Tests for reading and validating identity table CSV files."""

    def test_loads_rows_in_file_order(self, identity_csv: Path) -> None:
        """Every row is parsed with its pattern split on the separator."""
        identities = load_identity_table(identity_csv)

        assert len(identities) == 5
        assert identities[0] == ServiceRouteIdentity(
            service_route_id=10,
            direction_id=0,
            service_route_name="渋谷 - 池袋",
            stop_pattern=("渋谷", "新宿", "池袋"),
        )
        assert identities[-1].stop_pattern == ("渋谷", "上野")

    def test_accepts_utf8_bom(self, tmp_path: Path) -> None:
        """A leading BOM does not corrupt the first header name."""
        csv_path = tmp_path / "identity.csv"
        csv_path.write_bytes(
            b"\xef\xbb\xbf"
            + "service_route_id,direction_id,service_route_name,stop_pattern\n"
            "1,0,A - B,A|B\n".encode()
        )

        identities = load_identity_table(csv_path)

        assert identities[0].service_route_id == 1

    def test_missing_column(self, tmp_path: Path) -> None:
        """A header without stop_pattern is rejected."""
        csv_path = write_csv(
            tmp_path / "identity.csv",
            ["service_route_id", "direction_id", "service_route_name"],
            [["1", "0", "A - B"]],
        )

        with pytest.raises(MalformedIdentityTableError, match="stop_pattern"):
            load_identity_table(csv_path)

    def test_reports_every_bad_row(self, tmp_path: Path) -> None:
        """All invalid values are collected into one error."""
        csv_path = write_csv(
            tmp_path / "identity.csv",
            _IDENTITY_HEADER,
            [
                ["x", "0", "bad id", "A|B"],
                ["2", "2", "bad direction", "A|C"],
                ["3", "0", "empty pattern", ""],
                ["-1", "1", "negative id", "A|D"],
                ["²", "0", "superscript digit", "A|F"],
                ["4", "0", "good", "A|E"],
            ],
        )

        with pytest.raises(MalformedIdentityTableError) as exc_info:
            load_identity_table(csv_path)

        problems = exc_info.value.problems
        assert len(problems) == 5
        assert any("line 2" in p and "service_route_id" in p for p in problems)
        assert any("line 3" in p and "direction_id" in p for p in problems)
        assert any("line 4" in p and "stop_pattern" in p for p in problems)
        assert any("line 5" in p for p in problems)
        assert any("line 6" in p and "²" in p for p in problems)
        assert exc_info.value.file_path == csv_path

    def test_conflicting_duplicate_patterns(self, tmp_path: Path) -> None:
        """One pattern mapped to two (id, direction) pairs is an error."""
        csv_path = write_csv(
            tmp_path / "identity.csv",
            _IDENTITY_HEADER,
            [["1", "0", "A - B", "A|B"], ["1", "1", "A - B", "A|B"]],
        )

        with pytest.raises(MalformedIdentityTableError, match="maps to both"):
            load_identity_table(csv_path)

    def test_identical_duplicate_rows_allowed(self, tmp_path: Path) -> None:
        """Exact duplicate rows are harmless."""
        csv_path = write_csv(
            tmp_path / "identity.csv",
            _IDENTITY_HEADER,
            [["1", "0", "A - B", "A|B"], ["1", "0", "A - B", "A|B"]],
        )

        assert len(load_identity_table(csv_path)) == 2

    def test_missing_file(self, tmp_path: Path) -> None:
        """An unreadable path raises MalformedIdentityTableError."""
        with pytest.raises(MalformedIdentityTableError, match="Cannot read"):
            load_identity_table(tmp_path / "missing.csv")


class TestParseStopPattern:
    """Tests for splitting stop_pattern cells."""

    def test_strips_whitespace(self) -> None:
        assert parse_stop_pattern(" 渋谷 | 新宿 |池袋") == ("渋谷", "新宿", "池袋")

    def test_single_stop(self) -> None:
        assert parse_stop_pattern("渋谷") == ("渋谷",)
