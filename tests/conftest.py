"""Shared pytest fixtures for loader, derivation and pipeline tests.

Generates GTFS-JP feeds programmatically to avoid committing data
files. CSV fixtures use csv.writer; encoding fixtures use explicit
byte encoding.

The sample feed has four top-level stops and one child platform:

    S1   渋谷 (station, ruby しぶや via record_id)
    S1_1 渋谷 (platform of S1)
    S2   新宿 (ruby しんじゅく via field_value)
    S3   池袋 (no ruby)
    S4   上野 (ruby うえの via record_id)

and five trips:

    T1  渋谷 > 新宿 > 池袋
    T2  池袋 > 新宿 > 渋谷   (reverse of T1)
    T3  渋谷 > 新宿 > 上野
    T4  上野 > 新宿 > 渋谷   (reverse of T3)
    T5  渋谷 > 上野          (express, same terminals as T3)
"""

from __future__ import annotations

import csv
import zipfile
from typing import TYPE_CHECKING

import pytest

from gtfsjpdb.load import StopTimeDetail

if TYPE_CHECKING:
    from pathlib import Path

# ---------------------------------------------------------------------------
# Sample GTFS-JP feed
# ---------------------------------------------------------------------------

AGENCY: tuple[list[str], list[list[str]]] = (
    ["agency_id", "agency_name", "agency_url", "agency_timezone", "agency_lang"],
    [
        [
            "8000020130001",
            "都営バス",
            "https://www.kotsu.metro.tokyo.jp/bus/",
            "Asia/Tokyo",
            "ja",
        ]
    ],
)

STOPS: tuple[list[str], list[list[str]]] = (
    ["stop_id", "stop_name", "stop_lat", "stop_lon", "location_type", "parent_station"],
    [
        ["S1", "渋谷", "35.658034", "139.701636", "1", ""],
        ["S1_1", "渋谷", "35.658100", "139.701700", "0", "S1"],
        ["S2", "新宿", "35.689592", "139.700413", "0", ""],
        ["S3", "池袋", "35.728926", "139.710380", "0", ""],
        ["S4", "上野", "35.713768", "139.777254", "0", ""],
    ],
)

ROUTES: tuple[list[str], list[list[str]]] = (
    ["route_id", "agency_id", "route_short_name", "route_long_name", "route_type"],
    [
        ["R1", "8000020130001", "都01", "渋谷池袋線", "3"],
        ["R2", "8000020130001", "都02", "渋谷上野線", "3"],
    ],
)

TRIPS: tuple[list[str], list[list[str]]] = (
    ["route_id", "service_id", "trip_id", "trip_headsign", "direction_id"],
    [
        ["R1", "weekday", "T1", "池袋", "0"],
        ["R1", "weekday", "T2", "渋谷", "1"],
        ["R2", "weekday", "T3", "上野", "0"],
        ["R2", "weekday", "T4", "渋谷", "1"],
        ["R2", "weekday", "T5", "上野", "0"],
    ],
)

# T2 rows are deliberately out of stop_sequence order.
STOP_TIMES: tuple[list[str], list[list[str]]] = (
    ["trip_id", "arrival_time", "departure_time", "stop_id", "stop_sequence"],
    [
        ["T1", "07:00:00", "07:00:00", "S1_1", "1"],
        ["T1", "07:10:00", "07:10:00", "S2", "2"],
        ["T1", "07:20:00", "07:20:00", "S3", "3"],
        ["T2", "08:20:00", "08:20:00", "S1_1", "30"],
        ["T2", "08:00:00", "08:00:00", "S3", "10"],
        ["T2", "08:10:00", "08:10:00", "S2", "20"],
        ["T3", "09:00:00", "09:00:00", "S1_1", "1"],
        ["T3", "09:10:00", "09:10:00", "S2", "2"],
        ["T3", "09:30:00", "09:30:00", "S4", "3"],
        ["T4", "10:00:00", "10:00:00", "S4", "1"],
        ["T4", "10:20:00", "10:20:00", "S2", "2"],
        ["T4", "10:30:00", "10:30:00", "S1_1", "3"],
        ["T5", "24:10:00", "24:10:00", "S1_1", "1"],
        ["T5", "24:35:00", "24:35:00", "S4", "2"],
    ],
)

CALENDAR: tuple[list[str], list[list[str]]] = (
    [
        "service_id",
        "monday",
        "tuesday",
        "wednesday",
        "thursday",
        "friday",
        "saturday",
        "sunday",
        "start_date",
        "end_date",
    ],
    [["weekday", "1", "1", "1", "1", "1", "0", "0", "20240401", "20250331"]],
)

FEED_INFO: tuple[list[str], list[list[str]]] = (
    ["feed_publisher_name", "feed_publisher_url", "feed_lang", "feed_version"],
    [["東京都交通局", "https://www.kotsu.metro.tokyo.jp/", "ja", "2024.04"]],
)

TRANSLATIONS: tuple[list[str], list[list[str]]] = (
    ["table_name", "field_name", "language", "translation", "record_id", "field_value"],
    [
        ["stops", "stop_name", "ja-Hrkt", "しぶや", "S1", ""],
        ["stops", "stop_name", "en", "Shibuya", "S1", ""],
        ["stops", "stop_name", "ja-Hrkt", "しんじゅく", "", "新宿"],
        ["stops", "stop_name", "ja-Hrkt", "うえの", "S4", ""],
    ],
)

LEGACY_TRANSLATIONS: tuple[list[str], list[list[str]]] = (
    ["trans_id", "lang", "translation"],
    [
        ["渋谷", "ja-Hrkt", "しぶや"],
        ["渋谷", "en", "Shibuya"],
        ["上野", "ja-Hrkt", "うえの"],
    ],
)

FEED_FILES: dict[str, tuple[list[str], list[list[str]]]] = {
    "agency.txt": AGENCY,
    "stops.txt": STOPS,
    "routes.txt": ROUTES,
    "trips.txt": TRIPS,
    "stop_times.txt": STOP_TIMES,
    "calendar.txt": CALENDAR,
    "feed_info.txt": FEED_INFO,
    "translations.txt": TRANSLATIONS,
}


def write_csv(
    path: Path,
    header: list[str],
    rows: list[list[str]],
    encoding: str = "utf-8",
) -> Path:
    """Write a CSV file with the given header and rows."""
    with path.open("w", newline="", encoding=encoding) as f:
        writer = csv.writer(f)
        writer.writerow(header)
        writer.writerows(rows)
    return path


def write_feed(
    feed_dir: Path,
    files: dict[str, tuple[list[str], list[list[str]]]] | None = None,
) -> Path:
    """Write a complete feed directory."""
    feed_dir.mkdir(parents=True, exist_ok=True)
    for name, (header, rows) in (files or FEED_FILES).items():
        write_csv(feed_dir / name, header, rows)
    return feed_dir


def make_trip(
    trip_id: str,
    stop_names: list[str],
    stop_ids: list[str] | None = None,
) -> list[StopTimeDetail]:
    """Build ordered stop-time details for one trip."""
    ids = stop_ids or [f"{trip_id}-{i}" for i in range(len(stop_names))]
    return [
        StopTimeDetail(
            trip_id=trip_id,
            stop_sequence=sequence,
            stop_id=stop_id,
            stop_name=name,
        )
        for sequence, (stop_id, name) in enumerate(
            zip(ids, stop_names, strict=True), start=1
        )
    ]


# ---------------------------------------------------------------------------
# Feed fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def feed_dir(tmp_path: Path) -> Path:
    """Create the sample GTFS-JP feed as a directory of UTF-8 files."""
    return write_feed(tmp_path / "feed")


@pytest.fixture()
def legacy_feed_dir(tmp_path: Path) -> Path:
    """Create the sample feed with a GTFS-JP v2 translations.txt."""
    files = dict(FEED_FILES)
    files["translations.txt"] = LEGACY_TRANSLATIONS
    return write_feed(tmp_path / "legacy_feed", files)


@pytest.fixture()
def feed_zip(tmp_path: Path, feed_dir: Path) -> Path:
    """Create a zip of the sample feed wrapped in a top-level folder."""
    zip_path = tmp_path / "feed.zip"
    with zipfile.ZipFile(zip_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for path in sorted(feed_dir.iterdir()):
            zf.write(path, f"GTFS-JP/{path.name}")
        zf.writestr("__MACOSX/GTFS-JP/._stops.txt", "metadata")
    return zip_path


@pytest.fixture()
def identity_csv(tmp_path: Path) -> Path:
    """Create an identity table covering every pattern of the sample feed."""
    return write_csv(
        tmp_path / "identity.csv",
        ["service_route_id", "direction_id", "service_route_name", "stop_pattern"],
        [
            ["10", "0", "渋谷 - 池袋", "渋谷|新宿|池袋"],
            ["10", "1", "渋谷 - 池袋", "池袋|新宿|渋谷"],
            ["20", "0", "渋谷 - 上野", "渋谷|新宿|上野"],
            ["20", "1", "渋谷 - 上野", "上野|新宿|渋谷"],
            ["30", "0", "渋谷 - 上野 (急行)", "渋谷|上野"],
        ],
    )


# ---------------------------------------------------------------------------
# Encoding fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def cp932_csv(tmp_path: Path) -> Path:
    """Create a stops file encoded in CP932 (Shift_JIS) with Japanese text."""
    csv_path = tmp_path / "stops_cp932.txt"
    lines = ["stop_id,stop_name,stop_desc"]
    names = ["渋谷駅前", "新宿駅西口", "池袋駅東口", "上野公園", "東京駅丸の内北口"]
    for i in range(40):
        name = names[i % len(names)]
        desc = f"{name}のバス停留所です。乗り場は駅前広場にあります。"
        lines.append(f"S{i},{name},{desc}")
    csv_path.write_bytes(("\n".join(lines) + "\n").encode("cp932"))
    return csv_path


@pytest.fixture()
def utf8_bom_csv(tmp_path: Path) -> Path:
    """Create a UTF-8 file with a BOM prefix."""
    csv_path = tmp_path / "utf8_bom.txt"
    bom = b"\xef\xbb\xbf"
    content = "stop_id,stop_name\nS1,Test\n"
    csv_path.write_bytes(bom + content.encode("utf-8"))
    return csv_path


# ---------------------------------------------------------------------------
# ZIP fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def corrupt_zip(tmp_path: Path) -> Path:
    """Create a corrupt ZIP file with invalid CRC for a member."""
    zip_path = tmp_path / "corrupt.zip"
    content = "a,b\n" + "1,2\n" * 500
    with zipfile.ZipFile(zip_path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr("stops.txt", content)
    raw = bytearray(zip_path.read_bytes())
    # Corrupt the compressed data region (after local file header, ~40 bytes in)
    for i in range(50, min(100, len(raw))):
        raw[i] ^= 0xFF
    zip_path.write_bytes(bytes(raw))
    return zip_path
