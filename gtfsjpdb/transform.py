"""Feed preparation utilities run before the database load.

Provides two capabilities required between feed acquisition and the
sqlite load:

1. ZIP archive extraction of GTFS-JP *.txt members (zipfile).
2. Encoding detection and UTF-8 normalization (charset-normalizer).
   Many GTFS-JP feeds are published in Shift_JIS / CP932.

Source files are never modified; output always goes to a staging
directory.
"""

from __future__ import annotations

import logging
import shutil
import zipfile
import zlib
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from charset_normalizer import from_path

logger = logging.getLogger(__name__)

_ENCODING_CONFIDENCE_THRESHOLD: float = 0.7
_UTF8_BOM: bytes = b"\xef\xbb\xbf"
_TEXT_BOM: str = "\ufeff"

# charset-normalizer codec names that need no transcoding
_UTF8_CODECS: frozenset[str] = frozenset({"utf8", "ascii"})

_FEED_SUFFIX: str = ".txt"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class TransformError(Exception):
    """Raised when a feed preparation operation fails."""


class EncodingError(Exception):
    """Raised when encoding detection confidence is below threshold."""


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class EncodingResult:
    """How one feed file was brought to UTF-8.

    Attributes:
        input_path: Feed file as found in the source.
        output_path: UTF-8 copy (equal to input_path when normalized in place).
        detected_encoding: Codec name reported by charset-normalizer.
        had_bom: Whether a byte order mark was dropped.
    """

    input_path: Path
    output_path: Path
    detected_encoding: str
    had_bom: bool


@dataclass(frozen=True, slots=True)
class ExtractResult:
    """Outcome of a single file extraction from a ZIP archive.

    Attributes:
        zip_path: Source archive path.
        extracted_path: Output file path on disk.
        original_name: Filename as stored inside the archive.
        byte_size: Uncompressed size of the extracted file.
    """

    zip_path: Path
    extracted_path: Path
    original_name: str
    byte_size: int


# ---------------------------------------------------------------------------
# Encoding Detection and Normalization
# ---------------------------------------------------------------------------


def _detect_encoding(path: Path) -> str:
    """Return the codec charset-normalizer trusts most for a file.

    Raises:
        EncodingError: If no codec reaches the confidence threshold.
    """
    matches = from_path(path)
    best = matches.best()
    if best is None:
        raise EncodingError(f"Cannot detect encoding of '{path}'")
    # chaos is 0.0 for clean text
    if 1.0 - best.chaos < _ENCODING_CONFIDENCE_THRESHOLD:
        candidates = ", ".join(
            f"{m.encoding} (chaos {m.chaos:.2f})" for m in list(matches)[:3]
        )
        raise EncodingError(
            f"Ambiguous encoding for '{path}'; candidates: {candidates}"
        )
    return str(best.encoding)


def _is_utf8_compatible(encoding: str) -> bool:
    return encoding.lower().replace("-", "").replace("_", "") in _UTF8_CODECS


def normalize_encoding(
    input_path: Path,
    output_path: Path | None = None,
) -> EncodingResult:
    """Rewrite a feed file as UTF-8 without a byte order mark.

    GTFS-JP publishers frequently ship Shift_JIS (CP932) text; those
    files are decoded with the detected codec and re-encoded. UTF-8 and
    ASCII files are copied byte for byte, minus any BOM. A UTF-8 file
    normalized in place without a BOM is left untouched.

    Args:
        input_path: Feed file to read.
        output_path: Where to write the UTF-8 copy; defaults to input_path.

    Returns:
        EncodingResult describing the conversion.

    Raises:
        EncodingError: If the encoding cannot be determined confidently.
        FileNotFoundError: If input_path does not exist.
    """
    target = output_path if output_path is not None else input_path
    encoding = _detect_encoding(input_path)
    raw = input_path.read_bytes()

    if _is_utf8_compatible(encoding):
        had_bom = raw.startswith(_UTF8_BOM)
        if not had_bom and target == input_path:
            return EncodingResult(input_path, target, encoding, had_bom=False)
        payload = raw[len(_UTF8_BOM) :] if had_bom else raw
    else:
        # The codec consumes its own BOM (e.g. utf_16); drop any that survives
        text = raw.decode(encoding)
        had_bom = text.startswith(_TEXT_BOM)
        payload = text.removeprefix(_TEXT_BOM).encode("utf-8")

    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(payload)
    logger.info(
        "Normalized %s: %s -> UTF-8%s",
        input_path.name,
        encoding,
        " (BOM removed)" if had_bom else "",
    )
    return EncodingResult(input_path, target, encoding, had_bom=had_bom)


# ---------------------------------------------------------------------------
# ZIP Archive Extraction
# ---------------------------------------------------------------------------


def extract_zip(
    zip_path: Path,
    output_dir: Path,
) -> list[ExtractResult]:
    """Extract GTFS *.txt members from a ZIP archive.

    Strips internal subdirectory prefixes to produce flat output, since
    some publishers wrap the feed in a top-level folder.

    Args:
        zip_path: Path to the source ZIP archive.
        output_dir: Directory to write extracted files.

    Returns:
        List of ExtractResult, one per extracted member.

    Raises:
        TransformError: If the file is not a ZIP archive or is corrupt.
        FileNotFoundError: If zip_path does not exist.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    try:
        zf = zipfile.ZipFile(zip_path, "r")
    except zipfile.BadZipFile as exc:
        raise TransformError(f"'{zip_path}' is not a valid ZIP archive: {exc}") from exc

    results: list[ExtractResult] = []
    with zf:
        try:
            corrupt_member = zf.testzip()
        except (zipfile.BadZipFile, zlib.error, OSError) as exc:
            raise TransformError(f"Corrupt ZIP archive '{zip_path}': {exc}") from exc
        if corrupt_member is not None:
            raise TransformError(
                f"Corrupt ZIP archive '{zip_path}': bad member '{corrupt_member}'"
            )

        for info in _discover_feed_members(zf):
            flat_name = PurePosixPath(info.filename).name
            target = output_dir / flat_name

            with zf.open(info.filename) as src, target.open("wb") as dst:
                shutil.copyfileobj(src, dst)

            logger.debug(
                "Extracted %s -> %s (%d bytes)",
                info.filename,
                target.name,
                info.file_size,
            )
            results.append(
                ExtractResult(
                    zip_path=zip_path,
                    extracted_path=target,
                    original_name=info.filename,
                    byte_size=info.file_size,
                )
            )

    logger.info("Extracted %d feed files from %s", len(results), zip_path.name)
    return results


def _discover_feed_members(
    zf: zipfile.ZipFile,
) -> list[zipfile.ZipInfo]:
    """Filter ZIP members to *.txt entries, excluding macOS metadata."""
    return [
        info
        for info in zf.infolist()
        if info.filename.lower().endswith(_FEED_SUFFIX)
        and "__MACOSX" not in info.filename
        and not info.is_dir()
    ]


# ---------------------------------------------------------------------------
# Feed staging
# ---------------------------------------------------------------------------


def stage_feed_directory(
    source_dir: Path,
    staging_dir: Path,
) -> list[EncodingResult]:
    """Copy every *.txt file of a feed directory into staging as UTF-8.

    Args:
        source_dir: Directory holding the GTFS-JP files.
        staging_dir: Destination directory; created if missing.

    Returns:
        List of EncodingResult, one per staged file.

    Raises:
        TransformError: If source_dir is not a directory.
        EncodingError: If a file's encoding cannot be detected.
    """
    if not source_dir.is_dir():
        raise TransformError(f"'{source_dir}' is not a directory")
    staging_dir.mkdir(parents=True, exist_ok=True)
    return [
        normalize_encoding(path, staging_dir / path.name)
        for path in sorted(source_dir.glob(f"*{_FEED_SUFFIX}"))
    ]


def normalize_directory(feed_dir: Path) -> list[EncodingResult]:
    """Normalize every *.txt file of a directory to UTF-8 in place."""
    return [
        normalize_encoding(path)
        for path in sorted(feed_dir.glob(f"*{_FEED_SUFFIX}"))
    ]
