"""Feed acquisition over HTTP.

Streams a published GTFS-JP zip archive to disk and records its size
and SHA-256 digest.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Final

import httpx

logger: Final[logging.Logger] = logging.getLogger(__name__)

# Download tuning constants
_CHUNK_SIZE: Final[int] = 65_536
_TIMEOUT: Final[int] = 300
_RETRIES: Final[int] = 3


class DownloadError(Exception):
    """Raised when an HTTP request fails with a non-success status code."""

    def __init__(self, url: str, status_code: int, body: str) -> None:
        self.url: Final[str] = url
        self.status_code: Final[int] = status_code
        self.body: Final[str] = body
        super().__init__(f"HTTP {status_code} for {url}: {body[:200]}")


@dataclass(frozen=True, slots=True)
class DownloadResult:
    """Outcome of a single file download operation.

    Attributes:
        file_path: Path to the downloaded file on disk.
        url: Source URL the file was fetched from.
        http_status: HTTP response status code.
        byte_size: File size in bytes after download.
        download_timestamp: ISO-8601 timestamp of download completion.
        sha256_hash: Hex-encoded SHA-256 digest of the file contents.
    """

    file_path: Path
    url: str
    http_status: int
    byte_size: int
    download_timestamp: str
    sha256_hash: str


def is_url(source: str) -> bool:
    """Return True if the feed source names an HTTP(S) resource."""
    return source.startswith(("http://", "https://"))


def compute_sha256(file_path: Path) -> str:
    """Compute SHA-256 hex digest of a file using chunked reads."""
    hasher = hashlib.sha256()
    with file_path.open("rb") as fh:
        while chunk := fh.read(_CHUNK_SIZE):
            hasher.update(chunk)
    return hasher.hexdigest()


def _build_client() -> httpx.Client:
    """Construct an httpx client with transport-level retries."""
    transport = httpx.HTTPTransport(retries=_RETRIES)
    return httpx.Client(timeout=_TIMEOUT, transport=transport, follow_redirects=True)


def download_feed(
    url: str,
    dest: Path,
    client: httpx.Client | None = None,
) -> DownloadResult:
    """Stream a feed archive to a file on disk.

    Args:
        url: URL of the GTFS-JP zip archive.
        dest: Destination file path. Parent dirs are created.
        client: Optional preconfigured client; one is built if omitted.

    Returns:
        DownloadResult with size and digest.

    Raises:
        DownloadError: On HTTP 4xx/5xx responses.
        httpx.HTTPError: On transport failures after retries.
    """
    owns_client = client is None
    http = client if client is not None else _build_client()
    dest.parent.mkdir(parents=True, exist_ok=True)
    try:
        with http.stream("GET", url) as response:
            if response.status_code >= 400:
                body = response.read().decode("utf-8", errors="replace")
                raise DownloadError(url, response.status_code, body)
            total_bytes = 0
            with dest.open("wb") as fh:
                for chunk in response.iter_bytes(chunk_size=_CHUNK_SIZE):
                    fh.write(chunk)
                    total_bytes += len(chunk)
            status = response.status_code
    finally:
        if owns_client:
            http.close()

    digest = compute_sha256(dest)
    logger.info("Downloaded %s (%d bytes, sha256 %s)", url, total_bytes, digest[:12])
    return DownloadResult(
        file_path=dest,
        url=url,
        http_status=status,
        byte_size=total_bytes,
        download_timestamp=datetime.now(tz=UTC).isoformat(),
        sha256_hash=digest,
    )
