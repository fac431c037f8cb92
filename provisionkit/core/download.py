"""
Network download with progress tracking, checksum verification and atomic placement.

This module provides a single download attempt with:
- HTTP/HTTPS streaming downloads with TLS verification
- A socket timeout plus a total deadline for the whole transfer
- Checksum verification while streaming
- Writing to a unique temporary name and renaming into place only on success,
  so an interrupted transfer never leaves a file at the destination

Retries belong to the caller (the provisioning plan applies its backoff
policy to fetch steps).
"""

import hashlib
import logging
import os
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

import requests
from requests.exceptions import RequestException, Timeout

from provisionkit.core.exceptions import FetchError, FetchTimeout

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


@dataclass
class DownloadProgress:
    """Progress information for a download."""

    bytes_downloaded: int
    total_bytes: int
    percentage: float
    speed_bps: float  # bytes per second
    eta_seconds: float  # estimated time remaining

    def __str__(self) -> str:
        return format_progress(self)


class ChecksumError(FetchError):
    """Raised when the downloaded content does not match the expected hash."""

    def __init__(self, url: str, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(url, f"checksum mismatch: expected {expected}, got {actual}")


def download_file(
    url: str,
    destination: Path,
    expected_sha256: Optional[str] = None,
    progress_callback: Optional[Callable[[DownloadProgress], None]] = None,
    timeout: float = 30,
    deadline: Optional[float] = None,
    session: Optional[requests.Session] = None,
) -> Path:
    """
    Download ``url`` to ``destination`` atomically.

    Data is streamed into a uniquely named temporary file next to the
    destination and renamed over it only after the transfer (and checksum)
    completed, so concurrent downloads never collide and a failed one leaves
    nothing behind.

    Args:
        url: URL to download from
        destination: Local path to save file
        expected_sha256: Expected SHA256 hash (verified during download)
        progress_callback: Optional callback for progress updates
        timeout: Connect/read timeout in seconds
        deadline: Maximum total transfer time in seconds (None: unbounded)
        session: Optional requests session to use

    Returns:
        Path to downloaded file

    Raises:
        FetchError: On network failure or non-2xx response
        ChecksumError: If checksum doesn't match expected value
        FetchTimeout: If the timeout or deadline is exceeded
        ValueError: If URL or destination is invalid

    Example:
        >>> download_file(
        ...     "https://example.com/log4cpp-1.1.4.tar.gz",
        ...     Path("downloads/log4cpp-1.1.4.tar.gz"),
        ...     timeout=30,
        ...     deadline=600,
        ... )
    """
    if not url:
        raise ValueError("URL cannot be empty")

    if not destination:
        raise ValueError("Destination path cannot be empty")

    destination = Path(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)

    temp_fd, temp_name = tempfile.mkstemp(
        dir=destination.parent, prefix=f".{destination.name}.", suffix=".part"
    )
    os.close(temp_fd)
    temp_path = Path(temp_name)

    try:
        _download_with_progress(
            url=url,
            destination=temp_path,
            expected_sha256=expected_sha256,
            progress_callback=progress_callback,
            timeout=timeout,
            deadline=deadline,
            session=session,
        )
        temp_path.replace(destination)
    except Timeout as e:
        raise FetchTimeout(url, timeout) from e
    except RequestException as e:
        raise FetchError(url, e) from e
    finally:
        if temp_path.exists():
            temp_path.unlink()

    logger.info(f"Download complete: {destination}")
    return destination


def _download_with_progress(
    url: str,
    destination: Path,
    expected_sha256: Optional[str],
    progress_callback: Optional[Callable[[DownloadProgress], None]],
    timeout: float,
    deadline: Optional[float],
    session: Optional[requests.Session],
) -> None:
    """Stream ``url`` into ``destination`` (the temporary file)."""
    logger.info(f"Downloading from {url}")
    getter = session.get if session is not None else requests.get

    response = getter(url, stream=True, timeout=timeout, allow_redirects=True)
    with response:
        response.raise_for_status()

        content_length = response.headers.get("content-length")
        total_size = int(content_length) if content_length else 0
        # Decoded size differs from content-length for compressed transfers
        check_length = bool(total_size) and "content-encoding" not in response.headers

        hasher = hashlib.sha256() if expected_sha256 else None
        downloaded = 0
        start_time = time.monotonic()
        last_progress_time = start_time

        with open(destination, "wb") as f:
            for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                if not chunk:
                    continue

                f.write(chunk)
                downloaded += len(chunk)
                if hasher:
                    hasher.update(chunk)

                current_time = time.monotonic()
                elapsed = current_time - start_time
                if deadline is not None and elapsed > deadline:
                    raise FetchTimeout(url, deadline)

                # Report progress at most twice per second
                if progress_callback and (
                    current_time - last_progress_time >= 0.5 or downloaded == total_size
                ):
                    speed = downloaded / elapsed if elapsed > 0 else 0
                    remaining = total_size - downloaded if total_size > 0 else 0
                    progress_callback(
                        DownloadProgress(
                            bytes_downloaded=downloaded,
                            total_bytes=total_size if total_size > 0 else downloaded,
                            percentage=(downloaded / total_size * 100)
                            if total_size > 0
                            else 0,
                            speed_bps=speed,
                            eta_seconds=remaining / speed if speed > 0 else 0,
                        )
                    )
                    last_progress_time = current_time

    if check_length and downloaded < total_size:
        raise FetchError(url, f"truncated transfer ({downloaded} of {total_size} bytes)")

    if expected_sha256 and hasher:
        actual = hasher.hexdigest()
        if actual.lower() != expected_sha256.lower():
            raise ChecksumError(url, expected_sha256, actual)
        logger.debug("Checksum verified successfully")


def format_progress(progress: DownloadProgress) -> str:
    """
    Format progress for display.

    Example:
        >>> progress = DownloadProgress(52428800, 104857600, 50.0, 1048576, 50)
        >>> print(format_progress(progress))
        50.0/100.0 MB (50.0%) at 1.0 MB/s ETA: 50s
    """
    mb_downloaded = progress.bytes_downloaded / 1024 / 1024
    mb_total = progress.total_bytes / 1024 / 1024
    speed_mbps = progress.speed_bps / 1024 / 1024

    if progress.total_bytes > 0:
        return (
            f"{mb_downloaded:.1f}/{mb_total:.1f} MB "
            f"({progress.percentage:.1f}%) "
            f"at {speed_mbps:.1f} MB/s "
            f"ETA: {progress.eta_seconds:.0f}s"
        )
    else:
        return f"{mb_downloaded:.1f} MB at {speed_mbps:.1f} MB/s"
