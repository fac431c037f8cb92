"""
Archive fetching: download, verify, extract and place atomically.

:class:`ArchiveFetcher` turns an :class:`ArchiveSpec` into a populated local
directory. Work happens in a private temporary directory next to the
destination; extracted entries are renamed into place only after download,
checksum and extraction all succeeded, with the entry that proves completion
(``expected_entry``) renamed last. A completion stamp keyed by URL and
destination is written after the last rename, and archives without an
``expected_entry`` count as fetched only once their stamp exists. An
interrupted fetch therefore never leaves something that a rerun would mistake
for a completed one, and several archives may share one destination.

Example:
    >>> fetcher = ArchiveFetcher(timeout=30, deadline=600)
    >>> fetcher.fetch(ArchiveSpec(
    ...     url="https://github.com/nlohmann/json/releases/download/v3.11.3/include.zip",
    ...     destination=install_root / "src" / "nlohmann",
    ...     expected_entry="include/nlohmann/json.hpp",
    ... ))
"""

import hashlib
import logging
import os
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import List, Optional
from urllib.parse import unquote, urlparse

import requests

from provisionkit.core.download import DownloadProgress, download_file
from provisionkit.core.exceptions import ExtractError
from provisionkit.core.filesystem import (
    ArchiveExtractionError,
    atomic_write,
    extract_archive,
    is_archive,
    is_empty_directory,
    safe_rmtree,
    temporary_directory,
)
from provisionkit.probe import AllOf, PathProbe, ProbeResult, probe

logger = logging.getLogger(__name__)

DEFAULT_STAMP_DIR = ".provisionkit-fetched"


@dataclass(frozen=True)
class ArchiveSpec:
    """
    A remote archive (or single file) to place under a local directory.

    Attributes:
        url: Download URL
        destination: Directory receiving the extracted entries (or the file)
        expected_entry: Path, relative to destination, whose presence proves
            the fetch already happened
        sha256: Optional expected SHA256 of the downloaded file
        filename: Local file name, when the URL's last segment is not one
    """

    url: str
    destination: Path
    expected_entry: Optional[str] = None
    sha256: Optional[str] = None
    filename: Optional[str] = None

    @property
    def archive_name(self) -> str:
        if self.filename:
            return self.filename
        name = PurePosixPath(unquote(urlparse(self.url).path)).name
        if not name:
            raise ValueError(f"Cannot derive a file name from URL {self.url}; set filename")
        return name

    @property
    def is_archive(self) -> bool:
        return is_archive(self.archive_name)

    @property
    def marker(self) -> Optional[Path]:
        """Path whose presence means the fetch is complete."""
        if self.expected_entry:
            return Path(self.destination) / self.expected_entry
        if not self.is_archive:
            return Path(self.destination) / self.archive_name
        return None


    @property
    def stamp_name(self) -> str:
        key = f"{self.url}\n{Path(self.destination).as_posix()}"
        return hashlib.sha256(key.encode("utf-8")).hexdigest()


class ArchiveFetcher:
    """
    Downloads and extracts archives into place.

    Attributes:
        timeout: Socket connect/read timeout in seconds
        deadline: Maximum total transfer time per download
        session: Optional requests session shared across fetches
        stamp_dir: Directory holding completion stamps (default: a
            ``.provisionkit-fetched`` directory next to each destination)
    """

    def __init__(
        self,
        timeout: float = 30,
        deadline: Optional[float] = 600,
        session: Optional[requests.Session] = None,
        stamp_dir: Optional[Path] = None,
    ):
        self.timeout = timeout
        self.deadline = deadline
        self.session = session
        self.stamp_dir = Path(stamp_dir) if stamp_dir else None

    def stamp_path(self, spec: ArchiveSpec) -> Path:
        """Completion stamp of ``spec``."""
        stamp_dir = self.stamp_dir or Path(spec.destination).parent / DEFAULT_STAMP_DIR
        return stamp_dir / spec.stamp_name

    def is_fetched(self, spec: ArchiveSpec) -> bool:
        """Return True if the destination already holds the fetched content."""
        if spec.marker is not None:
            return probe(PathProbe(spec.marker)) is ProbeResult.PRESENT
        completed = AllOf([PathProbe(self.stamp_path(spec)), PathProbe(spec.destination)])
        return probe(completed) is ProbeResult.PRESENT

    def fetch(self, spec: ArchiveSpec) -> Path:
        """
        Fetch ``spec`` unless its destination is already populated.

        Returns:
            The destination directory

        Raises:
            FetchError: On network failure or non-2xx response
            FetchTimeout: If the transfer exceeds its timeout or deadline
            ExtractError: If extraction fails or yields no entries
        """
        destination = Path(spec.destination)
        if self.is_fetched(spec):
            logger.info(f"Already fetched: {destination}")
            return destination

        destination.parent.mkdir(parents=True, exist_ok=True)

        # Private work dir on the destination's filesystem keeps renames atomic
        with temporary_directory(prefix=".fetch-", parent=destination.parent) as work:
            downloaded = download_file(
                spec.url,
                work / spec.archive_name,
                expected_sha256=spec.sha256,
                progress_callback=self._log_progress,
                timeout=self.timeout,
                deadline=self.deadline,
                session=self.session,
            )

            if spec.is_archive:
                self._extract_into_place(spec, downloaded, work / "extracted")
            else:
                destination.mkdir(parents=True, exist_ok=True)
                os.replace(downloaded, destination / spec.archive_name)

        atomic_write(self.stamp_path(spec), f"{spec.url}\n")
        logger.info(f"Fetched {spec.url} -> {destination}")
        return destination

    def _extract_into_place(self, spec: ArchiveSpec, archive: Path, staging: Path) -> None:
        try:
            count = extract_archive(archive, staging)
        except ArchiveExtractionError as e:
            raise ExtractError(archive.name, e) from e

        if count == 0 or is_empty_directory(staging):
            raise ExtractError(archive.name, "archive contains no entries")

        if spec.expected_entry and not (staging / spec.expected_entry).exists():
            raise ExtractError(
                archive.name, f"expected entry '{spec.expected_entry}' not found in archive"
            )

        destination = Path(spec.destination)
        destination.mkdir(parents=True, exist_ok=True)
        for entry in self._placement_order(spec, staging):
            target = destination / entry.name
            # Leftovers of an earlier interrupted placement
            if target.is_dir() and not target.is_symlink():
                safe_rmtree(target)
            elif target.exists() or target.is_symlink():
                target.unlink()
            os.replace(entry, target)

    @staticmethod
    def _placement_order(spec: ArchiveSpec, staging: Path) -> List[Path]:
        """Top-level entries, with the one holding ``expected_entry`` last."""
        entries = sorted(staging.iterdir())
        if not spec.expected_entry:
            return entries
        marker_top = Path(spec.expected_entry).parts[0]
        return sorted(entries, key=lambda p: p.name == marker_top)

    @staticmethod
    def _log_progress(progress: DownloadProgress) -> None:
        logger.debug(f"  {progress}")
