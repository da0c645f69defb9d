"""
Capture-date providers used as sort keys for date-based ordering.

Two sources are supported:
- EXIF DateTimeOriginal (via ExifTool), most reliable
- File system timestamps, used when EXIF is missing or unreadable
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Sequence

import arrow
import exiftool
from exiftool.exceptions import ExifToolException

logger = logging.getLogger(__name__)

# Date formats for parsing EXIF data
EXIF_DATE_FORMATS = [
    "YYYY:MM:DD HH:mm:ssZZ",
    "YYYY:MM:DD HH:mm:ss",
    "YYYY-MM-DD HH:mm:ss",
    "YYYY:MM:DD",
    "YYYY-MM-DD",
]

EXIF_DATE_TAGS = ["EXIF:DateTimeOriginal", "QuickTime:CreateDate"]


class CaptureDateProvider(Protocol):
    """Supplies a per-file timestamp (seconds since the epoch)."""

    def get_timestamps(
        self, folder: Path, file_names: Sequence[str]
    ) -> Dict[str, float]:
        ...


def earliest_filesystem_time(file_path: Path) -> float:
    """
    Best guess of when a file's content was first created.

    Copying can reset the creation time while preserving the modification
    time, so the earlier of the two is taken.

    Args:
        file_path: Path to the file

    Returns:
        Timestamp in seconds, or 0.0 if the file cannot be stat'd
    """
    try:
        stats = os.stat(file_path)
    except OSError as e:
        logger.warning(f"Failed to stat {file_path}: {e}")
        return 0.0

    created = getattr(stats, "st_birthtime", None) or stats.st_ctime
    candidates = [t for t in (created, stats.st_mtime) if t]
    return min(candidates) if candidates else 0.0


class FilesystemDateProvider:
    """Timestamps from stat(), gathered with bounded parallelism."""

    def __init__(self, concurrency: int = 50):
        self.concurrency = concurrency

    def get_timestamps(
        self, folder: Path, file_names: Sequence[str]
    ) -> Dict[str, float]:
        if not file_names:
            return {}

        folder = Path(folder)
        with ThreadPoolExecutor(max_workers=min(self.concurrency, len(file_names))) as pool:
            times = pool.map(
                lambda name: earliest_filesystem_time(folder / name), file_names
            )
            return dict(zip(file_names, times))


def parse_exif_date(value: str) -> Optional[float]:
    """Parse an EXIF date string into a timestamp, or None if unparseable."""
    try:
        parsed = arrow.get(value, EXIF_DATE_FORMATS, normalize_whitespace=True)
    except (arrow.ParserError, ValueError, TypeError):
        logger.debug(f"Could not parse EXIF date: {value}")
        return None
    return parsed.timestamp()


class ExifDateProvider:
    """
    Timestamps from EXIF DateTimeOriginal, falling back to the file system.

    Results are cached per folder and file list so a preview followed by an
    execute does not read every header twice.
    """

    def __init__(
        self,
        fallback: Optional[CaptureDateProvider] = None,
        chunk_size: int = 200,
    ):
        self.fallback = fallback or FilesystemDateProvider()
        self.chunk_size = chunk_size
        self._cache_key: Optional[tuple] = None
        self._cache: Dict[str, float] = {}

    def clear_cache(self) -> None:
        self._cache_key = None
        self._cache = {}

    def _read_exif(self, folder: Path, file_names: List[str]) -> Dict[str, float]:
        dates: Dict[str, float] = {}
        try:
            with exiftool.ExifToolHelper() as helper:
                for start in range(0, len(file_names), self.chunk_size):
                    chunk = file_names[start : start + self.chunk_size]
                    paths = [str(folder / name) for name in chunk]
                    try:
                        metadata_list = helper.get_tags(paths, tags=EXIF_DATE_TAGS)
                    except ExifToolException as e:
                        logger.debug(f"ExifTool failed on a chunk: {e}")
                        continue

                    for name, metadata in zip(chunk, metadata_list):
                        for tag in EXIF_DATE_TAGS:
                            value = metadata.get(tag)
                            if isinstance(value, str):
                                timestamp = parse_exif_date(value)
                                if timestamp is not None:
                                    dates[name] = timestamp
                                    break
        except (FileNotFoundError, ExifToolException) as e:
            logger.warning(f"ExifTool unavailable, using file system dates: {e}")
        return dates

    def get_timestamps(
        self, folder: Path, file_names: Sequence[str]
    ) -> Dict[str, float]:
        folder = Path(folder)
        names = list(file_names)
        cache_key = (str(folder), tuple(names))
        if cache_key == self._cache_key:
            logger.debug(f"EXIF cache hit for {len(names)} files")
            return dict(self._cache)

        logger.info(f"Extracting capture dates for {len(names)} files...")
        dates = self._read_exif(folder, names)

        missing = [name for name in names if name not in dates]
        if missing:
            dates.update(self.fallback.get_timestamps(folder, missing))

        self._cache_key = cache_key
        self._cache = dict(dates)
        return dates
