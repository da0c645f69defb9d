"""
Media file utilities.

File-type policy for grouping, base-name extraction, formatting and logging
setup shared by the planner, the executor and the CLI.
"""

import logging
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable, List, Optional

logger = logging.getLogger(__name__)

# Operating-system artefacts that are never batched (compared lower-case)
IGNORED_FILES: FrozenSet[str] = frozenset(
    {
        "desktop.ini",
        ".ds_store",
        "thumbs.db",
        ".gitkeep",
        ".gitignore",
        "folder.jpg",
        "albumart.jpg",
    }
)

IMAGE_EXTENSIONS: FrozenSet[str] = frozenset(
    {
        "jpg",
        "jpeg",
        "png",
        "gif",
        "bmp",
        "tiff",
        "tif",
        "webp",
        "heic",
        "heif",
    }
)

RAW_EXTENSIONS: FrozenSet[str] = frozenset(
    {
        "raw",  # Generic
        "cr2",  # Canon
        "cr3",
        "nef",  # Nikon
        "nrw",
        "arw",  # Sony
        "srf",
        "dng",  # Adobe / Leica / phones
        "orf",  # Olympus
        "rw2",  # Panasonic
        "pef",  # Pentax
        "raf",  # Fujifilm
        "srw",  # Samsung
        "x3f",  # Sigma
    }
)

VIDEO_EXTENSIONS: FrozenSet[str] = frozenset(
    {"mp4", "mov", "avi", "mkv", "mts", "m2ts"}
)

ALLOWED_EXTENSIONS: FrozenSet[str] = IMAGE_EXTENSIONS | RAW_EXTENSIONS | VIDEO_EXTENSIONS


def split_base_name(file_name: str) -> str:
    """
    Return the file name without its final extension.

    A name without a dot, or whose only dot is the leading one
    (".hidden"), is its own base name.
    """
    last_dot = file_name.rfind(".")
    if last_dot <= 0:
        return file_name
    return file_name[:last_dot]


def get_extension(file_name: str) -> str:
    """Lower-case extension without the dot, or "" when there is none."""
    last_dot = file_name.rfind(".")
    if last_dot <= 0:
        return ""
    return file_name[last_dot + 1 :].lower()


@dataclass(frozen=True)
class FileTypePolicy:
    """Allow/deny policy deciding which files take part in grouping."""

    allowed_extensions: FrozenSet[str] = ALLOWED_EXTENSIONS
    ignored_files: FrozenSet[str] = IGNORED_FILES
    extra_allowed: FrozenSet[str] = field(default_factory=frozenset)

    def is_allowed(self, file_name: str) -> bool:
        """
        Check whether a file should be batched.

        Args:
            file_name: Bare file name (no directory part)

        Returns:
            True for known photo/RAW/video files that are not system files
        """
        lower_name = file_name.lower()
        if lower_name in self.ignored_files:
            return False

        extension = get_extension(lower_name)
        if not extension:
            return False

        return extension in self.allowed_extensions or extension in self.extra_allowed

    def filter(self, file_names: Iterable[str]) -> List[str]:
        return [name for name in file_names if self.is_allowed(name)]


DEFAULT_POLICY = FileTypePolicy()


def is_allowed_file(file_name: str) -> bool:
    """Check a file name against the default policy."""
    return DEFAULT_POLICY.is_allowed(file_name)


def format_bytes(size_bytes: Optional[int]) -> str:
    """
    Format bytes in human-readable format.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted string (e.g., "2.50 GB"), or "Unknown" for None
    """
    if size_bytes is None:
        return "Unknown"
    if size_bytes == 0:
        return "0 B"

    units = ["B", "KB", "MB", "GB", "TB", "PB"]
    unit_index = 0
    size = float(size_bytes)

    while size >= 1024.0 and unit_index < len(units) - 1:
        size /= 1024.0
        unit_index += 1

    return f"{size:.2f} {units[unit_index]}"


def setup_logging(verbose: bool = False, quiet: bool = False) -> None:
    """
    Configure logging for the application.

    Args:
        verbose: If True, set logging level to DEBUG
        quiet: If True, set logging level to WARNING
    """
    if quiet:
        level = logging.WARNING
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
