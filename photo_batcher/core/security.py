"""
Path allow-listing and input validation.

Only folders that were explicitly registered (picked by the user) may be
planned, executed or resumed. Paths are compared after resolving symlinks
so a link cannot escape a registered folder.
"""

import logging
import os
import re
import sys
from pathlib import Path
from threading import Lock
from typing import Dict, List, Optional, Set, Union

from .errors import AccessError, ValidationError

logger = logging.getLogger(__name__)

_CASE_INSENSITIVE = sys.platform == "win32"

# Never registrable, even when asked to
BLOCKED_PATHS: List[str] = [
    os.path.normpath(p)
    for p in (
        os.environ.get("SYSTEMROOT"),
        os.environ.get("PROGRAMFILES"),
        os.environ.get("PROGRAMFILES(X86)"),
        "/etc",
        "/usr",
        "/bin",
        "/sbin",
        "/var",
        "/boot",
        "/sys",
        "/proc",
    )
    if p
]

FORBIDDEN_PREFIX_CHARS = re.compile(r'[\\/:*?"<>|]')

PathLike = Union[str, Path]


def _normalize(path: str) -> str:
    path = os.path.normpath(path)
    return path.lower() if _CASE_INSENSITIVE else path


def _is_within(target: str, parent: str) -> bool:
    return target == parent or target.startswith(parent.rstrip(os.sep) + os.sep)


def is_sensitive_path(path: PathLike) -> bool:
    """Check whether a path lies inside a protected system directory."""
    target = _normalize(str(path))
    return any(_is_within(target, _normalize(blocked)) for blocked in BLOCKED_PATHS)


class PathValidator:
    """Registry of user-approved folders."""

    def __init__(self) -> None:
        self._allowed: Set[str] = set()
        self._real_path_cache: Dict[str, str] = {}
        self._lock = Lock()

    def register(self, folder: PathLike) -> bool:
        """
        Approve a folder (and everything below it) for file operations.

        Args:
            folder: Folder picked by the user

        Returns:
            True if registered, False if the folder is a protected location
        """
        resolved = os.path.realpath(str(folder))
        requested = os.path.abspath(str(folder))
        if is_sensitive_path(resolved) or is_sensitive_path(requested):
            logger.warning(f"Blocked registration of sensitive path: {resolved}")
            return False

        with self._lock:
            self._real_path_cache.clear()
            self._allowed.add(_normalize(resolved))
        logger.debug(f"Registered allowed path: {resolved}")
        return True

    def is_allowed(self, target: Optional[PathLike]) -> bool:
        """Check a path against the registered folders, resolving symlinks."""
        if not target:
            return False

        key = str(target)
        with self._lock:
            real_path = self._real_path_cache.get(key)
        if real_path is None:
            if not os.path.exists(key):
                logger.warning(f"Path validation failed, does not exist: {key}")
                return False
            real_path = os.path.realpath(key)
            with self._lock:
                self._real_path_cache[key] = real_path

        normalized = _normalize(real_path)
        with self._lock:
            return any(_is_within(normalized, allowed) for allowed in self._allowed)

    def require_allowed(self, target: Optional[PathLike], label: str = "folder") -> None:
        """Raise AccessError unless the path is within a registered folder."""
        if not self.is_allowed(target):
            logger.warning(f"Blocked access to unregistered {label}: {target}")
            raise AccessError(f"Access denied: {label} not selected through the app")


def validate_max_files_per_batch(value: object, ceiling: int = 10000) -> int:
    """
    Validate the per-batch cap.

    Args:
        value: User-provided value
        ceiling: Largest accepted cap

    Returns:
        The cap as an int

    Raises:
        ValidationError: If the value is not an integer in 1..ceiling
    """
    if isinstance(value, bool):
        raise ValidationError("Files per batch must be a whole number.")
    try:
        number = int(value)  # type: ignore[call-overload]
    except (TypeError, ValueError):
        raise ValidationError("Files per batch must be a whole number.")

    if number < 1 or number > ceiling:
        raise ValidationError(f"Files per batch must be between 1 and {ceiling}.")
    return number


def validate_output_prefix(prefix: Optional[str], max_length: int = 50) -> str:
    """
    Validate the batch folder naming pattern.

    Args:
        prefix: Pattern such as "Batch" or "Trip_{date}_{count}"
        max_length: Longest accepted pattern

    Returns:
        The trimmed pattern, or "Batch" when empty

    Raises:
        ValidationError: On path separators, reserved characters, ".." or
            an over-long pattern
    """
    if prefix is None:
        return "Batch"

    cleaned = prefix.strip()
    if not cleaned:
        return "Batch"

    if FORBIDDEN_PREFIX_CHARS.search(cleaned):
        raise ValidationError(
            'Folder name pattern cannot contain \\ / : * ? " < > |'
        )
    if ".." in cleaned:
        raise ValidationError("Folder name pattern cannot contain '..'.")
    if len(cleaned) > max_length:
        raise ValidationError(
            f"Folder name pattern must be at most {max_length} characters."
        )
    return cleaned
