"""
File system helpers: volume detection, folder listing, stats and the
pre-execution disk space / permission checks.
"""

import errno
import logging
import os
import shutil
import sys
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from ..shared.media_utils import format_bytes
from .errors import CopyVerificationError
from .types import BatchMode, DiskSpaceReport, PreflightReport

logger = logging.getLogger(__name__)

# Required space estimate = total size * buffer, for filesystem overhead
SPACE_BUFFER_MULTIPLIER = 1.1


def is_same_volume(source_path: Path, destination_path: Path) -> bool:
    """
    Check whether two paths live on the same storage volume.

    On Windows the drive roots are compared. Elsewhere the device ids of the
    nearest existing parent directories are compared; if either cannot be
    stat'd the answer is False, which selects the copy+verify+delete path.

    Args:
        source_path: Source file path
        destination_path: Destination file path

    Returns:
        True if a plain rename can move the file
    """
    if sys.platform == "win32":
        source_root = Path(source_path).anchor.upper()
        destination_root = Path(destination_path).anchor.upper()
        return source_root == destination_root

    try:
        source_dev = os.stat(_existing_ancestor(Path(source_path).parent)).st_dev
        destination_dev = os.stat(_existing_ancestor(Path(destination_path).parent)).st_dev
    except OSError as e:
        logger.debug(f"Volume detection failed, assuming cross-volume: {e}")
        return False
    return source_dev == destination_dev


def _existing_ancestor(path: Path) -> Path:
    """Walk up until an existing directory is found."""
    current = path
    while not current.exists() and current != current.parent:
        current = current.parent
    return current


def list_folder_files(folder: Path) -> List[str]:
    """
    List the regular files directly inside a folder.

    Raises:
        OSError: If the folder cannot be read
    """
    with os.scandir(folder) as entries:
        return [entry.name for entry in entries if entry.is_file()]


def file_size(path: Path) -> int:
    return os.stat(path).st_size


def verify_copy(source_path: Path, destination_path: Path) -> None:
    """
    Compare source and destination byte sizes after a copy.

    Raises:
        CopyVerificationError: If the sizes differ
    """
    source_size = file_size(source_path)
    destination_size = file_size(destination_path)
    if source_size != destination_size:
        raise CopyVerificationError(source_size, destination_size)


def collect_file_sizes(
    folder: Path, file_names: List[str], concurrency: int = 50
) -> Dict[str, int]:
    """
    Collect file sizes for the given names with bounded parallelism.

    Files that cannot be stat'd are skipped.
    """

    def _size(name: str) -> Tuple[str, Optional[int]]:
        try:
            return name, file_size(folder / name)
        except OSError:
            return name, None

    if not file_names:
        return {}

    with ThreadPoolExecutor(max_workers=min(concurrency, len(file_names))) as pool:
        return {name: size for name, size in pool.map(_size, file_names) if size is not None}


def get_disk_space(directory: Path) -> Tuple[Optional[int], Optional[int]]:
    """
    Free and total bytes for the volume holding a directory.

    A directory that does not exist yet is resolved to its nearest existing
    parent.

    Returns:
        (free_bytes, total_bytes), or (None, None) if it cannot be determined
    """
    target = _existing_ancestor(Path(directory).resolve())
    try:
        usage = shutil.disk_usage(target)
    except OSError as e:
        logger.warning(f"Failed to check disk space: {e}")
        return None, None

    logger.info(
        f"Space check for {target}: {format_bytes(usage.free)} free "
        f"of {format_bytes(usage.total)}"
    )
    return usage.free, usage.total


def check_write_permission(directory: Path) -> Tuple[bool, Optional[str]]:
    """
    Probe write access by creating and removing a small file.

    If the directory does not exist yet, its parent is checked instead.

    Returns:
        (writable, error message or None)
    """
    target = Path(directory)
    if target.exists() and not target.is_dir():
        return False, "Path is not a directory"
    if not target.exists():
        target = target.parent
        if not target.exists():
            return False, "Directory and parent do not exist"

    test_file = target / f"._batch_permission_test_{int(time.time() * 1000)}"
    try:
        test_file.write_text("test", encoding="utf-8")
        test_file.unlink()
        return True, None
    except OSError as e:
        test_file.unlink(missing_ok=True)
        logger.warning(f"Write test failed for {directory}: {e}")
        if e.errno in (errno.EACCES, errno.EPERM):
            return False, "Permission denied: cannot write to this folder"
        if e.errno == errno.ENOSPC:
            return False, "No disk space available"
        if e.errno == errno.EROFS:
            return False, "Read-only file system"
        return False, "Write test failed"


def run_preflight(
    source_folder: Path,
    file_names: List[str],
    mode: BatchMode,
    output_dir: Optional[Path] = None,
    stat_concurrency: int = 50,
) -> PreflightReport:
    """
    Check disk space and write permissions before executing.

    Same-volume moves only need write permission, since a rename takes no
    extra space.

    Args:
        source_folder: Folder being split
        file_names: Files that will be transferred
        mode: Copy or move
        output_dir: Destination root (defaults to the source folder)
        stat_concurrency: Parallel stat() calls

    Returns:
        PreflightReport
    """
    base_output = Path(output_dir) if output_dir else Path(source_folder)
    warnings: List[str] = []

    same_volume = is_same_volume(
        Path(source_folder) / "sample", base_output / "sample"
    )

    sizes = collect_file_sizes(Path(source_folder), file_names, stat_concurrency)
    total_size = sum(sizes.values())
    required = int(total_size * SPACE_BUFFER_MULTIPLIER + 0.999)

    if mode == BatchMode.MOVE and same_volume:
        disk_space = DiskSpaceReport(
            required_bytes=0,
            sufficient=True,
            skipped=True,
            reason="Same-drive move uses rename (no extra space needed)",
        )
    else:
        free, total = get_disk_space(base_output)
        if free is None:
            disk_space = DiskSpaceReport(required_bytes=required, sufficient=None)
            warnings.append(
                "Could not verify available disk space. Proceed with caution."
            )
        else:
            disk_space = DiskSpaceReport(
                free_bytes=free,
                total_bytes=total,
                required_bytes=required,
                sufficient=free >= required,
            )

    writable, permission_error = check_write_permission(base_output)

    if str(base_output).startswith(("\\\\", "//")):
        warnings.append("Network drive detected. Space estimate may be approximate.")

    logger.info(
        f"Pre-flight: mode={mode.value} "
        f"({'same volume' if same_volume else 'cross volume'}), "
        f"size={format_bytes(total_size)}, writable={writable}"
    )

    return PreflightReport(
        same_volume=same_volume,
        disk_space=disk_space,
        writable=writable,
        permission_error=permission_error,
        warnings=warnings,
        total_files=len(file_names),
        total_size=total_size,
        total_size_formatted=format_bytes(total_size),
    )
