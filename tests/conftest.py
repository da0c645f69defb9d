"""
Pytest configuration and fixtures for photo_batcher tests.
"""

from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

import pytest

from photo_batcher.config import Settings
from photo_batcher.core.dates import FilesystemDateProvider
from photo_batcher.organization.service import BatchService


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings with an isolated data directory and a fast ticker."""
    return Settings(
        data_dir=tmp_path / "data",
        exif_sorting_enabled=False,
        progress_interval_seconds=0.01,
        save_interval_seconds=0.02,
        max_file_concurrency=4,
    )


@pytest.fixture
def service(settings: Settings) -> BatchService:
    """Batch service that reads capture dates from the file system only."""
    return BatchService(settings, date_provider=FilesystemDateProvider())


@pytest.fixture
def make_photos(tmp_path: Path) -> Callable[..., Path]:
    """
    Factory that fills a folder with small files.

    Each file's content is its own name, so sizes differ between files and
    moved files can be identified by content.
    """

    def _make(
        names: Iterable[str],
        folder: Optional[Path] = None,
        contents: Optional[Dict[str, bytes]] = None,
    ) -> Path:
        folder = folder or tmp_path / "photos"
        folder.mkdir(parents=True, exist_ok=True)
        for name in names:
            data = (contents or {}).get(name, name.encode("utf-8"))
            (folder / name).write_bytes(data)
        return folder

    return _make


def _pair_names(count: int, start: int = 1) -> List[str]:
    names = []
    for i in range(start, start + count):
        names.append(f"IMG_{i:04d}.jpg")
        names.append(f"IMG_{i:04d}.cr2")
    return names


def _snapshot_tree(root: Path) -> Dict[str, bytes]:
    return {
        str(path.relative_to(root)): path.read_bytes()
        for path in sorted(root.rglob("*"))
        if path.is_file()
    }


@pytest.fixture
def pair_names() -> Callable[..., List[str]]:
    """IMG_nnnn.jpg + IMG_nnnn.cr2 name pairs."""
    return _pair_names


@pytest.fixture
def snapshot_tree() -> Callable[[Path], Dict[str, bytes]]:
    """Relative path -> content for every file below a folder."""
    return _snapshot_tree
