"""Tests for the operation builder."""

from datetime import datetime
from pathlib import Path

from photo_batcher.core.types import Batch, FileGroup
from photo_batcher.organization.builder import batch_folder_names, build_operations

NOW = datetime(2024, 3, 7)


def _batches():
    return [
        Batch(
            index=1,
            groups=[FileGroup(base_name="IMG_1", members=["IMG_1.jpg", "IMG_1.cr2"])],
        ),
        Batch(index=2, groups=[FileGroup(base_name="IMG_2", members=["IMG_2.jpg"])]),
    ]


class TestBuildOperations:
    """Test expanding batches into operations."""

    def test_one_operation_per_file(self):
        """Test paths and batch indices."""
        operations, summaries = build_operations(
            _batches(), Path("/src"), Path("/out"), "Batch", NOW
        )

        assert [op.file_name for op in operations] == ["IMG_1.jpg", "IMG_1.cr2", "IMG_2.jpg"]
        assert operations[0].source_path == Path("/src/IMG_1.jpg")
        assert operations[0].destination_path == Path("/out/Batch_001/IMG_1.jpg")
        assert operations[2].destination_path == Path("/out/Batch_002/IMG_2.jpg")
        assert [op.batch_index for op in operations] == [0, 0, 1]

    def test_summaries(self):
        """Test per-batch folder names and counts."""
        _, summaries = build_operations(
            _batches(), Path("/src"), Path("/src"), "Trip_{date}", NOW
        )

        assert [(s.folder, s.file_count) for s in summaries] == [
            ("Trip_2024-03-07_001", 2),
            ("Trip_2024-03-07_002", 1),
        ]

    def test_deterministic(self):
        """Test that the same inputs give the same output."""
        first = build_operations(_batches(), Path("/src"), Path("/out"), None, NOW)
        second = build_operations(_batches(), Path("/src"), Path("/out"), None, NOW)

        assert first == second

    def test_empty(self):
        """Test that no batches give no operations."""
        assert build_operations([], Path("/src"), Path("/out"), "Batch", NOW) == ([], [])


class TestBatchFolderNames:
    """Test folder names for a whole run."""

    def test_names(self):
        """Test names are produced in batch order."""
        assert batch_folder_names(3, "Set", NOW) == ["Set_001", "Set_002", "Set_003"]
