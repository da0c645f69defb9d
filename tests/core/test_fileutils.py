"""Tests for file system helpers and pre-flight checks."""

import errno
from pathlib import Path
from unittest.mock import patch

import pytest

from photo_batcher.core.errors import CopyVerificationError
from photo_batcher.core.fileutils import (
    check_write_permission,
    collect_file_sizes,
    get_disk_space,
    is_same_volume,
    list_folder_files,
    run_preflight,
    verify_copy,
)
from photo_batcher.core.types import BatchMode


class TestVolumeDetection:
    """Test same-volume detection."""

    def test_same_folder(self, tmp_path):
        """Test that two paths in one folder share a volume."""
        assert is_same_volume(tmp_path / "a.jpg", tmp_path / "Batch_001" / "a.jpg")

    def test_destination_not_created_yet(self, tmp_path):
        """Test that missing destination folders resolve to an existing parent."""
        destination = tmp_path / "out" / "deep" / "Batch_001" / "a.jpg"

        assert is_same_volume(tmp_path / "a.jpg", destination)

    def test_stat_failure_means_cross_volume(self, tmp_path):
        """Test that an unreadable device id selects the safe strategy."""
        with patch("photo_batcher.core.fileutils.os.stat", side_effect=OSError("nope")):
            assert is_same_volume(tmp_path / "a.jpg", tmp_path / "b.jpg") is False


class TestListing:
    """Test folder listing and stats."""

    def test_lists_only_files(self, tmp_path):
        """Test that subfolders are not listed."""
        (tmp_path / "a.jpg").write_text("a")
        (tmp_path / "b.cr2").write_text("b")
        (tmp_path / "Batch_001").mkdir()

        assert sorted(list_folder_files(tmp_path)) == ["a.jpg", "b.cr2"]

    def test_missing_folder_raises(self, tmp_path):
        """Test that a missing folder raises OSError."""
        with pytest.raises(OSError):
            list_folder_files(tmp_path / "missing")

    def test_collect_file_sizes_skips_missing(self, tmp_path):
        """Test sizes are gathered and unreadable files skipped."""
        (tmp_path / "a.jpg").write_bytes(b"12345")
        (tmp_path / "b.jpg").write_bytes(b"12")

        sizes = collect_file_sizes(tmp_path, ["a.jpg", "b.jpg", "gone.jpg"], 2)

        assert sizes == {"a.jpg": 5, "b.jpg": 2}

    def test_collect_file_sizes_empty(self, tmp_path):
        """Test the empty case."""
        assert collect_file_sizes(tmp_path, []) == {}


class TestVerifyCopy:
    """Test post-copy size verification."""

    def test_matching_sizes(self, tmp_path):
        """Test that equal sizes pass."""
        (tmp_path / "a").write_bytes(b"abc")
        (tmp_path / "b").write_bytes(b"xyz")

        verify_copy(tmp_path / "a", tmp_path / "b")

    def test_mismatch(self, tmp_path):
        """Test that a short copy raises."""
        (tmp_path / "a").write_bytes(b"abc")
        (tmp_path / "b").write_bytes(b"ab")

        with pytest.raises(CopyVerificationError) as exc_info:
            verify_copy(tmp_path / "a", tmp_path / "b")

        assert exc_info.value.source_size == 3
        assert exc_info.value.destination_size == 2


class TestDiskSpace:
    """Test free space lookup."""

    def test_existing_directory(self, tmp_path):
        """Test that free and total are reported."""
        free, total = get_disk_space(tmp_path)

        assert free is not None and total is not None
        assert 0 <= free <= total

    def test_missing_directory_uses_parent(self, tmp_path):
        """Test that a folder not created yet is measured at its parent."""
        free, total = get_disk_space(tmp_path / "not" / "yet")

        assert free is not None

    def test_failure(self, tmp_path):
        """Test that a failing lookup yields (None, None)."""
        with patch(
            "photo_batcher.core.fileutils.shutil.disk_usage", side_effect=OSError("x")
        ):
            assert get_disk_space(tmp_path) == (None, None)


class TestWritePermission:
    """Test the write check."""

    def test_writable(self, tmp_path):
        """Test a writable folder, and that the test file is removed."""
        writable, error = check_write_permission(tmp_path)

        assert writable is True
        assert error is None
        assert list(tmp_path.iterdir()) == []

    def test_missing_folder_checks_parent(self, tmp_path):
        """Test that a folder not created yet is checked at its parent."""
        writable, _ = check_write_permission(tmp_path / "new")

        assert writable is True

    def test_missing_parent(self, tmp_path):
        """Test that a missing folder and parent fail."""
        writable, error = check_write_permission(tmp_path / "a" / "b")

        assert writable is False
        assert error == "Directory and parent do not exist"

    def test_not_a_directory(self, tmp_path):
        """Test a file passed as the folder."""
        target = tmp_path / "file.txt"
        target.write_text("x")

        assert check_write_permission(target) == (False, "Path is not a directory")

    @pytest.mark.parametrize(
        "code,message",
        [
            (errno.EACCES, "Permission denied: cannot write to this folder"),
            (errno.EPERM, "Permission denied: cannot write to this folder"),
            (errno.ENOSPC, "No disk space available"),
            (errno.EROFS, "Read-only file system"),
            (errno.EIO, "Write test failed"),
        ],
    )
    def test_error_mapping(self, tmp_path, code, message):
        """Test that write failures map to fixed messages."""
        with patch.object(Path, "write_text", side_effect=OSError(code, "fail")):
            assert check_write_permission(tmp_path) == (False, message)


class TestPreflight:
    """Test the combined pre-flight report."""

    def test_same_volume_move_skips_space_check(self, tmp_path):
        """Test that a rename-based move needs no extra space."""
        (tmp_path / "a.jpg").write_bytes(b"x" * 100)

        with patch("photo_batcher.core.fileutils.get_disk_space") as disk:
            report = run_preflight(tmp_path, ["a.jpg"], BatchMode.MOVE)

        disk.assert_not_called()
        assert report.same_volume is True
        assert report.disk_space.skipped is True
        assert report.writable is True
        assert report.ok
        assert report.total_files == 1
        assert report.total_size == 100

    def test_copy_checks_space_with_buffer(self, tmp_path):
        """Test the 10% buffer on the required space."""
        (tmp_path / "a.jpg").write_bytes(b"x" * 1000)

        with patch(
            "photo_batcher.core.fileutils.get_disk_space", return_value=(1099, 5000)
        ):
            report = run_preflight(tmp_path, ["a.jpg"], BatchMode.COPY)

        assert report.disk_space.required_bytes == 1100
        assert report.disk_space.sufficient is False
        assert not report.ok

    def test_enough_space(self, tmp_path):
        """Test a copy with plenty of room."""
        (tmp_path / "a.jpg").write_bytes(b"x" * 1000)

        with patch(
            "photo_batcher.core.fileutils.get_disk_space", return_value=(10**9, 10**10)
        ):
            report = run_preflight(tmp_path, ["a.jpg"], BatchMode.COPY)

        assert report.disk_space.sufficient is True
        assert report.ok

    def test_unknown_space_warns(self, tmp_path):
        """Test that unknown free space warns rather than fails."""
        (tmp_path / "a.jpg").write_bytes(b"x")

        with patch(
            "photo_batcher.core.fileutils.get_disk_space", return_value=(None, None)
        ):
            report = run_preflight(tmp_path, ["a.jpg"], BatchMode.COPY)

        assert report.disk_space.sufficient is None
        assert any("Could not verify" in w for w in report.warnings)
        assert report.ok

    def test_cross_volume_move_checks_space(self, tmp_path):
        """Test that a cross-volume move is treated like a copy."""
        (tmp_path / "a.jpg").write_bytes(b"x" * 10)

        with patch(
            "photo_batcher.core.fileutils.is_same_volume", return_value=False
        ), patch(
            "photo_batcher.core.fileutils.get_disk_space", return_value=(10**6, 10**7)
        ) as disk:
            report = run_preflight(tmp_path, ["a.jpg"], BatchMode.MOVE)

        disk.assert_called_once()
        assert report.same_volume is False
        assert report.disk_space.skipped is False

    def test_not_writable(self, tmp_path):
        """Test that a failed write check fails the report."""
        (tmp_path / "a.jpg").write_bytes(b"x")

        with patch(
            "photo_batcher.core.fileutils.check_write_permission",
            return_value=(False, "Read-only file system"),
        ):
            report = run_preflight(tmp_path, ["a.jpg"], BatchMode.MOVE)

        assert report.writable is False
        assert report.permission_error == "Read-only file system"
        assert not report.ok
