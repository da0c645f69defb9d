"""Tests for the photo-batcher CLI."""

import itertools
import os
import sys
from unittest.mock import patch

import pytest
from click.testing import CliRunner

from photo_batcher import __version__
from photo_batcher.cli.main import cli


@pytest.fixture
def runner():
    return CliRunner(env={"COLUMNS": "200"})


@pytest.fixture
def invoke(runner, service, settings):
    """Invoke the CLI with the test service injected."""

    def _invoke(*args, input=None):
        return runner.invoke(
            cli,
            ["--data-dir", str(settings.data_dir), *args],
            obj={"service": service},
            input=input,
        )

    return _invoke


class TestCli:
    """Test the top-level group."""

    def test_help(self, runner):
        """Test that help lists the commands."""
        result = runner.invoke(cli, ["--help"])

        assert result.exit_code == 0
        for command in ("preview", "run", "resume", "discard", "undo", "check", "history"):
            assert command in result.output

    def test_version(self, runner):
        """Test the version option."""
        result = runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output

    def test_builds_service_from_data_dir(self, runner, tmp_path):
        """Test that a real service is created when none is injected."""
        result = runner.invoke(
            cli,
            ["--data-dir", str(tmp_path / "data"), "history", "list"],
            env={"BATCH_EXIF_SORTING_ENABLED": "false"},
        )

        assert result.exit_code == 0
        assert "No history yet" in result.output


class TestPreview:
    """Test the preview command."""

    def test_preview(self, invoke, make_photos, pair_names, snapshot_tree):
        """Test that a plan is shown and nothing is touched."""
        folder = make_photos(pair_names(5) + ["notes.txt"])
        before = snapshot_tree(folder)

        result = invoke("preview", str(folder), "--max", "4", "--sort", "name-asc")

        assert result.exit_code == 0
        assert "Plan" in result.output
        assert "Batches" in result.output
        assert snapshot_tree(folder) == before

    def test_preview_oversized_warning(self, invoke, make_photos):
        """Test the warning for groups over the cap."""
        folder = make_photos(["IMG_1.jpg", "IMG_1.cr2", "IMG_1.dng"])

        result = invoke("preview", str(folder), "--max", "2")

        assert result.exit_code == 0
        assert "IMG_1" in result.output
        assert "per-batch limit" in result.output

    def test_preview_invalid_max(self, invoke, make_photos):
        """Test that a bad cap exits with a readable message."""
        folder = make_photos(["a.jpg"])

        result = invoke("preview", str(folder), "--max", "0")

        assert result.exit_code == 1
        assert "between 1 and 10000" in result.output

    def test_preview_invalid_prefix(self, invoke, make_photos):
        """Test that a bad folder pattern is rejected."""
        folder = make_photos(["a.jpg"])

        result = invoke("preview", str(folder), "--prefix", "a/b")

        assert result.exit_code == 1
        assert "Folder name pattern" in result.output

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX system folder")
    def test_preview_protected_folder(self, invoke):
        """Test that system folders are refused."""
        result = invoke("preview", "/etc")

        assert result.exit_code == 1
        assert "protected system folder" in result.output


class TestRun:
    """Test the run command."""

    def test_run_move(self, invoke, service, make_photos, pair_names):
        """Test a confirmed move run."""
        folder = make_photos(pair_names(5))

        result = invoke("run", str(folder), "--max", "4", "--sort", "name-asc", "-y")

        assert result.exit_code == 0, result.output
        assert "Batching complete" in result.output
        assert "photo-batcher undo" in result.output
        assert sorted(p.name for p in folder.iterdir()) == [
            "Batch_001",
            "Batch_002",
            "Batch_003",
        ]
        assert len(service.get_history()) == 1

    def test_run_prefix(self, invoke, make_photos, pair_names):
        """Test a custom folder name pattern."""
        folder = make_photos(pair_names(2))

        result = invoke("run", str(folder), "--max", "2", "--prefix", "Set_{count}", "-y")

        assert result.exit_code == 0, result.output
        assert sorted(p.name for p in folder.iterdir()) == ["Set_001", "Set_002"]

    def test_run_declined(self, invoke, make_photos, pair_names, snapshot_tree):
        """Test that answering no changes nothing."""
        folder = make_photos(pair_names(2))
        before = snapshot_tree(folder)

        result = invoke("run", str(folder), input="n\n")

        assert result.exit_code == 0
        assert "Cancelled" in result.output
        assert snapshot_tree(folder) == before

    def test_run_copy_to_output(
        self, invoke, service, make_photos, pair_names, snapshot_tree, tmp_path
    ):
        """Test a copy run into a new output folder."""
        folder = make_photos(pair_names(3))
        before = snapshot_tree(folder)
        output = tmp_path / "sorted"

        result = invoke(
            "run", str(folder), "--mode", "copy", "--output", str(output), "-y"
        )

        assert result.exit_code == 0, result.output
        assert snapshot_tree(folder) == before
        assert len(snapshot_tree(output)) == 6
        assert service.get_history() == []

    def test_run_empty_folder(self, invoke, make_photos):
        """Test a folder without media."""
        folder = make_photos(["notes.txt"])

        result = invoke("run", str(folder), "-y")

        assert result.exit_code == 0
        assert "No photo or video files" in result.output

    def test_run_preflight_failure(self, invoke, make_photos, pair_names, snapshot_tree):
        """Test that a failed write check stops the run."""
        folder = make_photos(pair_names(2))
        before = snapshot_tree(folder)

        with patch(
            "photo_batcher.core.fileutils.check_write_permission",
            return_value=(False, "Read-only file system"),
        ):
            result = invoke("run", str(folder), "-y")

        assert result.exit_code == 1
        assert "Pre-flight checks failed" in result.output
        assert snapshot_tree(folder) == before


class TestResume:
    """Test resume and discard."""

    def _interrupt(self, invoke, service, folder):
        counter = itertools.count()
        service.is_cancelled = lambda: next(counter) >= 3
        result = invoke("run", str(folder), "--max", "4", "--sort", "name-asc", "-y")
        del service.is_cancelled
        return result

    def test_nothing_to_resume(self, invoke):
        """Test resume without an interrupted run."""
        result = invoke("resume", "-y")

        assert result.exit_code == 0
        assert "No interrupted run found" in result.output

    def test_resume(self, invoke, service, make_photos, pair_names):
        """Test finishing an interrupted run."""
        folder = make_photos(pair_names(4))
        interrupted = self._interrupt(invoke, service, folder)
        assert "Cancelled" in interrupted.output

        result = invoke("resume", "-y")

        assert result.exit_code == 0, result.output
        assert "Interrupted run" in result.output
        assert "Batching complete" in result.output
        assert sorted(os.listdir(folder)) == ["Batch_001", "Batch_002"]
        assert not service.progress_store.exists()

    def test_discard(self, invoke, service, make_photos, pair_names):
        """Test forgetting an interrupted run."""
        folder = make_photos(pair_names(4))
        self._interrupt(invoke, service, folder)

        result = invoke("discard", "-y")

        assert result.exit_code == 0
        assert "discarded" in result.output
        assert service.check_interrupted() is None


class TestUndo:
    """Test undo and history commands."""

    def _run(self, invoke, folder):
        result = invoke("run", str(folder), "--max", "4", "-y")
        assert result.exit_code == 0, result.output

    def test_nothing_to_undo(self, invoke):
        """Test undo with an empty history."""
        result = invoke("undo", "-y")

        assert result.exit_code == 0
        assert "Nothing to undo" in result.output

    def test_undo_last_run(self, invoke, make_photos, pair_names, snapshot_tree):
        """Test that undo restores the folder."""
        folder = make_photos(pair_names(4))
        before = snapshot_tree(folder)
        self._run(invoke, folder)

        result = invoke("undo", "-y")

        assert result.exit_code == 0, result.output
        assert "Undo complete" in result.output
        assert snapshot_tree(folder) == before
        assert sorted(os.listdir(folder)) == sorted(before)

    def test_undo_refused_when_files_moved(self, invoke, make_photos, pair_names):
        """Test that undo stops when the batch files are gone."""
        folder = make_photos(pair_names(2))
        self._run(invoke, folder)
        for path in folder.glob("Batch_*/*"):
            path.unlink()

        result = invoke("undo", "-y")

        assert result.exit_code == 1
        assert "no longer in their batch folders" in result.output

    def test_history_list_and_show(self, invoke, service, make_photos, pair_names):
        """Test listing and showing history entries."""
        folder = make_photos(pair_names(3))
        self._run(invoke, folder)
        operation_id = service.get_history()[0].operation_id

        listed = invoke("history", "list")
        shown = invoke("history", "show", operation_id)

        assert listed.exit_code == 0
        assert operation_id in listed.output
        assert shown.exit_code == 0
        assert "Batch_001" in shown.output

    def test_history_show_unknown(self, invoke):
        """Test showing an id that does not exist."""
        result = invoke("history", "show", "nope")

        assert result.exit_code == 1
        assert "not found" in result.output

    def test_history_validate(self, invoke, service, make_photos, pair_names):
        """Test validating an entry."""
        folder = make_photos(pair_names(3))
        self._run(invoke, folder)
        operation_id = service.get_history()[0].operation_id

        result = invoke("history", "validate", operation_id)

        assert result.exit_code == 0
        assert "in place" in result.output

    def test_history_validate_invalid_id(self, invoke):
        """Test that path-like ids are rejected."""
        result = invoke("history", "validate", "../x")

        assert result.exit_code == 1
        assert "Invalid operation ID" in result.output

    def test_history_undo(self, invoke, service, make_photos, pair_names, snapshot_tree):
        """Test undoing a specific entry."""
        folder = make_photos(pair_names(3))
        before = snapshot_tree(folder)
        self._run(invoke, folder)
        operation_id = service.get_history()[0].operation_id

        result = invoke("history", "undo", operation_id, "-y")

        assert result.exit_code == 0, result.output
        assert snapshot_tree(folder) == before

    def test_history_delete_and_clear(self, invoke, service, make_photos, pair_names):
        """Test forgetting entries."""
        folder = make_photos(pair_names(2))
        self._run(invoke, folder)
        operation_id = service.get_history()[0].operation_id

        deleted = invoke("history", "delete", operation_id)
        again = invoke("history", "delete", operation_id)
        cleared = invoke("history", "clear", "-y")

        assert deleted.exit_code == 0
        assert again.exit_code == 1
        assert cleared.exit_code == 0
        assert "Cleared 0" in cleared.output


class TestCheck:
    """Test the pre-flight command."""

    def test_check(self, invoke, make_photos):
        """Test a passing check."""
        folder = make_photos(["a.jpg", "a.cr2"])

        result = invoke("check", str(folder))

        assert result.exit_code == 0
        assert "Pre-flight checks" in result.output

    def test_check_copy_without_space(self, invoke, make_photos):
        """Test that insufficient space exits with status 1."""
        folder = make_photos(["a.jpg"])

        with patch(
            "photo_batcher.core.fileutils.get_disk_space", return_value=(0, 100)
        ):
            result = invoke("check", str(folder), "--mode", "copy")

        assert result.exit_code == 1
