"""
Rollback and operation history for move runs.

After a move run the manager keeps a manifest (original and current path of
every file). The latest manifest is held in memory for the session; with
history enabled every manifest is also written to disk and summarised in a
capped, newest-first history index so older runs can be undone later.

Copy runs leave the source untouched, so they are never recorded.
"""

import errno
import json
import logging
import os
import re
import shutil
import time
import uuid
from pathlib import Path
from threading import Lock
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from pydantic import ValidationError as ModelValidationError

from ..core.errors import CopyVerificationError, sanitize_error
from ..core.fileutils import is_same_volume, verify_copy
from ..core.types import (
    BatchMode,
    BatchSummary,
    FileError,
    HistoryEntry,
    HistoryValidation,
    Operation,
    RollbackFile,
    RollbackManifest,
    RollbackProgressEvent,
    RollbackResult,
    RollbackSummary,
    SortOrder,
)

logger = logging.getLogger(__name__)

HISTORY_DIR_NAME = "batch-history"
HISTORY_INDEX_FILE = "history_index.json"

ROLLBACK_CHUNK_SIZE = 100
VALIDATION_SAMPLE_SIZE = 10

FILE_NOT_FOUND_MESSAGE = "File not found at batch location"

_UNSAFE_ID_CHARS = re.compile(r"[^A-Za-z0-9_-]")

RollbackProgressCallback = Callable[[RollbackProgressEvent], None]


def _never_cancelled() -> bool:
    return False


def sanitize_operation_id(operation_id: str) -> str:
    """Strip everything but letters, digits, '_' and '-'."""
    return _UNSAFE_ID_CHARS.sub("", operation_id)


def _write_json_atomic(path: Path, payload: object) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.with_name(path.name + ".tmp")
    with open(temp_path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)
    os.replace(temp_path, path)


class RollbackManager:
    """Records move runs and moves files back on request."""

    def __init__(
        self,
        data_dir: Path,
        history_enabled: bool = True,
        max_history_entries: int = 20,
        chunk_size: int = ROLLBACK_CHUNK_SIZE,
    ):
        """
        Initialize the rollback manager.

        Args:
            data_dir: Application data directory
            history_enabled: Persist manifests and keep a history index
            max_history_entries: History cap; older entries are pruned
            chunk_size: Files restored between progress reports
        """
        self.data_dir = Path(data_dir)
        self.history_dir = self.data_dir / HISTORY_DIR_NAME
        self.index_path = self.data_dir / HISTORY_INDEX_FILE
        self.history_enabled = history_enabled
        self.max_history_entries = max_history_entries
        self.chunk_size = chunk_size

        self._session: Optional[RollbackManifest] = None
        self._index_lock = Lock()

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def save_manifest(
        self,
        source_folder: Path,
        output_folder: Path,
        mode: BatchMode,
        operations: Sequence[Operation],
        batch_folders: Sequence[str],
        total_files: int,
        output_prefix: str = "",
        max_files_per_batch: Optional[int] = None,
        sort_order: SortOrder = SortOrder.SIZE_DESC,
        batch_results: Optional[Sequence[BatchSummary]] = None,
    ) -> Optional[RollbackManifest]:
        """
        Record a finished move run.

        Returns:
            The manifest, or None for copy runs
        """
        if BatchMode(mode) != BatchMode.MOVE:
            logger.debug("Skipping rollback manifest: only move runs are recorded")
            return None

        manifest = RollbackManifest(
            operation_id=uuid.uuid4().hex,
            mode=BatchMode.MOVE,
            source_folder=Path(source_folder),
            output_folder=Path(output_folder),
            total_files=total_files,
            batch_folders=list(batch_folders),
            output_prefix=output_prefix or "",
            max_files_per_batch=max_files_per_batch,
            sort_order=sort_order,
            batch_results=list(batch_results or []),
            files=[
                RollbackFile(
                    file_name=op.file_name,
                    original_path=op.source_path,
                    current_path=op.destination_path,
                )
                for op in operations
            ],
        )
        self._session = manifest
        logger.info(
            f"Rollback manifest saved: {manifest.operation_id} "
            f"({total_files} files, {len(manifest.batch_folders)} folders)"
        )

        if self.history_enabled:
            try:
                self._persist(manifest)
            except OSError as e:
                # Session rollback still works without the history copy
                logger.error(f"Failed to persist rollback manifest: {e}")

        return manifest

    def _manifest_path(self, operation_id: str) -> Path:
        return self.history_dir / f"{sanitize_operation_id(operation_id)}.json"

    def _persist(self, manifest: RollbackManifest) -> None:
        _write_json_atomic(
            self._manifest_path(manifest.operation_id),
            manifest.model_dump(mode="json"),
        )

        with self._index_lock:
            history = self._load_index()
            history.insert(0, manifest.to_history_entry())
            removed = history[self.max_history_entries :]
            history = history[: self.max_history_entries]
            self._save_index(history)

        for entry in removed:
            self._delete_manifest_file(entry.operation_id)
        if removed:
            logger.info(f"Pruned {len(removed)} old history entries")
        logger.debug(f"History updated, {len(history)} entries")

    # ------------------------------------------------------------------
    # Session manifest
    # ------------------------------------------------------------------

    def check_rollback_available(self) -> Optional[RollbackSummary]:
        if self._session is None:
            return None
        return RollbackSummary(
            operation_id=self._session.operation_id,
            created_at=self._session.created_at,
            source_folder=self._session.source_folder,
            total_files=self._session.total_files,
            batch_folder_count=self._session.batch_folder_count,
        )

    def get_session_manifest(self) -> Optional[RollbackManifest]:
        return self._session

    def clear_session_manifest(self) -> None:
        if self._session is not None:
            logger.debug(f"Rollback manifest cleared: {self._session.operation_id}")
        self._session = None

    def rollback(
        self,
        is_cancelled: Callable[[], bool] = _never_cancelled,
        on_progress: Optional[RollbackProgressCallback] = None,
    ) -> RollbackResult:
        """Undo the session's last move run."""
        manifest = self._session
        if manifest is None:
            return RollbackResult(error="No rollback manifest available")

        result = self._execute(manifest, is_cancelled, on_progress)
        if result.success:
            self.clear_session_manifest()
            if self.history_enabled:
                self.remove_history_entry(manifest.operation_id)
        return result

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def _load_index(self) -> List[HistoryEntry]:
        if not self.index_path.exists():
            return []
        try:
            with open(self.index_path, "r", encoding="utf-8") as f:
                raw = json.load(f)
            return [HistoryEntry.model_validate(item) for item in raw]
        except (OSError, ValueError, TypeError, ModelValidationError) as e:
            logger.error(f"History index unreadable, starting empty: {e}")
            return []

    def _save_index(self, entries: List[HistoryEntry]) -> None:
        _write_json_atomic(
            self.index_path, [entry.model_dump(mode="json") for entry in entries]
        )

    def _read_manifest(self, operation_id: str) -> Optional[RollbackManifest]:
        path = self._manifest_path(operation_id)
        try:
            with open(path, "r", encoding="utf-8") as f:
                return RollbackManifest.model_validate(json.load(f))
        except FileNotFoundError:
            logger.warning(f"Manifest file not found: {operation_id}")
        except (OSError, ValueError, ModelValidationError) as e:
            logger.error(f"Failed to read manifest {operation_id}: {e}")
        return None

    def _delete_manifest_file(self, operation_id: str) -> None:
        try:
            self._manifest_path(operation_id).unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Failed to delete manifest {operation_id}: {e}")

    def get_history(self) -> List[HistoryEntry]:
        """History entries, newest first."""
        with self._index_lock:
            return self._load_index()

    def get_history_entry(self, operation_id: str) -> Optional[HistoryEntry]:
        for entry in self.get_history():
            if entry.operation_id == operation_id:
                return entry
        return None

    def validate_history_entry(self, operation_id: str) -> HistoryValidation:
        """
        Check whether a past run's files are still in their batch folders.

        Up to ten recorded locations, spread evenly over the file list, are
        checked so large runs validate quickly.
        """
        manifest = self._read_manifest(operation_id)
        if manifest is None:
            return HistoryValidation(valid=False, error="Manifest file not found on disk")
        if not manifest.files:
            return HistoryValidation(valid=False, error="No operations in manifest")

        files = manifest.files
        sample_size = min(VALIDATION_SAMPLE_SIZE, len(files))
        step = max(1, len(files) // sample_size)

        found = missing = 0
        for index in range(0, len(files), step):
            if found + missing >= sample_size:
                break
            if Path(files[index].current_path).exists():
                found += 1
            else:
                missing += 1

        return HistoryValidation(
            valid=missing == 0,
            checked=found + missing,
            found=found,
            missing=missing,
        )

    def rollback_history_entry(
        self,
        operation_id: str,
        is_cancelled: Callable[[], bool] = _never_cancelled,
        on_progress: Optional[RollbackProgressCallback] = None,
    ) -> RollbackResult:
        """Undo a past move run recorded in the history."""
        manifest = self._read_manifest(operation_id)
        if manifest is None:
            return RollbackResult(
                error="Operation history not found. The manifest file may have been deleted."
            )
        if self.get_history_entry(operation_id) is None:
            return RollbackResult(error="Operation not found in history index")

        result = self._execute(manifest, is_cancelled, on_progress)
        if result.success:
            self.remove_history_entry(operation_id)
            if self._session and self._session.operation_id == operation_id:
                self.clear_session_manifest()
        return result

    def remove_history_entry(self, operation_id: str) -> bool:
        """Remove one entry and its manifest file; False if unknown."""
        with self._index_lock:
            history = self._load_index()
            remaining = [e for e in history if e.operation_id != operation_id]
            if len(remaining) == len(history):
                return False
            self._save_index(remaining)

        self._delete_manifest_file(operation_id)
        logger.info(f"Removed history entry: {operation_id}")
        return True

    def clear_history(self) -> int:
        """Remove every entry; returns how many there were."""
        with self._index_lock:
            history = self._load_index()
            self._save_index([])

        for entry in history:
            self._delete_manifest_file(entry.operation_id)
        logger.info(f"Cleared history, removed {len(history)} entries")
        return len(history)

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    def _restore_file(
        self, item: RollbackFile, volume_cache: Dict[Tuple[Path, Path], bool]
    ) -> None:
        current = Path(item.current_path)
        original = Path(item.original_path)

        if not current.exists():
            raise FileNotFoundError(errno.ENOENT, FILE_NOT_FOUND_MESSAGE)
        if os.path.lexists(original):
            raise FileExistsError(errno.EEXIST, "Original location is occupied")

        original.parent.mkdir(parents=True, exist_ok=True)

        key = (current.parent, original.parent)
        if key not in volume_cache:
            volume_cache[key] = is_same_volume(current, original)

        if volume_cache[key]:
            os.rename(current, original)
            return

        shutil.copy2(current, original)
        try:
            verify_copy(current, original)
        except CopyVerificationError:
            original.unlink(missing_ok=True)
            raise
        os.unlink(current)

    def _remove_empty_batch_folders(self, manifest: RollbackManifest) -> int:
        deleted = 0
        for folder_name in manifest.batch_folders:
            folder = Path(manifest.output_folder) / folder_name
            try:
                if any(folder.iterdir()):
                    logger.info(f"Batch folder not empty, keeping: {folder_name}")
                    continue
                folder.rmdir()
                deleted += 1
                logger.debug(f"Deleted empty batch folder: {folder_name}")
            except OSError as e:
                logger.warning(f"Could not delete batch folder {folder_name}: {e}")
        return deleted

    def _execute(
        self,
        manifest: RollbackManifest,
        is_cancelled: Callable[[], bool],
        on_progress: Optional[RollbackProgressCallback],
    ) -> RollbackResult:
        files = manifest.files
        logger.info(
            f"Rolling back {manifest.operation_id}: {len(files)} files to restore"
        )

        restored = 0
        attempted = 0
        cancelled = False
        errors: List[FileError] = []
        volume_cache: Dict[Tuple[Path, Path], bool] = {}

        for start in range(0, len(files), self.chunk_size):
            chunk = files[start : start + self.chunk_size]
            for item in chunk:
                if is_cancelled():
                    cancelled = True
                    break
                attempted += 1
                try:
                    self._restore_file(item, volume_cache)
                    restored += 1
                except FileNotFoundError as e:
                    logger.warning(f"Cannot restore {item.file_name}: {e}")
                    errors.append(FileError(file=item.file_name, error=FILE_NOT_FOUND_MESSAGE))
                except OSError as e:
                    logger.error(f"Failed to restore {item.file_name}: {e}")
                    errors.append(
                        FileError(file=item.file_name, error=sanitize_error(e, "rollback"))
                    )

            if on_progress:
                on_progress(
                    RollbackProgressEvent(
                        current=attempted,
                        total=len(files),
                        restored_files=restored,
                    )
                )
            if cancelled:
                logger.info("Rollback cancelled")
                break
            time.sleep(0)

        deleted_folders = 0 if cancelled else self._remove_empty_batch_folders(manifest)

        logger.info(
            f"Rollback complete: {restored} restored, {deleted_folders} folders "
            f"deleted, {len(errors)} errors"
        )
        return RollbackResult(
            success=not cancelled and not errors,
            cancelled=cancelled,
            restored_files=restored,
            total_files=len(files),
            deleted_folders=deleted_folders,
            source_folder=manifest.source_folder,
            errors=errors,
        )
