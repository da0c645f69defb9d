"""
Batch service: the operation surface used by the CLI.

Ties together the planner, the operation builder, the executor, the progress
store and the rollback manager, and enforces the folder allow-list and
input validation before any file is touched.
"""

import logging
import uuid
from datetime import datetime
from pathlib import Path
from threading import Event
from typing import Callable, List, Optional, Sequence, Set

from ..config import Settings, get_settings
from ..core.dates import CaptureDateProvider, ExifDateProvider, FilesystemDateProvider
from ..core.errors import AccessError, ValidationError, sanitize_error
from ..core.fileutils import file_size, list_folder_files, run_preflight
from ..core.security import (
    PathValidator,
    validate_max_files_per_batch,
    validate_output_prefix,
)
from ..core.types import (
    BatchMode,
    BatchPlan,
    ExecutionResult,
    HistoryEntry,
    HistoryValidation,
    Operation,
    PlanRequest,
    PreflightReport,
    ProgressEvent,
    ProgressRecord,
    ProgressSummary,
    RollbackProgressEvent,
    RollbackResult,
    RollbackSummary,
)
from ..shared.media_utils import DEFAULT_POLICY, FileTypePolicy
from .builder import build_operations
from .executor import (
    ConcurrencyLimits,
    ExecutionOutcome,
    create_batch_folders,
    execute_file_operations,
)
from .planner import plan_batches
from .progress import InstallationKey, ProgressStore, ProgressTracker
from .rollback import RollbackManager, sanitize_operation_id

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], None]
RollbackProgressCallback = Callable[[RollbackProgressEvent], None]


class BatchService:
    """Plan, execute, resume and undo batch runs."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        validator: Optional[PathValidator] = None,
        policy: FileTypePolicy = DEFAULT_POLICY,
        date_provider: Optional[CaptureDateProvider] = None,
    ):
        """
        Initialize the service.

        Args:
            settings: Application settings (defaults to the cached instance)
            validator: Folder allow-list
            policy: Which files take part in batching
            date_provider: Capture-date source for the date sort orders
        """
        self.settings = settings or get_settings()
        self.validator = validator or PathValidator()
        self.policy = policy

        if date_provider is None:
            fallback = FilesystemDateProvider(self.settings.stat_concurrency)
            date_provider = (
                ExifDateProvider(fallback=fallback)
                if self.settings.exif_sorting_enabled
                else fallback
            )
        self.date_provider = date_provider

        self.progress_store = ProgressStore(
            self.settings.data_dir,
            key=InstallationKey(self.settings.integrity_key_file),
            encryption_enabled=self.settings.encryption_enabled,
        )
        self.rollback_manager = RollbackManager(
            self.settings.data_dir,
            history_enabled=self.settings.history_enabled,
            max_history_entries=self.settings.max_history_entries,
            chunk_size=self.settings.file_move_chunk_size,
        )
        self.limits = ConcurrencyLimits(
            file_concurrency=self.settings.max_file_concurrency,
            folder_concurrency=self.settings.folder_concurrency,
            move_chunk_size=self.settings.file_move_chunk_size,
            progress_interval=self.settings.progress_interval_seconds,
            save_interval=self.settings.save_interval_seconds,
        )
        self._cancelled = Event()

    # ------------------------------------------------------------------
    # Folder access and cancellation
    # ------------------------------------------------------------------

    def register_folder(self, folder: Path) -> bool:
        """Approve a folder the user picked."""
        return self.validator.register(folder)

    def cancel(self) -> None:
        """Request cooperative cancellation of the running operation."""
        logger.info("Cancellation requested")
        self._cancelled.set()

    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    def _list_files(self, folder: Path) -> List[str]:
        try:
            return list_folder_files(folder)
        except PermissionError as e:
            logger.error(f"Cannot read folder {folder}: {e}")
            raise AccessError("Access denied: cannot read folder") from e

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def plan(self, request: PlanRequest) -> BatchPlan:
        """
        Scan a folder and plan its batches.

        Raises:
            AccessError: If the folder is not registered or not readable
            ValidationError: On a bad cap or folder name pattern
        """
        max_files = validate_max_files_per_batch(
            request.max_files_per_batch, self.settings.max_files_per_batch_ceiling
        )
        prefix = validate_output_prefix(
            request.output_prefix, self.settings.max_prefix_length
        )
        self.validator.require_allowed(request.source_folder, "source folder")

        source = Path(request.source_folder)
        files = self._list_files(source)
        eligible = self.policy.filter(files)

        timestamps = None
        if request.sort_order.is_date_based:
            timestamps = self.date_provider.get_timestamps(source, eligible)

        planned = plan_batches(
            eligible,
            max_files,
            request.sort_order,
            timestamps,
            policy=self.policy,
            search_depth=self.settings.batch_search_depth,
        )
        groups = [group for batch in planned.batches for group in batch.groups]

        logger.info(
            f"Planned {len(planned.batches)} batches for {len(eligible)} files "
            f"({len(files) - len(eligible)} skipped)"
        )
        return BatchPlan(
            request=request.model_copy(
                update={"max_files_per_batch": max_files, "output_prefix": prefix}
            ),
            batches=planned.batches,
            oversized_groups=planned.oversized_groups,
            total_files=len(files),
            eligible_files=len(eligible),
            skipped_files=len(files) - len(eligible),
            group_count=len(groups),
            largest_group=max((g.size for g in groups), default=0),
        )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _run(
        self,
        operations: Sequence[Operation],
        mode: BatchMode,
        tracker: ProgressTracker,
        batch_count: int,
        total_files: int,
        initial_processed: int,
        on_progress: Optional[ProgressCallback],
    ) -> ExecutionOutcome:
        try:
            return execute_file_operations(
                operations,
                mode,
                total_files=total_files,
                batch_count=batch_count,
                initial_processed=initial_processed,
                is_cancelled=self.is_cancelled,
                on_progress=on_progress,
                on_processed_files=tracker.add_processed_files,
                on_save_progress=tracker.flush,
                limits=self.limits,
            )
        finally:
            tracker.close()

    def _record_for_rollback(
        self,
        record: ProgressRecord,
        operations: Sequence[Operation],
        outcome: ExecutionOutcome,
    ) -> None:
        if not self.settings.rollback_enabled or record.mode != BatchMode.MOVE:
            return

        failed: Set[str] = {error.file for error in outcome.errors}
        moved = [op for op in operations if op.file_name not in failed]
        self.rollback_manager.save_manifest(
            source_folder=record.source_folder,
            output_folder=record.output_dir,
            mode=record.mode,
            operations=moved,
            batch_folders=[summary.folder for summary in record.batch_info],
            total_files=len(moved),
            output_prefix=record.output_prefix,
            max_files_per_batch=record.max_files_per_batch,
            sort_order=record.sort_order,
            batch_results=record.batch_info,
        )

    def execute(
        self,
        plan: BatchPlan,
        mode: BatchMode = BatchMode.MOVE,
        output_dir: Optional[Path] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ExecutionResult:
        """
        Execute a plan.

        The folder is re-scanned and re-planned with the plan's parameters
        so files added or removed since the preview are handled correctly.

        Args:
            plan: Plan from `plan()`
            mode: Copy or move
            output_dir: Root for batch folders (defaults to the source folder)
            on_progress: Receives progress events

        Returns:
            ExecutionResult

        Raises:
            AccessError: If a folder is not registered or not readable
            ValidationError: On bad parameters
        """
        self._cancelled.clear()
        mode = BatchMode(mode)
        request = plan.request
        source = Path(request.source_folder)
        if output_dir is not None:
            self.validator.require_allowed(output_dir, "output folder")

        fresh = self.plan(request)
        if fresh.eligible_files != plan.eligible_files:
            logger.info(
                f"Folder changed since preview: {plan.eligible_files} -> "
                f"{fresh.eligible_files} files"
            )
        if self._cancelled.is_set():
            logger.info("Cancelled before any file was touched")
            return ExecutionResult(
                cancelled=True,
                mode=mode,
                total_files=fresh.eligible_files,
                message="Cancelled before any file was touched",
            )

        base_output = Path(output_dir) if output_dir else source
        prefix = fresh.request.output_prefix or "Batch"

        operations, summaries = build_operations(
            fresh.batches, source, base_output, prefix, datetime.now()
        )
        if not operations:
            return ExecutionResult(
                success=True,
                mode=mode,
                output_dir=base_output,
                message="No files to process",
            )

        try:
            create_batch_folders(
                (base_output / summary.folder for summary in summaries),
                self.limits.folder_concurrency,
            )
            record = ProgressRecord(
                operation_id=uuid.uuid4().hex,
                source_folder=source,
                output_dir=base_output,
                mode=mode,
                max_files_per_batch=fresh.request.max_files_per_batch,
                output_prefix=prefix,
                sort_order=request.sort_order,
                total_files=len(operations),
                operations=operations,
                batch_info=summaries,
            )
            tracker = self.progress_store.start(record)
        except OSError as e:
            logger.error(f"Failed to prepare batch run: {e}")
            return ExecutionResult(mode=mode, error=sanitize_error(e, "execute"))

        logger.info(
            f"Executing {mode.value} of {len(operations)} files into "
            f"{len(summaries)} batches"
        )
        outcome = self._run(
            operations, mode, tracker, len(summaries), len(operations), 0, on_progress
        )

        if not outcome.cancelled:
            self.progress_store.clear()
            self._record_for_rollback(record, operations, outcome)
        else:
            logger.info(
                f"Run cancelled: {outcome.processed_files} of "
                f"{len(operations)} files processed"
            )

        return ExecutionResult(
            success=not outcome.cancelled,
            cancelled=outcome.cancelled,
            mode=mode,
            batches_created=len(summaries),
            files_processed=outcome.processed_files,
            total_files=len(operations),
            output_dir=base_output,
            results=summaries,
            errors=outcome.errors,
        )

    # ------------------------------------------------------------------
    # Crash recovery
    # ------------------------------------------------------------------

    def check_interrupted(self) -> Optional[ProgressSummary]:
        """
        Look for an interrupted run.

        A record whose source folder no longer exists is discarded.
        """
        record = self.progress_store.load()
        if record is None:
            return None

        if not Path(record.source_folder).is_dir():
            logger.info("Source folder of interrupted run no longer exists, discarding")
            self.progress_store.clear()
            return None

        return ProgressSummary(
            operation_id=record.operation_id,
            source_folder=record.source_folder,
            mode=record.mode,
            processed_files=record.processed_files,
            total_files=record.total_files,
            started_at=record.started_at,
            output_prefix=record.output_prefix,
            max_files_per_batch=record.max_files_per_batch,
        )

    def discard_interrupted(self) -> None:
        self.progress_store.clear()

    @staticmethod
    def _already_done(operation: Operation, mode: BatchMode) -> bool:
        """Whether an operation's effect is already visible on disk."""
        source = Path(operation.source_path)
        destination = Path(operation.destination_path)
        if not destination.exists():
            return False
        if mode == BatchMode.MOVE:
            return not source.exists()
        try:
            return file_size(source) == file_size(destination)
        except OSError:
            return False

    def resume(self, on_progress: Optional[ProgressCallback] = None) -> ExecutionResult:
        """
        Continue an interrupted run from its stored operation list.

        Files recorded as processed are never touched again. Remaining
        operations whose result is already on disk (finished after the last
        checkpoint) are counted as processed without being re-run.
        """
        self._cancelled.clear()
        record = self.progress_store.load()
        if record is None:
            return ExecutionResult(error="No interrupted progress found")

        source = Path(record.source_folder)
        output = Path(record.output_dir)
        for folder in {source, output}:
            if not self.validator.register(folder):
                raise AccessError("Access denied: folder not selected through the app")

        processed = set(record.processed_file_names)
        pending = [op for op in record.operations if op.file_name not in processed]
        reconciled = [op.file_name for op in pending if self._already_done(op, record.mode)]
        if reconciled:
            logger.info(f"{len(reconciled)} files already in place, counting as processed")
            done = set(reconciled)
            pending = [op for op in pending if op.file_name not in done]

        record = record.model_copy(
            update={"processed_file_names": record.processed_file_names + reconciled}
        )
        already = record.processed_files
        batch_count = len(record.batch_info) or 1

        logger.info(
            f"Resuming {record.operation_id}: {already} processed, "
            f"{len(pending)} remaining"
        )

        if not pending:
            self.progress_store.clear()
            self._record_for_rollback(
                record, record.operations, ExecutionOutcome(processed_files=already)
            )
            return ExecutionResult(
                success=True,
                mode=record.mode,
                batches_created=len(record.batch_info),
                files_processed=already,
                total_files=record.total_files,
                output_dir=output,
                results=record.batch_info,
                message="Operation was already complete",
            )

        try:
            create_batch_folders(
                (Path(op.destination_path).parent for op in pending),
                self.limits.folder_concurrency,
            )
            tracker = self.progress_store.start(record)
        except OSError as e:
            logger.error(f"Failed to prepare resume: {e}")
            return ExecutionResult(mode=record.mode, error=sanitize_error(e, "resume"))

        outcome = self._run(
            pending,
            record.mode,
            tracker,
            batch_count,
            record.total_files,
            already,
            on_progress,
        )

        if not outcome.cancelled:
            self.progress_store.clear()
            self._record_for_rollback(record, record.operations, outcome)

        return ExecutionResult(
            success=not outcome.cancelled,
            cancelled=outcome.cancelled,
            mode=record.mode,
            batches_created=len(record.batch_info),
            files_processed=outcome.processed_files,
            total_files=record.total_files,
            output_dir=output,
            results=record.batch_info,
            errors=outcome.errors,
        )

    # ------------------------------------------------------------------
    # Rollback and history
    # ------------------------------------------------------------------

    def check_rollback_available(self) -> Optional[RollbackSummary]:
        if not self.settings.rollback_enabled:
            return None
        return self.rollback_manager.check_rollback_available()

    def clear_rollback(self) -> None:
        self.rollback_manager.clear_session_manifest()

    def rollback(
        self, on_progress: Optional[RollbackProgressCallback] = None
    ) -> RollbackResult:
        """Undo this session's last move run."""
        if not self.settings.rollback_enabled:
            return RollbackResult(error="Rollback is disabled")
        self._cancelled.clear()
        return self.rollback_manager.rollback(self.is_cancelled, on_progress)

    def get_history(self) -> List[HistoryEntry]:
        return self.rollback_manager.get_history()

    def get_history_entry(self, operation_id: str) -> Optional[HistoryEntry]:
        return self.rollback_manager.get_history_entry(operation_id)

    @staticmethod
    def _check_operation_id(operation_id: str) -> None:
        if not operation_id or sanitize_operation_id(operation_id) != operation_id:
            raise ValidationError("Invalid operation ID")

    def validate_history_entry(self, operation_id: str) -> HistoryValidation:
        self._check_operation_id(operation_id)
        return self.rollback_manager.validate_history_entry(operation_id)

    def rollback_history_entry(
        self,
        operation_id: str,
        force: bool = False,
        on_progress: Optional[RollbackProgressCallback] = None,
    ) -> RollbackResult:
        """
        Undo a past move run from the history.

        Unless `force` is set, a sample of the run's files is checked first
        and the rollback is refused if any of them has left its batch folder.
        """
        self._check_operation_id(operation_id)
        self._cancelled.clear()

        if not force:
            validation = self.rollback_manager.validate_history_entry(operation_id)
            if not validation.valid:
                return RollbackResult(
                    error=validation.error
                    or (
                        f"{validation.missing} of {validation.checked} sampled "
                        f"files are no longer in their batch folders"
                    )
                )

        return self.rollback_manager.rollback_history_entry(
            operation_id, self.is_cancelled, on_progress
        )

    def delete_history_entry(self, operation_id: str) -> bool:
        self._check_operation_id(operation_id)
        return self.rollback_manager.remove_history_entry(operation_id)

    def clear_history(self) -> int:
        return self.rollback_manager.clear_history()

    # ------------------------------------------------------------------
    # Pre-flight
    # ------------------------------------------------------------------

    def preflight(
        self,
        source_folder: Path,
        mode: BatchMode = BatchMode.MOVE,
        output_dir: Optional[Path] = None,
    ) -> PreflightReport:
        """
        Check disk space and write access before executing.

        Raises:
            AccessError: If a folder is not registered or not readable
        """
        self.validator.require_allowed(source_folder, "source folder")
        if output_dir is not None:
            self.validator.require_allowed(output_dir, "output folder")

        files = self.policy.filter(self._list_files(Path(source_folder)))
        return run_preflight(
            Path(source_folder),
            files,
            BatchMode(mode),
            output_dir,
            self.settings.stat_concurrency,
        )
