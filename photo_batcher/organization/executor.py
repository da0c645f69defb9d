"""
File operation executor.

Runs a list of operations with one of three strategies, chosen once per run:

- copy: worker pool of shutil.copy2
- move, same volume: chunked os.rename (a metadata-only operation)
- move, cross volume: worker pool of copy + size verification + delete

Progress is reported from a ticker thread owned by the run, so callers get
regular updates no matter which strategy is active.
"""

import errno
import logging
import os
import shutil
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from threading import Event, Lock, Thread
from typing import Callable, Iterable, List, Optional, Sequence

from ..core.errors import CopyVerificationError, sanitize_error
from ..core.fileutils import is_same_volume, verify_copy
from ..core.types import BatchMode, FileError, Operation, ProgressEvent

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], None]
ProcessedFilesCallback = Callable[[List[str]], None]
SaveCallback = Callable[[], None]
CancelCheck = Callable[[], bool]


@dataclass
class ConcurrencyLimits:
    """Concurrency ceilings and reporting cadence for one run."""

    file_concurrency: int = 64
    folder_concurrency: int = 20
    move_chunk_size: int = 100
    progress_interval: float = 0.25
    save_interval: float = 2.0


@dataclass
class ExecutionOutcome:
    """What the executor hands back."""

    processed_files: int
    errors: List[FileError] = field(default_factory=list)
    cancelled: bool = False


def _never_cancelled() -> bool:
    return False


class _RunState:
    """Counters shared by the workers and the ticker."""

    def __init__(self, initial_processed: int):
        self._lock = Lock()
        self._processed = initial_processed
        self.attempted = 0
        self.errors: List[FileError] = []

    @property
    def processed(self) -> int:
        with self._lock:
            return self._processed

    def record(self, count: int = 1) -> None:
        with self._lock:
            self._processed += count
            self.attempted += count

    def record_error(self, file_name: str, error: BaseException) -> None:
        message = sanitize_error(error, "execute")
        logger.error(f"Failed to process {file_name}: {error}")
        with self._lock:
            self._processed += 1
            self.attempted += 1
            self.errors.append(FileError(file=file_name, error=message))


class ProgressTicker(Thread):
    """
    Background thread emitting progress and periodic saves.

    Calls `on_tick` every `interval` seconds and `on_save` every
    `save_interval` seconds until stopped.
    """

    def __init__(
        self,
        on_tick: Callable[[], None],
        on_save: Optional[SaveCallback],
        interval: float,
        save_interval: float,
    ):
        super().__init__(name="batch-progress-ticker", daemon=True)
        self._on_tick = on_tick
        self._on_save = on_save
        self._interval = interval
        self._save_interval = save_interval
        self._stopped = Event()

    def run(self) -> None:
        last_save = time.monotonic()
        while not self._stopped.wait(self._interval):
            try:
                self._on_tick()
                if self._on_save and time.monotonic() - last_save >= self._save_interval:
                    last_save = time.monotonic()
                    self._on_save()
            except Exception as e:
                # A reporting failure must not take down the transfer
                logger.error(f"Progress reporting failed: {e}")

    def stop(self) -> None:
        self._stopped.set()
        if self.is_alive():
            self.join()


def build_progress_event(
    processed_files: int, total_files: int, batch_count: int
) -> ProgressEvent:
    """Progress event with the batch number derived from the file count."""
    current = (processed_files * batch_count) // total_files if total_files > 0 else batch_count
    return ProgressEvent(
        current=min(current, batch_count),
        total=batch_count,
        processed_files=processed_files,
        total_files=total_files,
    )


def create_batch_folders(
    folders: Iterable[Path], concurrency: int = 20
) -> None:
    """
    Create batch folders (and parents) with bounded parallelism.

    Raises:
        OSError: If any folder cannot be created
    """
    unique = list(dict.fromkeys(Path(folder) for folder in folders))
    if not unique:
        return

    def _mkdir(folder: Path) -> None:
        folder.mkdir(parents=True, exist_ok=True)

    with ThreadPoolExecutor(max_workers=min(concurrency, len(unique))) as pool:
        # list() surfaces the first failure
        list(pool.map(_mkdir, unique))
    logger.debug(f"Created {len(unique)} batch folders")


def ensure_destination_free(destination: Path) -> None:
    """
    Refuse to transfer onto an existing file.

    copy2 and rename both replace an existing destination silently on POSIX.

    Raises:
        FileExistsError: If something already exists at `destination`
    """
    if os.path.lexists(destination):
        raise FileExistsError(
            errno.EEXIST, os.strerror(errno.EEXIST), str(destination)
        )


def _copy(operation: Operation) -> None:
    ensure_destination_free(operation.destination_path)
    shutil.copy2(operation.source_path, operation.destination_path)


def _copy_verify_delete(operation: Operation) -> None:
    ensure_destination_free(operation.destination_path)
    shutil.copy2(operation.source_path, operation.destination_path)
    try:
        verify_copy(operation.source_path, operation.destination_path)
    except CopyVerificationError:
        # Keep the source; drop the bad copy
        Path(operation.destination_path).unlink(missing_ok=True)
        raise
    os.unlink(operation.source_path)


def _run_worker_pool(
    operations: Sequence[Operation],
    process: Callable[[Operation], None],
    state: _RunState,
    workers: int,
    is_cancelled: CancelCheck,
    on_processed_files: Optional[ProcessedFilesCallback],
) -> None:
    cursor_lock = Lock()
    cursor = [0]

    def _next_index() -> int:
        with cursor_lock:
            index = cursor[0]
            cursor[0] += 1
            return index

    def _worker() -> None:
        while not is_cancelled():
            index = _next_index()
            if index >= len(operations):
                return
            operation = operations[index]
            try:
                process(operation)
            except OSError as e:
                state.record_error(operation.file_name, e)
                continue
            state.record()
            if on_processed_files:
                on_processed_files([operation.file_name])

    thread_count = max(1, min(workers, len(operations)))
    with ThreadPoolExecutor(
        max_workers=thread_count, thread_name_prefix="batch-worker"
    ) as pool:
        futures = [pool.submit(_worker) for _ in range(thread_count)]
        for future in futures:
            future.result()


def _run_chunked_renames(
    operations: Sequence[Operation],
    state: _RunState,
    chunk_size: int,
    is_cancelled: CancelCheck,
    on_processed_files: Optional[ProcessedFilesCallback],
) -> None:
    for start in range(0, len(operations), chunk_size):
        chunk = operations[start : start + chunk_size]
        moved: List[str] = []

        for operation in chunk:
            if is_cancelled():
                break
            try:
                ensure_destination_free(operation.destination_path)
                os.rename(operation.source_path, operation.destination_path)
            except OSError as e:
                state.record_error(operation.file_name, e)
                continue
            state.record()
            moved.append(operation.file_name)

        if moved and on_processed_files:
            on_processed_files(moved)

        if is_cancelled():
            logger.info("Cancelled during move")
            return

        # Let the ticker and other threads run between chunks
        time.sleep(0)


def execute_file_operations(
    operations: Sequence[Operation],
    mode: BatchMode,
    *,
    total_files: int,
    batch_count: int,
    initial_processed: int = 0,
    is_cancelled: CancelCheck = _never_cancelled,
    on_progress: Optional[ProgressCallback] = None,
    on_processed_files: Optional[ProcessedFilesCallback] = None,
    on_save_progress: Optional[SaveCallback] = None,
    limits: Optional[ConcurrencyLimits] = None,
) -> ExecutionOutcome:
    """
    Execute file operations.

    Per-file failures are recorded and processing continues. A failed file
    counts as processed but is not passed to `on_processed_files`, so a
    resume retries it.

    Args:
        operations: Transfers to perform (destination folders must exist)
        mode: Copy or move
        total_files: Size of the whole run, for percentages
        batch_count: Number of batch folders, for the batch counter
        initial_processed: Files already done by an earlier attempt
        is_cancelled: Polled before each file
        on_progress: Receives ProgressEvents
        on_processed_files: Receives names of successfully transferred files
        on_save_progress: Called periodically and once at the end
        limits: Concurrency and cadence

    Returns:
        ExecutionOutcome
    """
    limits = limits or ConcurrencyLimits()
    state = _RunState(initial_processed)

    def _report(processed: int) -> None:
        if on_progress:
            on_progress(build_progress_event(processed, total_files, batch_count))

    if not operations:
        _report(initial_processed)
        if on_save_progress:
            on_save_progress()
        return ExecutionOutcome(processed_files=initial_processed)

    mode = BatchMode(mode)
    first = operations[0]

    ticker = ProgressTicker(
        on_tick=lambda: _report(state.processed),
        on_save=on_save_progress,
        interval=limits.progress_interval,
        save_interval=limits.save_interval,
    )
    ticker.start()

    try:
        if mode == BatchMode.COPY:
            logger.info(
                f"Copying {len(operations)} files with up to "
                f"{limits.file_concurrency} workers"
            )
            _run_worker_pool(
                operations, _copy, state, limits.file_concurrency,
                is_cancelled, on_processed_files,
            )
        elif is_same_volume(first.source_path, first.destination_path):
            logger.info(f"Same-volume move of {len(operations)} files (rename)")
            _run_chunked_renames(
                operations, state, limits.move_chunk_size,
                is_cancelled, on_processed_files,
            )
        else:
            logger.info(
                f"Cross-volume move of {len(operations)} files (copy, verify, delete)"
            )
            _run_worker_pool(
                operations, _copy_verify_delete, state, limits.file_concurrency,
                is_cancelled, on_processed_files,
            )
    finally:
        ticker.stop()

    cancelled = state.attempted < len(operations) and is_cancelled()
    final_count = state.processed if cancelled else initial_processed + len(operations)
    _report(final_count)
    if on_save_progress:
        on_save_progress()

    if state.errors:
        logger.warning(f"{len(state.errors)} files failed")
    if cancelled:
        logger.info(f"Run cancelled after {state.processed} of {total_files} files")

    return ExecutionOutcome(
        processed_files=state.processed,
        errors=list(state.errors),
        cancelled=cancelled,
    )
