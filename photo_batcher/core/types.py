"""
Type definitions for batch planning, execution, progress and rollback.
"""

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class BatchMode(str, Enum):
    """How files reach their batch folder."""

    COPY = "copy"
    MOVE = "move"


class SortOrder(str, Enum):
    """Order in which file groups are fed to the bin-packer."""

    NAME_ASC = "name-asc"
    NAME_DESC = "name-desc"
    DATE_ASC = "date-asc"
    DATE_DESC = "date-desc"
    SIZE_DESC = "size-desc"

    @property
    def is_date_based(self) -> bool:
        return self in (SortOrder.DATE_ASC, SortOrder.DATE_DESC)


class FileGroup(BaseModel):
    """Files sharing a base name (e.g. IMG_0001.jpg + IMG_0001.cr2)."""

    model_config = ConfigDict(frozen=True)

    base_name: str
    members: List[str] = Field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.members)


class Batch(BaseModel):
    """A capacity-bounded collection of file groups bound for one folder."""

    model_config = ConfigDict(frozen=True)

    index: int = Field(description="1-based batch number")
    groups: List[FileGroup] = Field(default_factory=list)

    @property
    def file_count(self) -> int:
        return sum(group.size for group in self.groups)

    @property
    def file_names(self) -> List[str]:
        return [name for group in self.groups for name in group.members]


class OversizedGroup(BaseModel):
    """A group larger than the per-batch cap; it occupies a batch alone."""

    name: str
    count: int


class Operation(BaseModel):
    """A single file transfer into a batch folder."""

    model_config = ConfigDict(frozen=True)

    file_name: str
    source_path: Path
    destination_path: Path
    batch_index: int = Field(description="0-based index of the target batch")


class BatchSummary(BaseModel):
    """Per-batch result line."""

    folder: str
    file_count: int


class FileError(BaseModel):
    """A per-file failure with a user-safe message."""

    file: str
    error: str


class ProgressEvent(BaseModel):
    """Throttled progress report sent to the caller."""

    current: int
    total: int
    processed_files: int
    total_files: int

    @property
    def percent(self) -> float:
        if self.total_files <= 0:
            return 100.0
        return min(100.0, self.processed_files * 100.0 / self.total_files)


class RollbackProgressEvent(BaseModel):
    """Progress report sent while restoring files."""

    current: int
    total: int
    restored_files: int


class PlanRequest(BaseModel):
    """Parameters for planning a split of one folder."""

    source_folder: Path
    max_files_per_batch: int = 500
    output_prefix: Optional[str] = None
    sort_order: SortOrder = SortOrder.SIZE_DESC


class BatchPlan(BaseModel):
    """Result of planning: batches plus bookkeeping for display."""

    request: PlanRequest
    batches: List[Batch] = Field(default_factory=list)
    oversized_groups: List[OversizedGroup] = Field(default_factory=list)
    total_files: int = 0
    eligible_files: int = 0
    skipped_files: int = 0
    group_count: int = 0
    largest_group: int = 0

    @property
    def batch_count(self) -> int:
        return len(self.batches)


class ExecutionResult(BaseModel):
    """Result of an execute or resume call."""

    success: bool = False
    cancelled: bool = False
    mode: Optional[BatchMode] = None
    batches_created: int = 0
    files_processed: int = 0
    total_files: int = 0
    output_dir: Optional[Path] = None
    results: List[BatchSummary] = Field(default_factory=list)
    errors: List[FileError] = Field(default_factory=list)
    message: Optional[str] = None
    error: Optional[str] = None

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0

    @property
    def error_count(self) -> int:
        return len(self.errors)


class ProgressRecord(BaseModel):
    """In-flight execution state persisted for crash recovery."""

    operation_id: str
    started_at: datetime = Field(default_factory=datetime.now)
    last_updated: datetime = Field(default_factory=datetime.now)
    source_folder: Path
    output_dir: Path
    mode: BatchMode
    max_files_per_batch: int
    output_prefix: str
    sort_order: SortOrder = SortOrder.SIZE_DESC
    total_files: int
    processed_file_names: List[str] = Field(default_factory=list)
    operations: List[Operation] = Field(default_factory=list)
    batch_info: List[BatchSummary] = Field(default_factory=list)

    @property
    def processed_files(self) -> int:
        return len(self.processed_file_names)


class ProgressSummary(BaseModel):
    """What an interrupted run looks like to the caller."""

    operation_id: str
    source_folder: Path
    mode: BatchMode
    processed_files: int
    total_files: int
    started_at: datetime
    output_prefix: str
    max_files_per_batch: int


class RollbackFile(BaseModel):
    """Where a moved file came from and where it is now."""

    file_name: str
    original_path: Path
    current_path: Path


class HistoryEntry(BaseModel):
    """Summary of a past move run kept in the persistent history index."""

    operation_id: str
    created_at: datetime = Field(default_factory=datetime.now)
    mode: BatchMode = BatchMode.MOVE
    source_folder: Path
    output_folder: Path
    total_files: int = 0
    batch_folders: List[str] = Field(default_factory=list)
    output_prefix: str = ""
    max_files_per_batch: Optional[int] = None
    sort_order: SortOrder = SortOrder.SIZE_DESC
    batch_results: List[BatchSummary] = Field(default_factory=list)

    @property
    def batch_folder_count(self) -> int:
        return len(self.batch_folders)


class RollbackManifest(HistoryEntry):
    """Full reversal data for one move run."""

    files: List[RollbackFile] = Field(default_factory=list)

    def to_history_entry(self) -> HistoryEntry:
        return HistoryEntry.model_validate(
            self.model_dump(exclude={"files"}),
        )


class RollbackSummary(BaseModel):
    """Session rollback availability."""

    operation_id: str
    created_at: datetime
    source_folder: Path
    total_files: int
    batch_folder_count: int


class RollbackResult(BaseModel):
    """Result of reversing a move run."""

    success: bool = False
    cancelled: bool = False
    restored_files: int = 0
    total_files: int = 0
    deleted_folders: int = 0
    source_folder: Optional[Path] = None
    errors: List[FileError] = Field(default_factory=list)
    error: Optional[str] = None

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def failed_files(self) -> int:
        return len(self.errors)


class HistoryValidation(BaseModel):
    """Outcome of sampling a history entry's recorded file locations."""

    valid: bool
    checked: int = 0
    found: int = 0
    missing: int = 0
    error: Optional[str] = None


class DiskSpaceReport(BaseModel):
    """Free vs. required space on the destination volume."""

    free_bytes: Optional[int] = None
    total_bytes: Optional[int] = None
    required_bytes: int = 0
    sufficient: Optional[bool] = None
    skipped: bool = False
    reason: Optional[str] = None


class PreflightReport(BaseModel):
    """Disk space and permission checks run before executing."""

    same_volume: bool
    disk_space: Optional[DiskSpaceReport] = None
    writable: bool = False
    permission_error: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)
    total_files: int = 0
    total_size: int = 0
    total_size_formatted: str = "0 B"

    @property
    def ok(self) -> bool:
        space_ok = self.disk_space is None or self.disk_space.sufficient is not False
        return self.writable and space_ok
