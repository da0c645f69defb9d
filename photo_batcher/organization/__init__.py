"""
Organization module for splitting folders into batches.

Planning groups RAW+JPEG siblings and bin-packs them into capped batches;
execution copies or moves the files with crash-recovery checkpoints, and
move runs are recorded so they can be undone.
"""

from .builder import build_operations
from .executor import ConcurrencyLimits, ExecutionOutcome, execute_file_operations
from .naming import generate_batch_folder_name
from .planner import PlannedBatches, group_files_by_base_name, plan_batches, sort_groups
from .progress import InstallationKey, ProgressStore, ProgressTracker
from .rollback import RollbackManager
from .service import BatchService

__all__ = [
    "build_operations",
    "ConcurrencyLimits",
    "ExecutionOutcome",
    "execute_file_operations",
    "generate_batch_folder_name",
    "PlannedBatches",
    "group_files_by_base_name",
    "plan_batches",
    "sort_groups",
    "InstallationKey",
    "ProgressStore",
    "ProgressTracker",
    "RollbackManager",
    "BatchService",
]
