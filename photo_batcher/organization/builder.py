"""
Operation builder: turns planned batches into concrete file transfers.
"""

from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from ..core.types import Batch, BatchSummary, Operation
from .naming import generate_batch_folder_name


def batch_folder_names(
    batch_count: int, prefix: Optional[str], now: Optional[datetime] = None
) -> List[str]:
    """Folder names for every batch of a run, in batch order."""
    now = now or datetime.now()
    return [
        generate_batch_folder_name(prefix, i, batch_count, now)
        for i in range(batch_count)
    ]


def build_operations(
    batches: Sequence[Batch],
    source_folder: Path,
    output_dir: Path,
    prefix: Optional[str],
    now: Optional[datetime] = None,
) -> Tuple[List[Operation], List[BatchSummary]]:
    """
    Expand batches into one operation per file.

    Pure: no file system access. The same inputs and clock value always give
    the same result.

    Args:
        batches: Planned batches
        source_folder: Folder the files currently live in
        output_dir: Root under which batch folders are created
        prefix: Folder name pattern
        now: Clock value for date variables in the pattern

    Returns:
        (operations, per-batch summaries)
    """
    source_folder = Path(source_folder)
    output_dir = Path(output_dir)
    names = batch_folder_names(len(batches), prefix, now)

    operations: List[Operation] = []
    summaries: List[BatchSummary] = []

    for batch_index, (batch, folder_name) in enumerate(zip(batches, names)):
        batch_folder = output_dir / folder_name
        for file_name in batch.file_names:
            operations.append(
                Operation(
                    file_name=file_name,
                    source_path=source_folder / file_name,
                    destination_path=batch_folder / file_name,
                    batch_index=batch_index,
                )
            )
        summaries.append(BatchSummary(folder=folder_name, file_count=batch.file_count))

    return operations, summaries
