"""
Batch planner.

Groups files by base name so RAW+JPEG siblings stay together, orders the
groups, then bin-packs them into capacity-bounded batches.
"""

import logging
import re
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from pydantic import BaseModel, Field

from ..core.types import Batch, FileGroup, OversizedGroup, SortOrder
from ..shared.media_utils import DEFAULT_POLICY, FileTypePolicy, split_base_name

logger = logging.getLogger(__name__)

# Number of most recent batches searched for room before opening a new one
BATCH_SEARCH_DEPTH = 50

LARGE_DATASET_GROUPS = 50000
STATS_LOG_GROUPS = 10000

_DIGITS = re.compile(r"(\d+)")


class PlannedBatches(BaseModel):
    """Output of the bin-packer."""

    batches: List[Batch] = Field(default_factory=list)
    oversized_groups: List[OversizedGroup] = Field(default_factory=list)

    @property
    def total_files(self) -> int:
        return sum(batch.file_count for batch in self.batches)


def group_files_by_base_name(
    file_names: Iterable[str], policy: FileTypePolicy = DEFAULT_POLICY
) -> List[FileGroup]:
    """
    Group allowed files by base name.

    Member order follows input order; groups appear in order of their first
    member.

    Args:
        file_names: Bare file names from one folder
        policy: Which files take part

    Returns:
        List of file groups
    """
    groups: Dict[str, List[str]] = {}
    skipped = 0

    for name in file_names:
        if not policy.is_allowed(name):
            skipped += 1
            continue
        groups.setdefault(split_base_name(name), []).append(name)

    if skipped:
        logger.info(f"Skipped {skipped} non-media/system files")

    return [FileGroup(base_name=base, members=members) for base, members in groups.items()]


def natural_key(text: str) -> Tuple:
    """Case-insensitive sort key where "photo2" sorts before "photo10"."""
    return tuple(
        (0, int(part), "") if part.isdigit() else (1, 0, part)
        for part in _DIGITS.split(text.casefold())
        if part
    )


def _group_timestamp(group: FileGroup, timestamps: Mapping[str, float]) -> float:
    return min((timestamps.get(name, 0.0) for name in group.members), default=0.0)


def sort_groups(
    groups: List[FileGroup],
    sort_order: SortOrder,
    timestamps: Optional[Mapping[str, float]] = None,
) -> List[FileGroup]:
    """
    Order groups before packing.

    Args:
        groups: Groups to order
        sort_order: Requested order
        timestamps: Per-file timestamps, required for the date orders
            (missing entries count as 0)

    Returns:
        New, stably sorted list
    """
    if sort_order in (SortOrder.NAME_ASC, SortOrder.NAME_DESC):
        return sorted(
            groups,
            key=lambda g: natural_key(g.base_name),
            reverse=sort_order == SortOrder.NAME_DESC,
        )

    if sort_order in (SortOrder.DATE_ASC, SortOrder.DATE_DESC):
        stamps = timestamps or {}
        return sorted(
            groups,
            key=lambda g: _group_timestamp(g, stamps),
            reverse=sort_order == SortOrder.DATE_DESC,
        )

    # Largest groups first packs tightest
    return sorted(groups, key=lambda g: g.size, reverse=True)


def pack_groups(
    groups: List[FileGroup],
    max_files_per_batch: int,
    search_depth: int = BATCH_SEARCH_DEPTH,
) -> PlannedBatches:
    """
    Greedy bin-packing over a bounded window of recent batches.

    Each group goes into the newest batch (scanning backwards, at most
    `search_depth` batches) with room for it, otherwise into a new batch.
    A group larger than the cap is never split: it gets a batch of its own.

    Args:
        groups: Groups in packing order
        max_files_per_batch: Capacity of each batch
        search_depth: How many recent batches to try

    Returns:
        PlannedBatches with 1-based batch indices
    """
    contents: List[List[FileGroup]] = []
    counts: List[int] = []
    oversized: List[OversizedGroup] = []

    for group in groups:
        if group.size > max_files_per_batch:
            oversized.append(OversizedGroup(name=group.base_name, count=group.size))
            contents.append([group])
            counts.append(group.size)
            continue

        placed = False
        lowest = max(0, len(contents) - search_depth)
        for j in range(len(contents) - 1, lowest - 1, -1):
            if counts[j] + group.size <= max_files_per_batch:
                contents[j].append(group)
                counts[j] += group.size
                placed = True
                break

        if not placed:
            contents.append([group])
            counts.append(group.size)

    batches = [
        Batch(index=i + 1, groups=batch_groups)
        for i, batch_groups in enumerate(contents)
    ]
    return PlannedBatches(batches=batches, oversized_groups=oversized)


def plan_batches(
    file_names: Iterable[str],
    max_files_per_batch: int,
    sort_order: SortOrder = SortOrder.SIZE_DESC,
    timestamps: Optional[Mapping[str, float]] = None,
    policy: FileTypePolicy = DEFAULT_POLICY,
    search_depth: int = BATCH_SEARCH_DEPTH,
) -> PlannedBatches:
    """
    Plan batches for a folder listing.

    Args:
        file_names: Bare file names
        max_files_per_batch: Per-batch cap (>= 1)
        sort_order: Group ordering before packing
        timestamps: Per-file timestamps for the date orders
        policy: File-type policy
        search_depth: Bin-packing window

    Returns:
        PlannedBatches
    """
    if max_files_per_batch < 1:
        raise ValueError("max_files_per_batch must be at least 1")

    groups = group_files_by_base_name(file_names, policy)
    if len(groups) > LARGE_DATASET_GROUPS:
        logger.warning(
            f"Large dataset detected: {len(groups):,} file groups, "
            f"planning may take a moment"
        )

    ordered = sort_groups(groups, SortOrder(sort_order), timestamps)
    planned = pack_groups(ordered, max_files_per_batch, search_depth)

    if len(groups) > STATS_LOG_GROUPS:
        logger.info(
            f"Packed {len(groups):,} groups into {len(planned.batches)} batches "
            f"({planned.total_files:,} files)"
        )
    for item in planned.oversized_groups:
        logger.warning(
            f"Group '{item.name}' has {item.count} files, more than the "
            f"{max_files_per_batch} per batch; it gets its own batch"
        )

    return planned
