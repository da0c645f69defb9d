"""
Batch folder naming.

Patterns may contain the variables {count}, {date}, {year} and {month}
(matched case-insensitively). A pattern without {count} gets "_{count}"
appended so every batch folder name is unique.
"""

import re
from datetime import datetime
from typing import Optional

DEFAULT_PATTERN = "Batch"

# Minimum zero-padding width of the batch number
MIN_COUNT_WIDTH = 3

_COUNT = re.compile(r"\{count\}", re.IGNORECASE)
_DATE = re.compile(r"\{date\}", re.IGNORECASE)
_YEAR = re.compile(r"\{year\}", re.IGNORECASE)
_MONTH = re.compile(r"\{month\}", re.IGNORECASE)


def generate_batch_folder_name(
    pattern: Optional[str],
    batch_index: int,
    total_batches: int,
    now: Optional[datetime] = None,
) -> str:
    """
    Build the folder name for one batch.

    Args:
        pattern: User pattern, e.g. "Trip_{date}_{count}" (None means "Batch")
        batch_index: 0-based batch index
        total_batches: Number of batches in the run (drives the padding)
        now: Clock value for the date variables (defaults to now)

    Returns:
        Folder name such as "Batch_001"

    Examples:
        >>> generate_batch_folder_name(None, 0, 5)
        'Batch_001'
        >>> generate_batch_folder_name("Set_{count}", 9, 10)
        'Set_010'
    """
    name = pattern or DEFAULT_PATTERN
    if not _COUNT.search(name):
        name = f"{name}_{{count}}"

    now = now or datetime.now()
    width = max(MIN_COUNT_WIDTH, len(str(total_batches)))
    count = str(batch_index + 1).zfill(width)

    # Callables keep backslashes in values from being read as group refs
    name = _YEAR.sub(lambda _: f"{now.year}", name)
    name = _MONTH.sub(lambda _: f"{now.month:02d}", name)
    name = _DATE.sub(lambda _: now.strftime("%Y-%m-%d"), name)
    return _COUNT.sub(lambda _: count, name)
