"""
Shared utilities for photo-batcher.

File-type policy, base-name handling, formatting and logging setup.
"""

from .media_utils import (
    # Policy constants
    ALLOWED_EXTENSIONS,
    IGNORED_FILES,
    IMAGE_EXTENSIONS,
    RAW_EXTENSIONS,
    VIDEO_EXTENSIONS,
    DEFAULT_POLICY,
    FileTypePolicy,
    is_allowed_file,
    # Names
    split_base_name,
    get_extension,
    # Formatting
    format_bytes,
    # Logging
    setup_logging,
)

__all__ = [
    "ALLOWED_EXTENSIONS",
    "IGNORED_FILES",
    "IMAGE_EXTENSIONS",
    "RAW_EXTENSIONS",
    "VIDEO_EXTENSIONS",
    "DEFAULT_POLICY",
    "FileTypePolicy",
    "is_allowed_file",
    "split_base_name",
    "get_extension",
    "format_bytes",
    "setup_logging",
]
