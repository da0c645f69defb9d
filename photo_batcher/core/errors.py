"""
Error taxonomy and user-facing error sanitization.

Full error details are logged; only fixed, path-free messages are handed
back to callers (CLI output, result objects).
"""

import errno
import logging
import re
from typing import List, Tuple, Union

logger = logging.getLogger(__name__)


class BatchError(Exception):
    """Base class for operation-level errors."""


class ValidationError(BatchError):
    """Bad parameters, rejected before any I/O."""


class AccessError(BatchError):
    """Folder not pre-approved or not accessible; aborts the operation."""


class IntegrityError(BatchError):
    """A persisted progress record failed verification."""


class CopyVerificationError(OSError):
    """Destination size does not match the source after a copy."""

    def __init__(self, source_size: int, destination_size: int):
        super().__init__(
            f"Copy verification failed - size mismatch "
            f"({source_size} != {destination_size})"
        )
        self.source_size = source_size
        self.destination_size = destination_size


ERROR_CODE_MESSAGES = {
    "ENOENT": "File or folder not found. It may have been moved or deleted.",
    "EACCES": "Permission denied. Check that you have access to this folder.",
    "EPERM": "Operation not permitted. The file may be in use or read-only.",
    "ENOSPC": "Not enough disk space to complete the operation.",
    "EMFILE": "Too many files open. Please close some applications and try again.",
    "ENFILE": "System file limit reached. Please close some applications and try again.",
    "EBUSY": "The file or folder is in use by another process.",
    "EEXIST": "A file or folder with that name already exists.",
    "EISDIR": "Expected a file but found a directory.",
    "ENOTDIR": "Expected a directory but found a file.",
    "EXDEV": "Cannot move files across different drives in this mode.",
}

ERROR_MESSAGE_PATTERNS: List[Tuple[re.Pattern, str]] = [
    (
        re.compile(r"not selected through", re.IGNORECASE),
        "Access denied. Please select the folder using the app.",
    ),
    (
        re.compile(r"access denied", re.IGNORECASE),
        "Access denied. The folder was not selected through the app.",
    ),
    (
        re.compile(r"copy verification failed", re.IGNORECASE),
        "File copy verification failed. Please try again.",
    ),
]

DEFAULT_ERROR_MESSAGE = "An unexpected error occurred. Please try again."


def _match_pattern(message: str) -> Union[str, None]:
    for pattern, safe_message in ERROR_MESSAGE_PATTERNS:
        if pattern.search(message):
            return safe_message
    return None


def sanitize_error(error: Union[BaseException, str], context: str = "") -> str:
    """
    Map an error to a user-safe message.

    Args:
        error: The caught exception (or a plain message)
        context: Optional label for the log line (e.g. "execute")

    Returns:
        Fixed user-facing text; never a raw path or traceback
    """
    prefix = f"[{context}]" if context else "[batch]"
    logger.debug(f"{prefix} Error: {error!r}")

    if isinstance(error, str):
        return _match_pattern(error) or DEFAULT_ERROR_MESSAGE

    if isinstance(error, ValidationError):
        # Validation messages are built from fixed text, never from paths
        return str(error)

    if isinstance(error, OSError) and error.errno is not None:
        code = errno.errorcode.get(error.errno)
        if code in ERROR_CODE_MESSAGES:
            return ERROR_CODE_MESSAGES[code]

    return _match_pattern(str(error)) or DEFAULT_ERROR_MESSAGE
