"""
Crash-recovery store for in-flight batch runs.

The progress record is written atomically (temp file + rename) and protected
by an HMAC keyed with a per-installation secret. When encryption is enabled
the JSON document is additionally sealed in an AES-256-GCM envelope.

A record that fails verification, cannot be decrypted or cannot be parsed
is deleted and treated as "no interrupted run".
"""

import hashlib
import hmac
import json
import logging
import os
import secrets
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterable, List, Optional, Set

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from pydantic import ValidationError as ModelValidationError

from ..core.errors import IntegrityError
from ..core.types import ProgressRecord

logger = logging.getLogger(__name__)

PROGRESS_FILE_NAME = "batch_progress.json"
INTEGRITY_KEY_FILE = ".integrity_key"
INTEGRITY_FIELD = "integrity"

ENCRYPTION_INFO = b"batch-progress-encryption"
IV_LENGTH = 12
AUTH_TAG_LENGTH = 16


class InstallationKey:
    """
    Per-installation secret (32 random bytes, hex encoded).

    Generated on first use and stored with owner-only permissions. If the
    key cannot be persisted it is still used in memory for this session.
    """

    def __init__(self, key_file: Path):
        self.key_file = Path(key_file)
        self._cached: Optional[str] = None
        self._lock = Lock()

    def get(self) -> str:
        with self._lock:
            if self._cached is None:
                self._cached = self._read() or self._generate()
            return self._cached

    @property
    def secret(self) -> bytes:
        return bytes.fromhex(self.get())

    def _read(self) -> Optional[str]:
        try:
            value = self.key_file.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"Could not read integrity key, generating a new one: {e}")
            return None

        try:
            if len(bytes.fromhex(value)) == 32:
                return value
        except ValueError:
            pass
        logger.warning("Integrity key file is malformed, generating a new one")
        return None

    def _generate(self) -> str:
        value = secrets.token_hex(32)
        try:
            self.key_file.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(
                self.key_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
            logger.info("Generated new integrity key for this installation")
        except OSError as e:
            logger.error(f"Could not persist integrity key: {e}")
        return value


def canonical_json(data: Dict[str, Any]) -> bytes:
    """Deterministic JSON encoding (keys sorted at every depth)."""
    return json.dumps(data, sort_keys=True, separators=(",", ":")).encode("utf-8")


def compute_integrity(data: Dict[str, Any], secret: bytes) -> str:
    """HMAC-SHA256 hex digest over the record without its integrity field."""
    clean = {k: v for k, v in data.items() if k != INTEGRITY_FIELD}
    return hmac.new(secret, canonical_json(clean), hashlib.sha256).hexdigest()


def verify_integrity(data: Dict[str, Any], secret: bytes) -> None:
    """
    Raises:
        IntegrityError: If the integrity field is missing or does not match
    """
    expected = data.get(INTEGRITY_FIELD)
    if not isinstance(expected, str):
        raise IntegrityError("Progress record has no integrity field")
    if not hmac.compare_digest(expected, compute_integrity(data, secret)):
        raise IntegrityError("Progress record integrity check failed")


def derive_encryption_key(secret: bytes) -> bytes:
    """AES-256 key derived from the installation secret with HKDF-SHA256."""
    return HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=None,
        info=ENCRYPTION_INFO,
    ).derive(secret)


def encrypt_payload(plaintext: bytes, key: bytes) -> Dict[str, Any]:
    """Seal bytes in an {encrypted, iv, authTag, ciphertext} envelope."""
    iv = os.urandom(IV_LENGTH)
    sealed = AESGCM(key).encrypt(iv, plaintext, None)
    return {
        "encrypted": True,
        "iv": iv.hex(),
        "authTag": sealed[-AUTH_TAG_LENGTH:].hex(),
        "ciphertext": sealed[:-AUTH_TAG_LENGTH].hex(),
    }


def decrypt_payload(envelope: Dict[str, Any], key: bytes) -> bytes:
    """
    Open an envelope produced by encrypt_payload.

    Raises:
        IntegrityError: On a malformed envelope or failed authentication
    """
    try:
        iv = bytes.fromhex(envelope["iv"])
        tag = bytes.fromhex(envelope["authTag"])
        ciphertext = bytes.fromhex(envelope["ciphertext"])
    except (KeyError, TypeError, ValueError) as e:
        raise IntegrityError(f"Malformed encryption envelope: {e}") from e

    if len(iv) != IV_LENGTH or len(tag) != AUTH_TAG_LENGTH:
        raise IntegrityError("Malformed encryption envelope")

    try:
        return AESGCM(key).decrypt(iv, ciphertext + tag, None)
    except InvalidTag as e:
        raise IntegrityError("Progress record failed to decrypt") from e


class ProgressStore:
    """Reads and writes the single in-flight progress record."""

    def __init__(
        self,
        data_dir: Path,
        key: Optional[InstallationKey] = None,
        encryption_enabled: bool = True,
    ):
        """
        Initialize the store.

        Args:
            data_dir: Application data directory
            key: Installation secret (defaults to <data_dir>/.integrity_key)
            encryption_enabled: Seal records in an AES-GCM envelope
        """
        self.data_dir = Path(data_dir)
        self.path = self.data_dir / PROGRESS_FILE_NAME
        self.temp_path = self.path.with_name(self.path.name + ".tmp")
        self.key = key or InstallationKey(self.data_dir / INTEGRITY_KEY_FILE)
        self.encryption_enabled = encryption_enabled

    def exists(self) -> bool:
        return self.path.exists()

    def serialize(self, record: ProgressRecord) -> str:
        """Render a record as the on-disk document."""
        data = record.model_dump(mode="json")
        data[INTEGRITY_FIELD] = compute_integrity(data, self.key.secret)
        text = json.dumps(data, indent=2)

        if self.encryption_enabled:
            envelope = encrypt_payload(
                text.encode("utf-8"), derive_encryption_key(self.key.secret)
            )
            text = json.dumps(envelope, indent=2)
        return text

    def save(self, record: ProgressRecord) -> None:
        """
        Atomically write a record.

        Raises:
            OSError: If the write fails
        """
        text = self.serialize(record)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        with open(self.temp_path, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(self.temp_path, self.path)
        logger.debug(
            f"Saved progress {record.operation_id}: "
            f"{record.processed_files}/{record.total_files}"
        )

    def _parse(self, text: str) -> ProgressRecord:
        data = json.loads(text)
        if not isinstance(data, dict):
            raise IntegrityError("Progress record is not a JSON object")

        if data.get("encrypted") is True:
            plaintext = decrypt_payload(data, derive_encryption_key(self.key.secret))
            data = json.loads(plaintext.decode("utf-8"))
            if not isinstance(data, dict):
                raise IntegrityError("Progress record is not a JSON object")

        verify_integrity(data, self.key.secret)
        data.pop(INTEGRITY_FIELD, None)
        return ProgressRecord.model_validate(data)

    def load(self) -> Optional[ProgressRecord]:
        """
        Load and verify the stored record.

        Returns:
            The record, or None if there is none or it failed verification
            (in which case the file is deleted)
        """
        if not self.path.exists():
            return None

        try:
            text = self.path.read_text(encoding="utf-8")
            record = self._parse(text)
        except IntegrityError as e:
            logger.error(f"Progress file rejected, possible tampering: {e}")
            self._discard()
            return None
        except (OSError, ValueError, ModelValidationError) as e:
            # json.JSONDecodeError and UnicodeDecodeError are ValueErrors
            logger.error(f"Progress file is corrupted: {e}")
            self._discard()
            return None

        logger.info(
            f"Found interrupted run {record.operation_id}: "
            f"{record.processed_files} of {record.total_files} files processed"
        )
        return record

    def _discard(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
            logger.info("Deleted invalid progress file")
        except OSError as e:
            logger.error(f"Could not delete invalid progress file: {e}")

    def remove_temp(self) -> None:
        try:
            self.temp_path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not remove temporary progress file: {e}")

    def clear(self) -> None:
        """Delete the record and any stray temp file."""
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            logger.error(f"Failed to clear progress: {e}")
        self.remove_temp()
        logger.debug("Cleared progress file")

    def start(self, record: ProgressRecord) -> "ProgressTracker":
        """
        Persist the initial record and return a tracker for the run.

        Raises:
            OSError: If the initial record cannot be written
        """
        self.save(record)
        logger.info(f"Started tracking progress: {record.operation_id}")
        return ProgressTracker(self, record)


class ProgressTracker:
    """
    Live progress state of one run.

    `add_processed_files` only touches memory; `flush` persists. Concurrent
    flushes coalesce: one writer runs, and at most one follow-up write is
    queued behind it.
    """

    def __init__(self, store: ProgressStore, record: ProgressRecord):
        self.store = store
        self._record = record
        self._names: List[str] = list(record.processed_file_names)
        self._seen: Set[str] = set(self._names)
        self._lock = Lock()
        self._flush_lock = Lock()
        self._write_lock = Lock()
        self._flushing = False
        self._pending = False
        self._closed = False

    @property
    def operation_id(self) -> str:
        return self._record.operation_id

    @property
    def processed_count(self) -> int:
        with self._lock:
            return len(self._names)

    @property
    def closed(self) -> bool:
        return self._closed

    def add_processed_files(self, file_names: Iterable[str]) -> None:
        with self._lock:
            for name in file_names:
                if name not in self._seen:
                    self._seen.add(name)
                    self._names.append(name)

    def snapshot(self) -> ProgressRecord:
        with self._lock:
            names = list(self._names)
        return self._record.model_copy(
            update={"processed_file_names": names, "last_updated": datetime.now()}
        )

    def flush(self) -> None:
        """Persist the current state, coalescing with a write in flight."""
        with self._flush_lock:
            if self._closed:
                return
            if self._flushing:
                self._pending = True
                return
            self._flushing = True

        while True:
            with self._write_lock:
                if not self._closed:
                    try:
                        self.store.save(self.snapshot())
                    except OSError as e:
                        logger.error(f"Failed to save progress: {e}")

            with self._flush_lock:
                if self._pending and not self._closed:
                    self._pending = False
                    continue
                self._pending = False
                self._flushing = False
                return

    def close(self) -> None:
        """Stop accepting flushes; waits for a write in flight."""
        with self._flush_lock:
            self._closed = True
        with self._write_lock:
            self.store.remove_temp()
