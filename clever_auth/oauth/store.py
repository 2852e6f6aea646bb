"""Credential storage for the OAuth token/secret pair.

The default store keeps the pair in an encrypted file:
- Fernet symmetric encryption (AES-128-CBC + HMAC)
- OS keyring for encryption key storage (Keychain, libsecret, DPAPI)
- Owner-only (0600) file permissions
- File locking plus an in-process lock so that save/load/delete never
  interleave, even when logout races with requests reading credentials
"""

import base64
import hashlib
import json
import logging
import os
import stat
import sys
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator

import keyring
from cryptography.fernet import Fernet, InvalidToken

from .tokens import OAuthCredentials

logger = logging.getLogger(__name__)

# File locking support
if sys.platform != "win32":
    import fcntl

    @contextmanager
    def _file_lock(filepath: Path, exclusive: bool = True) -> Generator[None, None, None]:
        """Acquire a file lock (Unix implementation using fcntl)."""
        lock_path = filepath.with_suffix(filepath.suffix + ".lock")
        lock_path.touch(exist_ok=True)

        with open(lock_path, "r") as lock_file:
            try:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX if exclusive else fcntl.LOCK_SH)
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
else:
    import msvcrt

    @contextmanager
    def _file_lock(filepath: Path, exclusive: bool = True) -> Generator[None, None, None]:
        """Acquire a file lock (Windows implementation using msvcrt).

        msvcrt has no shared locks, so every lock is exclusive.
        """
        lock_path = filepath.with_suffix(filepath.suffix + ".lock")
        lock_path.touch(exist_ok=True)

        with open(lock_path, "r+") as lock_file:
            try:
                msvcrt.locking(lock_file.fileno(), msvcrt.LK_LOCK, 1)
                yield
            finally:
                try:
                    msvcrt.locking(lock_file.fileno(), msvcrt.LK_UNLCK, 1)
                except OSError:
                    pass


# Keyring entry holding the file encryption key
KEYRING_SERVICE = "clever-auth"
KEYRING_USERNAME = "credentials-encryption-key"

# Default storage location
DEFAULT_STORE_DIR = Path.home() / ".config" / "clever-auth"

CREDENTIALS_FILE = "credentials.json"

# Single logical key the pair is stored under
CREDENTIALS_KEY = "cli_credentials"


class CredentialStoreError(Exception):
    """Error in credential storage operations."""

    pass


class CredentialDecryptionError(CredentialStoreError):
    """Stored credentials cannot be decrypted or parsed.

    Raised when the encryption key changed (keyring cleared, different
    machine) or the file is corrupted. Callers treat the credentials as
    absent and delete them.
    """

    pass


class CredentialStore(ABC):
    """Persistence for one OAuthCredentials pair."""

    @abstractmethod
    def save(self, credentials: OAuthCredentials) -> None:
        """Store the pair, replacing any previous one."""

    @abstractmethod
    def load(self) -> OAuthCredentials | None:
        """Return the stored pair, or None if nothing is stored.

        Raises:
            CredentialDecryptionError: If stored data is unreadable
        """

    @abstractmethod
    def delete(self) -> bool:
        """Delete the stored pair. Returns True if something was deleted."""

    def has_credentials(self) -> bool:
        """Check whether a valid (non-empty) pair is stored."""
        try:
            credentials = self.load()
        except CredentialDecryptionError:
            return False
        return credentials is not None and credentials.is_valid()


class MemoryCredentialStore(CredentialStore):
    """In-process store, used when nothing should touch the disk."""

    def __init__(self, credentials: OAuthCredentials | None = None):
        self._credentials = credentials
        self._lock = threading.Lock()

    def save(self, credentials: OAuthCredentials) -> None:
        with self._lock:
            self._credentials = credentials

    def load(self) -> OAuthCredentials | None:
        with self._lock:
            return self._credentials

    def delete(self) -> bool:
        with self._lock:
            existed = self._credentials is not None
            self._credentials = None
            return existed


def _derive_fallback_key() -> bytes:
    """Derive a fallback encryption key from machine-specific data.

    Used when keyring is not available. Less secure than keyring but
    still provides encryption at rest.

    Returns:
        32-byte key suitable for Fernet
    """
    components = []

    machine_id_path = Path("/etc/machine-id")
    if machine_id_path.exists():
        components.append(machine_id_path.read_text().strip())

    components.append(str(Path.home()))
    components.append(os.environ.get("USER", os.environ.get("USERNAME", "clever-auth")))

    combined = ":".join(components)
    key_bytes = hashlib.sha256(combined.encode()).digest()

    # Fernet requires base64-encoded 32-byte key
    return base64.urlsafe_b64encode(key_bytes)


class EncryptedCredentialStore(CredentialStore):
    """Encrypted file storage for the OAuth credential pair.

    The pair is encrypted with Fernet using a key kept in the OS keyring,
    and written to ~/.config/clever-auth/credentials.json with 0600
    permissions.
    """

    def __init__(self, store_dir: Path | None = None, keyring_service: str = KEYRING_SERVICE):
        """Initialize credential store.

        Args:
            store_dir: Optional custom storage directory
            keyring_service: Keyring service name for the encryption key
        """
        self.store_dir = store_dir or DEFAULT_STORE_DIR
        self.keyring_service = keyring_service
        self._cipher: Fernet | None = None
        self._using_keyring = False
        self._lock = threading.RLock()

        self._init_storage()
        self._init_encryption()

    @property
    def path(self) -> Path:
        return self.store_dir / CREDENTIALS_FILE

    def _init_storage(self) -> None:
        """Initialize storage directory with secure permissions."""
        self.store_dir.mkdir(parents=True, exist_ok=True)

        try:
            self.store_dir.chmod(stat.S_IRWXU)
        except OSError as e:
            logger.warning(f"Could not set directory permissions: {e}")

    def _init_encryption(self) -> None:
        """Initialize encryption using keyring or fallback."""
        try:
            key = keyring.get_password(self.keyring_service, KEYRING_USERNAME)

            if key is None:
                key = Fernet.generate_key().decode("ascii")
                keyring.set_password(self.keyring_service, KEYRING_USERNAME, key)
                logger.debug("Generated new encryption key in keyring")

            self._cipher = Fernet(key.encode("ascii"))
            self._using_keyring = True
            logger.debug("Using keyring for encryption key storage")

        except Exception as e:
            logger.warning(
                f"Keyring not available: {type(e).__name__}: {e}. "
                f"Using fallback encryption (machine-derived key). "
                f"Credentials are still encrypted but with reduced security."
            )
            self._cipher = Fernet(_derive_fallback_key())
            self._using_keyring = False

    def _encrypt(self, data: str) -> str:
        if self._cipher is None:
            raise CredentialStoreError("Encryption not initialized")
        return self._cipher.encrypt(data.encode("utf-8")).decode("ascii")

    def _decrypt(self, data: str) -> str:
        if self._cipher is None:
            raise CredentialStoreError("Encryption not initialized")
        try:
            return self._cipher.decrypt(data.encode("ascii")).decode("utf-8")
        except InvalidToken as e:
            raise CredentialDecryptionError(
                "Failed to decrypt stored credentials. The encryption key may have changed."
            ) from e

    def _read(self) -> dict[str, Any]:
        """Read and decrypt the credentials file (shared lock)."""
        if not self.path.exists():
            return {}

        with _file_lock(self.path, exclusive=False):
            encrypted = self.path.read_text()

        try:
            result: dict[str, Any] = json.loads(self._decrypt(encrypted))
        except json.JSONDecodeError as e:
            raise CredentialDecryptionError(
                f"Credentials file {self.path} is corrupted. "
                f"Run 'clever-auth auth reset' and log in again."
            ) from e
        return result

    def _write(self, data: dict[str, Any]) -> None:
        """Encrypt and write the credentials file (exclusive lock, 0600)."""
        encrypted = self._encrypt(json.dumps(data, indent=2))

        with _file_lock(self.path, exclusive=True):
            self.path.write_text(encrypted)
            try:
                self.path.chmod(stat.S_IRUSR | stat.S_IWUSR)
            except OSError as e:
                logger.warning(f"Could not set file permissions: {e}")

    def save(self, credentials: OAuthCredentials) -> None:
        with self._lock:
            self._write({CREDENTIALS_KEY: credentials.to_dict()})
        logger.info("Stored CLI credentials")

    def load(self) -> OAuthCredentials | None:
        with self._lock:
            data = self._read()

        if CREDENTIALS_KEY not in data:
            return None

        try:
            return OAuthCredentials.from_dict(data[CREDENTIALS_KEY])
        except (KeyError, TypeError) as e:
            raise CredentialDecryptionError(f"Stored credentials are malformed: {e}") from e

    def delete(self) -> bool:
        with self._lock:
            if not self.path.exists():
                return False
            with _file_lock(self.path, exclusive=True):
                self.path.unlink()
        logger.info("Deleted CLI credentials")
        return True

    def is_using_keyring(self) -> bool:
        """Check if keyring is being used for encryption key storage."""
        return self._using_keyring
