"""
totpvault - Vault Module

This file handles:
- Creating a new vault file
- Unlocking (password -> key -> decrypted entries)
- Adding/removing/listing entries and showing their current codes
- Password rotation
- Atomic persistence (temp file + fsync + rename)

A vault handle is in one of two states:

    Locked   -- only the path is known; no key, no entries
    Unlocked -- key and decrypted entries held in memory

Every mutation follows the same path: change the in-memory entries,
serialize, seal with a fresh nonce, write a temp file next to the vault,
fsync it, then os.replace() it over the vault. Until the rename the old
file is untouched, so a crash at any point leaves either the old or the
new vault on disk, never a mix.
"""

import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from . import crypto, otp
from .container import VaultContainer, decode_container, encode_container, open_vault, seal_vault
from .crypto import DEFAULT_KDF_PARAMS, KdfParams
from .entry import (
    DEFAULT_DIGITS,
    DEFAULT_PERIOD,
    HashAlgorithm,
    SecretEntry,
    decode_base32_secret,
)
from .errors import (
    AlreadyExists,
    DuplicateName,
    IntegrityError,
    InvalidEntry,
    NotFound,
    VaultLocked,
    WrongPasswordOrCorrupt,
)

logger = logging.getLogger(__name__)

PathLike = Union[str, "os.PathLike[str]"]


# =============================================================================
# VAULT CLASS
# =============================================================================

class VaultHandle:
    """
    An open (or closed) TOTP vault file.

    Usage:
        # Create new vault (returns an unlocked handle)
        vault = VaultHandle.create("accounts.totp", "master password")

        # Later: unlock vault
        vault = VaultHandle.open("accounts.totp", "master password")

        vault.add("github", decode_base32_secret("JBSWY3DPEHPK3PXP"))
        code, remaining = vault.show("github")

        # Lock when done (or use the handle as a context manager)
        vault.lock()
    """

    def __init__(self, path: PathLike):
        """
        Bind a handle to a path (does not read or unlock anything).

        Args:
            path: Vault file path
        """
        self.path = Path(path)
        self.kdf_params: Optional[KdfParams] = None
        self.salt: Optional[bytes] = None

        # Only present when unlocked
        self._key: Optional[bytearray] = None
        self._entries: Optional[Dict[str, SecretEntry]] = None

    def __repr__(self) -> str:
        state = "unlocked" if self.is_unlocked else "locked"
        return f"<VaultHandle {str(self.path)!r} {state}>"

    def __enter__(self) -> "VaultHandle":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.lock()

    @property
    def is_unlocked(self) -> bool:
        return self._key is not None and self._entries is not None

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @classmethod
    def create(cls, path: PathLike, password: crypto.Secret,
               params: Optional[KdfParams] = None) -> "VaultHandle":
        """
        Create a new, empty vault file and return it unlocked.

        Args:
            path: Where to write the vault (parent directory must exist)
            password: Master password
            params: KDF cost parameters (defaults to DEFAULT_KDF_PARAMS)

        Raises:
            AlreadyExists: If something already exists at path
            KeyDerivationError: If params are malformed
            OSError: If the file cannot be written
        """
        vault = cls(path)
        if os.path.lexists(vault.path):
            raise AlreadyExists(f"{vault.path} already exists")

        params = params or DEFAULT_KDF_PARAMS
        salt = crypto.generate_salt()
        key = crypto.derive_key(password, salt, params)
        try:
            vault._persist({}, key, params, salt)
        except BaseException:
            crypto.wipe(key)
            raise

        vault._key = key
        vault._entries = {}
        vault.kdf_params = params
        vault.salt = salt
        logger.info("Created vault at %s", vault.path)
        return vault

    @classmethod
    def open(cls, path: PathLike, password: crypto.Secret) -> "VaultHandle":
        """Shortcut for VaultHandle(path).unlock(password)."""
        vault = cls(path)
        vault.unlock(password)
        return vault

    def unlock(self, password: crypto.Secret) -> None:
        """
        Read the vault file and decrypt it with password.

        Uses the KDF parameters stored in the file, not the current defaults.
        An already unlocked handle keeps its state if this fails.

        Raises:
            WrongPasswordOrCorrupt: Tag mismatch (wrong password OR tampered file)
            FormatError: File is not a readable vault container
            KeyDerivationError: Stored KDF parameters are out of range
            OSError: File cannot be read
        """
        container = self._read_container()
        key = crypto.derive_key(password, container.salt, container.kdf_params)
        try:
            entries = open_vault(container, key)
        except IntegrityError:
            crypto.wipe(key)
            logger.warning("Failed to unlock vault at %s", self.path)
            raise WrongPasswordOrCorrupt() from None
        except BaseException:
            crypto.wipe(key)
            raise

        self.lock()
        self._key = key
        self._entries = entries
        self.kdf_params = container.kdf_params
        self.salt = container.salt
        logger.info("Unlocked vault at %s (%d entries)", self.path, len(entries))

    def lock(self) -> None:
        """Lock vault: wipe the key and drop decrypted entries."""
        crypto.wipe(self._key)
        self._key = None
        if self._entries is not None:
            self._entries.clear()
        self._entries = None

    # =========================================================================
    # ENTRIES
    # =========================================================================

    def add(
        self,
        name: str,
        secret: bytes,
        algorithm: Union[HashAlgorithm, str] = HashAlgorithm.SHA1,
        digits: int = DEFAULT_DIGITS,
        period: int = DEFAULT_PERIOD,
        t0: int = 0,
    ) -> SecretEntry:
        """
        Add an account and persist the vault before returning.

        Args:
            name: Unique entry name
            secret: Raw secret bytes (see decode_base32_secret for Base32 input)
            algorithm: HMAC digest
            digits: Code length (6..10)
            period: Time step in seconds
            t0: Unix time the step counter starts from

        Returns:
            The stored SecretEntry

        Raises:
            InvalidEntry: Field validation failed (nothing written)
            DuplicateName: Name already in the vault (nothing written)
        """
        entry = SecretEntry(name=name, secret=secret, algorithm=algorithm,
                            digits=digits, period=period, t0=t0)
        self.add_entry(entry)
        return entry

    def add_entry(self, entry: SecretEntry) -> None:
        """Add a prebuilt SecretEntry (same rules as add())."""
        entries = self._require_unlocked()
        if entry.name in entries:
            raise DuplicateName(f"Entry {entry.name!r} already exists")

        entries[entry.name] = entry
        try:
            self._save()
        except BaseException:
            del entries[entry.name]
            raise
        logger.info("Added entry %r", entry.name)

    def remove(self, name: str) -> None:
        """
        Remove an account and persist the vault.

        Raises:
            NotFound: No such entry (nothing written)
        """
        entries = self._require_unlocked()
        if name not in entries:
            raise NotFound(f"Entry {name!r} not found")

        removed = entries.pop(name)
        try:
            self._save()
        except BaseException:
            entries[name] = removed
            raise
        logger.info("Removed entry %r", name)

    def get(self, name: str) -> SecretEntry:
        """
        Raises:
            NotFound: No such entry
        """
        entries = self._require_unlocked()
        try:
            return entries[name]
        except KeyError:
            raise NotFound(f"Entry {name!r} not found") from None

    def show(self, name: str, now: Optional[otp.Instant] = None) -> Tuple[str, int]:
        """
        Current code for an entry.

        Args:
            name: Entry name
            now: Instant to compute for (defaults to the current time)

        Returns:
            (code, seconds_remaining)
        """
        entry = self.get(name)
        if now is None:
            now = time.time()
        return otp.generate(entry, now)

    def names(self) -> List[str]:
        """Entry names in lexicographic order."""
        return sorted(self._require_unlocked())

    def __len__(self) -> int:
        return len(self._require_unlocked())

    def __contains__(self, name: object) -> bool:
        return name in self._require_unlocked()

    # =========================================================================
    # PASSWORD ROTATION
    # =========================================================================

    def change_password(self, old_password: crypto.Secret, new_password: crypto.Secret,
                        params: Optional[KdfParams] = None) -> None:
        """
        Re-key the vault under a new password.

        A new salt is generated and the whole vault is re-encrypted under the
        new key with a fresh nonce. The old file stays in place until the new
        one has been fully written and renamed over it, so a crash leaves a
        vault that still opens with the old password.

        Args:
            old_password: Current password (checked against the held key)
            new_password: Replacement password
            params: KDF costs for the new key (defaults to DEFAULT_KDF_PARAMS)

        Raises:
            VaultLocked: Vault is not unlocked
            WrongPasswordOrCorrupt: old_password does not match
        """
        entries = self._require_unlocked()

        check = crypto.derive_key(old_password, self.salt, self.kdf_params)
        try:
            if not crypto.constant_compare(check, self._key):
                logger.warning("Password change rejected for vault at %s", self.path)
                raise WrongPasswordOrCorrupt()
        finally:
            crypto.wipe(check)

        new_params = params or DEFAULT_KDF_PARAMS
        new_salt = crypto.generate_salt()
        new_key = crypto.derive_key(new_password, new_salt, new_params)
        try:
            self._persist(entries, new_key, new_params, new_salt)
        except BaseException:
            crypto.wipe(new_key)
            raise

        crypto.wipe(self._key)
        self._key = new_key
        self.kdf_params = new_params
        self.salt = new_salt
        logger.info("Changed password for vault at %s", self.path)

    # =========================================================================
    # INTERNAL HELPERS
    # =========================================================================

    def _require_unlocked(self) -> Dict[str, SecretEntry]:
        """Check that vault is unlocked and return its entries."""
        if not self.is_unlocked:
            raise VaultLocked("Vault is locked. Call unlock() first.")
        return self._entries

    def _read_container(self) -> VaultContainer:
        with open(self.path, "rb") as f:
            data = f.read()
        return decode_container(data)

    def _save(self) -> None:
        self._persist(self._entries, self._key, self.kdf_params, self.salt)

    def _persist(self, entries: Dict[str, SecretEntry], key: bytearray,
                 params: KdfParams, salt: bytes) -> None:
        """Seal entries under key (fresh nonce) and atomically replace the file."""
        container = seal_vault(entries, key, params, salt)
        self._write_atomic(encode_container(container))

    def _write_atomic(self, data: bytes) -> None:
        """
        Write data to the vault path all-or-nothing.

        Temp file in the same directory (same filesystem, so the rename is
        atomic), mode 0600, fsync before rename, temp removed on failure.
        """
        directory = self.path.parent
        fd, tmp_path = tempfile.mkstemp(
            dir=directory, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            # Clean up temp file on failure
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

        logger.debug("Wrote %d bytes to %s", len(data), self.path)
        _fsync_directory(directory)


def _fsync_directory(directory: Path) -> None:
    """Persist the rename itself (POSIX only; a no-op elsewhere)."""
    if os.name != "posix":
        return
    try:
        fd = os.open(directory, os.O_RDONLY)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)
    except OSError as e:
        # The rename already happened; some filesystems refuse directory fsync.
        logger.debug("Directory fsync skipped for %s: %s", directory, e)


# =============================================================================
# FUNCTIONAL API
# =============================================================================

def create_vault(path: PathLike, password: crypto.Secret,
                 params: Optional[KdfParams] = None) -> None:
    """Create an empty vault file at path (see VaultHandle.create)."""
    VaultHandle.create(path, password, params).lock()


def unlock_vault(path: PathLike, password: crypto.Secret) -> VaultHandle:
    """Open the vault at path; the returned handle is unlocked."""
    return VaultHandle.open(path, password)


def lock_vault(handle: VaultHandle) -> None:
    handle.lock()


def add_entry(
    handle: VaultHandle,
    name: str,
    secret_input: Union[str, bytes],
    encoded: bool,
    algorithm: Union[HashAlgorithm, str] = HashAlgorithm.SHA1,
    digits: int = DEFAULT_DIGITS,
    period: int = DEFAULT_PERIOD,
    t0: int = 0,
) -> None:
    """
    Add an entry from user input.

    Args:
        handle: Unlocked vault
        name: Entry name
        secret_input: Base32 text when encoded is True (as found in otpauth://
            URIs), otherwise the raw secret (str is UTF-8 encoded)
        encoded: Whether secret_input is Base32
        algorithm, digits, period, t0: OTP parameters
    """
    if encoded:
        if isinstance(secret_input, (bytes, bytearray)):
            try:
                secret_input = bytes(secret_input).decode("ascii")
            except UnicodeDecodeError:
                raise InvalidEntry("Base32 secret must be ASCII text") from None
        secret = decode_base32_secret(secret_input)
    elif isinstance(secret_input, str):
        secret = secret_input.encode("utf-8")
    elif isinstance(secret_input, (bytes, bytearray, memoryview)):
        secret = bytes(secret_input)
    else:
        raise InvalidEntry(
            f"secret must be str or bytes-like, got {type(secret_input).__name__}"
        )
    handle.add(name, secret, algorithm=algorithm, digits=digits, period=period, t0=t0)


def remove_entry(handle: VaultHandle, name: str) -> None:
    handle.remove(name)


def list_entries(handle: VaultHandle) -> List[str]:
    """Entry names, sorted."""
    return handle.names()


def current_code(handle: VaultHandle, name: str,
                 now: Optional[otp.Instant] = None) -> Tuple[str, int]:
    """(code, seconds_remaining) for entry name at now (default: current time)."""
    return handle.show(name, now)


def rotate_password(handle: VaultHandle, old_password: crypto.Secret,
                    new_password: crypto.Secret, params: Optional[KdfParams] = None) -> None:
    """Change the vault password (see VaultHandle.change_password)."""
    handle.change_password(old_password, new_password, params)
