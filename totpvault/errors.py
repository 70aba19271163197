"""
totpvault - Error Types

Every error raised by the library derives from VaultError, so callers can
catch one base class. Filesystem problems are not wrapped: they surface as
the built-in OSError subclasses, which already carry the failing path.

Layers:
- ValidationError: bad input, rejected before any crypto work
- KeyDerivationError: malformed KDF parameters
- IntegrityError: AEAD tag did not verify (cipher layer)
- FormatError: container bytes are structurally unreadable (codec layer)
- WrongPasswordOrCorrupt: what the vault manager reports for IntegrityError
"""


class VaultError(Exception):
    """Base class for all totpvault errors."""


class ValidationError(VaultError):
    """Input rejected before any cryptographic work was done."""


class InvalidEntry(ValidationError):
    """A SecretEntry field is out of range (empty name/secret, bad digits...)."""


class KeyDerivationError(VaultError):
    """Argon2id parameters are malformed or unsupported by the backend."""


class IntegrityError(VaultError):
    """Authentication tag mismatch: wrong key or modified ciphertext."""


class FormatError(VaultError):
    """Container or payload could not be parsed, or has an unknown version."""


class WrongPasswordOrCorrupt(VaultError):
    """
    The vault could not be opened.

    Raised both for a wrong password and for a tampered/corrupted file.
    The two cases produce the same AEAD failure and are reported with the
    same message, so the error gives no password-guessing oracle.
    """

    def __init__(self, message: str = "could not open vault"):
        super().__init__(message)


class DuplicateName(VaultError):
    """An entry with this name already exists."""


class NotFound(VaultError):
    """No entry with this name exists."""


class AlreadyExists(VaultError):
    """A file already exists at the path given to create()."""


class VaultLocked(VaultError):
    """Operation needs an unlocked vault."""
