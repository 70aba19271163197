"""
totpvault - Local Encrypted TOTP Vault

Keeps the seed secrets of several authenticator accounts in one encrypted
file that the user controls and can sync by any means (cloud drive, USB...).

Key Features:
- Argon2id key derivation with per-container salt and stored cost parameters
- ChaCha20-Poly1305 authenticated encryption of the whole account list
- RFC 6238 TOTP codes (SHA-1, SHA-256, SHA-512)
- Atomic writes: a crash never leaves a half-written vault
- Password rotation with a fresh salt and nonce

Components:
- entry.py: SecretEntry value type and Base32 secret decoding
- crypto.py: Argon2id, ChaCha20-Poly1305, secret buffer wiping
- otp.py: HOTP/TOTP code generation
- container.py: on-disk envelope and payload schema
- vault.py: VaultHandle (unlock, CRUD, rotation, atomic persistence)
- errors.py: exception hierarchy

Usage:
    from totpvault import create_vault, unlock_vault, add_entry, current_code

    create_vault("accounts.totp", "master password")
    vault = unlock_vault("accounts.totp", "master password")
    add_entry(vault, "github", "JBSWY3DPEHPK3PXP", encoded=True)
    code, seconds_left = current_code(vault, "github")
    vault.lock()
"""

from .crypto import DEFAULT_KDF_PARAMS, KdfParams
from .entry import HashAlgorithm, SecretEntry, decode_base32_secret
from .errors import (
    AlreadyExists,
    DuplicateName,
    FormatError,
    IntegrityError,
    InvalidEntry,
    KeyDerivationError,
    NotFound,
    ValidationError,
    VaultError,
    VaultLocked,
    WrongPasswordOrCorrupt,
)
from .vault import (
    VaultHandle,
    add_entry,
    create_vault,
    current_code,
    list_entries,
    lock_vault,
    remove_entry,
    rotate_password,
    unlock_vault,
)

__version__ = "0.3.1"

__all__ = [
    "AlreadyExists",
    "DEFAULT_KDF_PARAMS",
    "DuplicateName",
    "FormatError",
    "HashAlgorithm",
    "IntegrityError",
    "InvalidEntry",
    "KdfParams",
    "KeyDerivationError",
    "NotFound",
    "SecretEntry",
    "ValidationError",
    "VaultError",
    "VaultHandle",
    "VaultLocked",
    "WrongPasswordOrCorrupt",
    "add_entry",
    "create_vault",
    "current_code",
    "decode_base32_secret",
    "list_entries",
    "lock_vault",
    "remove_entry",
    "rotate_password",
    "unlock_vault",
]
