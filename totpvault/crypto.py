"""
totpvault - Cryptography Module

All cryptographic primitives used by the vault live in this one file:

    1. Password + salt -> Argon2id -> Vault Key (32 bytes)
    2. Vault Key + fresh nonce -> ChaCha20-Poly1305 -> sealed entry list
    3. Container header is bound to the ciphertext as associated data

Only the 'cryptography' library is used. Argon2id is memory-hard, so each
password guess costs an attacker real RAM, and ChaCha20-Poly1305 gives
confidentiality and tamper detection in one call.

Sensitive buffers (password bytes, derived keys) are held in bytearrays so
they can be zeroed in place once they are no longer needed. CPython may
still hold immutable copies we cannot reach; wiping is best effort.
"""

import hmac
import json
import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional, Tuple, Union

from cryptography.exceptions import InvalidTag, UnsupportedAlgorithm
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.argon2 import Argon2id

from .errors import IntegrityError, KeyDerivationError

logger = logging.getLogger(__name__)

BytesLike = Union[bytes, bytearray, memoryview]
Secret = Union[str, bytes, bytearray, memoryview]


# =============================================================================
# Configuration
# =============================================================================

KEY_SIZE = 32            # 256-bit key
NONCE_SIZE = 12          # 96-bit nonce for ChaCha20-Poly1305
TAG_SIZE = 16            # 128-bit Poly1305 tag
SALT_SIZE = 16           # 128-bit salt, fresh per container
MIN_SALT_SIZE = 8        # Argon2 refuses shorter salts

KDF_ALGORITHM = "argon2id"
AEAD_ALGORITHM = "chacha20poly1305"

# Argon2id parameters (RFC 9106, second recommended option)
# time_cost = passes over memory, memory_cost in KiB, parallelism = lanes
ARGON2_TIME_COST = 3
ARGON2_MEMORY_COST = 64 * 1024   # 64 MiB
ARGON2_PARALLELISM = 4

# Upper bounds for parameters read back from a container header
ARGON2_MAX_TIME_COST = 64
ARGON2_MAX_MEMORY_COST = 4 * 1024 * 1024   # 4 GiB
ARGON2_MAX_PARALLELISM = 255


# =============================================================================
# Sensitive Buffers
# =============================================================================

def wipe(buf: Optional[bytearray]) -> None:
    """Overwrite a bytearray with zeros in place (no-op for None)."""
    if buf is None:
        return
    for i in range(len(buf)):
        buf[i] = 0


def to_secret_buffer(data: Secret) -> bytearray:
    """
    Copy a password/secret into a fresh bytearray that the caller must wipe.

    str input is UTF-8 encoded.
    """
    if isinstance(data, str):
        return bytearray(data.encode("utf-8"))
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytearray(data)
    raise TypeError(f"expected str or bytes-like, got {type(data).__name__}")


@contextmanager
def secret_bytes(data: Secret) -> Iterator[bytearray]:
    """
    Scoped access to sensitive bytes.

    Yields a private bytearray copy of data and zeroes it on every exit
    path, including exceptions.

    Usage:
        with secret_bytes(password) as pw:
            key = derive(pw)
    """
    buf = to_secret_buffer(data)
    try:
        yield buf
    finally:
        wipe(buf)


# =============================================================================
# Key Derivation (Argon2id)
# =============================================================================

@dataclass(frozen=True)
class KdfParams:
    """
    Cost parameters for the KDF.

    These are persisted in every container next to the salt, so a vault
    created under old defaults keeps opening after the defaults change.
    """

    time_cost: int = ARGON2_TIME_COST
    memory_cost: int = ARGON2_MEMORY_COST
    parallelism: int = ARGON2_PARALLELISM
    algorithm: str = KDF_ALGORITHM

    def validate(self) -> None:
        """
        Raises:
            KeyDerivationError: If any parameter is outside the accepted range
        """
        if self.algorithm != KDF_ALGORITHM:
            raise KeyDerivationError(f"Unsupported KDF algorithm: {self.algorithm!r}")
        for field in ("time_cost", "memory_cost", "parallelism"):
            value = getattr(self, field)
            if isinstance(value, bool) or not isinstance(value, int):
                raise KeyDerivationError(f"{field} must be an integer")
        if not 1 <= self.time_cost <= ARGON2_MAX_TIME_COST:
            raise KeyDerivationError(
                f"time_cost must be between 1 and {ARGON2_MAX_TIME_COST}, got {self.time_cost}"
            )
        if not 1 <= self.parallelism <= ARGON2_MAX_PARALLELISM:
            raise KeyDerivationError(
                f"parallelism must be between 1 and {ARGON2_MAX_PARALLELISM}, got {self.parallelism}"
            )
        if self.memory_cost > ARGON2_MAX_MEMORY_COST:
            raise KeyDerivationError(
                f"memory_cost must be at most {ARGON2_MAX_MEMORY_COST} KiB, got {self.memory_cost}"
            )
        if self.memory_cost < 8 * self.parallelism:
            raise KeyDerivationError(
                f"memory_cost must be at least 8 * parallelism KiB "
                f"({8 * self.parallelism}), got {self.memory_cost}"
            )


DEFAULT_KDF_PARAMS = KdfParams()


def generate_salt() -> bytes:
    """Fresh random salt (one per container, replaced on password change)."""
    return os.urandom(SALT_SIZE)


def derive_key(password: Secret, salt: bytes, params: KdfParams = DEFAULT_KDF_PARAMS) -> bytearray:
    """
    Derive the vault key from a password using Argon2id.

    Same password + salt + params always gives the same key. The password
    copy used for hashing is wiped before this returns.

    Args:
        password: Master password (str is UTF-8 encoded)
        salt: Per-container random salt (not secret)
        params: Persisted cost parameters

    Returns:
        32-byte key as a bytearray (caller wipes it with wipe())

    Raises:
        KeyDerivationError: If params or salt are malformed
    """
    params.validate()
    if not isinstance(salt, (bytes, bytearray)) or len(salt) < MIN_SALT_SIZE:
        raise KeyDerivationError(f"salt must be at least {MIN_SALT_SIZE} bytes")

    logger.debug(
        "Deriving key with Argon2id: t=%d, m=%d KiB, p=%d",
        params.time_cost, params.memory_cost, params.parallelism,
    )

    with secret_bytes(password) as pw:
        try:
            kdf = Argon2id(
                salt=bytes(salt),
                length=KEY_SIZE,
                iterations=params.time_cost,
                lanes=params.parallelism,
                memory_cost=params.memory_cost,
            )
            derived = kdf.derive(pw)
        except (ValueError, OverflowError, UnsupportedAlgorithm) as e:
            raise KeyDerivationError(f"Argon2id derivation failed: {e}") from e

    key = bytearray(derived)
    del derived
    return key


# =============================================================================
# Canonical Associated Data
# =============================================================================

def canonical_ad(ad: dict) -> bytes:
    """
    Convert associated data to canonical JSON bytes.

    Same dict always gives the same bytes: keys sorted, no whitespace,
    UTF-8 without escaping. Decryption only succeeds if the reader rebuilds
    exactly the bytes the writer authenticated.
    """
    json_str = json.dumps(ad, separators=(",", ":"), sort_keys=True, ensure_ascii=False)
    return json_str.encode("utf-8")


# =============================================================================
# Authenticated Encryption (ChaCha20-Poly1305)
# =============================================================================

def generate_nonce() -> bytes:
    """96 random bits; a fresh one for every seal under a key."""
    return os.urandom(NONCE_SIZE)


def seal(key: BytesLike, nonce: bytes, plaintext: bytes,
         associated_data: Optional[bytes] = None) -> bytes:
    """
    Encrypt and authenticate plaintext.

    Args:
        key: 32-byte key
        nonce: 12-byte nonce, never reused under the same key
        plaintext: Data to protect
        associated_data: Authenticated but unencrypted context (optional)

    Returns:
        ciphertext || 16-byte tag
    """
    return ChaCha20Poly1305(key).encrypt(nonce, plaintext, associated_data)


def open_sealed(key: BytesLike, nonce: bytes, ciphertext: bytes,
                associated_data: Optional[bytes] = None) -> bytes:
    """
    Verify and decrypt the output of seal().

    Tag verification is constant-time inside the library, so a wrong key
    and a flipped bit fail the same way.

    Raises:
        IntegrityError: If the tag does not verify
    """
    try:
        return ChaCha20Poly1305(key).decrypt(nonce, ciphertext, associated_data)
    except InvalidTag:
        raise IntegrityError("authentication tag mismatch") from None


def encrypt(key: BytesLike, plaintext: bytes,
            associated_data: Optional[bytes] = None) -> Tuple[bytes, bytes]:
    """
    seal() with a freshly generated nonce.

    Returns:
        (nonce, ciphertext) - both must be stored
    """
    nonce = generate_nonce()
    return nonce, seal(key, nonce, plaintext, associated_data)


# =============================================================================
# Helpers
# =============================================================================

def constant_compare(a: BytesLike, b: BytesLike) -> bool:
    """Compare two byte strings in constant time (hmac.compare_digest)."""
    return hmac.compare_digest(a, b)
