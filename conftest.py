"""
Shared pytest fixtures for the totpvault test suite.

Real Argon2id defaults take 64 MiB and noticeable time per derivation, so
vault tests run with the smallest parameters Argon2 accepts. The format
stores them per container, so nothing else changes.
"""

import pytest

from totpvault.crypto import KdfParams


FAST_KDF = KdfParams(time_cost=1, memory_cost=8, parallelism=1)

PASSWORD = "correct horse battery staple"

# RFC 6238 Appendix B seeds
RFC_SEED_SHA1 = b"12345678901234567890"
RFC_SEED_SHA256 = b"12345678901234567890123456789012"
RFC_SEED_SHA512 = b"1234567890123456789012345678901234567890123456789012345678901234"


@pytest.fixture
def fast_kdf():
    return FAST_KDF


@pytest.fixture
def vault_path(tmp_path):
    """Path for a vault file that does not exist yet."""
    return tmp_path / "accounts.totp"


@pytest.fixture
def vault(vault_path):
    """Unlocked, empty vault created with fast KDF parameters."""
    from totpvault.vault import VaultHandle

    handle = VaultHandle.create(vault_path, PASSWORD, FAST_KDF)
    yield handle
    handle.lock()
