"""
totpvault - Crypto Self-Tests

Key derivation determinism, AEAD round trip, and the ways decryption must
fail: flipped bits, wrong key, wrong associated data.
"""

import os

import pytest

from conftest import FAST_KDF
from totpvault import crypto
from totpvault.crypto import KdfParams
from totpvault.errors import IntegrityError, KeyDerivationError


def test_kdf():
    """Test key derivation from password."""
    salt = os.urandom(16)

    key1 = crypto.derive_key("test_password", salt, FAST_KDF)
    key2 = crypto.derive_key("test_password", salt, FAST_KDF)

    assert key1 == key2, "KDF should be deterministic"
    assert len(key1) == crypto.KEY_SIZE
    assert isinstance(key1, bytearray)

    key3 = crypto.derive_key("different_password", salt, FAST_KDF)
    assert key1 != key3, "Different passwords should give different keys"

    key4 = crypto.derive_key("test_password", os.urandom(16), FAST_KDF)
    assert key1 != key4, "Different salts should give different keys"


def test_kdf_str_and_bytes_password_agree():
    salt = os.urandom(16)
    assert crypto.derive_key("pässword", salt, FAST_KDF) == \
        crypto.derive_key("pässword".encode("utf-8"), salt, FAST_KDF)


def test_kdf_cost_parameters_change_key():
    salt = os.urandom(16)
    slower = KdfParams(time_cost=2, memory_cost=8, parallelism=1)
    assert crypto.derive_key("pw", salt, FAST_KDF) != crypto.derive_key("pw", salt, slower)


@pytest.mark.parametrize("params", [
    KdfParams(time_cost=0, memory_cost=8, parallelism=1),
    KdfParams(time_cost=1, memory_cost=8, parallelism=0),
    KdfParams(time_cost=1, memory_cost=15, parallelism=2),
    KdfParams(time_cost=1, memory_cost=8, parallelism=1, algorithm="scrypt"),
    KdfParams(time_cost=crypto.ARGON2_MAX_TIME_COST + 1, memory_cost=8, parallelism=1),
    KdfParams(time_cost=1, memory_cost=crypto.ARGON2_MAX_MEMORY_COST + 1, parallelism=1),
    KdfParams(time_cost=1, memory_cost=8 * 256, parallelism=crypto.ARGON2_MAX_PARALLELISM + 1),
    KdfParams(time_cost=2 ** 40, memory_cost=8, parallelism=1),
])
def test_kdf_rejects_malformed_params(params):
    with pytest.raises(KeyDerivationError):
        crypto.derive_key("pw", os.urandom(16), params)


def test_kdf_rejects_short_salt():
    with pytest.raises(KeyDerivationError):
        crypto.derive_key("pw", b"short", FAST_KDF)


def test_default_params_are_valid():
    crypto.DEFAULT_KDF_PARAMS.validate()
    assert crypto.DEFAULT_KDF_PARAMS.algorithm == "argon2id"


def test_encryption():
    """Test ChaCha20-Poly1305 seal/open."""
    key = os.urandom(32)
    nonce = crypto.generate_nonce()
    plaintext = b"This is a secret message!"
    ad = crypto.canonical_ad({"entry": "test-123"})

    ciphertext = crypto.seal(key, nonce, plaintext, ad)
    assert len(ciphertext) == len(plaintext) + crypto.TAG_SIZE
    assert crypto.open_sealed(key, nonce, ciphertext, ad) == plaintext


def test_encrypt_uses_fresh_nonce():
    key = os.urandom(32)
    nonce1, ct1 = crypto.encrypt(key, b"same plaintext")
    nonce2, ct2 = crypto.encrypt(key, b"same plaintext")
    assert len(nonce1) == crypto.NONCE_SIZE
    assert nonce1 != nonce2
    assert ct1 != ct2


def test_tampering_detection():
    key = os.urandom(32)
    nonce, ciphertext = crypto.encrypt(key, b"payload")

    for i in range(len(ciphertext)):
        tampered = bytearray(ciphertext)
        tampered[i] ^= 1
        with pytest.raises(IntegrityError):
            crypto.open_sealed(key, nonce, bytes(tampered))

    tampered_nonce = bytearray(nonce)
    tampered_nonce[0] ^= 0x80
    with pytest.raises(IntegrityError):
        crypto.open_sealed(key, bytes(tampered_nonce), ciphertext)


def test_wrong_key_same_error_as_tampering():
    key = os.urandom(32)
    nonce, ciphertext = crypto.encrypt(key, b"payload")
    with pytest.raises(IntegrityError) as wrong_key:
        crypto.open_sealed(os.urandom(32), nonce, ciphertext)

    tampered = bytearray(ciphertext)
    tampered[-1] ^= 1
    with pytest.raises(IntegrityError) as tampered_err:
        crypto.open_sealed(key, nonce, bytes(tampered))

    assert str(wrong_key.value) == str(tampered_err.value)


def test_associated_data_validation():
    key = os.urandom(32)
    nonce, ciphertext = crypto.encrypt(key, b"payload", crypto.canonical_ad({"v": 1}))
    with pytest.raises(IntegrityError):
        crypto.open_sealed(key, nonce, ciphertext, crypto.canonical_ad({"v": 2}))
    with pytest.raises(IntegrityError):
        crypto.open_sealed(key, nonce, ciphertext, None)


def test_canonical_ad_is_order_independent():
    assert crypto.canonical_ad({"b": 1, "a": 2}) == crypto.canonical_ad({"a": 2, "b": 1})
    assert crypto.canonical_ad({"a": 1}) == b'{"a":1}'


def test_secret_bytes_wiped_on_exit():
    with crypto.secret_bytes("hunter2") as buf:
        held = buf
        assert bytes(held) == b"hunter2"
    assert held == bytearray(len(b"hunter2"))


def test_secret_bytes_wiped_on_error():
    with pytest.raises(RuntimeError):
        with crypto.secret_bytes(b"hunter2") as buf:
            held = buf
            raise RuntimeError("boom")
    assert all(b == 0 for b in held)


def test_secret_bytes_copies_caller_buffer():
    original = bytearray(b"keep me")
    with crypto.secret_bytes(original):
        pass
    assert original == bytearray(b"keep me")


def test_wipe():
    buf = bytearray(b"\x01\x02\x03")
    crypto.wipe(buf)
    assert buf == bytearray(3)
    crypto.wipe(None)


def test_constant_compare():
    assert crypto.constant_compare(b"abc", b"abc")
    assert not crypto.constant_compare(b"abc", b"abd")
    assert crypto.constant_compare(bytearray(b"abc"), bytearray(b"abc"))
