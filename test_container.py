"""Container envelope and payload codec: round trip and malformed input."""

import base64
import json
import os

import pytest

from conftest import FAST_KDF, RFC_SEED_SHA1
from totpvault import container, crypto
from totpvault.container import VaultContainer
from totpvault.entry import HashAlgorithm, SecretEntry
from totpvault.errors import FormatError, IntegrityError


def _entries():
    items = [
        SecretEntry(name="github", secret=RFC_SEED_SHA1),
        SecretEntry(name="bank", secret=b"\x00\xff" * 10, algorithm=HashAlgorithm.SHA256,
                    digits=8, period=60),
        SecretEntry(name="ünïcode", secret=b"k", algorithm="SHA512", digits=10, t0=5),
    ]
    return {e.name: e for e in items}


def _sealed(entries=None):
    key = bytearray(os.urandom(32))
    salt = crypto.generate_salt()
    sealed = container.seal_vault(entries if entries is not None else _entries(),
                                  key, FAST_KDF, salt)
    return sealed, key


def _doc(sealed):
    return json.loads(container.encode_container(sealed))


def test_round_trip():
    """Encode, decode and open reproduce every entry field exactly."""
    entries = _entries()
    sealed, key = _sealed(entries)

    decoded = container.decode_container(container.encode_container(sealed))
    assert decoded == sealed
    assert container.open_vault(decoded, key) == entries


def test_empty_vault_round_trip():
    sealed, key = _sealed({})
    decoded = container.decode_container(container.encode_container(sealed))
    assert container.open_vault(decoded, key) == {}


def test_layout_is_self_describing():
    sealed, _ = _sealed()
    doc = _doc(sealed)
    assert doc["format_version"] == container.FORMAT_VERSION
    assert doc["aead"] == "chacha20poly1305"
    assert doc["kdf"]["algorithm"] == "argon2id"
    assert set(doc["kdf"]) == {"algorithm", "salt", "time_cost", "memory_cost", "parallelism"}
    assert len(base64.b64decode(doc["nonce"])) == crypto.NONCE_SIZE
    assert base64.b64decode(doc["kdf"]["salt"]) == sealed.salt


def test_plaintext_secrets_not_in_file():
    sealed, _ = _sealed()
    raw = container.encode_container(sealed)
    assert b"github" not in raw
    assert b"GEZDGNBV" not in raw


def test_each_seal_uses_new_nonce():
    key = bytearray(os.urandom(32))
    salt = crypto.generate_salt()
    nonces = {container.seal_vault({}, key, FAST_KDF, salt).nonce for _ in range(50)}
    assert len(nonces) == 50


def test_header_is_authenticated():
    """Changing a header field invalidates the tag even with the right key."""
    sealed, key = _sealed()
    changed = VaultContainer(
        kdf_params=crypto.KdfParams(time_cost=2, memory_cost=8, parallelism=1),
        salt=sealed.salt, nonce=sealed.nonce, ciphertext=sealed.ciphertext,
    )
    with pytest.raises(IntegrityError):
        container.open_vault(changed, key)


def test_future_version_fails_loudly():
    sealed, _ = _sealed()
    doc = _doc(sealed)
    doc["format_version"] = 2
    with pytest.raises(FormatError, match="format_version"):
        container.decode_container(json.dumps(doc).encode())


@pytest.mark.parametrize("data", [
    b"",
    b"\xff\xfe not utf8",
    b"{truncated",
    b"[]",
    b'{"format_version": "1"}',
    b'{"format_version": true}',
])
def test_garbage_rejected(data):
    with pytest.raises(FormatError):
        container.decode_container(data)


@pytest.mark.parametrize("mutate", [
    lambda d: d.pop("nonce"),
    lambda d: d.pop("ciphertext"),
    lambda d: d.pop("kdf"),
    lambda d: d["kdf"].pop("salt"),
    lambda d: d["kdf"].update(time_cost="3"),
    lambda d: d.update(aead="aes256gcm"),
    lambda d: d.update(nonce="!!!notbase64"),
    lambda d: d.update(nonce=base64.b64encode(b"short").decode()),
    lambda d: d.update(ciphertext=base64.b64encode(b"tiny").decode()),
])
def test_malformed_fields_rejected(mutate):
    sealed, _ = _sealed()
    doc = _doc(sealed)
    mutate(doc)
    with pytest.raises(FormatError):
        container.decode_container(json.dumps(doc).encode())


def test_payload_schema_errors():
    with pytest.raises(FormatError):
        container.deserialize_entries(b"not json")
    with pytest.raises(FormatError):
        container.deserialize_entries(b'{"schema_version": 2, "entries": []}')
    with pytest.raises(FormatError):
        container.deserialize_entries(b'{"schema_version": 1, "entries": [42]}')
    with pytest.raises(FormatError):
        container.deserialize_entries(
            b'{"schema_version": 1, "entries": [{"name": "", "secret": "MZXW6",'
            b' "algorithm": "SHA1", "digits": 6, "period": 30}]}'
        )


def test_payload_duplicate_names_rejected():
    record = SecretEntry(name="dup", secret=b"x").to_dict()
    payload = json.dumps({"schema_version": 1, "entries": [record, record]}).encode()
    with pytest.raises(FormatError, match="duplicate"):
        container.deserialize_entries(payload)


def test_payload_sorted_by_name():
    payload = json.loads(container.serialize_entries(_entries()))
    names = [r["name"] for r in payload["entries"]]
    assert names == sorted(names)
