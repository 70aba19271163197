"""
totpvault - Vault Container Codec

On-disk format (UTF-8 JSON, binary fields Base64):

    {
      "format_version": 1,
      "kdf": {"algorithm": "argon2id", "salt": "...", "time_cost": 3,
              "memory_cost": 65536, "parallelism": 4},
      "aead": "chacha20poly1305",
      "nonce": "...",
      "ciphertext": "..."
    }

Everything except nonce and ciphertext is the header. The header is passed
to the cipher as associated data, so changing e.g. the KDF costs in the
file makes decryption fail instead of silently deriving a different key.

The ciphertext decrypts to the entry payload, which has its own fixed
schema:

    {"schema_version": 1, "entries": [{"name", "secret", "algorithm",
                                       "digits", "period", "t0"}, ...]}

Structural problems raise FormatError. Authentication problems raise
IntegrityError from the crypto layer; the two are never mixed.
"""

import base64
import binascii
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping

from . import crypto
from .crypto import KdfParams
from .entry import SecretEntry
from .errors import FormatError, InvalidEntry

logger = logging.getLogger(__name__)


FORMAT_VERSION = 1
SUPPORTED_FORMAT_VERSIONS = (1,)
PAYLOAD_SCHEMA_VERSION = 1


@dataclass(frozen=True)
class VaultContainer:
    """Parsed on-disk envelope. Holds no secrets (only salt, nonce, ciphertext)."""

    kdf_params: KdfParams
    salt: bytes
    nonce: bytes
    ciphertext: bytes
    aead: str = crypto.AEAD_ALGORITHM
    format_version: int = FORMAT_VERSION

    def header(self) -> Dict[str, Any]:
        """Header fields as stored on disk (also the AEAD associated data)."""
        return {
            "format_version": self.format_version,
            "kdf": {
                "algorithm": self.kdf_params.algorithm,
                "salt": _b64encode(self.salt),
                "time_cost": self.kdf_params.time_cost,
                "memory_cost": self.kdf_params.memory_cost,
                "parallelism": self.kdf_params.parallelism,
            },
            "aead": self.aead,
        }

    def associated_data(self) -> bytes:
        return crypto.canonical_ad(self.header())


# =============================================================================
# Envelope
# =============================================================================

def _b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _b64decode(value: Any, what: str) -> bytes:
    if not isinstance(value, str):
        raise FormatError(f"{what} must be a Base64 string")
    try:
        return base64.b64decode(value.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError):
        raise FormatError(f"{what} is not valid Base64") from None


def _require(obj: Mapping[str, Any], key: str, kind: type, where: str) -> Any:
    if key not in obj:
        raise FormatError(f"missing field {where}{key}")
    value = obj[key]
    if isinstance(value, bool) or not isinstance(value, kind):
        raise FormatError(f"field {where}{key} has wrong type")
    return value


def encode_container(container: VaultContainer) -> bytes:
    """Serialize a container to file bytes."""
    doc = container.header()
    doc["nonce"] = _b64encode(container.nonce)
    doc["ciphertext"] = _b64encode(container.ciphertext)
    return (json.dumps(doc, indent=2) + "\n").encode("utf-8")


def decode_container(data: bytes) -> VaultContainer:
    """
    Parse file bytes into a VaultContainer.

    Only the structure is checked here; nothing is decrypted.

    Raises:
        FormatError: Not JSON, missing/ill-typed fields, bad Base64, wrong
            nonce length, unknown AEAD, or unsupported format_version
    """
    try:
        doc = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        raise FormatError("container is not valid UTF-8 JSON") from None
    if not isinstance(doc, dict):
        raise FormatError("container root must be an object")

    version = _require(doc, "format_version", int, "")
    if version not in SUPPORTED_FORMAT_VERSIONS:
        # A newer writer may have changed the layout; refuse to guess.
        raise FormatError(
            f"unsupported format_version {version} "
            f"(supported: {', '.join(map(str, SUPPORTED_FORMAT_VERSIONS))})"
        )

    kdf = _require(doc, "kdf", dict, "")
    kdf_params = KdfParams(
        algorithm=_require(kdf, "algorithm", str, "kdf."),
        time_cost=_require(kdf, "time_cost", int, "kdf."),
        memory_cost=_require(kdf, "memory_cost", int, "kdf."),
        parallelism=_require(kdf, "parallelism", int, "kdf."),
    )
    salt = _b64decode(_require(kdf, "salt", str, "kdf."), "kdf.salt")

    aead = _require(doc, "aead", str, "")
    if aead != crypto.AEAD_ALGORITHM:
        raise FormatError(f"unsupported AEAD algorithm {aead!r}")

    nonce = _b64decode(_require(doc, "nonce", str, ""), "nonce")
    if len(nonce) != crypto.NONCE_SIZE:
        raise FormatError(f"nonce must be {crypto.NONCE_SIZE} bytes, got {len(nonce)}")

    ciphertext = _b64decode(_require(doc, "ciphertext", str, ""), "ciphertext")
    if len(ciphertext) < crypto.TAG_SIZE:
        raise FormatError("ciphertext is shorter than the authentication tag")

    return VaultContainer(
        kdf_params=kdf_params,
        salt=salt,
        nonce=nonce,
        ciphertext=ciphertext,
        aead=aead,
        format_version=version,
    )


# =============================================================================
# Entry Payload
# =============================================================================

def serialize_entries(entries: Mapping[str, SecretEntry]) -> bytes:
    """Encode the entry collection (sorted by name) as payload bytes."""
    records = []
    for name in sorted(entries):
        entry = entries[name]
        if entry.name != name:
            raise ValueError(f"entry stored under {name!r} is named {entry.name!r}")
        records.append(entry.to_dict())
    doc = {"schema_version": PAYLOAD_SCHEMA_VERSION, "entries": records}
    return json.dumps(doc, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def deserialize_entries(payload: bytes) -> Dict[str, SecretEntry]:
    """
    Inverse of serialize_entries().

    Raises:
        FormatError: If the payload does not match the schema
    """
    try:
        doc = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        raise FormatError("vault payload is not valid UTF-8 JSON") from None
    if not isinstance(doc, dict):
        raise FormatError("vault payload root must be an object")

    schema_version = _require(doc, "schema_version", int, "payload.")
    if schema_version != PAYLOAD_SCHEMA_VERSION:
        raise FormatError(f"unsupported payload schema_version {schema_version}")

    records = _require(doc, "entries", list, "payload.")
    entries: Dict[str, SecretEntry] = {}
    for i, record in enumerate(records):
        if not isinstance(record, dict):
            raise FormatError(f"payload entry {i} must be an object")
        try:
            entry = SecretEntry.from_dict(record)
        except InvalidEntry as e:
            raise FormatError(f"payload entry {i} is invalid: {e}") from None
        if entry.name in entries:
            raise FormatError(f"duplicate entry name in payload: {entry.name!r}")
        entries[entry.name] = entry
    return entries


# =============================================================================
# Sealing
# =============================================================================

def seal_vault(entries: Mapping[str, SecretEntry], key: crypto.BytesLike,
               kdf_params: KdfParams, salt: bytes) -> VaultContainer:
    """
    Encrypt the entry collection under key with a fresh nonce.

    The header (format version, KDF block, AEAD id) is authenticated as
    associated data.
    """
    nonce = crypto.generate_nonce()
    header_only = VaultContainer(kdf_params=kdf_params, salt=salt, nonce=nonce, ciphertext=b"")
    payload = serialize_entries(entries)
    ciphertext = crypto.seal(key, nonce, payload, header_only.associated_data())
    logger.debug("Sealed %d entries (%d bytes ciphertext)", len(entries), len(ciphertext))
    return VaultContainer(kdf_params=kdf_params, salt=salt, nonce=nonce, ciphertext=ciphertext)


def open_vault(container: VaultContainer, key: crypto.BytesLike) -> Dict[str, SecretEntry]:
    """
    Decrypt a container and parse its entries.

    Raises:
        IntegrityError: Wrong key, or ciphertext/nonce/header modified
        FormatError: Authenticated payload does not match the schema
    """
    payload = crypto.open_sealed(key, container.nonce, container.ciphertext,
                                 container.associated_data())
    return deserialize_entries(payload)
