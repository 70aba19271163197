"""
totpvault - Secret Entry

One authenticator account: the shared secret plus the OTP parameters
needed to compute its codes. Validated once at construction and immutable
afterwards (to change a field, remove the entry and add it again).
"""

import base64
import binascii
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Union

from .errors import InvalidEntry


MIN_DIGITS = 6
MAX_DIGITS = 10
DEFAULT_DIGITS = 6
DEFAULT_PERIOD = 30


class HashAlgorithm(Enum):
    """HMAC digest used for the OTP (RFC 6238 allows SHA-1, SHA-256, SHA-512)."""

    SHA1 = "SHA1"
    SHA256 = "SHA256"
    SHA512 = "SHA512"

    @property
    def hashlib_name(self) -> str:
        return self.value.lower()

    @classmethod
    def parse(cls, value: Union["HashAlgorithm", str]) -> "HashAlgorithm":
        """
        Accept an enum member or a loose name ("sha1", "SHA-256", "sha_512").

        Raises:
            InvalidEntry: If the name is not a supported digest
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.upper().replace("-", "").replace("_", "").strip()
            try:
                return cls(key)
            except ValueError:
                pass
        raise InvalidEntry(f"Unsupported digest algorithm: {value!r}")


def decode_base32_secret(text: str) -> bytes:
    """
    Decode a Base32 secret as shown by otpauth:// URIs and QR setup pages.

    Providers print these in many shapes: lower case, grouped with spaces
    or hyphens, without the trailing '=' padding. All of them are accepted.

    Args:
        text: Base32 text

    Returns:
        Raw secret bytes

    Raises:
        InvalidEntry: If the text is not valid Base32
    """
    cleaned = "".join(text.split()).replace("-", "").rstrip("=").upper()
    if not cleaned:
        raise InvalidEntry("Secret is empty")
    padded = cleaned + "=" * (-len(cleaned) % 8)
    try:
        return base64.b32decode(padded)
    except (binascii.Error, ValueError) as e:
        raise InvalidEntry(f"Secret is not valid Base32: {e}") from None


def encode_base32_secret(secret: bytes) -> str:
    return base64.b32encode(secret).decode("ascii")


@dataclass(frozen=True)
class SecretEntry:
    """
    A single TOTP account.

    Attributes:
        name: Unique label inside a vault (lookup key)
        secret: Raw HMAC key bytes
        algorithm: HMAC digest
        digits: Code length, 6..10
        period: Time step in seconds
        t0: Unix time the step counter starts from (RFC 6238 T0)
    """

    name: str
    secret: bytes
    algorithm: HashAlgorithm = HashAlgorithm.SHA1
    digits: int = DEFAULT_DIGITS
    period: int = DEFAULT_PERIOD
    t0: int = 0

    def __post_init__(self):
        if not isinstance(self.name, str) or not self.name.strip():
            raise InvalidEntry("Entry name must be a non-empty string")
        if not isinstance(self.secret, (bytes, bytearray)) or len(self.secret) == 0:
            raise InvalidEntry("Secret must be non-empty bytes")
        # frozen dataclass: normalise through object.__setattr__
        object.__setattr__(self, "secret", bytes(self.secret))
        object.__setattr__(self, "algorithm", HashAlgorithm.parse(self.algorithm))

        if isinstance(self.digits, bool) or not isinstance(self.digits, int):
            raise InvalidEntry("digits must be an integer")
        if not MIN_DIGITS <= self.digits <= MAX_DIGITS:
            raise InvalidEntry(
                f"digits must be between {MIN_DIGITS} and {MAX_DIGITS}, got {self.digits}"
            )
        if isinstance(self.period, bool) or not isinstance(self.period, int):
            raise InvalidEntry("period must be an integer")
        if self.period <= 0:
            raise InvalidEntry(f"period must be positive, got {self.period}")
        if isinstance(self.t0, bool) or not isinstance(self.t0, int) or self.t0 < 0:
            raise InvalidEntry(f"t0 must be a non-negative integer, got {self.t0!r}")

    def __repr__(self) -> str:
        # Never echo the secret
        return (
            f"SecretEntry(name={self.name!r}, algorithm={self.algorithm.value}, "
            f"digits={self.digits}, period={self.period}, t0={self.t0})"
        )

    def to_dict(self) -> Dict[str, Any]:
        """Record used inside the encrypted payload (secret as Base32)."""
        return {
            "name": self.name,
            "secret": encode_base32_secret(self.secret),
            "algorithm": self.algorithm.value,
            "digits": self.digits,
            "period": self.period,
            "t0": self.t0,
        }

    @classmethod
    def from_dict(cls, record: Dict[str, Any]) -> "SecretEntry":
        """
        Inverse of to_dict().

        Raises:
            InvalidEntry: If a field is missing or invalid
        """
        try:
            secret = record["secret"]
            if not isinstance(secret, str):
                raise InvalidEntry("secret must be Base32 text")
            return cls(
                name=record["name"],
                secret=decode_base32_secret(secret),
                algorithm=record["algorithm"],
                digits=record["digits"],
                period=record["period"],
                t0=record.get("t0", 0),
            )
        except KeyError as e:
            raise InvalidEntry(f"Missing entry field: {e.args[0]}") from None
