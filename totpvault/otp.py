"""
totpvault - One-Time Password Generation

HOTP (RFC 4226) and its time-based variant TOTP (RFC 6238).

    counter = floor((t - T0) / period)
    code    = Truncate(HMAC(secret, counter as 8-byte big-endian)) mod 10^digits

Pure functions of (entry, time): no state, no I/O.
"""

import hashlib
import hmac
import math
import struct
from datetime import datetime, timezone
from typing import Tuple, Union

from .entry import HashAlgorithm, SecretEntry
from .errors import ValidationError

Instant = Union[int, float, datetime]


def dynamic_truncate(digest: bytes) -> int:
    """
    RFC 4226 section 5.3.

    The low nibble of the last byte picks an offset; the 4 bytes starting
    there, with the top bit cleared, form a 31-bit big-endian integer.
    """
    offset = digest[-1] & 0x0F
    return struct.unpack(">I", digest[offset:offset + 4])[0] & 0x7FFFFFFF


def hotp(secret: bytes, counter: int, digits: int = 6,
         algorithm: HashAlgorithm = HashAlgorithm.SHA1) -> str:
    """
    Counter-based code, zero-padded to `digits` characters.

    Args:
        secret: HMAC key
        counter: Moving factor (0 <= counter < 2**64)
        digits: Code length
        algorithm: HMAC digest

    Returns:
        Decimal code as a string, e.g. "007081"
    """
    if not 0 <= counter < 2 ** 64:
        raise ValidationError(f"counter out of range: {counter}")
    algorithm = HashAlgorithm.parse(algorithm)
    mac = hmac.new(secret, struct.pack(">Q", counter), algorithm.hashlib_name).digest()
    code = dynamic_truncate(mac) % (10 ** digits)
    return str(code).zfill(digits)


def to_unix_seconds(t: Instant) -> int:
    """Whole Unix seconds for an int, float or datetime (naive = UTC)."""
    if isinstance(t, datetime):
        if t.tzinfo is None:
            t = t.replace(tzinfo=timezone.utc)
        return math.floor(t.timestamp())
    if isinstance(t, bool) or not isinstance(t, (int, float)):
        raise ValidationError(f"expected Unix seconds or datetime, got {type(t).__name__}")
    if isinstance(t, float) and not math.isfinite(t):
        raise ValidationError(f"time must be finite, got {t!r}")
    return math.floor(t)


def _elapsed(entry: SecretEntry, t: Instant) -> int:
    elapsed = to_unix_seconds(t) - entry.t0
    if elapsed < 0:
        raise ValidationError(f"time {t!r} is before T0 ({entry.t0}) of entry {entry.name!r}")
    return elapsed


def time_step(entry: SecretEntry, t: Instant) -> int:
    """Counter value for instant t."""
    return _elapsed(entry, t) // entry.period


def totp(entry: SecretEntry, t: Instant) -> str:
    """The code for `entry` valid at instant t."""
    return hotp(entry.secret, time_step(entry, t), entry.digits, entry.algorithm)


def seconds_remaining(entry: SecretEntry, t: Instant) -> int:
    """Seconds until the code shown at t expires (1..period)."""
    return entry.period - (_elapsed(entry, t) % entry.period)


def generate(entry: SecretEntry, t: Instant) -> Tuple[str, int]:
    """(code, seconds_remaining) for instant t."""
    return totp(entry, t), seconds_remaining(entry, t)
