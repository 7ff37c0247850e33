"""RFC 4226 HOTP / RFC 6238 TOTP code generation."""

import base64
from enum import Enum
from typing import Optional

from cryptography.hazmat.primitives import hashes, hmac

from otp_keychain.errors import ConfigError, SecretDecodeError


MIN_DIGITS = 1
MAX_DIGITS = 18
MAX_COUNTER = 2**64 - 1


class Algorithm(Enum):
    """Keyed-hash algorithms accepted in the ``algorithm`` URI parameter."""

    SHA1 = "SHA1"
    SHA256 = "SHA256"
    SHA512 = "SHA512"
    MD5 = "MD5"

    @classmethod
    def lookup(cls, name: Optional[str]) -> Optional["Algorithm"]:
        """
        Find an algorithm by name, ignoring case.

        Args:
            name: Algorithm name such as "sha256". May be empty or None.

        Returns:
            The matching Algorithm, or None if the name is empty or unknown.
        """
        if not name:
            return None
        try:
            return cls(name.upper())
        except ValueError:
            return None

    def hash(self) -> hashes.HashAlgorithm:
        """Return a fresh cryptography hash instance for this algorithm."""
        return _HASHES[self]()


_HASHES = {
    Algorithm.SHA1: hashes.SHA1,
    Algorithm.SHA256: hashes.SHA256,
    Algorithm.SHA512: hashes.SHA512,
    Algorithm.MD5: hashes.MD5,
}


def decode_secret(secret: str) -> bytes:
    """
    Decode an unpadded RFC 4648 Base32 secret.

    Args:
        secret: Base32 text without '=' padding. Lowercase is accepted.

    Returns:
        Raw secret bytes.

    Raises:
        SecretDecodeError: If the text is not valid unpadded Base32.
    """
    if "=" in secret:
        raise SecretDecodeError(secret, "padding is not allowed")
    if len(secret) % 8 in (1, 3, 6):
        raise SecretDecodeError(secret, "illegal Base32 length")

    padded = secret + "=" * (-len(secret) % 8)
    try:
        return base64.b32decode(padded, casefold=True)
    except ValueError as e:
        raise SecretDecodeError(secret, f"illegal Base32 data: {e}") from e


def encode_secret(secret: bytes) -> str:
    """Encode raw secret bytes as uppercase Base32 without padding."""
    return base64.b32encode(secret).decode("ascii").rstrip("=")


def generate_hotp(
    secret: bytes,
    counter: int,
    digits: int = 6,
    algorithm: Algorithm = Algorithm.SHA1,
) -> str:
    """
    Generate an HOTP code using RFC 4226.

    Args:
        secret: The raw shared secret.
        counter: The moving factor, an unsigned 64-bit value.
        digits: Number of digits in the output code (default: 6).
        algorithm: HMAC hash algorithm (default: SHA1).

    Returns:
        A zero-padded code string of exactly ``digits`` characters.

    Raises:
        ConfigError: If digits or counter are out of range, or the digest is
            too short for dynamic truncation.
    """
    if not MIN_DIGITS <= digits <= MAX_DIGITS:
        raise ConfigError(
            f"digits must be between {MIN_DIGITS} and {MAX_DIGITS}, got {digits}"
        )
    if not 0 <= counter <= MAX_COUNTER:
        raise ConfigError(f"counter {counter} does not fit in 64 bits")

    # Convert counter to 8-byte big-endian integer
    counter_bytes = counter.to_bytes(8, byteorder="big")

    mac = hmac.HMAC(secret, algorithm.hash())
    mac.update(counter_bytes)
    hmac_digest = mac.finalize()

    # Dynamic truncation (RFC 4226, Section 5.4)
    offset = hmac_digest[-1] & 0x0F
    if offset + 4 > len(hmac_digest):
        raise ConfigError(
            f"{algorithm.value} digest too short for truncation at offset {offset}"
        )
    binary = (
        ((hmac_digest[offset] & 0x7F) << 24)
        | ((hmac_digest[offset + 1] & 0xFF) << 16)
        | ((hmac_digest[offset + 2] & 0xFF) << 8)
        | (hmac_digest[offset + 3] & 0xFF)
    )

    code = binary % (10**digits)
    return f"{code:0{digits}d}"


def time_step(period: int, now: int) -> int:
    """Return the RFC 6238 time-step counter for a Unix timestamp."""
    if period <= 0:
        raise ConfigError(f"period must be positive, got {period}")
    return now // period


def time_remaining(period: int, now: int) -> int:
    """Return the seconds left in the current time step (1..period)."""
    if period <= 0:
        raise ConfigError(f"period must be positive, got {period}")
    return period - now % period
