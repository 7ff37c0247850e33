"""OTP key parsing, rendering and evaluation."""

import re
import time
from enum import Enum
from typing import Dict, List, Optional, Tuple
from urllib.parse import parse_qs, quote, unquote, urlencode, urlsplit

from otp_keychain.errors import (
    ConfigError,
    FieldParseError,
    SecretDecodeError,
    UriSyntaxError,
)
from otp_keychain.hotp import (
    MAX_COUNTER,
    MAX_DIGITS,
    MIN_DIGITS,
    Algorithm,
    decode_secret,
    encode_secret,
    generate_hotp,
    time_remaining,
    time_step,
)


SCHEME = "otpauth"
DEFAULT_DIGITS = 6
DEFAULT_PERIOD = 30

_INTEGER = re.compile(r"[+-]?[0-9]+")
_BAD_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")
_CONTROL = re.compile(r"[\x00-\x1f\x7f]")
# Characters left unescaped in the label path segment
_PATH_SAFE = "!$&'()*+,;=:@/"


class Mode(Enum):
    """How the moving factor of a key is derived."""

    TOTP = "totp"
    HOTP = "hotp"

    @classmethod
    def from_host(cls, host: str) -> "Mode":
        """Map a URI host to a mode; unknown hosts default to TOTP."""
        try:
            return cls(host.lower())
        except ValueError:
            return cls.TOTP


def _first(query: Dict[str, List[str]], field: str) -> str:
    return query.get(field, [""])[0]


def _parse_int(query: Dict[str, List[str]], field: str, default: int) -> int:
    value = _first(query, field)
    if not value:
        return default
    if not _INTEGER.fullmatch(value):
        raise FieldParseError(field, value)
    return int(value)


def _parse_unsigned(query: Dict[str, List[str]], field: str, default: int) -> int:
    number = _parse_int(query, field, default)
    if not 0 <= number <= MAX_COUNTER:
        raise FieldParseError(field, str(number), "out of unsigned 64-bit range")
    return number


class OtpKey:
    """
    A provisioned one-time password secret.

    Keys are immutable apart from ``counter``, which advances by one on every
    HOTP evaluation. Whoever persists the keychain must write the new counter
    back, otherwise the next run repeats codes the server already consumed.
    """

    def __init__(
        self,
        secret: bytes,
        label: str = "",
        issuer: str = "",
        mode: Mode = Mode.TOTP,
        algorithm: Optional[Algorithm] = None,
        digits: int = DEFAULT_DIGITS,
        counter: int = 0,
        period: int = DEFAULT_PERIOD,
    ):
        """
        Initialize an OtpKey instance.

        Args:
            secret: Raw shared secret bytes.
            label: Account label taken from the URI path.
            issuer: Optional issuer used for display grouping.
            mode: Mode.TOTP or Mode.HOTP.
            algorithm: Explicit hash algorithm, or None to default to SHA1.
            digits: Code length.
            counter: Current HOTP counter.
            period: TOTP time step in seconds.

        Raises:
            ConfigError: If digits, counter or period are out of range.
        """
        if not MIN_DIGITS <= digits <= MAX_DIGITS:
            raise ConfigError(
                f"digits must be between {MIN_DIGITS} and {MAX_DIGITS}, got {digits}"
            )
        if not 0 <= counter <= MAX_COUNTER:
            raise ConfigError(f"counter {counter} does not fit in 64 bits")
        if mode is Mode.TOTP and period <= 0:
            raise ConfigError(f"period must be positive, got {period}")

        self.secret = secret
        self.label = label
        self.issuer = issuer
        self.mode = mode
        self.algorithm = algorithm
        self.digits = digits
        self.counter = counter
        self.period = period

    @property
    def hash_algorithm(self) -> Algorithm:
        """The algorithm used for evaluation, SHA1 when none was given."""
        return self.algorithm or Algorithm.SHA1

    @classmethod
    def from_uri(cls, text: str) -> "OtpKey":
        """
        Parse an ``otpauth://`` provisioning URI.

        Args:
            text: The URI, e.g.
                ``otpauth://totp/Example:alice?secret=JBSWY3DPEHPK3PXP&issuer=Example``.

        Returns:
            The parsed OtpKey.

        Raises:
            UriSyntaxError: If the text is not a well-formed otpauth URI.
            FieldParseError: If digits, counter or period are not integers.
            SecretDecodeError: If the secret is missing or not valid Base32.
            ConfigError: If digits or period are out of the supported range.
        """
        text = text.strip()
        if _CONTROL.search(text):
            raise UriSyntaxError(f"{text!r}: invalid control character in URI")
        if _BAD_ESCAPE.search(text):
            raise UriSyntaxError(f"{text}: invalid percent-escape in URI")
        try:
            parsed = urlsplit(text)
        except ValueError as e:
            raise UriSyntaxError(f"{text}: {e}") from e
        if parsed.scheme != SCHEME:
            raise UriSyntaxError(
                f"{text}: expected {SCHEME}:// scheme, got {parsed.scheme or 'none'!r}"
            )

        query = parse_qs(parsed.query, keep_blank_values=True)

        label = unquote(parsed.path)
        if label.startswith("/"):
            label = label[1:]

        if "secret" not in query:
            raise SecretDecodeError("", "missing secret parameter")
        secret = decode_secret(_first(query, "secret"))

        return cls(
            secret=secret,
            label=label,
            issuer=_first(query, "issuer"),
            mode=Mode.from_host(parsed.netloc.rpartition("@")[2]),
            algorithm=Algorithm.lookup(_first(query, "algorithm")),
            digits=_parse_int(query, "digits", DEFAULT_DIGITS),
            counter=_parse_unsigned(query, "counter", 0),
            period=_parse_unsigned(query, "period", DEFAULT_PERIOD),
        )

    def to_uri(self) -> str:
        """Render the key as a canonical ``otpauth://`` URI."""
        params = [("secret", encode_secret(self.secret))]
        if self.issuer:
            params.append(("issuer", self.issuer))
        if self.algorithm is not None:
            params.append(("algorithm", self.algorithm.value))
        if self.digits > 0:
            params.append(("digits", str(self.digits)))
        if self.mode is Mode.HOTP:
            params.append(("counter", str(self.counter)))
        if self.mode is Mode.TOTP and self.period > 0:
            params.append(("period", str(self.period)))

        path = quote(self.label, safe=_PATH_SAFE)
        return f"{SCHEME}://{self.mode.value}/{path}?{urlencode(params)}"

    def __str__(self) -> str:
        return self.to_uri()

    def _code(self, counter: int) -> str:
        return generate_hotp(self.secret, counter, self.digits, self.hash_algorithm)

    def evaluate(self, now: Optional[int] = None) -> Tuple[str, Optional[int]]:
        """
        Generate the current code.

        HOTP keys advance ``counter`` by one *before* computing the code
        (RFC 4226 section 7.2), so a freshly provisioned key with counter 0
        yields the code for counter 1. Calling this twice advances twice.

        Args:
            now: Unix time in seconds for TOTP keys (default: current time).

        Returns:
            Tuple of (code, seconds remaining in the time step). The
            remaining time is None for HOTP keys.

        Raises:
            ConfigError: If the HOTP counter would overflow 64 bits, or the
                digest is too short to truncate (MD5). In the latter case an
                HOTP counter has already advanced past the unusable value.
        """
        if self.mode is Mode.HOTP:
            if self.counter >= MAX_COUNTER:
                raise ConfigError("counter exhausted the 64-bit range")
            self.counter += 1
            return self._code(self.counter), None
        return self.peek(now)

    def peek(self, now: Optional[int] = None) -> Tuple[str, Optional[int]]:
        """Return what ``evaluate`` would return, without advancing the counter."""
        if self.mode is Mode.HOTP:
            if self.counter >= MAX_COUNTER:
                raise ConfigError("counter exhausted the 64-bit range")
            return self._code(self.counter + 1), None

        if now is None:
            now = int(time.time())
        code = self._code(time_step(self.period, now))
        return code, time_remaining(self.period, now)

    def matches(self, query: str) -> bool:
        """Check whether query occurs in the issuer or label, ignoring case."""
        query = query.lower()
        return query in self.issuer.lower() or query in self.label.lower()
