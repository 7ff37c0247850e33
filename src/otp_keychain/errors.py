"""Exceptions raised while parsing and evaluating OTP keys."""

from typing import Optional


class OtpError(ValueError):
    """Base class for all otp-keychain errors."""

    # Set by the keychain loader to the 1-based line that failed
    lineno: Optional[int] = None

    def __str__(self) -> str:
        message = super().__str__()
        if self.lineno is not None:
            return f"line {self.lineno}: {message}"
        return message


class ParseError(OtpError):
    """A key could not be built from its text form."""


class UriSyntaxError(ParseError):
    """The text is not a well-formed otpauth:// URI."""


class FieldParseError(ParseError):
    """A numeric query field (digits, counter, period) is not an integer."""

    def __init__(self, field: str, value: str, reason: str = "not an integer"):
        self.field = field
        self.value = value
        super().__init__(f"invalid {field} {value!r}: {reason}")


class SecretDecodeError(ParseError):
    """The secret is missing or is not valid unpadded Base32."""

    def __init__(self, raw: str, reason: str):
        self.raw = raw
        super().__init__(f"{raw}: {reason}" if raw else reason)


class KeychainDecodeError(ParseError):
    """A stored keychain line is not valid UTF-8."""


class ConfigError(ParseError):
    """A key parameter is outside the supported range."""
