"""Generate HOTP/TOTP codes from a local keychain of otpauth:// URIs."""

from otp_keychain.errors import (
    ConfigError,
    FieldParseError,
    KeychainDecodeError,
    OtpError,
    ParseError,
    SecretDecodeError,
    UriSyntaxError,
)
from otp_keychain.hotp import Algorithm, generate_hotp
from otp_keychain.key import Mode, OtpKey
from otp_keychain.keychain import Keychain, append, evaluate, load, matches

__all__ = [
    "Algorithm",
    "ConfigError",
    "FieldParseError",
    "Keychain",
    "KeychainDecodeError",
    "Mode",
    "OtpError",
    "OtpKey",
    "ParseError",
    "SecretDecodeError",
    "UriSyntaxError",
    "append",
    "evaluate",
    "generate_hotp",
    "load",
    "matches",
]

__version__ = "0.1.0"
