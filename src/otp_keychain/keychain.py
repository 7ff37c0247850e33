"""The keychain: an ordered collection of OTP keys backed by a text file."""

import io
import logging
from typing import IO, Iterable, Iterator, List, Optional, Tuple, Union

from otp_keychain import storage
from otp_keychain.errors import KeychainDecodeError, ParseError
from otp_keychain.key import OtpKey


COMMENT_PREFIX = "#"

log = logging.getLogger(__name__)


def is_key_line(line: str) -> bool:
    """Return False for blank lines and comments, True otherwise."""
    stripped = line.strip()
    return bool(stripped) and not stripped.startswith(COMMENT_PREFIX)


class Keychain:
    """
    Ordered sequence of OTP keys.

    Comment and blank lines read from storage are kept alongside the keys so
    that writing the keychain back (to persist HOTP counters) leaves them in
    place.
    """

    def __init__(self, entries: Optional[Iterable[Union[str, OtpKey]]] = None):
        """
        Initialize a Keychain.

        Args:
            entries: Keys, optionally interleaved with raw comment or blank
                lines to preserve on write.
        """
        self._entries: List[Union[str, OtpKey]] = list(entries or [])

    @property
    def keys(self) -> List[OtpKey]:
        return [entry for entry in self._entries if isinstance(entry, OtpKey)]

    def __iter__(self) -> Iterator[OtpKey]:
        return iter(self.keys)

    def __len__(self) -> int:
        return len(self.keys)

    def __getitem__(self, index: int) -> OtpKey:
        return self.keys[index]

    def add(self, key: OtpKey) -> None:
        self._entries.append(key)

    def filter(self, query: Optional[str] = None) -> List[OtpKey]:
        """Return the keys whose issuer or label contains query."""
        if not query:
            return self.keys
        return [key for key in self.keys if key.matches(query)]

    def dump_lines(self) -> List[str]:
        """Render the stored lines, with every key in canonical URI form."""
        return [
            entry.to_uri() if isinstance(entry, OtpKey) else entry
            for entry in self._entries
        ]


def load(source: Iterable[Union[str, bytes]]) -> Keychain:
    """
    Parse a keychain from stored lines.

    Args:
        source: Iterable of lines, str or UTF-8 bytes, with or without
            line terminators (a file object works).

    Returns:
        The loaded Keychain.

    Raises:
        ParseError: On the first line that fails to parse. Nothing is
            returned for the lines before it.
    """
    entries: List[Union[str, OtpKey]] = []
    for lineno, raw in enumerate(source, start=1):
        if isinstance(raw, bytes):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError as e:
                error = KeychainDecodeError(f"invalid UTF-8: {e}")
                error.lineno = lineno
                raise error from e
        line = raw.rstrip("\r\n")
        if not is_key_line(line):
            entries.append(line)
            continue
        try:
            entries.append(OtpKey.from_uri(line))
        except ParseError as e:
            e.lineno = lineno
            raise
    keychain = Keychain(entries)
    log.debug("loaded %d keys", len(keychain))
    return keychain


def append(sink: IO, uri_text: str) -> OtpKey:
    """
    Parse a provisioning URI and write its canonical form to sink.

    Args:
        sink: Writable text or binary stream.
        uri_text: The otpauth:// URI to add.

    Returns:
        The parsed key.

    Raises:
        ParseError: If the URI is invalid. Nothing is written.
    """
    key = OtpKey.from_uri(uri_text)
    line = key.to_uri() + "\n"
    if _is_binary(sink):
        sink.write(line.encode("utf-8"))
    else:
        sink.write(line)
    return key


def _is_binary(sink: IO) -> bool:
    if isinstance(sink, (io.RawIOBase, io.BufferedIOBase)):
        return True
    mode = getattr(sink, "mode", "")
    return isinstance(mode, str) and "b" in mode


def evaluate(key: OtpKey, now: Optional[int] = None) -> Tuple[str, Optional[int]]:
    """Evaluate key; see OtpKey.evaluate. HOTP keys advance their counter."""
    return key.evaluate(now)


def matches(key: OtpKey, query: str) -> bool:
    return key.matches(query)


def load_file(path: Optional[storage.PathLike] = None) -> Keychain:
    """
    Load the keychain file, creating an empty one if it does not exist.

    Args:
        path: Keychain path (default: resolved by storage.get_keychain_path).

    Returns:
        The loaded Keychain.
    """
    keychain_path = storage.get_keychain_path(path)
    return load(storage.read_lines(keychain_path))


def add_key(uri_text: str, path: Optional[storage.PathLike] = None) -> OtpKey:
    """
    Append a key to the keychain file.

    Args:
        uri_text: The otpauth:// provisioning URI.
        path: Keychain path (default: resolved by storage.get_keychain_path).

    Returns:
        The added key.
    """
    keychain_path = storage.get_keychain_path(path)
    with storage.open_append(keychain_path) as sink:
        key = append(sink, uri_text)
    log.debug("added key %r to %s", key.label, keychain_path)
    return key


def save_file(keychain: Keychain, path: Optional[storage.PathLike] = None) -> None:
    """
    Rewrite the keychain file, persisting the current HOTP counters.

    Args:
        keychain: The keychain to write.
        path: Keychain path (default: resolved by storage.get_keychain_path).
    """
    keychain_path = storage.get_keychain_path(path)
    storage.write_lines(keychain_path, keychain.dump_lines())
