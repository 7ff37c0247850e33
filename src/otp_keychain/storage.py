"""Storage utilities for the keychain file."""

import logging
import os
from pathlib import Path
from typing import IO, Iterable, List, Optional, Union

from platformdirs import user_data_dir


APP_NAME = "otp-keychain"
APP_AUTHOR = "otp-keychain"
KEYCHAIN_ENV = "OTP_KEYCHAIN"
KEYCHAIN_FILENAME = "keychain"
FILE_MODE = 0o600

log = logging.getLogger(__name__)

PathLike = Union[str, os.PathLike]


def get_storage_dir() -> Path:
    """
    Get the cross-platform appdata directory for the keychain file.

    Returns:
        Path to the storage directory.
    """
    base_dir = user_data_dir(APP_NAME, APP_AUTHOR)
    return Path(base_dir)


def get_keychain_path(path: Optional[PathLike] = None) -> Path:
    """
    Resolve the keychain file location.

    Args:
        path: Explicit keychain path. Falls back to the OTP_KEYCHAIN
            environment variable, then to the appdata directory.

    Returns:
        Path to the keychain file.
    """
    if path is None:
        path = os.environ.get(KEYCHAIN_ENV) or None
    if path is None:
        return get_storage_dir() / KEYCHAIN_FILENAME
    return Path(path).expanduser()


def _ensure_file(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    if not path.exists():
        log.debug("creating keychain file %s", path)
        path.touch(mode=FILE_MODE)


def read_lines(path: Path) -> List[bytes]:
    """
    Read every line of the keychain file, creating it if missing.

    Args:
        path: Keychain file path.

    Returns:
        Raw lines without their terminators. Decoding is left to the
        keychain loader so a bad line can be reported by number.
    """
    _ensure_file(path)
    lines = path.read_bytes().splitlines()
    log.debug("read %d lines from %s", len(lines), path)
    return lines


def open_append(path: Path) -> IO[str]:
    """
    Open the keychain file for appending, creating it if missing.

    Args:
        path: Keychain file path.

    Returns:
        A text handle positioned at the end of the file.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, FILE_MODE)
    log.debug("opened %s for append", path)
    return os.fdopen(fd, "a", encoding="utf-8")


def write_lines(path: Path, lines: Iterable[str]) -> None:
    """
    Replace the keychain file contents.

    Args:
        path: Keychain file path.
        lines: Lines to write, without terminators.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    content = "".join(line + "\n" for line in lines)

    # Write atomically using a temporary file
    temp_path = path.with_name(path.name + ".tmp")
    fd = os.open(temp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, FILE_MODE)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
        temp_path.replace(path)
    except BaseException:
        temp_path.unlink(missing_ok=True)
        raise
    log.debug("rewrote %s", path)
