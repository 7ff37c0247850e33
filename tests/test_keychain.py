"""Tests for keychain loading, appending and persistence."""

import io
import os
import stat
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest

from otp_keychain import keychain, storage
from otp_keychain.errors import (
    FieldParseError,
    KeychainDecodeError,
    ParseError,
    SecretDecodeError,
    UriSyntaxError,
)
from otp_keychain.key import Mode, OtpKey


RFC_SECRET = "GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ"
TOTP_URI = f"otpauth://totp/Example:alice@google.com?secret={RFC_SECRET}&issuer=Example"
HOTP_URI = f"otpauth://hotp/build-server?secret={RFC_SECRET}&counter=0"


def test_load_skips_comments_and_blank_lines():
    """Test that comments and blank lines are not parsed."""
    source = io.StringIO(
        "# personal keys\n"
        f"{TOTP_URI}\n"
        "\n"
        "   \n"
        f"{HOTP_URI}\n"
        "#otpauth://totp/disabled?secret=!!\n"
    )
    chain = keychain.load(source)

    assert len(chain) == 2
    assert [key.mode for key in chain] == [Mode.TOTP, Mode.HOTP]
    assert chain[0].issuer == "Example"
    assert chain[1].label == "build-server"


def test_load_accepts_bytes_lines():
    """Test loading from a binary stream."""
    source = io.BytesIO(f"{TOTP_URI}\r\n{HOTP_URI}\r\n".encode("utf-8"))
    chain = keychain.load(source)
    assert len(chain) == 2


def test_load_empty():
    chain = keychain.load([])
    assert len(chain) == 0
    assert list(chain) == []


def test_load_aborts_on_first_bad_line():
    """Test that one bad line fails the whole load with its line number."""
    source = [
        TOTP_URI,
        "# comment",
        "otpauth://totp/bad?secret=not-base32!",
        "otpauth://totp/worse?secret=GEZA&digits=x",
    ]
    with pytest.raises(SecretDecodeError) as excinfo:
        keychain.load(source)
    assert excinfo.value.lineno == 3
    assert str(excinfo.value).startswith("line 3: not-base32!")


@pytest.mark.parametrize(
    "line,error",
    [
        ("https://example.com", UriSyntaxError),
        ("otpauth://totp/x?secret=GEZA&counter=ten", FieldParseError),
    ],
)
def test_load_error_kinds(line, error):
    """Test that each error kind propagates from load unchanged."""
    with pytest.raises(error):
        keychain.load([line])


def test_append_text_sink():
    """Test that append writes the canonical URI line."""
    sink = io.StringIO()
    key = keychain.append(
        sink, f"otpauth://TOTP/Example:alice?issuer=Example&secret={RFC_SECRET}"
    )

    assert key.issuer == "Example"
    assert sink.getvalue() == (
        f"otpauth://totp/Example:alice?secret={RFC_SECRET}&issuer=Example"
        "&digits=6&period=30\n"
    )


def test_append_binary_sink():
    """Test that append encodes for binary sinks."""
    sink = io.BytesIO()
    keychain.append(sink, HOTP_URI)
    assert sink.getvalue() == (
        f"otpauth://hotp/build-server?secret={RFC_SECRET}&digits=6&counter=0\n"
    ).encode("utf-8")


def test_append_invalid_writes_nothing():
    """Test that a parse failure leaves the sink untouched."""
    sink = io.StringIO()
    with pytest.raises(SecretDecodeError):
        keychain.append(sink, "otpauth://totp/x?secret=not-base32!")
    assert sink.getvalue() == ""


def test_filter_and_matches():
    """Test case-insensitive filtering on issuer and label."""
    chain = keychain.load([TOTP_URI, HOTP_URI])

    assert [key.label for key in chain.filter("exam")] == ["Example:alice@google.com"]
    assert [key.label for key in chain.filter("BUILD")] == ["build-server"]
    assert chain.filter("nothing") == []
    assert len(chain.filter(None)) == 2
    assert keychain.matches(chain[0], "ALICE")
    assert not keychain.matches(chain[1], "alice")


def test_evaluate_delegates_to_key():
    """Test that evaluate advances HOTP keys and reports TOTP time left."""
    chain = keychain.load([TOTP_URI, HOTP_URI])

    code, remaining = keychain.evaluate(chain[0], now=59)
    assert code == "287082"
    assert remaining == 1

    assert keychain.evaluate(chain[1]) == ("287082", None)
    assert keychain.evaluate(chain[1]) == ("359152", None)
    assert chain[1].counter == 2


def test_dump_lines_preserves_comments_and_counters():
    """Test that written-back lines keep comments and carry new counters."""
    chain = keychain.load(["# header", "", HOTP_URI, TOTP_URI])
    chain[0].evaluate()

    assert chain.dump_lines() == [
        "# header",
        "",
        f"otpauth://hotp/build-server?secret={RFC_SECRET}&digits=6&counter=1",
        f"otpauth://totp/Example:alice@google.com?secret={RFC_SECRET}"
        "&issuer=Example&digits=6&period=30",
    ]


def test_keychain_add():
    chain = keychain.Keychain()
    chain.add(OtpKey.from_uri(HOTP_URI))
    assert chain.dump_lines() == [OtpKey.from_uri(HOTP_URI).to_uri()]
    assert len(chain) == 1


def test_file_round_trip():
    """Test adding, loading and saving through the keychain file."""
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "nested" / "keychain"

        # Loading a missing file creates it empty
        assert len(keychain.load_file(path)) == 0
        assert path.exists()
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

        keychain.add_key(TOTP_URI, path=path)
        keychain.add_key(HOTP_URI, path=path)

        chain = keychain.load_file(path)
        assert len(chain) == 2

        chain[1].evaluate()
        keychain.save_file(chain, path=path)

        reloaded = keychain.load_file(path)
        assert reloaded[1].counter == 1
        assert reloaded[1].evaluate() == ("359152", None)
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
        assert not (Path(tmpdir) / "nested" / "keychain.tmp").exists()


def test_add_key_invalid_leaves_file_unchanged():
    """Test that a rejected key does not modify the keychain file."""
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "keychain"
        keychain.add_key(TOTP_URI, path=path)
        before = path.read_text(encoding="utf-8")

        with pytest.raises(SecretDecodeError):
            keychain.add_key("otpauth://totp/x?secret=not-base32!", path=path)

        assert path.read_text(encoding="utf-8") == before


def test_keychain_path_resolution():
    """Test explicit path, environment variable and appdata fallbacks."""
    with tempfile.TemporaryDirectory() as tmpdir:
        explicit = Path(tmpdir) / "explicit"
        from_env = Path(tmpdir) / "from-env"

        with patch.dict(os.environ, {storage.KEYCHAIN_ENV: str(from_env)}):
            assert storage.get_keychain_path(explicit) == explicit
            assert storage.get_keychain_path() == from_env

        with patch.dict(os.environ, {storage.KEYCHAIN_ENV: ""}):
            with patch.object(storage, "get_storage_dir", return_value=Path(tmpdir)):
                assert storage.get_keychain_path() == Path(tmpdir) / "keychain"


def test_keychain_path_expands_user():
    with patch.dict(os.environ, {"HOME": "/home/tester"}):
        assert storage.get_keychain_path("~/.2fa") == Path("/home/tester/.2fa")


def test_load_invalid_utf8_line():
    """Test that undecodable bytes fail the load as a ParseError with a line number."""
    source = [HOTP_URI.encode("utf-8"), b"otpauth://totp/caf\xe9?secret=GEZA\n"]
    with pytest.raises(KeychainDecodeError) as excinfo:
        keychain.load(source)
    assert isinstance(excinfo.value, ParseError)
    assert excinfo.value.lineno == 2
    assert str(excinfo.value).startswith("line 2: invalid UTF-8")


def test_load_file_invalid_utf8():
    """Test that a keychain file with invalid UTF-8 raises KeychainDecodeError."""
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "keychain"
        path.write_bytes(b"# caf\xe9\n" + TOTP_URI.encode("utf-8") + b"\n")

        with pytest.raises(KeychainDecodeError) as excinfo:
            keychain.load_file(path)
        assert excinfo.value.lineno == 1


def test_file_keeps_non_ascii_comments():
    """Test that UTF-8 comments survive a counter write-back."""
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "keychain"
        path.write_bytes("# café\n".encode("utf-8") + HOTP_URI.encode("utf-8") + b"\n")

        chain = keychain.load_file(path)
        chain[0].evaluate()
        keychain.save_file(chain, path=path)

        assert path.read_text(encoding="utf-8").splitlines() == [
            "# café",
            f"otpauth://hotp/build-server?secret={RFC_SECRET}&digits=6&counter=1",
        ]


def test_append_wrapped_text_sink():
    """Test that text streams which are not io.TextIOBase receive str."""
    with tempfile.NamedTemporaryFile("w+", encoding="utf-8") as sink:
        keychain.append(sink, HOTP_URI)
        sink.seek(0)
        assert sink.read() == (
            f"otpauth://hotp/build-server?secret={RFC_SECRET}&digits=6&counter=0\n"
        )


def test_append_binary_file_sink():
    """Test that files opened in binary mode receive bytes."""
    with tempfile.NamedTemporaryFile("w+b") as sink:
        keychain.append(sink, HOTP_URI)
        sink.seek(0)
        assert sink.read().endswith(b"&counter=0\n")


def test_append_duck_typed_sink():
    """Test that any object with a write method is treated as text."""

    class LineCollector:
        def __init__(self):
            self.lines = []

        def write(self, text):
            self.lines.append(text)

    sink = LineCollector()
    keychain.append(sink, TOTP_URI)
    assert sink.lines == [OtpKey.from_uri(TOTP_URI).to_uri() + "\n"]


def test_save_file_failure_removes_temp_file():
    """Test that a failed rewrite leaves the keychain intact and no temp file."""
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "keychain"
        keychain.add_key(HOTP_URI, path=path)
        before = path.read_text(encoding="utf-8")

        chain = keychain.load_file(path)
        chain[0].evaluate()
        with patch.object(Path, "replace", side_effect=OSError("disk full")):
            with pytest.raises(OSError, match="disk full"):
                keychain.save_file(chain, path=path)

        assert path.read_text(encoding="utf-8") == before
        assert not (Path(tmpdir) / "keychain.tmp").exists()
