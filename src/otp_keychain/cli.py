"""Command-line interface for otp-keychain."""

import argparse
import logging
import sys
from typing import List, Optional, Sequence

from otp_keychain import keychain
from otp_keychain.errors import ConfigError, OtpError
from otp_keychain.key import Mode


def configure_logging(verbose: bool = False) -> None:
    """Send package log records to stderr."""
    logger = logging.getLogger("otp_keychain")

    # Prevent creation of handlers more than once
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(
            logging.Formatter("[%(asctime)s] [%(levelname)s] %(name)s %(message)s")
        )
        logger.addHandler(handler)

    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)


def format_table(rows: Sequence[Sequence[str]]) -> List[str]:
    """Align rows into columns separated by two spaces."""
    if not rows:
        return []
    widths = [max(len(row[i]) for row in rows) for i in range(len(rows[0]))]
    return [
        "  ".join(cell.ljust(width) for cell, width in zip(row, widths)).rstrip()
        for row in rows
    ]


def add_command(args: argparse.Namespace) -> int:
    """Handle the add command."""
    try:
        key = keychain.add_key(args.uri, path=args.keychain)
        name = f"{key.issuer} {key.label}" if key.issuer else key.label
        print(f"✓ Key '{name}' added ({key.mode.value})")
        return 0
    except OtpError as e:
        print(f"✗ Invalid key: {e}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"✗ Failed to add key: {e}", file=sys.stderr)
        return 1


def list_command(args: argparse.Namespace) -> int:
    """Handle the list command."""
    try:
        chain = keychain.load_file(args.keychain)
        if not len(chain):
            print("No keys found. Add a key first using:")
            print("  otp-keychain add <otpauth-uri>")
            return 0

        rows = []
        advanced = False
        failed = False
        for key in chain.filter(args.query):
            if key.mode is Mode.HOTP:
                advanced = True
            try:
                code, remaining = keychain.evaluate(key)
            except ConfigError as e:
                failed = True
                rows.append(("✗", key.issuer, key.label, str(e)))
                continue
            left = f"{remaining}s" if remaining is not None else "-"
            rows.append((code, key.issuer, key.label, left))

        # Counters must be stored before their codes are shown
        if advanced and not args.no_persist:
            keychain.save_file(chain, args.keychain)

        for line in format_table(rows):
            print(line)
        return 1 if failed else 0
    except OtpError as e:
        print(f"✗ Invalid keychain: {e}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"✗ Failed to read keychain: {e}", file=sys.stderr)
        return 1


def uri_command(args: argparse.Namespace) -> int:
    """Handle the uri command."""
    try:
        chain = keychain.load_file(args.keychain)
        for key in chain.filter(args.query):
            print(key.to_uri())
        return 0
    except OtpError as e:
        print(f"✗ Invalid keychain: {e}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"✗ Failed to read keychain: {e}", file=sys.stderr)
        return 1


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="HOTP/TOTP code generator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "example:\n"
            "  otp-keychain add 'otpauth://totp/Example:alice@google.com"
            "?issuer=Example&secret=JBSWY3DPEHPK3PXP'"
        ),
    )
    parser.add_argument(
        "--keychain",
        "-k",
        default=None,
        help="Keychain file (default: $OTP_KEYCHAIN or the user data directory)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Log debug messages to stderr",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Add command
    add_parser = subparsers.add_parser(
        "add",
        aliases=["a"],
        help="Add a key from an otpauth:// URI",
    )
    add_parser.add_argument(
        "uri",
        help="Provisioning URI, e.g. otpauth://totp/label?secret=BASE32",
    )

    # List command
    list_parser = subparsers.add_parser(
        "list",
        aliases=["ls", "show"],
        help="Show codes for all keys, or those matching QUERY",
    )
    list_parser.add_argument(
        "query",
        nargs="?",
        default=None,
        help="Case-insensitive substring of the issuer or label",
    )
    list_parser.add_argument(
        "--no-persist",
        action="store_true",
        help="Do not write advanced HOTP counters back to the keychain",
    )

    # URI command
    uri_parser = subparsers.add_parser(
        "uri",
        help="Print the canonical URI of all keys, or those matching QUERY",
    )
    uri_parser.add_argument(
        "query",
        nargs="?",
        default=None,
        help="Case-insensitive substring of the issuer or label",
    )

    args = parser.parse_args(argv)
    configure_logging(args.verbose)

    if not args.command:
        parser.print_help()
        return 1

    if args.command in ("add", "a"):
        return add_command(args)
    elif args.command in ("list", "ls", "show"):
        return list_command(args)
    elif args.command == "uri":
        return uri_command(args)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
