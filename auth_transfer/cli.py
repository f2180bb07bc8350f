#!/usr/bin/env python3
"""Command-line entry point for codex-auth-transfer.

Reads the home directory, working directory, environment and platform once
and hands them to the export or import command.
"""

import argparse
import logging
import os
import signal
import sys
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

from auth_transfer import __version__
from auth_transfer.core import (
    DEFAULT_BUNDLE_NAME,
    DestinationExists,
    NoCredentialsFound,
    TransferError,
    collect_identity,
)
from auth_transfer.export_auth import run_export
from auth_transfer.import_auth import run_import
from auth_transfer.locator import CodexCliHint, Platform, detect_platform
from auth_transfer.ui import print_error, print_info, print_warning
from auth_transfer.utils import env_flag, resolve_bundle_path

NO_METADATA_ENV = "CODEX_AUTH_TRANSFER_NO_METADATA"
BUNDLE_ENV = "CODEX_AUTH_TRANSFER_BUNDLE"


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Returns:
        argparse.Namespace: Parsed arguments
    """
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show debug logging",
    )

    parser = argparse.ArgumentParser(
        prog="codex-auth-transfer",
        description="Move Codex CLI credentials to a host without a browser",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Exit codes:
  0 - Success
  1 - Error occurred

Environment:
  {NO_METADATA_ENV}=1  Skip recording user/host metadata in manifest.
  {BUNDLE_ENV}=PATH    Default bundle path (default: ./{DEFAULT_BUNDLE_NAME}).

Examples:
  # On the machine with a browser
  %(prog)s export -o codex-auth.tgz

  # On the headless machine
  %(prog)s import -f codex-auth.tgz --force
        """,
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", metavar="{export,import}")

    export_parser = subparsers.add_parser(
        "export",
        parents=[common],
        help="Create an archive with Codex CLI credentials",
    )
    export_parser.add_argument(
        "-o",
        "--output",
        dest="bundle",
        default=None,
        help=f"Bundle to generate (default: {DEFAULT_BUNDLE_NAME})",
    )
    export_parser.add_argument(
        "--no-metadata",
        action="store_true",
        help="Do not record user/host in the manifest",
    )
    export_parser.add_argument(
        "--platform",
        choices=[p.value for p in Platform],
        default=None,
        help="Credential layout to search (default: detected from this host)",
    )

    import_parser = subparsers.add_parser(
        "import",
        parents=[common],
        help="Restore credentials from a bundle into the current HOME",
    )
    import_parser.add_argument(
        "-f",
        "--file",
        dest="bundle",
        default=None,
        help=f"Bundle to restore from (default: {DEFAULT_BUNDLE_NAME})",
    )
    import_parser.add_argument(
        "--force",
        action="store_true",
        help="Back up and overwrite destinations that already exist",
    )

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help(sys.stderr)
    return args


class Terminated(KeyboardInterrupt):
    """Raised from a signal handler so cleanup handlers still run."""


def _raise_terminated(signum, frame) -> None:
    raise Terminated(f"Received signal {signum}")


@contextmanager
def terminate_on_signals() -> Iterator[None]:
    """Turn SIGTERM and SIGHUP into an exception for the enclosed block."""
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    signums = [signal.SIGTERM]
    if hasattr(signal, "SIGHUP"):
        signums.append(signal.SIGHUP)

    previous = {signum: signal.signal(signum, _raise_terminated) for signum in signums}
    try:
        yield
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = parse_arguments(argv)
    if args.command is None:
        return 1

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    environ = dict(os.environ)
    home = Path.home()
    cwd = Path.cwd()
    bundle_path = resolve_bundle_path(args.bundle or environ.get(BUNDLE_ENV), cwd)

    try:
        with terminate_on_signals():
            if args.command == "export":
                platform = (
                    Platform(args.platform) if args.platform else detect_platform()
                )
                no_metadata = args.no_metadata or env_flag(
                    environ.get(NO_METADATA_ENV)
                )
                run_export(
                    bundle_path,
                    home,
                    platform,
                    environ,
                    hint_provider=CodexCliHint(),
                    identity=None if no_metadata else collect_identity(environ),
                )
            else:
                run_import(bundle_path, home, force=args.force)
    except DestinationExists as e:
        print_error(str(e))
        print_info("Re-run with --force to backup and overwrite.")
        return 1
    except NoCredentialsFound as e:
        print_error(str(e))
        print_info("Run 'codex login' on this machine first, then export again.")
        return 1
    except TransferError as e:
        print_error(str(e))
        return 1
    except KeyboardInterrupt:
        print_warning("\nCancelled")
        return 1
    except OSError as e:
        print_error(f"{args.command.capitalize()} failed: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
