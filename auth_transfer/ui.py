"""Console output helpers for codex-auth-transfer.

Color-coded status lines for progress and errors. Colors are
dropped when the stream is not a terminal or NO_COLOR is set.
"""

import os
import sys
from typing import TextIO


# ANSI color codes
class Colors:
    """ANSI color codes for terminal output."""
    RESET = "\033[0m"
    BOLD = "\033[1m"

    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    CYAN = "\033[36m"


def _use_color(stream: TextIO) -> bool:
    if os.environ.get("NO_COLOR"):
        return False
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())


def _emit(symbol: str, color: str, text: str, stream: TextIO) -> None:
    if _use_color(stream):
        print(f"{color}{symbol} {text}{Colors.RESET}", file=stream)
    else:
        print(f"{symbol} {text}", file=stream)


def print_header(text: str) -> None:
    """Print a styled header."""
    if _use_color(sys.stdout):
        print(f"\n{Colors.CYAN}{Colors.BOLD}{text}{Colors.RESET}\n")
    else:
        print(f"\n{text}\n")


def print_success(text: str) -> None:
    """Print success message in green."""
    _emit("✓", Colors.GREEN, text, sys.stdout)


def print_error(text: str) -> None:
    """Print error message in red."""
    _emit("✗", Colors.RED, text, sys.stderr)


def print_warning(text: str) -> None:
    """Print warning message in yellow."""
    _emit("⚠", Colors.YELLOW, text, sys.stdout)


def print_info(text: str) -> None:
    """Print info message in cyan."""
    _emit("ℹ", Colors.CYAN, text, sys.stdout)


def format_size(size_bytes: int) -> str:
    """Format byte size as human-readable string.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted size string (e.g., "1.5M", "256K")
    """
    for suffix, threshold in (
        ("G", 1024**3),
        ("M", 1024**2),
        ("K", 1024),
    ):
        if size_bytes >= threshold:
            return f"{size_bytes / threshold:.1f}{suffix}"
    return f"{size_bytes}B"
