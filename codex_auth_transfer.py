from __future__ import annotations

import sys

from auth_transfer.cli import main, parse_arguments
from auth_transfer.export_auth import run_export, stage_candidates
from auth_transfer.import_auth import restore_entries, run_import

__all__ = [
    "main",
    "parse_arguments",
    "restore_entries",
    "run_export",
    "run_import",
    "stage_candidates",
]


if __name__ == "__main__":
    sys.exit(main())
