"""Export and import Codex CLI credentials between hosts."""

__version__ = "1.0.0"
