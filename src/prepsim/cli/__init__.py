"""Prepsim CLI module.

Provides a Textual-based terminal interface for playing drills.

Usage:
    prepsim --user alice

Or directly:
    python -m prepsim.cli.app --user alice
"""

from prepsim.cli.app import PrepsimApp, main

__all__ = ["PrepsimApp", "main"]
