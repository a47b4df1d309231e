"""CLI commands for RuleGuard.

This package provides the command-line interface for logging trades,
managing the rule catalog and viewing progress and achievements.
"""

from ruleguard.cli.main import cli, main

__all__ = ["cli", "main"]
