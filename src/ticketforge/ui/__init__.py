"""UI package exports for the operator CLI."""

from ticketforge.ui.cli import CLIError, build_parser, run_cli

__all__ = ["CLIError", "build_parser", "run_cli"]
