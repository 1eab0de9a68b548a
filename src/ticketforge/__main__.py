"""Module entrypoint for ``python -m ticketforge``."""

from __future__ import annotations

from ticketforge.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
