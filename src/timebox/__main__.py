"""Module entrypoint for ``python -m timebox``."""

from __future__ import annotations

from timebox.cli import run_cli

if __name__ == "__main__":
    raise SystemExit(run_cli())
