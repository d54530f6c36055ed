"""
Executable module for peerkeeper.

Running:
    python -m peerkeeper

is equivalent to:
    peerkeeper

This module forwards execution to the CLI entrypoint defined in
`peerkeeper.cli`.
"""

from __future__ import annotations

import sys


def _print_startup_error(exc: ImportError) -> None:
    """Report a CLI import failure on stderr."""
    sys.stderr.write("peerkeeper CLI could not be started.\n")
    sys.stderr.write(f"Python version : {sys.version}\n")
    try:
        from peerkeeper.__version__ import __version__

        sys.stderr.write(f"peerkeeper version: {__version__}\n")
    except ImportError:
        sys.stderr.write("peerkeeper version: <unknown>\n")
    sys.stderr.write(f"ImportError: {exc}\n")


def main() -> int:
    """
    Main entrypoint when executing `python -m peerkeeper`.

    Returns:
        Exit code returned by the CLI, or 1 when it cannot be imported.
    """
    try:
        # Import lazily so dependencies are only loaded during CLI use
        from peerkeeper.cli import main as cli_main
    except ImportError as exc:
        _print_startup_error(exc)
        return 1

    return cli_main()


if __name__ == "__main__":
    sys.exit(main())
