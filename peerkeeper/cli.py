"""
Command-line interface for peerkeeper.

This module provides the main CLI entry point and handles global options,
configuration loading, and command registration.
"""

from __future__ import annotations

import os
import sys
import logging
from pathlib import Path
from typing import Optional

import click

from peerkeeper.config import load_config
from peerkeeper.__version__ import __version__
from peerkeeper.context import PeerKeeperContext
from peerkeeper.exceptions import ConfigError, PeerKeeperError
from peerkeeper.utils.logger import get_logger, setup_logging
from peerkeeper.utils.console import print_error, print_warning, reconfigure_console

logger = get_logger("cli")


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to configuration file.",
    envvar="PEERKEEPER_CONFIG",
)
@click.option(
    "--verbose",
    "-v",
    count=True,
    help="Increase verbosity (can be repeated: -v, -vv).",
)
@click.option(
    "--color/--no-color",
    default=True,
    help="Enable or disable colored output.",
    envvar="PEERKEEPER_COLOR",
)
@click.version_option(
    version=__version__,
    prog_name="peerkeeper",
    message="%(prog)s %(version)s",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config: Optional[Path],
    verbose: int,
    color: bool,
) -> None:
    """peerkeeper: resolve npm dependency conflicts across feature templates.

    \b
    Available commands:
      peerkeeper merge TEMPLATES.json     Merge template declarations
      peerkeeper analyze package.json     Analyze peer dependencies

    \b
    Examples:
      peerkeeper merge templates.json --strategy highest
      peerkeeper analyze package.json --json
      peerkeeper -v merge templates.json --offline

    Use ``peerkeeper COMMAND --help`` for command-specific options.
    """
    _configure_logging(verbose)

    try:
        loaded_config = load_config(config)
    except ConfigError as exc:
        print_error(str(exc))
        raise SystemExit(1) from exc

    peerkeeper_ctx = PeerKeeperContext()
    peerkeeper_ctx.config_path = config or loaded_config.source_path
    peerkeeper_ctx.color = color
    peerkeeper_ctx.verbose = verbose
    peerkeeper_ctx.config = loaded_config
    ctx.obj = peerkeeper_ctx

    # Respect NO_COLOR for downstream libraries
    if color:
        os.environ.pop("NO_COLOR", None)
    else:
        os.environ["NO_COLOR"] = "1"
    reconfigure_console()

    logger.debug("peerkeeper v%s", __version__)
    logger.debug("Config path: %s", peerkeeper_ctx.config_path)
    if loaded_config.source_path:
        logger.debug("Loaded configuration: %s", loaded_config.to_log_dict())
    logger.debug("Verbosity: %s | Color: %s", verbose, color)


def _configure_logging(verbose: int) -> None:
    """Configure logging level based on verbosity flags."""
    if verbose <= 0:
        level = logging.WARNING
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    setup_logging(level=level, verbose=verbose > 1)
    logger.debug("Logging initialized at %s level", logging.getLevelName(level))


# Register CLI subcommands
try:
    from peerkeeper.commands.merge import merge
    from peerkeeper.commands.analyze import analyze

    cli.add_command(merge)
    cli.add_command(analyze)

except ImportError as exc:
    sys.stderr.write(f"FATAL: Failed to import CLI commands: {exc}\n")
    sys.exit(1)


def main() -> int:
    """Main entry point for the peerkeeper CLI.

    Returns:
        Exit code:
            0   Success
            1   Unhandled or application error
            2   Usage error (Click)
            130 Interrupted by user (Ctrl+C)
    """
    try:
        cli(standalone_mode=False)
        return 0

    except click.exceptions.Abort:
        print_warning("\nOperation cancelled by user")
        return 130

    except click.ClickException as exc:
        exc.show()
        return exc.exit_code

    except SystemExit as exc:
        return exc.code if isinstance(exc.code, int) else 1

    except PeerKeeperError as exc:
        print_error(str(exc))
        logger.debug(
            "PeerKeeperError details: %s",
            exc.details or "<none>",
            exc_info=True,
        )
        return 1

    except KeyboardInterrupt:
        print_warning("\nOperation cancelled by user")
        return 130

    except Exception as exc:
        print_error(f"Unexpected error: {exc}")
        logger.exception("Unhandled exception in CLI")
        return 1


if __name__ == "__main__":
    sys.exit(main())
