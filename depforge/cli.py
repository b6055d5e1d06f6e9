"""
Command-line interface for depforge.

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

from depforge.config import load_config
from depforge.__version__ import __version__
from depforge.constants import CONFIG_ENV_VAR
from depforge.context import DepForgeContext
from depforge.exceptions import ConfigError, DepForgeError
from depforge.commands.resolve import resolve
from depforge.utils.logger import get_logger, setup_logging, verbosity_to_level
from depforge.utils.console import print_error, print_warning, reconfigure_console

logger = get_logger("cli")


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to configuration file.",
    envvar=CONFIG_ENV_VAR,
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
    envvar="DEPFORGE_COLOR",
)
@click.version_option(
    version=__version__,
    prog_name="depforge",
    message="%(prog)s %(version)s",
)
@click.pass_context
def cli(
    ctx: click.Context,
    config: Optional[Path],
    verbose: int,
    color: bool,
) -> None:
    """depforge: resolve dependency graphs with pluggable strategies.

    \b
    Available commands:
      depforge resolve             Resolve root requirements

    \b
    Examples:
      depforge resolve a b --index packages.toml
      depforge resolve "flask>=2" --pypi --strategy lowest
      depforge -v resolve a --index packages.toml --policy learn

    Use ``depforge COMMAND --help`` for command-specific options.
    """
    _configure_logging(verbose)

    try:
        loaded_config = load_config(config)
    except ConfigError as exc:
        print_error(str(exc))
        raise SystemExit(1) from exc

    depforge_ctx = DepForgeContext()
    depforge_ctx.config_path = config or loaded_config.source_path
    depforge_ctx.config = loaded_config
    depforge_ctx.color = color
    depforge_ctx.verbose = verbose
    ctx.obj = depforge_ctx

    # Respect NO_COLOR for downstream libraries
    if color:
        os.environ.pop("NO_COLOR", None)
    else:
        os.environ["NO_COLOR"] = "1"
    reconfigure_console()

    logger.debug("depforge v%s", __version__)
    logger.debug("Config path: %s", depforge_ctx.config_path)
    logger.debug("Verbosity: %s | Color: %s", verbose, color)


def _configure_logging(verbose: int) -> None:
    """Configure logging level based on verbosity flags."""
    level = verbosity_to_level(verbose)
    setup_logging(level=level, verbose=verbose >= 2)
    logger.debug("Logging initialized at %s level", logging.getLevelName(level))


cli.add_command(resolve)


def main() -> int:
    """Main entry point for the depforge CLI.

    Returns:
        Exit code:
            0   Success (resolved)
            1   No solution, or an application error
            2   Usage error (Click)
            3   Resolution cancelled (timeout)
            130 Interrupted by user (Ctrl+C)
    """
    try:
        cli(standalone_mode=False)
        return 0

    except SystemExit as exc:
        code = exc.code
        return code if isinstance(code, int) else (0 if code is None else 1)

    except click.ClickException as exc:
        exc.show()
        return exc.exit_code

    except click.exceptions.Abort:
        print_warning("\nOperation cancelled by user")
        return 130

    except DepForgeError as exc:
        print_error(str(exc))
        logger.debug(
            "DepForgeError details: %s",
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
