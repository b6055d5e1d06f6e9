"""
Executable module for depforge.

Running:
    python -m depforge

is equivalent to:
    depforge

This module simply forwards execution to the CLI entrypoint defined in
`depforge.cli`.
"""

from __future__ import annotations

import sys


def main() -> int:
    """Main entrypoint when executing `python -m depforge`.

    Returns:
        Exit code returned by the CLI.
    """
    # Import lazily so dependencies are only loaded during CLI use
    from depforge.cli import main as cli_main

    return cli_main()


if __name__ == "__main__":
    sys.exit(main())
