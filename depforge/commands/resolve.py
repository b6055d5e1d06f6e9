"""Resolve command implementation for depforge.

Resolves a set of root requirements against a package source and prints
the selection, the conflict explanation or the cancellation notice.

The command orchestrates three components:

1. **Configuration**: file settings merged with CLI overrides into a
   :class:`~depforge.core.resolver.ResolverConfig`.
2. **Package source**: a :class:`~depforge.sources.FileIndexSource` for
   ``--index`` or a :class:`~depforge.sources.PyPISource` for ``--pypi``.
3. **Resolver**: runs one session and returns a
   :class:`~depforge.core.report.Report`.

Typical usage::

    # Offline resolution against an index file
    $ depforge resolve a b --index packages.toml

    # Oldest acceptable versions, as JSON
    $ depforge resolve "flask>=2" --pypi --strategy lowest --format json

    # Clause learning with a pin
    $ depforge resolve a b --index packages.toml --policy learn --pin c==1.0
"""

from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import click

from depforge.constants import CONFLICT_POLICIES, STRATEGY_NAMES
from depforge.context import DepForgeContext, pass_context
from depforge.core.report import Report
from depforge.core.resolver import Resolver, ResolverConfig
from depforge.core.source import PackageSource
from depforge.exceptions import DepForgeError, InvalidVersionSetError
from depforge.models.requirement import Requirement
from depforge.sources import FileIndexSource, PyPISource
from depforge.utils import (
    HTTPClient,
    get_logger,
    get_raw_console,
    print_error,
    print_report,
)

logger = get_logger("commands.resolve")

#: Exit code used when the resolution was cancelled (timeout).
EXIT_CANCELLED = 3


def _parse_pins(
    ctx: click.Context, param: click.Parameter, values: Tuple[str, ...]
) -> Dict[str, str]:
    """Turn ``--pin NAME<constraint>`` values into a pins mapping."""
    pins: Dict[str, str] = {}
    for value in values:
        try:
            requirement = Requirement.parse(value)
        except InvalidVersionSetError as exc:
            raise click.BadParameter(str(exc), ctx=ctx, param=param) from exc
        if requirement.versions.is_any():
            raise click.BadParameter(
                f"pin {value!r} has no constraint (expected e.g. 'name==1.0')",
                ctx=ctx,
                param=param,
            )
        pins[requirement.name] = str(requirement.versions)
    return pins


@click.command()
@click.argument("requirements", nargs=-1, required=True)
@click.option(
    "--index",
    "-i",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Package index file (TOML or JSON).",
)
@click.option("--pypi", is_flag=True, help="Resolve against the PyPI JSON API.")
@click.option(
    "--strategy",
    "-s",
    type=click.Choice(list(STRATEGY_NAMES), case_sensitive=False),
    envvar="DEPFORGE_STRATEGY",
    help="Candidate selection strategy.",
)
@click.option(
    "--policy",
    type=click.Choice(list(CONFLICT_POLICIES), case_sensitive=False),
    envvar="DEPFORGE_POLICY",
    help="Conflict handling policy.",
)
@click.option(
    "--pin",
    "pins",
    multiple=True,
    callback=_parse_pins,
    help="Restrict a package, e.g. --pin 'urllib3<2'. Repeatable.",
)
@click.option("--max-backjumps", type=click.IntRange(min=0), help="Backjump budget.")
@click.option(
    "--prefer-local/--no-prefer-local",
    default=None,
    help="Try project-local candidates first.",
)
@click.option(
    "--prefetch/--no-prefetch",
    default=None,
    help="Fetch metadata speculatively.",
)
@click.option(
    "--timeout",
    type=click.FloatRange(min=0, min_open=True),
    help="Cancel the resolution after this many seconds.",
)
@click.option(
    "--include-prereleases",
    is_flag=True,
    help="List pre-release versions from PyPI.",
)
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["table", "json", "lock"], case_sensitive=False),
    default="table",
    help="Output format.",
)
@pass_context
def resolve(
    ctx: DepForgeContext,
    requirements: Tuple[str, ...],
    index: Optional[Path],
    pypi: bool,
    strategy: Optional[str],
    policy: Optional[str],
    pins: Dict[str, str],
    max_backjumps: Optional[int],
    prefer_local: Optional[bool],
    prefetch: Optional[bool],
    timeout: Optional[float],
    include_prereleases: bool,
    output_format: str,
) -> None:
    """Resolve REQUIREMENTS to one version per package.

    Options given on the command line override the configuration file.

    Exits:
        0 when solved, 1 when no solution exists or an error occurred,
        3 when the resolution was cancelled by ``--timeout``.
    """
    if index is not None and pypi:
        raise click.UsageError("--index and --pypi are mutually exclusive")

    index = index or (None if pypi else ctx.config.index)
    if index is None and not pypi:
        raise click.UsageError("No package source: pass --index FILE or --pypi")

    try:
        config = ctx.config.to_resolver_config(
            strategy=strategy.lower() if strategy else None,
            conflict_policy=policy.lower() if policy else None,
            max_backjumps=max_backjumps,
            prefer_local=prefer_local,
            prefetch=prefetch,
            timeout=timeout,
            pins=pins,
        )
        report = asyncio.run(
            _resolve_async(list(requirements), config, index, include_prereleases)
        )
    except DepForgeError as e:
        print_error(f"{e}")
        sys.exit(1)

    _display(report, output_format.lower())
    sys.exit(_exit_code(report))


# ---------------------------------------------------------------------------
# Async orchestration
# ---------------------------------------------------------------------------


async def _resolve_async(
    requirements: List[str],
    config: ResolverConfig,
    index: Optional[Path],
    include_prereleases: bool,
) -> Report:
    """Build the package source and run a single resolution session."""
    if index is not None:
        logger.info("Resolving against index %s", index)
        return await _run(FileIndexSource(index), requirements, config)

    logger.info("Resolving against PyPI")
    async with HTTPClient(max_concurrency=config.concurrent_limit) as http:
        source = PyPISource(http, include_prereleases=include_prereleases)
        return await _run(source, requirements, config)


async def _run(source: PackageSource, requirements: List[str], config: ResolverConfig) -> Report:
    try:
        return await Resolver(source, config).resolve(requirements)
    finally:
        await source.aclose()


# ---------------------------------------------------------------------------
# Display renderers
# ---------------------------------------------------------------------------


def _display(report: Report, output_format: str) -> None:
    if output_format == "json":
        click.echo(report.dumps())
        return

    if output_format == "lock":
        if report.is_solved:
            click.echo(json.dumps(report.to_lock_dict(), indent=2))
        else:
            print_report(report)
        return

    print_report(report)
    if report.is_solved and report.stats.backjumps:
        get_raw_console().print(
            f"[dim]{report.stats.decisions} decision(s), "
            f"{report.stats.backjumps} backjump(s)[/dim]"
        )


def _exit_code(report: Report) -> int:
    if report.is_solved:
        return 0
    if report.is_cancelled:
        return EXIT_CANCELLED
    return 1
