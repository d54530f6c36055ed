"""Merge command implementation for peerkeeper.

Loads feature template declarations from a JSON file, merges them into
one dependency set, and reports the conflicts resolved along the way.

The command drives two core components:

1. **DependencyMerger**: folds the templates together, resolving
   conflicting ranges with the selected strategy and checking the known
   incompatibility table.
2. **PeerDependencyAnalyzer**: (unless ``--no-peer-analysis``) checks
   the merged set against the peer requirements of every package and
   adds missing peers.

Typical usage::

    $ peerkeeper merge templates.json
    $ peerkeeper merge templates.json --strategy highest --json
    $ peerkeeper merge templates.json --offline --no-peer-analysis
"""

from __future__ import annotations

import sys
import click
import asyncio
from pathlib import Path
from typing import Dict, List, Optional

from rich.markup import escape

from peerkeeper.constants import MERGE_STRATEGIES
from peerkeeper.exceptions import PeerKeeperError
from peerkeeper.context import pass_context, PeerKeeperContext
from peerkeeper.core import DependencyMerger, load_templates
from peerkeeper.models import MergeConflict, MergeResolution, MergeResult
from peerkeeper.commands.analyze import (
    display_diagnostics,
    display_peer_conflicts,
    display_recommendations,
)
from peerkeeper.utils import (
    colorize_level,
    get_logger,
    get_raw_console,
    get_update_type,
    print_error,
    print_json,
    print_success,
    print_table,
    print_warning,
)

logger = get_logger("commands.merge")


@click.command()
@click.argument(
    "templates_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "--strategy",
    "-s",
    type=click.Choice(list(MERGE_STRATEGIES), case_sensitive=False),
    default=None,
    help="Conflict resolution strategy (default: from config, else smart).",
)
@click.option(
    "--offline/--online",
    default=None,
    help="Never contact the registry (overrides the config file).",
)
@click.option(
    "--peer-analysis/--no-peer-analysis",
    default=None,
    help="Run peer dependency analysis on the merged set.",
)
@click.option(
    "--json",
    "as_json",
    is_flag=True,
    help="Print the full result as JSON.",
)
@pass_context
def merge(
    ctx: PeerKeeperContext,
    templates_file: Path,
    strategy: Optional[str],
    offline: Optional[bool],
    peer_analysis: Optional[bool],
    as_json: bool,
) -> None:
    """Merge template dependency declarations.

    Exits with 0 when the merge succeeded, 1 when peer analysis failed or
    an error occurred.
    """
    try:
        result = asyncio.run(
            _merge_async(ctx, templates_file, strategy, offline, peer_analysis)
        )
    except PeerKeeperError as e:
        print_error(f"{e}")
        sys.exit(1)
    except Exception as e:
        print_error(f"Unexpected error: {e}")
        logger.exception("Error in merge command")
        sys.exit(1)

    if as_json:
        print_json(result.to_json())
    else:
        _display_result(result)

    sys.exit(0 if result.success else 1)


async def _merge_async(
    ctx: PeerKeeperContext,
    templates_file: Path,
    strategy: Optional[str],
    offline: Optional[bool],
    peer_analysis: Optional[bool],
) -> MergeResult:
    templates = load_templates(templates_file)
    logger.info("Loaded %d templates from %s", len(templates), templates_file)

    config = ctx.config.to_merger_config(
        strategy=strategy.lower() if strategy else None,
        offline=offline,
        enable_peer_analysis=peer_analysis,
    )

    async with DependencyMerger(config) as merger:
        return await merger.merge(templates)


# ---------------------------------------------------------------------------
# Display renderers
# ---------------------------------------------------------------------------


def _display_result(result: MergeResult) -> None:
    _display_dependencies(result)
    _display_conflicts(result.conflicts)
    _display_resolutions(result.resolutions)
    if result.peer_analysis is not None:
        display_peer_conflicts(result.peer_analysis.conflicts)
        display_recommendations(result.peer_analysis.recommendations)
    display_diagnostics(result.warnings, result.errors)

    summary = result.summary
    console = get_raw_console()
    console.print(
        f"\n[bold]{summary.total_templates}[/bold] templates, "
        f"[bold]{summary.total_packages}[/bold] packages, "
        f"[bold]{summary.conflicts}[/bold] conflicts, "
        f"[bold]{summary.resolutions}[/bold] resolutions "
        f"(strategy: {summary.strategy})"
    )
    for recommendation in summary.resolution_summary.recommendations:
        print_warning(recommendation)

    if result.install_flags:
        print_warning(f"Install with {' '.join(result.install_flags)}")
    if result.success:
        print_success("Merge complete")
    else:
        print_error("Merge finished with errors")


def _display_dependencies(result: MergeResult) -> None:
    rows: List[Dict[str, str]] = []
    for kind, deps in (
        ("dependencies", result.dependencies),
        ("devDependencies", result.dev_dependencies),
        ("peerDependencies", result.peer_dependencies),
    ):
        rows.extend({"Package": name, "Version": version, "Type": kind} for name, version in deps.items())

    print_table(
        rows,
        title="Merged Dependencies",
        column_styles={
            "Package": {"style": "bold cyan", "no_wrap": True},
            "Version": {"style": "bold green"},
            "Type": {"style": "dim"},
        },
    )


def _display_conflicts(conflicts: List[MergeConflict]) -> None:
    rows = [
        {
            "Package": c.package,
            "Declared": ", ".join(f"{v.version} ({v.source})" for v in c.versions),
            "Resolution": c.resolution,
            "Severity": colorize_level(c.severity.value),
            "Review": "[red]yes[/red]" if c.requires_review else "[dim]no[/dim]",
            "Note": escape(c.error or c.recommendation or ""),
        }
        for c in conflicts
    ]
    print_table(
        rows,
        title="Version Conflicts",
        column_styles={"Package": {"style": "bold cyan", "no_wrap": True}},
        show_row_lines=True,
    )


def _display_resolutions(resolutions: List[MergeResolution]) -> None:
    rows = [
        {
            "Package": r.package,
            "From": r.from_version or "[dim]missing[/dim]",
            "To": r.to_version,
            "Change": get_update_type(r.from_version, r.to_version),
            "Strategy": r.strategy,
            "Confidence": colorize_level(r.confidence.value, confidence=True),
        }
        for r in resolutions
    ]
    print_table(
        rows,
        title="Resolutions",
        column_styles={"Package": {"style": "bold cyan", "no_wrap": True}},
    )
