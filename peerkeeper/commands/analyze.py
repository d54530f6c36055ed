"""Analyze command implementation for peerkeeper.

Reads the ``dependencies`` and ``devDependencies`` of a ``package.json``
and reports unmet peer dependencies, the fixes the analyzer proposes,
and any degraded data it had to fall back on.

Typical usage::

    # Table report
    $ peerkeeper analyze package.json

    # Machine-readable JSON output
    $ peerkeeper analyze package.json --json > report.json

    # Use only cached or synthesized data
    $ peerkeeper analyze --offline
"""

from __future__ import annotations

import sys
import click
import asyncio
from rich.markup import escape
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from peerkeeper.exceptions import PeerKeeperError
from peerkeeper.context import pass_context, PeerKeeperContext
from peerkeeper.core import PeerDependencyAnalyzer
from peerkeeper.models import (
    AnalysisResult,
    AnalysisSummary,
    Conflict,
    Diagnostic,
    Recommendation,
    Resolution,
)
from peerkeeper.utils import (
    colorize_level,
    get_logger,
    print_error,
    print_json,
    print_success,
    print_table,
    print_warning,
    read_json_file,
)

logger = get_logger("commands.analyze")


@click.command()
@click.argument(
    "package_json",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default="package.json",
)
@click.option(
    "--offline/--online",
    default=None,
    help="Never contact the registry (overrides the config file).",
)
@click.option(
    "--dev/--no-dev",
    default=True,
    help="Include devDependencies in the analysis.",
)
@click.option(
    "--json",
    "as_json",
    is_flag=True,
    help="Print the full result as JSON.",
)
@pass_context
def analyze(
    ctx: PeerKeeperContext,
    package_json: Path,
    offline: Optional[bool],
    dev: bool,
    as_json: bool,
) -> None:
    """Analyze peer dependencies of a package.json.

    Exits with 0 when the analysis completed, 1 on error.
    """
    try:
        result = asyncio.run(_analyze_async(ctx, package_json, offline, dev))
    except PeerKeeperError as e:
        print_error(f"{e}")
        sys.exit(1)
    except Exception as e:
        print_error(f"Unexpected error: {e}")
        logger.exception("Error in analyze command")
        sys.exit(1)

    if as_json:
        print_json(result.to_json())
    else:
        display_analysis(result)

    sys.exit(0 if result.success else 1)


async def _analyze_async(
    ctx: PeerKeeperContext,
    package_json: Path,
    offline: Optional[bool],
    include_dev: bool,
) -> AnalysisResult:
    dependencies, dev_dependencies = read_package_json(package_json)
    if not include_dev:
        dev_dependencies = {}

    config = ctx.config.to_merger_config(offline=offline).analyzer
    logger.info(
        "Analyzing %d dependencies and %d devDependencies from %s",
        len(dependencies),
        len(dev_dependencies),
        package_json,
    )

    async with PeerDependencyAnalyzer(config) as analyzer:
        return await analyzer.analyze(dependencies, dev_dependencies)


def read_package_json(path: Path) -> Tuple[Dict[str, str], Dict[str, str]]:
    """Return the ``dependencies`` and ``devDependencies`` of ``path``.

    Raises:
        FileOperationError: The file cannot be read or is not JSON.
        PeerKeeperError: The document is not a package manifest.
    """
    data = read_json_file(path)
    if not isinstance(data, dict):
        raise PeerKeeperError(f"Expected a JSON object in {path}")

    sections = []
    for key in ("dependencies", "devDependencies"):
        section = data.get(key) or {}
        if not isinstance(section, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in section.items()
        ):
            raise PeerKeeperError(f"'{key}' in {path} must map package names to version ranges")
        sections.append(dict(section))

    return sections[0], sections[1]


# ---------------------------------------------------------------------------
# Display renderers
# ---------------------------------------------------------------------------


def display_analysis(result: AnalysisResult) -> None:
    """Render an analysis result as Rich tables."""
    display_peer_conflicts(result.conflicts)
    display_peer_resolutions(result.resolutions)
    display_diagnostics(result.warnings, result.errors)
    display_recommendations(result.recommendations + result.edge_cases.recommendations)
    _display_summary(result.summary)

    if not result.conflicts:
        print_success("All peer dependencies are satisfied")
    if result.needs_relaxed_peer_deps:
        print_warning("Some conflicts remain; install with --legacy-peer-deps")


def display_peer_conflicts(conflicts: List[Conflict]) -> None:
    rows = [
        {
            "Package": c.package,
            "Peer": c.peer_dependency,
            "Required": c.required_version,
            "Installed": c.installed_version or "[dim]-[/dim]",
            "Type": c.type.value,
            "Severity": colorize_level(c.severity.value),
        }
        for c in conflicts
    ]
    print_table(
        rows,
        title="Peer Dependency Conflicts",
        column_styles={"Package": {"style": "bold cyan", "no_wrap": True}},
    )


def display_peer_resolutions(resolutions: List[Resolution]) -> None:
    rows = [
        {
            "Package": r.package,
            "Action": r.action.value,
            "Version": r.target_version or r.version or "-",
            "Confidence": colorize_level(r.confidence.value, confidence=True),
            "Reason": escape(r.reason),
        }
        for r in resolutions
    ]
    print_table(
        rows,
        title="Proposed Resolutions",
        column_styles={"Package": {"style": "bold cyan", "no_wrap": True}},
    )


def display_diagnostics(warnings: List[Diagnostic], errors: List[Diagnostic]) -> None:
    rows: List[Dict[str, Any]] = [
        {
            "Level": "[red]error[/red]" if is_error else "[yellow]warning[/yellow]",
            "Category": d.category,
            "Severity": colorize_level(d.severity.value),
            "Message": escape(d.message),
        }
        for is_error, diagnostics in ((True, errors), (False, warnings))
        for d in diagnostics
    ]
    print_table(rows, title="Diagnostics", show_row_lines=True)


def display_recommendations(recommendations: List[Recommendation]) -> None:
    rows = [
        {
            "Type": r.type,
            "Message": escape(r.message),
            "Action": r.action,
            "Packages": ", ".join(r.packages) or "-",
        }
        for r in recommendations
    ]
    print_table(rows, title="Recommendations")


def _display_summary(summary: AnalysisSummary) -> None:
    print_table(
        [
            {
                "Packages": summary.total_packages,
                "With peers": summary.packages_with_peer_dependencies,
                "Conflicts": summary.conflicts_detected,
                "Resolved": summary.conflicts_resolved,
                "Fallbacks": summary.fallbacks_used,
                "Success rate": summary.success_rate,
            }
        ],
        title="Summary",
    )
