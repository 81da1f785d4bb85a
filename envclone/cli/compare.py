"""CLI compare command implementation.

Implements ``envclone compare``: loads two schema snapshots and reports the
dependency-ordered differences between them.
"""

import json
import sys
import traceback

from rich.table import Table
import rich_click as click
import yaml

from ..analysis import ComparisonOptions, SchemaComparator, SchemaDiff, SchemaDiffError
from ..schema import SnapshotLoadError
from .common import (
    EXIT_FAILED,
    EXIT_INTERNAL_ERROR,
    EXIT_OK,
    console,
    fail,
    fail_on_load_error,
    load_snapshots,
    prepare,
    should_use_rich_formatting,
)

_ACTION_ICONS = {"create": "➕", "drop": "➖", "alter": "✏️"}


def _output_table_format(diff: SchemaDiff, verbose: bool, force_colors: bool) -> None:
    summary = diff.summary
    counts = [
        ("Tables", summary.table_changes),
        ("Functions", summary.function_changes),
        ("Triggers", summary.trigger_changes),
        ("Indexes", summary.index_changes),
        ("Policies", summary.policy_changes),
        ("Extensions", summary.extension_changes),
    ]

    if should_use_rich_formatting(force_colors):
        if diff.is_empty:
            console.print(
                f"✅ [bold green]No differences[/bold green] between "
                f"{diff.source_label} and {diff.target_label}"
            )
            return

        console.print(
            f"🔎 [bold]{summary.total_differences} differences[/bold] between "
            f"{diff.source_label} and {diff.target_label}"
        )
        summary_table = Table(show_header=False, box=None, padding=(0, 1))
        summary_table.add_column("Category", style="bold")
        summary_table.add_column("Count")
        for label, count in counts:
            if count:
                summary_table.add_row(f"{label}:", str(count))
        console.print(summary_table)

        table = Table(show_header=True, header_style="bold cyan")
        table.add_column("#", justify="right")
        table.add_column("Action")
        table.add_column("Type")
        table.add_column("Object", style="bold")
        if verbose:
            table.add_column("Depends on")
            table.add_column("Reason")
        for difference in diff.differences:
            row = [
                str(difference.priority),
                f"{_ACTION_ICONS[difference.action.value]} {difference.action.value}",
                difference.object_type.value,
                difference.qualified_name,
            ]
            if verbose:
                row += [
                    ", ".join(difference.dependencies) or "-",
                    difference.details.reason,
                ]
            table.add_row(*row)
        console.print(table)
        for cycle in diff.dependency_cycles:
            console.print(
                f"⚠️  [yellow]Dependency cycle:[/yellow] {' -> '.join(cycle)}"
            )
        return

    if diff.is_empty:
        click.echo(
            f"✅ No differences between {diff.source_label} and {diff.target_label}"
        )
        return

    click.echo(
        f"🔎 {summary.total_differences} differences between "
        f"{diff.source_label} and {diff.target_label}"
    )
    for label, count in counts:
        if count:
            click.echo(f"  {label}: {count}")
    click.echo("")
    for difference in diff.differences:
        click.echo(
            f"  {difference.priority:>3}. {difference.action.value:<6} "
            f"{difference.object_type.value:<9} {difference.qualified_name}"
        )
        if verbose:
            click.echo(f"       {difference.details.reason}")
            if difference.dependencies:
                click.echo(
                    f"       depends on: {', '.join(difference.dependencies)}"
                )
    for cycle in diff.dependency_cycles:
        click.echo(f"⚠️  Dependency cycle: {' -> '.join(cycle)}")


def _compare_implementation(
    source: str,
    target: str,
    format: str,
    ignore_indexes: bool,
    ignore_policies: bool,
    ignore_extensions: bool,
    include_comments: bool,
    ignore_patterns: tuple[str, ...],
    no_dependency_analysis: bool,
    exit_code: bool,
    verbose: bool,
    force_colors: bool,
) -> None:
    json_output = format == "json"

    try:
        settings = prepare(verbose)

        try:
            source_schema, target_schema = load_snapshots(source, target)
        except SnapshotLoadError as e:
            fail_on_load_error(e, json_output)

        options = ComparisonOptions.from_settings(settings)
        options.ignore_indexes = options.ignore_indexes or ignore_indexes
        options.ignore_policies = options.ignore_policies or ignore_policies
        options.ignore_extensions = options.ignore_extensions or ignore_extensions
        if include_comments:
            options.ignore_comments = False
        options.custom_ignore_patterns = [
            *options.custom_ignore_patterns,
            *ignore_patterns,
        ]
        if no_dependency_analysis:
            options.dependency_analysis = False

        try:
            diff = SchemaComparator().compare_schemas(
                source_schema,
                target_schema,
                options,
                source_label=source,
                target_label=target,
            )
        except SchemaDiffError as e:
            fail(EXIT_INTERNAL_ERROR, "comparison_error", str(e), json_output)

        if format == "table":
            _output_table_format(diff, verbose, force_colors)
        elif format == "json":
            click.echo(json.dumps(diff.to_dict(), indent=2))
        elif format == "yaml":
            click.echo(
                yaml.dump(diff.to_dict(), default_flow_style=False, sort_keys=False)
            )

        sys.exit(EXIT_FAILED if exit_code and not diff.is_empty else EXIT_OK)

    except KeyboardInterrupt:
        fail(EXIT_INTERNAL_ERROR, "interrupted", "Comparison interrupted", json_output)
    except Exception as e:
        if verbose and not json_output:
            click.echo(traceback.format_exc(), err=True)
        fail(EXIT_INTERNAL_ERROR, "internal_error", f"Internal error: {e}", json_output)


@click.command("compare")
@click.argument("source", type=click.Path(exists=False))
@click.argument("target", type=click.Path(exists=False))
@click.option(
    "--format",
    type=click.Choice(["table", "json", "yaml"]),
    default="table",
    help="📋 **Output format** for the differences",
    show_default=True,
)
@click.option(
    "--ignore-indexes",
    is_flag=True,
    help="🗂️ **Skip indexes** when comparing",
)
@click.option(
    "--ignore-policies",
    is_flag=True,
    help="🔐 **Skip row-level security policies** when comparing",
)
@click.option(
    "--ignore-extensions",
    is_flag=True,
    help="🧩 **Skip extensions** when comparing",
)
@click.option(
    "--include-comments",
    is_flag=True,
    help="💬 **Compare comments** on tables, columns and functions",
)
@click.option(
    "--ignore",
    "ignore_patterns",
    multiple=True,
    metavar="PATTERN",
    help="🙈 **Ignore objects** whose name matches the glob PATTERN (repeatable)",
)
@click.option(
    "--no-dependency-analysis",
    is_flag=True,
    help="🔗 **Skip dependency ordering** - differences keep category order",
)
@click.option(
    "--exit-code",
    is_flag=True,
    help="🚦 **Exit with 1** when differences are found",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="🔍 **Show detailed information** - reasons, dependencies and debug logs",
)
@click.option(
    "--force-colors",
    is_flag=True,
    help="🎨 **Force colored output** - useful for testing rich formatting",
    hidden=True,
)
def compare_command(
    source: str,
    target: str,
    format: str,
    ignore_indexes: bool,
    ignore_policies: bool,
    ignore_extensions: bool,
    include_comments: bool,
    ignore_patterns: tuple[str, ...],
    no_dependency_analysis: bool,
    exit_code: bool,
    verbose: bool,
    force_colors: bool,
) -> None:
    """🔎 **Compare two schema snapshots**

    Lists what has to be created, altered or dropped in TARGET so that it
    matches SOURCE, in the order the changes can safely be applied.

    **Examples:**

    ```bash
    envclone compare prod.yaml staging.yaml                 # Table output
    envclone compare prod.yaml staging.yaml --format json   # JSON output
    envclone compare a.yaml b.yaml --ignore 'tmp_*'         # Skip scratch objects
    envclone compare a.yaml b.yaml --exit-code              # Fail on drift
    ```

    **Exit Codes:**
    - `0`: Comparison finished ✅
    - `1`: Differences found (only with `--exit-code`) ❌
    - `2`: Snapshot not found, unreadable or invalid 📁
    - `4`: Internal error 💥
    """
    _compare_implementation(
        source,
        target,
        format,
        ignore_indexes,
        ignore_policies,
        ignore_extensions,
        include_comments,
        ignore_patterns,
        no_dependency_analysis,
        exit_code,
        verbose,
        force_colors,
    )
