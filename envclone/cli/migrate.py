"""CLI migrate command implementation.

Implements ``envclone migrate``: compares two snapshots and writes the
migration script that brings TARGET in line with SOURCE, with an optional
rollback script.
"""

from dataclasses import replace
import json
from pathlib import Path
import sys
import traceback

from rich.table import Table
import rich_click as click

from ..analysis import (
    ComparisonOptions,
    InvalidOperationError,
    MigrationGenerationError,
    MigrationGenerator,
    MigrationGeneratorOptions,
    MigrationSafetyValidator,
    MigrationScript,
    SchemaComparator,
    SchemaDiffError,
    SyntaxValidationError,
)
from ..schema import SnapshotLoadError
from .common import (
    EXIT_FAILED,
    EXIT_INTERNAL_ERROR,
    EXIT_OK,
    err_console,
    fail,
    fail_on_load_error,
    load_snapshots,
    prepare,
    should_use_rich_formatting,
)


def _write(path: str, content: str) -> None:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content, encoding="utf-8")


def _print_summary(
    script: MigrationScript,
    output: str | None,
    rollback_output: str | None,
    force_colors: bool,
) -> None:
    """Summary goes to stderr so stdout carries only the script."""
    if should_use_rich_formatting(force_colors):
        table = Table(show_header=False, box=None, padding=(0, 1))
        table.add_column("Property", style="bold")
        table.add_column("Value")
        table.add_row("Script:", script.id)
        table.add_row("Operations:", str(len(script.operations)))
        table.add_row("Rollback operations:", str(len(script.rollback_operations)))
        table.add_row("Estimated duration:", f"{script.estimated_duration}ms")
        table.add_row("Risk level:", script.risk_level.value.upper())
        if output:
            table.add_row("Migration:", output)
        if rollback_output:
            table.add_row("Rollback:", rollback_output)
        err_console.print(table)
        for warning in script.warnings:
            err_console.print(f"⚠️  [yellow]{warning}[/yellow]")
        return

    click.echo(
        f"✅ {len(script.operations)} operations, "
        f"risk {script.risk_level.value}, "
        f"estimated {script.estimated_duration}ms",
        err=True,
    )
    if output:
        click.echo(f"   migration: {output}", err=True)
    if rollback_output:
        click.echo(f"   rollback: {rollback_output}", err=True)
    for warning in script.warnings:
        click.echo(f"⚠️  {warning}", err=True)


def _migrate_implementation(
    source: str,
    target: str,
    format: str,
    output: str | None,
    rollback_output: str | None,
    no_rollback: bool,
    validate_syntax: bool,
    no_comments: bool,
    unsafe: bool,
    batch_size: int | None,
    timeout_ms: int | None,
    ignore_patterns: tuple[str, ...],
    strict: bool,
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

        comparison_options = ComparisonOptions.from_settings(settings)
        comparison_options.custom_ignore_patterns = [
            *comparison_options.custom_ignore_patterns,
            *ignore_patterns,
        ]

        options = MigrationGeneratorOptions.from_settings(settings)
        options = replace(
            options,
            include_rollback=options.include_rollback and not no_rollback,
            validate_syntax=options.validate_syntax or validate_syntax,
            add_comments=options.add_comments and not no_comments,
            safe_mode=options.safe_mode and not unsafe,
            batch_size=batch_size or options.batch_size,
            timeout_per_operation=timeout_ms or options.timeout_per_operation,
        )

        try:
            diff = SchemaComparator().compare_schemas(
                source_schema,
                target_schema,
                comparison_options,
                source_label=source,
                target_label=target,
            )
        except SchemaDiffError as e:
            fail(EXIT_INTERNAL_ERROR, "comparison_error", str(e), json_output)

        try:
            script = MigrationGenerator().generate_migration_script(diff, options)
        except InvalidOperationError as e:
            fail(
                EXIT_FAILED,
                "invalid_operation",
                f"Invalid operation: {e.reason}",
                json_output,
                object_name=e.object_name,
                reason=e.reason,
            )
        except SyntaxValidationError as e:
            fail(
                EXIT_FAILED,
                "syntax_error",
                str(e),
                json_output,
                sql=e.sql,
            )
        except MigrationGenerationError as e:
            fail(EXIT_INTERNAL_ERROR, "generation_error", str(e), json_output)

        if strict:
            report = MigrationSafetyValidator().validate(diff)
            if not report.is_safe:
                fail(
                    EXIT_FAILED,
                    "unsafe_migration",
                    f"Migration is unsafe: {len(report.violations)} violations",
                    json_output,
                    violations=report.messages(),
                )

        if json_output:
            content = json.dumps(script.to_dict(), indent=2)
        else:
            content = script.to_sql()

        if output:
            _write(output, content + ("" if content.endswith("\n") else "\n"))
        else:
            click.echo(content.rstrip("\n"))

        if rollback_output and options.include_rollback:
            _write(rollback_output, script.rollback_sql())

        if output or verbose:
            _print_summary(script, output, rollback_output, force_colors)

        sys.exit(EXIT_OK)

    except KeyboardInterrupt:
        fail(EXIT_INTERNAL_ERROR, "interrupted", "Generation interrupted", json_output)
    except Exception as e:
        if verbose and not json_output:
            click.echo(traceback.format_exc(), err=True)
        fail(EXIT_INTERNAL_ERROR, "internal_error", f"Internal error: {e}", json_output)


@click.command("migrate")
@click.argument("source", type=click.Path(exists=False))
@click.argument("target", type=click.Path(exists=False))
@click.option(
    "--format",
    type=click.Choice(["sql", "json"]),
    default="sql",
    help="📋 **Output format** for the migration script",
    show_default=True,
)
@click.option(
    "--output",
    "-o",
    type=click.Path(dir_okay=False),
    help="💾 **Write the script to a file** instead of stdout",
)
@click.option(
    "--rollback-output",
    type=click.Path(dir_okay=False),
    help="⏪ **Write the rollback script** to a file",
)
@click.option(
    "--no-rollback",
    is_flag=True,
    help="🚫 **Skip rollback generation**",
)
@click.option(
    "--validate-syntax",
    is_flag=True,
    help="🧪 **Check every statement** before emitting the script",
)
@click.option(
    "--no-comments",
    is_flag=True,
    help="💬 **Omit SQL comments** - operation headers and COMMENT statements",
)
@click.option(
    "--unsafe",
    is_flag=True,
    help="☢️ **Disable safe mode** - plain DROP and non-concurrent index builds",
)
@click.option(
    "--batch-size",
    type=click.IntRange(min=1),
    help="📦 **Rows per batch** assumed for time estimates",
)
@click.option(
    "--timeout-ms",
    type=click.IntRange(min=1),
    help="⏱️ **Per-operation timeout** in milliseconds; slower operations are flagged",
)
@click.option(
    "--ignore",
    "ignore_patterns",
    multiple=True,
    metavar="PATTERN",
    help="🙈 **Ignore objects** whose name matches the glob PATTERN (repeatable)",
)
@click.option(
    "--strict",
    is_flag=True,
    help="⚡ **Enable strict mode** - destructive changes fail the command",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="🔍 **Show detailed information** - script summary and debug logs",
)
@click.option(
    "--force-colors",
    is_flag=True,
    help="🎨 **Force colored output** - useful for testing rich formatting",
    hidden=True,
)
def migrate_command(
    source: str,
    target: str,
    format: str,
    output: str | None,
    rollback_output: str | None,
    no_rollback: bool,
    validate_syntax: bool,
    no_comments: bool,
    unsafe: bool,
    batch_size: int | None,
    timeout_ms: int | None,
    ignore_patterns: tuple[str, ...],
    strict: bool,
    verbose: bool,
    force_colors: bool,
) -> None:
    """🛠️ **Generate a migration script**

    Produces the SQL that turns TARGET into SOURCE, ordered so that every
    object is created after what it depends on and dropped before it.

    **Examples:**

    ```bash
    envclone migrate prod.yaml staging.yaml                      # SQL to stdout
    envclone migrate prod.yaml staging.yaml -o migrate.sql \\
        --rollback-output rollback.sql                           # Write files
    envclone migrate prod.yaml staging.yaml --format json        # Full script as JSON
    envclone migrate prod.yaml staging.yaml --strict             # Refuse destructive changes
    ```

    **Exit Codes:**
    - `0`: Script generated ✅
    - `1`: A difference cannot be migrated, or strict mode found destructive changes ❌
    - `2`: Snapshot not found, unreadable or invalid 📁
    - `4`: Internal error 💥
    """
    _migrate_implementation(
        source,
        target,
        format,
        output,
        rollback_output,
        no_rollback,
        validate_syntax,
        no_comments,
        unsafe,
        batch_size,
        timeout_ms,
        ignore_patterns,
        strict,
        verbose,
        force_colors,
    )
