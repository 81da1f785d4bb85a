"""Helpers shared by the CLI commands."""

import asyncio
import json
import sys
from typing import Any, NoReturn

from rich.console import Console
import rich_click as click

from ..core.config import EnvCloneSettings, load_settings
from ..core.logging import configure_logging
from ..schema import FileSnapshotLoader, SchemaDefinition, SnapshotLoadError

# Exit codes
EXIT_OK = 0
EXIT_FAILED = 1
EXIT_FILE_ERROR = 2
EXIT_INTERNAL_ERROR = 4

# Create console for rich formatting - auto-detects if we're in interactive environment
console = Console()
err_console = Console(stderr=True)


def should_use_rich_formatting(force_colors: bool = False) -> bool:
    """Determine if we should use rich formatting based on environment."""
    return force_colors or console.is_terminal


def prepare(verbose: bool) -> EnvCloneSettings:
    """Load settings and configure logging for a command run.

    Logs go to stderr and stay at WARNING unless ``--verbose`` is given, so
    command output on stdout remains machine-readable.
    """
    settings = load_settings()
    configure_logging(
        environment=settings.environment,
        log_level="DEBUG" if verbose else "WARNING",
        json_logs=settings.json_logs,
    )
    return settings


async def _load_pair(
    source: str, target: str
) -> tuple[SchemaDefinition, SchemaDefinition]:
    loader = FileSnapshotLoader()
    source_schema, target_schema = await asyncio.gather(
        loader.load(source), loader.load(target)
    )
    return source_schema, target_schema


def load_snapshots(
    source: str, target: str
) -> tuple[SchemaDefinition, SchemaDefinition]:
    """Load both snapshots.

    Raises:
        SnapshotLoadError: If either snapshot cannot be loaded
    """
    return asyncio.run(_load_pair(source, target))


def fail(
    exit_code: int,
    error_type: str,
    message: str,
    json_output: bool,
    **extra: Any,
) -> NoReturn:
    """Report an error in the requested format and exit."""
    if json_output:
        error_output = {
            "status": "error",
            "error_type": error_type,
            "message": message,
            **extra,
        }
        click.echo(json.dumps(error_output, indent=2))
    else:
        click.echo(f"❌ {message}", err=True)
        for key, value in extra.items():
            if value is not None:
                click.echo(f"   {key.replace('_', ' ')}: {value}", err=True)
    sys.exit(exit_code)


def fail_on_load_error(error: SnapshotLoadError, json_output: bool) -> NoReturn:
    fail(
        EXIT_FILE_ERROR,
        "snapshot_load_error",
        str(error),
        json_output,
        file=error.source,
    )
