"""Command-line interface for envclone."""

import rich_click as click

from .. import __version__
from .compare import compare_command
from .migrate import migrate_command

# Configure rich-click styling
click.rich_click.TEXT_MARKUP = "rich"
click.rich_click.SHOW_ARGUMENTS = True
click.rich_click.GROUP_ARGUMENTS_OPTIONS = True
click.rich_click.STYLE_ERRORS_SUGGESTION = "magenta italic"
click.rich_click.STYLE_OPTION = "bold cyan"
click.rich_click.STYLE_ARGUMENT = "bold yellow"
click.rich_click.STYLE_COMMAND = "bold green"
click.rich_click.STYLE_SWITCH = "bold blue"


@click.group(name="envclone")
@click.version_option(version=__version__, prog_name="envclone")
def main() -> None:
    """🗄️ **envclone** - compare database schemas and generate migrations.

    Compares PostgreSQL schema snapshots and produces dependency-ordered
    migration scripts with matching rollbacks.
    """
    pass


main.add_command(compare_command)
main.add_command(migrate_command)


if __name__ == "__main__":
    main()


__all__ = ["main"]
