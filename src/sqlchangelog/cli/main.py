"""
Main CLI entry point.
"""

import typer

from sqlchangelog import __version__
from sqlchangelog.cli import locks, rollback, status, sync, tag, update, validate


def version_callback(value: bool):
    """Callback to display version and exit."""
    if value:
        typer.echo(f"sqlchangelog version {__version__}")
        raise typer.Exit()


app = typer.Typer(
    name="sqlchangelog",
    help="sqlchangelog - Versioned SQL changelogs for your databases",
    add_completion=True,
)

# Register subcommands
app.add_typer(update.app, name="update")
app.add_typer(update.sql_app, name="update-sql")
app.add_typer(status.app, name="status")
app.add_typer(status.history_app, name="history")
app.add_typer(rollback.app, name="rollback")
app.add_typer(tag.app, name="tag")
app.add_typer(validate.app, name="validate")
app.add_typer(sync.app, name="changelog-sync")
app.add_typer(locks.app, name="release-locks")


@app.callback(invoke_without_command=True)
def entrypoint(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
):
    """
    sqlchangelog - Versioned SQL changelogs for your databases.

    Run 'sqlchangelog <command> --help' for help on a specific command.
    """
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


def main():
    """Main CLI entry point."""
    app()


if __name__ == "__main__":
    main()
