"""
sqlchangelog rollback - Undo executed changesets.
"""

from pathlib import Path

import typer

from sqlchangelog.cli.common import CLI_ERRORS, console, env_option, fail, open_project, project_dir_option
from sqlchangelog.exceptions import MigrationFailedError

app = typer.Typer(name="rollback", help="Roll back executed changesets", invoke_without_command=True)


@app.callback()
def rollback(
    ctx: typer.Context,
    project_dir: Path = project_dir_option(),
    env: str | None = env_option(),
    count: int | None = typer.Option(None, "--count", "-n", min=1, help="Roll back the last N changesets"),
    tag: str | None = typer.Option(None, "--tag", "-t", help="Roll back everything executed after this tag"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Only list what would be rolled back"),
) -> None:
    """
    Roll back changesets newest first, by count or back to a tag.
    """
    if ctx.invoked_subcommand is not None:
        return
    if (count is None) == (tag is None):
        console.print("[red]Specify exactly one of --count or --tag[/red]")
        raise typer.Exit(2)

    project = open_project(project_dir, env)
    try:
        report = project.runner.rollback(count=count, tag=tag, dry_run=dry_run)
    except MigrationFailedError as e:
        for record in e.report.rolled_back:
            console.print(f"[green]Rolled back[/green] {record.key}")
        fail(e)
    except CLI_ERRORS as e:
        fail(e)
    finally:
        project.close()

    if dry_run:
        for record in report.planned:
            console.print(f"Would roll back {record.key}")
        console.print(f"[DRY RUN] {len(report.planned)} changeset(s) would be rolled back", highlight=False)
        return

    for record in report.rolled_back:
        console.print(f"[green]Rolled back[/green] {record.key}")
    console.print(f"{len(report.rolled_back)} changeset(s) rolled back")
