"""
sqlchangelog changelog-sync - Record pending changesets as executed without running them.

Used when a database was brought up to date by other means.
"""

from pathlib import Path

import typer

from sqlchangelog.cli.common import (
    CLI_ERRORS,
    console,
    contexts_option,
    env_option,
    fail,
    filters,
    labels_option,
    open_project,
    project_dir_option,
)

app = typer.Typer(name="changelog-sync", help="Mark pending changesets as executed", invoke_without_command=True)


@app.callback()
def changelog_sync(
    ctx: typer.Context,
    project_dir: Path = project_dir_option(),
    env: str | None = env_option(),
    contexts: str | None = contexts_option(),
    labels: str | None = labels_option(),
) -> None:
    """
    Record every pending changeset selected by the filters as executed.
    """
    if ctx.invoked_subcommand is not None:
        return

    project = open_project(project_dir, env)
    try:
        contexts, labels = filters(project, contexts, labels)
        marked = project.runner.mark_ran(contexts=contexts, labels=labels)
    except CLI_ERRORS as e:
        fail(e)
    finally:
        project.close()

    for change_set in marked:
        console.print(f"Marked [cyan]{change_set}[/cyan] as executed")
    console.print(f"{len(marked)} changeset(s) marked as executed")
