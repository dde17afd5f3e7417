"""
sqlchangelog tag - Mark the current ledger position.
"""

from pathlib import Path

import typer

from sqlchangelog.cli.common import CLI_ERRORS, console, env_option, fail, open_project, project_dir_option

app = typer.Typer(name="tag", help="Tag the newest executed changeset", invoke_without_command=True)


@app.callback()
def tag(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Tag name"),
    project_dir: Path = project_dir_option(),
    env: str | None = env_option(),
) -> None:
    """
    Tag the newest executed changeset; 'rollback --tag NAME' returns here.
    """
    if ctx.invoked_subcommand is not None:
        return

    project = open_project(project_dir, env)
    try:
        record = project.runner.tag(name)
    except CLI_ERRORS as e:
        fail(e)
    finally:
        project.close()

    console.print(f"Tagged [cyan]{record.key}[/cyan] as [magenta]{name}[/magenta]")
