"""
sqlchangelog release-locks - Clear a lock left behind by a crashed run.
"""

from pathlib import Path

import typer

from sqlchangelog.cli.common import CLI_ERRORS, console, env_option, fail, open_project, project_dir_option

app = typer.Typer(name="release-locks", help="Release the changelog lock", invoke_without_command=True)


@app.callback()
def release_locks(
    ctx: typer.Context,
    project_dir: Path = project_dir_option(),
    env: str | None = env_option(),
) -> None:
    """
    Release the target's changelog lock whoever holds it.
    """
    if ctx.invoked_subcommand is not None:
        return

    project = open_project(project_dir, env, load_changes=False)
    try:
        project.target.assert_writable("release-locks")
        previous = project.target.lock.force_release()
    except CLI_ERRORS as e:
        fail(e)
    finally:
        project.close()

    if previous.locked:
        console.print(f"Released lock held by {previous.locked_by} since {previous.locked_at}", highlight=False)
    else:
        console.print("Lock was not held")
