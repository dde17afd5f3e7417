"""
sqlchangelog validate - Parse the changelog and check it against the ledger.
"""

from pathlib import Path

import typer

from sqlchangelog.cli.common import CLI_ERRORS, console, env_option, fail, open_project, project_dir_option
from sqlchangelog.exceptions import ChecksumMismatchError

app = typer.Typer(name="validate", help="Validate the changelog", invoke_without_command=True)


@app.callback()
def validate(
    ctx: typer.Context,
    project_dir: Path = project_dir_option(),
    env: str | None = env_option(),
    offline: bool = typer.Option(False, "--offline", help="Only parse; do not compare checksums with the ledger"),
) -> None:
    """
    Parse every changelog file and verify no executed changeset was edited.
    """
    if ctx.invoked_subcommand is not None:
        return

    project = open_project(project_dir, env)
    try:
        console.print(
            f"[green]Parsed {len(project.changelog)} changesets from {len(project.changelog.files)} file(s)[/green]"
        )
        if offline:
            return
        report = project.runner.status()
        for entry in report.drifted:
            console.print(
                f"[bold red]Drifted:[/bold red] {entry.change_set} "
                f"(ledger {entry.record.checksum}, changelog {entry.change_set.checksum})",
                highlight=False,
            )
        if report.drifted:
            first = report.drifted[0]
            fail(ChecksumMismatchError(first.change_set.key, first.record.checksum or "", first.change_set.checksum))
    except CLI_ERRORS as e:
        fail(e)
    finally:
        project.close()

    console.print("[green]Checksums match the ledger[/green]")
