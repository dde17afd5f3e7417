"""
sqlchangelog update / update-sql - Apply pending changesets.
"""

from pathlib import Path

import typer
from rich.table import Table

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
from sqlchangelog.exceptions import MigrationFailedError
from sqlchangelog.runner import RunReport

app = typer.Typer(name="update", help="Apply pending changesets", invoke_without_command=True)
sql_app = typer.Typer(name="update-sql", help="Show the SQL an update would run", invoke_without_command=True)


def _report_table(report: RunReport) -> Table:
    table = Table(title=f"Deployment {report.deployment_id}", show_header=True)
    table.add_column("Changeset", style="cyan")
    table.add_column("Result")
    table.add_column("Details", style="dim")

    executed = {cs.key for cs in report.executed}
    failed = {f.change_set.key: f.error for f in report.failed}
    for change_set in report.planned:
        if change_set.key in executed:
            table.add_row(str(change_set), "[green]executed[/green]", change_set.description or "")
        elif change_set.key in failed:
            table.add_row(str(change_set), "[red]failed[/red]", str(failed[change_set.key]))
        else:
            table.add_row(str(change_set), "[yellow]not attempted[/yellow]", "")
    return table


@app.callback()
def update(
    ctx: typer.Context,
    project_dir: Path = project_dir_option(),
    env: str | None = env_option(),
    contexts: str | None = contexts_option(),
    labels: str | None = labels_option(),
    count: int | None = typer.Option(None, "--count", "-n", min=1, help="Apply at most this many changesets"),
) -> None:
    """
    Apply every pending changeset selected by the filters, in order.
    """
    if ctx.invoked_subcommand is not None:
        return

    project = open_project(project_dir, env)
    try:
        contexts, labels = filters(project, contexts, labels)
        report = project.runner.update(contexts=contexts, labels=labels, count=count)
    except MigrationFailedError as e:
        console.print(_report_table(e.report))
        fail(e)
    except CLI_ERRORS as e:
        fail(e)
    finally:
        project.close()

    if report.planned:
        console.print(_report_table(report))
    console.print(f"[green]{report.summary()}[/green]")


@sql_app.callback()
def update_sql(
    ctx: typer.Context,
    project_dir: Path = project_dir_option(),
    env: str | None = env_option(),
    contexts: str | None = contexts_option(),
    labels: str | None = labels_option(),
    count: int | None = typer.Option(None, "--count", "-n", min=1, help="Show at most this many changesets"),
) -> None:
    """
    Print the statements an update would run, without running them.
    """
    if ctx.invoked_subcommand is not None:
        return

    project = open_project(project_dir, env)
    try:
        contexts, labels = filters(project, contexts, labels)
        report = project.runner.update(contexts=contexts, labels=labels, count=count, dry_run=True)
    except CLI_ERRORS as e:
        fail(e)
    finally:
        project.close()

    for change_set in report.planned:
        typer.echo(f"-- Changeset {change_set}")
        for statement in change_set.statements:
            typer.echo(f"{statement};")
        typer.echo()
    typer.echo(f"-- {report.summary()}")
