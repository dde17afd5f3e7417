"""
sqlchangelog status / history - Report changeset states and the ledger.
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
from sqlchangelog.ledger.ledger import ChangeSetState

app = typer.Typer(name="status", help="Show the state of every changeset", invoke_without_command=True)
history_app = typer.Typer(name="history", help="Show the execution ledger", invoke_without_command=True)

STATE_STYLES = {
    ChangeSetState.PENDING: "yellow",
    ChangeSetState.EXECUTED: "green",
    ChangeSetState.FAILED: "red",
    ChangeSetState.ROLLED_BACK: "magenta",
    ChangeSetState.DRIFTED: "bold red",
}


@app.callback()
def status(
    ctx: typer.Context,
    project_dir: Path = project_dir_option(),
    env: str | None = env_option(),
    contexts: str | None = contexts_option(),
    labels: str | None = labels_option(),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Also list executed changesets"),
) -> None:
    """
    Show which changesets are pending, executed, failed, rolled back or drifted.
    """
    if ctx.invoked_subcommand is not None:
        return

    project = open_project(project_dir, env)
    try:
        contexts, labels = filters(project, contexts, labels)
        report = project.runner.status(contexts=contexts, labels=labels)
    except CLI_ERRORS as e:
        fail(e)
    finally:
        project.close()

    table = Table(title=f"Target '{project.target.name}'", show_header=True)
    table.add_column("Changeset", style="cyan")
    table.add_column("State")
    table.add_column("Executed at", style="dim")
    table.add_column("Note", style="dim")

    for entry in report.entries:
        if entry.state == ChangeSetState.EXECUTED and not verbose:
            continue
        style = STATE_STYLES[entry.state]
        note = entry.filtered_reason or ""
        if entry.state == ChangeSetState.FAILED and entry.record is not None:
            note = entry.record.error_message or ""
        executed_at = str(entry.record.executed_at) if entry.record else ""
        table.add_row(str(entry.change_set), f"[{style}]{entry.state.value}[/{style}]", executed_at, note)

    if table.row_count:
        console.print(table)

    executed = sum(1 for e in report.entries if e.state == ChangeSetState.EXECUTED)
    console.print(
        f"{len(report.entries)} changesets: {executed} executed, {len(report.pending)} pending"
        + (f", [bold red]{len(report.drifted)} drifted[/bold red]" if report.drifted else "")
    )
    for orphan in report.orphans:
        console.print(f"[dim]Executed changeset no longer in changelog: {orphan.key}[/dim]")

    if report.drifted:
        raise typer.Exit(1)


@history_app.callback()
def history(
    ctx: typer.Context,
    project_dir: Path = project_dir_option(),
    env: str | None = env_option(),
) -> None:
    """
    Show every ledger row, oldest first.
    """
    if ctx.invoked_subcommand is not None:
        return

    project = open_project(project_dir, env, load_changes=False)
    try:
        records = project.target.ledger.history()
    except CLI_ERRORS as e:
        fail(e)
    finally:
        project.close()

    if not records:
        console.print("No changesets have been executed on this target")
        return

    table = Table(title=f"History of '{project.target.name}'", show_header=True)
    table.add_column("#", justify="right")
    table.add_column("Changeset", style="cyan")
    table.add_column("Outcome")
    table.add_column("Executed at", style="dim")
    table.add_column("Deployment", style="dim")
    table.add_column("Tag", style="magenta")
    for record in records:
        table.add_row(
            str(record.order_executed),
            str(record.key),
            record.outcome.value,
            str(record.executed_at),
            record.deployment_id or "",
            record.tag or "",
        )
    console.print(table)
