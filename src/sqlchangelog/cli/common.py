"""
Helpers shared by the CLI commands.
"""

from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console

from sqlchangelog.connections.base import ReadOnlyConnectionError
from sqlchangelog.exceptions import ChangelogError
from sqlchangelog.initialization import Project, initialize
from sqlchangelog.utils.logging import get_logger

logger = get_logger("sqlchangelog.cli")

console = Console()
err_console = Console(stderr=True)


def open_project(project_dir: Path, env: str | None, load_changes: bool = True) -> Project:
    """Initialize the project or exit with status 1."""
    try:
        return initialize(project_dir, env=env, load_changes=load_changes)
    except ChangelogError as e:
        fail(e, "Initialization failed")


def fail(error: BaseException, prefix: str = "Error") -> NoReturn:
    """Report ``error`` and exit with status 1."""
    logger.debug(f"{prefix}: {error}", exc_info=True)
    err_console.print(f"[bold red]{prefix}:[/bold red] {error}", highlight=False)
    raise typer.Exit(1) from None


CLI_ERRORS = (ChangelogError, ReadOnlyConnectionError)


def project_dir_option() -> Path:
    return typer.Option(Path.cwd(), "--project-dir", "-d", help="Project directory")


def env_option() -> str | None:
    return typer.Option(None, "--env", "-e", help="Environment (loads config.{env}.yaml)")


def contexts_option() -> str | None:
    return typer.Option(None, "--contexts", help="Context filter, e.g. 'dev,test' or '!prod'")


def labels_option() -> str | None:
    return typer.Option(None, "--labels", help="Label filter, e.g. 'feature-x and !experimental'")


def filters(project: Project, contexts: str | None, labels: str | None) -> tuple[str, str]:
    """Command-line filters, falling back to the ``run`` config section."""
    if contexts is None:
        contexts = project.config.get("run.contexts", "")
    if labels is None:
        labels = project.config.get("run.labels", "")
    return contexts, labels
