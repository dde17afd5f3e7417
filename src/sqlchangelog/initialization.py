"""
sqlchangelog project initialization.

Orchestrates initialization of all components in the correct order:
1. Config (with validation)
2. Logging
3. Connections and the migration target
4. Changelog (parsing, includes, duplicate detection)
5. Runner
"""

import os
from dataclasses import dataclass
from pathlib import Path

from sqlchangelog.changelog.loader import load_changelog
from sqlchangelog.changelog.model import Changelog
from sqlchangelog.config.loader import Config, load_config
from sqlchangelog.connections.manager import ConnectionManager
from sqlchangelog.exceptions import ChangelogError, InitializationError
from sqlchangelog.runner import MigrationRunner
from sqlchangelog.target import Target
from sqlchangelog.utils.logging import get_logger, setup_logging_from_config

logger = get_logger("sqlchangelog.initialization")


@dataclass
class Project:
    """Everything a command needs, ready to use."""

    project_dir: Path
    config: Config
    connections: ConnectionManager
    target: Target
    changelog: Changelog | None = None
    runner: MigrationRunner | None = None

    def close(self) -> None:
        self.connections.close_all()


class ProjectInitializer:
    """Handles complete initialization of a sqlchangelog project."""

    def __init__(self, project_dir: Path, env: str | None = None):
        self.project_dir = Path(project_dir)
        self.env = env or os.environ.get("SQLCHANGELOG_ENV")

    def initialize_all(self, load_changes: bool = True) -> Project:
        """
        Initialize all components in the correct order.

        Args:
            load_changes: Parse the changelog and build a runner; commands
                that only touch the ledger or the lock skip this

        Raises:
            InitializationError: If config, connections or target cannot be set up
            MalformedChangeSetError: If the changelog cannot be parsed
        """
        config = self._initialize_config()
        setup_logging_from_config(config.data, self.project_dir)
        connections = self._initialize_connections(config)
        try:
            target = Target.from_config(config, connections)
        except ChangelogError:
            connections.close_all()
            raise
        except (ValueError, RuntimeError, OSError, ImportError) as e:
            connections.close_all()
            raise InitializationError(f"Failed to open target: {e}") from None

        project = Project(self.project_dir, config, connections, target)
        if load_changes:
            try:
                project.changelog = self._initialize_changelog(config)
            except ChangelogError:
                project.close()
                raise
            project.runner = MigrationRunner(
                target,
                project.changelog,
                fail_fast=bool(config.get("run.fail_fast", True)),
                changeset_timeout=config.get("run.changeset_timeout_seconds"),
            )
        return project

    def _initialize_config(self) -> Config:
        """Initialize and validate configuration."""
        try:
            config = load_config(self.project_dir, env=self.env)
        except ChangelogError:
            raise
        except (OSError, ValueError) as e:
            raise InitializationError(str(e)) from None

        config.data["_env"] = self.env
        config.data["_project_dir"] = self.project_dir
        return config

    def _initialize_connections(self, config: Config) -> ConnectionManager:
        """Build connection wrappers; relative DuckDB paths are relative to the project."""
        for conn_config in config.connections.values():
            if not isinstance(conn_config, dict) or conn_config.get("type") != "duckdb":
                continue
            path = conn_config.get("path")
            if path and path != ":memory:" and not Path(path).is_absolute():
                conn_config["path"] = str(self.project_dir / path)

        try:
            return ConnectionManager(config.data)
        except ChangelogError:
            raise
        except (ValueError, RuntimeError) as e:
            raise InitializationError(f"Failed to initialize connections: {e}") from None

    def _initialize_changelog(self, config: Config) -> Changelog:
        changelog_path = self.project_dir / config.get("changelog.file")
        if not changelog_path.exists():
            raise InitializationError(
                f"Changelog not found: {changelog_path}\n"
                f"  Suggestion: Check 'changelog.file' in config.yaml"
            )
        changelog = load_changelog(changelog_path, dialect=config.get("changelog.dialect"))
        logger.debug(f"Loaded {len(changelog)} changesets from {changelog_path}")
        return changelog


def initialize(project_dir: Path, env: str | None = None, load_changes: bool = True) -> Project:
    """
    Initialize a sqlchangelog project.

    Args:
        project_dir: Project directory path
        env: Environment name (default: from SQLCHANGELOG_ENV env var)
        load_changes: Also load the changelog and build the runner

    Returns:
        Initialized Project

    Raises:
        InitializationError: If initialization fails
    """
    return ProjectInitializer(project_dir, env).initialize_all(load_changes)
