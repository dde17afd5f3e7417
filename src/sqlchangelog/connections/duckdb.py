"""
DuckDB connection via ibis.
"""

import re
from pathlib import Path
from typing import Any

import ibis

from sqlchangelog.connections.base import BaseConnection
from sqlchangelog.utils.logging import get_logger

logger = get_logger("sqlchangelog.connections.duckdb")


class DuckDBConnection(BaseConnection):
    """DuckDB connection wrapper using ibis."""

    @property
    def path(self) -> str:
        return self.config.get("path", ":memory:")

    @property
    def connection(self) -> ibis.BaseBackend:
        """
        Get DuckDB connection via ibis (lazy initialization).

        Returns:
            ibis.BaseBackend: ibis DuckDB backend
        """
        if self._connection is None:
            path = self.path
            if path == ":memory:":
                self._connection = ibis.duckdb.connect()
                return self._connection

            # Ensure directory exists for file-based databases
            Path(path).parent.mkdir(parents=True, exist_ok=True)
            try:
                self._connection = ibis.duckdb.connect(path, read_only=self.is_read_only)
            except Exception as e:
                error_str = str(e)
                if "lock" in error_str.lower() or "conflicting" in error_str.lower():
                    pid_match = re.search(r"PID\s+(\d+)", error_str)
                    pid_info = f" (PID: {pid_match.group(1)})" if pid_match else ""
                    raise RuntimeError(
                        f"Cannot connect to DuckDB database '{path}': File is locked by another process{pid_info}.\n"
                        f"Please close any other processes accessing this database."
                    ) from e
                raise RuntimeError(
                    f"Cannot connect to DuckDB database '{path}': {error_str}\n"
                    f"Please verify:\n"
                    f"  - Database file exists and is accessible\n"
                    f"  - File permissions are correct"
                ) from e
            logger.debug(f"Opened DuckDB database '{path}' for connection '{self.name}'")

        return self._connection
