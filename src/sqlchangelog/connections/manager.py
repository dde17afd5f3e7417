"""
Connection manager.

Builds connection wrappers from the ``connections`` config section.
"""

from typing import Any

from sqlchangelog.connections.base import BaseConnection
from sqlchangelog.connections.duckdb import DuckDBConnection
from sqlchangelog.connections.ibis_generic import IbisConnection
from sqlchangelog.connections.postgres import PostgresConnection
from sqlchangelog.exceptions import ConfigurationError
from sqlchangelog.utils.logging import get_logger

logger = get_logger("sqlchangelog.connections.manager")


class ConnectionManager:
    """
    Manages named target connections.

    Supports:
    - DuckDB and Postgres as specialised backends
    - Any other ibis SQL backend via IbisConnection (MySQL, Snowflake, ...)
    """

    def __init__(self, config: dict[str, Any]):
        self.config = config
        self._connections: dict[str, BaseConnection] = {}
        self._load_connections()

    def _load_connections(self) -> None:
        """Load connections from configuration."""
        for name, conn_config in (self.config.get("connections") or {}).items():
            if not isinstance(conn_config, dict):
                raise ConfigurationError(f"Connection '{name}' must be a mapping")
            conn_type = conn_config.get("type")

            if conn_type == "duckdb":
                self._connections[name] = DuckDBConnection(name, conn_config)
            elif conn_type == "postgres":
                self._connections[name] = PostgresConnection(name, conn_config)
            elif IbisConnection.supports_type(conn_type):
                self._connections[name] = IbisConnection(name, conn_config)
                logger.debug(f"Registered {conn_type} connection '{name}' via generic ibis backend")
            else:
                logger.warning(f"Unknown connection type '{conn_type}' for connection '{name}', skipping")

    def get(self, name: str) -> BaseConnection:
        """Get connection by name."""
        if name not in self._connections:
            raise ConfigurationError(
                f"Connection not found: {name}", details={"connection": name, "available": self.list()}
            )
        return self._connections[name]

    def list(self) -> list[str]:
        """List all connection names."""
        return list(self._connections)

    def close_all(self) -> None:
        """Close every opened connection."""
        for conn in self._connections.values():
            conn.close()
