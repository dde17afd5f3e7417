"""
Generic ibis connection for any supported backend.

DuckDB and Postgres have their own classes; everything else ibis can talk
to goes through here. Install backend extras as needed:
    pip install 'ibis-framework[mysql]'
    pip install 'ibis-framework[snowflake]'
"""

from typing import Any

import ibis

from sqlchangelog.connections.base import BaseConnection
from sqlchangelog.utils.logging import get_logger

logger = get_logger("sqlchangelog.connections.ibis_generic")


class IbisConnection(BaseConnection):
    """
    Generic connection wrapper for any ibis-supported SQL backend.

    Config example (MySQL)::

        connections:
          app_db:
            type: mysql
            config:
              host: mysql.internal
              port: 3306
              user: migrator
              password: ${MYSQL_PASSWORD}
              database: app_production
    """

    # Map of connection type -> ibis backend attribute (``ibis.<name>``)
    BACKEND_MAP: dict[str, str] = {
        "mysql": "mysql",
        "sqlite": "sqlite",
        "snowflake": "snowflake",
        "bigquery": "bigquery",
        "clickhouse": "clickhouse",
        "databricks": "databricks",
        "trino": "trino",
        "mssql": "mssql",
        "oracle": "oracle",
        "risingwave": "risingwave",
        "exasol": "exasol",
        "impala": "impala",
    }

    def __init__(self, name: str, config: dict[str, Any]):
        super().__init__(name, config)
        self._backend_type: str = config.get("type", "")
        if self._backend_type not in self.BACKEND_MAP:
            raise ValueError(
                f"Unsupported ibis backend type '{self._backend_type}' for connection '{name}'. "
                f"Supported types: {', '.join(sorted(self.BACKEND_MAP))}"
            )

    @classmethod
    def supports_type(cls, conn_type: str | None) -> bool:
        """Whether ``conn_type`` is handled by this class."""
        return conn_type in cls.BACKEND_MAP

    @property
    def backend_type(self) -> str:
        """Get the ibis backend type name."""
        return self._backend_type

    @property
    def connection(self) -> ibis.BaseBackend:
        """
        Get ibis backend connection (lazy initialization).

        Raises:
            ImportError: If the backend extra is not installed
            RuntimeError: If connection fails
        """
        if self._connection is None:
            backend_name = self.BACKEND_MAP[self._backend_type]
            connect_kwargs = dict(self.config.get("config", {}))

            try:
                # ibis loads backends lazily; a missing extra surfaces here
                backend = getattr(ibis, backend_name)
            except (AttributeError, ImportError) as e:
                raise ImportError(
                    f"Cannot import ibis backend '{self._backend_type}' for connection '{self.name}'. "
                    f"Install the required extra: pip install 'ibis-framework[{self._backend_type}]'"
                ) from e

            try:
                self._connection = backend.connect(**connect_kwargs)
            except Exception as e:
                raise RuntimeError(
                    f"Failed to connect to {self._backend_type} backend for connection '{self.name}': {e}\n"
                    f"Config keys provided: {list(connect_kwargs)}"
                ) from e
            logger.info(f"Connected to {self._backend_type} backend for connection '{self.name}'")

        return self._connection
