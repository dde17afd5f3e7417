"""
Postgres connection via ibis.

ibis.postgres uses psycopg (v3) under the hood.
"""

from typing import Any

import ibis

from sqlchangelog.connections.base import BaseConnection
from sqlchangelog.utils.logging import get_logger

logger = get_logger("sqlchangelog.connections.postgres")


class PostgresConnection(BaseConnection):
    """Postgres connection wrapper using ibis."""

    @property
    def connection(self) -> ibis.BaseBackend:
        """
        Get Postgres connection via ibis (lazy initialization).

        Returns:
            ibis.BaseBackend: ibis Postgres backend
        """
        if self._connection is None:
            db_config: dict[str, Any] = self.config.get("config", {})
            try:
                self._connection = ibis.postgres.connect(
                    host=db_config.get("host", "localhost"),
                    port=db_config.get("port", 5432),
                    user=db_config.get("user", ""),
                    password=db_config.get("password", ""),
                    database=db_config.get("database", ""),
                )
            except Exception as e:
                raise RuntimeError(
                    f"Cannot connect to Postgres for connection '{self.name}' "
                    f"({db_config.get('host', 'localhost')}:{db_config.get('port', 5432)}): {e}"
                ) from e
            logger.debug(f"Connected to Postgres for connection '{self.name}'")

        return self._connection
