"""
Connection management.

Target database connections (DuckDB, Postgres, any other ibis backend).
"""

from sqlchangelog.connections.base import BaseConnection, ReadOnlyConnectionError
from sqlchangelog.connections.duckdb import DuckDBConnection
from sqlchangelog.connections.ibis_generic import IbisConnection
from sqlchangelog.connections.manager import ConnectionManager
from sqlchangelog.connections.postgres import PostgresConnection

__all__ = [
    "BaseConnection",
    "ReadOnlyConnectionError",
    "ConnectionManager",
    "DuckDBConnection",
    "PostgresConnection",
    "IbisConnection",
]
